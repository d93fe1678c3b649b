"""Custom exception classes for the semantic indexer.

Every failure that crosses a component boundary is one of three kinds:
``RateLimitedError``, ``TransientError`` or ``FatalError``. Retry logic in the
batch scheduler switches on these types; nothing downstream inspects messages.
"""

from typing import Any, Dict, List, Optional


class IndexerException(Exception):
    """Base exception for all semantic indexer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        # Set by the ingestion pipeline: the RunSummary at the point of failure
        self.summary: Optional[Any] = None
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class RateLimitedError(IndexerException):
    """The external API throttled the request (HTTP 429 or equivalent)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if source:
            error_details["source"] = source
        super().__init__(
            message=message,
            status_code=429,
            code="RATE_LIMITED",
            details=error_details,
        )


class TransientError(IndexerException):
    """Recoverable local failure: timeout, connection drop, 5xx, partial response."""

    def __init__(
        self,
        message: str = "Transient failure",
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if source:
            error_details["source"] = source
        super().__init__(
            message=message,
            status_code=503,
            code="TRANSIENT_ERROR",
            details=error_details,
        )


class FatalError(IndexerException):
    """Unrecoverable failure: authentication, invalid model, invalid payload."""

    def __init__(
        self,
        message: str = "Fatal failure",
        source: Optional[str] = None,
        status_code: int = 502,
        code: str = "FATAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if source:
            error_details["source"] = source
        super().__init__(
            message=message,
            status_code=status_code,
            code=code,
            details=error_details,
        )


class DimensionMismatchError(FatalError):
    """Vector length differs from the configured embedding dimensionality."""

    def __init__(
        self,
        expected: int,
        actual: int,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        error_details["expected_dimension"] = expected
        error_details["actual_dimension"] = actual
        super().__init__(
            message=f"Embedding dimension mismatch: expected {expected}, got {actual}",
            source=source,
            code="DIMENSION_MISMATCH",
            details=error_details,
        )


class ConfigurationError(FatalError):
    """Required configuration is missing or invalid."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="CONFIGURATION_ERROR",
            details=details,
        )


class NotFoundError(IndexerException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        error_details = details or {}
        error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=404,
            code="NOT_FOUND",
            details=error_details,
        )


class BatchFailedError(IndexerException):
    """A batch exhausted its recovery options and the run was aborted.

    Batches before ``batch_index`` are durably written; ``pending_chunk_ids``
    lists every chunk that was not confirmed as embedded and stored.
    """

    def __init__(
        self,
        batch_index: int,
        start: int,
        end: int,
        attempts: int,
        pending_chunk_ids: List[str],
        cause: Optional[IndexerException] = None,
    ):
        cause_code = cause.code if cause is not None else "UNKNOWN"
        cause_message = cause.message if cause is not None else "unknown failure"
        super().__init__(
            message=(
                f"Batch {batch_index} (chunks {start}-{end}) failed after "
                f"{attempts} attempt(s): {cause_message}"
            ),
            status_code=cause.status_code if cause is not None else 500,
            code="BATCH_FAILED",
            details={
                "batch_index": batch_index,
                "start": start,
                "end": end,
                "attempts": attempts,
                "cause": cause_code,
                "pending_chunks": len(pending_chunk_ids),
            },
        )
        self.batch_index = batch_index
        self.start = start
        self.end = end
        self.attempts = attempts
        self.pending_chunk_ids = pending_chunk_ids
        self.cause = cause


class PipelineCancelled(IndexerException):
    """Cancellation was honoured at a batch boundary."""

    def __init__(self, processed: int, total: int):
        super().__init__(
            message=f"Pipeline cancelled after {processed}/{total} chunks",
            status_code=499,
            code="CANCELLED",
            details={"processed": processed, "total": total},
        )
        self.processed = processed
        self.total = total
