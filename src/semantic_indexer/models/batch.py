"""Batch and run bookkeeping models."""

from typing import List, Optional

from pydantic import BaseModel, Field


class BatchJob(BaseModel):
    """A half-open slice ``[start, end)`` of the input processed as one unit."""

    batch_index: int = Field(..., ge=1, description="1-based position of the batch")
    start: int = Field(..., ge=0, description="Index of the first chunk (inclusive)")
    end: int = Field(..., ge=0, description="Index after the last chunk (exclusive)")
    attempt: int = Field(default=0, ge=0, description="Attempts made so far")

    @property
    def size(self) -> int:
        return self.end - self.start


class WriteReport(BaseModel):
    """Outcome of persisting one list of records."""

    written: int = Field(default=0, description="Records submitted to the store")
    sub_batches: int = Field(default=0, description="Bulk insert calls issued")
    stored_count: Optional[int] = Field(default=None, description="Last document count reported by the store")
    count_mismatches: int = Field(default=0, description="Sub-batches after which the store reported fewer documents than expected")


class BatchProgress(BaseModel):
    """Progress signal emitted after each completed batch."""

    batch_index: int
    total_batches: int
    processed: int
    total: int

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.processed / self.total * 100, 1)


class RunSummary(BaseModel):
    """Human-facing account of a pipeline run, successful or not."""

    total_chunks: int = 0
    processed: int = 0
    batches_completed: int = 0
    total_batches: int = 0
    retries: int = 0
    rate_limit_pauses: int = 0
    final_store_count: Optional[int] = None
    skipped: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    pending_chunk_ids: List[str] = Field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled

    def render(self) -> str:
        """Format the summary for terminal output."""
        if self.skipped:
            status = "SKIPPED (store already populated)"
        elif self.cancelled:
            status = "CANCELLED"
        elif self.error:
            status = "FAILED"
        else:
            status = "COMPLETED"

        store_count = "unknown" if self.final_store_count is None else str(self.final_store_count)
        lines = [
            f"Run {status}",
            f"  Chunks processed : {self.processed}/{self.total_chunks}",
            f"  Batches          : {self.batches_completed}/{self.total_batches}",
            f"  Retries          : {self.retries} (rate-limit pauses: {self.rate_limit_pauses})",
            f"  Store count      : {store_count}",
            f"  Elapsed          : {self.elapsed_seconds:.1f}s",
        ]
        if self.error:
            lines.append(f"  Error            : {self.error}")
        if self.pending_chunk_ids:
            lines.append(f"  Not written      : {len(self.pending_chunk_ids)} chunk(s), first: {self.pending_chunk_ids[0]}")
        return "\n".join(lines)
