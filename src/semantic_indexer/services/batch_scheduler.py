"""Batch scheduler: paced, strictly sequential embed-and-store with recovery."""

from __future__ import annotations

import asyncio
import math
from typing import Awaitable, Callable, List, Optional, Sequence

from tenacity import AsyncRetrying, RetryCallState

from semantic_indexer.config import BatchSettings
from semantic_indexer.models.batch import BatchJob, BatchProgress, RunSummary
from semantic_indexer.models.chunk import Chunk
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.store_writer import VectorStoreWriter
from semantic_indexer.utils.errors import (
    BatchFailedError,
    FatalError,
    IndexerException,
    PipelineCancelled,
    RateLimitedError,
    TransientError,
)
from semantic_indexer.utils.logging import get_logger

logger = get_logger("batch_scheduler")

SleepFn = Callable[[float], Awaitable[None]]
ProgressFn = Callable[[BatchProgress], None]


def partition(total: int, batch_size: int) -> List[BatchJob]:
    """Split ``total`` items into contiguous, ordered batches of ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    if total < 0:
        raise ValueError("total must be >= 0")
    return [
        BatchJob(batch_index=i + 1, start=i * batch_size, end=min((i + 1) * batch_size, total))
        for i in range(math.ceil(total / batch_size))
    ]


def pacing_delay(batch_index: int, step: float = 1.0, cap: float = 10.0) -> float:
    """Delay before submitting batch ``batch_index`` (1-based); none before the first."""
    if batch_index <= 1:
        return 0.0
    return min(batch_index * step, cap)


def backoff_delay(attempt: int, base: float = 1.0) -> float:
    """Backoff before retry number ``attempt`` (1 -> 2s, 2 -> 4s, 3 -> 8s)."""
    return (2 ** attempt) * base


class BatchRetryPolicy:
    """
    Tenacity callbacks for one batch.

    Rate-limit and transient failures draw on separate budgets: one extra
    attempt after a pipeline-wide pause for the former, ``max_retries``
    exponentially spaced retries for the latter. Anything else is not retried.
    """

    def __init__(self, settings: BatchSettings) -> None:
        self._settings = settings
        self.transient_failures = 0
        self.rate_limit_failures = 0

    @staticmethod
    def _error(retry_state: RetryCallState) -> Optional[BaseException]:
        return retry_state.outcome.exception() if retry_state.outcome else None

    def should_retry(self, retry_state: RetryCallState) -> bool:
        return isinstance(self._error(retry_state), (RateLimitedError, TransientError))

    def record_failure(self, retry_state: RetryCallState) -> None:
        error = self._error(retry_state)
        if isinstance(error, RateLimitedError):
            self.rate_limit_failures += 1
        elif isinstance(error, TransientError):
            self.transient_failures += 1

    def should_stop(self, retry_state: RetryCallState) -> bool:
        if isinstance(self._error(retry_state), RateLimitedError):
            return self.rate_limit_failures > 1
        return self.transient_failures > self._settings.max_retries

    def next_wait(self, retry_state: RetryCallState) -> float:
        if isinstance(self._error(retry_state), RateLimitedError):
            return self._settings.rate_limit_pause
        return backoff_delay(self.transient_failures, self._settings.backoff_base)

    def before_sleep(self, retry_state: RetryCallState) -> None:
        error = self._error(retry_state)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if isinstance(error, RateLimitedError):
            logger.warning(f"Rate limited; pausing pipeline for {delay:.0f}s before one more attempt")
        else:
            logger.warning(
                f"Transient failure (retry {self.transient_failures}/{self._settings.max_retries}), "
                f"backing off {delay:.0f}s: {error}"
            )


class BatchScheduler:
    """
    Drive chunks through embedding and storage one batch at a time.

    Batches run strictly in input order and never overlap; batch ``i`` is
    embedded and persisted before batch ``i + 1`` starts. Cancellation is
    honoured only between batches, so the store always holds a written prefix.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        writer: VectorStoreWriter,
        settings: BatchSettings,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._embedder = embedder
        self._writer = writer
        self._settings = settings
        self._sleep = sleep

    async def run(
        self,
        chunks: Sequence[Chunk],
        batch_size: Optional[int] = None,
        summary: Optional[RunSummary] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> RunSummary:
        """
        Embed and store every chunk.

        Args:
            chunks: Ordered chunks to process
            batch_size: Overrides the configured batch size
            summary: Updated in place, so progress survives a raised error
            cancel_event: When set, the run stops before the next batch
            on_progress: Called after each completed batch

        Raises:
            BatchFailedError: A batch could not be completed; earlier batches stay stored
            PipelineCancelled: Cancellation was honoured at a batch boundary
        """
        summary = summary if summary is not None else RunSummary()
        size = batch_size or self._settings.batch_size
        jobs = partition(len(chunks), size)
        summary.total_chunks = len(chunks)
        summary.total_batches = len(jobs)

        logger.info(f"Scheduling {len(chunks)} chunks in {len(jobs)} batches of up to {size}")

        for job in jobs:
            self._check_cancelled(cancel_event, summary)

            delay = pacing_delay(job.batch_index, self._settings.pacing_step, self._settings.pacing_cap)
            if delay > 0:
                logger.debug(f"Pacing {delay:.1f}s before batch {job.batch_index}/{len(jobs)}")
                await self._sleep(delay)
                self._check_cancelled(cancel_event, summary)

            await self._run_job(job, chunks, summary.processed, summary)

            summary.processed += job.size
            summary.batches_completed += 1
            progress = BatchProgress(
                batch_index=job.batch_index,
                total_batches=len(jobs),
                processed=summary.processed,
                total=len(chunks),
            )
            logger.info(
                f"Batch {job.batch_index}/{len(jobs)} done: "
                f"{progress.processed}/{progress.total} chunks ({progress.percentage}%)"
            )
            if on_progress is not None:
                on_progress(progress)

        return summary

    async def _run_job(
        self,
        job: BatchJob,
        chunks: Sequence[Chunk],
        expected_before: int,
        summary: RunSummary,
    ) -> None:
        batch = chunks[job.start : job.end]
        policy = BatchRetryPolicy(self._settings)
        retrying = AsyncRetrying(
            sleep=self._sleep,
            retry=policy.should_retry,
            after=policy.record_failure,
            stop=policy.should_stop,
            wait=policy.next_wait,
            before_sleep=policy.before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    job.attempt += 1
                    await self._process(batch, expected_before)
        except Exception as e:
            cause = e if isinstance(e, IndexerException) else FatalError(f"Unexpected error: {e}")
            self._record_retries(job, policy, summary)
            pending = [c.id for c in chunks[job.start :]]
            logger.error(
                f"Batch {job.batch_index} aborted after {job.attempt} attempt(s): {cause.message} ({cause.code})"
            )
            raise BatchFailedError(
                batch_index=job.batch_index,
                start=job.start,
                end=job.end,
                attempts=job.attempt,
                pending_chunk_ids=pending,
                cause=cause,
            ) from e

        self._record_retries(job, policy, summary)

    async def _process(self, batch: Sequence[Chunk], expected_before: int) -> None:
        records = await self._embedder.embed_chunks(batch)
        await self._writer.write(records, expected_before=expected_before)

    @staticmethod
    def _record_retries(job: BatchJob, policy: BatchRetryPolicy, summary: RunSummary) -> None:
        summary.retries += max(job.attempt - 1, 0)
        summary.rate_limit_pauses += min(policy.rate_limit_failures, 1)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], summary: RunSummary) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Cancellation honoured at batch boundary: {summary.processed}/{summary.total_chunks}")
            raise PipelineCancelled(processed=summary.processed, total=summary.total_chunks)
