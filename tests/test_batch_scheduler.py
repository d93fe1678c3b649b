"""Tests for the batch scheduler."""

import asyncio

import httpx
import openai
import pytest

from conftest import FakeOpenAI, make_chunks
from semantic_indexer.config import BatchSettings
from semantic_indexer.models.batch import RunSummary
from semantic_indexer.services.batch_scheduler import (
    BatchScheduler,
    backoff_delay,
    pacing_delay,
    partition,
)
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.services.store_writer import VectorStoreWriter
from semantic_indexer.utils.errors import (
    BatchFailedError,
    FatalError,
    PipelineCancelled,
    RateLimitedError,
    TransientError,
)


def _rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    return openai.RateLimitError(
        "Rate limit reached for requests",
        response=httpx.Response(429, request=request),
        body=None,
    )


def _auth_error() -> openai.AuthenticationError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    return openai.AuthenticationError(
        "Incorrect API key provided",
        response=httpx.Response(401, request=request),
        body=None,
    )


@pytest.fixture
def harness(embedding_settings, qdrant_settings, writer_settings, fake_qdrant, recording_sleep):
    """Build a scheduler over a fake OpenAI client and an in-memory Qdrant."""

    def _build(failures=None, batch_settings=None):
        openai_client = FakeOpenAI(failures=failures)
        embedder = EmbeddingService(embedding_settings, client=openai_client)
        store = VectorStore(qdrant_settings, client=fake_qdrant)
        writer = VectorStoreWriter(store, writer_settings, sleep=recording_sleep)
        scheduler = BatchScheduler(
            embedder,
            writer,
            batch_settings or BatchSettings(batch_size=25, max_retries=3),
            sleep=recording_sleep,
        )
        return scheduler, openai_client.embeddings, fake_qdrant

    return _build


class TestPartition:
    """Test batch partitioning."""

    @pytest.mark.parametrize("total,batch_size", [(0, 25), (1, 25), (25, 25), (26, 25), (120, 25), (7, 1), (5, 100)])
    def test_batches_cover_input_exactly_once(self, total, batch_size):
        """Concatenating the batches in order reproduces the input."""
        jobs = partition(total, batch_size)
        covered = [i for job in jobs for i in range(job.start, job.end)]

        assert covered == list(range(total))
        assert [job.batch_index for job in jobs] == list(range(1, len(jobs) + 1))
        assert all(0 < job.size <= batch_size for job in jobs)

    def test_120_chunks_in_batches_of_25(self):
        """Test the trailing batch holds the remainder."""
        assert [job.size for job in partition(120, 25)] == [25, 25, 25, 25, 20]

    def test_invalid_batch_size(self):
        """Test batch size below one is rejected."""
        with pytest.raises(ValueError):
            partition(10, 0)


class TestDelays:
    """Test pacing and backoff schedules."""

    def test_no_delay_before_first_batch(self):
        assert pacing_delay(1) == 0.0

    def test_pacing_grows_then_caps(self):
        """Test delay is linear in the batch index up to the cap."""
        delays = [pacing_delay(i) for i in range(1, 15)]

        assert delays[:4] == [0.0, 2.0, 3.0, 4.0]
        assert delays[9:] == [10.0] * 5
        assert all(a <= b for a, b in zip(delays, delays[1:]))

    def test_backoff_doubles(self):
        assert [backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestBatchScheduler:
    """Test scheduler runs end to end over fakes."""

    @pytest.mark.asyncio
    async def test_120_chunks_happy_path(self, harness, recording_sleep):
        """Test five batches, five embedding calls, 120 stored documents."""
        scheduler, embeddings_api, qdrant = harness()

        summary = await scheduler.run(make_chunks(120))

        assert summary.processed == 120
        assert summary.batches_completed == 5
        assert summary.retries == 0
        assert len(embeddings_api.calls) == 5
        assert [len(call) for call in embeddings_api.calls] == [25, 25, 25, 25, 20]
        assert qdrant.count("test_chunks").count == 120
        assert recording_sleep.delays == [2.0, 3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_batches_are_written_in_order(self, harness):
        """Test embedding requests follow input order."""
        scheduler, embeddings_api, _ = harness()
        chunks = make_chunks(60)

        await scheduler.run(chunks)

        sent = [text for call in embeddings_api.calls for text in call]
        assert sent == [c.content for c in chunks]

    @pytest.mark.asyncio
    async def test_transient_failures_back_off_then_succeed(self, harness, recording_sleep):
        """Test batch 3 failing twice waits 2s then 4s, and the run completes."""
        failures = {3: ConnectionError("connection reset"), 4: ConnectionError("connection reset")}
        scheduler, embeddings_api, qdrant = harness(failures=failures)

        summary = await scheduler.run(make_chunks(120))

        assert summary.processed == 120
        assert summary.retries == 2
        assert len(embeddings_api.calls) == 7
        assert recording_sleep.delays == [2.0, 3.0, 2.0, 4.0, 4.0, 5.0]
        assert qdrant.count("test_chunks").count == 120

    @pytest.mark.asyncio
    async def test_transient_budget_exhausted(self, harness, recording_sleep):
        """Test R retries after the first attempt, then a batch failure."""
        failures = {n: TimeoutError("read timeout") for n in range(1, 10)}
        scheduler, embeddings_api, _ = harness(failures=failures)

        with pytest.raises(BatchFailedError) as exc_info:
            await scheduler.run(make_chunks(30))

        error = exc_info.value
        assert error.batch_index == 1
        assert error.attempts == 4
        assert isinstance(error.cause, TransientError)
        assert len(embeddings_api.calls) == 4
        assert recording_sleep.delays == [2.0, 4.0, 8.0]
        assert error.pending_chunk_ids[0] == "chunk-0000"
        assert len(error.pending_chunk_ids) == 30

    @pytest.mark.asyncio
    async def test_rate_limit_pauses_and_retries_once(self, harness, recording_sleep):
        """Test a rate limit pauses 60s and the same batch is retried."""
        scheduler, embeddings_api, qdrant = harness(failures={2: _rate_limit_error()})

        summary = await scheduler.run(make_chunks(50))

        assert summary.processed == 50
        assert summary.rate_limit_pauses == 1
        assert recording_sleep.delays == [2.0, 60.0]
        assert embeddings_api.calls[1] == embeddings_api.calls[2]
        assert qdrant.count("test_chunks").count == 50

    @pytest.mark.asyncio
    async def test_second_rate_limit_is_fatal(self, harness):
        """Test the rate-limit retry is a single extra attempt."""
        failures = {2: _rate_limit_error(), 3: _rate_limit_error()}
        scheduler, _, qdrant = harness(failures=failures)
        summary = RunSummary()

        with pytest.raises(BatchFailedError) as exc_info:
            await scheduler.run(make_chunks(50), summary=summary)

        error = exc_info.value
        assert error.batch_index == 2
        assert isinstance(error.cause, RateLimitedError)
        assert error.pending_chunk_ids[0] == "chunk-0025"
        assert summary.processed == 25
        # Earlier batches stay stored
        assert qdrant.count("test_chunks").count == 25

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self, harness, recording_sleep):
        """Test authentication failures abort on the first attempt."""
        scheduler, embeddings_api, _ = harness(failures={1: _auth_error()})

        with pytest.raises(BatchFailedError) as exc_info:
            await scheduler.run(make_chunks(10))

        assert exc_info.value.attempts == 1
        assert isinstance(exc_info.value.cause, FatalError)
        assert len(embeddings_api.calls) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_retry_budget(self, harness):
        """Test max_retries=0 fails on the first transient error."""
        scheduler, embeddings_api, _ = harness(
            failures={1: ConnectionError("reset")},
            batch_settings=BatchSettings(batch_size=25, max_retries=0),
        )

        with pytest.raises(BatchFailedError):
            await scheduler.run(make_chunks(10))

        assert len(embeddings_api.calls) == 1

    @pytest.mark.asyncio
    async def test_cancellation_at_batch_boundary(self, harness):
        """Test cancellation stops before the next batch, keeping written ones."""
        scheduler, embeddings_api, qdrant = harness()
        cancel_event = asyncio.Event()
        summary = RunSummary()

        def on_progress(progress):
            if progress.batch_index == 2:
                cancel_event.set()

        with pytest.raises(PipelineCancelled) as exc_info:
            await scheduler.run(
                make_chunks(120),
                summary=summary,
                cancel_event=cancel_event,
                on_progress=on_progress,
            )

        assert exc_info.value.processed == 50
        assert summary.batches_completed == 2
        assert len(embeddings_api.calls) == 2
        assert qdrant.count("test_chunks").count == 50

    @pytest.mark.asyncio
    async def test_batch_size_override(self, harness):
        """Test an explicit batch size overrides settings."""
        scheduler, embeddings_api, _ = harness()

        summary = await scheduler.run(make_chunks(30), batch_size=10)

        assert summary.total_batches == 3
        assert [len(call) for call in embeddings_api.calls] == [10, 10, 10]

    @pytest.mark.asyncio
    async def test_progress_reports(self, harness):
        """Test a progress signal after every batch."""
        scheduler, _, _ = harness()
        seen = []

        await scheduler.run(make_chunks(60), on_progress=seen.append)

        assert [(p.processed, p.percentage) for p in seen] == [(25, 41.7), (50, 83.3), (60, 100.0)]
