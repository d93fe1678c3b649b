"""Ingestion pipeline: chunk source -> embeddings -> vector store."""

import asyncio
import time
import uuid
from typing import List, Optional

from semantic_indexer.config import BatchSettings, Settings, WriterSettings
from semantic_indexer.models.batch import RunSummary
from semantic_indexer.models.chunk import Chunk
from semantic_indexer.services.batch_scheduler import BatchScheduler, ProgressFn, SleepFn
from semantic_indexer.services.chunk_source import ChunkSource, JsonDirectoryChunkSource
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.services.store_writer import VectorStoreWriter
from semantic_indexer.utils.errors import (
    BatchFailedError,
    FatalError,
    IndexerException,
    PipelineCancelled,
)
from semantic_indexer.utils.logging import get_logger, set_run_id

logger = get_logger("pipeline")

DEFAULT_MAX_DOCUMENTS = 1000


class IngestionPipeline:
    """
    Orchestrates one ingestion run.

    The vector store is opened for the duration of ``run`` and closed on every
    exit path. When a run fails, the exception raised carries the
    ``RunSummary`` built so far in its ``summary`` attribute.
    """

    def __init__(
        self,
        source: ChunkSource,
        embedder: EmbeddingService,
        store: VectorStore,
        batch_settings: BatchSettings,
        writer_settings: WriterSettings,
        sleep: SleepFn = asyncio.sleep,
        on_progress: Optional[ProgressFn] = None,
    ) -> None:
        self._source = source
        self._embedder = embedder
        self._store = store
        self._writer = VectorStoreWriter(store, writer_settings, sleep=sleep)
        self._scheduler = BatchScheduler(embedder, self._writer, batch_settings, sleep=sleep)
        self._on_progress = on_progress

    async def run(
        self,
        max_documents: Optional[int] = DEFAULT_MAX_DOCUMENTS,
        batch_size: Optional[int] = None,
        skip_existing: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """
        Embed and store up to ``max_documents`` chunks.

        Args:
            max_documents: Upper bound on chunks taken from the source; None for all
            batch_size: Overrides the configured batch size
            skip_existing: Skip embedding when the store already holds enough documents
            cancel_event: Set to stop the run at the next batch boundary

        Returns:
            RunSummary of a completed or skipped run

        Raises:
            IndexerException: With ``summary`` attached
        """
        set_run_id(uuid.uuid4().hex[:12])
        summary = RunSummary()
        started = time.monotonic()
        chunks: List[Chunk] = []

        try:
            chunks = self._load_chunks(max_documents)
            summary.total_chunks = len(chunks)

            async with self._store:
                try:
                    await self._execute(chunks, summary, batch_size, skip_existing, cancel_event)
                except IndexerException:
                    summary.final_store_count = await self._count_if_possible()
                    raise
        except IndexerException as e:
            self._record_failure(summary, e, chunks)
            summary.elapsed_seconds = time.monotonic() - started
            e.summary = summary
            raise

        summary.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"Run finished: processed={summary.processed}/{summary.total_chunks}, "
            f"retries={summary.retries}, store_count={summary.final_store_count}, "
            f"elapsed={summary.elapsed_seconds:.1f}s"
        )
        return summary

    def _load_chunks(self, max_documents: Optional[int]) -> List[Chunk]:
        if max_documents is not None and max_documents < 1:
            raise FatalError("max_documents must be >= 1", code="INVALID_ARGUMENT", status_code=400)

        chunks = self._source.list_chunks()
        if max_documents is not None and len(chunks) > max_documents:
            logger.info(f"Limiting run to {max_documents} of {len(chunks)} chunks")
            chunks = chunks[:max_documents]
        return chunks

    async def _execute(
        self,
        chunks: List[Chunk],
        summary: RunSummary,
        batch_size: Optional[int],
        skip_existing: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if not await self._store.ping():
            raise FatalError("Vector store is unreachable", source="vector_store")

        if not chunks:
            logger.warning("Chunk source is empty; nothing to index")
            summary.final_store_count = await self._store.count()
            return

        if skip_existing:
            skip, stored = await self._writer.should_skip(len(chunks))
            if skip:
                logger.info(f"Store already holds {stored} documents; skipping embedding")
                summary.skipped = True
                summary.final_store_count = stored
                return

        if not await self._embedder.test_connection():
            raise FatalError("Embedding API connectivity probe failed", source="embedding")

        await self._scheduler.run(
            chunks,
            batch_size=batch_size,
            summary=summary,
            cancel_event=cancel_event,
            on_progress=self._on_progress,
        )

        summary.final_store_count = await self._store.count()
        if summary.final_store_count is None or summary.final_store_count < summary.processed:
            logger.warning(
                f"Final store count below processed chunks: "
                f"stored={summary.final_store_count}, processed={summary.processed}"
            )
        else:
            logger.info(f"Final store count verified: {summary.final_store_count}")

    async def _count_if_possible(self) -> Optional[int]:
        try:
            return await self._store.count()
        except IndexerException as e:
            logger.warning(f"Could not read final store count: {e.message}")
            return None

    @staticmethod
    def _record_failure(summary: RunSummary, error: IndexerException, chunks: List[Chunk]) -> None:
        if isinstance(error, PipelineCancelled):
            summary.cancelled = True
            summary.pending_chunk_ids = [c.id for c in chunks[summary.processed :]]
            logger.warning(f"Run cancelled: {error.message}")
            return

        summary.error = f"{error.code}: {error.message}"
        if isinstance(error, BatchFailedError):
            summary.pending_chunk_ids = list(error.pending_chunk_ids)
        else:
            summary.pending_chunk_ids = [c.id for c in chunks[summary.processed :]]
        logger.error(f"Run failed: {summary.error}")


def build_pipeline(
    settings: Settings,
    chunks_dir: Optional[str] = None,
    source: Optional[ChunkSource] = None,
    on_progress: Optional[ProgressFn] = None,
) -> IngestionPipeline:
    """Wire an IngestionPipeline from settings."""
    if source is None:
        source = JsonDirectoryChunkSource(chunks_dir or settings.chunks.directory)
    return IngestionPipeline(
        source=source,
        embedder=EmbeddingService(settings.embedding),
        store=VectorStore(settings.qdrant),
        batch_settings=settings.batch,
        writer_settings=settings.writer,
        on_progress=on_progress,
    )
