"""Vector store writer: persists embedded records in paced sub-batches."""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from semantic_indexer.config import WriterSettings
from semantic_indexer.models.batch import WriteReport
from semantic_indexer.models.embedding import EmbeddedRecord
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.utils.logging import get_logger

logger = get_logger("store_writer")

SleepFn = Callable[[float], Awaitable[None]]


class VectorStoreWriter:
    """
    Write EmbeddedRecords to the vector store.

    Each sub-batch is one bulk insert followed by a document count query; a
    count lower than expected is logged as a warning and the write goes on.
    The writer never deduplicates: re-submitting a chunk id relies on the
    store's upsert semantics.
    """

    def __init__(
        self,
        store: VectorStore,
        settings: WriterSettings,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self._sleep = sleep
        self._collection_ready = False

    async def write(
        self,
        records: Sequence[EmbeddedRecord],
        expected_before: int = 0,
    ) -> WriteReport:
        """
        Persist records in sub-batches.

        Args:
            records: Non-empty list of records, in order
            expected_before: Documents the store should already hold before this write

        Returns:
            WriteReport with the last observed store count
        """
        if not records:
            raise ValueError("No records to write")

        if not self._collection_ready:
            await self._store.ensure_collection(records[0].dimension)
            self._collection_ready = True

        report = WriteReport()
        size = self._settings.sub_batch_size
        total_sub_batches = (len(records) + size - 1) // size

        for sub_index, start in enumerate(range(0, len(records), size), start=1):
            sub_batch = records[start : start + size]
            await self._store.bulk_insert(sub_batch)
            report.written += len(sub_batch)
            report.sub_batches += 1

            expected = expected_before + report.written
            stored = await self._store.count()
            report.stored_count = stored
            if stored is None or stored < expected:
                report.count_mismatches += 1
                logger.warning(
                    f"Store count below expectation after sub-batch {sub_index}/{total_sub_batches}: "
                    f"expected={expected}, stored={stored}"
                )
            else:
                logger.debug(
                    f"Sub-batch {sub_index}/{total_sub_batches} stored: "
                    f"records={len(sub_batch)}, store_count={stored}"
                )

            if sub_index < total_sub_batches and self._settings.pause_seconds > 0:
                await self._sleep(self._settings.pause_seconds)

        return report

    async def stored_count(self) -> Optional[int]:
        return await self._store.count()

    async def should_skip(self, expected_count: int) -> Tuple[bool, int]:
        """
        Decide whether embedding can be skipped because the store looks complete.

        Compares aggregate counts only; it does not verify which chunks are stored.
        """
        stored = await self._store.count() or 0
        skip = expected_count > 0 and stored >= expected_count
        logger.info(
            f"Skip-existing check: stored={stored}, expected={expected_count}, skip={skip}"
        )
        return skip, stored
