"""Qdrant integration: the vector store behind the writer and the search engine."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import Distance, PointStruct, VectorParams

from semantic_indexer.config import QdrantSettings
from semantic_indexer.models.embedding import EmbeddedRecord
from semantic_indexer.models.search import ScoredDocument, StoredDocument
from semantic_indexer.utils.errors import (
    DimensionMismatchError,
    FatalError,
    IndexerException,
    TransientError,
)
from semantic_indexer.utils.logging import get_logger

logger = get_logger("qdrant_service")

SOURCE = "vector_store"

# Deterministic namespace for generating stable point IDs from chunk ids
_POINT_ID_NAMESPACE = uuid.UUID("3f0e5a4c-8d2b-4e51-9a67-1c2d3b4a5f60")

T = TypeVar("T")


def classify_store_error(exc: BaseException, operation: str) -> IndexerException:
    """Map a Qdrant failure onto the retry taxonomy."""
    if isinstance(exc, IndexerException):
        return exc

    details: Dict[str, Any] = {"operation": operation, "error": str(exc)}

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientError(f"Vector store {operation} timed out", source=SOURCE, details=details)

    if isinstance(exc, ResponseHandlingException):
        return TransientError(f"Vector store {operation} failed: {exc}", source=SOURCE, details=details)

    if isinstance(exc, UnexpectedResponse):
        status = exc.status_code or 0
        details["status_code"] = status
        if status >= 500 or status in (408, 429):
            return TransientError(f"Vector store {operation} failed ({status})", source=SOURCE, details=details)
        return FatalError(f"Vector store rejected {operation} ({status})", source=SOURCE, details=details)

    if isinstance(exc, (ConnectionError, OSError)):
        return TransientError(f"Vector store {operation} connection failure", source=SOURCE, details=details)

    return FatalError(f"Vector store {operation} failed: {exc}", source=SOURCE, details=details)


def make_point_id(chunk_id: str) -> str:
    """Create a stable UUID point id for a chunk, so re-submission upserts."""
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, chunk_id))


class VectorStore:
    """
    Vector store over a single Qdrant collection.

    Use as an async context manager: the client is opened once on entry and
    closed on exit, whether the enclosed work succeeded or raised. Every call
    runs in a worker thread under its own timeout.

    Qdrant reports cosine *similarity*; this class converts it to cosine
    distance (``1 - similarity``) so callers always see lower-is-better.
    """

    def __init__(self, settings: QdrantSettings, client: Optional[QdrantClient] = None) -> None:
        self._settings = settings
        self._client = client
        self.collection_name = settings.collection_name

    async def __aenter__(self) -> "VectorStore":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_client(self) -> QdrantClient:
        if self._client is not None:
            return self._client

        self._client = QdrantClient(
            url=self._settings.url,
            api_key=self._settings.api_key,
            timeout=int(self._settings.timeout),
        )
        logger.info(f"Qdrant client opened: url={self._settings.url}, collection={self.collection_name}")
        return self._client

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking client call in a thread with an independent timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._settings.timeout)
        except Exception as e:
            raise classify_store_error(e, operation) from e

    async def ensure_collection(self, vector_size: int) -> None:
        """Ensure the collection exists with the right vector size."""

        def _ensure() -> None:
            client = self._get_client()
            if not client.collection_exists(self.collection_name):
                client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
                )
                logger.info(f"Qdrant collection created: {self.collection_name} (vector_size={vector_size})")
                return

            info = client.get_collection(self.collection_name)
            vectors = info.config.params.vectors
            current_size = getattr(vectors, "size", None)
            if current_size is not None and int(current_size) != int(vector_size):
                raise DimensionMismatchError(
                    expected=int(current_size),
                    actual=int(vector_size),
                    source=SOURCE,
                    details={"collection": self.collection_name},
                )

        await self._call("ensure_collection", _ensure)

    async def bulk_insert(self, records: Sequence[EmbeddedRecord]) -> List[str]:
        """Upsert records and return their point ids."""
        if not records:
            return []

        def _upsert() -> List[str]:
            points: List[PointStruct] = []
            for record in records:
                payload: Dict[str, Any] = {
                    "chunk_id": record.id,
                    "content": record.content,
                    "metadata": record.metadata.as_payload(),
                    "embedding_model": record.embedding_model,
                    "embedding_created_at": record.embedding_created_at.isoformat(),
                }
                points.append(PointStruct(id=make_point_id(record.id), vector=record.vector, payload=payload))

            self._get_client().upsert(collection_name=self.collection_name, points=points, wait=True)
            return [str(p.id) for p in points]

        point_ids = await self._call("bulk_insert", _upsert)
        logger.debug(f"Qdrant upsert complete: collection={self.collection_name}, points={len(point_ids)}")
        return point_ids

    async def count(self) -> Optional[int]:
        """Number of stored documents, or None when the collection does not exist."""

        def _count() -> Optional[int]:
            client = self._get_client()
            if not client.collection_exists(self.collection_name):
                return None
            return client.count(collection_name=self.collection_name, exact=True).count

        return await self._call("count", _count)

    async def knn_search(self, vector: Sequence[float], k: int) -> List[ScoredDocument]:
        """Nearest neighbours of ``vector``, best first, with cosine distances."""

        def _search() -> List[ScoredDocument]:
            client = self._get_client()
            if not client.collection_exists(self.collection_name):
                return []
            response = client.query_points(
                collection_name=self.collection_name,
                query=list(vector),
                limit=k,
                with_payload=True,
            )
            return [_to_scored_document(point) for point in response.points]

        return await self._call("knn_search", _search)

    async def retrieve(self, chunk_id: str) -> Optional[StoredDocument]:
        """Fetch one stored document by chunk id."""

        def _retrieve() -> Optional[StoredDocument]:
            client = self._get_client()
            if not client.collection_exists(self.collection_name):
                return None
            points = client.retrieve(
                collection_name=self.collection_name,
                ids=[make_point_id(chunk_id)],
                with_payload=True,
            )
            if not points:
                return None
            return _to_stored_document(points[0].id, points[0].payload)

        return await self._call("retrieve", _retrieve)

    async def ping(self) -> bool:
        """Connectivity check; never raises."""
        try:
            await self._call("ping", lambda: self._get_client().get_collections())
        except IndexerException as e:
            logger.warning(f"Qdrant connection check failed: {e.message}")
            return False
        return True

    async def delete_collection(self) -> None:
        """Drop the collection and every vector in it."""
        await self._call(
            "delete_collection",
            lambda: self._get_client().delete_collection(collection_name=self.collection_name),
        )
        logger.info(f"Deleted Qdrant collection: {self.collection_name}")

    async def close(self) -> None:
        """Release the client. Safe to call more than once."""
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await asyncio.to_thread(client.close)
            logger.info("Qdrant client closed")
        except Exception as e:
            logger.error(f"Error closing Qdrant client: {e}", exc_info=True)


def _to_stored_document(point_id: Any, payload: Optional[Dict[str, Any]]) -> StoredDocument:
    payload = payload or {}
    return StoredDocument(
        id=str(payload.get("chunk_id", point_id)),
        content=payload.get("content", ""),
        metadata=dict(payload.get("metadata") or {}),
    )


def _to_scored_document(point: Any) -> ScoredDocument:
    return ScoredDocument(
        document=_to_stored_document(point.id, point.payload),
        distance=1.0 - float(point.score),
    )
