"""Pytest configuration and fixtures for semantic indexer tests."""

import math
import os
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

# Keep the developer's environment out of settings built in tests
for _var in ("OPENAI_API_KEY", "OPEN_AI_API_KEY", "ENVIRONMENT", "LOG_LEVEL", "BATCH_BATCH_SIZE"):
    os.environ.pop(_var, None)

from semantic_indexer.config import (  # noqa: E402
    BatchSettings,
    EmbeddingSettings,
    QdrantSettings,
    SearchSettings,
    WriterSettings,
)
from semantic_indexer.models.chunk import Chunk, ChunkMetadata  # noqa: E402

DIMENSION = 4


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeEmbeddingsAPI:
    """Stands in for ``AsyncOpenAI().embeddings``.

    ``failures`` maps 1-based call numbers to the exception raised by that call.
    """

    def __init__(self, dimension: int = DIMENSION, failures: Optional[Dict[int, Exception]] = None):
        self.dimension = dimension
        self.failures = dict(failures or {})
        self.calls: List[List[str]] = []

    async def create(self, model: str, input: List[str]):
        self.calls.append(list(input))
        failure = self.failures.get(len(self.calls))
        if failure is not None:
            raise failure
        data = [
            SimpleNamespace(index=i, embedding=_vector_for(text, self.dimension))
            for i, text in enumerate(input)
        ]
        # Out of order on purpose; callers must sort by index
        return SimpleNamespace(data=list(reversed(data)))


class FakeOpenAI:
    def __init__(self, **kwargs: Any):
        self.embeddings = FakeEmbeddingsAPI(**kwargs)


def _vector_for(text: str, dimension: int) -> List[float]:
    seed = sum(ord(c) for c in text) or 1
    return [float((seed * (i + 3)) % 97 + 1) for i in range(dimension)]


class FakeQdrantClient:
    """In-memory stand-in for ``qdrant_client.QdrantClient`` (single process, cosine)."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Any]] = {}
        self.upsert_calls: List[int] = []
        self.closed = False
        self.fail_with: Optional[Exception] = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def get_collections(self):
        self._check()
        return SimpleNamespace(collections=[SimpleNamespace(name=n) for n in self.collections])

    def collection_exists(self, collection_name: str) -> bool:
        self._check()
        return collection_name in self.collections

    def create_collection(self, collection_name: str, vectors_config):
        self.collections[collection_name] = {"size": vectors_config.size, "points": {}}

    def get_collection(self, collection_name: str):
        size = self.collections[collection_name]["size"]
        return SimpleNamespace(config=SimpleNamespace(params=SimpleNamespace(vectors=SimpleNamespace(size=size))))

    def delete_collection(self, collection_name: str):
        self.collections.pop(collection_name, None)

    def upsert(self, collection_name: str, points, wait: bool = True):
        self._check()
        self.upsert_calls.append(len(points))
        stored = self.collections[collection_name]["points"]
        for point in points:
            stored[str(point.id)] = point

    def count(self, collection_name: str, exact: bool = True):
        return SimpleNamespace(count=len(self.collections[collection_name]["points"]))

    def query_points(self, collection_name: str, query, limit: int, with_payload: bool = True):
        points = list(self.collections[collection_name]["points"].values())
        scored = [
            SimpleNamespace(id=p.id, score=_cosine(query, p.vector), payload=p.payload)
            for p in points
        ]
        scored.sort(key=lambda p: p.score, reverse=True)
        return SimpleNamespace(points=scored[:limit])

    def retrieve(self, collection_name: str, ids, with_payload: bool = True):
        stored = self.collections[collection_name]["points"]
        return [stored[str(i)] for i in ids if str(i) in stored]

    def close(self):
        self.closed = True


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def make_chunks(count: int, source: str = "docs/guide.pdf", file_name: str = "guide.pdf") -> List[Chunk]:
    return [
        Chunk(
            id=f"chunk-{i:04d}",
            content=f"Chunk {i} talks about topic {i % 7}.",
            metadata=ChunkMetadata(
                source=source,
                page_index=i // 3,
                chunk_index=i,
                total_chunks=count,
                file_name=file_name,
            ),
        )
        for i in range(count)
    ]


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings(
        openai_api_key="sk-test",
        embedding_model="text-embedding-3-small",
        embedding_dimension=DIMENSION,
        embedding_batch_size=25,
    )


@pytest.fixture
def qdrant_settings() -> QdrantSettings:
    return QdrantSettings(url="http://qdrant.test:6333", collection_name="test_chunks", timeout=5.0)


@pytest.fixture
def batch_settings() -> BatchSettings:
    return BatchSettings(batch_size=25, max_retries=3)


@pytest.fixture
def writer_settings() -> WriterSettings:
    return WriterSettings(sub_batch_size=50, pause_seconds=0.15)


@pytest.fixture
def search_settings() -> SearchSettings:
    return SearchSettings()


@pytest.fixture
def fake_qdrant() -> FakeQdrantClient:
    return FakeQdrantClient()
