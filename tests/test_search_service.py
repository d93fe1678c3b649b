"""Tests for the search ranking engine."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from semantic_indexer.models.search import Relevance, ScoredDocument, SearchOptions, StoredDocument
from semantic_indexer.services.search_service import (
    SearchEngine,
    classify_relevance,
    matches_metadata,
    rank_candidates,
)
from semantic_indexer.utils.errors import TransientError


def _candidate(distance: float, doc_id: str = None, **metadata) -> ScoredDocument:
    return ScoredDocument(
        document=StoredDocument(
            id=doc_id or f"doc-{distance}",
            content=f"content {distance}",
            metadata={"file_name": "guide.pdf", "source": "docs/guide.pdf", **metadata},
        ),
        distance=distance,
    )


@pytest.fixture
def mock_embedder():
    embedder = MagicMock()
    embedder.model_name = "text-embedding-3-small"
    embedder.embed_query = AsyncMock(return_value=[0.1, 0.2, 0.3, 0.4])
    embedder.test_connection = AsyncMock(return_value=True)
    return embedder


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.collection_name = "test_chunks"
    store.knn_search = AsyncMock(return_value=[])
    store.count = AsyncMock(return_value=0)
    store.retrieve = AsyncMock(return_value=None)
    store.ping = AsyncMock(return_value=True)
    return store


@pytest.fixture
def engine(mock_embedder, mock_store, search_settings):
    return SearchEngine(mock_embedder, mock_store, search_settings)


class TestClassifyRelevance:
    """Test tier boundaries."""

    @pytest.mark.parametrize(
        "distance,expected",
        [
            (0.0, Relevance.HIGH),
            (0.3, Relevance.HIGH),
            (0.30001, Relevance.MEDIUM),
            (0.6, Relevance.MEDIUM),
            (0.60001, Relevance.LOW),
            (1.5, Relevance.LOW),
        ],
    )
    def test_boundaries_belong_to_better_tier(self, distance, expected):
        assert classify_relevance(distance) == expected


class TestRankCandidates:
    """Test thresholding and filtering."""

    def test_threshold_scenario(self):
        """Test distances [0.1, 0.4, 0.55, 0.9] under threshold 0.5."""
        candidates = [_candidate(d) for d in (0.1, 0.4, 0.55, 0.9)]

        results = rank_candidates(candidates, SearchOptions(max_results=5, score_threshold=0.5))

        assert [(r.score, r.relevance) for r in results] == [
            (0.1, Relevance.HIGH),
            (0.4, Relevance.MEDIUM),
        ]

    def test_threshold_is_monotonic(self):
        """Test raising the threshold never removes a result."""
        candidates = [_candidate(d) for d in (0.05, 0.2, 0.35, 0.5, 0.65, 0.8, 0.95)]
        previous = set()
        for step in range(11):
            threshold = step / 10
            ids = {r.document.id for r in rank_candidates(candidates, SearchOptions(score_threshold=threshold))}
            assert previous <= ids
            previous = ids

    def test_store_order_is_kept(self):
        """Test results are not re-sorted."""
        candidates = [_candidate(0.4), _candidate(0.1), _candidate(0.2)]

        results = rank_candidates(candidates, SearchOptions(score_threshold=1.0))

        assert [r.score for r in results] == [0.4, 0.1, 0.2]

    def test_metadata_filter(self):
        candidates = [_candidate(0.1, "a", chunk_index=0), _candidate(0.2, "b", chunk_index=1)]

        results = rank_candidates(candidates, SearchOptions(score_threshold=1.0, metadata_filter={"chunk_index": 1}))

        assert [r.document.id for r in results] == ["b"]

    def test_empty_candidates(self):
        assert rank_candidates([], SearchOptions()) == []


class TestMatchesMetadata:
    """Test metadata predicates."""

    def test_source_contains_matches_file_name(self):
        assert matches_metadata({"file_name": "annual-report.pdf"}, source_contains="report")
        assert not matches_metadata({"file_name": "annual-report.pdf"}, source_contains="invoice")

    def test_source_contains_falls_back_to_source(self):
        assert matches_metadata({"file_name": None, "source": "docs/manual.pdf"}, source_contains="manual")

    def test_exact_match_requires_every_key(self):
        metadata = {"file_name": "a.pdf", "page_index": 2}
        assert matches_metadata(metadata, {"page_index": 2, "file_name": "a.pdf"})
        assert not matches_metadata(metadata, {"page_index": 2, "file_name": "b.pdf"})
        assert not matches_metadata(metadata, {"missing": "x"})


class TestSearchEngine:
    """Test suite for SearchEngine."""

    @pytest.mark.asyncio
    async def test_search(self, engine, mock_embedder, mock_store):
        mock_store.knn_search.return_value = [_candidate(d) for d in (0.1, 0.4, 0.55, 0.9)]

        results = await engine.search("attention", SearchOptions(max_results=4, score_threshold=0.5))

        mock_embedder.embed_query.assert_awaited_once_with("attention")
        mock_store.knn_search.assert_awaited_once_with([0.1, 0.2, 0.3, 0.4], 4)
        assert [r.score for r in results] == [0.1, 0.4]

    @pytest.mark.asyncio
    async def test_search_defaults(self, engine, mock_store):
        """Test default options come from settings."""
        mock_store.knn_search.return_value = [_candidate(0.79), _candidate(0.81)]

        results = await engine.search("attention")

        mock_store.knn_search.assert_awaited_once_with([0.1, 0.2, 0.3, 0.4], 5)
        assert [r.score for r in results] == [0.79]

    @pytest.mark.asyncio
    async def test_empty_store(self, engine):
        assert await engine.search("anything") == []

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, engine, mock_embedder):
        mock_embedder.embed_query.side_effect = TransientError("timeout", source="embedding")

        with pytest.raises(TransientError):
            await engine.search("attention")

    @pytest.mark.asyncio
    async def test_search_with_context(self, engine, mock_embedder):
        await engine.search_with_context("attention", "in transformers")
        mock_embedder.embed_query.assert_awaited_once_with("attention in transformers")

    @pytest.mark.asyncio
    async def test_search_similar_concepts(self, engine, mock_embedder, mock_store):
        """Test concept searches expand the query and widen the result count."""
        await engine.search_similar_concepts("gradient descent")

        query = mock_embedder.embed_query.await_args.args[0]
        assert "gradient descent" in query
        assert mock_store.knn_search.await_args.args[1] == 10

    @pytest.mark.asyncio
    async def test_get_document_by_id(self, engine, mock_store):
        document = StoredDocument(id="chunk-1", content="text")
        mock_store.retrieve.return_value = document

        assert await engine.get_document_by_id("chunk-1") == document
        mock_store.retrieve.assert_awaited_once_with("chunk-1")

    @pytest.mark.asyncio
    async def test_statistics(self, engine, mock_store):
        mock_store.count.return_value = 42

        stats = await engine.get_statistics()

        assert stats.total_documents == 42
        assert stats.collection_name == "test_chunks"
        assert stats.embedding_model == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_statistics_when_store_is_down(self, engine, mock_store):
        mock_store.count.side_effect = TransientError("down", source="vector_store")

        stats = await engine.get_statistics()

        assert stats.total_documents == 0
        assert stats.collection_name == "unknown"

    @pytest.mark.asyncio
    async def test_health_check(self, engine, mock_embedder):
        mock_embedder.test_connection.return_value = False

        health = await engine.health_check()

        assert health.vector_store is True
        assert health.embedding is False
        assert health.healthy is False
