"""Search ranking engine over the vector store."""

from typing import Any, Dict, List, Optional

from semantic_indexer.config import SearchSettings
from semantic_indexer.models.search import (
    HealthStatus,
    Relevance,
    ScoredDocument,
    SearchOptions,
    SearchResult,
    SearchStatistics,
    StoredDocument,
)
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.utils.errors import IndexerException
from semantic_indexer.utils.logging import get_logger

logger = get_logger("search_service")

HIGH_RELEVANCE_MAX_DISTANCE = 0.3
MEDIUM_RELEVANCE_MAX_DISTANCE = 0.6

SIMILAR_CONCEPTS_DEFAULT_RESULTS = 10


def classify_relevance(distance: float) -> Relevance:
    """Bucket a distance into a relevance tier; boundaries belong to the better tier."""
    if distance <= HIGH_RELEVANCE_MAX_DISTANCE:
        return Relevance.HIGH
    if distance <= MEDIUM_RELEVANCE_MAX_DISTANCE:
        return Relevance.MEDIUM
    return Relevance.LOW


def matches_metadata(
    metadata: Dict[str, Any],
    metadata_filter: Optional[Dict[str, Any]] = None,
    source_contains: Optional[str] = None,
) -> bool:
    """Exact match on every filter key, plus an optional file-name substring."""
    if metadata_filter:
        for key, value in metadata_filter.items():
            if metadata.get(key) != value:
                return False

    if source_contains:
        name = metadata.get("file_name") or metadata.get("source") or ""
        if source_contains not in str(name):
            return False

    return True


class SearchEngine:
    """
    Query-time ranking: embed, retrieve, tier, filter.

    Results keep the order the store returned them in. The threshold is an
    upper bound on distance, so raising it never removes a result.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        store: VectorStore,
        settings: SearchSettings,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._settings = settings

    def default_options(self, **overrides: Any) -> SearchOptions:
        values: Dict[str, Any] = {
            "max_results": self._settings.default_max_results,
            "score_threshold": self._settings.default_score_threshold,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SearchOptions(**values)

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Run a semantic search.

        Args:
            query: Free-text query
            options: Result count, distance threshold and metadata filters

        Returns:
            Results with distance <= threshold, in store order
        """
        options = options or self.default_options()
        logger.info(
            f"Search: query_length={len(query)}, max_results={options.max_results}, "
            f"threshold={options.score_threshold}"
        )

        vector = await self._embedder.embed_query(query)
        candidates = await self._store.knn_search(vector, options.max_results)
        results = rank_candidates(candidates, options)

        logger.info(f"Search complete: candidates={len(candidates)}, results={len(results)}")
        return results

    async def search_with_context(
        self,
        query: str,
        context: str = "",
        options: Optional[SearchOptions] = None,
    ) -> List[SearchResult]:
        """Search with extra context text appended to the query."""
        enhanced_query = f"{query} {context}" if context else query
        return await self.search(enhanced_query, options)

    async def search_similar_concepts(
        self,
        concept: str,
        options: Optional[SearchOptions] = None,
    ) -> List[SearchResult]:
        """Broader search for material related to a concept."""
        if options is None:
            options = self.default_options(max_results=SIMILAR_CONCEPTS_DEFAULT_RESULTS)
        expanded_query = f"concepts related to {concept} definitions examples"
        return await self.search(expanded_query, options)

    async def get_document_by_id(self, chunk_id: str) -> Optional[StoredDocument]:
        return await self._store.retrieve(chunk_id)

    async def get_statistics(self) -> SearchStatistics:
        """Index size and identity; unknown values when the store is unreachable."""
        try:
            total = await self._store.count()
        except IndexerException as e:
            logger.warning(f"Could not read index statistics: {e.message}")
            return SearchStatistics(embedding_model=self._embedder.model_name)

        return SearchStatistics(
            total_documents=total or 0,
            collection_name=self._store.collection_name,
            embedding_model=self._embedder.model_name,
        )

    async def health_check(self) -> HealthStatus:
        return HealthStatus(
            vector_store=await self._store.ping(),
            embedding=await self._embedder.test_connection(),
        )


def rank_candidates(candidates: List[ScoredDocument], options: SearchOptions) -> List[SearchResult]:
    """Tier, threshold and filter nearest-neighbour candidates without reordering."""
    results: List[SearchResult] = []
    for candidate in candidates:
        if candidate.distance > options.score_threshold:
            continue
        if not matches_metadata(candidate.document.metadata, options.metadata_filter, options.source_contains):
            continue
        results.append(
            SearchResult(
                document=candidate.document,
                score=candidate.distance,
                relevance=classify_relevance(candidate.distance),
            )
        )
    return results
