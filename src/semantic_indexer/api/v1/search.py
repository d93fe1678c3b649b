"""Semantic search endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator

from semantic_indexer.api.v1.dependencies import get_app_settings, get_search_engine
from semantic_indexer.config import Settings
from semantic_indexer.models.search import SearchResult, SearchStatistics, StoredDocument
from semantic_indexer.services.search_service import SearchEngine
from semantic_indexer.utils.errors import NotFoundError
from semantic_indexer.utils.logging import get_logger

logger = get_logger("search_api")

router = APIRouter(tags=["search"])

# Filter key matched by substring against the stored file name
FILE_NAME_FILTER_KEY = "fileName"


class SearchRequest(BaseModel):
    """Search request body."""

    query: str = Field(..., min_length=1, description="Free-text query")
    max_results: Optional[int] = Field(default=None, description="Candidates to retrieve; clamped to the server cap")
    score_threshold: Optional[float] = Field(default=None, description="Maximum distance kept; clamped to [0, 1]")
    filters: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Exact-match metadata filters; 'fileName' matches by substring",
    )

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Reject whitespace-only queries."""
        v = v.strip()
        if not v:
            raise ValueError("query must not be blank")
        return v


class SearchResponse(BaseModel):
    """Search response body."""

    query: str
    total: int
    results: List[SearchResult]


@router.post("/search", response_model=SearchResponse, status_code=status.HTTP_200_OK)
async def search(
    body: SearchRequest,
    engine: SearchEngine = Depends(get_search_engine),
    settings: Settings = Depends(get_app_settings),
):
    """Run a semantic search over the indexed chunks."""
    max_results = body.max_results or settings.search.default_max_results
    max_results = max(1, min(max_results, settings.search.max_results_cap))

    threshold = body.score_threshold
    if threshold is None:
        threshold = settings.search.default_score_threshold
    threshold = min(max(threshold, 0.0), 1.0)

    filters = dict(body.filters or {})
    source_contains = filters.pop(FILE_NAME_FILTER_KEY, None)

    options = engine.default_options(
        max_results=max_results,
        score_threshold=threshold,
        metadata_filter=filters or None,
        source_contains=str(source_contains) if source_contains else None,
    )
    results = await engine.search(body.query, options)
    return SearchResponse(query=body.query, total=len(results), results=results)


@router.get("/stats", response_model=SearchStatistics, status_code=status.HTTP_200_OK)
async def statistics(engine: SearchEngine = Depends(get_search_engine)):
    """Index size, collection and embedding model."""
    return await engine.get_statistics()


@router.get("/documents/{chunk_id}", response_model=StoredDocument, status_code=status.HTTP_200_OK)
async def get_document(chunk_id: str, engine: SearchEngine = Depends(get_search_engine)):
    """Fetch a stored chunk by its id."""
    document = await engine.get_document_by_id(chunk_id)
    if document is None:
        raise NotFoundError("Document", chunk_id)
    return document
