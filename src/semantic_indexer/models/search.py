"""Search request and result models."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Relevance(str, Enum):
    """Coarse relevance tier derived from a distance score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StoredDocument(BaseModel):
    """A document as returned by the vector store."""

    id: str = Field(..., description="Chunk identifier")
    content: str = Field(..., description="Chunk text content")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Stored payload metadata")


class ScoredDocument(BaseModel):
    """A nearest-neighbour candidate; lower distance is better."""

    document: StoredDocument
    distance: float


class SearchResult(BaseModel):
    """A ranked, filtered search hit."""

    document: StoredDocument
    score: float = Field(..., description="Raw distance reported by the store (lower is better)")
    relevance: Relevance


class SearchOptions(BaseModel):
    """Per-query knobs for the search engine."""

    max_results: int = Field(default=5, ge=1, description="Candidates requested from the store")
    score_threshold: float = Field(default=0.8, ge=0, le=1, description="Maximum distance kept")
    metadata_filter: Optional[Dict[str, Any]] = Field(
        default=None, description="Exact-match predicate over metadata fields"
    )
    source_contains: Optional[str] = Field(
        default=None, description="Substring the file name (or source) must contain"
    )


class SearchStatistics(BaseModel):
    """Snapshot of the searchable index."""

    total_documents: int = 0
    collection_name: str = "unknown"
    embedding_model: str = "unknown"


class HealthStatus(BaseModel):
    """Connectivity of the external collaborators."""

    vector_store: bool = False
    embedding: bool = False

    @property
    def healthy(self) -> bool:
        return self.vector_store and self.embedding
