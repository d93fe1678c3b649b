"""Chunk models consumed by the indexer."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkMetadata(BaseModel):
    """Position and provenance of a chunk within its source document."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Source document path or name")
    page_index: Optional[int] = Field(default=None, ge=0, description="Page the chunk starts on, when known")
    chunk_index: int = Field(..., ge=0, description="0-based position of the chunk in the document")
    total_chunks: int = Field(..., ge=1, description="Number of chunks the document was split into")
    file_name: Optional[str] = Field(default=None, description="File the chunk was read from")
    extra: Dict[str, Any] = Field(
        default_factory=dict, description="Variable keys that do not fit the fixed fields"
    )

    def as_payload(self) -> Dict[str, Any]:
        """Flatten into the key/value map stored next to the vector."""
        payload: Dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "source": self.source,
                "page_index": self.page_index,
                "chunk_index": self.chunk_index,
                "total_chunks": self.total_chunks,
                "file_name": self.file_name,
            }
        )
        return payload


class Chunk(BaseModel):
    """A bounded unit of source text with stable identity."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable, unique chunk identifier")
    content: str = Field(..., description="Chunk text content")
    metadata: ChunkMetadata = Field(..., description="Position metadata")
