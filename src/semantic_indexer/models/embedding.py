"""Embedding models for the indexer."""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from semantic_indexer.models.chunk import Chunk, ChunkMetadata


class EmbeddedRecord(BaseModel):
    """A chunk together with its embedding vector, ready to be stored."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Chunk identifier")
    content: str = Field(..., description="Chunk text content")
    metadata: ChunkMetadata = Field(..., description="Chunk metadata")
    vector: List[float] = Field(..., min_length=1, description="Embedding vector")
    embedding_model: str = Field(..., description="Model that produced the vector")
    embedding_created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the vector was produced",
    )

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float], model: str) -> "EmbeddedRecord":
        return cls(
            id=chunk.id,
            content=chunk.content,
            metadata=chunk.metadata,
            vector=vector,
            embedding_model=model,
        )

    @property
    def dimension(self) -> int:
        return len(self.vector)
