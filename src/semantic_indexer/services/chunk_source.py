"""Chunk sources: ordered access to the chunks produced upstream."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from semantic_indexer.models.chunk import Chunk, ChunkMetadata
from semantic_indexer.utils.errors import FatalError, NotFoundError
from semantic_indexer.utils.logging import get_logger

logger = get_logger("chunk_source")

# camelCase keys written by the chunk splitter, mapped to ChunkMetadata fields
_METADATA_KEYS = {
    "source": "source",
    "page": "page_index",
    "pageIndex": "page_index",
    "page_index": "page_index",
    "chunkIndex": "chunk_index",
    "chunk_index": "chunk_index",
    "totalChunks": "total_chunks",
    "total_chunks": "total_chunks",
    "fileName": "file_name",
    "file_name": "file_name",
}


class ChunkSource(Protocol):
    """Ordered, id-addressable collection of chunks."""

    def list_chunks(self) -> List[Chunk]:
        ...

    def read_chunk(self, chunk_id: str) -> Chunk:
        ...


def parse_chunk(data: Dict[str, Any], file_name: Optional[str] = None) -> Chunk:
    """Build a Chunk from the JSON shape written by the chunk splitter."""
    if not isinstance(data, dict):
        raise FatalError(
            f"Chunk must be a JSON object, got {type(data).__name__}",
            source="chunk_source",
            details={"file": file_name},
        )
    raw_metadata = data.get("metadata") or {}
    if not isinstance(raw_metadata, dict):
        raise FatalError(
            "Chunk metadata must be a JSON object",
            source="chunk_source",
            details={"file": file_name},
        )
    fields: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in raw_metadata.items():
        if key in _METADATA_KEYS:
            fields[_METADATA_KEYS[key]] = value
        else:
            extra[key] = value
    if file_name and "file_name" not in fields:
        fields["file_name"] = file_name

    return Chunk(
        id=data["id"],
        content=data["content"],
        metadata=ChunkMetadata(**fields, extra=extra),
    )


class InMemoryChunkSource:
    """Chunk source over an already materialised sequence."""

    def __init__(self, chunks: Sequence[Chunk]) -> None:
        self._chunks = list(chunks)
        self._by_id = _index_by_id(self._chunks)

    def list_chunks(self) -> List[Chunk]:
        return list(self._chunks)

    def read_chunk(self, chunk_id: str) -> Chunk:
        try:
            return self._by_id[chunk_id]
        except KeyError:
            raise NotFoundError("Chunk", chunk_id) from None


class JsonDirectoryChunkSource:
    """
    Chunk source backed by a directory of ``*.json`` files, one chunk per file.

    Files are read in natural file-name order, so ``guide_chunk_2.json``
    comes before ``guide_chunk_10.json``.
    """

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)
        self._chunks: Optional[List[Chunk]] = None
        self._by_id: Dict[str, Chunk] = {}

    def _load(self) -> List[Chunk]:
        if self._chunks is not None:
            return self._chunks

        if not self._directory.is_dir():
            raise FatalError(
                f"Chunk directory does not exist: {self._directory}",
                source="chunk_source",
            )

        chunks: List[Chunk] = []
        for path in sorted(self._directory.glob("*.json"), key=lambda p: _natural_key(p.name)):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                chunks.append(parse_chunk(data, file_name=path.name))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
                raise FatalError(
                    f"Malformed chunk file: {path.name}",
                    source="chunk_source",
                    details={"file": str(path), "error": str(e)},
                ) from e

        self._by_id = _index_by_id(chunks)
        self._chunks = chunks
        logger.info(f"Loaded {len(chunks)} chunks from {self._directory}")
        return chunks

    def list_chunks(self) -> List[Chunk]:
        return list(self._load())

    def read_chunk(self, chunk_id: str) -> Chunk:
        self._load()
        try:
            return self._by_id[chunk_id]
        except KeyError:
            raise NotFoundError("Chunk", chunk_id) from None


def _natural_key(name: str) -> List[Any]:
    return [(0, int(part), "") if part.isdigit() else (1, 0, part) for part in re.split(r"(\d+)", name)]


def _index_by_id(chunks: Sequence[Chunk]) -> Dict[str, Chunk]:
    by_id: Dict[str, Chunk] = {}
    for chunk in chunks:
        if chunk.id in by_id:
            raise FatalError(
                f"Duplicate chunk id: {chunk.id}",
                source="chunk_source",
                details={"chunk_id": chunk.id},
            )
        by_id[chunk.id] = chunk
    return by_id
