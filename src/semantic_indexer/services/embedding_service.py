"""Embedding client: text in, fixed-length vectors out."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from semantic_indexer.config import EmbeddingSettings
from semantic_indexer.models.chunk import Chunk
from semantic_indexer.models.embedding import EmbeddedRecord
from semantic_indexer.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    FatalError,
    IndexerException,
    RateLimitedError,
    TransientError,
)
from semantic_indexer.utils.logging import get_logger

logger = get_logger("embedding_service")

SOURCE = "embedding"

_RATE_LIMIT_WORDING = ("rate limit", "rate_limit", "ratelimit", "too many requests")


def classify_embedding_error(exc: BaseException) -> IndexerException:
    """
    Map any failure of an embedding call onto the retry taxonomy.

    - rate limited: HTTP 429 or explicit rate-limit wording
    - transient: timeouts, connection failures, 5xx
    - fatal: authentication, unknown model, payload validation, anything else
    """
    if isinstance(exc, (RateLimitedError, TransientError, FatalError)):
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientError(f"Embedding request timed out: {message}", source=SOURCE)

    if isinstance(exc, openai.RateLimitError):
        return RateLimitedError(f"Embedding API rate limit: {message}", source=SOURCE)

    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(exc, openai.APIConnectionError):
        return TransientError(f"Embedding API unreachable: {message}", source=SOURCE)

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        details = {"status_code": status}
        if status == 429:
            return RateLimitedError(f"Embedding API rate limit: {message}", source=SOURCE, details=details)
        if status >= 500 or status in (408, 409):
            return TransientError(f"Embedding API error {status}: {message}", source=SOURCE, details=details)
        return FatalError(f"Embedding API rejected the request ({status}): {message}", source=SOURCE, details=details)

    if any(word in message.lower() for word in _RATE_LIMIT_WORDING):
        return RateLimitedError(f"Embedding API rate limit: {message}", source=SOURCE)

    if isinstance(exc, (ConnectionError, OSError)):
        return TransientError(f"Embedding API connection failure: {message}", source=SOURCE)

    return FatalError(f"Embedding request failed: {message}", source=SOURCE)


class EmbeddingService:
    """
    Generate embeddings through the OpenAI embeddings API.

    One request is issued per sub-batch of ``embedding_batch_size`` texts.
    SDK-side retries are disabled; the batch scheduler owns retry policy.
    """

    def __init__(self, settings: EmbeddingSettings, client: Optional[AsyncOpenAI] = None) -> None:
        self._settings = settings
        self._model_name = settings.embedding_model
        self._dimension: Optional[int] = settings.expected_dimension
        self._client = client  # lazy when not injected

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> Optional[int]:
        """Expected vector size; None until known."""
        return self._dimension

    def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client

        if not self._settings.is_configured:
            raise ConfigurationError(
                "OPENAI_API_KEY is required for embeddings",
                details={"model": self._model_name},
            )
        self._client = AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url,
            timeout=self._settings.embedding_timeout,
            max_retries=0,
        )
        return self._client

    async def _embed_batch(self, inputs: List[str]) -> List[List[float]]:
        """Embed one sub-batch of texts with a single request."""
        client = self._get_client()
        try:
            resp = await asyncio.wait_for(
                client.embeddings.create(model=self._model_name, input=inputs),
                timeout=self._settings.embedding_timeout,
            )
        except Exception as e:
            raise classify_embedding_error(e) from e

        data = sorted(resp.data, key=lambda d: d.index)
        vectors = [list(d.embedding) for d in data]
        if len(vectors) != len(inputs):
            raise TransientError(
                "Embedding response size mismatch",
                source=SOURCE,
                details={"expected": len(inputs), "got": len(vectors), "model": self._model_name},
            )
        self._check_dimensions(vectors)
        return vectors

    def _check_dimensions(self, vectors: List[List[float]]) -> None:
        if self._dimension is None and vectors:
            self._dimension = len(vectors[0])
            logger.info(f"Embedding dimension fixed from first response: {self._dimension}")
        for vector in vectors:
            if len(vector) != self._dimension:
                raise DimensionMismatchError(
                    expected=self._dimension,
                    actual=len(vector),
                    source=SOURCE,
                    details={"model": self._model_name},
                )

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts, preserving order.

        Args:
            texts: Non-empty list of strings

        Returns:
            One vector per input, positionally aligned

        Raises:
            RateLimitedError, TransientError, FatalError
        """
        if not texts:
            raise FatalError("Cannot embed an empty batch", source=SOURCE, code="EMPTY_BATCH")

        batch_size = self._settings.embedding_batch_size
        vectors: List[List[float]] = []
        for start in range(0, len(texts), batch_size):
            sub_batch = list(texts[start : start + batch_size])
            logger.debug(
                f"Embedding sub-batch: offset={start}, size={len(sub_batch)}, model={self._model_name}"
            )
            vectors.extend(await self._embed_batch(sub_batch))
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        vectors = await self._embed_batch([text])
        return vectors[0]

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> List[EmbeddedRecord]:
        """Embed chunks and wrap each vector into an EmbeddedRecord."""
        vectors = await self.embed_texts([c.content for c in chunks])
        records = [
            EmbeddedRecord.from_chunk(chunk, vector, self._model_name)
            for chunk, vector in zip(chunks, vectors)
        ]
        logger.info(
            f"Embeddings generated: count={len(records)}, dimension={self._dimension}, model={self._model_name}"
        )
        return records

    async def get_embedding_dimension(self) -> int:
        """Return the vector size, probing the API when it is not known yet."""
        if self._dimension is None:
            await self.embed_query(self._settings.probe_text)
        return self._dimension

    async def test_connection(self) -> bool:
        """Embed the probe text; report success without raising."""
        try:
            await self.embed_query(self._settings.probe_text)
        except IndexerException as e:
            logger.warning(f"Embedding connectivity probe failed: {e.message} ({e.code})")
            return False
        logger.info(f"Embedding connectivity probe succeeded: model={self._model_name}")
        return True
