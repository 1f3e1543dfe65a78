"""Embedding provider adapter: OpenAI embeddings with a deterministic offline fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

import numpy as np
import openai

from core.config import settings
from core.errors import DimensionMismatchError, ProviderError, ValidationError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class Embedder:
    """Turns text into fixed-length vectors.

    Uses the OpenAI embeddings API when a client is available, otherwise (or
    when a call asks for it) the offline `mock_embed` function.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        model: str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
        timeout: float | None = None,
    ):
        """Initialize embedder with an optional OpenAI client.

        Args:
            client: Async OpenAI client. Created from settings.openai_api_key
                when omitted; without a key the embedder is offline-only.
            model: Embedding model name (default: settings.embedding_model)
            dimensions: Vector length (default: settings.embedding_dimensions)
            batch_size: Max inputs per provider request
                (default: settings.embedding_batch_size)
            timeout: Per-request timeout in seconds
                (default: settings.embedding_timeout)
        """
        if client is None and settings.openai_api_key:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=settings.openai_api_key)

        self.client = client
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.batch_size = max(1, batch_size or settings.embedding_batch_size)
        self.timeout = settings.embedding_timeout if timeout is None else timeout

    @property
    def available(self) -> bool:
        """Whether a provider client is configured."""
        return self.client is not None

    def is_offline(self, offline: bool = False) -> bool:
        return offline or self.client is None

    async def embed(
        self, text: str, *, offline: bool = False, timeout: float | None = None
    ) -> list[float]:
        """Embed a single text.

        Raises:
            ValidationError: text is empty or whitespace-only
            ProviderError: the provider call failed
        """
        text = _require_text(text)

        if self.is_offline(offline):
            return mock_embed(text, self.dimensions)

        vectors = await self._request([text], timeout)
        return vectors[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        *,
        offline: bool = False,
        timeout: float | None = None,
    ) -> list[list[float]]:
        """Embed many texts, preserving input order.

        Provider requests carry at most `batch_size` inputs each.
        """
        cleaned = [_require_text(t) for t in texts]
        if not cleaned:
            return []

        if self.is_offline(offline):
            return [mock_embed(t, self.dimensions) for t in cleaned]

        vectors: list[list[float]] = []
        for start in range(0, len(cleaned), self.batch_size):
            batch = cleaned[start : start + self.batch_size]
            vectors.extend(await self._request(batch, timeout))
            logger.debug(
                "Embedded batch %d-%d of %d",
                start,
                start + len(batch),
                len(cleaned),
            )

        logger.info("Embedded %d texts with %s", len(vectors), self.model)
        return vectors

    async def _request(
        self, inputs: list[str], timeout: float | None
    ) -> list[list[float]]:
        if timeout is None:
            timeout = self.timeout

        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(model=self.model, input=inputs),
                timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Embedding request timed out after %ss", timeout)
            raise ProviderError(f"Embedding request timed out after {timeout}s") from e
        except openai.OpenAIError as e:
            logger.error("Embedding request failed: %s", e)
            raise ProviderError(f"OpenAI API error: {e}") from e

        return self._parse(response, len(inputs))

    def _parse(self, response, expected: int) -> list[list[float]]:
        data = list(getattr(response, "data", None) or [])
        if len(data) != expected:
            raise ProviderError(
                f"Expected {expected} embeddings from provider, got {len(data)}"
            )

        # The provider may reorder items; its index field is authoritative.
        try:
            data.sort(key=lambda item: item.index)
        except (AttributeError, TypeError) as e:
            raise ProviderError("Provider response items lack an index") from e

        if [item.index for item in data] != list(range(expected)):
            raise ProviderError("Provider response indices do not match the request")

        vectors = []
        for item in data:
            embedding = getattr(item, "embedding", None)
            if not embedding or len(embedding) != self.dimensions:
                raise ProviderError(
                    f"Provider returned a malformed embedding for input {item.index}"
                )
            vectors.append([float(v) for v in embedding])

        return vectors


def mock_embed(text: str, dimensions: int | None = None) -> list[float]:
    """Deterministic offline embedding.

    Each character adds ord(c)/255 (mod 1) to bucket (ord(c) * position) mod
    dimensions; the result is L2-normalised. Pure function of the text.
    """
    if dimensions is None:
        dimensions = settings.embedding_dimensions

    buckets = [0.0] * dimensions
    for i, char in enumerate(text):
        code = ord(char)
        index = (code * (i + 1)) % dimensions
        buckets[index] = (buckets[index] + code / 255) % 1

    vector = np.asarray(buckets, dtype=np.float64)
    norm = np.linalg.norm(vector)
    if norm > 0:
        vector = vector / norm

    return vector.tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.clip(np.dot(vec_a, vec_b) / (norm_a * norm_b), -1.0, 1.0))


def _require_text(text: str) -> str:
    if not text or not text.strip():
        raise ValidationError("Text to embed cannot be empty")
    return text.strip()
