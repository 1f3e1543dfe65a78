"""In-memory evidence index with single-flight build and cosine search."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from core.errors import BuildFailedError, BuildInProgressError, DimensionMismatchError
from core.models import Entity, IndexedChunk, IndexStats, ScoredChunk
from ingestion.chunker import SegmentConfig
from ingestion.embedder import Embedder
from ingestion.projection import chunk_entities

logger = logging.getLogger(__name__)


class BuildState(str, Enum):
    UNBUILT = "unbuilt"
    BUILDING = "building"
    BUILT = "built"


class EvidenceIndex:
    """Immutable-once-built collection of embedded chunks.

    The index is built at most once. Concurrent build() calls are serialized
    by a lock: the first caller builds, the others wait and then see the
    finished index. A failed or cancelled build leaves the index unbuilt and
    empty, so it can simply be retried.
    """

    def __init__(self, embedder: Embedder | None = None):
        self.embedder = embedder if embedder is not None else Embedder()
        self._lock = asyncio.Lock()
        self._state = BuildState.UNBUILT
        self._chunks: tuple[IndexedChunk, ...] = ()
        self._matrix: np.ndarray | None = None
        self._norms: np.ndarray | None = None
        self._offline: bool | None = None

    @property
    def state(self) -> BuildState:
        return self._state

    @property
    def is_built(self) -> bool:
        return self._state is BuildState.BUILT

    @property
    def offline(self) -> bool | None:
        """Whether the built index used offline embeddings (None if unbuilt)."""
        return self._offline

    @property
    def chunks(self) -> tuple[IndexedChunk, ...]:
        self._check_readable()
        return self._chunks

    def __len__(self) -> int:
        return len(self._chunks)

    async def build(
        self,
        entities: Iterable[Entity],
        segment_config: SegmentConfig | None = None,
        use_offline: bool = False,
    ) -> EvidenceIndex:
        """Segment, embed and index every entity. No-op once built.

        All chunks from all entities are embedded in a single batched pass.

        Raises:
            ProviderError: the embedding provider failed
            BuildFailedError: the embedder returned inconsistent vectors
        """
        if self.is_built:
            return self

        async with self._lock:
            if self.is_built:
                logger.debug("Evidence index already built by a concurrent caller")
                return self

            self._state = BuildState.BUILDING
            try:
                chunks, matrix = await self._embed_entities(
                    list(entities), segment_config, use_offline
                )
            except BaseException:
                self._state = BuildState.UNBUILT
                raise

            self._chunks = chunks
            self._matrix = matrix
            self._norms = np.linalg.norm(matrix, axis=1)
            self._offline = self.embedder.is_offline(use_offline)
            self._state = BuildState.BUILT

        logger.info(
            "Evidence index built: %d chunks (%s embeddings)",
            len(self._chunks),
            "offline" if self._offline else self.embedder.model,
        )
        return self

    async def _embed_entities(
        self,
        entities: list[Entity],
        segment_config: SegmentConfig | None,
        use_offline: bool,
    ) -> tuple[tuple[IndexedChunk, ...], np.ndarray]:
        chunks = chunk_entities(entities, segment_config)
        logger.info("Segmented %d entities into %d chunks", len(entities), len(chunks))

        if not chunks:
            return (), np.zeros((0, self.embedder.dimensions))

        vectors = await self.embedder.embed_batch(
            [chunk.text for chunk in chunks], offline=use_offline
        )

        if len(vectors) != len(chunks):
            raise BuildFailedError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        dimensions = {len(v) for v in vectors}
        if len(dimensions) != 1:
            raise BuildFailedError(
                f"Embedder returned mixed dimensions: {sorted(dimensions)}"
            )

        indexed = tuple(
            IndexedChunk(**chunk.model_dump(), embedding=tuple(vector))
            for chunk, vector in zip(chunks, vectors)
        )
        return indexed, np.asarray(vectors, dtype=np.float64)

    def reset(self) -> None:
        """Drop the built index so the next build() starts from scratch."""
        self._check_readable()
        self._chunks = ()
        self._matrix = None
        self._norms = None
        self._offline = None
        self._state = BuildState.UNBUILT
        logger.info("Evidence index reset")

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        min_similarity: float,
    ) -> list[ScoredChunk]:
        """Rank every chunk by cosine similarity to the query vector.

        Results below min_similarity are dropped; ties keep indexing order.

        Raises:
            DimensionMismatchError: query vector length differs from the index
        """
        self._check_readable()
        if not self._chunks or top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.shape[0] != self._matrix.shape[1]:
            raise DimensionMismatchError(query.shape[0], self._matrix.shape[1])

        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            similarities = np.zeros(len(self._chunks))
        else:
            with np.errstate(divide="ignore", invalid="ignore"):
                similarities = (self._matrix @ query) / (self._norms * query_norm)
            similarities = np.where(self._norms > 0, similarities, 0.0)
        similarities = np.clip(similarities, -1.0, 1.0)

        results: list[ScoredChunk] = []
        for i in np.argsort(-similarities, kind="stable"):
            score = float(similarities[i])
            if score < min_similarity:
                # Sorted descending: nothing after this passes either.
                break
            results.append(ScoredChunk(chunk=self._chunks[i], similarity=max(score, 0.0)))
            if len(results) >= top_k:
                break

        logger.debug(
            "Search matched %d/%d chunks (min_similarity=%.2f)",
            len(results),
            len(self._chunks),
            min_similarity,
        )
        return results

    def by_id(self, chunk_id: str) -> IndexedChunk | None:
        for chunk in self.chunks:
            if chunk.id == chunk_id:
                return chunk
        return None

    def by_source_id(self, source_id: str) -> list[IndexedChunk]:
        """All chunks of one source entity, in ordinal order."""
        matches = [c for c in self.chunks if c.source_id == source_id]
        return sorted(matches, key=lambda c: c.ordinal)

    def by_keyword(self, keyword: str) -> list[IndexedChunk]:
        """Chunks with a metadata keyword containing `keyword` (case-insensitive)."""
        needle = keyword.lower()
        return [
            c
            for c in self.chunks
            if any(needle in k.lower() for k in c.metadata.keywords)
        ]

    def full_source_text(self, source_id: str) -> str | None:
        """Reassemble one source's chunks, or None for an unknown source."""
        chunks = self.by_source_id(source_id)
        if not chunks:
            return None
        return "\n\n".join(c.text for c in chunks)

    def stats(self) -> IndexStats:
        chunks = self.chunks
        if not chunks:
            return IndexStats()

        by_kind = Counter(c.source_kind.value for c in chunks)
        by_category = Counter(c.metadata.category for c in chunks)
        total_length = sum(len(c.text) for c in chunks)

        return IndexStats(
            total_chunks=len(chunks),
            by_source_kind=dict(by_kind),
            by_category=dict(by_category),
            average_chunk_length=round(total_length / len(chunks)),
        )

    def _check_readable(self) -> None:
        if self._state is BuildState.BUILDING:
            raise BuildInProgressError("Evidence index build is in progress")
