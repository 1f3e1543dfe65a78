"""Retrieval orchestrator: query -> ranked evidence, context and sources."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from pydantic import BaseModel, Field

from core.config import settings
from core.models import (
    ALL_SOURCE_KINDS,
    Entity,
    RetrievalResult,
    ScoredChunk,
    SourceKind,
    SourceRef,
)
from ingestion.chunker import SegmentConfig
from storage.vector_store import EvidenceIndex

logger = logging.getLogger(__name__)

# Rough token estimate used for the context budget.
CHARS_PER_TOKEN = 4


class RetrievalConfig(BaseModel):
    top_k: int = Field(default_factory=lambda: settings.top_k, ge=0)
    min_similarity: float = Field(default_factory=lambda: settings.min_similarity)
    source_kinds: tuple[SourceKind, ...] = ALL_SOURCE_KINDS
    max_context_tokens: int = Field(
        default_factory=lambda: settings.max_context_tokens, ge=0
    )
    use_offline: bool = Field(default_factory=lambda: settings.use_offline)
    # Seconds allowed for the query embedding call (None: embedder default).
    timeout: float | None = None


class Retriever:
    """Orchestrates retrieval: ensure index -> embed query -> search -> assemble."""

    def __init__(
        self,
        index: EvidenceIndex,
        entity_source: Callable[[], Iterable[Entity]],
        segment_config: SegmentConfig | None = None,
    ):
        """Initialize retriever with an evidence index and its content source.

        Args:
            index: Evidence index, built on first use
            entity_source: Zero-argument callable returning the entities to
                index (e.g. functools.partial(load_content, content_dir))
            segment_config: Segmenter bounds used for the build
        """
        self.index = index
        self.entity_source = entity_source
        self.segment_config = segment_config

    @property
    def ready(self) -> bool:
        return self.index.is_built

    async def ensure_index(self, use_offline: bool = False) -> EvidenceIndex:
        if self.index.is_built:
            return self.index
        return await self.index.build(
            self.entity_source(), self.segment_config, use_offline=use_offline
        )

    async def retrieve(
        self, query: str, config: RetrievalConfig | None = None
    ) -> RetrievalResult:
        """Retrieve ranked evidence for a query.

        Pipeline steps:
        1. Trim the query; a blank query returns an empty result
        2. Build the evidence index if needed
        3. Embed the query
        4. Search with 2*top_k headroom, filter to config.source_kinds,
           truncate to top_k
        5. Assemble context, sources and average relevance

        Raises:
            ProviderError: embedding the query (or building the index) failed
        """
        if config is None:
            config = RetrievalConfig()

        query = (query or "").strip()
        if not query:
            return RetrievalResult.empty()

        query_vector = await self._embed_query(query, config)
        chunks = self._search(query_vector, config)

        logger.info("Retrieved %d chunks for query %r", len(chunks), query)
        return assemble_result(query, chunks, config.max_context_tokens)

    async def retrieve_by_kind(
        self, query: str, kind: SourceKind, config: RetrievalConfig | None = None
    ) -> RetrievalResult:
        config = (config or RetrievalConfig()).model_copy(
            update={"source_kinds": (SourceKind(kind),)}
        )
        return await self.retrieve(query, config)

    async def retrieve_penalty_context(
        self, query: str, config: RetrievalConfig | None = None
    ) -> RetrievalResult:
        """Two-channel retrieval for penalty questions.

        The query is embedded once. Penalty definitions (top 3) and guide
        articles (top 2) are searched independently with that vector, then
        merged into one list re-sorted by similarity.
        """
        if config is None:
            config = RetrievalConfig()

        query = (query or "").strip()
        if not query:
            return RetrievalResult.empty()

        query_vector = await self._embed_query(query, config)
        penalties = self._search(
            query_vector,
            config.model_copy(
                update={
                    "top_k": settings.penalty_top_k,
                    "source_kinds": (SourceKind.PENALTY,),
                }
            ),
        )
        guides = self._search(
            query_vector,
            config.model_copy(
                update={
                    "top_k": settings.penalty_guide_top_k,
                    "source_kinds": (SourceKind.GUIDE,),
                }
            ),
        )

        merged = sorted(penalties + guides, key=lambda c: c.similarity, reverse=True)
        logger.debug(
            "Fused %d penalty and %d guide chunks", len(penalties), len(guides)
        )
        return assemble_result(query, merged, config.max_context_tokens)

    async def retrieve_command_context(
        self, query: str, config: RetrievalConfig | None = None
    ) -> RetrievalResult:
        return await self.retrieve_by_kind(query, SourceKind.COMMAND, config)

    async def retrieve_procedure_context(
        self, query: str, config: RetrievalConfig | None = None
    ) -> RetrievalResult:
        return await self.retrieve_by_kind(query, SourceKind.PROCEDURE, config)

    async def _embed_query(self, query: str, config: RetrievalConfig) -> list[float]:
        await self.ensure_index(config.use_offline)
        if self.index.offline is not None and self.index.offline != (
            self.index.embedder.is_offline(config.use_offline)
        ):
            logger.warning(
                "Query embedding mode differs from the index build mode; "
                "similarities will not be meaningful"
            )

        return await self.index.embedder.embed(
            query, offline=config.use_offline, timeout=config.timeout
        )

    def _search(
        self, query_vector: list[float], config: RetrievalConfig
    ) -> list[ScoredChunk]:
        candidates = self.index.search(
            query_vector, config.top_k * 2, config.min_similarity
        )
        kinds = set(config.source_kinds)
        chunks = [c for c in candidates if c.source_kind in kinds][: config.top_k]
        logger.debug(
            "Kept %d of %d candidates for kinds %s",
            len(chunks),
            len(candidates),
            [k.value for k in config.source_kinds],
        )
        return chunks


def assemble_result(
    query: str, chunks: list[ScoredChunk], max_context_tokens: int
) -> RetrievalResult:
    """Build a RetrievalResult from chunks already in rank order."""
    return RetrievalResult(
        chunks=chunks,
        context=build_context(chunks, max_context_tokens),
        sources=extract_sources(chunks),
        average_relevance=average_relevance(chunks),
        query=query,
    )


def build_context(chunks: list[ScoredChunk], max_context_tokens: int) -> str:
    """Concatenate `[title]` blocks in rank order within the character budget.

    Stops before the first block that would exceed the budget; blocks are
    never cut.
    """
    max_chars = max_context_tokens * CHARS_PER_TOKEN
    context = ""

    for chunk in chunks:
        block = f"[{chunk.title}]\n{chunk.text}\n\n"
        if len(context) + len(block) > max_chars:
            break
        context += block

    return context.strip()


def extract_sources(chunks: list[ScoredChunk]) -> list[SourceRef]:
    """One SourceRef per source id, carrying its best similarity, best first."""
    best: dict[str, ScoredChunk] = {}
    for chunk in chunks:
        current = best.get(chunk.source_id)
        if current is None or chunk.similarity > current.similarity:
            best[chunk.source_id] = chunk

    sources = [
        SourceRef(
            id=chunk.source_id,
            title=chunk.title,
            kind=chunk.source_kind,
            category=chunk.chunk.metadata.category,
            subcategory=chunk.chunk.metadata.subcategory,
            score=chunk.similarity,
        )
        for chunk in best.values()
    ]
    sources.sort(key=lambda s: s.score, reverse=True)
    return sources


def average_relevance(chunks: list[ScoredChunk]) -> float:
    if not chunks:
        return 0.0
    return sum(c.similarity for c in chunks) / len(chunks)
