"""Unit tests for retrieval (retriever, citations, confidence)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.errors import ProviderError
from core.models import (
    ConfidenceTier,
    GuideArticle,
    RetrievalResult,
    SourceKind,
    SourceRef,
)
from ingestion.chunker import SegmentConfig
from ingestion.embedder import Embedder
from retrieval.citations import format_citations, kind_label, relevance_percent
from retrieval.confidence import assess, confidence_score, confidence_tier
from retrieval.retriever import (
    RetrievalConfig,
    Retriever,
    assemble_result,
    average_relevance,
    build_context,
    extract_sources,
)
from storage.vector_store import EvidenceIndex

from conftest import KeywordEmbedder

CONFIG = SegmentConfig(max_size=500, overlap=50, min_size=100)


@pytest.fixture
def retriever(keyword_embedder, entities):
    return Retriever(EvidenceIndex(keyword_embedder), lambda: entities, CONFIG)


def _sentence(seed: str, length: int) -> str:
    return (seed * length)[: length - 1] + "."


class TestRetriever:
    """Tests for the Retriever orchestrator."""

    @pytest.mark.asyncio
    async def test_empty_query_short_circuits(self, keyword_embedder):
        source = MagicMock(return_value=[])
        retriever = Retriever(EvidenceIndex(keyword_embedder), source)

        result = await retriever.retrieve("   ")

        assert result == RetrievalResult.empty()
        source.assert_not_called()
        assert keyword_embedder.embed_calls == 0
        assert not retriever.ready

    @pytest.mark.asyncio
    async def test_builds_index_on_first_use(self, retriever):
        assert not retriever.ready
        await retriever.retrieve("spam")
        assert retriever.ready

    @pytest.mark.asyncio
    async def test_query_is_trimmed(self, retriever):
        result = await retriever.retrieve("  spam mute \n")
        assert result.query == "spam mute"

    @pytest.mark.asyncio
    async def test_chunks_ranked_descending(self, retriever):
        result = await retriever.retrieve(
            "spam mute flood", RetrievalConfig(min_similarity=0.0, top_k=10)
        )

        scores = [c.similarity for c in result.chunks]
        assert len(scores) > 1
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_top_k(self, retriever):
        result = await retriever.retrieve(
            "spam", RetrievalConfig(min_similarity=0.0, top_k=2)
        )
        assert len(result.chunks) == 2

    @pytest.mark.asyncio
    async def test_min_similarity(self, retriever):
        result = await retriever.retrieve("voice", RetrievalConfig(min_similarity=0.8))

        assert [c.source_id for c in result.chunks] == ["guide-voice"]

    @pytest.mark.asyncio
    async def test_retrieve_by_kind_filters(self, retriever):
        result = await retriever.retrieve_by_kind(
            "spam mute", SourceKind.PENALTY, RetrievalConfig(min_similarity=0.0)
        )

        assert result.chunks
        assert {c.source_kind for c in result.chunks} == {SourceKind.PENALTY}

    @pytest.mark.asyncio
    async def test_command_and_procedure_shorthands(self, retriever):
        config = RetrievalConfig(min_similarity=0.0)

        commands = await retriever.retrieve_command_context("mute command", config)
        procedures = await retriever.retrieve_procedure_context("ban procedure", config)

        assert [c.source_id for c in commands.chunks] == ["command-mute"]
        assert [c.source_id for c in procedures.chunks] == ["procedure-ban"]

    @pytest.mark.asyncio
    async def test_context_has_title_headers(self, retriever):
        result = await retriever.retrieve("voice insult")

        assert result.context.startswith("[Voice Channels]\n")

    @pytest.mark.asyncio
    async def test_sources_deduplicated(self, retriever):
        result = await retriever.retrieve(
            "spam", RetrievalConfig(min_similarity=0.0, top_k=10)
        )

        ids = [s.id for s in result.sources]
        assert len(ids) == len(set(ids))
        for source in result.sources:
            best = max(c.similarity for c in result.chunks if c.source_id == source.id)
            assert source.score == best

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, entities):
        embedder = KeywordEmbedder()
        embedder.embed = AsyncMock(side_effect=ProviderError("network down"))
        retriever = Retriever(EvidenceIndex(embedder), lambda: entities, CONFIG)

        with pytest.raises(ProviderError):
            await retriever.retrieve("spam")

    @pytest.mark.asyncio
    async def test_concurrent_first_queries_build_once(self, entities):
        embedder = KeywordEmbedder(delay=0.01)
        source = MagicMock(return_value=entities)
        retriever = Retriever(EvidenceIndex(embedder), source, CONFIG)

        results = await asyncio.gather(
            retriever.retrieve("spam"),
            retriever.retrieve("ban"),
            retriever.retrieve("voice"),
        )

        assert embedder.batch_calls == 1
        assert all(isinstance(r, RetrievalResult) for r in results)


class TestPenaltyFusion:
    """Tests for the penalty + guide fusion channel."""

    @pytest.mark.asyncio
    async def test_merged_chunks_globally_sorted(self, retriever):
        result = await retriever.retrieve_penalty_context(
            "spam insult voice", RetrievalConfig(min_similarity=0.0)
        )

        scores = [c.similarity for c in result.chunks]
        assert scores == sorted(scores, reverse=True)
        assert {c.source_kind for c in result.chunks} <= {
            SourceKind.PENALTY,
            SourceKind.GUIDE,
        }
        assert len(result.chunks) <= 5

    @pytest.mark.asyncio
    async def test_query_embedded_once(self, retriever, keyword_embedder):
        await retriever.retrieve_penalty_context("spam insult")
        assert keyword_embedder.embed_calls == 1

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty_result(self, retriever, keyword_embedder):
        result = await retriever.retrieve_penalty_context("  ")

        assert result == RetrievalResult.empty()
        assert keyword_embedder.embed_calls == 0

    @pytest.mark.asyncio
    async def test_channels_and_merge(self, retriever, scored_chunk):
        penalty_candidates = [
            scored_chunk(0.95, "g0", title="G0"),
            scored_chunk(0.9, "p1", kind=SourceKind.PENALTY, title="P1"),
            scored_chunk(0.5, "p2", kind=SourceKind.PENALTY, title="P2"),
        ]
        guide_candidates = [
            scored_chunk(0.7, "g1", title="G1"),
            scored_chunk(0.65, "p3", kind=SourceKind.PENALTY, title="P3"),
            scored_chunk(0.6, "g1", ordinal=1, title="G1"),
            scored_chunk(0.55, "g2", title="G2"),
        ]

        with patch.object(
            retriever.index,
            "search",
            MagicMock(side_effect=[penalty_candidates, guide_candidates]),
        ) as search:
            result = await retriever.retrieve_penalty_context(" spam ")

        first, second = search.call_args_list
        assert first.args[0] == second.args[0]
        assert first.args[1] == 6
        assert second.args[1] == 4

        assert [c.similarity for c in result.chunks] == [0.9, 0.7, 0.6, 0.5]
        assert [s.id for s in result.sources] == ["p1", "g1", "p2"]
        assert result.sources[1].score == 0.7
        assert result.average_relevance == pytest.approx(0.675)
        assert result.context.startswith("[P1]\n")
        assert result.query == "spam"


class TestAssembly:
    """Tests for context, source and relevance assembly helpers."""

    def test_build_context_respects_budget(self, scored_chunk):
        chunks = [
            scored_chunk(0.9, "a", text="a" * 40, title="T"),
            scored_chunk(0.8, "b", text="b" * 40, title="T"),
        ]

        # 12 tokens = 48 chars: one 46-char block fits, two do not.
        assert build_context(chunks, 12) == "[T]\n" + "a" * 40

    def test_build_context_never_cuts_a_block(self, scored_chunk):
        chunks = [scored_chunk(0.9, "a", text="a" * 400, title="T")]
        assert build_context(chunks, 10) == ""

    def test_build_context_joins_blocks(self, scored_chunk):
        chunks = [
            scored_chunk(0.9, "a", text="first", title="A"),
            scored_chunk(0.8, "b", text="second", title="B"),
        ]
        assert build_context(chunks, 2000) == "[A]\nfirst\n\n[B]\nsecond"

    def test_extract_sources_keeps_best_score(self, scored_chunk):
        chunks = [
            scored_chunk(0.5, "s1", ordinal=0),
            scored_chunk(0.6, "s2"),
            scored_chunk(0.8, "s1", ordinal=1),
        ]

        sources = extract_sources(chunks)

        assert [(s.id, s.score) for s in sources] == [("s1", 0.8), ("s2", 0.6)]

    def test_average_relevance(self, scored_chunk):
        assert average_relevance([]) == 0.0
        assert average_relevance(
            [scored_chunk(0.2), scored_chunk(0.4, ordinal=1)]
        ) == pytest.approx(0.3)


class TestScenarios:
    """End-to-end retrieval scenarios with the offline embedder."""

    @pytest.fixture
    def offline_embedder(self, monkeypatch):
        monkeypatch.setattr("ingestion.embedder.settings.openai_api_key", "")
        return Embedder()

    @pytest.mark.asyncio
    async def test_spam_policy_end_to_end(self, offline_embedder):
        first = _sentence("Spam policy overview ", 300)
        second = " ".join(
            [_sentence("Spam kurali ", 100)]
            + [_sentence(f"Rule {i} about spam ", 99) for i in range(5)]
        )
        guide = GuideArticle(
            id="guide-spam-policy",
            title="Spam Policy",
            category="kilavuz",
            content=f"{first}\n\n{second}",
            keywords=["spam"],
        )
        index = EvidenceIndex(offline_embedder)
        retriever = Retriever(index, lambda: [guide], CONFIG)

        result = await retriever.retrieve(
            "spam kuralı", RetrievalConfig(use_offline=True, min_similarity=0.0)
        )

        assert len(index) == 2
        assert len(result.chunks) >= 1
        assert len(result.sources) == 1
        assert result.sources[0].id == "guide-spam-policy"
        assert result.sources[0].kind is SourceKind.GUIDE

    @pytest.mark.asyncio
    async def test_empty_index_is_low_confidence(self, offline_embedder):
        retriever = Retriever(EvidenceIndex(offline_embedder), lambda: [])

        result = await retriever.retrieve("spam", RetrievalConfig(use_offline=True))
        score, tier = assess(result)

        assert result.chunks == []
        assert score == 0
        assert tier is ConfidenceTier.LOW

    @pytest.mark.asyncio
    async def test_empty_query_makes_no_provider_call(self, entities):
        client = MagicMock()
        client.embeddings.create = AsyncMock()
        retriever = Retriever(EvidenceIndex(Embedder(client, dimensions=3)), lambda: entities)

        result = await retriever.retrieve("")

        assert result.chunks == []
        assert result.context == ""
        assert result.sources == []
        client.embeddings.create.assert_not_called()


class TestConfidence:
    """Tests for the confidence model."""

    def test_empty_result_scores_zero(self):
        assert confidence_score(RetrievalResult.empty()) == 0

    def test_weighted_formula(self, scored_chunk):
        chunks = [scored_chunk(s, f"s{i}") for i, s in enumerate([0.9, 0.8, 0.7, 0.6, 0.5])]
        result = assemble_result("q", chunks, 2000)

        # 0.5 * 0.7 + 0.3 * 0.9 + 0.2 * 1.0
        assert confidence_score(result) == pytest.approx(0.82)

    def test_count_factor_partial(self, scored_chunk):
        result = assemble_result("q", [scored_chunk(0.5)], 2000)

        # 0.5 * 0.5 + 0.3 * 0.5 + 0.2 * 0.2
        assert confidence_score(result) == pytest.approx(0.44)

    def test_score_bounded(self, scored_chunk):
        for similarity in (0.0, 0.3, 1.0):
            chunks = [scored_chunk(similarity, f"s{i}") for i in range(8)]
            score = confidence_score(assemble_result("q", chunks, 2000))
            assert 0.0 <= score <= 1.0

    @pytest.mark.parametrize(
        "score, tier",
        [
            (0.39, ConfidenceTier.LOW),
            (0.40, ConfidenceTier.MEDIUM),
            (0.69, ConfidenceTier.MEDIUM),
            (0.70, ConfidenceTier.HIGH),
            (0.71, ConfidenceTier.HIGH),
            (0.0, ConfidenceTier.LOW),
        ],
    )
    def test_tier_boundaries(self, score, tier):
        assert confidence_tier(score) is tier


class TestCitations:
    def test_empty_sources(self):
        assert format_citations([]) == ""

    def test_numbered_lines(self):
        sources = [
            SourceRef(id="p", title="ADK-004 - Spam", kind=SourceKind.PENALTY, score=0.876),
            SourceRef(id="g", title="Spam Policy", kind=SourceKind.GUIDE, score=0.5),
        ]

        assert format_citations(sources) == (
            "[1] Penalty: ADK-004 - Spam (relevance: 88%)\n"
            "[2] Guide: Spam Policy (relevance: 50%)"
        )

    def test_half_rounds_up(self):
        assert relevance_percent(0.125) == 13
        assert relevance_percent(0.0) == 0

    def test_kind_labels(self):
        assert kind_label(SourceKind.COMMAND) == "Command"
        assert kind_label(SourceKind.PROCEDURE) == "Procedure"
