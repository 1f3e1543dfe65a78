"""Shared fixtures: sample entities, a keyword embedder and chunk factories."""

from __future__ import annotations

import asyncio

import pytest

from core.models import (
    ChunkMetadata,
    CommandDefinition,
    GuideArticle,
    IndexedChunk,
    PenaltyDefinition,
    ProcedureDefinition,
    ScoredChunk,
    SourceKind,
)

VOCABULARY = ("spam", "ban", "mute", "flood", "command", "procedure", "insult", "voice")


class KeywordEmbedder:
    """Deterministic embedder counting vocabulary terms, one dimension each.

    Texts without any vocabulary term embed to the zero vector.
    """

    model = "keyword-test"

    def __init__(self, delay: float = 0.0):
        self.dimensions = len(VOCABULARY)
        self.delay = delay
        self.batch_calls = 0
        self.embed_calls = 0

    def is_offline(self, offline: bool = False) -> bool:
        return True

    def vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(term)) for term in VOCABULARY]

    async def embed(self, text, *, offline=False, timeout=None):
        self.embed_calls += 1
        return self.vector(text)

    async def embed_batch(self, texts, *, offline=False, timeout=None):
        self.batch_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return [self.vector(t) for t in texts]


@pytest.fixture
def keyword_embedder():
    return KeywordEmbedder()


@pytest.fixture
def guide_spam():
    return GuideArticle(
        id="guide-spam-policy",
        title="Spam Policy",
        category="kilavuz",
        content=(
            "Spam in text channels is not allowed. Repeated spam leads to a mute.\n\n"
            "Flood messages count as spam when five or more are sent in a row."
        ),
        keywords=["spam", "flood"],
    )


@pytest.fixture
def guide_voice():
    return GuideArticle(
        id="guide-voice",
        title="Voice Channels",
        category="kilavuz",
        subcategory="sesli",
        content="Voice channel rules: no soundboards, no insult, no ear rape in voice.",
        keywords=["voice", "sesli"],
    )


@pytest.fixture
def penalty_spam():
    return PenaltyDefinition(
        id="penalty-spam",
        code="ADK-004",
        name="Spam",
        category="yazili",
        duration="1 hour mute",
        description="Sending spam or flood in text channels.",
        conditions=["spam repeated three times", "after a warning"],
        examples=["spam spam spam"],
        keywords=["spam", "mute"],
    )


@pytest.fixture
def penalty_insult():
    return PenaltyDefinition(
        id="penalty-insult",
        code="ADK-001",
        name="Insult",
        category="yazili",
        duration="7 days ban",
        description="Insulting another member.",
        conditions=["direct insult"],
        alternatives=["mute for first offence"],
        examples=["insult in chat"],
        keywords=["hakaret", "insult"],
    )


@pytest.fixture
def command_mute():
    return CommandDefinition(
        id="command-mute",
        command="/mute",
        description="Mute a member in text channels.",
        usage="/mute @user <duration> <reason>",
        permissions=["Moderator"],
        examples=["/mute @spammer 1h spam"],
        keywords=["mute", "command"],
    )


@pytest.fixture
def procedure_ban():
    return ProcedureDefinition(
        id="procedure-ban",
        title="Ban Procedure",
        description="How to ban a member.",
        steps="1. Collect evidence.\n2. Issue the ban command.\n3. Log the ban.",
        required_permissions=["Senior Moderator"],
        keywords=["ban", "procedure"],
    )


@pytest.fixture
def entities(
    guide_spam,
    guide_voice,
    penalty_spam,
    penalty_insult,
    command_mute,
    procedure_ban,
):
    return [guide_spam, guide_voice, penalty_spam, penalty_insult, command_mute, procedure_ban]


@pytest.fixture
def indexed_chunk():
    """Factory for IndexedChunk records."""

    def _make(
        source_id: str = "src",
        ordinal: int = 0,
        text: str = "chunk text",
        kind: SourceKind = SourceKind.GUIDE,
        title: str = "Title",
        embedding: tuple[float, ...] = (1.0, 0.0),
        keywords: tuple[str, ...] = (),
    ) -> IndexedChunk:
        return IndexedChunk(
            id=f"{source_id}-chunk-{ordinal}",
            source_id=source_id,
            source_kind=kind,
            text=text,
            ordinal=ordinal,
            total_chunks=ordinal + 1,
            metadata=ChunkMetadata(title=title, category="cat", keywords=keywords),
            embedding=embedding,
        )

    return _make


@pytest.fixture
def scored_chunk(indexed_chunk):
    """Factory for ScoredChunk records with a given similarity."""

    def _make(similarity: float, source_id: str = "src", ordinal: int = 0, **kwargs):
        return ScoredChunk(
            chunk=indexed_chunk(source_id=source_id, ordinal=ordinal, **kwargs),
            similarity=similarity,
        )

    return _make
