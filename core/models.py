"""Data models for the moderation-guide retrieval engine."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):
    """Kind of content entity a chunk was derived from."""

    GUIDE = "guide"
    PENALTY = "penalty"
    COMMAND = "command"
    PROCEDURE = "procedure"


ALL_SOURCE_KINDS: tuple[SourceKind, ...] = tuple(SourceKind)


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Content repository entities
# ---------------------------------------------------------------------------


class _Entity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    keywords: list[str] = Field(default_factory=list)
    order: int = 0


class GuideArticle(_Entity):
    """A section of the moderator guide, stored as markdown."""

    kind: Literal["guide"] = "guide"
    title: str
    slug: str = ""
    category: str = ""
    subcategory: str | None = None
    content: str = ""
    related_articles: list[str] = Field(default_factory=list, alias="relatedArticles")


class PenaltyDefinition(_Entity):
    """A penalty with its code, duration and the conditions it applies under."""

    kind: Literal["penalty"] = "penalty"
    code: str
    name: str
    category: str = ""
    duration: str = ""
    description: str = ""
    conditions: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)


class CommandDefinition(_Entity):
    """A bot command available to moderators."""

    kind: Literal["command"] = "command"
    command: str
    description: str = ""
    usage: str = ""
    permissions: list[str] = Field(default_factory=list)
    category: str | None = None
    examples: list[str] = Field(default_factory=list)


class ProcedureDefinition(_Entity):
    """A step-by-step moderation procedure."""

    kind: Literal["procedure"] = "procedure"
    title: str
    slug: str = ""
    description: str = ""
    steps: str = ""
    required_permissions: list[str] = Field(
        default_factory=list, alias="requiredPermissions"
    )
    related_commands: list[str] = Field(default_factory=list, alias="relatedCommands")
    related_penalties: list[str] = Field(
        default_factory=list, alias="relatedPenalties"
    )


Entity = Annotated[
    Union[GuideArticle, PenaltyDefinition, CommandDefinition, ProcedureDefinition],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Index records
# ---------------------------------------------------------------------------


class ChunkMetadata(BaseModel):
    """Descriptive fields copied from the source entity."""

    model_config = ConfigDict(frozen=True)

    title: str
    category: str = ""
    subcategory: str | None = None
    keywords: tuple[str, ...] = ()


class Chunk(BaseModel):
    """A contiguous span of text derived from exactly one source entity."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str
    source_kind: SourceKind
    text: str
    ordinal: int
    total_chunks: int
    metadata: ChunkMetadata

    @staticmethod
    def make_id(source_id: str, ordinal: int) -> str:
        return f"{source_id}-chunk-{ordinal}"


class IndexedChunk(Chunk):
    """A chunk together with its embedding vector."""

    embedding: tuple[float, ...]


class ScoredChunk(BaseModel):
    """An indexed chunk annotated with its similarity to one query."""

    chunk: IndexedChunk
    similarity: float = Field(ge=0.0, le=1.0)

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def source_id(self) -> str:
        return self.chunk.source_id

    @property
    def source_kind(self) -> SourceKind:
        return self.chunk.source_kind

    @property
    def title(self) -> str:
        return self.chunk.metadata.title

    @property
    def text(self) -> str:
        return self.chunk.text


class SourceRef(BaseModel):
    """One cited source entity with its best similarity."""

    id: str
    title: str
    kind: SourceKind
    category: str = ""
    subcategory: str | None = None
    score: float = 0.0


class RetrievalResult(BaseModel):
    """Ranked, token-budgeted evidence for one query."""

    chunks: list[ScoredChunk] = Field(default_factory=list)
    context: str = ""
    sources: list[SourceRef] = Field(default_factory=list)
    average_relevance: float = 0.0
    query: str = ""

    @classmethod
    def empty(cls, query: str = "") -> RetrievalResult:
        return cls(query=query)


class IndexStats(BaseModel):
    total_chunks: int = 0
    by_source_kind: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    average_chunk_length: int = 0


class Answer(BaseModel):
    """Answering-layer output: prose plus the evidence that backs it."""

    response: str
    sources: list[SourceRef] = Field(default_factory=list)
    confidence: ConfidenceTier = ConfidenceTier.LOW
    confidence_score: float = 0.0
    context_used: bool = False
