"""Per-kind textual projection of content entities and entity chunking."""

from __future__ import annotations

from typing import Callable, get_args

from core.models import (
    Chunk,
    ChunkMetadata,
    CommandDefinition,
    Entity,
    GuideArticle,
    PenaltyDefinition,
    ProcedureDefinition,
    SourceKind,
)
from ingestion.chunker import SegmentConfig, segment


def project_guide(guide: GuideArticle) -> str:
    return guide.content


def project_penalty(penalty: PenaltyDefinition) -> str:
    lines = [
        f"Penalty: {penalty.name} ({penalty.code})",
        f"Category: {penalty.category}" if penalty.category else "",
        f"Duration: {penalty.duration}" if penalty.duration else "",
        f"Description: {penalty.description}" if penalty.description else "",
        f"Conditions: {', '.join(penalty.conditions)}" if penalty.conditions else "",
        f"Alternatives: {', '.join(penalty.alternatives)}"
        if penalty.alternatives
        else "",
        f"Examples: {'; '.join(penalty.examples)}" if penalty.examples else "",
    ]
    return "\n".join(line for line in lines if line)


def project_command(command: CommandDefinition) -> str:
    lines = [
        f"Command: {command.command}",
        f"Description: {command.description}" if command.description else "",
        f"Usage: {command.usage}" if command.usage else "",
        f"Permissions: {', '.join(command.permissions)}" if command.permissions else "",
        f"Examples: {'; '.join(command.examples)}" if command.examples else "",
    ]
    return "\n".join(line for line in lines if line)


def project_procedure(procedure: ProcedureDefinition) -> str:
    # Blank-line separated so the segmenter sees the steps as their own block.
    blocks = [
        f"Procedure: {procedure.title}",
        f"Description: {procedure.description}" if procedure.description else "",
        f"Steps:\n{procedure.steps}" if procedure.steps else "",
        f"Required permissions: {', '.join(procedure.required_permissions)}"
        if procedure.required_permissions
        else "",
    ]
    return "\n\n".join(block for block in blocks if block)


def _guide_metadata(guide: GuideArticle) -> ChunkMetadata:
    return ChunkMetadata(
        title=guide.title,
        category=guide.category,
        subcategory=guide.subcategory,
        keywords=tuple(guide.keywords),
    )


def _penalty_metadata(penalty: PenaltyDefinition) -> ChunkMetadata:
    return ChunkMetadata(
        title=f"{penalty.code} - {penalty.name}",
        category=penalty.category,
        keywords=tuple(penalty.keywords),
    )


def _command_metadata(command: CommandDefinition) -> ChunkMetadata:
    return ChunkMetadata(
        title=command.command,
        category="command",
        subcategory=command.category,
        keywords=tuple(command.keywords),
    )


def _procedure_metadata(procedure: ProcedureDefinition) -> ChunkMetadata:
    return ChunkMetadata(
        title=procedure.title,
        category="procedure",
        keywords=tuple(procedure.keywords),
    )


_Projection = tuple[SourceKind, Callable[..., str], Callable[..., ChunkMetadata]]

_PROJECTIONS: dict[type, _Projection] = {
    GuideArticle: (SourceKind.GUIDE, project_guide, _guide_metadata),
    PenaltyDefinition: (SourceKind.PENALTY, project_penalty, _penalty_metadata),
    CommandDefinition: (SourceKind.COMMAND, project_command, _command_metadata),
    ProcedureDefinition: (
        SourceKind.PROCEDURE,
        project_procedure,
        _procedure_metadata,
    ),
}

# Adding an entity variant without a projection fails at import time.
_ENTITY_TYPES = set(get_args(get_args(Entity)[0]))
if _ENTITY_TYPES != set(_PROJECTIONS):
    raise TypeError(
        "Entity variants without projection: "
        f"{sorted(t.__name__ for t in _ENTITY_TYPES ^ set(_PROJECTIONS))}"
    )


def project(entity: Entity) -> str:
    """Return the rich text that gets segmented for an entity."""
    _, projector, _ = _lookup(entity)
    return projector(entity)


def chunk_entity(entity: Entity, config: SegmentConfig | None = None) -> list[Chunk]:
    """Project, segment and wrap an entity's text into Chunks."""
    kind, projector, metadata_for = _lookup(entity)
    pieces = segment(projector(entity), config)
    metadata = metadata_for(entity)

    return [
        Chunk(
            id=Chunk.make_id(entity.id, ordinal),
            source_id=entity.id,
            source_kind=kind,
            text=text,
            ordinal=ordinal,
            total_chunks=len(pieces),
            metadata=metadata,
        )
        for ordinal, text in enumerate(pieces)
    ]


def chunk_entities(
    entities: list[Entity], config: SegmentConfig | None = None
) -> list[Chunk]:
    chunks: list[Chunk] = []
    for entity in entities:
        chunks.extend(chunk_entity(entity, config))
    return chunks


def _lookup(entity: Entity) -> _Projection:
    try:
        return _PROJECTIONS[type(entity)]
    except KeyError:
        raise TypeError(f"No projection for {type(entity).__name__}") from None
