"""Citation block formatting for answers."""

from __future__ import annotations

import math

from core.models import SourceKind, SourceRef

KIND_LABELS: dict[SourceKind, str] = {
    SourceKind.GUIDE: "Guide",
    SourceKind.PENALTY: "Penalty",
    SourceKind.COMMAND: "Command",
    SourceKind.PROCEDURE: "Procedure",
}


def kind_label(kind: SourceKind) -> str:
    return KIND_LABELS.get(kind, str(kind))


def relevance_percent(score: float) -> int:
    """Score as a whole percentage, halves rounded up."""
    return int(math.floor(score * 100 + 0.5))


def format_citations(sources: list[SourceRef]) -> str:
    """Numbered citation lines, or "" when there is nothing to cite."""
    if not sources:
        return ""

    return "\n".join(
        f"[{n}] {kind_label(source.kind)}: {source.title} "
        f"(relevance: {relevance_percent(source.score)}%)"
        for n, source in enumerate(sources, start=1)
    )
