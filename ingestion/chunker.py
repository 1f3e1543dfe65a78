"""Paragraph- and sentence-aware text segmenter with character overlap."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.config import settings

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s")


class SegmentConfig(BaseModel):
    """Size bounds for the segmenter, in characters."""

    model_config = ConfigDict(frozen=True)

    max_size: int = Field(default_factory=lambda: settings.chunk_max_size, gt=0)
    overlap: int = Field(default_factory=lambda: settings.chunk_overlap, ge=0)
    min_size: int = Field(default_factory=lambda: settings.chunk_min_size, ge=0)
    # Keep chunks below min_size instead of dropping them.
    keep_short: bool = Field(default_factory=lambda: settings.chunk_keep_short)

    @model_validator(mode="after")
    def _check_bounds(self) -> SegmentConfig:
        if self.min_size > self.max_size:
            raise ValueError(
                f"min_size ({self.min_size}) exceeds max_size ({self.max_size})"
            )
        return self


def segment(text: str, config: SegmentConfig | None = None) -> list[str]:
    """Split text into bounded, overlapping chunks.

    Strategy:
    1. Split on blank-line paragraph boundaries
    2. Paragraphs longer than max_size are split at sentence boundaries and
       the sentences regrouped up to max_size
    3. Paragraphs are packed greedily while the chunk stays within max_size
    4. Chunks below min_size are dropped unless they are the document's only
       chunk (or config.keep_short is set)
    5. Every chunk but the first is prefixed with the last `overlap`
       characters of its predecessor

    The size bounds apply to chunk bodies; the overlap prefix adds at most
    overlap + 1 characters.
    """
    if config is None:
        config = SegmentConfig()

    return apply_overlap(pack_segments(text, config), config.overlap)


def pack_segments(text: str, config: SegmentConfig | None = None) -> list[str]:
    """Segment text without applying overlap."""
    if config is None:
        config = SegmentConfig()

    if not text or not text.strip():
        return []

    max_size = config.max_size
    candidates: list[str] = []
    current = ""

    for paragraph in split_paragraphs(text):
        if len(paragraph) > max_size:
            if current:
                candidates.append(current)
                current = ""
            candidates.extend(group_sentences(split_sentences(paragraph), max_size))
            continue

        joined = f"{current}\n\n{paragraph}" if current else paragraph
        if len(joined) <= max_size:
            current = joined
        else:
            candidates.append(current)
            current = paragraph

    if current:
        candidates.append(current)

    if len(candidates) <= 1 or config.keep_short:
        return candidates

    return [c for c in candidates if len(c) >= config.min_size]


def apply_overlap(chunks: list[str], overlap: int) -> list[str]:
    """Prefix each chunk after the first with the tail of its predecessor.

    The tail is taken from the predecessor's body, before its own prefix was
    added, and is not word-aligned.
    """
    if overlap <= 0 or len(chunks) <= 1:
        return list(chunks)

    result = [chunks[0]]
    for previous, current in zip(chunks, chunks[1:]):
        result.append(f"{previous[-overlap:]} {current}")
    return result


def split_paragraphs(text: str) -> list[str]:
    """Split on blank lines, dropping empty paragraphs."""
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def split_sentences(text: str) -> list[str]:
    """Split on whitespace that follows '.', '!' or '?'."""
    sentences = [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]
    return sentences or [text.strip()]


def group_sentences(sentences: list[str], max_size: int) -> list[str]:
    """Greedily join sentences with single spaces into groups <= max_size."""
    groups: list[str] = []
    current = ""

    for sentence in sentences:
        for piece in _wrap(sentence, max_size):
            joined = f"{current} {piece}" if current else piece
            if len(joined) <= max_size:
                current = joined
            else:
                groups.append(current)
                current = piece

    if current:
        groups.append(current)

    return groups


def _wrap(sentence: str, max_size: int) -> list[str]:
    """Hard-wrap a single over-long sentence at whitespace (or at max_size)."""
    pieces: list[str] = []
    rest = sentence

    while len(rest) > max_size:
        cut = -1
        for match in _WHITESPACE.finditer(rest, 0, max_size + 1):
            cut = match.start()
        if cut <= 0:
            cut = max_size
        pieces.append(rest[:cut].rstrip())
        rest = rest[cut:].lstrip()

    if rest:
        pieces.append(rest)

    return pieces
