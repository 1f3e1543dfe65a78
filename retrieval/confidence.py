"""Confidence scoring and tiering for retrieval results."""

from __future__ import annotations

from core.config import settings
from core.models import ConfidenceTier, RetrievalResult

# Weights of average similarity, best similarity and corroboration.
AVERAGE_WEIGHT = 0.5
MAX_WEIGHT = 0.3
COUNT_WEIGHT = 0.2
# Chunk count at which corroboration saturates.
SATURATION_COUNT = 5


def confidence_score(result: RetrievalResult) -> float:
    """Trust score in [0, 1]; 0 when nothing was retrieved."""
    if not result.chunks:
        return 0.0

    similarities = [c.similarity for c in result.chunks]
    average = sum(similarities) / len(similarities)
    best = max(similarities)
    count_factor = min(len(similarities) / SATURATION_COUNT, 1.0)

    score = AVERAGE_WEIGHT * average + MAX_WEIGHT * best + COUNT_WEIGHT * count_factor
    return min(max(score, 0.0), 1.0)


def confidence_tier(score: float) -> ConfidenceTier:
    if score >= settings.high_confidence:
        return ConfidenceTier.HIGH
    if score >= settings.medium_confidence:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def assess(result: RetrievalResult) -> tuple[float, ConfidenceTier]:
    score = confidence_score(result)
    return score, confidence_tier(score)
