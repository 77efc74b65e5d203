"""Nearest-neighbour search over feature vectors with temporal decay."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from adaptive_dispatch.storage.common import ensure_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HALF_LIFE_DAYS = 30.0
DEFAULT_CANDIDATE_CEILING = 50_000
_SECONDS_PER_DAY = 86_400.0


class SimilarityMetric(str, Enum):
    """Supported vector comparison metrics."""

    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    MANHATTAN = "manhattan"


@dataclass(slots=True)
class Candidate(Generic[T]):
    """One searchable vector with its payload."""

    vector: Sequence[float]
    payload: T
    timestamp: datetime


@dataclass(slots=True)
class Neighbor(Generic[T]):
    """Ranked search hit; `score` is `similarity * weight`."""

    payload: T
    score: float
    similarity: float
    weight: float
    timestamp: datetime


def find_nearest(  # noqa: PLR0913
    query: Sequence[float],
    candidates: Sequence[Candidate[T]],
    *,
    k: int,
    metric: SimilarityMetric = SimilarityMetric.COSINE,
    half_life_days: float | None = DEFAULT_HALF_LIFE_DAYS,
    min_score: float | None = None,
    candidate_ceiling: int = DEFAULT_CANDIDATE_CEILING,
    now: datetime | None = None,
) -> list[Neighbor[T]]:
    """Return up to `k` neighbours ordered by non-increasing weighted score.

    Linear scan. Above `candidate_ceiling` only the most recent candidates are
    scanned, which is the known scaling limit of this engine.
    """

    if k <= 0 or not candidates:
        return []

    pool = candidates
    if len(pool) > candidate_ceiling:
        logger.warning(
            "k-NN candidate set of %d exceeds ceiling %d; scanning most recent only",
            len(pool),
            candidate_ceiling,
        )
        pool = sorted(pool, key=lambda item: ensure_utc(item.timestamp), reverse=True)[:candidate_ceiling]

    reference_time = ensure_utc(now or utc_now())
    scored: list[Neighbor[T]] = []
    for candidate in pool:
        timestamp = ensure_utc(candidate.timestamp)
        similarity = vector_similarity(query, candidate.vector, metric)
        weight = (
            temporal_weight(timestamp, half_life_days=half_life_days, now=reference_time)
            if half_life_days is not None
            else 1.0
        )
        score = similarity * weight
        if min_score is not None and score < min_score:
            continue
        scored.append(
            Neighbor(
                payload=candidate.payload,
                score=score,
                similarity=similarity,
                weight=weight,
                timestamp=timestamp,
            ),
        )

    scored.sort(key=lambda item: (-item.score, -item.timestamp.timestamp()))
    return scored[:k]


def vector_similarity(
    left: Sequence[float],
    right: Sequence[float],
    metric: SimilarityMetric,
) -> float:
    """Similarity in the metric's own scale; distances map to `1 / (1 + d)`."""

    if metric is SimilarityMetric.COSINE:
        return cosine_similarity(left, right)
    if metric is SimilarityMetric.EUCLIDEAN:
        return 1.0 / (1.0 + euclidean_distance(left, right))
    if metric is SimilarityMetric.MANHATTAN:
        return 1.0 / (1.0 + manhattan_distance(left, right))
    raise ValueError(f"Unsupported similarity metric: {metric!r}")


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine similarity; 0 when either vector has zero norm."""

    _require_same_size(left, right)
    dot = sum(l_value * r_value for l_value, r_value in zip(left, right, strict=True))
    left_norm = math.sqrt(sum(value * value for value in left))
    right_norm = math.sqrt(sum(value * value for value in right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (left_norm * right_norm)))


def euclidean_distance(left: Sequence[float], right: Sequence[float]) -> float:
    _require_same_size(left, right)
    return math.sqrt(
        sum((l_value - r_value) ** 2 for l_value, r_value in zip(left, right, strict=True)),
    )


def manhattan_distance(left: Sequence[float], right: Sequence[float]) -> float:
    _require_same_size(left, right)
    return sum(abs(l_value - r_value) for l_value, r_value in zip(left, right, strict=True))


def temporal_weight(
    timestamp: datetime,
    *,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    now: datetime | None = None,
) -> float:
    """Exponential recency weight; halves every `half_life_days`.

    Naive datetimes are taken as UTC.
    """

    if half_life_days <= 0:
        raise ValueError(f"half_life_days must be > 0, got {half_life_days!r}")
    reference_time = ensure_utc(now or utc_now())
    age_days = max(0.0, (reference_time - ensure_utc(timestamp)).total_seconds() / _SECONDS_PER_DAY)
    return math.exp(-math.log(2) * age_days / half_life_days)


def _require_same_size(left: Sequence[float], right: Sequence[float]) -> None:
    if len(left) != len(right):
        raise ValueError("Vectors must have the same size")
