from __future__ import annotations

import logging
import math
from datetime import timedelta

import allure
import pytest
from conftest import NOW

from adaptive_dispatch.dispatch.similarity import (
    Candidate,
    SimilarityMetric,
    cosine_similarity,
    find_nearest,
    temporal_weight,
    vector_similarity,
)

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Similarity Search"),
]


def _candidate(vector: tuple[float, ...], payload: str, *, days_ago: float = 0.0) -> Candidate[str]:
    return Candidate(vector=vector, payload=payload, timestamp=NOW - timedelta(days=days_ago))


def test_cosine_identity_and_zero_vector() -> None:
    vector = (0.2, 0.4, 0.0, 1.0)

    assert cosine_similarity(vector, vector) == pytest.approx(1.0)
    assert cosine_similarity(vector, (0.0, 0.0, 0.0, 0.0)) == 0.0


def test_distance_metrics_map_to_unit_interval() -> None:
    left = (0.0, 0.0)
    right = (3.0, 4.0)

    assert vector_similarity(left, right, SimilarityMetric.EUCLIDEAN) == pytest.approx(1.0 / 6.0)
    assert vector_similarity(left, right, SimilarityMetric.MANHATTAN) == pytest.approx(1.0 / 8.0)
    assert vector_similarity(right, right, SimilarityMetric.EUCLIDEAN) == 1.0


def test_mismatched_lengths_raise() -> None:
    with pytest.raises(ValueError, match="same size"):
        cosine_similarity((1.0, 0.0), (1.0, 0.0, 0.0))


def test_temporal_weight_halves_every_half_life() -> None:
    assert temporal_weight(NOW, now=NOW) == 1.0
    assert temporal_weight(NOW - timedelta(days=30), now=NOW) == pytest.approx(0.5)
    assert temporal_weight(NOW - timedelta(days=60), now=NOW) == pytest.approx(0.25)
    assert temporal_weight(NOW + timedelta(days=3), now=NOW) == 1.0


def test_find_nearest_orders_by_weighted_score_and_limits_k() -> None:
    query = (1.0, 0.0)
    candidates = [
        _candidate((0.0, 1.0), "orthogonal"),
        _candidate((1.0, 0.0), "exact-old", days_ago=30),
        _candidate((1.0, 0.1), "close-new"),
        _candidate((1.0, 1.0), "diagonal"),
    ]

    result = find_nearest(query, candidates, k=3, now=NOW)

    assert [item.payload for item in result] == ["close-new", "diagonal", "exact-old"]
    scores = [item.score for item in result]
    assert scores == sorted(scores, reverse=True)
    assert result[2].weight == pytest.approx(0.5)
    assert result[2].similarity == pytest.approx(1.0)


def test_find_nearest_breaks_ties_by_recency() -> None:
    candidates = [
        _candidate((1.0, 0.0), "older", days_ago=2),
        _candidate((1.0, 0.0), "newer", days_ago=1),
    ]

    result = find_nearest((1.0, 0.0), candidates, k=2, half_life_days=None, now=NOW)

    assert [item.payload for item in result] == ["newer", "older"]


def test_find_nearest_min_score_and_empty_inputs() -> None:
    candidates = [_candidate((1.0, 0.0), "match"), _candidate((0.0, 1.0), "miss")]

    assert [item.payload for item in find_nearest((1.0, 0.0), candidates, k=5, min_score=0.5, now=NOW)] == [
        "match",
    ]
    assert find_nearest((1.0, 0.0), [], k=5) == []
    assert find_nearest((1.0, 0.0), candidates, k=0) == []


def test_find_nearest_scans_most_recent_above_ceiling(caplog: pytest.LogCaptureFixture) -> None:
    candidates = [_candidate((1.0, 0.0), f"item-{index}", days_ago=index) for index in range(5)]

    with caplog.at_level(logging.WARNING):
        result = find_nearest((1.0, 0.0), candidates, k=10, candidate_ceiling=3, now=NOW)

    assert {item.payload for item in result} == {"item-0", "item-1", "item-2"}
    assert "exceeds ceiling" in caplog.text


def test_euclidean_metric_in_search() -> None:
    candidates = [_candidate((0.0, 0.0), "origin"), _candidate((3.0, 4.0), "far")]

    result = find_nearest((0.0, 0.0), candidates, k=2, metric=SimilarityMetric.EUCLIDEAN, now=NOW)

    assert result[0].payload == "origin"
    assert result[0].score == 1.0
    assert math.isclose(result[1].score, 1.0 / 6.0)


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive_now = NOW.replace(tzinfo=None)

    assert temporal_weight(naive_now - timedelta(days=30), half_life_days=30.0, now=NOW) == pytest.approx(0.5)
    assert temporal_weight(NOW - timedelta(days=30), half_life_days=30.0, now=naive_now) == pytest.approx(0.5)

    neighbors = find_nearest(
        (1.0, 0.0),
        [
            Candidate(vector=(1.0, 0.0), payload="naive", timestamp=naive_now - timedelta(days=1)),
            Candidate(vector=(1.0, 0.0), payload="aware", timestamp=NOW),
        ],
        k=2,
        now=NOW,
        candidate_ceiling=1,
    )

    assert [neighbor.payload for neighbor in neighbors] == ["aware"]
    assert neighbors[0].timestamp == NOW
