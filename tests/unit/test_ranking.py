"""Unit tests for the hybrid ranking maths."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from rag_sync.store.ranking import (
    RankingConfig,
    age_in_days,
    combined_score,
    cosine_distance,
    recency_factor,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_cosine_distance() -> None:
    assert cosine_distance([1.0, 0.0], [2.0, 0.0]) == pytest.approx(0.0)
    assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)
    assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)
    assert cosine_distance([0.0, 0.0], [1.0, 0.0]) == 1.0


def test_cosine_distance_dimension_mismatch() -> None:
    with pytest.raises(ValueError, match="dimensions differ"):
        cosine_distance([1.0], [1.0, 0.0])


def test_recency_factor_halves_every_half_life() -> None:
    assert recency_factor(0.0, 180.0) == pytest.approx(1.0)
    assert recency_factor(180.0, 180.0) == pytest.approx(0.5)
    assert recency_factor(360.0, 180.0) == pytest.approx(0.25)
    assert recency_factor(None, 180.0) == 0.0


def test_age_in_days() -> None:
    assert age_in_days(NOW - timedelta(hours=36), NOW) == pytest.approx(1.5)
    assert age_in_days(None, NOW) is None


def test_combined_score_formula() -> None:
    config = RankingConfig()
    score = combined_score(0.4, NOW - timedelta(days=180), NOW, config)
    assert score == pytest.approx(0.4 * 0.7 - 0.5 * 0.3)


def test_newer_row_scores_lower() -> None:
    config = RankingConfig()
    newer = combined_score(0.2, NOW - timedelta(days=1), NOW, config)
    older = combined_score(0.2, NOW - timedelta(days=400), NOW, config)
    assert newer < older


def test_similarity_only_ranking() -> None:
    config = RankingConfig(similarity_weight=1.0, recency_weight=0.0)
    assert combined_score(0.3, NOW, NOW, config) == pytest.approx(0.3)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"similarity_weight": 0.8, "recency_weight": 0.3},
        {"similarity_weight": 1.2, "recency_weight": -0.2},
        {"half_life_days": 0},
    ],
)
def test_invalid_ranking_config(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        RankingConfig(**kwargs)
