"""Hybrid ranking: cosine distance blended with an exponential recency decay.

``combined_score = distance * similarity_weight - recency_factor * recency_weight``

Lower scores rank first. ``recency_factor`` is 1.0 for a row written just now
and halves every ``half_life_days``, so the recency term is *subtracted*:
between two equally similar rows the newer one wins.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, model_validator

if TYPE_CHECKING:
    from rag_sync.config import Settings

LN2 = math.log(2)
SECONDS_PER_DAY = 86400.0


class RankingConfig(BaseModel):
    """Weights of the two ranking terms and the recency half-life."""

    similarity_weight: float = 0.7
    recency_weight: float = 0.3
    half_life_days: float = 180.0

    @classmethod
    def from_settings(cls, config: Settings) -> RankingConfig:
        return cls(
            similarity_weight=config.similarity_weight,
            recency_weight=config.recency_weight,
            half_life_days=config.recency_half_life_days,
        )

    @model_validator(mode="after")
    def _check_weights(self) -> RankingConfig:
        for name in ("similarity_weight", "recency_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if not math.isclose(self.similarity_weight + self.recency_weight, 1.0, abs_tol=1e-9):
            raise ValueError("similarity_weight + recency_weight must equal 1")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        return self


def cosine_distance(a: list[float], b: list[float]) -> float:
    """Return ``1 - cos(a, b)``; a zero vector is maximally distant (1.0)."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 1.0
    return 1.0 - dot / norm


def age_in_days(last_updated: datetime | None, now: datetime) -> float | None:
    if last_updated is None:
        return None
    return (now - last_updated).total_seconds() / SECONDS_PER_DAY


def recency_factor(age_days: float | None, half_life_days: float) -> float:
    # Rows written before versioning have no timestamp and get no boost.
    if age_days is None:
        return 0.0
    return math.exp(-LN2 * age_days / half_life_days)


def combined_score(
    distance: float,
    last_updated: datetime | None,
    now: datetime,
    config: RankingConfig,
) -> float:
    recency = recency_factor(age_in_days(last_updated, now), config.half_life_days)
    return distance * config.similarity_weight - recency * config.recency_weight
