"""Trending score calculation.

Score = sum(weight_i * 0.5 ** (days_ago_i / half_life_days))

- An event from today (days_ago <= 0) contributes its full weight.
- Weights come from configuration (endorsement / renewal / downvote).
- Negative totals are allowed here; callers clamp to >= 0 before persisting.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from app.settings import DEFAULT_EVENT_WEIGHTS

EVENT_ENDORSEMENT = "endorsement"
EVENT_RENEWAL = "renewal"
EVENT_DOWNVOTE = "downvote"

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class ScoredEvent:
    days_ago: float
    weight: float


def days_between(a: datetime, b: datetime) -> int:
    """Days between two instants, with any partial day counted as a whole one."""
    seconds = abs((b - a).total_seconds())
    return math.ceil(seconds / _SECONDS_PER_DAY)


def event_weight(kind: str, weights: Mapping[str, float] | None = None) -> float:
    table = weights if weights is not None else DEFAULT_EVENT_WEIGHTS
    if kind in table:
        return float(table[kind])
    return float(DEFAULT_EVENT_WEIGHTS.get(kind, 0.0))


def decay_factor(days_ago: float, half_life_days: float) -> float:
    if half_life_days <= 0:
        raise ValueError("half_life_days must be > 0")
    if days_ago <= 0:
        return 1.0
    return math.pow(0.5, days_ago / half_life_days)


def compute_score(events: Iterable[ScoredEvent], half_life_days: float) -> float:
    """Aggregate weighted, decayed events into one score."""
    if half_life_days <= 0:
        raise ValueError("half_life_days must be > 0")
    total = 0.0
    for event in events:
        total += event.weight * decay_factor(event.days_ago, half_life_days)
    return total


def clamp_score(score: float) -> float:
    return max(0.0, score)
