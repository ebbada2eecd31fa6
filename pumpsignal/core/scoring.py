"""Deterministic weighted score for entry ranking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from ..config import ScoringConfig
from ..types import RollingMetrics

__all__ = [
    "ScoreBreakdown",
    "TokenScore",
    "compute_score",
    "format_score",
    "meets_threshold",
    "score_tier",
    "score_trend",
]

TREND_TOLERANCE = 2.0


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    buyers: float
    acceleration: float
    repeat_buyers: float
    large_buy_penalty: float
    no_activity_penalty: float

    @property
    def raw(self) -> float:
        return (
            self.buyers
            + self.acceleration
            + self.repeat_buyers
            - self.large_buy_penalty
            - self.no_activity_penalty
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "buyers": self.buyers,
            "acceleration": self.acceleration,
            "repeat_buyers": self.repeat_buyers,
            "large_buy_penalty": self.large_buy_penalty,
            "no_activity_penalty": self.no_activity_penalty,
        }


@dataclass(frozen=True, slots=True)
class TokenScore:
    token: str
    score: float
    timestamp: float
    breakdown: ScoreBreakdown


def compute_score(metrics: RollingMetrics, config: ScoringConfig, *, now: float = 0.0) -> TokenScore:
    """Weighted sum of buyer, acceleration and repeat-buyer signals minus penalties.

    The result is floored at zero.
    """
    breakdown = ScoreBreakdown(
        buyers=metrics.unique_buyers_5m * config.buyers_weight,
        acceleration=metrics.acceleration * config.acceleration_weight,
        repeat_buyers=metrics.repeat_buyers_5m * config.repeat_buyers_weight,
        large_buy_penalty=(
            config.large_buy_penalty if metrics.largest_buy > config.large_buy_threshold else 0.0
        ),
        no_activity_penalty=config.no_activity_penalty if metrics.tx_count_60s == 0 else 0.0,
    )
    return TokenScore(
        token=metrics.token,
        score=max(0.0, breakdown.raw),
        timestamp=now,
        breakdown=breakdown,
    )


def meets_threshold(score: TokenScore, min_score: float) -> bool:
    return score.score >= min_score


def score_trend(current: TokenScore, previous: Optional[TokenScore]) -> str:
    if previous is None:
        return "flat"
    delta = current.score - previous.score
    if delta > TREND_TOLERANCE:
        return "up"
    if delta < -TREND_TOLERANCE:
        return "down"
    return "flat"


def score_tier(score: float, min_score: float) -> str:
    if score >= 30:
        return "excellent"
    if score >= 22:
        return "good"
    if score >= min_score:
        return "marginal"
    return "weak"


def format_score(score: TokenScore) -> str:
    b = score.breakdown
    return (
        f"{score.token[:8]} score={score.score:.1f} "
        f"(buyers={b.buyers:.0f} accel={b.acceleration:+.0f} repeat={b.repeat_buyers:.0f} "
        f"-large={b.large_buy_penalty:.0f} -idle={b.no_activity_penalty:.0f})"
    )
