"""Entry gating and missed-runner bookkeeping."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

from ..config import EntryConfig
from ..core.heuristics import BuyerVolumeValuation, ValuationStrategy
from ..core.scoring import TokenScore
from ..core.signals import SignalEvaluation
from ..core.tracker import TokenTracker
from ..types import RollingMetrics

logger = logging.getLogger(__name__)

__all__ = [
    "EntryDecision",
    "EntryEngine",
    "MissedRunner",
    "POSITION_EXISTS",
    "ALREADY_TRADED",
    "TOKEN_DROPPED",
    "SCORE_TOO_LOW",
    "TOO_YOUNG",
    "TOO_OLD",
    "SIGNALS_FAILED",
    "VALUATION_OUT_OF_RANGE",
]

POSITION_EXISTS = "position_exists"
ALREADY_TRADED = "already_traded"
TOKEN_DROPPED = "token_dropped"
SCORE_TOO_LOW = "score_too_low"
TOO_YOUNG = "too_young"
TOO_OLD = "too_old"
SIGNALS_FAILED = "signals_failed"
VALUATION_OUT_OF_RANGE = "valuation_out_of_range"

# rejections that say nothing about the opportunity itself
_NOT_MISSED = {POSITION_EXISTS, ALREADY_TRADED}


@dataclass(frozen=True, slots=True)
class EntryDecision:
    accepted: bool
    reason: Optional[str] = None
    detail: str = ""
    valuation: float = 0.0


@dataclass(frozen=True, slots=True)
class MissedRunner:
    token: str
    timestamp: float
    score: float
    reason: str
    detail: str


class EntryEngine:
    """Check every entry precondition in a fixed order.

    The first failing precondition is reported. Tokens rejected despite a
    qualifying score are kept as "missed runners" (latest rejection per
    token, bounded history) for later performance review.
    """

    def __init__(
        self,
        config: EntryConfig,
        *,
        valuation: ValuationStrategy | None = None,
    ) -> None:
        self.config = config
        self.valuation = valuation or BuyerVolumeValuation(config.valuation_multiplier)
        self._missed: "OrderedDict[str, MissedRunner]" = OrderedDict()

    def evaluate(
        self,
        tracker: TokenTracker,
        metrics: RollingMetrics,
        score: TokenScore,
        signals: SignalEvaluation,
        now: float,
        *,
        has_position: bool = False,
        already_traded: bool = False,
    ) -> EntryDecision:
        decision = self._check(
            tracker,
            metrics,
            score,
            signals,
            now,
            has_position=has_position,
            already_traded=already_traded,
        )
        if decision.accepted:
            self._missed.pop(tracker.token, None)
        elif decision.reason not in _NOT_MISSED and score.score >= self.config.min_score:
            self._record_missed(
                MissedRunner(
                    token=tracker.token,
                    timestamp=now,
                    score=score.score,
                    reason=decision.reason or "",
                    detail=decision.detail,
                )
            )
        return decision

    def _check(
        self,
        tracker: TokenTracker,
        metrics: RollingMetrics,
        score: TokenScore,
        signals: SignalEvaluation,
        now: float,
        *,
        has_position: bool,
        already_traded: bool,
    ) -> EntryDecision:
        cfg = self.config
        if has_position:
            return EntryDecision(False, POSITION_EXISTS)
        if already_traded:
            return EntryDecision(False, ALREADY_TRADED)
        if tracker.dropped:
            return EntryDecision(False, TOKEN_DROPPED, tracker.drop_reason or "")
        if score.score < cfg.min_score:
            return EntryDecision(False, SCORE_TOO_LOW, f"score {score.score:.1f} < {cfg.min_score}")
        age = tracker.age(now)
        if age < cfg.min_token_age:
            return EntryDecision(False, TOO_YOUNG, f"age {age:.0f}s < {cfg.min_token_age:.0f}s")
        if age > cfg.max_token_age:
            return EntryDecision(False, TOO_OLD, f"age {age:.0f}s > {cfg.max_token_age:.0f}s")
        if not signals.all_passed:
            return EntryDecision(False, SIGNALS_FAILED, ", ".join(signals.failed()))
        valuation = self.valuation.estimate(metrics)
        if not cfg.min_valuation <= valuation <= cfg.max_valuation:
            return EntryDecision(
                False,
                VALUATION_OUT_OF_RANGE,
                f"valuation {valuation:.2f} outside [{cfg.min_valuation}, {cfg.max_valuation}]",
                valuation,
            )
        return EntryDecision(True, None, f"score {score.score:.1f}", valuation)

    def _record_missed(self, runner: MissedRunner) -> None:
        if runner.token not in self._missed:
            logger.debug("missed runner %s: %s (%s)", runner.token, runner.reason, runner.detail)
        self._missed[runner.token] = runner
        self._missed.move_to_end(runner.token)
        while len(self._missed) > self.config.missed_runner_history:
            self._missed.popitem(last=False)

    @property
    def missed_runner_count(self) -> int:
        return len(self._missed)

    def missed_runners(self) -> List[MissedRunner]:
        return list(self._missed.values())
