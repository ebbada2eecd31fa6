"""Entry signal conditions.

Three conditions must hold at the same time:

* **EAS** (early attention): enough distinct buyers, short gaps between
  transactions and a growing 60s transaction count.
* **LSF** (liquidity shape): moderate, evenly sized buys with no outlier.
* **MC** (momentum): a busy last minute whose gaps are still shrinking.

Everything here is recomputed from metrics on each call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..config import SignalConfig
from ..types import RollingMetrics

__all__ = ["ConditionResult", "SignalEvaluation", "evaluate_signals"]


@dataclass(frozen=True, slots=True)
class ConditionResult:
    name: str
    checks: Dict[str, bool] = field(default_factory=dict)
    values: Dict[str, float] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(self.checks.values())

    def failed_checks(self) -> List[str]:
        return [name for name, ok in self.checks.items() if not ok]


@dataclass(frozen=True, slots=True)
class SignalEvaluation:
    eas: ConditionResult
    lsf: ConditionResult
    mc: ConditionResult

    @property
    def conditions(self) -> tuple[ConditionResult, ConditionResult, ConditionResult]:
        return (self.eas, self.lsf, self.mc)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.conditions)

    def failed(self) -> List[str]:
        """Names of the conditions that did not hold."""
        return [c.name for c in self.conditions if not c.passed]

    def failure_reasons(self) -> List[str]:
        return [
            f"{c.name}: {', '.join(c.failed_checks())}"
            for c in self.conditions
            if not c.passed
        ]

    def strength(self) -> float:
        """Share of passed sub-checks across all conditions, 0-100."""
        checks = [ok for c in self.conditions for ok in c.checks.values()]
        if not checks:
            return 0.0
        return 100.0 * sum(checks) / len(checks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            c.name: {"passed": c.passed, "checks": dict(c.checks), "values": dict(c.values)}
            for c in self.conditions
        }


def _attention(m: RollingMetrics, cfg: SignalConfig) -> ConditionResult:
    return ConditionResult(
        name="EAS",
        checks={
            "buyers": m.unique_buyers_5m >= cfg.min_buyers_5m,
            "tx_interval": m.tx_interval_mean < cfg.max_tx_interval_mean,
            "acceleration": m.acceleration > 0,
        },
        values={
            "unique_buyers_5m": m.unique_buyers_5m,
            "tx_interval_mean": m.tx_interval_mean,
            "acceleration": m.acceleration,
        },
    )


def _liquidity_shape(m: RollingMetrics, cfg: SignalConfig) -> ConditionResult:
    return ConditionResult(
        name="LSF",
        checks={
            "avg_buy_size": cfg.min_avg_buy_size <= m.avg_buy_size <= cfg.max_avg_buy_size,
            "buy_size_std": m.buy_size_std < cfg.max_buy_size_std,
            "largest_buy": m.largest_buy <= cfg.max_largest_buy,
        },
        values={
            "avg_buy_size": m.avg_buy_size,
            "buy_size_std": m.buy_size_std,
            "largest_buy": m.largest_buy,
        },
    )


def _momentum(m: RollingMetrics, cfg: SignalConfig) -> ConditionResult:
    return ConditionResult(
        name="MC",
        checks={
            "tx_count_60s": m.tx_count_60s >= cfg.min_tx_count_60s,
            "accelerating": m.interval_accelerating,
        },
        values={
            "tx_count_60s": m.tx_count_60s,
            "interval_accelerating": float(m.interval_accelerating),
        },
    )


def evaluate_signals(metrics: RollingMetrics, config: SignalConfig) -> SignalEvaluation:
    return SignalEvaluation(
        eas=_attention(metrics, config),
        lsf=_liquidity_shape(metrics, config),
        mc=_momentum(metrics, config),
    )
