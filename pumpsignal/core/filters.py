"""Hard pass/fail filters. Any failure drops the token for good."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..config import FilterConfig
from ..types import RollingMetrics, Transaction

__all__ = [
    "FilterResult",
    "evaluate_filters",
    "is_whale_noise",
    "prefilter_transaction",
]


@dataclass(frozen=True, slots=True)
class FilterResult:
    passed: bool
    failures: Tuple[str, ...] = ()
    checks: Dict[str, bool] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return "; ".join(self.failures)


def evaluate_filters(
    metrics: RollingMetrics,
    config: FilterConfig,
    *,
    dev_buy_count: int = 0,
    metadata_edit_count: int = 0,
) -> FilterResult:
    """Run every filter and collect all failures, not just the first."""

    failures: List[str] = []
    checks: Dict[str, bool] = {}

    def check(name: str, ok: bool, message: str) -> None:
        checks[name] = ok
        if not ok:
            failures.append(message)

    check(
        "largest_buy",
        metrics.largest_buy <= config.max_largest_buy,
        f"largest_buy ({metrics.largest_buy:.3f}) > {config.max_largest_buy}",
    )
    check(
        "avg_buy_size_max",
        metrics.avg_buy_size <= config.max_avg_buy_size,
        f"avg_buy_size ({metrics.avg_buy_size:.3f}) > {config.max_avg_buy_size}",
    )
    # zero means no data yet, not a token of dust buys
    check(
        "avg_buy_size_min",
        metrics.avg_buy_size == 0 or metrics.avg_buy_size >= config.min_avg_buy_size,
        f"avg_buy_size ({metrics.avg_buy_size:.3f}) < {config.min_avg_buy_size}",
    )
    check(
        "buy_size_std",
        metrics.buy_size_std <= config.max_buy_size_std,
        f"buy_size_std ({metrics.buy_size_std:.3f}) > {config.max_buy_size_std} indicates whale noise",
    )
    check(
        "dev_buys",
        dev_buy_count <= config.max_dev_buys,
        f"dev wallet bought {dev_buy_count} times (max: {config.max_dev_buys})",
    )
    check(
        "metadata_edits",
        metadata_edit_count <= config.max_metadata_edits,
        f"metadata edited {metadata_edit_count} times (max: {config.max_metadata_edits})",
    )

    return FilterResult(passed=not failures, failures=tuple(failures), checks=checks)


def prefilter_transaction(tx: Transaction, config: FilterConfig) -> Optional[str]:
    """Cheap single-transaction check run before any metrics are computed.

    Returns the drop reason, or ``None`` when the transaction is acceptable.
    """
    if tx.amount > config.max_largest_buy:
        return f"largest_buy (single transaction {tx.amount:.3f}) > {config.max_largest_buy}"
    return None


def is_whale_noise(metrics: RollingMetrics, config: FilterConfig) -> bool:
    """Coefficient of variation of buy size above the configured ceiling."""
    if metrics.avg_buy_size <= 0:
        return False
    return metrics.buy_size_std / metrics.avg_buy_size > config.whale_noise_cv
