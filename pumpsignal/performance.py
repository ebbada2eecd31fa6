"""Paper-trading performance statistics."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .observers import EngineObserver
from .schemas import PositionClosed
from .trade_log import read_trade_files

__all__ = [
    "PerformanceMetrics",
    "PerformanceTracker",
    "ValidityReport",
    "compute_metrics",
    "exit_reason_breakdown",
    "format_summary",
    "load_trades",
    "validate_performance",
]

# nominal risk per trade used for R multiples
RISK_PER_TRADE = 1.0

MIN_TRADES = 100
MIN_WIN_RATE = 35.0
MIN_AVG_R = 2.5
MAX_DRAWDOWN = 20.0


@dataclass(slots=True)
class PerformanceMetrics:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_r_multiple: float = 0.0
    avg_time_in_trade: float = 0.0
    kill_switch_exits: int = 0
    kill_switch_pct: float = 0.0
    missed_runners: int = 0
    total_pnl: float = 0.0
    max_drawdown: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ValidityReport:
    valid: bool
    reasons: List[str] = field(default_factory=list)


def _pnl(trade: Mapping[str, Any]) -> float:
    return float(trade.get("realized_pnl") or 0.0)


def _max_drawdown(pnls: Iterable[float]) -> float:
    """Largest peak-to-trough fall of cumulative PnL, as % of the peak.

    Only measured once the running balance has a positive peak.
    """
    balance = peak = worst = 0.0
    for pnl in pnls:
        balance += pnl
        peak = max(peak, balance)
        if peak > 0:
            worst = max(worst, (peak - balance) / peak * 100.0)
    return worst


def compute_metrics(trades: Sequence[Mapping[str, Any]], *, missed_runners: int = 0) -> PerformanceMetrics:
    """Summarise closed-trade records (as written to the trade log)."""

    total = len(trades)
    if not total:
        return PerformanceMetrics(missed_runners=missed_runners)

    ordered = sorted(trades, key=lambda t: t.get("exit_time") or 0.0)
    pnls = [_pnl(t) for t in ordered]
    wins = sum(1 for p in pnls if p > 0)
    total_pnl = sum(pnls)

    durations = [
        float(t["exit_time"]) - float(t["entry_time"])
        for t in ordered
        if t.get("exit_time") is not None and t.get("entry_time") is not None
    ]
    kill_exits = sum(1 for t in ordered if str(t.get("exit_reason") or "").startswith("kill_switch_"))

    return PerformanceMetrics(
        total_trades=total,
        wins=wins,
        losses=total - wins,
        win_rate=wins / total * 100.0,
        avg_r_multiple=total_pnl / total / RISK_PER_TRADE,
        avg_time_in_trade=sum(durations) / len(durations) if durations else 0.0,
        kill_switch_exits=kill_exits,
        kill_switch_pct=kill_exits / total * 100.0,
        missed_runners=missed_runners,
        total_pnl=total_pnl,
        max_drawdown=_max_drawdown(pnls),
    )


def validate_performance(metrics: PerformanceMetrics) -> ValidityReport:
    if metrics.total_trades < MIN_TRADES:
        return ValidityReport(
            False, [f"insufficient trades: {metrics.total_trades}/{MIN_TRADES} minimum"]
        )
    reasons = []
    if metrics.win_rate < MIN_WIN_RATE:
        reasons.append(f"win rate {metrics.win_rate:.1f}% < {MIN_WIN_RATE:.0f}%")
    if metrics.avg_r_multiple < MIN_AVG_R:
        reasons.append(f"avg R {metrics.avg_r_multiple:.2f} < {MIN_AVG_R}")
    if metrics.max_drawdown >= MAX_DRAWDOWN:
        reasons.append(f"max drawdown {metrics.max_drawdown:.1f}% >= {MAX_DRAWDOWN:.0f}%")
    return ValidityReport(not reasons, reasons)


def exit_reason_breakdown(trades: Iterable[Mapping[str, Any]]) -> List[Tuple[str, int]]:
    counts = Counter(str(t.get("exit_reason") or "unknown") for t in trades)
    return counts.most_common()


def format_summary(metrics: PerformanceMetrics) -> str:
    report = validate_performance(metrics)
    rule = "=" * 43
    lines = [
        rule,
        "PERFORMANCE SUMMARY".center(43),
        rule,
        f"Total trades:        {metrics.total_trades}",
        f"Wins:                {metrics.wins}",
        f"Losses:              {metrics.losses}",
        f"Win rate:            {metrics.win_rate:.1f}%",
        f"Average R multiple:  {metrics.avg_r_multiple:.2f}",
        f"Avg time in trade:   {metrics.avg_time_in_trade:.0f}s",
        f"Kill-switch exits:   {metrics.kill_switch_exits} ({metrics.kill_switch_pct:.1f}%)",
        f"Missed runners:      {metrics.missed_runners}",
        f"Total PnL:           {metrics.total_pnl:.4f} SOL",
        f"Max drawdown:        {metrics.max_drawdown:.1f}%",
        rule,
        f"System valid: {'YES' if report.valid else 'NO'}",
    ]
    if not report.valid:
        lines.append("Failure reasons:")
        lines.extend(f"  - {reason}" for reason in report.reasons)
    return "\n".join(lines)


def load_trades(paths: Iterable[str | Path]) -> List[Dict[str, Any]]:
    """Read trade records from files and from trade-log directories."""
    files: List[Path] = []
    for entry in map(Path, paths):
        if entry.is_dir():
            files.extend(sorted(entry.glob("trades_*.jsonl")))
        else:
            files.append(entry)
    return read_trade_files(files)


class PerformanceTracker(EngineObserver):
    """Accumulate closed trades from the engine as they happen."""

    def __init__(self) -> None:
        self.trades: List[Dict[str, Any]] = []
        self.missed_runners = 0

    def on_position_closed(self, event: PositionClosed) -> None:
        self.trades.append(event.to_record())

    def set_missed_runners(self, count: int) -> None:
        self.missed_runners = count

    def metrics(self) -> PerformanceMetrics:
        return compute_metrics(self.trades, missed_runners=self.missed_runners)

    def summary(self) -> str:
        return format_summary(self.metrics())
