"""Rule-based exit evaluation for open paper positions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..config import ExitConfig
from ..types import ExitReason, Position, PositionStatus, RollingMetrics

__all__ = ["ExitDecision", "ExitEngine", "ExitState"]


@dataclass(slots=True)
class ExitState:
    """Transaction-count momentum tracked for one open position."""

    last_tx_count_60s: int
    decrease_count: int = 0
    spike_detected: bool = False
    post_spike_peak: int = 0


@dataclass(frozen=True, slots=True)
class ExitDecision:
    pnl_percent: float = 0.0
    partial: bool = False
    triggers: Tuple[ExitReason, ...] = ()

    @property
    def full_reason(self) -> Optional[ExitReason]:
        return self.triggers[0] if self.triggers else None

    @property
    def should_full_exit(self) -> bool:
        return bool(self.triggers)


class ExitEngine:
    """Decide partial and full exits from PnL and transaction momentum.

    Full-exit triggers are collected in a fixed order (profit target,
    inactivity, falling transaction count, post-spike stagnation); the first
    one becomes the reported reason.
    """

    def __init__(self, config: ExitConfig) -> None:
        self.config = config
        self._states: Dict[str, ExitState] = {}

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def init_state(self, position_id: str, metrics: RollingMetrics) -> ExitState:
        state = ExitState(last_tx_count_60s=metrics.tx_count_60s)
        self._states[position_id] = state
        return state

    def state(self, position_id: str) -> Optional[ExitState]:
        return self._states.get(position_id)

    def discard(self, position_id: str) -> None:
        self._states.pop(position_id, None)

    def evaluate(
        self,
        position: Position,
        metrics: RollingMetrics,
        price: float,
        *,
        seconds_since_activity: float,
    ) -> ExitDecision:
        if position.is_closed:
            return ExitDecision()
        pnl_pct = position.pnl_percent(price)
        state = self._states.get(position.id)
        if state is None:
            # first sight of this position: establish a baseline only
            self.init_state(position.id, metrics)
            return ExitDecision(pnl_percent=pnl_pct)

        cfg = self.config
        partial = position.status is PositionStatus.OPEN and pnl_pct >= cfg.partial_exit_pct
        triggers = []
        if pnl_pct >= cfg.full_exit_pct:
            triggers.append(ExitReason.PROFIT_TARGET_FULL)
        if seconds_since_activity >= cfg.no_activity_seconds:
            triggers.append(ExitReason.NO_ACTIVITY)

        current = metrics.tx_count_60s
        last = state.last_tx_count_60s
        if current < last:
            state.decrease_count += 1
        elif current > last:
            state.decrease_count = 0
            if current >= last * cfg.spike_ratio:
                state.spike_detected = True
                state.post_spike_peak = current
            elif state.spike_detected:
                state.post_spike_peak = max(state.post_spike_peak, current)
        state.last_tx_count_60s = current

        if state.decrease_count >= cfg.tx_decrease_threshold:
            triggers.append(ExitReason.TX_DECREASING)
        if state.spike_detected and current < state.post_spike_peak * cfg.stagnation_ratio:
            triggers.append(ExitReason.STAGNATION_AFTER_SPIKE)

        return ExitDecision(pnl_percent=pnl_pct, partial=partial, triggers=tuple(triggers))
