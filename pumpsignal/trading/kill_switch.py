"""Immediate-close authority that runs ahead of ordinary exit rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..config import KillSwitchConfig
from ..core.tracker import TokenTracker
from ..types import ExitReason, Transaction

logger = logging.getLogger(__name__)

__all__ = ["KillDecision", "KillState", "KillSwitch"]


@dataclass(slots=True)
class KillState:
    last_activity: float
    triggered: Optional[ExitReason] = None


@dataclass(frozen=True, slots=True)
class KillDecision:
    reason: ExitReason
    detail: str


class KillSwitch:
    """Close a position at once on dead flow, whale entries or dev re-buys."""

    def __init__(self, config: KillSwitchConfig) -> None:
        self.config = config
        self._states: Dict[str, KillState] = {}

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def init_state(self, position_id: str, last_activity: float) -> KillState:
        state = KillState(last_activity=last_activity)
        self._states[position_id] = state
        return state

    def discard(self, position_id: str) -> None:
        self._states.pop(position_id, None)

    def check(
        self,
        position_id: str,
        tracker: TokenTracker,
        now: float,
        latest_tx: Optional[Transaction] = None,
    ) -> Optional[KillDecision]:
        state = self._states.get(position_id)
        if state is None:
            state = self.init_state(position_id, tracker.last_activity)
        if state.triggered is not None:
            return None
        state.last_activity = max(state.last_activity, tracker.last_activity)

        decision: Optional[KillDecision] = None
        idle = now - state.last_activity
        if idle >= self.config.no_tx_seconds:
            decision = KillDecision(ExitReason.KILL_SWITCH_NO_TX, f"no transactions for {idle:.0f}s")
        elif latest_tx is not None:
            if latest_tx.amount > self.config.whale_buy_threshold:
                decision = KillDecision(
                    ExitReason.KILL_SWITCH_WHALE,
                    f"buy of {latest_tx.amount:.3f} by {latest_tx.buyer}",
                )
            elif latest_tx.buyer == tracker.dev_wallet and tracker.dev_buy_count > 1:
                decision = KillDecision(
                    ExitReason.KILL_SWITCH_DEV,
                    f"dev wallet bought again ({tracker.dev_buy_count} buys)",
                )

        if decision is not None:
            state.triggered = decision.reason
            logger.warning(
                "kill-switch %s on %s: %s", decision.reason.value, tracker.token, decision.detail
            )
        return decision
