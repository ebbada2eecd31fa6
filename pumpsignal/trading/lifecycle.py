"""Position lifecycle: entry, kill-switch, partial and full exits."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..config import EngineConfig
from ..core.heuristics import AverageBuyPrice, PriceStrategy, ValuationStrategy
from ..core.scoring import TokenScore
from ..core.signals import SignalEvaluation
from ..core.tracker import TokenTracker
from ..schemas import EntrySignal, KillSwitchTriggered
from ..types import Position, RollingMetrics, Transaction
from .entry import EntryDecision, EntryEngine
from .exits import ExitEngine
from .kill_switch import KillSwitch
from .positions import PositionBook

logger = logging.getLogger(__name__)

__all__ = ["LifecycleOutcome", "PositionLifecycle"]


@dataclass(slots=True)
class LifecycleOutcome:
    """Events produced by one lifecycle step, in emission order."""

    position: Optional[Position] = None
    decision: Optional[EntryDecision] = None
    events: List[Any] = field(default_factory=list)


class PositionLifecycle:
    """Owns the position book and the auxiliary per-position state.

    Exit and kill-switch state is created with a position and discarded the
    moment it closes.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        price: PriceStrategy | None = None,
        valuation: ValuationStrategy | None = None,
    ) -> None:
        self.config = config
        self.price = price or AverageBuyPrice()
        self.book = PositionBook(partial_exit_fraction=config.exit.partial_exit_fraction)
        self.entry = EntryEngine(config.entry, valuation=valuation)
        self.exits = ExitEngine(config.exit)
        self.kill_switch = KillSwitch(config.kill_switch)

    def _mark_price(self, position: Position, metrics: RollingMetrics) -> float:
        price = self.price.price(metrics)
        if price > 0:
            return price
        # no buys left in the window: hold the last observed price
        return position.last_price if position.last_price else position.entry_price

    def try_open(
        self,
        tracker: TokenTracker,
        metrics: RollingMetrics,
        score: TokenScore,
        signals: SignalEvaluation,
        now: float,
    ) -> LifecycleOutcome:
        decision = self.entry.evaluate(
            tracker,
            metrics,
            score,
            signals,
            now,
            has_position=self.book.has_open_position(tracker.token),
            already_traded=self.book.was_traded(tracker.token),
        )
        outcome = LifecycleOutcome(decision=decision)
        if not decision.accepted:
            return outcome

        opened = self.book.open(
            tracker.token,
            price=self.price.price(metrics),
            score=score.score,
            size=self.config.entry.position_size,
            now=now,
        )
        if opened is None:  # pragma: no cover - guarded by the entry checks above
            return outcome
        position, event = opened
        self.exits.init_state(position.id, metrics)
        self.kill_switch.init_state(position.id, tracker.last_activity)
        outcome.position = position
        outcome.events.append(
            EntrySignal(
                token=tracker.token,
                timestamp=now,
                score=score.score,
                breakdown=score.breakdown.to_dict(),
                signals=signals.to_dict(),
            )
        )
        outcome.events.append(event)
        return outcome

    def evaluate(
        self,
        position: Position,
        tracker: TokenTracker,
        now: float,
        latest_tx: Optional[Transaction] = None,
    ) -> LifecycleOutcome:
        """Run the kill-switch, then the exit rules, against live metrics."""

        outcome = LifecycleOutcome(position=position)
        if position.is_closed:
            return outcome

        metrics = tracker.metrics(now)
        price = self._mark_price(position, metrics)
        self.book.mark(position, price)

        kill = self.kill_switch.check(position.id, tracker, now, latest_tx)
        if kill is not None:
            closed = self.book.close(position, price, kill.reason, now)
            outcome.events.append(
                KillSwitchTriggered(
                    position_id=position.id,
                    token=position.token,
                    timestamp=now,
                    reason=kill.reason,
                    detail=kill.detail,
                )
            )
            if closed is not None:
                outcome.events.append(closed)
            self._release(position)
            return outcome

        decision = self.exits.evaluate(
            position,
            metrics,
            price,
            seconds_since_activity=tracker.seconds_since_activity(now),
        )
        if decision.partial:
            partial = self.book.partial_exit(position, price, now)
            if partial is not None:
                outcome.events.append(partial)
        if decision.should_full_exit:
            if len(decision.triggers) > 1:
                logger.debug(
                    "%s exit triggers: %s",
                    position.id,
                    ", ".join(t.value for t in decision.triggers),
                )
            closed = self.book.close(position, price, decision.full_reason, now)
            if closed is not None:
                outcome.events.append(closed)
            self._release(position)
        return outcome

    def _release(self, position: Position) -> None:
        self.exits.discard(position.id)
        self.kill_switch.discard(position.id)
