"""Observers receiving the engine's lifecycle events.

Events are typed dataclasses from :mod:`pumpsignal.schemas`; each has one
handler method on :class:`EngineObserver`. Collaborators (trade log,
performance tracker, log output) subclass it and override what they need.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List

from .logging_utils import serialize_for_log
from .schemas import (
    EntrySignal,
    KillSwitchTriggered,
    PartialExitExecuted,
    PositionClosed,
    PositionOpened,
    TokenDiscovered,
    TokenDropped,
)
from .types import Position

logger = logging.getLogger(__name__)

__all__ = ["EngineObserver", "LoggingObserver", "ObserverGroup"]

_HANDLERS = {
    TokenDiscovered: "on_token_discovered",
    TokenDropped: "on_token_dropped",
    EntrySignal: "on_entry_signal",
    PositionOpened: "on_position_opened",
    PartialExitExecuted: "on_partial_exit",
    PositionClosed: "on_position_closed",
    KillSwitchTriggered: "on_kill_switch",
}


class EngineObserver:
    """No-op base observer."""

    def emit(self, event: Any) -> None:
        name = _HANDLERS.get(type(event))
        if name is None:
            raise TypeError(f"unsupported event type {type(event).__name__}")
        getattr(self, name)(event)

    def on_token_discovered(self, event: TokenDiscovered) -> None:
        pass

    def on_token_dropped(self, event: TokenDropped) -> None:
        pass

    def on_entry_signal(self, event: EntrySignal) -> None:
        pass

    def on_position_opened(self, event: PositionOpened) -> None:
        pass

    def on_partial_exit(self, event: PartialExitExecuted) -> None:
        pass

    def on_position_closed(self, event: PositionClosed) -> None:
        pass

    def on_kill_switch(self, event: KillSwitchTriggered) -> None:
        pass

    def on_open_position_at_shutdown(self, position: Position) -> None:
        pass

    def close(self) -> None:
        pass


class ObserverGroup(EngineObserver):
    """Fan events out to several observers.

    A failing observer is logged and counted; it never interrupts delivery
    to the others or propagates into the engine.
    """

    def __init__(self, observers: Iterable[EngineObserver] = ()) -> None:
        self._observers: List[EngineObserver] = list(observers)
        self.failures = 0

    def add(self, observer: EngineObserver) -> None:
        self._observers.append(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def _call(self, observer: EngineObserver, method: str, payload: Any) -> None:
        try:
            getattr(observer, method)(payload)
        except Exception:
            self.failures += 1
            logger.exception("%s.%s failed", type(observer).__name__, method)

    def emit(self, event: Any) -> None:
        name = _HANDLERS.get(type(event))
        if name is None:
            raise TypeError(f"unsupported event type {type(event).__name__}")
        for observer in list(self._observers):
            self._call(observer, name, event)

    def on_open_position_at_shutdown(self, position: Position) -> None:
        for observer in list(self._observers):
            self._call(observer, "on_open_position_at_shutdown", position)

    def close(self) -> None:
        for observer in list(self._observers):
            try:
                observer.close()
            except Exception:
                self.failures += 1
                logger.exception("closing %s failed", type(observer).__name__)


class LoggingObserver(EngineObserver):
    """Write each lifecycle event to the log."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logging.getLogger("pumpsignal.events")

    def on_token_discovered(self, event: TokenDiscovered) -> None:
        self.log.debug("token discovered %s (dev %s)", event.token, event.dev_wallet)

    def on_token_dropped(self, event: TokenDropped) -> None:
        self.log.debug("token dropped %s: %s", event.token, event.reason)

    def on_entry_signal(self, event: EntrySignal) -> None:
        self.log.info("entry signal %s score=%.1f", event.token, event.score)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("entry signal %s detail %s", event.token, serialize_for_log(event.signals))

    def on_position_opened(self, event: PositionOpened) -> None:
        self.log.info(
            "position opened %s %s entry=%.4f size=%.2f",
            event.position_id,
            event.token,
            event.entry_price,
            event.size,
        )

    def on_partial_exit(self, event: PartialExitExecuted) -> None:
        self.log.info(
            "partial exit %s %+.1f%% pnl=%.4f", event.position_id, event.pnl_percent, event.pnl
        )

    def on_position_closed(self, event: PositionClosed) -> None:
        self.log.info(
            "position closed %s %s reason=%s pnl=%.4f max=%.1f%%",
            event.position_id,
            event.token,
            event.exit_reason.value,
            event.realized_pnl,
            event.max_unrealized_pnl,
        )

    def on_kill_switch(self, event: KillSwitchTriggered) -> None:
        self.log.warning("kill-switch %s %s: %s", event.position_id, event.reason.value, event.detail)

    def on_open_position_at_shutdown(self, position: Position) -> None:
        self.log.info(
            "open at shutdown %s %s status=%s realized=%.4f",
            position.id,
            position.token,
            position.status.value,
            position.realized_pnl,
        )
