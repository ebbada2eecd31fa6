"""Signal engine orchestrator.

Routes every purchase event through token tracking and either the entry
pipeline (filters, signals, score, entry gate) or, for tokens holding an
open position, the kill-switch and exit rules. Periodic loops recompute
scores, re-check open positions, sweep stale tokens and log a status line.

Work for one token is serialised behind a per-token ``asyncio.Lock``; the
decision code itself is synchronous and never awaits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from .config import EngineConfig
from .core.filters import evaluate_filters, prefilter_transaction
from .core.heuristics import DevWalletStrategy, PriceStrategy, ValuationStrategy
from .core.scoring import TokenScore, compute_score, format_score, score_trend
from .core.signals import evaluate_signals
from .core.tracker import TokenRegistry, TokenTracker
from .logging_utils import warn_once_per
from .observers import EngineObserver
from .trading.lifecycle import PositionLifecycle
from .trading.positions import PositionBook
from .types import MalformedTransaction, Position, Transaction

logger = logging.getLogger(__name__)

__all__ = ["EngineStatus", "SignalEngine"]


@dataclass(slots=True)
class EngineStatus:
    running: bool
    feed_connected: bool
    processed_events: int
    rejected_events: int
    active_tokens: int
    tracked_tokens: int
    open_positions: int
    closed_positions: int
    total_pnl: float
    missed_runners: int
    uptime: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SignalEngine:
    def __init__(
        self,
        config: EngineConfig,
        *,
        observer: EngineObserver | None = None,
        clock: Callable[[], float] = time.time,
        price: PriceStrategy | None = None,
        valuation: ValuationStrategy | None = None,
        dev_strategy: DevWalletStrategy | None = None,
    ) -> None:
        self.config = config
        self.observer = observer or EngineObserver()
        self._clock = clock
        self.registry = TokenRegistry(config, observer=self.observer, dev_strategy=dev_strategy)
        self.lifecycle = PositionLifecycle(config, price=price, valuation=valuation)
        self.processed_events = 0
        self.rejected_events = 0
        self.feed_connected = False
        self.running = False
        self._started_at = clock()
        self._scores: Dict[str, TokenScore] = {}
        self._locks_guard = asyncio.Lock()
        self._token_locks: Dict[str, asyncio.Lock] = {}
        self._tasks: List[asyncio.Task[None]] = []

    # helpers ---------------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    async def _get_token_lock(self, token: str) -> asyncio.Lock:
        async with self._locks_guard:
            lock = self._token_locks.get(token)
            if lock is None:
                lock = asyncio.Lock()
                self._token_locks[token] = lock
            return lock

    def _emit(self, events: Iterable[Any]) -> None:
        for event in events:
            self.observer.emit(event)

    @property
    def book(self) -> PositionBook:
        return self.lifecycle.book

    def set_feed_connected(self, connected: bool) -> None:
        if connected != self.feed_connected:
            logger.info("transaction feed %s", "connected" if connected else "disconnected")
        self.feed_connected = connected

    # event path ------------------------------------------------------------

    async def on_transaction(self, event: Transaction | Mapping[str, Any]) -> None:
        """Handle one inbound purchase event.

        Malformed events are counted and logged, and leave all state untouched.
        """
        self.processed_events += 1
        try:
            if isinstance(event, Transaction):
                tx = event.validate()
            else:
                tx = Transaction.parse(event)
        except MalformedTransaction as exc:
            self.rejected_events += 1
            warn_once_per(60.0, "malformed_tx", "dropping malformed transaction: %s", exc, logger=logger)
            return

        if self.registry.is_retired(tx.token):
            logger.debug("ignoring late transaction for expired token %s", tx.token)
            return
        lock = await self._get_token_lock(tx.token)
        async with lock:
            self._process(tx, self.now())

    def _process(self, tx: Transaction, now: float) -> None:
        position = self.book.get(tx.token)
        if position is not None:
            tracker = self.registry.record(tx, now)
            if tracker is not None:
                self._emit(self.lifecycle.evaluate(position, tracker, now, latest_tx=tx).events)
            return

        prefilter_reason = prefilter_transaction(tx, self.config.filters)
        tracker = self.registry.record(tx, now)
        if tracker is None or tracker.dropped:
            return
        if prefilter_reason is not None:
            self.registry.drop(tracker, prefilter_reason, now)
            return
        self._evaluate_entry(tracker, now)

    def _evaluate_entry(self, tracker: TokenTracker, now: float) -> None:
        cfg = self.config
        metrics = tracker.metrics(now)
        filters = evaluate_filters(
            metrics,
            cfg.filters,
            dev_buy_count=tracker.dev_buy_count,
            metadata_edit_count=tracker.metadata_edit_count,
        )
        if not filters.passed:
            self.registry.drop(tracker, filters.reason, now)
            self._scores.pop(tracker.token, None)
            return

        signals = evaluate_signals(metrics, cfg.signals)
        score = compute_score(metrics, cfg.scoring, now=now)
        previous = self._scores.get(tracker.token)
        self._scores[tracker.token] = score
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s trend=%s", format_score(score), score_trend(score, previous))

        outcome = self.lifecycle.try_open(tracker, metrics, score, signals, now)
        self._emit(outcome.events)

    async def record_metadata_edit(self, token: str) -> bool:
        """Count a metadata edit reported by an external collaborator."""
        lock = await self._get_token_lock(token)
        async with lock:
            return self.registry.record_metadata_edit(token)

    # periodic work ---------------------------------------------------------

    async def tick_scores(self) -> None:
        """Re-run the entry pipeline for idle tokens and re-check positions."""
        now = self.now()
        for tracker in self.registry.active(now):
            if self.book.has_open_position(tracker.token) or self.book.was_traded(tracker.token):
                continue
            lock = await self._get_token_lock(tracker.token)
            async with lock:
                if not tracker.dropped:
                    self._evaluate_entry(tracker, now)
        await self.check_positions(now)

    async def check_positions(self, now: Optional[float] = None) -> None:
        """Evaluate every open position without a new transaction."""
        now = self.now() if now is None else now
        for position in self.book.open_positions():
            lock = await self._get_token_lock(position.token)
            async with lock:
                if position.is_closed:
                    continue
                tracker = self.registry.get(position.token)
                if tracker is None:
                    logger.warning("open position %s has no tracker for %s", position.id, position.token)
                    continue
                self._emit(self.lifecycle.evaluate(position, tracker, now).events)

    async def sweep(self) -> None:
        now = self.now()
        result = self.registry.sweep(now, retain=self.book.has_open_position)
        for token in result.removed:
            self._scores.pop(token, None)
        async with self._locks_guard:
            # locks outlive their tracker when an event raced the removal
            for token, lock in list(self._token_locks.items()):
                if token not in self.registry and not lock.locked():
                    del self._token_locks[token]

    def status(self) -> EngineStatus:
        now = self.now()
        return EngineStatus(
            running=self.running,
            feed_connected=self.feed_connected,
            processed_events=self.processed_events,
            rejected_events=self.rejected_events,
            active_tokens=len(self.registry.active(now)),
            tracked_tokens=len(self.registry),
            open_positions=len(self.book.open_positions()),
            closed_positions=len(self.book.closed_positions()),
            total_pnl=self.book.total_realized_pnl(),
            missed_runners=self.lifecycle.entry.missed_runner_count,
            uptime=max(0.0, now - self._started_at),
        )

    def log_status(self) -> None:
        s = self.status()
        logger.info(
            "status: feed=%s processed=%d active=%d open=%d closed=%d pnl=%.4f missed=%d",
            "up" if s.feed_connected else "down",
            s.processed_events,
            s.active_tokens,
            s.open_positions,
            s.closed_positions,
            s.total_pnl,
            s.missed_runners,
        )

    # lifecycle -------------------------------------------------------------

    async def _run_every(self, interval: float, job: Callable[[], Awaitable[None]], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception("periodic %s failed", name)

    async def _status_job(self) -> None:
        self.log_status()

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._started_at = self.now()
        rt = self.config.runtime
        self._tasks = [
            asyncio.create_task(
                self._run_every(self.config.scoring.recalc_interval, self.tick_scores, "score"),
                name="pumpsignal-score",
            ),
            asyncio.create_task(
                self._run_every(rt.sweep_interval, self.sweep, "sweep"), name="pumpsignal-sweep"
            ),
            asyncio.create_task(
                self._run_every(rt.status_interval, self._status_job, "status"),
                name="pumpsignal-status",
            ),
        ]
        logger.info("signal engine started")

    async def stop(self) -> List[Position]:
        """Cancel periodic work, let in-flight evaluations finish, report open positions."""
        self.running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        async with self._locks_guard:
            locks = list(self._token_locks.values())
        for lock in locks:
            async with lock:
                pass

        still_open = self.book.open_positions()
        for position in still_open:
            self.observer.on_open_position_at_shutdown(position)
        self.log_status()
        self.observer.close()
        logger.info("signal engine stopped (%d open positions)", len(still_open))
        return still_open
