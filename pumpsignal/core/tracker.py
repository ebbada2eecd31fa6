"""Per-token lifecycle tracking and the registry that owns the trackers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set

from cachetools import LRUCache

from ..config import EngineConfig
from ..schemas import TokenDiscovered, TokenDropped
from ..types import RollingMetrics, Transaction
from .heuristics import DevWalletStrategy, FirstBuyerDevWallet
from .window import WindowedAggregator

logger = logging.getLogger(__name__)

INSUFFICIENT_BUYERS_REASON = "insufficient_buyers_after_5m"

__all__ = [
    "INSUFFICIENT_BUYERS_REASON",
    "SweepResult",
    "TokenRegistry",
    "TokenTracker",
]


class TokenTracker:
    """Lifecycle state of a single token.

    A tracker is ``active`` until it is either dropped (terminal, reason
    recorded, further transactions ignored) or expires by age.
    """

    def __init__(
        self,
        first_tx: Transaction,
        config: EngineConfig,
        *,
        dev_strategy: DevWalletStrategy | None = None,
        now: Optional[float] = None,
    ) -> None:
        self.token = first_tx.token
        self.config = config
        self.first_seen = first_tx.timestamp
        self.last_activity = first_tx.timestamp
        self.dev_wallet = (dev_strategy or FirstBuyerDevWallet()).identify(first_tx)
        self.dev_buy_count = 0
        self.metadata_edit_count = 0
        self.transaction_count = 0
        self.dropped = False
        self.drop_reason: Optional[str] = None
        self.dropped_at: Optional[float] = None
        self.window = WindowedAggregator(config.windows.retention)
        self._buyers: Set[str] = set()
        self.record(first_tx, now)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        state = f"dropped={self.drop_reason!r}" if self.dropped else "active"
        return f"TokenTracker({self.token!r}, {state}, txs={self.transaction_count})"

    def record(self, tx: Transaction, now: Optional[float] = None) -> bool:
        """Add ``tx`` to the history; ignored once the token is dropped."""
        if self.dropped:
            return False
        self.window.record(tx, now)
        self._buyers.add(tx.buyer)
        self.transaction_count += 1
        self.last_activity = max(self.last_activity, tx.timestamp)
        if tx.buyer == self.dev_wallet:
            self.dev_buy_count += 1
        return True

    def record_metadata_edit(self) -> bool:
        if self.dropped:
            return False
        self.metadata_edit_count += 1
        return True

    @property
    def total_unique_buyers(self) -> int:
        return len(self._buyers)

    def age(self, now: float) -> float:
        return now - self.first_seen

    def seconds_since_activity(self, now: float) -> float:
        return now - self.last_activity

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.config.lifecycle.max_token_age

    def should_drop_for_inactivity(self, now: float) -> bool:
        lifecycle = self.config.lifecycle
        return (
            self.age(now) >= lifecycle.inactivity_check_age
            and self.total_unique_buyers < lifecycle.min_buyers_after_check
        )

    def drop(self, reason: str, now: Optional[float] = None) -> bool:
        """Mark the token dropped. Returns ``False`` when it already was."""
        if self.dropped:
            return False
        self.dropped = True
        self.drop_reason = reason
        self.dropped_at = time.time() if now is None else now
        return True

    def metrics(self, now: float) -> RollingMetrics:
        windows = self.config.windows
        agg = self.window
        tx_60 = agg.count_in_window(windows.medium, now)
        prev_60 = agg.previous_window_count(windows.medium, now)
        stats = agg.buy_size_stats(windows.long, now)
        return RollingMetrics(
            token=self.token,
            tx_count_30s=agg.count_in_window(windows.short, now),
            tx_count_60s=tx_60,
            tx_count_180s=agg.count_in_window(windows.long, now),
            prev_tx_count_60s=prev_60,
            unique_buyers_5m=len(agg.unique_buyers(windows.buyers, now)),
            repeat_buyers_5m=agg.repeat_buyer_count(windows.buyers, now),
            avg_buy_size=stats.avg,
            buy_size_std=stats.std,
            largest_buy=stats.max,
            tx_interval_mean=agg.mean_interval(windows.medium, now),
            interval_accelerating=agg.interval_accelerating(windows.medium, now),
            acceleration=tx_60 - prev_60,
        )


@dataclass(slots=True)
class SweepResult:
    removed: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


class TokenRegistry:
    """Owns the token -> tracker mapping.

    Trackers are created lazily on a token's first transaction. Expired
    tokens are remembered (bounded) so late transactions cannot resurrect
    them as brand new tokens.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        observer=None,
        dev_strategy: DevWalletStrategy | None = None,
        retired_capacity: int = 50_000,
    ) -> None:
        self.config = config
        self._observer = observer
        self._dev_strategy = dev_strategy or FirstBuyerDevWallet()
        self._trackers: Dict[str, TokenTracker] = {}
        self._retired: LRUCache = LRUCache(maxsize=retired_capacity)

    def __len__(self) -> int:
        return len(self._trackers)

    def __contains__(self, token: object) -> bool:
        return token in self._trackers

    def __iter__(self) -> Iterator[TokenTracker]:
        return iter(list(self._trackers.values()))

    def get(self, token: str) -> Optional[TokenTracker]:
        return self._trackers.get(token)

    def is_retired(self, token: str) -> bool:
        return token in self._retired

    def record(self, tx: Transaction, now: Optional[float] = None) -> Optional[TokenTracker]:
        """Route ``tx`` to its tracker, creating one for unseen tokens.

        Returns ``None`` for tokens that already expired.
        """
        tracker = self._trackers.get(tx.token)
        if tracker is not None:
            tracker.record(tx, now)
            return tracker
        if tx.token in self._retired:
            return None
        tracker = TokenTracker(tx, self.config, dev_strategy=self._dev_strategy, now=now)
        self._trackers[tx.token] = tracker
        logger.debug("tracking new token %s (dev=%s)", tx.token, tracker.dev_wallet)
        if self._observer is not None:
            self._observer.emit(
                TokenDiscovered(token=tx.token, timestamp=tx.timestamp, dev_wallet=tracker.dev_wallet)
            )
        return tracker

    def record_metadata_edit(self, token: str) -> bool:
        tracker = self._trackers.get(token)
        if tracker is None:
            return False
        return tracker.record_metadata_edit()

    def drop(self, tracker: TokenTracker, reason: str, now: Optional[float] = None) -> bool:
        """Drop ``tracker`` and notify the observer exactly once."""
        now = time.time() if now is None else now
        if not tracker.drop(reason, now):
            return False
        logger.info("dropped %s: %s", tracker.token, reason)
        if self._observer is not None:
            self._observer.emit(
                TokenDropped(token=tracker.token, timestamp=now, reason=reason)
            )
        return True

    def active(self, now: Optional[float] = None) -> List[TokenTracker]:
        now = time.time() if now is None else now
        return [
            t for t in self._trackers.values() if not t.dropped and not t.is_expired(now)
        ]

    def remove(self, token: str) -> Optional[TokenTracker]:
        tracker = self._trackers.pop(token, None)
        if tracker is not None:
            self._retired[token] = tracker.first_seen
        return tracker

    def sweep(
        self,
        now: Optional[float] = None,
        *,
        retain: Callable[[str], bool] | None = None,
    ) -> SweepResult:
        """Remove expired trackers and drop inactive ones.

        ``retain`` protects tokens (for example those with an open position)
        from both removal and inactivity drops.
        """
        now = time.time() if now is None else now
        result = SweepResult()
        for token, tracker in list(self._trackers.items()):
            if retain is not None and retain(token):
                continue
            if tracker.is_expired(now):
                self.remove(token)
                result.removed.append(token)
                continue
            if not tracker.dropped and tracker.should_drop_for_inactivity(now):
                if self.drop(tracker, INSUFFICIENT_BUYERS_REASON, now):
                    result.dropped.append(token)
        if result.removed or result.dropped:
            logger.debug(
                "sweep removed=%d dropped=%d tracking=%d",
                len(result.removed),
                len(result.dropped),
                len(self._trackers),
            )
        return result

    def clear(self) -> None:
        self._trackers.clear()
        self._retired.clear()
