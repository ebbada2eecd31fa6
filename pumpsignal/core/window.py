"""Time-evicting transaction store with windowed queries."""

from __future__ import annotations

import math
import statistics
import time
from bisect import bisect_left, bisect_right
from collections import Counter
from typing import List, NamedTuple, Optional, Set

from ..types import Transaction

__all__ = ["BuySizeStats", "WindowedAggregator"]


class BuySizeStats(NamedTuple):
    avg: float
    std: float
    max: float


_EMPTY_STATS = BuySizeStats(0.0, 0.0, 0.0)


class WindowedAggregator:
    """Bounded history of one token's transactions.

    Entries are kept sorted by timestamp so arrival order does not matter.
    Anything older than ``retention`` seconds is evicted lazily whenever the
    store is touched. A window of ``w`` seconds evaluated at ``now`` covers
    entries with ``timestamp >= now - w``.
    """

    def __init__(self, retention: float = 300.0) -> None:
        if retention <= 0:
            raise ValueError("retention must be positive")
        self.retention = float(retention)
        self._stamps: List[float] = []
        self._entries: List[Transaction] = []

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self, now: float) -> None:
        cutoff = now - self.retention
        idx = bisect_left(self._stamps, cutoff)
        if idx:
            del self._stamps[:idx]
            del self._entries[:idx]

    def _start(self, window: float, now: float) -> int:
        self._evict(now)
        return bisect_left(self._stamps, now - window)

    def _in_window(self, window: float, now: Optional[float]) -> List[Transaction]:
        now = time.time() if now is None else now
        return self._entries[self._start(window, now):]

    def record(self, tx: Transaction, now: Optional[float] = None) -> None:
        idx = bisect_right(self._stamps, tx.timestamp)
        self._stamps.insert(idx, tx.timestamp)
        self._entries.insert(idx, tx)
        self._evict(tx.timestamp if now is None else max(now, tx.timestamp))

    def clear(self) -> None:
        self._stamps.clear()
        self._entries.clear()

    def latest(self) -> Optional[Transaction]:
        return self._entries[-1] if self._entries else None

    # queries ---------------------------------------------------------------

    def count_in_window(self, window: float, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return len(self._stamps) - self._start(window, now)

    def count_between(self, start: float, end: float, now: Optional[float] = None) -> int:
        """Count entries with ``start <= timestamp <= end``."""
        now = time.time() if now is None else now
        self._evict(now)
        if end < start:
            return 0
        return bisect_right(self._stamps, end) - bisect_left(self._stamps, start)

    def previous_window_count(self, window: float, now: Optional[float] = None) -> int:
        """Count entries in the window immediately preceding the current one."""
        now = time.time() if now is None else now
        return self.count_between(now - 2 * window, now - window, now)

    def unique_buyers(self, window: float, now: Optional[float] = None) -> Set[str]:
        return {tx.buyer for tx in self._in_window(window, now)}

    def repeat_buyer_count(self, window: float, now: Optional[float] = None) -> int:
        counts = Counter(tx.buyer for tx in self._in_window(window, now))
        return sum(1 for n in counts.values() if n >= 2)

    def buy_size_stats(self, window: float, now: Optional[float] = None) -> BuySizeStats:
        amounts = [tx.amount for tx in self._in_window(window, now)]
        if not amounts:
            return _EMPTY_STATS
        # population standard deviation (divide by N)
        return BuySizeStats(
            avg=statistics.fmean(amounts),
            std=statistics.pstdev(amounts),
            max=max(amounts),
        )

    def mean_interval(self, window: float, now: Optional[float] = None) -> float:
        """Mean seconds between consecutive entries; ``inf`` below two entries."""
        entries = self._in_window(window, now)
        if len(entries) < 2:
            return math.inf
        return (entries[-1].timestamp - entries[0].timestamp) / (len(entries) - 1)

    def interval_accelerating(self, window: float, now: Optional[float] = None) -> bool:
        """True when the latest gap is shorter than the one before it."""
        entries = self._in_window(window, now)
        if len(entries) < 3:
            return False
        last = entries[-1].timestamp - entries[-2].timestamp
        previous = entries[-2].timestamp - entries[-3].timestamp
        return last < previous
