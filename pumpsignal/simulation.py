"""Synthetic token activity and offline replay through the engine."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .config import EngineConfig
from .engine import EngineStatus, SignalEngine
from .observers import EngineObserver, ObserverGroup
from .performance import PerformanceTracker
from .types import Transaction

logger = logging.getLogger(__name__)

__all__ = [
    "PATTERNS",
    "SimulationResult",
    "VirtualClock",
    "generate_market",
    "generate_token",
    "run_simulation",
]

PATTERNS = ("organic", "whale", "pump", "dead")
DEFAULT_WEIGHTS = {"organic": 0.4, "whale": 0.2, "pump": 0.2, "dead": 0.2}

# how long to keep ticking after the last event so open positions resolve
_DRAIN_SECONDS = 20 * 60.0


class VirtualClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, to: float) -> None:
        if to > self.now:
            self.now = to


def _wallet(rng: random.Random) -> str:
    return "".join(rng.choices("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz", k=44))


class _Builder:
    def __init__(self, token: str, start: float, rng: random.Random) -> None:
        self.token = token
        self.t = start
        self.rng = rng
        self.txs: List[Transaction] = []

    def buy(self, buyer: str, amount: float, gap: float = 0.0) -> None:
        self.t += gap
        self.txs.append(
            Transaction(
                token=self.token,
                timestamp=self.t,
                buyer=buyer,
                amount=round(amount, 4),
                signature=f"{self.token[:6]}-{len(self.txs)}-{self.rng.getrandbits(32):08x}",
            )
        )


def _organic_build(b: _Builder, wallets: Sequence[str], low: float, high: float) -> None:
    rng = b.rng
    # slow start, then gaps shrink towards a few seconds
    for _ in range(3):
        b.buy(rng.choice(wallets[1:]), rng.uniform(low, high), rng.uniform(25, 40))
    gap = 16.0
    for _ in range(rng.randint(10, 16)):
        b.buy(rng.choice(wallets[1:]), rng.uniform(low, high), max(1.5, gap + rng.uniform(-1, 1)))
        gap *= 0.82


def _fade(b: _Builder, wallets: Sequence[str], count: int, low: float, high: float) -> None:
    gap = 8.0
    for _ in range(count):
        gap *= 1.6
        b.buy(b.rng.choice(wallets[1:]), b.rng.uniform(low, high), gap)


def generate_token(pattern: str, token: str, start: float, rng: random.Random) -> List[Transaction]:
    """Return one token's purchase stream following ``pattern``."""
    if pattern not in PATTERNS:
        raise ValueError(f"unknown pattern {pattern!r}")
    b = _Builder(token, start, rng)
    wallets = [_wallet(rng) for _ in range(rng.randint(8, 15))]
    dev = wallets[0]
    b.buy(dev, rng.uniform(0.1, 0.5))

    if pattern == "dead":
        if rng.random() < 0.5:
            b.buy(rng.choice(wallets[1:]), rng.uniform(0.05, 0.2), rng.uniform(30, 120))
    elif pattern == "whale":
        for _ in range(rng.randint(3, 6)):
            b.buy(rng.choice(wallets[1:]), rng.uniform(0.05, 0.3), rng.uniform(5, 30))
        b.buy(_wallet(rng), rng.uniform(2.5, 4.0), rng.uniform(5, 20))
    elif pattern == "organic":
        _organic_build(b, wallets, 0.08, 0.3)
        _fade(b, wallets, rng.randint(2, 5), 0.05, 0.2)
    else:  # pump
        _organic_build(b, wallets, 0.08, 0.2)
        for _ in range(rng.randint(6, 12)):
            b.buy(rng.choice(wallets[1:]), rng.uniform(0.35, 0.6), rng.uniform(1, 4))
        _fade(b, wallets, rng.randint(1, 3), 0.3, 0.6)
    return b.txs


def generate_market(
    tokens: int,
    rng: random.Random,
    *,
    start: float = 1_700_000_000.0,
    spread: float = 15 * 60.0,
    weights: Optional[Dict[str, float]] = None,
) -> List[Transaction]:
    """Interleave ``tokens`` synthetic streams, sorted by timestamp."""
    weights = weights or DEFAULT_WEIGHTS
    names = list(weights)
    txs: List[Transaction] = []
    for i in range(tokens):
        pattern = rng.choices(names, weights=[weights[n] for n in names])[0]
        token = f"{pattern}{i:04d}" + _wallet(rng)[:32]
        txs.extend(generate_token(pattern, token, start + rng.uniform(0, spread), rng))
    txs.sort(key=lambda tx: tx.timestamp)
    return txs


@dataclass(slots=True)
class SimulationResult:
    status: EngineStatus
    performance: PerformanceTracker
    transactions: int
    open_positions: List[str] = field(default_factory=list)


async def run_simulation(
    config: EngineConfig,
    *,
    tokens: int = 50,
    seed: Optional[int] = None,
    observers: Sequence[EngineObserver] = (),
    transactions: Optional[List[Transaction]] = None,
) -> SimulationResult:
    """Replay a synthetic market through a :class:`SignalEngine` on a virtual clock.

    Score ticks and sweeps run at their configured cadence in virtual time.
    """
    rng = random.Random(seed)
    txs = transactions if transactions is not None else generate_market(tokens, rng)
    clock = VirtualClock(txs[0].timestamp if txs else 0.0)
    performance = PerformanceTracker()
    engine = SignalEngine(
        config, observer=ObserverGroup([performance, *observers]), clock=clock
    )
    engine.running = True

    tick = config.scoring.recalc_interval
    sweep_every = config.runtime.sweep_interval
    next_tick = clock.now + tick
    next_sweep = clock.now + sweep_every

    async def run_timers_until(t: float) -> None:
        nonlocal next_tick, next_sweep
        while min(next_tick, next_sweep) <= t:
            if next_tick <= next_sweep:
                clock.advance(next_tick)
                await engine.tick_scores()
                next_tick += tick
            else:
                clock.advance(next_sweep)
                await engine.sweep()
                next_sweep += sweep_every

    for tx in txs:
        await run_timers_until(tx.timestamp)
        clock.advance(tx.timestamp)
        await engine.on_transaction(tx)
    await run_timers_until(clock.now + _DRAIN_SECONDS)

    performance.set_missed_runners(engine.lifecycle.entry.missed_runner_count)
    still_open = await engine.stop()
    logger.info("simulation replayed %d transactions", len(txs))
    return SimulationResult(
        status=engine.status(),
        performance=performance,
        transactions=len(txs),
        open_positions=[p.token for p in still_open],
    )
