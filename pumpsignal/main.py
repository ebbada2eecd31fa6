"""Command line entry point: live paper trading, simulation and trade-log analysis."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from argparse import ArgumentParser, Namespace
from typing import Any, Dict, List, Sequence

from .config import ConfigError, EngineConfig, load_config
from .engine import SignalEngine
from .feed import SolanaBuyFeed
from .health import HealthServer
from .logging_utils import configure_runtime_logging
from .observers import LoggingObserver, ObserverGroup
from .performance import (
    PerformanceTracker,
    compute_metrics,
    exit_reason_breakdown,
    format_summary,
    load_trades,
)
from .simulation import run_simulation
from .trade_log import TradeLog

log = logging.getLogger(__name__)

FEED_STOP_TIMEOUT = 5.0


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="pumpsignal", description="pump.fun signal and paper-trading engine")
    parser.add_argument("--config", default=None, help="Path to a TOML configuration file")
    parser.add_argument("--log-level", default=None, help="Root log level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--json-logs", action="store_true", default=None, help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_p = subparsers.add_parser("run", help="Stream live purchases and paper trade")
    run_p.add_argument("--no-health", action="store_true", help="Do not start the HTTP health server")
    run_p.add_argument("--log-drops", action="store_true", help="Also record dropped tokens in the trade log")

    sim_p = subparsers.add_parser("simulate", help="Replay a synthetic market through the engine")
    sim_p.add_argument("--tokens", type=int, default=50, help="Number of synthetic tokens")
    sim_p.add_argument("--seed", type=int, default=None, help="Random seed")
    sim_p.add_argument("--trade-log", action="store_true", help="Write closed trades to the log directory")

    an_p = subparsers.add_parser("analyze", help="Summarise trade log files")
    an_p.add_argument("paths", nargs="*", help="Trade log files or directories (default: log directory)")
    an_p.add_argument("--recent", type=int, default=10, help="Number of recent trades to list")
    return parser


# run -----------------------------------------------------------------------


async def run_live(config: EngineConfig, *, health: bool = True, log_drops: bool = False) -> int:
    trade_log = TradeLog(config.runtime.log_dir, log_drops=log_drops)
    performance = PerformanceTracker()
    observer = ObserverGroup([LoggingObserver(), trade_log, performance])
    engine = SignalEngine(config, observer=observer)
    feed = SolanaBuyFeed.from_config(
        engine.on_transaction, config.runtime, on_connection_change=engine.set_feed_connected
    )
    server = HealthServer(engine.status, config.runtime.health_host, config.runtime.health_port) if health else None

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    await engine.start()
    if server is not None:
        await server.start()
    feed_task = asyncio.create_task(feed.run(), name="pumpsignal-feed")
    stop_task = asyncio.create_task(stop_event.wait(), name="pumpsignal-stop")
    try:
        await asyncio.wait({feed_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if feed_task.done() and not stop_event.is_set():
            log.error("transaction feed ended; shutting down")
    finally:
        log.info("shutting down")
        feed.stop()
        stop_task.cancel()
        # a feed stuck in a handler or a dead socket must not hold up the shutdown report
        await asyncio.wait({feed_task}, timeout=FEED_STOP_TIMEOUT)
        feed_task.cancel()
        for outcome in await asyncio.gather(stop_task, feed_task, return_exceptions=True):
            if isinstance(outcome, Exception):
                log.error("transaction feed failed", exc_info=outcome)
        performance.set_missed_runners(engine.lifecycle.entry.missed_runner_count)
        await engine.stop()
        if server is not None:
            await server.stop()
    log.info("session summary\n%s", performance.summary())
    return 0


# simulate ------------------------------------------------------------------


async def simulate(config: EngineConfig, *, tokens: int, seed: int | None, trade_log: bool) -> int:
    observers: List[Any] = [LoggingObserver()]
    if trade_log:
        observers.append(TradeLog(config.runtime.log_dir))
    result = await run_simulation(config, tokens=tokens, seed=seed, observers=observers)
    status = result.status
    print(f"Replayed {result.transactions} transactions across {tokens} tokens")
    print(f"Positions closed: {status.closed_positions}  still open: {len(result.open_positions)}")
    print(result.performance.summary())
    return 0


# analyze -------------------------------------------------------------------


def _format_trade(trade: Dict[str, Any]) -> str:
    return (
        f"{str(trade.get('token'))[:12]:<12}  score={float(trade.get('entry_score') or 0):5.1f}  "
        f"pnl={float(trade.get('realized_pnl') or 0):+8.4f}  "
        f"max={float(trade.get('max_unrealized_pnl') or 0):6.1f}%  {trade.get('exit_reason')}"
    )


def analyze(config: EngineConfig, paths: Sequence[str], *, recent: int = 10) -> int:
    trades = load_trades(paths or [config.runtime.log_dir])
    if not trades:
        print("No trades found")
        return 1
    print(format_summary(compute_metrics(trades)))
    print("\nExit reasons:")
    for reason, count in exit_reason_breakdown(trades):
        print(f"  {reason:<28} {count:>5} ({count / len(trades) * 100:.1f}%)")

    ordered = sorted(trades, key=lambda t: t.get("exit_time") or 0.0)
    print(f"\nRecent trades (last {min(recent, len(ordered))}):")
    for trade in ordered[-recent:]:
        print("  " + _format_trade(trade))
    by_pnl = sorted(ordered, key=lambda t: float(t.get("realized_pnl") or 0.0))
    print("\nBest trade:  " + _format_trade(by_pnl[-1]))
    print("Worst trade: " + _format_trade(by_pnl[0]))
    return 0


def main(argv: list[str] | None = None) -> int:
    args: Namespace = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    configure_runtime_logging(
        level=args.log_level,
        log_dir=config.runtime.log_dir,
        json_logs=args.json_logs,
        console=args.command != "analyze",
    )

    if args.command == "run":
        return asyncio.run(run_live(config, health=not args.no_health, log_drops=args.log_drops))
    if args.command == "simulate":
        return asyncio.run(simulate(config, tokens=args.tokens, seed=args.seed, trade_log=args.trade_log))
    return analyze(config, args.paths, recent=args.recent)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main(sys.argv[1:]))
