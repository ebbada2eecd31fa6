import asyncio

import pytest

from pumpsignal.engine import SignalEngine
from pumpsignal.observers import EngineObserver
from pumpsignal.schemas import (
    EntrySignal,
    KillSwitchTriggered,
    PartialExitExecuted,
    PositionClosed,
    PositionOpened,
    TokenDropped,
)
from pumpsignal.types import ExitReason, PositionStatus

from conftest import BASE_TS, make_tx

# dev launch, then five buyers with shrinking gaps; the fifth buy qualifies
LAUNCH = [(0, "dev")] + [(o, f"b{i}") for i, o in enumerate((130, 138, 145, 151, 156), start=1)]
ENTRY_AT = 156


class Recorder(EngineObserver):
    def __init__(self):
        self.events = []
        self.open_at_shutdown = []
        self.closed = False

    def emit(self, event):
        self.events.append(event)
        super().emit(event)

    def on_open_position_at_shutdown(self, position):
        self.open_at_shutdown.append(position)

    def close(self):
        self.closed = True

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


def _engine(config, clock):
    recorder = Recorder()
    return SignalEngine(config, observer=recorder, clock=clock), recorder


async def _feed(engine, clock, token, entries, amount=0.2):
    for offset, buyer in entries:
        clock.set(offset)
        await engine.on_transaction(make_tx(token=token, offset=offset, buyer=buyer, amount=amount))


async def _launch(engine, clock, token="tokenA"):
    await _feed(engine, clock, token, LAUNCH)
    return engine.book.get(token)


def test_qualifying_launch_opens_position(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        position = await _launch(engine, clock)
        assert position is not None
        assert position.entry_time == BASE_TS + ENTRY_AT
        assert position.entry_price == pytest.approx(0.2)
        assert position.entry_score == pytest.approx(27.0)
        assert [type(e) for e in recorder.events[-2:]] == [EntrySignal, PositionOpened]
        # the rejection one buy earlier no longer counts as missed
        assert engine.lifecycle.entry.missed_runner_count == 0

    asyncio.run(run())


def test_price_rise_triggers_partial_exit_only(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        position = await _launch(engine, clock)
        await _feed(engine, clock, "tokenA", [(160, "b6")], amount=1.95)
        assert position.status is PositionStatus.PARTIAL
        assert position.remaining_size == pytest.approx(0.5)
        assert position.realized_pnl == pytest.approx(0.625)
        assert len(recorder.of(PartialExitExecuted)) == 1
        assert recorder.of(PositionClosed) == []
        assert engine.status().total_pnl == pytest.approx(0.625)

    asyncio.run(run())


def test_whale_buy_on_open_position_hits_kill_switch(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        position = await _launch(engine, clock)
        await _feed(engine, clock, "tokenA", [(160, "whale")], amount=3.5)
        assert position.is_closed
        assert position.exit_reason is ExitReason.KILL_SWITCH_WHALE
        kill = recorder.of(KillSwitchTriggered)
        assert len(kill) == 1 and kill[0].reason is ExitReason.KILL_SWITCH_WHALE
        assert len(recorder.of(PositionClosed)) == 1
        # the token is not dropped and may not be re-entered
        assert not engine.registry.get("tokenA").dropped
        assert engine.book.was_traded("tokenA")

    asyncio.run(run())


def test_inactivity_closes_position_on_tick(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        position = await _launch(engine, clock)
        clock.set(ENTRY_AT + 30)
        await engine.tick_scores()
        assert not position.is_closed
        clock.set(ENTRY_AT + 60)
        await engine.tick_scores()
        assert position.is_closed
        assert position.exit_reason is ExitReason.KILL_SWITCH_NO_TX
        await engine.check_positions()
        assert len(recorder.of(PositionClosed)) == 1

    asyncio.run(run())


def test_oversized_buy_drops_untraded_token(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        await _feed(engine, clock, "tokenB", [(0, "dev")])
        await _feed(engine, clock, "tokenB", [(5, "whale")], amount=2.5)
        tracker = engine.registry.get("tokenB")
        assert tracker.dropped
        assert tracker.drop_reason.startswith("largest_buy")
        assert len(recorder.of(TokenDropped)) == 1
        # later buys are ignored
        await _feed(engine, clock, "tokenB", [(10, "late")])
        assert tracker.transaction_count == 2

    asyncio.run(run())


def test_dev_rebuy_drops_token_before_entry(config, clock):
    async def run():
        engine, _ = _engine(config, clock)
        await _feed(engine, clock, "tokenC", [(0, "dev"), (5, "a"), (9, "dev")])
        tracker = engine.registry.get("tokenC")
        assert tracker.dropped
        assert "dev wallet bought 2 times" in tracker.drop_reason

    asyncio.run(run())


def test_malformed_events_are_counted_and_ignored(config, clock, caplog):
    async def run():
        engine, _ = _engine(config, clock)
        await engine.on_transaction({"token": "x", "amount": "abc"})
        await engine.on_transaction({"mint": "y", "timestamp": BASE_TS, "amount": -1, "buyer": "b", "signature": "s"})
        assert engine.processed_events == 2
        assert engine.rejected_events == 2
        assert len(engine.registry) == 0

    asyncio.run(run())
    assert any("malformed" in r.getMessage() for r in caplog.records)


def test_mapping_events_are_accepted(config, clock):
    async def run():
        engine, _ = _engine(config, clock)
        await engine.on_transaction(
            {"mint": "tokenD", "timestamp": (BASE_TS + 1) * 1000, "wallet": "w", "amount_sol": "0.3", "signature": "s1"}
        )
        tracker = engine.registry.get("tokenD")
        assert tracker.first_seen == pytest.approx(BASE_TS + 1)

    asyncio.run(run())


def test_concurrent_tokens_are_processed_independently(config, clock):
    async def run():
        engine, _ = _engine(config, clock)
        txs = [make_tx(token=f"t{i % 5}", offset=i, buyer=f"w{i}", amount=0.1) for i in range(50)]
        clock.set(50)
        await asyncio.gather(*(engine.on_transaction(tx) for tx in txs))
        assert engine.processed_events == 50
        assert len(engine.registry) == 5
        assert all(t.transaction_count == 10 for t in engine.registry)

    asyncio.run(run())


def test_sweep_keeps_tokens_with_open_positions(config, clock):
    async def run():
        engine, _ = _engine(config, clock)
        await _launch(engine, clock)
        await _feed(engine, clock, "idle", [(0, "dev")])
        clock.set(config.lifecycle.max_token_age + 10)
        await engine.sweep()
        assert "idle" not in engine.registry
        assert "tokenA" in engine.registry

    asyncio.run(run())


def test_late_events_for_expired_tokens_leave_no_lock_behind(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        await _feed(engine, clock, "old", [(0, "dev")])
        late = config.lifecycle.max_token_age + 10
        clock.set(late)
        await engine.sweep()
        assert "old" not in engine._token_locks

        await _feed(engine, clock, "old", [(late + 1, "latecomer")])
        assert "old" not in engine.registry
        assert "old" not in engine._token_locks
        assert engine.processed_events == 2
        assert len([e for e in recorder.events if getattr(e, "token", None) == "old"]) == 1

        # a lock created just before the token expired is pruned by a later sweep
        engine._token_locks["gone"] = asyncio.Lock()
        await engine.sweep()
        assert "gone" not in engine._token_locks

    asyncio.run(run())


def test_metadata_edits_feed_the_filters(config, clock):
    async def run():
        engine, _ = _engine(config, clock)
        await _feed(engine, clock, "tokenE", [(0, "dev")])
        assert await engine.record_metadata_edit("tokenE")
        assert await engine.record_metadata_edit("tokenE")
        await _feed(engine, clock, "tokenE", [(5, "a")])
        assert "metadata edited 2 times" in engine.registry.get("tokenE").drop_reason

    asyncio.run(run())


def test_stop_reports_open_positions(config, clock):
    async def run():
        engine, recorder = _engine(config, clock)
        await engine.start()
        assert engine.running
        position = await _launch(engine, clock)
        still_open = await engine.stop()
        assert still_open == [position]
        assert recorder.open_at_shutdown == [position]
        assert recorder.closed
        assert not engine.running
        status = engine.status()
        assert status.open_positions == 1
        assert status.processed_events == len(LAUNCH)

    asyncio.run(run())
