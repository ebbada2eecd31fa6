import pytest

from pumpsignal.config import ExitConfig
from pumpsignal.trading.exits import ExitEngine
from pumpsignal.trading.positions import PositionBook
from pumpsignal.types import ExitReason, PositionStatus, RollingMetrics

from conftest import BASE_TS


def _setup(tx_count=10):
    book = PositionBook()
    position, _ = book.open("tok", price=0.2, score=25.0, size=1.0, now=BASE_TS)
    engine = ExitEngine(ExitConfig())
    engine.init_state(position.id, RollingMetrics(token="tok", tx_count_60s=tx_count))
    return engine, position


def _m(count):
    return RollingMetrics(token="tok", tx_count_60s=count)


def test_first_evaluation_without_state_only_sets_baseline():
    book = PositionBook()
    position, _ = book.open("tok", price=0.2, score=25.0, size=1.0, now=BASE_TS)
    engine = ExitEngine(ExitConfig())
    decision = engine.evaluate(position, _m(1), 1.0, seconds_since_activity=500)
    assert not decision.partial and not decision.should_full_exit
    assert position.id in engine


def test_partial_threshold_only_while_open():
    engine, position = _setup()
    decision = engine.evaluate(position, _m(10), 0.45, seconds_since_activity=0)
    assert decision.pnl_percent == pytest.approx(125.0)
    assert decision.partial
    assert not decision.should_full_exit
    position.status = PositionStatus.PARTIAL
    assert not engine.evaluate(position, _m(10), 0.45, seconds_since_activity=0).partial


def test_full_profit_target_fires_with_partial():
    engine, position = _setup()
    decision = engine.evaluate(position, _m(10), 0.7, seconds_since_activity=0)
    assert decision.partial
    assert decision.full_reason is ExitReason.PROFIT_TARGET_FULL


def test_inactivity_trigger():
    engine, position = _setup()
    decision = engine.evaluate(position, _m(10), 0.2, seconds_since_activity=60)
    assert decision.triggers == (ExitReason.NO_ACTIVITY,)


def test_two_consecutive_decreases():
    engine, position = _setup()
    assert not engine.evaluate(position, _m(9), 0.2, seconds_since_activity=0).should_full_exit
    decision = engine.evaluate(position, _m(8), 0.2, seconds_since_activity=0)
    assert decision.full_reason is ExitReason.TX_DECREASING


def test_increase_resets_decrease_counter():
    engine, position = _setup()
    engine.evaluate(position, _m(9), 0.2, seconds_since_activity=0)
    engine.evaluate(position, _m(10), 0.2, seconds_since_activity=0)
    assert not engine.evaluate(position, _m(9), 0.2, seconds_since_activity=0).should_full_exit
    assert engine.state(position.id).decrease_count == 1


def test_stagnation_after_spike():
    engine, position = _setup(tx_count=4)
    engine.evaluate(position, _m(8), 0.2, seconds_since_activity=0)
    state = engine.state(position.id)
    assert state.spike_detected and state.post_spike_peak == 8
    engine.evaluate(position, _m(10), 0.2, seconds_since_activity=0)
    assert state.post_spike_peak == 10
    decision = engine.evaluate(position, _m(4), 0.2, seconds_since_activity=0)
    assert decision.full_reason is ExitReason.STAGNATION_AFTER_SPIKE


def test_triggers_are_reported_in_fixed_order():
    engine, position = _setup()
    engine.evaluate(position, _m(9), 0.2, seconds_since_activity=0)
    decision = engine.evaluate(position, _m(8), 0.7, seconds_since_activity=90)
    assert decision.triggers == (
        ExitReason.PROFIT_TARGET_FULL,
        ExitReason.NO_ACTIVITY,
        ExitReason.TX_DECREASING,
    )


def test_closed_position_is_ignored():
    engine, position = _setup()
    position.status = PositionStatus.CLOSED
    decision = engine.evaluate(position, _m(0), 5.0, seconds_since_activity=999)
    assert not decision.should_full_exit and not decision.partial
