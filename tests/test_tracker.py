import pytest

from pumpsignal.core.tracker import INSUFFICIENT_BUYERS_REASON, TokenRegistry, TokenTracker
from pumpsignal.observers import EngineObserver
from pumpsignal.schemas import TokenDiscovered, TokenDropped

from conftest import BASE_TS, make_tx


class Recorder(EngineObserver):
    def __init__(self):
        self.events = []

    def on_token_discovered(self, event):
        self.events.append(event)

    def on_token_dropped(self, event):
        self.events.append(event)


def test_first_buyer_is_the_dev_wallet(config):
    tracker = TokenTracker(make_tx(buyer="dev"), config)
    assert tracker.dev_wallet == "dev"
    assert tracker.dev_buy_count == 1
    tracker.record(make_tx(offset=5, buyer="other"))
    tracker.record(make_tx(offset=6, buyer="dev"))
    assert tracker.dev_buy_count == 2
    assert tracker.total_unique_buyers == 2


def test_last_activity_never_moves_backwards(config):
    tracker = TokenTracker(make_tx(offset=10), config)
    tracker.record(make_tx(offset=3, buyer="late"))
    assert tracker.last_activity == BASE_TS + 10
    assert tracker.seconds_since_activity(BASE_TS + 25) == 15


def test_dropped_token_ignores_transactions(config):
    tracker = TokenTracker(make_tx(), config)
    assert tracker.drop("largest_buy", BASE_TS + 1) is True
    assert tracker.drop("again", BASE_TS + 2) is False
    assert tracker.drop_reason == "largest_buy"
    assert tracker.record(make_tx(offset=3, buyer="x")) is False
    assert tracker.record_metadata_edit() is False
    assert tracker.transaction_count == 1


def test_expiry_is_strictly_after_max_age(config):
    tracker = TokenTracker(make_tx(), config)
    max_age = config.lifecycle.max_token_age
    assert not tracker.is_expired(BASE_TS + max_age)
    assert tracker.is_expired(BASE_TS + max_age + 1)


def test_metrics_snapshot(config):
    tracker = TokenTracker(make_tx(buyer="dev", amount=0.1), config)
    for offset, buyer in ((70, "a"), (80, "b"), (85, "a"), (88, "c")):
        tracker.record(make_tx(offset=offset, buyer=buyer, amount=0.2))
    m = tracker.metrics(BASE_TS + 90)
    assert m.tx_count_30s == 4
    assert m.tx_count_60s == 4
    assert m.prev_tx_count_60s == 1
    assert m.acceleration == 3
    assert m.unique_buyers_5m == 4
    assert m.repeat_buyers_5m == 1
    assert m.largest_buy == pytest.approx(0.2)
    assert m.avg_buy_size == pytest.approx(0.18)
    assert m.tx_interval_mean == pytest.approx(6.0)
    assert m.interval_accelerating is True


def test_registry_creates_trackers_lazily_and_notifies(config):
    observer = Recorder()
    registry = TokenRegistry(config, observer=observer)
    first = registry.record(make_tx(token="t1", buyer="dev"))
    again = registry.record(make_tx(token="t1", offset=1, buyer="b"))
    assert first is again
    assert len(registry) == 1
    assert [type(e) for e in observer.events] == [TokenDiscovered]
    assert observer.events[0].dev_wallet == "dev"


def test_registry_drop_emits_once(config):
    observer = Recorder()
    registry = TokenRegistry(config, observer=observer)
    tracker = registry.record(make_tx(token="t1"))
    assert registry.drop(tracker, "whale", BASE_TS + 1)
    assert not registry.drop(tracker, "whale", BASE_TS + 2)
    dropped = [e for e in observer.events if isinstance(e, TokenDropped)]
    assert len(dropped) == 1
    assert dropped[0].reason == "whale"
    assert registry.active(BASE_TS + 2) == []


def test_sweep_drops_tokens_without_buyers_after_check_age(config):
    registry = TokenRegistry(config)
    lonely = registry.record(make_tx(token="lonely", buyer="dev"))
    busy = registry.record(make_tx(token="busy", buyer="dev"))
    registry.record(make_tx(token="busy", offset=10, buyer="other"))

    result = registry.sweep(BASE_TS + config.lifecycle.inactivity_check_age)
    assert result.dropped == ["lonely"]
    assert lonely.drop_reason == INSUFFICIENT_BUYERS_REASON
    assert not busy.dropped


def test_sweep_removes_expired_and_blocks_resurrection(config):
    registry = TokenRegistry(config)
    registry.record(make_tx(token="old"))
    registry.record(make_tx(token="old", offset=1, buyer="b"))
    later = BASE_TS + config.lifecycle.max_token_age + 5
    result = registry.sweep(later)
    assert result.removed == ["old"]
    assert "old" not in registry
    assert registry.is_retired("old")
    assert registry.record(make_tx(token="old", offset=later - BASE_TS, buyer="c")) is None


def test_sweep_retains_protected_tokens(config):
    registry = TokenRegistry(config)
    registry.record(make_tx(token="held"))
    later = BASE_TS + config.lifecycle.max_token_age + 5
    result = registry.sweep(later, retain=lambda token: token == "held")
    assert result.removed == []
    assert "held" in registry


def test_record_metadata_edit_unknown_token(config):
    registry = TokenRegistry(config)
    assert registry.record_metadata_edit("missing") is False
    registry.record(make_tx(token="t"))
    assert registry.record_metadata_edit("t") is True
    assert registry.get("t").metadata_edit_count == 1
