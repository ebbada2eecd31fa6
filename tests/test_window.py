import math

import pytest

from pumpsignal.core.window import BuySizeStats, WindowedAggregator

from conftest import BASE_TS, make_tx


def _agg(*entries, retention=300.0):
    agg = WindowedAggregator(retention)
    for offset, buyer, amount in entries:
        agg.record(make_tx(offset=offset, buyer=buyer, amount=amount))
    return agg


def test_retention_must_be_positive():
    with pytest.raises(ValueError):
        WindowedAggregator(0)


def test_count_in_window_includes_boundary():
    agg = _agg((0, "a", 0.1), (30, "b", 0.1), (45, "c", 0.1), (60, "d", 0.1))
    now = BASE_TS + 60
    assert agg.count_in_window(30, now) == 3
    assert agg.count_in_window(60, now) == 4
    assert agg.count_in_window(10, now) == 1


def test_entries_older_than_retention_are_evicted_lazily():
    agg = _agg((0, "a", 0.1), (100, "b", 0.1), retention=120.0)
    assert len(agg) == 2
    # nothing is removed until the store is queried
    assert agg.count_in_window(300, BASE_TS + 200) == 1
    assert len(agg) == 1
    assert agg.count_in_window(300, BASE_TS + 1000) == 0
    assert len(agg) == 0


def test_recording_a_late_entry_evicts_relative_to_its_own_timestamp():
    agg = WindowedAggregator(60.0)
    agg.record(make_tx(offset=0))
    agg.record(make_tx(offset=100))
    assert len(agg) == 1


def test_out_of_order_arrivals_are_kept_sorted():
    agg = _agg((10, "a", 0.1), (5, "b", 0.2), (20, "c", 0.3))
    assert agg.latest().buyer == "c"
    assert agg.mean_interval(60, BASE_TS + 20) == pytest.approx(7.5)


def test_previous_window_count_is_inclusive_on_both_ends():
    agg = _agg((0, "a", 0.1), (30, "b", 0.1), (60, "c", 0.1), (61, "d", 0.1), (120, "e", 0.1))
    now = BASE_TS + 120
    # [now-120, now-60] covers 0, 30 and 60
    assert agg.previous_window_count(60, now) == 3
    assert agg.count_in_window(60, now) == 3


def test_unique_and_repeat_buyers():
    agg = _agg((0, "a", 0.1), (1, "b", 0.1), (2, "a", 0.1), (3, "c", 0.1), (4, "a", 0.1), (5, "b", 0.1))
    now = BASE_TS + 5
    assert agg.unique_buyers(300, now) == {"a", "b", "c"}
    assert agg.repeat_buyer_count(300, now) == 2


def test_buy_size_stats_use_population_std():
    agg = _agg((0, "a", 0.1), (1, "b", 0.3))
    stats = agg.buy_size_stats(180, BASE_TS + 1)
    assert isinstance(stats, BuySizeStats)
    assert stats.avg == pytest.approx(0.2)
    assert stats.std == pytest.approx(0.1)
    assert stats.max == pytest.approx(0.3)


def test_buy_size_stats_empty_window_is_zero():
    agg = _agg((0, "a", 0.5))
    assert agg.buy_size_stats(10, BASE_TS + 100) == BuySizeStats(0.0, 0.0, 0.0)


def test_mean_interval_needs_two_entries():
    agg = _agg((0, "a", 0.1))
    assert math.isinf(agg.mean_interval(60, BASE_TS))
    agg.record(make_tx(offset=10))
    agg.record(make_tx(offset=16))
    assert agg.mean_interval(60, BASE_TS + 16) == pytest.approx(8.0)


def test_interval_accelerating_compares_last_two_gaps():
    agg = _agg((0, "a", 0.1), (10, "b", 0.1))
    assert agg.interval_accelerating(60, BASE_TS + 10) is False
    agg.record(make_tx(offset=15))
    assert agg.interval_accelerating(60, BASE_TS + 15) is True
    agg.record(make_tx(offset=25))
    assert agg.interval_accelerating(60, BASE_TS + 25) is False


def test_queries_are_repeatable_at_the_same_instant():
    agg = _agg((0, "a", 0.1), (20, "b", 0.2), (50, "c", 0.3))
    now = BASE_TS + 70
    first = (agg.count_in_window(60, now), agg.buy_size_stats(180, now), agg.mean_interval(60, now))
    second = (agg.count_in_window(60, now), agg.buy_size_stats(180, now), agg.mean_interval(60, now))
    assert first == second
