from pumpsignal.jsonutil import loads
from pumpsignal.schemas import KillSwitchTriggered, PositionClosed, TokenDropped
from pumpsignal.trade_log import TradeLog, read_trade_files, read_trades
from pumpsignal.types import ExitReason

DAY1 = 1_700_000_000.0  # 2023-11-14 UTC
DAY2 = DAY1 + 86_400


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _closed(token="tok", pnl=0.5, reason=ExitReason.PROFIT_TARGET_FULL):
    return PositionClosed(
        position_id=f"pos_{token}",
        token=token,
        entry_time=DAY1,
        entry_score=24.0,
        entry_price=0.2,
        exit_time=DAY1 + 90,
        exit_price=0.3,
        exit_reason=reason,
        max_unrealized_pnl=60.0,
        realized_pnl=pnl,
    )


def test_trades_are_appended_one_json_object_per_line(tmp_path):
    log = TradeLog(tmp_path, clock=Clock(DAY1))
    log.on_position_closed(_closed("a"))
    log.on_position_closed(_closed("b", pnl=-0.2))
    log.close()
    path = tmp_path / "trades_2023-11-14.jsonl"
    lines = path.read_bytes().splitlines()
    assert len(lines) == 2
    first = loads(lines[0])
    assert first["type"] == "trade"
    assert first["token"] == "a"
    assert first["exit_reason"] == "profit_target_full"
    assert log.trades_written == 2


def test_daily_rotation(tmp_path):
    clock = Clock(DAY1)
    log = TradeLog(tmp_path, clock=clock)
    log.log_trade(_closed("a"))
    clock.now = DAY2
    log.log_trade(_closed("b"))
    log.close()
    assert [p.name for p in log.list_log_files()] == ["trades_2023-11-14.jsonl", "trades_2023-11-15.jsonl"]


def test_events_are_logged_but_not_read_as_trades(tmp_path):
    log = TradeLog(tmp_path, clock=Clock(DAY1), log_drops=True)
    log.on_kill_switch(
        KillSwitchTriggered("pos_a", "a", DAY1, ExitReason.KILL_SWITCH_WHALE, "buy of 3.5")
    )
    log.on_token_dropped(TokenDropped("b", DAY1, "largest_buy"))
    log.on_position_closed(_closed("a", reason=ExitReason.KILL_SWITCH_WHALE))
    log.close()
    raw = [loads(line) for line in log.path.read_bytes().splitlines()]
    assert [r.get("event") for r in raw] == ["kill_switch", "token_dropped", None]
    assert raw[0]["reason"] == "kill_switch_whale"
    trades = read_trades(log.path)
    assert [t["token"] for t in trades] == ["a"]


def test_drops_are_skipped_unless_enabled(tmp_path):
    log = TradeLog(tmp_path, clock=Clock(DAY1))
    log.on_token_dropped(TokenDropped("b", DAY1, "largest_buy"))
    log.close()
    assert log.path.read_bytes() == b""


def test_reader_skips_bad_lines_and_missing_files(tmp_path):
    path = tmp_path / "trades_2023-11-14.jsonl"
    good = b'{"token":"a","entry_time":1,"entry_score":20,"entry_price":0.2,"exit_time":2,' \
           b'"exit_reason":"no_activity","max_unrealized_pnl":5,"realized_pnl":0.1}'
    path.write_bytes(good + b"\n{not json\n\n" + b'{"token":"partial"}\n')
    assert len(read_trades(path)) == 1
    assert len(read_trade_files([path, tmp_path / "missing.jsonl"])) == 1


def test_writes_after_close_reopen_the_file(tmp_path):
    log = TradeLog(tmp_path, clock=Clock(DAY1))
    log.log_trade(_closed("a"))
    log.close()
    log.log_trade(_closed("b"))
    log.close()
    assert [t["token"] for t in read_trades(log.path)] == ["a", "b"]
    assert log.rotate()
    assert not log.rotate()
    log.close()
