"""JSON Lines trade log, one file per UTC day."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterable, List, Mapping, Optional

from .jsonutil import JSONDecodeError, dumps_bytes, loads
from .observers import EngineObserver
from .schemas import KillSwitchTriggered, PositionClosed, TokenDropped, to_dict
from .types import Position

logger = logging.getLogger(__name__)

__all__ = ["TRADE_FIELDS", "TradeLog", "is_trade_record", "read_trade_files", "read_trades"]

TRADE_FIELDS = (
    "token",
    "entry_time",
    "entry_score",
    "entry_price",
    "exit_time",
    "exit_reason",
    "max_unrealized_pnl",
    "realized_pnl",
)

FILE_PREFIX = "trades_"
FILE_SUFFIX = ".jsonl"


def _date_string(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def is_trade_record(record: Any) -> bool:
    return (
        isinstance(record, dict)
        and record.get("type", "trade") == "trade"
        and all(key in record for key in TRADE_FIELDS)
    )


def read_trades(path: str | Path) -> List[Dict[str, Any]]:
    """Return the trade records in ``path``; event and bad lines are skipped."""

    trades: List[Dict[str, Any]] = []
    try:
        with open(path, "rb") as fh:
            for lineno, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = loads(line)
                except JSONDecodeError:
                    logger.warning("%s:%d: skipping unparseable line", path, lineno)
                    continue
                if is_trade_record(record):
                    trades.append(record)
    except FileNotFoundError:
        logger.error("trade log %s does not exist", path)
    return trades


class TradeLog(EngineObserver):
    """Append closed positions and notable events to ``trades_<date>.jsonl``.

    The file rolls over when the UTC date changes; the check runs on every
    write.
    """

    def __init__(
        self,
        log_dir: str | Path,
        *,
        clock: Callable[[], float] = time.time,
        log_drops: bool = False,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._log_drops = log_drops
        self._fh: Optional[IO[bytes]] = None
        self._date = ""
        self.path: Path = self.log_dir
        self.trades_written = 0
        self._fh = self._open()

    def _path_for(self, date: str) -> Path:
        return self.log_dir / f"{FILE_PREFIX}{date}{FILE_SUFFIX}"

    def _open(self) -> IO[bytes]:
        self._date = _date_string(self._clock())
        self.path = self._path_for(self._date)
        logger.info("trade log at %s", self.path)
        return open(self.path, "ab", buffering=0)

    def _handle(self) -> IO[bytes]:
        """Today's file, reopened after :meth:`close` or a UTC date change."""
        if self._fh is None or _date_string(self._clock()) != self._date:
            self.close()
            self._fh = self._open()
        return self._fh

    def rotate(self) -> bool:
        """Switch files when the date changed. Returns ``True`` on rotation."""
        previous = self._fh
        return self._handle() is not previous

    def _write(self, record: Mapping[str, Any]) -> None:
        self._handle().write(dumps_bytes(dict(record), append_newline=True, default=str))

    def log_trade(self, trade: PositionClosed) -> None:
        record = {"type": "trade", **trade.to_record()}
        self._write(record)
        self.trades_written += 1

    def log_event(self, kind: str, payload: Mapping[str, Any]) -> None:
        self._write({"type": "event", "event": kind, "timestamp": self._clock(), **payload})

    def list_log_files(self) -> List[Path]:
        return sorted(self.log_dir.glob(f"{FILE_PREFIX}*{FILE_SUFFIX}"))

    # observer hooks ------------------------------------------------------

    def on_position_closed(self, event: PositionClosed) -> None:
        self.log_trade(event)

    def on_kill_switch(self, event: KillSwitchTriggered) -> None:
        self.log_event("kill_switch", to_dict(event))

    def on_token_dropped(self, event: TokenDropped) -> None:
        if self._log_drops:
            self.log_event("token_dropped", to_dict(event))

    def on_open_position_at_shutdown(self, position: Position) -> None:
        self.log_event("open_at_shutdown", position.to_dict())

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def read_trade_files(paths: Iterable[str | Path]) -> List[Dict[str, Any]]:
    trades: List[Dict[str, Any]] = []
    for path in paths:
        trades.extend(read_trades(path))
    return trades
