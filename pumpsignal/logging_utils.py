"""Logging setup for the signal engine runtime.

One rotating file under the log directory plus an optional stdout console.
``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_CONSOLE`` fill in whatever the caller
leaves unset.
"""

from __future__ import annotations

import logging
import math
import os
import sys
import threading
import time
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .jsonutil import dumps
from .paths import DEFAULT_LOG_DIR

RUNTIME_LOG_NAME = "pumpsignal.log"

DEFAULT_MAX_BYTES = 5_000_000
DEFAULT_BACKUP_COUNT = 3
DEFAULT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# third-party loggers that are only interesting when something goes wrong
_QUIET_LOGGERS = ("asyncio", "websockets", "aiohttp.access")

_CONSOLE_MARKER = "_pumpsignal_console"

_throttle_lock = threading.Lock()
_throttle_last: dict[str, float] = {}

__all__ = [
    "JsonFormatter",
    "configure_runtime_logging",
    "console_handler",
    "reset_warn_once_cache",
    "serialize_for_log",
    "warn_once_per",
]


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime


_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are copied through."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload.setdefault(key, value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return dumps(payload, default=str)


def console_handler(level: int = logging.INFO) -> logging.StreamHandler:
    """Return the root logger's stdout handler, adding it on first use."""

    root = logging.getLogger()
    for handler in root.handlers:
        if getattr(handler, _CONSOLE_MARKER, False):
            handler.setLevel(level)
            return handler  # type: ignore[return-value]
    handler = logging.StreamHandler(sys.stdout)
    setattr(handler, _CONSOLE_MARKER, True)
    handler.setLevel(level)
    root.addHandler(handler)
    return handler


def warn_once_per(seconds: float, key: str, message: str, *args: Any, logger: logging.Logger | None = None) -> bool:
    """Log ``message`` as a warning at most once every ``seconds`` for ``key``."""

    now = time.monotonic()
    with _throttle_lock:
        last = _throttle_last.get(key)
        if last is not None and now - last < seconds:
            return False
        _throttle_last[key] = now
    (logger or logging.getLogger()).warning(message, *args)
    return True


def reset_warn_once_cache() -> None:
    with _throttle_lock:
        _throttle_last.clear()


def _level(value: str | int | None) -> int:
    if isinstance(value, int):
        return value
    name = (value or "INFO").strip().upper()
    if name.isdigit():
        return int(name)
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_runtime_logging(
    *,
    level: str | int | None = None,
    console: bool | None = None,
    log_dir: str | Path | None = None,
    json_logs: bool | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    force: bool = False,
) -> Path:
    """Install the runtime log handlers and return the log file path.

    Calling this again updates the existing handlers instead of stacking new
    ones; ``force`` removes every root handler first.
    """

    resolved_level = _level(level if level is not None else os.getenv("LOG_LEVEL"))
    if console is None:
        console = _env_flag("LOG_CONSOLE", True)
    if json_logs is None:
        json_logs = _env_flag("LOG_JSON", False)

    log_path = (Path(log_dir or DEFAULT_LOG_DIR) / RUNTIME_LOG_NAME).resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(resolved_level)

    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = _UTCFormatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)

    file_handler = next(
        (
            h
            for h in root.handlers
            if isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_path
        ),
        None,
    )
    if file_handler is None:
        file_handler = RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        root.addHandler(file_handler)
    file_handler.setLevel(resolved_level)
    file_handler.setFormatter(formatter)

    if console:
        console_handler(resolved_level).setFormatter(formatter)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    root.debug("logging to %s", log_path)
    return log_path


def _loggable(value: Any, precision: int) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return _loggable(asdict(value), precision)
    if isinstance(value, dict):
        return {str(k): _loggable(v, precision) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_loggable(v, precision) for v in value]
        return sorted(items, key=str) if isinstance(value, (set, frozenset)) else items
    if isinstance(value, float):
        return round(value, precision) if math.isfinite(value) else str(value)
    if value is None or isinstance(value, (str, int, bool)):
        return value
    return str(value)


def serialize_for_log(value: Any, *, precision: int = 4) -> str:
    """Compact JSON for debug lines: floats rounded, enums and dataclasses unpacked."""
    return dumps(_loggable(value, precision), sort_keys=True)
