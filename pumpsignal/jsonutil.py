"""JSON helpers backed by orjson."""

from __future__ import annotations

from typing import Any, Callable

import orjson

__all__ = ["loads", "dumps", "dumps_bytes", "JSONDecodeError"]

JSONDecodeError = orjson.JSONDecodeError


def loads(data: str | bytes) -> Any:
    """Parse JSON from ``data`` into Python objects."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return orjson.loads(data)


def _resolve_opts(sort_keys: bool, indent: int | None, append_newline: bool) -> int:
    opts = 0
    if indent:
        opts |= orjson.OPT_INDENT_2
    if sort_keys:
        opts |= orjson.OPT_SORT_KEYS
    if append_newline:
        opts |= orjson.OPT_APPEND_NEWLINE
    return opts


def dumps_bytes(
    obj: Any,
    *,
    sort_keys: bool = False,
    indent: int | None = None,
    default: Callable[[Any], Any] | None = None,
    append_newline: bool = False,
) -> bytes:
    """Serialize ``obj`` to a JSON byte string."""
    opts = _resolve_opts(sort_keys, indent, append_newline)
    return orjson.dumps(obj, option=opts, default=default)


def dumps(
    obj: Any,
    *,
    sort_keys: bool = False,
    indent: int | None = None,
    default: Callable[[Any], Any] | None = None,
) -> str:
    """Serialize ``obj`` to a JSON formatted ``str``."""
    return dumps_bytes(obj, sort_keys=sort_keys, indent=indent, default=default).decode("utf-8")
