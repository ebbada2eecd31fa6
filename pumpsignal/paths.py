"""Filesystem locations used by the engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

# Repository root path
ROOT = Path(__file__).resolve().parent.parent

DEFAULT_LOG_DIR = ROOT / "logs"
DEFAULT_CONFIG_NAME = "pumpsignal.toml"

__all__ = ["ROOT", "DEFAULT_LOG_DIR", "DEFAULT_CONFIG_NAME", "default_config_path"]


def default_config_path(env: Optional[Mapping[str, str]] = None, cwd: Optional[Path] = None) -> Optional[Path]:
    """``PUMPSIGNAL_CONFIG`` when set, else ``pumpsignal.toml`` in ``cwd`` if it exists."""
    env = os.environ if env is None else env
    explicit = (env.get("PUMPSIGNAL_CONFIG") or "").strip()
    if explicit:
        return Path(explicit).expanduser()
    candidate = (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME
    return candidate if candidate.is_file() else None
