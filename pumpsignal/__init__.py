"""Signal detection and paper trading for freshly launched pump.fun tokens."""

from __future__ import annotations

from .config import ConfigError, EngineConfig, load_config, validate_config
from .engine import EngineStatus, SignalEngine
from .observers import EngineObserver, LoggingObserver, ObserverGroup
from .types import ExitReason, MalformedTransaction, Position, PositionStatus, RollingMetrics, Transaction

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "EngineConfig",
    "EngineObserver",
    "EngineStatus",
    "ExitReason",
    "LoggingObserver",
    "MalformedTransaction",
    "ObserverGroup",
    "Position",
    "PositionStatus",
    "RollingMetrics",
    "SignalEngine",
    "Transaction",
    "load_config",
    "validate_config",
]
