"""Paper positions: entry gate, exit rules and kill-switch."""

from .entry import EntryDecision, EntryEngine
from .exits import ExitDecision, ExitEngine
from .kill_switch import KillSwitch
from .lifecycle import LifecycleOutcome, PositionLifecycle
from .positions import PositionBook

__all__ = [
    "EntryDecision",
    "EntryEngine",
    "ExitDecision",
    "ExitEngine",
    "KillSwitch",
    "LifecycleOutcome",
    "PositionBook",
    "PositionLifecycle",
]
