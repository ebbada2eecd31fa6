"""Typed event payloads emitted by the engine to its observers."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .types import ExitReason, Position


# ─────────────────────────────
# Event payload dataclasses
# ─────────────────────────────

@dataclass(frozen=True)
class TokenDiscovered:
    """A token was seen for the first time."""
    token: str
    timestamp: float
    dev_wallet: str


@dataclass(frozen=True)
class TokenDropped:
    """A token was permanently excluded from trading."""
    token: str
    timestamp: float
    reason: str


@dataclass(frozen=True)
class EntrySignal:
    """Entry conditions held and a position is being opened."""
    token: str
    timestamp: float
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    signals: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PositionOpened:
    """A paper position was opened."""
    position_id: str
    token: str
    timestamp: float
    entry_price: float
    entry_score: float
    size: float


@dataclass(frozen=True)
class PartialExitExecuted:
    """Part of a position was liquidated."""
    position_id: str
    token: str
    timestamp: float
    price: float
    amount: float
    pnl: float
    pnl_percent: float


@dataclass(frozen=True)
class PositionClosed:
    """A position was fully closed; carries the durable trade record."""
    position_id: str
    token: str
    entry_time: float
    entry_score: float
    entry_price: float
    exit_time: float
    exit_price: float
    exit_reason: ExitReason
    max_unrealized_pnl: float
    realized_pnl: float

    @classmethod
    def from_position(cls, position: Position) -> "PositionClosed":
        if position.exit_reason is None or position.exit_time is None:
            raise ValueError(f"position {position.id} is not closed")
        return cls(
            position_id=position.id,
            token=position.token,
            entry_time=position.entry_time,
            entry_score=position.entry_score,
            entry_price=position.entry_price,
            exit_time=position.exit_time,
            exit_price=position.exit_price if position.exit_price is not None else 0.0,
            exit_reason=position.exit_reason,
            max_unrealized_pnl=position.max_unrealized_pnl_pct,
            realized_pnl=position.realized_pnl,
        )

    def to_record(self) -> Dict[str, Any]:
        """Return the JSON-ready trade record written to the trade log."""
        return {
            "token": self.token,
            "position_id": self.position_id,
            "entry_time": self.entry_time,
            "entry_score": self.entry_score,
            "entry_price": self.entry_price,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason.value,
            "max_unrealized_pnl": self.max_unrealized_pnl,
            "realized_pnl": self.realized_pnl,
        }


@dataclass(frozen=True)
class KillSwitchTriggered:
    """The kill-switch forced a position closed."""
    position_id: str
    token: str
    timestamp: float
    reason: ExitReason
    detail: Optional[str] = None


def to_dict(event: Any) -> Dict[str, Any]:
    """Return ``event`` as a plain dictionary with enum values unwrapped."""
    data = asdict(event)
    for key, value in data.items():
        if isinstance(value, ExitReason):
            data[key] = value.value
    return data


__all__ = [
    "EntrySignal",
    "KillSwitchTriggered",
    "PartialExitExecuted",
    "PositionClosed",
    "PositionOpened",
    "TokenDiscovered",
    "TokenDropped",
    "to_dict",
]
