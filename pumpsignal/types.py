from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "ExitReason",
    "MalformedTransaction",
    "Position",
    "PositionStatus",
    "RollingMetrics",
    "Transaction",
]

# timestamps above this are taken to be epoch milliseconds
_MS_THRESHOLD = 1e11


class MalformedTransaction(ValueError):
    """Raised when an inbound purchase event cannot be used."""


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single purchase of ``token`` by ``buyer``.

    ``timestamp`` is wall-clock epoch seconds and ``amount`` is expressed in
    native currency units.
    """

    token: str
    timestamp: float
    buyer: str
    amount: float
    signature: str

    def validate(self) -> "Transaction":
        if not isinstance(self.token, str) or not self.token:
            raise MalformedTransaction("transaction has no token")
        if not isinstance(self.buyer, str) or not self.buyer:
            raise MalformedTransaction(f"transaction for {self.token} has no buyer")
        if not isinstance(self.signature, str) or not self.signature:
            raise MalformedTransaction(f"transaction for {self.token} has no signature")
        for name in ("timestamp", "amount"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedTransaction(f"{name} must be numeric, got {value!r}")
            if not math.isfinite(value):
                raise MalformedTransaction(f"{name} must be finite, got {value!r}")
        if self.amount <= 0:
            raise MalformedTransaction(f"amount must be positive, got {self.amount!r}")
        if self.timestamp <= 0:
            raise MalformedTransaction(f"timestamp must be positive, got {self.timestamp!r}")
        return self

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> "Transaction":
        """Build a validated transaction from a loosely keyed mapping."""

        if not isinstance(payload, Mapping):
            raise MalformedTransaction(f"expected a mapping, got {type(payload).__name__}")
        raw_ts = _first(payload, "timestamp", "ts", "block_time")
        raw_amount = _first(payload, "amount", "amount_sol", "sol_amount")
        try:
            timestamp = float(raw_ts)
            amount = float(raw_amount)
        except (TypeError, ValueError) as exc:
            raise MalformedTransaction(f"unparseable transaction payload: {exc}") from exc
        if timestamp > _MS_THRESHOLD:
            timestamp /= 1000.0
        tx = cls(
            token=str(_first(payload, "token", "mint", "token_address") or ""),
            timestamp=timestamp,
            buyer=str(_first(payload, "buyer", "wallet", "buyer_address") or ""),
            amount=amount,
            signature=str(_first(payload, "signature", "hash", "tx_hash") or ""),
        )
        return tx.validate()


@dataclass(frozen=True, slots=True)
class RollingMetrics:
    """Behavioural metrics derived from a token's recent transactions."""

    token: str
    tx_count_30s: int = 0
    tx_count_60s: int = 0
    tx_count_180s: int = 0
    prev_tx_count_60s: int = 0
    unique_buyers_5m: int = 0
    repeat_buyers_5m: int = 0
    avg_buy_size: float = 0.0
    buy_size_std: float = 0.0
    largest_buy: float = 0.0
    tx_interval_mean: float = math.inf
    interval_accelerating: bool = False
    acceleration: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PositionStatus(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    CLOSED = "closed"


class ExitReason(str, Enum):
    PROFIT_TARGET_FULL = "profit_target_full"
    NO_ACTIVITY = "no_activity"
    TX_DECREASING = "tx_count_decreasing"
    STAGNATION_AFTER_SPIKE = "stagnation_after_spike"
    KILL_SWITCH_NO_TX = "kill_switch_no_tx"
    KILL_SWITCH_WHALE = "kill_switch_whale"
    KILL_SWITCH_DEV = "kill_switch_dev"

    @property
    def is_kill_switch(self) -> bool:
        return self.value.startswith("kill_switch_")


@dataclass(slots=True)
class Position:
    """Paper position opened on ``token``."""

    id: str
    token: str
    entry_time: float
    entry_price: float
    entry_score: float
    size: float
    remaining_size: float
    status: PositionStatus = PositionStatus.OPEN
    partial_exit_time: Optional[float] = None
    partial_exit_price: Optional[float] = None
    exit_time: Optional[float] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    max_unrealized_pnl_pct: float = 0.0
    realized_pnl: float = 0.0
    last_price: Optional[float] = None

    @property
    def is_closed(self) -> bool:
        return self.status is PositionStatus.CLOSED

    def pnl_percent(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price * 100.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["exit_reason"] = self.exit_reason.value if self.exit_reason else None
        return data
