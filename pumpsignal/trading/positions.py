"""Paper position bookkeeping."""

from __future__ import annotations

import logging
import secrets
from typing import Dict, List, Optional, Set, Tuple

from ..schemas import PartialExitExecuted, PositionClosed, PositionOpened
from ..types import ExitReason, Position, PositionStatus

logger = logging.getLogger(__name__)

__all__ = ["PositionBook", "new_position_id"]


def new_position_id(now: float) -> str:
    return f"pos_{int(now * 1000)}_{secrets.token_hex(3)}"


class PositionBook:
    """Holds the live position per token and an archive of closed ones.

    A token gets at most one position for the lifetime of the book: once
    its position closes, the token is remembered and cannot be re-entered.
    """

    def __init__(self, *, partial_exit_fraction: float = 50.0) -> None:
        self.partial_exit_fraction = partial_exit_fraction
        self._by_token: Dict[str, Position] = {}
        self._closed: List[Position] = []
        self._traded: Set[str] = set()

    # queries -------------------------------------------------------------

    def get(self, token: str) -> Optional[Position]:
        return self._by_token.get(token)

    def has_open_position(self, token: str) -> bool:
        return token in self._by_token

    def was_traded(self, token: str) -> bool:
        return token in self._traded

    def open_positions(self) -> List[Position]:
        return list(self._by_token.values())

    def closed_positions(self) -> Tuple[Position, ...]:
        return tuple(self._closed)

    def total_realized_pnl(self) -> float:
        """Realized PnL of archived positions plus partial exits of open ones."""
        return sum(p.realized_pnl for p in self._closed) + sum(
            p.realized_pnl for p in self._by_token.values()
        )

    # transitions -----------------------------------------------------------

    def open(
        self,
        token: str,
        *,
        price: float,
        score: float,
        size: float,
        now: float,
    ) -> Optional[Tuple[Position, PositionOpened]]:
        if token in self._by_token or token in self._traded:
            return None
        position = Position(
            id=new_position_id(now),
            token=token,
            entry_time=now,
            entry_price=price,
            entry_score=score,
            size=size,
            remaining_size=size,
            last_price=price,
        )
        self._by_token[token] = position
        self._traded.add(token)
        logger.info(
            "opened %s on %s at %.4f (score %.1f)", position.id, token, price, score
        )
        event = PositionOpened(
            position_id=position.id,
            token=token,
            timestamp=now,
            entry_price=price,
            entry_score=score,
            size=size,
        )
        return position, event

    def mark(self, position: Position, price: float) -> float:
        """Record ``price`` as the latest mark and return unrealized PnL %."""
        position.last_price = price
        pnl_pct = position.pnl_percent(price)
        if pnl_pct > position.max_unrealized_pnl_pct:
            position.max_unrealized_pnl_pct = pnl_pct
        return pnl_pct

    def partial_exit(
        self, position: Position, price: float, now: float
    ) -> Optional[PartialExitExecuted]:
        if position.status is not PositionStatus.OPEN:
            return None
        change = position.pnl_percent(price) / 100.0
        amount = position.size * self.partial_exit_fraction / 100.0
        amount = min(amount, position.remaining_size)
        pnl = amount * change
        position.remaining_size -= amount
        position.realized_pnl += pnl
        position.partial_exit_time = now
        position.partial_exit_price = price
        position.status = PositionStatus.PARTIAL
        logger.info(
            "partial exit %s: sold %.4f at %+.1f%% (pnl %.4f)",
            position.id,
            amount,
            change * 100.0,
            pnl,
        )
        return PartialExitExecuted(
            position_id=position.id,
            token=position.token,
            timestamp=now,
            price=price,
            amount=amount,
            pnl=pnl,
            pnl_percent=change * 100.0,
        )

    def close(
        self, position: Position, price: float, reason: ExitReason, now: float
    ) -> Optional[PositionClosed]:
        """Realize PnL on the remaining size and archive the position.

        Closing an already closed position is a no-op returning ``None``.
        """
        if position.is_closed:
            return None
        change = position.pnl_percent(price) / 100.0
        pnl = position.remaining_size * change
        position.realized_pnl += pnl
        position.remaining_size = 0.0
        position.exit_time = now
        position.exit_price = price
        position.exit_reason = reason
        position.status = PositionStatus.CLOSED
        if self._by_token.get(position.token) is position:
            del self._by_token[position.token]
        self._closed.append(position)
        logger.info(
            "closed %s on %s: %s, realized %.4f, max unrealized %.1f%%",
            position.id,
            position.token,
            reason.value,
            position.realized_pnl,
            position.max_unrealized_pnl_pct,
        )
        return PositionClosed.from_position(position)
