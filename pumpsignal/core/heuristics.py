"""Swappable approximations used by the decision pipeline.

None of these read on-chain state. Each one is a small strategy object so an
exact implementation (bonding-curve decoding, creator lookup) can replace it
without touching the stages that consume it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..types import RollingMetrics, Transaction

__all__ = [
    "AverageBuyPrice",
    "BuyerVolumeValuation",
    "DevWalletStrategy",
    "FirstBuyerDevWallet",
    "PriceStrategy",
    "ValuationStrategy",
]


@runtime_checkable
class DevWalletStrategy(Protocol):
    def identify(self, first_tx: Transaction) -> str:
        """Return the developer wallet given a token's first transaction."""


@runtime_checkable
class PriceStrategy(Protocol):
    def price(self, metrics: RollingMetrics) -> float:
        """Return the current price proxy for a token."""


@runtime_checkable
class ValuationStrategy(Protocol):
    def estimate(self, metrics: RollingMetrics) -> float:
        """Return an estimated valuation for a token."""


class FirstBuyerDevWallet:
    """The first buyer of a token is assumed to be its creator."""

    def identify(self, first_tx: Transaction) -> str:
        return first_tx.buyer


class AverageBuyPrice:
    """Average buy size over the long window stands in for price."""

    def price(self, metrics: RollingMetrics) -> float:
        return metrics.avg_buy_size


class BuyerVolumeValuation:
    """``unique buyers x average buy size x multiplier``."""

    def __init__(self, multiplier: float = 30.0) -> None:
        self.multiplier = float(multiplier)

    def estimate(self, metrics: RollingMetrics) -> float:
        return metrics.unique_buyers_5m * metrics.avg_buy_size * self.multiplier
