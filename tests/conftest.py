import itertools
from typing import Callable

import pytest

from pumpsignal.config import EngineConfig
from pumpsignal.logging_utils import reset_warn_once_cache
from pumpsignal.types import Transaction

BASE_TS = 1_700_000_000.0

_sig = itertools.count()


def make_tx(
    token: str = "tokenA",
    offset: float = 0.0,
    buyer: str = "buyer0",
    amount: float = 0.2,
    *,
    base: float = BASE_TS,
) -> Transaction:
    return Transaction(
        token=token,
        timestamp=base + offset,
        buyer=buyer,
        amount=amount,
        signature=f"sig-{next(_sig)}",
    )


class FakeClock:
    def __init__(self, now: float = BASE_TS) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def set(self, offset: float) -> float:
        self.now = BASE_TS + offset
        return self.now


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def tx_factory() -> Callable[..., Transaction]:
    return make_tx


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warn_once_cache()
    yield
    reset_warn_once_cache()
