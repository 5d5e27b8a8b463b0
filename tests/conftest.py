"""Shared test fixtures and stubs for council tests.

Provides candle/token builders, a controllable clock, a seeded RNG and
stub collaborators (price source, sell executor) for the position monitor.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from council.agents.mental_state import MentalStateStore
from council.core.config import ConfigManager
from council.core.models import Candle, TokenSnapshot
from council.execution.position_monitor import CloseRequest, OpenPosition, SellReceipt


# ---------------------------------------------------------------------------
# Stub classes
# ---------------------------------------------------------------------------


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubPriceSource:
    """Price source with per-position values.

    Attributes:
        values: position_id -> current value
        failing: position ids whose lookup raises
        calls: position ids looked up, in order
    """

    def __init__(self, values: Optional[Dict[str, float]] = None) -> None:
        self.values: Dict[str, float] = dict(values or {})
        self.failing: set = set()
        self.calls: List[str] = []

    def current_value(self, position: OpenPosition) -> float:
        self.calls.append(position.position_id)
        if position.position_id in self.failing:
            raise ConnectionError("price feed down")
        return self.values[position.position_id]


class StubSellExecutor:
    """Sell executor that records requests.

    Configurable via attributes:
        succeed: whether sells return a successful receipt
        raise_error: exception raised instead of returning a receipt
    """

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.raise_error: Optional[Exception] = None
        self.requests: List[CloseRequest] = []

    async def sell(self, request: CloseRequest) -> SellReceipt:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if not self.succeed:
            return SellReceipt(success=False, error="slippage exceeded")
        return SellReceipt(success=True, tx_id=f"tx-{request.position_id}")


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_candles(closes: Sequence[float], spread: float = 0.5, volume: float = 10.0) -> List[Candle]:
    """Candles with open == close and a symmetric high/low spread."""
    return [
        Candle(time=float(i * 300), open=c, high=c + spread, low=c - spread, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


def make_ohlc(rows: Sequence[tuple], volume: float = 10.0) -> List[Candle]:
    """Candles from (open, high, low, close) tuples."""
    return [
        Candle(time=float(i * 300), open=o, high=h, low=l, close=c, volume=volume)
        for i, (o, h, l, c) in enumerate(rows)
    ]


def interpolate(points: Sequence[tuple]) -> List[float]:
    """Piecewise-linear series through (index, value) key points."""
    series: List[float] = []
    for (i0, v0), (i1, v1) in zip(points, points[1:]):
        step = (v1 - v0) / (i1 - i0)
        for k in range(i1 - i0):
            series.append(v0 + step * k)
    series.append(points[-1][1])
    return series


def make_token(
    liquidity: float = 20000.0,
    mcap: float = 100000.0,
    holders: int = 5000,
    symbol: str = "TEST",
) -> TokenSnapshot:
    return TokenSnapshot(
        address="0xabc",
        symbol=symbol,
        price=1.0,
        mcap=mcap,
        liquidity=liquidity,
        holders=holders,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1337)


@pytest.fixture
def store(clock) -> MentalStateStore:
    return MentalStateStore(clock=clock)


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Prevent ConfigManager singleton state from leaking between tests."""
    saved_instance = ConfigManager._instance
    saved_config = ConfigManager._config
    yield
    ConfigManager._instance = saved_instance
    ConfigManager._config = saved_config
