"""
Core data model - candles, swaps, token snapshots and narrative signals.

Everything here is supplied per cycle by external collaborators and is
treated as immutable by the analysis code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np


class Direction(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeOutcome(str, Enum):
    WIN = "win"
    LOSS = "loss"


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""
    time: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Candle:
        return cls(
            time=float(data.get("time", data.get("timestamp", 0.0))),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class SwapTrade:
    """A single executed swap against the pool."""
    timestamp: float
    side: TradeSide
    base_amount: float
    price: float = 0.0
    trader: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SwapTrade:
        side = str(data.get("side", "")).lower()
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),
            side=TradeSide.BUY if side == "buy" else TradeSide.SELL,
            base_amount=float(data.get("base_amount", data.get("baseAmount", 0.0)) or 0.0),
            price=float(data.get("price", 0.0) or 0.0),
            trader=str(data.get("trader", "")),
        )


@dataclass(frozen=True)
class TokenSnapshot:
    """Liquidity / market-cap / holder snapshot for the token under review."""
    address: str
    symbol: str = ""
    price: float = 0.0
    mcap: float = 0.0
    liquidity: float = 0.0
    holders: int = 0

    @property
    def lp_ratio(self) -> float:
        if self.mcap <= 0:
            return 0.0
        return self.liquidity / self.mcap


@dataclass
class NarrativeSignal:
    """Pre-computed output of the external sentiment collaborator."""
    narrative_score: float = 50.0
    narrative_type: str = "unknown"       # fresh | trending | tired | dead | unknown
    social_score: float = 50.0
    has_active_community: bool = False
    is_being_raided: bool = False
    sentiment: str = "neutral"            # very_negative .. very_positive
    red_flags: List[str] = field(default_factory=list)
    is_likely_scam: bool = False
    narrative_timing: str = "early"       # too_early | early | peak | late | dead
    should_trade: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NarrativeSignal:
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


def candles_to_arrays(
    candles: Sequence[Candle],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Split a candle window into (opens, highs, lows, closes, volumes) arrays."""
    if not candles:
        empty = np.array([], dtype=float)
        return empty, empty, empty, empty, empty
    opens = np.array([c.open for c in candles], dtype=float)
    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)
    volumes = np.array([c.volume for c in candles], dtype=float)
    return opens, highs, lows, closes, volumes
