"""
Indicator Engine - turns a candle window (plus optional swaps) into a
technical snapshot.

LOGIC:
  1. RSI, moving averages, MACD, Bollinger, OBV, VWAP, ATR over the window
  2. Volume profile and order flow (large-order whale direction)
  3. Trend / momentum classification
  4. Bullish and bearish factor lists -> net score -> signal + confidence
  5. Chart / candlestick patterns attached from the pattern detector

Below ``min_candles`` bars the engine returns a neutral snapshot instead of
raising, so callers can always score a token.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from council.analysis.patterns import ChannelModel, PatternMatch, detect_all_patterns
from council.core.config import IndicatorConfig
from council.core.logger import get_logger
from council.core.models import Candle, Direction, SwapTrade, TradeSide, candles_to_arrays
from council.utils.indicators import (
    atr,
    bollinger_bands,
    last_valid,
    macd,
    obv,
    rsi,
    sma,
    vwap,
)

logger = get_logger("technical")

# Bars of 5-minute candles covering roughly one hour
PRICE_CHANGE_LOOKBACK = 12


@dataclass
class OrderFlow:
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    buy_count: int = 0
    sell_count: int = 0
    buy_ratio: float = 0.5
    large_order_threshold: float = 0.0
    large_buy_volume: float = 0.0
    large_sell_volume: float = 0.0
    whale_activity: str = "none"  # buying | selling | none


@dataclass
class TechnicalSnapshot:
    """Everything the decision engine and the reasoning text need from TA."""
    price: float = 0.0
    price_change_pct: float = 0.0

    rsi: float = 50.0
    rsi_signal: str = "neutral"
    rsi_trend: str = "flat"

    ma5: float = 0.0
    ma10: float = 0.0
    ma20: float = 0.0
    ma_signal: str = "neutral"
    ma_crossover: str = "none"
    price_vs_ma: str = "mixed"

    macd: float = 0.0
    macd_signal: float = 0.0
    macd_histogram: float = 0.0
    macd_crossover: str = "none"

    bb_upper: float = 0.0
    bb_middle: float = 0.0
    bb_lower: float = 0.0
    bb_bandwidth_pct: float = 0.0
    bb_percent_b: float = 0.5
    bb_squeeze: bool = False

    obv: float = 0.0
    obv_trend: str = "neutral"

    vwap: float = 0.0
    vwap_distance_pct: float = 0.0
    vwap_position: str = "at"

    atr: float = 0.0
    volatility_pct: float = 0.0

    volume_avg: float = 0.0
    volume_latest: float = 0.0
    volume_ratio: float = 1.0
    volume_spike: bool = False
    volume_trend: str = "stable"

    order_flow: OrderFlow = field(default_factory=OrderFlow)
    whale_activity: str = "none"

    trend: str = "sideways"
    trend_strength: float = 40.0
    momentum: str = "neutral"

    patterns: List[PatternMatch] = field(default_factory=list)
    channel: ChannelModel = field(default_factory=ChannelModel)
    pattern_summary: str = "No clear patterns"
    pattern_signal: Direction = Direction.NEUTRAL

    signal: str = "hold"
    confidence: float = 40.0
    bullish_factors: List[str] = field(default_factory=list)
    bearish_factors: List[str] = field(default_factory=list)
    key_insight: str = "Mixed signals - wait for confirmation"

    candle_count: int = 0
    insufficient_data: bool = False

    @classmethod
    def neutral(cls, candle_count: int = 0) -> TechnicalSnapshot:
        return cls(
            candle_count=candle_count,
            insufficient_data=True,
            key_insight="Not enough price history",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "rsi": round(self.rsi, 2),
            "rsi_signal": self.rsi_signal,
            "rsi_trend": self.rsi_trend,
            "ma_signal": self.ma_signal,
            "ma_crossover": self.ma_crossover,
            "macd_crossover": self.macd_crossover,
            "bb_squeeze": self.bb_squeeze,
            "obv_trend": self.obv_trend,
            "vwap_position": self.vwap_position,
            "volatility_pct": round(self.volatility_pct, 2),
            "volume_ratio": round(self.volume_ratio, 2),
            "whale_activity": self.whale_activity,
            "trend": self.trend,
            "momentum": self.momentum,
            "patterns": [p.to_dict() for p in self.patterns],
            "pattern_summary": self.pattern_summary,
            "pattern_signal": self.pattern_signal.value,
            "signal": self.signal,
            "confidence": self.confidence,
            "bullish_factors": list(self.bullish_factors),
            "bearish_factors": list(self.bearish_factors),
            "key_insight": self.key_insight,
            "insufficient_data": self.insufficient_data,
        }


# ---------------------------------------------------------------------------
# Order flow
# ---------------------------------------------------------------------------

def analyze_order_flow(
    swaps: Optional[Sequence[SwapTrade]],
    percentile: float = 90.0,
    whale_ratio: float = 1.5,
) -> OrderFlow:
    """Split swaps into buy/sell flow and flag whale direction.

    Large orders are those strictly above ``percentile`` of the recent trade
    sizes. Whale activity is reported when one side's large-order volume
    exceeds the other's by ``whale_ratio``.
    """
    if not swaps:
        return OrderFlow()

    sizes = np.array([max(0.0, s.base_amount) for s in swaps], dtype=float)
    is_buy = np.array([s.side == TradeSide.BUY for s in swaps], dtype=bool)

    buy_volume = float(sizes[is_buy].sum())
    sell_volume = float(sizes[~is_buy].sum())
    total = buy_volume + sell_volume

    threshold = float(np.percentile(sizes, percentile))
    large = sizes > threshold
    large_buy = float(sizes[large & is_buy].sum())
    large_sell = float(sizes[large & ~is_buy].sum())

    whale = "none"
    if large_buy > large_sell * whale_ratio:
        whale = "buying"
    elif large_sell > large_buy * whale_ratio:
        whale = "selling"

    return OrderFlow(
        buy_volume=buy_volume,
        sell_volume=sell_volume,
        buy_count=int(is_buy.sum()),
        sell_count=int((~is_buy).sum()),
        buy_ratio=buy_volume / total if total > 0 else 0.5,
        large_order_threshold=threshold,
        large_buy_volume=large_buy,
        large_sell_volume=large_sell,
        whale_activity=whale,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ma(closes: np.ndarray, period: int) -> float:
    """Latest SMA; falls back to the last close on a short window."""
    if len(closes) < period:
        return float(closes[-1]) if len(closes) else 0.0
    return last_valid(sma(closes, period), float(closes[-1]))


def _rsi_trend(closes: np.ndarray) -> str:
    recent = closes[-5:]
    if len(recent) < 3:
        return "flat"
    avg = float(np.mean(recent))
    if avg == 0:
        return "flat"
    change = (recent[-1] - recent[0]) / avg
    if change > 0.02:
        return "rising"
    if change < -0.02:
        return "falling"
    return "flat"


def _obv_trend(obv_series: np.ndarray, lookback: int) -> str:
    recent = obv_series[-lookback:]
    if len(recent) < 5:
        return "neutral"
    change = recent[-1] - recent[0]
    avg_magnitude = float(np.mean(np.abs(obv_series))) or 1.0
    if change > avg_magnitude * 0.1:
        return "accumulation"
    if change < -avg_magnitude * 0.1:
        return "distribution"
    return "neutral"


def _volume_trend(volumes: np.ndarray) -> str:
    recent = volumes[-5:].sum() / 5
    older = volumes[-10:-5].sum() / 5
    if recent > older * 1.3:
        return "increasing"
    if recent < older * 0.7:
        return "decreasing"
    return "stable"


def _crossover(prev_diff: float, diff: float, up: str, down: str) -> str:
    if prev_diff < 0 < diff:
        return up
    if prev_diff > 0 > diff:
        return down
    return "none"


def _classify_trend(closes: np.ndarray, price_vs_ma: str):
    recent = closes[-10:]
    older = closes[-20:-10]
    recent_avg = float(np.mean(recent))
    older_avg = float(np.mean(older)) if len(older) else recent_avg
    change = (recent_avg - older_avg) / older_avg * 100 if older_avg else 0.0

    if price_vs_ma == "above_all" and change > 10:
        return "strong_uptrend", 80.0
    if price_vs_ma == "above_all" and change > 3:
        return "uptrend", 60.0
    if price_vs_ma == "below_all" and change < -10:
        return "strong_downtrend", 80.0
    if price_vs_ma == "below_all" and change < -3:
        return "downtrend", 60.0
    return "sideways", 40.0


def _classify_momentum(rsi_value: float, ma_signal: str, whale: str) -> str:
    score = 1 if rsi_value > 50 else -1
    score += {"bullish": 1, "bearish": -1}.get(ma_signal, 0)
    score += {"buying": 1, "selling": -1}.get(whale, 0)
    if score >= 3:
        return "strong_bullish"
    if score >= 1:
        return "bullish"
    if score <= -3:
        return "strong_bearish"
    if score <= -1:
        return "bearish"
    return "neutral"


def _signal_from_net(net: int):
    if net >= 4:
        return "strong_buy", float(min(90, 60 + net * 4))
    if net >= 2:
        return "buy", float(min(75, 50 + net * 4))
    if net <= -4:
        return "strong_sell", float(min(90, 60 + abs(net) * 4))
    if net <= -2:
        return "sell", float(min(75, 50 + abs(net) * 4))
    return "hold", 40.0


def _finite(value: float, default: float = 0.0) -> float:
    return float(value) if math.isfinite(value) else default


# ---------------------------------------------------------------------------
# Main analysis
# ---------------------------------------------------------------------------

def analyze_technicals(
    candles: Sequence[Candle],
    swaps: Optional[Sequence[SwapTrade]] = None,
    config: Optional[IndicatorConfig] = None,
) -> TechnicalSnapshot:
    """Compute the full technical snapshot for a candle window."""
    cfg = config or IndicatorConfig()
    candles = list(candles)[-cfg.max_candles:]

    if len(candles) < cfg.min_candles:
        logger.debug("Not enough candles for TA", candles=len(candles), required=cfg.min_candles)
        return TechnicalSnapshot.neutral(len(candles))

    _, highs, lows, closes, volumes = candles_to_arrays(candles)
    price = float(closes[-1])
    snap = TechnicalSnapshot(price=price, candle_count=len(candles))

    base_idx = max(0, len(closes) - 1 - PRICE_CHANGE_LOOKBACK)
    base = closes[base_idx]
    snap.price_change_pct = (price - base) / base * 100 if base else 0.0

    # RSI
    snap.rsi = last_valid(rsi(closes, cfg.rsi_period), 50.0) if len(closes) > cfg.rsi_period else 50.0
    if snap.rsi > cfg.rsi_overbought:
        snap.rsi_signal = "overbought"
    elif snap.rsi < cfg.rsi_oversold:
        snap.rsi_signal = "oversold"
    snap.rsi_trend = _rsi_trend(closes)

    # Moving averages
    snap.ma5 = _ma(closes, cfg.ma_fast)
    snap.ma10 = _ma(closes, cfg.ma_mid)
    snap.ma20 = _ma(closes, cfg.ma_slow)
    if price > snap.ma5 > snap.ma20:
        snap.ma_signal = "bullish"
    elif price < snap.ma5 < snap.ma20:
        snap.ma_signal = "bearish"

    prev_ma5 = _ma(closes[:-1], cfg.ma_fast)
    prev_ma20 = _ma(closes[:-1], cfg.ma_slow)
    snap.ma_crossover = _crossover(
        prev_ma5 - prev_ma20, snap.ma5 - snap.ma20, "golden_cross", "death_cross",
    )

    if price > snap.ma5 and price > snap.ma10 and price > snap.ma20:
        snap.price_vs_ma = "above_all"
    elif price < snap.ma5 and price < snap.ma10 and price < snap.ma20:
        snap.price_vs_ma = "below_all"

    # MACD
    macd_line, signal_line, hist = macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    snap.macd = last_valid(macd_line)
    snap.macd_signal = last_valid(signal_line)
    snap.macd_histogram = last_valid(hist)
    if len(hist) >= 2 and not np.isnan(hist[-1]) and not np.isnan(hist[-2]):
        snap.macd_crossover = _crossover(float(hist[-2]), float(hist[-1]), "bullish", "bearish")

    # Bollinger
    upper, middle, lower = bollinger_bands(closes, cfg.bb_period, cfg.bb_std)
    snap.bb_upper = last_valid(upper, price)
    snap.bb_middle = last_valid(middle, price)
    snap.bb_lower = last_valid(lower, price)
    if snap.bb_middle > 0:
        snap.bb_bandwidth_pct = max(0.0, (snap.bb_upper - snap.bb_lower) / snap.bb_middle * 100)
        snap.bb_squeeze = snap.bb_bandwidth_pct < cfg.bb_squeeze_pct
    band = snap.bb_upper - snap.bb_lower
    snap.bb_percent_b = (price - snap.bb_lower) / band if band > 0 else 0.5

    # OBV
    obv_series = obv(closes, volumes)
    snap.obv = float(obv_series[-1]) if len(obv_series) else 0.0
    snap.obv_trend = _obv_trend(obv_series, cfg.obv_lookback)

    # VWAP
    vwap_series = vwap(highs, lows, closes, volumes)
    snap.vwap = _finite(float(vwap_series[-1]), price)
    if snap.vwap > 0:
        snap.vwap_distance_pct = (price - snap.vwap) / snap.vwap * 100
    if snap.vwap_distance_pct > cfg.vwap_band_pct:
        snap.vwap_position = "above"
    elif snap.vwap_distance_pct < -cfg.vwap_band_pct:
        snap.vwap_position = "below"

    # ATR
    snap.atr = last_valid(atr(highs, lows, closes, cfg.atr_period))
    snap.volatility_pct = snap.atr / price * 100 if price > 0 else 0.0

    # Volume
    snap.volume_avg = float(np.mean(volumes))
    snap.volume_latest = float(volumes[-1])
    snap.volume_ratio = snap.volume_latest / snap.volume_avg if snap.volume_avg > 0 else 1.0
    snap.volume_spike = snap.volume_ratio > cfg.volume_spike_ratio
    snap.volume_trend = _volume_trend(volumes)

    # Order flow
    snap.order_flow = analyze_order_flow(swaps, cfg.whale_percentile, cfg.whale_ratio)
    snap.whale_activity = snap.order_flow.whale_activity

    snap.trend, snap.trend_strength = _classify_trend(closes, snap.price_vs_ma)
    snap.momentum = _classify_momentum(snap.rsi, snap.ma_signal, snap.whale_activity)

    # Patterns
    report = detect_all_patterns(candles)
    snap.patterns = report.patterns
    snap.channel = report.channel
    snap.pattern_summary = report.summary
    snap.pattern_signal = report.dominant_signal

    # Factors
    bullish: List[str] = []
    bearish: List[str] = []
    if snap.rsi_signal == "oversold":
        bullish.append(f"RSI {snap.rsi:.0f} oversold")
    if snap.rsi_signal == "overbought":
        bearish.append(f"RSI {snap.rsi:.0f} overbought")
    if snap.ma_crossover == "golden_cross":
        bullish.append("Golden cross")
    if snap.ma_crossover == "death_cross":
        bearish.append("Death cross")
    if snap.macd_crossover == "bullish":
        bullish.append("MACD bullish crossover")
    if snap.macd_crossover == "bearish":
        bearish.append("MACD bearish crossover")
    if snap.volume_spike and snap.price_change_pct > 0:
        bullish.append(f"Volume spike {snap.volume_ratio:.1f}x")
    if snap.volume_spike and snap.price_change_pct < 0:
        bearish.append("Volume spike on dump")
    if snap.obv_trend == "accumulation":
        bullish.append("OBV accumulation")
    if snap.obv_trend == "distribution":
        bearish.append("OBV distribution")
    if snap.whale_activity == "buying":
        bullish.append("Whales buying")
    if snap.whale_activity == "selling":
        bearish.append("Whales selling")
    snap.bullish_factors = bullish
    snap.bearish_factors = bearish

    net = len(bullish) - len(bearish)
    snap.signal, snap.confidence = _signal_from_net(net)

    if net > 0 and bullish:
        snap.key_insight = bullish[0]
    elif net < 0 and bearish:
        snap.key_insight = bearish[0]

    logger.debug(
        "TA complete",
        signal=snap.signal,
        confidence=snap.confidence,
        rsi=round(snap.rsi, 1),
        patterns=len(snap.patterns),
    )
    return snap
