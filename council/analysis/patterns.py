"""
Pattern Detector - geometric chart patterns over a candle window.

Reversal patterns (head & shoulders, double tops/bottoms, wedges),
continuation patterns (triangles), regression channels and single/multi
bar candlestick shapes. Every detector returns ``None`` (or an empty list)
when the window is too short or nothing matches; none of them raise on
noisy input.

All geometry is built on two primitives: strict local extrema over
``order`` neighbours and an ordinary least-squares line (x = bar index).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from council.core.models import Candle, Direction, candles_to_arrays


class PatternCategory(str, Enum):
    REVERSAL = "reversal"
    CONTINUATION = "continuation"
    CANDLESTICK = "candlestick"


@dataclass
class PatternMatch:
    name: str
    category: PatternCategory
    direction: Direction
    confidence: float  # 0 to 100
    description: str = ""
    price_target: Optional[float] = None
    stop_loss: Optional[float] = None

    def __post_init__(self):
        self.confidence = max(0.0, min(100.0, self.confidence))
        if self.price_target is not None and not math.isfinite(self.price_target):
            self.price_target = None
        if self.stop_loss is not None and not math.isfinite(self.stop_loss):
            self.stop_loss = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category.value,
            "direction": self.direction.value,
            "confidence": round(self.confidence, 1),
            "description": self.description,
            "price_target": self.price_target,
            "stop_loss": self.stop_loss,
        }


@dataclass(frozen=True)
class RegressionLine:
    slope: float
    intercept: float
    r2: float = 0.0

    def at(self, x: float) -> float:
        return self.slope * x + self.intercept


@dataclass
class ChannelModel:
    type: str = "none"          # ascending | descending | horizontal | none
    upper_line: RegressionLine = field(default_factory=lambda: RegressionLine(0.0, 0.0))
    lower_line: RegressionLine = field(default_factory=lambda: RegressionLine(0.0, 0.0))
    strength: float = 0.0       # 0 to 100
    breakout: str = "none"      # above | below | none


@dataclass
class PatternReport:
    patterns: List[PatternMatch]
    channel: ChannelModel
    summary: str
    dominant_signal: Direction
    bullish_score: float = 0.0
    bearish_score: float = 0.0


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def find_local_maxima(data: Sequence[float], order: int = 3) -> List[int]:
    """Indices strictly greater than ``order`` neighbours on each side."""
    maxima = []
    for i in range(order, len(data) - order):
        if all(data[i] > data[i - j] and data[i] > data[i + j] for j in range(1, order + 1)):
            maxima.append(i)
    return maxima


def find_local_minima(data: Sequence[float], order: int = 3) -> List[int]:
    """Indices strictly smaller than ``order`` neighbours on each side."""
    minima = []
    for i in range(order, len(data) - order):
        if all(data[i] < data[i - j] and data[i] < data[i + j] for j in range(1, order + 1)):
            minima.append(i)
    return minima


def linear_regression(x: Sequence[float], y: Sequence[float]) -> RegressionLine:
    """Ordinary least squares fit with coefficient of determination."""
    n = len(x)
    if n < 2:
        return RegressionLine(0.0, float(y[0]) if len(y) else 0.0, 0.0)

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    sum_x, sum_y = xs.sum(), ys.sum()
    denom = n * (xs * xs).sum() - sum_x * sum_x
    if denom == 0:
        return RegressionLine(0.0, float(sum_y / n), 0.0)

    slope = (n * (xs * ys).sum() - sum_x * sum_y) / denom
    intercept = (sum_y - slope * sum_x) / n

    ss_total = ((ys - ys.mean()) ** 2).sum()
    ss_residual = ((ys - (slope * xs + intercept)) ** 2).sum()
    r2 = max(0.0, 1 - ss_residual / ss_total) if ss_total > 0 else 0.0
    return RegressionLine(float(slope), float(intercept), float(r2))


def percent_diff(a: float, b: float) -> float:
    """Absolute difference relative to the mean of the two values, in %."""
    if a == 0 and b == 0:
        return 0.0
    avg = (a + b) / 2
    if avg == 0:
        return 100.0
    return abs(a - b) / abs(avg) * 100


# ---------------------------------------------------------------------------
# Reversal patterns
# ---------------------------------------------------------------------------

SHOULDER_TOLERANCE_PCT = 5.0
HEAD_PROMINENCE_PCT = 3.0
HS_RECENCY_BARS = 10
DOUBLE_TOLERANCE_PCT = 3.0
DOUBLE_DEPTH_PCT = 5.0
DOUBLE_RECENCY_BARS = 8


def detect_head_and_shoulders(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 30:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    maxima = find_local_maxima(highs, 4)
    if len(maxima) < 3:
        return None

    n = len(candles)
    for i in range(len(maxima) - 1, 1, -1):
        left, head, right = maxima[i - 2], maxima[i - 1], maxima[i]
        if highs[head] <= highs[left] or highs[head] <= highs[right]:
            continue
        if percent_diff(highs[left], highs[right]) > SHOULDER_TOLERANCE_PCT:
            continue
        avg_shoulders = (highs[left] + highs[right]) / 2
        if avg_shoulders == 0:
            continue
        if (highs[head] - avg_shoulders) / avg_shoulders * 100 < HEAD_PROMINENCE_PCT:
            continue

        neckline = (lows[left:head].min() + lows[head:right].min()) / 2
        if not math.isfinite(neckline) or neckline == 0:
            continue
        if right <= n - HS_RECENCY_BARS:
            continue

        broken = closes[-1] < neckline
        height = highs[head] - neckline
        return PatternMatch(
            name="Head & Shoulders",
            category=PatternCategory.REVERSAL,
            direction=Direction.BEARISH,
            confidence=85 if broken else 65,
            description="H&S confirmed, neckline broken" if broken else "H&S forming, watch neckline",
            price_target=float(neckline - height),
            stop_loss=float(highs[head]),
        )
    return None


def detect_inverse_head_and_shoulders(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 30:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    minima = find_local_minima(lows, 4)
    if len(minima) < 3:
        return None

    n = len(candles)
    for i in range(len(minima) - 1, 1, -1):
        left, head, right = minima[i - 2], minima[i - 1], minima[i]
        if lows[head] >= lows[left] or lows[head] >= lows[right]:
            continue
        if percent_diff(lows[left], lows[right]) > SHOULDER_TOLERANCE_PCT:
            continue
        avg_shoulders = (lows[left] + lows[right]) / 2
        if lows[head] == 0:
            continue
        if (avg_shoulders - lows[head]) / lows[head] * 100 < HEAD_PROMINENCE_PCT:
            continue

        neckline = (highs[left:head].max() + highs[head:right].max()) / 2
        if not math.isfinite(neckline):
            continue
        if right <= n - HS_RECENCY_BARS:
            continue

        broken = closes[-1] > neckline
        height = neckline - lows[head]
        return PatternMatch(
            name="Inverse Head & Shoulders",
            category=PatternCategory.REVERSAL,
            direction=Direction.BULLISH,
            confidence=85 if broken else 65,
            description="Inv H&S confirmed, breakout" if broken else "Inv H&S forming, watch for breakout",
            price_target=float(neckline + height),
            stop_loss=float(lows[head]),
        )
    return None


def detect_double_top(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 20:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    maxima = find_local_maxima(highs, 3)
    if len(maxima) < 2:
        return None

    peak1, peak2 = maxima[-2], maxima[-1]
    if percent_diff(highs[peak1], highs[peak2]) > DOUBLE_TOLERANCE_PCT:
        return None
    valley = lows[peak1:peak2 + 1].min()
    peak_avg = (highs[peak1] + highs[peak2]) / 2
    if peak_avg == 0 or (peak_avg - valley) / peak_avg * 100 < DOUBLE_DEPTH_PCT:
        return None
    if peak2 < len(candles) - DOUBLE_RECENCY_BARS:
        return None

    broken = closes[-1] < valley
    return PatternMatch(
        name="Double Top",
        category=PatternCategory.REVERSAL,
        direction=Direction.BEARISH,
        confidence=80 if broken else 60,
        description=(
            "Double top confirmed, support broken" if broken
            else "Double top forming, watch support level"
        ),
        price_target=float(valley - (peak_avg - valley)),
        stop_loss=float(peak_avg),
    )


def detect_double_bottom(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 20:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    minima = find_local_minima(lows, 3)
    if len(minima) < 2:
        return None

    bottom1, bottom2 = minima[-2], minima[-1]
    if percent_diff(lows[bottom1], lows[bottom2]) > DOUBLE_TOLERANCE_PCT:
        return None
    peak = highs[bottom1:bottom2 + 1].max()
    bottom_avg = (lows[bottom1] + lows[bottom2]) / 2
    if bottom_avg == 0 or (peak - bottom_avg) / bottom_avg * 100 < DOUBLE_DEPTH_PCT:
        return None
    if bottom2 < len(candles) - DOUBLE_RECENCY_BARS:
        return None

    broken = closes[-1] > peak
    return PatternMatch(
        name="Double Bottom",
        category=PatternCategory.REVERSAL,
        direction=Direction.BULLISH,
        confidence=80 if broken else 60,
        description=(
            "Double bottom confirmed, breakout above resistance" if broken
            else "Double bottom forming, watch resistance level"
        ),
        price_target=float(peak + (peak - bottom_avg)),
        stop_loss=float(bottom_avg),
    )


# ---------------------------------------------------------------------------
# Channels, triangles, wedges
# ---------------------------------------------------------------------------

def detect_channel(candles: Sequence[Candle]) -> ChannelModel:
    if len(candles) < 15:
        return ChannelModel()
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    n = len(candles)
    x = np.arange(n, dtype=float)

    upper = linear_regression(x, highs)
    lower = linear_regression(x, lows)

    price_range = highs.max() - lows.min()
    if price_range == 0:
        return ChannelModel()

    slope_ratio = lower.slope / upper.slope if abs(upper.slope) > 1e-7 else 0.0
    is_parallel = 0.5 < slope_ratio < 2
    avg_slope = (upper.slope + lower.slope) / 2
    slope_pct = avg_slope * n / price_range * 100

    if not is_parallel:
        channel_type = "none"
    elif abs(slope_pct) < 10:
        channel_type = "horizontal"
    elif avg_slope > 0:
        channel_type = "ascending"
    else:
        channel_type = "descending"

    tolerance = price_range * 0.02
    touches = int(np.sum(np.abs(highs - (upper.slope * x + upper.intercept)) < tolerance))
    touches += int(np.sum(np.abs(lows - (lower.slope * x + lower.intercept)) < tolerance))
    strength = min(100.0, touches / n * 100)

    last_upper = upper.at(n - 1)
    last_lower = lower.at(n - 1)
    breakout = "none"
    if closes[-1] > last_upper * 1.01:
        breakout = "above"
    elif closes[-1] < last_lower * 0.99:
        breakout = "below"

    return ChannelModel(
        type=channel_type,
        upper_line=upper,
        lower_line=lower,
        strength=strength if math.isfinite(strength) else 0.0,
        breakout=breakout,
    )


def detect_triangle(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 15:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    maxima = find_local_maxima(highs, 2)[-4:]
    minima = find_local_minima(lows, 2)[-4:]
    if len(maxima) < 2 or len(minima) < 2:
        return None

    upper = linear_regression(maxima, highs[maxima])
    lower = linear_regression(minima, lows[minima])

    if abs(upper.slope) < abs(lower.slope) * 0.3 and lower.slope > 0:
        triangle = "ascending"
    elif abs(lower.slope) < abs(upper.slope) * 0.3 and upper.slope < 0:
        triangle = "descending"
    elif upper.slope < 0 < lower.slope:
        triangle = "symmetrical"
    else:
        return None

    slope_diff = upper.slope - lower.slope
    if slope_diff == 0:
        return None
    n = len(candles)
    apex = (lower.intercept - upper.intercept) / slope_diff
    if not math.isfinite(apex) or apex < n:
        return None

    price = closes[-1]
    breakout = "none"
    if price > upper.at(n - 1):
        breakout = "above"
    elif price < lower.at(n - 1):
        breakout = "below"

    if breakout == "above":
        direction = Direction.BULLISH
    elif breakout == "below":
        direction = Direction.BEARISH
    elif triangle == "ascending":
        direction = Direction.BULLISH
    elif triangle == "descending":
        direction = Direction.BEARISH
    else:
        direction = Direction.NEUTRAL

    height = highs[-15:].max() - lows[-15:].min()
    target = None
    if breakout == "above":
        target = float(price + height)
    elif breakout == "below":
        target = float(price - height)

    return PatternMatch(
        name=f"{triangle.capitalize()} Triangle",
        category=PatternCategory.CONTINUATION,
        direction=direction,
        confidence=75 if breakout != "none" else 55,
        description=(
            f"{triangle} triangle breakout {breakout}" if breakout != "none"
            else f"{triangle} triangle forming, apex in ~{int(apex - n)} candles"
        ),
        price_target=target,
    )


def detect_wedge(candles: Sequence[Candle]) -> Optional[PatternMatch]:
    if len(candles) < 20:
        return None
    _, highs, lows, closes, _ = candles_to_arrays(candles)
    n = len(candles)
    x = np.arange(n, dtype=float)

    upper = linear_regression(x, highs)
    lower = linear_regression(x, lows)
    if upper.slope == 0 or lower.slope == 0 or np.sign(upper.slope) != np.sign(lower.slope):
        return None

    start_width = upper.intercept - lower.intercept
    upper_end, lower_end = upper.at(n), lower.at(n)
    end_width = upper_end - lower_end
    if not (math.isfinite(start_width) and math.isfinite(end_width)):
        return None
    if start_width <= 0 or end_width >= start_width * 0.9:
        return None

    rising = upper.slope > 0
    name = "Rising Wedge" if rising else "Falling Wedge"
    direction = Direction.BEARISH if rising else Direction.BULLISH

    price = closes[-1]
    breakout = "none"
    if price > upper_end * 1.01:
        breakout = "above"
    elif price < lower_end * 0.99:
        breakout = "below"
    confirmed = (rising and breakout == "below") or (not rising and breakout == "above")

    if confirmed:
        confidence, description = 80, f"{name} breakdown confirmed, reversal in progress"
    elif breakout != "none":
        confidence, description = 60, f"{name} broken {breakout}, watch for continuation"
    else:
        confidence, description = 50, f"{name} forming, expect {direction.value} breakout"

    return PatternMatch(
        name=name,
        category=PatternCategory.REVERSAL,
        direction=direction,
        confidence=confidence,
        description=description,
    )


# ---------------------------------------------------------------------------
# Candlesticks
# ---------------------------------------------------------------------------

def _strong_body(c: Candle, ratio: float = 0.6) -> bool:
    return c.range > 0 and c.body > c.range * ratio


def detect_candlestick_patterns(candles: Sequence[Candle]) -> List[PatternMatch]:
    patterns: List[PatternMatch] = []
    if len(candles) < 3:
        return patterns

    prev2, prev, last = candles[-3], candles[-2], candles[-1]
    recent = candles[-10:]
    recent_low = min(c.low for c in recent)
    recent_high = max(c.high for c in recent)
    near_low = last.low <= recent_low * 1.02
    near_high = last.high >= recent_high * 0.98

    def add(name: str, direction: Direction, confidence: float, description: str) -> None:
        patterns.append(PatternMatch(
            name=name,
            category=PatternCategory.CANDLESTICK,
            direction=direction,
            confidence=confidence,
            description=description,
        ))

    if last.range > 0 and last.body < last.range * 0.1:
        add("Doji", Direction.NEUTRAL, 60, "Doji - market indecision, potential reversal")

    body = last.body
    if body > 0 and last.lower_wick > body * 2 and last.upper_wick < body * 0.5 and near_low:
        add("Hammer", Direction.BULLISH, 70, "Hammer at support - bullish reversal signal")

    if body > 0 and last.upper_wick > body * 2 and last.lower_wick < body * 0.5:
        if near_low:
            add("Inverted Hammer", Direction.BULLISH, 60,
                "Inverted hammer at support - buyers testing higher")
        elif near_high:
            add("Shooting Star", Direction.BEARISH, 70,
                "Shooting star at resistance - bearish reversal")

    prev_body = prev.body
    if (prev_body > 0 and not prev.is_bullish and last.is_bullish
            and last.open < prev.close and last.close > prev.open
            and body > prev_body * 1.5):
        add("Bullish Engulfing", Direction.BULLISH, 75, "Bullish engulfing - strong reversal signal")

    if (prev_body > 0 and prev.is_bullish and not last.is_bullish
            and last.open > prev.close and last.close < prev.open
            and body > prev_body * 1.5):
        add("Bearish Engulfing", Direction.BEARISH, 75, "Bearish engulfing - strong sell signal")

    small_middle = prev.range > 0 and prev.body < prev.range * 0.3
    midpoint = (prev2.open + prev2.close) / 2
    if (small_middle and _strong_body(prev2) and not prev2.is_bullish
            and _strong_body(last) and last.is_bullish and last.close > midpoint):
        add("Morning Star", Direction.BULLISH, 80, "Morning star - strong bullish reversal")

    if (small_middle and _strong_body(prev2) and prev2.is_bullish
            and _strong_body(last) and not last.is_bullish and last.close < midpoint):
        add("Evening Star", Direction.BEARISH, 80, "Evening star - strong bearish reversal")

    last3 = (prev2, prev, last)
    if all(_strong_body(c) and c.is_bullish for c in last3) and prev2.close < prev.close < last.close:
        add("Three White Soldiers", Direction.BULLISH, 75, "Three white soldiers - strong bullish momentum")

    if (all(_strong_body(c) and not c.is_bullish for c in last3)
            and prev2.close > prev.close > last.close):
        add("Three Black Crows", Direction.BEARISH, 75, "Three black crows - strong bearish pressure")

    return patterns


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------

def detect_all_patterns(candles: Sequence[Candle]) -> PatternReport:
    """Run every detector and reduce the matches to one dominant signal."""
    patterns: List[PatternMatch] = []
    for detector in (
        detect_head_and_shoulders,
        detect_inverse_head_and_shoulders,
        detect_double_top,
        detect_double_bottom,
        detect_triangle,
        detect_wedge,
    ):
        match = detector(candles)
        if match is not None:
            patterns.append(match)
    patterns.extend(detect_candlestick_patterns(candles))
    channel = detect_channel(candles)

    bullish = sum(p.confidence / 100 for p in patterns if p.direction == Direction.BULLISH)
    bearish = sum(p.confidence / 100 for p in patterns if p.direction == Direction.BEARISH)

    if channel.type != "none":
        if channel.breakout == "above":
            bullish += 0.5
        elif channel.breakout == "below":
            bearish += 0.5
        elif channel.type == "ascending":
            bullish += 0.3
        elif channel.type == "descending":
            bearish += 0.3

    if bullish > bearish + 0.5:
        dominant = Direction.BULLISH
    elif bearish > bullish + 0.5:
        dominant = Direction.BEARISH
    else:
        dominant = Direction.NEUTRAL

    parts: List[str] = []
    if channel.type != "none":
        suffix = f" (breakout {channel.breakout})" if channel.breakout != "none" else ""
        parts.append(f"{channel.type} channel{suffix}")
    chart_patterns = [p.name for p in patterns if p.category != PatternCategory.CANDLESTICK]
    parts.extend(chart_patterns[:2])
    strong_sticks = [p for p in patterns if p.category == PatternCategory.CANDLESTICK and p.confidence >= 70]
    if strong_sticks:
        parts.append(strong_sticks[0].name)

    return PatternReport(
        patterns=patterns,
        channel=channel,
        summary=" + ".join(parts) if parts else "No clear patterns",
        dominant_signal=dominant,
        bullish_score=bullish,
        bearish_score=bearish,
    )
