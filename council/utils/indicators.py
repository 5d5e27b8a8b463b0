"""
Technical indicator primitives over numpy arrays.

Every function returns an array aligned with its input; bars before the
indicator has enough history are NaN. Callers pick the last valid value.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np


def _as_float(data) -> np.ndarray:
    return np.asarray(data, dtype=float)


def sma(data: np.ndarray, period: int) -> np.ndarray:
    """Simple moving average."""
    data = _as_float(data)
    out = np.full(len(data), np.nan)
    if period <= 0 or len(data) < period:
        return out
    csum = np.cumsum(np.insert(data, 0, 0.0))
    out[period - 1:] = (csum[period:] - csum[:-period]) / period
    return out


def ema(data: np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first window.

    Leading NaNs in the input (e.g. a MACD line still warming up) are skipped.
    """
    data = _as_float(data)
    out = np.full(len(data), np.nan)
    if period <= 0:
        return out
    valid = np.flatnonzero(~np.isnan(data))
    if len(valid) == 0:
        return out
    start = int(valid[0])
    if len(data) - start < period:
        return out
    alpha = 2.0 / (period + 1)
    seed_idx = start + period - 1
    out[seed_idx] = np.mean(data[start:seed_idx + 1])
    for i in range(seed_idx + 1, len(data)):
        out[i] = alpha * data[i] + (1 - alpha) * out[i - 1]
    return out


def rsi(data: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index with Wilder smoothing.

    A window with no losses reads 100.
    """
    data = _as_float(data)
    out = np.full(len(data), np.nan)
    if period <= 0 or len(data) < period + 1:
        return out

    changes = np.diff(data)
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()

    def _value(g: float, l: float) -> float:
        if l == 0:
            return 100.0
        rs = g / l
        return 100.0 - 100.0 / (1.0 + rs)

    out[period] = _value(avg_gain, avg_loss)
    for i in range(period, len(changes)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _value(avg_gain, avg_loss)
    return out


def macd(
    data: np.ndarray,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """MACD line, signal line and histogram."""
    data = _as_float(data)
    macd_line = ema(data, fast) - ema(data, slow)
    signal_line = ema(macd_line, signal)
    return macd_line, signal_line, macd_line - signal_line


def bollinger_bands(
    data: np.ndarray,
    period: int = 20,
    num_std: float = 2.0,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Upper, middle and lower Bollinger Bands (population std)."""
    data = _as_float(data)
    middle = sma(data, period)
    std = np.full(len(data), np.nan)
    for i in range(period - 1, len(data)):
        std[i] = np.std(data[i - period + 1:i + 1])
    return middle + num_std * std, middle, middle - num_std * std


def true_range(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray) -> np.ndarray:
    """True range; the first bar uses its own high-low span."""
    highs, lows, closes = _as_float(highs), _as_float(lows), _as_float(closes)
    if len(highs) == 0:
        return np.array([], dtype=float)
    prev_close = np.concatenate(([closes[0]], closes[:-1]))
    return np.maximum.reduce([
        highs - lows,
        np.abs(highs - prev_close),
        np.abs(lows - prev_close),
    ])


def atr(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Average True Range as the rolling mean of true range."""
    return sma(true_range(highs, lows, closes), period)


def obv(closes: np.ndarray, volumes: np.ndarray) -> np.ndarray:
    """On-Balance Volume, starting at zero on the first bar."""
    closes, volumes = _as_float(closes), _as_float(volumes)
    if len(closes) == 0:
        return np.array([], dtype=float)
    direction = np.sign(np.diff(closes))
    return np.concatenate(([0.0], np.cumsum(direction * volumes[1:])))


def vwap(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, volumes: np.ndarray) -> np.ndarray:
    """Cumulative volume-weighted average of the typical price."""
    highs, lows, closes, volumes = (_as_float(a) for a in (highs, lows, closes, volumes))
    typical = (highs + lows + closes) / 3.0
    cum_vol = np.cumsum(volumes)
    cum_pv = np.cumsum(typical * volumes)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.where(cum_vol > 0, cum_pv / np.where(cum_vol > 0, cum_vol, 1.0), typical)
    return out


def last_valid(arr: np.ndarray, default: float = 0.0) -> float:
    """Most recent non-NaN value of an indicator array."""
    for i in range(len(arr) - 1, -1, -1):
        v = arr[i]
        if not np.isnan(v):
            return float(v)
    return default
