"""Indicator primitives: alignment, warm-up NaNs and edge values."""

from __future__ import annotations

import numpy as np
import pytest

from council.utils.indicators import (
    atr,
    bollinger_bands,
    ema,
    last_valid,
    macd,
    obv,
    rsi,
    sma,
    true_range,
    vwap,
)


class TestIndicators:
    """Test technical indicator calculations."""

    def test_sma_basic(self):
        data = np.array([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], dtype=float)
        result = sma(data, 3)
        assert np.isnan(result[0])
        assert np.isnan(result[1])
        assert result[2] == pytest.approx(2.0)
        assert result[9] == pytest.approx(9.0)

    def test_sma_short_input_is_all_nan(self):
        result = sma(np.array([1.0, 2.0]), 5)
        assert len(result) == 2
        assert np.all(np.isnan(result))

    def test_ema_seeded_with_sma(self):
        data = np.arange(1, 11, dtype=float)
        result = ema(data, 3)
        assert np.isnan(result[1])
        assert result[2] == pytest.approx(2.0)
        # alpha = 0.5 -> 0.5 * 4 + 0.5 * 2
        assert result[3] == pytest.approx(3.0)

    def test_ema_skips_leading_nans(self):
        data = np.array([np.nan, np.nan, 1.0, 2.0, 3.0, 4.0])
        result = ema(data, 2)
        assert np.isnan(result[2])
        assert result[3] == pytest.approx(1.5)

    def test_rsi_range(self):
        rng = np.random.default_rng(7)
        data = 100 + np.cumsum(rng.normal(0, 1, 100))
        result = rsi(data, 14)
        valid = result[~np.isnan(result)]
        assert len(valid) == 100 - 14
        assert np.all(valid >= 0)
        assert np.all(valid <= 100)

    def test_rsi_without_losses_reads_100(self):
        data = np.arange(1, 31, dtype=float)
        assert last_valid(rsi(data, 14)) == 100.0

    def test_rsi_without_gains_reads_0(self):
        data = np.arange(30, 0, -1, dtype=float)
        assert last_valid(rsi(data, 14)) == pytest.approx(0.0)

    def test_rsi_needs_period_plus_one(self):
        result = rsi(np.arange(14, dtype=float), 14)
        assert np.all(np.isnan(result))

    def test_macd_flat_series_is_zero(self):
        data = np.full(60, 5.0)
        line, signal, hist = macd(data)
        assert len(line) == len(signal) == len(hist) == 60
        assert last_valid(line) == pytest.approx(0.0)
        assert last_valid(hist) == pytest.approx(0.0)
        assert np.isnan(signal[30])
        assert not np.isnan(signal[-1])

    def test_bollinger_bands_order(self):
        rng = np.random.default_rng(11)
        data = 100 + rng.normal(0, 2, 50)
        upper, middle, lower = bollinger_bands(data, 20, 2.0)
        valid = ~np.isnan(middle)
        assert np.all(upper[valid] >= middle[valid])
        assert np.all(middle[valid] >= lower[valid])

    def test_bollinger_bands_collapse_on_flat_series(self):
        upper, middle, lower = bollinger_bands(np.full(25, 3.0), 20, 2.0)
        assert upper[-1] == pytest.approx(3.0)
        assert lower[-1] == pytest.approx(3.0)

    def test_true_range_uses_previous_close(self):
        highs = np.array([10.0, 12.0])
        lows = np.array([9.0, 11.5])
        closes = np.array([9.5, 12.0])
        tr = true_range(highs, lows, closes)
        assert tr[0] == pytest.approx(1.0)
        assert tr[1] == pytest.approx(2.5)

    def test_atr_positive(self):
        highs = np.linspace(11, 20, 20)
        lows = highs - 1
        closes = highs - 0.5
        result = atr(highs, lows, closes, 14)
        assert np.isnan(result[12])
        assert last_valid(result) > 0

    def test_obv_direction(self):
        closes = np.array([1.0, 2.0, 1.0, 1.0])
        volumes = np.array([10.0, 20.0, 30.0, 40.0])
        np.testing.assert_allclose(obv(closes, volumes), [0.0, 20.0, -10.0, -10.0])

    def test_vwap_zero_volume_falls_back_to_typical_price(self):
        highs = np.array([3.0, 6.0])
        lows = np.array([1.0, 4.0])
        closes = np.array([2.0, 5.0])
        result = vwap(highs, lows, closes, np.zeros(2))
        np.testing.assert_allclose(result, [2.0, 5.0])

    def test_vwap_weights_by_volume(self):
        highs = np.array([2.0, 4.0])
        lows = np.array([2.0, 4.0])
        closes = np.array([2.0, 4.0])
        result = vwap(highs, lows, closes, np.array([1.0, 3.0]))
        assert result[-1] == pytest.approx(3.5)


def test_last_valid_defaults():
    assert last_valid(np.array([np.nan, np.nan]), 7.0) == 7.0
    assert last_valid(np.array([1.0, np.nan])) == 1.0
    assert last_valid(np.array([])) == 0.0
