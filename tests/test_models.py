"""Input data model parsing."""

from __future__ import annotations

from council.core.models import Candle, NarrativeSignal, SwapTrade, TokenSnapshot, TradeSide, candles_to_arrays


def test_candle_from_dict_and_geometry():
    candle = Candle.from_dict({"timestamp": 60, "open": 2, "high": 5, "low": 1, "close": 4, "volume": None})
    assert candle.time == 60.0
    assert candle.volume == 0.0
    assert candle.body == 2.0
    assert candle.range == 4.0
    assert candle.upper_wick == 1.0
    assert candle.lower_wick == 1.0
    assert candle.is_bullish is True


def test_swap_from_dict_accepts_camel_case():
    swap = SwapTrade.from_dict({"timestamp": 1, "side": "BUY", "baseAmount": "2.5"})
    assert swap.side == TradeSide.BUY
    assert swap.base_amount == 2.5
    assert SwapTrade.from_dict({"side": "sell", "base_amount": 1}).side == TradeSide.SELL


def test_lp_ratio():
    assert TokenSnapshot(address="0x", mcap=1000, liquidity=50).lp_ratio == 0.05
    assert TokenSnapshot(address="0x", mcap=0, liquidity=50).lp_ratio == 0.0


def test_narrative_ignores_unknown_keys():
    signal = NarrativeSignal.from_dict({"narrative_score": 70, "mystery": True})
    assert signal.narrative_score == 70
    assert signal.narrative_type == "unknown"


def test_candles_to_arrays():
    opens, highs, lows, closes, volumes = candles_to_arrays([])
    assert len(closes) == 0
    candles = [Candle(time=0, open=1, high=2, low=0.5, close=1.5, volume=3)]
    opens, highs, lows, closes, volumes = candles_to_arrays(candles)
    assert closes.tolist() == [1.5]
    assert volumes.tolist() == [3.0]
