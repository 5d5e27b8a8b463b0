"""Mental state: streaks, confidence, fatigue, risk budget and modifiers."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from council.agents.mental_state import MentalModifiers, MentalStateStore
from council.agents.profiles import PersonalityTraits
from council.core.models import TradeOutcome


class TestStore:

    def test_lazy_defaults(self, store):
        state = store.get("chad")
        assert state.confidence == 60.0
        assert state.mental_fatigue == 0.0
        assert state.daily_risk_budget == 100.0
        assert store.agent_ids() == ["chad"]

    def test_invalid_reset_policy(self):
        with pytest.raises(ValueError):
            MentalStateStore(reset_policy="weekly")

    def test_reset_and_clear(self, store):
        store.record_trade_result("a", "win", 1.0, 10)
        store.reset("a")
        assert store.get("a").win_streak == 0
        store.clear()
        assert store.agent_ids() == []


class TestRecordTradeResult:

    def test_win_streak_confidence(self, store):
        assert store.record_trade_result("a", TradeOutcome.WIN, 1.0, 5).confidence == 69.0
        state = store.record_trade_result("a", TradeOutcome.WIN, 1.0, 5)
        assert state.confidence == 77.0
        assert state.win_streak == 2
        assert state.loss_streak == 0

    def test_loss_streak_confidence(self, store):
        assert store.record_trade_result("a", "loss", -1.0, 5).confidence == 53.0
        state = store.record_trade_result("a", "loss", -1.0, 5)
        assert state.confidence == 44.0
        assert state.loss_streak == 2

    def test_opposite_result_resets_streak(self, store):
        store.record_trade_result("a", "win", 1.0, 5)
        store.record_trade_result("a", "win", 1.0, 5)
        state = store.record_trade_result("a", "loss", -1.0, 5)
        assert state.win_streak == 0
        assert state.loss_streak == 1

    def test_confidence_stays_in_bounds(self, store):
        for _ in range(30):
            state = store.record_trade_result("up", "win", 0.1, 0)
        assert state.confidence == 95.0
        for _ in range(30):
            state = store.record_trade_result("down", "loss", -0.1, 0)
        assert state.confidence == 20.0

    def test_fatigue_accumulates_and_caps(self, store):
        assert store.record_trade_result("a", "win", 1.0, 0).mental_fatigue == 7.0
        assert store.record_trade_result("a", "win", 1.0, 0).mental_fatigue == 16.0
        for _ in range(20):
            state = store.record_trade_result("a", "win", 1.0, 0)
        assert state.mental_fatigue == 100.0

    def test_risk_budget_floors_at_zero(self, store):
        assert store.record_trade_result("a", "win", 1.0, 40).daily_risk_budget == 60.0
        state = store.record_trade_result("a", "loss", -1.0, 70)
        assert state.daily_risk_budget == 0.0
        assert state.used_risk_today == 110.0

    def test_invalid_outcome(self, store):
        with pytest.raises(ValueError):
            store.record_trade_result("a", "draw", 0.0, 0)

    def test_emotional_bias_bounded(self, store):
        assert store.record_trade_result("a", "win", 3.0, 0).emotional_bias == pytest.approx(6.0)
        for _ in range(10):
            state = store.record_trade_result("b", "loss", -50.0, 0)
            assert -20.0 <= state.emotional_bias <= 20.0

    def test_bias_decays_with_time_between_trades(self, store, clock):
        store.record_trade_result("a", "win", 3.0, 0)
        clock.advance(hours=2)
        state = store.record_trade_result("a", "win", 1.0, 0)
        assert state.emotional_bias == pytest.approx(8.0 * 0.8)

    def test_bias_decay_floor(self, store, clock):
        store.record_trade_result("a", "win", 3.0, 0)
        clock.advance(hours=10)
        state = store.record_trade_result("a", "win", 1.0, 0)
        assert state.emotional_bias == pytest.approx(8.0 * 0.5)


class TestDailyReset:

    def test_utc_day_boundary(self, store, clock):
        store.record_trade_result("a", "win", 1.0, 60)
        store.record_trade_result("a", "win", 1.0, 20)
        assert store.get("a").mental_fatigue == 16.0

        clock.advance(hours=11)  # 23:00 same UTC day
        assert store.get("a").daily_risk_budget == 20.0

        clock.advance(hours=2)
        state = store.get("a")
        assert state.daily_risk_budget == 100.0
        assert state.used_risk_today == 0.0
        assert state.mental_fatigue == 0.0

    def test_rolling_policy(self, clock):
        store = MentalStateStore(clock=clock, reset_policy="rolling_24h", fatigue_recovery=10)
        store.get("a")
        store.record_trade_result("a", "loss", -1.0, 50)
        store.record_trade_result("a", "loss", -1.0, 0)

        clock.advance(hours=23)
        assert store.get("a").daily_risk_budget == 50.0

        clock.advance(hours=1)
        state = store.get("a")
        assert state.daily_risk_budget == 100.0
        assert state.mental_fatigue == 6.0


class TestModifiers:

    def test_fresh_agent(self, store):
        mods = store.calculate_mental_modifiers("a")
        assert mods == MentalModifiers()

    def test_exhausted_agent_skips(self, store):
        store.get("a").mental_fatigue = 85
        mods = store.calculate_mental_modifiers("a")
        assert mods.should_skip is True
        assert "fatigue" in mods.skip_reason

    def test_depleted_budget_skips(self, store):
        store.get("a").daily_risk_budget = 5
        mods = store.calculate_mental_modifiers("a")
        assert mods.should_skip is True
        assert mods.skip_reason == "daily risk budget depleted"

    def test_loss_streak_raises_bar(self, store):
        store.get("a").loss_streak = 3
        mods = store.calculate_mental_modifiers("a")
        assert mods.threshold_modifier == 20
        assert mods.position_size_modifier == pytest.approx(0.4)
        assert mods.mental_note == "on a 3 loss streak - being careful"

    def test_size_clamped(self, store):
        state = store.get("a")
        state.loss_streak = 3
        state.daily_risk_budget = 20
        state.confidence = 25
        assert store.calculate_mental_modifiers("a").position_size_modifier == 0.3

        hot = store.get("b")
        hot.win_streak = 6
        hot.confidence = 90
        assert store.calculate_mental_modifiers("b").position_size_modifier == pytest.approx(1.38)

    def test_three_recorded_losses_raise_bar(self, store, clock):
        confidences = []
        for _ in range(3):
            store.record_trade_result("a", TradeOutcome.LOSS, -1.0, 10)
            confidences.append(store.get("a").confidence)
            clock.advance(hours=2)

        assert confidences[0] > confidences[1] > confidences[2]
        assert store.get("a").loss_streak == 3
        mods = store.calculate_mental_modifiers("a")
        assert mods.threshold_modifier >= 20
        assert mods.position_size_modifier < 1.0
        assert mods.should_skip is False

    def test_recent_big_loss(self, store, clock):
        store.record_trade_result("a", "loss", -5.0, 10)
        mods = store.calculate_mental_modifiers("a")
        assert mods.threshold_modifier == 23
        assert mods.position_size_modifier == pytest.approx(0.5)
        assert mods.mental_note == "feeling cautious after losses"

        clock.advance(hours=2)
        assert store.calculate_mental_modifiers("a").threshold_modifier == 8


class TestPersonality:

    def test_risk_tolerance_softens_threshold(self, store):
        traits = PersonalityTraits(risk_tolerance=0.5, emotional_stability=0.9, fatigue_resistance=0.6)
        mods = store.apply_personality("a", MentalModifiers(threshold_modifier=20, position_size_modifier=0.4), traits)
        assert mods.threshold_modifier == 15.0
        assert mods.position_size_modifier == pytest.approx(0.4)

    def test_unstable_agent_follows_mood(self, store):
        store.get("a").emotional_bias = 8
        traits = PersonalityTraits(risk_tolerance=0.5, emotional_stability=0.3)
        mods = store.apply_personality("a", MentalModifiers(threshold_modifier=20), traits)
        assert mods.threshold_modifier == 12.0

    def test_fatigue_penalty(self, store):
        store.get("a").mental_fatigue = 70
        traits = PersonalityTraits(risk_tolerance=0.0, fatigue_resistance=0.5)
        mods = store.apply_personality("a", MentalModifiers(), traits)
        assert mods.threshold_modifier == 2.0
        assert mods.position_size_modifier == pytest.approx(0.7)

    def test_half_threshold_rounds_up(self, store):
        traits = PersonalityTraits(risk_tolerance=1.0)
        assert store.apply_personality("a", MentalModifiers(threshold_modifier=5), traits).threshold_modifier == 3.0
        assert store.apply_personality("a", MentalModifiers(threshold_modifier=-5), traits).threshold_modifier == -2.0


class TestSummaryAndSeeding:

    def test_summary(self, store):
        assert store.summary("a") == "fresh"
        for _ in range(3):
            store.record_trade_result("a", "win", 0.5, 0)
        assert "3W streak" in store.summary("a")

    def test_seed_from_stats(self, store):
        state = store.seed_from_stats("a", SimpleNamespace(win_rate=80.0, current_streak=-2))
        assert state.confidence == 80.0
        assert state.loss_streak == 2
        assert state.win_streak == 0

        state = store.seed_from_stats("b", SimpleNamespace(win_rate=0.0, current_streak=4))
        assert state.confidence == 40.0
        assert state.win_streak == 4

    def test_reward_correct_call(self, store):
        assert store.reward_correct_call("a").confidence == 65.0
        store.get("b").confidence = 88
        assert store.reward_correct_call("b").confidence == 90.0
        store.get("c").confidence = 93
        assert store.reward_correct_call("c").confidence == 93.0
