"""Agent decisions: factor scoring, overrides, bounds and reproducibility."""

from __future__ import annotations

import random

import pytest

from council.agents.decision import DecisionEngine, FactorScores, score_factors
from council.agents.mental_state import MentalStateStore
from council.agents.profiles import DEFAULT_PROFILES, AgentProfile, ProfileRegistry
from council.analysis.technical import TechnicalSnapshot
from council.core.exceptions import UnknownAgentError
from council.core.models import Direction, NarrativeSignal
from council.risk.exit_liquidity import ExitLiquidityAnalyzer, ExitLiquidityProfile
from tests.conftest import make_token

AGENT_IDS = list(DEFAULT_PROFILES)


def _exit_profile(**overrides) -> ExitLiquidityProfile:
    data = dict(
        can_exit=True,
        exit_difficulty="easy",
        price_impact_pct=0.5,
        worst_case_impact_pct=1.25,
        max_safe_size=200.0,
        recommended_size=500.0,
        estimated_exit_minutes=1.0,
        can_exit_in_10_minutes=True,
        liquidity_score=90.0,
        risk_tier="low",
        warnings=[],
        verdict="Liquidity looks healthy.",
    )
    data.update(overrides)
    return ExitLiquidityProfile(**data)


def _engine(store, seed: int = 42) -> DecisionEngine:
    return DecisionEngine(store, ProfileRegistry(), random.Random(seed))


class TestScoreFactors:

    def test_neutral_inputs(self):
        scores = score_factors(DEFAULT_PROFILES["quantum"], make_token(holders=5000, liquidity=20000, mcap=100000))
        assert scores.holders == 80.0
        assert scores.lp == 90.0
        assert scores.ta == 50.0
        assert scores.momentum == 50.0
        assert scores.narrative == 50.0
        assert scores.exit_liquidity == 50.0
        assert scores.scam_risk == 70.0

    def test_raw_score_is_weighted_sum(self):
        profile = DEFAULT_PROFILES["sterling"]
        scores = score_factors(profile, make_token())
        expected = sum(scores.as_factors()[k] * w for k, w in profile.weights.as_dict().items())
        assert scores.raw_score == pytest.approx(expected)

    @pytest.mark.parametrize("holders,expected", [(40000, 98), (5000, 80), (1500, 60), (499, 30)])
    def test_holder_tiers(self, holders, expected):
        assert score_factors(DEFAULT_PROFILES["sensei"], make_token(holders=holders)).holders == expected

    def test_insufficient_ta_reads_neutral(self):
        scores = score_factors(DEFAULT_PROFILES["quantum"], make_token(), TechnicalSnapshot.neutral(3))
        assert scores.ta == 50.0
        assert scores.momentum == 50.0

    def test_momentum_from_ta(self):
        ta = TechnicalSnapshot(confidence=70, volume_spike=True, obv_trend="accumulation",
                               whale_activity="selling", trend="downtrend")
        scores = score_factors(DEFAULT_PROFILES["quantum"], make_token(), ta)
        assert scores.ta == 70.0
        assert scores.momentum == pytest.approx(50 + 15 + 10 - 20 - 15)

    def test_scam_narrative(self):
        narrative = NarrativeSignal(narrative_score=80, social_score=80, should_trade=True, is_likely_scam=True)
        scores = score_factors(DEFAULT_PROFILES["chad"], make_token(), narrative=narrative)
        assert scores.narrative == pytest.approx(84 * 0.2)
        assert scores.scam_risk == 10.0
        assert "HIGH SCAM RISK" in scores.adjustments

    def test_narrative_capped(self):
        narrative = NarrativeSignal(narrative_score=100, social_score=100, should_trade=True,
                                    narrative_type="fresh", has_active_community=True)
        assert score_factors(DEFAULT_PROFILES["chad"], make_token(), narrative=narrative).narrative == 100.0

    def test_cannot_exit_zeroes_exit_score(self):
        scores = score_factors(DEFAULT_PROFILES["sterling"], make_token(),
                               exit_profile=_exit_profile(can_exit=False))
        assert scores.exit_liquidity == 0.0
        assert "Cannot exit position" in scores.adjustments


class TestDecide:

    def test_unknown_agent(self, store):
        with pytest.raises(UnknownAgentError) as exc:
            _engine(store).decide("nobody", make_token())
        assert isinstance(exc.value, KeyError)
        assert exc.value.agent_id == "nobody"

    def test_same_seed_same_decision(self, clock):
        narrative = NarrativeSignal(narrative_score=60, social_score=55)
        first = _engine(MentalStateStore(clock=clock), seed=7).decide("chad", make_token(), narrative=narrative)
        second = _engine(MentalStateStore(clock=clock), seed=7).decide("chad", make_token(), narrative=narrative)
        assert first.to_dict() == second.to_dict()

    def test_bounds_hold_across_inputs(self, store):
        engine = _engine(store, seed=99)
        rng = random.Random(5)
        analyzer = ExitLiquidityAnalyzer()
        for i in range(60):
            token = make_token(
                liquidity=rng.choice([0, 300, 2000, 20000]),
                mcap=rng.choice([5000, 50000, 500000]),
                holders=rng.choice([50, 800, 6000, 40000]),
            )
            narrative = NarrativeSignal(
                narrative_score=rng.uniform(0, 100),
                social_score=rng.uniform(0, 100),
                narrative_type=rng.choice(["fresh", "trending", "tired", "dead"]),
                sentiment=rng.choice(["very_negative", "neutral", "very_positive"]),
                is_being_raided=rng.random() < 0.3,
                is_likely_scam=rng.random() < 0.2,
            )
            ta = TechnicalSnapshot(confidence=rng.uniform(40, 90), trend=rng.choice(["uptrend", "downtrend"]))
            size = rng.choice([1.0, 10.0, 100.0])
            agent = AGENT_IDS[i % len(AGENT_IDS)]
            decision = engine.decide(agent, token, ta, narrative, analyzer.analyze(token, size), size)

            assert 0 <= decision.confidence <= 95
            assert 0.3 <= decision.position_size_multiplier <= 1.5
            assert decision.should_trade == (
                decision.opinion == Direction.BULLISH and decision.confidence >= 50
            )
            assert len(decision.reasoning) <= 4

    def test_exhausted_agent_skips(self, store):
        store.get("quantum").mental_fatigue = 90
        decision = _engine(store).decide("quantum", make_token())
        assert decision.opinion == Direction.NEUTRAL
        assert decision.confidence == 0.0
        assert decision.position_size_multiplier == 0.3
        assert decision.should_trade is False
        assert decision.skip_reason.startswith("mental fatigue")

    def test_dead_narrative_blocks_degen(self, store):
        narrative = NarrativeSignal(narrative_score=20, narrative_type="dead", social_score=40)
        ta = TechnicalSnapshot(confidence=85)
        decision = _engine(store).decide("chad", make_token(), ta, narrative)
        assert decision.opinion != Direction.BULLISH
        assert decision.should_trade is False

    def test_scam_guard_applies_to_every_agent(self, store):
        narrative = NarrativeSignal(narrative_score=90, social_score=90, should_trade=True, is_likely_scam=True)
        for agent in ("quantum", "sensei", "oracle"):
            decision = _engine(store).decide(agent, make_token(), narrative=narrative)
            assert decision.opinion == Direction.BEARISH
            assert decision.confidence == 85.0
            assert "Scam indicators detected" in decision.reasoning

    def test_risk_manager_refuses_unexitable_position(self, store):
        exit_profile = _exit_profile(can_exit=False, risk_tier="extreme", verdict="Hard pass.")
        decision = _engine(store).decide("sterling", make_token(), exit_profile=exit_profile)
        assert decision.opinion == Direction.BEARISH
        assert decision.confidence == 90.0
        assert "Hard pass." in decision.reasoning

    def test_contrarian_fades_extreme_fear(self, store):
        token = make_token(holders=100, liquidity=100, mcap=10000)
        flags = ["dev sold", "copycat", "honeypot"]

        fearful = NarrativeSignal(narrative_score=0, social_score=0, sentiment="negative", red_flags=flags)
        decision = _engine(store).decide("oracle", token, narrative=fearful)
        assert decision.opinion == Direction.BEARISH

        panic = NarrativeSignal(narrative_score=0, social_score=0, sentiment="very_negative", red_flags=flags)
        decision = _engine(store).decide("oracle", token, narrative=panic)
        assert decision.opinion == Direction.NEUTRAL
        assert "Extreme fear can signal opportunity" in decision.reasoning

    def test_size_capped_by_exit_liquidity(self, store):
        narrative = NarrativeSignal(narrative_score=95, social_score=95, should_trade=True, narrative_type="fresh")
        exit_profile = _exit_profile(recommended_size=5.0)
        decision = _engine(store).decide("chad", make_token(), TechnicalSnapshot(confidence=80),
                                         narrative, exit_profile, proposed_size=100.0)
        assert decision.position_size_multiplier == 0.3
        assert any(r.startswith("Sizing down to 5.0") for r in decision.reasoning)

    def test_configured_profile_is_used(self, store):
        cautious = AgentProfile(agent_id="mole", bullish_threshold=99, bearish_threshold=1)
        registry = ProfileRegistry({"mole": cautious})
        decision = DecisionEngine(store, registry, random.Random(1)).decide("mole", make_token())
        assert decision.opinion == Direction.NEUTRAL
        assert 40 <= decision.confidence <= 60

    def test_to_dict(self, store):
        data = _engine(store).decide("quantum", make_token()).to_dict()
        assert set(data["scores"]) >= set(FactorScores().as_factors()) | {"raw_score", "final_score"}
        assert data["opinion"] in ("bullish", "bearish", "neutral")


