"""
Decision Engine - one agent's bounded trade decision for one token.

LOGIC:
  1. Score seven factors (0-100 each) and take the profile-weighted sum
  2. Skip early if the agent's mental state says so
  3. Nudge the score by mood, confidence band and a small random intuition
  4. Compare with mental-state-shifted thresholds -> opinion + confidence
  5. Run the profile's override rules, then the universal scam guard
  6. Size the position from mental state, confidence and exit liquidity

Randomness comes only from the injected ``random.Random`` so a seeded
generator makes every decision reproducible.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from council.agents.mental_state import MentalStateStore
from council.agents.profiles import AgentProfile, ProfileRegistry
from council.analysis.technical import TechnicalSnapshot
from council.core.logger import get_logger
from council.core.models import Direction, NarrativeSignal, TokenSnapshot
from council.risk.exit_liquidity import ExitLiquidityProfile

logger = get_logger("decision")

SIZE_MIN = 0.3
SIZE_MAX = 1.5
MAX_REASONS = 4


@dataclass
class FactorScores:
    holders: float = 50.0
    ta: float = 50.0
    lp: float = 50.0
    momentum: float = 50.0
    narrative: float = 50.0
    exit_liquidity: float = 50.0
    scam_risk: float = 70.0     # higher = safer
    raw_score: float = 0.0
    mental_adjusted_score: float = 0.0
    final_score: float = 0.0
    weights: Dict[str, float] = field(default_factory=dict)
    adjustments: List[str] = field(default_factory=list)

    def as_factors(self) -> Dict[str, float]:
        return {
            "holders": self.holders,
            "ta": self.ta,
            "lp": self.lp,
            "momentum": self.momentum,
            "narrative": self.narrative,
            "exit_liquidity": self.exit_liquidity,
            "scam_risk": self.scam_risk,
        }


@dataclass
class AgentDecision:
    agent_id: str
    opinion: Direction
    confidence: float
    position_size_multiplier: float
    should_trade: bool
    reasoning: List[str] = field(default_factory=list)
    mental_note: str = ""
    scores: FactorScores = field(default_factory=FactorScores)
    skip_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "opinion": self.opinion.value,
            "confidence": self.confidence,
            "position_size_multiplier": self.position_size_multiplier,
            "should_trade": self.should_trade,
            "skip_reason": self.skip_reason,
            "reasoning": list(self.reasoning),
            "mental_note": self.mental_note,
            "scores": {
                **{k: round(v, 2) for k, v in self.scores.as_factors().items()},
                "raw_score": round(self.scores.raw_score, 2),
                "final_score": round(self.scores.final_score, 2),
            },
        }


# ---------------------------------------------------------------------------
# Factor scoring
# ---------------------------------------------------------------------------

_HOLDER_TIERS = ((30000, 98), (20000, 95), (10000, 90), (5000, 80), (2000, 70), (1000, 60), (500, 50))
_LP_TIERS = ((0.20, 90), (0.15, 80), (0.10, 70), (0.07, 55), (0.05, 40))


def _tiered(value: float, tiers, floor: float) -> float:
    for bound, score in tiers:
        if value >= bound:
            return float(score)
    return float(floor)


def score_factors(
    profile: AgentProfile,
    token: TokenSnapshot,
    ta: Optional[TechnicalSnapshot] = None,
    narrative: Optional[NarrativeSignal] = None,
    exit_profile: Optional[ExitLiquidityProfile] = None,
) -> FactorScores:
    """Bucket the inputs into 0-100 sub-scores and weight them by profile."""
    adjustments: List[str] = []

    holders = _tiered(token.holders, _HOLDER_TIERS, 30)

    has_ta = ta is not None and not ta.insufficient_data
    ta_score = float(ta.confidence) if has_ta and ta.confidence else 50.0

    lp = _tiered(token.lp_ratio, _LP_TIERS, 20)

    momentum = 50.0
    if has_ta:
        if ta.volume_spike:
            momentum += 15
        if ta.obv_trend == "accumulation":
            momentum += 10
        if ta.whale_activity == "buying":
            momentum += 15
        elif ta.whale_activity == "selling":
            momentum -= 20
        if ta.trend == "strong_uptrend":
            momentum += 15
        elif ta.trend in ("downtrend", "strong_downtrend"):
            momentum -= 15
    momentum = max(0.0, min(100.0, momentum))

    narrative_score = 50.0
    scam_risk = 70.0
    if narrative is not None:
        narrative_score = (
            narrative.narrative_score * 0.4
            + narrative.social_score * 0.4
            + (20 if narrative.should_trade else 0)
        )
        if narrative.is_likely_scam:
            narrative_score *= 0.2
            adjustments.append("Scam signals detected")
        if narrative.narrative_type in ("dead", "tired"):
            narrative_score *= 0.6
            adjustments.append("Narrative is tired/dead")
        if narrative.narrative_timing in ("late", "dead"):
            narrative_score *= 0.7
            adjustments.append("Late to the narrative")
        if narrative.narrative_type == "fresh":
            narrative_score *= 1.2
            adjustments.append("Fresh narrative")
        if narrative.has_active_community:
            narrative_score *= 1.1
            adjustments.append("Active community")

        flags = len(narrative.red_flags)
        if narrative.is_likely_scam:
            scam_risk = 10.0
            adjustments.append("HIGH SCAM RISK")
        elif flags >= 3:
            scam_risk = 30.0
            adjustments.append(f"{flags} red flags")
        elif flags >= 1:
            scam_risk = 50.0
        else:
            scam_risk = 80.0
    narrative_score = max(0.0, min(100.0, narrative_score))

    exit_score = 50.0
    if exit_profile is not None:
        exit_score = exit_profile.liquidity_score
        if not exit_profile.can_exit:
            exit_score = 0.0
            adjustments.append("Cannot exit position")
        elif exit_profile.exit_difficulty == "hard":
            exit_score *= 0.5
            adjustments.append("Hard to exit")
        elif exit_profile.exit_difficulty == "moderate":
            exit_score *= 0.8
        if exit_profile.price_impact_pct > 10:
            adjustments.append(f"{exit_profile.price_impact_pct:.1f}% exit slippage")

    scores = FactorScores(
        holders=holders,
        ta=ta_score,
        lp=lp,
        momentum=momentum,
        narrative=narrative_score,
        exit_liquidity=exit_score,
        scam_risk=scam_risk,
        weights=profile.weights.as_dict(),
        adjustments=adjustments,
    )
    raw = sum(scores.as_factors()[name] * weight for name, weight in scores.weights.items())
    scores.raw_score = raw
    scores.mental_adjusted_score = raw
    scores.final_score = raw
    return scores


# ---------------------------------------------------------------------------
# Override rules
# ---------------------------------------------------------------------------

@dataclass
class Ruling:
    """Mutable opinion/confidence pair the override rules work on."""
    opinion: Direction
    confidence: float
    reasoning: List[str]


@dataclass
class RuleContext:
    scores: FactorScores
    narrative: Optional[NarrativeSignal]
    exit_profile: Optional[ExitLiquidityProfile]


OverrideRule = Callable[[Ruling, RuleContext], None]


def exit_risk_guard(ruling: Ruling, ctx: RuleContext) -> None:
    """Risk-focused agents refuse trades they cannot get out of."""
    exit_profile = ctx.exit_profile
    if exit_profile is None:
        return
    if not exit_profile.can_exit or exit_profile.risk_tier == "extreme":
        ruling.opinion = Direction.BEARISH
        ruling.confidence = 90.0
        ruling.reasoning.append(exit_profile.verdict)
    elif exit_profile.risk_tier == "high":
        if ruling.opinion == Direction.BULLISH:
            ruling.opinion = Direction.NEUTRAL
            ruling.confidence *= 0.6
        warning = exit_profile.warnings[0] if exit_profile.warnings else "thin LP"
        ruling.reasoning.append(f"Exit liquidity concern: {warning}")


def narrative_gate(ruling: Ruling, ctx: RuleContext) -> None:
    """Narrative-driven agents pass on dead stories whatever the chart says."""
    narrative = ctx.narrative
    if narrative is None:
        return
    if narrative.narrative_type == "dead" or narrative.narrative_score < 30:
        if ruling.opinion == Direction.BULLISH:
            ruling.opinion = Direction.NEUTRAL
            ruling.confidence *= 0.5
        ruling.reasoning.append("Narrative is dead, passing regardless of chart")
    elif narrative.narrative_type == "fresh" and narrative.social_score > 70:
        ruling.confidence = min(95.0, ruling.confidence * 1.2)
        ruling.reasoning.append("Fresh narrative with social buzz")


def contrarian_sentiment(ruling: Ruling, ctx: RuleContext) -> None:
    """Fade extreme fear, distrust extreme hype during a raid."""
    narrative = ctx.narrative
    if narrative is None:
        return
    if narrative.sentiment == "very_negative":
        if ruling.opinion == Direction.BEARISH:
            ruling.opinion = Direction.NEUTRAL
            ruling.reasoning.append("Extreme fear can signal opportunity")
    elif narrative.sentiment == "very_positive" and narrative.is_being_raided:
        if ruling.opinion == Direction.BULLISH:
            ruling.opinion = Direction.NEUTRAL
            ruling.confidence *= 0.7
        ruling.reasoning.append("Excessive hype, possible exit liquidity")


def scam_guard(ruling: Ruling, ctx: RuleContext) -> None:
    if ctx.narrative is not None and ctx.narrative.is_likely_scam and ctx.scores.scam_risk < 30:
        ruling.opinion = Direction.BEARISH
        ruling.confidence = 85.0
        ruling.reasoning.append("Scam indicators detected")


OVERRIDE_RULES: Dict[str, OverrideRule] = {
    "exit_risk_guard": exit_risk_guard,
    "narrative_gate": narrative_gate,
    "contrarian_sentiment": contrarian_sentiment,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class DecisionEngine:
    """Per-agent decision maker bound to a mental-state store and profiles."""

    def __init__(
        self,
        store: MentalStateStore,
        profiles: Optional[ProfileRegistry] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.profiles = profiles or ProfileRegistry()
        self.rng = rng or random.Random()

    def decide(
        self,
        agent_id: str,
        token: TokenSnapshot,
        ta: Optional[TechnicalSnapshot] = None,
        narrative: Optional[NarrativeSignal] = None,
        exit_profile: Optional[ExitLiquidityProfile] = None,
        proposed_size: float = 1.0,
    ) -> AgentDecision:
        profile = self.profiles.get(agent_id)
        traits = profile.traits
        modifiers = self.store.apply_personality(
            agent_id, self.store.calculate_mental_modifiers(agent_id), traits,
        )
        scores = score_factors(profile, token, ta, narrative, exit_profile)

        if modifiers.should_skip:
            reason = modifiers.skip_reason or "Skipping this one"
            logger.info("Agent skipping", agent=agent_id, reason=reason)
            return AgentDecision(
                agent_id=agent_id,
                opinion=Direction.NEUTRAL,
                confidence=0.0,
                position_size_multiplier=SIZE_MIN,
                should_trade=False,
                skip_reason=reason,
                reasoning=[reason],
                mental_note=modifiers.mental_note,
                scores=scores,
            )

        state = self.store.get(agent_id)
        reasoning: List[str] = []
        instability = 1 - traits.emotional_stability

        adjusted = scores.raw_score + state.emotional_bias * instability * 0.5
        if state.confidence < 40:
            adjusted *= 0.9
            reasoning.append("Low confidence affecting judgment")
        elif state.confidence > 80:
            adjusted *= 1.05
        scores.mental_adjusted_score = adjusted

        intuition = self.rng.uniform(-5.0, 5.0)
        adjusted += intuition * instability
        if abs(intuition) > 3:
            reasoning.append("Got a good feeling about this" if intuition > 0 else "Something feels off")
        scores.final_score = adjusted

        bullish_at = profile.bullish_threshold + modifiers.threshold_modifier
        bearish_at = profile.bearish_threshold + modifiers.threshold_modifier * 0.7

        if adjusted >= bullish_at:
            opinion = Direction.BULLISH
            confidence = min(95.0, 50 + (adjusted - bullish_at) * 2)
        elif adjusted < bearish_at:
            opinion = Direction.BEARISH
            confidence = min(95.0, 50 + (bearish_at - adjusted) * 2)
        else:
            opinion = Direction.NEUTRAL
            confidence = 40 + self.rng.uniform(0.0, 20.0)

        ruling = Ruling(opinion=opinion, confidence=confidence, reasoning=reasoning)
        ctx = RuleContext(scores=scores, narrative=narrative, exit_profile=exit_profile)
        for name in profile.overrides:
            OVERRIDE_RULES[name](ruling, ctx)
        scam_guard(ruling, ctx)

        size = modifiers.position_size_modifier
        if ruling.confidence < 50:
            size *= 0.5
        elif ruling.confidence > 80:
            size *= 1.2
        if exit_profile is not None and proposed_size > 0 and exit_profile.recommended_size < proposed_size:
            size = min(size, exit_profile.recommended_size / proposed_size)
            reasoning.append(f"Sizing down to {exit_profile.recommended_size:.1f} for safe exit")
        size = max(SIZE_MIN, min(SIZE_MAX, size))

        confidence = float(round(ruling.confidence))
        should_trade = ruling.opinion == Direction.BULLISH and confidence >= 50

        reasoning.extend(scores.adjustments[:2])
        if ruling.opinion == Direction.BULLISH:
            reasoning.insert(0, f"Score {adjusted:.0f} > threshold {bullish_at:.0f}")
        elif ruling.opinion == Direction.BEARISH:
            reasoning.insert(0, f"Score {adjusted:.0f} < threshold {bearish_at:.0f}")

        decision = AgentDecision(
            agent_id=agent_id,
            opinion=ruling.opinion,
            confidence=confidence,
            position_size_multiplier=round(size, 2),
            should_trade=should_trade,
            reasoning=reasoning[:MAX_REASONS],
            mental_note=modifiers.mental_note or "focused",
            scores=scores,
        )
        logger.info(
            "Agent decision",
            agent=agent_id,
            opinion=decision.opinion.value,
            confidence=decision.confidence,
            size=decision.position_size_multiplier,
            should_trade=should_trade,
            score=round(adjusted, 1),
        )
        return decision
