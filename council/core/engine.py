"""
Council Engine - wires analysis, risk, mental state and decisions together.

One engine instance owns the mental-state store, the profile registry and
the decision RNG for the lifetime of the process. Callers feed it candle
windows, pool snapshots and narrative signals; it returns per-agent
decisions plus a council consensus, and takes closed-trade results back
to update each agent's mental state.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from council.agents.decision import AgentDecision, DecisionEngine
from council.agents.mental_state import AgentMentalState, MentalStateStore
from council.agents.profiles import ProfileRegistry
from council.analysis.technical import TechnicalSnapshot, analyze_technicals
from council.core.config import CouncilConfig, get_config
from council.core.logger import get_logger, log_performance
from council.core.models import Candle, Direction, NarrativeSignal, SwapTrade, TokenSnapshot, TradeOutcome
from council.execution.position_monitor import AgentStatsStore, TradeResult
from council.risk.exit_liquidity import ExitLiquidityAnalyzer, ExitLiquidityProfile

logger = get_logger("engine")


@dataclass
class CouncilVerdict:
    token: TokenSnapshot
    decisions: Dict[str, AgentDecision]
    exit_profile: ExitLiquidityProfile
    technicals: TechnicalSnapshot
    opinion: str                    # bullish | bearish | neutral | split
    average_confidence: float
    bullish_votes: int
    bearish_votes: int
    neutral_votes: int
    should_trade: bool
    suggested_size: float
    reasoning: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.address,
            "symbol": self.token.symbol,
            "opinion": self.opinion,
            "average_confidence": self.average_confidence,
            "votes": {
                "bullish": self.bullish_votes,
                "bearish": self.bearish_votes,
                "neutral": self.neutral_votes,
            },
            "should_trade": self.should_trade,
            "suggested_size": self.suggested_size,
            "reasoning": self.reasoning,
            "risks": self.risks,
            "exit_liquidity": {
                "risk_tier": self.exit_profile.risk_tier,
                "price_impact_pct": round(self.exit_profile.price_impact_pct, 2),
                "verdict": self.exit_profile.verdict,
            },
            "technicals": self.technicals.to_dict(),
            "decisions": {k: d.to_dict() for k, d in self.decisions.items()},
        }


class CouncilEngine:
    """Process-wide facade over the decision core."""

    def __init__(
        self,
        config: Optional[CouncilConfig] = None,
        store: Optional[MentalStateStore] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or get_config()
        self.profiles = ProfileRegistry(self.config.agents)
        self.store = store or MentalStateStore(
            clock=clock,
            reset_policy=self.config.mental_state.reset_policy,
            fatigue_recovery=self.config.mental_state.fatigue_recovery,
        )
        self.exit_analyzer = ExitLiquidityAnalyzer(self.config.exit_liquidity)
        self.decision_engine = DecisionEngine(self.store, self.profiles, rng)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_token(
        self,
        candles: Sequence[Candle],
        swaps: Optional[Sequence[SwapTrade]] = None,
    ) -> TechnicalSnapshot:
        with log_performance(logger, "technical_analysis", candles=len(candles)):
            return analyze_technicals(candles, swaps, self.config.indicators)

    def evaluate(
        self,
        agent_id: str,
        token: TokenSnapshot,
        candles: Optional[Sequence[Candle]] = None,
        swaps: Optional[Sequence[SwapTrade]] = None,
        narrative: Optional[NarrativeSignal] = None,
        proposed_size: float = 1.0,
        technicals: Optional[TechnicalSnapshot] = None,
        exit_profile: Optional[ExitLiquidityProfile] = None,
    ) -> AgentDecision:
        """One agent's decision; technicals / exit profile are computed if not given."""
        if technicals is None:
            technicals = self.analyze_token(candles or [], swaps)
        if exit_profile is None:
            exit_profile = self.exit_analyzer.analyze(token, proposed_size)
        return self.decision_engine.decide(
            agent_id, token, technicals, narrative, exit_profile, proposed_size,
        )

    def evaluate_council(
        self,
        token: TokenSnapshot,
        candles: Optional[Sequence[Candle]] = None,
        swaps: Optional[Sequence[SwapTrade]] = None,
        narrative: Optional[NarrativeSignal] = None,
        proposed_size: float = 1.0,
    ) -> CouncilVerdict:
        """Every registered agent decides, then the votes are reduced to a consensus."""
        technicals = self.analyze_token(candles or [], swaps)
        exit_profile = self.exit_analyzer.analyze(token, proposed_size)

        decisions: Dict[str, AgentDecision] = {}
        for agent_id in self.profiles.agent_ids():
            decisions[agent_id] = self.evaluate(
                agent_id, token, narrative=narrative, proposed_size=proposed_size,
                technicals=technicals, exit_profile=exit_profile,
            )

        verdict = self._consensus(token, decisions, technicals, exit_profile, narrative, proposed_size)
        logger.info(
            "Council verdict",
            token=token.symbol or token.address,
            opinion=verdict.opinion,
            bullish=verdict.bullish_votes,
            bearish=verdict.bearish_votes,
            confidence=verdict.average_confidence,
            should_trade=verdict.should_trade,
        )
        return verdict

    def _consensus(
        self,
        token: TokenSnapshot,
        decisions: Dict[str, AgentDecision],
        technicals: TechnicalSnapshot,
        exit_profile: ExitLiquidityProfile,
        narrative: Optional[NarrativeSignal],
        proposed_size: float,
    ) -> CouncilVerdict:
        votes = list(decisions.values())
        total = max(1, len(votes))
        majority = total // 2 + 1
        bullish = [d for d in votes if d.opinion == Direction.BULLISH]
        bearish = [d for d in votes if d.opinion == Direction.BEARISH]
        neutral = [d for d in votes if d.opinion == Direction.NEUTRAL]

        bullish_conf = sum(d.confidence for d in bullish) / max(1, len(bullish))
        avg_conf = sum(d.confidence for d in votes) / total

        if len(bullish) >= majority and bullish_conf >= 60:
            opinion = "bullish"
        elif len(bearish) >= majority:
            opinion = "bearish"
        elif len(bullish) == len(bearish):
            opinion = "split"
        elif len(neutral) >= majority:
            opinion = "neutral"
        else:
            opinion = "bullish" if len(bullish) > len(bearish) else "bearish"

        # Risk guardians veto on extreme exit risk
        if exit_profile.risk_tier == "extreme":
            for agent_id, decision in decisions.items():
                if "exit_risk_guard" in self.profiles.get(agent_id).overrides \
                        and decision.opinion == Direction.BEARISH:
                    logger.warning("Liquidity veto", agent=agent_id, token=token.symbol or token.address)
                    opinion = "bearish"
                    break

        should_trade = opinion == "bullish" and avg_conf >= 55
        avg_size = sum(d.position_size_multiplier for d in bullish) / max(1, len(bullish))
        suggested = min(proposed_size * avg_size, exit_profile.recommended_size)

        reasoning: List[str] = []
        risks: List[str] = []
        if should_trade:
            reasoning.append(f"{len(bullish)}/{len(votes)} bullish votes")
            reasoning.append(f"Average confidence: {avg_conf:.0f}%")
            if narrative is not None and narrative.narrative_type == "fresh":
                reasoning.append("Fresh narrative")
            if exit_profile.risk_tier == "low":
                reasoning.append("Good exit liquidity")
        risks.extend(exit_profile.warnings[:2])
        if narrative is not None:
            risks.extend(narrative.red_flags[:2])
        if len(bearish) >= 2:
            risks.append(f"{len(bearish)} bearish votes")

        return CouncilVerdict(
            token=token,
            decisions=decisions,
            exit_profile=exit_profile,
            technicals=technicals,
            opinion=opinion,
            average_confidence=float(round(avg_conf)),
            bullish_votes=len(bullish),
            bearish_votes=len(bearish),
            neutral_votes=len(neutral),
            should_trade=should_trade,
            suggested_size=round(max(0.0, suggested), 2),
            reasoning=reasoning,
            risks=risks,
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_trade_result(self, result: TradeResult) -> AgentMentalState:
        return self.store.record_trade_result(result.agent_id, result.outcome, result.pnl, result.risk_taken)

    def record_council_outcome(
        self,
        verdict: CouncilVerdict,
        outcome: Any,
        pnl: float,
        actual_size: float,
    ) -> None:
        """Credit a council trade back to the agents that voted on it.

        Agents that backed the trade share its result in proportion to their
        size multiplier. Agents that called a losing trade bearish gain a
        little confidence.
        """
        outcome = TradeOutcome(outcome)
        risk_taken = min(100.0, actual_size / self.config.monitor.risk_unit * 100)
        for agent_id, decision in verdict.decisions.items():
            if decision.opinion == Direction.BULLISH and decision.should_trade:
                self.store.record_trade_result(
                    agent_id, outcome, pnl * decision.position_size_multiplier, risk_taken,
                )
            elif decision.opinion == Direction.BEARISH and outcome == TradeOutcome.LOSS:
                self.store.reward_correct_call(agent_id)

    def seed_mental_states(self, stats_store: AgentStatsStore) -> None:
        """Restore confidence and streaks from recorded stats at startup."""
        for agent_id in self.profiles.agent_ids():
            stats = stats_store.get(agent_id)
            if stats.total_trades:
                self.store.seed_from_stats(agent_id, stats)
        logger.info("Mental states seeded", agents=len(self.profiles))
