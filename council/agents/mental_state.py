"""
Mental State Tracker - fatigue, confidence, streaks and risk budget per agent.

State lives in an explicit ``MentalStateStore`` created at startup and passed
to whoever needs it; there is no module-level registry. Entries are created
lazily on first read, and every read may trigger the daily reset (risk
budget refilled, partial fatigue recovery).

The store does no locking. Writes for the same agent must be serialised by
the caller.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from council.agents.profiles import PersonalityTraits
from council.core.logger import get_logger
from council.core.models import TradeOutcome

logger = get_logger("mental_state")

Clock = Callable[[], datetime]

CONFIDENCE_MIN = 20.0
CONFIDENCE_MAX = 95.0
BIAS_LIMIT = 20.0
SIZE_MIN = 0.3
SIZE_MAX = 1.5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


@dataclass
class AgentMentalState:
    agent_id: str
    daily_risk_budget: float = 100.0
    used_risk_today: float = 0.0
    confidence: float = 60.0
    win_streak: int = 0
    loss_streak: int = 0
    mental_fatigue: float = 0.0
    trades_this_session: int = 0
    emotional_bias: float = 0.0     # -20 to +20
    last_trade_result: str = "none"
    last_trade_pnl: float = 0.0
    last_trade_at: Optional[datetime] = None
    session_start_at: datetime = field(default_factory=_utc_now)
    last_reset_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "daily_risk_budget": round(self.daily_risk_budget, 2),
            "used_risk_today": round(self.used_risk_today, 2),
            "confidence": round(self.confidence, 2),
            "win_streak": self.win_streak,
            "loss_streak": self.loss_streak,
            "mental_fatigue": round(self.mental_fatigue, 2),
            "trades_this_session": self.trades_this_session,
            "emotional_bias": round(self.emotional_bias, 2),
            "last_trade_result": self.last_trade_result,
            "last_trade_pnl": self.last_trade_pnl,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
        }


@dataclass
class MentalModifiers:
    threshold_modifier: float = 0.0
    position_size_modifier: float = 1.0
    should_skip: bool = False
    skip_reason: Optional[str] = None
    mental_note: str = ""


class MentalStateStore:
    """Keyed store of ``AgentMentalState`` with an injectable clock."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        reset_policy: str = "utc_day",
        fatigue_recovery: float = 30.0,
    ):
        if reset_policy not in ("utc_day", "rolling_24h"):
            raise ValueError(f"unknown reset policy: {reset_policy!r}")
        self._clock = clock or _utc_now
        self._reset_policy = reset_policy
        self._fatigue_recovery = fatigue_recovery
        self._states: Dict[str, AgentMentalState] = {}

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, agent_id: str) -> AgentMentalState:
        """Fetch (or lazily create) an agent's state, applying the daily reset."""
        now = self.now()
        state = self._states.get(agent_id)
        if state is None:
            state = AgentMentalState(agent_id=agent_id, session_start_at=now, last_reset_at=now)
            self._states[agent_id] = state
            return state

        if self._needs_reset(state.last_reset_at, now):
            state.daily_risk_budget = 100.0
            state.used_risk_today = 0.0
            state.mental_fatigue = max(0.0, state.mental_fatigue - self._fatigue_recovery)
            state.last_reset_at = now
            logger.debug("Daily mental reset", agent=agent_id, fatigue=state.mental_fatigue)
        return state

    def _needs_reset(self, last_reset: datetime, now: datetime) -> bool:
        if self._reset_policy == "rolling_24h":
            return now - last_reset >= timedelta(hours=24)
        return now.astimezone(timezone.utc).date() != last_reset.astimezone(timezone.utc).date()

    def clear(self) -> None:
        self._states.clear()

    def reset(self, agent_id: str) -> None:
        self._states.pop(agent_id, None)

    def agent_ids(self) -> List[str]:
        return list(self._states.keys())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record_trade_result(
        self,
        agent_id: str,
        outcome: Any,
        pnl: float,
        risk_taken: float,
    ) -> AgentMentalState:
        """Fold one closed trade into the agent's streaks, confidence, budget and mood."""
        try:
            outcome = TradeOutcome(outcome)
        except ValueError:
            raise ValueError(f"outcome must be 'win' or 'loss', got {outcome!r}") from None

        state = self.get(agent_id)
        now = self.now()

        if outcome == TradeOutcome.WIN:
            state.win_streak += 1
            state.loss_streak = 0
            state.confidence = min(CONFIDENCE_MAX, state.confidence + max(2, 10 - state.win_streak))
        else:
            state.loss_streak += 1
            state.win_streak = 0
            state.confidence = max(CONFIDENCE_MIN, state.confidence - (5 + 2 * state.loss_streak))

        state.used_risk_today += max(0.0, risk_taken)
        state.daily_risk_budget = max(0.0, 100.0 - state.used_risk_today)

        state.trades_this_session += 1
        state.mental_fatigue = min(100.0, state.mental_fatigue + 5 + 2 * state.trades_this_session)

        if outcome == TradeOutcome.WIN and pnl > 0:
            state.emotional_bias = min(BIAS_LIMIT, state.emotional_bias + min(10.0, pnl * 2))
        elif outcome == TradeOutcome.LOSS:
            state.emotional_bias = max(-BIAS_LIMIT, state.emotional_bias - min(15.0, abs(pnl) * 3))

        # Mood fades with time since the previous trade
        if state.last_trade_at is not None:
            hours = (now - state.last_trade_at).total_seconds() / 3600
            state.emotional_bias *= max(0.5, 1 - hours * 0.1)

        state.last_trade_result = outcome.value
        state.last_trade_pnl = pnl
        state.last_trade_at = now

        logger.info(
            "Trade result recorded",
            agent=agent_id,
            outcome=outcome.value,
            pnl=pnl,
            confidence=round(state.confidence, 1),
            fatigue=round(state.mental_fatigue, 1),
            risk_budget=round(state.daily_risk_budget, 1),
        )
        return state

    def reward_correct_call(self, agent_id: str, boost: float = 5.0) -> AgentMentalState:
        """Small confidence bump for an agent that called a losing trade bearish."""
        state = self.get(agent_id)
        state.confidence = max(state.confidence, min(90.0, state.confidence + boost))
        return state

    def seed_from_stats(self, agent_id: str, stats: Any) -> AgentMentalState:
        """Initialise confidence and streaks from persisted win-rate / streak stats."""
        state = self.get(agent_id)
        state.confidence = _clamp(40 + stats.win_rate * 0.5, 30.0, 90.0)
        streak = int(stats.current_streak)
        state.win_streak = streak if streak > 0 else 0
        state.loss_streak = -streak if streak < 0 else 0
        return state

    # ------------------------------------------------------------------
    # Modifiers
    # ------------------------------------------------------------------

    def calculate_mental_modifiers(self, agent_id: str) -> MentalModifiers:
        state = self.get(agent_id)
        threshold = 0.0
        size = 1.0
        skip = False
        skip_reason: Optional[str] = None
        notes: List[str] = []

        if state.mental_fatigue > 80:
            skip = True
            skip_reason = "mental fatigue - need a break"
            notes.append("exhausted from trading")
        elif state.mental_fatigue > 60:
            threshold += 10
            size *= 0.7
            notes.append("getting tired")
        elif state.mental_fatigue > 40:
            threshold += 5
            notes.append("slightly fatigued")

        if state.daily_risk_budget < 10:
            skip = True
            skip_reason = "daily risk budget depleted"
            notes.append("hit my limit for today")
        elif state.daily_risk_budget < 30:
            threshold += 15
            size *= 0.5
            notes.append("low on risk budget")
        elif state.daily_risk_budget < 50:
            threshold += 8
            size *= 0.8

        if state.loss_streak >= 3:
            threshold += 20
            size *= 0.4
            notes.append(f"on a {state.loss_streak} loss streak - being careful")
        elif state.loss_streak >= 2:
            threshold += 10
            size *= 0.7
            notes.append("recent losses weighing on me")

        if state.win_streak >= 5:
            threshold -= 5
            size *= 1.2
            notes.append(f"{state.win_streak} wins in a row - feeling good but staying grounded")
        elif state.win_streak >= 3:
            threshold -= 3
            size *= 1.1
            notes.append("on a nice streak")

        if state.emotional_bias > 10:
            threshold -= 5
            notes.append("feeling optimistic")
        elif state.emotional_bias < -10:
            threshold += 8
            notes.append("feeling cautious after losses")

        if state.confidence < 30:
            threshold += 15
            size *= 0.5
            notes.append("confidence is low")
        elif state.confidence > 80:
            threshold -= 5
            size *= 1.15

        if state.last_trade_result == TradeOutcome.LOSS.value and state.last_trade_pnl < -2:
            if state.last_trade_at is not None:
                hours = (self.now() - state.last_trade_at).total_seconds() / 3600
            else:
                hours = 24.0
            if hours < 1:
                threshold += 15
                size *= 0.5
                notes.append("still recovering from that last loss")

        return MentalModifiers(
            threshold_modifier=threshold,
            position_size_modifier=_clamp(size, SIZE_MIN, SIZE_MAX),
            should_skip=skip,
            skip_reason=skip_reason,
            mental_note=notes[0] if notes else "",
        )

    def apply_personality(
        self,
        agent_id: str,
        modifiers: MentalModifiers,
        traits: PersonalityTraits,
    ) -> MentalModifiers:
        """Scale raw modifiers by the agent's temperament."""
        state = self.get(agent_id)
        threshold = modifiers.threshold_modifier * (1 - traits.risk_tolerance * 0.5)
        if state.emotional_bias != 0:
            threshold -= state.emotional_bias * (1 - traits.emotional_stability) * 0.5
        if state.mental_fatigue > 50:
            threshold += (state.mental_fatigue - 50) * (1 - traits.fatigue_resistance) * 0.2

        size = modifiers.position_size_modifier * (0.7 + traits.risk_tolerance * 0.6)
        return replace(
            modifiers,
            threshold_modifier=float(math.floor(threshold + 0.5)),  # halves round up
            position_size_modifier=_clamp(size, SIZE_MIN, SIZE_MAX),
        )

    def summary(self, agent_id: str) -> str:
        state = self.get(agent_id)
        parts = []
        if state.win_streak >= 3:
            parts.append(f"{state.win_streak}W streak")
        if state.loss_streak >= 2:
            parts.append(f"{state.loss_streak}L streak")
        if state.confidence < 40:
            parts.append("low confidence")
        if state.confidence > 80:
            parts.append("high confidence")
        if state.mental_fatigue > 60:
            parts.append("fatigued")
        if state.daily_risk_budget < 30:
            parts.append("low risk budget")
        return ", ".join(parts) if parts else "fresh"
