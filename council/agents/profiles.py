"""
Agent Profiles - data-driven personalities for the council.

Each agent is a weight vector over seven scoring factors, a pair of
bullish/bearish thresholds, a set of personality traits that scale the
mental-state modifiers, and a list of named override rules. New agents are
added as data (defaults below or the ``agents`` section of config.yaml)
without touching the decision logic.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from council.core.exceptions import UnknownAgentError

FACTOR_NAMES = (
    "holders",
    "ta",
    "lp",
    "momentum",
    "narrative",
    "exit_liquidity",
    "scam_risk",
)

# Override rules understood by the decision engine. "scam_guard" always runs.
KNOWN_OVERRIDES = frozenset({
    "exit_risk_guard",
    "narrative_gate",
    "contrarian_sentiment",
})


class FactorWeights(BaseModel):
    holders: float = 0.15
    ta: float = 0.20
    lp: float = 0.15
    momentum: float = 0.15
    narrative: float = 0.15
    exit_liquidity: float = 0.10
    scam_risk: float = 0.10

    @model_validator(mode="after")
    def validate_sum(self):
        values = [getattr(self, name) for name in FACTOR_NAMES]
        if any(v < 0 for v in values):
            raise ValueError("factor weights must be non-negative")
        total = sum(values)
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"factor weights must sum to 1.0 (got {total:.4f})")
        return self

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}


class PersonalityTraits(BaseModel):
    fatigue_resistance: float = Field(default=0.6, ge=0.0, le=1.0)
    risk_tolerance: float = Field(default=0.5, ge=0.0, le=1.0)
    emotional_stability: float = Field(default=0.9, ge=0.0, le=1.0)
    fomo_prone: float = Field(default=0.2, ge=0.0, le=1.0)


class AgentProfile(BaseModel):
    agent_id: str
    name: str = ""
    weights: FactorWeights = Field(default_factory=FactorWeights)
    bullish_threshold: float = 55.0
    bearish_threshold: float = 40.0
    traits: PersonalityTraits = Field(default_factory=PersonalityTraits)
    overrides: List[str] = Field(default_factory=list)

    @field_validator("overrides")
    @classmethod
    def validate_overrides(cls, v):
        unknown = [name for name in v if name not in KNOWN_OVERRIDES]
        if unknown:
            raise ValueError(f"unknown override rules: {', '.join(unknown)}")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self):
        if self.bearish_threshold > self.bullish_threshold:
            raise ValueError("bearish_threshold must not exceed bullish_threshold")
        return self


def _profile(agent_id: str, name: str, weights: Dict[str, float], bullish: float,
             bearish: float, traits: Dict[str, float], overrides: Iterable[str] = ()) -> AgentProfile:
    return AgentProfile(
        agent_id=agent_id,
        name=name,
        weights=FactorWeights(**weights),
        bullish_threshold=bullish,
        bearish_threshold=bearish,
        traits=PersonalityTraits(**traits),
        overrides=list(overrides),
    )


DEFAULT_PROFILES: Dict[str, AgentProfile] = {
    # Narrative-driven degen: easy to convince, passes on dead stories
    "chad": _profile(
        "chad", "Chad",
        dict(holders=0.15, ta=0.10, lp=0.05, momentum=0.25, narrative=0.30,
             exit_liquidity=0.05, scam_risk=0.10),
        45, 25,
        dict(fatigue_resistance=0.8, risk_tolerance=0.9, emotional_stability=0.3, fomo_prone=0.9),
        overrides=["narrative_gate"],
    ),
    # Quant: TA first, needs solid data
    "quantum": _profile(
        "quantum", "Quantum",
        dict(holders=0.15, ta=0.35, lp=0.15, momentum=0.15, narrative=0.05,
             exit_liquidity=0.10, scam_risk=0.05),
        55, 40,
        dict(fatigue_resistance=0.6, risk_tolerance=0.5, emotional_stability=0.9, fomo_prone=0.2),
    ),
    # Community-first
    "sensei": _profile(
        "sensei", "Sensei",
        dict(holders=0.35, ta=0.10, lp=0.10, momentum=0.15, narrative=0.20,
             exit_liquidity=0.05, scam_risk=0.05),
        50, 30,
        dict(fatigue_resistance=0.7, risk_tolerance=0.6, emotional_stability=0.8, fomo_prone=0.3),
    ),
    # Risk manager: exit liquidity above all
    "sterling": _profile(
        "sterling", "Sterling",
        dict(holders=0.10, ta=0.15, lp=0.25, momentum=0.05, narrative=0.05,
             exit_liquidity=0.30, scam_risk=0.10),
        65, 50,
        dict(fatigue_resistance=0.5, risk_tolerance=0.3, emotional_stability=0.7, fomo_prone=0.1),
        overrides=["exit_risk_guard"],
    ),
    # Contrarian sentiment reader
    "oracle": _profile(
        "oracle", "Oracle",
        dict(holders=0.15, ta=0.20, lp=0.10, momentum=0.15, narrative=0.25,
             exit_liquidity=0.05, scam_risk=0.10),
        50, 35,
        dict(fatigue_resistance=0.6, risk_tolerance=0.5, emotional_stability=0.6, fomo_prone=0.4),
        overrides=["contrarian_sentiment"],
    ),
}


class ProfileRegistry:
    """Lookup table of agent profiles, defaults merged with configured ones."""

    def __init__(self, profiles: Optional[Mapping[str, AgentProfile]] = None):
        self._profiles: Dict[str, AgentProfile] = dict(DEFAULT_PROFILES)
        if profiles:
            for agent_id, profile in profiles.items():
                if profile.agent_id != agent_id:
                    profile = profile.model_copy(update={"agent_id": agent_id})
                self._profiles[agent_id] = profile

    def get(self, agent_id: str) -> AgentProfile:
        try:
            return self._profiles[agent_id]
        except KeyError:
            raise UnknownAgentError(agent_id) from None

    def register(self, profile: AgentProfile) -> None:
        self._profiles[profile.agent_id] = profile

    def agent_ids(self) -> List[str]:
        return list(self._profiles.keys())

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)
