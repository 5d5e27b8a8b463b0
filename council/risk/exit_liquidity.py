"""
Exit Liquidity Analyzer - can we actually get out of this position?

Models the pool as a 50/50 constant-product AMM: selling ``amount`` against
a pool holding ``liquidity`` (quote terms) moves the price by
``amount / (liquidity / 2 + amount)``. From that single law it derives the
expected and panic-case slippage, the largest size that stays under each
slippage tier, how long a careful exit takes and an overall liquidity
score / risk tier with human-readable warnings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional

from council.core.config import ExitLiquidityConfig
from council.core.logger import get_logger
from council.core.models import TokenSnapshot

logger = get_logger("exit_liquidity")


def calculate_price_impact(amount: float, liquidity: float) -> float:
    """Fractional price impact of selling ``amount`` into the pool (0..1)."""
    if liquidity <= 0:
        return 1.0
    amount = max(0.0, amount)
    reserve = liquidity / 2
    return min(1.0, amount / (reserve + amount))


def max_trade_for_slippage(liquidity: float, target: float) -> float:
    """Largest trade whose price impact stays at ``target``."""
    if liquidity <= 0 or target <= 0:
        return 0.0
    if target >= 1:
        return math.inf
    reserve = liquidity / 2
    return max(0.0, target * reserve / (1 - target))


@dataclass
class ExitLiquidityProfile:
    can_exit: bool
    exit_difficulty: str            # easy | moderate | hard | impossible
    price_impact_pct: float
    worst_case_impact_pct: float
    max_safe_size: float
    recommended_size: float
    estimated_exit_minutes: float
    can_exit_in_10_minutes: bool
    liquidity_score: float          # 0 to 100
    risk_tier: str                  # low | medium | high | extreme
    warnings: List[str] = field(default_factory=list)
    verdict: str = ""


@dataclass(frozen=True)
class LiquidityGate:
    ok: bool
    reason: str
    max_safe: float


@dataclass(frozen=True)
class SizeSuggestion:
    suggested_size: float
    reason: str
    slippage_pct: float


class ExitLiquidityAnalyzer:
    """Slippage and exit-risk model over a token's pool snapshot."""

    def __init__(self, config: Optional[ExitLiquidityConfig] = None):
        self.config = config or ExitLiquidityConfig()

    # ------------------------------------------------------------------
    # Full analysis
    # ------------------------------------------------------------------

    def analyze(self, token: TokenSnapshot, proposed_size: float) -> ExitLiquidityProfile:
        cfg = self.config
        warnings: List[str] = []
        liquidity = token.liquidity
        lp_ratio = token.lp_ratio

        impact = calculate_price_impact(proposed_size, liquidity)
        impact_pct = impact * 100
        worst_case_pct = min(100.0, impact * cfg.panic_multiplier * 100)

        max_safe = max_trade_for_slippage(liquidity, cfg.safe_slippage)
        recommended = max_trade_for_slippage(liquidity, cfg.moderate_slippage)

        if impact < cfg.safe_slippage:
            difficulty = "easy"
        elif impact < cfg.moderate_slippage:
            difficulty = "moderate"
        elif impact < cfg.danger_slippage:
            difficulty = "hard"
            warnings.append(f"{impact_pct:.1f}% price impact on exit")
        else:
            difficulty = "impossible"
            warnings.append("Position too large relative to liquidity")

        can_exit = impact < cfg.max_exit_impact

        exit_rate = liquidity * cfg.exit_rate_per_minute
        if exit_rate > 0:
            exit_minutes = max(0.0, proposed_size) / exit_rate
        else:
            exit_minutes = math.inf
        can_exit_fast = exit_minutes <= 10

        score = self._liquidity_score(lp_ratio, liquidity, proposed_size)
        if score >= 70:
            tier = "low"
        elif score >= 50:
            tier = "medium"
        elif score >= 30:
            tier = "high"
        else:
            tier = "extreme"

        if lp_ratio < 0.05:
            warnings.append(f"LP ratio only {lp_ratio * 100:.1f}% - thin liquidity")
        if proposed_size > max_safe:
            warnings.append(f"Position {proposed_size:.1f} exceeds safe size {max_safe:.1f}")
        if not can_exit_fast:
            if math.isfinite(exit_minutes):
                warnings.append(f"Exit would take ~{exit_minutes:.0f} minutes to avoid major slippage")
            else:
                warnings.append("No liquidity to exit into")
        if token.holders < 100 and liquidity < 1000:
            warnings.append("Low holders + low LP = high rug risk")

        if tier == "extreme":
            verdict = (
                f"Hard pass. {lp_ratio * 100:.1f}% LP ratio means we'd move the price "
                f"{impact_pct:.0f}% just entering. Exit would be a bloodbath."
            )
        elif tier == "high":
            verdict = (
                f"Concerned. LP is thin - max safe position is {max_safe:.1f}. "
                f"Going bigger means accepting {impact_pct:.1f}% slippage on exit."
            )
        elif tier == "medium":
            verdict = (
                f"Acceptable risk if we size correctly. Recommend {recommended:.1f} max. "
                f"Current proposal has {impact_pct:.1f}% expected slippage."
            )
        else:
            verdict = (
                f"Liquidity looks healthy. {liquidity:.0f} in LP, we can exit "
                f"{proposed_size:.1f} with only {impact_pct:.2f}% impact."
            )

        profile = ExitLiquidityProfile(
            can_exit=can_exit,
            exit_difficulty=difficulty,
            price_impact_pct=impact_pct,
            worst_case_impact_pct=worst_case_pct,
            max_safe_size=round(max_safe, 2),
            recommended_size=round(recommended, 2),
            estimated_exit_minutes=round(exit_minutes, 1) if math.isfinite(exit_minutes) else exit_minutes,
            can_exit_in_10_minutes=can_exit_fast,
            liquidity_score=score,
            risk_tier=tier,
            warnings=warnings,
            verdict=verdict,
        )
        logger.debug(
            "Exit liquidity analyzed",
            token=token.symbol or token.address,
            impact_pct=round(impact_pct, 2),
            tier=tier,
            score=score,
        )
        return profile

    @staticmethod
    def _liquidity_score(lp_ratio: float, liquidity: float, size: float) -> float:
        score = 50.0

        # LP ratio contribution
        if lp_ratio >= 0.15:
            score += 30
        elif lp_ratio >= 0.10:
            score += 20
        elif lp_ratio >= 0.07:
            score += 10
        elif lp_ratio < 0.05:
            score -= 20

        # Absolute liquidity
        if liquidity >= 10000:
            score += 30
        elif liquidity >= 5000:
            score += 20
        elif liquidity >= 1000:
            score += 10
        elif liquidity < 500:
            score -= 20

        # Position relative to the pool
        position_ratio = size / liquidity if liquidity > 0 else math.inf
        if position_ratio < 0.01:
            score += 20
        elif position_ratio < 0.02:
            score += 10
        elif position_ratio > 0.10:
            score -= 30
        elif position_ratio > 0.05:
            score -= 15

        return max(0.0, min(100.0, score))

    # ------------------------------------------------------------------
    # Fast paths
    # ------------------------------------------------------------------

    def quick_check(self, token: TokenSnapshot, size: float) -> LiquidityGate:
        """Cheap go/no-go gate used before running the full analysis."""
        cfg = self.config
        impact = calculate_price_impact(size, token.liquidity)
        max_safe = max_trade_for_slippage(token.liquidity, cfg.moderate_slippage)

        if token.lp_ratio < cfg.min_lp_ratio:
            return LiquidityGate(False, f"LP ratio too low (<{cfg.min_lp_ratio * 100:.0f}%)", max_safe)
        if impact > cfg.risky_slippage:
            return LiquidityGate(False, f"Would cause {impact * 100:.1f}% slippage", max_safe)
        if token.liquidity < cfg.min_liquidity:
            return LiquidityGate(False, f"Liquidity below {cfg.min_liquidity:.0f}", max_safe)
        return LiquidityGate(True, "Liquidity acceptable", max_safe)

    def suggest_position_size(
        self,
        token: TokenSnapshot,
        desired: float,
        tolerance: str = "moderate",
    ) -> SizeSuggestion:
        """Shrink ``desired`` until it fits the slippage target for ``tolerance``."""
        cfg = self.config
        targets = {
            "conservative": cfg.safe_slippage,
            "moderate": cfg.moderate_slippage,
            "aggressive": cfg.risky_slippage,
        }
        if tolerance not in targets:
            raise ValueError(f"unknown risk tolerance: {tolerance!r}")
        target = targets[tolerance]
        max_size = max_trade_for_slippage(token.liquidity, target)

        if desired <= max_size:
            return SizeSuggestion(
                suggested_size=desired,
                reason="Desired size is within acceptable slippage",
                slippage_pct=calculate_price_impact(desired, token.liquidity) * 100,
            )
        return SizeSuggestion(
            suggested_size=round(max_size, 2),
            reason=f"Reduced from {desired} to stay under {target * 100:.0f}% slippage",
            slippage_pct=target * 100,
        )
