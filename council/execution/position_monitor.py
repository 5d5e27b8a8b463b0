"""
Position Monitor - take-profit / stop-loss / max-hold exit state machine.

Every position starts OPEN and moves to exactly one terminal state:

    OPEN -> CLOSED_TP    pnl% >= take_profit_pct
    OPEN -> CLOSED_SL    pnl% <= stop_loss_pct
    OPEN -> CLOSED_TIME  held for >= max_hold_hours

Checks run in that order. A position only leaves OPEN once the external
sell executor confirms the sale; a failed sell is retried on the next
sweep. Closed positions feed per-agent stats and, through
``on_trade_result``, the mental state tracker.

Also holds the entry gate (daily trade / open position / invested caps)
and the per-agent stats store.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from council.core.config import MonitorConfig
from council.core.error_handler import GracefulErrorHandler
from council.core.exceptions import SellExecutionError
from council.core.logger import get_logger
from council.core.models import TradeOutcome

logger = get_logger("position_monitor")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED_TP = "closed_tp"
    CLOSED_SL = "closed_sl"
    CLOSED_TIME = "closed_time"


@dataclass
class OpenPosition:
    position_id: str
    token: str
    agent_id: str
    amount: float
    entry_value: float
    opened_at: datetime
    status: PositionStatus = PositionStatus.OPEN
    exit_value: Optional[float] = None
    exit_tx: Optional[str] = None
    pnl: Optional[float] = None
    pnl_pct: Optional[float] = None
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "token": self.token,
            "agent_id": self.agent_id,
            "amount": self.amount,
            "entry_value": self.entry_value,
            "opened_at": self.opened_at.isoformat(),
            "status": self.status.value,
            "exit_value": self.exit_value,
            "exit_tx": self.exit_tx,
            "pnl": self.pnl,
            "pnl_pct": self.pnl_pct,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_reason": self.close_reason,
        }


@dataclass(frozen=True)
class ExitEvaluation:
    position_id: str
    status: PositionStatus
    pnl_pct: Optional[float]
    hold_hours: float
    reason: str = ""

    @property
    def should_close(self) -> bool:
        return self.status != PositionStatus.OPEN


@dataclass(frozen=True)
class CloseRequest:
    position_id: str
    token: str
    agent_id: str
    amount: float
    exit_value: float
    pnl_pct: float
    reason: str


@dataclass(frozen=True)
class SellReceipt:
    success: bool
    tx_id: str = ""
    exit_value: Optional[float] = None
    error: str = ""


@dataclass(frozen=True)
class TradeResult:
    agent_id: str
    outcome: TradeOutcome
    pnl: float
    risk_taken: float
    position_id: str = ""


class PriceSource(Protocol):
    def current_value(self, position: OpenPosition) -> Any:
        """Current market value of the position (float or awaitable float)."""


class SellExecutor(Protocol):
    def sell(self, request: CloseRequest) -> Any:
        """Execute the sale (SellReceipt or awaitable SellReceipt)."""


# ---------------------------------------------------------------------------
# Position book
# ---------------------------------------------------------------------------

class PositionBook:
    """In-memory set of positions shared by the entry gate and the monitor."""

    def __init__(self):
        self._positions: Dict[str, OpenPosition] = {}

    def add(self, position: OpenPosition) -> None:
        if position.position_id in self._positions:
            raise ValueError(f"duplicate position id: {position.position_id}")
        self._positions[position.position_id] = position

    def get(self, position_id: str) -> Optional[OpenPosition]:
        return self._positions.get(position_id)

    def all(self) -> List[OpenPosition]:
        return list(self._positions.values())

    def open_positions(self, agent_id: Optional[str] = None) -> List[OpenPosition]:
        return [
            p for p in self._positions.values()
            if p.is_open and (agent_id is None or p.agent_id == agent_id)
        ]

    def total_invested(self, agent_id: Optional[str] = None) -> float:
        return sum(p.entry_value for p in self.open_positions(agent_id))

    def __len__(self) -> int:
        return len(self._positions)


# ---------------------------------------------------------------------------
# Agent stats
# ---------------------------------------------------------------------------

@dataclass
class AgentStats:
    agent_id: str
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    current_streak: int = 0   # > 0 wins in a row, < 0 losses in a row
    best_streak: int = 0


@dataclass
class DailyStats:
    date: str
    trades: int = 0
    wins: int = 0
    pnl: float = 0.0
    volume: float = 0.0


class AgentStatsStore:
    """All-time and per-UTC-day trade statistics per agent."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utc_now
        self._stats: Dict[str, AgentStats] = {}
        self._daily: Dict[str, Dict[str, DailyStats]] = {}

    def get(self, agent_id: str) -> AgentStats:
        if agent_id not in self._stats:
            self._stats[agent_id] = AgentStats(agent_id=agent_id)
        return self._stats[agent_id]

    def daily(self, agent_id: str, date: Optional[str] = None) -> DailyStats:
        date = date or self._today()
        per_agent = self._daily.setdefault(agent_id, {})
        if date not in per_agent:
            per_agent[date] = DailyStats(date=date)
        return per_agent[date]

    def _today(self, now: Optional[datetime] = None) -> str:
        return (now or self._clock()).astimezone(timezone.utc).date().isoformat()

    def record(
        self,
        agent_id: str,
        is_win: bool,
        pnl: float,
        volume: float = 0.0,
        now: Optional[datetime] = None,
    ) -> AgentStats:
        stats = self.get(agent_id)
        stats.total_trades += 1
        if is_win:
            stats.wins += 1
            stats.current_streak = stats.current_streak + 1 if stats.current_streak >= 0 else 1
        else:
            stats.losses += 1
            stats.current_streak = stats.current_streak - 1 if stats.current_streak <= 0 else -1
        stats.best_streak = max(stats.best_streak, stats.current_streak)
        stats.win_rate = stats.wins / stats.total_trades * 100
        stats.total_pnl += pnl

        day = self.daily(agent_id, self._today(now))
        day.trades += 1
        day.wins += 1 if is_win else 0
        day.pnl += pnl
        day.volume += volume

        logger.info(
            "Stats updated",
            agent=agent_id,
            result="WIN" if is_win else "LOSS",
            pnl=round(pnl, 4),
            streak=stats.current_streak,
        )
        return stats

    def record_open(self, agent_id: str, volume: float, now: Optional[datetime] = None) -> None:
        """Track entry volume without counting a completed trade."""
        self.daily(agent_id, self._today(now)).volume += volume


# ---------------------------------------------------------------------------
# Entry gate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntryCheck:
    allowed: bool
    reason: str = ""


class EntryGate:
    """Per-agent caps on daily entries, open positions and invested value."""

    def __init__(
        self,
        config: MonitorConfig,
        book: PositionBook,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.book = book
        self._clock = clock or _utc_now
        # (agent_id, utc date) -> entries opened that day
        self._daily_entries: Dict[tuple, int] = {}

    def _day_key(self, agent_id: str, now: datetime) -> tuple:
        return agent_id, now.astimezone(timezone.utc).date().isoformat()

    def daily_trades(self, agent_id: str, now: Optional[datetime] = None) -> int:
        return self._daily_entries.get(self._day_key(agent_id, now or self._clock()), 0)

    def can_open(self, agent_id: str, amount: float, now: Optional[datetime] = None) -> EntryCheck:
        now = now or self._clock()
        cfg = self.config

        trades_today = self.daily_trades(agent_id, now)
        if trades_today >= cfg.max_daily_trades:
            return EntryCheck(False, f"Daily trade limit reached ({trades_today}/{cfg.max_daily_trades})")

        open_count = len(self.book.open_positions(agent_id))
        if open_count >= cfg.max_open_positions:
            return EntryCheck(False, f"Max open positions reached ({open_count}/{cfg.max_open_positions})")

        invested = self.book.total_invested(agent_id)
        if invested + amount > cfg.max_total_invested:
            return EntryCheck(
                False,
                f"Would exceed max invested ({invested + amount:.2f} > {cfg.max_total_invested:.2f})",
            )
        return EntryCheck(True, "ok")

    def record_entry(
        self,
        agent_id: str,
        token: str,
        amount: float,
        entry_value: float,
        now: Optional[datetime] = None,
        position_id: Optional[str] = None,
    ) -> OpenPosition:
        """Register a freshly bought position and count it against today's cap."""
        now = now or self._clock()
        position = OpenPosition(
            position_id=position_id or uuid.uuid4().hex,
            token=token,
            agent_id=agent_id,
            amount=amount,
            entry_value=entry_value,
            opened_at=now,
        )
        self.book.add(position)
        key = self._day_key(agent_id, now)
        self._daily_entries[key] = self._daily_entries.get(key, 0) + 1
        logger.info(
            "Position opened",
            position_id=position.position_id,
            agent=agent_id,
            token=token,
            entry_value=entry_value,
        )
        return position


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class PositionMonitor:
    """
    Periodic exit sweeper.

    ``sweep()`` walks the OPEN positions one at a time. Overlapping sweeps
    are refused rather than queued. ``run()`` repeats the sweep every
    ``interval_seconds`` until ``stop()`` is called; the sweep in flight
    always completes.
    """

    def __init__(
        self,
        config: MonitorConfig,
        price_source: PriceSource,
        sell_executor: SellExecutor,
        stats_store: AgentStatsStore,
        on_trade_result: Optional[Callable[[TradeResult], Any]] = None,
        error_handler: Optional[GracefulErrorHandler] = None,
        book: Optional[PositionBook] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.price_source = price_source
        self.sell_executor = sell_executor
        self.stats_store = stats_store
        self.on_trade_result = on_trade_result
        self.error_handler = error_handler or GracefulErrorHandler()
        self.book = book if book is not None else PositionBook()
        self._clock = clock or _utc_now
        self._running = False
        self._stop_requested = False
        self._sweep_in_progress = False
        self._wake: Optional[asyncio.Event] = None
        self.sweep_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Pure evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        position: OpenPosition,
        current_value: float,
        now: Optional[datetime] = None,
    ) -> ExitEvaluation:
        now = now or self._clock()
        hold_hours = max(0.0, (now - position.opened_at).total_seconds() / 3600)

        if position.entry_value <= 0:
            return ExitEvaluation(position.position_id, PositionStatus.OPEN, None, hold_hours,
                                  "unknown entry value")

        pnl_pct = (current_value - position.entry_value) / position.entry_value * 100
        cfg = self.config
        if pnl_pct >= cfg.take_profit_pct:
            return ExitEvaluation(position.position_id, PositionStatus.CLOSED_TP, pnl_pct, hold_hours,
                                  f"TP hit +{pnl_pct:.1f}%")
        if pnl_pct <= cfg.stop_loss_pct:
            return ExitEvaluation(position.position_id, PositionStatus.CLOSED_SL, pnl_pct, hold_hours,
                                  f"SL hit {pnl_pct:.1f}%")
        if hold_hours >= cfg.max_hold_hours:
            return ExitEvaluation(position.position_id, PositionStatus.CLOSED_TIME, pnl_pct, hold_hours,
                                  f"Max age {hold_hours:.1f}h")
        return ExitEvaluation(position.position_id, PositionStatus.OPEN, pnl_pct, hold_hours)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> List[OpenPosition]:
        """Check every OPEN position once; returns the positions closed."""
        if self._sweep_in_progress:
            logger.debug("Sweep already in progress, skipping")
            return []

        self._sweep_in_progress = True
        closed: List[OpenPosition] = []
        try:
            positions = self.book.open_positions()
            for i, position in enumerate(positions):
                if i > 0 and self.config.inter_item_delay_seconds > 0:
                    await asyncio.sleep(self.config.inter_item_delay_seconds)
                if await self._check_position(position):
                    closed.append(position)
            self.sweep_count += 1
        finally:
            self._sweep_in_progress = False
        if closed:
            logger.info("Sweep closed positions", closed=len(closed), checked=len(positions))
        return closed

    async def _check_position(self, position: OpenPosition) -> bool:
        try:
            current_value = float(await _maybe_await(self.price_source.current_value(position)))
        except Exception as e:
            await self.error_handler.handle(e, component="price_source", context=position.position_id)
            return False

        try:
            evaluation = self.evaluate(position, current_value)
        except Exception as e:
            await self.error_handler.handle(e, component="position_monitor", context=position.position_id)
            return False
        if not evaluation.should_close:
            return False
        return await self._close(position, evaluation, current_value)

    async def _close(self, position: OpenPosition, evaluation: ExitEvaluation, current_value: float) -> bool:
        request = CloseRequest(
            position_id=position.position_id,
            token=position.token,
            agent_id=position.agent_id,
            amount=position.amount,
            exit_value=current_value,
            pnl_pct=evaluation.pnl_pct or 0.0,
            reason=evaluation.reason,
        )
        logger.info(
            "Closing position",
            position_id=position.position_id,
            agent=position.agent_id,
            token=position.token,
            reason=evaluation.reason,
        )

        try:
            receipt = await _maybe_await(self.sell_executor.sell(request))
            if receipt is None or not receipt.success:
                detail = receipt.error if receipt is not None else "no receipt"
                raise SellExecutionError(f"sell failed for {position.position_id}: {detail or 'rejected'}")
        except Exception as e:
            await self.error_handler.handle(e, component="sell_executor", context=position.position_id)
            return False

        exit_value = receipt.exit_value if receipt.exit_value is not None else current_value
        pnl = exit_value - position.entry_value
        position.status = evaluation.status
        position.exit_value = exit_value
        position.exit_tx = receipt.tx_id or None
        position.pnl = pnl
        position.pnl_pct = pnl / position.entry_value * 100
        position.closed_at = self._clock()
        position.close_reason = evaluation.reason

        logger.info(
            "Position closed",
            position_id=position.position_id,
            status=position.status.value,
            pnl=round(pnl, 4),
            pnl_pct=round(position.pnl_pct, 2),
            tx=position.exit_tx,
        )

        is_win = pnl > 0
        try:
            self.stats_store.record(position.agent_id, is_win, pnl, position.entry_value)
        except Exception as e:
            await self.error_handler.handle(e, component="stats_store", context=position.position_id)

        if self.on_trade_result is not None:
            result = TradeResult(
                agent_id=position.agent_id,
                outcome=TradeOutcome.WIN if is_win else TradeOutcome.LOSS,
                pnl=pnl,
                risk_taken=min(100.0, position.entry_value / self.config.risk_unit * 100),
                position_id=position.position_id,
            )
            try:
                await _maybe_await(self.on_trade_result(result))
            except Exception as e:
                await self.error_handler.handle(e, component="trade_result_hook", context=position.position_id)
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Sweep every ``interval_seconds`` until stopped."""
        if self._stop_requested:
            self._stop_requested = False
            logger.info("Position monitor stopped before start")
            return
        self._running = True
        self._wake = asyncio.Event()
        logger.info("Position monitor started", interval=self.config.interval_seconds)
        while self._running and not self._stop_requested:
            try:
                await self.sweep()
            except Exception as e:
                await self.error_handler.handle(e, component="position_monitor", context="sweep")
            if not self._running or self._stop_requested:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.config.interval_seconds)
            except asyncio.TimeoutError:
                pass
        self._running = False
        self._stop_requested = False
        logger.info("Position monitor stopped", sweeps=self.sweep_count)

    def stop(self) -> None:
        """Stop the loop, including one that has not started yet."""
        self._stop_requested = True
        self._running = False
        if self._wake is not None:
            self._wake.set()
