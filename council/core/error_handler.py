"""
Graceful Error Handler - "Skip the cycle, never die" classification.

Classifies errors as blocking vs. non-blocking so analysis and exit sweeps
keep running through everything that isn't truly fatal.

Rules:
- A failed fetch or a rate limit degrades to "insufficient data" for the cycle
- A failed sell leaves the position open for the next sweep
- Only configuration errors stop the process
"""

from __future__ import annotations

import asyncio
import enum
import traceback
from typing import Any, Optional

from council.core.exceptions import ConfigError, DataUnavailableError
from council.core.logger import get_logger

logger = get_logger("error_handler")


class ErrorSeverity(enum.Enum):
    """How badly an error affects the engine's ability to keep deciding."""

    CRITICAL = "critical"    # Stop: bad configuration, broken invariants
    DEGRADED = "degraded"    # Log + notify + continue
    TRANSIENT = "transient"  # Log + continue silently


# Components whose failure never blocks a decision cycle.
_NON_BLOCKING_COMPONENTS = frozenset({
    "notifier",
    "stats_store",
    "trade_result_hook",
})

# Components whose failure is fatal.
_CRITICAL_COMPONENTS = frozenset({
    "config",
})


class GracefulErrorHandler:
    """
    Centralized error classification and handling.

    Usage::

        handler = GracefulErrorHandler(notify_fn=alerts.send)
        severity = handler.classify_error(err, component="market_data")
        await handler.handle(err, component="sell_executor", context="pos-1")
    """

    def __init__(self, notify_fn: Optional[Any] = None):
        self._notify_fn = notify_fn

    def set_notify_fn(self, fn: Any) -> None:
        self._notify_fn = fn

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_error(
        self,
        error: BaseException,
        *,
        component: str = "",
    ) -> ErrorSeverity:
        """Classify an error by severity based on what component it came from."""
        comp = component.lower().strip()

        if comp in _CRITICAL_COMPONENTS or isinstance(error, ConfigError):
            return ErrorSeverity.CRITICAL

        if comp in _NON_BLOCKING_COMPONENTS:
            return ErrorSeverity.DEGRADED

        # Market data for a single token is transient: skip this cycle
        if comp in ("market_data", "price_source"):
            return ErrorSeverity.TRANSIENT

        if isinstance(error, DataUnavailableError):
            return ErrorSeverity.TRANSIENT

        if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)):
            return ErrorSeverity.TRANSIENT

        # A failed sell is retried next sweep but the operator should know
        if comp == "sell_executor":
            return ErrorSeverity.DEGRADED

        return ErrorSeverity.DEGRADED

    # ------------------------------------------------------------------
    # Handling
    # ------------------------------------------------------------------

    async def handle(
        self,
        error: BaseException,
        *,
        component: str = "",
        context: str = "",
    ) -> ErrorSeverity:
        """
        Classify, log, and optionally notify about an error.

        Returns the severity so callers can decide what to do.
        """
        severity = self.classify_error(error, component=component)
        tb = traceback.format_exception(type(error), error, error.__traceback__)
        tb_str = "".join(tb[-3:])

        msg = (
            f"[{severity.value.upper()}] {component or 'unknown'}"
            f"{(' / ' + context) if context else ''}: "
            f"{type(error).__name__}: {error}"
        )

        if severity == ErrorSeverity.CRITICAL:
            logger.critical(msg, traceback=tb_str)
        elif severity == ErrorSeverity.DEGRADED:
            logger.warning(msg, traceback=tb_str)
        else:
            logger.info(msg)

        if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.DEGRADED) and self._notify_fn:
            try:
                await self._notify_fn(msg)
            except Exception as e:
                logger.debug("Error notification failed", error=repr(e))

        return severity
