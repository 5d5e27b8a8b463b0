"""
Structured Logging System - structlog over stdlib logging.

Console or JSON rendering, rotating files under ``log_dir``, and a timer
for analysis cycles. Long on-chain identifiers (token addresses, tx hashes)
are shortened in every rendered event so sweep logs stay readable.
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

# Event keys carrying addresses or transaction hashes
_ID_KEYS = ("token", "address", "tx", "exit_tx", "tx_id")
_ID_KEEP = 6


def _shorten_ids(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Render ``0x1234abcd...`` style identifiers as ``0x1234..abcd``."""
    for key in _ID_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > 2 * _ID_KEEP + 2:
            event_dict[key] = f"{value[:_ID_KEEP]}..{value[-4:]}"
    return event_dict


class PerformanceTimer:
    """Times a block; logs at debug, or at warning past ``warn_ms``."""

    def __init__(self, logger: Any, operation: str, warn_ms: float = 250.0, **kwargs):
        self.logger = logger
        self.operation = operation
        self.warn_ms = warn_ms
        self.fields = kwargs
        self.started: float = 0.0
        self.elapsed_ms: float = 0.0

    def __enter__(self):
        self.started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.started) * 1000
        duration = round(self.elapsed_ms, 2)
        if exc_type is not None:
            self.logger.error(f"{self.operation} failed", duration_ms=duration,
                              error=repr(exc_val), **self.fields)
        elif self.elapsed_ms > self.warn_ms:
            self.logger.warning(f"{self.operation} slow", duration_ms=duration, **self.fields)
        else:
            self.logger.debug(f"{self.operation} done", duration_ms=duration, **self.fields)
        return False


def _file_handlers(log_dir: str, level: int) -> List[logging.Handler]:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    everything = RotatingFileHandler(path / "council.log", maxBytes=10 * 1024 * 1024,
                                     backupCount=5, encoding="utf-8")
    everything.setLevel(level)

    # Failed sells and critical config errors land here too
    problems = RotatingFileHandler(path / "errors.log", maxBytes=2 * 1024 * 1024,
                                   backupCount=3, encoding="utf-8")
    problems.setLevel(logging.WARNING)
    return [everything, problems]


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = "logs",
    json_output: bool = False,
) -> None:
    """Route structlog through the root logger with one formatter per run."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    handlers: List[logging.Handler] = [console]
    if log_dir:
        handlers.extend(_file_handlers(log_dir, level))

    root = logging.getLogger()
    root.setLevel(level)
    for old in root.handlers[:]:
        old.close()
        root.removeHandler(old)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _shorten_ids,
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "council") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_performance(logger: Any, operation: str, **kwargs) -> PerformanceTimer:
    """Timer context for one named operation."""
    return PerformanceTimer(logger, operation, **kwargs)
