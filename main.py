#!/usr/bin/env python3
"""
Council - command line entry point.

Evaluates a token snapshot file with the full agent council, or with a
single agent, and prints the result as JSON.

Snapshot format::

    {
      "token": {"address": "0x..", "symbol": "PEPE", "price": 0.01,
                "mcap": 50000, "liquidity": 6000, "holders": 2400},
      "candles": [{"time": 0, "open": 1, "high": 1.1, "low": 0.9,
                   "close": 1.05, "volume": 120}, ...],
      "swaps": [{"timestamp": 0, "side": "buy", "base_amount": 3.2}, ...],
      "narrative": {"narrative_score": 70, "narrative_type": "fresh", ...},
      "proposed_size": 5
    }
"""

from __future__ import annotations

import argparse
import json
import random
import sys
from pathlib import Path
from typing import Any, Dict


def _load_snapshot(path: str) -> Dict[str, Any]:
    with open(Path(path), "r") as f:
        return json.load(f)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Per-agent trade decisions for a token snapshot.")
    parser.add_argument("--config", default="config/config.yaml", help="YAML config path")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    evaluate = sub.add_parser("evaluate", help="Run the council (or one agent) on a snapshot file")
    evaluate.add_argument("snapshot", help="JSON snapshot file")
    evaluate.add_argument("--agent", default=None, help="Only this agent decides")
    evaluate.add_argument("--seed", type=int, default=None, help="Seed for the decision RNG")
    evaluate.add_argument("--size", type=float, default=None, help="Proposed position size")

    sub.add_parser("show-config", help="Print the effective configuration")
    return parser


def main() -> None:
    """Main entry point."""
    args = _build_parser().parse_args()

    from pydantic import ValidationError

    from council import __version__
    from council.core.config import load_config_with_overrides
    from council.core.logger import get_logger, setup_logging

    try:
        config = load_config_with_overrides(args.config)
    except ValidationError as e:
        print(f"[FATAL] Invalid configuration in {args.config}:\n{e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(
        log_level=args.log_level or config.app.log_level,
        log_dir=config.app.log_dir,
        json_output=config.app.json_logs,
    )
    logger = get_logger("main")

    if args.command == "show-config":
        print(json.dumps(config.model_dump(), indent=2, default=str))
        return

    from council.agents.decision import AgentDecision
    from council.core.engine import CouncilEngine
    from council.core.exceptions import UnknownAgentError
    from council.core.models import Candle, NarrativeSignal, SwapTrade, TokenSnapshot

    logger.info("Starting council evaluation", version=__version__, snapshot=args.snapshot)

    try:
        raw = _load_snapshot(args.snapshot)
        token = TokenSnapshot(**raw["token"])
        candles = [Candle.from_dict(c) for c in raw.get("candles", [])]
        swaps = [SwapTrade.from_dict(s) for s in raw.get("swaps", [])]
        narrative = NarrativeSignal.from_dict(raw["narrative"]) if raw.get("narrative") else None
        proposed = args.size if args.size is not None else float(raw.get("proposed_size", 1.0))
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error("Could not read snapshot", path=args.snapshot, error=repr(e))
        sys.exit(1)

    rng = random.Random(args.seed) if args.seed is not None else None
    engine = CouncilEngine(config=config, rng=rng)

    if args.agent:
        try:
            decision: AgentDecision = engine.evaluate(
                args.agent, token, candles, swaps, narrative, proposed,
            )
        except UnknownAgentError as e:
            logger.error("Unknown agent", agent=e.agent_id, known=engine.profiles.agent_ids())
            sys.exit(1)
        print(json.dumps(decision.to_dict(), indent=2, default=str))
        return

    verdict = engine.evaluate_council(token, candles, swaps, narrative, proposed)
    print(json.dumps(verdict.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    main()
