#!/usr/bin/env python3
"""
Run the feedback loop once and print a summary.

Usage:
    python scripts/run_feedback_cycle.py                 # accuracy, tuning, patterns, context
    python scripts/run_feedback_cycle.py --show-prompt   # also print the prompt sections
    python scripts/run_feedback_cycle.py --metrics       # also print Prometheus metrics
    python scripts/run_feedback_cycle.py --reset --confirm

Requires DATABASE_URL (defaults to the local SQLite file).
"""

import argparse
import asyncio
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feedback_loop.config import get_settings
from feedback_loop.database import close_db, get_session_with_retry, init_db
from feedback_loop.learning.feedback_cycle import run_feedback_cycle
from feedback_loop.learning.repository import HistoryRepository, StoreAccessError
from feedback_loop.telemetry import get_metrics_text

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def summarize(result: dict) -> dict:
    metrics = result["accuracy"]
    config = result["config"]
    budget = result["budget"]
    stats = result["stats"]
    return {
        "steps": result["steps"],
        "accuracy": {
            "overall_claim_accuracy": metrics.overall_claim_accuracy,
            "claims_evaluated": metrics.total_claims_evaluated,
            "calibration_score": metrics.calibration_score,
            "estimates_evaluated": metrics.total_estimates_evaluated,
            "trend": metrics.improvement_trend,
        },
        "config": None if config is None else {
            "boldness_level": config.boldness_level,
            "surprise_thresholds": [config.surprise_threshold_low, config.surprise_threshold_high],
            "confidence_adjustment": config.confidence_adjustment,
            "claim_count_target": config.claim_count_target,
        },
        "patterns": len(result["patterns"]),
        "context": {
            "total_cycles": stats.total_cycles,
            "compressed_tokens": stats.compressed_tokens,
            "compression_ratio": stats.compression_ratio,
            "projected_tokens": stats.projected_tokens,
            "budget_total": budget.total,
            "budget_warning": budget.warning,
        },
        "duration_ms": round(result["duration_ms"], 1),
    }


async def main(args) -> int:
    try:
        await init_db()
        async with get_session_with_retry() as session:
            if args.reset:
                if not args.confirm:
                    logger.error("Refusing to reset history without --confirm")
                    return 2
                deleted = await HistoryRepository(session).reset_history()
                print(json.dumps(deleted, indent=2))
                return 0

            result = await run_feedback_cycle(session)
    except StoreAccessError as e:
        logger.error(f"Feedback cycle failed: {e}")
        return 1
    finally:
        await close_db()

    print(json.dumps(summarize(result), indent=2))

    if args.show_prompt:
        for key in ("accuracy_text", "adaptive_config_text", "patterns_text"):
            if result[key]:
                print(result[key])
        print(result["history"].text)

    if args.metrics:
        print(get_metrics_text().decode())

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the feedback-and-calibration loop once")
    parser.add_argument("--show-prompt", action="store_true", help="Print the rendered prompt sections")
    parser.add_argument("--reset", action="store_true", help="Delete all cycles (patterns and config are kept)")
    parser.add_argument("--confirm", action="store_true", help="Required together with --reset")
    parser.add_argument("--metrics", action="store_true", help="Print Prometheus metrics after the run")
    sys.exit(asyncio.run(main(parser.parse_args())))
