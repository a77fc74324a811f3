"""
Per-cycle feedback job.

Runs the learning pipeline once, ahead of the next research cycle:
1. accuracy:  metrics over the accuracy window
2. tuning:    new active configuration (only once enough outcomes exist)
3. patterns:  bias detection over the pattern window, upserted
4. context:   compressed history digest and budget check

Store failures propagate as StoreAccessError; "not enough data yet" is a
normal result, reported with status "insufficient_data".
"""

import logging
import time
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from feedback_loop.config import Settings, get_settings
from feedback_loop.learning.accuracy import compute_accuracy, format_accuracy_for_prompt
from feedback_loop.learning.adaptive import (
    MIN_EVALUATED,
    derive_adaptive_config,
    format_adaptive_config_for_prompt,
)
from feedback_loop.learning.context import check_budget, compress_history, context_stats
from feedback_loop.learning.history import HistoryWindow
from feedback_loop.learning.patterns import detect_patterns, format_patterns_for_prompt
from feedback_loop.learning.repository import MAX_WINDOW, HistoryRepository, StoreAccessError

logger = logging.getLogger(__name__)


def _emit(settings: Settings, func, *args) -> None:
    """Best-effort telemetry; never interrupts the job."""
    if not settings.FEEDBACK_TELEMETRY_ENABLED:
        return
    try:
        func(*args)
    except Exception as e:
        logger.debug(f"[FEEDBACK] Failed to emit telemetry: {e}")


async def run_feedback_cycle(
    session: AsyncSession,
    settings: Optional[Settings] = None,
    extra_components: Optional[Mapping[str, str]] = None,
) -> dict:
    """
    Run accuracy, tuning, pattern and context steps for the next cycle.

    Args:
        session: Database session
        settings: Overrides for window sizes and budgets (default: get_settings())
        extra_components: Additional named context texts for the budget check
            (e.g. system_prompt, domain_data)

    Returns:
        Dict with the step outputs, prompt texts and per-step statuses

    Raises:
        StoreAccessError: a store read or write failed
    """
    from feedback_loop.telemetry import record_active_config, record_context_budget, record_patterns, record_step

    settings = settings or get_settings()
    if not 1 <= settings.ACCURACY_WINDOW_CYCLES <= MAX_WINDOW:
        raise ValueError(f"ACCURACY_WINDOW_CYCLES must be between 1 and {MAX_WINDOW}")
    repo = HistoryRepository(session)
    start_time = time.time()

    result = {
        "steps": {},
        "started_at": datetime.utcnow().isoformat(),
    }

    fetch_size = min(
        MAX_WINDOW,
        max(settings.ACCURACY_WINDOW_CYCLES, settings.PATTERN_WINDOW_CYCLES, settings.HISTORY_MAX_CYCLES),
    )

    def finish_step(step: str, status: str, step_start: float) -> None:
        duration_ms = (time.time() - step_start) * 1000
        result["steps"][step] = status
        _emit(settings, record_step, step, status, duration_ms)

    # 1. Accuracy
    step_start = time.time()
    try:
        window = await repo.fetch_window(fetch_size)
    except StoreAccessError:
        finish_step("accuracy", "error", step_start)
        raise

    accuracy_window = HistoryWindow(window.cycles[:settings.ACCURACY_WINDOW_CYCLES])
    metrics = compute_accuracy(accuracy_window)
    result["accuracy"] = metrics
    result["accuracy_text"] = format_accuracy_for_prompt(metrics)
    finish_step(
        "accuracy",
        "ok" if metrics.total_claims_evaluated or metrics.total_estimates_evaluated else "insufficient_data",
        step_start,
    )

    # 2. Tuning
    step_start = time.time()
    try:
        if metrics.total_claims_evaluated >= MIN_EVALUATED or metrics.total_estimates_evaluated >= MIN_EVALUATED:
            config = derive_adaptive_config(metrics)
            await repo.save_active_config(config)
            tuning_status = "ok"
            logger.info(
                f"[FEEDBACK] Adaptive config: boldness={config.boldness_level}, "
                f"surprise=[{config.surprise_threshold_low},{config.surprise_threshold_high}]"
            )
        else:
            # Keep whatever is active; nothing is written from sparse data
            config = await repo.get_active_config()
            tuning_status = "insufficient_data"
            logger.info("[FEEDBACK] Not enough evaluated outcomes, keeping existing adaptive config")
    except StoreAccessError:
        finish_step("tuning", "error", step_start)
        raise

    result["config"] = config
    result["adaptive_config_text"] = format_adaptive_config_for_prompt(config) if config else ""
    if config is not None:
        _emit(settings, record_active_config, config.boldness_level)
    finish_step("tuning", tuning_status, step_start)

    # 3. Patterns
    step_start = time.time()
    pattern_window = HistoryWindow(window.cycles[:settings.PATTERN_WINDOW_CYCLES])
    findings = detect_patterns(pattern_window, evidence_limit=settings.PATTERN_EVIDENCE_LIMIT)
    try:
        if findings:
            await repo.upsert_patterns(findings, evidence_limit=settings.PATTERN_EVIDENCE_LIMIT)
    except StoreAccessError:
        finish_step("patterns", "error", step_start)
        raise

    result["patterns"] = findings
    result["patterns_text"] = format_patterns_for_prompt(findings)
    _emit(settings, record_patterns, [f.pattern_type for f in findings])
    finish_step("patterns", "ok" if findings else "insufficient_data", step_start)

    # 4. Context
    step_start = time.time()
    try:
        total_cycles = await repo.count_cycles()
    except StoreAccessError:
        finish_step("context", "error", step_start)
        raise

    compressed = compress_history(
        window.cycles,
        max_cycles=settings.HISTORY_MAX_CYCLES,
        tokens_per_cycle=settings.FULL_DETAIL_TOKENS_PER_CYCLE,
    )
    components = {
        "history": compressed.text,
        "patterns": result["patterns_text"],
        "accuracy": result["accuracy_text"],
        "adaptive_config": result["adaptive_config_text"],
    }
    if extra_components:
        components.update(extra_components)

    budget = check_budget(
        components,
        soft_limit=settings.CONTEXT_SOFT_LIMIT_TOKENS,
        hard_limit=settings.CONTEXT_HARD_LIMIT_TOKENS,
    )
    result["history"] = compressed
    result["budget"] = budget
    result["stats"] = context_stats(
        total_cycles,
        compressed,
        project_to=settings.CAPACITY_PROJECTION_CYCLES,
        tokens_per_cycle=settings.FULL_DETAIL_TOKENS_PER_CYCLE,
    )
    _emit(settings, record_context_budget, compressed.token_estimate, budget.level)
    finish_step("context", "ok" if compressed.cycles_included else "insufficient_data", step_start)

    duration_ms = (time.time() - start_time) * 1000
    result["completed_at"] = datetime.utcnow().isoformat()
    result["duration_ms"] = duration_ms

    logger.info(
        f"[FEEDBACK] Cycle feedback complete: {len(window)} cycles, "
        f"{metrics.total_claims_evaluated} claims evaluated, {len(findings)} patterns, "
        f"history ~{compressed.token_estimate} tokens, duration={duration_ms:.0f}ms"
    )
    return result
