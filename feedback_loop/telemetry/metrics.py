"""
Prometheus metrics for the feedback-and-calibration loop.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- step:          "accuracy", "patterns", "tuning", "context"
- status:        "ok", "insufficient_data", "error"
- pattern_type:  "overestimation", "underestimation", "volatility",
                 "consistency", "category_bias"
- kind:          "estimate_probability", "estimate_rank", "estimate_result",
                 "claim_surprise"
- level:         "ok", "warning", "over_limit"

FORBIDDEN AS LABELS: entity/team names, cycle numbers, claim text.
Use logs for those.
"""

import logging

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# CYCLE STEP METRICS
# =============================================================================

feedback_step_runs_total = Counter(
    "feedback_step_runs_total",
    "Feedback loop step executions by outcome",
    ["step", "status"],
)

feedback_step_duration_ms = Histogram(
    "feedback_step_duration_ms",
    "Feedback loop step duration in milliseconds",
    ["step"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

# =============================================================================
# LEARNING SIGNALS
# =============================================================================

feedback_patterns_detected_total = Counter(
    "feedback_patterns_detected_total",
    "Patterns emitted by the bias detector",
    ["pattern_type"],
)

feedback_malformed_records_total = Counter(
    "feedback_malformed_records_total",
    "History rows excluded from analysis because they failed validation",
    ["kind"],
)

feedback_boldness_level = Gauge(
    "feedback_boldness_level",
    "Boldness level of the active adaptive configuration (0-100)",
)

# =============================================================================
# CONTEXT BUDGET
# =============================================================================

feedback_context_tokens = Gauge(
    "feedback_context_tokens",
    "Estimated tokens of the compressed history digest",
)

feedback_budget_checks_total = Counter(
    "feedback_budget_checks_total",
    "Context budget checks by classification",
    ["level"],
)


# =============================================================================
# HELPERS
# =============================================================================


def record_step(step: str, status: str, duration_ms: float) -> None:
    """Record one feedback step execution."""
    try:
        feedback_step_runs_total.labels(step=step, status=status).inc()
        feedback_step_duration_ms.labels(step=step).observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record step metric: {e}")


def record_patterns(pattern_types: list[str]) -> None:
    """Record emitted patterns by type."""
    try:
        for pattern_type in pattern_types:
            feedback_patterns_detected_total.labels(pattern_type=pattern_type).inc()
    except Exception as e:
        logger.warning(f"Failed to record pattern metric: {e}")


def record_malformed_record(kind: str) -> None:
    """Record a history row dropped during validation."""
    try:
        feedback_malformed_records_total.labels(kind=kind).inc()
    except Exception as e:
        logger.warning(f"Failed to record malformed record metric: {e}")


def record_active_config(boldness_level: float) -> None:
    try:
        feedback_boldness_level.set(boldness_level)
    except Exception as e:
        logger.warning(f"Failed to record boldness metric: {e}")


def record_context_budget(history_tokens: int, level: str) -> None:
    """Record the compressed history size and the budget classification."""
    try:
        feedback_context_tokens.set(history_tokens)
        feedback_budget_checks_total.labels(level=level).inc()
    except Exception as e:
        logger.warning(f"Failed to record context budget metric: {e}")


def get_metrics_text() -> bytes:
    """Render all registered metrics in Prometheus text format."""
    return generate_latest(REGISTRY)
