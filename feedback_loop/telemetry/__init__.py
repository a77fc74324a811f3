"""
Feedback loop telemetry.

Provides Prometheus metrics for:
- Step executions (accuracy, patterns, tuning, context)
- Learning signals (patterns emitted, malformed rows, boldness)
- Context budget (digest size, budget classification)
"""

from feedback_loop.telemetry.metrics import (
    feedback_step_runs_total,
    feedback_step_duration_ms,
    feedback_patterns_detected_total,
    feedback_malformed_records_total,
    feedback_boldness_level,
    feedback_context_tokens,
    feedback_budget_checks_total,
    record_step,
    record_patterns,
    record_malformed_record,
    record_active_config,
    record_context_budget,
    get_metrics_text,
)

__all__ = [
    # Metrics
    "feedback_step_runs_total",
    "feedback_step_duration_ms",
    "feedback_patterns_detected_total",
    "feedback_malformed_records_total",
    "feedback_boldness_level",
    "feedback_context_tokens",
    "feedback_budget_checks_total",
    # Helpers
    "record_step",
    "record_patterns",
    "record_malformed_record",
    "record_active_config",
    "record_context_budget",
    "get_metrics_text",
]
