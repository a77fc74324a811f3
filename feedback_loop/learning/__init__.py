"""
Feedback-and-calibration loop.

Pure components over materialized history:
- accuracy:  Outcome Accuracy Engine
- patterns:  Bias Pattern Detector
- adaptive:  Adaptive Tuning Controller
- context:   History Compression Engine

Store boundary in repository; the per-cycle job in feedback_cycle.
"""

from feedback_loop.learning.accuracy import AccuracyMetrics, compute_accuracy
from feedback_loop.learning.adaptive import TuningConfig, derive_adaptive_config
from feedback_loop.learning.context import (
    BudgetReport,
    CompressedHistory,
    check_budget,
    compress_history,
)
from feedback_loop.learning.history import HistoryWindow
from feedback_loop.learning.patterns import PatternFinding, detect_patterns

__all__ = [
    "AccuracyMetrics",
    "BudgetReport",
    "CompressedHistory",
    "HistoryWindow",
    "PatternFinding",
    "TuningConfig",
    "check_budget",
    "compress_history",
    "compute_accuracy",
    "derive_adaptive_config",
    "detect_patterns",
]
