"""
Outcome Accuracy Engine.

Measures how well past cycles predicted reality:
- Claim accuracy (self-assessed validity vs actual outcome)
- Calibration score (mean squared error of top-prize probabilities)
- Surprise calibration (% of High-surprise claims that came true)
- Trend (recent cycles vs the band before them)

Pure functions over a HistoryWindow; nothing here reads or writes the store.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from feedback_loop.learning.history import (
    ESTIMATE_RESULTS,
    PENDING_RESULT,
    ClaimRecord,
    HistoryWindow,
)

logger = logging.getLogger(__name__)

# Trend bands, as offsets from the newest cycle number in the window
RECENT_BAND_CYCLES = 10
HISTORICAL_BAND_CYCLES = 30
MIN_CLAIMS_PER_BAND = 5
TREND_THRESHOLD_POINTS = 5.0

TREND_IMPROVING = "improving"
TREND_STABLE = "stable"
TREND_DECLINING = "declining"
TREND_INSUFFICIENT = "insufficient_data"


@dataclass
class AccuracyMetrics:
    """Accuracy and calibration metrics over a history window."""
    overall_claim_accuracy: Optional[float] = None  # 0-100
    total_claims_evaluated: int = 0
    correctly_predicted: int = 0
    incorrectly_predicted: int = 0
    calibration_score: Optional[float] = None  # 0 = perfect, 1 = worst
    total_estimates_evaluated: int = 0
    surprise_calibration: Optional[float] = None  # % of High-surprise claims that came true
    high_surprise_total: int = 0
    high_surprise_correct: int = 0
    recent_accuracy: Optional[float] = None
    historical_accuracy: Optional[float] = None
    improvement_trend: str = TREND_INSUFFICIENT


def outcome_indicator(result: str) -> int:
    """Map a season result onto the binary event the probability was about."""
    if result not in ESTIMATE_RESULTS:
        raise ValueError(f"Unknown estimate result: {result!r}")
    return 1 if result == ESTIMATE_RESULTS[0] else 0


def calibration_score(probability: float, result: str) -> Optional[float]:
    """
    Squared error between a 0-100 probability and the realized outcome.

    Formula: ((probability / 100) - y)^2, y = 1 only for won_top_prize.
    Returns None for pending results.
    """
    if result == PENDING_RESULT:
        return None
    if not 0 <= probability <= 100:
        raise ValueError(f"Probability out of range: {probability}")
    return ((probability / 100.0) - outcome_indicator(result)) ** 2


def _accuracy_pct(claims: list[ClaimRecord]) -> Optional[float]:
    if not claims:
        return None
    correct = sum(1 for c in claims if c.correct)
    return correct / len(claims) * 100


def classify_trend(recent: Optional[float], historical: Optional[float]) -> str:
    if recent is None or historical is None:
        return TREND_INSUFFICIENT
    diff = recent - historical
    if diff > TREND_THRESHOLD_POINTS:
        return TREND_IMPROVING
    if diff < -TREND_THRESHOLD_POINTS:
        return TREND_DECLINING
    return TREND_STABLE


def compute_accuracy(window: HistoryWindow) -> AccuracyMetrics:
    """
    Compute accuracy metrics for the cycles in the window.

    Never raises for short history: an empty window (or one without any
    recorded outcome) yields None metrics and trend "insufficient_data".
    """
    metrics = AccuracyMetrics()
    if len(window) == 0:
        return metrics

    newest = window.newest_cycle_number
    evaluated = []
    recent = []
    historical = []
    for cycle, claim in window.iter_claims():
        if not claim.evaluated:
            continue
        evaluated.append(claim)
        offset = newest - cycle.cycle_number
        if offset < RECENT_BAND_CYCLES:
            recent.append(claim)
        elif offset < HISTORICAL_BAND_CYCLES:
            historical.append(claim)

    if evaluated:
        correct = sum(1 for c in evaluated if c.correct)
        metrics.total_claims_evaluated = len(evaluated)
        metrics.correctly_predicted = correct
        metrics.incorrectly_predicted = len(evaluated) - correct
        metrics.overall_claim_accuracy = correct / len(evaluated) * 100

        high_surprise = [c for c in evaluated if c.surprise_level == "High"]
        metrics.high_surprise_total = len(high_surprise)
        metrics.high_surprise_correct = sum(1 for c in high_surprise if c.actual_outcome)
        if high_surprise:
            metrics.surprise_calibration = metrics.high_surprise_correct / len(high_surprise) * 100

        if len(recent) >= MIN_CLAIMS_PER_BAND:
            metrics.recent_accuracy = _accuracy_pct(recent)
        if len(historical) >= MIN_CLAIMS_PER_BAND:
            metrics.historical_accuracy = _accuracy_pct(historical)
        metrics.improvement_trend = classify_trend(metrics.recent_accuracy, metrics.historical_accuracy)

    scores = [e.calibration_score for _, e in window.iter_estimates() if e.evaluated]
    if scores:
        metrics.total_estimates_evaluated = len(scores)
        metrics.calibration_score = float(np.mean(scores))

    logger.debug(
        f"[ACCURACY] cycles={len(window)} claims={metrics.total_claims_evaluated} "
        f"estimates={metrics.total_estimates_evaluated} trend={metrics.improvement_trend}"
    )
    return metrics


def format_accuracy_for_prompt(metrics: AccuracyMetrics) -> str:
    """Render metrics as prompt text. Empty string when nothing was evaluated."""
    if metrics.total_claims_evaluated == 0 and metrics.total_estimates_evaluated == 0:
        return ""

    lines = ["### Historical Accuracy:"]

    if metrics.total_claims_evaluated > 0:
        lines.append(
            f"**Hypothesis Predictions:** {metrics.overall_claim_accuracy:.1f}% accurate "
            f"({metrics.correctly_predicted} correct, {metrics.incorrectly_predicted} incorrect "
            f"out of {metrics.total_claims_evaluated} evaluated)"
        )

        if metrics.improvement_trend != TREND_INSUFFICIENT:
            trend_line = f"**Trend:** {metrics.improvement_trend.capitalize()}"
            if metrics.recent_accuracy is not None and metrics.historical_accuracy is not None:
                trend_line += (
                    f" (recent: {metrics.recent_accuracy:.1f}%, "
                    f"historical: {metrics.historical_accuracy:.1f}%)"
                )
            lines.append(trend_line)

        if metrics.surprise_calibration is not None:
            lines.append(
                f"**Surprise Calibration:** {metrics.surprise_calibration:.1f}% of high-surprise "
                f"predictions came true ({metrics.high_surprise_correct}/{metrics.high_surprise_total})"
            )

    if metrics.calibration_score is not None:
        lines.append(
            f"**Probability Calibration Score:** {metrics.calibration_score:.4f} "
            f"({metrics.total_estimates_evaluated} estimates evaluated, closer to 0 = better)"
        )

    lines.append("")
    lines.append(
        "**Guidance:** Use these metrics to calibrate your confidence levels and boldness. "
        "If accuracy is declining, be more conservative. If improving, maintain your approach."
    )
    return "\n".join(lines) + "\n"
