"""
Adaptive Tuning Controller.

Turns accuracy metrics into the generation parameters of the next cycle.
Rules are applied in a fixed order, each gated on a minimum sample size,
and every triggered rule contributes one sentence to the rationale.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from feedback_loop.learning.accuracy import (
    TREND_DECLINING,
    TREND_IMPROVING,
    AccuracyMetrics,
)

logger = logging.getLogger(__name__)

# Baseline configuration
BASELINE_BOLDNESS = 50.0
BASELINE_SURPRISE_LOW = 3.0
BASELINE_SURPRISE_HIGH = 7.0
BASELINE_CONFIDENCE_ADJUSTMENT = 0.0
BASELINE_CLAIM_TARGET = 6

BASELINE_RATIONALE = (
    "Insufficient data for adaptive tuning - using baseline configuration. "
    "Need at least 5 evaluated outcomes."
)

# Sample-size gates
MIN_EVALUATED = 5
MIN_HIGH_SURPRISE = 5
MIN_CLAIMS_FOR_TARGET = 10
MIN_CLAIMS_FOR_RECENT = 15

# Accuracy -> boldness lookup, first match wins
BOLDNESS_STEPS = (
    (75.0, 75.0, "Excellent accuracy ({acc:.1f}%) - increasing boldness to 75"),
    (65.0, 65.0, "Good accuracy ({acc:.1f}%) - increasing boldness to 65"),
    (50.0, 55.0, "Acceptable accuracy ({acc:.1f}%) - maintaining moderate boldness at 55"),
    (40.0, 40.0, "Below-average accuracy ({acc:.1f}%) - reducing boldness to 40"),
)
BOLDNESS_FLOOR_STEP = (30.0, "Poor accuracy ({acc:.1f}%) - reducing boldness to 30")


@dataclass
class TuningConfig:
    """Generation parameters for the next cycle, with provenance."""
    boldness_level: float  # 0-100
    surprise_threshold_low: float
    surprise_threshold_high: float
    confidence_adjustment: float  # -1.0 to +1.0
    claim_count_target: int
    rationale: str
    based_on_accuracy: Optional[float] = None
    based_on_trend: Optional[str] = None
    based_on_cycles: Optional[int] = None

    def __post_init__(self):
        if not self.surprise_threshold_low < self.surprise_threshold_high:
            raise ValueError(
                f"surprise_threshold_low ({self.surprise_threshold_low}) must be below "
                f"surprise_threshold_high ({self.surprise_threshold_high})"
            )


def baseline_config() -> TuningConfig:
    return TuningConfig(
        boldness_level=BASELINE_BOLDNESS,
        surprise_threshold_low=BASELINE_SURPRISE_LOW,
        surprise_threshold_high=BASELINE_SURPRISE_HIGH,
        confidence_adjustment=BASELINE_CONFIDENCE_ADJUSTMENT,
        claim_count_target=BASELINE_CLAIM_TARGET,
        rationale=BASELINE_RATIONALE,
    )


def derive_adaptive_config(metrics: AccuracyMetrics) -> TuningConfig:
    """
    Derive the next active configuration from accuracy metrics.

    Pure: identical metrics always yield an identical config, rationale
    included. Threshold comparisons include the boundary value where the
    rule reads ">=".
    """
    accuracy = metrics.overall_claim_accuracy
    claims = metrics.total_claims_evaluated

    if claims < MIN_EVALUATED and metrics.total_estimates_evaluated < MIN_EVALUATED:
        return baseline_config()

    boldness = BASELINE_BOLDNESS
    surprise_low = BASELINE_SURPRISE_LOW
    surprise_high = BASELINE_SURPRISE_HIGH
    confidence_adj = BASELINE_CONFIDENCE_ADJUSTMENT
    claim_target = BASELINE_CLAIM_TARGET
    rationale = []

    # 1. Boldness from overall accuracy
    if accuracy is not None and claims >= MIN_EVALUATED:
        boldness, template = BOLDNESS_FLOOR_STEP
        for threshold, level, step_template in BOLDNESS_STEPS:
            if accuracy >= threshold:
                boldness, template = level, step_template
                break
        rationale.append(template.format(acc=accuracy))

    # 2. Trend nudge
    if metrics.improvement_trend == TREND_IMPROVING:
        boldness = min(100.0, boldness + 5)
        rationale.append("Performance is improving - boosting boldness by +5")
    elif metrics.improvement_trend == TREND_DECLINING:
        boldness = max(0.0, boldness - 10)
        rationale.append("Performance is declining - reducing boldness by -10")

    # 3. Surprise thresholds
    surprise = metrics.surprise_calibration
    if surprise is not None and metrics.high_surprise_total >= MIN_HIGH_SURPRISE:
        if surprise > 70:
            surprise_low, surprise_high = 2.5, 6.0
            rationale.append(
                f"High surprise calibration ({surprise:.1f}%) - lowering surprise thresholds "
                f"(easier to mark as surprising)"
            )
        elif surprise < 40:
            surprise_low, surprise_high = 4.0, 8.0
            rationale.append(
                f"Low surprise calibration ({surprise:.1f}%) - raising surprise thresholds "
                f"(harder to mark as surprising)"
            )
        else:
            rationale.append(
                f"Surprise calibration is well-balanced ({surprise:.1f}%) - maintaining current thresholds"
            )

    # 4. Confidence adjustment from calibration score
    score = metrics.calibration_score
    if score is not None and metrics.total_estimates_evaluated >= MIN_EVALUATED:
        if score < 0.10:
            confidence_adj = 0.10
            rationale.append(f"Excellent calibration score ({score:.4f}) - increasing confidence by +0.10")
        elif score > 0.20:
            confidence_adj = -0.15
            rationale.append(f"Poor calibration score ({score:.4f}) - decreasing confidence by -0.15")
        else:
            confidence_adj = 0.00
            rationale.append(f"Moderate calibration score ({score:.4f}) - no confidence adjustment needed")

    # 5. Target claim count
    if accuracy is not None and claims >= MIN_CLAIMS_FOR_TARGET:
        if accuracy >= 70:
            claim_target = 8
            rationale.append("High accuracy allows for more hypotheses (target: 8)")
        elif accuracy < 50:
            claim_target = 4
            rationale.append("Low accuracy suggests focusing on fewer hypotheses (target: 4)")

    # 6. Recent vs overall
    recent = metrics.recent_accuracy
    if recent is not None and accuracy is not None and claims >= MIN_CLAIMS_FOR_RECENT:
        diff = recent - accuracy
        if diff < -10:
            boldness = max(0.0, boldness - 5)
            rationale.append(
                "Recent performance significantly worse than historical - "
                "applying additional -5 boldness penalty"
            )
        elif diff > 10:
            boldness = min(100.0, boldness + 5)
            rationale.append(
                "Recent performance significantly better than historical - "
                "applying additional +5 boldness bonus"
            )

    return TuningConfig(
        boldness_level=round(boldness, 2),
        surprise_threshold_low=round(surprise_low, 2),
        surprise_threshold_high=round(surprise_high, 2),
        confidence_adjustment=round(confidence_adj, 2),
        claim_count_target=claim_target,
        rationale=". ".join(rationale) + ".",
        based_on_accuracy=accuracy,
        based_on_trend=metrics.improvement_trend,
        based_on_cycles=claims,
    )


def classify_surprise(score: float, low: float, high: float) -> str:
    """Discretize a raw 1-10 surprise score with the active thresholds."""
    if not low < high:
        raise ValueError(f"Surprise thresholds out of order: low={low} high={high}")
    if score <= low:
        return "Low"
    if score <= high:
        return "Medium"
    return "High"


def _boldness_hint(level: float) -> str:
    if level >= 70:
        return "High - be very bold and contrarian"
    if level >= 55:
        return "Moderate-High - be reasonably bold"
    if level >= 45:
        return "Moderate - balanced approach"
    if level >= 30:
        return "Low - be more conservative"
    return "Very Low - be very conservative and careful"


def format_adaptive_config_for_prompt(config: TuningConfig) -> str:
    """Render the active configuration as prompt text."""
    adj = config.confidence_adjustment
    if adj > 0.05:
        adj_hint = "Increase your probability estimates slightly"
    elif adj < -0.05:
        adj_hint = "Decrease your probability estimates slightly"
    else:
        adj_hint = "No adjustment needed"

    lines = [
        "### Adaptive Analysis Parameters:",
        "**Current Configuration** (auto-tuned based on your performance):",
        f"- **Boldness Level:** {config.boldness_level:.2f}/100 ({_boldness_hint(config.boldness_level)})",
        (
            f"- **Surprise Thresholds:** Low={config.surprise_threshold_low:.2f}, "
            f"High={config.surprise_threshold_high:.2f} (Use these to calibrate your surprise ratings)"
        ),
        f"- **Confidence Adjustment:** {'+' if adj > 0 else ''}{adj:.2f} ({adj_hint})",
        f"- **Target Hypotheses:** {config.claim_count_target} hypotheses per cycle",
        "",
        f"**Rationale:** {config.rationale}",
        "",
        "**Apply these parameters** to your analysis this cycle. Adjust your approach accordingly.",
    ]
    return "\n".join(lines) + "\n"
