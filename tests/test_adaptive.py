"""
Tests for the Adaptive Tuning Controller.

Rule order, sample-size gates, boundary values and rationale text.
"""

import itertools

import pytest

from feedback_loop.learning.accuracy import AccuracyMetrics
from feedback_loop.learning.adaptive import (
    BASELINE_RATIONALE,
    TuningConfig,
    baseline_config,
    classify_surprise,
    derive_adaptive_config,
    format_adaptive_config_for_prompt,
)


def metrics(**overrides):
    values = dict(
        overall_claim_accuracy=None,
        total_claims_evaluated=0,
        calibration_score=None,
        total_estimates_evaluated=0,
        surprise_calibration=None,
        high_surprise_total=0,
        recent_accuracy=None,
        improvement_trend="stable",
    )
    values.update(overrides)
    return AccuracyMetrics(**values)


class TestBaseline:
    """Sparse data falls back to the fixed baseline."""

    def test_three_claims_ignores_accuracy(self):
        config = derive_adaptive_config(metrics(overall_claim_accuracy=95.0, total_claims_evaluated=3))

        assert config == baseline_config()
        assert config.boldness_level == 50.0
        assert (config.surprise_threshold_low, config.surprise_threshold_high) == (3.0, 7.0)
        assert config.confidence_adjustment == 0.0
        assert config.claim_count_target == 6
        assert config.rationale == BASELINE_RATIONALE
        assert config.based_on_accuracy is None
        assert config.based_on_trend is None
        assert config.based_on_cycles is None

    def test_no_later_rule_applies(self):
        config = derive_adaptive_config(metrics(
            total_claims_evaluated=4,
            total_estimates_evaluated=4,
            overall_claim_accuracy=20.0,
            improvement_trend="declining",
            calibration_score=0.5,
        ))
        assert config == baseline_config()


class TestBoldness:
    """Accuracy lookup, trend nudge and recent-vs-overall nudge."""

    @pytest.mark.parametrize("accuracy,expected", [
        (75.0, 75.0),
        (74.99, 65.0),
        (65.0, 65.0),
        (50.0, 55.0),
        (49.99, 40.0),
        (40.0, 40.0),
        (39.99, 30.0),
    ])
    def test_lookup_includes_boundary(self, accuracy, expected):
        config = derive_adaptive_config(metrics(overall_claim_accuracy=accuracy, total_claims_evaluated=5))
        assert config.boldness_level == expected

    def test_excellent_rationale(self):
        config = derive_adaptive_config(metrics(overall_claim_accuracy=75.0, total_claims_evaluated=5))
        assert config.rationale == "Excellent accuracy (75.0%) - increasing boldness to 75."

    def test_improving_trend(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=80.0, total_claims_evaluated=5, improvement_trend="improving"
        ))
        assert config.boldness_level == 80.0
        assert "Performance is improving - boosting boldness by +5" in config.rationale

    def test_declining_then_recent_penalty(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=30.0,
            total_claims_evaluated=15,
            improvement_trend="declining",
            recent_accuracy=10.0,
        ))
        # 30 -> 20 (declining) -> 15 (recent much worse)
        assert config.boldness_level == 15.0
        assert config.claim_count_target == 4
        assert config.rationale.endswith("applying additional -5 boldness penalty.")

    def test_recent_bonus_needs_fifteen_claims(self):
        base = dict(overall_claim_accuracy=60.0, recent_accuracy=90.0)
        assert derive_adaptive_config(metrics(total_claims_evaluated=14, **base)).boldness_level == 55.0
        assert derive_adaptive_config(metrics(total_claims_evaluated=15, **base)).boldness_level == 60.0

    def test_recent_difference_of_exactly_ten_is_ignored(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=60.0, total_claims_evaluated=20, recent_accuracy=70.0
        ))
        assert config.boldness_level == 55.0

    def test_estimates_only(self):
        """Enough estimates but no claims: boldness stays at baseline."""
        config = derive_adaptive_config(metrics(calibration_score=0.05, total_estimates_evaluated=5))

        assert config.boldness_level == 50.0
        assert config.confidence_adjustment == 0.10
        assert config.rationale == "Excellent calibration score (0.0500) - increasing confidence by +0.10."
        assert config.based_on_cycles == 0


class TestSurpriseThresholds:

    def test_high_calibration_lowers_thresholds(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=60.0, total_claims_evaluated=10,
            surprise_calibration=70.01, high_surprise_total=5,
        ))
        assert (config.surprise_threshold_low, config.surprise_threshold_high) == (2.5, 6.0)

    def test_low_calibration_raises_thresholds(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=60.0, total_claims_evaluated=10,
            surprise_calibration=39.9, high_surprise_total=5,
        ))
        assert (config.surprise_threshold_low, config.surprise_threshold_high) == (4.0, 8.0)

    def test_boundary_seventy_is_balanced(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=60.0, total_claims_evaluated=10,
            surprise_calibration=70.0, high_surprise_total=5,
        ))
        assert (config.surprise_threshold_low, config.surprise_threshold_high) == (3.0, 7.0)
        assert "well-balanced (70.0%)" in config.rationale

    def test_needs_five_high_surprise(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=60.0, total_claims_evaluated=10,
            surprise_calibration=100.0, high_surprise_total=4,
        ))
        assert (config.surprise_threshold_low, config.surprise_threshold_high) == (3.0, 7.0)


class TestConfidenceAndTarget:

    @pytest.mark.parametrize("score,expected", [
        (0.0999, 0.10),
        (0.10, 0.0),
        (0.20, 0.0),
        (0.2001, -0.15),
    ])
    def test_confidence_adjustment(self, score, expected):
        config = derive_adaptive_config(metrics(calibration_score=score, total_estimates_evaluated=5))
        assert config.confidence_adjustment == expected

    @pytest.mark.parametrize("accuracy,claims,expected", [
        (70.0, 10, 8),
        (69.9, 10, 6),
        (49.9, 10, 4),
        (90.0, 9, 6),
    ])
    def test_claim_target(self, accuracy, claims, expected):
        config = derive_adaptive_config(metrics(overall_claim_accuracy=accuracy, total_claims_evaluated=claims))
        assert config.claim_count_target == expected


class TestInvariants:

    def test_pure_and_repeatable(self):
        m = metrics(
            overall_claim_accuracy=66.666, total_claims_evaluated=30,
            calibration_score=0.15, total_estimates_evaluated=12,
            surprise_calibration=20.0, high_surprise_total=6,
            recent_accuracy=80.0, improvement_trend="improving",
        )
        assert derive_adaptive_config(m) == derive_adaptive_config(m)

    def test_thresholds_always_ordered(self):
        grid = itertools.product(
            [None, 10.0, 45.0, 90.0],
            [0, 5, 20],
            [None, 10.0, 55.0, 95.0],
            [0, 5],
        )
        for accuracy, claims, surprise, high_total in grid:
            config = derive_adaptive_config(metrics(
                overall_claim_accuracy=accuracy,
                total_claims_evaluated=claims,
                surprise_calibration=surprise,
                high_surprise_total=high_total,
                calibration_score=0.12,
                total_estimates_evaluated=5,
            ))
            assert config.surprise_threshold_low < config.surprise_threshold_high
            assert 0 <= config.boldness_level <= 100

    def test_provenance(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=72.5, total_claims_evaluated=12, improvement_trend="stable"
        ))
        assert config.based_on_accuracy == 72.5
        assert config.based_on_trend == "stable"
        assert config.based_on_cycles == 12

    def test_rejects_unordered_thresholds(self):
        with pytest.raises(ValueError, match="surprise_threshold_low"):
            TuningConfig(50.0, 7.0, 3.0, 0.0, 6, "bad")


class TestSurpriseClassification:

    @pytest.mark.parametrize("score,level", [
        (1, "Low"),
        (3.0, "Low"),
        (3.1, "Medium"),
        (7.0, "Medium"),
        (7.5, "High"),
        (10, "High"),
    ])
    def test_baseline_thresholds(self, score, level):
        assert classify_surprise(score, 3.0, 7.0) == level

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            classify_surprise(5, 6.0, 6.0)


class TestFormatting:

    def test_prompt_text(self):
        config = derive_adaptive_config(metrics(
            overall_claim_accuracy=80.0, total_claims_evaluated=10,
            calibration_score=0.25, total_estimates_evaluated=5,
        ))
        text = format_adaptive_config_for_prompt(config)

        assert "**Boldness Level:** 75.00/100 (High - be very bold and contrarian)" in text
        assert "Low=3.00, High=7.00" in text
        assert "**Confidence Adjustment:** -0.15 (Decrease your probability estimates slightly)" in text
        assert "**Target Hypotheses:** 8 hypotheses per cycle" in text
        assert config.rationale in text
