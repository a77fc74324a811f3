"""
Tests for the Bias Pattern Detector.
"""

from datetime import datetime, timedelta

import pytest

from feedback_loop.learning.history import (
    ClaimRecord,
    CycleRecord,
    EstimateRecord,
    HistoryWindow,
)
from feedback_loop.learning.patterns import (
    MLB_CATEGORY_KEYWORDS,
    KeywordCategoryClassifier,
    PatternFinding,
    detect_patterns,
    format_patterns_for_prompt,
    linear_slope,
)

BASE_DATE = datetime(2025, 4, 1, 12, 0, 0)


def series_window(values_by_entity, filler_cycles=0):
    """One cycle per index; each entity gets the value at that index (None = absent)."""
    length = max(len(v) for v in values_by_entity.values()) if values_by_entity else 0
    cycles = []
    for i in range(max(length, filler_cycles)):
        estimates = []
        for name, values in values_by_entity.items():
            if i < len(values) and values[i] is not None:
                estimates.append(EstimateRecord(name, name[:3].upper(), values[i], len(estimates) + 1))
        cycles.append(CycleRecord(
            cycle_number=i + 1,
            created_at=BASE_DATE + timedelta(days=i),
            title=f"Cycle {i + 1}",
            estimates=estimates,
        ))
    return HistoryWindow(cycles)


def claims_window(claims, cycles=5):
    """Spread claims round-robin over `cycles` cycles."""
    records = [
        CycleRecord(cycle_number=n, created_at=BASE_DATE + timedelta(days=n), title=f"Cycle {n}")
        for n in range(1, cycles + 1)
    ]
    for i, c in enumerate(claims):
        records[i % cycles].claims.append(c)
    return HistoryWindow(records)


def claim(text, validated):
    return ClaimRecord(text=text, is_validated=validated, surprise_level="Medium")


def by_key(findings):
    return {(f.pattern_type, f.entity): f for f in findings}


class TestMinimumHistory:
    """Fewer than 5 cycles yields no patterns."""

    def test_four_cycles(self):
        window = series_window({"Dodgers": [10, 40, 12, 38]})
        assert detect_patterns(window) == []

    def test_empty(self):
        assert detect_patterns(HistoryWindow()) == []


class TestEntitySeries:
    """Volatility, consistency and drift per entity."""

    def test_volatility_scenario(self):
        window = series_window({"Mets": [10, 40, 12, 38, 9, 41]})
        found = by_key(detect_patterns(window))

        volatility = found[("volatility", "Mets")]
        assert volatility.confidence == 100.0
        assert "swings wildly" in volatility.description
        assert len(volatility.evidence) == 6

    def test_consistency(self):
        window = series_window({"Braves": [12.0, 12.5, 12.0, 12.5, 12.0]})
        found = by_key(detect_patterns(window))

        consistency = found[("consistency", "Braves")]
        # population sd = 0.245 -> 100 - 7.35
        assert consistency.confidence == pytest.approx(92.65, abs=0.01)
        assert ("volatility", "Braves") not in found
        assert ("overestimation", "Braves") not in found

    def test_consistency_needs_five_points(self):
        window = series_window({"Braves": [12, 12, 12, 12], "Filler": [1, 1, 1, 1, 1]})
        found = by_key(detect_patterns(window))

        assert ("consistency", "Braves") not in found
        assert ("consistency", "Filler") in found

    def test_upward_drift_is_overestimation(self):
        window = series_window({"Orioles": [5, 7, 9, 11, 13]})
        found = by_key(detect_patterns(window))

        drift = found[("overestimation", "Orioles")]
        assert drift.confidence == pytest.approx(40.0)
        assert "trending up" in drift.description

    def test_downward_drift_is_underestimation(self):
        window = series_window({"Astros": [20, 19, 18, 17, 16]})
        found = by_key(detect_patterns(window))

        assert found[("underestimation", "Astros")].confidence == pytest.approx(20.0)

    def test_series_needs_three_points(self):
        window = series_window({"Rays": [None, None, None, 5, 50], "Filler": [1, 1, 1, 1, 1]})
        assert all(f.entity != "Rays" for f in detect_patterns(window))

    def test_linear_slope(self):
        assert linear_slope([1, 2, 3, 4]) == pytest.approx(1.0)
        assert linear_slope([3]) == 0.0

    def test_evidence_is_bounded(self):
        values = [10, 40] * 15
        window = series_window({"Cubs": values})
        found = by_key(detect_patterns(window))

        assert len(found[("volatility", "Cubs")].evidence) == 20

    def test_deterministic_entity_order(self):
        window = series_window({
            "Yankees": [10, 40, 12, 38, 9, 41],
            "Angels": [10, 40, 12, 38, 9, 41],
        })
        first = detect_patterns(window)
        second = detect_patterns(window)

        assert first == second
        assert [f.entity for f in first if f.pattern_type == "volatility"] == ["Angels", "Yankees"]


class TestCategoryBias:
    """Keyword categories over claim text."""

    def test_low_validation_rate(self):
        claims = (
            [claim("Bullpen will collapse", False) for _ in range(4)]
            + [claim("Bullpen will dominate", True)]
            + [claim("Nothing to categorize here", True) for _ in range(5)]
        )
        found = by_key(detect_patterns(claims_window(claims)))

        bias = found[("category_bias", "pitching")]
        # rate 20% -> (50 - 20) * 2
        assert bias.confidence == pytest.approx(60.0)
        assert "Only 20% of pitching hypotheses validated (1/5)" == bias.description

    def test_strong_category(self):
        claims = [claim("Rookie call-up breaks out", True) for _ in range(8)] + [
            claim("Rookie struggles", False) for _ in range(2)
        ]
        found = by_key(detect_patterns(claims_window(claims)))

        strong = found[("consistency", "young_players_predictions")]
        assert strong.confidence == pytest.approx(80.0)

    def test_strong_category_needs_eight(self):
        claims = [claim("Signed a big contract", True) for _ in range(6)] + [
            claim("Filler claim", True) for _ in range(4)
        ]
        found = by_key(detect_patterns(claims_window(claims)))

        assert ("consistency", "free_agency_predictions") not in found

    def test_skipped_below_ten_claims(self):
        claims = [claim("Bullpen will collapse", False) for _ in range(9)]
        assert detect_patterns(claims_window(claims)) == []

    def test_case_insensitive_multi_category(self):
        classifier = KeywordCategoryClassifier(MLB_CATEGORY_KEYWORDS)

        assert classifier.classify("Traded PITCHER improves the ROTATION") == ["pitching", "trades"]
        assert classifier.classify("Team ERA falls") == ["pitching"]
        assert classifier.classify("weather") == []

    def test_custom_classifier_table(self):
        classifier = KeywordCategoryClassifier({"injuries": ["injury", "injured list"]})
        claims = [claim("Injury to the ace", False) for _ in range(5)] + [
            claim("Bullpen collapse", False) for _ in range(5)
        ]
        found = by_key(detect_patterns(claims_window(claims), classifier=classifier))

        assert ("category_bias", "injuries") in found
        assert ("category_bias", "pitching") not in found


class TestFormatting:

    def test_empty(self):
        assert format_patterns_for_prompt([]) == ""

    def test_sorted_and_limited(self):
        patterns = [
            PatternFinding("volatility", f"Team {i}", float(i), f"desc {i}")
            for i in range(15)
        ]
        text = format_patterns_for_prompt(patterns, limit=3)

        assert "1. **desc 14**" in text
        assert "3. **desc 12**" in text
        assert "desc 11" not in text

    def test_drift_hint(self):
        text = format_patterns_for_prompt([PatternFinding("overestimation", "Mets", 40.0, "Mets up")])
        assert "Consider adjusting your Mets projections" in text
