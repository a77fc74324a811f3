"""
Bias Pattern Detector.

Scans a history window for recurring behavior in past predictions:
- volatility:       an entity's probability swings widely between cycles
- consistency:      an entity's probability barely moves, or a claim
                    category validates reliably
- overestimation /
  underestimation:  an entity's probability drifts steadily up or down
- category_bias:    claims of one topical category rarely validate

Output is deterministic for a given window: entities sorted by name, then
categories in classifier table order.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np

from feedback_loop.learning.history import HistoryWindow

logger = logging.getLogger(__name__)

MIN_CYCLES = 5
MIN_SERIES_POINTS = 3
MIN_TREND_POINTS = 5
VOLATILITY_STDDEV = 5.0
CONSISTENCY_STDDEV = 1.5
TREND_SLOPE = 0.5  # percentage points per cycle

MIN_CLAIMS_FOR_CATEGORIES = 10
MIN_CATEGORY_CLAIMS = 5
MIN_STRONG_CATEGORY_CLAIMS = 8
CATEGORY_BIAS_RATE = 40.0
CATEGORY_STRONG_RATE = 70.0

EVIDENCE_LIMIT = 20
EVIDENCE_TEXT_CHARS = 100

PATTERN_TYPES = ("overestimation", "underestimation", "volatility", "consistency", "category_bias")

MLB_CATEGORY_KEYWORDS = {
    "pitching": ["pitcher", "pitching", "bullpen", "rotation", "ERA", "strikeout"],
    "hitting": ["hitter", "batting", "offense", "home run", "RBI", "OPS"],
    "defense": ["defense", "fielding", "glove", "errors"],
    "young_players": ["prospect", "rookie", "breakout", "young", "call-up"],
    "free_agency": ["signed", "free agent", "contract", "acquisition"],
    "trades": ["traded", "trade", "acquired"],
}


@dataclass
class PatternFinding:
    """A detected pattern, keyed by (pattern_type, entity)."""
    pattern_type: str
    entity: str
    confidence: float  # 0-100
    description: str
    evidence: list = field(default_factory=list)


class CategoryClassifier(Protocol):
    """Assigns zero or more topical categories to a claim text."""

    def categories(self) -> list[str]:
        ...

    def classify(self, text: str) -> list[str]:
        ...


class KeywordCategoryClassifier:
    """Case-insensitive substring match against a category -> keywords table."""

    def __init__(self, table: dict[str, list[str]]):
        self._table = {
            category: [kw.lower() for kw in keywords]
            for category, keywords in table.items()
        }

    def categories(self) -> list[str]:
        return list(self._table)

    def classify(self, text: str) -> list[str]:
        lowered = text.lower()
        return [
            category
            for category, keywords in self._table.items()
            if any(kw in lowered for kw in keywords)
        ]


def linear_slope(values: list[float]) -> float:
    """Ordinary least-squares slope of values against their index."""
    if len(values) < 2:
        return 0.0
    x = np.arange(len(values), dtype=float)
    slope, _intercept = np.polyfit(x, np.asarray(values, dtype=float), 1)
    return float(slope)


def _entity_patterns(entity: str, series: list[tuple[int, float]], evidence_limit: int) -> list[PatternFinding]:
    probs = np.asarray([p for _, p in series], dtype=float)
    mean = float(probs.mean())
    std = float(probs.std())  # population (ddof=0)
    evidence = [{"cycle_number": n, "probability": p} for n, p in series[-evidence_limit:]]
    findings = []

    if std > VOLATILITY_STDDEV:
        findings.append(PatternFinding(
            pattern_type="volatility",
            entity=entity,
            confidence=min(100.0, std * 10),
            description=f"{entity} probability swings wildly (±{std:.1f}% avg deviation)",
            evidence=list(evidence),
        ))

    if std < CONSISTENCY_STDDEV and len(series) >= MIN_TREND_POINTS:
        findings.append(PatternFinding(
            pattern_type="consistency",
            entity=entity,
            confidence=max(50.0, 100 - std * 30),
            description=f"{entity} probability very stable ({mean:.1f}% ±{std:.1f}%)",
            evidence=list(evidence),
        ))

    if len(series) >= MIN_TREND_POINTS:
        slope = linear_slope(probs.tolist())
        if abs(slope) > TREND_SLOPE:
            findings.append(PatternFinding(
                pattern_type="overestimation" if slope > 0 else "underestimation",
                entity=entity,
                confidence=min(100.0, abs(slope) * 20),
                description=(
                    f"{entity} probability trending {'up' if slope > 0 else 'down'} "
                    f"({abs(slope):.1f}% per cycle)"
                ),
                evidence=list(evidence),
            ))

    return findings


def _category_patterns(
    window: HistoryWindow,
    classifier: CategoryClassifier,
    evidence_limit: int,
) -> list[PatternFinding]:
    claims = list(window.iter_claims())
    if len(claims) < MIN_CLAIMS_FOR_CATEGORIES:
        return []

    matched = {category: [] for category in classifier.categories()}
    for cycle, claim in claims:
        for category in classifier.classify(claim.text):
            matched.setdefault(category, []).append((cycle.cycle_number, claim))

    findings = []
    for category, members in matched.items():
        if len(members) < MIN_CATEGORY_CLAIMS:
            continue

        validated = sum(1 for _, c in members if c.is_validated)
        rate = validated / len(members) * 100
        evidence = [
            {"cycle_number": n, "claim": c.text[:EVIDENCE_TEXT_CHARS], "validated": c.is_validated}
            for n, c in members[:evidence_limit]
        ]

        if rate < CATEGORY_BIAS_RATE:
            findings.append(PatternFinding(
                pattern_type="category_bias",
                entity=category,
                confidence=min(100.0, (50 - rate) * 2),
                description=(
                    f"Only {rate:.0f}% of {category} hypotheses validated "
                    f"({validated}/{len(members)})"
                ),
                evidence=evidence,
            ))

        if rate > CATEGORY_STRONG_RATE and len(members) >= MIN_STRONG_CATEGORY_CLAIMS:
            findings.append(PatternFinding(
                pattern_type="consistency",
                entity=f"{category}_predictions",
                confidence=min(100.0, rate),
                description=(
                    f"Strong {category} prediction accuracy: {rate:.0f}% validated "
                    f"({validated}/{len(members)})"
                ),
                evidence=evidence,
            ))

    return findings


def detect_patterns(
    window: HistoryWindow,
    classifier: Optional[CategoryClassifier] = None,
    min_cycles: int = MIN_CYCLES,
    evidence_limit: int = EVIDENCE_LIMIT,
) -> list[PatternFinding]:
    """
    Detect entity and category patterns in the window.

    Returns [] when the window holds fewer than min_cycles cycles.
    """
    if len(window) < min_cycles:
        logger.debug(f"[PATTERNS] Only {len(window)} cycles (<{min_cycles}), skipping detection")
        return []

    classifier = classifier or KeywordCategoryClassifier(MLB_CATEGORY_KEYWORDS)

    series: dict[str, list[tuple[int, float]]] = {}
    for cycle in window.oldest_first():
        for estimate in cycle.estimates:
            series.setdefault(estimate.entity_name, []).append((cycle.cycle_number, estimate.probability))

    findings = []
    for entity in sorted(series):
        points = series[entity]
        if len(points) < MIN_SERIES_POINTS:
            continue
        findings.extend(_entity_patterns(entity, points, evidence_limit))

    findings.extend(_category_patterns(window, classifier, evidence_limit))

    logger.info(f"[PATTERNS] Detected {len(findings)} patterns across {len(window)} cycles")
    return findings


def format_patterns_for_prompt(patterns: list[PatternFinding], limit: int = 10) -> str:
    """Render the most confident patterns as prompt text."""
    if not patterns:
        return ""

    top = sorted(patterns, key=lambda p: p.confidence, reverse=True)[:limit]

    lines = [
        "### Detected Patterns in Your Past Predictions:",
        "",
        "Based on analysis of your previous research cycles, these patterns were identified:",
        "",
    ]
    for i, pattern in enumerate(top, start=1):
        lines.append(f"{i}. **{pattern.description}**")
        lines.append(f"   - Pattern: {pattern.pattern_type}")
        lines.append(f"   - Confidence: {pattern.confidence:.0f}%")
        if pattern.pattern_type in ("overestimation", "underestimation"):
            lines.append(f"   - Consider adjusting your {pattern.entity} projections")
        lines.append("")

    lines.append("**Use these insights to calibrate your current cycle's predictions.**")
    return "\n".join(lines) + "\n"
