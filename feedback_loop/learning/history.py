"""
History records consumed by the learning components.

The repository materializes store rows into these dataclasses; the accuracy,
pattern, tuning and compression modules only ever see these records and
never touch the database.

Malformed rows (probability outside 0-100, rank collisions, unknown result
or surprise labels) are dropped here with a warning so that one bad row
cannot corrupt an aggregate.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterator, Optional

from feedback_loop.telemetry import record_malformed_record

logger = logging.getLogger(__name__)

SURPRISE_LEVELS = ("Low", "Medium", "High")

# Ordered best to worst; only the first maps to a positive indicator
ESTIMATE_RESULTS = ("won_top_prize", "reached_final", "reached_playoffs", "missed_playoffs")
PENDING_RESULT = "pending"


@dataclass
class ClaimRecord:
    """Boolean hypothesis with its optional recorded outcome."""
    text: str
    is_validated: bool
    surprise_level: str  # Low / Medium / High
    evidence: str = ""
    actual_outcome: Optional[bool] = None  # None until an outcome is recorded

    @property
    def evaluated(self) -> bool:
        return self.actual_outcome is not None

    @property
    def correct(self) -> bool:
        return self.evaluated and self.is_validated == self.actual_outcome


@dataclass
class EstimateRecord:
    """Per-entity probability with its optional season result."""
    entity_name: str
    entity_code: str
    probability: float  # 0-100
    rank: int  # 1 = highest in the cycle
    change_from_previous: Optional[float] = None
    result: Optional[str] = None  # ESTIMATE_RESULTS, PENDING_RESULT or None
    calibration_score: Optional[float] = None

    @property
    def evaluated(self) -> bool:
        return (
            self.result is not None
            and self.result != PENDING_RESULT
            and self.calibration_score is not None
        )


@dataclass
class ReflectionRecord:
    reflection_type: str
    content: str


@dataclass
class CycleRecord:
    """One research cycle with everything attached to it."""
    cycle_number: int
    created_at: datetime
    title: str
    summary: str = ""
    claims: list[ClaimRecord] = field(default_factory=list)
    estimates: list[EstimateRecord] = field(default_factory=list)
    reflections: list[ReflectionRecord] = field(default_factory=list)

    def ranked_estimates(self) -> list[EstimateRecord]:
        return sorted(self.estimates, key=lambda e: e.rank)

    def first_reflection(self, reflection_type: str = "learned") -> Optional[ReflectionRecord]:
        for reflection in self.reflections:
            if reflection.reflection_type == reflection_type:
                return reflection
        return None


@dataclass
class HistoryWindow:
    """
    The N most recent cycles, ordered newest first.

    Construction sorts the cycles by cycle number so callers may pass them
    in any order.
    """
    cycles: list[CycleRecord] = field(default_factory=list)

    def __post_init__(self):
        self.cycles = sorted(self.cycles, key=lambda c: c.cycle_number, reverse=True)

    def __len__(self) -> int:
        return len(self.cycles)

    @property
    def newest_cycle_number(self) -> Optional[int]:
        return self.cycles[0].cycle_number if self.cycles else None

    def oldest_first(self) -> list[CycleRecord]:
        return list(reversed(self.cycles))

    def iter_claims(self) -> Iterator[tuple[CycleRecord, ClaimRecord]]:
        for cycle in self.cycles:
            for claim in cycle.claims:
                yield cycle, claim

    def iter_estimates(self) -> Iterator[tuple[CycleRecord, EstimateRecord]]:
        for cycle in self.cycles:
            for estimate in cycle.estimates:
                yield cycle, estimate


# =============================================================================
# VALIDATION
# =============================================================================


def _drop(kind: str, cycle_number: int, detail: str) -> None:
    logger.warning(f"[HISTORY] Dropping malformed {kind} row in cycle {cycle_number}: {detail}")
    record_malformed_record(kind)


def sanitize_cycle(cycle: CycleRecord) -> CycleRecord:
    """
    Return a copy of the cycle without malformed claims or estimates.

    Estimates are checked in rank order; on a rank collision the first row
    seen keeps the rank and later ones are dropped.
    """
    claims = []
    for claim in cycle.claims:
        if claim.surprise_level not in SURPRISE_LEVELS:
            _drop("claim_surprise", cycle.cycle_number, f"surprise_level={claim.surprise_level!r}")
            continue
        claims.append(claim)

    estimates = []
    seen_ranks = set()
    for estimate in cycle.estimates:
        if estimate.probability is None or not 0 <= estimate.probability <= 100:
            _drop(
                "estimate_probability",
                cycle.cycle_number,
                f"{estimate.entity_name} probability={estimate.probability}",
            )
            continue
        if estimate.rank in seen_ranks:
            _drop("estimate_rank", cycle.cycle_number, f"{estimate.entity_name} rank={estimate.rank}")
            continue
        if estimate.result is not None and estimate.result not in ESTIMATE_RESULTS + (PENDING_RESULT,):
            _drop("estimate_result", cycle.cycle_number, f"{estimate.entity_name} result={estimate.result!r}")
            continue
        seen_ranks.add(estimate.rank)
        estimates.append(estimate)

    return replace(cycle, claims=claims, estimates=estimates)
