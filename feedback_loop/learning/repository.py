"""
History repository: the store boundary of the feedback loop.

Reads materialize cycles into HistoryWindow records (dropping malformed
rows); writes upsert patterns, the single active configuration, new cycles
and outcomes. Any SQLAlchemy failure surfaces as StoreAccessError so callers
can tell "the store failed" apart from "not enough data yet".
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_loop.learning.accuracy import calibration_score
from feedback_loop.learning.adaptive import (
    BASELINE_SURPRISE_HIGH,
    BASELINE_SURPRISE_LOW,
    TuningConfig,
    classify_surprise,
)
from feedback_loop.learning.history import (
    ESTIMATE_RESULTS,
    PENDING_RESULT,
    ClaimRecord,
    CycleRecord,
    EstimateRecord,
    HistoryWindow,
    ReflectionRecord,
    sanitize_cycle,
)
from feedback_loop.learning.patterns import EVIDENCE_LIMIT, PatternFinding
from feedback_loop.models import (
    AdaptiveConfig,
    Claim,
    ClaimOutcome,
    Cycle,
    DetectedPattern,
    Estimate,
    EstimateOutcome,
    Reflection,
)

logger = logging.getLogger(__name__)

MIN_WINDOW = 1
MAX_WINDOW = 200


class StoreAccessError(Exception):
    """Raised when a read or write against the history store fails."""


@dataclass
class NewClaim:
    text: str
    is_validated: bool
    surprise_score: float  # raw 1-10, discretized with the active thresholds
    evidence: str = ""


@dataclass
class NewEstimate:
    entity_name: str
    entity_code: str
    probability: float  # 0-100


class HistoryRepository:
    """Async reads/writes of feedback-loop history over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _store_access(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"[STORE] {operation} failed: {e}")
            await self.session.rollback()
            raise StoreAccessError(f"{operation} failed: {e}") from e

    # =========================================================================
    # READS
    # =========================================================================

    async def fetch_window(self, limit: int = 50) -> HistoryWindow:
        """
        Load the `limit` most recent cycles with claims, estimates, outcomes
        and reflections attached.

        Raises:
            ValueError: limit outside 1-200
            StoreAccessError: the store could not be read
        """
        if not MIN_WINDOW <= limit <= MAX_WINDOW:
            raise ValueError(f"Window must be between {MIN_WINDOW} and {MAX_WINDOW} cycles, got {limit}")

        async with self._store_access("fetch_window"):
            result = await self.session.execute(
                select(Cycle).order_by(Cycle.cycle_number.desc()).limit(limit)
            )
            cycles = result.scalars().all()
            if not cycles:
                return HistoryWindow()

            cycle_ids = [c.id for c in cycles]
            records = {
                c.id: CycleRecord(
                    cycle_number=c.cycle_number,
                    created_at=c.created_at,
                    title=c.title,
                    summary=c.summary,
                )
                for c in cycles
            }

            result = await self.session.execute(
                select(Claim, ClaimOutcome)
                .outerjoin(ClaimOutcome, ClaimOutcome.claim_id == Claim.id)
                .where(Claim.cycle_id.in_(cycle_ids))
                .order_by(Claim.id)
            )
            for claim, outcome in result.all():
                records[claim.cycle_id].claims.append(ClaimRecord(
                    text=claim.text,
                    is_validated=claim.is_validated,
                    surprise_level=claim.surprise_level,
                    evidence=claim.evidence,
                    actual_outcome=outcome.actual_outcome if outcome else None,
                ))

            result = await self.session.execute(
                select(Estimate, EstimateOutcome)
                .outerjoin(EstimateOutcome, EstimateOutcome.estimate_id == Estimate.id)
                .where(Estimate.cycle_id.in_(cycle_ids))
                .order_by(Estimate.rank, Estimate.id)
            )
            for estimate, outcome in result.all():
                records[estimate.cycle_id].estimates.append(EstimateRecord(
                    entity_name=estimate.entity_name,
                    entity_code=estimate.entity_code,
                    probability=estimate.probability,
                    rank=estimate.rank,
                    change_from_previous=estimate.change_from_previous,
                    result=outcome.actual_result if outcome else None,
                    calibration_score=outcome.calibration_score if outcome else None,
                ))

            result = await self.session.execute(
                select(Reflection)
                .where(Reflection.cycle_id.in_(cycle_ids))
                .order_by(Reflection.id)
            )
            for reflection in result.scalars().all():
                records[reflection.cycle_id].reflections.append(
                    ReflectionRecord(reflection.reflection_type, reflection.content)
                )

        return HistoryWindow([sanitize_cycle(r) for r in records.values()])

    async def count_cycles(self) -> int:
        async with self._store_access("count_cycles"):
            result = await self.session.execute(select(func.count(Cycle.id)))
            return result.scalar() or 0

    async def get_patterns(self) -> list[DetectedPattern]:
        """All stored patterns, most confident first."""
        async with self._store_access("get_patterns"):
            result = await self.session.execute(
                select(DetectedPattern).order_by(
                    DetectedPattern.confidence.desc(),
                    DetectedPattern.pattern_type,
                    DetectedPattern.entity,
                )
            )
            return list(result.scalars().all())

    async def get_active_config(self) -> Optional[AdaptiveConfig]:
        async with self._store_access("get_active_config"):
            result = await self.session.execute(
                select(AdaptiveConfig).where(AdaptiveConfig.is_active == True)  # noqa: E712
            )
            return result.scalars().first()

    # =========================================================================
    # WRITES
    # =========================================================================

    async def upsert_patterns(
        self,
        findings: list[PatternFinding],
        evidence_limit: int = EVIDENCE_LIMIT,
    ) -> dict:
        """
        Upsert each finding by (pattern_type, entity).

        Existing rows get confidence, evidence and description overwritten
        and their observation count incremented; new rows start at 1.

        Returns:
            Dict with inserted/updated counts
        """
        counts = {"inserted": 0, "updated": 0}
        now = datetime.utcnow()

        async with self._store_access("upsert_patterns"):
            for finding in findings:
                result = await self.session.execute(
                    select(DetectedPattern).where(
                        DetectedPattern.pattern_type == finding.pattern_type,
                        DetectedPattern.entity == finding.entity,
                    )
                )
                existing = result.scalars().first()
                evidence = list(finding.evidence[:evidence_limit])

                if existing:
                    existing.confidence = finding.confidence
                    existing.evidence = evidence
                    existing.description = finding.description
                    existing.cycle_count += 1
                    existing.last_updated_at = now
                    counts["updated"] += 1
                else:
                    self.session.add(DetectedPattern(
                        pattern_type=finding.pattern_type,
                        entity=finding.entity,
                        confidence=finding.confidence,
                        evidence=evidence,
                        description=finding.description,
                        cycle_count=1,
                        first_detected_at=now,
                        last_updated_at=now,
                    ))
                    counts["inserted"] += 1

                # Same key may appear again later in the batch
                await self.session.flush()

            await self.session.commit()

        logger.info(f"[PATTERNS] Upserted patterns: {counts['inserted']} new, {counts['updated']} updated")
        return counts

    async def save_active_config(self, config: TuningConfig) -> AdaptiveConfig:
        """Update the active configuration in place, or insert it if none exists."""
        now = datetime.utcnow()

        async with self._store_access("save_active_config"):
            result = await self.session.execute(
                select(AdaptiveConfig).where(AdaptiveConfig.is_active == True)  # noqa: E712
            )
            row = result.scalars().first()
            if row is None:
                row = AdaptiveConfig(is_active=True, created_at=now)
                self.session.add(row)

            row.boldness_level = config.boldness_level
            row.surprise_threshold_low = config.surprise_threshold_low
            row.surprise_threshold_high = config.surprise_threshold_high
            row.confidence_adjustment = config.confidence_adjustment
            row.claim_count_target = config.claim_count_target
            row.rationale = config.rationale
            row.based_on_accuracy = config.based_on_accuracy
            row.based_on_trend = config.based_on_trend
            row.based_on_cycles = config.based_on_cycles
            row.updated_at = now

            await self.session.commit()
            await self.session.refresh(row)

        return row

    async def append_cycle(
        self,
        title: str,
        summary: str = "",
        claims: Optional[list[NewClaim]] = None,
        estimates: Optional[list[NewEstimate]] = None,
        reflections: Optional[list[ReflectionRecord]] = None,
    ) -> Cycle:
        """
        Store a new cycle with the next sequence number.

        Estimates are ranked by probability (highest = 1) and carry the
        change from the most recent earlier cycle that mentioned the same
        entity. Raw surprise scores are discretized with the active
        configuration's thresholds (baseline 3/7 when none is active).

        Raises:
            ValueError: an estimate probability outside 0-100
        """
        claims = claims or []
        estimates = estimates or []
        reflections = reflections or []

        for estimate in estimates:
            if not 0 <= estimate.probability <= 100:
                raise ValueError(f"Probability out of range for {estimate.entity_name}: {estimate.probability}")

        active = await self.get_active_config()
        low = active.surprise_threshold_low if active else BASELINE_SURPRISE_LOW
        high = active.surprise_threshold_high if active else BASELINE_SURPRISE_HIGH

        async with self._store_access("append_cycle"):
            result = await self.session.execute(select(func.max(Cycle.cycle_number)))
            next_number = (result.scalar() or 0) + 1

            previous = {}
            names = [e.entity_name for e in estimates]
            if names:
                result = await self.session.execute(
                    select(Estimate.entity_name, Estimate.probability)
                    .join(Cycle, Cycle.id == Estimate.cycle_id)
                    .where(Estimate.entity_name.in_(names))
                    .order_by(Cycle.cycle_number.desc())
                )
                for name, probability in result.all():
                    previous.setdefault(name, probability)

            cycle = Cycle(cycle_number=next_number, title=title, summary=summary)
            self.session.add(cycle)
            await self.session.flush()

            for claim in claims:
                self.session.add(Claim(
                    cycle_id=cycle.id,
                    text=claim.text,
                    is_validated=claim.is_validated,
                    surprise_level=classify_surprise(claim.surprise_score, low, high),
                    surprise_score=claim.surprise_score,
                    evidence=claim.evidence,
                ))

            ranked = sorted(estimates, key=lambda e: e.probability, reverse=True)
            for rank, estimate in enumerate(ranked, start=1):
                prior = previous.get(estimate.entity_name)
                self.session.add(Estimate(
                    cycle_id=cycle.id,
                    entity_name=estimate.entity_name,
                    entity_code=estimate.entity_code,
                    probability=estimate.probability,
                    rank=rank,
                    change_from_previous=round(estimate.probability - prior, 2) if prior is not None else None,
                ))

            for reflection in reflections:
                self.session.add(Reflection(
                    cycle_id=cycle.id,
                    reflection_type=reflection.reflection_type,
                    content=reflection.content,
                ))

            await self.session.commit()
            await self.session.refresh(cycle)

        logger.info(
            f"[STORE] Appended cycle {next_number}: {len(claims)} claims, {len(estimates)} estimates"
        )
        return cycle

    async def record_claim_outcome(
        self,
        claim_id: int,
        actual_outcome: bool,
        outcome_date: date,
        evidence: str = "",
    ) -> ClaimOutcome:
        """Insert or update the single outcome of a claim."""
        async with self._store_access("record_claim_outcome"):
            claim = await self.session.get(Claim, claim_id)
            if claim is None:
                raise ValueError(f"Unknown claim id {claim_id}")

            result = await self.session.execute(
                select(ClaimOutcome).where(ClaimOutcome.claim_id == claim_id)
            )
            outcome = result.scalars().first()
            if outcome is None:
                outcome = ClaimOutcome(claim_id=claim_id, actual_outcome=actual_outcome, outcome_date=outcome_date)
                self.session.add(outcome)

            outcome.actual_outcome = actual_outcome
            outcome.outcome_date = outcome_date
            outcome.evidence = evidence
            outcome.updated_at = datetime.utcnow()

            await self.session.commit()
            await self.session.refresh(outcome)

        return outcome

    async def record_estimate_outcome(
        self,
        estimate_id: int,
        actual_result: str,
        result_date: date,
    ) -> EstimateOutcome:
        """
        Insert or update the single outcome of an estimate.

        The calibration score is recomputed from the estimate's probability
        on every write; pending results carry no score.
        """
        if actual_result not in ESTIMATE_RESULTS + (PENDING_RESULT,):
            raise ValueError(f"Unknown estimate result: {actual_result!r}")

        async with self._store_access("record_estimate_outcome"):
            estimate = await self.session.get(Estimate, estimate_id)
            if estimate is None:
                raise ValueError(f"Unknown estimate id {estimate_id}")
            # A bad stored probability raises before anything is staged
            score = calibration_score(estimate.probability, actual_result)

            result = await self.session.execute(
                select(EstimateOutcome).where(EstimateOutcome.estimate_id == estimate_id)
            )
            outcome = result.scalars().first()
            if outcome is None:
                outcome = EstimateOutcome(
                    estimate_id=estimate_id, actual_result=actual_result, result_date=result_date
                )
                self.session.add(outcome)

            outcome.actual_result = actual_result
            outcome.result_date = result_date
            outcome.calibration_score = score
            outcome.updated_at = datetime.utcnow()

            await self.session.commit()
            await self.session.refresh(outcome)

        return outcome

    async def reset_history(self) -> dict:
        """
        Delete every cycle and everything attached to it.

        Detected patterns and the adaptive configuration are kept.
        """
        deleted = {}
        async with self._store_access("reset_history"):
            # Children before parents
            for model in (ClaimOutcome, EstimateOutcome, Claim, Estimate, Reflection, Cycle):
                result = await self.session.execute(delete(model))
                deleted[model.__tablename__] = result.rowcount or 0
            await self.session.commit()

        logger.warning(f"[STORE] History reset: {deleted}")
        return deleted
