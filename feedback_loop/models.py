"""Database models using SQLModel."""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, Relationship, SQLModel


class Cycle(SQLModel, table=True):
    """One completed research cycle (append-only)."""

    __tablename__ = "cycles"

    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_number: int = Field(unique=True, index=True, description="Monotonic sequence number")
    title: str = Field(max_length=500)
    summary: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    # Relationships
    claims: list["Claim"] = Relationship(back_populates="cycle")
    estimates: list["Estimate"] = Relationship(back_populates="cycle")
    reflections: list["Reflection"] = Relationship(back_populates="cycle")


class Claim(SQLModel, table=True):
    """A boolean hypothesis produced in a cycle."""

    __tablename__ = "claims"

    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_id: int = Field(foreign_key="cycles.id", index=True)
    text: str = Field(description="Hypothesis text")
    is_validated: bool = Field(description="Initial self-assessed validity")
    surprise_level: str = Field(max_length=10, description="'Low', 'Medium' or 'High'")
    surprise_score: Optional[float] = Field(default=None, description="Raw 1-10 score before discretization")
    evidence: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    cycle: Optional[Cycle] = Relationship(back_populates="claims")
    outcome: Optional["ClaimOutcome"] = Relationship(
        back_populates="claim",
        sa_relationship_kwargs={"uselist": False},
    )


class ClaimOutcome(SQLModel, table=True):
    """Actual outcome of a claim (at most one per claim)."""

    __tablename__ = "claim_outcomes"

    id: Optional[int] = Field(default=None, primary_key=True)
    claim_id: int = Field(foreign_key="claims.id", unique=True, index=True)
    actual_outcome: bool = Field(description="True if the hypothesis came true")
    outcome_date: date
    evidence: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    claim: Optional[Claim] = Relationship(back_populates="outcome")


class Estimate(SQLModel, table=True):
    """Per-entity probability of winning the top prize by season end."""

    __tablename__ = "estimates"
    __table_args__ = (
        UniqueConstraint("cycle_id", "rank", name="uq_estimates_cycle_rank"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_id: int = Field(foreign_key="cycles.id", index=True)
    entity_code: str = Field(max_length=10)
    entity_name: str = Field(max_length=255, index=True)
    probability: float = Field(description="0-100")
    rank: int = Field(description="1 = highest probability in the cycle")
    change_from_previous: Optional[float] = Field(
        default=None, description="Delta vs the previous cycle that mentioned the entity"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    cycle: Optional[Cycle] = Relationship(back_populates="estimates")
    outcome: Optional["EstimateOutcome"] = Relationship(
        back_populates="estimate",
        sa_relationship_kwargs={"uselist": False},
    )


class EstimateOutcome(SQLModel, table=True):
    """Season result for an estimate, with its calibration score."""

    __tablename__ = "estimate_outcomes"

    id: Optional[int] = Field(default=None, primary_key=True)
    estimate_id: int = Field(foreign_key="estimates.id", unique=True, index=True)
    actual_result: str = Field(
        max_length=20,
        description="won_top_prize, reached_final, reached_playoffs, missed_playoffs, pending",
    )
    result_date: date
    calibration_score: Optional[float] = Field(
        default=None, description="Squared error in [0, 1]; NULL while pending"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    estimate: Optional[Estimate] = Relationship(back_populates="outcome")


class Reflection(SQLModel, table=True):
    """Free-text reflection attached to a cycle."""

    __tablename__ = "reflections"

    id: Optional[int] = Field(default=None, primary_key=True)
    cycle_id: int = Field(foreign_key="cycles.id", index=True)
    reflection_type: str = Field(max_length=30, description="'learned', 'surprised', 'next_focus', ...")
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    cycle: Optional[Cycle] = Relationship(back_populates="reflections")


class DetectedPattern(SQLModel, table=True):
    """Recurring bias keyed by (pattern_type, entity)."""

    __tablename__ = "detected_patterns"
    __table_args__ = (
        UniqueConstraint("pattern_type", "entity", name="uq_detected_patterns_type_entity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    pattern_type: str = Field(max_length=20, index=True)
    entity: str = Field(max_length=255)
    confidence: float = Field(description="0-100")
    evidence: Optional[list] = Field(default=None, sa_column=Column(JSON))
    description: str = Field(default="")
    cycle_count: int = Field(default=1, description="Observation count, +1 per re-detection")
    first_detected_at: datetime = Field(default_factory=datetime.utcnow)
    last_updated_at: datetime = Field(default_factory=datetime.utcnow)


class AdaptiveConfig(SQLModel, table=True):
    """Tuning parameters fed into the next cycle. At most one row is active."""

    __tablename__ = "adaptive_config"
    __table_args__ = (
        Index(
            "uq_adaptive_config_active",
            "is_active",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active = true"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    boldness_level: float = Field(default=50.0, description="0-100")
    surprise_threshold_low: float = Field(default=3.0)
    surprise_threshold_high: float = Field(default=7.0)
    confidence_adjustment: float = Field(default=0.0, description="-1.0 to +1.0")
    claim_count_target: int = Field(default=6)
    rationale: str = Field(default="")

    # Provenance
    based_on_accuracy: Optional[float] = Field(default=None)
    based_on_trend: Optional[str] = Field(default=None, max_length=20)
    based_on_cycles: Optional[int] = Field(default=None)

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
