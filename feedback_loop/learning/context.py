"""
History Compression Engine.

Renders the cycle history as bounded natural-language text for reuse as
model input. Detail decreases with age according to an ordered list of
tiers; the default scheme is:

    age 1-10   FULL       title, summary, claims, top estimates, learned note
    age 11-30  MEDIUM     one line per cycle
    age 31+    AGGREGATE  one line per batch of 10 cycles

Token counts are estimates (chars / 4) from a swappable estimator; nothing
here calls a real tokenizer.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence

from feedback_loop.learning.history import CycleRecord

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]

EMPTY_HISTORY_TEXT = "No previous research cycles yet."
EMPTY_HISTORY_TOKENS = 7
HISTORY_HEADER = "### Previous Research Cycles (for reflection only):"

FULL_CLAIMS_LIMIT = 8
FULL_ESTIMATES_LIMIT = 6
MEDIUM_CLAIMS_LIMIT = 3
MEDIUM_ESTIMATES_LIMIT = 3
AGGREGATE_BATCH_SIZE = 10
FULL_DETAIL_TOKENS_PER_CYCLE = 200

SOFT_LIMIT_TOKENS = 50_000
HARD_LIMIT_TOKENS = 150_000

BUDGET_OK = "ok"
BUDGET_WARNING = "warning"
BUDGET_OVER_LIMIT = "over_limit"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: 1 token ~ 4 characters of English text."""
    return math.ceil(len(text) / 4)


class DetailLevel(str, Enum):
    FULL = "full"
    MEDIUM = "medium"
    AGGREGATE = "aggregate"


@dataclass(frozen=True)
class TierDefinition:
    """Cycles with age <= max_age (1 = newest) use this detail level; None = unbounded."""
    max_age: Optional[int]
    detail: DetailLevel


DEFAULT_TIERS = (
    TierDefinition(10, DetailLevel.FULL),
    TierDefinition(30, DetailLevel.MEDIUM),
    TierDefinition(None, DetailLevel.AGGREGATE),
)


@dataclass
class CompressedHistory:
    text: str
    token_estimate: int
    cycles_included: int
    compression_ratio: str  # e.g. "63%", or "N/A" for empty history


@dataclass
class BudgetReport:
    within_hard_limit: bool
    total: int
    per_component: dict[str, int]
    warning: Optional[str] = None
    level: str = BUDGET_OK


@dataclass
class ContextStats:
    total_cycles: int
    estimated_full_detail_tokens: int
    compressed_tokens: int
    compression_ratio: str
    projected_tokens: int


# =============================================================================
# TIER RENDERING
# =============================================================================


def _pct(value: float) -> str:
    return f"{value:.1f}%"


def _render_full(cycle: CycleRecord) -> str:
    lines = [
        f"Cycle {cycle.cycle_number} ({cycle.created_at:%Y-%m-%d}):",
        cycle.title,
        cycle.summary,
    ]

    claims = cycle.claims[:FULL_CLAIMS_LIMIT]
    if claims:
        rendered = "; ".join(
            f"{c.text} ({'✓' if c.is_validated else '✗'}, Surprise {c.surprise_level})"
            for c in claims
        )
        lines.append(f"Key Hypotheses: {rendered}")

    estimates = cycle.ranked_estimates()[:FULL_ESTIMATES_LIMIT]
    if estimates:
        lines.append("Top Teams: " + ", ".join(f"{e.entity_name} {_pct(e.probability)}" for e in estimates))

    learned = cycle.first_reflection("learned")
    if learned:
        lines.append(f"Learned: {learned.content}")

    return "\n".join(lines) + "\n\n"


def _render_medium(cycle: CycleRecord) -> str:
    line = f"Cycle {cycle.cycle_number}: {cycle.title}. "

    claims = cycle.claims[:MEDIUM_CLAIMS_LIMIT]
    if claims:
        validated = sum(1 for c in claims if c.is_validated)
        line += f"Validated {validated}/{len(claims)} hypotheses. "

    estimates = cycle.ranked_estimates()[:MEDIUM_ESTIMATES_LIMIT]
    if estimates:
        line += "Top: " + ", ".join(f"{e.entity_name} ({_pct(e.probability)})" for e in estimates) + ". "

    learned = cycle.first_reflection("learned")
    if learned:
        line += f"Learned: {learned.content}"

    return line.rstrip() + "\n"


def _render_batch(batch: list[CycleRecord]) -> str:
    """One line for a batch of cycles ordered newest first."""
    claims = [c for cycle in batch for c in cycle.claims]
    if claims:
        rate = f"{sum(1 for c in claims if c.is_validated) / len(claims) * 100:.0f}%"
    else:
        rate = "N/A"

    leaders = Counter()
    for cycle in batch:
        for estimate in cycle.estimates:
            if estimate.rank == 1:
                leaders[estimate.entity_name] += 1
    # most_common is stable, so ties keep first appearance (newest first).
    # Every leader is listed: an older cycle can only add or increment an entry.
    if leaders:
        most_predicted = ", ".join(f"{name} x{count}" for name, count in leaders.most_common())
    else:
        most_predicted = "N/A"

    # Fixed-width rate and newest-cycle label keep the line from shrinking
    return (
        f"{len(batch)} cycles through Cycle {batch[0].cycle_number}: "
        f"{rate:>4} validation accuracy, most predicted: {most_predicted}\n"
    )


def _render_section(detail: DetailLevel, cycles: list[CycleRecord], first_age: int) -> str:
    ages = f"{first_age}-{first_age + len(cycles) - 1}"

    if detail == DetailLevel.FULL:
        return "".join(_render_full(c) for c in cycles)

    if detail == DetailLevel.MEDIUM:
        body = "".join(_render_medium(c) for c in cycles)
        return f"### Cycles {ages} Back (Medium Detail):\n\n{body}\n"

    body = "".join(
        _render_batch(cycles[i:i + AGGREGATE_BATCH_SIZE])
        for i in range(0, len(cycles), AGGREGATE_BATCH_SIZE)
    )
    return f"### Cycles {ages} Back (Compressed Summary):\n\n{body}\n"


def _assign_tiers(
    cycles: list[CycleRecord],
    tiers: Sequence[TierDefinition],
) -> list[tuple[DetailLevel, list[CycleRecord], int]]:
    """Split newest-first cycles into (detail, members, first_age) sections."""
    sections = []
    position = 0
    for tier in tiers:
        if position >= len(cycles):
            break
        end = len(cycles) if tier.max_age is None else min(tier.max_age, len(cycles))
        if end > position:
            sections.append((tier.detail, cycles[position:end], position + 1))
            position = end
    if position < len(cycles):
        raise ValueError("Tier definitions do not cover every cycle; the last tier needs max_age=None")
    return sections


def format_ratio(tokens: int, full_detail_tokens: int) -> str:
    return f"{(1 - tokens / full_detail_tokens) * 100:.0f}%"


def compress_history(
    cycles: Sequence[CycleRecord],
    max_cycles: int = 100,
    estimator: Optional[TokenEstimator] = None,
    tiers: Optional[Sequence[TierDefinition]] = None,
    tokens_per_cycle: int = FULL_DETAIL_TOKENS_PER_CYCLE,
) -> CompressedHistory:
    """
    Render up to max_cycles of the newest cycles as tiered text.

    Requesting more cycles never lowers the token estimate: extra cycles are
    always older ones, so they only append text to the oldest tier or join
    the last aggregate batch. Section labels use ages and batch labels use
    the newest cycle number. The batch rate has a fixed width and the leader
    list only gains or increments entries, so no existing line gets shorter.
    """
    if max_cycles < 0:
        raise ValueError(f"max_cycles must be >= 0, got {max_cycles}")

    estimator = estimator or estimate_tokens
    tiers = tiers or DEFAULT_TIERS

    selected = sorted(cycles, key=lambda c: c.cycle_number, reverse=True)[:max_cycles]
    if not selected:
        return CompressedHistory(
            text=EMPTY_HISTORY_TEXT,
            token_estimate=EMPTY_HISTORY_TOKENS,
            cycles_included=0,
            compression_ratio="N/A",
        )

    parts = [HISTORY_HEADER + "\n\n"]
    for detail, members, first_age in _assign_tiers(selected, tiers):
        parts.append(_render_section(detail, members, first_age))
    text = "".join(parts)

    tokens = estimator(text)
    ratio = format_ratio(tokens, len(selected) * tokens_per_cycle)
    logger.debug(f"[CONTEXT] Compressed {len(selected)} cycles into ~{tokens} tokens ({ratio} saved)")

    return CompressedHistory(
        text=text,
        token_estimate=tokens,
        cycles_included=len(selected),
        compression_ratio=ratio,
    )


# =============================================================================
# BUDGET
# =============================================================================


def check_budget(
    components: Mapping[str, str],
    estimator: Optional[TokenEstimator] = None,
    soft_limit: int = SOFT_LIMIT_TOKENS,
    hard_limit: int = HARD_LIMIT_TOKENS,
) -> BudgetReport:
    """
    Sum the token estimates of named context pieces and classify the total.

    Expected names: system_prompt, history, patterns, accuracy,
    adaptive_config, domain_data (any mapping is accepted). Reports only;
    the caller decides what to shrink.
    """
    if soft_limit > hard_limit:
        raise ValueError(f"soft_limit ({soft_limit}) must not exceed hard_limit ({hard_limit})")

    estimator = estimator or estimate_tokens
    per_component = {name: estimator(text or "") for name, text in components.items()}
    total = sum(per_component.values())

    warning = None
    level = BUDGET_OK
    if total > hard_limit:
        level = BUDGET_OVER_LIMIT
        warning = f"Context exceeds hard limit! {total} > {hard_limit} tokens. Response may fail."
    elif total > soft_limit:
        level = BUDGET_WARNING
        warning = (
            f"Context exceeds target budget. {total} > {soft_limit} tokens. "
            f"Consider more aggressive compression."
        )

    if warning:
        logger.warning(f"[CONTEXT] {warning}")

    return BudgetReport(
        within_hard_limit=total <= hard_limit,
        total=total,
        per_component=per_component,
        warning=warning,
        level=level,
    )


def context_stats(
    total_cycles: int,
    compressed: CompressedHistory,
    project_to: int = 100,
    tokens_per_cycle: int = FULL_DETAIL_TOKENS_PER_CYCLE,
) -> ContextStats:
    """Compression statistics plus a linear projection at project_to cycles."""
    full_detail = total_cycles * tokens_per_cycle
    ratio = format_ratio(compressed.token_estimate, full_detail) if full_detail > 0 else "0%"
    projected = math.ceil(compressed.token_estimate / total_cycles * project_to) if total_cycles > 0 else 0

    return ContextStats(
        total_cycles=total_cycles,
        estimated_full_detail_tokens=full_detail,
        compressed_tokens=compressed.token_estimate,
        compression_ratio=ratio,
        projected_tokens=projected,
    )
