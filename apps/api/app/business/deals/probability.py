from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal


STAGE_PROBABILITIES: dict[str, int] = {
    "lead": 10,
    "qualified": 25,
    "proposal": 50,
    "negotiation": 75,
    "closed_won": 100,
    "closed_lost": 0,
}
CLOSED_STAGES = frozenset({"closed_won", "closed_lost"})

ENGAGEMENT_BASELINE = Decimal("50")
ENGAGEMENT_WEIGHT = Decimal("0.2")
STALE_DAYS = 60
SLOW_DAYS = 30


@dataclass(frozen=True, slots=True)
class ProbabilityFactors:
    engagement_score: float | None = None
    days_in_stage: float | None = None
    budget_confirmed: bool = False
    decision_maker_engaged: bool = False
    competitor_present: bool = False


def base_probability(stage: str) -> Decimal:
    return Decimal(STAGE_PROBABILITIES.get(stage, 0))


def time_in_stage_penalty(days_in_stage: float | None) -> Decimal:
    if days_in_stage is None:
        return Decimal("0")
    # Longer threshold first.
    if days_in_stage > STALE_DAYS:
        return Decimal("20")
    if days_in_stage > SLOW_DAYS:
        return Decimal("10")
    return Decimal("0")


def calculate_probability(stage: str, factors: ProbabilityFactors | None = None) -> Decimal:
    factors = factors or ProbabilityFactors()
    probability = base_probability(stage)

    if factors.engagement_score is not None:
        probability += (Decimal(str(factors.engagement_score)) - ENGAGEMENT_BASELINE) * ENGAGEMENT_WEIGHT
    probability -= time_in_stage_penalty(factors.days_in_stage)
    if factors.budget_confirmed:
        probability += Decimal("10")
    if factors.decision_maker_engaged:
        probability += Decimal("15")
    if factors.competitor_present:
        probability -= Decimal("15")

    clamped = max(Decimal("0"), min(Decimal("100"), probability))
    return clamped.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def weighted_value(value: Decimal, probability: Decimal) -> Decimal:
    return (value * probability / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
