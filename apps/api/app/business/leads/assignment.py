from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone


STRATEGIES = ("round_robin", "load_balanced")
OPEN_LEAD_STATUSES = ("new", "contacted", "qualified")


@dataclass(frozen=True, slots=True)
class SlaPolicy:
    response_minutes: int = 15
    contact_hours: int = 24


@dataclass(frozen=True, slots=True)
class SlaReport:
    compliant: bool
    response_minutes: float
    contact_hours: float


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def pick_round_robin(reps: Sequence[str], position: int) -> tuple[str, int]:
    """Returns the rep at ``position`` and the cursor position for the next call."""
    if not reps:
        raise ValueError("no sales reps to assign")
    index = position % len(reps)
    return reps[index], (index + 1) % len(reps)


def pick_load_balanced(reps: Sequence[str], open_counts: Mapping[str, int]) -> str:
    if not reps:
        raise ValueError("no sales reps to assign")
    # min() keeps the first rep among equal counts.
    return min(reps, key=lambda rep: open_counts.get(rep, 0))


def evaluate_sla(
    created_at: datetime,
    assigned_at: datetime | None,
    contacted_at: datetime | None,
    now: datetime,
    policy: SlaPolicy,
) -> SlaReport:
    created = as_utc(created_at)
    response_end = as_utc(assigned_at) if assigned_at is not None else as_utc(now)
    contact_end = as_utc(contacted_at) if contacted_at is not None else as_utc(now)
    response_minutes = (response_end - created).total_seconds() / 60
    contact_hours = (contact_end - created).total_seconds() / 3600
    return SlaReport(
        compliant=response_minutes <= policy.response_minutes and contact_hours <= policy.contact_hours,
        response_minutes=response_minutes,
        contact_hours=contact_hours,
    )


def is_contact_overdue(created_at: datetime, contacted_at: datetime | None, now: datetime, policy: SlaPolicy) -> bool:
    if contacted_at is not None:
        return False
    return (as_utc(now) - as_utc(created_at)).total_seconds() > policy.contact_hours * 3600


def assignment_message(lead_name: str, company: str | None, policy: SlaPolicy) -> str:
    return (
        f"New lead assigned: {lead_name} from {company or 'Unknown Company'}. "
        f"Contact within {policy.contact_hours} hours."
    )
