from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal


AlertLevel = Literal["info", "warning", "urgent"]

URGENT_DAYS = 30
WARNING_DAYS = 60


@dataclass(frozen=True, slots=True)
class ExpirationClass:
    level: AlertLevel
    recommended_action: str


def days_until(end_date: date, today: date) -> int:
    return (end_date - today).days


def classify_expiration(days_until_expiration: int, auto_renew: bool) -> ExpirationClass:
    if days_until_expiration <= URGENT_DAYS:
        action = (
            "Prepare renewal documents immediately"
            if auto_renew
            else "Contact client urgently about renewal or termination"
        )
        return ExpirationClass("urgent", action)
    if days_until_expiration <= WARNING_DAYS:
        action = "Review renewal terms and notify client" if auto_renew else "Schedule renewal discussion with client"
        return ExpirationClass("warning", action)
    return ExpirationClass("info", "Monitor and plan for renewal discussion")


def default_renewal_end(end_date: date) -> date:
    """One year after ``end_date``; Feb 29 rolls back to Feb 28."""
    try:
        return end_date.replace(year=end_date.year + 1)
    except ValueError:
        return end_date.replace(year=end_date.year + 1, day=28)


def notification_priority(level: AlertLevel) -> str:
    return "high" if level == "urgent" else "normal"
