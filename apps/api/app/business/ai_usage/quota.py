from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal


AlertLevel = Literal["warning", "critical"]

CRITICAL_PERCENT = 90
WARNING_PERCENT = 75


@dataclass(frozen=True, slots=True)
class UsageAlert:
    level: AlertLevel
    message: str
    usage_percentage: float
    cost_percentage: float


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    allowed: bool
    reason: str | None = None


def percentage(used: int | Decimal, limit: int | Decimal) -> float:
    if limit <= 0:
        return 100.0
    return float(Decimal(used) / Decimal(limit) * 100)


def check_usage_alert(usage: int, cost: Decimal, monthly_limit: int, cost_limit: Decimal) -> UsageAlert | None:
    usage_pct = percentage(usage, monthly_limit)
    cost_pct = percentage(cost, cost_limit)
    if usage_pct >= CRITICAL_PERCENT or cost_pct >= CRITICAL_PERCENT:
        return UsageAlert(
            level="critical",
            message="You have used 90% of your AI quota. Consider upgrading your plan.",
            usage_percentage=round(usage_pct, 2),
            cost_percentage=round(cost_pct, 2),
        )
    if usage_pct >= WARNING_PERCENT or cost_pct >= WARNING_PERCENT:
        return UsageAlert(
            level="warning",
            message="You have used 75% of your AI quota.",
            usage_percentage=round(usage_pct, 2),
            cost_percentage=round(cost_pct, 2),
        )
    return None


def evaluate_request(usage: int, cost: Decimal, monthly_limit: int, cost_limit: Decimal, estimated_tokens: int = 0) -> QuotaDecision:
    if usage + estimated_tokens > monthly_limit:
        return QuotaDecision(False, "Monthly token limit exceeded")
    if cost >= cost_limit:
        return QuotaDecision(False, "Monthly cost limit exceeded")
    return QuotaDecision(True)


def is_approaching_limit(usage: int, cost: Decimal, monthly_limit: int, cost_limit: Decimal) -> bool:
    return percentage(usage, monthly_limit) >= WARNING_PERCENT or percentage(cost, cost_limit) >= WARNING_PERCENT


def add_one_month(moment: datetime) -> datetime:
    month = moment.month + 1
    year = moment.year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
