from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


AIService = Literal["gemini", "openai", "claude"]
AIOperation = Literal["contract_generation", "content_creation", "ai_architect", "search", "email_campaign"]


class QuotaRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    monthly_limit: int
    current_usage: int
    cost_limit: Decimal
    current_cost: Decimal
    reset_date: datetime


class UsageCreate(BaseModel):
    user_id: str | None = Field(default=None, max_length=128)
    service: AIService
    operation: AIOperation
    tokens_used: int = Field(ge=0)
    cost: Decimal = Field(ge=Decimal("0"))


class UsageAlertRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: Literal["warning", "critical"]
    message: str
    usage_percentage: float
    cost_percentage: float


class TrackUsageRead(BaseModel):
    success: bool
    alert: UsageAlertRead | None = None
    quota: QuotaRead


class CanUseRead(BaseModel):
    allowed: bool
    reason: str | None = None
    quota: QuotaRead


class UsageBucket(BaseModel):
    tokens: int = 0
    cost: Decimal = Decimal("0")


class DailyUsage(BaseModel):
    day: date
    tokens: int
    cost: Decimal


class UsageStatsRead(BaseModel):
    total_tokens: int
    total_cost: Decimal
    by_service: dict[str, UsageBucket]
    by_operation: dict[str, UsageBucket]
    daily_usage: list[DailyUsage]


class QuotaLimitsUpdate(BaseModel):
    monthly_limit: int | None = Field(default=None, ge=0)
    cost_limit: Decimal | None = Field(default=None, ge=Decimal("0"))

    @model_validator(mode="after")
    def require_one_limit(self) -> "QuotaLimitsUpdate":
        if self.monthly_limit is None and self.cost_limit is None:
            raise ValueError("monthly_limit or cost_limit is required")
        return self
