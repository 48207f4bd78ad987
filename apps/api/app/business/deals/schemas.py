from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


DealStage = Literal["lead", "qualified", "proposal", "negotiation", "closed_won", "closed_lost"]


class DealCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    client_id: str = Field(min_length=1, max_length=128)
    owner_id: str | None = Field(default=None, max_length=128)
    value: Decimal = Field(ge=Decimal("0"))
    stage: DealStage = "lead"
    expected_close_date: date | None = None


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    client_id: str
    owner_id: str | None
    value: Decimal
    stage: DealStage
    probability: Decimal
    expected_close_date: date | None
    stage_entered_at: datetime
    closed_at: datetime | None
    row_version: int
    created_at: datetime
    updated_at: datetime


class DealStageChange(BaseModel):
    stage: DealStage
    row_version: int | None = None


class ProbabilityFactorsIn(BaseModel):
    engagement_score: float | None = Field(default=None, ge=0, le=100)
    days_in_stage: float | None = Field(default=None, ge=0)
    budget_confirmed: bool = False
    decision_maker_engaged: bool = False
    competitor_present: bool = False


class ProbabilityUpdateRead(BaseModel):
    deal_id: UUID
    previous_probability: Decimal
    probability: Decimal


class StageForecast(BaseModel):
    count: int
    value: Decimal
    probability: int


class SalesForecastRead(BaseModel):
    total_pipeline_value: Decimal
    weighted_pipeline_value: Decimal
    expected_revenue: Decimal
    deals: list[DealRead]
    by_stage: dict[str, StageForecast]


class WinRateRead(BaseModel):
    win_rate: float
    closed_deals: int


class DealCycleRead(BaseModel):
    average_days: int


class AutoUpdateRead(BaseModel):
    updated: int
