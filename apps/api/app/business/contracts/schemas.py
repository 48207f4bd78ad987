from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


ContractStatus = Literal["draft", "sent", "signed", "expired", "terminated"]


class ContractCreate(BaseModel):
    client_id: str = Field(min_length=1, max_length=128)
    project_id: UUID | None = None
    title: str = Field(min_length=1, max_length=255)
    content: str = ""
    status: ContractStatus = "draft"
    start_date: date
    end_date: date
    auto_renew: bool = False
    renewal_notice_days: int = Field(default=30, ge=0, le=365)

    @model_validator(mode="after")
    def check_dates(self) -> "ContractCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ContractRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    client_id: str
    project_id: UUID | None
    title: str
    status: ContractStatus
    start_date: date
    end_date: date
    auto_renew: bool
    renewal_notice_days: int
    signed_at: datetime | None
    terminated_reason: str | None
    created_at: datetime
    updated_at: datetime


class ExpirationAlertRead(BaseModel):
    contract: ContractRead
    days_until_expiration: int
    alert_level: Literal["info", "warning", "urgent"]
    recommended_action: str


class RenewRequest(BaseModel):
    new_end_date: date | None = None


class TerminateRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class BatchResultRead(BaseModel):
    processed: int
    errors: int


class RenewalStatsRead(BaseModel):
    total_active: int
    expiring_in_30_days: int
    expiring_in_60_days: int
    expiring_in_90_days: int
    auto_renew_enabled: int
