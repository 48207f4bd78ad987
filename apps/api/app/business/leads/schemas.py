from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


LeadStatus = Literal["new", "contacted", "qualified", "converted", "lost"]
AssignmentStrategy = Literal["round_robin", "load_balanced"]
StaffRole = Literal["sales", "admin"]


class LeadCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=255)
    source: str = Field(default="web", min_length=1, max_length=64)
    score: int = Field(default=0, ge=0, le=100)


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: str | None
    company: str | None
    source: str
    status: LeadStatus
    assigned_to: str | None
    score: int
    created_at: datetime
    assigned_at: datetime | None
    contacted_at: datetime | None


class SalesRepUpsert(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    display_name: str | None = Field(default=None, max_length=255)
    role: StaffRole = "sales"
    active: bool = True


class SalesRepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    display_name: str | None
    role: str
    active: bool


class AutoAssignRequest(BaseModel):
    strategy: AssignmentStrategy | None = None


class AssignmentRead(BaseModel):
    assigned_to: str
    strategy: AssignmentStrategy
    notified: bool
    lead: LeadRead


class SlaRead(BaseModel):
    lead_id: UUID
    compliant: bool
    response_minutes: float
    contact_hours: float


class EscalationRead(BaseModel):
    escalated: int
    notifications_sent: int


class RoutingStatsRead(BaseModel):
    total_leads: int
    assigned_leads: int
    unassigned_leads: int
    average_assignment_minutes: float
    sla_compliance: float
