"""Audit trail schemas."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    subject_type: str
    subject_id: UUID | None = None
    event: str
    description: str
    properties: dict[str, Any]
    created_at: datetime


class CustomerActivityCount(BaseModel):
    subject_id: UUID
    activity_count: int


class AuditStatistics(BaseModel):
    total_activities: int
    activities_today: int
    activities_this_week: int
    activities_this_month: int
    event_breakdown: dict[str, int]
    most_active_customers: list[CustomerActivityCount]


class ActivityFrequency(BaseModel):
    per_day: float = 0.0
    per_week: float = 0.0
    per_month: float = 0.0


class ActivitySummary(BaseModel):
    customer_id: UUID
    total_activities: int
    first_activity: datetime | None = None
    last_activity: datetime | None = None
    event_breakdown: dict[str, int]
    most_recent_event: str | None = None
    activity_frequency: ActivityFrequency


class FormattedActivity(BaseModel):
    """An activity with its customer and causer resolved for display."""

    id: UUID
    event: str
    description: str
    changes: dict[str, Any]
    causer: str
    subject: str
    created_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class PeriodStatistics(BaseModel):
    period: Literal["7days", "30days", "90days"]
    total_activities: int
    event_breakdown: dict[str, int]
    daily_breakdown: dict[str, int]


class AuditArchive(BaseModel):
    path: str
    size: int
    last_modified: datetime


class AuditExportRequest(BaseModel):
    date_from: datetime
    date_to: datetime
    format: Literal["csv", "json"] = "csv"


class ActivityLogCreate(BaseModel):
    event: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1, max_length=1000)
    properties: dict[str, Any] = Field(default_factory=dict)
