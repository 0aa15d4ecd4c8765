"""Export schemas."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rolodex.models.customer_export import ExportFormat
from rolodex.schemas.customer import CustomerFilters, CustomerResponse


class ExportOptions(BaseModel):
    include_notes: bool = False
    include_audit_trail: bool = False
    expires_days: int | None = Field(default=None, ge=1, le=90)


class ExportCreate(BaseModel):
    format: ExportFormat = ExportFormat.CSV
    filters: CustomerFilters = Field(default_factory=CustomerFilters)
    options: ExportOptions = Field(default_factory=ExportOptions)


class ExportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    filename: str
    type: str
    format: str
    status: str
    filters: dict[str, Any] | None = None
    filters_description: str
    options: dict[str, Any] | None = None
    total_records: int
    progress: int
    file_path: str | None = None
    file_size: int | None = None
    download_url: str | None = None
    error_message: str | None = None
    expires_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


DownloadState = Literal["ready", "not_found", "not_ready", "expired"]


class DownloadCheck(BaseModel):
    """Outcome of a download request; non-ready states are normal results."""

    status: DownloadState
    reason: str | None = None
    export: ExportResponse | None = None

    @property
    def ready(self) -> bool:
        return self.status == "ready"


class ExportStatistics(BaseModel):
    total_exports: int
    completed_exports: int
    failed_exports: int
    downloadable_exports: int
    total_records_exported: int
    format_breakdown: dict[str, int]
    recent_exports: list[ExportResponse]


class ExportPreview(BaseModel):
    total_count: int
    preview: list[CustomerResponse]
    filters_description: str
