"""Export model for customer export tracking."""

from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from rolodex.core.database import Base
from rolodex.models.job_status import JobStatus
from rolodex.models.shared import UUIDType, as_utc, generate_uuid, utc_now


class ExportFormat(str, Enum):
    """File formats an export can be rendered to."""

    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"


class ExportType(str, Enum):
    ALL = "all"
    FILTERED = "filtered"


FILTER_LABELS = {
    "search": "Search",
    "organization": "Organization",
    "job_title": "Job title",
    "created_from": "Created from",
    "created_to": "Created to",
}


def describe_filters(filters: dict[str, Any] | None) -> str:
    """Human readable summary, e.g. ``Search: 'ann', Organization: 'Acme'``."""
    filters = filters or {}
    parts = [f"{label}: '{filters[key]}'" for key, label in FILTER_LABELS.items() if filters.get(key)]
    return ", ".join(parts) if parts else "All customers"


class Export(Base):
    """Export model - tracks a customer export job and its artifact."""

    __tablename__ = "exports"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default=ExportType.ALL.value)
    filters = Column(JSON, nullable=True)
    format = Column(String(10), nullable=False, default=ExportFormat.CSV.value)
    options = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    total_records = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    file_path = Column(String(2048), nullable=True)
    file_size = Column(Integer, nullable=True)
    download_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def is_expired(self) -> bool:
        expires_at = as_utc(self.expires_at)  # type: ignore[arg-type]
        return expires_at is not None and expires_at <= utc_now()

    @property
    def filters_description(self) -> str:
        return describe_filters(self.filters)  # type: ignore[arg-type]
