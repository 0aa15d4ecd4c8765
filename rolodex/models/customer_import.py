"""Import model for CSV customer import tracking."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from rolodex.core.database import Base
from rolodex.models.job_status import JobStatus
from rolodex.models.shared import UUIDType, generate_uuid, utc_now

DEFAULT_IMPORT_OPTIONS = {"delimiter": ",", "encoding": "UTF-8", "has_headers": True}


class Import(Base):
    """Import model - tracks a CSV upload and its row-by-row processing."""

    __tablename__ = "imports"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = Column(String(255), nullable=False, unique=True)
    original_filename = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    successful_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    validation_errors = Column(JSON, nullable=True)
    row_errors = Column(JSON, nullable=True)
    options = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_IMPORT_OPTIONS))
    file_path = Column(String(2048), nullable=True)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def success_rate(self) -> float:
        total = self.total_rows or 0
        if total == 0:
            return 0.0
        return round((self.successful_rows or 0) / total * 100, 2)
