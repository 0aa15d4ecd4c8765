"""Activity model - append-only audit trail entries."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from rolodex.core.database import Base
from rolodex.models.shared import UUIDType, generate_uuid, utc_now


class Activity(Base):
    """Activity model - one recorded mutation of a subject by a user."""

    __tablename__ = "activities"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_type = Column(String(50), nullable=False, default="customer", index=True)
    # Deleted customers keep their history, so no foreign key here.
    subject_id = Column(UUIDType, nullable=True, index=True)
    event = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    properties = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
