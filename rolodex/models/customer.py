"""Customer model - a contact record owned by a single user."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint

from rolodex.core.database import Base
from rolodex.models.shared import UUIDType, generate_uuid, utc_now

# Fields recorded in the audit trail when they change.
TRACKED_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "organization",
    "job_title",
    "birthdate",
    "notes",
)


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("user_id", "email", name="uq_customers_user_email"),
        UniqueConstraint("user_id", "slug", name="uq_customers_user_slug"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    organization = Column(String(255), nullable=True, index=True)
    job_title = Column(String(255), nullable=True)
    birthdate = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    slug = Column(String(60), nullable=False)
    source_import_id = Column(UUIDType, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def display_name(self) -> str:
        return self.full_name or str(self.email)

    def tracked_values(self) -> dict[str, str | None]:
        """Snapshot of audited fields, rendered as strings."""
        values: dict[str, str | None] = {}
        for name in TRACKED_FIELDS:
            value = getattr(self, name)
            values[name] = value.isoformat() if hasattr(value, "isoformat") else value
        return values
