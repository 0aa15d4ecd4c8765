"""Export repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from rolodex.models.customer_export import Export
from rolodex.models.job_status import JobStatus
from rolodex.models.shared import utc_now
from rolodex.repositories.job_state import transition_status
from rolodex.repositories.scoping import get_owned


class ExportRepository:
    """Repository for Export model."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, user_id: UUID) -> Query:  # type: ignore[type-arg]
        return self.db.query(Export).filter(Export.user_id == user_id)

    def get_all(self, user_id: UUID, skip: int = 0, limit: int = 100) -> list[Export]:
        """List exports for a user, newest first."""
        return (
            self._query(user_id)
            .order_by(Export.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count(self, user_id: UUID) -> int:
        return (
            self.db.query(func.count(Export.id)).filter(Export.user_id == user_id).scalar() or 0
        )

    def find(self, user_id: UUID, export_id: UUID) -> Export | None:
        return self._query(user_id).filter(Export.id == export_id).first()

    def create(self, user_id: UUID, **fields: Any) -> Export:
        export = Export(user_id=user_id, **fields)
        self.db.add(export)
        self.db.commit()
        self.db.refresh(export)
        return export

    def update(self, user_id: UUID, export_id: UUID, **fields: Any) -> Export | None:
        export = get_owned(self.db, Export, "Export", user_id, export_id)
        if not export:
            return None
        for key, value in fields.items():
            setattr(export, key, value)
        self.db.commit()
        self.db.refresh(export)
        return export

    def transition(self, user_id: UUID, export_id: UUID, target: JobStatus, **fields: Any) -> bool:
        """Conditionally move the export to ``target``; see ``transition_status``."""
        return transition_status(self.db, Export, "Export", user_id, export_id, target, **fields)

    def reclaim(self, user_id: UUID, export_id: UUID, **fields: Any) -> bool:
        """Re-enter ``processing`` for an export whose previous attempt died mid-run."""
        return transition_status(
            self.db,
            Export,
            "Export",
            user_id,
            export_id,
            JobStatus.PROCESSING,
            from_statuses=[JobStatus.PROCESSING],
            **fields,
        )

    def get_stale(self, before: datetime) -> list[Export]:
        """Exports still processing with no update since ``before``, across all users."""
        return (
            self.db.query(Export)
            .filter(Export.status == JobStatus.PROCESSING.value, Export.updated_at < before)
            .all()
        )

    def update_progress(self, user_id: UUID, export_id: UUID, progress: int) -> bool:
        """Record progress while processing; False once the export left ``processing``."""
        updated = (
            self.db.query(Export)
            .filter(
                Export.id == export_id,
                Export.user_id == user_id,
                Export.status == JobStatus.PROCESSING.value,
            )
            .update({"progress": progress, "updated_at": utc_now()}, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def delete(self, user_id: UUID, export_id: UUID) -> bool:
        export = get_owned(self.db, Export, "Export", user_id, export_id)
        if not export:
            return False
        self.db.delete(export)
        self.db.commit()
        return True

    def get_recent(self, user_id: UUID, limit: int = 10) -> list[Export]:
        return self._query(user_id).order_by(Export.created_at.desc()).limit(limit).all()

    def get_by_status(self, user_id: UUID, status: JobStatus) -> list[Export]:
        return (
            self._query(user_id)
            .filter(Export.status == status.value)
            .order_by(Export.created_at.desc())
            .all()
        )

    def get_processing(self, user_id: UUID) -> list[Export]:
        return (
            self._query(user_id)
            .filter(Export.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value]))
            .order_by(Export.created_at.desc())
            .all()
        )

    def get_downloadable(self, user_id: UUID) -> list[Export]:
        """Completed, unexpired exports that still reference a stored file."""
        return (
            self._query(user_id)
            .filter(
                Export.status == JobStatus.COMPLETED.value,
                Export.file_path.isnot(None),
                Export.download_url.isnot(None),
                or_(Export.expires_at.is_(None), Export.expires_at > utc_now()),
            )
            .order_by(Export.created_at.desc())
            .all()
        )

    def get_expired(self, now: datetime | None = None) -> list[Export]:
        """Completed exports past their expiry that still hold a file, across all users."""
        now = now or utc_now()
        return (
            self.db.query(Export)
            .filter(
                Export.status == JobStatus.COMPLETED.value,
                Export.expires_at.isnot(None),
                Export.expires_at <= now,
                Export.file_path.isnot(None),
            )
            .all()
        )

    def mark_expired(self, user_id: UUID, export_id: UUID) -> bool:
        return self.transition(
            user_id, export_id, JobStatus.EXPIRED, file_path=None, download_url=None
        )

    def status_counts(self, user_id: UUID) -> dict[str, int]:
        rows = (
            self.db.query(Export.status, func.count(Export.id))
            .filter(Export.user_id == user_id)
            .group_by(Export.status)
            .all()
        )
        return {str(status): int(count) for status, count in rows}

    def format_counts(self, user_id: UUID) -> dict[str, int]:
        rows = (
            self.db.query(Export.format, func.count(Export.id))
            .filter(Export.user_id == user_id)
            .group_by(Export.format)
            .all()
        )
        return {str(fmt): int(count) for fmt, count in rows}

    def records_exported(self, user_id: UUID) -> int:
        total = (
            self.db.query(func.sum(Export.total_records))
            .filter(Export.user_id == user_id, Export.status == JobStatus.COMPLETED.value)
            .scalar()
        )
        return int(total or 0)
