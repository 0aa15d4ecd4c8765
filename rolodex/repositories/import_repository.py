"""Import repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from rolodex.models.customer_import import Import
from rolodex.models.job_status import JobStatus
from rolodex.models.shared import utc_now
from rolodex.repositories.job_state import transition_status
from rolodex.repositories.scoping import get_owned


class ImportRepository:
    """Repository for Import model."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, user_id: UUID) -> Query:  # type: ignore[type-arg]
        return self.db.query(Import).filter(Import.user_id == user_id)

    def get_all(self, user_id: UUID, skip: int = 0, limit: int = 100) -> list[Import]:
        """List imports for a user, newest first."""
        return (
            self._query(user_id)
            .order_by(Import.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count(self, user_id: UUID) -> int:
        return (
            self.db.query(func.count(Import.id)).filter(Import.user_id == user_id).scalar() or 0
        )

    def find(self, user_id: UUID, import_id: UUID) -> Import | None:
        return self._query(user_id).filter(Import.id == import_id).first()

    def create(self, user_id: UUID, **fields: Any) -> Import:
        import_ = Import(user_id=user_id, **fields)
        self.db.add(import_)
        self.db.commit()
        self.db.refresh(import_)
        return import_

    def update(self, user_id: UUID, import_id: UUID, **fields: Any) -> Import | None:
        import_ = get_owned(self.db, Import, "Import", user_id, import_id)
        if not import_:
            return None
        for key, value in fields.items():
            setattr(import_, key, value)
        self.db.commit()
        self.db.refresh(import_)
        return import_

    def transition(self, user_id: UUID, import_id: UUID, target: JobStatus, **fields: Any) -> bool:
        """Conditionally move the import to ``target``; see ``transition_status``."""
        return transition_status(self.db, Import, "Import", user_id, import_id, target, **fields)

    def reclaim(self, user_id: UUID, import_id: UUID, **fields: Any) -> bool:
        """Re-enter ``processing`` for an import whose previous attempt died mid-run."""
        return transition_status(
            self.db,
            Import,
            "Import",
            user_id,
            import_id,
            JobStatus.PROCESSING,
            from_statuses=[JobStatus.PROCESSING],
            **fields,
        )

    def get_stale(self, before: datetime) -> list[Import]:
        """Imports still processing with no update since ``before``, across all users."""
        return (
            self.db.query(Import)
            .filter(Import.status == JobStatus.PROCESSING.value, Import.updated_at < before)
            .all()
        )

    def update_progress(
        self,
        user_id: UUID,
        import_id: UUID,
        *,
        processed_rows: int,
        successful_rows: int,
        failed_rows: int,
        row_errors: dict[str, list[str]],
        total_rows: int | None = None,
    ) -> bool:
        """Persist all counters in one statement while the import is processing.

        Returns False once the import has left ``processing`` (e.g. cancelled),
        which tells the worker to stop.
        """
        values: dict[str, Any] = {
            "processed_rows": processed_rows,
            "successful_rows": successful_rows,
            "failed_rows": failed_rows,
            "row_errors": row_errors,
            "updated_at": utc_now(),
        }
        if total_rows is not None:
            values["total_rows"] = total_rows
        updated = (
            self.db.query(Import)
            .filter(
                Import.id == import_id,
                Import.user_id == user_id,
                Import.status == JobStatus.PROCESSING.value,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def delete(self, user_id: UUID, import_id: UUID) -> bool:
        import_ = get_owned(self.db, Import, "Import", user_id, import_id)
        if not import_:
            return False
        self.db.delete(import_)
        self.db.commit()
        return True

    def get_recent(self, user_id: UUID, limit: int = 10) -> list[Import]:
        return self._query(user_id).order_by(Import.created_at.desc()).limit(limit).all()

    def get_by_status(self, user_id: UUID, status: JobStatus) -> list[Import]:
        return (
            self._query(user_id)
            .filter(Import.status == status.value)
            .order_by(Import.created_at.desc())
            .all()
        )

    def get_processing(self, user_id: UUID) -> list[Import]:
        return (
            self._query(user_id)
            .filter(Import.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value]))
            .order_by(Import.created_at.desc())
            .all()
        )

    def status_counts(self, user_id: UUID) -> dict[str, int]:
        rows = (
            self.db.query(Import.status, func.count(Import.id))
            .filter(Import.user_id == user_id)
            .group_by(Import.status)
            .all()
        )
        return {str(status): int(count) for status, count in rows}

    def row_totals(self, user_id: UUID) -> tuple[int, int]:
        """Sum of (total_rows, successful_rows) over completed imports."""
        total, successful = (
            self.db.query(func.sum(Import.total_rows), func.sum(Import.successful_rows))
            .filter(Import.user_id == user_id, Import.status == JobStatus.COMPLETED.value)
            .one()
        )
        return int(total or 0), int(successful or 0)
