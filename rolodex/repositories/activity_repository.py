"""Repository for the append-only Activity audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from rolodex.models.activity import Activity
from rolodex.models.customer import Customer
from rolodex.models.shared import generate_uuid
from rolodex.repositories.scoping import get_owned


class ActivityRepository:
    def __init__(self, db: Session):
        self.db = db

    def _query(self, user_id: UUID) -> Query:  # type: ignore[type-arg]
        return self.db.query(Activity).filter(Activity.user_id == user_id)

    def create(
        self,
        user_id: UUID,
        *,
        subject_type: str,
        subject_id: UUID | None,
        event: str,
        description: str,
        properties: dict[str, Any],
    ) -> Activity:
        activity = Activity(
            id=generate_uuid(),
            user_id=user_id,
            subject_type=subject_type,
            subject_id=subject_id,
            event=event,
            description=description,
            properties=properties,
        )
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        return activity

    def find(self, user_id: UUID, activity_id: UUID) -> Activity | None:
        return self._query(user_id).filter(Activity.id == activity_id).first()

    def get_customer_trail(
        self, user_id: UUID, customer_id: UUID, skip: int = 0, limit: int = 15
    ) -> list[Activity]:
        get_owned(self.db, Customer, "Customer", user_id, customer_id)
        return (
            self._query(user_id)
            .filter(Activity.subject_type == "customer", Activity.subject_id == customer_id)
            .order_by(Activity.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_for_customer(self, user_id: UUID, customer_id: UUID) -> int:
        get_owned(self.db, Customer, "Customer", user_id, customer_id)
        return (
            self._query(user_id)
            .filter(Activity.subject_type == "customer", Activity.subject_id == customer_id)
            .count()
        )

    def get_user_trail(self, user_id: UUID, skip: int = 0, limit: int = 15) -> list[Activity]:
        return (
            self._query(user_id)
            .order_by(Activity.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count(self, user_id: UUID) -> int:
        return self._query(user_id).count()

    def get_recent(self, user_id: UUID, limit: int = 10) -> list[Activity]:
        return self._query(user_id).order_by(Activity.created_at.desc()).limit(limit).all()

    def get_by_date_range(self, user_id: UUID, date_from: datetime, date_to: datetime) -> list[Activity]:
        return (
            self._query(user_id)
            .filter(Activity.created_at >= date_from, Activity.created_at <= date_to)
            .order_by(Activity.created_at)
            .all()
        )

    def get_by_event(self, user_id: UUID, event: str) -> list[Activity]:
        return (
            self._query(user_id)
            .filter(Activity.event == event)
            .order_by(Activity.created_at.desc())
            .all()
        )

    def get_for_customers(self, user_id: UUID, customer_ids: list[UUID], limit: int = 50) -> list[Activity]:
        if not customer_ids:
            return []
        return (
            self._query(user_id)
            .filter(Activity.subject_type == "customer", Activity.subject_id.in_(customer_ids))
            .order_by(Activity.created_at.desc())
            .limit(limit)
            .all()
        )

    def count_since(self, user_id: UUID, since: datetime) -> int:
        return self._query(user_id).filter(Activity.created_at >= since).count()

    def event_counts(self, user_id: UUID, since: datetime | None = None) -> dict[str, int]:
        query = self.db.query(Activity.event, func.count(Activity.id)).filter(
            Activity.user_id == user_id
        )
        if since is not None:
            query = query.filter(Activity.created_at >= since)
        return {str(event): int(count) for event, count in query.group_by(Activity.event).all()}

    def daily_counts(self, user_id: UUID, since: datetime) -> dict[str, int]:
        day = func.date(Activity.created_at)
        rows = (
            self.db.query(day, func.count(Activity.id))
            .filter(Activity.user_id == user_id, Activity.created_at >= since)
            .group_by(day)
            .order_by(day)
            .all()
        )
        return {str(d): int(count) for d, count in rows}

    def most_active_customers(self, user_id: UUID, limit: int = 5) -> list[tuple[UUID, int]]:
        rows = (
            self.db.query(Activity.subject_id, func.count(Activity.id))
            .filter(
                Activity.user_id == user_id,
                Activity.subject_type == "customer",
                Activity.subject_id.isnot(None),
            )
            .group_by(Activity.subject_id)
            .order_by(func.count(Activity.id).desc())
            .limit(limit)
            .all()
        )
        return [(subject_id, int(count)) for subject_id, count in rows]

    def customer_activity_stats(
        self, user_id: UUID, customer_ids: list[UUID]
    ) -> dict[UUID, tuple[int, datetime | None]]:
        """Activity count and latest timestamp per customer."""
        if not customer_ids:
            return {}
        rows = (
            self.db.query(Activity.subject_id, func.count(Activity.id), func.max(Activity.created_at))
            .filter(
                Activity.user_id == user_id,
                Activity.subject_type == "customer",
                Activity.subject_id.in_(customer_ids),
            )
            .group_by(Activity.subject_id)
            .all()
        )
        return {subject_id: (int(count), last) for subject_id, count, last in rows}

    def delete_before(self, user_id: UUID, before: datetime) -> int:
        deleted = (
            self._query(user_id)
            .filter(Activity.created_at < before)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted)
