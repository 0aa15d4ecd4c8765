"""Audit trail queries, statistics, exports and archives."""

import csv
import io
import json
import logging
import posixpath
from datetime import UTC, datetime, timedelta
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService, get_cache
from rolodex.core.config import settings
from rolodex.core.exceptions import OwnershipError
from rolodex.core.storage import Storage, get_storage
from rolodex.models.activity import Activity
from rolodex.models.customer import Customer
from rolodex.models.shared import as_utc, utc_now
from rolodex.repositories.activity_repository import ActivityRepository
from rolodex.repositories.cache_tables import cached_activity_repository
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.scoping import get_owned
from rolodex.repositories.user_repository import UserRepository
from rolodex.schemas.activity import (
    ActivityFrequency,
    ActivityResponse,
    ActivitySummary,
    AuditArchive,
    AuditStatistics,
    CustomerActivityCount,
    FormattedActivity,
    PeriodStatistics,
)

logger = logging.getLogger(__name__)

ARCHIVE_ROOT = "audit-trails"
CSV_HEADERS = ["ID", "Event", "Description", "Customer", "Date", "User", "IP Address"]
PERIOD_DAYS = {"7days": 7, "30days": 30, "90days": 90}
# Lower bound used when archiving everything before a date.
ARCHIVE_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

Period = Literal["7days", "30days", "90days"]


def _day_start(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _fmt_dt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def activity_frequency(total: int, first: datetime | None, last: datetime | None) -> ActivityFrequency:
    """Average activity rate over the span between the first and last activity."""
    if not total or first is None or last is None:
        return ActivityFrequency()
    days = max(1, (as_utc(last) - as_utc(first)).days)  # type: ignore[operator]
    per_day = total / days
    return ActivityFrequency(
        per_day=round(per_day, 2),
        per_week=round(per_day * 7, 2),
        per_month=round(per_day * 30, 2),
    )


class AuditService:
    """Service for reading and archiving the customer audit trail."""

    def __init__(
        self,
        db: Session,
        cache: CacheService | None = None,
        storage: Storage | None = None,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.storage = storage or get_storage()
        self.repo = ActivityRepository(db)
        self.activities = cached_activity_repository(db, self.cache)
        self.customer_repo = CustomerRepository(db)
        self.user_repo = UserRepository(db)

    def log_customer_activity(
        self,
        user_id: UUID,
        customer_id: UUID,
        event: str,
        description: str,
        properties: dict[str, Any] | None = None,
    ) -> Activity:
        """Record a custom activity against one of the user's customers.

        Raises:
            OwnershipError: If the customer belongs to another user.
            ValueError: If the customer does not exist.
        """
        customer = get_owned(self.db, Customer, "Customer", user_id, customer_id)
        if customer is None:
            raise ValueError(f"Customer {customer_id} not found")
        props = dict(properties or {})
        props.setdefault("source", "web")
        return self.activities.create(
            user_id,
            subject_type="customer",
            subject_id=customer_id,
            event=event,
            description=description,
            properties=props,
        )

    # ---- trails ---------------------------------------------------------

    def get_customer_audit_trail(
        self, user_id: UUID, customer_id: UUID, skip: int = 0, limit: int = 15
    ) -> tuple[list[Activity], int]:
        return (
            self.repo.get_customer_trail(user_id, customer_id, skip=skip, limit=limit),
            self.activities.count_for_customer(user_id, customer_id),
        )

    def get_user_audit_trail(
        self, user_id: UUID, skip: int = 0, limit: int = 15
    ) -> tuple[list[Activity], int]:
        return self.repo.get_user_trail(user_id, skip=skip, limit=limit), self.activities.count(user_id)

    def get_recent_user_activities(
        self, user_id: UUID, limit: int = 10, since: datetime | None = None
    ) -> list[ActivityResponse]:
        recent: list[ActivityResponse] = self.activities.get_recent(user_id, limit)
        if since is None:
            return recent
        cutoff = as_utc(since)
        return [a for a in recent if as_utc(a.created_at) >= cutoff]  # type: ignore[operator]

    def get_activity(self, user_id: UUID, activity_id: UUID) -> Activity | None:
        return self.repo.find(user_id, activity_id)

    def get_activities_by_event(self, user_id: UUID, event: str) -> list[ActivityResponse]:
        return self.activities.get_by_event(user_id, event)

    def get_activities_by_date_range(
        self, user_id: UUID, date_from: datetime, date_to: datetime
    ) -> list[ActivityResponse]:
        if date_from > date_to:
            raise ValueError("date_from must not be after date_to")
        return self.activities.get_by_date_range(user_id, date_from, date_to)

    # ---- statistics -----------------------------------------------------

    def get_audit_statistics(self, user_id: UUID) -> AuditStatistics:
        today = _day_start(utc_now())
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)
        return AuditStatistics(
            total_activities=self.activities.count(user_id),
            activities_today=self.activities.count_since(user_id, today),
            activities_this_week=self.activities.count_since(user_id, week_start),
            activities_this_month=self.activities.count_since(user_id, month_start),
            event_breakdown=self.activities.event_counts(user_id),
            most_active_customers=[
                CustomerActivityCount(subject_id=subject_id, activity_count=count)
                for subject_id, count in self.activities.most_active_customers(user_id, 5)
            ],
        )

    def get_customer_activity_summary(self, user_id: UUID, customer_id: UUID) -> ActivitySummary | None:
        """Totals, first/last activity and frequency for one customer.

        Raises:
            OwnershipError: If the customer belongs to another user.
        """
        if get_owned(self.db, Customer, "Customer", user_id, customer_id) is None:
            return None
        trail = self.repo.get_customer_trail(user_id, customer_id, limit=1000)
        breakdown: dict[str, int] = {}
        for activity in trail:
            breakdown[str(activity.event)] = breakdown.get(str(activity.event), 0) + 1

        # Trail is newest first.
        last = trail[0] if trail else None
        first = trail[-1] if trail else None
        first_at = as_utc(first.created_at) if first else None  # type: ignore[arg-type]
        last_at = as_utc(last.created_at) if last else None  # type: ignore[arg-type]
        return ActivitySummary(
            customer_id=customer_id,
            total_activities=len(trail),
            first_activity=first_at,
            last_activity=last_at,
            event_breakdown=breakdown,
            most_recent_event=str(last.event) if last else None,
            activity_frequency=activity_frequency(len(trail), first_at, last_at),
        )

    def get_statistics_for_period(self, user_id: UUID, period: Period = "7days") -> PeriodStatistics:
        since = _day_start(utc_now() - timedelta(days=PERIOD_DAYS[period]))
        breakdown = self.activities.event_counts(user_id, since)
        return PeriodStatistics(
            period=period,
            total_activities=sum(breakdown.values()),
            event_breakdown=breakdown,
            daily_breakdown=self.activities.daily_counts(user_id, since),
        )

    # ---- formatting and export ------------------------------------------

    def format_activity(self, user_id: UUID, activity: Activity | ActivityResponse) -> FormattedActivity:
        return self.format_activities(user_id, [activity])[0]

    def format_activities(
        self, user_id: UUID, activities: list[Activity] | list[ActivityResponse]
    ) -> list[FormattedActivity]:
        """Resolve customer and user names for display with one lookup each."""
        subject_ids = list({a.subject_id for a in activities if a.subject_id is not None})
        names = self.customer_repo.names_by_id(user_id, subject_ids)  # type: ignore[arg-type]
        user = self.user_repo.get_by_id(user_id)
        causer = user.full_name if user else "System"

        formatted = []
        for activity in activities:
            properties = activity.properties or {}
            formatted.append(
                FormattedActivity(
                    id=activity.id,  # type: ignore[arg-type]
                    event=str(activity.event),
                    description=str(activity.description),
                    changes=properties.get("changes", {}),
                    causer=causer,
                    subject=names.get(activity.subject_id, "Unknown"),  # type: ignore[arg-type]
                    created_at=as_utc(activity.created_at),  # type: ignore[arg-type]
                    ip_address=properties.get("ip_address"),
                    user_agent=properties.get("user_agent"),
                )
            )
        return formatted

    def export_audit_trail(
        self,
        user_id: UUID,
        date_from: datetime,
        date_to: datetime,
        export_format: Literal["csv", "json"] = "csv",
    ) -> tuple[bytes, str, str]:
        """Render the activities in a date range; returns (content, media type, filename)."""
        activities = self.get_activities_by_date_range(user_id, date_from, date_to)
        formatted = self.format_activities(user_id, activities)
        filename = f"audit-trail-{date_from:%Y-%m-%d}-to-{date_to:%Y-%m-%d}.{export_format}"

        if export_format == "csv":
            output = io.StringIO()
            writer = csv.writer(output)
            writer.writerow(CSV_HEADERS)
            for item in formatted:
                writer.writerow(
                    [
                        str(item.id),
                        item.event,
                        item.description,
                        item.subject,
                        _fmt_dt(item.created_at),
                        item.causer,
                        item.ip_address or "N/A",
                    ]
                )
            return output.getvalue().encode(), "text/csv", filename

        if export_format == "json":
            data = {
                "export_date": utc_now().isoformat(),
                "total_activities": len(formatted),
                "activities": [item.model_dump(mode="json") for item in formatted],
            }
            return json.dumps(data, indent=2).encode(), "application/json", filename

        raise ValueError(f"Unsupported audit export format: {export_format}")

    # ---- archives -------------------------------------------------------

    def _archive_prefix(self, user_id: UUID) -> str:
        return f"{ARCHIVE_ROOT}/user_{user_id}/"

    def store_audit_archive(
        self,
        user_id: UUID,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> str:
        """Write a JSON archive of the activities in range; returns its storage path."""
        now = utc_now()
        date_to = date_to or now
        date_from = date_from or date_to - timedelta(days=365)

        activities = self.repo.get_by_date_range(user_id, date_from, date_to)
        user = self.user_repo.get_by_id(user_id)
        data = {
            "user_id": str(user_id),
            "user_name": user.full_name if user else None,
            "user_email": user.email if user else None,
            "export_date": now.isoformat(),
            "date_range": {"from": _fmt_dt(date_from), "to": _fmt_dt(date_to)},
            "total_activities": len(activities),
            "activities": [
                item.model_dump(mode="json") for item in self.format_activities(user_id, activities)
            ],
        }
        path = (
            f"{self._archive_prefix(user_id)}"
            f"audit_{date_from:%Y_%m_%d}_to_{date_to:%Y_%m_%d}_{now:%Y_%m_%d_%H_%M_%S}.json"
        )
        self.storage.put(path, json.dumps(data, indent=2).encode())
        logger.info("Stored audit archive %s with %d activities", path, len(activities))
        return path

    def retrieve_audit_archive(self, user_id: UUID, path: str) -> dict[str, Any]:
        """Load a stored archive.

        Raises:
            OwnershipError: If the path is outside the user's archive directory.
            ValueError: If the archive does not exist.
        """
        path = posixpath.normpath(path)
        if not path.startswith(self._archive_prefix(user_id)):
            raise OwnershipError("Audit archive")
        if not self.storage.exists(path):
            raise ValueError("Audit archive not found")
        return json.loads(self.storage.get(path))

    def list_stored_audits(self, user_id: UUID) -> list[AuditArchive]:
        return [
            AuditArchive(
                path=path,
                size=self.storage.size(path),
                last_modified=self.storage.last_modified(path),
            )
            for path in self.storage.files(self._archive_prefix(user_id))
        ]

    def cleanup_old_audits(self, user_id: UUID | None = None, days: int | None = None) -> int:
        """Delete archives older than ``days``; all users' archives when ``user_id`` is None."""
        days = settings.AUDIT_RETENTION_DAYS if days is None else days
        cutoff = utc_now() - timedelta(days=days)
        prefix = self._archive_prefix(user_id) if user_id else f"{ARCHIVE_ROOT}/"
        deleted = 0
        for path in self.storage.files(prefix):
            if self.storage.last_modified(path) < cutoff and self.storage.delete(path):
                deleted += 1
        if deleted:
            logger.info("Deleted %d audit archives older than %d days", deleted, days)
        return deleted

    def archive_old_activities(self, user_id: UUID, before: datetime) -> int:
        """Archive every activity older than ``before`` and remove it from the trail."""
        count = len(self.repo.get_by_date_range(user_id, ARCHIVE_EPOCH, before))
        if not count:
            return 0
        self.store_audit_archive(user_id, ARCHIVE_EPOCH, before)
        deleted = self.activities.delete_before(user_id, before)
        logger.info("Archived %d activities before %s for user %s", deleted, before, user_id)
        return deleted
