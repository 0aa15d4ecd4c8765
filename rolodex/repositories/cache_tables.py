"""Cache policies for each repository and factories for their cached variants."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService
from rolodex.repositories.activity_repository import ActivityRepository
from rolodex.repositories.cached import CachedRepository, CacheTable, ReadRule, WriteRule
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.export_repository import ExportRepository
from rolodex.repositories.import_repository import ImportRepository
from rolodex.schemas.activity import ActivityResponse
from rolodex.schemas.customer import CustomerResponse, SearchStatistics
from rolodex.schemas.customer_export import ExportResponse
from rolodex.schemas.customer_import import ImportResponse

_count = TypeAdapter(int)
_counts = TypeAdapter(dict[str, int])
_pairs = TypeAdapter(list[tuple[str, int]])

_customer = TypeAdapter(CustomerResponse | None)
_customers = TypeAdapter(list[CustomerResponse])
_import = TypeAdapter(ImportResponse | None)
_imports = TypeAdapter(list[ImportResponse])
_export = TypeAdapter(ExportResponse | None)
_exports = TypeAdapter(list[ExportResponse])
_activities = TypeAdapter(list[ActivityResponse])


def _first_arg_tag(prefix: str) -> Any:
    """Tag builder using the first argument after ``user_id``."""

    def build(user_id: UUID, *args: Any, **kwargs: Any) -> list[str]:
        return [f"{prefix}:{args[0]}"] if args else []

    return build


def _static(*tags: str) -> Any:
    def build(*args: Any, **kwargs: Any) -> list[str]:
        return list(tags)

    return build


def _result_tag(prefix: str) -> Any:
    """Write tag builder using the id of the returned entity."""

    def build(user_id: UUID, result: Any, *args: Any, **kwargs: Any) -> list[str]:
        return [f"{prefix}:{result.id}"] if result is not None else []

    return build


def _arg_tag(prefix: str) -> Any:
    """Write tag builder using the entity id passed after ``user_id``."""

    def build(user_id: UUID, result: Any, *args: Any, **kwargs: Any) -> list[str]:
        return [f"{prefix}:{args[0]}"] if args else []

    return build


CUSTOMER_TABLE = CacheTable(
    entity="customers",
    reads={
        "find": ReadRule("CACHE_TTL_CUSTOMERS", _customer, _first_arg_tag("customer")),
        "find_by_slug": ReadRule("CACHE_TTL_CUSTOMERS", _customer),
        "count": ReadRule("CACHE_TTL_CUSTOMERS", _count, _static("customers:count")),
        "get_filtered": ReadRule("CACHE_TTL_CUSTOMERS_SEARCH", _customers),
        "get_recent": ReadRule("CACHE_TTL_CUSTOMERS_RECENT", _customers, _static("customers:recent")),
        "search": ReadRule("CACHE_TTL_CUSTOMERS_SEARCH", _customers, _static("customers:search")),
        "get_by_organization": ReadRule("CACHE_TTL_CUSTOMERS", _customers),
        "get_in_date_range": ReadRule("CACHE_TTL_CUSTOMERS_SEARCH", _customers),
        "count_since": ReadRule("CACHE_TTL_CUSTOMERS_RECENT", _count),
        "organization_counts": ReadRule("CACHE_TTL_CUSTOMERS", _pairs),
        "distinct_values": ReadRule("CACHE_TTL_CUSTOMERS_SEARCH", _pairs),
        "organization_count": ReadRule("CACHE_TTL_CUSTOMERS", _count),
        "filter_statistics": ReadRule("CACHE_TTL_CUSTOMERS_SEARCH", TypeAdapter(SearchStatistics)),
    },
    writes={
        "create": WriteRule(_result_tag("customer")),
        "update": WriteRule(_arg_tag("customer")),
        "delete": WriteRule(_arg_tag("customer")),
    },
)

IMPORT_TABLE = CacheTable(
    entity="imports",
    reads={
        "find": ReadRule("CACHE_TTL_IMPORTS_SHORT", _import, _first_arg_tag("import")),
        "count": ReadRule("CACHE_TTL_IMPORTS", _count),
        "get_recent": ReadRule("CACHE_TTL_IMPORTS_SHORT", _imports),
        "get_by_status": ReadRule("CACHE_TTL_IMPORTS", _imports),
        "get_processing": ReadRule("CACHE_TTL_IMPORTS_SHORT", _imports),
        "status_counts": ReadRule("CACHE_TTL_IMPORTS", _counts, _static("imports:statistics")),
        "row_totals": ReadRule(
            "CACHE_TTL_IMPORTS", TypeAdapter(tuple[int, int]), _static("imports:statistics")
        ),
    },
    writes={
        "create": WriteRule(_result_tag("import")),
        "update": WriteRule(_arg_tag("import")),
        "transition": WriteRule(_arg_tag("import")),
        "reclaim": WriteRule(_arg_tag("import")),
        "update_progress": WriteRule(_arg_tag("import")),
        "delete": WriteRule(_arg_tag("import")),
    },
)

EXPORT_TABLE = CacheTable(
    entity="exports",
    reads={
        "find": ReadRule("CACHE_TTL_EXPORTS_SHORT", _export, _first_arg_tag("export")),
        "count": ReadRule("CACHE_TTL_EXPORTS", _count),
        "get_recent": ReadRule("CACHE_TTL_EXPORTS_SHORT", _exports),
        "get_by_status": ReadRule("CACHE_TTL_EXPORTS", _exports),
        "get_processing": ReadRule("CACHE_TTL_EXPORTS_SHORT", _exports),
        "get_downloadable": ReadRule("CACHE_TTL_EXPORTS_SHORT", _exports),
        "status_counts": ReadRule("CACHE_TTL_EXPORTS", _counts, _static("exports:statistics")),
        "format_counts": ReadRule("CACHE_TTL_EXPORTS", _counts, _static("exports:statistics")),
        "records_exported": ReadRule("CACHE_TTL_EXPORTS", _count, _static("exports:statistics")),
    },
    writes={
        "create": WriteRule(_result_tag("export")),
        "update": WriteRule(_arg_tag("export")),
        "transition": WriteRule(_arg_tag("export")),
        "reclaim": WriteRule(_arg_tag("export")),
        "update_progress": WriteRule(_arg_tag("export")),
        "mark_expired": WriteRule(_arg_tag("export")),
        "delete": WriteRule(_arg_tag("export")),
    },
)


def _sorted_ids(customer_ids: list[UUID], *rest: Any) -> tuple[Any, ...]:
    return (sorted(str(cid) for cid in customer_ids), *rest)


def _event_tag(user_id: UUID, event: str, *args: Any, **kwargs: Any) -> list[str]:
    return ["audit:event", f"audit:event:{event}"]


def _activity_write_tags(user_id: UUID, result: Any, *args: Any, **kwargs: Any) -> list[str]:
    tags = [
        "audit:recent",
        "audit:count",
        "audit:event",
        "audit:statistics",
        "audit:date_range",
        "audit:multiple_customers",
    ]
    event = getattr(result, "event", None) or kwargs.get("event")
    if event:
        tags.append(f"audit:event:{event}")
    subject_id = getattr(result, "subject_id", None) or kwargs.get("subject_id")
    if subject_id:
        tags.append(f"audit:activity:{subject_id}")
    return tags


ACTIVITY_TABLE = CacheTable(
    entity="audit",
    reads={
        "get_recent": ReadRule("CACHE_TTL_AUDIT_SHORT", _activities, _static("audit:recent")),
        "count": ReadRule("CACHE_TTL_AUDIT", _count, _static("audit:count")),
        "count_for_customer": ReadRule(
            "CACHE_TTL_AUDIT", _count, _first_arg_tag("audit:activity")
        ),
        "count_since": ReadRule("CACHE_TTL_AUDIT_SHORT", _count, _static("audit:count")),
        "event_counts": ReadRule("CACHE_TTL_AUDIT", _counts, _static("audit:statistics")),
        "daily_counts": ReadRule("CACHE_TTL_AUDIT", _counts, _static("audit:statistics")),
        "get_by_event": ReadRule("CACHE_TTL_AUDIT", _activities, _event_tag),
        "get_by_date_range": ReadRule(
            "CACHE_TTL_AUDIT_HISTORICAL", _activities, _static("audit:date_range")
        ),
        "get_for_customers": ReadRule(
            "CACHE_TTL_AUDIT",
            _activities,
            _static("audit:multiple_customers"),
            key_args=_sorted_ids,
        ),
        "most_active_customers": ReadRule(
            "CACHE_TTL_AUDIT", TypeAdapter(list[tuple[UUID, int]]), _static("audit:statistics")
        ),
        "customer_activity_stats": ReadRule(
            "CACHE_TTL_AUDIT",
            TypeAdapter(dict[UUID, tuple[int, datetime | None]]),
            _static("audit:multiple_customers"),
            key_args=_sorted_ids,
        ),
    },
    writes={
        "create": WriteRule(_activity_write_tags),
        "delete_before": WriteRule(_static("audit:recent", "audit:count", "audit:statistics")),
    },
)


def cached_customer_repository(db: Session, cache: CacheService | None = None) -> Any:
    return CachedRepository(CustomerRepository(db), CUSTOMER_TABLE, cache)


def cached_import_repository(db: Session, cache: CacheService | None = None) -> Any:
    return CachedRepository(ImportRepository(db), IMPORT_TABLE, cache)


def cached_export_repository(db: Session, cache: CacheService | None = None) -> Any:
    return CachedRepository(ExportRepository(db), EXPORT_TABLE, cache)


def cached_activity_repository(db: Session, cache: CacheService | None = None) -> Any:
    return CachedRepository(ActivityRepository(db), ACTIVITY_TABLE, cache)
