"""Customer repository: every query is scoped to the owning user."""

from collections.abc import Iterator
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from rolodex.models.customer import Customer
from rolodex.repositories.scoping import LIKE_ESCAPE, apply_customer_filters, escape_like, get_owned
from rolodex.schemas.customer import CustomerFilters

SUGGESTION_FIELDS = ("organization", "job_title")


class CustomerRepository:
    def __init__(self, db: Session):
        self.db = db

    def _query(self, user_id: UUID) -> Query:  # type: ignore[type-arg]
        return self.db.query(Customer).filter(Customer.user_id == user_id)

    def get_all(
        self,
        user_id: UUID,
        filters: CustomerFilters | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Customer]:
        query = apply_customer_filters(self._query(user_id), filters, apply_limit=False)
        return query.offset(skip).limit(limit).all()

    def count(self, user_id: UUID, filters: CustomerFilters | None = None) -> int:
        query = apply_customer_filters(self._query(user_id), filters, apply_limit=False)
        return query.order_by(None).count()

    def get_filtered(self, user_id: UUID, filters: CustomerFilters | None = None) -> list[Customer]:
        """All customers matching ``filters`` (bounded by ``filters.limit`` if set)."""
        return apply_customer_filters(self._query(user_id), filters).all()

    def iter_batches(
        self, user_id: UUID, filters: CustomerFilters | None = None, batch_size: int = 500
    ) -> Iterator[list[Customer]]:
        """Yield matching customers in ordered batches.

        Each batch is a separate query, so callers may commit between batches.
        """
        query = apply_customer_filters(self._query(user_id), filters, apply_limit=False)
        remaining = filters.limit if filters and filters.limit else None
        offset = 0
        while remaining is None or remaining > 0:
            size = batch_size if remaining is None else min(batch_size, remaining)
            batch = query.offset(offset).limit(size).all()
            if not batch:
                return
            yield batch
            offset += len(batch)
            if remaining is not None:
                remaining -= len(batch)
            if len(batch) < size:
                return

    def find(self, user_id: UUID, customer_id: UUID) -> Customer | None:
        return self._query(user_id).filter(Customer.id == customer_id).first()

    def find_by_slug(self, user_id: UUID, slug: str) -> Customer | None:
        return self._query(user_id).filter(Customer.slug == slug).first()

    def find_by_email(self, user_id: UUID, email: str) -> Customer | None:
        return self._query(user_id).filter(Customer.email == email.lower()).first()

    def names_by_id(self, user_id: UUID, customer_ids: list[UUID]) -> dict[UUID, str]:
        if not customer_ids:
            return {}
        rows = (
            self.db.query(Customer.id, Customer.first_name, Customer.last_name)
            .filter(Customer.user_id == user_id, Customer.id.in_(customer_ids))
            .all()
        )
        return {cid: f"{first} {last or ''}".strip() for cid, first, last in rows}

    def email_exists(self, user_id: UUID, email: str, exclude_id: UUID | None = None) -> bool:
        query = self._query(user_id).filter(Customer.email == email.lower())
        if exclude_id is not None:
            query = query.filter(Customer.id != exclude_id)
        return query.first() is not None

    def slug_exists(self, user_id: UUID, slug: str) -> bool:
        return self._query(user_id).filter(Customer.slug == slug).first() is not None

    def create(self, user_id: UUID, data: dict[str, Any]) -> Customer:
        customer = Customer(**data, user_id=user_id)
        self.db.add(customer)
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def update(self, user_id: UUID, customer_id: UUID, data: dict[str, Any]) -> Customer | None:
        customer = get_owned(self.db, Customer, "Customer", user_id, customer_id)
        if not customer:
            return None
        for key, value in data.items():
            setattr(customer, key, value)
        self.db.commit()
        self.db.refresh(customer)
        return customer

    def delete(self, user_id: UUID, customer_id: UUID) -> bool:
        customer = get_owned(self.db, Customer, "Customer", user_id, customer_id)
        if not customer:
            return False
        self.db.delete(customer)
        self.db.commit()
        return True

    def get_recent(self, user_id: UUID, limit: int = 10) -> list[Customer]:
        return (
            self._query(user_id)
            .order_by(Customer.created_at.desc(), Customer.id)
            .limit(limit)
            .all()
        )

    def search(self, user_id: UUID, query: str, limit: int = 10) -> list[Customer]:
        filters = CustomerFilters(search=query, limit=limit)
        return apply_customer_filters(self._query(user_id), filters).all()

    def get_by_organization(self, user_id: UUID, organization: str) -> list[Customer]:
        return apply_customer_filters(
            self._query(user_id), CustomerFilters(organization=organization)
        ).all()

    def get_in_date_range(self, user_id: UUID, date_from: datetime, date_to: datetime) -> list[Customer]:
        return apply_customer_filters(
            self._query(user_id),
            CustomerFilters(created_from=date_from, created_to=date_to, sort_by="created_at"),
        ).all()

    def count_since(self, user_id: UUID, since: datetime) -> int:
        return self._query(user_id).filter(Customer.created_at >= since).count()

    def organization_counts(self, user_id: UUID, limit: int = 5) -> list[tuple[str, int]]:
        rows = (
            self.db.query(Customer.organization, func.count(Customer.id))
            .filter(Customer.user_id == user_id, Customer.organization.isnot(None))
            .group_by(Customer.organization)
            .order_by(func.count(Customer.id).desc(), Customer.organization)
            .limit(limit)
            .all()
        )
        return [(str(org), int(count)) for org, count in rows]

    def distinct_values(
        self, user_id: UUID, field: str, prefix: str = "", limit: int = 10
    ) -> list[tuple[str, int]]:
        """Distinct values of a suggestion field with their customer counts."""
        if field not in SUGGESTION_FIELDS:
            raise ValueError(f"Unsupported suggestion field: {field}")
        column = getattr(Customer, field)
        query = self.db.query(column, func.count(Customer.id)).filter(
            Customer.user_id == user_id, column.isnot(None)
        )
        if prefix:
            query = query.filter(column.ilike(f"{escape_like(prefix)}%", escape=LIKE_ESCAPE))
        rows = query.group_by(column).order_by(func.count(Customer.id).desc(), column).limit(limit).all()
        return [(str(value), int(count)) for value, count in rows]

    def imported_by(self, user_id: UUID, import_id: UUID) -> list[Customer]:
        return self._query(user_id).filter(Customer.source_import_id == import_id).all()

    def organization_count(self, user_id: UUID) -> int:
        return (
            self.db.query(func.count(func.distinct(Customer.organization)))
            .filter(Customer.user_id == user_id, Customer.organization.isnot(None))
            .scalar()
            or 0
        )

    def filter_statistics(self, user_id: UUID, filters: CustomerFilters | None = None) -> dict[str, Any]:
        """Aggregates over the customers matching ``filters``."""
        query = apply_customer_filters(self._query(user_id), filters).order_by(None)
        subquery = query.with_entities(
            Customer.organization, Customer.job_title, Customer.email, Customer.created_at
        ).subquery()
        total, organizations, job_titles, earliest, latest = self.db.query(
            func.count(),
            func.count(func.distinct(subquery.c.organization)),
            func.count(func.distinct(subquery.c.job_title)),
            func.min(subquery.c.created_at),
            func.max(subquery.c.created_at),
        ).one()
        domains = {
            email.rsplit("@", 1)[-1].lower()
            for (email,) in self.db.query(subquery.c.email)
            if email and "@" in email
        }
        return {
            "total_results": int(total or 0),
            "organizations": int(organizations or 0),
            "job_titles": int(job_titles or 0),
            "earliest": earliest.date() if earliest else None,
            "latest": latest.date() if latest else None,
            "email_domains": len(domains),
        }
