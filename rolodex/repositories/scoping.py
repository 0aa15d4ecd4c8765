"""Ownership checks and customer filters shared by the user-scoped repositories."""

from typing import TypeVar
from uuid import UUID

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query, Session

from rolodex.core.exceptions import OwnershipError
from rolodex.models.customer import Customer
from rolodex.schemas.customer import SORTABLE_FIELDS, CustomerFilters

ModelT = TypeVar("ModelT")

LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def get_owned(db: Session, model: type[ModelT], entity: str, user_id: UUID, entity_id: UUID) -> ModelT | None:
    """Load ``entity_id`` and verify ``user_id`` owns it.

    Returns None when the row does not exist; raises OwnershipError when it
    exists but belongs to someone else.
    """
    instance = db.get(model, entity_id)
    if instance is None:
        return None
    if getattr(instance, "user_id") != user_id:
        raise OwnershipError(entity)
    return instance


def apply_customer_filters(
    query: Query,  # type: ignore[type-arg]
    filters: CustomerFilters | None,
    apply_limit: bool = True,
) -> Query:  # type: ignore[type-arg]
    """Apply search, equality, date-range and sort filters to a Customer query.

    Interactive search and filtered exports both go through here, so an export
    selects exactly the rows the same filters show on screen.
    """
    filters = filters or CustomerFilters()

    if filters.search:
        term = f"%{escape_like(filters.search)}%"
        full_name = Customer.first_name + " " + Customer.last_name
        query = query.filter(
            full_name.ilike(term, escape=LIKE_ESCAPE) | Customer.email.ilike(term, escape=LIKE_ESCAPE)
        )
    if filters.organization:
        query = query.filter(Customer.organization == filters.organization)
    if filters.job_title:
        query = query.filter(Customer.job_title == filters.job_title)
    if filters.created_from is not None:
        query = query.filter(Customer.created_at >= filters.created_from)
    if filters.created_to is not None:
        query = query.filter(Customer.created_at <= filters.created_to)

    order = asc if filters.sort_direction == "asc" else desc
    if filters.sort_by in SORTABLE_FIELDS and filters.sort_by != "name":
        query = query.order_by(order(getattr(Customer, filters.sort_by)), Customer.id)
    else:
        query = query.order_by(order(Customer.first_name), order(Customer.last_name), Customer.id)

    if apply_limit and filters.limit:
        query = query.limit(filters.limit)
    return query
