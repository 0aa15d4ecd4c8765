"""Customer service: validation, slugs, audit events and cached reads."""

import logging
import re
import secrets
import string
import unicodedata
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService, get_cache
from rolodex.events import (
    CustomerActivityRecorder,
    CustomerCreated,
    CustomerDeleted,
    CustomerUpdated,
    EventDispatcher,
)
from rolodex.models.customer import Customer
from rolodex.models.shared import utc_now
from rolodex.repositories.cache_tables import cached_activity_repository, cached_customer_repository
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.scoping import get_owned
from rolodex.schemas.customer import (
    CustomerCreate,
    CustomerFilters,
    CustomerResponse,
    CustomerStatistics,
    CustomerUpdate,
    OrganizationCount,
)

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL_MESSAGE = "A customer with this email already exists in your account."
SLUG_MAX_LENGTH = 50
SLUG_SUFFIX_LENGTH = 8
_SLUG_ALPHABET = string.ascii_lowercase + string.digits


def slugify(value: str) -> str:
    """ASCII, lowercase, hyphen-separated rendering of ``value``."""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode()
    return re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")


def make_slug(full_name: str) -> str:
    """Slug from a name plus a random suffix, at most SLUG_MAX_LENGTH characters."""
    suffix = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(SLUG_SUFFIX_LENGTH))
    base = slugify(full_name)[: SLUG_MAX_LENGTH - SLUG_SUFFIX_LENGTH - 1].strip("-")
    return f"{base}-{suffix}" if base else suffix


def prepare_customer_data(data: dict[str, Any]) -> dict[str, Any]:
    """Trim strings, lowercase the email, turn blank optional fields into None."""
    prepared: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            value = value.strip()
            if key == "email":
                value = value.lower()
            elif not value and key not in ("first_name", "last_name"):
                value = None
        prepared[key] = value
    return prepared


class CustomerService:
    def __init__(
        self,
        db: Session,
        cache: CacheService | None = None,
        dispatcher: EventDispatcher | None = None,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.repo = CustomerRepository(db)
        self.customers = cached_customer_repository(db, self.cache)
        self.dispatcher = dispatcher or EventDispatcher(
            CustomerActivityRecorder(cached_activity_repository(db, self.cache))
        )

    def create_customer(
        self,
        user_id: UUID,
        data: CustomerCreate,
        context: dict[str, Any] | None = None,
        source_import_id: UUID | None = None,
    ) -> Customer:
        """Create a customer for ``user_id``.

        Raises:
            ValueError: If the email is already used by one of the user's customers.
        """
        prepared = prepare_customer_data(data.model_dump())
        if self.repo.email_exists(user_id, prepared["email"]):
            raise ValueError(DUPLICATE_EMAIL_MESSAGE)

        prepared["slug"] = self._unique_slug(user_id, f"{prepared['first_name']} {prepared['last_name']}")
        prepared["source_import_id"] = source_import_id
        customer = self.customers.create(user_id, prepared)

        self.dispatcher.dispatch(
            CustomerCreated(
                user_id=user_id,
                customer_id=customer.id,
                name=customer.full_name,
                email=str(customer.email),
                context=context or {"source": "web"},
            )
        )
        return customer

    def update_customer(
        self,
        user_id: UUID,
        customer_id: UUID,
        data: CustomerUpdate,
        context: dict[str, Any] | None = None,
    ) -> Customer | None:
        """Apply a partial update; the slug is never regenerated.

        Raises:
            OwnershipError: If the customer belongs to another user.
            ValueError: If the new email is already used by another customer.
        """
        customer = get_owned(self.db, Customer, "Customer", user_id, customer_id)
        if customer is None:
            return None
        original = customer.tracked_values()

        prepared = prepare_customer_data(data.model_dump(exclude_unset=True))
        if "email" in prepared and self.repo.email_exists(user_id, prepared["email"], exclude_id=customer_id):
            raise ValueError(DUPLICATE_EMAIL_MESSAGE)

        updated = self.customers.update(user_id, customer_id, prepared)
        self.dispatcher.dispatch(
            CustomerUpdated(
                user_id=user_id,
                customer_id=customer_id,
                name=updated.full_name,
                original=original,
                current=updated.tracked_values(),
                context=context or {"source": "web"},
            )
        )
        return updated

    def delete_customer(
        self, user_id: UUID, customer_id: UUID, context: dict[str, Any] | None = None
    ) -> bool:
        customer = get_owned(self.db, Customer, "Customer", user_id, customer_id)
        if customer is None:
            return False
        name = customer.full_name
        snapshot = customer.tracked_values()

        deleted = self.customers.delete(user_id, customer_id)
        if deleted:
            self.dispatcher.dispatch(
                CustomerDeleted(
                    user_id=user_id,
                    customer_id=customer_id,
                    name=name,
                    data=snapshot,
                    context=context or {"source": "web"},
                )
            )
        return deleted

    def get_customer(self, user_id: UUID, customer_id: UUID) -> CustomerResponse | None:
        return self.customers.find(user_id, customer_id)

    def get_customer_by_slug(self, user_id: UUID, slug: str) -> CustomerResponse | None:
        return self.customers.find_by_slug(user_id, slug)

    def list_customers(
        self,
        user_id: UUID,
        filters: CustomerFilters | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Customer], int]:
        """Paginated listing; pages are never cached."""
        return (
            self.repo.get_all(user_id, filters, skip=skip, limit=limit),
            self.customers.count(user_id, filters),
        )

    def search_customers(self, user_id: UUID, query: str, limit: int = 50) -> list[CustomerResponse]:
        clean = query.strip()
        if len(clean) < 2:
            return []
        return self.customers.search(user_id, clean, limit)

    def get_customers_by_organization(self, user_id: UUID, organization: str) -> list[CustomerResponse]:
        return self.customers.get_by_organization(user_id, organization)

    def get_customer_statistics(self, user_id: UUID) -> CustomerStatistics:
        now = utc_now()
        return CustomerStatistics(
            total_customers=self.customers.count(user_id),
            monthly_growth=self.customers.count_since(user_id, _day_start(now - timedelta(days=30))),
            weekly_growth=self.customers.count_since(user_id, _day_start(now - timedelta(days=7))),
            organization_count=self.customers.organization_count(user_id),
            top_organizations=[
                OrganizationCount(organization=org, count=count)
                for org, count in self.customers.organization_counts(user_id, 5)
            ],
        )

    def get_dashboard_data(self, user_id: UUID, filters: CustomerFilters | None = None) -> dict[str, Any]:
        customers, total = self.list_customers(user_id, filters, limit=15)
        return {
            "customers": [CustomerResponse.model_validate(c) for c in customers],
            "total_customers": total,
            "recent_customers": self.customers.get_recent(user_id, 5),
            "filters": (filters or CustomerFilters()).selection(),
        }

    def _unique_slug(self, user_id: UUID, full_name: str) -> str:
        slug = make_slug(full_name)
        while self.repo.slug_exists(user_id, slug):
            slug = make_slug(full_name)
        return slug


def _day_start(value: datetime) -> datetime:
    # Day granularity keeps the key stable for the cached count.
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
