"""Customer search, suggestions and filter statistics."""

import re
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService, get_cache
from rolodex.models.customer import Customer
from rolodex.repositories.cache_tables import cached_customer_repository
from rolodex.repositories.customer_repository import SUGGESTION_FIELDS, CustomerRepository
from rolodex.schemas.customer import (
    CustomerFilters,
    CustomerResponse,
    SearchStatistics,
    SearchSuggestion,
)


def sanitize_query(query: str) -> str:
    """Collapse whitespace and drop quote, angle bracket and backslash characters."""
    cleaned = re.sub(r"\s+", " ", query.strip())
    return re.sub(r"[<>\"'\\]", "", cleaned)


class SearchService:
    def __init__(self, db: Session, cache: CacheService | None = None):
        self.repo = CustomerRepository(db)
        self.customers = cached_customer_repository(db, cache or get_cache())

    def search_customers(
        self, user_id: UUID, filters: CustomerFilters, skip: int = 0, limit: int = 15
    ) -> tuple[list[Customer], int]:
        """One page of matching customers and the total match count."""
        return (
            self.repo.get_all(user_id, filters, skip=skip, limit=limit),
            self.repo.count(user_id, filters),
        )

    def filter_by_organization(
        self, user_id: UUID, organization: str, filters: CustomerFilters | None = None
    ) -> list[CustomerResponse]:
        base = filters or CustomerFilters()
        return self.customers.get_filtered(
            user_id, base.model_copy(update={"organization": organization.strip() or None})
        )

    def search_customers_by_text(
        self, user_id: UUID, query: str, filters: CustomerFilters | None = None, limit: int = 50
    ) -> list[CustomerResponse]:
        clean = sanitize_query(query)
        if len(clean) < 2:
            return []
        base = filters or CustomerFilters()
        return self.customers.get_filtered(
            user_id, base.model_copy(update={"search": clean, "limit": limit})
        )

    def get_customers_in_date_range(
        self, user_id: UUID, date_from: datetime, date_to: datetime
    ) -> list[CustomerResponse]:
        if date_from > date_to:
            raise ValueError("date_from must not be after date_to")
        return self.customers.get_in_date_range(user_id, date_from, date_to)

    def get_search_suggestions(
        self, user_id: UUID, field: str, query: str, limit: int = 10
    ) -> list[SearchSuggestion]:
        if field not in SUGGESTION_FIELDS:
            raise ValueError(f"Unsupported suggestion field: {field}")
        clean = sanitize_query(query)
        if not clean:
            return []
        return [
            SearchSuggestion(value=value, count=count)
            for value, count in self.customers.distinct_values(user_id, field, clean, limit)
        ]

    def get_search_statistics(
        self, user_id: UUID, filters: CustomerFilters | None = None
    ) -> SearchStatistics:
        return self.customers.filter_statistics(user_id, filters or CustomerFilters())
