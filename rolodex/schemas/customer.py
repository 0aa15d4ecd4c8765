"""Customer schemas."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

SORTABLE_FIELDS = ("name", "email", "organization", "job_title", "created_at", "updated_at")


class CustomerBase(BaseModel):
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(default="", max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)
    organization: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    birthdate: date | None = None
    notes: str | None = Field(default=None, max_length=10000)

    @field_validator("birthdate")
    @classmethod
    def birthdate_not_in_future(cls, value: date | None) -> date | None:
        if value is not None and value > date.today():
            raise ValueError("Birthdate cannot be in the future")
        return value


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    organization: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    birthdate: date | None = None
    notes: str | None = Field(default=None, max_length=10000)


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: str | None = None
    organization: str | None = None
    job_title: str | None = None
    birthdate: date | None = None
    notes: str | None = None
    slug: str
    source_import_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None


class CustomerFilters(BaseModel):
    """Filters shared by interactive search and filtered exports."""

    search: str | None = None
    organization: str | None = None
    job_title: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    sort_by: str = "name"
    sort_direction: Literal["asc", "desc"] = "asc"
    limit: int | None = Field(default=None, ge=1)

    @field_validator("search", "organization", "job_title")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def has_filters(self) -> bool:
        return any(
            [self.search, self.organization, self.job_title, self.created_from, self.created_to]
        )

    def selection(self) -> dict[str, str]:
        """The row-selecting filters, JSON-ready, as stored on an export."""
        data = self.model_dump(
            mode="json",
            include={"search", "organization", "job_title", "created_from", "created_to"},
            exclude_none=True,
        )
        return data


class OrganizationCount(BaseModel):
    organization: str
    count: int


class CustomerStatistics(BaseModel):
    total_customers: int
    monthly_growth: int
    weekly_growth: int
    organization_count: int
    top_organizations: list[OrganizationCount]


class SearchStatistics(BaseModel):
    total_results: int
    organizations: int
    job_titles: int
    earliest: date | None = None
    latest: date | None = None
    email_domains: int


class SearchSuggestion(BaseModel):
    value: str
    count: int
