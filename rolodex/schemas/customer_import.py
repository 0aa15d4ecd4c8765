"""Import schemas."""

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from rolodex.schemas.customer import CustomerResponse


class ImportOptions(BaseModel):
    has_headers: bool = True
    delimiter: Literal[",", ";", "|"] = ","
    encoding: Literal["UTF-8", "ISO-8859-1"] = "UTF-8"


class ImportRow(BaseModel):
    """One data row of an import file after header mapping."""

    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(default="", max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)
    organization: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    birthdate: date | None = None
    notes: str | None = Field(default=None, max_length=10000)

    @field_validator("phone", "organization", "job_title", "notes", "birthdate", mode="before")
    @classmethod
    def empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("birthdate")
    @classmethod
    def birthdate_not_in_future(cls, value: date | None) -> date | None:
        if value is not None and value > date.today():
            raise ValueError("Birthdate cannot be in the future")
        return value


class ImportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    filename: str
    original_filename: str
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    success_rate: float
    validation_errors: dict[str, list[str]] | None = None
    row_errors: dict[str, list[str]] | None = None
    options: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ImportProgress(BaseModel):
    id: UUID
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    progress_percentage: float


class ImportStatistics(BaseModel):
    total_imports: int
    completed_imports: int
    failed_imports: int
    processing_imports: int
    total_customers_imported: int
    overall_success_rate: float
    recent_imports: list[ImportResponse]


class ImportDashboard(BaseModel):
    statistics: ImportStatistics
    processing_imports: list[ImportResponse]
    recent_customers: list[CustomerResponse] = []
