from rolodex.schemas.activity import (
    ActivityResponse,
    ActivitySummary,
    AuditStatistics,
    FormattedActivity,
    PeriodStatistics,
)
from rolodex.schemas.customer import (
    CustomerCreate,
    CustomerFilters,
    CustomerResponse,
    CustomerStatistics,
    CustomerUpdate,
    SearchStatistics,
)
from rolodex.schemas.customer_export import (
    DownloadCheck,
    ExportCreate,
    ExportOptions,
    ExportResponse,
    ExportStatistics,
)
from rolodex.schemas.customer_import import (
    ImportOptions,
    ImportProgress,
    ImportResponse,
    ImportStatistics,
)

__all__ = [
    "ActivityResponse",
    "ActivitySummary",
    "AuditStatistics",
    "CustomerCreate",
    "CustomerFilters",
    "CustomerResponse",
    "CustomerStatistics",
    "CustomerUpdate",
    "DownloadCheck",
    "ExportCreate",
    "ExportOptions",
    "ExportResponse",
    "ExportStatistics",
    "FormattedActivity",
    "ImportOptions",
    "ImportProgress",
    "ImportResponse",
    "ImportStatistics",
    "PeriodStatistics",
    "SearchStatistics",
]
