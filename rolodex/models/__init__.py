from rolodex.models.activity import Activity
from rolodex.models.customer import TRACKED_FIELDS, Customer
from rolodex.models.customer_export import Export, ExportFormat, ExportType
from rolodex.models.customer_import import DEFAULT_IMPORT_OPTIONS, Import
from rolodex.models.job_status import JobStatus
from rolodex.models.shared import UUIDType, generate_uuid, utc_now
from rolodex.models.user import User

__all__ = [
    "Activity",
    "Customer",
    "DEFAULT_IMPORT_OPTIONS",
    "Export",
    "ExportFormat",
    "ExportType",
    "Import",
    "JobStatus",
    "TRACKED_FIELDS",
    "User",
    "UUIDType",
    "generate_uuid",
    "utc_now",
]
