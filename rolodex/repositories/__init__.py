from rolodex.repositories.activity_repository import ActivityRepository
from rolodex.repositories.cache_tables import (
    cached_activity_repository,
    cached_customer_repository,
    cached_export_repository,
    cached_import_repository,
)
from rolodex.repositories.cached import CachedRepository
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.export_repository import ExportRepository
from rolodex.repositories.import_repository import ImportRepository
from rolodex.repositories.user_repository import UserRepository

__all__ = [
    "ActivityRepository",
    "CachedRepository",
    "CustomerRepository",
    "ExportRepository",
    "ImportRepository",
    "UserRepository",
    "cached_activity_repository",
    "cached_customer_repository",
    "cached_export_repository",
    "cached_import_repository",
]
