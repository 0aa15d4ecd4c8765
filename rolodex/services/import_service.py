"""Import service: upload validation, row-by-row ingestion and job lifecycle."""

import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService, get_cache
from rolodex.core.config import settings
from rolodex.core.exceptions import ImportFileError
from rolodex.core.storage import Storage, get_storage
from rolodex.models.customer_import import Import
from rolodex.models.job_status import STALE_JOB_MESSAGE, JobStatus
from rolodex.models.shared import utc_now
from rolodex.repositories.cache_tables import cached_customer_repository, cached_import_repository
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.import_repository import ImportRepository
from rolodex.repositories.scoping import get_owned
from rolodex.schemas.customer import CustomerCreate
from rolodex.schemas.customer_import import (
    ImportDashboard,
    ImportOptions,
    ImportProgress,
    ImportResponse,
    ImportRow,
    ImportStatistics,
)
from rolodex.services.csv_reader import ImportFileReader
from rolodex.services.customer_service import CustomerService, slugify

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("csv", "txt")


@dataclass
class ImportOutcome:
    """Counters and row errors accumulated while processing one attempt."""

    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    row_errors: dict[str, list[str]] = field(default_factory=dict)
    cancelled: bool = False
    seen_emails: set[str] = field(default_factory=set)

    def record_success(self) -> None:
        self.processed_rows += 1
        self.successful_rows += 1

    def record_failure(self, index: int, messages: list[str]) -> None:
        self.processed_rows += 1
        self.failed_rows += 1
        self.row_errors.setdefault(str(index), []).extend(messages)


def _validation_messages(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class ImportService:
    """Service for creating and processing customer CSV imports."""

    def __init__(
        self,
        db: Session,
        cache: CacheService | None = None,
        storage: Storage | None = None,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.storage = storage or get_storage()
        self.repo = ImportRepository(db)
        self.imports = cached_import_repository(db, self.cache)
        self.customer_repo = CustomerRepository(db)
        self.customers = cached_customer_repository(db, self.cache)
        self.customer_service = CustomerService(db, self.cache)

    # ---- creation -------------------------------------------------------

    def create_import(
        self,
        user_id: UUID,
        original_filename: str,
        content: bytes,
        options: ImportOptions | None = None,
    ) -> Import:
        """Validate and store an uploaded file, then record a pending import.

        Raises:
            ImportFileError: If the file is empty, too large or has an unsupported extension.
        """
        options = options or ImportOptions()
        self._validate_upload(original_filename, content)

        stored_name = self._unique_filename(original_filename)
        now = utc_now()
        path = f"imports/user_{user_id}/{now:%Y}/{now:%m}/{stored_name}"
        self.storage.put(path, content)

        import_ = self.imports.create(
            user_id,
            filename=stored_name,
            original_filename=original_filename,
            status=JobStatus.PENDING.value,
            options=options.model_dump(),
            file_path=path,
            row_errors={},
        )
        logger.info("Created import %s for user %s (%s)", import_.id, user_id, original_filename)
        return import_

    def _validate_upload(self, original_filename: str, content: bytes) -> None:
        errors: list[str] = []
        extension = os.path.splitext(original_filename)[1].lstrip(".").lower()
        if extension not in ALLOWED_EXTENSIONS:
            errors.append("The file must be a CSV or TXT file")
        if not content:
            errors.append("The file is empty")
        elif len(content) > settings.IMPORT_MAX_FILE_SIZE:
            limit_mb = settings.IMPORT_MAX_FILE_SIZE // (1024 * 1024)
            errors.append(f"The file may not be larger than {limit_mb}MB")
        if errors:
            raise ImportFileError("; ".join(errors), {"file": errors})

    def _unique_filename(self, original_filename: str) -> str:
        stem, extension = os.path.splitext(original_filename)
        base = slugify(stem) or "import"
        stamp = utc_now().strftime("%Y_%m_%d_%H_%M_%S")
        return f"{base}_{stamp}_{secrets.token_hex(3)}{extension.lower()}"

    # ---- lifecycle ------------------------------------------------------

    def start_processing(self, user_id: UUID, import_id: UUID, redelivered: bool = False) -> bool:
        """Enter ``processing``; counters restart from zero on every attempt.

        A redelivered job may find the import still ``processing`` because the
        previous attempt died before recording a failure; it takes the import over.
        """
        fields: dict[str, object] = {
            "started_at": utc_now(),
            "completed_at": None,
            "error_message": None,
            "validation_errors": None,
            "processed_rows": 0,
            "successful_rows": 0,
            "failed_rows": 0,
            "row_errors": {},
        }
        if self.imports.transition(user_id, import_id, JobStatus.PROCESSING, **fields):
            return True
        if redelivered and self.imports.reclaim(user_id, import_id, **fields):
            logger.warning("Import %s was left processing by a previous attempt, restarting", import_id)
            return True
        return False

    def complete_import(self, user_id: UUID, import_id: UUID, outcome: ImportOutcome) -> bool:
        completed = self.imports.transition(
            user_id,
            import_id,
            JobStatus.COMPLETED,
            total_rows=outcome.total_rows,
            processed_rows=outcome.processed_rows,
            successful_rows=outcome.successful_rows,
            failed_rows=outcome.failed_rows,
            row_errors=outcome.row_errors,
            completed_at=utc_now(),
        )
        if completed:
            logger.info(
                "Import %s completed: %d/%d rows imported, %d failed",
                import_id,
                outcome.successful_rows,
                outcome.total_rows,
                outcome.failed_rows,
            )
        return completed

    def fail_import(
        self,
        user_id: UUID,
        import_id: UUID,
        message: str,
        validation_errors: dict[str, list[str]] | None = None,
    ) -> bool:
        """Mark the import failed; a no-op returning False if it is already terminal."""
        fields: dict[str, object] = {"error_message": message, "completed_at": utc_now()}
        if validation_errors:
            fields["validation_errors"] = validation_errors
        return self.imports.transition(user_id, import_id, JobStatus.FAILED, **fields)

    def cancel_import(self, user_id: UUID, import_id: UUID) -> bool:
        """Cancel a pending or processing import; False if it already finished."""
        return self.imports.transition(
            user_id, import_id, JobStatus.CANCELLED, completed_at=utc_now()
        )

    def fail_stale_imports(self, now: datetime | None = None) -> int:
        """Fail imports left ``processing`` by a worker that died on its last attempt."""
        before = (now or utc_now()) - timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS)
        stale = [(i.user_id, i.id) for i in self.repo.get_stale(before)]
        failed = sum(
            self.fail_import(user_id, import_id, STALE_JOB_MESSAGE) for user_id, import_id in stale
        )
        if failed:
            logger.warning("Failed %d stale imports", failed)
        return failed

    def delete_import(self, user_id: UUID, import_id: UUID) -> bool:
        import_ = get_owned(self.db, Import, "Import", user_id, import_id)
        if import_ is None:
            return False
        if import_.file_path and self.storage.exists(str(import_.file_path)):
            self.storage.delete(str(import_.file_path))
        return self.imports.delete(user_id, import_id)

    # ---- processing -----------------------------------------------------

    def process_import_file(self, user_id: UUID, import_id: UUID) -> ImportOutcome:
        """Ingest the stored file of a processing import.

        Rows are read twice from storage: once to fix ``total_rows`` and once
        to ingest. Counters are flushed every ``IMPORT_PROGRESS_BATCH_SIZE``
        rows; a rejected flush means the import left ``processing`` and
        ingestion stops with ``outcome.cancelled`` set.

        Raises:
            ImportFileError: If the file is missing or its header is unusable.
            StorageError: If the stored file cannot be read.
        """
        import_ = self.repo.find(user_id, import_id)
        if import_ is None:
            raise ValueError(f"Import {import_id} not found")
        if not import_.file_path or not self.storage.exists(str(import_.file_path)):
            raise ImportFileError("Import file not found", {"file": ["Import file not found"]})

        options = ImportOptions.model_validate(import_.options or {})
        reader = ImportFileReader(self.storage, str(import_.file_path), options)
        reader.columns()

        outcome = ImportOutcome(total_rows=reader.count_rows())
        if not self._flush(user_id, import_id, outcome, total_rows=outcome.total_rows):
            outcome.cancelled = True
            return outcome

        batch_size = max(1, settings.IMPORT_PROGRESS_BATCH_SIZE)
        for index, values in reader.rows():
            self._process_row(user_id, import_id, index, values, outcome)
            if outcome.processed_rows % batch_size == 0 and not self._flush(user_id, import_id, outcome):
                outcome.cancelled = True
                break

        if not outcome.cancelled and not self._flush(user_id, import_id, outcome):
            outcome.cancelled = True
        if outcome.cancelled:
            logger.info("Import %s stopped after %d rows: no longer processing", import_id, outcome.processed_rows)
        return outcome

    def _flush(self, user_id: UUID, import_id: UUID, outcome: ImportOutcome, total_rows: int | None = None) -> bool:
        return self.imports.update_progress(
            user_id,
            import_id,
            processed_rows=outcome.processed_rows,
            successful_rows=outcome.successful_rows,
            failed_rows=outcome.failed_rows,
            row_errors=dict(outcome.row_errors),
            total_rows=total_rows,
        )

    def _process_row(
        self,
        user_id: UUID,
        import_id: UUID,
        index: int,
        values: dict[str, str],
        outcome: ImportOutcome,
    ) -> None:
        try:
            row = ImportRow.model_validate(values)
        except ValidationError as e:
            outcome.record_failure(index, _validation_messages(e))
            return

        email = str(row.email).strip().lower()
        if email in outcome.seen_emails:
            outcome.record_failure(index, [f"Duplicate email in file: {email}"])
            return
        outcome.seen_emails.add(email)

        existing = self.customer_repo.find_by_email(user_id, email)
        if existing is not None:
            if existing.source_import_id == import_id:
                # Created by an earlier attempt of this same import.
                outcome.record_success()
            else:
                outcome.record_failure(index, [f"A customer with email {email} already exists"])
            return

        try:
            self.customer_service.create_customer(
                user_id,
                CustomerCreate.model_validate(row.model_dump()),
                context={"source": "import", "import_id": str(import_id)},
                source_import_id=import_id,
            )
        except IntegrityError:
            self.db.rollback()
            outcome.record_failure(index, [f"A customer with email {email} already exists"])
            return
        except ValueError as e:
            outcome.record_failure(index, [str(e)])
            return
        outcome.record_success()

    # ---- queries --------------------------------------------------------

    def get_import(self, user_id: UUID, import_id: UUID) -> ImportResponse | None:
        return self.imports.find(user_id, import_id)

    def get_progress(self, user_id: UUID, import_id: UUID) -> ImportProgress | None:
        import_ = self.imports.find(user_id, import_id)
        if import_ is None:
            return None
        percentage = 0.0
        if import_.total_rows:
            percentage = round(import_.processed_rows / import_.total_rows * 100, 2)
        return ImportProgress(
            id=import_.id,
            status=import_.status,
            total_rows=import_.total_rows,
            processed_rows=import_.processed_rows,
            successful_rows=import_.successful_rows,
            failed_rows=import_.failed_rows,
            progress_percentage=percentage,
        )

    def get_paginated_imports(self, user_id: UUID, skip: int = 0, limit: int = 15) -> tuple[list[Import], int]:
        """One page of imports (uncached) and the cached total."""
        return self.repo.get_all(user_id, skip=skip, limit=limit), self.imports.count(user_id)

    def get_recent_imports(self, user_id: UUID, limit: int = 10) -> list[ImportResponse]:
        return self.imports.get_recent(user_id, limit)

    def get_import_statistics(self, user_id: UUID) -> ImportStatistics:
        counts = self.imports.status_counts(user_id)
        total_rows, successful_rows = self.imports.row_totals(user_id)
        rate = round(successful_rows / total_rows * 100, 2) if total_rows else 0.0
        return ImportStatistics(
            total_imports=sum(counts.values()),
            completed_imports=counts.get(JobStatus.COMPLETED.value, 0),
            failed_imports=counts.get(JobStatus.FAILED.value, 0),
            processing_imports=counts.get(JobStatus.PROCESSING.value, 0)
            + counts.get(JobStatus.PENDING.value, 0),
            total_customers_imported=successful_rows,
            overall_success_rate=rate,
            recent_imports=self.imports.get_recent(user_id, 5),
        )

    def get_dashboard_data(self, user_id: UUID) -> ImportDashboard:
        return ImportDashboard(
            statistics=self.get_import_statistics(user_id),
            processing_imports=self.imports.get_processing(user_id),
            recent_customers=self.customers.get_recent(user_id, 5),
        )
