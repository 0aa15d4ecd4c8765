"""Export service: job lifecycle, streamed file generation and downloads."""

import logging
import secrets
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import BinaryIO
from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.core.cache import CacheService, get_cache
from rolodex.core.config import settings
from rolodex.core.exceptions import StorageError
from rolodex.core.storage import Storage, get_storage
from rolodex.models.customer_export import Export, ExportFormat, ExportType, describe_filters
from rolodex.models.job_status import STALE_JOB_MESSAGE, JobStatus
from rolodex.models.shared import as_utc, utc_now
from rolodex.repositories.activity_repository import ActivityRepository
from rolodex.repositories.cache_tables import cached_customer_repository, cached_export_repository
from rolodex.repositories.customer_repository import CustomerRepository
from rolodex.repositories.export_repository import ExportRepository
from rolodex.repositories.scoping import get_owned
from rolodex.schemas.customer import CustomerFilters
from rolodex.schemas.customer_export import (
    DownloadCheck,
    ExportOptions,
    ExportPreview,
    ExportResponse,
    ExportStatistics,
)
from rolodex.services.customer_service import slugify
from rolodex.services.download_tokens import generate_download_url
from rolodex.services.export_writers import customer_record, export_columns, open_writer

logger = logging.getLogger(__name__)


@dataclass
class ExportOutcome:
    total_records: int = 0
    file_path: str | None = None
    file_size: int | None = None
    download_url: str | None = None
    cancelled: bool = False


def parse_format(value: ExportFormat | str) -> ExportFormat:
    try:
        return ExportFormat(value)
    except ValueError:
        raise ValueError(f"Unsupported export format: {value}") from None


class ExportService:
    """Service for creating and generating customer exports."""

    def __init__(
        self,
        db: Session,
        cache: CacheService | None = None,
        storage: Storage | None = None,
    ):
        self.db = db
        self.cache = cache or get_cache()
        self.storage = storage or get_storage()
        self.repo = ExportRepository(db)
        self.exports = cached_export_repository(db, self.cache)
        self.customer_repo = CustomerRepository(db)
        self.customers = cached_customer_repository(db, self.cache)
        self.activity_repo = ActivityRepository(db)

    # ---- creation -------------------------------------------------------

    def create_export(
        self,
        user_id: UUID,
        export_format: ExportFormat | str = ExportFormat.CSV,
        filters: CustomerFilters | None = None,
        options: ExportOptions | None = None,
    ) -> Export:
        """Record a pending export of the customers matching ``filters``.

        Raises:
            ValueError: If the format is not csv, json or xlsx.
        """
        fmt = parse_format(export_format)
        filters = filters or CustomerFilters()
        options = options or ExportOptions()
        expires_days = options.expires_days or settings.EXPORT_EXPIRES_DAYS

        export = self.exports.create(
            user_id,
            filename=self._filename(fmt, filters),
            type=(ExportType.FILTERED if filters.has_filters else ExportType.ALL).value,
            filters=filters.model_dump(mode="json", exclude_none=True),
            format=fmt.value,
            options=options.model_dump(),
            status=JobStatus.PENDING.value,
            total_records=self._matching_count(user_id, filters),
            progress=0,
            expires_at=utc_now() + timedelta(days=expires_days),
        )
        logger.info("Created %s export %s for user %s", fmt.value, export.id, user_id)
        return export

    def _filename(self, fmt: ExportFormat, filters: CustomerFilters) -> str:
        parts = ["customers_export"]
        if filters.organization:
            organization = slugify(filters.organization).replace("-", "_")
            if organization:
                parts.append(organization)
        parts.append(utc_now().strftime("%Y_%m_%d_%H_%M_%S"))
        parts.append(secrets.token_hex(3))
        return "_".join(parts) + f".{fmt.value}"

    def _matching_count(self, user_id: UUID, filters: CustomerFilters) -> int:
        count = self.customers.count(user_id, filters)
        return min(count, filters.limit) if filters.limit else count

    # ---- lifecycle ------------------------------------------------------

    def start_processing(self, user_id: UUID, export_id: UUID, redelivered: bool = False) -> bool:
        fields: dict[str, object] = {
            "progress": 0,
            "started_at": utc_now(),
            "completed_at": None,
            "error_message": None,
        }
        if self.exports.transition(user_id, export_id, JobStatus.PROCESSING, **fields):
            return True
        if redelivered and self.exports.reclaim(user_id, export_id, **fields):
            logger.warning("Export %s was left processing by a previous attempt, restarting", export_id)
            return True
        return False

    def complete_export(self, user_id: UUID, export_id: UUID, outcome: ExportOutcome) -> bool:
        """Publish the generated file; if the export was cancelled meanwhile the file is removed."""
        completed = self.exports.transition(
            user_id,
            export_id,
            JobStatus.COMPLETED,
            progress=100,
            total_records=outcome.total_records,
            file_path=outcome.file_path,
            file_size=outcome.file_size,
            download_url=outcome.download_url,
            completed_at=utc_now(),
        )
        if completed:
            logger.info("Export %s completed with %d records", export_id, outcome.total_records)
        elif outcome.file_path:
            self.storage.delete(outcome.file_path)
        return completed

    def fail_export(self, user_id: UUID, export_id: UUID, message: str) -> bool:
        """Mark the export failed; a no-op returning False if it is already terminal."""
        return self.exports.transition(
            user_id, export_id, JobStatus.FAILED, error_message=message, completed_at=utc_now()
        )

    def cancel_export(self, user_id: UUID, export_id: UUID) -> bool:
        return self.exports.transition(
            user_id, export_id, JobStatus.CANCELLED, completed_at=utc_now()
        )

    def fail_stale_exports(self, now: datetime | None = None) -> int:
        """Fail exports left ``processing`` by a worker that died on its last attempt."""
        before = (now or utc_now()) - timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS)
        stale = [(e.user_id, e.id) for e in self.repo.get_stale(before)]
        failed = sum(
            self.fail_export(user_id, export_id, STALE_JOB_MESSAGE) for user_id, export_id in stale
        )
        if failed:
            logger.warning("Failed %d stale exports", failed)
        return failed

    def delete_export(self, user_id: UUID, export_id: UUID) -> bool:
        export = get_owned(self.db, Export, "Export", user_id, export_id)
        if export is None:
            return False
        if export.file_path:
            self.storage.delete(str(export.file_path))
        return self.exports.delete(user_id, export_id)

    # ---- generation -----------------------------------------------------

    def generate_export_file(self, user_id: UUID, export_id: UUID) -> ExportOutcome:
        """Stream the matching customers into the export file.

        Customers are read in batches of ``EXPORT_BATCH_SIZE``; progress is
        recorded after each batch and a rejected progress update stops
        generation with ``outcome.cancelled`` set. Nothing is stored unless
        every batch was written.

        Raises:
            ValueError: If the export does not exist.
            StorageError: If the file cannot be stored.
        """
        export = self.repo.find(user_id, export_id)
        if export is None:
            raise ValueError(f"Export {export_id} not found")

        fmt = parse_format(str(export.format))
        filters = CustomerFilters.model_validate(export.filters or {})
        options = ExportOptions.model_validate(export.options or {})
        columns = export_columns(options.include_notes, options.include_audit_trail)
        filename = str(export.filename)
        expires_at = as_utc(export.expires_at)  # type: ignore[arg-type]
        stored_filters = dict(export.filters or {})

        outcome = ExportOutcome()
        expected = self._matching_count(user_id, filters)

        with tempfile.TemporaryFile() as buffer:
            writer = open_writer(fmt, buffer, columns, stored_filters)
            batches = self.customer_repo.iter_batches(
                user_id, filters, batch_size=max(1, settings.EXPORT_BATCH_SIZE)
            )
            for batch in batches:
                activity = {}
                if options.include_audit_trail:
                    activity = self.activity_repo.customer_activity_stats(
                        user_id, [customer.id for customer in batch]
                    )
                for customer in batch:
                    writer.write(customer_record(customer, columns, activity.get(customer.id)))
                outcome.total_records += len(batch)

                progress = min(99, outcome.total_records * 100 // expected) if expected else 99
                if not self.exports.update_progress(user_id, export_id, progress):
                    outcome.cancelled = True
                    break

            if outcome.cancelled:
                logger.info(
                    "Export %s stopped after %d records: no longer processing",
                    export_id,
                    outcome.total_records,
                )
                return outcome

            writer.finish()
            buffer.seek(0)
            now = utc_now()
            path = f"exports/user_{user_id}/{now:%Y}/{now:%m}/{filename}"
            self.storage.put_stream(path, buffer)  # type: ignore[arg-type]

        outcome.file_path = path
        outcome.file_size = self.storage.size(path)
        outcome.download_url = generate_download_url(export_id, user_id, expires_at)
        return outcome

    # ---- downloads ------------------------------------------------------

    def check_download(self, user_id: UUID, export_id: UUID) -> DownloadCheck:
        """Classify a download request.

        Raises:
            OwnershipError: If the export belongs to another user.
        """
        export = get_owned(self.db, Export, "Export", user_id, export_id)
        if export is None:
            return DownloadCheck(status="not_found", reason="Export not found")

        response = ExportResponse.model_validate(export)
        if export.status == JobStatus.EXPIRED.value or export.is_expired:
            return DownloadCheck(status="expired", reason="This export has expired", export=response)
        if export.status != JobStatus.COMPLETED.value:
            return DownloadCheck(
                status="not_ready", reason=f"Export is {export.status}", export=response
            )
        if not export.file_path or not self.storage.exists(str(export.file_path)):
            return DownloadCheck(
                status="not_found", reason="Export file is no longer available", export=response
            )
        return DownloadCheck(status="ready", export=response)

    def open_download(self, user_id: UUID, export_id: UUID) -> tuple[DownloadCheck, BinaryIO | None]:
        """The download check and, when ready, an open stream of the file."""
        check = self.check_download(user_id, export_id)
        if not check.ready or check.export is None or check.export.file_path is None:
            return check, None
        return check, self.storage.open(check.export.file_path)

    def is_downloadable(self, user_id: UUID, export_id: UUID) -> bool:
        return self.check_download(user_id, export_id).ready

    def cleanup_expired_exports(self, now: datetime | None = None) -> int:
        """Delete files of expired exports across all users and mark them expired."""
        expired = [(e.user_id, e.id, e.file_path) for e in self.repo.get_expired(now)]
        cleaned = 0
        for user_id, export_id, path in expired:
            if path:
                try:
                    self.storage.delete(str(path))
                except StorageError:
                    logger.exception("Failed to delete file of expired export %s", export_id)
                    continue
            if self.exports.mark_expired(user_id, export_id):
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d expired exports", cleaned)
        return cleaned

    # ---- queries --------------------------------------------------------

    def get_export(self, user_id: UUID, export_id: UUID) -> ExportResponse | None:
        return self.exports.find(user_id, export_id)

    def get_paginated_exports(self, user_id: UUID, skip: int = 0, limit: int = 15) -> tuple[list[Export], int]:
        """One page of exports (uncached) and the cached total."""
        return self.repo.get_all(user_id, skip=skip, limit=limit), self.exports.count(user_id)

    def get_recent_exports(self, user_id: UUID, limit: int = 10) -> list[ExportResponse]:
        return self.exports.get_recent(user_id, limit)

    def get_downloadable_exports(self, user_id: UUID) -> list[ExportResponse]:
        return [
            export
            for export in self.exports.get_downloadable(user_id)
            if export.file_path and self.storage.exists(export.file_path)
        ]

    def get_export_statistics(self, user_id: UUID) -> ExportStatistics:
        counts = self.exports.status_counts(user_id)
        return ExportStatistics(
            total_exports=sum(counts.values()),
            completed_exports=counts.get(JobStatus.COMPLETED.value, 0),
            failed_exports=counts.get(JobStatus.FAILED.value, 0),
            downloadable_exports=len(self.get_downloadable_exports(user_id)),
            total_records_exported=self.exports.records_exported(user_id),
            format_breakdown=self.exports.format_counts(user_id),
            recent_exports=self.exports.get_recent(user_id, 5),
        )

    def preview_export(
        self, user_id: UUID, filters: CustomerFilters | None = None, limit: int = 10
    ) -> ExportPreview:
        filters = filters or CustomerFilters()
        preview_limit = min(limit, filters.limit) if filters.limit else limit
        return ExportPreview(
            total_count=self._matching_count(user_id, filters),
            preview=self.customers.get_filtered(
                user_id, filters.model_copy(update={"limit": preview_limit})
            ),
            filters_description=describe_filters(filters.selection()),
        )
