"""Tests for worker background tasks and cron job registration."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from arq import Retry

from rolodex.core.config import settings
from rolodex.models.customer import Customer
from rolodex.models.customer_export import Export
from rolodex.models.customer_import import Import
from rolodex.models.job_status import STALE_JOB_MESSAGE, JobStatus
from rolodex.models.shared import utc_now
from rolodex.services.export_service import ExportService
from rolodex.services.import_service import ImportService
from rolodex.worker import (
    WorkerSettings,
    cleanup_expired_exports_task,
    cleanup_old_audit_archives_task,
    fail_stale_jobs_task,
    process_export_task,
    process_import_task,
)
from tests.conftest import USER_ID, make_customer

CSV_CONTENT = (
    b"first_name,last_name,email\n"
    b"Ann,Lee,ann@example.com\n"
    b"Bob,Ray,bob@example.com\n"
    b"Cy,,not-an-email\n"
)


def _pending_import(db) -> Import:
    return ImportService(db).create_import(USER_ID, "contacts.csv", CSV_CONTENT)


def _stored_import(db, import_id) -> Import:
    db.expire_all()
    return db.get(Import, import_id)


class TestProcessImportTask:
    """Tests for the process_import_task worker function."""

    @pytest.mark.asyncio
    async def test_processes_pending_import(self, db_session):
        import_ = _pending_import(db_session)

        result = await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        assert result == {"status": "completed", "total_rows": 3, "successful_rows": 2, "failed_rows": 1}
        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.completed_at is not None
        assert db_session.query(Customer).filter(Customer.user_id == USER_ID).count() == 2

    @pytest.mark.asyncio
    async def test_unreadable_file_fails_without_retry(self, db_session, storage):
        import_ = _pending_import(db_session)
        storage.delete(import_.file_path)

        result = await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        assert result["status"] == "failed"
        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.validation_errors == {"file": ["Import file not found"]}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retried(self, db_session):
        import_ = _pending_import(db_session)

        with patch.object(ImportService, "process_import_file", side_effect=RuntimeError("db went away")):
            with pytest.raises(Retry):
                await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.error_message == "db went away"

    @pytest.mark.asyncio
    async def test_retry_restarts_a_failed_import(self, db_session):
        import_ = _pending_import(db_session)
        with patch.object(ImportService, "process_import_file", side_effect=RuntimeError("flaky")):
            with pytest.raises(Retry):
                await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        result = await process_import_task({"job_try": 2}, str(import_.id), str(USER_ID))

        assert result["status"] == "completed"
        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_gives_up_after_last_attempt(self, db_session):
        import_ = _pending_import(db_session)

        with patch.object(ImportService, "process_import_file", side_effect=RuntimeError("still broken")):
            with pytest.raises(RuntimeError, match="still broken"):
                await process_import_task(
                    {"job_try": settings.JOB_MAX_TRIES}, str(import_.id), str(USER_ID)
                )

        assert _stored_import(db_session, import_.id).status == JobStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_skips_cancelled_import(self, db_session):
        import_ = _pending_import(db_session)
        ImportService(db_session).cancel_import(USER_ID, import_.id)

        result = await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        assert result == {"status": "skipped"}
        assert _stored_import(db_session, import_.id).status == JobStatus.CANCELLED.value


    @pytest.mark.asyncio
    async def test_redelivered_import_takes_over_from_dead_attempt(self, db_session):
        import_ = _pending_import(db_session)
        # first attempt entered processing, then its worker died
        ImportService(db_session).start_processing(USER_ID, import_.id)

        result = await process_import_task({"job_try": 2}, str(import_.id), str(USER_ID))

        assert result["status"] == "completed"
        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.successful_rows == 2

    @pytest.mark.asyncio
    async def test_first_delivery_does_not_take_over_processing_import(self, db_session):
        import_ = _pending_import(db_session)
        ImportService(db_session).start_processing(USER_ID, import_.id)

        result = await process_import_task({"job_try": 1}, str(import_.id), str(USER_ID))

        assert result == {"status": "skipped"}
        assert _stored_import(db_session, import_.id).status == JobStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_redelivery_does_not_revive_cancelled_import(self, db_session):
        import_ = _pending_import(db_session)
        ImportService(db_session).cancel_import(USER_ID, import_.id)

        result = await process_import_task({"job_try": 2}, str(import_.id), str(USER_ID))

        assert result == {"status": "skipped"}
        assert _stored_import(db_session, import_.id).status == JobStatus.CANCELLED.value


class TestProcessExportTask:
    """Tests for the process_export_task worker function."""

    @pytest.mark.asyncio
    async def test_generates_export(self, db_session, storage):
        make_customer(db_session)
        make_customer(db_session)
        export = ExportService(db_session).create_export(USER_ID)

        result = await process_export_task({"job_try": 1}, str(export.id), str(USER_ID))

        assert result == {"status": "completed", "total_records": 2}
        db_session.expire_all()
        stored = db_session.get(Export, export.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.progress == 100
        assert storage.exists(stored.file_path)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retried(self, db_session):
        export = ExportService(db_session).create_export(USER_ID)

        with patch.object(ExportService, "generate_export_file", side_effect=RuntimeError("disk full")):
            with pytest.raises(Retry):
                await process_export_task({"job_try": 1}, str(export.id), str(USER_ID))

        db_session.expire_all()
        stored = db_session.get(Export, export.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.error_message == "disk full"

    @pytest.mark.asyncio
    async def test_skips_cancelled_export(self, db_session):
        export = ExportService(db_session).create_export(USER_ID)
        ExportService(db_session).cancel_export(USER_ID, export.id)

        result = await process_export_task({"job_try": 1}, str(export.id), str(USER_ID))

        assert result == {"status": "skipped"}


    @pytest.mark.asyncio
    async def test_redelivered_export_takes_over_from_dead_attempt(self, db_session, storage):
        make_customer(db_session)
        export = ExportService(db_session).create_export(USER_ID)
        ExportService(db_session).start_processing(USER_ID, export.id)

        result = await process_export_task({"job_try": 2}, str(export.id), str(USER_ID))

        assert result == {"status": "completed", "total_records": 1}
        db_session.expire_all()
        assert db_session.get(Export, export.id).status == JobStatus.COMPLETED.value


class TestCleanupTasks:
    @pytest.mark.asyncio
    async def test_cleanup_expired_exports(self):
        mock_service = MagicMock()
        mock_service.cleanup_expired_exports.return_value = 4

        with patch("rolodex.worker.ExportService", return_value=mock_service) as mock_cls:
            result = await cleanup_expired_exports_task({})

        assert result == 4
        mock_service.cleanup_expired_exports.assert_called_once_with()
        assert mock_cls.call_args[0][0] is not None  # DB session was passed

    @pytest.mark.asyncio
    async def test_cleanup_old_audit_archives(self):
        mock_service = MagicMock()
        mock_service.cleanup_old_audits.return_value = 2

        with patch("rolodex.worker.AuditService", return_value=mock_service):
            result = await cleanup_old_audit_archives_task({})

        assert result == 2
        mock_service.cleanup_old_audits.assert_called_once_with(days=settings.AUDIT_RETENTION_DAYS)


    @pytest.mark.asyncio
    async def test_fail_stale_jobs(self):
        import_service, export_service = MagicMock(), MagicMock()
        import_service.fail_stale_imports.return_value = 1
        export_service.fail_stale_exports.return_value = 2

        with patch("rolodex.worker.ImportService", return_value=import_service), patch(
            "rolodex.worker.ExportService", return_value=export_service
        ):
            result = await fail_stale_jobs_task({})

        assert result == 3


class TestStaleJobs:
    """Jobs whose worker died on the last attempt are failed by the sweep."""

    def test_stale_import_is_failed(self, db_session):
        import_ = _pending_import(db_session)
        service = ImportService(db_session)
        service.start_processing(USER_ID, import_.id)
        later = utc_now() + timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS + 60)

        assert service.fail_stale_imports(now=later) == 1

        stored = _stored_import(db_session, import_.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.error_message == STALE_JOB_MESSAGE

    def test_recent_import_is_left_alone(self, db_session):
        import_ = _pending_import(db_session)
        service = ImportService(db_session)
        service.start_processing(USER_ID, import_.id)

        assert service.fail_stale_imports() == 0
        assert _stored_import(db_session, import_.id).status == JobStatus.PROCESSING.value

    def test_stale_export_is_failed(self, db_session):
        service = ExportService(db_session)
        export = service.create_export(USER_ID)
        service.start_processing(USER_ID, export.id)
        later = utc_now() + timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS + 60)

        assert service.fail_stale_exports(now=later) == 1

        db_session.expire_all()
        assert db_session.get(Export, export.id).status == JobStatus.FAILED.value

    def test_pending_export_is_not_stale(self, db_session):
        service = ExportService(db_session)
        service.create_export(USER_ID)
        later = utc_now() + timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS + 60)

        assert service.fail_stale_exports(now=later) == 0


class TestWorkerSettings:
    def test_functions_registered(self):
        names = {getattr(f, "name", getattr(f, "__name__", None)) for f in WorkerSettings.functions}
        assert {
            "process_import_task",
            "process_export_task",
            "cleanup_expired_exports_task",
            "cleanup_old_audit_archives_task",
        } <= names

    def test_job_functions_retry(self):
        jobs = {f.name: f for f in WorkerSettings.functions if hasattr(f, "max_tries")}
        assert jobs["process_import_task"].max_tries == settings.JOB_MAX_TRIES
        assert jobs["process_export_task"].max_tries == settings.JOB_MAX_TRIES

    def test_cron_jobs_registered(self):
        cron_func_names = {job.coroutine.__name__ for job in WorkerSettings.cron_jobs}
        assert cron_func_names == {
            "cleanup_expired_exports_task",
            "cleanup_old_audit_archives_task",
            "fail_stale_jobs_task",
        }

    def test_queue_name(self):
        assert WorkerSettings.queue_name == settings.JOB_QUEUE_NAME
