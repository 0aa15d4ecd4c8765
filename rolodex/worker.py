import logging
from typing import Any
from uuid import UUID

from arq import Retry, cron, func

from rolodex.core.config import settings
from rolodex.core.database import new_session
from rolodex.core.exceptions import ImportFileError
from rolodex.services.audit_service import AuditService
from rolodex.services.export_service import ExportService
from rolodex.services.import_service import ImportService
from rolodex.tasks import redis_settings

logger = logging.getLogger(__name__)


def _retry_or_give_up(ctx: dict[str, Any], kind: str, job_id: str, error: Exception) -> bool:
    """True when another attempt is allowed for this job."""
    job_try = int(ctx.get("job_try", 1))
    if job_try < settings.JOB_MAX_TRIES:
        logger.warning(
            "%s %s attempt %d/%d failed, retrying: %s",
            kind,
            job_id,
            job_try,
            settings.JOB_MAX_TRIES,
            error,
        )
        return True
    logger.error("%s %s failed after %d attempts: %s", kind, job_id, job_try, error)
    return False


def _retry_delay(ctx: dict[str, Any]) -> int:
    return settings.JOB_RETRY_DELAY_SECONDS * int(ctx.get("job_try", 1))


def _redelivered(ctx: dict[str, Any]) -> bool:
    return int(ctx.get("job_try", 1)) > 1


async def on_import_failed(ctx: dict[str, Any], import_id: str, user_id: str, message: str) -> None:
    """Terminal failure handler: mark the import failed from a fresh session."""
    db = new_session()
    try:
        ImportService(db).fail_import(UUID(user_id), UUID(import_id), message)
    except Exception:
        logger.exception("Failed to record terminal failure of import %s", import_id)
    finally:
        db.close()


async def on_export_failed(ctx: dict[str, Any], export_id: str, user_id: str, message: str) -> None:
    """Terminal failure handler: mark the export failed from a fresh session."""
    db = new_session()
    try:
        ExportService(db).fail_export(UUID(user_id), UUID(export_id), message)
    except Exception:
        logger.exception("Failed to record terminal failure of export %s", export_id)
    finally:
        db.close()


async def process_import_task(ctx: dict[str, Any], import_id: str, user_id: str) -> dict[str, Any]:
    """Background task: ingest an uploaded import file.

    Unreadable files fail the import without a retry. Any other error marks
    the import failed and is retried until ``JOB_MAX_TRIES``; every attempt
    starts again from the first row.
    """
    import_uuid, user_uuid = UUID(import_id), UUID(user_id)
    db = new_session()
    try:
        service = ImportService(db)
        if not service.start_processing(user_uuid, import_uuid, redelivered=_redelivered(ctx)):
            logger.info("Import %s cannot be processed in its current state, skipping", import_id)
            return {"status": "skipped"}

        try:
            outcome = service.process_import_file(user_uuid, import_uuid)
        except ImportFileError as e:
            service.fail_import(user_uuid, import_uuid, str(e), e.errors)
            logger.warning("Import %s rejected: %s", import_id, e)
            return {"status": "failed", "error": str(e)}
        except Exception as e:
            db.rollback()
            try:
                service.fail_import(user_uuid, import_uuid, str(e))
            except Exception:
                logger.exception("Failed to mark import %s as failed", import_id)
            if _retry_or_give_up(ctx, "Import", import_id, e):
                raise Retry(defer=_retry_delay(ctx)) from e
            await on_import_failed(ctx, import_id, user_id, str(e))
            raise

        if outcome.cancelled:
            return {"status": "cancelled", "processed_rows": outcome.processed_rows}
        service.complete_import(user_uuid, import_uuid, outcome)
        return {
            "status": "completed",
            "total_rows": outcome.total_rows,
            "successful_rows": outcome.successful_rows,
            "failed_rows": outcome.failed_rows,
        }
    finally:
        db.close()


async def process_export_task(ctx: dict[str, Any], export_id: str, user_id: str) -> dict[str, Any]:
    """Background task: generate and store an export file."""
    export_uuid, user_uuid = UUID(export_id), UUID(user_id)
    db = new_session()
    try:
        service = ExportService(db)
        if not service.start_processing(user_uuid, export_uuid, redelivered=_redelivered(ctx)):
            logger.info("Export %s cannot be processed in its current state, skipping", export_id)
            return {"status": "skipped"}

        try:
            outcome = service.generate_export_file(user_uuid, export_uuid)
        except Exception as e:
            db.rollback()
            try:
                service.fail_export(user_uuid, export_uuid, str(e))
            except Exception:
                logger.exception("Failed to mark export %s as failed", export_id)
            if _retry_or_give_up(ctx, "Export", export_id, e):
                raise Retry(defer=_retry_delay(ctx)) from e
            await on_export_failed(ctx, export_id, user_id, str(e))
            raise

        if outcome.cancelled:
            return {"status": "cancelled", "total_records": outcome.total_records}
        if not service.complete_export(user_uuid, export_uuid, outcome):
            return {"status": "cancelled", "total_records": outcome.total_records}
        return {"status": "completed", "total_records": outcome.total_records}
    finally:
        db.close()


async def cleanup_expired_exports_task(ctx: dict[str, Any]) -> int:
    """Background task: delete expired export files and mark the exports expired.

    Runs hourly.
    """
    db = new_session()
    try:
        count = ExportService(db).cleanup_expired_exports()
        if count > 0:
            logger.info("Expired %d exports", count)
        return count
    finally:
        db.close()


async def cleanup_old_audit_archives_task(ctx: dict[str, Any]) -> int:
    """Background task: delete audit archives past the retention period.

    Runs daily.
    """
    db = new_session()
    try:
        return AuditService(db).cleanup_old_audits(days=settings.AUDIT_RETENTION_DAYS)
    finally:
        db.close()


async def fail_stale_jobs_task(ctx: dict[str, Any]) -> int:
    """Background task: fail imports and exports a dead worker left processing.

    Runs every 15 minutes.
    """
    db = new_session()
    try:
        return ImportService(db).fail_stale_imports() + ExportService(db).fail_stale_exports()
    finally:
        db.close()


class WorkerSettings:
    functions = [
        func(
            process_import_task,
            max_tries=settings.JOB_MAX_TRIES,
            timeout=settings.JOB_TIMEOUT_SECONDS,
        ),
        func(
            process_export_task,
            max_tries=settings.JOB_MAX_TRIES,
            timeout=settings.JOB_TIMEOUT_SECONDS,
        ),
        cleanup_expired_exports_task,
        cleanup_old_audit_archives_task,
        fail_stale_jobs_task,
    ]
    cron_jobs = [
        cron(cleanup_expired_exports_task, minute={0}),  # hourly
        cron(cleanup_old_audit_archives_task, hour=3, minute=0),  # daily
        cron(fail_stale_jobs_task, minute={0, 15, 30, 45}),
    ]
    queue_name = settings.JOB_QUEUE_NAME
    redis_settings = redis_settings
