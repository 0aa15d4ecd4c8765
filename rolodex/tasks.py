from typing import Any
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from rolodex.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings, default_queue_name=settings.JOB_QUEUE_NAME)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """
    Enqueue a task on the import/export queue.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq
    """
    pool = await get_redis_pool()
    try:
        job = await pool.enqueue_job(task_name, *args, _queue_name=settings.JOB_QUEUE_NAME, **kwargs)
        return job  # type: ignore[return-value]
    finally:
        await pool.close()


async def enqueue_import(import_id: UUID, user_id: UUID) -> Job:
    """Enqueue processing of an uploaded import file."""
    return await enqueue_task("process_import_task", str(import_id), str(user_id))


async def enqueue_export(export_id: UUID, user_id: UUID) -> Job:
    """Enqueue generation of an export file."""
    return await enqueue_task("process_export_task", str(export_id), str(user_id))
