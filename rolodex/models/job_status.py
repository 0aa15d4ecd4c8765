"""Lifecycle shared by import and export jobs."""

from enum import Enum


class JobStatus(str, Enum):
    """Status of an import or export job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# target status -> statuses it may be entered from
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset({JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING, JobStatus.PROCESSING}),
    JobStatus.CANCELLED: frozenset({JobStatus.PENDING, JobStatus.PROCESSING}),
    JobStatus.EXPIRED: frozenset({JobStatus.COMPLETED}),
    JobStatus.PENDING: frozenset(),
}


def allowed_sources(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which ``target`` can be entered."""
    return TRANSITIONS[target]



STALE_JOB_MESSAGE = "Processing was interrupted and the job was not retried"
