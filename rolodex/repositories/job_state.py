"""Compare-and-swap status transitions for import and export jobs."""

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.models.job_status import JobStatus, allowed_sources
from rolodex.models.shared import utc_now
from rolodex.repositories.scoping import get_owned

logger = logging.getLogger(__name__)


def transition_status(
    db: Session,
    model: Any,
    entity: str,
    user_id: UUID,
    job_id: UUID,
    target: JobStatus,
    *,
    from_statuses: Iterable[JobStatus] | None = None,
    **fields: Any,
) -> bool:
    """Move a job to ``target`` if its current status allows it.

    The update is conditional on the status, so of two concurrent writers
    (for example a cancel and a completion) only the first to commit succeeds.
    ``from_statuses`` replaces the transition table's sources for this call.
    Returns False when the job is missing or the transition was rejected.
    """
    if get_owned(db, model, entity, user_id, job_id) is None:
        return False

    allowed = allowed_sources(target) if from_statuses is None else from_statuses
    sources = [status.value for status in allowed]
    values = {"status": target.value, "updated_at": utc_now(), **fields}
    updated = (
        db.query(model)
        .filter(model.id == job_id, model.user_id == user_id, model.status.in_(sources))
        .update(values, synchronize_session=False)
    )
    db.commit()
    if not updated:
        logger.info("%s %s: transition to %s rejected", entity, job_id, target.value)
        return False
    logger.info("%s %s moved to %s", entity, job_id, target.value)
    return True
