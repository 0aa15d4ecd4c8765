"""Audit trail router."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from rolodex.core.auth import get_current_user, request_context
from rolodex.core.database import get_db
from rolodex.models.activity import Activity
from rolodex.schemas.activity import (
    ActivityLogCreate,
    ActivityResponse,
    ActivitySummary,
    AuditArchive,
    AuditExportRequest,
    AuditStatistics,
    FormattedActivity,
    PeriodStatistics,
)
from rolodex.services.audit_service import AuditService

router = APIRouter()


@router.get(
    "/activities",
    response_model=list[ActivityResponse],
    summary="User audit trail",
    responses={401: {"description": "Unauthorized"}},
)
async def list_activities(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=15, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[Activity]:
    activities, total = AuditService(db).get_user_audit_trail(user_id, skip=skip, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    return activities


@router.get(
    "/activities/recent",
    response_model=list[ActivityResponse],
    summary="Recent activities",
    responses={401: {"description": "Unauthorized"}},
)
async def list_recent_activities(
    limit: int = Query(default=10, ge=1, le=100),
    since: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[ActivityResponse]:
    return AuditService(db).get_recent_user_activities(user_id, limit=limit, since=since)


@router.get(
    "/activities/events/{event}",
    response_model=list[ActivityResponse],
    summary="Activities by event",
    responses={401: {"description": "Unauthorized"}},
)
async def list_activities_by_event(
    event: str,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[ActivityResponse]:
    return AuditService(db).get_activities_by_event(user_id, event)


@router.get(
    "/activities/range",
    response_model=list[ActivityResponse],
    summary="Activities in a date range",
    responses={
        400: {"description": "Invalid date range"},
        401: {"description": "Unauthorized"},
    },
)
async def list_activities_in_range(
    date_from: datetime = Query(...),
    date_to: datetime = Query(...),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[ActivityResponse]:
    try:
        return AuditService(db).get_activities_by_date_range(user_id, date_from, date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None


@router.get(
    "/activities/{activity_id}",
    response_model=FormattedActivity,
    summary="Activity details",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Activity not found"},
    },
)
async def get_activity(
    activity_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> FormattedActivity:
    service = AuditService(db)
    activity = service.get_activity(user_id, activity_id)
    if activity is None:
        raise HTTPException(status_code=404, detail="Activity not found")
    return service.format_activity(user_id, activity)


@router.get(
    "/statistics",
    response_model=AuditStatistics,
    summary="Audit statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def get_audit_statistics(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> AuditStatistics:
    return AuditService(db).get_audit_statistics(user_id)


@router.get(
    "/statistics/period",
    response_model=PeriodStatistics,
    summary="Audit statistics for a period",
    responses={401: {"description": "Unauthorized"}},
)
async def get_period_statistics(
    period: Literal["7days", "30days", "90days"] = Query(default="7days"),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> PeriodStatistics:
    return AuditService(db).get_statistics_for_period(user_id, period)


@router.get(
    "/customers/{customer_id}/activities",
    response_model=list[ActivityResponse],
    summary="Customer audit trail",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Customer belongs to another user"},
    },
)
async def list_customer_activities(
    customer_id: UUID,
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=15, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[Activity]:
    activities, total = AuditService(db).get_customer_audit_trail(
        user_id, customer_id, skip=skip, limit=limit
    )
    response.headers["X-Total-Count"] = str(total)
    return activities


@router.post(
    "/customers/{customer_id}/activities",
    response_model=ActivityResponse,
    status_code=201,
    summary="Log customer activity",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Customer belongs to another user"},
        404: {"description": "Customer not found"},
    },
)
async def log_customer_activity(
    customer_id: UUID,
    data: ActivityLogCreate,
    request: Request,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Activity:
    properties = {**request_context(request), **data.properties}
    try:
        return AuditService(db).log_customer_activity(
            user_id, customer_id, data.event, data.description, properties
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None


@router.get(
    "/customers/{customer_id}/summary",
    response_model=ActivitySummary,
    summary="Customer activity summary",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Customer belongs to another user"},
        404: {"description": "Customer not found"},
    },
)
async def get_customer_activity_summary(
    customer_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ActivitySummary:
    summary = AuditService(db).get_customer_activity_summary(user_id, customer_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return summary


@router.post(
    "/export",
    summary="Export audit trail",
    responses={
        400: {"description": "Invalid date range"},
        401: {"description": "Unauthorized"},
    },
)
async def export_audit_trail(
    data: AuditExportRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Response:
    try:
        content, media_type, filename = AuditService(db).export_audit_trail(
            user_id, data.date_from, data.date_to, data.format
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/archives",
    response_model=list[AuditArchive],
    summary="List stored audit archives",
    responses={401: {"description": "Unauthorized"}},
)
async def list_audit_archives(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[AuditArchive]:
    return AuditService(db).list_stored_audits(user_id)


@router.post(
    "/archives",
    status_code=201,
    summary="Store an audit archive",
    responses={401: {"description": "Unauthorized"}},
)
async def store_audit_archive(
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> dict[str, str]:
    return {"path": AuditService(db).store_audit_archive(user_id, date_from, date_to)}


@router.get(
    "/archives/content",
    summary="Read a stored audit archive",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Archive belongs to another user"},
        404: {"description": "Archive not found"},
    },
)
async def get_audit_archive(
    path: str = Query(...),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        return AuditService(db).retrieve_audit_archive(user_id, path)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
