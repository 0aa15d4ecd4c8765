"""Customer exports router: creation, status and downloads."""

import logging
from collections.abc import Iterator
from typing import BinaryIO
from uuid import UUID

import jwt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from rolodex.core.auth import get_current_user
from rolodex.core.database import get_db
from rolodex.models.customer_export import Export, ExportFormat
from rolodex.schemas.customer import CustomerFilters
from rolodex.schemas.customer_export import (
    ExportCreate,
    ExportPreview,
    ExportResponse,
    ExportStatistics,
)
from rolodex.services.download_tokens import verify_download_token
from rolodex.services.export_service import ExportService
from rolodex.services.export_writers import MEDIA_TYPES
from rolodex.tasks import enqueue_export

logger = logging.getLogger(__name__)

router = APIRouter()

DOWNLOAD_ERRORS = {"not_found": 404, "not_ready": 409, "expired": 410}
CHUNK_SIZE = 64 * 1024


async def _enqueue_export(export_id: UUID, user_id: UUID) -> None:
    try:
        await enqueue_export(export_id, user_id)
    except Exception:
        logger.exception("Failed to enqueue export %s", export_id)


def _iter_file(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := stream.read(CHUNK_SIZE):
            yield chunk
    finally:
        stream.close()


def _download(service: ExportService, user_id: UUID, export_id: UUID) -> StreamingResponse:
    check, stream = service.open_download(user_id, export_id)
    if stream is None or check.export is None:
        raise HTTPException(status_code=DOWNLOAD_ERRORS.get(check.status, 404), detail=check.reason)
    export = check.export
    return StreamingResponse(
        _iter_file(stream),
        media_type=MEDIA_TYPES[ExportFormat(export.format)],
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.post(
    "/",
    response_model=ExportResponse,
    status_code=201,
    summary="Create export",
    responses={
        401: {"description": "Unauthorized"},
        422: {"description": "Validation error"},
    },
)
async def create_export(
    data: ExportCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Export:
    """Record a pending export and queue its generation."""
    export = ExportService(db).create_export(user_id, data.format, data.filters, data.options)
    background_tasks.add_task(_enqueue_export, export.id, user_id)
    return export


@router.get(
    "/",
    response_model=list[ExportResponse],
    summary="List exports",
    responses={401: {"description": "Unauthorized"}},
)
async def list_exports(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=15, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[Export]:
    exports, total = ExportService(db).get_paginated_exports(user_id, skip=skip, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    return exports


@router.get(
    "/statistics",
    response_model=ExportStatistics,
    summary="Export statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def get_export_statistics(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ExportStatistics:
    return ExportService(db).get_export_statistics(user_id)


@router.get(
    "/downloadable",
    response_model=list[ExportResponse],
    summary="List downloadable exports",
    responses={401: {"description": "Unauthorized"}},
)
async def list_downloadable_exports(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[ExportResponse]:
    return ExportService(db).get_downloadable_exports(user_id)


@router.post(
    "/preview",
    response_model=ExportPreview,
    summary="Preview export selection",
    responses={401: {"description": "Unauthorized"}},
)
async def preview_export(
    filters: CustomerFilters,
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ExportPreview:
    return ExportService(db).preview_export(user_id, filters, limit=limit)


@router.get(
    "/download",
    summary="Download export with a signed link",
    responses={
        403: {"description": "Invalid download token"},
        404: {"description": "Export or file not found"},
        409: {"description": "Export is not completed"},
        410: {"description": "Export or link has expired"},
    },
)
async def download_export_with_token(
    token: str = Query(...),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    try:
        export_id, user_id = verify_download_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=410, detail="Download link has expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=403, detail="Invalid download token") from None
    return _download(ExportService(db), user_id, export_id)


@router.get(
    "/{export_id}",
    response_model=ExportResponse,
    summary="Get export",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Export not found"},
    },
)
async def get_export(
    export_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ExportResponse:
    export = ExportService(db).get_export(user_id, export_id)
    if export is None:
        raise HTTPException(status_code=404, detail="Export not found")
    return export


@router.get(
    "/{export_id}/download",
    summary="Download export",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Export belongs to another user"},
        404: {"description": "Export or file not found"},
        409: {"description": "Export is not completed"},
        410: {"description": "Export has expired"},
    },
)
async def download_export(
    export_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> StreamingResponse:
    return _download(ExportService(db), user_id, export_id)


@router.post(
    "/{export_id}/cancel",
    response_model=ExportResponse,
    summary="Cancel export",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Export not found"},
        409: {"description": "Export already finished"},
    },
)
async def cancel_export(
    export_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ExportResponse:
    service = ExportService(db)
    if service.get_export(user_id, export_id) is None:
        raise HTTPException(status_code=404, detail="Export not found")
    if not service.cancel_export(user_id, export_id):
        raise HTTPException(status_code=409, detail="Export can no longer be cancelled")
    return service.get_export(user_id, export_id)  # type: ignore[return-value]


@router.delete(
    "/{export_id}",
    status_code=204,
    summary="Delete export",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Export belongs to another user"},
        404: {"description": "Export not found"},
    },
)
async def delete_export(
    export_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> None:
    if not ExportService(db).delete_export(user_id, export_id):
        raise HTTPException(status_code=404, detail="Export not found")
