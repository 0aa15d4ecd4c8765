"""Customer imports router: upload, progress and lifecycle endpoints."""

import logging
from typing import Literal
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
)
from sqlalchemy.orm import Session

from rolodex.core.auth import get_current_user
from rolodex.core.database import get_db
from rolodex.core.exceptions import ImportFileError
from rolodex.models.customer_import import Import
from rolodex.models.job_status import JobStatus
from rolodex.schemas.customer_import import (
    ImportDashboard,
    ImportOptions,
    ImportProgress,
    ImportResponse,
    ImportStatistics,
)
from rolodex.services.import_service import ImportService
from rolodex.tasks import enqueue_import

logger = logging.getLogger(__name__)

router = APIRouter()


async def _enqueue_import(import_id: UUID, user_id: UUID) -> None:
    try:
        await enqueue_import(import_id, user_id)
    except Exception:
        logger.exception("Failed to enqueue import %s", import_id)


@router.post(
    "/",
    response_model=ImportResponse,
    status_code=201,
    summary="Upload customer import file",
    responses={
        401: {"description": "Unauthorized"},
        422: {"description": "Invalid file or options"},
    },
)
async def create_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    has_headers: bool = Form(default=True),
    delimiter: Literal[",", ";", "|"] = Form(default=","),
    encoding: Literal["UTF-8", "ISO-8859-1"] = Form(default="UTF-8"),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Import:
    """Store the uploaded CSV and queue it for processing."""
    content = await file.read()
    options = ImportOptions(has_headers=has_headers, delimiter=delimiter, encoding=encoding)
    try:
        import_ = ImportService(db).create_import(
            user_id, file.filename or "import.csv", content, options
        )
    except ImportFileError as e:
        raise HTTPException(
            status_code=422, detail={"message": str(e), "errors": e.errors}
        ) from None
    background_tasks.add_task(_enqueue_import, import_.id, user_id)
    return import_


@router.get(
    "/",
    response_model=list[ImportResponse],
    summary="List imports",
    responses={401: {"description": "Unauthorized"}},
)
async def list_imports(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=15, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[Import]:
    imports, total = ImportService(db).get_paginated_imports(user_id, skip=skip, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    return imports


@router.get(
    "/statistics",
    response_model=ImportStatistics,
    summary="Import statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def get_import_statistics(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportStatistics:
    return ImportService(db).get_import_statistics(user_id)


@router.get(
    "/dashboard",
    response_model=ImportDashboard,
    summary="Import dashboard",
    responses={401: {"description": "Unauthorized"}},
)
async def get_import_dashboard(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportDashboard:
    return ImportService(db).get_dashboard_data(user_id)


@router.get(
    "/{import_id}",
    response_model=ImportResponse,
    summary="Get import",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Import not found"},
    },
)
async def get_import(
    import_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportResponse:
    import_ = ImportService(db).get_import(user_id, import_id)
    if import_ is None:
        raise HTTPException(status_code=404, detail="Import not found")
    return import_


@router.get(
    "/{import_id}/progress",
    response_model=ImportProgress,
    summary="Get import progress",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Import not found"},
    },
)
async def get_import_progress(
    import_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportProgress:
    progress = ImportService(db).get_progress(user_id, import_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Import not found")
    return progress


@router.post(
    "/{import_id}/cancel",
    response_model=ImportResponse,
    summary="Cancel import",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Import not found"},
        409: {"description": "Import already finished"},
    },
)
async def cancel_import(
    import_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportResponse:
    service = ImportService(db)
    if service.get_import(user_id, import_id) is None:
        raise HTTPException(status_code=404, detail="Import not found")
    if not service.cancel_import(user_id, import_id):
        raise HTTPException(status_code=409, detail="Import can no longer be cancelled")
    return service.get_import(user_id, import_id)  # type: ignore[return-value]


@router.post(
    "/{import_id}/retry",
    response_model=ImportResponse,
    summary="Retry failed import",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Import not found"},
        409: {"description": "Only failed imports can be retried"},
    },
)
async def retry_import(
    import_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> ImportResponse:
    import_ = ImportService(db).get_import(user_id, import_id)
    if import_ is None:
        raise HTTPException(status_code=404, detail="Import not found")
    if import_.status != JobStatus.FAILED.value:
        raise HTTPException(status_code=409, detail="Only failed imports can be retried")
    background_tasks.add_task(_enqueue_import, import_id, user_id)
    return import_


@router.delete(
    "/{import_id}",
    status_code=204,
    summary="Delete import",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Import belongs to another user"},
        404: {"description": "Import not found"},
    },
)
async def delete_import(
    import_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> None:
    if not ImportService(db).delete_import(user_id, import_id):
        raise HTTPException(status_code=404, detail="Import not found")
