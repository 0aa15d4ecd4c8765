from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from rolodex.core.database import get_db
from rolodex.repositories.user_repository import UserRepository


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> UUID:
    """Resolve the acting user from the X-User-Id header.

    Authentication happens upstream; this only checks that the user exists.
    """
    user_header = request.headers.get("X-User-Id")
    if not user_header:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        user_id = UUID(user_header)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header") from None

    if UserRepository(db).get_by_id(user_id) is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user_id


def request_context(request: Request) -> dict[str, Any]:
    """Request metadata recorded with audit activities."""
    return {
        "source": "web",
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "url": str(request.url),
        "method": request.method,
    }
