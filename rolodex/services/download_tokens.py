"""Signed download links for export artifacts."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt

from rolodex.core.config import settings

TOKEN_TYPE = "export_download"


def generate_download_token(
    export_id: UUID, user_id: UUID, expires_at: datetime | None = None
) -> str:
    """Sign a token for one export; it expires together with the export."""
    payload = {
        "export_id": str(export_id),
        "user_id": str(user_id),
        "type": TOKEN_TYPE,
        "exp": expires_at or datetime.now(UTC) + timedelta(days=settings.EXPORT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, settings.DOWNLOAD_TOKEN_SECRET, algorithm="HS256")


def generate_download_url(
    export_id: UUID, user_id: UUID, expires_at: datetime | None = None
) -> str:
    token = generate_download_token(export_id, user_id, expires_at)
    return f"{settings.download_base_url}/v1/exports/download?token={token}"


def verify_download_token(token: str) -> tuple[UUID, UUID]:
    """Decode and validate a download token.

    Returns (export_id, user_id).
    Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError on failure.
    """
    payload = jwt.decode(token, settings.DOWNLOAD_TOKEN_SECRET, algorithms=["HS256"])
    if payload.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError("Invalid token type")
    try:
        return UUID(payload["export_id"]), UUID(payload["user_id"])
    except (KeyError, ValueError) as e:
        raise jwt.InvalidTokenError("Malformed token payload") from e
