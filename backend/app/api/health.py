"""Health check. Public; echoes the caller when a valid bearer token is sent."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter

from app.api.deps import OptionalIdentity
from app.config import settings
from app.db.session import database_connected

router = APIRouter(tags=["health"])

_started_at = time.monotonic()


@router.get("/health", summary="Service health and database status")
async def health(identity: OptionalIdentity) -> dict:
    info = {
        "status": "ok",
        "uptime": round(time.monotonic() - _started_at, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.app_env,
        "version": settings.version,
        "database": {"connected": await database_connected()},
    }
    if identity is not None:
        info["user"] = {"id": identity.user_id, "email": identity.email, "role": identity.role}
    return info
