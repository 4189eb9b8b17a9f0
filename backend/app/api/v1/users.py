"""User administration: revoke another user's sessions (admin), seed admin (debug)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import AdminIdentity
from app.config import settings
from app.core.auth import hash_password
from app.core.errors import NotFoundError, ValidationError
from app.db.session import get_db, with_store_timeout
from app.models.user import User, UserRole
from app.schemas.auth import RegisterBody, RevokeSessionsResponse
from app.services.refresh_tokens import revoke_all_user_tokens

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "/{user_id}/revoke-sessions",
    response_model=RevokeSessionsResponse,
    summary="Revoke all refresh tokens of a user (admin only)",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Admin role required"},
        404: {"description": "User not found"},
    },
)
async def revoke_user_sessions(
    user_id: int,
    session: Annotated[AsyncSession, Depends(get_db)],
    admin: AdminIdentity,
) -> RevokeSessionsResponse:
    r = await with_store_timeout(session.execute(select(User.id).where(User.id == user_id)))
    if r.scalar_one_or_none() is None:
        raise NotFoundError("User not found")
    count = await revoke_all_user_tokens(session, user_id)
    logger.info("Admin %s revoked %d session(s) of user %s", admin.user_id, count, user_id)
    return RevokeSessionsResponse(message="Sessions revoked", revoked=count)


@router.post(
    "/seed-admin",
    summary="Seed the default admin (debug only)",
    responses={404: {"description": "Only when debug=True"}},
)
async def seed_admin(session: Annotated[AsyncSession, Depends(get_db)]):
    """Create the admin from SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD only when debug=True."""
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        creds = RegisterBody(email=settings.seed_admin_email, password=settings.seed_admin_password)
    except PydanticValidationError as e:
        logger.error("Invalid SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD: %s", e)
        raise ValidationError(
            "SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD rejected by registration rules: "
            + "; ".join(err["msg"] for err in e.errors())
        ) from e
    email = creds.email
    r = await with_store_timeout(session.execute(select(User.id).where(User.email == email)))
    if r.scalar_one_or_none() is not None:
        return {"message": "Admin already exists", "status": "ok"}
    session.add(
        User(
            email=email,
            password_hash=hash_password(creds.password),
            role=UserRole.admin,
        )
    )
    return {"message": "Admin created", "email": email}
