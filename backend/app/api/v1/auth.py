"""Auth: register, login, refresh, logout, logout-all, profile."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import CurrentIdentity, OptionalIdentity, get_device_info
from app.config import settings
from app.core.auth import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
    verify_refresh_token,
)
from app.core.errors import (
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.db.session import get_db, with_store_timeout
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    LoginBody,
    MessageResponse,
    ProfileOut,
    ProfileResponse,
    RefreshBody,
    RefreshResponse,
    RegisterBody,
    RevokeSessionsResponse,
    TokenPair,
    UserOut,
)
from app.services.refresh_tokens import (
    DeviceInfo,
    revoke_all_user_tokens,
    revoke_refresh_token,
    save_refresh_token,
    verify_refresh_token_persisted,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password"


def _access_expires_in() -> int:
    return settings.access_token_expire_minutes * 60


async def _issue_tokens(session: AsyncSession, user: User, device: DeviceInfo) -> TokenPair:
    """Mint access + refresh tokens, persist the refresh token, stamp last_login."""
    role = user.role.value
    access = create_access_token(user.id, user.email, role)
    refresh = create_refresh_token(user.id, user.email, role)
    await save_refresh_token(session, user.id, refresh, device)
    user.last_login = datetime.now(timezone.utc)
    await with_store_timeout(session.flush())
    return TokenPair(
        access_token=access,
        refresh_token=refresh,
        expires_in=_access_expires_in(),
        access_token_expiry=settings.access_token_expiry_label,
        refresh_token_expiry=settings.refresh_token_expiry_label,
    )


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, role=user.role.value)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    summary="Register a new user",
    responses={
        400: {"description": "Malformed email or password too short"},
        409: {"description": "Email already registered"},
    },
)
async def register(
    session: Annotated[AsyncSession, Depends(get_db)],
    device: Annotated[DeviceInfo, Depends(get_device_info)],
    body: RegisterBody,
) -> AuthResponse:
    r = await with_store_timeout(session.execute(select(User.id).where(User.email == body.email)))
    if r.scalar_one_or_none() is not None:
        raise ConflictError("User with this email already exists")
    try:
        user = User(email=body.email, password_hash=hash_password(body.password))
        session.add(user)
        await with_store_timeout(session.flush())
        await session.refresh(user)
    except IntegrityError as e:
        # Concurrent registration won the unique index
        logger.warning("Register IntegrityError: %s", e)
        raise ConflictError("User with this email already exists") from e
    tokens = await _issue_tokens(session, user, device)
    logger.info("User %s registered", user.id)
    return AuthResponse(message="User registered successfully", user=_user_out(user), tokens=tokens)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email and password",
    responses={
        400: {"description": "Malformed email or empty password"},
        401: {"description": "Invalid email or password"},
    },
)
async def login(
    session: Annotated[AsyncSession, Depends(get_db)],
    device: Annotated[DeviceInfo, Depends(get_device_info)],
    body: LoginBody,
) -> AuthResponse:
    r = await with_store_timeout(
        session.execute(select(User).where(User.email == body.email, User.is_active.is_(True)))
    )
    user = r.scalar_one_or_none()
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Failed login attempt (ip=%s)", device.ip_address)
        raise UnauthorizedError(INVALID_CREDENTIALS)
    tokens = await _issue_tokens(session, user, device)
    return AuthResponse(message="Login successful", user=_user_out(user), tokens=tokens)


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Exchange a refresh token for a new access token",
    responses={
        400: {"description": "Refresh token missing"},
        401: {"description": "Refresh token invalid, expired or revoked, or user inactive"},
    },
)
async def refresh_access_token(
    session: Annotated[AsyncSession, Depends(get_db)],
    body: RefreshBody,
) -> RefreshResponse:
    """Issue a new access token. Signature and store liveness must both pass; the refresh token is kept."""
    token = body.refresh_token.strip()
    if not token:
        raise ValidationError("Validation failed: refreshToken must not be blank")
    claims = verify_refresh_token(token)
    await verify_refresh_token_persisted(session, token)
    r = await with_store_timeout(session.execute(select(User.is_active).where(User.id == claims.user_id)))
    is_active = r.scalar_one_or_none()
    if not is_active:
        raise InvalidTokenError("User not found or inactive")
    access = create_access_token(claims.user_id, claims.email, claims.role)
    return RefreshResponse(
        message="Token refreshed successfully",
        access_token=access,
        expires_in=_access_expires_in(),
        access_token_expiry=settings.access_token_expiry_label,
    )


async def _read_logout_token(request: Request) -> str | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    token = payload.get("refreshToken", payload.get("refresh_token"))
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke a refresh token (always succeeds)",
)
async def logout(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    identity: OptionalIdentity,
) -> MessageResponse:
    """Best-effort revoke of the supplied refresh token. Failures are logged, never returned."""
    token = await _read_logout_token(request)
    if token is not None:
        try:
            await revoke_refresh_token(session, token)
            await session.commit()
        except Exception as e:
            logger.warning(
                "Logout revoke failed (user=%s): %s",
                identity.user_id if identity else None,
                e,
            )
            try:
                await session.rollback()
            except Exception as rollback_exc:
                logger.warning("Logout rollback failed: %s", rollback_exc)
    return MessageResponse(message="Logout successful")


@router.post(
    "/logout-all",
    response_model=RevokeSessionsResponse,
    summary="Revoke every refresh token of the current user",
    responses={401: {"description": "Not authenticated"}},
)
async def logout_all(
    session: Annotated[AsyncSession, Depends(get_db)],
    identity: CurrentIdentity,
) -> RevokeSessionsResponse:
    count = await revoke_all_user_tokens(session, identity.user_id)
    return RevokeSessionsResponse(message="Logged out from all sessions", revoked=count)


@router.get(
    "/profile",
    response_model=ProfileResponse,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
        404: {"description": "User no longer exists"},
    },
)
async def profile(
    session: Annotated[AsyncSession, Depends(get_db)],
    identity: CurrentIdentity,
) -> ProfileResponse:
    r = await with_store_timeout(session.execute(select(User).where(User.id == identity.user_id)))
    user = r.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return ProfileResponse(
        user=ProfileOut(
            id=user.id,
            email=user.email,
            role=user.role.value,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
        )
    )
