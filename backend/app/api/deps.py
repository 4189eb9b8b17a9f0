"""FastAPI dependencies: bearer identity (required / optional), role checks, device info."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from app.core.auth import verify_access_token
from app.core.errors import ForbiddenError, UnauthorizedError
from app.models.user import UserRole
from app.services.refresh_tokens import DeviceInfo


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    role: str


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def _authenticate(request: Request) -> Identity:
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError(
            "Access token is required in Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = verify_access_token(token)
    identity = Identity(user_id=claims.user_id, email=claims.email, role=claims.role)
    request.state.identity = identity
    return identity


async def get_current_identity(request: Request) -> Identity:
    """Required auth: 401 on a missing, malformed, expired or wrong-type token."""
    return _authenticate(request)


async def get_optional_identity(request: Request) -> Identity | None:
    """Optional auth: a missing or invalid token yields None and nothing is attached."""
    try:
        return _authenticate(request)
    except UnauthorizedError:
        return None


def require_role(*roles: str):
    """Dependency factory: 401 without identity, 403 when the identity's role is not in roles."""
    allowed = frozenset(roles)

    async def _check_role(
        identity: Annotated[Identity | None, Depends(get_optional_identity)],
    ) -> Identity:
        if identity is None:
            raise UnauthorizedError("Access token is required", headers={"WWW-Authenticate": "Bearer"})
        if identity.role not in allowed:
            raise ForbiddenError("Insufficient permissions for this operation")
        return identity

    return _check_role


require_admin = require_role(UserRole.admin.value)


def get_device_info(request: Request) -> DeviceInfo:
    return DeviceInfo(
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.client.host if request.client else None,
    )


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
OptionalIdentity = Annotated[Identity | None, Depends(get_optional_identity)]
AdminIdentity = Annotated[Identity, Depends(require_admin)]
