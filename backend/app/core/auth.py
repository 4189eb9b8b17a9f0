"""Password hashing and JWT creation/verification for access and refresh tokens."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from app.config import settings
from app.core.errors import InvalidTokenError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: str
    token_type: str


def hash_password(password: str) -> str:
    """Hash password with bcrypt. Bytes truncated to 72 (bcrypt limit); no passlib re-encoding."""
    pwd_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify password with bcrypt. Plain password truncated to 72 bytes."""
    plain_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def hash_refresh_token(token: str) -> str:
    """SHA256 hash of refresh token for storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(payload: dict[str, Any], secret: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {**payload, "iat": now, "exp": now + lifetime}
    result = jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def create_access_token(user_id: int, email: str, role: str) -> str:
    payload = {"sub": str(user_id), "email": email, "role": role, "type": ACCESS_TOKEN_TYPE}
    return _encode(
        payload,
        settings.jwt_access_secret,
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: int, email: str, role: str) -> str:
    """Signed refresh token. jti keeps two tokens minted in the same second distinct."""
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "type": REFRESH_TOKEN_TYPE,
        "jti": uuid.uuid4().hex,
    }
    return _encode(
        payload,
        settings.jwt_refresh_secret,
        timedelta(days=settings.refresh_token_expire_days),
    )


def _decode_claims(token: str, secret: str, expected_type: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug("%s token rejected: %s", expected_type, e)
        raise InvalidTokenError() from e
    if payload.get("type") != expected_type:
        logger.debug("Token type mismatch: expected %s, got %r", expected_type, payload.get("type"))
        raise InvalidTokenError()
    try:
        return TokenClaims(
            user_id=int(payload["sub"]),
            email=payload["email"],
            role=payload["role"],
            token_type=payload["type"],
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.debug("Token claims malformed: %s", e)
        raise InvalidTokenError() from e


def verify_access_token(token: str) -> TokenClaims:
    """Signature + expiry against the access secret. Never consults the store."""
    return _decode_claims(token, settings.jwt_access_secret, ACCESS_TOKEN_TYPE)


def verify_refresh_token(token: str) -> TokenClaims:
    """Signature + expiry against the refresh secret. Does not check revocation."""
    return _decode_claims(token, settings.jwt_refresh_secret, REFRESH_TOKEN_TYPE)
