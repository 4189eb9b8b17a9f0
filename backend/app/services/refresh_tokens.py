"""
Refresh-token persistence: save, verify liveness, revoke, sweep.
A refresh token is honored only when its row is live (not revoked, not expired)
and its signature still verifies against the refresh secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth import hash_refresh_token, verify_refresh_token
from app.core.errors import InvalidTokenError
from app.db.session import async_session_maker, with_store_timeout
from app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    user_agent: str | None = None
    ip_address: str | None = None


async def save_refresh_token(
    session: AsyncSession,
    user_id: int,
    token: str,
    device: DeviceInfo | None = None,
) -> RefreshToken:
    device = device or DeviceInfo()
    row = RefreshToken(
        user_id=user_id,
        token_hash=hash_refresh_token(token),
        user_agent=(device.user_agent or "")[:512] or None,
        ip_address=device.ip_address,
        is_revoked=False,
        expires_at=datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days),
    )
    session.add(row)
    await with_store_timeout(session.flush())
    return row


async def verify_refresh_token_persisted(session: AsyncSession, token: str) -> RefreshToken:
    """Return the live row for token, or raise InvalidTokenError (absent, revoked, expired, bad signature)."""
    r = await with_store_timeout(
        session.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_refresh_token(token),
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > datetime.now(timezone.utc),
            )
        )
    )
    row = r.scalar_one_or_none()
    if row is None:
        logger.debug("Refresh token not found, revoked or expired")
        raise InvalidTokenError()
    claims = verify_refresh_token(token)
    if claims.user_id != row.user_id:
        logger.warning("Refresh token owner mismatch: row user %s, claims user %s", row.user_id, claims.user_id)
        raise InvalidTokenError()
    return row


async def revoke_refresh_token(session: AsyncSession, token: str) -> None:
    """Mark one token revoked. Unknown or already-revoked tokens are a no-op."""
    r = await with_store_timeout(
        session.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_refresh_token(token),
                RefreshToken.is_revoked.is_(False),
            )
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
    )
    if r.rowcount:
        logger.info("Refresh token revoked")


async def revoke_all_user_tokens(session: AsyncSession, user_id: int) -> int:
    """Revoke every live refresh token of user_id ("log out everywhere"). Returns rows revoked."""
    r = await with_store_timeout(
        session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
    )
    count = r.rowcount or 0
    logger.info("Revoked %d refresh token(s) for user %s", count, user_id)
    return count


async def cleanup_expired_tokens(session: AsyncSession) -> int:
    r = await with_store_timeout(
        session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    )
    return r.rowcount or 0


async def scheduled_refresh_token_cleanup() -> None:
    """APScheduler job: drop expired refresh-token rows."""
    async with async_session_maker() as session:
        deleted = await cleanup_expired_tokens(session)
        await session.commit()
    if deleted:
        logger.info("Refresh token sweep removed %d expired row(s)", deleted)
