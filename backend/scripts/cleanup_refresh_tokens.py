#!/usr/bin/env python3
"""One-off: delete expired refresh-token rows (same job the scheduler runs).
Usage: DATABASE_URL=postgresql+asyncpg://... python scripts/cleanup_refresh_tokens.py"""
import asyncio

from app.db.session import async_session_maker, engine
from app.services.refresh_tokens import cleanup_expired_tokens


async def main():
    async with async_session_maker() as session:
        deleted = await cleanup_expired_tokens(session)
        await session.commit()
    await engine.dispose()
    print(f"Deleted {deleted} expired refresh token(s)")


if __name__ == "__main__":
    asyncio.run(main())
