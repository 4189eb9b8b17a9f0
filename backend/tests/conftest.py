"""Pytest configuration and shared fixtures for API tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

# Set test DB and secrets before app imports so config/engine use them
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "chat_gateway_test.db"),
)
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("APP_ENV", "test")

from app.core.auth import create_access_token, hash_password
from app.db.base import Base
from app.db.session import async_session_maker, engine
from app.main import app
from app.models.user import User, UserRole

TEST_EMAIL = "test@test.com"
TEST_PASSWORD = "password123"
ADMIN_EMAIL = "admin@test.com"


@pytest_asyncio.fixture
async def clean_db():
    """Fresh tables for every test; engine disposed so no connection outlives the test loop."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def create_user(
    email: str = TEST_EMAIL,
    password: str = TEST_PASSWORD,
    role: UserRole = UserRole.user,
    is_active: bool = True,
) -> User:
    """Insert a committed user directly through the ORM."""
    async with async_session_maker() as session:
        user = User(email=email, password_hash=hash_password(password), role=role, is_active=is_active)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


async def delete_user(user_id: int) -> None:
    async with async_session_maker() as session:
        await session.execute(delete(User).where(User.id == user_id))
        await session.commit()


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Create a user via DB (committed) and return (user_id, email, access_token)."""
    user = await create_user()
    token = create_access_token(user.id, user.email, user.role.value)
    return user.id, user.email, token


@pytest_asyncio.fixture
async def admin_user(clean_db):
    user = await create_user(email=ADMIN_EMAIL, role=UserRole.admin)
    token = create_access_token(user.id, user.email, user.role.value)
    return user.id, user.email, token


@pytest.fixture
def auth_headers(test_user):
    """Return dict of Authorization header for test_user."""
    _, __, token = test_user
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user):
    _, __, token = admin_user
    return {"Authorization": f"Bearer {token}"}
