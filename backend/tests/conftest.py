"""Pytest configuration and shared fixtures for API tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete, text

# Set test DB and config before app imports so settings/engine use them
_TEST_DB_DIR = tempfile.mkdtemp(prefix="repairdesk-test-")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test-repairs.db')}",
)
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_ACCESS_EXPIRES_IN", "15m")
os.environ.setdefault("JWT_REFRESH_EXPIRES_IN", "7d")

from repairdesk.config import settings
from repairdesk.core.auth import hash_password
from repairdesk.core.tokens import TokenCodec, parse_ttl
from repairdesk.db.base import Base
from repairdesk.db.session import database, init_db
from repairdesk.main import app
from repairdesk.models.user import User
from repairdesk.services.audit import audit_trail

pytest_plugins = ["pytest_asyncio"]


@pytest_asyncio.fixture(scope="session")
async def ensure_db():
    """Create tables once per test session (no scheduler, no lifespan)."""
    await init_db()
    yield
    await audit_trail.drain()
    await database.dispose()


async def _truncate_all():
    """Empty all tables in reverse dependency order so tests start clean."""
    await audit_trail.drain()
    tables = list(reversed(Base.metadata.sorted_tables))
    async with database.engine.begin() as conn:
        if database.engine.dialect.name == "sqlite":
            for table in tables:
                await conn.execute(delete(table))
        else:
            names = ", ".join(t.name for t in tables)
            await conn.execute(text("TRUNCATE " + names + " RESTART IDENTITY CASCADE"))


@pytest_asyncio.fixture
async def client(ensure_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    await _truncate_all()
    yield


@pytest_asyncio.fixture
async def make_user(clean_db):
    """Factory: create a committed user and return it."""

    async def _make(
        username: str,
        password: str,
        role: str = "employee",
        email: str | None = None,
        is_active: bool = True,
        full_name: str | None = None,
    ) -> User:
        async with database.session_maker() as session:
            user = User(
                username=username,
                email=email or f"{username}@repairs.test",
                password_hash=hash_password(password),
                full_name=full_name or username.title(),
                role=role,
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


@pytest_asyncio.fixture
async def test_user(make_user):
    """Active employee 'alice' with password 'correct'."""
    return await make_user("alice", "correct", role="employee", full_name="Alice Smith")


@pytest_asyncio.fixture
async def admin_user(make_user):
    return await make_user("boss", "adminpass", role="admin", full_name="Shop Admin")


def _bearer_for(user: User) -> dict:
    token, _ = TokenCodec.from_settings().issue_access(user.id, parse_ttl(settings.jwt_access_expires_in))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Return a function building an Authorization header for any user."""
    return _bearer_for


@pytest.fixture
def auth_headers(test_user):
    """Authorization header for alice."""
    return _bearer_for(test_user)


@pytest.fixture
def admin_headers(admin_user):
    return _bearer_for(admin_user)
