"""
Pytest configuration and fixtures for the hierarchy backend tests.

This module provides:
- Test environment variables (set before the app is imported)
- Resolved admin builders for every role
- A mocked asyncpg connection with a working ``transaction()``
- FastAPI test client with the database and caller overridden
- A real database connection for integration tests (skipped when
  PostgreSQL is unreachable or the schema is missing)
"""

import os
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

test_env = {
    "ENVIRONMENT": "test",
    "SECRET_KEY": "test_secret_key_for_testing_only",
    "JWT_ALGORITHM": "HS256",
    "NOTIFICATIONS_ENABLED": "false",
    "CORS_ORIGINS": "*",
    "SMTP_SERVER": "localhost",
    "SMTP_PORT": "1025",
    "FROM_EMAIL": "test@example.com",
    "FROM_NAME": "Test Hierarchy",
}
for key, value in test_env.items():
    os.environ[key] = value

import asyncpg  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402

from app.api.deps import get_current_admin  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.database import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.services.directory import ResolvedAdmin  # noqa: E402
from app.services.roles import AdminRole  # noqa: E402

settings.ENVIRONMENT = "test"
settings.NOTIFICATIONS_ENABLED = False


def new_id() -> str:
    return str(uuid4())


@pytest.fixture
def make_admin():
    """Build a ResolvedAdmin for a role with the given pointer chain."""

    def _make(
        role: AdminRole,
        state_id: str | None = None,
        branch_id: str | None = None,
        zone_id: str | None = None,
        **overrides,
    ) -> ResolvedAdmin:
        data = {
            "id": new_id(),
            "name": f"{role.value} {uuid4().hex[:6]}",
            "email": f"{uuid4().hex[:8]}@example.com",
            "role": role,
            "is_active": True,
            "is_approved": True,
            "state": {"id": state_id, "name": "State"} if state_id else None,
            "branch": {"id": branch_id, "name": "Branch", "state_id": state_id} if branch_id else None,
            "zone": {"id": zone_id, "name": "Zone", "branch_id": branch_id} if zone_id else None,
        }
        data.update(overrides)
        return ResolvedAdmin(**data)

    return _make


@pytest.fixture
def tree():
    """Ids for two states, each with two branches, each with two zones."""
    states = {}
    for s in ("S1", "S2"):
        state_id = new_id()
        branches = {}
        for b in ("B1", "B2"):
            branches[f"{s}{b}"] = {
                "id": new_id(),
                "zones": {f"{s}{b}Z{z}": new_id() for z in ("1", "2")},
            }
        states[s] = {"id": state_id, "branches": branches}
    return states


@pytest.fixture
def mock_conn():
    """asyncpg connection double; ``async with conn.transaction()`` works."""
    conn = AsyncMock()
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=transaction)
    return conn


@pytest.fixture
def client(mock_conn):
    """FastAPI test client with the database dependency overridden.

    Set ``client.admin`` to choose the authenticated caller.
    """

    async def override_get_db():
        yield mock_conn

    test_client = TestClient(app)
    test_client.admin = None

    async def override_current_admin():
        return test_client.admin

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_admin] = override_current_admin
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
async def db_connection():
    """Real connection inside a transaction that is always rolled back."""
    try:
        conn = await asyncpg.connect(dsn=settings.DATABASE_URL, timeout=3)
    except (OSError, TimeoutError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL not reachable: {e}")

    has_schema = await conn.fetchval("SELECT to_regclass('public.events') IS NOT NULL")
    if not has_schema:
        await conn.close()
        pytest.skip("Hierarchy schema not migrated (run: alembic upgrade head)")

    transaction = conn.transaction()
    await transaction.start()
    try:
        yield conn
    finally:
        await transaction.rollback()
        await conn.close()
