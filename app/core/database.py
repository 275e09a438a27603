"""
Async database connection using asyncpg (NO ORM).

Every lookup is bounded: the pool is created with a connect timeout and a
per-command timeout, and acquiring a connection gives up after
DB_ACQUIRE_TIMEOUT_SECONDS instead of queueing forever.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import json
from uuid import UUID

import asyncpg

from app.core.config import Settings, get_settings
from app.core.exceptions import UnavailableError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_db_pool(settings: Settings):
    """
    Initialize database connection pool on startup.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    _pool = await asyncpg.create_pool(
        dsn=settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        max_inactive_connection_lifetime=300,  # Close idle connections after 5 minutes
        timeout=settings.DB_CONNECT_TIMEOUT_SECONDS,
        command_timeout=settings.DB_COMMAND_TIMEOUT_SECONDS,
    )
    logger.info(
        f"Database pool initialized: {_pool.get_size()} / {_pool.get_max_size()} connections"
    )


async def close_db_pool():
    """
    Close database connection pool on shutdown.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool | None:
    return _pool


@asynccontextmanager
async def get_db_connection():
    """
    Get a database connection from the pool.

    Usage:
        async with get_db_connection() as conn:
            admin = await resolve_admin(conn, admin_id)
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    try:
        connection = await _pool.acquire(timeout=get_settings().DB_ACQUIRE_TIMEOUT_SECONDS)
    except TimeoutError as e:
        raise UnavailableError("Timed out waiting for a database connection") from e

    try:
        yield connection
    finally:
        await _pool.release(connection)


async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/events")
        async def list_events(conn: asyncpg.Connection = Depends(get_db)):
            ...
    """
    async with get_db_connection() as connection:
        yield connection


def _normalize(value):
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


def parse_row(record: asyncpg.Record | dict | None, json_fields: tuple[str, ...] = ("details",)) -> dict | None:
    """Convert a row into a dict with string ids and decoded JSONB fields."""
    if record is None:
        return None

    result = {key: _normalize(value) for key, value in dict(record).items()}
    for field in json_fields:
        if isinstance(result.get(field), str):
            result[field] = json.loads(result[field])
    return result


def parse_rows(records: list[asyncpg.Record], json_fields: tuple[str, ...] = ("details",)) -> list[dict]:
    return [parse_row(record, json_fields) for record in records]
