"""Append-only event status timeline and participation tallies."""

import json
from typing import Any
from uuid import UUID

import asyncpg

from app.core.database import parse_row, parse_rows


async def append_timeline_entry(
    conn: asyncpg.Connection,
    event_id: UUID | str,
    status: str,
    updated_by: str | None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Append one entry. Entries are never updated or deleted."""
    row = await conn.fetchrow(
        """
        INSERT INTO event_status_timeline (event_id, status, updated_by, details)
        VALUES ($1, $2, $3, $4)
        RETURNING *
        """,
        str(event_id),
        status,
        updated_by,
        json.dumps(details or {}, default=str),
    )
    return parse_row(row)


async def list_timeline(
    conn: asyncpg.Connection,
    event_id: UUID | str,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Timeline entries newest first.

    Ordered by the serial id rather than the timestamp so entries written in
    the same transaction keep their insertion order.
    """
    rows = await conn.fetch(
        """
        SELECT t.id, t.event_id, t.status, t.updated_by, t.details, t.timestamp,
               u.name AS updated_by_name, u.role AS updated_by_role
        FROM event_status_timeline t
        LEFT JOIN users u ON u.id = t.updated_by
        WHERE t.event_id = $1
        ORDER BY t.id DESC
        LIMIT $2 OFFSET $3
        """,
        str(event_id),
        limit,
        offset,
    )
    return parse_rows(rows)


async def participation_counts(
    conn: asyncpg.Connection, event_id: UUID | str
) -> dict[str, int]:
    rows = await conn.fetch(
        """
        SELECT status, COUNT(*) AS count
        FROM event_participation
        WHERE event_id = $1
        GROUP BY status
        """,
        str(event_id),
    )
    counts = {"pending": 0, "participating": 0, "not_participating": 0}
    for row in rows:
        counts[row["status"]] = row["count"]
    counts["total"] = sum(counts.values())
    return counts
