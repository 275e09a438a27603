"""Participation decisions and event status transitions.

Every change here appends to the event's status timeline in the same
transaction as the change itself.
"""

from typing import Any
from uuid import UUID

import asyncpg

from app.core.database import parse_row, parse_rows
from app.core.exceptions import ForbiddenError, InvalidArgumentError
from app.core.logging_config import audit_logger, get_logger
from app.services.cascade import (
    PARTICIPATION_SET,
    EventStatus,
    ParticipationStatus,
    can_participate,
    can_update_event_status,
)
from app.services.directory import ResolvedAdmin
from app.services.events import fetch_event, get_event
from app.services.timeline import append_timeline_entry, list_timeline, participation_counts

logger = get_logger(__name__)


def _parse_status(enum_cls, value: str, label: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidArgumentError(f"Invalid {label} '{value}'. Allowed: {allowed}") from e


async def update_participation(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    status: ParticipationStatus | str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Upsert the admin's participation record and log the transition."""
    status = _parse_status(ParticipationStatus, status, "participation status")

    event = await fetch_event(conn, event_id)
    if not can_participate(event, admin):
        audit_logger.log_access_denied(
            admin.id, f"participate in {event_id}", "not eligible"
        )
        raise ForbiddenError("You are not eligible to participate in this event")

    async with conn.transaction():
        previous = await conn.fetchval(
            """
            SELECT status FROM event_participation
            WHERE event_id = $1 AND admin_id = $2
            FOR UPDATE
            """,
            str(event_id),
            admin.id,
        )
        row = await conn.fetchrow(
            """
            INSERT INTO event_participation (event_id, admin_id, status, reason, confirmed_by)
            VALUES ($1, $2, $3, $4, $2)
            ON CONFLICT (event_id, admin_id) DO UPDATE
            SET status = EXCLUDED.status,
                reason = EXCLUDED.reason,
                confirmed_by = EXCLUDED.confirmed_by,
                updated_at = NOW()
            RETURNING *
            """,
            str(event_id),
            admin.id,
            status.value,
            reason,
        )
        await append_timeline_entry(
            conn,
            event_id,
            f"participation_{status.value}",
            admin.id,
            {
                "reason": reason,
                "previous_status": previous or "none",
                "admin_name": admin.name,
                "admin_role": admin.role.value,
            },
        )

    record = parse_row(row)
    record["previous_status"] = previous or "none"
    logger.info(f"Admin {admin.id} participation on event {event_id}: {previous} -> {status.value}")
    return record


async def update_event_status(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    status: EventStatus | str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Change the event status. Allowed for the creator or anyone above its level."""
    status = _parse_status(EventStatus, status, "event status")

    async with conn.transaction():
        event = await fetch_event(conn, event_id, for_update=True)
        if not can_update_event_status(event, admin):
            audit_logger.log_access_denied(
                admin.id, f"update status of {event_id}", "not creator and not higher rank"
            )
            raise ForbiddenError("Insufficient permissions to update this event's status")

        row = await conn.fetchrow(
            """
            UPDATE events SET status = $2, updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            str(event_id),
            status.value,
        )
        await append_timeline_entry(
            conn,
            event_id,
            status.value,
            admin.id,
            {
                "reason": reason,
                "previous_status": event["status"],
                "admin_name": admin.name,
                "admin_role": admin.role.value,
            },
        )

    audit_logger.log_event_status_change(str(event_id), admin.id, event["status"], status.value)
    return parse_row(row)


async def get_status_timeline(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Timeline of a visible event, newest entry first."""
    await get_event(conn, admin, event_id)
    return await list_timeline(conn, event_id, limit, offset)


async def get_participation_options(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    event = await get_event(conn, admin, event_id)
    eligible = can_participate(event, admin)

    current = None
    if eligible:
        current = await conn.fetchrow(
            """
            SELECT status, reason, updated_at FROM event_participation
            WHERE event_id = $1 AND admin_id = $2
            """,
            str(event_id),
            admin.id,
        )

    return {
        "event_id": event["id"],
        "can_participate": eligible,
        "current": parse_row(current),
        "options": [member.value for member in ParticipationStatus] if eligible else [],
    }


async def get_participation_summary(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    """Counts per status plus the individual records of a visible event."""
    event = await get_event(conn, admin, event_id)
    rows = await conn.fetch(
        """
        SELECT p.admin_id, p.status, p.reason, p.updated_at,
               u.name AS admin_name, u.role AS admin_role
        FROM event_participation p
        JOIN users u ON u.id = p.admin_id
        WHERE p.event_id = $1
        ORDER BY p.updated_at DESC
        """,
        event["id"],
    )
    return {
        "event_id": event["id"],
        "counts": await participation_counts(conn, event["id"]),
        "records": parse_rows(rows),
    }


async def list_events_pending_participation(
    conn: asyncpg.Connection, admin: ResolvedAdmin
) -> list[dict[str, Any]]:
    """Events the admin may join but has not answered yet."""
    if admin.role not in PARTICIPATION_SET:
        return []
    column, pointer = PARTICIPATION_SET[admin.role]
    node_id = getattr(admin, pointer)
    if node_id is None:
        return []

    rows = await conn.fetch(
        f"""
        SELECT e.*
        FROM events e
        LEFT JOIN event_participation p ON p.event_id = e.id AND p.admin_id = $1
        WHERE $2 = ANY(e.{column})
          AND e.created_by <> $1
          AND e.is_active = TRUE
          AND e.status NOT IN ('completed', 'cancelled')
          AND (p.status IS NULL OR p.status = 'pending')
        ORDER BY e.event_date
        """,
        admin.id,
        node_id,
    )
    return parse_rows(rows)
