"""Event cascade engine.

Events are created at one level and extended downwards by subordinate
admins. Delegation sets only ever grow: every write is a union computed
against the version that was read, retried when another admin got there
first.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import asyncpg

from app.core.config import get_settings
from app.core.database import parse_row, parse_rows
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from app.core.logging_config import audit_logger, get_logger
from app.services.cascade import (
    DELEGATION_RULES,
    DelegationTarget,
    added_ids,
    can_view_event,
    completed_steps,
    creation_sets,
    delegation_error,
    derive_cascade_level,
    merge_ids,
    next_level,
    pending_steps,
)
from app.services.directory import (
    LIVE_NODE,
    ResolvedAdmin,
    branch_ids_in_state,
    zone_ids_in_branch,
)
from app.services.jurisdictions import get_pickup_stations_in_zone
from app.services.roles import CASCADE_LEVELS, AdminRole, NodeKind, parse_role
from app.services.timeline import append_timeline_entry, participation_counts

logger = get_logger(__name__)

# Node kind an event creator selects at each level.
SELECTION_KIND: dict[AdminRole, NodeKind | None] = {
    AdminRole.SUPER_ADMIN: NodeKind.STATE,
    AdminRole.STATE_ADMIN: NodeKind.BRANCH,
    AdminRole.BRANCH_ADMIN: NodeKind.ZONE,
    AdminRole.ZONAL_ADMIN: None,
}

_EVENT_QUERY = """
    SELECT e.*, u.name AS creator_name,
           (SELECT COUNT(*) FROM event_pickup_stations eps WHERE eps.event_id = e.id)
               AS pickup_station_count
    FROM events e
    LEFT JOIN users u ON u.id = e.created_by
"""


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are read as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _with_cascade(event: dict[str, Any]) -> dict[str, Any]:
    level = derive_cascade_level(event)
    event["cascade_level"] = level.value
    nxt = next_level(level)
    event["next_level"] = nxt.value if nxt else None
    return event


async def fetch_event(
    conn: asyncpg.Connection, event_id: UUID | str, for_update: bool = False
) -> dict[str, Any]:
    """Load an event by id. Raises NotFoundError."""
    if for_update:
        row = await conn.fetchrow("SELECT * FROM events WHERE id = $1 FOR UPDATE", str(event_id))
    else:
        row = await conn.fetchrow(_EVENT_QUERY + " WHERE e.id = $1", str(event_id))
    if row is None:
        raise NotFoundError("Event not found")
    return parse_row(row)


async def ensure_event_visible(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event: dict[str, Any]
) -> None:
    state_branch_ids = None
    if (
        admin.role == AdminRole.STATE_ADMIN
        and admin.state_id
        and event.get("creator_level") == AdminRole.BRANCH_ADMIN.value
    ):
        state_branch_ids = await branch_ids_in_state(conn, admin.state_id)
    if not can_view_event(event, admin, state_branch_ids):
        audit_logger.log_access_denied(admin.id, f"view event {event['id']}", "not visible")
        raise ForbiddenError("You do not have access to this event")


async def get_event(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    event = await fetch_event(conn, event_id)
    await ensure_event_visible(conn, admin, event)
    return _with_cascade(event)


async def accessible_child_ids(
    conn: asyncpg.Connection, admin: ResolvedAdmin, kind: NodeKind, ids: list[str]
) -> set[str]:
    """The subset of ``ids`` naming live nodes of ``kind`` the admin can access."""
    if kind == NodeKind.STATE:
        if admin.role != AdminRole.SUPER_ADMIN:
            return set()
        rows = await conn.fetch(
            f"SELECT id FROM states WHERE id = ANY($1::uuid[]) AND {LIVE_NODE}", ids
        )
        return {str(row["id"]) for row in rows}
    if kind == NodeKind.BRANCH:
        if not admin.state_id:
            return set()
        if admin.role == AdminRole.BRANCH_ADMIN:
            return {admin.branch_id} & set(ids)
        return set(await branch_ids_in_state(conn, admin.state_id)) & set(ids)
    if not admin.branch_id:
        return set()
    return set(await zone_ids_in_branch(conn, admin.branch_id)) & set(ids)


async def _ensure_accessible(
    conn: asyncpg.Connection, admin: ResolvedAdmin, kind: NodeKind, ids: list[str]
) -> None:
    accessible = await accessible_child_ids(conn, admin, kind, ids)
    outside = [node_id for node_id in ids if node_id not in accessible]
    if outside:
        raise InvalidArgumentError(
            f"Some {kind.value} ids are not accessible: {', '.join(outside)}",
            {"ids": outside},
        )


# ============================================
# CREATION
# ============================================


async def create_event_at_level(
    conn: asyncpg.Connection,
    creator: ResolvedAdmin,
    level: AdminRole | str,
    name: str,
    event_date: datetime,
    selected_ids: list[UUID | str] | None = None,
    description: str | None = None,
    registration_deadline: datetime | None = None,
    banner_image_url: str | None = None,
) -> dict[str, Any]:
    """Create an event scoped at the creator's own level."""
    level = parse_role(level)
    if level != creator.role or level not in SELECTION_KIND:
        audit_logger.log_access_denied(creator.id, f"create {level.value} event", "role mismatch")
        raise ForbiddenError(f"Only {level.value.replace('_', ' ')}s can create events at this level")
    if creator.role != AdminRole.SUPER_ADMIN and creator.jurisdiction is None:
        raise InvalidStateError("Admin has no jurisdiction assigned")
    event_date = _as_utc(event_date)
    registration_deadline = _as_utc(registration_deadline)
    if registration_deadline and registration_deadline > event_date:
        raise InvalidArgumentError("Registration deadline must be before the event date")

    ids = merge_ids([], [str(node_id) for node_id in selected_ids or []])
    kind = SELECTION_KIND[level]
    if kind is not None:
        if not ids:
            raise InvalidArgumentError(f"Select at least one {kind.value}")
        await _ensure_accessible(conn, creator, kind, ids)

    sets = creation_sets(creator, ids)
    async with conn.transaction():
        row = await conn.fetchrow(
            """
            INSERT INTO events (
                name, description, event_date, registration_deadline, banner_image_url,
                created_by, creator_level,
                available_states, available_branches, available_zones,
                selected_branches, selected_zones
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7,
                    $8::uuid[], $9::uuid[], $10::uuid[], $11::uuid[], $12::uuid[])
            RETURNING *
            """,
            name,
            description,
            event_date,
            registration_deadline,
            banner_image_url,
            creator.id,
            level.value,
            sets["available_states"],
            sets["available_branches"],
            sets["available_zones"],
            sets["selected_branches"],
            sets["selected_zones"],
        )
        event = parse_row(row)
        await append_timeline_entry(
            conn,
            event["id"],
            event["status"],
            creator.id,
            {"action": "created", "creator_level": level.value, "admin_name": creator.name},
        )

    logger.info(f"Event {event['id']} created at {level.value} level by {creator.id}")
    event["creator_name"] = creator.name
    event["pickup_station_count"] = 0
    return _with_cascade(event)


# ============================================
# DELEGATION
# ============================================


async def delegate_selection(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    new_ids: list[UUID | str],
    target: DelegationTarget | str,
) -> dict[str, Any]:
    """Append branches or zones to an event's delegation sets.

    The write is a set union conditioned on the version that was read. A
    concurrent writer bumps the version, so the update matches no row and the
    union is recomputed from a fresh read.
    """
    target = DelegationTarget(target)
    kind = NodeKind.BRANCH if target == DelegationTarget.BRANCHES else NodeKind.ZONE
    ids = merge_ids([], [str(node_id) for node_id in new_ids])
    if not ids:
        raise InvalidArgumentError(f"Select at least one {kind.value}")

    rule = DELEGATION_RULES[target]
    available_column = rule["available_set"]
    selected_column = rule["selected_set"]

    event = await fetch_event(conn, event_id)
    reason = delegation_error(event, admin, target)
    if reason:
        audit_logger.log_access_denied(admin.id, f"delegate {target.value} on {event_id}", reason)
        raise ForbiddenError(reason)

    await _ensure_accessible(conn, admin, kind, ids)

    max_retries = get_settings().DELEGATION_MAX_RETRIES
    for attempt in range(max_retries):
        if attempt:
            event = await fetch_event(conn, event_id)

        new_available = added_ids(event.get(available_column), ids)
        new_selected = added_ids(event.get(selected_column), ids)
        if not new_available and not new_selected:
            return _with_cascade(event)

        async with conn.transaction():
            row = await conn.fetchrow(
                f"""
                UPDATE events
                SET {available_column} = $2::uuid[],
                    {selected_column} = $3::uuid[],
                    version = version + 1,
                    updated_at = NOW()
                WHERE id = $1 AND version = $4
                RETURNING *
                """,
                str(event_id),
                merge_ids(event.get(available_column), ids),
                merge_ids(event.get(selected_column), ids),
                event["version"],
            )
            if row is not None:
                await append_timeline_entry(
                    conn,
                    event_id,
                    f"{target.value}_delegated",
                    admin.id,
                    {"added": new_available, "admin_name": admin.name, "admin_role": admin.role.value},
                )

        if row is None:
            logger.info(
                f"Delegation on event {event_id} lost a version race "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            continue

        audit_logger.log_delegation(str(event_id), admin.id, target.value, new_available)

        updated = parse_row(row)
        updated["creator_name"] = event.get("creator_name")
        updated["pickup_station_count"] = event.get("pickup_station_count", 0)
        return _with_cascade(updated)

    raise ConflictError(
        "Event was modified concurrently, please retry",
        {"retries": max_retries},
    )


async def delegate_branches(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    branch_ids: list[UUID | str],
) -> dict[str, Any]:
    return await delegate_selection(conn, admin, event_id, branch_ids, DelegationTarget.BRANCHES)


async def delegate_zones(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    zone_ids: list[UUID | str],
) -> dict[str, Any]:
    return await delegate_selection(conn, admin, event_id, zone_ids, DelegationTarget.ZONES)


# ============================================
# PICKUP STATIONS
# ============================================


async def _zone_event(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    if admin.role != AdminRole.ZONAL_ADMIN or not admin.zone_id:
        raise ForbiddenError("Only zonal admins can manage pickup stations")
    event = await fetch_event(conn, event_id)
    if admin.zone_id not in (event.get("available_zones") or []):
        audit_logger.log_access_denied(
            admin.id, f"pickup stations on {event_id}", "zone not in event"
        )
        raise ForbiddenError("Event is not available in your zone")
    return event


async def assign_pickup_stations(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    stations: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Replace this zone's pickup assignments on the event.

    Assignments belonging to other zones are left untouched.
    """
    await _zone_event(conn, admin, event_id)

    station_ids = [str(station["pickup_station_id"]) for station in stations]
    if len(set(station_ids)) != len(station_ids):
        raise InvalidArgumentError("Each pickup station can only be assigned once")

    valid = await get_pickup_stations_in_zone(conn, admin.zone_id, station_ids)
    invalid = [station_id for station_id in station_ids if station_id not in valid]
    if invalid:
        raise InvalidArgumentError(
            "Pickup stations must be active and belong to your zone",
            {"invalid_station_ids": invalid},
        )

    default_capacity = get_settings().DEFAULT_PICKUP_CAPACITY
    records = []
    for station in stations:
        capacity = station.get("max_capacity") or default_capacity
        if capacity <= 0:
            raise InvalidArgumentError("Capacity must be positive")
        records.append(
            (
                str(event_id),
                str(station["pickup_station_id"]),
                admin.zone_id,
                station["departure_time"],
                capacity,
                station.get("notes"),
                admin.id,
            )
        )

    async with conn.transaction():
        await conn.execute(
            "DELETE FROM event_pickup_stations WHERE event_id = $1 AND zone_id = $2",
            str(event_id),
            admin.zone_id,
        )
        if records:
            await conn.executemany(
                """
                INSERT INTO event_pickup_stations (
                    event_id, pickup_station_id, zone_id, departure_time,
                    max_capacity, current_count, notes, assigned_by
                )
                VALUES ($1, $2, $3, $4, $5, 0, $6, $7)
                """,
                records,
            )
        await append_timeline_entry(
            conn,
            event_id,
            "pickup_stations_assigned",
            admin.id,
            {"zone_id": admin.zone_id, "count": len(records), "admin_name": admin.name},
        )

    logger.info(f"{len(records)} pickup stations assigned on event {event_id} for zone {admin.zone_id}")
    return await list_event_pickup_stations(conn, admin, event_id)


async def update_pickup_station_assignment(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    station_id: UUID | str,
    departure_time: str | None = None,
    max_capacity: int | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    await _zone_event(conn, admin, event_id)

    current = await conn.fetchrow(
        """
        SELECT * FROM event_pickup_stations
        WHERE event_id = $1 AND pickup_station_id = $2 AND zone_id = $3
        """,
        str(event_id),
        str(station_id),
        admin.zone_id,
    )
    if current is None:
        raise NotFoundError("Pickup station is not assigned to this event in your zone")
    if max_capacity is not None and max_capacity < current["current_count"]:
        raise InvalidArgumentError("Capacity cannot be lower than the current count")

    row = await conn.fetchrow(
        """
        UPDATE event_pickup_stations
        SET departure_time = COALESCE($3, departure_time),
            max_capacity = COALESCE($4, max_capacity),
            notes = COALESCE($5, notes)
        WHERE event_id = $1 AND pickup_station_id = $2
        RETURNING *
        """,
        str(event_id),
        str(station_id),
        departure_time,
        max_capacity,
        notes,
    )
    return parse_row(row)


async def remove_pickup_station_assignment(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    event_id: UUID | str,
    station_id: UUID | str,
) -> None:
    await _zone_event(conn, admin, event_id)

    result = await conn.execute(
        """
        DELETE FROM event_pickup_stations
        WHERE event_id = $1 AND pickup_station_id = $2 AND zone_id = $3
        """,
        str(event_id),
        str(station_id),
        admin.zone_id,
    )
    if int(result.split()[-1]) == 0:
        raise NotFoundError("Pickup station is not assigned to this event in your zone")


async def list_event_pickup_stations(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> list[dict[str, Any]]:
    """Pickup assignments; zonal admins only see their own zone."""
    query = """
        SELECT eps.*, ps.name AS station_name, ps.capacity AS station_capacity,
               z.name AS zone_name
        FROM event_pickup_stations eps
        JOIN pickup_stations ps ON ps.id = eps.pickup_station_id
        JOIN zones z ON z.id = eps.zone_id
        WHERE eps.event_id = $1
    """
    params: list[Any] = [str(event_id)]

    if admin.role == AdminRole.ZONAL_ADMIN:
        await _zone_event(conn, admin, event_id)
        params.append(admin.zone_id)
        query += " AND eps.zone_id = $2"
    else:
        await get_event(conn, admin, event_id)

    rows = await conn.fetch(query + " ORDER BY z.name, ps.name", *params)
    return parse_rows(rows)


# ============================================
# READS
# ============================================


async def list_events_for_admin(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Events visible to the admin, newest first."""
    params: list[Any] = []
    conditions: list[str] = []

    if admin.role != AdminRole.SUPER_ADMIN:
        params.append(admin.id)
        visible = [f"e.created_by = ${len(params)}"]
        if admin.role == AdminRole.STATE_ADMIN and admin.state_id:
            params.append(admin.state_id)
            visible.append(f"${len(params)} = ANY(e.available_states)")
            visible.append(
                f"""(e.creator_level = 'branch_admin' AND e.available_branches && ARRAY(
                    SELECT b.id FROM branches b WHERE b.state_id = ${len(params)}
                ))"""
            )
        elif admin.role == AdminRole.BRANCH_ADMIN and admin.branch_id:
            params.append(admin.branch_id)
            visible.append(f"${len(params)} = ANY(e.available_branches)")
        elif admin.role == AdminRole.ZONAL_ADMIN and admin.zone_id:
            params.append(admin.zone_id)
            visible.append(f"${len(params)} = ANY(e.available_zones)")
        conditions.append("(" + " OR ".join(visible) + ")")

    if status:
        params.append(status)
        conditions.append(f"e.status = ${len(params)}")

    query = _EVENT_QUERY
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    params.extend([limit, offset])
    query += f" ORDER BY e.created_at DESC LIMIT ${len(params) - 1} OFFSET ${len(params)}"

    rows = await conn.fetch(query, *params)
    return [_with_cascade(event) for event in parse_rows(rows)]


async def get_event_cascade_status(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    event = await get_event(conn, admin, event_id)
    return {
        "event_id": event["id"],
        "name": event["name"],
        "status": event["status"],
        "creator_level": event["creator_level"],
        "current_level": event["cascade_level"],
        "next_level": event["next_level"],
        "completed_steps": completed_steps(event),
        "pending_steps": pending_steps(event),
        "totals": {
            "states": len(event.get("available_states") or []),
            "branches": len(event.get("available_branches") or []),
            "zones": len(event.get("available_zones") or []),
            "pickup_stations": event.get("pickup_station_count") or 0,
        },
        "participation": await participation_counts(conn, event["id"]),
    }


async def get_event_cascade_flow(
    conn: asyncpg.Connection, admin: ResolvedAdmin, event_id: UUID | str
) -> dict[str, Any]:
    """Per-level view of the cascade with the admins involved at each level."""
    event = await get_event(conn, admin, event_id)

    rows = await conn.fetch(
        """
        SELECT u.id, u.name, u.email, u.role, u.state_id, u.branch_id, u.zone_id,
               p.status AS participation_status, p.updated_at AS participation_updated_at
        FROM users u
        LEFT JOIN event_participation p ON p.admin_id = u.id AND p.event_id = $1
        WHERE u.is_active = TRUE AND (
            (u.role = 'state_admin' AND u.state_id = ANY($2::uuid[]))
            OR (u.role = 'branch_admin' AND u.branch_id = ANY($3::uuid[]))
            OR (u.role = 'zonal_admin' AND u.zone_id = ANY($4::uuid[]))
        )
        ORDER BY u.name
        """,
        event["id"],
        event.get("available_states") or [],
        event.get("available_branches") or [],
        event.get("available_zones") or [],
    )
    admins = parse_rows(rows)

    current = parse_role(event["cascade_level"])
    current_index = CASCADE_LEVELS.index(current)
    levels = []
    for index, level in enumerate(CASCADE_LEVELS):
        if index < current_index:
            status = "completed"
        elif index == current_index:
            status = "current"
        else:
            status = "pending"
        levels.append(
            {
                "level": level.value,
                "status": status,
                "admins": [row for row in admins if row["role"] == level.value],
            }
        )

    return {
        "event_id": event["id"],
        "name": event["name"],
        "creator_level": event["creator_level"],
        "current_level": current.value,
        "levels": levels,
        "totals": {
            "branches": len(event.get("available_branches") or []),
            "zones": len(event.get("available_zones") or []),
            "pickup_stations": event.get("pickup_station_count") or 0,
        },
        "participation": await participation_counts(conn, event["id"]),
    }
