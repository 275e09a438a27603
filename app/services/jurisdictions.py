"""Jurisdiction node lifecycle and pickup station reference data."""

from typing import Any
from uuid import UUID

import asyncpg

from app.core.database import parse_row, parse_rows
from app.core.exceptions import (
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from app.core.logging_config import audit_logger, get_logger
from app.services.access_control import can_access, ensure_node_access
from app.services.directory import ResolvedAdmin, node_ancestry
from app.services.roles import (
    NODE_KIND_ROLE,
    NODE_PARENT,
    AdminRole,
    NodeKind,
    NodeStatus,
    rank,
)

logger = get_logger(__name__)

NODE_TABLE: dict[NodeKind, str] = {
    NodeKind.STATE: "states",
    NodeKind.BRANCH: "branches",
    NodeKind.ZONE: "zones",
}


def creation_status(creator_role: AdminRole, kind: NodeKind) -> NodeStatus:
    """Nodes created by the admin of the parent level wait for approval.

    Anyone ranked higher than that creates the node already approved.
    """
    parent = NODE_PARENT[kind]
    if parent is not None and creator_role == NODE_KIND_ROLE[parent]:
        return NodeStatus.PENDING
    return NodeStatus.APPROVED


def can_create_node(creator_role: AdminRole, kind: NodeKind) -> bool:
    parent = NODE_PARENT[kind]
    if parent is None:
        return creator_role == AdminRole.SUPER_ADMIN
    return rank(creator_role) >= rank(NODE_KIND_ROLE[parent])


def can_review_node(reviewer_role: AdminRole, kind: NodeKind) -> bool:
    """Reviewers sit at least one rank above the admin who creates the node pending."""
    return rank(reviewer_role) >= rank(NODE_KIND_ROLE[kind]) + 2


async def _insert_node(
    conn: asyncpg.Connection, kind: NodeKind, query: str, *params
) -> dict[str, Any]:
    try:
        row = await conn.fetchrow(query, *params)
    except asyncpg.UniqueViolationError as e:
        raise InvalidStateError(
            f"A {kind.value} with this name already exists here"
        ) from e
    return parse_row(row)


async def create_state(
    conn: asyncpg.Connection,
    creator: ResolvedAdmin,
    name: str,
    code: str | None = None,
    description: str | None = None,
    country: str | None = None,
) -> dict[str, Any]:
    """Create a state. Only super admins create states, always approved."""
    if not can_create_node(creator.role, NodeKind.STATE):
        raise ForbiddenError("Only super admins can create states")

    state = await _insert_node(
        conn,
        NodeKind.STATE,
        """
        INSERT INTO states (
            name, code, description, country, is_active, status,
            created_by, reviewed_by, reviewed_at
        )
        VALUES ($1, $2, $3, $4, TRUE, 'approved', $5, $5, NOW())
        RETURNING *
        """,
        name,
        code,
        description,
        country,
        creator.id,
    )
    logger.info(f"State {state['id']} created by {creator.id}")
    return state


async def create_branch(
    conn: asyncpg.Connection,
    creator: ResolvedAdmin,
    state_id: UUID | str,
    name: str,
    location: str | None = None,
) -> dict[str, Any]:
    """Create a branch under a state the creator can access."""
    if not can_create_node(creator.role, NodeKind.BRANCH):
        raise ForbiddenError("Insufficient permissions to create branches")

    state = await node_ancestry(conn, NodeKind.STATE, state_id)
    if state is None:
        raise NotFoundError("State not found")
    await ensure_node_access(
        conn, creator, NodeKind.STATE, state_id, "Cannot create branches in this state"
    )

    status = creation_status(creator.role, NodeKind.BRANCH)
    approved = status == NodeStatus.APPROVED
    branch = await _insert_node(
        conn,
        NodeKind.BRANCH,
        """
        INSERT INTO branches (
            name, state_id, location, is_active, status,
            created_by, reviewed_by, reviewed_at
        )
        VALUES (
            $1, $2, $3, $4, $5, $6,
            CASE WHEN $4 THEN $6::uuid END,
            CASE WHEN $4 THEN NOW() END
        )
        RETURNING *
        """,
        name,
        str(state_id),
        location,
        approved,
        status.value,
        creator.id,
    )
    branch["state_name"] = state["name"]
    logger.info(f"Branch {branch['id']} created by {creator.id} ({status.value})")
    return branch


async def create_zone(
    conn: asyncpg.Connection,
    creator: ResolvedAdmin,
    branch_id: UUID | str,
    name: str,
) -> dict[str, Any]:
    """Create a zone under a branch the creator can access."""
    if not can_create_node(creator.role, NodeKind.ZONE):
        raise ForbiddenError("Insufficient permissions to create zones")

    branch = await node_ancestry(conn, NodeKind.BRANCH, branch_id)
    if branch is None:
        raise NotFoundError("Branch not found")
    await ensure_node_access(
        conn, creator, NodeKind.BRANCH, branch_id, "Cannot create zones in this branch"
    )

    status = creation_status(creator.role, NodeKind.ZONE)
    approved = status == NodeStatus.APPROVED
    zone = await _insert_node(
        conn,
        NodeKind.ZONE,
        """
        INSERT INTO zones (
            name, branch_id, is_active, status,
            created_by, reviewed_by, reviewed_at
        )
        VALUES (
            $1, $2, $3, $4, $5,
            CASE WHEN $3 THEN $5::uuid END,
            CASE WHEN $3 THEN NOW() END
        )
        RETURNING *
        """,
        name,
        str(branch_id),
        approved,
        status.value,
        creator.id,
    )
    zone["branch_name"] = branch["name"]
    zone["state_id"] = branch["state_id"]
    logger.info(f"Zone {zone['id']} created by {creator.id} ({status.value})")
    return zone


async def get_node(
    conn: asyncpg.Connection, kind: NodeKind, node_id: UUID | str
) -> dict[str, Any]:
    """Fetch a node by id with its ancestry, whatever its status."""
    row = await conn.fetchrow(
        f"SELECT * FROM {NODE_TABLE[kind]} WHERE id = $1", str(node_id)
    )
    if row is None:
        raise NotFoundError(f"{kind.value.capitalize()} not found")

    node = parse_row(row)
    if kind == NodeKind.ZONE:
        ancestry = await node_ancestry(conn, kind, node_id)
        node["state_id"] = ancestry["state_id"] if ancestry else None
    return node


async def _review_node(
    conn: asyncpg.Connection,
    reviewer: ResolvedAdmin,
    kind: NodeKind,
    node_id: UUID | str,
    approve: bool,
    reason: str | None,
) -> dict[str, Any]:
    node = await get_node(conn, kind, node_id)

    if not can_review_node(reviewer.role, kind):
        raise ForbiddenError(f"Insufficient permissions to review this {kind.value}")
    if not await can_access(conn, reviewer, kind, node_id):
        audit_logger.log_access_denied(
            reviewer.id, f"review {kind.value} {node_id}", "outside jurisdiction"
        )
        raise ForbiddenError(f"Cannot review a {kind.value} outside your jurisdiction")
    if node["status"] != NodeStatus.PENDING.value:
        raise InvalidStateError(f"{kind.value.capitalize()} is already {node['status']}")

    status = NodeStatus.APPROVED if approve else NodeStatus.REJECTED
    row = await conn.fetchrow(
        f"""
        UPDATE {NODE_TABLE[kind]}
        SET status = $2, is_active = $3, reviewed_by = $4, reviewed_at = NOW(),
            rejection_reason = $5, updated_at = NOW()
        WHERE id = $1
        RETURNING *
        """,
        str(node_id),
        status.value,
        approve,
        reviewer.id,
        None if approve else reason,
    )
    logger.info(f"{kind.value.capitalize()} {node_id} {status.value} by {reviewer.id}")
    return parse_row(row)


async def approve_node(
    conn: asyncpg.Connection,
    reviewer: ResolvedAdmin,
    kind: NodeKind,
    node_id: UUID | str,
) -> dict[str, Any]:
    """Approve a pending node; approval activates it."""
    return await _review_node(conn, reviewer, kind, node_id, True, None)


async def reject_node(
    conn: asyncpg.Connection,
    reviewer: ResolvedAdmin,
    kind: NodeKind,
    node_id: UUID | str,
    reason: str | None = None,
) -> dict[str, Any]:
    return await _review_node(conn, reviewer, kind, node_id, False, reason)


async def list_pending_nodes(
    conn: asyncpg.Connection, reviewer: ResolvedAdmin, kind: NodeKind
) -> list[dict[str, Any]]:
    """Pending nodes of one kind this reviewer may approve."""
    if kind == NodeKind.STATE or not can_review_node(reviewer.role, kind):
        return []

    if kind == NodeKind.BRANCH:
        query = """
            SELECT b.*, s.name AS state_name
            FROM branches b JOIN states s ON s.id = b.state_id
            WHERE b.status = 'pending'
        """
        alias = "b"
    else:
        query = """
            SELECT z.*, b.name AS branch_name, b.state_id
            FROM zones z JOIN branches b ON b.id = z.branch_id
            WHERE z.status = 'pending'
        """
        alias = "z"

    params: list[Any] = []
    if reviewer.role != AdminRole.SUPER_ADMIN:
        params.append(reviewer.state_id)
        query += f" AND b.state_id = ${len(params)}"

    rows = await conn.fetch(query + f" ORDER BY {alias}.created_at", *params)
    return parse_rows(rows)


# ============================================
# PICKUP STATIONS
# ============================================


async def create_pickup_station(
    conn: asyncpg.Connection,
    creator: ResolvedAdmin,
    zone_id: UUID | str,
    name: str,
    capacity: int | None = None,
) -> dict[str, Any]:
    """Register a pickup station inside a live zone."""
    ancestry = await node_ancestry(conn, NodeKind.ZONE, zone_id)
    if ancestry is None:
        raise NotFoundError("Zone not found")
    await ensure_node_access(
        conn, creator, NodeKind.ZONE, zone_id, "Cannot add pickup stations to this zone"
    )
    if capacity is not None and capacity <= 0:
        raise InvalidArgumentError("Capacity must be positive")

    try:
        row = await conn.fetchrow(
            """
            INSERT INTO pickup_stations (name, zone_id, branch_id, capacity)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            name,
            str(zone_id),
            ancestry["branch_id"],
            capacity,
        )
    except asyncpg.UniqueViolationError as e:
        raise InvalidStateError("A pickup station with this name already exists in the zone") from e

    station = parse_row(row)
    station["zone_name"] = ancestry["name"]
    station["state_id"] = ancestry["state_id"]
    return station


async def list_zone_pickup_stations(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    zone_id: UUID | str,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    await ensure_node_access(conn, admin, NodeKind.ZONE, zone_id)

    query = "SELECT * FROM pickup_stations WHERE zone_id = $1"
    if not include_inactive:
        query += " AND is_active = TRUE"
    rows = await conn.fetch(query + " ORDER BY name", str(zone_id))
    return parse_rows(rows)


async def get_pickup_stations_in_zone(
    conn: asyncpg.Connection, zone_id: UUID | str, station_ids: list[str]
) -> dict[str, dict[str, Any]]:
    """Active stations among ``station_ids`` that belong to the zone, keyed by id."""
    rows = await conn.fetch(
        """
        SELECT * FROM pickup_stations
        WHERE zone_id = $1 AND id = ANY($2::uuid[]) AND is_active = TRUE
        """,
        str(zone_id),
        [str(station_id) for station_id in station_ids],
    )
    return {station["id"]: station for station in parse_rows(rows)}
