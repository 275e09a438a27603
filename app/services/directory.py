"""Jurisdiction directory: admin resolution and tree lookups.

Every other service resolves the calling admin through ``resolve_admin`` so
that access decisions all see the same, fully resolved jurisdiction.
"""

from typing import Any
from uuid import UUID

import asyncpg
from pydantic import BaseModel

from app.core.database import parse_row, parse_rows
from app.core.exceptions import InvalidStateError, NotAnAdminError, NotFoundError
from app.services.roles import (
    ADMIN_ROLES,
    AdminRole,
    NodeKind,
    NodeStatus,
    node_kind_for_role,
    parse_role,
)

# Normal traversal only sees live nodes; lookups by id see everything.
LIVE_NODE = "is_active = TRUE AND status = 'approved'"


class Jurisdiction(BaseModel):
    """The node an admin is scoped to, with its derived ancestry."""

    level: NodeKind
    node_id: str
    state_id: str | None = None
    branch_id: str | None = None
    zone_id: str | None = None


class ResolvedAdmin(BaseModel):
    """An admin record with its jurisdiction nodes resolved."""

    id: str
    name: str
    email: str
    role: AdminRole
    is_active: bool
    is_approved: bool
    state: dict[str, Any] | None = None
    branch: dict[str, Any] | None = None
    zone: dict[str, Any] | None = None

    @property
    def state_id(self) -> str | None:
        return self.state["id"] if self.state else None

    @property
    def branch_id(self) -> str | None:
        return self.branch["id"] if self.branch else None

    @property
    def zone_id(self) -> str | None:
        return self.zone["id"] if self.zone else None

    @property
    def has_assignment(self) -> bool:
        return any((self.state, self.branch, self.zone))

    @property
    def jurisdiction(self) -> Jurisdiction | None:
        kind = node_kind_for_role(self.role)
        if kind is None:
            return None
        node_id = {
            NodeKind.STATE: self.state_id,
            NodeKind.BRANCH: self.branch_id,
            NodeKind.ZONE: self.zone_id,
        }[kind]
        if node_id is None:
            return None
        return Jurisdiction(
            level=kind,
            node_id=node_id,
            state_id=self.state_id,
            branch_id=self.branch_id,
            zone_id=self.zone_id,
        )

    def pointers(self) -> dict[str, str | None]:
        return {
            "state_id": self.state_id,
            "branch_id": self.branch_id,
            "zone_id": self.zone_id,
        }

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
        }


ADMIN_SELECT = """
    SELECT
        u.id, u.name, u.email, u.phone, u.role, u.is_active, u.is_approved,
        u.created_at, u.approved_at, u.disabled_at, u.disable_reason,
        u.replaced_by, u.replacement_date,
        u.state_id, s.name AS state_name, s.code AS state_code,
        u.branch_id, b.name AS branch_name, b.location AS branch_location,
        b.state_id AS branch_state_id,
        u.zone_id, z.name AS zone_name, z.branch_id AS zone_branch_id
    FROM users u
    LEFT JOIN states s ON s.id = u.state_id
    LEFT JOIN branches b ON b.id = u.branch_id
    LEFT JOIN zones z ON z.id = u.zone_id
"""

_ADMIN_QUERY = ADMIN_SELECT + " WHERE u.id = $1"


def build_resolved_admin(row: dict[str, Any]) -> ResolvedAdmin:
    """Assemble a ResolvedAdmin from a joined users row."""
    state = None
    if row.get("state_id"):
        state = {"id": row["state_id"], "name": row.get("state_name"), "code": row.get("state_code")}

    branch = None
    if row.get("branch_id"):
        branch = {
            "id": row["branch_id"],
            "name": row.get("branch_name"),
            "location": row.get("branch_location"),
            "state_id": row.get("branch_state_id"),
        }

    zone = None
    if row.get("zone_id"):
        zone = {"id": row["zone_id"], "name": row.get("zone_name"), "branch_id": row.get("zone_branch_id")}

    return ResolvedAdmin(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        role=parse_role(row["role"]),
        is_active=row["is_active"],
        is_approved=row["is_approved"],
        state=state,
        branch=branch,
        zone=zone,
    )


async def get_user_row(conn: asyncpg.Connection, user_id: UUID | str) -> dict[str, Any] | None:
    """Fetch the joined user row without role validation."""
    row = await conn.fetchrow(_ADMIN_QUERY, str(user_id))
    return parse_row(row)


async def resolve_admin(conn: asyncpg.Connection, admin_id: UUID | str) -> ResolvedAdmin:
    """Resolve an admin and its jurisdiction nodes.

    Raises:
        NotFoundError: no user with this id
        NotAnAdminError: the user holds a non-admin role
    """
    row = await get_user_row(conn, admin_id)
    if row is None:
        raise NotFoundError("Admin not found")

    admin = build_resolved_admin(row)
    if admin.role not in ADMIN_ROLES:
        raise NotAnAdminError("User is not an admin")
    return admin


async def node_ancestry(
    conn: asyncpg.Connection, kind: NodeKind, node_id: UUID | str
) -> dict[str, Any] | None:
    """Return ``{state_id, branch_id, zone_id}`` for a node, or None.

    Inactive and unapproved nodes are still addressable here.
    """
    if kind == NodeKind.STATE:
        row = await conn.fetchrow(
            """
            SELECT id AS state_id, NULL::uuid AS branch_id, NULL::uuid AS zone_id,
                   name, is_active, status
            FROM states WHERE id = $1
            """,
            str(node_id),
        )
    elif kind == NodeKind.BRANCH:
        row = await conn.fetchrow(
            """
            SELECT state_id, id AS branch_id, NULL::uuid AS zone_id,
                   name, is_active, status
            FROM branches WHERE id = $1
            """,
            str(node_id),
        )
    else:
        row = await conn.fetchrow(
            """
            SELECT b.state_id, z.branch_id, z.id AS zone_id,
                   z.name, z.is_active, z.status
            FROM zones z
            JOIN branches b ON b.id = z.branch_id
            WHERE z.id = $1
            """,
            str(node_id),
        )
    return parse_row(row)


def is_live(node: dict[str, Any]) -> bool:
    return bool(node.get("is_active")) and node.get("status") == NodeStatus.APPROVED.value


async def jurisdiction_chain(
    conn: asyncpg.Connection,
    kind: NodeKind,
    node_id: UUID | str,
    require_live: bool = False,
) -> dict[str, str | None]:
    """Build the full pointer chain an admin of this node must hold.

    This is the only place admin pointer columns are derived from, so the
    denormalized state/branch/zone columns always agree with the tree.
    """
    ancestry = await node_ancestry(conn, kind, node_id)
    if ancestry is None:
        raise NotFoundError(f"{kind.value.capitalize()} not found")
    if require_live and not is_live(ancestry):
        raise InvalidStateError(f"{kind.value.capitalize()} is not active")
    return {
        "state_id": ancestry["state_id"],
        "branch_id": ancestry["branch_id"],
        "zone_id": ancestry["zone_id"],
    }


async def branch_ids_in_state(conn: asyncpg.Connection, state_id: UUID | str) -> list[str]:
    rows = await conn.fetch(
        f"SELECT id FROM branches WHERE state_id = $1 AND {LIVE_NODE}",
        str(state_id),
    )
    return [str(row["id"]) for row in rows]


async def zone_ids_in_branch(conn: asyncpg.Connection, branch_id: UUID | str) -> list[str]:
    rows = await conn.fetch(
        f"SELECT id FROM zones WHERE branch_id = $1 AND {LIVE_NODE}",
        str(branch_id),
    )
    return [str(row["id"]) for row in rows]


# ============================================
# ACCESSIBLE NODES
# ============================================


async def list_accessible_states(
    conn: asyncpg.Connection, admin: ResolvedAdmin
) -> list[dict[str, Any]]:
    """States visible to the admin."""
    if admin.role == AdminRole.SUPER_ADMIN:
        rows = await conn.fetch(f"SELECT * FROM states WHERE {LIVE_NODE} ORDER BY name")
    elif admin.role in ADMIN_ROLES and admin.state_id:
        rows = await conn.fetch(
            f"SELECT * FROM states WHERE id = $1 AND {LIVE_NODE}", admin.state_id
        )
    else:
        return []
    return parse_rows(rows)


async def list_accessible_branches(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    state_id: UUID | None = None,
) -> list[dict[str, Any]]:
    """Branches visible to the admin, each with its state name."""
    query = """
        SELECT b.*, s.name AS state_name
        FROM branches b
        JOIN states s ON s.id = b.state_id
        WHERE b.is_active = TRUE AND b.status = 'approved'
    """
    params: list[Any] = []

    if admin.role == AdminRole.SUPER_ADMIN:
        if state_id:
            params.append(str(state_id))
            query += f" AND b.state_id = ${len(params)}"
    elif admin.role == AdminRole.STATE_ADMIN and admin.state_id:
        params.append(admin.state_id)
        query += f" AND b.state_id = ${len(params)}"
    elif admin.role in (AdminRole.BRANCH_ADMIN, AdminRole.ZONAL_ADMIN) and admin.branch_id:
        params.append(admin.branch_id)
        query += f" AND b.id = ${len(params)}"
    else:
        return []

    rows = await conn.fetch(query + " ORDER BY b.name", *params)
    return parse_rows(rows)


async def list_accessible_zones(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    branch_id: UUID | None = None,
) -> list[dict[str, Any]]:
    """Zones visible to the admin, each with its branch and state ids."""
    query = """
        SELECT z.*, b.name AS branch_name, b.state_id
        FROM zones z
        JOIN branches b ON b.id = z.branch_id
        WHERE z.is_active = TRUE AND z.status = 'approved'
    """
    params: list[Any] = []

    if admin.role == AdminRole.SUPER_ADMIN:
        pass
    elif admin.role == AdminRole.STATE_ADMIN and admin.state_id:
        params.append(admin.state_id)
        query += f" AND b.state_id = ${len(params)}"
    elif admin.role == AdminRole.BRANCH_ADMIN and admin.branch_id:
        params.append(admin.branch_id)
        query += f" AND z.branch_id = ${len(params)}"
    elif admin.role == AdminRole.ZONAL_ADMIN and admin.zone_id:
        params.append(admin.zone_id)
        query += f" AND z.id = ${len(params)}"
    else:
        return []

    if branch_id:
        params.append(str(branch_id))
        query += f" AND z.branch_id = ${len(params)}"

    rows = await conn.fetch(query + " ORDER BY z.name", *params)
    return parse_rows(rows)
