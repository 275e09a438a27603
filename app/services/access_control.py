"""Access control decisions over the jurisdiction tree.

Two independent families of checks:

- node access: may this admin act on a given state, branch or zone?
- admin management: does this admin's role outrank the target role?

Workflows compose the two explicitly. Neither check mutates anything.
"""

from collections.abc import Callable
from uuid import UUID

import asyncpg

from app.core.exceptions import ForbiddenError
from app.core.logging_config import audit_logger
from app.services.directory import ResolvedAdmin, node_ancestry
from app.services.roles import NODE_COLUMN, AdminRole, NodeKind, can_manage

AccessRule = Callable[[ResolvedAdmin, NodeKind, str, dict | None], bool]


def _super_admin_rule(admin: ResolvedAdmin, kind: NodeKind, node_id: str, ancestry: dict | None) -> bool:
    return True


def _state_admin_rule(admin: ResolvedAdmin, kind: NodeKind, node_id: str, ancestry: dict | None) -> bool:
    return bool(admin.state_id and ancestry and ancestry.get("state_id") == admin.state_id)


def _branch_admin_rule(admin: ResolvedAdmin, kind: NodeKind, node_id: str, ancestry: dict | None) -> bool:
    if kind == NodeKind.STATE:
        return False
    return bool(admin.branch_id and ancestry and ancestry.get("branch_id") == admin.branch_id)


def _zonal_admin_rule(admin: ResolvedAdmin, kind: NodeKind, node_id: str, ancestry: dict | None) -> bool:
    # No descent below zone, and no ascent either.
    return kind == NodeKind.ZONE and admin.zone_id is not None and admin.zone_id == node_id


def _deny_rule(admin: ResolvedAdmin, kind: NodeKind, node_id: str, ancestry: dict | None) -> bool:
    return False


ACCESS_RULES: dict[AdminRole, AccessRule] = {
    AdminRole.SUPER_ADMIN: _super_admin_rule,
    AdminRole.STATE_ADMIN: _state_admin_rule,
    AdminRole.BRANCH_ADMIN: _branch_admin_rule,
    AdminRole.ZONAL_ADMIN: _zonal_admin_rule,
    AdminRole.WORKER: _deny_rule,
    AdminRole.REGISTRAR: _deny_rule,
}

# Admin pointer each role is compared on; lookups are needed only when the
# target node sits below that level.
_COMPARED_LEVEL: dict[AdminRole, NodeKind | None] = {
    AdminRole.SUPER_ADMIN: None,
    AdminRole.STATE_ADMIN: NodeKind.STATE,
    AdminRole.BRANCH_ADMIN: NodeKind.BRANCH,
    AdminRole.ZONAL_ADMIN: None,
    AdminRole.WORKER: None,
    AdminRole.REGISTRAR: None,
}

_DEPTH: dict[NodeKind, int] = {NodeKind.STATE: 0, NodeKind.BRANCH: 1, NodeKind.ZONE: 2}


def needs_ancestry_lookup(role: AdminRole, kind: NodeKind) -> bool:
    compared = _COMPARED_LEVEL[role]
    return compared is not None and _DEPTH[kind] > _DEPTH[compared]


def local_ancestry(kind: NodeKind, node_id: str) -> dict[str, str | None]:
    """Ancestry known without a lookup: only the node's own level."""
    ancestry: dict[str, str | None] = {"state_id": None, "branch_id": None, "zone_id": None}
    ancestry[NODE_COLUMN[kind]] = node_id
    return ancestry


def can_access_node(
    admin: ResolvedAdmin, kind: NodeKind, node_id: UUID | str, ancestry: dict | None
) -> bool:
    """Pure decision given the target node's ancestry."""
    return ACCESS_RULES[admin.role](admin, kind, str(node_id), ancestry)


async def can_access(
    conn: asyncpg.Connection, admin: ResolvedAdmin, kind: NodeKind, node_id: UUID | str
) -> bool:
    """Can the admin act on this node? Performs at most one lookup."""
    node_id = str(node_id)
    if needs_ancestry_lookup(admin.role, kind):
        ancestry = await node_ancestry(conn, kind, node_id)
    else:
        ancestry = local_ancestry(kind, node_id)
    return can_access_node(admin, kind, node_id, ancestry)


async def ensure_node_access(
    conn: asyncpg.Connection,
    admin: ResolvedAdmin,
    kind: NodeKind,
    node_id: UUID | str,
    message: str | None = None,
) -> None:
    if not await can_access(conn, admin, kind, node_id):
        reason = message or f"Cannot access this {kind.value}"
        audit_logger.log_access_denied(admin.id, f"access {kind.value} {node_id}", reason)
        raise ForbiddenError(reason)


async def ensure_can_manage(
    conn: asyncpg.Connection,
    actor: ResolvedAdmin,
    target: ResolvedAdmin,
    action: str,
) -> None:
    """Rank check followed by a jurisdiction-overlap check on the target's node."""
    if not can_manage(actor.role, target.role):
        reason = f"Insufficient permissions to {action} this admin"
        audit_logger.log_access_denied(actor.id, f"{action} {target.id}", reason)
        raise ForbiddenError(reason)

    jurisdiction = target.jurisdiction
    if jurisdiction is not None and not await can_access(
        conn, actor, jurisdiction.level, jurisdiction.node_id
    ):
        reason = f"Cannot {action} an admin outside your jurisdiction"
        audit_logger.log_access_denied(actor.id, f"{action} {target.id}", reason)
        raise ForbiddenError(reason)
