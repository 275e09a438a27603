"""Admin lifecycle: registration, approval, enable/disable and reassignment.

Replacement and jurisdiction transfer are one workflow. Both parties are
locked in id order inside a single transaction, every check runs before
the first write, and the source admin always ends up jurisdiction-free.
"""

from enum import Enum
from typing import Any
from uuid import UUID

import asyncpg

from app.core.database import parse_rows
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from app.core.logging_config import audit_logger, get_logger
from app.services.access_control import can_access, ensure_can_manage, ensure_node_access
from app.services.directory import (
    ADMIN_SELECT,
    ResolvedAdmin,
    build_resolved_admin,
    get_user_row,
    jurisdiction_chain,
    resolve_admin,
)
from app.services.notifications import notification_service, notify_in_background
from app.services.roles import (
    ADMIN_ROLES,
    NODE_COLUMN,
    AdminRole,
    can_manage,
    node_kind_for_role,
    parse_role,
    rank,
)

logger = get_logger(__name__)


class ReassignMode(str, Enum):
    REPLACE = "replace"
    TRANSFER = "transfer"


# The role each admin approves and the one its lists are scoped to.
SUBORDINATE_ROLE: dict[AdminRole, AdminRole] = {
    AdminRole.SUPER_ADMIN: AdminRole.STATE_ADMIN,
    AdminRole.STATE_ADMIN: AdminRole.BRANCH_ADMIN,
    AdminRole.BRANCH_ADMIN: AdminRole.ZONAL_ADMIN,
}


async def _get_admin_row(conn: asyncpg.Connection, admin_id: UUID | str) -> dict[str, Any]:
    row = await get_user_row(conn, admin_id)
    if row is None:
        raise NotFoundError("Admin not found")
    return row


# ============================================
# REGISTRATION AND APPROVAL
# ============================================


async def register_admin(
    conn: asyncpg.Connection,
    name: str,
    email: str,
    role: AdminRole | str,
    node_id: UUID | str | None = None,
    phone: str | None = None,
    bootstrap: bool = False,
) -> dict[str, Any]:
    """Create an admin awaiting approval.

    Super admins can only be created through bootstrap and are approved
    immediately. Everyone else is attached to a live node of their level.
    """
    role = parse_role(role)
    if role not in ADMIN_ROLES:
        raise InvalidArgumentError("Role must be an admin role")

    pointers: dict[str, str | None] = {"state_id": None, "branch_id": None, "zone_id": None}
    if role == AdminRole.SUPER_ADMIN:
        if not bootstrap:
            raise ForbiddenError("Super admins can only be created by bootstrap")
    else:
        kind = node_kind_for_role(role)
        if node_id is None:
            raise InvalidArgumentError(f"A {kind.value} id is required for a {role.value}")
        pointers = await jurisdiction_chain(conn, kind, node_id, require_live=True)

    approved = role == AdminRole.SUPER_ADMIN
    try:
        user_id = await conn.fetchval(
            """
            INSERT INTO users (
                name, email, phone, role, state_id, branch_id, zone_id,
                is_active, is_approved, approved_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, TRUE, $8, CASE WHEN $8 THEN NOW() END)
            RETURNING id
            """,
            name,
            email.lower(),
            phone,
            role.value,
            pointers["state_id"],
            pointers["branch_id"],
            pointers["zone_id"],
            approved,
        )
    except asyncpg.UniqueViolationError as e:
        raise InvalidStateError("An account with this email already exists") from e

    logger.info(f"Admin {user_id} registered as {role.value}")
    return await _get_admin_row(conn, user_id)


def _ensure_direct_superior(approver: ResolvedAdmin, target: ResolvedAdmin, action: str) -> None:
    if rank(approver.role) != rank(target.role) + 1:
        reason = f"Only the admin one rank above can {action} a {target.role.value}"
        audit_logger.log_access_denied(approver.id, f"{action} {target.id}", reason)
        raise ForbiddenError(reason)


async def _ensure_target_node(
    conn: asyncpg.Connection, approver: ResolvedAdmin, target: ResolvedAdmin, action: str
) -> None:
    jurisdiction = target.jurisdiction
    if jurisdiction is not None:
        await ensure_node_access(
            conn,
            approver,
            jurisdiction.level,
            jurisdiction.node_id,
            f"Cannot {action} an admin outside your jurisdiction",
        )


async def approve_admin(
    conn: asyncpg.Connection, approver: ResolvedAdmin, admin_id: UUID | str
) -> dict[str, Any]:
    target = await resolve_admin(conn, admin_id)
    _ensure_direct_superior(approver, target, "approve")
    await _ensure_target_node(conn, approver, target, "approve")
    if target.is_approved:
        raise InvalidStateError("Admin is already approved")

    await conn.execute(
        """
        UPDATE users
        SET is_approved = TRUE, is_active = TRUE, approved_by = $2, approved_at = NOW(),
            rejected_by = NULL, rejected_at = NULL, rejection_reason = NULL,
            updated_at = NOW()
        WHERE id = $1
        """,
        target.id,
        approver.id,
    )
    audit_logger.log_admin_approval(target.id, approver.id, approved=True)
    notify_in_background(
        notification_service.send_admin_approval_notice(target.email, target.name, True)
    )
    return await _get_admin_row(conn, target.id)


async def reject_admin(
    conn: asyncpg.Connection,
    approver: ResolvedAdmin,
    admin_id: UUID | str,
    reason: str | None = None,
) -> dict[str, Any]:
    target = await resolve_admin(conn, admin_id)
    _ensure_direct_superior(approver, target, "reject")
    await _ensure_target_node(conn, approver, target, "reject")
    if target.is_approved:
        raise InvalidStateError("Admin is already approved")
    if not target.is_active:
        raise InvalidStateError("Admin is already rejected")

    await conn.execute(
        """
        UPDATE users
        SET is_approved = FALSE, is_active = FALSE, rejected_by = $2, rejected_at = NOW(),
            rejection_reason = $3, updated_at = NOW()
        WHERE id = $1
        """,
        target.id,
        approver.id,
        reason,
    )
    audit_logger.log_admin_approval(target.id, approver.id, approved=False, reason=reason)
    notify_in_background(
        notification_service.send_admin_approval_notice(target.email, target.name, False, reason)
    )
    return await _get_admin_row(conn, target.id)


# ============================================
# ENABLE / DISABLE
# ============================================


async def disable_admin(
    conn: asyncpg.Connection,
    actor: ResolvedAdmin,
    admin_id: UUID | str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Disable an active admin ranked below the actor, inside its jurisdiction."""
    target = await resolve_admin(conn, admin_id)
    await ensure_can_manage(conn, actor, target, "disable")
    if not target.is_active:
        raise InvalidStateError("Admin is already disabled")

    result = await conn.execute(
        """
        UPDATE users
        SET is_active = FALSE, disabled_by = $2, disabled_at = NOW(),
            disable_reason = $3, updated_at = NOW()
        WHERE id = $1 AND is_active = TRUE
        """,
        target.id,
        actor.id,
        reason,
    )
    if int(result.split()[-1]) == 0:
        raise InvalidStateError("Admin is already disabled")
    audit_logger.log_admin_status_change(target.id, actor.id, enabled=False, reason=reason)
    notify_in_background(
        notification_service.send_admin_status_notice(target.email, target.name, False, reason)
    )
    return await _get_admin_row(conn, target.id)


async def enable_admin(
    conn: asyncpg.Connection,
    actor: ResolvedAdmin,
    admin_id: UUID | str,
    reason: str | None = None,
) -> dict[str, Any]:
    target = await resolve_admin(conn, admin_id)
    await ensure_can_manage(conn, actor, target, "enable")
    if target.is_active:
        raise InvalidStateError("Admin is already active")

    result = await conn.execute(
        """
        UPDATE users
        SET is_active = TRUE, enabled_by = $2, enabled_at = NOW(),
            disabled_by = NULL, disabled_at = NULL, disable_reason = NULL,
            updated_at = NOW()
        WHERE id = $1 AND is_active = FALSE
        """,
        target.id,
        actor.id,
    )
    if int(result.split()[-1]) == 0:
        raise InvalidStateError("Admin is already active")
    audit_logger.log_admin_status_change(target.id, actor.id, enabled=True, reason=reason)
    notify_in_background(
        notification_service.send_admin_status_notice(target.email, target.name, True, reason)
    )
    return await _get_admin_row(conn, target.id)


# ============================================
# REPLACE / TRANSFER
# ============================================


async def _lock_party(
    conn: asyncpg.Connection, admin_id: str, label: str
) -> ResolvedAdmin:
    row = await get_user_row(conn, admin_id)
    if row is None:
        raise NotFoundError(f"{label} not found")
    admin = build_resolved_admin(row)
    if admin.role not in ADMIN_ROLES:
        raise InvalidStateError(f"{label} is not an admin")
    return admin


async def _validate_reassignment(
    conn: asyncpg.Connection,
    requester: ResolvedAdmin,
    mode: ReassignMode,
    source: ResolvedAdmin,
    destination: ResolvedAdmin,
    level: AdminRole | None,
    node_id: str | None,
) -> dict[str, str | None]:
    """Run every check for a reassignment and return the pointer chain to hand over."""
    if not can_manage(requester.role, source.role) or (
        mode == ReassignMode.TRANSFER and not can_manage(requester.role, destination.role)
    ):
        reason = f"Insufficient permissions to {mode.value} this admin"
        audit_logger.log_access_denied(requester.id, f"{mode.value} {source.id}", reason)
        raise ForbiddenError(reason)

    if destination.has_assignment:
        raise InvalidStateError("New admin is already assigned to a jurisdiction")

    if source.role != destination.role:
        raise InvalidStateError("Both admins must hold the same role")

    if mode == ReassignMode.REPLACE:
        jurisdiction = source.jurisdiction
        if jurisdiction is None:
            raise InvalidStateError("Current admin has no jurisdiction to hand over")
        kind, target_node = jurisdiction.level, jurisdiction.node_id
        chain = source.pointers()
    else:
        if level is None or level != source.role:
            raise InvalidStateError("Admin role must match both admins")
        kind = node_kind_for_role(level)
        if kind is None:
            raise InvalidStateError(f"Jurisdiction cannot be transferred for {level.value}")
        if not node_id:
            raise InvalidStateError(f"A {kind.value} id is required for a {level.value} transfer")
        target_node = node_id
        chain = await jurisdiction_chain(conn, kind, target_node)
        if source.pointers()[NODE_COLUMN[kind]] != target_node:
            raise ForbiddenError(f"Current admin does not manage this {kind.value}")

    if not await can_access(conn, requester, kind, target_node):
        audit_logger.log_access_denied(
            requester.id, f"{mode.value} {source.id}", "outside jurisdiction"
        )
        raise ForbiddenError(f"Cannot {mode.value} an admin outside your jurisdiction")
    return chain


async def reassign_jurisdiction(
    conn: asyncpg.Connection,
    requester: ResolvedAdmin,
    mode: ReassignMode | str,
    source_id: UUID | str,
    destination_id: UUID | str,
    reason: str | None = None,
    level: AdminRole | str | None = None,
    node_id: UUID | str | None = None,
) -> dict[str, Any]:
    """Move a jurisdiction from ``source`` to ``destination`` atomically.

    ``replace`` hands over the source's own pointers. ``transfer`` names the
    level and node explicitly, and the source must manage exactly that node.
    """
    mode = ReassignMode(mode)
    source_id, destination_id = str(source_id), str(destination_id)
    if source_id == destination_id:
        raise InvalidArgumentError("Current and new admin must be different")
    level = parse_role(level) if level else None
    node_id = str(node_id) if node_id else None

    try:
        async with conn.transaction():
            # Lock both rows in a fixed order so opposite reassignments cannot deadlock.
            await conn.fetch(
                "SELECT id FROM users WHERE id = ANY($1::uuid[]) ORDER BY id FOR UPDATE",
                sorted([source_id, destination_id]),
            )
            source = await _lock_party(conn, source_id, "Current admin")
            destination = await _lock_party(conn, destination_id, "New admin")

            chain = await _validate_reassignment(
                conn, requester, mode, source, destination, level, node_id
            )

            await conn.execute(
                """
                UPDATE users
                SET state_id = NULL, branch_id = NULL, zone_id = NULL,
                    is_active = FALSE, disabled_by = $2, disabled_at = NOW(),
                    disable_reason = $3, replaced_by = $4, replacement_date = NOW(),
                    updated_at = NOW()
                WHERE id = $1
                """,
                source.id,
                requester.id,
                reason,
                destination.id,
            )
            await conn.execute(
                """
                UPDATE users
                SET state_id = $2, branch_id = $3, zone_id = $4,
                    is_active = TRUE, enabled_by = $5, enabled_at = NOW(),
                    updated_at = NOW()
                WHERE id = $1
                """,
                destination.id,
                chain["state_id"],
                chain["branch_id"],
                chain["zone_id"],
                requester.id,
            )

            previous_admin = await _get_admin_row(conn, source.id)
            new_admin = await _get_admin_row(conn, destination.id)
    except (asyncpg.SerializationError, asyncpg.DeadlockDetectedError) as e:
        raise ConflictError("Admins were modified concurrently, please retry") from e

    audit_logger.log_reassignment(mode.value, source.id, destination.id, requester.id, chain)
    notify_in_background(
        notification_service.send_reassignment_notice(new_admin["email"], new_admin["name"], True, mode.value)
    )
    notify_in_background(
        notification_service.send_reassignment_notice(
            previous_admin["email"], previous_admin["name"], False, mode.value
        )
    )
    return {
        "mode": mode.value,
        "jurisdiction": chain,
        "previous_admin": previous_admin,
        "new_admin": new_admin,
    }


async def replace_admin(
    conn: asyncpg.Connection,
    requester: ResolvedAdmin,
    current_admin_id: UUID | str,
    new_admin_id: UUID | str,
    reason: str | None = None,
) -> dict[str, Any]:
    return await reassign_jurisdiction(
        conn, requester, ReassignMode.REPLACE, current_admin_id, new_admin_id, reason
    )


async def transfer_jurisdiction(
    conn: asyncpg.Connection,
    requester: ResolvedAdmin,
    from_admin_id: UUID | str,
    to_admin_id: UUID | str,
    admin_role: AdminRole | str,
    node_id: UUID | str | None,
    reason: str | None = None,
) -> dict[str, Any]:
    return await reassign_jurisdiction(
        conn,
        requester,
        ReassignMode.TRANSFER,
        from_admin_id,
        to_admin_id,
        reason,
        level=admin_role,
        node_id=node_id,
    )


# ============================================
# LISTINGS
# ============================================


def _managed_scope(actor: ResolvedAdmin, params: list[Any]) -> str | None:
    """SQL restricting users to the actor's jurisdiction, or None for no access."""
    if actor.role == AdminRole.SUPER_ADMIN:
        return ""
    kind = node_kind_for_role(actor.role)
    if kind is None:
        return None
    column = NODE_COLUMN[kind]
    node_id = actor.pointers()[column]
    if node_id is None:
        return None
    params.append(node_id)
    return f" AND u.{column} = ${len(params)}"


async def _list_scoped_admins(
    conn: asyncpg.Connection,
    actor: ResolvedAdmin,
    roles: list[AdminRole],
    extra: str = "",
) -> list[dict[str, Any]]:
    if not roles:
        return []
    params: list[Any] = [[role.value for role in roles]]
    scope = _managed_scope(actor, params)
    if scope is None:
        return []
    query = ADMIN_SELECT + " WHERE u.role = ANY($1::text[])" + scope + extra
    rows = await conn.fetch(query + " ORDER BY u.name", *params)
    return parse_rows(rows)


def _lower_admin_roles(actor: ResolvedAdmin) -> list[AdminRole]:
    return [role for role in ADMIN_ROLES if can_manage(actor.role, role)]


async def list_accessible_admins(
    conn: asyncpg.Connection,
    actor: ResolvedAdmin,
    role: AdminRole | str | None = None,
) -> list[dict[str, Any]]:
    """Admins ranked below the actor within its jurisdiction."""
    roles = _lower_admin_roles(actor)
    if role is not None:
        roles = [r for r in roles if r == parse_role(role)]
    return await _list_scoped_admins(conn, actor, roles)


async def list_disabled_admins(
    conn: asyncpg.Connection, actor: ResolvedAdmin
) -> list[dict[str, Any]]:
    return await _list_scoped_admins(
        conn, actor, _lower_admin_roles(actor), " AND u.is_active = FALSE"
    )


async def list_pending_admins(
    conn: asyncpg.Connection, approver: ResolvedAdmin
) -> list[dict[str, Any]]:
    """Registrations awaiting this approver's decision."""
    subordinate = SUBORDINATE_ROLE.get(approver.role)
    if subordinate is None:
        return []
    return await _list_scoped_admins(
        conn,
        approver,
        [subordinate],
        " AND u.is_approved = FALSE AND u.is_active = TRUE",
    )
