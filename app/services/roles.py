"""Roles, ranks and jurisdiction levels.

The role set and the tree shape are fixed. Every rule that depends on a role
is a lookup into one of the tables below, so adding a role means extending
each table rather than hunting for string comparisons.
"""

from enum import Enum


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    STATE_ADMIN = "state_admin"
    BRANCH_ADMIN = "branch_admin"
    ZONAL_ADMIN = "zonal_admin"
    WORKER = "worker"
    REGISTRAR = "registrar"


class NodeKind(str, Enum):
    STATE = "state"
    BRANCH = "branch"
    ZONE = "zone"


class NodeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ADMIN_ROLES: tuple[AdminRole, ...] = (
    AdminRole.SUPER_ADMIN,
    AdminRole.STATE_ADMIN,
    AdminRole.BRANCH_ADMIN,
    AdminRole.ZONAL_ADMIN,
)

# Strict total order; non-admin roles rank 0 and never manage anyone.
ROLE_RANK: dict[AdminRole, int] = {
    AdminRole.SUPER_ADMIN: 4,
    AdminRole.STATE_ADMIN: 3,
    AdminRole.BRANCH_ADMIN: 2,
    AdminRole.ZONAL_ADMIN: 1,
    AdminRole.WORKER: 0,
    AdminRole.REGISTRAR: 0,
}

# The node an admin of each role is scoped to.
ROLE_NODE_KIND: dict[AdminRole, NodeKind | None] = {
    AdminRole.SUPER_ADMIN: None,
    AdminRole.STATE_ADMIN: NodeKind.STATE,
    AdminRole.BRANCH_ADMIN: NodeKind.BRANCH,
    AdminRole.ZONAL_ADMIN: NodeKind.ZONE,
    AdminRole.WORKER: None,
    AdminRole.REGISTRAR: None,
}

NODE_KIND_ROLE: dict[NodeKind, AdminRole] = {
    NodeKind.STATE: AdminRole.STATE_ADMIN,
    NodeKind.BRANCH: AdminRole.BRANCH_ADMIN,
    NodeKind.ZONE: AdminRole.ZONAL_ADMIN,
}

NODE_PARENT: dict[NodeKind, NodeKind | None] = {
    NodeKind.STATE: None,
    NodeKind.BRANCH: NodeKind.STATE,
    NodeKind.ZONE: NodeKind.BRANCH,
}

# Admin pointer column for each node kind, outermost first.
NODE_COLUMN: dict[NodeKind, str] = {
    NodeKind.STATE: "state_id",
    NodeKind.BRANCH: "branch_id",
    NodeKind.ZONE: "zone_id",
}

# Cascade order, top first.
CASCADE_LEVELS: tuple[AdminRole, ...] = ADMIN_ROLES


def parse_role(value: str | AdminRole) -> AdminRole:
    """Coerce a stored role string into the enumeration."""
    return value if isinstance(value, AdminRole) else AdminRole(value)


def rank(role: str | AdminRole) -> int:
    return ROLE_RANK[parse_role(role)]


def outranks_level(actor_role: str | AdminRole, level: str | AdminRole) -> bool:
    return rank(actor_role) > rank(level)


def can_manage(actor_role: str | AdminRole, target_role: str | AdminRole) -> bool:
    """True iff the actor strictly outranks the target.

    Role only; jurisdiction overlap is checked by the caller.
    """
    actor = parse_role(actor_role)
    if actor not in ADMIN_ROLES:
        return False
    return rank(actor) > rank(target_role)


def node_kind_for_role(role: str | AdminRole) -> NodeKind | None:
    return ROLE_NODE_KIND[parse_role(role)]
