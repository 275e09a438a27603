"""Pure cascade rules for events.

An event's cascade level is never stored. It is derived from which
delegation sets are populated, so every function here works on a plain
event dict and performs no I/O.
"""

from enum import Enum
from typing import Any

from app.services.directory import ResolvedAdmin
from app.services.roles import CASCADE_LEVELS, AdminRole, outranks_level, parse_role


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipationStatus(str, Enum):
    PENDING = "pending"
    PARTICIPATING = "participating"
    NOT_PARTICIPATING = "not_participating"


class DelegationTarget(str, Enum):
    BRANCHES = "branches"
    ZONES = "zones"


# Event column holding each admin's own node when checking participation.
PARTICIPATION_SET: dict[AdminRole, tuple[str, str]] = {
    AdminRole.STATE_ADMIN: ("available_states", "state_id"),
    AdminRole.BRANCH_ADMIN: ("available_branches", "branch_id"),
    AdminRole.ZONAL_ADMIN: ("available_zones", "zone_id"),
}

# For each delegation target: the role allowed to delegate, the creator
# levels it may delegate on, and the parent set that must hold its node.
DELEGATION_RULES: dict[DelegationTarget, dict[str, Any]] = {
    DelegationTarget.BRANCHES: {
        "role": AdminRole.STATE_ADMIN,
        "creator_levels": (AdminRole.SUPER_ADMIN,),
        "parent_set": "available_states",
        "pointer": "state_id",
        "available_set": "available_branches",
        "selected_set": "selected_branches",
    },
    DelegationTarget.ZONES: {
        "role": AdminRole.BRANCH_ADMIN,
        "creator_levels": (AdminRole.SUPER_ADMIN, AdminRole.STATE_ADMIN),
        "parent_set": "available_branches",
        "pointer": "branch_id",
        "available_set": "available_zones",
        "selected_set": "selected_zones",
    },
}


def merge_ids(existing: list[str] | None, new_ids: list[str]) -> list[str]:
    """Union preserving first-seen order. Never drops an existing id."""
    merged: list[str] = []
    seen: set[str] = set()
    for value in [*(existing or []), *new_ids]:
        key = str(value)
        if key not in seen:
            seen.add(key)
            merged.append(key)
    return merged


def added_ids(existing: list[str] | None, new_ids: list[str]) -> list[str]:
    current = {str(value) for value in existing or []}
    return [value for value in merge_ids([], new_ids) if value not in current]


def derive_cascade_level(event: dict[str, Any]) -> AdminRole:
    """Level the event has reached in the cascade.

    Zones present means the leaf level is reachable, and the zone selection
    itself was committed at branch level.
    """
    if event.get("selected_zones"):
        return AdminRole.BRANCH_ADMIN
    if event.get("selected_branches"):
        return AdminRole.STATE_ADMIN
    creator_level = parse_role(event.get("creator_level") or AdminRole.SUPER_ADMIN)
    if creator_level == AdminRole.SUPER_ADMIN:
        return AdminRole.SUPER_ADMIN
    if event.get("available_zones"):
        return AdminRole.ZONAL_ADMIN
    return creator_level


def completed_steps(event: dict[str, Any]) -> list[str]:
    steps = []
    if event.get("available_states"):
        steps.append("states_selected")
    if event.get("selected_branches") or event.get("available_branches"):
        steps.append("branches_selected")
    if event.get("selected_zones") or event.get("available_zones"):
        steps.append("zones_selected")
    if event.get("pickup_station_count"):
        steps.append("pickup_stations_assigned")
    return steps


def pending_steps(event: dict[str, Any]) -> list[str]:
    done = set(completed_steps(event))
    order = [
        "states_selected",
        "branches_selected",
        "zones_selected",
        "pickup_stations_assigned",
    ]
    return [step for step in order if step not in done]


def next_level(level: AdminRole) -> AdminRole | None:
    """The admin level that acts after ``level`` in the cascade, or None at the leaf."""
    index = CASCADE_LEVELS.index(level)
    if index + 1 < len(CASCADE_LEVELS):
        return CASCADE_LEVELS[index + 1]
    return None


def creation_sets(
    creator: ResolvedAdmin, selected_ids: list[str]
) -> dict[str, list[str]]:
    """Delegation sets for a new event, denormalizing the creator's ancestry."""
    selected = merge_ids([], selected_ids)
    own_state = [creator.state_id] if creator.state_id else []
    own_branch = [creator.branch_id] if creator.branch_id else []
    own_zone = [creator.zone_id] if creator.zone_id else []

    sets: dict[str, list[str]] = {
        "available_states": [],
        "available_branches": [],
        "available_zones": [],
        "selected_branches": [],
        "selected_zones": [],
    }
    if creator.role == AdminRole.SUPER_ADMIN:
        sets["available_states"] = selected
    elif creator.role == AdminRole.STATE_ADMIN:
        sets["available_states"] = own_state
        sets["available_branches"] = selected
        sets["selected_branches"] = selected
    elif creator.role == AdminRole.BRANCH_ADMIN:
        sets["available_states"] = own_state
        sets["available_branches"] = own_branch
        sets["available_zones"] = selected
        sets["selected_zones"] = selected
    elif creator.role == AdminRole.ZONAL_ADMIN:
        sets["available_states"] = own_state
        sets["available_branches"] = own_branch
        sets["available_zones"] = own_zone
    return sets


def _contains(values: list[str] | None, item: str | None) -> bool:
    return item is not None and item in {str(value) for value in values or []}


def is_creator(event: dict[str, Any], admin: ResolvedAdmin) -> bool:
    return str(event.get("created_by")) == admin.id


def can_view_event(
    event: dict[str, Any],
    admin: ResolvedAdmin,
    state_branch_ids: list[str] | None = None,
) -> bool:
    """Visibility rule shared by every event read.

    ``state_branch_ids`` are the branches of a state admin's state; they let a
    state admin see branch-level events targeted inside its state.
    """
    if admin.role == AdminRole.SUPER_ADMIN or is_creator(event, admin):
        return True
    if admin.role == AdminRole.STATE_ADMIN:
        if _contains(event.get("available_states"), admin.state_id):
            return True
        return event.get("creator_level") == AdminRole.BRANCH_ADMIN.value and any(
            _contains(event.get("available_branches"), branch_id)
            for branch_id in state_branch_ids or []
        )
    if admin.role == AdminRole.BRANCH_ADMIN:
        return _contains(event.get("available_branches"), admin.branch_id)
    if admin.role == AdminRole.ZONAL_ADMIN:
        return _contains(event.get("available_zones"), admin.zone_id)
    return False


def can_participate(event: dict[str, Any], admin: ResolvedAdmin) -> bool:
    """Non-creator admins whose own node is in the matching available set."""
    if is_creator(event, admin) or admin.role not in PARTICIPATION_SET:
        return False
    column, pointer = PARTICIPATION_SET[admin.role]
    return _contains(event.get(column), getattr(admin, pointer))


def can_update_event_status(event: dict[str, Any], admin: ResolvedAdmin) -> bool:
    """Creators, or anyone outranking the creator level treated as a role."""
    if is_creator(event, admin):
        return True
    return outranks_level(admin.role, event["creator_level"])


def delegation_error(
    event: dict[str, Any], admin: ResolvedAdmin, target: DelegationTarget
) -> str | None:
    """Reason the admin may not delegate into ``target`` on this event, or None."""
    rule = DELEGATION_RULES[target]
    if admin.role != rule["role"]:
        return f"Only {rule['role'].value.replace('_', ' ')}s can delegate {target.value}"
    if parse_role(event["creator_level"]) not in rule["creator_levels"]:
        return f"{target.value.capitalize()} cannot be delegated on a {event['creator_level']} event"
    if not _contains(event.get(rule["parent_set"]), getattr(admin, rule["pointer"])):
        return "Event is not available in your jurisdiction"
    return None
