"""
Unit tests for the pure cascade rules: level derivation, set merging,
creation sets and the visibility/participation/delegation predicates.
"""

import pytest

from app.services.cascade import (
    DelegationTarget,
    added_ids,
    can_participate,
    can_update_event_status,
    can_view_event,
    completed_steps,
    creation_sets,
    delegation_error,
    derive_cascade_level,
    merge_ids,
    next_level,
    pending_steps,
)
from app.services.roles import AdminRole


def _event(**fields):
    event = {
        "id": "event-1",
        "created_by": "creator",
        "creator_level": "super_admin",
        "status": "draft",
        "available_states": [],
        "available_branches": [],
        "available_zones": [],
        "selected_branches": [],
        "selected_zones": [],
    }
    event.update(fields)
    return event


class TestMergeIds:
    def test_union_keeps_existing_and_order(self):
        assert merge_ids(["A", "B"], ["B", "C"]) == ["A", "B", "C"]

    def test_sequential_delegations_never_drop(self):
        first = merge_ids([], ["A", "B"])
        second = merge_ids(first, ["B", "C"])
        assert second == ["A", "B", "C"]
        assert len(second) == len(set(second))

    def test_duplicates_in_input_are_collapsed(self):
        assert merge_ids(None, ["A", "A", "B", "A"]) == ["A", "B"]

    def test_added_ids_reports_only_new(self):
        assert added_ids(["A", "B"], ["B", "C", "C"]) == ["C"]
        assert added_ids(["A"], ["A"]) == []


class TestCascadeLevel:
    def test_super_admin_event_without_branches(self):
        event = _event(available_states=["S1", "S2"])
        assert derive_cascade_level(event) == AdminRole.SUPER_ADMIN

    def test_branches_selected_reports_state_level(self):
        event = _event(available_states=["S1"], selected_branches=["B1"], available_branches=["B1"])
        assert derive_cascade_level(event) == AdminRole.STATE_ADMIN

    def test_zones_selected_reports_branch_level(self):
        event = _event(
            available_states=["S1"],
            selected_branches=["B1"],
            available_branches=["B1"],
            selected_zones=["Z1"],
            available_zones=["Z1"],
        )
        assert derive_cascade_level(event) == AdminRole.BRANCH_ADMIN

    def test_zonal_event_is_leaf(self):
        event = _event(
            creator_level="zonal_admin",
            available_states=["S1"],
            available_branches=["B1"],
            available_zones=["Z1"],
        )
        assert derive_cascade_level(event) == AdminRole.ZONAL_ADMIN

    def test_state_event_before_selection_stays_at_creator_level(self):
        event = _event(creator_level="state_admin", available_states=["S1"])
        assert derive_cascade_level(event) == AdminRole.STATE_ADMIN

    def test_next_level(self):
        assert next_level(AdminRole.SUPER_ADMIN) == AdminRole.STATE_ADMIN
        assert next_level(AdminRole.BRANCH_ADMIN) == AdminRole.ZONAL_ADMIN
        assert next_level(AdminRole.ZONAL_ADMIN) is None

    def test_steps(self):
        event = _event(available_states=["S1"], available_branches=["B1"], selected_branches=["B1"])
        assert completed_steps(event) == ["states_selected", "branches_selected"]
        assert pending_steps(event) == ["zones_selected", "pickup_stations_assigned"]

        event["available_zones"] = ["Z1"]
        event["pickup_station_count"] = 2
        assert pending_steps(event) == []


class TestCreationSets:
    def test_super_admin_selects_states(self, make_admin):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        sets = creation_sets(creator, ["S1", "S2", "S1"])
        assert sets["available_states"] == ["S1", "S2"]
        assert sets["available_branches"] == []
        assert sets["selected_branches"] == []

    def test_state_admin_denormalizes_own_state(self, make_admin):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        sets = creation_sets(creator, ["B1"])
        assert sets["available_states"] == ["S1"]
        assert sets["available_branches"] == ["B1"]
        assert sets["selected_branches"] == ["B1"]

    def test_branch_admin_denormalizes_chain(self, make_admin):
        creator = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        sets = creation_sets(creator, ["Z1", "Z2"])
        assert sets["available_states"] == ["S1"]
        assert sets["available_branches"] == ["B1"]
        assert sets["available_zones"] == ["Z1", "Z2"]
        assert sets["selected_zones"] == ["Z1", "Z2"]

    def test_zonal_admin_uses_own_zone(self, make_admin):
        creator = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")
        sets = creation_sets(creator, [])
        assert sets["available_zones"] == ["Z1"]
        assert sets["selected_zones"] == []


class TestVisibility:
    def test_super_admin_sees_everything(self, make_admin):
        assert can_view_event(_event(), make_admin(AdminRole.SUPER_ADMIN)) is True

    def test_creator_sees_own_event(self, make_admin):
        admin = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B9")
        assert can_view_event(_event(created_by=admin.id), admin) is True

    def test_state_admin_by_available_state(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        assert can_view_event(_event(available_states=["S1", "S2"]), admin) is True
        assert can_view_event(_event(available_states=["S2"]), admin) is False

    def test_state_admin_sees_branch_events_in_state(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        event = _event(creator_level="branch_admin", available_branches=["B1"])
        assert can_view_event(event, admin, ["B1", "B2"]) is True
        assert can_view_event(event, admin, ["B3"]) is False

    def test_branch_and_zonal_admins(self, make_admin):
        branch_admin = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        zonal_admin = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")
        event = _event(available_states=["S1"], available_branches=["B1"])

        assert can_view_event(event, branch_admin) is True
        assert can_view_event(event, zonal_admin) is False
        event["available_zones"] = ["Z1"]
        assert can_view_event(event, zonal_admin) is True

    def test_non_admin_never_sees(self, make_admin):
        worker = make_admin(AdminRole.WORKER, state_id="S1")
        assert can_view_event(_event(available_states=["S1"]), worker) is False


class TestParticipationAndStatus:
    def test_participation_requires_own_node_in_set(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        assert can_participate(_event(available_states=["S1"]), admin) is True
        assert can_participate(_event(available_states=["S2"]), admin) is False

    def test_creator_cannot_participate(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        event = _event(created_by=admin.id, creator_level="state_admin", available_states=["S1"])
        assert can_participate(event, admin) is False

    def test_super_admin_never_participates(self, make_admin):
        assert can_participate(_event(available_states=["S1"]), make_admin(AdminRole.SUPER_ADMIN)) is False

    def test_status_update_by_creator_or_higher_rank(self, make_admin):
        creator = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        event = _event(created_by=creator.id, creator_level="branch_admin")

        assert can_update_event_status(event, creator) is True
        assert can_update_event_status(event, make_admin(AdminRole.STATE_ADMIN, state_id="S1")) is True
        assert can_update_event_status(event, make_admin(AdminRole.BRANCH_ADMIN, branch_id="B2")) is False
        assert can_update_event_status(event, make_admin(AdminRole.ZONAL_ADMIN, zone_id="Z1")) is False


class TestDelegationError:
    def test_state_admin_may_add_branches_on_super_event(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        event = _event(available_states=["S1"])
        assert delegation_error(event, admin, DelegationTarget.BRANCHES) is None

    def test_state_not_in_event(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S3")
        event = _event(available_states=["S1"])
        assert delegation_error(event, admin, DelegationTarget.BRANCHES) == (
            "Event is not available in your jurisdiction"
        )

    def test_branches_only_on_super_admin_events(self, make_admin):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        event = _event(creator_level="state_admin", available_states=["S1"])
        assert "cannot be delegated" in delegation_error(event, admin, DelegationTarget.BRANCHES)

    @pytest.mark.parametrize("creator_level", ["super_admin", "state_admin"])
    def test_zones_on_super_or_state_events(self, make_admin, creator_level):
        admin = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        event = _event(creator_level=creator_level, available_states=["S1"], available_branches=["B1"])
        assert delegation_error(event, admin, DelegationTarget.ZONES) is None

    def test_wrong_role(self, make_admin):
        admin = make_admin(AdminRole.ZONAL_ADMIN, zone_id="Z1")
        event = _event(available_branches=["B1"])
        assert "Only branch admins" in delegation_error(event, admin, DelegationTarget.ZONES)
