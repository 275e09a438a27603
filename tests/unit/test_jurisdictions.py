"""
Unit tests for jurisdiction node creation, review and pickup stations.
"""

from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from app.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from app.services import jurisdictions as jurisdiction_service
from app.services.jurisdictions import can_create_node, can_review_node, creation_status
from app.services.roles import AdminRole, NodeKind, NodeStatus


class TestNodeRules:
    def test_only_super_admin_creates_states(self):
        assert can_create_node(AdminRole.SUPER_ADMIN, NodeKind.STATE) is True
        assert can_create_node(AdminRole.STATE_ADMIN, NodeKind.STATE) is False

    def test_branch_and_zone_creators(self):
        assert can_create_node(AdminRole.STATE_ADMIN, NodeKind.BRANCH) is True
        assert can_create_node(AdminRole.BRANCH_ADMIN, NodeKind.BRANCH) is False
        assert can_create_node(AdminRole.BRANCH_ADMIN, NodeKind.ZONE) is True
        assert can_create_node(AdminRole.ZONAL_ADMIN, NodeKind.ZONE) is False

    def test_parent_level_admin_creates_pending(self):
        assert creation_status(AdminRole.STATE_ADMIN, NodeKind.BRANCH) == NodeStatus.PENDING
        assert creation_status(AdminRole.BRANCH_ADMIN, NodeKind.ZONE) == NodeStatus.PENDING

    def test_higher_admin_creates_approved(self):
        assert creation_status(AdminRole.SUPER_ADMIN, NodeKind.BRANCH) == NodeStatus.APPROVED
        assert creation_status(AdminRole.STATE_ADMIN, NodeKind.ZONE) == NodeStatus.APPROVED
        assert creation_status(AdminRole.SUPER_ADMIN, NodeKind.STATE) == NodeStatus.APPROVED

    def test_reviewers_rank_above_pending_creator(self):
        assert can_review_node(AdminRole.SUPER_ADMIN, NodeKind.BRANCH) is True
        assert can_review_node(AdminRole.STATE_ADMIN, NodeKind.BRANCH) is False
        assert can_review_node(AdminRole.STATE_ADMIN, NodeKind.ZONE) is True
        assert can_review_node(AdminRole.BRANCH_ADMIN, NodeKind.ZONE) is False


class TestCreateNodes:
    @pytest.mark.asyncio
    async def test_state_admin_creates_pending_branch(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        mock_conn.fetchrow.return_value = {"id": "B1", "name": "North", "state_id": "S1", "status": "pending"}
        state = {"state_id": "S1", "branch_id": None, "zone_id": None, "name": "Lagos"}

        with patch.object(jurisdiction_service, "node_ancestry", new=AsyncMock(return_value=state)):
            branch = await jurisdiction_service.create_branch(mock_conn, creator, "S1", "North")

        assert branch["state_name"] == "Lagos"
        _, name, state_id, location, approved, status, created_by = mock_conn.fetchrow.await_args.args
        assert (name, state_id, approved, status, created_by) == ("North", "S1", False, "pending", creator.id)

    @pytest.mark.asyncio
    async def test_branch_in_foreign_state(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        state = {"state_id": "S2", "branch_id": None, "zone_id": None, "name": "Kano"}

        with patch.object(jurisdiction_service, "node_ancestry", new=AsyncMock(return_value=state)):
            with pytest.raises(ForbiddenError):
                await jurisdiction_service.create_branch(mock_conn, creator, "S2", "North")
        mock_conn.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_branch_in_missing_state(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        with patch.object(jurisdiction_service, "node_ancestry", new=AsyncMock(return_value=None)):
            with pytest.raises(NotFoundError, match="State not found"):
                await jurisdiction_service.create_branch(mock_conn, creator, "S9", "North")

    @pytest.mark.asyncio
    async def test_state_admin_cannot_create_state(self, make_admin, mock_conn):
        with pytest.raises(ForbiddenError):
            await jurisdiction_service.create_state(
                mock_conn, make_admin(AdminRole.STATE_ADMIN, state_id="S1"), "Lagos"
            )

    @pytest.mark.asyncio
    async def test_duplicate_name_under_parent(self, make_admin, mock_conn):
        mock_conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")
        with pytest.raises(InvalidStateError, match="already exists"):
            await jurisdiction_service.create_state(mock_conn, make_admin(AdminRole.SUPER_ADMIN), "Lagos")


class TestReviewNodes:
    @pytest.mark.asyncio
    async def test_state_admin_approves_zone_in_state(self, make_admin, mock_conn):
        reviewer = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        zone = {"id": "Z1", "branch_id": "B1", "status": "pending", "state_id": "S1"}
        mock_conn.fetchrow.side_effect = [
            {"state_id": "S1", "branch_id": "B1", "zone_id": "Z1"},
            {**zone, "status": "approved", "is_active": True},
        ]

        with patch.object(jurisdiction_service, "get_node", new=AsyncMock(return_value=zone)):
            node = await jurisdiction_service.approve_node(mock_conn, reviewer, NodeKind.ZONE, "Z1")

        assert node["status"] == "approved"
        _, node_id, status, is_active, reviewed_by, reason = mock_conn.fetchrow.await_args.args
        assert (node_id, status, is_active, reviewed_by, reason) == ("Z1", "approved", True, reviewer.id, None)

    @pytest.mark.asyncio
    async def test_review_requires_pending(self, make_admin, mock_conn):
        reviewer = make_admin(AdminRole.SUPER_ADMIN)
        branch = {"id": "B1", "state_id": "S1", "status": "approved"}

        with patch.object(jurisdiction_service, "get_node", new=AsyncMock(return_value=branch)):
            with pytest.raises(InvalidStateError, match="already approved"):
                await jurisdiction_service.reject_node(mock_conn, reviewer, NodeKind.BRANCH, "B1", "dup")

    @pytest.mark.asyncio
    async def test_branch_admin_cannot_review_zone(self, make_admin, mock_conn):
        reviewer = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        zone = {"id": "Z1", "branch_id": "B1", "status": "pending"}

        with patch.object(jurisdiction_service, "get_node", new=AsyncMock(return_value=zone)):
            with pytest.raises(ForbiddenError):
                await jurisdiction_service.approve_node(mock_conn, reviewer, NodeKind.ZONE, "Z1")

    @pytest.mark.asyncio
    async def test_pending_list_empty_for_non_reviewers(self, make_admin, mock_conn):
        reviewer = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        assert await jurisdiction_service.list_pending_nodes(mock_conn, reviewer, NodeKind.BRANCH) == []
        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_zones_scoped_to_state(self, make_admin, mock_conn):
        reviewer = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        mock_conn.fetch.return_value = []

        await jurisdiction_service.list_pending_nodes(mock_conn, reviewer, NodeKind.ZONE)

        query, state_id = mock_conn.fetch.await_args.args
        assert "b.state_id = $1" in query
        assert state_id == "S1"


class TestPickupStations:
    @pytest.mark.asyncio
    async def test_create_station_in_own_zone(self, make_admin, mock_conn):
        admin = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")
        ancestry = {"state_id": "S1", "branch_id": "B1", "zone_id": "Z1", "name": "Zone One"}
        mock_conn.fetchrow.return_value = {"id": "P1", "name": "Gate", "zone_id": "Z1", "branch_id": "B1"}

        with patch.object(jurisdiction_service, "node_ancestry", new=AsyncMock(return_value=ancestry)):
            station = await jurisdiction_service.create_pickup_station(mock_conn, admin, "Z1", "Gate", 30)

        assert station["zone_name"] == "Zone One"
        assert mock_conn.fetchrow.await_args.args[1:] == ("Gate", "Z1", "B1", 30)

    @pytest.mark.asyncio
    async def test_stations_in_zone_keyed_by_id(self, mock_conn):
        mock_conn.fetch.return_value = [{"id": "P1", "zone_id": "Z1"}, {"id": "P2", "zone_id": "Z1"}]

        stations = await jurisdiction_service.get_pickup_stations_in_zone(mock_conn, "Z1", ["P1", "P2", "P3"])

        assert set(stations) == {"P1", "P2"}
