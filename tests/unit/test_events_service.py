"""
Unit tests for event creation at a level and pickup station assignment.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.core.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from app.services import events as event_service
from app.services.roles import AdminRole

EVENT_DATE = datetime.now(UTC) + timedelta(days=30)


def _inserted(**fields):
    row = {
        "id": "event-1",
        "name": "Rally",
        "status": "draft",
        "created_by": "creator",
        "creator_level": "super_admin",
        "available_states": [],
        "available_branches": [],
        "available_zones": [],
        "selected_branches": [],
        "selected_zones": [],
        "version": 1,
    }
    row.update(fields)
    return row


class TestCreateEventAtLevel:
    @pytest.mark.asyncio
    async def test_super_admin_selects_states(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        mock_conn.fetch.return_value = [{"id": "S1"}, {"id": "S2"}]
        mock_conn.fetchrow.return_value = _inserted(created_by=creator.id, available_states=["S1", "S2"])

        with patch.object(event_service, "append_timeline_entry", new=AsyncMock()) as append:
            event = await event_service.create_event_at_level(
                mock_conn, creator, "super_admin", "Rally", EVENT_DATE, selected_ids=["S1", "S2", "S1"]
            )

        args = mock_conn.fetchrow.await_args.args
        assert args[7] == "super_admin"
        assert args[8:13] == (["S1", "S2"], [], [], [], [])
        assert event["cascade_level"] == "super_admin"
        assert event["next_level"] == "state_admin"
        assert append.await_args.args[4]["action"] == "created"

    @pytest.mark.asyncio
    async def test_role_mismatch_forbidden(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        with pytest.raises(ForbiddenError):
            await event_service.create_event_at_level(
                mock_conn, creator, AdminRole.SUPER_ADMIN, "Rally", EVENT_DATE, ["S1"]
            )

    @pytest.mark.asyncio
    async def test_empty_selection(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        with pytest.raises(InvalidArgumentError, match="at least one zone"):
            await event_service.create_event_at_level(
                mock_conn, creator, AdminRole.BRANCH_ADMIN, "Rally", EVENT_DATE, []
            )

    @pytest.mark.asyncio
    async def test_branch_outside_state(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")

        with patch.object(event_service, "branch_ids_in_state", new=AsyncMock(return_value=["B1"])):
            with pytest.raises(InvalidArgumentError) as exc_info:
                await event_service.create_event_at_level(
                    mock_conn, creator, AdminRole.STATE_ADMIN, "Rally", EVENT_DATE, ["B1", "B9"]
                )

        assert exc_info.value.details == {"ids": ["B9"]}
        mock_conn.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_state_event_denormalizes_state(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.STATE_ADMIN, state_id="S1")
        mock_conn.fetchrow.return_value = _inserted(
            creator_level="state_admin",
            available_states=["S1"],
            available_branches=["B1"],
            selected_branches=["B1"],
        )

        with (
            patch.object(event_service, "branch_ids_in_state", new=AsyncMock(return_value=["B1", "B2"])),
            patch.object(event_service, "append_timeline_entry", new=AsyncMock()),
        ):
            event = await event_service.create_event_at_level(
                mock_conn, creator, AdminRole.STATE_ADMIN, "Rally", EVENT_DATE, ["B1"]
            )

        args = mock_conn.fetchrow.await_args.args
        assert args[8:13] == (["S1"], ["B1"], [], ["B1"], [])
        assert event["cascade_level"] == "state_admin"

    @pytest.mark.asyncio
    async def test_zonal_admin_needs_no_selection(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")
        mock_conn.fetchrow.return_value = _inserted(
            creator_level="zonal_admin",
            available_states=["S1"],
            available_branches=["B1"],
            available_zones=["Z1"],
        )

        with patch.object(event_service, "append_timeline_entry", new=AsyncMock()):
            event = await event_service.create_event_at_level(
                mock_conn, creator, AdminRole.ZONAL_ADMIN, "Local drive", EVENT_DATE
            )

        assert mock_conn.fetchrow.await_args.args[8:11] == (["S1"], ["B1"], ["Z1"])
        assert event["cascade_level"] == "zonal_admin"
        assert event["next_level"] is None

    @pytest.mark.asyncio
    async def test_deadline_after_event_date(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        with pytest.raises(InvalidArgumentError, match="deadline"):
            await event_service.create_event_at_level(
                mock_conn,
                creator,
                AdminRole.SUPER_ADMIN,
                "Rally",
                EVENT_DATE,
                ["S1"],
                registration_deadline=EVENT_DATE + timedelta(days=1),
            )

    @pytest.mark.asyncio
    async def test_naive_deadline_after_aware_event_date(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        naive_deadline = (EVENT_DATE + timedelta(days=1)).replace(tzinfo=None)
        with pytest.raises(InvalidArgumentError, match="deadline"):
            await event_service.create_event_at_level(
                mock_conn,
                creator,
                AdminRole.SUPER_ADMIN,
                "Rally",
                EVENT_DATE,
                ["S1"],
                registration_deadline=naive_deadline,
            )

    @pytest.mark.asyncio
    async def test_naive_deadline_is_read_as_utc(self, make_admin, mock_conn):
        creator = make_admin(AdminRole.SUPER_ADMIN)
        mock_conn.fetch.return_value = [{"id": "S1"}]
        mock_conn.fetchrow.return_value = _inserted(created_by=creator.id, available_states=["S1"])
        naive_deadline = (EVENT_DATE - timedelta(days=7)).replace(tzinfo=None)

        with patch.object(event_service, "append_timeline_entry", new=AsyncMock()):
            await event_service.create_event_at_level(
                mock_conn,
                creator,
                AdminRole.SUPER_ADMIN,
                "Rally",
                EVENT_DATE,
                ["S1"],
                registration_deadline=naive_deadline,
            )

        stored_deadline = mock_conn.fetchrow.await_args.args[4]
        assert stored_deadline == naive_deadline.replace(tzinfo=UTC)


class TestPickupAssignment:
    @pytest.fixture
    def zonal(self, make_admin):
        return make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")

    @pytest.fixture
    def event(self):
        return _inserted(available_states=["S1"], available_branches=["B1"], available_zones=["Z1", "Z2"])

    @pytest.mark.asyncio
    async def test_replaces_only_own_zone(self, zonal, event, mock_conn):
        stations = [
            {"pickup_station_id": "P1", "departure_time": "07:00"},
            {"pickup_station_id": "P2", "departure_time": "07:30", "max_capacity": 20, "notes": "Gate B"},
        ]
        with (
            patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)),
            patch.object(
                event_service,
                "get_pickup_stations_in_zone",
                new=AsyncMock(return_value={"P1": {}, "P2": {}}),
            ),
            patch.object(event_service, "append_timeline_entry", new=AsyncMock()),
            patch.object(event_service, "list_event_pickup_stations", new=AsyncMock(return_value=[])),
        ):
            await event_service.assign_pickup_stations(mock_conn, zonal, "event-1", stations)

        delete_query, event_id, zone_id = mock_conn.execute.await_args.args
        assert "DELETE FROM event_pickup_stations" in delete_query
        assert "zone_id = $2" in delete_query
        assert (event_id, zone_id) == ("event-1", "Z1")

        _, records = mock_conn.executemany.await_args.args
        assert records == [
            ("event-1", "P1", "Z1", "07:00", 50, None, zonal.id),
            ("event-1", "P2", "Z1", "07:30", 20, "Gate B", zonal.id),
        ]

    @pytest.mark.asyncio
    async def test_station_from_other_zone_rejected(self, zonal, event, mock_conn):
        with (
            patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)),
            patch.object(event_service, "get_pickup_stations_in_zone", new=AsyncMock(return_value={"P1": {}})),
        ):
            with pytest.raises(InvalidArgumentError) as exc_info:
                await event_service.assign_pickup_stations(
                    mock_conn,
                    zonal,
                    "event-1",
                    [
                        {"pickup_station_id": "P1", "departure_time": "07:00"},
                        {"pickup_station_id": "PX", "departure_time": "07:00"},
                    ],
                )

        assert exc_info.value.details == {"invalid_station_ids": ["PX"]}
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_station(self, zonal, event, mock_conn):
        with patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)):
            with pytest.raises(InvalidArgumentError, match="only be assigned once"):
                await event_service.assign_pickup_stations(
                    mock_conn,
                    zonal,
                    "event-1",
                    [
                        {"pickup_station_id": "P1", "departure_time": "07:00"},
                        {"pickup_station_id": "P1", "departure_time": "08:00"},
                    ],
                )

    @pytest.mark.asyncio
    async def test_zone_not_in_event(self, make_admin, event, mock_conn):
        admin = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z7")
        with patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)):
            with pytest.raises(ForbiddenError):
                await event_service.assign_pickup_stations(mock_conn, admin, "event-1", [])

    @pytest.mark.asyncio
    async def test_only_zonal_admins(self, make_admin, mock_conn):
        admin = make_admin(AdminRole.BRANCH_ADMIN, state_id="S1", branch_id="B1")
        with pytest.raises(ForbiddenError, match="Only zonal admins"):
            await event_service.assign_pickup_stations(mock_conn, admin, "event-1", [])

    @pytest.mark.asyncio
    async def test_remove_unassigned_station(self, zonal, event, mock_conn):
        mock_conn.execute.return_value = "DELETE 0"
        with patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)):
            with pytest.raises(NotFoundError):
                await event_service.remove_pickup_station_assignment(mock_conn, zonal, "event-1", "P1")

    @pytest.mark.asyncio
    async def test_capacity_below_current_count(self, zonal, event, mock_conn):
        mock_conn.fetchrow.return_value = {"current_count": 12, "max_capacity": 40}
        with patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)):
            with pytest.raises(InvalidArgumentError):
                await event_service.update_pickup_station_assignment(
                    mock_conn, zonal, "event-1", "P1", max_capacity=10
                )


class TestVisibility:
    @pytest.mark.asyncio
    async def test_get_event_hidden_from_other_state(self, make_admin, mock_conn):
        admin = make_admin(AdminRole.STATE_ADMIN, state_id="S3")
        event = _inserted(available_states=["S1"])
        with patch.object(event_service, "fetch_event", new=AsyncMock(return_value=event)):
            with pytest.raises(ForbiddenError):
                await event_service.get_event(mock_conn, admin, "event-1")

    @pytest.mark.asyncio
    async def test_list_events_scoped_for_zonal_admin(self, make_admin, mock_conn):
        admin = make_admin(AdminRole.ZONAL_ADMIN, state_id="S1", branch_id="B1", zone_id="Z1")
        mock_conn.fetch.return_value = [_inserted(available_zones=["Z1"])]

        events = await event_service.list_events_for_admin(mock_conn, admin, "draft", 10, 0)

        query, *params = mock_conn.fetch.await_args.args
        assert "ANY(e.available_zones)" in query
        assert params == [admin.id, "Z1", "draft", 10, 0]
        assert events[0]["cascade_level"] == "super_admin"
