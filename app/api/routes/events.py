"""Event cascade API routes.

Creation at a level, branch and zone delegation, pickup station
assignment, participation, status changes and cascade views.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from app.api.deps import CurrentAdmin, DbConnection
from app.core.responses import success_response
from app.services import events as event_service
from app.services import participation as participation_service
from app.services.cascade import EventStatus, ParticipationStatus
from app.services.roles import AdminRole

router = APIRouter(prefix="/events", tags=["Events"])


# ============================================
# PYDANTIC MODELS
# ============================================


class EventCreate(BaseModel):
    """Create event request.

    ``selected_ids`` are states, branches or zones depending on the creator's
    level. Zonal admins select nothing.
    """

    name: str = Field(..., min_length=2, max_length=255)
    description: str | None = None
    event_date: datetime
    registration_deadline: datetime | None = None
    banner_image_url: str | None = None
    creator_level: AdminRole | None = None
    selected_ids: list[UUID] = Field(default_factory=list)


class BranchDelegation(BaseModel):
    branch_ids: list[UUID] = Field(..., min_length=1)


class ZoneDelegation(BaseModel):
    zone_ids: list[UUID] = Field(..., min_length=1)


class PickupStationAssignment(BaseModel):
    pickup_station_id: UUID
    departure_time: str = Field(..., min_length=1, max_length=50)
    max_capacity: int | None = Field(None, gt=0)
    notes: str | None = None


class PickupStationsAssign(BaseModel):
    """Full set of pickup stations for the caller's zone."""

    stations: list[PickupStationAssignment]


class PickupStationUpdate(BaseModel):
    departure_time: str | None = Field(None, min_length=1, max_length=50)
    max_capacity: int | None = Field(None, gt=0)
    notes: str | None = None


class ParticipationUpdate(BaseModel):
    status: ParticipationStatus
    reason: str | None = Field(None, max_length=1000)


class EventStatusUpdate(BaseModel):
    status: EventStatus
    reason: str | None = Field(None, max_length=1000)


# ============================================
# EVENTS
# ============================================


@router.post("", status_code=201)
async def create_event(request: EventCreate, conn: DbConnection, admin: CurrentAdmin):
    """Create an event at the caller's level."""
    event = await event_service.create_event_at_level(
        conn,
        admin,
        request.creator_level or admin.role,
        name=request.name,
        event_date=request.event_date,
        selected_ids=request.selected_ids,
        description=request.description,
        registration_deadline=request.registration_deadline,
        banner_image_url=request.banner_image_url,
    )
    return success_response(data=event, message="Event created successfully")


@router.get("")
async def list_events(
    conn: DbConnection,
    admin: CurrentAdmin,
    status: EventStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    events = await event_service.list_events_for_admin(
        conn, admin, status.value if status else None, limit, offset
    )
    return success_response(data={"events": events, "count": len(events)})


@router.get("/pending-participation")
async def list_pending_participation(conn: DbConnection, admin: CurrentAdmin):
    """Events the caller can join but has not answered."""
    events = await participation_service.list_events_pending_participation(conn, admin)
    return success_response(data={"events": events, "count": len(events)})


@router.get("/{event_id}")
async def get_event(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    event = await event_service.get_event(conn, admin, event_id)
    return success_response(data=event)


# ============================================
# DELEGATION
# ============================================


@router.post("/{event_id}/branches")
async def delegate_branches(
    event_id: UUID, request: BranchDelegation, conn: DbConnection, admin: CurrentAdmin
):
    """Add branches of the caller's state to a super admin event."""
    event = await event_service.delegate_branches(conn, admin, event_id, request.branch_ids)
    return success_response(data=event, message="Branches added to event")


@router.post("/{event_id}/zones")
async def delegate_zones(
    event_id: UUID, request: ZoneDelegation, conn: DbConnection, admin: CurrentAdmin
):
    """Add zones of the caller's branch to an event."""
    event = await event_service.delegate_zones(conn, admin, event_id, request.zone_ids)
    return success_response(data=event, message="Zones added to event")


# ============================================
# PICKUP STATIONS
# ============================================


@router.put("/{event_id}/pickup-stations")
async def assign_pickup_stations(
    event_id: UUID, request: PickupStationsAssign, conn: DbConnection, admin: CurrentAdmin
):
    """Replace the caller's zone pickup stations on the event."""
    stations = await event_service.assign_pickup_stations(
        conn, admin, event_id, [station.model_dump() for station in request.stations]
    )
    return success_response(
        data={"pickup_stations": stations, "count": len(stations)},
        message="Pickup stations assigned",
    )


@router.get("/{event_id}/pickup-stations")
async def list_pickup_stations(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    stations = await event_service.list_event_pickup_stations(conn, admin, event_id)
    return success_response(data={"pickup_stations": stations, "count": len(stations)})


@router.patch("/{event_id}/pickup-stations/{station_id}")
async def update_pickup_station(
    event_id: UUID,
    station_id: UUID,
    request: PickupStationUpdate,
    conn: DbConnection,
    admin: CurrentAdmin,
):
    station = await event_service.update_pickup_station_assignment(
        conn,
        admin,
        event_id,
        station_id,
        departure_time=request.departure_time,
        max_capacity=request.max_capacity,
        notes=request.notes,
    )
    return success_response(data=station, message="Pickup station updated")


@router.delete("/{event_id}/pickup-stations/{station_id}")
async def remove_pickup_station(
    event_id: UUID, station_id: UUID, conn: DbConnection, admin: CurrentAdmin
):
    await event_service.remove_pickup_station_assignment(conn, admin, event_id, station_id)
    return success_response(message="Pickup station removed from event")


# ============================================
# PARTICIPATION AND STATUS
# ============================================


@router.post("/{event_id}/participation")
async def update_participation(
    event_id: UUID, request: ParticipationUpdate, conn: DbConnection, admin: CurrentAdmin
):
    record = await participation_service.update_participation(
        conn, admin, event_id, request.status, request.reason
    )
    return success_response(data=record, message="Participation updated")


@router.get("/{event_id}/participation/options")
async def get_participation_options(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    options = await participation_service.get_participation_options(conn, admin, event_id)
    return success_response(data=options)


@router.get("/{event_id}/participation/summary")
async def get_participation_summary(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    summary = await participation_service.get_participation_summary(conn, admin, event_id)
    return success_response(data=summary)


@router.patch("/{event_id}/status")
async def update_event_status(
    event_id: UUID, request: EventStatusUpdate, conn: DbConnection, admin: CurrentAdmin
):
    event = await participation_service.update_event_status(
        conn, admin, event_id, request.status, request.reason
    )
    return success_response(data=event, message=f"Event status set to {request.status.value}")


@router.get("/{event_id}/timeline")
async def get_timeline(
    event_id: UUID,
    conn: DbConnection,
    admin: CurrentAdmin,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Status timeline, newest entry first."""
    entries = await participation_service.get_status_timeline(conn, admin, event_id, limit, offset)
    return success_response(data={"timeline": entries, "count": len(entries)})


# ============================================
# CASCADE
# ============================================


@router.get("/{event_id}/cascade-status")
async def get_cascade_status(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    cascade = await event_service.get_event_cascade_status(conn, admin, event_id)
    return success_response(data=cascade)


@router.get("/{event_id}/cascade-flow")
async def get_cascade_flow(event_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    flow = await event_service.get_event_cascade_flow(conn, admin, event_id)
    return success_response(data=flow)
