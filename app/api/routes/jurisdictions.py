"""Jurisdiction tree API routes.

Creates and reviews states, branches and zones, and manages the pickup
stations registered inside zones.
"""

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.api.deps import CurrentAdmin, DbConnection
from app.core.responses import success_response
from app.services import jurisdictions as jurisdiction_service
from app.services.roles import NodeKind

router = APIRouter(prefix="/jurisdictions", tags=["Jurisdictions"])


# ============================================
# PYDANTIC MODELS
# ============================================


class StateCreate(BaseModel):
    """Create state request."""

    name: str = Field(..., min_length=2, max_length=100)
    code: str | None = Field(None, min_length=2, max_length=3)
    description: str | None = None
    country: str | None = Field(None, max_length=100)


class BranchCreate(BaseModel):
    """Create branch request."""

    name: str = Field(..., min_length=2, max_length=150)
    state_id: UUID
    location: str | None = Field(None, max_length=255)


class ZoneCreate(BaseModel):
    """Create zone request."""

    name: str = Field(..., min_length=2, max_length=150)
    branch_id: UUID


class NodeReject(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class PickupStationCreate(BaseModel):
    """Create pickup station request."""

    name: str = Field(..., min_length=2, max_length=255)
    capacity: int | None = Field(None, gt=0)


# ============================================
# NODES
# ============================================


@router.post("/states")
async def create_state(request: StateCreate, conn: DbConnection, admin: CurrentAdmin):
    state = await jurisdiction_service.create_state(
        conn,
        admin,
        name=request.name,
        code=request.code,
        description=request.description,
        country=request.country,
    )
    return success_response(data=state, message="State created successfully")


@router.post("/branches")
async def create_branch(request: BranchCreate, conn: DbConnection, admin: CurrentAdmin):
    """Create a branch; pending when created by the state admin."""
    branch = await jurisdiction_service.create_branch(
        conn, admin, request.state_id, request.name, request.location
    )
    return success_response(data=branch, message=f"Branch created ({branch['status']})")


@router.post("/zones")
async def create_zone(request: ZoneCreate, conn: DbConnection, admin: CurrentAdmin):
    """Create a zone; pending when created by the branch admin."""
    zone = await jurisdiction_service.create_zone(conn, admin, request.branch_id, request.name)
    return success_response(data=zone, message=f"Zone created ({zone['status']})")


@router.get("/{kind}/pending")
async def list_pending_nodes(kind: NodeKind, conn: DbConnection, admin: CurrentAdmin):
    """Pending nodes of this kind awaiting the caller's review."""
    nodes = await jurisdiction_service.list_pending_nodes(conn, admin, kind)
    return success_response(data={"nodes": nodes, "count": len(nodes)})


@router.get("/{kind}/{node_id}")
async def get_node(kind: NodeKind, node_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    node = await jurisdiction_service.get_node(conn, kind, node_id)
    return success_response(data=node)


@router.post("/{kind}/{node_id}/approve")
async def approve_node(kind: NodeKind, node_id: UUID, conn: DbConnection, admin: CurrentAdmin):
    node = await jurisdiction_service.approve_node(conn, admin, kind, node_id)
    return success_response(data=node, message=f"{kind.value.capitalize()} approved")


@router.post("/{kind}/{node_id}/reject")
async def reject_node(
    kind: NodeKind,
    node_id: UUID,
    request: NodeReject,
    conn: DbConnection,
    admin: CurrentAdmin,
):
    node = await jurisdiction_service.reject_node(conn, admin, kind, node_id, request.reason)
    return success_response(data=node, message=f"{kind.value.capitalize()} rejected")


# ============================================
# PICKUP STATIONS
# ============================================


@router.post("/zones/{zone_id}/pickup-stations")
async def create_pickup_station(
    zone_id: UUID,
    request: PickupStationCreate,
    conn: DbConnection,
    admin: CurrentAdmin,
):
    station = await jurisdiction_service.create_pickup_station(
        conn, admin, zone_id, request.name, request.capacity
    )
    return success_response(data=station, message="Pickup station created successfully")


@router.get("/zones/{zone_id}/pickup-stations")
async def list_pickup_stations(
    zone_id: UUID,
    conn: DbConnection,
    admin: CurrentAdmin,
    include_inactive: bool = False,
):
    stations = await jurisdiction_service.list_zone_pickup_stations(
        conn, admin, zone_id, include_inactive
    )
    return success_response(data={"pickup_stations": stations, "count": len(stations)})
