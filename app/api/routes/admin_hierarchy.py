"""Admin hierarchy API routes.

Profile, accessible jurisdictions and admins, approval, enable/disable,
replacement and jurisdiction transfer.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from app.api.deps import CurrentAdmin, DbConnection, require_roles
from app.core.responses import success_response
from app.services import admins as admin_service
from app.services import directory
from app.services import events as event_service
from app.services.directory import ResolvedAdmin
from app.services.roles import NODE_COLUMN, AdminRole, node_kind_for_role
from app.utils.csv_export import admins_to_csv

router = APIRouter(prefix="/admin-hierarchy", tags=["Admin Hierarchy"])

Manager = Annotated[
    ResolvedAdmin,
    Depends(require_roles(AdminRole.SUPER_ADMIN, AdminRole.STATE_ADMIN, AdminRole.BRANCH_ADMIN)),
]


# ============================================
# PYDANTIC MODELS
# ============================================


class AdminRegister(BaseModel):
    """Self-registration request; approval happens one rank above."""

    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(None, max_length=50)
    role: AdminRole
    state_id: UUID | None = None
    branch_id: UUID | None = None
    zone_id: UUID | None = None


class ReasonRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class ReplaceAdminRequest(BaseModel):
    """Replace an admin with a jurisdiction-free admin of the same role."""

    current_admin_id: UUID
    new_admin_id: UUID
    reason: str | None = Field(None, max_length=1000)


class TransferJurisdictionRequest(BaseModel):
    """Move one exact jurisdiction node between two admins of ``admin_role``."""

    from_admin_id: UUID
    to_admin_id: UUID
    admin_role: AdminRole
    state_id: UUID | None = None
    branch_id: UUID | None = None
    zone_id: UUID | None = None
    reason: str | None = Field(None, max_length=1000)


def _node_for_role(role: AdminRole, request: BaseModel) -> UUID | None:
    kind = node_kind_for_role(role)
    if kind is None:
        return None
    return getattr(request, NODE_COLUMN[kind])


# ============================================
# PROFILE AND ACCESSIBLE NODES
# ============================================


@router.get("/profile")
async def get_profile(admin: CurrentAdmin):
    """The calling admin with its resolved jurisdiction."""
    jurisdiction = admin.jurisdiction
    return success_response(
        data={
            **admin.model_dump(mode="json"),
            "jurisdiction": jurisdiction.model_dump(mode="json") if jurisdiction else None,
        }
    )


@router.get("/states")
async def list_states(conn: DbConnection, admin: CurrentAdmin):
    states = await directory.list_accessible_states(conn, admin)
    return success_response(data={"states": states, "count": len(states)})


@router.get("/branches")
async def list_branches(
    conn: DbConnection,
    admin: CurrentAdmin,
    state_id: UUID | None = None,
):
    branches = await directory.list_accessible_branches(conn, admin, state_id)
    return success_response(data={"branches": branches, "count": len(branches)})


@router.get("/zones")
async def list_zones(
    conn: DbConnection,
    admin: CurrentAdmin,
    branch_id: UUID | None = None,
):
    zones = await directory.list_accessible_zones(conn, admin, branch_id)
    return success_response(data={"zones": zones, "count": len(zones)})


@router.get("/events")
async def list_accessible_events(
    conn: DbConnection,
    admin: CurrentAdmin,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Events visible to the calling admin."""
    events = await event_service.list_events_for_admin(conn, admin, status, limit, offset)
    return success_response(data={"events": events, "count": len(events)})


# ============================================
# ADMINS
# ============================================


@router.post("/register")
async def register(request: AdminRegister, conn: DbConnection):
    """Register a new admin awaiting approval."""
    admin = await admin_service.register_admin(
        conn,
        name=request.name,
        email=request.email,
        role=request.role,
        node_id=_node_for_role(request.role, request),
        phone=request.phone,
    )
    return success_response(data=admin, message="Registration submitted for approval")


@router.get("/admins")
async def list_admins(
    conn: DbConnection,
    admin: Manager,
    role: AdminRole | None = None,
):
    """Admins ranked below the caller within its jurisdiction."""
    admins = await admin_service.list_accessible_admins(conn, admin, role)
    return success_response(data={"admins": admins, "count": len(admins)})


@router.get("/admins/disabled")
async def list_disabled(conn: DbConnection, admin: Manager):
    admins = await admin_service.list_disabled_admins(conn, admin)
    return success_response(data={"admins": admins, "count": len(admins)})


@router.get("/admins/pending")
async def list_pending(conn: DbConnection, admin: Manager):
    admins = await admin_service.list_pending_admins(conn, admin)
    return success_response(data={"admins": admins, "count": len(admins)})


@router.get("/admins/export")
async def export_admins(
    conn: DbConnection,
    admin: Manager,
    role: AdminRole | None = None,
):
    """Export accessible admins as CSV."""
    admins = await admin_service.list_accessible_admins(conn, admin, role)
    return Response(
        content=admins_to_csv(admins),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="admins.csv"'},
    )


@router.post("/admins/{admin_id}/approve")
async def approve_admin(admin_id: UUID, conn: DbConnection, admin: Manager):
    approved = await admin_service.approve_admin(conn, admin, admin_id)
    return success_response(data=approved, message="Admin approved")


@router.post("/admins/{admin_id}/reject")
async def reject_admin(
    admin_id: UUID, request: ReasonRequest, conn: DbConnection, admin: Manager
):
    rejected = await admin_service.reject_admin(conn, admin, admin_id, request.reason)
    return success_response(data=rejected, message="Admin rejected")


@router.post("/admins/{admin_id}/disable")
async def disable_admin(
    admin_id: UUID, request: ReasonRequest, conn: DbConnection, admin: Manager
):
    disabled = await admin_service.disable_admin(conn, admin, admin_id, request.reason)
    return success_response(data=disabled, message="Admin disabled")


@router.post("/admins/{admin_id}/enable")
async def enable_admin(
    admin_id: UUID, request: ReasonRequest, conn: DbConnection, admin: Manager
):
    enabled = await admin_service.enable_admin(conn, admin, admin_id, request.reason)
    return success_response(data=enabled, message="Admin enabled")


@router.post("/replace")
async def replace_admin(request: ReplaceAdminRequest, conn: DbConnection, admin: Manager):
    """Hand an admin's jurisdiction to a jurisdiction-free admin of the same role."""
    result = await admin_service.replace_admin(
        conn, admin, request.current_admin_id, request.new_admin_id, request.reason
    )
    return success_response(data=result, message="Admin replaced")


@router.post("/transfer")
async def transfer_jurisdiction(
    request: TransferJurisdictionRequest, conn: DbConnection, admin: Manager
):
    result = await admin_service.transfer_jurisdiction(
        conn,
        admin,
        request.from_admin_id,
        request.to_admin_id,
        request.admin_role,
        _node_for_role(request.admin_role, request),
        request.reason,
    )
    return success_response(data=result, message="Jurisdiction transferred")
