"""API dependencies for authentication and authorization."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.database import get_db
from app.core.exceptions import ForbiddenError, NotFoundError
from app.core.security import decode_access_token
from app.services.directory import ResolvedAdmin, resolve_admin
from app.services.roles import AdminRole

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_admin(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> ResolvedAdmin:
    """
    Dependency to get the calling admin with its jurisdiction resolved.

    The token is issued elsewhere; only ``sub`` (admin id) is trusted here.
    The role is re-read from the database so a demoted admin's old token
    cannot act with the old role.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise _unauthorized("Invalid authentication credentials")

    try:
        admin_id = UUID(str(payload["sub"]))
    except ValueError as e:
        raise _unauthorized("Invalid authentication credentials") from e

    try:
        admin = await resolve_admin(conn, admin_id)
    except NotFoundError as e:
        raise _unauthorized("Admin not found") from e
    if not admin.is_active:
        raise ForbiddenError("Admin account is disabled")
    if not admin.is_approved:
        raise ForbiddenError("Admin account is awaiting approval")
    return admin


def require_roles(*roles: AdminRole):
    """Dependency factory restricting a route to the given admin roles."""

    async def dependency(
        admin: Annotated[ResolvedAdmin, Depends(get_current_admin)],
    ) -> ResolvedAdmin:
        if admin.role not in roles:
            allowed = ", ".join(role.value for role in roles)
            raise ForbiddenError(f"This action requires one of: {allowed}")
        return admin

    return dependency


CurrentAdmin = Annotated[ResolvedAdmin, Depends(get_current_admin)]
DbConnection = Annotated[asyncpg.Connection, Depends(get_db)]
