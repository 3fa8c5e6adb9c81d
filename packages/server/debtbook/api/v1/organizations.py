"""
Organization API endpoints.

GET    /api/v1/orgs/{orgSlug} Get org details
DELETE /api/v1/orgs/{orgSlug} Delete the org and everything in it (admin, password required)
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import AuthenticatedUser, require_admin, require_member, revoke_jwt
from debtbook.core.database import commit, get_session
from debtbook.core.middleware import CSRF_COOKIE, SESSION_COOKIE
from debtbook.services import organizations as org_service
from debtbook_shared.schemas.organizations import OrgDeleteRequest, OrgResponse

log = structlog.get_logger()

router_scoped = APIRouter()


class OrgDeletedResponse(BaseModel):
    org_id: str
    message: str


@router_scoped.get("", response_model=OrgResponse)
async def get_org(
    auth: AuthenticatedUser = Depends(require_member),
):
    """Get org details."""
    return OrgResponse(**org_service.org_view(auth.org))


@router_scoped.delete("", response_model=OrgDeletedResponse)
async def delete_org(
    body: OrgDeleteRequest,
    response: Response,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Delete the organization, then end the caller's session."""
    org_id = await org_service.delete_organization(
        auth.user_id, body.password, session, org_id=auth.org_id
    )
    await commit(session)

    if auth.jti:
        await revoke_jwt(auth.jti)
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")

    return OrgDeletedResponse(org_id=org_id, message="Organization deleted")
