"""
Member endpoints.

GET   /api/v1/orgs/{orgSlug}/members Members, admins first
PATCH /api/v1/orgs/{orgSlug}/members/me Change the caller's username
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import AuthenticatedUser, require_member
from debtbook.core.database import commit, get_session
from debtbook.services import membership
from debtbook_shared.schemas.membership import (
    MemberListResponse,
    MemberResponse,
    ProfileResponse,
    UsernameUpdateRequest,
)

router = APIRouter()


@router.get("", response_model=MemberListResponse)
async def list_members(
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    profiles = await membership.list_members(auth.org_id, session)
    return MemberListResponse(data=[MemberResponse.model_validate(p) for p in profiles])


@router.patch("/me", response_model=ProfileResponse)
async def update_my_username(
    body: UsernameUpdateRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    profile = await membership.update_username(auth.user_id, auth.org_id, body.username, session)
    await commit(session)
    return ProfileResponse(**membership.profile_view(profile))
