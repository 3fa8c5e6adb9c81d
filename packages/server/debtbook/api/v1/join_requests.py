"""
Join request endpoints (admin only).

GET  /api/v1/orgs/{orgSlug}/join-requests Pending requests, newest first
POST /api/v1/orgs/{orgSlug}/join-requests/{id}/approve Approve and create the member's profile
POST /api/v1/orgs/{orgSlug}/join-requests/{id}/reject Reject
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import AuthenticatedUser, require_admin
from debtbook.core.database import commit, get_session
from debtbook.services import email as email_service
from debtbook.services import membership
from debtbook.services.organizations import display_org_name
from debtbook_shared.schemas.membership import (
    JoinDecisionResponse,
    JoinRequestListResponse,
    JoinRequestResponse,
)

router = APIRouter()


@router.get("", response_model=JoinRequestListResponse)
async def list_join_requests(
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    requests = await membership.list_pending_join_requests(auth.org_id, session)
    return JoinRequestListResponse(data=[JoinRequestResponse.model_validate(r) for r in requests])


@router.post("/{request_id}/approve", response_model=JoinDecisionResponse)
async def approve_join_request(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Approve a pending request. Approving an approved request changes nothing."""
    request, changed = await membership.approve_join_request(
        auth.org_id, auth.user_id, request_id, session
    )
    await commit(session)
    if changed:
        background_tasks.add_task(
            email_service.send_join_decision, request.email, display_org_name(request.org_name), True
        )
    return JoinDecisionResponse(
        request=JoinRequestResponse.model_validate(request),
        message="Join request approved" if changed else "Join request already approved",
    )


@router.post("/{request_id}/reject", response_model=JoinDecisionResponse)
async def reject_join_request(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    request, changed = await membership.reject_join_request(
        auth.org_id, auth.user_id, request_id, session
    )
    await commit(session)
    if changed:
        background_tasks.add_task(
            email_service.send_join_decision, request.email, display_org_name(request.org_name), False
        )
    return JoinDecisionResponse(
        request=JoinRequestResponse.model_validate(request),
        message="Join request rejected" if changed else "Join request already rejected",
    )
