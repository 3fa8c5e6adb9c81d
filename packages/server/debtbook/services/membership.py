"""
Membership workflow: sign-up intent, join requests and profile materialization.

A join request moves PENDING -> APPROVED or PENDING -> REJECTED exactly
once. A joining user's profile exists iff their request is APPROVED; the
approval and the profile upsert commit together.
"""

from __future__ import annotations

import re
import secrets
import string
import uuid
from typing import Optional, Union

import structlog
from pydantic import TypeAdapter
from sqlalchemy import case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.auth import lock_admin_profile, lock_member_profile
from debtbook.core.database import dialect_insert
from debtbook.core.errors import (
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from debtbook.models.base import _utcnow
from debtbook.models.join_request import JoinRequest
from debtbook.models.organization import Organization
from debtbook.models.user import User
from debtbook.models.user_profile import UserProfile
from debtbook.services.organizations import display_org_name
from debtbook_shared.schemas.common import (
    JOIN_REQUEST_TRANSITIONS,
    JoinRequestStatus,
    MembershipStatus,
    Role,
)
from debtbook_shared.schemas.membership import CreatingOrg, JoiningOrg, SignupIntent

log = structlog.get_logger()

ORG_SUFFIX_LENGTH = 4
ORG_ID_MAX_LENGTH = 60
_BASE36 = string.ascii_lowercase + string.digits
_intent_adapter = TypeAdapter(SignupIntent)


# ---------------------------------------------------------------------------
# Sign-up intent
# ---------------------------------------------------------------------------

def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "org"


def generate_org_id(name: str) -> str:
    """``slugify(name)`` plus a random base-36 suffix, e.g. ``acme-4f2k``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(ORG_SUFFIX_LENGTH))
    slug = slugify(name)[: ORG_ID_MAX_LENGTH - ORG_SUFFIX_LENGTH - 1].rstrip("-") or "org"
    return f"{slug}-{suffix}"


def read_intent(user: User) -> Optional[Union[CreatingOrg, JoiningOrg]]:
    if not user.signup_intent:
        return None
    return _intent_adapter.validate_python(user.signup_intent)


def write_intent(user: User, intent: Union[CreatingOrg, JoiningOrg]) -> None:
    user.signup_intent = intent.model_dump(mode="json")


def profile_view(profile: UserProfile) -> dict:
    return {
        "id": profile.id,
        "org_id": profile.org_id,
        "org_name": profile.org_name,
        "display_org_name": display_org_name(profile.org_name),
        "role": profile.role,
        "username": profile.username,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_profile(user_id: uuid.UUID, session: AsyncSession) -> Optional[UserProfile]:
    result = await session.execute(select(UserProfile).where(UserProfile.id == user_id))
    return result.scalar_one_or_none()


async def get_user_join_request(
    user_id: uuid.UUID, org_id: str, session: AsyncSession
) -> Optional[JoinRequest]:
    result = await session.execute(
        select(JoinRequest).where(JoinRequest.user_id == user_id, JoinRequest.org_id == org_id)
    )
    return result.scalar_one_or_none()


async def _upsert_profile(
    user_id: uuid.UUID,
    org_id: str,
    org_name: str,
    role: str,
    username: str,
    session: AsyncSession,
) -> UserProfile:
    now = _utcnow()
    insert = dialect_insert(session, UserProfile)
    stmt = (
        insert.values(
            id=user_id,
            org_id=org_id,
            org_name=org_name,
            role=role,
            username=username,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=["id"],
            set_={
                "org_id": insert.excluded.org_id,
                "org_name": insert.excluded.org_name,
                "role": insert.excluded.role,
                "username": insert.excluded.username,
                "updated_at": now,
            },
        )
        .returning(UserProfile)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Create org / join org
# ---------------------------------------------------------------------------

async def create_organization(
    user: User, intent: CreatingOrg, session: AsyncSession
) -> UserProfile:
    """Create the organization and its founder's ADMIN profile together.

    Safe to repeat: a second call by the founder returns the same profile.
    """
    insert = dialect_insert(session, Organization)
    now = _utcnow()
    await session.execute(
        insert.values(
            org_id=intent.org_id,
            name=intent.org_name,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["org_id"])
    )
    result = await session.execute(
        select(Organization).where(Organization.org_id == intent.org_id)
    )
    org = result.scalar_one()
    if org.created_by != user.id:
        raise ConflictError("Organization ID is already taken")

    existing = await get_profile(user.id, session)
    if existing:
        if existing.org_id != org.org_id:
            raise ConflictError("User already belongs to another organization")
        return existing

    profile = UserProfile(
        id=user.id,
        org_id=org.org_id,
        org_name=org.name,
        role=Role.ADMIN.value,
        username=intent.username,
    )
    session.add(profile)
    await session.flush()

    log.info("org.created", org_id=org.org_id, user_id=str(user.id))
    return profile


async def submit_join_request(
    user: User, intent: JoiningOrg, session: AsyncSession
) -> JoinRequest:
    """File or refresh a PENDING request. A decided request comes back unchanged."""
    result = await session.execute(
        select(Organization).where(Organization.org_id == intent.org_id)
    )
    org = result.scalar_one_or_none()
    if not org:
        raise NotFoundError("Organization not found")

    now = _utcnow()
    insert = dialect_insert(session, JoinRequest)
    stmt = (
        insert.values(
            id=uuid.uuid4(),
            user_id=user.id,
            org_id=org.org_id,
            org_name=org.name,
            email=user.email,
            username=intent.username,
            role=intent.role.value,
            status=JoinRequestStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=["user_id", "org_id"],
            set_={
                "org_name": insert.excluded.org_name,
                "email": insert.excluded.email,
                "username": insert.excluded.username,
                "role": insert.excluded.role,
                "updated_at": now,
            },
            where=JoinRequest.status == JoinRequestStatus.PENDING.value,
        )
        .returning(JoinRequest)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    request = result.scalar_one_or_none()
    if request is None:
        request = await get_user_join_request(user.id, org.org_id, session)
        log.info("join_request.already_decided", request_id=str(request.id), status=request.status)
        return request

    log.info("join_request.submitted", request_id=str(request.id), org_id=org.org_id)
    return request


# ---------------------------------------------------------------------------
# Decisions (admin only)
# ---------------------------------------------------------------------------

async def _lock_request(
    request_id: uuid.UUID, org_id: str, session: AsyncSession
) -> JoinRequest:
    # Requests of other orgs are indistinguishable from missing ones
    result = await session.execute(
        select(JoinRequest)
        .where(JoinRequest.id == request_id, JoinRequest.org_id == org_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if not request:
        raise NotFoundError("Join request not found")
    return request


def _transition(request: JoinRequest, target: JoinRequestStatus) -> bool:
    """Apply ``target`` to the request. False when it already holds it."""
    current = JoinRequestStatus(request.status)
    if current == target:
        return False
    if target not in JOIN_REQUEST_TRANSITIONS[current]:
        raise ConflictError(f"Join request was already {current.value.lower()}")
    request.status = target.value
    request.updated_at = _utcnow()
    return True


async def approve_join_request(
    org_id: str, caller_id: uuid.UUID, request_id: uuid.UUID, session: AsyncSession
) -> tuple[JoinRequest, bool]:
    """PENDING -> APPROVED and materialize the requester's profile.

    Returns (request, changed). Approving twice is a no-op.
    """
    await lock_admin_profile(caller_id, session, org_id)
    request = await _lock_request(request_id, org_id, session)

    if not _transition(request, JoinRequestStatus.APPROVED):
        return request, False

    session.add(request)
    await _upsert_profile(
        request.user_id,
        request.org_id,
        request.org_name,
        request.role or Role.STAFF.value,
        request.username or request.email.split("@")[0],
        session,
    )
    await session.flush()

    log.info("join_request.approved", request_id=str(request.id), approved_by=str(caller_id))
    return request, True


async def reject_join_request(
    org_id: str, caller_id: uuid.UUID, request_id: uuid.UUID, session: AsyncSession
) -> tuple[JoinRequest, bool]:
    """PENDING -> REJECTED. Never creates a profile."""
    await lock_admin_profile(caller_id, session, org_id)
    request = await _lock_request(request_id, org_id, session)

    if not _transition(request, JoinRequestStatus.REJECTED):
        return request, False

    session.add(request)
    await session.flush()

    log.info("join_request.rejected", request_id=str(request.id), rejected_by=str(caller_id))
    return request, True


# ---------------------------------------------------------------------------
# Profile resolution
# ---------------------------------------------------------------------------

def _membership(status: MembershipStatus, org_id=None, org_name=None, profile=None) -> dict:
    return {"status": status, "org_id": org_id, "org_name": org_name, "profile": profile}


async def resolve_membership(user: User, session: AsyncSession) -> dict:
    """Classify the identity. Read-only.

    A join-path identity is ACTIVE only once a profile exists, which only
    approval creates.
    """
    profile = await get_profile(user.id, session)
    if profile:
        return _membership(MembershipStatus.ACTIVE, profile.org_id, profile.org_name, profile)

    intent = read_intent(user)
    if intent is None:
        return _membership(MembershipStatus.NO_REQUEST)
    if isinstance(intent, CreatingOrg):
        return _membership(MembershipStatus.NEEDS_CREATION, intent.org_id, intent.org_name)

    request = await get_user_join_request(user.id, intent.org_id, session)
    if request is None:
        return _membership(MembershipStatus.NO_REQUEST, intent.org_id, intent.org_name)

    status = JoinRequestStatus(request.status)
    if status == JoinRequestStatus.APPROVED:
        # Approval commits the profile with it, so this is a stale read
        log.warning("membership.profile_missing", user_id=str(user.id), org_id=request.org_id)
        raise TransientError("Profile is not available yet, please retry")
    if status == JoinRequestStatus.REJECTED:
        return _membership(MembershipStatus.REJECTED, request.org_id, request.org_name)
    return _membership(MembershipStatus.PENDING, request.org_id, request.org_name)


async def load_profile(user: User, session: AsyncSession) -> dict:
    """Resolve membership and carry out the work deferred at sign-up."""
    membership = await resolve_membership(user, session)
    status = membership["status"]
    if status not in (MembershipStatus.NEEDS_CREATION, MembershipStatus.NO_REQUEST):
        return membership

    intent = read_intent(user)
    if isinstance(intent, CreatingOrg):
        profile = await create_organization(user, intent, session)
        return _membership(MembershipStatus.ACTIVE, profile.org_id, profile.org_name, profile)
    if isinstance(intent, JoiningOrg):
        request = await submit_join_request(user, intent, session)
        if request.status != JoinRequestStatus.PENDING.value:
            return await resolve_membership(user, session)
        return _membership(MembershipStatus.PENDING, request.org_id, request.org_name)
    return membership


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def list_pending_join_requests(org_id: str, session: AsyncSession) -> list[JoinRequest]:
    result = await session.execute(
        select(JoinRequest)
        .where(
            JoinRequest.org_id == org_id,
            JoinRequest.status == JoinRequestStatus.PENDING.value,
        )
        .order_by(JoinRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def list_members(org_id: str, session: AsyncSession) -> list[UserProfile]:
    """Admins first, then alphabetical by username."""
    admin_first = case((UserProfile.role == Role.ADMIN.value, 0), else_=1)
    result = await session.execute(
        select(UserProfile)
        .where(UserProfile.org_id == org_id)
        .order_by(admin_first, UserProfile.username)
    )
    return list(result.scalars().all())


async def update_username(
    user_id: uuid.UUID, org_id: str, username: str, session: AsyncSession
) -> UserProfile:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required", fields={"username": "Must not be empty"})

    profile = await lock_member_profile(user_id, session, org_id)
    profile.username = username
    session.add(profile)
    await session.flush()

    log.info("profile.username_updated", user_id=str(user_id))
    return profile
