"""
Organization service: lookup, display and cascading deletion.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.auth import lock_admin_profile, verify_password
from debtbook.core.errors import NotFoundError, ValidationError
from debtbook.models.customer import Customer
from debtbook.models.join_request import JoinRequest
from debtbook.models.organization import Organization
from debtbook.models.transaction import LedgerTransaction
from debtbook.models.user import User
from debtbook.models.user_profile import UserProfile

log = structlog.get_logger()

_ORG_SUFFIX = re.compile(r"-[a-z0-9]+$", re.IGNORECASE)


def display_org_name(name: Optional[str]) -> str:
    """Org name without its trailing ``-xxxx`` slug suffix."""
    if not name:
        return "Organization"
    return _ORG_SUFFIX.sub("", name) or name


def org_view(org: Organization) -> dict:
    return {
        "org_id": org.org_id,
        "name": org.name,
        "display_name": display_org_name(org.name),
        "created_by": org.created_by,
        "created_at": org.created_at,
    }


async def get_organization(org_id: str, session: AsyncSession) -> Organization:
    """Get an org by slug; raises NotFoundError if it does not exist."""
    result = await session.execute(
        select(Organization).where(Organization.org_id == org_id)
    )
    org = result.scalar_one_or_none()
    if not org:
        raise NotFoundError("Organization not found")
    return org


async def delete_organization(
    caller_id: uuid.UUID,
    password: str,
    session: AsyncSession,
    org_id: Optional[str] = None,
) -> str:
    """Delete the caller's organization and everything in it. Returns the org id.

    Admin only, and the caller must re-enter their password. Children go
    before parents: transactions, customers, profiles, join requests, then
    the organization row. Identities survive but lose their sign-up intent
    so a later sign-in does not recreate the org.
    """
    profile = await lock_admin_profile(caller_id, session, org_id)
    org_id = profile.org_id

    result = await session.execute(select(User).where(User.id == caller_id))
    user = result.scalar_one()
    if not verify_password(password, user.password_hash):
        log.warning("org.delete_bad_password", org_id=org_id, user_id=str(caller_id))
        raise ValidationError("Incorrect password", fields={"password": "Incorrect password"})

    member_ids = select(UserProfile.id).where(UserProfile.org_id == org_id)
    requester_ids = select(JoinRequest.user_id).where(JoinRequest.org_id == org_id)
    await session.execute(
        update(User)
        .where(or_(User.id.in_(member_ids), User.id.in_(requester_ids)))
        .values(signup_intent=None)
        .execution_options(synchronize_session=False)
    )

    tx_count = (
        await session.execute(delete(LedgerTransaction).where(LedgerTransaction.org_id == org_id))
    ).rowcount
    customer_count = (
        await session.execute(delete(Customer).where(Customer.org_id == org_id))
    ).rowcount
    await session.execute(delete(UserProfile).where(UserProfile.org_id == org_id))
    await session.execute(delete(JoinRequest).where(JoinRequest.org_id == org_id))
    await session.execute(delete(Organization).where(Organization.org_id == org_id))
    await session.flush()

    log.info(
        "org.deleted",
        org_id=org_id,
        deleted_by=str(caller_id),
        transactions=tx_count,
        customers=customer_count,
    )
    return org_id
