"""
Identity service: credentials, email confirmation and password reset.

One-time codes are six digits, stored as bcrypt hashes and valid for
``one_time_code_ttl_minutes``. Issuing a code discards the unverified codes
previously issued for the same email and purpose.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Optional, Union

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.auth import AuthenticationError, hash_password, verify_password
from debtbook.core.config import get_settings
from debtbook.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from debtbook.models.base import _utcnow
from debtbook.models.one_time_code import OneTimeCode
from debtbook.models.organization import Organization
from debtbook.models.user import User
from debtbook.services.membership import (
    generate_org_id,
    load_profile,
    resolve_membership,
    write_intent,
)
from debtbook_shared.schemas.common import MembershipStatus, OneTimeCodePurpose, Role
from debtbook_shared.schemas.membership import CreatingOrg, JoiningOrg

log = structlog.get_logger()

MIN_PASSWORD_LENGTH = 8
CODE_DIGITS = 6


class EmailNotConfirmedError(AuthorizationError):
    code = "EMAIL_NOT_CONFIRMED"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _check_new_password(password: str, field: str = "password") -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Password is too short",
            fields={field: f"Must be at least {MIN_PASSWORD_LENGTH} characters"},
        )


async def get_user_by_email(email: str, session: AsyncSession) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Sign up / sign in
# ---------------------------------------------------------------------------

async def _build_intent(
    username: str,
    org_name: Optional[str],
    join_org_id: Optional[str],
    role: Role,
    session: AsyncSession,
) -> Union[CreatingOrg, JoiningOrg]:
    if join_org_id:
        result = await session.execute(
            select(Organization).where(Organization.org_id == join_org_id)
        )
        org = result.scalar_one_or_none()
        if not org:
            raise NotFoundError("Organization not found")
        return JoiningOrg(org_id=org.org_id, org_name=org.name, username=username, role=role)
    if org_name and org_name.strip():
        org_name = org_name.strip()
        return CreatingOrg(org_id=generate_org_id(org_name), org_name=org_name, username=username)
    raise ValidationError(
        "Either an organization name or an organization to join is required",
        fields={"org_name": "Required unless joining an organization"},
    )


async def sign_up(
    email: str,
    password: str,
    username: str,
    org_name: Optional[str],
    join_org_id: Optional[str],
    role: Role,
    session: AsyncSession,
) -> tuple[User, dict, Optional[str]]:
    """Register an identity with its sign-up intent.

    Returns (user, membership, confirmation_code). When email confirmation
    is off the deferred membership work runs immediately and no code is
    issued; otherwise it waits for the first confirmed sign-in.
    """
    settings = get_settings()
    email = normalize_email(email)
    username = (username or "").strip() or email.split("@")[0]
    _check_new_password(password)

    if await get_user_by_email(email, session):
        raise ConflictError("An account with this email already exists")

    intent = await _build_intent(username, org_name, join_org_id, role, session)

    user = User(email=email, password_hash=hash_password(password))
    write_intent(user, intent)
    session.add(user)
    await session.flush()
    log.info("user.signed_up", user_id=str(user.id), intent=intent.kind)

    if not settings.require_email_confirmation:
        user.email_confirmed_at = _utcnow()
        session.add(user)
        membership = await load_profile(user, session)
        return user, membership, None

    code = await issue_code(email, OneTimeCodePurpose.EMAIL_CONFIRMATION, session)
    membership = await resolve_membership(user, session)
    return user, membership, code


async def sign_in(email: str, password: str, session: AsyncSession) -> tuple[User, dict]:
    """Check credentials, then resolve membership and finish deferred work."""
    user = await get_user_by_email(email, session)
    if not user or not verify_password(password, user.password_hash):
        log.info("user.sign_in_failed", email=normalize_email(email))
        raise AuthenticationError("Invalid email or password")

    if get_settings().require_email_confirmation and user.email_confirmed_at is None:
        raise EmailNotConfirmedError("Email address has not been confirmed")

    membership = await load_profile(user, session)
    log.info("user.signed_in", user_id=str(user.id), status=membership["status"].value)
    return user, membership


async def choose_organization(
    user: User,
    username: str,
    org_name: Optional[str],
    join_org_id: Optional[str],
    role: Role,
    session: AsyncSession,
) -> dict:
    """Replace the sign-up intent of an identity that belongs to no org.

    This is how members of a deleted org, or rejected requesters, start
    over. Active members and identities with a pending request are refused.
    """
    membership = await resolve_membership(user, session)
    if membership["status"] in (MembershipStatus.ACTIVE, MembershipStatus.PENDING):
        raise ConflictError("Already a member of an organization or awaiting approval")

    username = (username or "").strip() or user.email.split("@")[0]
    intent = await _build_intent(username, org_name, join_org_id, role, session)
    write_intent(user, intent)
    session.add(user)
    await session.flush()
    log.info("user.organization_chosen", user_id=str(user.id), intent=intent.kind)

    return await load_profile(user, session)


async def update_password(
    user: User, current_password: str, new_password: str, session: AsyncSession
) -> None:
    """Change the password after re-checking the current one."""
    if not verify_password(current_password, user.password_hash):
        raise ValidationError(
            "Incorrect password", fields={"current_password": "Incorrect password"}
        )
    _check_new_password(new_password, "new_password")

    user.password_hash = hash_password(new_password)
    session.add(user)
    await session.flush()
    log.info("user.password_updated", user_id=str(user.id))


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------

async def issue_code(email: str, purpose: OneTimeCodePurpose, session: AsyncSession) -> str:
    """Create a new code and return it in clear text (for the email only)."""
    email = normalize_email(email)
    await session.execute(
        delete(OneTimeCode).where(
            OneTimeCode.email == email,
            OneTimeCode.purpose == purpose.value,
            OneTimeCode.verified.is_(False),
        )
    )

    code = f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"
    now = _utcnow()
    session.add(
        OneTimeCode(
            email=email,
            purpose=purpose.value,
            code_hash=hash_password(code),
            created_at=now,
            expires_at=now + timedelta(minutes=get_settings().one_time_code_ttl_minutes),
        )
    )
    await session.flush()
    log.info("code.issued", email=email, purpose=purpose.value)
    return code


async def _matching_code(
    email: str,
    purpose: OneTimeCodePurpose,
    code: str,
    verified: bool,
    session: AsyncSession,
) -> Optional[OneTimeCode]:
    result = await session.execute(
        select(OneTimeCode)
        .where(
            OneTimeCode.email == normalize_email(email),
            OneTimeCode.purpose == purpose.value,
            OneTimeCode.verified.is_(verified),
            OneTimeCode.expires_at > _utcnow(),
        )
        .order_by(OneTimeCode.created_at.desc())
    )
    for candidate in result.scalars().all():
        if verify_password(code, candidate.code_hash):
            return candidate
    return None


def _invalid_code() -> ValidationError:
    return ValidationError("Invalid or expired code", fields={"code": "Invalid or expired code"})


async def verify_code(
    email: str, purpose: OneTimeCodePurpose, code: str, session: AsyncSession
) -> OneTimeCode:
    """Mark a live, unverified code as verified."""
    otc = await _matching_code(email, purpose, code, False, session)
    if not otc:
        raise _invalid_code()
    otc.verified = True
    session.add(otc)
    await session.flush()
    return otc


async def confirm_email(email: str, code: str, session: AsyncSession) -> User:
    otc = await verify_code(email, OneTimeCodePurpose.EMAIL_CONFIRMATION, code, session)
    user = await get_user_by_email(email, session)
    if not user:
        raise _invalid_code()

    user.email_confirmed_at = _utcnow()
    otc.expires_at = _utcnow()
    session.add_all([user, otc])
    await session.flush()
    log.info("user.email_confirmed", user_id=str(user.id))
    return user


async def request_password_reset(email: str, session: AsyncSession) -> Optional[str]:
    """Issue a reset code if the account exists. The caller must not reveal which."""
    if not await get_user_by_email(email, session):
        log.info("password_reset.unknown_email")
        return None
    return await issue_code(email, OneTimeCodePurpose.PASSWORD_RESET, session)


async def verify_password_reset(email: str, code: str, session: AsyncSession) -> None:
    await verify_code(email, OneTimeCodePurpose.PASSWORD_RESET, code, session)


async def reset_password(
    email: str, code: str, new_password: str, session: AsyncSession
) -> None:
    """Set a new password with a verified, unexpired reset code, then burn it."""
    _check_new_password(new_password, "new_password")
    otc = await _matching_code(email, OneTimeCodePurpose.PASSWORD_RESET, code, True, session)
    user = await get_user_by_email(email, session)
    if not otc or not user:
        raise _invalid_code()

    user.password_hash = hash_password(new_password)
    otc.expires_at = _utcnow() - timedelta(seconds=1)
    session.add_all([user, otc])
    await session.flush()
    log.info("user.password_reset", user_id=str(user.id))
