"""
Authentication and Authorization for Debtbook.

Supports:
- Email/Password credentials (bcrypt)
- JWT session management with Redis revocation list
- Org-scoped authentication dependency
- Role-based authorization dependencies for routes
- In-transaction guards (profile row locked alongside the mutation)
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.config import get_settings
from debtbook.core.database import get_session
from debtbook.core.errors import AuthorizationError, DebtbookError, NotFoundError
from debtbook.core.middleware import SESSION_COOKIE
from debtbook.core.redis import get_redis
from debtbook.models.organization import Organization
from debtbook.models.user import User
from debtbook.models.user_profile import UserProfile
from debtbook_shared.schemas.common import Role

log = structlog.get_logger()
settings = get_settings()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


class AuthenticationError(DebtbookError):
    status_code = 401
    code = "NOT_AUTHENTICATED"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    org_id: Optional[str],
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti).

    The role is not carried: it is re-read from the profile row on
    every request.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "org": org_id,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int | None = None) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    redis = await get_redis()
    ttl = ttl_seconds or settings.jwt_expire_minutes * 60
    await redis.setex(f"jwt:revoked:{jti}", ttl, "1")


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    redis = await get_redis()
    return await redis.exists(f"jwt:revoked:{jti}") > 0


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for an authenticated user + their org context."""

    def __init__(self, user: User, org: Organization, profile: UserProfile, jti: Optional[str] = None):
        self.user = user
        self.org = org
        self.profile = profile
        self.jti = jti
        self.user_id = user.id
        self.org_id = org.org_id
        self.role = profile.role
        self.username = profile.username


def extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    """Bearer header first (mobile clients), then the session cookie."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


async def authenticate_token(token: str, session: AsyncSession) -> tuple[User, dict]:
    """Validate a session token and load its user. Returns (user, claims)."""
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise AuthenticationError("Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise AuthenticationError("Session has been revoked")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Invalid or expired session")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise AuthenticationError("User not found")
    return user, payload


async def get_current_identity(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> tuple[User, dict]:
    """Identity without org context (auth routes)."""
    token = extract_token(request, authorization)
    if not token:
        raise AuthenticationError("Authentication required")
    return await authenticate_token(token, session)


async def get_authenticated_user(
    request: Request,
    orgSlug: str,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Main authentication dependency for org-scoped routes."""
    token = extract_token(request, authorization)
    if not token:
        raise AuthenticationError("Authentication required")
    user, payload = await authenticate_token(token, session)

    # Membership and org existence are reported the same way
    result = await session.execute(
        select(UserProfile, Organization)
        .join(Organization, Organization.org_id == UserProfile.org_id)
        .where(UserProfile.id == user.id, UserProfile.org_id == orgSlug)
    )
    row = result.one_or_none()
    if not row:
        raise NotFoundError("Organization not found")
    profile, org = row

    auth = AuthenticatedUser(user=user, org=org, profile=profile, jti=payload.get("jti"))
    request.state.auth = auth
    structlog.contextvars.bind_contextvars(org_id=org.org_id, user_id=str(user.id))
    return auth


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks at the route)
# ---------------------------------------------------------------------------

async def require_member(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Any org member can access this endpoint."""
    return auth


async def require_admin(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires ADMIN role."""
    if auth.role != Role.ADMIN.value:
        raise AuthorizationError("Administrator access required")
    return auth


# ---------------------------------------------------------------------------
# In-transaction guards
# ---------------------------------------------------------------------------

async def lock_member_profile(
    user_id: uuid.UUID,
    session: AsyncSession,
    org_id: Optional[str] = None,
) -> UserProfile:
    """Load the caller's profile with a share lock held until commit.

    The lock keeps the role from changing (or the profile from being
    deleted) between the check and the caller's mutation.
    """
    stmt = select(UserProfile).where(UserProfile.id == user_id)
    if org_id is not None:
        stmt = stmt.where(UserProfile.org_id == org_id)
    result = await session.execute(
        stmt.with_for_update(read=True).execution_options(populate_existing=True)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise AuthorizationError("Not authorized")
    return profile


async def lock_admin_profile(
    user_id: uuid.UUID,
    session: AsyncSession,
    org_id: Optional[str] = None,
) -> UserProfile:
    """Like ``lock_member_profile`` but the caller must be ADMIN."""
    profile = await lock_member_profile(user_id, session, org_id)
    if profile.role != Role.ADMIN.value:
        log.warning("auth.admin_required", user_id=str(user_id), org_id=profile.org_id)
        raise AuthorizationError("Not authorized")
    return profile
