"""
Authentication endpoints.

- Email/Password sign-up & sign-in
- Email confirmation and password reset with one-time codes
- JWT session management (sign-out, password change)
- Choosing a new organization once the caller belongs to none
"""

from __future__ import annotations

import uuid
from typing import Optional

import jwt
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from pydantic import BaseModel, EmailStr, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import (
    authorization_header,
    create_jwt,
    decode_jwt,
    extract_token,
    generate_csrf_token,
    get_current_identity,
    revoke_jwt,
)
from debtbook.core.config import get_settings
from debtbook.core.database import commit, get_session
from debtbook.core.middleware import CSRF_COOKIE, SESSION_COOKIE
from debtbook.models.user import User
from debtbook.services import email as email_service
from debtbook.services import identity
from debtbook.services.identity import MIN_PASSWORD_LENGTH
from debtbook.services.membership import profile_view, resolve_membership
from debtbook_shared.schemas.common import ORG_ID_PATTERN, MembershipStatus, Role
from debtbook_shared.schemas.membership import MembershipResponse

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}

CODE_PATTERN = r"^[0-9]{6}$"


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=CSRF_COOKIE,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_minutes * 60,
    )


def _clear_session_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")


def _start_session(response: Response, user: User, membership: dict) -> tuple[str, str]:
    org_id = membership["org_id"] if membership["status"] == MembershipStatus.ACTIVE else None
    token, _jti = create_jwt(user.id, org_id)
    csrf = generate_csrf_token()
    _set_session_cookies(response, token, csrf)
    return token, csrf


def membership_response(membership: dict) -> MembershipResponse:
    profile = membership.get("profile")
    return MembershipResponse(
        status=membership["status"],
        org_id=membership.get("org_id"),
        org_name=membership.get("org_name"),
        profile=profile_view(profile) if profile is not None else None,
    )


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------

class OrgChoiceRequest(BaseModel):
    """Create a new org (``org_name``) or ask to join one (``join_org_id``)."""
    username: str = Field(min_length=1, max_length=100)
    org_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    join_org_id: Optional[str] = Field(default=None, max_length=60, pattern=ORG_ID_PATTERN)
    role: Role = Role.STAFF

    @model_validator(mode="after")
    def _one_intent(self):
        if bool(self.org_name) == bool(self.join_org_id):
            raise ValueError("Provide exactly one of org_name or join_org_id")
        return self


class SignUpRequest(OrgChoiceRequest):
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class SessionResponse(BaseModel):
    user_id: uuid.UUID
    email: str
    token: Optional[str] = None
    csrf_token: Optional[str] = None
    confirmation_required: bool = False
    membership: MembershipResponse


class MeResponse(BaseModel):
    user_id: uuid.UUID
    email: str
    email_confirmed: bool
    membership: MembershipResponse


class ConfirmEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)


class PasswordUpdateRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)


class PasswordResetConfirmRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Sign up / sign in
# ---------------------------------------------------------------------------

@router.post("/sign-up", response_model=SessionResponse, status_code=201)
async def sign_up(
    body: SignUpRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
):
    """Register. Without email confirmation the session starts right away."""
    user, membership, code = await identity.sign_up(
        body.email,
        body.password,
        body.username,
        body.org_name,
        body.join_org_id,
        body.role,
        session,
    )
    await commit(session)

    if code is not None:
        background_tasks.add_task(email_service.send_confirmation_code, user.email, code)
        return SessionResponse(
            user_id=user.id,
            email=user.email,
            confirmation_required=True,
            membership=membership_response(membership),
        )

    token, csrf = _start_session(response, user, membership)
    return SessionResponse(
        user_id=user.id,
        email=user.email,
        token=token,
        csrf_token=csrf,
        membership=membership_response(membership),
    )


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(
    body: SignInRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    user, membership = await identity.sign_in(body.email, body.password, session)
    await commit(session)
    token, csrf = _start_session(response, user, membership)
    return SessionResponse(
        user_id=user.id,
        email=user.email,
        token=token,
        csrf_token=csrf,
        membership=membership_response(membership),
    )


@router.post("/sign-out", response_model=MessageResponse)
async def sign_out(
    request: Request,
    response: Response,
    authorization: Optional[str] = Depends(authorization_header),
):
    """Invalidate the current session."""
    token = extract_token(request, authorization)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError:
            log.info("auth.sign_out_invalid_token")
        else:
            if payload.get("jti"):
                await revoke_jwt(payload["jti"])

    _clear_session_cookies(response)
    return MessageResponse(message="Signed out")


@router.get("/me", response_model=MeResponse)
async def me(
    identity_claims: tuple[User, dict] = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    """Who am I, and where do I stand with my organization."""
    user, _payload = identity_claims
    membership = await resolve_membership(user, session)
    return MeResponse(
        user_id=user.id,
        email=user.email,
        email_confirmed=user.email_confirmed_at is not None,
        membership=membership_response(membership),
    )


@router.post("/membership", response_model=SessionResponse)
async def choose_organization(
    body: OrgChoiceRequest,
    response: Response,
    identity_claims: tuple[User, dict] = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    """Create or ask to join an org when the caller belongs to none."""
    user, payload = identity_claims
    membership = await identity.choose_organization(
        user, body.username, body.org_name, body.join_org_id, body.role, session
    )
    await commit(session)

    if payload.get("jti"):
        await revoke_jwt(payload["jti"])
    token, csrf = _start_session(response, user, membership)
    return SessionResponse(
        user_id=user.id,
        email=user.email,
        token=token,
        csrf_token=csrf,
        membership=membership_response(membership),
    )


@router.post("/confirm-email", response_model=MessageResponse)
async def confirm_email(
    body: ConfirmEmailRequest,
    session: AsyncSession = Depends(get_session),
):
    await identity.confirm_email(body.email, body.code, session)
    await commit(session)
    return MessageResponse(message="Email confirmed")


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

@router.put("/password", response_model=MessageResponse)
async def update_password(
    body: PasswordUpdateRequest,
    identity_claims: tuple[User, dict] = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    """Change password; the current password is re-verified first."""
    user, _payload = identity_claims
    await identity.update_password(user, body.current_password, body.new_password, session)
    await commit(session)
    return MessageResponse(message="Password updated")


@router.post("/password-reset", response_model=MessageResponse, status_code=202)
async def request_password_reset(
    body: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
):
    """Always 202, whether or not the account exists."""
    code = await identity.request_password_reset(body.email, session)
    await commit(session)
    if code is not None:
        background_tasks.add_task(email_service.send_password_reset_code, body.email, code)
    return MessageResponse(message="If the account exists, a reset code has been sent")


@router.post("/password-reset/verify", response_model=MessageResponse)
async def verify_password_reset(
    body: PasswordResetVerifyRequest,
    session: AsyncSession = Depends(get_session),
):
    await identity.verify_password_reset(body.email, body.code, session)
    await commit(session)
    return MessageResponse(message="Code verified")


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(
    body: PasswordResetConfirmRequest,
    session: AsyncSession = Depends(get_session),
):
    await identity.reset_password(body.email, body.code, body.new_password, session)
    await commit(session)
    return MessageResponse(message="Password has been reset")
