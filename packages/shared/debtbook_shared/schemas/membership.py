"""
Membership schemas: sign-up intent, profiles, join requests.

The sign-up intent is decided once at sign-up and carried as typed state;
``kind`` is the discriminator.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .common import ORG_ID_PATTERN, JoinRequestStatus, MembershipStatus, Role


# ---------------------------------------------------------------------------
# Sign-up intent
# ---------------------------------------------------------------------------

class CreatingOrg(BaseModel):
    """The identity signed up to found a new organization."""
    kind: Literal["creating_org"] = "creating_org"
    org_id: str = Field(min_length=2, max_length=60, pattern=ORG_ID_PATTERN)
    org_name: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=100)


class JoiningOrg(BaseModel):
    """The identity signed up to join an existing organization."""
    kind: Literal["joining_org"] = "joining_org"
    org_id: str = Field(min_length=2, max_length=60, pattern=ORG_ID_PATTERN)
    org_name: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=100)
    role: Role = Role.STAFF
    status: JoinRequestStatus = JoinRequestStatus.PENDING


SignupIntent = Annotated[Union[CreatingOrg, JoiningOrg], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ProfileResponse(BaseModel):
    id: uuid.UUID
    org_id: str
    org_name: str
    display_org_name: str
    role: Role
    username: str


class MembershipResponse(BaseModel):
    """Outcome of profile resolution for the signed-in identity."""
    status: MembershipStatus
    org_id: Optional[str] = None
    org_name: Optional[str] = None
    profile: Optional[ProfileResponse] = None


class JoinRequestResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    org_id: str
    org_name: str
    email: str
    username: str
    role: Role
    status: JoinRequestStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class JoinRequestListResponse(BaseModel):
    data: List[JoinRequestResponse]


class JoinDecisionResponse(BaseModel):
    request: JoinRequestResponse
    message: str


class MemberResponse(BaseModel):
    id: uuid.UUID
    username: str
    role: Role

    model_config = {"from_attributes": True}


class MemberListResponse(BaseModel):
    data: List[MemberResponse]


class UsernameUpdateRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)
