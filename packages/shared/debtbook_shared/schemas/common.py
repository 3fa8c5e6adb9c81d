from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class TxType(str, Enum):
    DEBT = "DEBT"
    PAYMENT = "PAYMENT"


class JoinRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Terminal join request states never transition again
JOIN_REQUEST_TRANSITIONS: dict["JoinRequestStatus", list["JoinRequestStatus"]] = {
    JoinRequestStatus.PENDING: [JoinRequestStatus.APPROVED, JoinRequestStatus.REJECTED],
    JoinRequestStatus.APPROVED: [],
    JoinRequestStatus.REJECTED: [],
}


class MembershipStatus(str, Enum):
    """Where an identity stands with respect to its organization."""
    NO_REQUEST = "NO_REQUEST"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    NEEDS_CREATION = "NEEDS_CREATION"


class OneTimeCodePurpose(str, Enum):
    EMAIL_CONFIRMATION = "EMAIL_CONFIRMATION"
    PASSWORD_RESET = "PASSWORD_RESET"


PHONE_PATTERN = r"^\+?[0-9]{8,15}$"
ORG_ID_PATTERN = r"^[a-z0-9][a-z0-9-]*[a-z0-9]$"


class ErrorBody(BaseModel):
    code: str
    message: str
    status: int
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
