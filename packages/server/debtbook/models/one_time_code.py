"""One-time codes for email confirmation and password reset."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class OneTimeCode(UUIDMixin, SQLModel, table=True):
    __tablename__ = "one_time_codes"

    email: str = Field(nullable=False, index=True)
    purpose: str = Field(nullable=False)  # EMAIL_CONFIRMATION | PASSWORD_RESET
    code_hash: str = Field(nullable=False)  # bcrypt
    verified: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
