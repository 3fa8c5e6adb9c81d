"""Join request: a pending application to join an existing org."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class JoinRequest(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "join_requests"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "org_id", name="uq_join_requests_user_org"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_join_requests_status",
        ),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    org_id: str = Field(foreign_key="organizations.org_id", nullable=False, index=True)
    org_name: str = Field(nullable=False)
    email: str = Field(nullable=False)
    username: str = Field(nullable=False)
    role: str = Field(nullable=False, default="STAFF")
    status: str = Field(nullable=False, default="PENDING")  # PENDING | APPROVED | REJECTED
