"""User profile: existence of this row is active membership in an org."""

import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class UserProfile(TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_profiles"

    id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    org_id: str = Field(foreign_key="organizations.org_id", nullable=False, index=True)
    org_name: str = Field(nullable=False)
    role: str = Field(nullable=False, default="STAFF")  # ADMIN | STAFF
    username: str = Field(nullable=False)
