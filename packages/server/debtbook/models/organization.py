"""Organization model (one per tenant, keyed by a stable slug)."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class Organization(TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    org_id: str = Field(primary_key=True, max_length=60)
    name: str = Field(nullable=False, index=True)
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
