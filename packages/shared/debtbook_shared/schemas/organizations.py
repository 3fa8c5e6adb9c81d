"""Organization schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OrgResponse(BaseModel):
    org_id: str
    name: str
    display_name: str
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class OrgDeleteRequest(BaseModel):
    """Step-up confirmation for deleting an organization."""
    password: str = Field(min_length=1)
