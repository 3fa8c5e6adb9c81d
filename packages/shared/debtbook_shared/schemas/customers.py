"""Customer registry schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import PHONE_PATTERN


class CustomerUpsertRequest(BaseModel):
    """Create or update a customer keyed by phone."""
    full_name: str = Field(min_length=1, max_length=200)
    phone: str = Field(pattern=PHONE_PATTERN)
    address: Optional[str] = Field(default=None, max_length=500)


class CustomerCreateRequest(CustomerUpsertRequest):
    """Create a genuinely new customer, optionally opening with a debt."""
    initial_debt: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)


class CustomerResponse(BaseModel):
    id: uuid.UUID
    org_id: str
    full_name: str
    phone: str
    address: Optional[str] = None
    balance: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class CustomerListResponse(BaseModel):
    data: List[CustomerResponse]
