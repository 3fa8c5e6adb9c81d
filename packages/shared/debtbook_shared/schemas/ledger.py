"""Ledger schemas: transactions, history and yearly totals."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import TxType


class AmountRequest(BaseModel):
    """Body for recording a debt or a payment."""
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    idempotency_key: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Client-chosen key; a retried request with the same key is applied once",
    )


class TransactionResponse(BaseModel):
    id: uuid.UUID
    org_id: str
    customer_id: uuid.UUID
    user_id: uuid.UUID
    user_name: str
    tx_type: TxType
    amount: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class CustomerHistoryResponse(BaseModel):
    data: List[TransactionResponse]
    balance: Decimal


class YearlyTotal(BaseModel):
    year: int
    debt: Decimal
    payment: Decimal
    net: Decimal


class OrgHistoryResponse(BaseModel):
    data: List[TransactionResponse]
    yearly_totals: List[YearlyTotal]
