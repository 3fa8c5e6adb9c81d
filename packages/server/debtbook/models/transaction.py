"""Ledger transaction model (append-only, immutable).

``customer_id`` has no foreign key: history stays readable
after a settled customer is pruned from the projection.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class LedgerTransaction(UUIDMixin, SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint("tx_type IN ('DEBT', 'PAYMENT')", name="ck_transactions_tx_type"),
        sa.UniqueConstraint("org_id", "idempotency_key", name="uq_transactions_org_idempotency_key"),
    )

    org_id: str = Field(foreign_key="organizations.org_id", nullable=False, index=True)
    customer_id: uuid.UUID = Field(nullable=False, index=True)
    user_id: uuid.UUID = Field(nullable=False)
    user_name: str = Field(nullable=False)
    tx_type: str = Field(nullable=False)  # DEBT | PAYMENT
    amount: Decimal = Field(sa_type=sa.Numeric(14, 2), nullable=False)
    idempotency_key: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        index=True,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
