"""Customer model. ``balance`` is a cache; the ledger is the authority."""

from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Customer(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "customers"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "phone", name="uq_customers_org_phone"),
    )

    org_id: str = Field(foreign_key="organizations.org_id", nullable=False, index=True)
    full_name: str = Field(nullable=False, index=True)
    phone: str = Field(nullable=False)
    address: Optional[str] = None
    balance: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(14, 2), nullable=False)
