"""
Customer registry: org-scoped directory keyed by phone.
"""

from __future__ import annotations

import re
import uuid
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.database import dialect_insert
from debtbook.core.errors import NotFoundError, ValidationError
from debtbook.models.base import _utcnow
from debtbook.models.customer import Customer
from debtbook.services.ledger import refresh_projection
from debtbook.services.transactions import apply_debt
from debtbook_shared.schemas.common import PHONE_PATTERN

log = structlog.get_logger()

_PHONE_RE = re.compile(PHONE_PATTERN)


def validate_customer_fields(full_name: str, phone: str) -> tuple[str, str]:
    """Trim and validate. Returns the cleaned (full_name, phone)."""
    full_name = (full_name or "").strip()
    phone = (phone or "").strip()
    errors = {}
    if not full_name:
        errors["full_name"] = "Name is required"
    if not _PHONE_RE.match(phone):
        errors["phone"] = "Phone must be 8 to 15 digits, optionally starting with +"
    if errors:
        raise ValidationError("Invalid customer", fields=errors)
    return full_name, phone


async def upsert_customer(
    org_id: str,
    full_name: str,
    phone: str,
    address: Optional[str],
    session: AsyncSession,
) -> Customer:
    """Insert a customer, or update name/address of the one holding this phone."""
    full_name, phone = validate_customer_fields(full_name, phone)
    address = address.strip() if address else None
    now = _utcnow()

    insert = dialect_insert(session, Customer)
    stmt = (
        insert.values(
            id=uuid.uuid4(),
            org_id=org_id,
            full_name=full_name,
            phone=phone,
            address=address,
            balance=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=["org_id", "phone"],
            set_={
                "full_name": insert.excluded.full_name,
                "address": insert.excluded.address,
                "updated_at": now,
            },
        )
        .returning(Customer)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    customer = result.scalar_one()
    log.info("customer.upserted", customer_id=str(customer.id), org_id=org_id)
    return customer


async def find_collisions(
    org_id: str, full_name: str, phone: str, session: AsyncSession
) -> dict[str, str]:
    """Field name -> message for every field that clashes with an existing customer."""
    full_name = full_name.strip()
    phone = phone.strip()
    result = await session.execute(
        select(Customer.full_name, Customer.phone).where(
            Customer.org_id == org_id,
            or_(Customer.phone == phone, Customer.full_name == full_name),
        )
    )
    collisions = {}
    for row in result.all():
        if row.phone == phone:
            collisions["phone"] = "Phone already exists"
        if row.full_name == full_name:
            collisions["full_name"] = "Name already exists"
    return collisions


async def create_customer(
    org_id: str,
    full_name: str,
    phone: str,
    address: Optional[str],
    initial_debt: Optional[Decimal],
    actor,
    session: AsyncSession,
) -> Customer:
    """Create a genuinely new customer, optionally opening with a debt.

    ``actor`` is the AuthenticatedUser recording the opening debt.
    """
    full_name, phone = validate_customer_fields(full_name, phone)

    collisions = await find_collisions(org_id, full_name, phone, session)
    if collisions:
        raise ValidationError("Customer already exists", fields=collisions)

    customer = await upsert_customer(org_id, full_name, phone, address, session)

    if initial_debt is not None:
        await apply_debt(
            org_id, customer.id, initial_debt, actor.user_id, actor.username, session
        )

    log.info("customer.created", customer_id=str(customer.id), org_id=org_id)
    return customer


async def list_customers(
    org_id: str, search: Optional[str], session: AsyncSession
) -> list[Customer]:
    """Active customers ordered by name, balances recomputed from the log."""
    stmt = select(Customer).where(Customer.org_id == org_id)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Customer.full_name).like(pattern),
                func.lower(Customer.phone).like(pattern),
            )
        )
    result = await session.execute(stmt.order_by(Customer.full_name))
    customers = list(result.scalars().all())
    return await refresh_projection(customers, session)


async def get_customer(
    org_id: str, customer_id: uuid.UUID, session: AsyncSession
) -> Customer:
    """One active customer. A settled customer is pruned and reported missing."""
    result = await session.execute(
        select(Customer).where(Customer.id == customer_id, Customer.org_id == org_id)
    )
    customer = result.scalar_one_or_none()
    if not customer:
        raise NotFoundError("Customer not found")
    remaining = await refresh_projection([customer], session)
    if not remaining:
        raise NotFoundError("Customer not found")
    return remaining[0]
