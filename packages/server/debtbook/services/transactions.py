"""
Transaction application service: appends one debt or payment atomically.

The customer row is locked for the whole unit of work, so two payments
against the same customer are serialized and a concurrent prune waits.
"""

from __future__ import annotations

import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.auth import lock_member_profile
from debtbook.core.errors import ConflictError, NotFoundError, ValidationError
from debtbook.models.customer import Customer
from debtbook.models.transaction import LedgerTransaction
from debtbook.services.ledger import customer_balance
from debtbook_shared.schemas.common import TxType

log = structlog.get_logger()

CENT = Decimal("0.01")


def normalize_amount(amount: Union[Decimal, float, int, str]) -> Decimal:
    """Round to cents. Rejects non-numeric, non-finite and non-positive input."""
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", fields={"amount": "Must be a number"})
    if not value.is_finite():
        raise ValidationError("Amount must be finite", fields={"amount": "Must be finite"})
    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValidationError(
            "Amount must be greater than zero",
            fields={"amount": "Must be greater than zero"},
        )
    return value


def _parse_kind(kind: Union[TxType, str]) -> TxType:
    try:
        return TxType(kind)
    except ValueError:
        raise ValidationError(f"Unknown transaction type '{kind}'", fields={"tx_type": "Unknown type"})


async def _find_by_idempotency_key(
    org_id: str, idempotency_key: str, session: AsyncSession
) -> Optional[LedgerTransaction]:
    result = await session.execute(
        select(LedgerTransaction).where(
            LedgerTransaction.org_id == org_id,
            LedgerTransaction.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


def _replay(
    existing: LedgerTransaction, customer_id: uuid.UUID, tx_type: TxType, value: Decimal
) -> LedgerTransaction:
    """Return the earlier transaction, provided the retry asks for the same thing."""
    if existing.customer_id != customer_id:
        raise ConflictError("Idempotency key was already used for another customer")
    if existing.tx_type != tx_type.value or Decimal(existing.amount) != value:
        raise ConflictError("Idempotency key was already used for a different transaction")
    log.info("transaction.replayed", transaction_id=str(existing.id))
    return existing


async def apply_transaction(
    org_id: str,
    customer_id: uuid.UUID,
    amount: Union[Decimal, float, int, str],
    user_id: uuid.UUID,
    user_name: str,
    kind: Union[TxType, str],
    idempotency_key: Optional[str],
    session: AsyncSession,
) -> LedgerTransaction:
    """Record one debt or payment and refresh the customer's cached balance.

    With an ``idempotency_key`` a retried call returns the transaction the
    first call created. Without one, every call appends a new row.
    """
    value = normalize_amount(amount)
    tx_type = _parse_kind(kind)

    if idempotency_key:
        existing = await _find_by_idempotency_key(org_id, idempotency_key, session)
        if existing:
            return _replay(existing, customer_id, tx_type, value)

    await lock_member_profile(user_id, session, org_id)

    result = await session.execute(
        select(Customer)
        .where(Customer.id == customer_id, Customer.org_id == org_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    customer = result.scalar_one_or_none()
    if not customer:
        raise NotFoundError("Customer not found")

    # A concurrent retry may have committed while we waited for the lock
    if idempotency_key:
        existing = await _find_by_idempotency_key(org_id, idempotency_key, session)
        if existing:
            return _replay(existing, customer_id, tx_type, value)

    balance = await customer_balance(customer.id, session)
    if tx_type == TxType.PAYMENT and value > balance:
        raise ValidationError(
            "Payment exceeds the outstanding balance",
            fields={"amount": f"Must not exceed the balance of {balance}"},
        )

    tx = LedgerTransaction(
        org_id=org_id,
        customer_id=customer.id,
        user_id=user_id,
        user_name=user_name,
        tx_type=tx_type.value,
        amount=value,
        idempotency_key=idempotency_key,
    )
    session.add(tx)

    customer.balance = balance + value if tx_type == TxType.DEBT else balance - value
    session.add(customer)
    await session.flush()

    log.info(
        "transaction.applied",
        transaction_id=str(tx.id),
        customer_id=str(customer.id),
        tx_type=tx_type.value,
        amount=str(value),
    )
    return tx


async def apply_debt(
    org_id: str,
    customer_id: uuid.UUID,
    amount: Union[Decimal, float, int, str],
    user_id: uuid.UUID,
    user_name: str,
    session: AsyncSession,
    idempotency_key: Optional[str] = None,
) -> LedgerTransaction:
    return await apply_transaction(
        org_id, customer_id, amount, user_id, user_name, TxType.DEBT, idempotency_key, session
    )


async def apply_payment(
    org_id: str,
    customer_id: uuid.UUID,
    amount: Union[Decimal, float, int, str],
    user_id: uuid.UUID,
    user_name: str,
    session: AsyncSession,
    idempotency_key: Optional[str] = None,
) -> LedgerTransaction:
    return await apply_transaction(
        org_id, customer_id, amount, user_id, user_name, TxType.PAYMENT, idempotency_key, session
    )
