"""
Ledger / balance engine.

The transaction log is the only authority for a customer's balance:

    balance = sum(DEBT.amount) - sum(PAYMENT.amount)

``Customer.balance`` is a cache that every listing overwrites. Customers whose
recomputed balance nets to zero are pruned from the projection; their
transactions stay in the log and remain visible through the history calls.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from debtbook.core.errors import LedgerIntegrityError
from debtbook.models.customer import Customer
from debtbook.models.transaction import LedgerTransaction
from debtbook_shared.schemas.common import TxType

log = structlog.get_logger()

SETTLED_EPSILON = Decimal("0.000001")
ZERO = Decimal("0")


def _amount(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def compute_balance(transactions: Iterable) -> Decimal:
    """Fold a customer's transactions into a balance.

    Accepts anything with ``tx_type`` and ``amount`` attributes (ORM rows or
    column tuples). Order does not matter. An unknown ``tx_type`` means the
    log is corrupt and raises instead of being skipped.
    """
    balance = ZERO
    for tx in transactions:
        amount = _amount(tx.amount)
        if tx.tx_type == TxType.DEBT.value:
            balance += amount
        elif tx.tx_type == TxType.PAYMENT.value:
            balance -= abs(amount)
        else:
            raise LedgerIntegrityError(f"Unknown transaction type '{tx.tx_type}'")
    return balance


def is_settled(balance: Decimal) -> bool:
    return abs(balance) < SETTLED_EPSILON


async def balances_by_customer(
    customer_ids: Sequence[uuid.UUID], session: AsyncSession
) -> dict[uuid.UUID, Decimal]:
    """Recompute balances from the full log.

    Only customers with at least one transaction appear in the result.
    """
    if not customer_ids:
        return {}
    result = await session.execute(
        select(
            LedgerTransaction.customer_id,
            LedgerTransaction.tx_type,
            LedgerTransaction.amount,
        ).where(LedgerTransaction.customer_id.in_(list(customer_ids)))
    )
    grouped: dict[uuid.UUID, list] = defaultdict(list)
    for row in result.all():
        grouped[row.customer_id].append(row)
    return {customer_id: compute_balance(rows) for customer_id, rows in grouped.items()}


async def customer_balance(customer_id: uuid.UUID, session: AsyncSession) -> Decimal:
    balances = await balances_by_customer([customer_id], session)
    return balances.get(customer_id, ZERO)


async def prune_settled(
    customer_ids: Sequence[uuid.UUID], session: AsyncSession
) -> set[uuid.UUID]:
    """Delete the given customers that are still settled. Returns pruned ids.

    Candidates are locked first and re-folded under the lock, so a payment or
    debt committed after the caller's read cannot be pruned away.
    """
    if not customer_ids:
        return set()

    result = await session.execute(
        select(Customer.id)
        .where(Customer.id.in_(list(customer_ids)))
        .with_for_update()
    )
    locked_ids = [row[0] for row in result.all()]
    balances = await balances_by_customer(locked_ids, session)
    settled = {
        customer_id
        for customer_id in locked_ids
        if customer_id in balances and is_settled(balances[customer_id])
    }
    if settled:
        await session.execute(delete(Customer).where(Customer.id.in_(list(settled))))
        log.info("ledger.pruned", count=len(settled))
    return settled


async def refresh_projection(
    customers: Sequence[Customer], session: AsyncSession
) -> list[Customer]:
    """Recompute, cache and prune. Returns the customers still active.

    Any failure while reading the log propagates before a single row is
    pruned. A customer without transactions has a zero balance but is not
    considered settled.
    """
    if not customers:
        return []

    balances = await balances_by_customer([c.id for c in customers], session)

    candidates = []
    for customer in customers:
        balance = balances.get(customer.id, ZERO)
        if customer.balance is None or _amount(customer.balance) != balance:
            customer.balance = balance
            session.add(customer)
        if customer.id in balances and is_settled(balance):
            candidates.append(customer.id)

    await session.flush()
    pruned = await prune_settled(candidates, session)
    return [c for c in customers if c.id not in pruned]


async def get_history(
    org_id: str, customer_id: uuid.UUID, session: AsyncSession
) -> list[LedgerTransaction]:
    """A customer's transactions, newest first. Works after pruning."""
    result = await session.execute(
        select(LedgerTransaction)
        .where(
            LedgerTransaction.org_id == org_id,
            LedgerTransaction.customer_id == customer_id,
        )
        .order_by(LedgerTransaction.created_at.desc())
    )
    return list(result.scalars().all())


async def get_org_history(org_id: str, session: AsyncSession) -> list[LedgerTransaction]:
    """Every transaction in the org, newest first."""
    result = await session.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.org_id == org_id)
        .order_by(LedgerTransaction.created_at.desc())
    )
    return list(result.scalars().all())


def yearly_totals(transactions: Iterable[LedgerTransaction]) -> list[dict]:
    """Debt, payment and net per calendar year, most recent year first."""
    totals: dict[int, dict[str, Decimal]] = defaultdict(lambda: {"debt": ZERO, "payment": ZERO})
    for tx in transactions:
        entry = totals[tx.created_at.year]
        if tx.tx_type == TxType.DEBT.value:
            entry["debt"] += _amount(tx.amount)
        elif tx.tx_type == TxType.PAYMENT.value:
            entry["payment"] += abs(_amount(tx.amount))
        else:
            raise LedgerIntegrityError(f"Unknown transaction type '{tx.tx_type}'")
    return [
        {
            "year": year,
            "debt": entry["debt"],
            "payment": entry["payment"],
            "net": entry["debt"] - entry["payment"],
        }
        for year, entry in sorted(totals.items(), reverse=True)
    ]
