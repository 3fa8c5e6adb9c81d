"""
Tests for the ledger / balance engine.

Covers:
- Balance fold (order independence, unknown types)
- Projection refresh: cache overwrite, settled pruning, history after prune
- Yearly totals
"""

from __future__ import annotations

import itertools
import uuid
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from debtbook.core.errors import LedgerIntegrityError
from debtbook.models.customer import Customer
from debtbook.models.transaction import LedgerTransaction
from debtbook.services import ledger
from debtbook.services.customers import upsert_customer
from debtbook.services.transactions import apply_debt, apply_payment


def _tx(tx_type, amount, created_at=None):
    return SimpleNamespace(tx_type=tx_type, amount=Decimal(amount), created_at=created_at)


# ---------------------------------------------------------------------------
# Unit Tests: compute_balance
# ---------------------------------------------------------------------------

class TestComputeBalance:
    def test_empty_log_is_zero(self):
        assert ledger.compute_balance([]) == Decimal("0")

    def test_debts_add_payments_subtract(self):
        txs = [_tx("DEBT", "100"), _tx("PAYMENT", "40"), _tx("DEBT", "5.50")]
        assert ledger.compute_balance(txs) == Decimal("65.50")

    def test_order_independent(self):
        txs = [_tx("DEBT", "100"), _tx("PAYMENT", "40"), _tx("DEBT", "12.25"), _tx("PAYMENT", "2.25")]
        results = {ledger.compute_balance(p) for p in itertools.permutations(txs)}
        assert results == {Decimal("70.00")}

    def test_payment_sign_is_ignored(self):
        assert ledger.compute_balance([_tx("DEBT", "10"), _tx("PAYMENT", "-4")]) == Decimal("6")

    def test_unknown_type_raises(self):
        with pytest.raises(LedgerIntegrityError):
            ledger.compute_balance([_tx("DEBT", "10"), _tx("REFUND", "4")])

    def test_settled_epsilon(self):
        assert ledger.is_settled(Decimal("0"))
        assert ledger.is_settled(Decimal("0.0000001"))
        assert not ledger.is_settled(Decimal("0.01"))


class TestYearlyTotals:
    def test_grouped_by_year_newest_first(self):
        txs = [
            _tx("DEBT", "100", datetime(2023, 3, 1)),
            _tx("PAYMENT", "30", datetime(2023, 8, 1)),
            _tx("DEBT", "50", datetime(2024, 1, 15)),
        ]
        totals = ledger.yearly_totals(txs)
        assert [t["year"] for t in totals] == [2024, 2023]
        assert totals[1] == {
            "year": 2023,
            "debt": Decimal("100"),
            "payment": Decimal("30"),
            "net": Decimal("70"),
        }

    def test_unknown_type_raises(self):
        with pytest.raises(LedgerIntegrityError):
            ledger.yearly_totals([_tx("BONUS", "1", datetime(2024, 1, 1))])


# ---------------------------------------------------------------------------
# Integration Tests: projection over the store
# ---------------------------------------------------------------------------

class TestRefreshProjection:
    async def test_settled_customer_is_pruned_history_kept(self, session, admin):
        jane = await upsert_customer("acme", "Jane", "+201001234567", None, session)
        await apply_debt("acme", jane.id, "100", admin.user_id, admin.username, session)
        await apply_payment("acme", jane.id, "100", admin.user_id, admin.username, session)

        remaining = await ledger.refresh_projection([jane], session)
        assert remaining == []
        assert await session.get(Customer, jane.id) is None

        history = await ledger.get_history("acme", jane.id, session)
        assert len(history) == 2
        assert ledger.compute_balance(history) == Decimal("0")

    async def test_customer_without_transactions_is_kept(self, session, admin):
        fresh = await upsert_customer("acme", "Omar", "+201009999999", None, session)
        remaining = await ledger.refresh_projection([fresh], session)
        assert [c.id for c in remaining] == [fresh.id]
        assert remaining[0].balance == Decimal("0")

    async def test_cached_balance_is_overwritten(self, session, admin):
        c = await upsert_customer("acme", "Mona", "+201005555555", None, session)
        await apply_debt("acme", c.id, "25", admin.user_id, admin.username, session)
        c.balance = Decimal("999")
        session.add(c)
        await session.flush()

        remaining = await ledger.refresh_projection([c], session)
        assert remaining[0].balance == Decimal("25.00")

    async def test_failed_fold_prunes_nothing(self, session, admin):
        c = await upsert_customer("acme", "Ali", "+201007777777", None, session)
        await apply_debt("acme", c.id, "10", admin.user_id, admin.username, session)
        await apply_payment("acme", c.id, "10", admin.user_id, admin.username, session)

        with patch(
            "debtbook.services.ledger.balances_by_customer",
            AsyncMock(side_effect=LedgerIntegrityError("corrupt")),
        ):
            with pytest.raises(LedgerIntegrityError):
                await ledger.refresh_projection([c], session)

        result = await session.execute(select(Customer).where(Customer.id == c.id))
        assert result.scalar_one_or_none() is not None


class TestPruneSettled:
    async def test_recheck_keeps_customer_with_balance(self, session, admin):
        c = await upsert_customer("acme", "Sara", "+201003333333", None, session)
        await apply_debt("acme", c.id, "10", admin.user_id, admin.username, session)

        pruned = await ledger.prune_settled([c.id], session)
        assert pruned == set()
        assert await session.get(Customer, c.id) is not None

    async def test_unknown_ids_are_ignored(self, session):
        assert await ledger.prune_settled([uuid.uuid4()], session) == set()


class TestHistory:
    async def test_newest_first_and_org_scoped(self, session, admin):
        cid = uuid.uuid4()
        for i, tx_type in enumerate(["DEBT", "PAYMENT", "DEBT"]):
            session.add(
                LedgerTransaction(
                    org_id="acme",
                    customer_id=cid,
                    user_id=admin.user_id,
                    user_name="Owner",
                    tx_type=tx_type,
                    amount=Decimal("1"),
                    created_at=datetime(2024, 1, 1 + i),
                )
            )
        await session.flush()

        history = await ledger.get_history("acme", cid, session)
        assert [tx.created_at.day for tx in history] == [3, 2, 1]
        assert await ledger.get_history("other", cid, session) == []

        org_history = await ledger.get_org_history("acme", session)
        assert len(org_history) == 3
