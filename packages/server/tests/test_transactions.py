"""
Tests for the transaction application service.

Covers:
- Amount validation and rounding
- Payment may not exceed the balance
- Duplicate requests vs. idempotency keys
- Customer lookup and caller membership
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlmodel import select

from debtbook.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from debtbook.models.transaction import LedgerTransaction
from debtbook.services.customers import upsert_customer
from debtbook.services.transactions import (
    apply_debt,
    apply_payment,
    apply_transaction,
    normalize_amount,
)


async def _count(session, customer_id) -> int:
    result = await session.execute(
        select(LedgerTransaction).where(LedgerTransaction.customer_id == customer_id)
    )
    return len(result.scalars().all())


@pytest.fixture
async def jane(session, admin):
    return await upsert_customer("acme", "Jane", "+201001234567", "Cairo", session)


class TestNormalizeAmount:
    def test_rounds_to_cents(self):
        assert normalize_amount("10.005") == Decimal("10.01")
        assert normalize_amount(3) == Decimal("3.00")

    @pytest.mark.parametrize("bad", ["0", "-5", "0.001", "NaN", "Infinity", "abc"])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError) as exc:
            normalize_amount(bad)
        assert "amount" in exc.value.fields


class TestApplyTransaction:
    async def test_debt_updates_cached_balance(self, session, admin, jane):
        tx = await apply_debt("acme", jane.id, "100", admin.user_id, admin.username, session)
        assert tx.tx_type == "DEBT"
        assert tx.amount == Decimal("100.00")
        assert tx.user_name == "Owner"
        assert jane.balance == Decimal("100.00")

    async def test_duplicate_debt_creates_two_transactions(self, session, admin, jane):
        first = await apply_debt("acme", jane.id, "50", admin.user_id, admin.username, session)
        second = await apply_debt("acme", jane.id, "50", admin.user_id, admin.username, session)
        assert first.id != second.id
        assert await _count(session, jane.id) == 2
        assert jane.balance == Decimal("100.00")

    async def test_unknown_kind(self, session, admin, jane):
        with pytest.raises(ValidationError):
            await apply_transaction(
                "acme", jane.id, "5", admin.user_id, admin.username, "REFUND", None, session
            )

    async def test_overpayment_rejected(self, session, admin, jane):
        await apply_debt("acme", jane.id, "60", admin.user_id, admin.username, session)
        with pytest.raises(ValidationError) as exc:
            await apply_payment("acme", jane.id, "60.01", admin.user_id, admin.username, session)
        assert "amount" in exc.value.fields
        assert await _count(session, jane.id) == 1

    async def test_payment_of_full_balance(self, session, admin, jane):
        await apply_debt("acme", jane.id, "60", admin.user_id, admin.username, session)
        await apply_payment("acme", jane.id, "60", admin.user_id, admin.username, session)
        assert jane.balance == Decimal("0.00")

    async def test_payment_without_debt_rejected(self, session, admin, jane):
        with pytest.raises(ValidationError):
            await apply_payment("acme", jane.id, "1", admin.user_id, admin.username, session)

    async def test_missing_customer(self, session, admin):
        with pytest.raises(NotFoundError):
            await apply_debt("acme", uuid.uuid4(), "1", admin.user_id, admin.username, session)

    async def test_caller_must_be_member(self, session, admin, jane, new_user):
        outsider = await new_user("outsider@example.com")
        with pytest.raises(AuthorizationError):
            await apply_debt("acme", jane.id, "1", outsider.id, "Outsider", session)
        assert await _count(session, jane.id) == 0


class TestIdempotency:
    async def test_same_key_applied_once(self, session, admin, jane):
        first = await apply_debt(
            "acme", jane.id, "20", admin.user_id, admin.username, session, idempotency_key="k-1"
        )
        again = await apply_debt(
            "acme", jane.id, "20", admin.user_id, admin.username, session, idempotency_key="k-1"
        )
        assert again.id == first.id
        assert await _count(session, jane.id) == 1

    async def test_key_for_other_customer_conflicts(self, session, admin, jane):
        other = await upsert_customer("acme", "Omar", "+201009999999", None, session)
        await apply_debt(
            "acme", jane.id, "20", admin.user_id, admin.username, session, idempotency_key="k-2"
        )
        with pytest.raises(ConflictError):
            await apply_debt(
                "acme", other.id, "20", admin.user_id, admin.username, session, idempotency_key="k-2"
            )

    async def test_key_reused_for_payment_conflicts(self, session, admin, jane):
        await apply_debt(
            "acme", jane.id, "100", admin.user_id, admin.username, session, idempotency_key="k-3"
        )
        with pytest.raises(ConflictError):
            await apply_payment(
                "acme", jane.id, "40", admin.user_id, admin.username, session, idempotency_key="k-3"
            )
        assert await _count(session, jane.id) == 1

    async def test_key_reused_with_other_amount_conflicts(self, session, admin, jane):
        await apply_debt(
            "acme", jane.id, "100", admin.user_id, admin.username, session, idempotency_key="k-4"
        )
        with pytest.raises(ConflictError):
            await apply_debt(
                "acme", jane.id, "99.99", admin.user_id, admin.username, session, idempotency_key="k-4"
            )

    async def test_key_replay_ignores_amount_formatting(self, session, admin, jane):
        first = await apply_debt(
            "acme", jane.id, "100", admin.user_id, admin.username, session, idempotency_key="k-5"
        )
        again = await apply_debt(
            "acme", jane.id, 100.0, admin.user_id, admin.username, session, idempotency_key="k-5"
        )
        assert again.id == first.id
