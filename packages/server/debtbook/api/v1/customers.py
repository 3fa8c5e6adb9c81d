"""
Customer API endpoints.

GET  /api/v1/orgs/{orgSlug}/customers List active customers (?search=)
POST /api/v1/orgs/{orgSlug}/customers Create a new customer
PUT  /api/v1/orgs/{orgSlug}/customers Upsert a customer by phone
GET  /api/v1/orgs/{orgSlug}/customers/{id} Get one customer
GET  /api/v1/orgs/{orgSlug}/customers/{id}/transactions Customer history
POST /api/v1/orgs/{orgSlug}/customers/{id}/debts Record a debt
POST /api/v1/orgs/{orgSlug}/customers/{id}/payments Record a payment
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import AuthenticatedUser, require_member
from debtbook.core.database import commit, get_session
from debtbook.services import customers as customer_service
from debtbook.services import ledger
from debtbook.services import transactions as tx_service
from debtbook_shared.schemas.customers import (
    CustomerCreateRequest,
    CustomerListResponse,
    CustomerResponse,
    CustomerUpsertRequest,
)
from debtbook_shared.schemas.ledger import (
    AmountRequest,
    CustomerHistoryResponse,
    TransactionResponse,
)

router = APIRouter()


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    search: Optional[str] = Query(None, max_length=200),
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """List active customers; balances are recomputed and settled ones pruned."""
    customers = await customer_service.list_customers(auth.org_id, search, session)
    await commit(session)
    return CustomerListResponse(data=[CustomerResponse.model_validate(c) for c in customers])


@router.post("", response_model=CustomerResponse, status_code=201)
async def create_customer(
    body: CustomerCreateRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Create a customer; a clashing phone or name is rejected per field."""
    customer = await customer_service.create_customer(
        auth.org_id,
        body.full_name,
        body.phone,
        body.address,
        body.initial_debt,
        auth,
        session,
    )
    await commit(session)
    return CustomerResponse.model_validate(customer)


@router.put("", response_model=CustomerResponse)
async def upsert_customer(
    body: CustomerUpsertRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Create, or update the customer that already holds this phone."""
    customer = await customer_service.upsert_customer(
        auth.org_id, body.full_name, body.phone, body.address, session
    )
    await commit(session)
    return CustomerResponse.model_validate(customer)


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    customer = await customer_service.get_customer(auth.org_id, customer_id, session)
    await commit(session)
    return CustomerResponse.model_validate(customer)


@router.get("/{customer_id}/transactions", response_model=CustomerHistoryResponse)
async def customer_history(
    customer_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Newest first. Still available after the customer was settled and pruned."""
    history = await ledger.get_history(auth.org_id, customer_id, session)
    return CustomerHistoryResponse(
        data=[TransactionResponse.model_validate(tx) for tx in history],
        balance=ledger.compute_balance(history),
    )


@router.post("/{customer_id}/debts", response_model=TransactionResponse, status_code=201)
async def record_debt(
    customer_id: uuid.UUID,
    body: AmountRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    tx = await tx_service.apply_debt(
        auth.org_id,
        customer_id,
        body.amount,
        auth.user_id,
        auth.username,
        session,
        idempotency_key=body.idempotency_key,
    )
    await commit(session)
    return TransactionResponse.model_validate(tx)


@router.post("/{customer_id}/payments", response_model=TransactionResponse, status_code=201)
async def record_payment(
    customer_id: uuid.UUID,
    body: AmountRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Record a payment; it may not exceed the customer's current balance."""
    tx = await tx_service.apply_payment(
        auth.org_id,
        customer_id,
        body.amount,
        auth.user_id,
        auth.username,
        session,
        idempotency_key=body.idempotency_key,
    )
    await commit(session)
    return TransactionResponse.model_validate(tx)
