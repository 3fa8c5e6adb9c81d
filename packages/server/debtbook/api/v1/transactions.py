"""
Organization-wide transaction log.

GET /api/v1/orgs/{orgSlug}/transactions Every transaction, newest first, with yearly totals
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtbook.core.auth import AuthenticatedUser, require_member
from debtbook.core.database import get_session
from debtbook.services import ledger
from debtbook_shared.schemas.ledger import OrgHistoryResponse, TransactionResponse, YearlyTotal

router = APIRouter()


@router.get("", response_model=OrgHistoryResponse)
async def org_history(
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    history = await ledger.get_org_history(auth.org_id, session)
    return OrgHistoryResponse(
        data=[TransactionResponse.model_validate(tx) for tx in history],
        yearly_totals=[YearlyTotal(**totals) for totals in ledger.yearly_totals(history)],
    )
