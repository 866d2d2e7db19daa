from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import ensure_principal_matches, get_api_principal_id
from app.api.errors import translate_domain_error
from app.api.responses import success_payload
from app.api.schemas.credits import (
    CreditBalancesEnvelope,
    FulfillEnvelope,
    FulfillRequest,
)
from app.db.session import get_db_session
from app.services.credits import ledger
from app.services.purchases import application as purchase_service
from app.services.purchases.errors import StoreUnavailableError

router = APIRouter(prefix="/credits", tags=["api-credits"])


@router.get(
    "",
    response_model=CreditBalancesEnvelope,
)
async def get_credit_balances(
    request: Request,
    user_id: int | None = Query(default=None),
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    ensure_principal_matches(principal_id, user_id)
    balances = await ledger.get_balances(db_session, user_id=principal_id)
    return success_payload(
        request,
        data={
            "balances": [
                {
                    "category": balance.category,
                    "total": balance.total,
                    "used": balance.used,
                    "remaining": balance.remaining,
                    "period_start": balance.period_start,
                    "period_end": balance.period_end,
                }
                for balance in balances
            ]
        },
    )


@router.post(
    "/fulfill",
    response_model=FulfillEnvelope,
)
async def fulfill_pending_purchases(
    payload: FulfillRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    ensure_principal_matches(principal_id, payload.user_id)
    try:
        report = await purchase_service.fulfill_pending(db_session, user_id=principal_id)
    except StoreUnavailableError as exc:
        raise translate_domain_error(exc) from exc
    return success_payload(
        request,
        data={
            "fulfilled": report.fulfilled,
            "total": report.total,
            "results": report.results,
        },
    )
