from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import ensure_principal_matches, get_api_principal_id
from app.api.errors import ApiException, translate_domain_error
from app.api.responses import success_payload
from app.api.runtime_deps import get_checkout_gateway
from app.api.schemas.billing import (
    CreditPackPurchaseEnvelope,
    CreditPackPurchaseRequest,
    WebhookReceiptEnvelope,
)
from app.db.models import User
from app.db.session import get_db_session
from app.logging_utils import structured_log
from app.services.credits.errors import LedgerPeriodMissingError
from app.services.purchases import application as purchase_service
from app.services.purchases.checkout import (
    EVENT_CHECKOUT_COMPLETED,
    EVENT_CHECKOUT_EXPIRED,
    CheckoutGateway,
)
from app.services.purchases.errors import PurchaseError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["api-billing"])

SIGNATURE_HEADER = "stripe-signature"


@router.post(
    "/credit-packs",
    response_model=CreditPackPurchaseEnvelope,
    status_code=201,
)
async def buy_credit_pack(
    payload: CreditPackPurchaseRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
):
    ensure_principal_matches(principal_id, payload.user_id)
    user = await db_session.get(User, principal_id)
    if user is None:
        raise ApiException(
            status_code=404,
            code="USER_NOT_FOUND",
            message="User account not found.",
        )
    try:
        pending = await purchase_service.create_pending_purchase(
            db_session,
            user=user,
            pack_id=payload.pack_id,
            gateway=gateway,
        )
    except PurchaseError as exc:
        raise translate_domain_error(exc) from exc
    return success_payload(
        request,
        data={
            "purchase_id": pending.purchase_id,
            "session_id": pending.session_id,
            "url": pending.url,
            "pack_id": pending.pack_id,
        },
    )


@router.post(
    "/webhook",
    response_model=WebhookReceiptEnvelope,
)
async def payment_webhook(
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
):
    body = await request.body()
    try:
        event = gateway.parse_webhook_event(body, request.headers.get(SIGNATURE_HEADER))
    except PurchaseError as exc:
        raise translate_domain_error(exc) from exc

    if event.event_type not in {EVENT_CHECKOUT_COMPLETED, EVENT_CHECKOUT_EXPIRED}:
        return success_payload(request, data={"received": True, "event_type": event.event_type, "applied": None})
    if not event.session_id:
        raise ApiException(
            status_code=400,
            code="invalid_webhook_payload",
            message="Missing payment session id.",
        )

    structured_log(
        logger,
        "info",
        "billing.webhook_received",
        event_type=event.event_type,
        payment_session_id=event.session_id,
    )
    if event.event_type == EVENT_CHECKOUT_EXPIRED:
        await purchase_service.mark_failed_by_session(db_session, payment_session_id=event.session_id)
        return success_payload(request, data={"received": True, "event_type": event.event_type, "applied": None})

    try:
        outcome = await purchase_service.apply_by_session(db_session, payment_session_id=event.session_id)
    except (PurchaseError, LedgerPeriodMissingError) as exc:
        raise translate_domain_error(exc) from exc
    return success_payload(
        request,
        data={
            "received": True,
            "event_type": event.event_type,
            "applied": outcome.applied,
        },
    )
