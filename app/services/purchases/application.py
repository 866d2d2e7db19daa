"""Exactly-once fulfillment of credit pack purchases.

A purchase row starts `pending`, keyed by the payment session id. Two
triggers may try to apply it: the payment provider's webhook and the
user-initiated fallback that scans pending rows. Both go through `apply`,
which flips `pending -> completed` with a conditional UPDATE and grants the
credits in the same transaction, so whichever trigger loses the race sees
zero rows updated and reports `applied=False`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.db.models import (
    CreditPurchase,
    CreditTransactionReason,
    PurchaseStatus,
    SubscriptionStatus,
    User,
)
from app.db.session import is_store_unavailable
from app.logging_utils import structured_log
from app.services.credits import ledger
from app.services.credits.errors import LedgerPeriodMissingError
from app.services.purchases.checkout import CheckoutGateway
from app.services.purchases.errors import (
    PurchaseNotFoundError,
    StoreUnavailableError,
    SubscriptionRequiredError,
)
from app.services.purchases.packs import resolve_pack

logger = logging.getLogger(__name__)

RESULT_FULFILLED = "fulfilled"
RESULT_ALREADY_APPLIED = "already_applied"
RESULT_FAILED = "failed"


@dataclass(frozen=True)
class ApplyOutcome:
    purchase_id: int
    applied: bool
    status: str


@dataclass(frozen=True)
class PendingPurchase:
    purchase_id: int
    session_id: str
    url: str | None
    pack_id: str


@dataclass(frozen=True)
class FulfillmentReport:
    fulfilled: int
    total: int
    results: list[dict[str, Any]] = field(default_factory=list)


async def _purchase_status(db_session: AsyncSession, *, purchase_id: int) -> PurchaseStatus | None:
    result = await db_session.execute(
        select(CreditPurchase.status).where(CreditPurchase.id == purchase_id)
    )
    status = result.scalar_one_or_none()
    return PurchaseStatus(status) if status is not None else None


async def apply(
    db_session: AsyncSession,
    *,
    purchase_id: int,
    now: datetime | None = None,
) -> ApplyOutcome:
    """Complete one pending purchase and grant its credits, or report it was already done.

    Commits on success. On a ledger failure the whole transaction is rolled
    back and the purchase stays pending for a later retry.
    """
    now = now or utcnow()
    try:
        result = await db_session.execute(
            update(CreditPurchase)
            .where(
                CreditPurchase.id == purchase_id,
                CreditPurchase.status == PurchaseStatus.PENDING,
            )
            .values(status=PurchaseStatus.COMPLETED, completed_at=now, updated_at=now)
            .returning(
                CreditPurchase.user_id,
                CreditPurchase.category,
                CreditPurchase.credits_amount,
                CreditPurchase.payment_session_id,
            )
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            await db_session.rollback()
            status = await _purchase_status(db_session, purchase_id=purchase_id)
            if status is None:
                raise PurchaseNotFoundError(f"Purchase {purchase_id} does not exist.")
            structured_log(
                logger,
                "info",
                "purchases.apply_skipped",
                purchase_id=purchase_id,
                status=status.value,
            )
            return ApplyOutcome(purchase_id=purchase_id, applied=False, status=status.value)

        await ledger.grant(
            db_session,
            user_id=row.user_id,
            category=row.category,
            amount=row.credits_amount,
            reason=CreditTransactionReason.PURCHASE,
            now=now,
            reference_type="credit_purchase",
            reference_id=row.payment_session_id,
        )
        await db_session.commit()
    except LedgerPeriodMissingError:
        await db_session.rollback()
        structured_log(logger, "warning", "purchases.apply_rolled_back", purchase_id=purchase_id)
        raise
    except SQLAlchemyError as exc:
        await db_session.rollback()
        if is_store_unavailable(exc):
            raise StoreUnavailableError("Credit store is temporarily unavailable.") from exc
        raise

    structured_log(
        logger,
        "info",
        "purchases.applied",
        purchase_id=purchase_id,
        user_id=row.user_id,
        category=str(row.category),
        amount=row.credits_amount,
    )
    return ApplyOutcome(purchase_id=purchase_id, applied=True, status=PurchaseStatus.COMPLETED.value)


async def find_by_session(db_session: AsyncSession, *, payment_session_id: str) -> CreditPurchase | None:
    try:
        result = await db_session.execute(
            select(CreditPurchase).where(CreditPurchase.payment_session_id == payment_session_id)
        )
    except SQLAlchemyError as exc:
        if is_store_unavailable(exc):
            raise StoreUnavailableError("Credit store is temporarily unavailable.") from exc
        raise
    return result.scalar_one_or_none()


async def apply_by_session(
    db_session: AsyncSession,
    *,
    payment_session_id: str,
    now: datetime | None = None,
) -> ApplyOutcome:
    purchase = await find_by_session(db_session, payment_session_id=payment_session_id)
    if purchase is None:
        raise PurchaseNotFoundError(f"No purchase for payment session {payment_session_id}.")
    return await apply(db_session, purchase_id=purchase.id, now=now)


async def mark_failed_by_session(
    db_session: AsyncSession,
    *,
    payment_session_id: str,
    now: datetime | None = None,
) -> bool:
    """Close an abandoned checkout; completed purchases are left untouched."""
    now = now or utcnow()
    result = await db_session.execute(
        update(CreditPurchase)
        .where(
            CreditPurchase.payment_session_id == payment_session_id,
            CreditPurchase.status == PurchaseStatus.PENDING,
        )
        .values(status=PurchaseStatus.FAILED, updated_at=now)
        .returning(CreditPurchase.id)
        .execution_options(synchronize_session=False)
    )
    purchase_id = result.scalar_one_or_none()
    await db_session.commit()
    if purchase_id is not None:
        structured_log(
            logger,
            "info",
            "purchases.expired",
            purchase_id=purchase_id,
            payment_session_id=payment_session_id,
        )
    return purchase_id is not None


async def fulfill_pending(
    db_session: AsyncSession,
    *,
    user_id: int,
    now: datetime | None = None,
) -> FulfillmentReport:
    result = await db_session.execute(
        select(
            CreditPurchase.id,
            CreditPurchase.category,
            CreditPurchase.credits_amount,
        )
        .where(
            CreditPurchase.user_id == user_id,
            CreditPurchase.status == PurchaseStatus.PENDING,
        )
        .order_by(CreditPurchase.created_at.desc(), CreditPurchase.id.desc())
    )
    pending = result.all()
    await db_session.rollback()

    fulfilled = 0
    results: list[dict[str, Any]] = []
    for purchase in pending:
        entry = {
            "purchase_id": int(purchase.id),
            "category": str(purchase.category),
            "amount": int(purchase.credits_amount),
        }
        try:
            outcome = await apply(db_session, purchase_id=int(purchase.id), now=now)
        except LedgerPeriodMissingError:
            results.append({**entry, "status": RESULT_FAILED})
            continue
        if outcome.applied:
            fulfilled += 1
            results.append({**entry, "status": RESULT_FULFILLED})
        else:
            results.append({**entry, "status": RESULT_ALREADY_APPLIED})

    structured_log(
        logger,
        "info",
        "purchases.fallback_fulfilled",
        user_id=user_id,
        pending=len(pending),
        fulfilled=fulfilled,
    )
    return FulfillmentReport(fulfilled=fulfilled, total=len(pending), results=results)


async def create_pending_purchase(
    db_session: AsyncSession,
    *,
    user: User,
    pack_id: str,
    gateway: CheckoutGateway,
) -> PendingPurchase:
    pack = resolve_pack(pack_id)
    status = SubscriptionStatus(user.subscription_status)
    if status == SubscriptionStatus.TRIALING:
        raise SubscriptionRequiredError(
            "Credit packs are for paid subscribers only. Subscribe or end your trial to purchase."
        )
    if status != SubscriptionStatus.ACTIVE or not user.payment_customer_id:
        raise SubscriptionRequiredError("An active paid subscription is required to buy credit packs.")

    session = await gateway.create_checkout_session(
        customer_id=user.payment_customer_id,
        pack=pack,
        metadata={
            "user_id": str(user.id),
            "pack_id": pack.pack_id,
            "credit_type": pack.category.value,
            "credits_amount": str(pack.credits),
        },
    )
    purchase = CreditPurchase(
        user_id=user.id,
        payment_session_id=session.session_id,
        pack_id=pack.pack_id,
        category=pack.category,
        credits_amount=pack.credits,
        status=PurchaseStatus.PENDING,
    )
    db_session.add(purchase)
    await db_session.commit()
    structured_log(
        logger,
        "info",
        "purchases.pending_created",
        user_id=user.id,
        purchase_id=purchase.id,
        pack_id=pack.pack_id,
        payment_session_id=session.session_id,
    )
    return PendingPurchase(
        purchase_id=purchase.id,
        session_id=session.session_id,
        url=session.url,
        pack_id=pack.pack_id,
    )
