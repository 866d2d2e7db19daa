from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.db.base import utcnow
from app.db.models import CreditCategory, CreditLedgerEntry, CreditTransaction, CreditTransactionReason, PlanTier
from app.services.credits import ledger
from app.services.credits.errors import InsufficientCreditsError, LedgerPeriodMissingError
from tests.helpers import insert_user


async def _balance(db_session, user_id: int, category: str, now=None) -> ledger.CreditBalance:
    balances = await ledger.get_balances(db_session, user_id=user_id, now=now)
    return next(balance for balance in balances if balance.category == category)


@pytest.mark.asyncio
async def test_plan_period_allocates_every_category(db_session) -> None:
    user_id = await insert_user(db_session, plan=PlanTier.PRO)

    balances = await ledger.get_balances(db_session, user_id=user_id)

    assert [(balance.category, balance.total, balance.used) for balance in balances] == [
        ("topic_search", 5, 0),
        ("email", 150, 0),
        ("ai", 200, 0),
    ]


@pytest.mark.asyncio
async def test_debit_consumes_credits_and_records_usage(db_session) -> None:
    user_id = await insert_user(db_session, plan=PlanTier.TRIAL)

    balance = await ledger.check_and_debit(
        db_session,
        user_id=user_id,
        category=CreditCategory.EMAIL,
        amount=10,
        reference_type="email_lookup",
        reference_id="lookup-1",
    )
    await db_session.commit()

    assert (balance.total, balance.used, balance.remaining) == (30, 10, 20)
    transaction = (
        await db_session.scalars(
            select(CreditTransaction).where(CreditTransaction.reason == CreditTransactionReason.USAGE)
        )
    ).one()
    assert (transaction.amount, transaction.balance_after, transaction.reference_id) == (-10, 20, "lookup-1")


@pytest.mark.asyncio
async def test_debit_beyond_total_leaves_balance_untouched(db_session) -> None:
    user_id = await insert_user(db_session, plan=PlanTier.TRIAL)
    await ledger.check_and_debit(db_session, user_id=user_id, category="topic_search")
    await db_session.commit()

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await ledger.check_and_debit(db_session, user_id=user_id, category="topic_search")
    await db_session.rollback()

    assert exc_info.value.code == "INSUFFICIENT_CREDITS"
    assert exc_info.value.category == "topic_search"
    assert (await _balance(db_session, user_id, "topic_search")).used == 1


@pytest.mark.asyncio
async def test_debit_without_active_period_is_insufficient(db_session) -> None:
    user_id = await insert_user(db_session, with_credits=False)

    with pytest.raises(InsufficientCreditsError):
        await ledger.check_and_debit(db_session, user_id=user_id, category="email")


@pytest.mark.parametrize("amount", [0, -3, True, 1.5])
@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(db_session, amount) -> None:
    user_id = await insert_user(db_session)

    with pytest.raises(ValueError):
        await ledger.check_and_debit(db_session, user_id=user_id, category="email", amount=amount)


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(db_session, session_factory) -> None:
    user_id = await insert_user(db_session, plan=PlanTier.PRO)

    async def _debit() -> bool:
        async with session_factory() as session:
            try:
                await ledger.check_and_debit(session, user_id=user_id, category="topic_search")
            except InsufficientCreditsError:
                await session.rollback()
                return False
            await session.commit()
            return True

    results = await asyncio.gather(*(_debit() for _ in range(8)))

    assert results.count(True) == 5
    balance = await _balance(db_session, user_id, "topic_search")
    assert (balance.used, balance.total) == (5, 5)


@pytest.mark.asyncio
async def test_grant_raises_total_for_current_period(db_session) -> None:
    user_id = await insert_user(db_session, plan=PlanTier.PRO)

    balance = await ledger.grant(
        db_session,
        user_id=user_id,
        category="email",
        amount=150,
        reason=CreditTransactionReason.PURCHASE,
        reference_type="credit_purchase",
        reference_id="cs_test_1",
    )
    await db_session.commit()

    assert (balance.total, balance.used) == (300, 0)


@pytest.mark.asyncio
async def test_grant_without_period_raises(db_session) -> None:
    user_id = await insert_user(db_session, with_credits=False)

    with pytest.raises(LedgerPeriodMissingError) as exc_info:
        await ledger.grant(db_session, user_id=user_id, category="ai", amount=50)

    assert exc_info.value.code == "NO_ACTIVE_CREDIT_PERIOD"


@pytest.mark.asyncio
async def test_refund_never_drops_used_below_zero(db_session) -> None:
    user_id = await insert_user(db_session)
    await ledger.check_and_debit(db_session, user_id=user_id, category="topic_search")

    await ledger.refund(db_session, user_id=user_id, category="topic_search", amount=1)
    balance = await ledger.refund(db_session, user_id=user_id, category="topic_search", amount=3)
    await db_session.commit()

    assert balance.used == 0
    assert balance.remaining == balance.total


@pytest.mark.asyncio
async def test_refund_without_period_is_skipped(db_session) -> None:
    user_id = await insert_user(db_session, with_credits=False)

    assert await ledger.refund(db_session, user_id=user_id, category="topic_search") is None


@pytest.mark.asyncio
async def test_rollover_restores_allocation_and_is_idempotent(db_session) -> None:
    period_start = utcnow() - timedelta(days=45)
    user_id = await insert_user(db_session, plan=PlanTier.TRIAL, period_start=period_start)
    await ledger.grant(db_session, user_id=user_id, category="email", amount=50, now=period_start + timedelta(days=1))
    await ledger.check_and_debit(db_session, user_id=user_id, category="email", now=period_start + timedelta(days=2))
    await db_session.commit()
    assert await ledger.get_balances(db_session, user_id=user_id) == []

    opened = await ledger.rollover_expired_periods(db_session, period_days=30)
    await db_session.commit()
    again = await ledger.rollover_expired_periods(db_session, period_days=30)
    await db_session.commit()

    assert opened == 3
    assert again == 0
    email = await _balance(db_session, user_id, "email")
    assert (email.total, email.used) == (30, 0)
    assert email.period_start == period_start + timedelta(days=30)
    entry_count = len((await db_session.scalars(select(CreditLedgerEntry.id))).all())
    assert entry_count == 6


@pytest.mark.asyncio
async def test_rollover_skips_missed_periods(db_session) -> None:
    period_start = utcnow() - timedelta(days=100)
    user_id = await insert_user(db_session, plan=PlanTier.PRO, period_start=period_start)

    await ledger.rollover_expired_periods(db_session, period_days=30)
    await db_session.commit()

    balance = await _balance(db_session, user_id, "topic_search")
    assert balance.period_start == period_start + timedelta(days=90)
    assert balance.period_end == period_start + timedelta(days=120)
