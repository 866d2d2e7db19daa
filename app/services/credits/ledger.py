"""Per-owner, per-category credit ledger.

Every balance change is a single conditional UPDATE against the row of the
period that covers `now`, so `used <= total` holds no matter how many
requests race. Nothing here commits: callers own the transaction, which lets
a purchase flip and its grant land (or roll back) together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import as_utc, utcnow
from app.db.dialect import insert_for
from app.db.models import (
    CreditCategory,
    CreditLedgerEntry,
    CreditTransaction,
    CreditTransactionReason,
    PlanTier,
)
from app.logging_utils import structured_log
from app.services.credits.errors import InsufficientCreditsError, LedgerPeriodMissingError
from app.services.credits.plans import allocations_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditBalance:
    category: str
    total: int
    used: int
    period_start: datetime
    period_end: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.used)


def _require_positive(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("Credit amounts must be positive integers.")
    return amount


async def _current_entry_id(
    db_session: AsyncSession,
    *,
    user_id: int,
    category: CreditCategory,
    now: datetime,
) -> int | None:
    result = await db_session.execute(
        select(CreditLedgerEntry.id)
        .where(
            CreditLedgerEntry.user_id == user_id,
            CreditLedgerEntry.category == category,
            CreditLedgerEntry.period_start <= now,
            CreditLedgerEntry.period_end > now,
        )
        .order_by(CreditLedgerEntry.period_start.desc())
        .limit(1)
    )
    entry_id = result.scalar_one_or_none()
    return int(entry_id) if entry_id is not None else None


async def _record_transaction(
    db_session: AsyncSession,
    *,
    user_id: int,
    entry_id: int | None,
    category: CreditCategory,
    amount: int,
    balance_after: int,
    reason: CreditTransactionReason,
    reference_type: str | None,
    reference_id: str | None,
) -> None:
    db_session.add(
        CreditTransaction(
            user_id=user_id,
            ledger_entry_id=entry_id,
            category=category,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
        )
    )
    await db_session.flush()


async def check_and_debit(
    db_session: AsyncSession,
    *,
    user_id: int,
    category: CreditCategory | str,
    amount: int = 1,
    now: datetime | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> CreditBalance:
    """Consume `amount` credits or raise InsufficientCreditsError, atomically."""
    _require_positive(amount)
    category = CreditCategory(category)
    now = now or utcnow()
    entry_id = await _current_entry_id(db_session, user_id=user_id, category=category, now=now)
    if entry_id is None:
        raise InsufficientCreditsError(
            "No credits available for the current period.",
            user_id=user_id,
            category=category.value,
        )

    result = await db_session.execute(
        update(CreditLedgerEntry)
        .where(
            CreditLedgerEntry.id == entry_id,
            CreditLedgerEntry.used + amount <= CreditLedgerEntry.total,
        )
        .values(used=CreditLedgerEntry.used + amount, updated_at=now)
        .returning(
            CreditLedgerEntry.total,
            CreditLedgerEntry.used,
            CreditLedgerEntry.period_start,
            CreditLedgerEntry.period_end,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        structured_log(
            logger,
            "info",
            "credits.debit_rejected",
            user_id=user_id,
            category=category.value,
            amount=amount,
        )
        raise InsufficientCreditsError(
            "Insufficient credits. Please upgrade your plan or buy a credit pack.",
            user_id=user_id,
            category=category.value,
        )

    balance = CreditBalance(category.value, row.total, row.used, as_utc(row.period_start), as_utc(row.period_end))
    await _record_transaction(
        db_session,
        user_id=user_id,
        entry_id=entry_id,
        category=category,
        amount=-amount,
        balance_after=balance.remaining,
        reason=CreditTransactionReason.USAGE,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    structured_log(
        logger,
        "info",
        "credits.debited",
        user_id=user_id,
        category=category.value,
        amount=amount,
        remaining=balance.remaining,
    )
    return balance


async def grant(
    db_session: AsyncSession,
    *,
    user_id: int,
    category: CreditCategory | str,
    amount: int,
    reason: CreditTransactionReason = CreditTransactionReason.GRANT,
    now: datetime | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> CreditBalance:
    """Raise the current period's total by `amount`.

    Raises LedgerPeriodMissingError when no period covers `now`; the caller
    decides whether that rolls back its surrounding transaction.
    """
    _require_positive(amount)
    category = CreditCategory(category)
    now = now or utcnow()
    entry_id = await _current_entry_id(db_session, user_id=user_id, category=category, now=now)
    row = None
    if entry_id is not None:
        result = await db_session.execute(
            update(CreditLedgerEntry)
            .where(CreditLedgerEntry.id == entry_id)
            .values(total=CreditLedgerEntry.total + amount, updated_at=now)
            .returning(
                CreditLedgerEntry.total,
                CreditLedgerEntry.used,
                CreditLedgerEntry.period_start,
                CreditLedgerEntry.period_end,
            )
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
    if row is None:
        raise LedgerPeriodMissingError(
            "No active credit period to grant into.",
            user_id=user_id,
            category=category.value,
        )

    balance = CreditBalance(category.value, row.total, row.used, as_utc(row.period_start), as_utc(row.period_end))
    await _record_transaction(
        db_session,
        user_id=user_id,
        entry_id=entry_id,
        category=category,
        amount=amount,
        balance_after=balance.remaining,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    structured_log(
        logger,
        "info",
        "credits.granted",
        user_id=user_id,
        category=category.value,
        amount=amount,
        reason=CreditTransactionReason(reason).value,
        total=balance.total,
    )
    return balance


async def refund(
    db_session: AsyncSession,
    *,
    user_id: int,
    category: CreditCategory | str,
    amount: int = 1,
    now: datetime | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> CreditBalance | None:
    """Return consumed credits to the current period; `used` never drops below zero."""
    _require_positive(amount)
    category = CreditCategory(category)
    now = now or utcnow()
    entry_id = await _current_entry_id(db_session, user_id=user_id, category=category, now=now)
    if entry_id is None:
        structured_log(logger, "warning", "credits.refund_skipped", user_id=user_id, category=category.value)
        return None

    result = await db_session.execute(
        update(CreditLedgerEntry)
        .where(CreditLedgerEntry.id == entry_id)
        .values(
            used=case(
                (CreditLedgerEntry.used >= amount, CreditLedgerEntry.used - amount),
                else_=0,
            ),
            updated_at=now,
        )
        .returning(
            CreditLedgerEntry.total,
            CreditLedgerEntry.used,
            CreditLedgerEntry.period_start,
            CreditLedgerEntry.period_end,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one()
    balance = CreditBalance(category.value, row.total, row.used, as_utc(row.period_start), as_utc(row.period_end))
    await _record_transaction(
        db_session,
        user_id=user_id,
        entry_id=entry_id,
        category=category,
        amount=amount,
        balance_after=balance.remaining,
        reason=CreditTransactionReason.REFUND,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    structured_log(logger, "info", "credits.refunded", user_id=user_id, category=category.value, amount=amount)
    return balance


async def get_balances(
    db_session: AsyncSession,
    *,
    user_id: int,
    now: datetime | None = None,
) -> list[CreditBalance]:
    now = now or utcnow()
    result = await db_session.execute(
        select(CreditLedgerEntry)
        .where(
            CreditLedgerEntry.user_id == user_id,
            CreditLedgerEntry.period_start <= now,
            CreditLedgerEntry.period_end > now,
        )
        .order_by(CreditLedgerEntry.category.asc(), CreditLedgerEntry.period_start.desc())
    )
    balances: dict[str, CreditBalance] = {}
    for entry in result.scalars().all():
        category = CreditCategory(entry.category).value
        if category in balances:
            continue
        balances[category] = CreditBalance(
            category,
            entry.total,
            entry.used,
            as_utc(entry.period_start),
            as_utc(entry.period_end),
        )
    return [balances[category.value] for category in CreditCategory if category.value in balances]


async def _insert_period(
    db_session: AsyncSession,
    *,
    user_id: int,
    category: CreditCategory,
    allocation: int,
    period_start: datetime,
    period_end: datetime,
) -> int | None:
    result = await db_session.execute(
        insert_for(db_session, CreditLedgerEntry)
        .values(
            user_id=user_id,
            category=category,
            period_start=period_start,
            period_end=period_end,
            total=allocation,
            used=0,
            allocation=allocation,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "category", "period_start"])
        .returning(CreditLedgerEntry.id)
    )
    entry_id = result.scalar_one_or_none()
    return int(entry_id) if entry_id is not None else None


async def open_plan_period(
    db_session: AsyncSession,
    *,
    user_id: int,
    plan: PlanTier | str,
    period_start: datetime,
    period_end: datetime,
) -> int:
    """Create one ledger row per category for the period; existing rows are kept."""
    created = 0
    for category, allocation in allocations_for(plan).items():
        entry_id = await _insert_period(
            db_session,
            user_id=user_id,
            category=category,
            allocation=allocation,
            period_start=period_start,
            period_end=period_end,
        )
        if entry_id is None:
            continue
        created += 1
        await _record_transaction(
            db_session,
            user_id=user_id,
            entry_id=entry_id,
            category=category,
            amount=allocation,
            balance_after=allocation,
            reason=CreditTransactionReason.PLAN,
            reference_type="plan",
            reference_id=PlanTier(plan).value,
        )
    structured_log(
        logger,
        "info",
        "credits.plan_period_opened",
        user_id=user_id,
        plan=PlanTier(plan).value,
        opened=created,
    )
    return created


async def rollover_expired_periods(
    db_session: AsyncSession,
    *,
    now: datetime | None = None,
    period_days: int = 30,
) -> int:
    """Open the next period for every (user, category) whose latest period has ended.

    Each new period restores `total` to the row's base allocation and resets
    `used`. Safe to re-run: the (user, category, period_start) key makes a
    second pass a no-op.
    """
    now = now or utcnow()
    length = timedelta(days=max(1, period_days))
    latest = (
        select(
            CreditLedgerEntry.user_id,
            CreditLedgerEntry.category,
            func.max(CreditLedgerEntry.period_end).label("latest_end"),
        )
        .group_by(CreditLedgerEntry.user_id, CreditLedgerEntry.category)
        .subquery()
    )
    result = await db_session.execute(
        select(CreditLedgerEntry).join(
            latest,
            and_(
                CreditLedgerEntry.user_id == latest.c.user_id,
                CreditLedgerEntry.category == latest.c.category,
                CreditLedgerEntry.period_end == latest.c.latest_end,
            ),
        )
    )
    opened = 0
    for entry in result.scalars().all():
        period_start = as_utc(entry.period_end)
        if period_start > now:
            continue
        period_end = period_start + length
        while period_end <= now:
            period_start, period_end = period_end, period_end + length
        entry_id = await _insert_period(
            db_session,
            user_id=entry.user_id,
            category=CreditCategory(entry.category),
            allocation=entry.allocation,
            period_start=period_start,
            period_end=period_end,
        )
        if entry_id is None:
            continue
        opened += 1
        await _record_transaction(
            db_session,
            user_id=entry.user_id,
            entry_id=entry_id,
            category=CreditCategory(entry.category),
            amount=entry.allocation,
            balance_after=entry.allocation,
            reason=CreditTransactionReason.ROLLOVER,
            reference_type="period",
            reference_id=period_start.isoformat(),
        )
    structured_log(logger, "info", "credits.rollover_completed", opened=opened)
    return opened
