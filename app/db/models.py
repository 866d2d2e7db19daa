from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONDocument


class SubscriptionStatus(StrEnum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PlanTier(StrEnum):
    TRIAL = "trial"
    PRO = "pro"
    BUSINESS = "business"


class SearchJobStatus(StrEnum):
    CREATED = "created"
    RUNNING = "running"
    ENRICHING = "enriching"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_JOB_STATUSES = frozenset(
    {SearchJobStatus.COMPLETED, SearchJobStatus.FAILED, SearchJobStatus.TIMED_OUT}
)


class CreditCategory(StrEnum):
    TOPIC_SEARCH = "topic_search"
    EMAIL = "email"
    AI = "ai"


class CreditTransactionReason(StrEnum):
    USAGE = "usage"
    REFUND = "refund"
    PLAN = "plan"
    ROLLOVER = "rollover"
    PURCHASE = "purchase"
    GRANT = "grant"


class PurchaseStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _values(members) -> list[str]:
    return [member.value for member in members]


SUBSCRIPTION_STATUS_DB_ENUM = Enum(SubscriptionStatus, name="subscription_status", values_callable=_values)
PLAN_TIER_DB_ENUM = Enum(PlanTier, name="plan_tier", values_callable=_values)
SEARCH_JOB_STATUS_DB_ENUM = Enum(SearchJobStatus, name="search_job_status", values_callable=_values)
CREDIT_CATEGORY_DB_ENUM = Enum(CreditCategory, name="credit_category", values_callable=_values)
CREDIT_TRANSACTION_REASON_DB_ENUM = Enum(
    CreditTransactionReason,
    name="credit_transaction_reason",
    values_callable=_values,
)
PURCHASE_STATUS_DB_ENUM = Enum(PurchaseStatus, name="purchase_status", values_callable=_values)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    brand: Mapped[str | None] = mapped_column(String(255))
    target_country: Mapped[str | None] = mapped_column(String(64))
    target_language: Mapped[str | None] = mapped_column(String(64))
    plan: Mapped[PlanTier] = mapped_column(
        PLAN_TIER_DB_ENUM, nullable=False, server_default=PlanTier.TRIAL.value
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SUBSCRIPTION_STATUS_DB_ENUM,
        nullable=False,
        server_default=SubscriptionStatus.NONE.value,
    )
    payment_customer_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class SearchJob(Base):
    __tablename__ = "search_jobs"
    __table_args__ = (
        Index("ix_search_jobs_user_created", "user_id", "created_at"),
        Index("ix_search_jobs_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    keywords: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False)
    sources: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False)
    competitors: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False)
    is_onboarding: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    settings_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    status: Mapped[SearchJobStatus] = mapped_column(SEARCH_JOB_STATUS_DB_ENUM, nullable=False)
    provider_run_id: Mapped[str | None] = mapped_column(String(128))
    failure_code: Mapped[str | None] = mapped_column(String(64))
    failure_message: Mapped[str | None] = mapped_column(Text)
    raw_items: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONDocument)
    enrichment_handle: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    enrichment_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    enrichment_cycles: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    result_items: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONDocument)
    result_count: Mapped[int | None] = mapped_column(Integer)
    new_count: Mapped[int | None] = mapped_column(Integer)
    credits_charged: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_polled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class _AffiliateColumns:
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    link: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text)
    domain: Mapped[str | None] = mapped_column(String(255))
    snippet: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    search_keyword: Mapped[str | None] = mapped_column(String(255))
    discovery_method_type: Mapped[str | None] = mapped_column(String(32))
    discovery_method_value: Mapped[str | None] = mapped_column(String(255))
    person_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    channel: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    rank: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class DiscoveredAffiliate(_AffiliateColumns, Base):
    __tablename__ = "discovered_affiliates"
    __table_args__ = (
        UniqueConstraint("user_id", "link", name="uq_discovered_affiliates_user_link"),
    )


class SavedAffiliate(_AffiliateColumns, Base):
    __tablename__ = "saved_affiliates"
    __table_args__ = (
        UniqueConstraint("user_id", "link", name="uq_saved_affiliates_user_link"),
    )


class CreditLedgerEntry(Base):
    __tablename__ = "credit_ledger"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "category",
            "period_start",
            name="uq_credit_ledger_user_category_period",
        ),
        CheckConstraint("used >= 0", name="used_non_negative"),
        CheckConstraint("used <= total", name="used_within_total"),
        Index("ix_credit_ledger_user_category_end", "user_id", "category", "period_end"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[CreditCategory] = mapped_column(CREDIT_CATEGORY_DB_ENUM, nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    used: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    allocation: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    ledger_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("credit_ledger.id", ondelete="SET NULL")
    )
    category: Mapped[CreditCategory] = mapped_column(CREDIT_CATEGORY_DB_ENUM, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[CreditTransactionReason] = mapped_column(
        CREDIT_TRANSACTION_REASON_DB_ENUM, nullable=False
    )
    reference_type: Mapped[str | None] = mapped_column(String(64))
    reference_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class CreditPurchase(Base):
    __tablename__ = "credit_purchases"
    __table_args__ = (
        Index("ix_credit_purchases_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    payment_session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    pack_id: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[CreditCategory] = mapped_column(CREDIT_CATEGORY_DB_ENUM, nullable=False)
    credits_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PurchaseStatus] = mapped_column(
        PURCHASE_STATUS_DB_ENUM,
        nullable=False,
        server_default=PurchaseStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
