"""Create search job, affiliate store and credit schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_VALUES = {
    "subscription_status": ("none", "trialing", "active", "past_due", "canceled"),
    "plan_tier": ("trial", "pro", "business"),
    "search_job_status": ("created", "running", "enriching", "completed", "failed", "timed_out"),
    "credit_category": ("topic_search", "email", "ai"),
    "credit_transaction_reason": ("usage", "refund", "plan", "rollover", "purchase", "grant"),
    "purchase_status": ("pending", "completed", "failed"),
}


def _enum_ref(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_VALUES[name], name=name, create_type=False)


def _affiliate_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("link", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("search_keyword", sa.String(length=255), nullable=True),
        sa.Column("discovery_method_type", sa.String(length=32), nullable=True),
        sa.Column("discovery_method_value", sa.String(length=255), nullable=True),
        sa.Column("person_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("channel", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("extra", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUM_VALUES.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("brand", sa.String(length=255), nullable=True),
        sa.Column("target_country", sa.String(length=64), nullable=True),
        sa.Column("target_language", sa.String(length=64), nullable=True),
        sa.Column("plan", _enum_ref("plan_tier"), server_default="trial", nullable=False),
        sa.Column(
            "subscription_status",
            _enum_ref("subscription_status"),
            server_default="none",
            nullable=False,
        ),
        sa.Column("payment_customer_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )

    op.create_table(
        "search_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("keywords", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("sources", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("competitors", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("is_onboarding", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("settings_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", _enum_ref("search_job_status"), nullable=False),
        sa.Column("provider_run_id", sa.String(length=128), nullable=True),
        sa.Column("failure_code", sa.String(length=64), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("raw_items", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("enrichment_handle", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("enrichment_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("enrichment_cycles", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("result_items", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("result_count", sa.Integer(), nullable=True),
        sa.Column("new_count", sa.Integer(), nullable=True),
        sa.Column("credits_charged", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_polled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_search_jobs_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_search_jobs")),
    )
    op.create_index("ix_search_jobs_user_created", "search_jobs", ["user_id", "created_at"])
    op.create_index("ix_search_jobs_status", "search_jobs", ["status"])

    for table_name in ("discovered_affiliates", "saved_affiliates"):
        op.create_table(
            table_name,
            *_affiliate_columns(),
            sa.ForeignKeyConstraint(
                ["user_id"],
                ["users.id"],
                name=op.f(f"fk_{table_name}_user_id_users"),
                ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id", name=op.f(f"pk_{table_name}")),
            sa.UniqueConstraint("user_id", "link", name=f"uq_{table_name}_user_link"),
        )

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", _enum_ref("credit_category"), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("used", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("allocation", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("used >= 0", name=op.f("ck_credit_ledger_used_non_negative")),
        sa.CheckConstraint("used <= total", name=op.f("ck_credit_ledger_used_within_total")),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_credit_ledger_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_credit_ledger")),
        sa.UniqueConstraint(
            "user_id",
            "category",
            "period_start",
            name="uq_credit_ledger_user_category_period",
        ),
    )
    op.create_index(
        "ix_credit_ledger_user_category_end",
        "credit_ledger",
        ["user_id", "category", "period_end"],
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("ledger_entry_id", sa.Integer(), nullable=True),
        sa.Column("category", _enum_ref("credit_category"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", _enum_ref("credit_transaction_reason"), nullable=False),
        sa.Column("reference_type", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_credit_transactions_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["ledger_entry_id"],
            ["credit_ledger.id"],
            name=op.f("fk_credit_transactions_ledger_entry_id_credit_ledger"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_credit_transactions")),
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("payment_session_id", sa.String(length=255), nullable=False),
        sa.Column("pack_id", sa.String(length=32), nullable=False),
        sa.Column("category", _enum_ref("credit_category"), nullable=False),
        sa.Column("credits_amount", sa.Integer(), nullable=False),
        sa.Column("status", _enum_ref("purchase_status"), server_default="pending", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_credit_purchases_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_credit_purchases")),
        sa.UniqueConstraint("payment_session_id", name=op.f("uq_credit_purchases_payment_session_id")),
    )
    op.create_index("ix_credit_purchases_user_status", "credit_purchases", ["user_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_credit_purchases_user_status", table_name="credit_purchases")
    op.drop_table("credit_purchases")
    op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("ix_credit_ledger_user_category_end", table_name="credit_ledger")
    op.drop_table("credit_ledger")
    op.drop_table("saved_affiliates")
    op.drop_table("discovered_affiliates")
    op.drop_index("ix_search_jobs_status", table_name="search_jobs")
    op.drop_index("ix_search_jobs_user_created", table_name="search_jobs")
    op.drop_table("search_jobs")
    op.drop_table("users")

    bind = op.get_bind()
    for name in reversed(list(ENUM_VALUES)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
