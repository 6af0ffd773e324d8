"""initial ledger, schedule and budget tables

Revision ID: 202610171200
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610171200"
down_revision = None
branch_labels = None
depends_on = None

TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
TRANSACTION_STATUS = sa.Enum(
    "pending", "completed", "failed", name="transactionstatus"
)
ACCOUNT_TYPE = sa.Enum(
    "bank", "cash", "credit", "investment", "other", name="accounttype"
)
FREQUENCY = sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency")
SCHEDULE_STATUS = sa.Enum("active", "paused", "completed", name="schedulestatus")
BUDGET_TYPE = sa.Enum("annual", "monthly", "quarterly", "project", name="budgettype")
BUDGET_STATUS = sa.Enum("active", "draft", "archived", name="budgetstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("type", ACCOUNT_TYPE, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column(
            "initial_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "name", name="uq_account_company_name"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "company_id", "type", "name", name="uq_category_company_type_name"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("status", TRANSACTION_STATUS, nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("reference", sa.String(100)),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        sa.Column("related_sale_id", sa.String(64)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_company_date", "transactions", ["company_id", "date"]
    )
    op.create_index(
        "ix_transactions_account_status", "transactions", ["account_id", "status"]
    )
    op.create_index(
        "ix_transactions_company_sale",
        "transactions",
        ["company_id", "related_sale_id"],
    )

    op.create_table(
        "recurring_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("day_of_month", sa.Integer()),
        sa.Column("day_of_week", sa.Integer()),
        sa.Column("month_of_year", sa.Integer()),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("status", SCHEDULE_STATUS, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("interval > 0", name="ck_schedule_interval_positive"),
        sa.CheckConstraint("amount_cents > 0", name="ck_schedule_amount_positive"),
    )
    op.create_index(
        "ix_schedule_company_next_due",
        "recurring_schedules",
        ["company_id", "next_due_date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("type", BUDGET_TYPE, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", BUDGET_STATUS, nullable=False),
        sa.Column(
            "total_budget_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "budget_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("spent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_item_amount_positive"),
        sa.CheckConstraint("spent_cents >= 0", name="ck_budget_item_spent_positive"),
    )
    op.create_index("ix_budget_items_budget", "budget_items", ["budget_id"])

    op.create_table(
        "balance_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("previous_balance_cents", sa.Integer(), nullable=False),
        sa.Column("new_balance_cents", sa.Integer(), nullable=False),
        sa.Column("change_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("performed_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_balance_audit_account_at",
        "balance_audit_log",
        ["account_id", "performed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_balance_audit_account_at", table_name="balance_audit_log")
    op.drop_table("balance_audit_log")
    op.drop_index("ix_budget_items_budget", table_name="budget_items")
    op.drop_table("budget_items")
    op.drop_table("budgets")
    op.drop_index("ix_schedule_company_next_due", table_name="recurring_schedules")
    op.drop_table("recurring_schedules")
    op.drop_index("ix_transactions_company_sale", table_name="transactions")
    op.drop_index("ix_transactions_account_status", table_name="transactions")
    op.drop_index("ix_transactions_company_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("accounts")
