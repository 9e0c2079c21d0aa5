"""initial finance schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name)


ACCOUNT_TYPE = _enum("accounttype", "ASSET", "LIABILITY", "EQUITY", "INCOME", "EXPENSE")
CATEGORY_TYPE = _enum("categorytype", "INCOME", "EXPENSE", "DONATION")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "financial_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=20), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", ACCOUNT_TYPE, nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_financial_accounts_type_code", "financial_accounts", ["type", "code"]
    )

    op.create_table(
        "financial_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=True),
        sa.Column("type", CATEGORY_TYPE, nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("financial_accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "parent_id",
            sa.Integer(),
            sa.ForeignKey("financial_categories.id"),
            nullable=True,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "uq_financial_category_type_name",
        "financial_categories",
        ["type", "name"],
        unique=True,
        sqlite_where=sa.text("deleted_at IS NULL"),
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_no", sa.String(length=30), nullable=False, unique=True),
        sa.Column("type", CATEGORY_TYPE, nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("financial_categories.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            _enum("transactionstatus", "DRAFT", "POSTED", "VOID"),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_status_date", "transactions", ["status", "date"])
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "date"]
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entry_no", sa.String(length=30), nullable=False, unique=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            nullable=True,
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_debit", sa.Integer(), nullable=False),
        sa.Column("total_credit", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("journalstatus", "POSTED", "REVERSED"),
            nullable=False,
            server_default="POSTED",
        ),
        sa.Column("reversed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_debit = total_credit", name="ck_journal_balanced"),
    )
    op.create_index("ix_journal_entries_date", "journal_entries", ["date"])

    op.create_table(
        "journal_entry_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "journal_id",
            sa.Integer(),
            sa.ForeignKey("journal_entries.id"),
            nullable=False,
        ),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("financial_accounts.id"),
            nullable=False,
        ),
        sa.Column("debit_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credit_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("line_order", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_journal_line_amounts_positive",
        ),
    )
    op.create_index("ix_journal_lines_account", "journal_entry_lines", ["account_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            _enum("budgettype", "MONTHLY", "QUARTERLY", "ANNUAL"),
            nullable=False,
            server_default="ANNUAL",
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            _enum("budgetstatus", "DRAFT", "ACTIVE", "CLOSED"),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("total_budget", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_date > start_date", name="ck_budget_window"),
    )
    op.create_index("ix_budgets_type_status", "budgets", ["type", "status"])

    op.create_table(
        "budget_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("financial_categories.id"),
            nullable=False,
        ),
        sa.Column("budget_amount", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("budget_amount >= 0", name="ck_budget_item_amount_positive"),
    )

    op.create_table(
        "financial_reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "type",
            _enum(
                "reporttype",
                "INCOME_STATEMENT",
                "BALANCE_SHEET",
                "CASH_FLOW",
                "BUDGET_VARIANCE",
            ),
            nullable=False,
        ),
        sa.Column(
            "period",
            _enum("reportperiod", "MONTHLY", "QUARTERLY", "ANNUAL", "CUSTOM"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=True
        ),
        sa.Column(
            "format",
            _enum("reportformat", "JSON", "PDF", "EXCEL"),
            nullable=False,
            server_default="JSON",
        ),
        sa.Column(
            "status",
            _enum("reportstatus", "DRAFT", "GENERATED", "EXPORTED"),
            nullable=False,
            server_default="GENERATED",
        ),
        sa.Column("data", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_financial_reports_type_start", "financial_reports", ["type", "start_date"]
    )
    op.create_index(
        "ix_financial_reports_created", "financial_reports", ["created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_financial_reports_created", table_name="financial_reports")
    op.drop_index("ix_financial_reports_type_start", table_name="financial_reports")
    op.drop_table("financial_reports")
    op.drop_table("budget_items")
    op.drop_index("ix_budgets_type_status", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_journal_lines_account", table_name="journal_entry_lines")
    op.drop_table("journal_entry_lines")
    op.drop_index("ix_journal_entries_date", table_name="journal_entries")
    op.drop_table("journal_entries")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_status_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_financial_category_type_name", table_name="financial_categories")
    op.drop_table("financial_categories")
    op.drop_index("ix_financial_accounts_type_code", table_name="financial_accounts")
    op.drop_table("financial_accounts")
