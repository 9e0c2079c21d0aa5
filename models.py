from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _enum_column(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


class AccountType(str, Enum):
    asset = "ASSET"
    liability = "LIABILITY"
    equity = "EQUITY"
    income = "INCOME"
    expense = "EXPENSE"


class CategoryType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    donation = "DONATION"


class TransactionStatus(str, Enum):
    draft = "DRAFT"
    posted = "POSTED"
    void = "VOID"


class JournalStatus(str, Enum):
    posted = "POSTED"
    reversed = "REVERSED"


class BudgetType(str, Enum):
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    annual = "ANNUAL"


class BudgetStatus(str, Enum):
    draft = "DRAFT"
    active = "ACTIVE"
    closed = "CLOSED"


class ReportType(str, Enum):
    income_statement = "INCOME_STATEMENT"
    balance_sheet = "BALANCE_SHEET"
    cash_flow = "CASH_FLOW"
    budget_variance = "BUDGET_VARIANCE"


class ReportPeriod(str, Enum):
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    annual = "ANNUAL"
    custom = "CUSTOM"


class ReportFormat(str, Enum):
    json = "JSON"
    pdf = "PDF"
    excel = "EXCEL"


class ReportStatus(str, Enum):
    draft = "DRAFT"
    generated = "GENERATED"
    exported = "EXPORTED"


# Accounts whose balance grows on the debit side.
DEBIT_NORMAL_ACCOUNT_TYPES = frozenset({AccountType.asset, AccountType.expense})


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class FinancialAccount(Base, TimestampMixin):
    __tablename__ = "financial_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        _enum_column(AccountType, "accounttype"), nullable=False
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    categories: Mapped[list["FinancialCategory"]] = relationship(
        "FinancialCategory", back_populates="account"
    )

    __table_args__ = (Index("ix_financial_accounts_type_code", "type", "code"),)


class FinancialCategory(Base, TimestampMixin):
    __tablename__ = "financial_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(20))
    type: Mapped[CategoryType] = mapped_column(
        _enum_column(CategoryType, "categorytype"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("financial_accounts.id"), nullable=False
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("financial_categories.id")
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account: Mapped["FinancialAccount"] = relationship(
        "FinancialAccount", back_populates="categories"
    )
    parent: Mapped[Optional["FinancialCategory"]] = relationship(
        "FinancialCategory", remote_side="FinancialCategory.id"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        Index(
            "uq_financial_category_type_name",
            "type",
            "name",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_no: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    type: Mapped[CategoryType] = mapped_column(
        _enum_column(CategoryType, "categorytype"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("financial_categories.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "transactionstatus"),
        nullable=False,
        default=TransactionStatus.draft,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped["FinancialCategory"] = relationship(
        "FinancialCategory", back_populates="transactions"
    )
    journal_entries: Mapped[list["JournalEntry"]] = relationship(
        "JournalEntry", back_populates="transaction", order_by="JournalEntry.id"
    )

    __table_args__ = (
        Index("ix_transactions_status_date", "status", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )


class JournalEntry(Base, TimestampMixin):
    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_no: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    transaction_id: Mapped[Optional[int]] = mapped_column(ForeignKey("transactions.id"))
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    total_debit: Mapped[int] = mapped_column(Integer, nullable=False)
    total_credit: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[JournalStatus] = mapped_column(
        _enum_column(JournalStatus, "journalstatus"),
        nullable=False,
        default=JournalStatus.posted,
    )
    reversed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", back_populates="journal_entries"
    )
    lines: Mapped[list["JournalEntryLine"]] = relationship(
        "JournalEntryLine",
        back_populates="journal",
        order_by="JournalEntryLine.line_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("total_debit = total_credit", name="ck_journal_balanced"),
        Index("ix_journal_entries_date", "date"),
    )


class JournalEntryLine(Base):
    __tablename__ = "journal_entry_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    journal_id: Mapped[int] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("financial_accounts.id"), nullable=False
    )
    debit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    line_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    journal: Mapped["JournalEntry"] = relationship(
        "JournalEntry", back_populates="lines"
    )
    account: Mapped["FinancialAccount"] = relationship("FinancialAccount")

    __table_args__ = (
        Index("ix_journal_lines_account", "account_id"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_journal_line_amounts_positive",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[BudgetType] = mapped_column(
        _enum_column(BudgetType, "budgettype"),
        nullable=False,
        default=BudgetType.annual,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BudgetStatus] = mapped_column(
        _enum_column(BudgetStatus, "budgetstatus"),
        nullable=False,
        default=BudgetStatus.draft,
    )
    total_budget: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem",
        back_populates="budget",
        order_by="BudgetItem.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_budget_window"),
        Index("ix_budgets_type_status", "type", "status"),
    )


class BudgetItem(Base, TimestampMixin):
    __tablename__ = "budget_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("financial_categories.id"), nullable=False
    )
    budget_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="items")
    category: Mapped["FinancialCategory"] = relationship("FinancialCategory")

    __table_args__ = (
        CheckConstraint("budget_amount >= 0", name="ck_budget_item_amount_positive"),
    )


class FinancialReport(Base, TimestampMixin):
    __tablename__ = "financial_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[ReportType] = mapped_column(
        _enum_column(ReportType, "reporttype"), nullable=False
    )
    period: Mapped[ReportPeriod] = mapped_column(
        _enum_column(ReportPeriod, "reportperiod"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    budget_id: Mapped[Optional[int]] = mapped_column(ForeignKey("budgets.id"))
    format: Mapped[ReportFormat] = mapped_column(
        _enum_column(ReportFormat, "reportformat"),
        nullable=False,
        default=ReportFormat.json,
    )
    status: Mapped[ReportStatus] = mapped_column(
        _enum_column(ReportStatus, "reportstatus"),
        nullable=False,
        default=ReportStatus.generated,
    )
    data: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    budget: Mapped[Optional["Budget"]] = relationship("Budget")

    __table_args__ = (
        Index("ix_financial_reports_type_start", "type", "start_date"),
        Index("ix_financial_reports_created", "created_at"),
    )
