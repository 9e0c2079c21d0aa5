from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    AccountType,
    CategoryType,
    FinancialAccount,
    JournalEntry,
    JournalStatus,
    TransactionStatus,
)
from schemas import (
    AccountIn,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    AccountService,
    CategoryService,
    ConflictError,
    NotFoundError,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session, with_cash: bool = True):
    accounts = AccountService(session)
    cash = None
    if with_cash:
        cash = accounts.create(AccountIn(code="1001", name="Kas", type=AccountType.asset))
    revenue = accounts.create(
        AccountIn(code="4001", name="Pendapatan SPP", type=AccountType.income)
    )
    costs = accounts.create(
        AccountIn(code="5001", name="Beban Gaji", type=AccountType.expense)
    )
    categories = CategoryService(session)
    tuition = categories.create(
        CategoryIn(name="SPP", type=CategoryType.income, account_id=revenue.id)
    )
    salaries = categories.create(
        CategoryIn(name="Gaji Guru", type=CategoryType.expense, account_id=costs.id)
    )
    return cash, revenue, costs, tuition, salaries


def test_posting_income_writes_balanced_journal_and_moves_balances() -> None:
    session = make_session()
    cash, revenue, _, tuition, _ = seed(session)

    txn = TransactionService(session).create(
        TransactionIn(
            type=CategoryType.income,
            category_id=tuition.id,
            amount=1_500_000,
            description="SPP Januari",
            date=date(2026, 1, 10),
            post=True,
        )
    )

    assert txn.status == TransactionStatus.posted
    assert txn.transaction_no == f"TRX-{date.today().year}-0001"
    assert txn.approved_at is not None
    assert len(txn.journal_entries) == 1
    journal = txn.journal_entries[0]
    assert journal.total_debit == journal.total_credit == 1_500_000
    assert [(line.account_id, line.debit_amount, line.credit_amount) for line in journal.lines] == [
        (cash.id, 1_500_000, 0),
        (revenue.id, 0, 1_500_000),
    ]
    assert session.get(FinancialAccount, cash.id).balance == 1_500_000
    assert session.get(FinancialAccount, revenue.id).balance == 1_500_000


def test_draft_has_no_journal_until_posted() -> None:
    session = make_session()
    cash, _, costs, _, salaries = seed(session)
    service = TransactionService(session)

    txn = service.create(
        TransactionIn(
            type=CategoryType.expense,
            category_id=salaries.id,
            amount=400_000,
            description="Honor guru tahfidz",
            date=date(2026, 2, 1),
        )
    )
    assert txn.status == TransactionStatus.draft
    assert session.scalar(select(func.count(JournalEntry.id))) == 0
    assert session.get(FinancialAccount, cash.id).balance == 0

    posted = service.post(txn.id)
    assert posted.status == TransactionStatus.posted
    assert session.get(FinancialAccount, cash.id).balance == -400_000
    assert session.get(FinancialAccount, costs.id).balance == 400_000

    # Posting twice is a no-op.
    service.post(txn.id)
    assert session.scalar(select(func.count(JournalEntry.id))) == 1


def test_void_reverses_journal_and_restores_balances() -> None:
    session = make_session()
    cash, revenue, _, tuition, _ = seed(session)
    service = TransactionService(session)
    txn = service.create(
        TransactionIn(
            type=CategoryType.income,
            category_id=tuition.id,
            amount=250_000,
            description="SPP Februari",
            date=date(2026, 2, 3),
            post=True,
        )
    )

    voided = service.void(txn.id)

    assert voided.status == TransactionStatus.void
    statuses = {j.entry_no[:3]: j.status for j in voided.journal_entries}
    assert statuses["JE-"] == JournalStatus.reversed
    assert statuses["JER"] == JournalStatus.posted
    assert session.get(FinancialAccount, cash.id).balance == 0
    assert session.get(FinancialAccount, revenue.id).balance == 0

    with pytest.raises(ConflictError):
        service.post(txn.id)


def test_create_rejects_category_of_other_type() -> None:
    session = make_session()
    _, _, _, tuition, _ = seed(session)

    with pytest.raises(NotFoundError):
        TransactionService(session).create(
            TransactionIn(
                type=CategoryType.expense,
                category_id=tuition.id,
                amount=10_000,
                description="Wrong side",
                date=date(2026, 1, 1),
            )
        )


def test_posting_without_cash_account_fails() -> None:
    session = make_session()
    _, _, _, tuition, _ = seed(session, with_cash=False)

    with pytest.raises(ValueError, match="Cash account not found"):
        TransactionService(session).create(
            TransactionIn(
                type=CategoryType.income,
                category_id=tuition.id,
                amount=10_000,
                description="SPP",
                date=date(2026, 1, 1),
                post=True,
            )
        )


def test_list_filters_and_summarises_by_type_and_status() -> None:
    session = make_session()
    _, _, _, tuition, salaries = seed(session)
    service = TransactionService(session)
    for amount, post in ((100_000, True), (200_000, True), (50_000, False)):
        service.create(
            TransactionIn(
                type=CategoryType.income,
                category_id=tuition.id,
                amount=amount,
                description="SPP",
                date=date(2026, 3, 1),
                post=post,
            )
        )
    service.create(
        TransactionIn(
            type=CategoryType.expense,
            category_id=salaries.id,
            amount=75_000,
            description="Gaji",
            date=date(2026, 3, 2),
            post=True,
        )
    )

    result = service.list(TransactionQuery(limit=2, sort_by="amount", sort_order="desc"))
    assert result["total"] == 4
    assert [t.amount for t in result["items"]] == [200_000, 100_000]
    assert result["summary"]["income"] == {"count": 2, "total": 300_000}
    assert result["summary"]["income_draft"] == {"count": 1, "total": 50_000}
    assert result["summary"]["expense"] == {"count": 1, "total": 75_000}

    only_expense = service.list(TransactionQuery(type=CategoryType.expense))
    assert only_expense["total"] == 1


def draft_tuition(session, tuition, amount: int = 500_000):
    return TransactionService(session).create(
        TransactionIn(
            type=CategoryType.income,
            category_id=tuition.id,
            amount=amount,
            description="SPP Maret",
            date=date(2026, 3, 5),
        )
    )


def test_update_edits_draft_fields() -> None:
    session = make_session()
    _, revenue, _, tuition, _ = seed(session)
    building = CategoryService(session).create(
        CategoryIn(name="Uang Gedung", type=CategoryType.income, account_id=revenue.id)
    )
    txn = draft_tuition(session, tuition)

    updated = TransactionService(session).update(
        txn.id,
        TransactionUpdate(
            category_id=building.id,
            amount=650_000,
            description="  Uang Gedung Maret ",
            entry_date=date(2026, 3, 6),
            reference="KW-12",
        ),
    )

    assert updated.category_id == building.id
    assert updated.amount == 650_000
    assert updated.description == "Uang Gedung Maret"
    assert updated.date == date(2026, 3, 6)
    assert updated.reference == "KW-12"
    assert updated.status == TransactionStatus.draft
    assert updated.journal_entries == []


def test_update_accepts_wire_name_for_date() -> None:
    payload = TransactionUpdate.model_validate({"date": "2026-04-01", "categoryId": 3})
    assert payload.entry_date == date(2026, 4, 1)
    assert payload.category_id == 3


def test_update_rejects_posted_and_void_transactions() -> None:
    session = make_session()
    _, _, _, tuition, _ = seed(session)
    service = TransactionService(session)
    posted = draft_tuition(session, tuition)
    service.post(posted.id)
    voided = draft_tuition(session, tuition)
    service.void(voided.id)

    with pytest.raises(ConflictError, match="Cannot edit posted transactions"):
        service.update(posted.id, TransactionUpdate(amount=1))
    with pytest.raises(ConflictError):
        service.update(voided.id, TransactionUpdate(amount=1))
    assert service.get(posted.id).amount == 500_000


def test_update_checks_category_type_and_activity() -> None:
    session = make_session()
    _, _, _, tuition, salaries = seed(session)
    service = TransactionService(session)
    txn = draft_tuition(session, tuition)

    with pytest.raises(NotFoundError, match="Category not found or inactive"):
        service.update(txn.id, TransactionUpdate(category_id=salaries.id))
    with pytest.raises(NotFoundError):
        service.update(txn.id, TransactionUpdate(type=CategoryType.expense))

    CategoryService(session).update(tuition.id, CategoryUpdate(is_active=False))
    with pytest.raises(NotFoundError):
        service.update(txn.id, TransactionUpdate(category_id=tuition.id))

    moved = service.update(
        txn.id, TransactionUpdate(type=CategoryType.expense, category_id=salaries.id)
    )
    assert moved.type == CategoryType.expense
    assert moved.category_id == salaries.id
