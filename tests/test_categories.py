from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import AccountType, CategoryType
from reporting import build_income_statement
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetItemIn,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetService,
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


def seed(session):
    accounts = AccountService(session)
    accounts.create(AccountIn(code="1001", name="Kas", type=AccountType.asset))
    revenue = accounts.create(
        AccountIn(code="4001", name="Pendapatan", type=AccountType.income)
    )
    return revenue


def income_category(session, revenue, name: str, parent_id=None):
    return CategoryService(session).create(
        CategoryIn(
            name=name,
            type=CategoryType.income,
            account_id=revenue.id,
            parent_id=parent_id,
        )
    )


def test_delete_refuses_category_with_transactions() -> None:
    session = make_session()
    revenue = seed(session)
    tuition = income_category(session, revenue, "SPP")
    TransactionService(session).create(
        TransactionIn(
            type=CategoryType.income,
            category_id=tuition.id,
            amount=300_000,
            description="SPP Januari",
            date=date(2026, 1, 8),
            post=True,
        )
    )

    with pytest.raises(ConflictError, match="existing transactions"):
        CategoryService(session).deactivate(tuition.id)

    assert CategoryService(session).get(tuition.id).is_active is True
    statement = build_income_statement(session, date(2026, 1, 1), date(2026, 1, 31))
    assert statement["summary"]["totalIncome"] == 300_000


def test_delete_refuses_category_with_budget_items() -> None:
    session = make_session()
    revenue = seed(session)
    tuition = income_category(session, revenue, "SPP")
    BudgetService(session).create(
        BudgetIn(
            name="RAPBS 2026",
            start_date=date(2026, 1, 1),
            end_date=date(2026, 12, 31),
            items=[BudgetItemIn(category_id=tuition.id, budget_amount=1_000)],
        )
    )

    with pytest.raises(ConflictError, match="existing budget items"):
        CategoryService(session).deactivate(tuition.id)


def test_delete_refuses_category_with_live_subcategories() -> None:
    session = make_session()
    revenue = seed(session)
    events = income_category(session, revenue, "Kegiatan")
    trip = income_category(session, revenue, "Study Tour", parent_id=events.id)
    categories = CategoryService(session)

    with pytest.raises(ConflictError, match="Delete subcategories first"):
        categories.deactivate(events.id)

    categories.deactivate(trip.id)
    categories.deactivate(events.id)
    with pytest.raises(NotFoundError):
        categories.get(events.id)


def test_update_rejects_parent_cycles() -> None:
    session = make_session()
    revenue = seed(session)
    top = income_category(session, revenue, "Pendapatan Lain")
    middle = income_category(session, revenue, "Kegiatan", parent_id=top.id)
    bottom = income_category(session, revenue, "Study Tour", parent_id=middle.id)
    categories = CategoryService(session)

    with pytest.raises(ValueError, match="Circular reference detected"):
        categories.update(top.id, CategoryUpdate(parent_id=middle.id))
    with pytest.raises(ValueError, match="Circular reference detected"):
        categories.update(top.id, CategoryUpdate(parent_id=bottom.id))
    with pytest.raises(ValueError, match="own parent"):
        categories.update(top.id, CategoryUpdate(parent_id=top.id))

    assert categories.get(top.id).parent_id is None
    moved = categories.update(bottom.id, CategoryUpdate(parent_id=top.id))
    assert moved.parent_id == top.id


def test_deleted_category_name_can_be_reused() -> None:
    session = make_session()
    revenue = seed(session)
    categories = CategoryService(session)
    first = income_category(session, revenue, "Uang Buku")

    with pytest.raises(ConflictError, match="already exists"):
        income_category(session, revenue, "uang buku")

    categories.deactivate(first.id)
    second = income_category(session, revenue, "Uang Buku")

    assert second.id != first.id
    assert [c.name for c in categories.list_all(type=CategoryType.income)] == ["Uang Buku"]
