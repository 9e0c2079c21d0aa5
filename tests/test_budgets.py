from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import AccountType, BudgetStatus, BudgetType, CategoryType, ReportPeriod, ReportType
from reporting import ReportService
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetItemIn,
    BudgetQuery,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    ReportRequest,
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


def seed_categories(session):
    accounts = AccountService(session)
    accounts.create(AccountIn(code="1001", name="Kas", type=AccountType.asset))
    costs = accounts.create(AccountIn(code="5001", name="Beban", type=AccountType.expense))
    categories = CategoryService(session)
    salaries = categories.create(
        CategoryIn(name="Gaji", type=CategoryType.expense, account_id=costs.id)
    )
    utilities = categories.create(
        CategoryIn(name="Listrik", type=CategoryType.expense, account_id=costs.id)
    )
    return salaries, utilities


def annual_budget(name: str, year: int, *items: BudgetItemIn) -> BudgetIn:
    return BudgetIn(
        name=name,
        type=BudgetType.annual,
        start_date=date(year, 1, 1),
        end_date=date(year, 12, 31),
        items=list(items),
    )


def test_create_budget_totals_items() -> None:
    session = make_session()
    salaries, utilities = seed_categories(session)

    budget = BudgetService(session).create(
        annual_budget(
            "RAPBS 2026",
            2026,
            BudgetItemIn(category_id=salaries.id, budget_amount=12_000_000),
            BudgetItemIn(category_id=utilities.id, budget_amount=3_000_000),
        )
    )

    assert budget.status == BudgetStatus.draft
    assert budget.total_budget == 15_000_000
    assert [item.category.name for item in budget.items] == ["Gaji", "Listrik"]


def test_create_budget_rejects_bad_input() -> None:
    session = make_session()
    salaries, _ = seed_categories(session)
    service = BudgetService(session)

    with pytest.raises(ValueError, match="End date must be after start date"):
        service.create(
            BudgetIn(
                name="Backwards",
                start_date=date(2026, 12, 31),
                end_date=date(2026, 1, 1),
                items=[BudgetItemIn(category_id=salaries.id, budget_amount=1)],
            )
        )
    with pytest.raises(ValueError, match="only once"):
        service.create(
            annual_budget(
                "Duplicate",
                2026,
                BudgetItemIn(category_id=salaries.id, budget_amount=1),
                BudgetItemIn(category_id=salaries.id, budget_amount=2),
            )
        )
    with pytest.raises(NotFoundError):
        service.create(
            annual_budget("Ghost", 2026, BudgetItemIn(category_id=999, budget_amount=1))
        )


def test_only_one_active_budget_per_type_and_window() -> None:
    session = make_session()
    salaries, _ = seed_categories(session)
    service = BudgetService(session)
    first = service.create(
        annual_budget("A", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )
    second = service.create(
        annual_budget("B", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=2))
    )

    service.set_status(first.id, BudgetStatus.active)
    with pytest.raises(ConflictError):
        service.set_status(second.id, BudgetStatus.active)
    with pytest.raises(ConflictError):
        service.create(
            annual_budget("C", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=3))
        )

    service.set_status(first.id, BudgetStatus.closed)
    assert service.set_status(second.id, BudgetStatus.active).status == BudgetStatus.active


def test_actuals_compare_posted_spend_to_budget() -> None:
    session = make_session()
    salaries, utilities = seed_categories(session)
    budgets = BudgetService(session)
    budget = budgets.create(
        annual_budget(
            "RAPBS",
            2026,
            BudgetItemIn(category_id=salaries.id, budget_amount=1_000),
            BudgetItemIn(category_id=utilities.id, budget_amount=500),
        )
    )
    txns = TransactionService(session)
    txns.create(
        TransactionIn(
            type=CategoryType.expense,
            category_id=salaries.id,
            amount=250,
            description="Gaji Januari",
            date=date(2026, 1, 25),
            post=True,
        )
    )
    txns.create(
        TransactionIn(
            type=CategoryType.expense,
            category_id=salaries.id,
            amount=999,
            description="Draft",
            date=date(2026, 1, 26),
        )
    )

    rows = {row["categoryId"]: row for row in budgets.actuals(budget.id)}

    assert rows[salaries.id]["actualAmount"] == 250
    assert rows[salaries.id]["variance"] == -750
    assert rows[salaries.id]["percentage"] == pytest.approx(25.0)
    assert rows[utilities.id]["actualAmount"] == 0


def test_delete_guards_active_and_reported_budgets() -> None:
    session = make_session()
    salaries, _ = seed_categories(session)
    budgets = BudgetService(session)
    budget = budgets.create(
        annual_budget("RAPBS", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )

    budgets.set_status(budget.id, BudgetStatus.active)
    with pytest.raises(ConflictError, match="active"):
        budgets.delete(budget.id)

    budgets.set_status(budget.id, BudgetStatus.closed)
    ReportService(session).generate(
        ReportRequest(
            name="Varians",
            type=ReportType.budget_variance,
            period=ReportPeriod.annual,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 12, 31),
            budget_id=budget.id,
        )
    )
    with pytest.raises(ConflictError, match="reports"):
        budgets.delete(budget.id)


def test_deleted_budget_disappears_from_listing() -> None:
    session = make_session()
    salaries, _ = seed_categories(session)
    budgets = BudgetService(session)
    keep = budgets.create(
        annual_budget("2025", 2025, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )
    drop = budgets.create(
        annual_budget("2026", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )

    budgets.delete(drop.id)

    listing = budgets.list(BudgetQuery())
    assert [b.id for b in listing["items"]] == [keep.id]
    assert listing["item_counts"] == {keep.id: 1}
    with pytest.raises(NotFoundError):
        budgets.get(drop.id)


def test_update_replaces_items_and_recomputes_total() -> None:
    session = make_session()
    salaries, utilities = seed_categories(session)
    service = BudgetService(session)
    budget = service.create(
        annual_budget(
            "RAPBS 2026", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=10_000)
        )
    )

    updated = service.update(
        budget.id,
        BudgetUpdate(
            name="RAPBS 2026 Revisi",
            items=[
                BudgetItemIn(category_id=salaries.id, budget_amount=8_000),
                BudgetItemIn(category_id=utilities.id, budget_amount=4_000),
            ],
        ),
    )

    assert updated.name == "RAPBS 2026 Revisi"
    assert updated.total_budget == 12_000
    assert [(item.category_id, item.budget_amount) for item in updated.items] == [
        (salaries.id, 8_000),
        (utilities.id, 4_000),
    ]
    assert updated.start_date == date(2026, 1, 1)


def test_update_validates_dates_and_items() -> None:
    session = make_session()
    salaries, utilities = seed_categories(session)
    service = BudgetService(session)
    budget = service.create(
        annual_budget(
            "RAPBS 2026", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=10_000)
        )
    )

    with pytest.raises(ValueError, match="End date must be after start date"):
        service.update(budget.id, BudgetUpdate(end_date=date(2025, 6, 30)))

    CategoryService(session).update(utilities.id, CategoryUpdate(is_active=False))
    with pytest.raises(NotFoundError, match="One or more categories not found or inactive"):
        service.update(
            budget.id,
            BudgetUpdate(items=[BudgetItemIn(category_id=utilities.id, budget_amount=1)]),
        )
    with pytest.raises(NotFoundError):
        service.update(9999, BudgetUpdate(name="Tidak ada"))

    unchanged = service.get(budget.id)
    assert unchanged.end_date == date(2026, 12, 31)
    assert unchanged.total_budget == 10_000


def test_update_active_budget_cannot_move_onto_another_active_period() -> None:
    session = make_session()
    salaries, _ = seed_categories(session)
    service = BudgetService(session)
    current = service.create(
        annual_budget("RAPBS 2026", 2026, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )
    following = service.create(
        annual_budget("RAPBS 2027", 2027, BudgetItemIn(category_id=salaries.id, budget_amount=1))
    )
    service.set_status(current.id, BudgetStatus.active)
    service.set_status(following.id, BudgetStatus.active)

    with pytest.raises(ConflictError, match="An active budget already exists for this period"):
        service.update(following.id, BudgetUpdate(start_date=date(2026, 7, 1)))

    moved = service.update(following.id, BudgetUpdate(end_date=date(2027, 6, 30)))
    assert moved.end_date == date(2027, 6, 30)
