"""Financial report generation.

A report is built in one synchronous pass over the database:

    load categories -> fetch posted transactions -> aggregate per category
    -> (budget variance) -> persist as a versioned JSON document

The aggregator never mutates transactions or accounts; the only write is the
new ``FinancialReport`` row, added after the whole report has been computed.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import (
    AccountType,
    Budget,
    CategoryType,
    FinancialAccount,
    FinancialCategory,
    FinancialReport,
    JournalEntry,
    JournalEntryLine,
    JournalStatus,
    ReportPeriod,
    ReportStatus,
    ReportType,
    Transaction,
    TransactionStatus,
)
from periods import previous_month, year_bounds
from schemas import ReportQuery, ReportRequest
from services import (
    SYSTEM_USER_ID,
    NotFoundError,
    get_current_user_id,
    total_pages,
)

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION = 1

INCOME_CATEGORY_TYPES = (CategoryType.income, CategoryType.donation)
EXPENSE_CATEGORY_TYPES = (CategoryType.expense,)

SIGNIFICANT = "SIGNIFICANT"
NORMAL = "NORMAL"


def account_to_dict(account: Optional[FinancialAccount]) -> Optional[dict[str, object]]:
    if account is None:
        return None
    return {
        "id": account.id,
        "code": account.code,
        "name": account.name,
        "type": account.type.value,
        "balance": account.balance,
        "isActive": account.is_active,
    }


def category_summary(
    category: FinancialCategory, accounts: dict[int, FinancialAccount]
) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "account": account_to_dict(accounts.get(category.account_id)),
    }


def load_categories(
    session: Session, types: Iterable[CategoryType]
) -> tuple[list[FinancialCategory], dict[int, FinancialAccount]]:
    categories = session.scalars(
        select(FinancialCategory)
        .where(
            FinancialCategory.type.in_(list(types)),
            FinancialCategory.is_active.is_(True),
            FinancialCategory.deleted_at.is_(None),
        )
        .order_by(FinancialCategory.name, FinancialCategory.id)
    ).all()
    return list(categories), load_accounts(session, [c.account_id for c in categories])


def load_accounts(
    session: Session, account_ids: Iterable[int]
) -> dict[int, FinancialAccount]:
    ids = sorted(set(account_ids))
    if not ids:
        return {}
    accounts = session.scalars(
        select(FinancialAccount).where(FinancialAccount.id.in_(ids))
    ).all()
    return {account.id: account for account in accounts}


def fetch_transactions(
    session: Session,
    category_ids: Sequence[int],
    start: date,
    end: date,
    include_details: bool = False,
) -> list[dict[str, object]]:
    """Posted transactions of the given categories with ``start <= date <= end``.

    Without details only ``amount`` and ``categoryId`` are selected.
    """
    if not category_ids:
        return []
    conditions = (
        Transaction.category_id.in_(list(category_ids)),
        Transaction.status == TransactionStatus.posted,
        Transaction.date.between(start, end),
    )
    if not include_details:
        rows = session.execute(
            select(Transaction.amount, Transaction.category_id)
            .where(*conditions)
            .order_by(Transaction.date, Transaction.id)
        )
        return [{"amount": row.amount, "categoryId": row.category_id} for row in rows]

    rows = session.execute(
        select(
            Transaction.id,
            Transaction.transaction_no,
            Transaction.amount,
            Transaction.description,
            Transaction.date,
            Transaction.category_id,
        )
        .where(*conditions)
        .order_by(Transaction.date, Transaction.id)
    )
    return [
        {
            "id": row.id,
            "transactionNo": row.transaction_no,
            "amount": row.amount,
            "description": row.description,
            "date": row.date.isoformat(),
            "categoryId": row.category_id,
        }
        for row in rows
    ]


def aggregate_by_category(
    categories: Sequence[FinancialCategory],
    accounts: dict[int, FinancialAccount],
    transactions: Iterable[dict[str, object]],
    include_details: bool = False,
) -> list[dict[str, object]]:
    buckets: dict[int, list[dict[str, object]]] = {c.id: [] for c in categories}
    for txn in transactions:
        bucket = buckets.get(txn["categoryId"])
        if bucket is not None:
            bucket.append(txn)

    entries: list[dict[str, object]] = []
    for category in categories:
        rows = buckets[category.id]
        entry: dict[str, object] = {
            "category": category_summary(category, accounts),
            "total": sum(int(row["amount"]) for row in rows),
            "transactionCount": len(rows),
        }
        if include_details:
            entry["transactions"] = rows
        entries.append(entry)
    return entries


def sum_totals(entries: Iterable[dict[str, object]]) -> int:
    return sum(int(entry["total"]) for entry in entries)


def build_income_statement(
    session: Session, start: date, end: date, include_details: bool = False
) -> dict[str, object]:
    sides: dict[str, list[dict[str, object]]] = {}
    for key, types in (
        ("income", INCOME_CATEGORY_TYPES),
        ("expenses", EXPENSE_CATEGORY_TYPES),
    ):
        categories, accounts = load_categories(session, types)
        transactions = fetch_transactions(
            session, [c.id for c in categories], start, end, include_details
        )
        sides[key] = aggregate_by_category(
            categories, accounts, transactions, include_details
        )

    total_income = sum_totals(sides["income"])
    total_expenses = sum_totals(sides["expenses"])
    return {
        "type": ReportType.income_statement.value,
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "summary": {
            "totalIncome": total_income,
            "totalExpenses": total_expenses,
            "netIncome": total_income - total_expenses,
        },
        "income": sides["income"],
        "expenses": sides["expenses"],
    }


def build_balance_sheet(session: Session, as_of: date) -> dict[str, object]:
    # Uses the running balances; as_of only labels the snapshot.
    accounts = session.scalars(
        select(FinancialAccount)
        .where(FinancialAccount.is_active.is_(True))
        .order_by(FinancialAccount.type, FinancialAccount.code)
    ).all()
    return balance_sheet_from_accounts(accounts, as_of)


def balance_sheet_from_accounts(
    accounts: Iterable[FinancialAccount], as_of: date
) -> dict[str, object]:
    by_type: dict[str, list[dict[str, object]]] = {}
    totals: dict[str, int] = {}
    for account in accounts:
        key = account.type.value
        by_type.setdefault(key, []).append(account_to_dict(account))
        totals[key] = totals.get(key, 0) + account.balance

    assets = totals.get(AccountType.asset.value, 0)
    liabilities = totals.get(AccountType.liability.value, 0)
    equity = totals.get(AccountType.equity.value, 0)

    def section(account_type: AccountType) -> dict[str, object]:
        return {
            "accounts": by_type.get(account_type.value, []),
            "total": totals.get(account_type.value, 0),
        }

    return {
        "type": ReportType.balance_sheet.value,
        "asOfDate": as_of.isoformat(),
        "assets": section(AccountType.asset),
        "liabilities": section(AccountType.liability),
        "equity": section(AccountType.equity),
        "totals": totals,
        "isBalanced": assets == liabilities + equity,
    }


def build_cash_flow(
    session: Session, start: date, end: date, include_details: bool = False
) -> dict[str, object]:
    code = get_settings().cash_account_code
    cash = session.scalar(select(FinancialAccount).where(FinancialAccount.code == code))
    if not cash:
        raise NotFoundError("Cash account not found")

    lines = session.scalars(
        select(JournalEntryLine)
        .join(JournalEntry, JournalEntryLine.journal_id == JournalEntry.id)
        .options(
            joinedload(JournalEntryLine.journal)
            .joinedload(JournalEntry.transaction)
            .joinedload(Transaction.category)
        )
        .where(
            JournalEntryLine.account_id == cash.id,
            JournalEntry.status.in_([JournalStatus.posted, JournalStatus.reversed]),
            JournalEntry.date.between(start, end),
        )
        .order_by(JournalEntry.date, JournalEntry.id, JournalEntryLine.line_order)
    ).all()

    activities: dict[str, list[dict[str, object]]] = {
        "operating": [],
        "investing": [],
        "financing": [],
    }
    for line in lines:
        journal = line.journal
        txn = journal.transaction
        activity = {
            "date": journal.date.isoformat(),
            "description": journal.description,
            "reference": journal.reference,
            "amount": line.debit_amount - line.credit_amount,
            "transaction": _cash_flow_transaction(txn),
        }
        if txn is not None and txn.type == CategoryType.donation:
            activities["financing"].append(activity)
        else:
            activities["operating"].append(activity)

    totals = {
        key: sum(int(a["amount"]) for a in rows) for key, rows in activities.items()
    }

    def section(key: str) -> object:
        if include_details:
            return activities[key]
        return {"total": totals[key], "count": len(activities[key])}

    return {
        "type": ReportType.cash_flow.value,
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "summary": {
            "totalOperating": totals["operating"],
            "totalInvesting": totals["investing"],
            "totalFinancing": totals["financing"],
            "netCashFlow": sum(totals.values()),
        },
        "operatingActivities": section("operating"),
        "investingActivities": section("investing"),
        "financingActivities": section("financing"),
    }


def _cash_flow_transaction(txn: Optional[Transaction]) -> Optional[dict[str, object]]:
    if txn is None:
        return None
    return {
        "id": txn.id,
        "transactionNo": txn.transaction_no,
        "type": txn.type.value,
        "amount": txn.amount,
        "category": {
            "id": txn.category.id,
            "name": txn.category.name,
            "type": txn.category.type.value,
        }
        if txn.category
        else None,
    }


def compute_variance(
    budget_amount: int, actual_amount: int, threshold_percent: float
) -> dict[str, object]:
    variance = actual_amount - budget_amount
    variance_percent = variance * 100 / budget_amount if budget_amount > 0 else 0.0
    return {
        "budgetAmount": budget_amount,
        "actualAmount": actual_amount,
        "variance": variance,
        "variancePercent": variance_percent,
        "status": SIGNIFICANT if abs(variance_percent) > threshold_percent else NORMAL,
    }


def build_budget_variance(
    session: Session,
    budget: Budget,
    include_details: bool = False,
    threshold_percent: Optional[float] = None,
) -> dict[str, object]:
    if threshold_percent is None:
        threshold_percent = get_settings().variance_threshold_percent

    categories: list[FinancialCategory] = []
    seen: set[int] = set()
    for item in budget.items:
        if item.category_id not in seen:
            seen.add(item.category_id)
            categories.append(item.category)
    accounts = load_accounts(session, [c.account_id for c in categories])
    transactions = fetch_transactions(
        session,
        [c.id for c in categories],
        budget.start_date,
        budget.end_date,
        include_details,
    )
    actuals = {
        entry["category"]["id"]: entry
        for entry in aggregate_by_category(
            categories, accounts, transactions, include_details
        )
    }

    items: list[dict[str, object]] = []
    for item in budget.items:
        actual = actuals[item.category_id]
        row: dict[str, object] = {"category": actual["category"]}
        row.update(
            compute_variance(item.budget_amount, int(actual["total"]), threshold_percent)
        )
        if include_details:
            row["transactions"] = actual["transactions"]
        items.append(row)

    total_budget = sum(item.budget_amount for item in budget.items)
    total_actual = sum(int(row["actualAmount"]) for row in items)
    total_variance = total_actual - total_budget
    return {
        "type": ReportType.budget_variance.value,
        "budget": {
            "id": budget.id,
            "name": budget.name,
            "type": budget.type.value,
            "period": {
                "startDate": budget.start_date.isoformat(),
                "endDate": budget.end_date.isoformat(),
            },
        },
        "threshold": threshold_percent,
        "summary": {
            "totalBudget": total_budget,
            "totalActual": total_actual,
            "totalVariance": total_variance,
            "totalVariancePercent": total_variance * 100 / total_budget
            if total_budget > 0
            else 0.0,
        },
        "items": items,
    }


def _json_default(value: object) -> object:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_report_data(report: dict[str, object]) -> str:
    envelope = {"schemaVersion": REPORT_SCHEMA_VERSION}
    envelope.update(report)
    return json.dumps(envelope, default=_json_default, ensure_ascii=False)


def load_report_data(raw: str) -> dict[str, object]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"schemaVersion": 0, "payload": data}
    version = data.get("schemaVersion", 0)
    if version == REPORT_SCHEMA_VERSION:
        return data
    if version == 0:
        # Rows written before the envelope existed.
        legacy = dict(data)
        legacy["schemaVersion"] = 0
        return legacy
    logger.warning(f"report_data_unknown_version: version={version}")
    return data


def report_to_dict(report: FinancialReport) -> dict[str, object]:
    budget = report.budget
    return {
        "id": report.id,
        "name": report.name,
        "type": report.type.value,
        "period": report.period.value,
        "startDate": report.start_date.isoformat(),
        "endDate": report.end_date.isoformat(),
        "budgetId": report.budget_id,
        "format": report.format.value,
        "status": report.status.value,
        "createdBy": report.created_by,
        "createdAt": report.created_at.isoformat() if report.created_at else None,
        "data": load_report_data(report.data),
        "budget": {"id": budget.id, "name": budget.name, "type": budget.type.value}
        if budget
        else None,
    }


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _budget(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.id == budget_id, Budget.deleted_at.is_(None))
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def build(self, request: ReportRequest) -> dict[str, object]:
        if request.end_date <= request.start_date:
            raise ValueError("End date must be after start date")
        if request.type == ReportType.budget_variance and request.budget_id is None:
            raise ValueError("Budget ID is required for budget variance report")
        budget = self._budget(request.budget_id) if request.budget_id is not None else None

        if request.type == ReportType.income_statement:
            return build_income_statement(
                self.session, request.start_day, request.end_day, request.include_details
            )
        if request.type == ReportType.balance_sheet:
            return build_balance_sheet(self.session, request.end_day)
        if request.type == ReportType.cash_flow:
            return build_cash_flow(
                self.session, request.start_day, request.end_day, request.include_details
            )
        if request.type == ReportType.budget_variance:
            return build_budget_variance(
                self.session,
                budget,
                request.include_details,
                request.variance_threshold,
            )
        raise ValueError("Invalid report type")

    def generate(
        self, request: ReportRequest, created_by: Optional[int] = None
    ) -> FinancialReport:
        started = time.perf_counter()
        data = self.build(request)
        report = FinancialReport(
            name=request.name.strip(),
            type=request.type,
            period=request.period,
            start_date=request.start_day,
            end_date=request.end_day,
            budget_id=request.budget_id,
            format=request.format,
            status=ReportStatus.generated,
            data=dump_report_data(data),
            created_by=self.user_id if created_by is None else created_by,
        )
        self.session.add(report)
        self.session.commit()
        self.session.refresh(report)
        logger.info(
            f"report_generated: id={report.id} type={report.type.value} "
            f"period={report.start_date}to{report.end_date} "
            f"duration={time.perf_counter() - started:.3f}s"
        )
        return report

    def get(self, report_id: int) -> FinancialReport:
        report = self.session.scalar(
            select(FinancialReport)
            .options(joinedload(FinancialReport.budget))
            .where(
                FinancialReport.id == report_id,
                FinancialReport.deleted_at.is_(None),
            )
        )
        if not report:
            raise NotFoundError("Report not found")
        return report

    def list(self, query: ReportQuery) -> dict[str, object]:
        conditions = [FinancialReport.deleted_at.is_(None)]
        if query.type:
            conditions.append(FinancialReport.type == query.type)
        if query.period:
            conditions.append(FinancialReport.period == query.period)
        if query.status:
            conditions.append(FinancialReport.status == query.status)
        if query.year:
            bounds = year_bounds(query.year)
            conditions.append(
                FinancialReport.start_date.between(bounds.start, bounds.end)
            )

        reports = self.session.scalars(
            select(FinancialReport)
            .options(joinedload(FinancialReport.budget))
            .where(*conditions)
            .order_by(FinancialReport.created_at.desc(), FinancialReport.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        ).all()
        total = int(
            self.session.execute(
                select(func.count(FinancialReport.id)).where(*conditions)
            ).scalar_one()
            or 0
        )
        return {
            "reports": [report_to_dict(report) for report in reports],
            "pagination": {
                "page": query.page,
                "limit": query.limit,
                "total": total,
                "totalPages": total_pages(total, query.limit),
            },
        }

    def delete(self, report_id: int) -> None:
        report = self.get(report_id)
        report.deleted_at = datetime.utcnow()
        self.session.commit()

    def generate_monthly_income_statement(
        self, today: Optional[date] = None
    ) -> FinancialReport:
        period = previous_month(today)
        request = ReportRequest(
            name=f"Laporan Laba Rugi {period.start:%Y-%m}",
            type=ReportType.income_statement,
            period=ReportPeriod.monthly,
            start_date=period.start,
            end_date=period.end,
        )
        return self.generate(request, created_by=SYSTEM_USER_ID)
