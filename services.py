from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from models import (
    DEBIT_NORMAL_ACCOUNT_TYPES,
    Budget,
    BudgetItem,
    BudgetStatus,
    BudgetType,
    CategoryType,
    FinancialAccount,
    FinancialCategory,
    FinancialReport,
    JournalEntry,
    JournalEntryLine,
    JournalStatus,
    Transaction,
    TransactionStatus,
)
from periods import year_bounds
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetItemIn,
    BudgetQuery,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = 0


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def _next_sequence_number(session: Session, column, prefix: str) -> str:
    count = session.execute(
        select(func.count()).where(column.like(f"{prefix}%"))
    ).scalar_one()
    return f"{prefix}{int(count or 0) + 1:04d}"


def apply_to_balance(account: FinancialAccount, debit: int, credit: int) -> None:
    if account.type in DEBIT_NORMAL_ACCOUNT_TYPES:
        account.balance += debit - credit
    else:
        account.balance += credit - debit


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_inactive: bool = False) -> list[FinancialAccount]:
        stmt = select(FinancialAccount).order_by(
            FinancialAccount.type, FinancialAccount.code
        )
        if not include_inactive:
            stmt = stmt.where(FinancialAccount.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> FinancialAccount:
        account = self.session.get(FinancialAccount, account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    def get_by_code(self, code: str) -> Optional[FinancialAccount]:
        return self.session.scalar(
            select(FinancialAccount).where(FinancialAccount.code == code)
        )

    def create(self, data: AccountIn) -> FinancialAccount:
        code = data.code.strip()
        if self.get_by_code(code):
            raise ConflictError("Account with this code already exists")
        account = FinancialAccount(
            code=code,
            name=data.name.strip(),
            type=data.type,
            balance=data.balance,
            description=data.description,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(
        self,
        type: Optional[CategoryType] = None,
        is_active: Optional[bool] = None,
    ) -> list[FinancialCategory]:
        stmt = (
            select(FinancialCategory)
            .options(joinedload(FinancialCategory.account))
            .where(FinancialCategory.deleted_at.is_(None))
            .order_by(FinancialCategory.type, FinancialCategory.name)
        )
        if type:
            stmt = stmt.where(FinancialCategory.type == type)
        if is_active is not None:
            stmt = stmt.where(FinancialCategory.is_active.is_(is_active))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> FinancialCategory:
        category = self.session.get(FinancialCategory, category_id)
        if not category or category.deleted_at is not None:
            raise NotFoundError("Category not found")
        return category

    def transaction_counts(self, category_ids: list[int]) -> dict[int, int]:
        if not category_ids:
            return {}
        stmt = (
            select(Transaction.category_id, func.count(Transaction.id))
            .where(Transaction.category_id.in_(category_ids))
            .group_by(Transaction.category_id)
        )
        return {row[0]: int(row[1]) for row in self.session.execute(stmt)}

    def _check_parent(self, parent_id: int, category_type: CategoryType) -> None:
        parent = self.session.get(FinancialCategory, parent_id)
        if not parent or parent.deleted_at is not None:
            raise NotFoundError("Parent category not found")
        if parent.type != category_type:
            raise ValueError("Parent category must have the same type")

    def _is_ancestor(self, category_id: int, parent_id: int) -> bool:
        """True when ``category_id`` sits on the parent chain above ``parent_id``."""
        seen: set[int] = set()
        current = parent_id
        while current is not None and current not in seen:
            seen.add(current)
            current = self.session.scalar(
                select(FinancialCategory.parent_id).where(
                    FinancialCategory.id == current
                )
            )
            if current == category_id:
                return True
        return False

    def _name_taken(
        self, category_type: CategoryType, name: str, exclude_id: Optional[int] = None
    ) -> bool:
        stmt = select(FinancialCategory.id).where(
            FinancialCategory.type == category_type,
            func.lower(FinancialCategory.name) == name.lower(),
            FinancialCategory.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(FinancialCategory.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def create(self, data: CategoryIn) -> FinancialCategory:
        if self._name_taken(data.type, data.name.strip()):
            raise ConflictError("Category with this name already exists for this type")
        AccountService(self.session, self.user_id).get(data.account_id)
        if data.parent_id is not None:
            self._check_parent(data.parent_id, data.type)

        category = FinancialCategory(
            name=data.name.strip(),
            code=data.code,
            type=data.type,
            account_id=data.account_id,
            parent_id=data.parent_id,
            description=data.description,
            is_active=data.is_active,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> FinancialCategory:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is not None:
            name = changes["name"].strip()
            if self._name_taken(category.type, name, exclude_id=category.id):
                raise ConflictError(
                    "Category with this name already exists for this type"
                )
            category.name = name
        if changes.get("account_id") is not None:
            AccountService(self.session, self.user_id).get(changes["account_id"])
            category.account_id = changes["account_id"]
        if "parent_id" in changes:
            parent_id = changes["parent_id"]
            if parent_id is not None:
                if parent_id == category.id:
                    raise ValueError("Category cannot be its own parent")
                self._check_parent(parent_id, category.type)
                if self._is_ancestor(category.id, parent_id):
                    raise ValueError("Circular reference detected")
            category.parent_id = parent_id
        if "code" in changes:
            category.code = changes["code"]
        if "description" in changes:
            category.description = changes["description"]
        if changes.get("is_active") is not None:
            category.is_active = changes["is_active"]
        self.session.commit()
        self.session.refresh(category)
        return category

    def deactivate(self, category_id: int) -> None:
        category = self.get(category_id)
        transaction_count = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        )
        if int(transaction_count or 0) > 0:
            raise ConflictError("Cannot delete category with existing transactions")
        item_count = self.session.scalar(
            select(func.count(BudgetItem.id)).where(
                BudgetItem.category_id == category.id
            )
        )
        if int(item_count or 0) > 0:
            raise ConflictError("Cannot delete category with existing budget items")
        child_count = self.session.scalar(
            select(func.count(FinancialCategory.id)).where(
                FinancialCategory.parent_id == category.id,
                FinancialCategory.deleted_at.is_(None),
            )
        )
        if int(child_count or 0) > 0:
            raise ConflictError(
                "Cannot delete category with subcategories. Delete subcategories first."
            )
        category.is_active = False
        category.deleted_at = datetime.utcnow()
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _cash_account(self) -> FinancialAccount:
        code = get_settings().cash_account_code
        account = AccountService(self.session, self.user_id).get_by_code(code)
        if not account:
            raise ValueError("Cash account not found")
        return account

    def create(self, data: TransactionIn) -> Transaction:
        category = self._active_category(data.category_id, data.type)

        prefix = f"TRX-{date.today().year}-"
        txn = Transaction(
            transaction_no=_next_sequence_number(
                self.session, Transaction.transaction_no, prefix
            ),
            type=data.type,
            category_id=category.id,
            amount=data.amount,
            description=data.description.strip(),
            reference=data.reference,
            date=data.date,
            notes=data.notes,
            status=TransactionStatus.draft,
            created_by=self.user_id,
        )
        self.session.add(txn)
        self.session.flush()
        if data.post:
            self._post(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: no={txn.transaction_no} type={txn.type.value} "
            f"amount={txn.amount} status={txn.status.value}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category).joinedload(FinancialCategory.account),
                selectinload(Transaction.journal_entries)
                .selectinload(JournalEntry.lines)
                .joinedload(JournalEntryLine.account),
            )
            .where(Transaction.id == transaction_id)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list(self, query: TransactionQuery) -> dict[str, object]:
        conditions = []
        if query.type:
            conditions.append(Transaction.type == query.type)
        if query.category_id:
            conditions.append(Transaction.category_id == query.category_id)
        if query.status:
            conditions.append(Transaction.status == query.status)
        if query.date_from:
            conditions.append(Transaction.date >= query.date_from)
        if query.date_to:
            conditions.append(Transaction.date <= query.date_to)
        if query.search:
            like = f"%{query.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Transaction.description).like(like),
                    func.lower(Transaction.transaction_no).like(like),
                    func.lower(func.coalesce(Transaction.reference, "")).like(like),
                    func.lower(func.coalesce(Transaction.notes, "")).like(like),
                )
            )

        sort_column = {
            "date": Transaction.date,
            "amount": Transaction.amount,
            "createdAt": Transaction.created_at,
        }[query.sort_by]
        ordering = (
            (sort_column.asc(), Transaction.id.asc())
            if query.sort_order == "asc"
            else (sort_column.desc(), Transaction.id.desc())
        )
        offset = (query.page - 1) * query.limit
        items = self.session.scalars(
            select(Transaction)
            .options(
                joinedload(Transaction.category).joinedload(FinancialCategory.account)
            )
            .where(*conditions)
            .order_by(*ordering)
            .offset(offset)
            .limit(query.limit)
        ).all()
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*conditions)
            ).scalar_one()
            or 0
        )

        summary: dict[str, dict[str, int]] = {}
        summary_rows = self.session.execute(
            select(
                Transaction.type,
                Transaction.status,
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.amount), 0),
            )
            .where(*conditions)
            .group_by(Transaction.type, Transaction.status)
        )
        for txn_type, status, count, amount in summary_rows:
            key = txn_type.value.lower()
            if status != TransactionStatus.posted:
                key = f"{key}_{status.value.lower()}"
            summary[key] = {"count": int(count), "total": int(amount or 0)}

        return {"items": items, "total": total, "summary": summary}

    def _active_category(
        self, category_id: int, category_type: CategoryType
    ) -> FinancialCategory:
        category = self.session.scalar(
            select(FinancialCategory).where(
                FinancialCategory.id == category_id,
                FinancialCategory.type == category_type,
                FinancialCategory.is_active.is_(True),
                FinancialCategory.deleted_at.is_(None),
            )
        )
        if not category:
            raise NotFoundError("Category not found or inactive")
        return category

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        """Edit a draft. Posted and void transactions only change via void."""
        txn = self.get(transaction_id)
        if txn.status == TransactionStatus.posted:
            raise ConflictError("Cannot edit posted transactions")
        if txn.status == TransactionStatus.void:
            raise ConflictError("Cannot edit void transactions")

        if data.type is not None or data.category_id is not None:
            category = self._active_category(
                data.category_id or txn.category_id, data.type or txn.type
            )
            txn.category = category
            txn.type = category.type
        if data.amount is not None:
            txn.amount = data.amount
        if data.description is not None:
            txn.description = data.description.strip()
        if data.entry_date is not None:
            txn.date = data.entry_date
        if "reference" in data.model_fields_set:
            txn.reference = data.reference
        if "notes" in data.model_fields_set:
            txn.notes = data.notes
        self.session.commit()
        logger.info(f"transaction_updated: no={txn.transaction_no} amount={txn.amount}")
        return self.get(transaction_id)

    def post(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        if txn.status == TransactionStatus.posted:
            return txn
        if txn.status == TransactionStatus.void:
            raise ConflictError("Cannot post a void transaction")
        self._post(txn)
        self.session.commit()
        return self.get(transaction_id)

    def void(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        if txn.status == TransactionStatus.void:
            return txn
        if txn.status == TransactionStatus.posted:
            originals = [
                journal
                for journal in txn.journal_entries
                if journal.status == JournalStatus.posted
                and not journal.entry_no.startswith("JER-")
            ]
            for journal in originals:
                self._reverse(journal)
        txn.status = TransactionStatus.void
        self.session.commit()
        logger.info(f"transaction_voided: no={txn.transaction_no}")
        return self.get(transaction_id)

    def _post(self, txn: Transaction) -> JournalEntry:
        category = txn.category or self.session.get(FinancialCategory, txn.category_id)
        cash = self._cash_account()
        if txn.type in (CategoryType.income, CategoryType.donation):
            debit_account, credit_account = cash, category.account
        else:
            debit_account, credit_account = category.account, cash

        journal = JournalEntry(
            entry_no=_next_sequence_number(
                self.session, JournalEntry.entry_no, f"JE-{date.today().year}-"
            ),
            transaction=txn,
            description=txn.description,
            date=txn.date,
            reference=txn.reference or txn.transaction_no,
            total_debit=txn.amount,
            total_credit=txn.amount,
            status=JournalStatus.posted,
            created_by=self.user_id,
        )
        line_description = f"{txn.type.value}: {txn.description}"
        journal.lines = [
            JournalEntryLine(
                account_id=debit_account.id,
                debit_amount=txn.amount,
                credit_amount=0,
                description=line_description,
                line_order=1,
            ),
            JournalEntryLine(
                account_id=credit_account.id,
                debit_amount=0,
                credit_amount=txn.amount,
                description=line_description,
                line_order=2,
            ),
        ]
        self.session.add(journal)
        apply_to_balance(debit_account, txn.amount, 0)
        apply_to_balance(credit_account, 0, txn.amount)

        txn.status = TransactionStatus.posted
        txn.approved_by = self.user_id
        txn.approved_at = datetime.utcnow()
        self.session.flush()
        return journal

    def _reverse(self, original: JournalEntry) -> JournalEntry:
        reversal = JournalEntry(
            entry_no=_next_sequence_number(
                self.session, JournalEntry.entry_no, f"JER-{date.today().year}-"
            ),
            transaction=original.transaction,
            description=f"Reversal of {original.entry_no}: {original.description}",
            date=date.today(),
            reference=original.reference,
            total_debit=original.total_credit,
            total_credit=original.total_debit,
            status=JournalStatus.posted,
            created_by=self.user_id,
        )
        lines = []
        for index, line in enumerate(original.lines, start=1):
            lines.append(
                JournalEntryLine(
                    account_id=line.account_id,
                    debit_amount=line.credit_amount,
                    credit_amount=line.debit_amount,
                    description=f"Reversal: {line.description or ''}".strip(),
                    line_order=index,
                )
            )
            apply_to_balance(line.account, line.credit_amount, line.debit_amount)
        reversal.lines = lines
        self.session.add(reversal)

        original.status = JournalStatus.reversed
        original.reversed_at = datetime.utcnow()
        self.session.flush()
        return reversal


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, budget_id: int) -> Budget:
        stmt = (
            select(Budget)
            .options(
                selectinload(Budget.items)
                .joinedload(BudgetItem.category)
                .joinedload(FinancialCategory.account)
            )
            .where(Budget.id == budget_id, Budget.deleted_at.is_(None))
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _overlapping_active(
        self, budget_type: BudgetType, start: date, end: date, exclude_id=None
    ) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.type == budget_type,
            Budget.status == BudgetStatus.active,
            Budget.deleted_at.is_(None),
            Budget.start_date <= end,
            Budget.end_date >= start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalar(stmt.limit(1))

    def create(self, data: BudgetIn) -> Budget:
        if data.end_date <= data.start_date:
            raise ValueError("End date must be after start date")
        if self._overlapping_active(data.type, data.start_date, data.end_date):
            raise ConflictError("An active budget already exists for this period")
        self._check_items(data.items)

        budget = Budget(
            name=data.name.strip(),
            type=data.type,
            start_date=data.start_date,
            end_date=data.end_date,
            status=BudgetStatus.draft,
            total_budget=sum(item.budget_amount for item in data.items),
            description=data.description,
            created_by=self.user_id,
        )
        budget.items = [
            BudgetItem(
                category_id=item.category_id,
                budget_amount=item.budget_amount,
                notes=item.notes,
            )
            for item in data.items
        ]
        self.session.add(budget)
        self.session.commit()
        return self.get(budget.id)

    def list(self, query: BudgetQuery) -> dict[str, object]:
        conditions = [Budget.deleted_at.is_(None)]
        if query.type:
            conditions.append(Budget.type == query.type)
        if query.status:
            conditions.append(Budget.status == query.status)
        if query.year:
            bounds = year_bounds(query.year)
            conditions.append(Budget.start_date.between(bounds.start, bounds.end))

        offset = (query.page - 1) * query.limit
        stmt = (
            select(Budget)
            .where(*conditions)
            .order_by(Budget.start_date.desc(), Budget.created_at.desc(), Budget.id.desc())
            .offset(offset)
            .limit(query.limit)
        )
        if query.include_items:
            stmt = stmt.options(
                selectinload(Budget.items)
                .joinedload(BudgetItem.category)
                .joinedload(FinancialCategory.account)
            )
        budgets = self.session.scalars(stmt).all()
        total = int(
            self.session.execute(
                select(func.count(Budget.id)).where(*conditions)
            ).scalar_one()
            or 0
        )

        budget_ids = [b.id for b in budgets]
        item_counts: dict[int, int] = {}
        report_counts: dict[int, int] = {}
        if budget_ids:
            item_counts = {
                row[0]: int(row[1])
                for row in self.session.execute(
                    select(BudgetItem.budget_id, func.count(BudgetItem.id))
                    .where(BudgetItem.budget_id.in_(budget_ids))
                    .group_by(BudgetItem.budget_id)
                )
            }
            report_counts = {
                row[0]: int(row[1])
                for row in self.session.execute(
                    select(FinancialReport.budget_id, func.count(FinancialReport.id))
                    .where(
                        FinancialReport.budget_id.in_(budget_ids),
                        FinancialReport.deleted_at.is_(None),
                    )
                    .group_by(FinancialReport.budget_id)
                )
            }
        return {
            "items": budgets,
            "total": total,
            "item_counts": item_counts,
            "report_counts": report_counts,
        }

    def _check_items(self, items: list[BudgetItemIn]) -> None:
        category_ids = [item.category_id for item in items]
        if len(set(category_ids)) != len(category_ids):
            raise ValueError("Each category may appear only once in a budget")
        found = self.session.scalar(
            select(func.count(FinancialCategory.id)).where(
                FinancialCategory.id.in_(category_ids),
                FinancialCategory.is_active.is_(True),
                FinancialCategory.deleted_at.is_(None),
            )
        )
        if int(found or 0) != len(category_ids):
            raise NotFoundError("One or more categories not found or inactive")

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        budget_type = data.type or budget.type
        start = data.start_date or budget.start_date
        end = data.end_date or budget.end_date
        if end <= start:
            raise ValueError("End date must be after start date")
        if budget.status == BudgetStatus.active and self._overlapping_active(
            budget_type, start, end, exclude_id=budget.id
        ):
            raise ConflictError("An active budget already exists for this period")
        if data.items is not None:
            self._check_items(data.items)

        if data.name is not None:
            budget.name = data.name.strip()
        if "description" in data.model_fields_set:
            budget.description = data.description
        budget.type = budget_type
        budget.start_date = start
        budget.end_date = end
        if data.items is not None:
            budget.items.clear()
            self.session.flush()
            budget.items = [
                BudgetItem(
                    category_id=item.category_id,
                    budget_amount=item.budget_amount,
                    notes=item.notes,
                )
                for item in data.items
            ]
            budget.total_budget = sum(item.budget_amount for item in data.items)
        self.session.commit()
        logger.info(f"budget_updated: id={budget.id} total={budget.total_budget}")
        return self.get(budget_id)

    def set_status(self, budget_id: int, status: BudgetStatus) -> Budget:
        budget = self.get(budget_id)
        if status == BudgetStatus.active and budget.status != BudgetStatus.active:
            if self._overlapping_active(
                budget.type, budget.start_date, budget.end_date, exclude_id=budget.id
            ):
                raise ConflictError("An active budget already exists for this period")
        budget.status = status
        self.session.commit()
        return self.get(budget_id)

    def actuals(self, budget_id: int) -> list[dict[str, object]]:
        budget = self.get(budget_id)
        category_ids = [item.category_id for item in budget.items]
        actual_by_category: dict[int, int] = {}
        if category_ids:
            stmt = (
                select(
                    Transaction.category_id,
                    func.coalesce(func.sum(Transaction.amount), 0).label("actual"),
                )
                .where(
                    Transaction.status == TransactionStatus.posted,
                    Transaction.category_id.in_(category_ids),
                    Transaction.date.between(budget.start_date, budget.end_date),
                )
                .group_by(Transaction.category_id)
            )
            actual_by_category = {
                row.category_id: int(row.actual or 0)
                for row in self.session.execute(stmt)
            }

        rows: list[dict[str, object]] = []
        for item in budget.items:
            actual = actual_by_category.get(item.category_id, 0)
            percentage = (
                actual * 100 / item.budget_amount if item.budget_amount > 0 else 0.0
            )
            rows.append(
                {
                    "id": item.id,
                    "categoryId": item.category_id,
                    "budgetAmount": item.budget_amount,
                    "actualAmount": actual,
                    "variance": actual - item.budget_amount,
                    "percentage": percentage,
                }
            )
        return rows

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        if budget.status == BudgetStatus.active:
            raise ConflictError("Cannot delete active budget. Please close it first.")
        report_count = self.session.scalar(
            select(func.count(FinancialReport.id)).where(
                FinancialReport.budget_id == budget.id,
                FinancialReport.deleted_at.is_(None),
            )
        )
        if int(report_count or 0) > 0:
            raise ConflictError("Cannot delete budget with associated reports")
        budget.deleted_at = datetime.utcnow()
        self.session.commit()
