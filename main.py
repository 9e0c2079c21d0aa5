import logging
from typing import Optional, Type, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal, dispose_engine
from models import Budget, CategoryType, FinancialAccount, FinancialCategory, Transaction
from reporting import ReportService, account_to_dict, report_to_dict
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetQuery,
    BudgetStatusIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    ReportQuery,
    ReportRequest,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    ConflictError,
    NotFoundError,
    TransactionService,
    total_pages,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Sekolah Finance")

QueryModel = TypeVar("QueryModel", bound=BaseModel)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    dispose_engine()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {key: value for key, value in error.items() if key not in ("ctx", "url")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": jsonable_encoder(details)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def query_from_request(request: Request, model: Type[QueryModel]) -> QueryModel:
    try:
        return model.model_validate(dict(request.query_params))
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


def category_to_dict(
    category: FinancialCategory, transaction_count: Optional[int] = None
) -> dict:
    data = {
        "id": category.id,
        "name": category.name,
        "code": category.code,
        "type": category.type.value,
        "accountId": category.account_id,
        "parentId": category.parent_id,
        "description": category.description,
        "isActive": category.is_active,
        "account": account_to_dict(category.account),
    }
    if transaction_count is not None:
        data["transactionCount"] = transaction_count
    return data


def transaction_to_dict(txn: Transaction, include_journals: bool = False) -> dict:
    data = {
        "id": txn.id,
        "transactionNo": txn.transaction_no,
        "type": txn.type.value,
        "categoryId": txn.category_id,
        "category": {
            "id": txn.category.id,
            "name": txn.category.name,
            "type": txn.category.type.value,
            "account": account_to_dict(txn.category.account),
        }
        if txn.category
        else None,
        "amount": txn.amount,
        "description": txn.description,
        "reference": txn.reference,
        "date": txn.date.isoformat(),
        "status": txn.status.value,
        "notes": txn.notes,
        "createdBy": txn.created_by,
        "approvedBy": txn.approved_by,
        "approvedAt": txn.approved_at.isoformat() if txn.approved_at else None,
    }
    if include_journals:
        data["journalEntries"] = [
            {
                "id": journal.id,
                "entryNo": journal.entry_no,
                "date": journal.date.isoformat(),
                "description": journal.description,
                "totalDebit": journal.total_debit,
                "totalCredit": journal.total_credit,
                "status": journal.status.value,
                "lines": [
                    {
                        "accountId": line.account_id,
                        "accountCode": line.account.code,
                        "debitAmount": line.debit_amount,
                        "creditAmount": line.credit_amount,
                        "description": line.description,
                    }
                    for line in journal.lines
                ],
            }
            for journal in txn.journal_entries
        ]
    return data


def budget_to_dict(
    budget: Budget,
    include_items: bool = True,
    item_count: Optional[int] = None,
    report_count: Optional[int] = None,
) -> dict:
    data = {
        "id": budget.id,
        "name": budget.name,
        "type": budget.type.value,
        "startDate": budget.start_date.isoformat(),
        "endDate": budget.end_date.isoformat(),
        "status": budget.status.value,
        "totalBudget": budget.total_budget,
        "description": budget.description,
        "createdBy": budget.created_by,
    }
    if include_items:
        data["items"] = [
            {
                "id": item.id,
                "categoryId": item.category_id,
                "category": {
                    "id": item.category.id,
                    "name": item.category.name,
                    "type": item.category.type.value,
                },
                "budgetAmount": item.budget_amount,
                "notes": item.notes,
            }
            for item in budget.items
        ]
    if item_count is not None:
        data["itemCount"] = item_count
    if report_count is not None:
        data["reportCount"] = report_count
    return data


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/finance/accounts")
def list_accounts(request: Request, db: Session = Depends(get_db)):
    include_inactive = request.query_params.get("includeInactive") in ("1", "true")
    accounts: list[FinancialAccount] = AccountService(db).list_all(include_inactive)
    return {"accounts": [account_to_dict(account) for account in accounts]}


@app.post("/api/finance/accounts", status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"account": account_to_dict(account)}


@app.get("/api/finance/categories")
def list_categories(request: Request, db: Session = Depends(get_db)):
    type_param = request.query_params.get("type")
    active_param = request.query_params.get("isActive")
    try:
        category_type = CategoryType(type_param) if type_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid category type") from exc
    is_active = None if active_param is None else active_param in ("1", "true")

    service = CategoryService(db)
    categories = service.list_all(category_type, is_active)
    counts = service.transaction_counts([c.id for c in categories])
    return {
        "categories": [
            category_to_dict(category, counts.get(category.id, 0))
            for category in categories
        ]
    }


@app.post("/api/finance/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"category": category_to_dict(category)}


@app.get("/api/finance/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    service = CategoryService(db)
    try:
        category = service.get(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    count = service.transaction_counts([category.id]).get(category.id, 0)
    return {"category": category_to_dict(category, count)}


@app.put("/api/finance/categories/{category_id}")
def update_category(
    category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"category": category_to_dict(category)}


@app.delete("/api/finance/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).deactivate(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/finance/transactions")
def list_transactions(request: Request, db: Session = Depends(get_db)):
    query = query_from_request(request, TransactionQuery)
    result = TransactionService(db).list(query)
    return {
        "transactions": [transaction_to_dict(txn) for txn in result["items"]],
        "pagination": {
            "page": query.page,
            "limit": query.limit,
            "total": result["total"],
            "totalPages": total_pages(result["total"], query.limit),
        },
        "summary": result["summary"],
    }


@app.post("/api/finance/transactions", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    service = TransactionService(db)
    try:
        txn = service.create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transaction": transaction_to_dict(service.get(txn.id), True)}


@app.get("/api/finance/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transaction": transaction_to_dict(txn, True)}


@app.put("/api/finance/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, payload: TransactionUpdate, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transaction": transaction_to_dict(txn, True)}


@app.post("/api/finance/transactions/{transaction_id}/post")
def post_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).post(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transaction": transaction_to_dict(txn, True)}


@app.post("/api/finance/transactions/{transaction_id}/void")
def void_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).void(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transaction": transaction_to_dict(txn, True)}


@app.get("/api/finance/budgets")
def list_budgets(request: Request, db: Session = Depends(get_db)):
    query = query_from_request(request, BudgetQuery)
    result = BudgetService(db).list(query)
    return {
        "budgets": [
            budget_to_dict(
                budget,
                include_items=query.include_items,
                item_count=result["item_counts"].get(budget.id, 0),
                report_count=result["report_counts"].get(budget.id, 0),
            )
            for budget in result["items"]
        ],
        "pagination": {
            "page": query.page,
            "limit": query.limit,
            "total": result["total"],
            "totalPages": total_pages(result["total"], query.limit),
        },
    }


@app.post("/api/finance/budgets", status_code=201)
def create_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"budget": budget_to_dict(budget)}


@app.get("/api/finance/budgets/{budget_id}")
def get_budget(budget_id: int, request: Request, db: Session = Depends(get_db)):
    include_actuals = request.query_params.get("includeActuals") in ("1", "true")
    service = BudgetService(db)
    try:
        budget = service.get(budget_id)
        actuals = service.actuals(budget_id) if include_actuals else None
    except ValueError as exc:
        raise http_error(exc) from exc
    data = budget_to_dict(budget)
    if actuals is not None:
        data["actuals"] = actuals
    return {"budget": data}


@app.put("/api/finance/budgets/{budget_id}")
def update_budget(budget_id: int, payload: BudgetUpdate, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).update(budget_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"budget": budget_to_dict(budget)}


@app.patch("/api/finance/budgets/{budget_id}/status")
def update_budget_status(
    budget_id: int, payload: BudgetStatusIn, db: Session = Depends(get_db)
):
    try:
        budget = BudgetService(db).set_status(budget_id, payload.status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"budget": budget_to_dict(budget)}


@app.delete("/api/finance/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/finance/reports")
def list_reports(request: Request, db: Session = Depends(get_db)):
    query = query_from_request(request, ReportQuery)
    return ReportService(db).list(query)


@app.post("/api/finance/reports", status_code=201)
def generate_report(payload: ReportRequest, db: Session = Depends(get_db)):
    try:
        report = ReportService(db).generate(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"report": report_to_dict(report)}


@app.get("/api/finance/reports/{report_id}")
def get_report(report_id: int, db: Session = Depends(get_db)):
    try:
        report = ReportService(db).get(report_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"report": report_to_dict(report)}


@app.delete("/api/finance/reports/{report_id}", status_code=204)
def delete_report(report_id: int, db: Session = Depends(get_db)):
    try:
        ReportService(db).delete(report_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
