import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from models import AccountType, TransactionType
from periods import SummaryView
from projection import Granularity
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    CategoryIn,
    CategoryOut,
    ProjectionOut,
    ProjectionQuery,
    SummaryOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountNotFound,
    AccountService,
    CategoryService,
    ProjectionService,
    SummaryService,
    TransactionFilters,
    TransactionNotFound,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledgercast")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    db = SessionLocal()
    try:
        cash = AccountService(db).ensure_cash_account()
        logger.info(f"startup: cash_account={cash.id}")
    finally:
        db.close()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, (AccountNotFound, TransactionNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(
    account_type: Optional[AccountType] = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
):
    return AccountService(db).list_all(account_type)


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        return AccountService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/accounts/{account_id}", response_model=AccountOut)
def get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return AccountService(db).get(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/accounts/{account_id}", response_model=AccountOut)
def update_account(account_id: int, data: AccountIn, db: Session = Depends(get_db)):
    try:
        return AccountService(db).update(account_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/transactions")
def list_transactions(
    account_id: Optional[int] = Query(default=None, alias="accountId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    txn_type: Optional[TransactionType] = Query(default=None, alias="type"),
    category: Optional[str] = None,
    is_recurring: Optional[bool] = Query(default=None, alias="isRecurring"),
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "date",
    order: str = "desc",
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        type=txn_type,
        category=category,
        is_recurring=is_recurring,
        search=search,
    )
    result = TransactionService(db).list(
        filters, page=page, limit=limit, sort=sort, order=order
    )
    return {
        "items": [
            TransactionOut.model_validate(txn).model_dump(mode="json")
            for txn in result.items
        ],
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
        "total_pages": result.total_pages,
    }


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).get(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        return TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/projections", response_model=ProjectionOut)
def get_projection(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    granularity: Granularity = Granularity.daily,
    account_id: Optional[int] = Query(default=None, alias="accountId"),
    db: Session = Depends(get_db),
):
    try:
        query = ProjectionQuery(
            start_date=start_date,
            end_date=end_date,
            granularity=granularity,
            account_id=account_id,
        )
        return ProjectionOut.model_validate(ProjectionService(db).project(query))
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/summary", response_model=SummaryOut)
def get_summary(
    view: SummaryView = SummaryView.monthly,
    anchor: Optional[date] = Query(default=None, alias="date"),
    account_id: Optional[int] = Query(default=None, alias="accountId"),
    db: Session = Depends(get_db),
):
    try:
        result = SummaryService(db).summarize(view, anchor, account_id)
        return SummaryOut.model_validate(result)
    except ValueError as exc:
        raise _http_error(exc) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
