import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import MAX_PAGE_SIZE, get_settings
from database import SessionLocal
from errors import (
    DuplicateName,
    Forbidden,
    InvalidCategory,
    InvalidName,
    LedgerError,
    NotDeletable,
    NotEditable,
    NotFound,
    PersistenceFailure,
    ValidationFailed,
)
from schemas import (
    CategoryIn,
    CategoryOut,
    DashboardSummary,
    TransactionIn,
    TransactionListOut,
    TransactionOut,
    TransactionUpdate,
)
from services import (
    AccountService,
    CategoryService,
    DashboardAggregator,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

ERROR_STATUS: dict[type[LedgerError], int] = {
    NotFound: 404,
    Forbidden: 403,
    NotEditable: 403,
    NotDeletable: 403,
    InvalidName: 400,
    ValidationFailed: 400,
    DuplicateName: 409,
    InvalidCategory: 422,
    PersistenceFailure: 500,
}


def http_error(exc: LedgerError) -> HTTPException:
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"request_failed: code={exc.code} error={exc}")
        return HTTPException(
            status_code=status_code,
            detail={"error": exc.code, "message": "An unexpected error occurred"},
        )
    return HTTPException(
        status_code=status_code, detail={"error": exc.code, "message": str(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"request_failed: method={request.method} path={request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "error": PersistenceFailure.code,
                "message": "An unexpected error occurred",
            }
        },
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: str = Header(..., min_length=1, max_length=36)) -> str:
    # authentication happens in front of this service; it forwards the owner id
    return x_user_id


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        categories = CategoryService(db, user_id).list()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return [CategoryOut.model_validate(category) for category in categories]


@app.get("/api/categories/counts", response_model=dict[str, int])
def category_transaction_counts(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        return CategoryService(db, user_id).transaction_counts()
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.patch("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions", response_model=TransactionListOut)
def list_transactions(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=2100),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        result = TransactionService(db, user_id).list(
            month, year, page=page, page_size=page_size
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    return TransactionListOut(
        transactions=[TransactionOut.model_validate(t) for t in result.transactions],
        pagination=result.pagination,
    )


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.patch("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/dashboard", response_model=DashboardSummary)
def dashboard(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=2100),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return DashboardAggregator(db, user_id).summarize(month, year)
    except LedgerError as exc:
        raise http_error(exc) from exc


@app.post("/api/account", response_model=CategoryOut, status_code=201)
def provision_account(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        fallback = AccountService(db, user_id).provision()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(fallback)


@app.delete("/api/account", status_code=204)
def delete_account(db: Session = Depends(get_db), user_id: str = Depends(get_user_id)):
    try:
        AccountService(db, user_id).delete_account()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
