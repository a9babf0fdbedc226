import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import get_db
from models import TransactionType
from queries import Pagination, TransactionFilters
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    DashboardSummary,
    ErrorResponse,
    FieldErrorOut,
    PreferenceIn,
    PreferenceOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
)
from services import (
    BudgetService,
    CategoryService,
    DashboardService,
    DuplicateResourceError,
    NotFoundError,
    PreferenceService,
    TransactionService,
    ValidationFailure,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger API")

API_PREFIX = "/api/v1"
HTTP_ERROR_NAMES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "DUPLICATE",
}


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """User id set by the authenticating gateway in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from exc
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return user_id


def error_response(
    status: int,
    error: str,
    message: str,
    details: Optional[list[FieldErrorOut]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        timestamp=datetime.now(timezone.utc),
        status=status,
        error=error,
        message=message,
        details=details,
    )
    return JSONResponse(
        status_code=status, content=body.model_dump(mode="json", exclude_none=True)
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return error_response(404, "NOT_FOUND", str(exc))


@app.exception_handler(DuplicateResourceError)
async def duplicate_handler(request: Request, exc: DuplicateResourceError):
    return error_response(409, "DUPLICATE", str(exc))


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure):
    return error_response(400, "VALIDATION_ERROR", str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        FieldErrorOut(
            field=".".join(str(part) for part in err["loc"] if part != "body"),
            code=err["type"],
            message=err["msg"],
        )
        for err in exc.errors()
    ]
    return error_response(400, "VALIDATION_ERROR", "Validation failed", details)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    name = HTTP_ERROR_NAMES.get(exc.status_code, "ERROR")
    return error_response(exc.status_code, name, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


@app.get(f"{API_PREFIX}/dashboard/summary", response_model=DashboardSummary)
def dashboard_summary(
    month: int = Query(...),
    year: int = Query(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return DashboardService(db, user_id).summary(month, year)


@app.get(f"{API_PREFIX}/budgets", response_model=list[BudgetOut])
def list_budgets(
    month: int = Query(...),
    year: int = Query(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetService(db, user_id).list_with_progress(month, year)


@app.post(f"{API_PREFIX}/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    return service.with_progress(service.create(data))


@app.put(f"{API_PREFIX}/budgets/{{budget_id}}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    return service.with_progress(service.update(budget_id, data))


@app.delete(f"{API_PREFIX}/budgets/{{budget_id}}", status_code=204)
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    BudgetService(db, user_id).delete(budget_id)
    return Response(status_code=204)


@app.get(f"{API_PREFIX}/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[TransactionType] = Query(default=None),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).list_all(type)


@app.post(f"{API_PREFIX}/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).create(data)


@app.put(f"{API_PREFIX}/categories/{{category_id}}", response_model=CategoryOut)
def update_category(
    category_id: int,
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).update(category_id, data)


@app.delete(f"{API_PREFIX}/categories/{{category_id}}", status_code=204)
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, user_id).delete(category_id)
    return Response(status_code=204)


@app.get(f"{API_PREFIX}/transactions", response_model=TransactionPage)
def search_transactions(
    occurred_from: Optional[datetime] = Query(default=None, alias="from"),
    occurred_to: Optional[datetime] = Query(default=None, alias="to"),
    type: Optional[TransactionType] = Query(default=None),
    category_id: Optional[int] = Query(default=None),
    min_amount: Optional[Decimal] = Query(default=None),
    max_amount: Optional[Decimal] = Query(default=None),
    q: Optional[str] = Query(default=None),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=settings.page_size, ge=1),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        type=type,
        category_id=category_id,
        min_amount=min_amount,
        max_amount=max_amount,
        query=q,
    )
    return TransactionService(db, user_id).search(
        filters, Pagination(page=page, size=size)
    )


@app.get(f"{API_PREFIX}/transactions/{{transaction_id}}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).get(transaction_id)


@app.post(f"{API_PREFIX}/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).create(data)


@app.put(f"{API_PREFIX}/transactions/{{transaction_id}}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).update(transaction_id, data)


@app.delete(f"{API_PREFIX}/transactions/{{transaction_id}}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    TransactionService(db, user_id).delete(transaction_id)
    return Response(status_code=204)


@app.get(f"{API_PREFIX}/me/preferences", response_model=PreferenceOut)
def get_preferences(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PreferenceService(db, user_id).ensure()


@app.put(f"{API_PREFIX}/me/preferences", response_model=PreferenceOut)
def update_preferences(
    data: PreferenceIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PreferenceService(db, user_id).update(data)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
