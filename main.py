import logging
import tomllib
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import Database
from schemas import (
    AccountTypeIn,
    AccountTypeOut,
    CategoryIn,
    CategoryOut,
    CategoryPatch,
    CurrencyIn,
    CurrencyOut,
    PaymentMethodIn,
    PaymentMethodOut,
    PaymentMethodPatch,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    UserListItem,
    UserOut,
    UserSyncIn,
)
from services import (
    AccountTypeService,
    CategoryService,
    CurrencyService,
    InternalError,
    NotFound,
    PaymentMethodService,
    SummaryService,
    TransactionFilters,
    TransactionService,
    UserService,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def dump(schema: type[BaseModel], obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def dump_all(schema: type[BaseModel], items) -> list[dict]:
    return [dump(schema, item) for item in items]


def error_body(message: str, error: Optional[str] = None) -> dict[str, object]:
    body: dict[str, object] = {"success": False, "message": message}
    if error:
        body["error"] = error
    return body


# Routes


root_router = APIRouter()
users = APIRouter(prefix="/users", tags=["users"])
categories = APIRouter(prefix="/categories", tags=["categories"])
transactions = APIRouter(prefix="/transactions", tags=["transactions"])
payment_methods = APIRouter(prefix="/payment-methods", tags=["payment-methods"])
currencies = APIRouter(prefix="/currencies", tags=["currencies"])
account_types = APIRouter(prefix="/account-types", tags=["account-types"])


@root_router.get("/")
def index():
    return {
        "message": "Finance Tracker API",
        "version": APP_VERSION,
        "endpoints": {
            "users": "/api/users",
            "categories": "/api/categories",
            "transactions": "/api/transactions",
            "payment_methods": "/api/payment-methods",
            "currencies": "/api/currencies",
            "account_types": "/api/account-types",
        },
    }


@root_router.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.exception("health_check_failed")
        raise InternalError("Database unavailable") from exc
    return {"success": True, "database": "ok"}


@users.post("/sync")
def sync_user(data: UserSyncIn, response: Response, db: Session = Depends(get_db)):
    user, created = UserService(db).sync(data)
    response.status_code = 201 if created else 200
    return {
        "success": True,
        "message": "User created successfully"
        if created
        else "User updated successfully",
        "user": dump(UserOut, user),
    }


@users.get("/all")
def list_users(db: Session = Depends(get_db)):
    items = UserService(db).list_all()
    return {"success": True, "count": len(items), "users": dump_all(UserListItem, items)}


@users.get("/firebase/{firebase_uid}")
def get_user_by_firebase_uid(firebase_uid: str, db: Session = Depends(get_db)):
    user = UserService(db).get_by_firebase_uid(firebase_uid)
    return {"success": True, "user": dump(UserOut, user)}


@users.get("/email/{email}")
def get_user_by_email(email: str, db: Session = Depends(get_db)):
    user = UserService(db).get_by_email(email)
    return {"success": True, "user": dump(UserOut, user)}


@categories.post("", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    category = CategoryService(db).create(data)
    return {
        "success": True,
        "message": "Category created successfully",
        "category": dump(CategoryOut, category),
    }


@categories.get("")
def list_categories(
    firebase_uid: Optional[str] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    items = CategoryService(db).list_visible(firebase_uid, type)
    return {
        "success": True,
        "count": len(items),
        "categories": dump_all(CategoryOut, items),
    }


@categories.get("/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    category = CategoryService(db).get(category_id)
    return {"success": True, "category": dump(CategoryOut, category)}


@categories.put("/{category_id}")
def update_category(
    category_id: int, patch: CategoryPatch, db: Session = Depends(get_db)
):
    category = CategoryService(db).update(category_id, patch)
    return {
        "success": True,
        "message": "Category updated successfully",
        "category": dump(CategoryOut, category),
    }


@categories.delete("/{category_id}")
def delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return {"success": True, "message": "Category deleted successfully"}


@transactions.post("", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    txn = TransactionService(db).create(data)
    return {
        "success": True,
        "message": "Transaction created successfully",
        "transaction": dump(TransactionOut, txn),
    }


@transactions.get("")
def list_transactions(
    firebase_uid: Optional[str] = None,
    type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        type=type, start_date=start_date, end_date=end_date, category_id=category_id
    )
    items = TransactionService(db).list(firebase_uid, filters)
    return {
        "success": True,
        "count": len(items),
        "transactions": dump_all(TransactionOut, items),
    }


@transactions.get("/summary")
def transaction_summary(
    firebase_uid: Optional[str] = None,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    summary = SummaryService(db).summarize(firebase_uid, start_date, end_date)
    return {"success": True, "summary": dump(SummaryOut, summary)}


@transactions.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    firebase_uid: Optional[str] = None,
    db: Session = Depends(get_db),
):
    txn = TransactionService(db).get(transaction_id, firebase_uid)
    return {"success": True, "transaction": dump(TransactionOut, txn)}


@transactions.put("/{transaction_id}")
def update_transaction(
    transaction_id: int, patch: TransactionPatch, db: Session = Depends(get_db)
):
    txn = TransactionService(db).update(transaction_id, patch)
    return {
        "success": True,
        "message": "Transaction updated successfully",
        "transaction": dump(TransactionOut, txn),
    }


@transactions.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    firebase_uid: Optional[str] = None,
    db: Session = Depends(get_db),
):
    TransactionService(db).delete(transaction_id, firebase_uid)
    return {"success": True, "message": "Transaction deleted successfully"}


@payment_methods.post("", status_code=201)
def create_payment_method(data: PaymentMethodIn, db: Session = Depends(get_db)):
    payment_method = PaymentMethodService(db).create(data)
    return {
        "success": True,
        "message": "Payment method created successfully",
        "paymentMethod": dump(PaymentMethodOut, payment_method),
    }


@payment_methods.get("")
def list_payment_methods(
    firebase_uid: Optional[str] = None, db: Session = Depends(get_db)
):
    items = PaymentMethodService(db).list_for_user(firebase_uid)
    return {
        "success": True,
        "count": len(items),
        "paymentMethods": dump_all(PaymentMethodOut, items),
    }


@payment_methods.get("/{payment_method_id}")
def get_payment_method(payment_method_id: int, db: Session = Depends(get_db)):
    payment_method = PaymentMethodService(db).get(payment_method_id)
    return {"success": True, "paymentMethod": dump(PaymentMethodOut, payment_method)}


@payment_methods.put("/{payment_method_id}")
def update_payment_method(
    payment_method_id: int, patch: PaymentMethodPatch, db: Session = Depends(get_db)
):
    payment_method = PaymentMethodService(db).update(payment_method_id, patch)
    return {
        "success": True,
        "message": "Payment method updated successfully",
        "paymentMethod": dump(PaymentMethodOut, payment_method),
    }


@payment_methods.delete("/{payment_method_id}")
def delete_payment_method(payment_method_id: int, db: Session = Depends(get_db)):
    PaymentMethodService(db).delete(payment_method_id)
    return {"success": True, "message": "Payment method deleted successfully"}


@currencies.get("")
def list_currencies(db: Session = Depends(get_db)):
    items = CurrencyService(db).list_all()
    return {
        "success": True,
        "count": len(items),
        "currencies": dump_all(CurrencyOut, items),
    }


@currencies.get("/code/{code}")
def get_currency(code: str, db: Session = Depends(get_db)):
    currency = CurrencyService(db).get_by_code(code)
    return {"success": True, "currency": dump(CurrencyOut, currency)}


@currencies.post("", status_code=201)
def create_currency(data: CurrencyIn, db: Session = Depends(get_db)):
    currency = CurrencyService(db).create(data)
    return {
        "success": True,
        "message": "Currency created successfully",
        "currency": dump(CurrencyOut, currency),
    }


@account_types.get("")
def list_account_types(db: Session = Depends(get_db)):
    items = AccountTypeService(db).list_all()
    return {
        "success": True,
        "count": len(items),
        "accountTypes": dump_all(AccountTypeOut, items),
    }


@account_types.get("/{account_type_id}")
def get_account_type(account_type_id: int, db: Session = Depends(get_db)):
    account_type = AccountTypeService(db).get(account_type_id)
    return {"success": True, "accountType": dump(AccountTypeOut, account_type)}


@account_types.post("", status_code=201)
def create_account_type(data: AccountTypeIn, db: Session = Depends(get_db)):
    account_type = AccountTypeService(db).create(data)
    return {
        "success": True,
        "message": "Account type created successfully",
        "accountType": dump(AccountTypeOut, account_type),
    }


# Error handling


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content=error_body(str(exc)))

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content=error_body(str(exc)))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = exc.errors()
        fields = [
            str(err["loc"][-1]) for err in errors if err.get("loc") and len(err["loc"]) > 1
        ]
        message = "Invalid request"
        if fields:
            message = f"Invalid value for {', '.join(dict.fromkeys(fields))}"
        detail = "; ".join(err.get("msg", "") for err in errors)
        return JSONResponse(status_code=400, content=error_body(message, detail))

    @app.exception_handler(InternalError)
    async def internal_error_handler(request: Request, exc: InternalError):
        cause = exc.__cause__
        detail = str(cause) if settings.expose_errors and cause else None
        return JSONResponse(status_code=500, content=error_body(str(exc), detail))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"unhandled_error: path={request.url.path}")
        detail = str(exc) if settings.expose_errors else None
        return JSONResponse(
            status_code=500, content=error_body("Internal server error", detail)
        )


def create_app(
    settings: Optional[Settings] = None, database: Optional[Database] = None
) -> FastAPI:
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init()
        try:
            yield
        finally:
            database.close_all()

    app = FastAPI(title="Finance Tracker API", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Origin",
            "X-Requested-With",
            "Content-Type",
            "Accept",
            "Authorization",
        ],
    )
    _install_error_handlers(app, settings)

    app.include_router(root_router)
    for router in (
        users,
        categories,
        transactions,
        payment_methods,
        currencies,
        account_types,
    ):
        app.include_router(router, prefix="/api")
    return app


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
