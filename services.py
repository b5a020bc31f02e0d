from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import wraps
from typing import Callable, Optional, TypeVar

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from models import (
    DEFAULT_CATEGORY_ICON,
    AccountType,
    Category,
    Currency,
    PaymentMethod,
    PaymentMethodType,
    Transaction,
    TransactionType,
    User,
)
from schemas import (
    AccountTypeIn,
    CategoryIn,
    CategoryPatch,
    CurrencyIn,
    PaymentMethodIn,
    PaymentMethodPatch,
    TransactionIn,
    TransactionPatch,
    UserSyncIn,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Numeric(10, 2) holds values below this
AMOUNT_LIMIT = Decimal("100000000")
TRANSACTION_TYPE_MESSAGE = 'type must be either "income" or "expense"'
PAYMENT_METHOD_TYPE_MESSAGE = "type must be one of: cash, card, bank, digital, other"


class ValidationError(ValueError):
    pass


class NotFound(ValueError):
    pass


class InternalError(RuntimeError):
    pass


F = TypeVar("F", bound=Callable)


def storage_boundary(method: F) -> F:
    """Turn storage faults raised inside a service method into InternalError."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"storage_error: operation={method.__qualname__}")
            raise InternalError("Internal server error") from exc
        except Exception:
            # drop attribute changes made before a validation failure
            self.session.rollback()
            raise

    return wrapper  # type: ignore[return-value]


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value) -> Optional[Decimal]:
    """Decimal from a request field, or None when it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def resolve_user_id(session: Session, firebase_uid: Optional[str]) -> Optional[int]:
    """Map an identity-provider uid to the internal user id, or None."""
    if not firebase_uid:
        return None
    return session.scalar(select(User.id).where(User.firebase_uid == firebase_uid))


def _require_user_id(session: Session, firebase_uid: Optional[str]) -> int:
    user_id = resolve_user_id(session, firebase_uid)
    if user_id is None:
        raise NotFound("User not found")
    return user_id


def _transaction_type(value: str) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        raise ValidationError(TRANSACTION_TYPE_MESSAGE) from None


def _optional_transaction_type(value: Optional[str]) -> Optional[TransactionType]:
    if not value:
        return None
    try:
        return TransactionType(value)
    except ValueError:
        return None


def _payment_method_type(value: str) -> PaymentMethodType:
    try:
        return PaymentMethodType(value)
    except ValueError:
        raise ValidationError(PAYMENT_METHOD_TYPE_MESSAGE) from None


def _positive_amount(value) -> Decimal:
    amount = parse_amount(value)
    if amount is not None and abs(amount) < AMOUNT_LIMIT:
        amount = to_money(amount)
    if amount is None or amount <= 0:
        raise ValidationError("amount must be greater than 0")
    if amount >= AMOUNT_LIMIT:
        raise ValidationError(f"amount must be less than {AMOUNT_LIMIT}")
    return amount


@dataclass
class TransactionFilters:
    type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[int] = None


@dataclass(frozen=True)
class TypeTotals:
    total: Decimal
    count: int


@dataclass(frozen=True)
class Summary:
    income: TypeTotals
    expense: TypeTotals

    @property
    def balance(self) -> Decimal:
        return self.income.total - self.expense.total


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @storage_boundary
    def sync(self, data: UserSyncIn) -> tuple[User, bool]:
        """Create or refresh the user behind an identity-provider account.

        Returns the stored user and whether it was newly created.
        """
        if not data.firebase_uid or not data.email:
            raise ValidationError("firebase_uid and email are required")

        user = self.session.scalar(
            select(User).where(User.firebase_uid == data.firebase_uid)
        )
        created = user is None
        if created:
            user = User(firebase_uid=data.firebase_uid)
            self.session.add(user)
        user.email = data.email
        user.display_name = data.display_name or None
        user.photo_url = data.photo_url or None
        user.email_verified = bool(data.email_verified)
        user.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_synced: id={user.id} created={created}")
        return user, created

    @storage_boundary
    def get_by_firebase_uid(self, firebase_uid: str) -> User:
        if not firebase_uid:
            raise ValidationError("firebase_uid is required")
        user = self.session.scalar(
            select(User).where(User.firebase_uid == firebase_uid)
        )
        if not user:
            raise NotFound("User not found")
        return user

    @storage_boundary
    def get_by_email(self, email: str) -> User:
        if not email:
            raise ValidationError("email is required")
        user = self.session.scalar(
            select(User).where(User.email == email).order_by(User.id).limit(1)
        )
        if not user:
            raise NotFound("User not found")
        return user

    @storage_boundary
    def list_all(self) -> list[User]:
        stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
        return self.session.scalars(stmt).all()


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    @storage_boundary
    def create(self, data: CategoryIn) -> Category:
        name = (data.name or "").strip()
        if not name or not data.type:
            raise ValidationError("name and type are required")
        category_type = _transaction_type(data.type)

        # an unknown owner yields a shared category
        user_id = resolve_user_id(self.session, data.firebase_uid)
        category = Category(
            user_id=user_id,
            name=name,
            type=category_type,
            icon=DEFAULT_CATEGORY_ICON,
            color=None,
            description=data.description or None,
            is_default=bool(data.is_default),
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id} user_id={user_id}")
        return category

    @storage_boundary
    def list_visible(
        self, firebase_uid: Optional[str], type: Optional[str] = None
    ) -> list[Category]:
        if not firebase_uid:
            raise ValidationError("firebase_uid is required")
        user_id = resolve_user_id(self.session, firebase_uid)

        stmt = select(Category)
        if user_id is not None:
            stmt = stmt.where(
                or_(Category.user_id == user_id, Category.user_id.is_(None))
            )
        else:
            stmt = stmt.where(Category.user_id.is_(None))
        category_type = _optional_transaction_type(type)
        if category_type:
            stmt = stmt.where(Category.type == category_type)
        stmt = stmt.order_by(
            Category.is_default.desc(), Category.name.asc(), Category.id.asc()
        )
        return self.session.scalars(stmt).all()

    @storage_boundary
    def get(self, category_id: int) -> Category:
        return self._get(category_id)

    @storage_boundary
    def update(self, category_id: int, patch: CategoryPatch) -> Category:
        category = self._get(category_id)
        changes = patch.changes()

        if changes.get("name"):
            category.name = changes["name"].strip() or category.name
        if changes.get("type"):
            category.type = _transaction_type(changes["type"])
        for field in ("icon", "color", "description"):
            if field in changes:
                setattr(category, field, changes[field])
        if "is_default" in changes:
            category.is_default = bool(changes["is_default"])
        category.updated_at = datetime.utcnow()

        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_updated: id={category.id} fields={sorted(changes)}")
        return category

    @storage_boundary
    def delete(self, category_id: int) -> None:
        category = self._get(category_id)
        self.session.delete(category)
        self.session.commit()
        # transactions pointing at it were cleared by the foreign key
        self.session.expire_all()
        logger.info(f"category_deleted: id={category_id}")


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _select(self):
        return select(Transaction).options(joinedload(Transaction.category))

    def _load_owned(self, transaction_id: int, user_id: Optional[int]) -> Transaction:
        stmt = (
            self._select()
            .where(Transaction.id == transaction_id, Transaction.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _check_category(self, category_id: int, user_id: int) -> None:
        category = self.session.get(Category, category_id)
        if not category or category.user_id not in (None, user_id):
            raise NotFound("Category not found")

    @storage_boundary
    def create(self, data: TransactionIn) -> Transaction:
        if data.amount is None or not data.type or data.transaction_date is None:
            raise ValidationError("amount, type, and transaction_date are required")
        txn_type = _transaction_type(data.type)
        amount = _positive_amount(data.amount)
        user_id = _require_user_id(self.session, data.firebase_uid)
        if data.category_id is not None:
            self._check_category(data.category_id, user_id)

        txn = Transaction(
            user_id=user_id,
            category_id=data.category_id,
            amount=amount,
            type=txn_type,
            description=data.description,
            transaction_date=data.transaction_date,
        )
        self.session.add(txn)
        self.session.commit()
        logger.info(
            f"transaction_created: id={txn.id} user_id={user_id} type={txn_type.value}"
        )
        return self._load_owned(txn.id, user_id)

    @storage_boundary
    def list(
        self, firebase_uid: Optional[str], filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        user_id = _require_user_id(self.session, firebase_uid)

        stmt = self._select().where(Transaction.user_id == user_id)
        txn_type = _optional_transaction_type(filters.type)
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        if filters.start_date:
            stmt = stmt.where(Transaction.transaction_date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Transaction.transaction_date <= filters.end_date)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        stmt = stmt.order_by(
            Transaction.transaction_date.desc(),
            Transaction.created_at.desc(),
            Transaction.id.desc(),
        )
        return self.session.scalars(stmt).all()

    @storage_boundary
    def get(self, transaction_id: int, firebase_uid: Optional[str]) -> Transaction:
        user_id = resolve_user_id(self.session, firebase_uid)
        return self._load_owned(transaction_id, user_id)

    @storage_boundary
    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        user_id = resolve_user_id(self.session, patch.firebase_uid)
        txn = self._load_owned(transaction_id, user_id)
        changes = patch.changes()

        if "amount" in changes:
            txn.amount = _positive_amount(changes["amount"])
        if changes.get("type"):
            txn.type = _transaction_type(changes["type"])
        if "category_id" in changes:
            category_id = changes["category_id"]
            if category_id is not None:
                self._check_category(category_id, txn.user_id)
            txn.category_id = category_id
        if "description" in changes:
            txn.description = changes["description"]
        if changes.get("transaction_date"):
            txn.transaction_date = changes["transaction_date"]
        txn.updated_at = datetime.utcnow()

        self.session.commit()
        logger.info(f"transaction_updated: id={txn.id} fields={sorted(changes)}")
        return self._load_owned(txn.id, txn.user_id)

    @storage_boundary
    def delete(self, transaction_id: int, firebase_uid: Optional[str]) -> None:
        user_id = resolve_user_id(self.session, firebase_uid)
        txn = self._load_owned(transaction_id, user_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id} user_id={user_id}")


class SummaryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @storage_boundary
    def summarize(
        self,
        firebase_uid: Optional[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Summary:
        """Income and expense totals for one user, grouped by transaction type.

        Grouping uses the transaction's own type, so a transaction filed
        under a category of the other type still counts on its own side.
        """
        user_id = _require_user_id(self.session, firebase_uid)

        stmt = select(
            Transaction.type,
            func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            func.count(Transaction.id).label("count"),
        ).where(Transaction.user_id == user_id)
        if start_date:
            stmt = stmt.where(Transaction.transaction_date >= start_date)
        if end_date:
            stmt = stmt.where(Transaction.transaction_date <= end_date)
        stmt = stmt.group_by(Transaction.type)

        totals = {
            TransactionType(row.type): TypeTotals(
                total=to_money(row.total), count=int(row.count)
            )
            for row in self.session.execute(stmt)
        }
        empty = TypeTotals(total=to_money(0), count=0)
        return Summary(
            income=totals.get(TransactionType.income, empty),
            expense=totals.get(TransactionType.expense, empty),
        )


class PaymentMethodService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, payment_method_id: int) -> PaymentMethod:
        payment_method = self.session.get(PaymentMethod, payment_method_id)
        if not payment_method:
            raise NotFound("Payment method not found")
        return payment_method

    @storage_boundary
    def create(self, data: PaymentMethodIn) -> PaymentMethod:
        name = (data.name or "").strip()
        if not name or not data.type:
            raise ValidationError("name and type are required")
        method_type = _payment_method_type(data.type)
        user_id = resolve_user_id(self.session, data.firebase_uid)

        payment_method = PaymentMethod(
            user_id=user_id,
            name=name,
            type=method_type,
            icon=data.icon or None,
            description=data.description or None,
            is_default=bool(data.is_default),
        )
        self.session.add(payment_method)
        self.session.commit()
        self.session.refresh(payment_method)
        logger.info(
            f"payment_method_created: id={payment_method.id} user_id={user_id}"
        )
        return payment_method

    @storage_boundary
    def list_for_user(self, firebase_uid: Optional[str]) -> list[PaymentMethod]:
        user_id = resolve_user_id(self.session, firebase_uid)
        if user_id is None:
            return []
        stmt = (
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.name.asc())
        )
        return self.session.scalars(stmt).all()

    @storage_boundary
    def get(self, payment_method_id: int) -> PaymentMethod:
        return self._get(payment_method_id)

    @storage_boundary
    def update(
        self, payment_method_id: int, patch: PaymentMethodPatch
    ) -> PaymentMethod:
        payment_method = self._get(payment_method_id)
        changes = patch.changes()

        if changes.get("name"):
            payment_method.name = changes["name"].strip() or payment_method.name
        if changes.get("type"):
            payment_method.type = _payment_method_type(changes["type"])
        for field in ("icon", "description"):
            if field in changes:
                setattr(payment_method, field, changes[field])
        if "is_default" in changes:
            payment_method.is_default = bool(changes["is_default"])
        payment_method.updated_at = datetime.utcnow()

        self.session.commit()
        self.session.refresh(payment_method)
        return payment_method

    @storage_boundary
    def delete(self, payment_method_id: int) -> None:
        payment_method = self._get(payment_method_id)
        self.session.delete(payment_method)
        self.session.commit()
        logger.info(f"payment_method_deleted: id={payment_method_id}")


class CurrencyService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @storage_boundary
    def list_all(self) -> list[Currency]:
        stmt = select(Currency).order_by(Currency.is_default.desc(), Currency.code)
        return self.session.scalars(stmt).all()

    @storage_boundary
    def get_by_code(self, code: str) -> Currency:
        currency = self.session.scalar(
            select(Currency).where(Currency.code == code.strip().upper())
        )
        if not currency:
            raise NotFound("Currency not found")
        return currency

    @storage_boundary
    def create(self, data: CurrencyIn) -> Currency:
        code = (data.code or "").strip().upper()
        name = (data.name or "").strip()
        if not code or not name:
            raise ValidationError("code and name are required")
        if self.session.scalar(select(Currency.id).where(Currency.code == code)):
            raise ValidationError(f"Currency {code} already exists")

        if data.is_default:
            self.session.execute(
                update(Currency)
                .where(Currency.is_default.is_(True))
                .values(is_default=False)
            )
        currency = Currency(
            code=code,
            name=name,
            symbol=data.symbol or None,
            is_default=bool(data.is_default),
        )
        self.session.add(currency)
        self.session.commit()
        self.session.expire_all()
        logger.info(f"currency_created: code={code} default={currency.is_default}")
        return self.get_by_code(code)


class AccountTypeService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @storage_boundary
    def list_all(self) -> list[AccountType]:
        stmt = select(AccountType).order_by(AccountType.name.asc(), AccountType.id)
        return self.session.scalars(stmt).all()

    @storage_boundary
    def get(self, account_type_id: int) -> AccountType:
        account_type = self.session.get(AccountType, account_type_id)
        if not account_type:
            raise NotFound("Account type not found")
        return account_type

    @storage_boundary
    def create(self, data: AccountTypeIn) -> AccountType:
        name = (data.name or "").strip()
        if not name:
            raise ValidationError("name is required")
        account_type = AccountType(
            name=name,
            description=data.description or None,
            icon=data.icon or None,
        )
        self.session.add(account_type)
        self.session.commit()
        self.session.refresh(account_type)
        return account_type
