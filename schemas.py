from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from models import PaymentMethodType, TransactionType


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class PatchModel(BaseModel):
    """Partial update body.

    Only the fields present in the request end up in ``changes()``; a field
    sent as ``null`` is present with the value ``None``, a field left out is
    absent.
    """

    model_config = ConfigDict(extra="ignore")

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"firebase_uid"})


class UserSyncIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    firebase_uid: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email_verified: Optional[bool] = None


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    firebase_uid: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = None


class CategoryPatch(PatchModel):
    name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=7)
    description: Optional[str] = None
    is_default: Optional[bool] = None


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    firebase_uid: Optional[str] = None
    category_id: Optional[int] = None
    # parsed and range-checked by the service
    amount: Optional[Union[Decimal, str]] = None
    type: Optional[str] = None
    description: Optional[str] = None
    transaction_date: Optional[date] = None

    @field_validator(
        "category_id",
        "amount",
        "type",
        "description",
        "transaction_date",
        mode="before",
    )
    @classmethod
    def _empty_means_missing(cls, value: Any) -> Any:
        return _blank_to_none(value)


class TransactionPatch(PatchModel):
    firebase_uid: Optional[str] = None
    category_id: Optional[int] = None
    amount: Optional[Union[Decimal, str]] = None
    type: Optional[str] = None
    description: Optional[str] = None
    transaction_date: Optional[date] = None

    @field_validator("type", "transaction_date", mode="before")
    @classmethod
    def _empty_keeps_previous(cls, value: Any) -> Any:
        return _blank_to_none(value)


class PaymentMethodIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    firebase_uid: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = None


class PaymentMethodPatch(PatchModel):
    name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = None


class CurrencyIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    is_default: Optional[bool] = None


class AccountTypeIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None


# Response bodies


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserOut(ORMModel):
    id: int
    firebase_uid: str
    email: str
    display_name: Optional[str]
    photo_url: Optional[str]
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class UserListItem(ORMModel):
    id: int
    firebase_uid: str
    email: str
    display_name: Optional[str]
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class CategoryOut(ORMModel):
    id: int
    user_id: Optional[int]
    name: str
    type: TransactionType
    icon: Optional[str]
    color: Optional[str]
    description: Optional[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime


class TransactionOut(ORMModel):
    id: int
    user_id: int
    category_id: Optional[int]
    amount: Decimal
    type: TransactionType
    description: Optional[str]
    transaction_date: date
    created_at: datetime
    updated_at: datetime
    category_name: Optional[str]
    category_type: Optional[TransactionType]

    @field_serializer("amount")
    def _amount_as_number(self, value: Decimal) -> float:
        return float(value)


class PaymentMethodOut(ORMModel):
    id: int
    user_id: Optional[int]
    name: str
    type: PaymentMethodType
    icon: Optional[str]
    description: Optional[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime


class CurrencyOut(ORMModel):
    id: int
    code: str
    name: str
    symbol: Optional[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime


class AccountTypeOut(ORMModel):
    id: int
    name: str
    description: Optional[str]
    icon: Optional[str]
    created_at: datetime
    updated_at: datetime


class TypeTotalsOut(ORMModel):
    total: Decimal
    count: int

    @field_serializer("total")
    def _total_as_number(self, value: Decimal) -> float:
        return float(value)


class SummaryOut(ORMModel):
    income: TypeTotalsOut
    expense: TypeTotalsOut
    balance: Decimal

    @field_serializer("balance")
    def _balance_as_number(self, value: Decimal) -> float:
        return float(value)
