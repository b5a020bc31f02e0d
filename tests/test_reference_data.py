import pytest

from database import Database
from models import PaymentMethodType
from schemas import (
    AccountTypeIn,
    CurrencyIn,
    PaymentMethodIn,
    PaymentMethodPatch,
    UserSyncIn,
)
from services import (
    AccountTypeService,
    CurrencyService,
    NotFound,
    PaymentMethodService,
    UserService,
    ValidationError,
)


def test_payment_methods_are_scoped_to_owner() -> None:
    db = Database("sqlite://")
    db.init()

    with db.session() as session:
        users = UserService(session)
        users.sync(UserSyncIn(firebase_uid="uid-a", email="a@example.com"))
        users.sync(UserSyncIn(firebase_uid="uid-b", email="b@example.com"))
        methods = PaymentMethodService(session)
        methods.create(PaymentMethodIn(firebase_uid="uid-a", name="Wallet", type="cash"))
        methods.create(
            PaymentMethodIn(
                firebase_uid="uid-a", name="Visa", type="card", is_default=True
            )
        )
        methods.create(PaymentMethodIn(firebase_uid="uid-b", name="Bank", type="bank"))

        assert [m.name for m in methods.list_for_user("uid-a")] == ["Visa", "Wallet"]
        assert [m.name for m in methods.list_for_user("uid-b")] == ["Bank"]
        assert methods.list_for_user("uid-ghost") == []


def test_payment_method_validation_update_and_delete() -> None:
    db = Database("sqlite://")
    db.init()

    with db.session() as session:
        methods = PaymentMethodService(session)
        with pytest.raises(ValidationError, match="name and type are required"):
            methods.create(PaymentMethodIn(name="Wallet"))
        with pytest.raises(ValidationError, match="type must be one of"):
            methods.create(PaymentMethodIn(name="Wallet", type="barter"))

        wallet = methods.create(
            PaymentMethodIn(name="Wallet", type="cash", description="Pocket money")
        )
        updated = methods.update(
            wallet.id,
            PaymentMethodPatch.model_validate({"type": "digital", "description": None}),
        )
        assert updated.name == "Wallet"
        assert updated.type == PaymentMethodType.digital
        assert updated.description is None

        methods.delete(wallet.id)
        with pytest.raises(NotFound, match="Payment method not found"):
            methods.get(wallet.id)


def test_currency_default_is_unique() -> None:
    db = Database("sqlite://")
    db.init()

    with db.session() as session:
        currencies = CurrencyService(session)
        currencies.create(CurrencyIn(code="usd", name="US Dollar", symbol="$", is_default=True))
        currencies.create(CurrencyIn(code="EUR", name="Euro", symbol="€", is_default=True))
        currencies.create(CurrencyIn(code="GBP", name="Pound Sterling"))

        listed = currencies.list_all()
        assert [c.code for c in listed] == ["EUR", "GBP", "USD"]
        assert [c.code for c in listed if c.is_default] == ["EUR"]
        assert currencies.get_by_code("usd").name == "US Dollar"

        with pytest.raises(NotFound, match="Currency not found"):
            currencies.get_by_code("JPY")
        with pytest.raises(ValidationError, match="code and name are required"):
            currencies.create(CurrencyIn(code="JPY"))
        with pytest.raises(ValidationError, match="already exists"):
            currencies.create(CurrencyIn(code="eur", name="Euro again"))


def test_account_types() -> None:
    db = Database("sqlite://")
    db.init()

    with db.session() as session:
        account_types = AccountTypeService(session)
        savings = account_types.create(AccountTypeIn(name="Savings", icon="🏦"))
        account_types.create(AccountTypeIn(name="Checking"))

        assert [a.name for a in account_types.list_all()] == ["Checking", "Savings"]
        assert account_types.get(savings.id).icon == "🏦"
        with pytest.raises(NotFound, match="Account type not found"):
            account_types.get(9999)
        with pytest.raises(ValidationError, match="name is required"):
            account_types.create(AccountTypeIn(description="No name"))
