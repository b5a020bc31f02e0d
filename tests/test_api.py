from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from config import Settings
from main import create_app


def _client(tmp_path: Path, **overrides) -> TestClient:
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'api.db'}", **overrides)
    return TestClient(create_app(settings))


@pytest.fixture
def client(tmp_path: Path):
    with _client(tmp_path) as test_client:
        yield test_client


def _sync(client: TestClient, uid: str) -> dict:
    response = client.post(
        "/api/users/sync", json={"firebase_uid": uid, "email": f"{uid}@example.com"}
    )
    assert response.status_code in (200, 201)
    return response.json()["user"]


def test_index_and_health(client: TestClient) -> None:
    body = client.get("/").json()
    assert body["message"] == "Finance Tracker API"
    assert body["endpoints"]["transactions"] == "/api/transactions"
    assert client.get("/health").json() == {"success": True, "database": "ok"}


def test_user_sync_status_codes(client: TestClient) -> None:
    first = client.post(
        "/api/users/sync", json={"firebase_uid": "uid-u", "email": "u@example.com"}
    )
    assert first.status_code == 201
    assert first.json()["message"] == "User created successfully"

    second = client.post(
        "/api/users/sync", json={"firebase_uid": "uid-u", "email": "u@example.com"}
    )
    assert second.status_code == 200
    assert second.json()["message"] == "User updated successfully"
    assert second.json()["user"]["id"] == first.json()["user"]["id"]

    missing = client.post("/api/users/sync", json={"email": "x@example.com"})
    assert missing.status_code == 400
    assert missing.json() == {
        "success": False,
        "message": "firebase_uid and email are required",
    }

    listing = client.get("/api/users/all").json()
    assert listing["count"] == 1
    assert "photo_url" not in listing["users"][0]
    assert client.get("/api/users/email/u@example.com").json()["user"]["firebase_uid"] == "uid-u"
    assert client.get("/api/users/firebase/nope").status_code == 404


def test_create_transaction_then_summary(client: TestClient) -> None:
    _sync(client, "uid-u")
    category = client.post(
        "/api/categories",
        json={"firebase_uid": "uid-u", "name": "Groceries", "type": "expense"},
    )
    assert category.status_code == 201
    groceries_id = category.json()["category"]["id"]

    created = client.post(
        "/api/transactions",
        json={
            "firebase_uid": "uid-u",
            "amount": 50.00,
            "type": "expense",
            "transaction_date": "2024-03-01",
            "category_id": groceries_id,
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["transaction"]["amount"] == 50.00
    assert body["transaction"]["category_name"] == "Groceries"
    assert body["transaction"]["category_type"] == "expense"
    assert body["transaction"]["transaction_date"] == "2024-03-01"

    summary = client.get(
        "/api/transactions/summary", params={"firebase_uid": "uid-u"}
    ).json()["summary"]
    assert summary["expense"]["total"] >= 50.00
    assert summary["expense"]["count"] >= 1
    assert summary["income"] == {"total": 0.0, "count": 0}
    assert summary["balance"] == summary["income"]["total"] - summary["expense"]["total"]


def test_negative_amount_is_rejected(client: TestClient) -> None:
    _sync(client, "uid-u")
    response = client.post(
        "/api/transactions",
        json={
            "firebase_uid": "uid-u",
            "amount": -5,
            "type": "expense",
            "transaction_date": "2024-03-01",
        },
    )
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "amount must be greater than 0",
    }
    listing = client.get("/api/transactions", params={"firebase_uid": "uid-u"}).json()
    assert listing["count"] == 0


def test_unparseable_amount_follows_validation_order(client: TestClient) -> None:
    _sync(client, "uid-u")

    def post(body: dict) -> dict:
        response = client.post("/api/transactions", json={"firebase_uid": "uid-u", **body})
        assert response.status_code == 400
        assert response.json()["success"] is False
        return response.json()

    assert post({"amount": "abc"})["message"] == (
        "amount, type, and transaction_date are required"
    )
    assert post(
        {"amount": "abc", "type": "bogus", "transaction_date": "2024-03-01"}
    )["message"] == 'type must be either "income" or "expense"'
    assert post(
        {"amount": "abc", "type": "expense", "transaction_date": "2024-03-01"}
    )["message"] == "amount must be greater than 0"
    assert post(
        {"amount": 100000000, "type": "expense", "transaction_date": "2024-03-01"}
    )["message"] == "amount must be less than 100000000"

    listing = client.get("/api/transactions", params={"firebase_uid": "uid-u"}).json()
    assert listing["count"] == 0


def test_malformed_values_are_bad_requests(client: TestClient) -> None:
    _sync(client, "uid-u")
    response = client.post(
        "/api/transactions",
        json={
            "firebase_uid": "uid-u",
            "amount": "12.50",
            "type": "expense",
            "transaction_date": "not-a-date",
        },
    )
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["message"] == "Invalid value for transaction_date"

    missing = client.post(
        "/api/transactions", json={"firebase_uid": "uid-u", "type": "expense"}
    )
    assert missing.status_code == 400
    assert missing.json()["message"] == (
        "amount, type, and transaction_date are required"
    )


def test_delete_nonexistent_transaction(client: TestClient) -> None:
    _sync(client, "uid-u")
    response = client.delete("/api/transactions/4242", params={"firebase_uid": "uid-u"})
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Transaction not found"}


def test_identity_in_body_for_writes_and_query_for_reads(client: TestClient) -> None:
    _sync(client, "uid-a")
    _sync(client, "uid-b")
    created = client.post(
        "/api/transactions",
        json={
            "firebase_uid": "uid-a",
            "amount": "19.99",
            "type": "income",
            "transaction_date": "2024-05-01",
            "description": "Refund",
        },
    ).json()["transaction"]
    txn_id = created["id"]

    assert client.get(f"/api/transactions/{txn_id}", params={"firebase_uid": "uid-b"}).status_code == 404
    own = client.get(f"/api/transactions/{txn_id}", params={"firebase_uid": "uid-a"})
    assert own.status_code == 200
    assert own.json()["transaction"]["amount"] == 19.99
    assert own.json()["transaction"]["description"] == "Refund"
    assert own.json()["transaction"]["category_id"] is None

    updated = client.put(
        f"/api/transactions/{txn_id}",
        json={"firebase_uid": "uid-a", "description": None, "amount": 25},
    )
    assert updated.status_code == 200
    assert updated.json()["message"] == "Transaction updated successfully"
    assert updated.json()["transaction"]["description"] is None
    assert updated.json()["transaction"]["amount"] == 25.0
    assert updated.json()["transaction"]["type"] == "income"

    foreign = client.put(
        f"/api/transactions/{txn_id}", json={"firebase_uid": "uid-b", "amount": 1}
    )
    assert foreign.status_code == 404

    deleted = client.delete(f"/api/transactions/{txn_id}", params={"firebase_uid": "uid-a"})
    assert deleted.json() == {
        "success": True,
        "message": "Transaction deleted successfully",
    }


def test_list_transactions_requires_known_user(client: TestClient) -> None:
    response = client.get("/api/transactions", params={"firebase_uid": "uid-ghost"})
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "User not found"}


def test_categories_for_unknown_owner_only_show_defaults(client: TestClient) -> None:
    _sync(client, "uid-a")
    client.post("/api/categories", json={"name": "Salary", "type": "income", "is_default": True})
    client.post(
        "/api/categories",
        json={"firebase_uid": "uid-a", "name": "Private", "type": "expense"},
    )

    stranger = client.get("/api/categories", params={"firebase_uid": "uid-stranger"}).json()
    assert [c["name"] for c in stranger["categories"]] == ["Salary"]
    owner = client.get("/api/categories", params={"firebase_uid": "uid-a"}).json()
    assert owner["count"] == 2

    missing = client.get("/api/categories")
    assert missing.status_code == 400
    assert missing.json()["message"] == "firebase_uid is required"


def test_category_update_and_delete_routes(client: TestClient) -> None:
    created = client.post("/api/categories", json={"name": "Fun", "type": "expense"})
    category_id = created.json()["category"]["id"]

    updated = client.put(f"/api/categories/{category_id}", json={"description": "Games"})
    assert updated.json()["category"]["description"] == "Games"
    assert updated.json()["category"]["name"] == "Fun"

    assert client.delete(f"/api/categories/{category_id}").status_code == 200
    gone = client.get(f"/api/categories/{category_id}")
    assert gone.status_code == 404
    assert gone.json()["message"] == "Category not found"


def test_reference_data_routes(client: TestClient) -> None:
    _sync(client, "uid-a")
    method = client.post(
        "/api/payment-methods",
        json={"firebase_uid": "uid-a", "name": "Visa", "type": "card"},
    )
    assert method.status_code == 201
    assert method.json()["paymentMethod"]["type"] == "card"
    methods = client.get("/api/payment-methods", params={"firebase_uid": "uid-a"}).json()
    assert methods["count"] == 1

    currency = client.post(
        "/api/currencies", json={"code": "usd", "name": "US Dollar", "is_default": True}
    )
    assert currency.status_code == 201
    assert client.get("/api/currencies/code/USD").json()["currency"]["code"] == "USD"

    account_type = client.post("/api/account-types", json={"name": "Savings"})
    assert account_type.status_code == 201
    account_type_id = account_type.json()["accountType"]["id"]
    fetched = client.get(f"/api/account-types/{account_type_id}")
    assert fetched.json()["accountType"]["name"] == "Savings"


def test_unknown_route(client: TestClient) -> None:
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Route not found"}


def _break_transactions_table(test_client: TestClient) -> None:
    engine = test_client.app.state.database.engine
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE transactions"))


def test_storage_failures_are_sanitised(tmp_path: Path) -> None:
    with _client(tmp_path) as test_client:
        _sync(test_client, "uid-u")
        _break_transactions_table(test_client)

        response = test_client.get("/api/transactions", params={"firebase_uid": "uid-u"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Internal server error"}


def test_storage_failure_details_when_exposed(tmp_path: Path) -> None:
    with _client(tmp_path, expose_errors=True) as test_client:
        _sync(test_client, "uid-u")
        _break_transactions_table(test_client)

        response = test_client.get(
            "/api/transactions/summary", params={"firebase_uid": "uid-u"}
        )
        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error"
        assert "transactions" in body["error"]
