import logging
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, create_ledger_engine
from main import app, get_db

OWNER = {"X-User-Id": "owner-a"}
OTHER = {"X-User-Id": "owner-b"}


@pytest.fixture
def client() -> Iterator[TestClient]:
    engine = create_ledger_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_category_lifecycle_over_http(client: TestClient) -> None:
    fallback = client.post("/api/account", headers=OWNER)
    assert fallback.status_code == 201
    assert fallback.json()["isDeletable"] is False

    created = client.post("/api/categories", json={"name": "Transport"}, headers=OWNER)
    assert created.status_code == 201
    category = created.json()
    assert category["name"] == "Transport"
    assert category["isDeletable"] is True

    duplicate = client.post(
        "/api/categories", json={"name": "Transport"}, headers=OWNER
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error"] == "DUPLICATE_NAME"

    reserved = client.post("/api/categories", json={"name": "inne"}, headers=OWNER)
    assert reserved.status_code == 400
    assert reserved.json()["detail"]["error"] == "INVALID_NAME"

    renamed = client.patch(
        f"/api/categories/{category['id']}", json={"name": "Travel"}, headers=OWNER
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Travel"

    locked = client.patch(
        f"/api/categories/{fallback.json()['id']}",
        json={"name": "Misc"},
        headers=OWNER,
    )
    assert locked.status_code == 403
    assert locked.json()["detail"]["error"] == "NOT_EDITABLE"

    foreign = client.delete(f"/api/categories/{category['id']}", headers=OTHER)
    assert foreign.status_code == 403
    assert foreign.json()["detail"]["error"] == "FORBIDDEN"

    deleted = client.delete(f"/api/categories/{category['id']}", headers=OWNER)
    assert deleted.status_code == 204

    names = [c["name"] for c in client.get("/api/categories", headers=OWNER).json()]
    assert names == ["Inne"]


def test_transaction_flow_and_dashboard_over_http(client: TestClient) -> None:
    fallback_id = client.post("/api/account", headers=OWNER).json()["id"]
    food_id = client.post(
        "/api/categories", json={"name": "Food"}, headers=OWNER
    ).json()["id"]

    created = client.post(
        "/api/transactions",
        json={
            "amount": 150.75,
            "date": "2025-10-13",
            "categoryId": food_id,
            "type": "expense",
            "note": "Weekly groceries",
        },
        headers=OWNER,
    )
    assert created.status_code == 201
    txn = created.json()
    assert txn["amount"] == 150.75
    assert txn["category"] == {"id": food_id, "name": "Food"}
    assert "createdAt" in txn

    client.post(
        "/api/transactions",
        json={
            "amount": 3000,
            "date": "2025-10-01",
            "categoryId": fallback_id,
            "type": "income",
        },
        headers=OWNER,
    )

    invalid = client.post(
        "/api/transactions",
        json={
            "amount": 5,
            "date": "2025-10-01",
            "categoryId": food_id,
            "type": "expense",
        },
        headers=OTHER,
    )
    assert invalid.status_code == 422
    assert invalid.json()["detail"]["error"] == "INVALID_CATEGORY"

    empty_patch = client.patch(f"/api/transactions/{txn['id']}", json={}, headers=OWNER)
    assert empty_patch.status_code == 400

    forbidden = client.patch(
        f"/api/transactions/{txn['id']}", json={"amount": 1}, headers=OTHER
    )
    assert forbidden.status_code == 403
    missing = client.patch(
        "/api/transactions/00000000-0000-0000-0000-000000000000",
        json={"amount": 1},
        headers=OWNER,
    )
    assert missing.status_code == 404

    patched = client.patch(
        f"/api/transactions/{txn['id']}", json={"amount": 205.0}, headers=OWNER
    )
    assert patched.status_code == 200
    assert patched.json()["amount"] == 205.0

    listing = client.get(
        "/api/transactions",
        params={"month": 10, "year": 2025, "pageSize": 1},
        headers=OWNER,
    ).json()
    assert listing["pagination"] == {
        "page": 1,
        "pageSize": 1,
        "totalItems": 2,
        "totalPages": 2,
    }
    assert listing["transactions"][0]["date"] == "2025-10-13"

    dashboard = client.get(
        "/api/dashboard", params={"month": 10, "year": 2025}, headers=OWNER
    ).json()
    assert dashboard["summary"] == {
        "income": 3000.0,
        "expenses": 205.0,
        "balance": 2795.0,
    }
    assert dashboard["dailyBreakdown"] == [
        {"date": "2025-10-01", "income": 3000.0, "expenses": 0.0},
        {"date": "2025-10-13", "income": 0.0, "expenses": 205.0},
    ]

    deleting_category = client.delete(f"/api/categories/{food_id}", headers=OWNER)
    assert deleting_category.status_code == 204
    moved = client.get(f"/api/transactions/{txn['id']}", headers=OWNER).json()
    assert moved["category"]["id"] == fallback_id

    assert client.get("/api/categories/counts", headers=OWNER).json() == {
        fallback_id: 2
    }

    assert client.delete(f"/api/transactions/{txn['id']}", headers=OWNER).status_code == 204
    assert client.get(f"/api/transactions/{txn['id']}", headers=OWNER).status_code == 404


def test_query_and_header_validation(client: TestClient) -> None:

    assert client.get("/api/categories").status_code == 422
    assert (
        client.get(
            "/api/transactions", params={"month": 13, "year": 2025}, headers=OWNER
        ).status_code
        == 422
    )
    assert (
        client.get(
            "/api/transactions",
            params={"month": 1, "year": 2025, "pageSize": 101},
            headers=OWNER,
        ).status_code
        == 422
    )


def test_account_deletion_removes_owner_data_only(client: TestClient) -> None:
    client.post("/api/account", headers=OWNER)
    client.post("/api/account", headers=OTHER)
    client.post("/api/categories", json={"name": "Food"}, headers=OWNER)

    assert client.delete("/api/account", headers=OWNER).status_code == 204

    assert client.get("/api/categories", headers=OWNER).json() == []
    assert [c["name"] for c in client.get("/api/categories", headers=OTHER).json()] == [
        "Inne"
    ]


def test_unexpected_error_is_logged_and_returned_as_500(client: TestClient, caplog) -> None:
    def broken_db():
        raise RuntimeError("database driver exploded")
        yield

    app.dependency_overrides[get_db] = broken_db
    failing = TestClient(app, raise_server_exceptions=False)

    with caplog.at_level(logging.ERROR, logger="main"):
        response = failing.get("/api/categories", headers=OWNER)

    assert response.status_code == 500
    assert response.json() == {
        "detail": {
            "error": "PERSISTENCE_FAILURE",
            "message": "An unexpected error occurred",
        }
    }
    records = [r for r in caplog.records if r.name == "main"]
    assert records and records[-1].exc_info is not None
    assert "database driver exploded" not in response.text


def test_client_fixture_restores_dependency_overrides() -> None:
    assert get_db not in app.dependency_overrides
