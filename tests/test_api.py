import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, build_engine, get_db
from main import app

USER_HEADERS = {"X-User-Id": "1"}
OTHER_HEADERS = {"X-User-Id": "2"}


@pytest.fixture
def client():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_category(client: TestClient, name: str = "Food", type: str = "EXPENSE"):
    response = client.post(
        "/api/v1/categories", json={"name": name, "type": type}, headers=USER_HEADERS
    )
    assert response.status_code == 201
    return response.json()


def test_missing_user_header_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/v1/categories")

    assert response.status_code == 401
    body = response.json()
    assert body["status"] == 401
    assert body["error"] == "UNAUTHORIZED"
    assert "timestamp" in body


def test_budget_flow_reports_progress(client: TestClient) -> None:
    food = _create_category(client)
    for amount, day in (("100.00", "05"), ("50.00", "20")):
        response = client.post(
            "/api/v1/transactions",
            json={
                "type": "EXPENSE",
                "amount": amount,
                "occurred_at": f"2025-03-{day}T10:00:00Z",
                "category_id": food["id"],
            },
            headers=USER_HEADERS,
        )
        assert response.status_code == 201

    response = client.post(
        "/api/v1/budgets",
        json={"category_id": food["id"], "month": 3, "year": 2025, "limit_amount": "200"},
        headers=USER_HEADERS,
    )
    assert response.status_code == 201
    budget = response.json()
    assert budget["progress_percent"] == 75.0
    assert budget["currency"] == "RUB"

    duplicate = client.post(
        "/api/v1/budgets",
        json={"category_id": food["id"], "month": 3, "year": 2025, "limit_amount": "10"},
        headers=USER_HEADERS,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DUPLICATE"

    summary = client.get(
        "/api/v1/dashboard/summary",
        params={"month": 3, "year": 2025},
        headers=USER_HEADERS,
    ).json()
    assert summary["top_categories"][0]["category_name"] == "Food"
    assert summary["budgets"][0]["progress_percent"] == 75.0


def test_other_users_resources_are_not_found(client: TestClient) -> None:
    food = _create_category(client)

    response = client.delete(f"/api/v1/categories/{food['id']}", headers=OTHER_HEADERS)

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"
    assert client.get("/api/v1/categories", headers=OTHER_HEADERS).json() == []


def test_invalid_payload_returns_field_details(client: TestClient) -> None:
    response = client.post(
        "/api/v1/transactions",
        json={"type": "EXPENSE", "amount": "-5", "occurred_at": "2025-03-01T00:00:00Z"},
        headers=USER_HEADERS,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert [detail["field"] for detail in body["details"]] == ["amount"]


def test_invalid_month_is_a_validation_error(client: TestClient) -> None:
    response = client.get(
        "/api/v1/budgets", params={"month": 13, "year": 2025}, headers=USER_HEADERS
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_transaction_search_pages(client: TestClient) -> None:
    for day in range(1, 6):
        client.post(
            "/api/v1/transactions",
            json={
                "type": "INCOME",
                "amount": "10.00",
                "occurred_at": f"2025-03-0{day}T08:00:00Z",
                "note": f"Payment {day}",
            },
            headers=USER_HEADERS,
        )

    response = client.get(
        "/api/v1/transactions",
        params={"type": "INCOME", "size": 2, "page": 1},
        headers=USER_HEADERS,
    )

    assert response.status_code == 200
    page = response.json()
    assert page["total_elements"] == 5
    assert page["total_pages"] == 3
    assert [txn["note"] for txn in page["content"]] == ["Payment 3", "Payment 2"]

    oversized = client.get(
        "/api/v1/transactions", params={"size": 500}, headers=USER_HEADERS
    )
    assert oversized.status_code == 400


def test_preferences_round_trip(client: TestClient) -> None:
    prefs = client.get("/api/v1/me/preferences", headers=USER_HEADERS).json()
    assert prefs == {"locale": "ru-RU", "theme": "LIGHT", "default_currency": "RUB"}

    response = client.put(
        "/api/v1/me/preferences",
        json={"theme": "DARK", "default_currency": "eur"},
        headers=USER_HEADERS,
    )
    assert response.json()["theme"] == "DARK"
    assert response.json()["default_currency"] == "EUR"


def test_note_search_ignores_case_of_cyrillic_text(client: TestClient) -> None:
    for note in ("Кофе утром", "Обед"):
        client.post(
            "/api/v1/transactions",
            json={
                "type": "EXPENSE",
                "amount": "250.00",
                "occurred_at": "2025-03-01T08:00:00Z",
                "note": note,
            },
            headers=USER_HEADERS,
        )

    page = client.get(
        "/api/v1/transactions", params={"q": "КОФЕ"}, headers=USER_HEADERS
    ).json()

    assert [txn["note"] for txn in page["content"]] == ["Кофе утром"]
