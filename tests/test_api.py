import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.database import get_async_session
from app.core.security import create_access_token
from app.main import app


@pytest.fixture
async def client(session_factory):
    async def override_get_async_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


FINANCING = {
    "title": "Car financing",
    "due_date": "2024-01-10",
    "is_financing": True,
    "financing_total_amount": 1200.0,
    "financing_months_total": 12,
    "early_payment_discount_rate": 10.0,
}


async def create(client, headers, payload):
    response = await client.post("/api/v1/expenses", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_requires_a_token(client):
    response = await client.get("/api/v1/expenses")
    assert response.status_code == 401


async def test_rejects_an_expired_token(client, user_id):
    token = create_access_token(str(user_id), expires_delta=timedelta(minutes=-5))
    response = await client.get("/api/v1/expenses", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


async def test_token_from_query_parameter(client, user_id):
    token = create_access_token(str(user_id))
    response = await client.get("/api/v1/expenses", params={"token": token})
    assert response.status_code == 200
    assert response.json() == []


async def test_expense_crud(client, auth_headers):
    created = await create(client, auth_headers, {"title": "Gym", "amount": 45.0, "due_date": "2024-02-05",
                                                  "is_recurring": True})
    assert created["recurring_start_date"] == "2024-02-05"

    response = await client.patch(
        f"/api/v1/expenses/{created['id']}", json={"amount": 50.0}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["amount"] == 50.0

    listed = await client.get("/api/v1/expenses", headers=auth_headers)
    assert [e["id"] for e in listed.json()] == [created["id"]]

    response = await client.delete(f"/api/v1/expenses/{created['id']}", headers=auth_headers)
    assert response.status_code == 204
    response = await client.get(f"/api/v1/expenses/{created['id']}", headers=auth_headers)
    assert response.status_code == 404


async def test_invalid_expense_is_rejected(client, auth_headers):
    response = await client.post(
        "/api/v1/expenses",
        json={"title": "Both", "due_date": "2024-01-01", "is_recurring": True, "installments": 3},
        headers=auth_headers,
    )
    assert response.status_code == 422


async def test_invalid_update_is_rejected(client, auth_headers):
    created = await create(client, auth_headers, {"title": "Gym", "due_date": "2024-02-05", "is_recurring": True})
    response = await client.patch(
        f"/api/v1/expenses/{created['id']}", json={"installments": 6}, headers=auth_headers
    )
    assert response.status_code == 422


async def test_unknown_expense(client, auth_headers):
    response = await client.get(f"/api/v1/expenses/{uuid.uuid4()}", headers=auth_headers)
    assert response.status_code == 404


async def test_month_projection_and_toggle(client, auth_headers):
    rent = await create(client, auth_headers, {"title": "Rent", "amount": 900.0, "due_date": "2024-01-31",
                                               "is_recurring": True})
    laptop = await create(client, auth_headers, {"title": "Laptop", "amount": 100.0, "due_date": "2024-01-31",
                                                 "installments": 3})

    response = await client.get("/api/v1/instances", params={"month": "2024-02-01"}, headers=auth_headers)
    assert response.status_code == 200
    instances = {i["expense_id"]: i for i in response.json()}
    assert instances[rent["id"]]["instance_date"] == "2024-02-29"
    assert instances[rent["id"]]["is_paid"] is False
    assert instances[laptop["id"]]["title"] == "Laptop - 2/3"
    assert instances[laptop["id"]]["is_persisted"] is True

    response = await client.post(
        "/api/v1/instances/toggle",
        json={"expense_id": rent["id"], "instance_date": "2024-02-29", "instance_type": "recurring"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["is_paid"] is True

    response = await client.get(
        "/api/v1/instances/summary", params={"month": "2024-02-10", "today": "2024-03-15"}, headers=auth_headers
    )
    summary = response.json()
    assert summary["month"] == "2024-02-01"
    assert summary["instance_count"] == 2
    assert summary["paid_amount"] == 900.0
    assert summary["overdue_amount"] == 100.0


async def test_unscheduled_toggle_is_rejected(client, auth_headers):
    rent = await create(client, auth_headers, {"title": "Rent", "amount": 900.0, "due_date": "2024-01-31",
                                               "is_recurring": True})
    response = await client.post(
        "/api/v1/instances/toggle",
        json={"expense_id": rent["id"], "instance_date": "2024-02-28", "instance_type": "recurring"},
        headers=auth_headers,
    )
    assert response.status_code == 422


async def test_financing_flow(client, auth_headers):
    car = await create(client, auth_headers, FINANCING)
    base = f"/api/v1/expenses/{car['id']}/financing"

    preview = (await client.get(f"{base}/discount-preview", headers=auth_headers)).json()
    assert preview["remaining_amount"] == pytest.approx(1200.0)
    assert preview["discount"] == pytest.approx(120.0)

    response = await client.post(
        f"{base}/payments", json={"payment_amount": 700.0, "idempotency_key": "first"}, headers=auth_headers
    )
    assert response.status_code == 201
    assert response.json()["remaining_amount"] == pytest.approx(500.0)

    replay = await client.post(
        f"{base}/payments", json={"payment_amount": 700.0, "idempotency_key": "first"}, headers=auth_headers
    )
    assert replay.json()["replayed"] is True

    schedule = (await client.get(f"{base}/schedule", headers=auth_headers)).json()
    assert len(schedule) == 12
    assert sum(1 for i in schedule if i["is_paid"]) == 7

    payoff = await client.post(f"{base}/payments", json={"payment_amount": 500.0}, headers=auth_headers)
    totals = payoff.json()
    assert totals["is_paid"] is True
    assert totals["financing_discount_amount"] == pytest.approx(50.0)

    payments = (await client.get(f"{base}/payments", headers=auth_headers)).json()
    assert sorted(p["payment_type"] for p in payments) == ["early_payment", "partial_payment"]

    report = (await client.get(f"{base}/reconciliation", headers=auth_headers)).json()
    assert report["consistent"] is True

    march = await client.get("/api/v1/instances", params={"month": "2024-03-01"}, headers=auth_headers)
    assert march.json() == []

    reset = await client.post(f"{base}/reset", headers=auth_headers)
    assert reset.status_code == 200
    assert reset.json()["financing_paid_amount"] == 0.0
    assert reset.json()["is_paid"] is False
    assert (await client.get(f"{base}/payments", headers=auth_headers)).json() == []


async def test_overpayment_is_rejected(client, auth_headers):
    car = await create(client, auth_headers, FINANCING)
    response = await client.post(
        f"/api/v1/expenses/{car['id']}/financing/payments", json={"payment_amount": 1300.0}, headers=auth_headers
    )
    assert response.status_code == 422
    assert "exceeds" in response.json()["detail"]


async def test_non_positive_payment_is_rejected(client, auth_headers):
    car = await create(client, auth_headers, FINANCING)
    response = await client.post(
        f"/api/v1/expenses/{car['id']}/financing/payments", json={"payment_amount": 0}, headers=auth_headers
    )
    assert response.status_code == 422


async def test_financing_routes_need_a_financing(client, auth_headers):
    gym = await create(client, auth_headers, {"title": "Gym", "due_date": "2024-02-05", "is_recurring": True})
    response = await client.get(f"/api/v1/expenses/{gym['id']}/financing/schedule", headers=auth_headers)
    assert response.status_code == 422

    response = await client.get(f"/api/v1/expenses/{uuid.uuid4()}/financing/schedule", headers=auth_headers)
    assert response.status_code == 404
