"""HTTP surface: routing, role gating and error payloads."""

import uuid
from decimal import Decimal

import pytest

from src.models.models import StaffRole

pytestmark = pytest.mark.integration

DAY = "2024-01-01"


async def book(api_client, auth_headers, client_id, service_time="09:00:00"):
    response = await api_client.post(
        "/services",
        json={
            "client_id": str(client_id),
            "service_date": DAY,
            "service_time": service_time,
            "service_type": "Medication application",
        },
        headers=auth_headers(StaffRole.RECEPTION),
    )
    assert response.status_code == 201, response.text
    return response.json()["service"]


async def test_requests_without_token_are_rejected(api_client):
    response = await api_client.post("/queue/call-next", json={"queue_date": DAY})
    assert response.status_code in (401, 403)


async def test_invalid_token_is_rejected(api_client):
    response = await api_client.get(
        "/queue/attending", headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


async def test_role_gating(api_client, auth_headers, clients):
    response = await api_client.post(
        "/services",
        json={
            "client_id": str(clients[0].id),
            "service_date": DAY,
            "service_time": "09:00:00",
            "service_type": "Medication application",
        },
        headers=auth_headers(StaffRole.MEDICATION),
    )
    assert response.status_code == 403

    response = await api_client.get("/projections/doctor", headers=auth_headers(StaffRole.RECEPTION))
    assert response.status_code == 403


async def test_queue_round_trip(api_client, auth_headers, clients):
    reception = auth_headers(StaffRole.RECEPTION)
    first = await book(api_client, auth_headers, clients[0].id)
    second = await book(api_client, auth_headers, clients[1].id, "09:30:00")

    response = await api_client.post(
        "/queue/check-in", json={"service_id": first["id"], "queue_date": DAY}, headers=reception,
    )
    assert response.status_code == 201
    ticket = response.json()["entry"]
    assert ticket["queue_number"] == 1

    response = await api_client.post(
        "/queue/check-in", json={"service_id": second["id"], "queue_date": DAY}, headers=reception,
    )
    assert response.json()["entry"]["queue_number"] == 2

    response = await api_client.post("/queue/call-next", json={"queue_date": DAY}, headers=reception)
    assert response.status_code == 200
    assert response.json()["entry"]["status"] == "attending"

    response = await api_client.post("/queue/call-next", json={"queue_date": DAY}, headers=reception)
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "attending_in_progress"
    assert detail["entity_id"] == ticket["id"]
    assert detail["current_status"] == "attending"
    assert detail["queue_number"] == 1

    response = await api_client.get(
        "/queue/attending", params={"queue_date": DAY}, headers=auth_headers(StaffRole.MEDICATION),
    )
    assert response.json()["id"] == ticket["id"]

    response = await api_client.post(f"/queue/{ticket['id']}/done", headers=reception)
    assert response.json()["entry"]["status"] == "done"


async def test_call_next_on_empty_queue(api_client, auth_headers):
    response = await api_client.post(
        "/queue/call-next", json={"queue_date": DAY}, headers=auth_headers(StaffRole.RECEPTION),
    )
    assert response.status_code == 200
    assert response.json()["entry"] is None


async def test_already_queued_conflict(api_client, auth_headers, clients):
    reception = auth_headers(StaffRole.RECEPTION)
    service = await book(api_client, auth_headers, clients[0].id)
    payload = {"service_id": service["id"], "queue_date": DAY}

    await api_client.post("/queue/check-in", json=payload, headers=reception)
    response = await api_client.post("/queue/check-in", json=payload, headers=reception)

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "already_queued"


async def test_unknown_service_is_404(api_client, auth_headers):
    response = await api_client.get(f"/services/{uuid.uuid4()}", headers=auth_headers(StaffRole.DOCTOR))
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


async def test_service_lifecycle(api_client, auth_headers, clients, product):
    service = await book(api_client, auth_headers, clients[0].id)
    medication = auth_headers(StaffRole.MEDICATION)

    response = await api_client.post(
        f"/services/{service['id']}/items",
        json={"product_id": str(product.id), "quantity": 1},
        headers=medication,
    )
    assert response.status_code == 201
    assert response.json()["service"]["total_amount"] in ("45.00", "45.0", 45.0, "45")

    response = await api_client.post(f"/services/{service['id']}/start", headers=medication)
    assert response.json()["service"]["status"] == "in_progress"

    response = await api_client.post(f"/services/{service['id']}/complete", headers=medication)
    body = response.json()["service"]
    assert body["status"] == "completed"
    assert body["completed_by"] is not None
    assert body["completed_at"] is not None

    response = await api_client.post(
        f"/services/{service['id']}/payments",
        json={"amount": "45.00", "payment_method": "pix"},
        headers=auth_headers(StaffRole.RECEPTION),
    )
    assert response.status_code == 201
    assert response.json()["service"]["payment_status"] == "completed"

    response = await api_client.post(f"/services/{service['id']}/cancel", headers=auth_headers(StaffRole.RECEPTION))
    assert response.status_code == 409
    assert response.json()["detail"]["current_status"] == "completed"


async def test_unfinalized_item_blocks_completion_until_priced(api_client, auth_headers, clients, product):
    service = await book(api_client, auth_headers, clients[0].id)
    medication = auth_headers(StaffRole.MEDICATION)

    response = await api_client.post(
        f"/services/{service['id']}/items",
        json={"product_id": str(product.id), "quantity": 1, "finalized": False},
        headers=medication,
    )
    assert response.status_code == 201
    item = response.json()["service"]["items"][0]
    assert item["subtotal"] is None

    await api_client.post(f"/services/{service['id']}/start", headers=medication)
    response = await api_client.post(f"/services/{service['id']}/complete", headers=medication)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_transition"

    response = await api_client.post(
        f"/services/{service['id']}/items/{item['id']}/finalize",
        json={"unit_price": "50.00"},
        headers=medication,
    )
    assert response.status_code == 200
    assert Decimal(str(response.json()["service"]["total_amount"])) == Decimal("50")

    response = await api_client.post(f"/services/{service['id']}/complete", headers=medication)
    assert response.status_code == 200
    assert response.json()["service"]["status"] == "completed"


async def test_payment_status_correction(api_client, auth_headers, clients):
    service = await book(api_client, auth_headers, clients[0].id)

    response = await api_client.put(
        f"/services/{service['id']}/payment-status",
        json={"payment_status": "cancelled"},
        headers=auth_headers(StaffRole.DOCTOR),
    )
    assert response.status_code == 200
    assert response.json()["service"]["payment_status"] == "cancelled"


async def test_projection_snapshots(api_client, auth_headers, clients):
    reception = auth_headers(StaffRole.RECEPTION)
    service = await book(api_client, auth_headers, clients[0].id)
    await api_client.post("/queue/check-in", json={"service_id": service["id"], "queue_date": DAY}, headers=reception)

    response = await api_client.get("/projections/reception", params={"queue_date": DAY}, headers=reception)
    assert response.status_code == 200
    assert response.json()["entries"][0]["client_name"] == "Ana Ribeiro"

    response = await api_client.get("/projections/medication", headers=auth_headers(StaffRole.MEDICATION))
    assert [row["id"] for row in response.json()["services"]] == [service["id"]]

    response = await api_client.get(
        "/projections/doctor", params={"service_date": DAY}, headers=auth_headers(StaffRole.DOCTOR),
    )
    assert response.json()["services"][0]["id"] == service["id"]

    # The public display needs no token
    response = await api_client.get("/projections/public-display", params={"queue_date": DAY})
    assert response.status_code == 200
    body = response.json()
    assert body["current"] is None
    assert body["waiting"] == [{"queue_number": 1, "client_name": "Ana Ribeiro"}]


async def test_root_and_health(api_client):
    assert (await api_client.get("/")).status_code == 200
    assert (await api_client.get("/health")).json() == {"status": "ok"}
