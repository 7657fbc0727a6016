"""Returns API tests."""

from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient

BASE = "/api/v1/returns"

CREATE = {
    "order_id": "ORD-1001",
    "order_item_id": "ITEM-1",
    "product_id": "PRD-77",
    "product_title": "Wireless Headphones",
    "quantity": 2,
    "unit_price": "1499.00",
    "reason": "Defective or damaged item",
    "customer_notes": "Left earcup is silent",
}

PICKUP = {
    "customer_name": "Asha Rao",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "pickup_date": "2026-10-21",
    "time_slot": "10am-12pm",
}


async def _create(client: AsyncClient, headers: dict, **overrides) -> dict:
    resp = await client.post(f"{BASE}/", json={**CREATE, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["service"] == "ReturnDesk"


@pytest.mark.asyncio
async def test_requires_token(client: AsyncClient):
    resp = await client.get(f"{BASE}/")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_return(client: AsyncClient, auth_headers):
    data = await _create(client, auth_headers)
    assert data["status"] == "pending"
    assert Decimal(data["total_price"]) == Decimal("2998.00")
    assert data["requested_by"] == "ops@returndesk.test"
    assert data["version"] == 1
    assert data["history"][0]["action"] == "create"


@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient, auth_headers):
    rid = (await _create(client, auth_headers))["id"]

    resp = await client.post(f"{BASE}/{rid}/approve", json={"admin_notes": "ok"}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    resp = await client.post(f"{BASE}/{rid}/schedule-pickup", json=PICKUP, headers=auth_headers)
    assert resp.status_code == 200, resp.text
    pickup = resp.json()["pickup"]
    assert pickup["tracking_number"] == "RP0000000001"
    assert pickup["pickup_date"] == "2026-10-21"

    resp = await client.get(f"{BASE}/{rid}/pickup-tracking", headers=auth_headers)
    assert resp.json()["status"] == "scheduled"

    resp = await client.post(f"{BASE}/{rid}/start-processing", json={}, headers=auth_headers)
    assert resp.json()["status"] == "processing"

    resp = await client.post(
        f"{BASE}/{rid}/complete",
        json={"refund_amount": "2998.00", "refund_method": "UPI"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert Decimal(data["refund_amount"]) == Decimal("2998.00")
    assert [e["actor"] for e in data["history"][1:]] == ["ops@returndesk.test"] * 4


@pytest.mark.asyncio
async def test_list_and_get(client: AsyncClient, auth_headers):
    first = await _create(client, auth_headers)
    await _create(client, auth_headers, order_item_id="ITEM-2", product_title="Cotton Kurta")

    resp = await client.get(f"{BASE}/", params={"search": "kurta"}, headers=auth_headers)
    assert resp.status_code == 200
    assert [r["product_title"] for r in resp.json()] == ["Cotton Kurta"]

    resp = await client.get(f"{BASE}/{first['id']}", headers=auth_headers)
    assert resp.json()["id"] == first["id"]


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, auth_headers):
    await _create(client, auth_headers)
    resp = await client.get(f"{BASE}/stats", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["by_status"]["pending"] == 1
    assert data["by_status"]["completed"] == 0


@pytest.mark.asyncio
async def test_pickup_slots(client: AsyncClient, auth_headers):
    resp = await client.get(
        f"{BASE}/pickup-slots", params={"pincode": "560001", "date": "2026-10-21"}, headers=auth_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["slots"] == ["10am-12pm", "12pm-2pm"]


@pytest.mark.asyncio
async def test_archive_hides_from_list(client: AsyncClient, auth_headers):
    rid = (await _create(client, auth_headers))["id"]
    resp = await client.post(f"{BASE}/{rid}/archive", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["archived_at"] is not None

    assert (await client.get(f"{BASE}/", headers=auth_headers)).json() == []
    resp = await client.get(f"{BASE}/", params={"include_archived": "true"}, headers=auth_headers)
    assert [r["id"] for r in resp.json()] == [rid]


class TestErrorPayloads:
    @pytest.mark.asyncio
    async def test_not_found(self, client: AsyncClient, auth_headers):
        resp = await client.get(f"{BASE}/missing", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "NotFound"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client: AsyncClient, auth_headers):
        rid = (await _create(client, auth_headers))["id"]
        resp = await client.post(f"{BASE}/{rid}/start-processing", json={}, headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "InvalidTransition"

    @pytest.mark.asyncio
    async def test_terminal_state(self, client: AsyncClient, auth_headers):
        rid = (await _create(client, auth_headers))["id"]
        await client.post(f"{BASE}/{rid}/reject", json={}, headers=auth_headers)
        resp = await client.post(f"{BASE}/{rid}/approve", json={}, headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "TerminalState"

    @pytest.mark.asyncio
    async def test_missing_refund_amount(self, client: AsyncClient, auth_headers):
        rid = (await _create(client, auth_headers))["id"]
        await client.post(f"{BASE}/{rid}/approve", json={}, headers=auth_headers)
        await client.post(f"{BASE}/{rid}/start-processing", json={}, headers=auth_headers)
        resp = await client.post(f"{BASE}/{rid}/complete", json={"refund_method": "UPI"}, headers=auth_headers)
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "MissingRefundAmount"
        assert body["field"] == "refund_amount"

    @pytest.mark.asyncio
    async def test_reject_with_refund(self, client: AsyncClient, auth_headers):
        rid = (await _create(client, auth_headers))["id"]
        resp = await client.post(
            f"{BASE}/{rid}/reject", json={"refund_amount": "10"}, headers=auth_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "refund_amount"

    @pytest.mark.asyncio
    async def test_slot_no_longer_available(self, client: AsyncClient, auth_headers, pickup_provider):
        rid = (await _create(client, auth_headers))["id"]
        await client.post(f"{BASE}/{rid}/approve", json={}, headers=auth_headers)
        pickup_provider.take_slot("560001", date(2026, 10, 21), "10am-12pm", count=5)
        resp = await client.post(f"{BASE}/{rid}/schedule-pickup", json=PICKUP, headers=auth_headers)
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "SlotNoLongerAvailable"
        assert body["retryable"] is True

    @pytest.mark.asyncio
    async def test_provider_unavailable(self, client: AsyncClient, auth_headers, pickup_provider):
        pickup_provider.outage = True
        resp = await client.get(
            f"{BASE}/pickup-slots", params={"pincode": "560001", "date": "2026-10-21"}, headers=auth_headers,
        )
        assert resp.status_code == 503
        assert resp.json()["code"] == "ProviderUnavailable"

    @pytest.mark.asyncio
    async def test_request_validation(self, client: AsyncClient, auth_headers):
        resp = await client.post(f"{BASE}/", json={"order_id": "ORD-1"}, headers=auth_headers)
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "ValidationError"
        assert body["field"]
