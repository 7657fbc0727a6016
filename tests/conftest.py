"""Test fixtures."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from returndesk.api.returns import get_workflow
from returndesk.main import app
from returndesk.services.auth import create_access_token
from returndesk.services.pickup import InMemoryPickupProvider
from returndesk.services.return_store import InMemoryReturnStore
from returndesk.services.returns import PickupRequest, ReturnSeed
from returndesk.services.workflow import ReturnWorkflow

IST = ZoneInfo("Asia/Kolkata")

# 12:00 in Bengaluru on 2026-10-19
NOW = datetime(2026, 10, 19, 6, 30, tzinfo=timezone.utc)
TODAY = date(2026, 10, 19)
SLOTS = ["10am-12pm", "12pm-2pm"]


def make_seed(**overrides) -> ReturnSeed:
    defaults = dict(
        order_id="ORD-1001",
        order_item_id="ITEM-1",
        product_id="PRD-77",
        product_title="Wireless Headphones",
        quantity=2,
        unit_price=Decimal("1499.00"),
        reason="Defective or damaged item",
        requested_by="asha@example.com",
    )
    defaults.update(overrides)
    return ReturnSeed(**defaults)


def make_pickup(**overrides) -> PickupRequest:
    defaults = dict(
        customer_name="Asha Rao",
        phone="9876543210",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
        pickup_date=date(2026, 10, 21),
        time_slot="10am-12pm",
    )
    defaults.update(overrides)
    return PickupRequest(**defaults)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def pickup_provider() -> InMemoryPickupProvider:
    return InMemoryPickupProvider(slots=SLOTS, capacity=5)


@pytest.fixture
def store() -> InMemoryReturnStore:
    return InMemoryReturnStore(tz=IST)


@pytest.fixture
def workflow(store, pickup_provider, events) -> ReturnWorkflow:
    return ReturnWorkflow(
        store,
        pickup_provider,
        publisher=events.append,
        clock=lambda: NOW,
        tz=IST,
        courier_timeout=0.5,
    )


@pytest.fixture
def auth_headers() -> dict:
    token = create_access_token({"sub": "ops@returndesk.test"})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(workflow) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_workflow] = lambda: workflow
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
