"""Return store tests, run against both the in-memory and SQL backends."""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import IST, NOW
from returndesk.database import Base
from returndesk.errors import ConflictError, NotFoundError, ValidationError
from returndesk.models import ReturnRequestRow  # noqa: F401  (registers the table)
from returndesk.services.return_store import InMemoryReturnStore, SqlReturnStore
from returndesk.services.returns import (
    AuditEntry,
    PickupBooking,
    ReturnAction,
    ReturnFilter,
    ReturnRequest,
    ReturnStatus,
)


def _record(id_, **overrides) -> ReturnRequest:
    defaults = dict(
        id=id_,
        order_id=f"ORD-{id_}",
        order_item_id=f"ITEM-{id_}",
        product_id="PRD-77",
        product_title="Wireless Headphones",
        quantity=1,
        unit_price=Decimal("1499.00"),
        total_price=Decimal("1499.00"),
        reason="Defective or damaged item",
        requested_by="asha@example.com",
        requested_at=NOW,
        updated_at=NOW,
        history=(AuditEntry(ReturnAction.CREATE, None, ReturnStatus.PENDING, "asha@example.com", NOW),),
    )
    defaults.update(overrides)
    return ReturnRequest(**defaults)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryReturnStore(tz=IST)
        return
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'returns.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlReturnStore(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), tz=IST,
    )
    await engine.dispose()


def _approve(record: ReturnRequest) -> ReturnRequest:
    return replace(record, status=ReturnStatus.APPROVED, processed_at=NOW, updated_at=NOW)


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_create_and_get(self, any_store):
        created = await any_store.create(_record("a"))
        assert created.version == 1
        loaded = await any_store.get("a")
        assert loaded.order_id == "ORD-a"
        assert loaded.total_price == Decimal("1499.00")
        assert loaded.requested_at == NOW
        assert loaded.history[0].action == ReturnAction.CREATE

    @pytest.mark.asyncio
    async def test_get_missing(self, any_store):
        with pytest.raises(NotFoundError):
            await any_store.get("nope")

    @pytest.mark.asyncio
    async def test_duplicate_id(self, any_store):
        await any_store.create(_record("a"))
        with pytest.raises(ConflictError):
            await any_store.create(_record("a"))

    @pytest.mark.asyncio
    async def test_pickup_round_trips(self, any_store):
        booking = PickupBooking(
            customer_name="Asha Rao",
            phone="9876543210",
            address="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            pincode="560001",
            pickup_date=date(2026, 10, 21),
            time_slot="10am-12pm",
            tracking_number="RP0000000001",
            booked_at=NOW,
        )
        await any_store.create(_record("a"))
        await any_store.compare_and_update("a", 1, lambda r: replace(_approve(r), pickup=booking))
        loaded = await any_store.get("a")
        assert loaded.pickup == booking


class TestCompareAndUpdate:
    @pytest.mark.asyncio
    async def test_bumps_version(self, any_store):
        await any_store.create(_record("a"))
        updated = await any_store.compare_and_update("a", 1, _approve)
        assert updated.version == 2
        assert updated.status == ReturnStatus.APPROVED
        assert (await any_store.get("a")).version == 2

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, any_store):
        await any_store.create(_record("a"))
        await any_store.compare_and_update("a", 1, _approve)
        with pytest.raises(ConflictError):
            await any_store.compare_and_update(
                "a", 1, lambda r: replace(r, status=ReturnStatus.REJECTED),
            )
        loaded = await any_store.get("a")
        assert loaded.status == ReturnStatus.APPROVED
        assert loaded.version == 2

    @pytest.mark.asyncio
    async def test_mutation_error_writes_nothing(self, any_store):
        await any_store.create(_record("a"))

        def refuse(record):
            raise ValidationError("admin_notes", "too long")

        with pytest.raises(ValidationError):
            await any_store.compare_and_update("a", 1, refuse)
        assert (await any_store.get("a")).version == 1

    @pytest.mark.asyncio
    async def test_missing_record(self, any_store):
        with pytest.raises(NotFoundError):
            await any_store.compare_and_update("nope", 1, _approve)


class TestList:
    @pytest_asyncio.fixture
    async def populated(self, any_store):
        await any_store.create(_record("a", product_title="Wireless Headphones", requested_at=NOW))
        await any_store.create(_record(
            "b",
            product_title="Cotton Kurta",
            requested_by="ravi@example.com",
            total_price=Decimal("799.00"),
            unit_price=Decimal("799.00"),
            requested_at=NOW - timedelta(days=2),
        ))
        await any_store.create(_record(
            "c",
            product_title="Steel Bottle 50%_off",
            requested_at=NOW - timedelta(days=5),
            archived_at=NOW,
        ))
        return any_store

    @pytest.mark.asyncio
    async def test_default_hides_archived_newest_first(self, populated):
        assert [r.id for r in await populated.list()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_include_archived(self, populated):
        result = await populated.list(ReturnFilter(include_archived=True, descending=False))
        assert [r.id for r in result] == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_status_filter(self, populated):
        await populated.compare_and_update("b", 1, _approve)
        result = await populated.list(ReturnFilter(status=ReturnStatus.APPROVED))
        assert [r.id for r in result] == ["b"]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, populated):
        assert [r.id for r in await populated.list(ReturnFilter(search="kurta"))] == ["b"]
        assert [r.id for r in await populated.list(ReturnFilter(search="RAVI@"))] == ["b"]
        assert [r.id for r in await populated.list(ReturnFilter(search="ORD-a"))] == ["a"]

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, populated):
        result = await populated.list(ReturnFilter(search="50%_", include_archived=True))
        assert [r.id for r in result] == ["c"]
        assert await populated.list(ReturnFilter(search="%")) == []

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive_local_days(self, populated):
        # NOW is 2026-10-19 12:00 IST; "b" was requested on 2026-10-17.
        flt = ReturnFilter(date_from=date(2026, 10, 17), date_to=date(2026, 10, 17))
        assert [r.id for r in await populated.list(flt)] == ["b"]
        flt = ReturnFilter(date_from=date(2026, 10, 17))
        assert [r.id for r in await populated.list(flt)] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_sort_by_total(self, populated):
        result = await populated.list(ReturnFilter(sort_by="total_price", descending=False))
        assert [r.id for r in result] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_unknown_sort_field(self, populated):
        with pytest.raises(ValidationError) as exc:
            await populated.list(ReturnFilter(sort_by="reason"))
        assert exc.value.field == "sort_by"


class TestSummarize:
    @pytest.mark.asyncio
    async def test_counts_and_refunds(self, any_store):
        await any_store.create(_record("a"))
        await any_store.create(_record("b", archived_at=NOW))
        await any_store.create(_record("c"))
        await any_store.compare_and_update(
            "c", 1,
            lambda r: replace(
                r, status=ReturnStatus.COMPLETED, refund_amount=Decimal("1000.50"), refund_method="UPI",
            ),
        )
        summary = await any_store.summarize()
        assert summary.by_status == {"pending": 2, "completed": 1}
        assert summary.archived == 1
        assert summary.total_refunded == Decimal("1000.50")
