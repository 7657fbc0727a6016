"""Return request store.

The store is the single source of truth for return state. Writers never
mutate fields directly: every change goes through ``compare_and_update``,
which only commits when the caller saw the latest version.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from returndesk.errors import ConflictError, NotFoundError, ValidationError
from returndesk.models.returns import ReturnRequestRow
from returndesk.services.returns import (
    AuditEntry,
    PickupBooking,
    ReturnFilter,
    ReturnRequest,
    ReturnStatus,
)

logger = logging.getLogger(__name__)

Mutation = Callable[[ReturnRequest], ReturnRequest]


@dataclass
class StoreSummary:
    by_status: dict[str, int] = field(default_factory=dict)
    archived: int = 0
    total_refunded: Decimal = Decimal("0")


def _check_sort(flt: ReturnFilter) -> None:
    if flt.sort_by not in ReturnFilter.SORT_FIELDS:
        raise ValidationError("sort_by", f"must be one of: {', '.join(ReturnFilter.SORT_FIELDS)}")


class ReturnStore:
    """Storage contract shared by the in-memory and SQL backends."""

    async def get(self, request_id: str) -> ReturnRequest:
        raise NotImplementedError

    async def list(self, flt: Optional[ReturnFilter] = None) -> list[ReturnRequest]:
        raise NotImplementedError

    async def create(self, record: ReturnRequest) -> ReturnRequest:
        raise NotImplementedError

    async def compare_and_update(
        self,
        request_id: str,
        expected_version: int,
        mutation: Mutation,
    ) -> ReturnRequest:
        raise NotImplementedError

    async def summarize(self) -> StoreSummary:
        raise NotImplementedError


class InMemoryReturnStore(ReturnStore):
    """Dict-backed store for development and tests."""

    def __init__(self, tz=timezone.utc):
        self._records: dict[str, ReturnRequest] = {}
        self._tz = tz

    def _load(self, request_id: str) -> ReturnRequest:
        record = self._records.get(request_id)
        if record is None:
            raise NotFoundError(f"Return not found: {request_id}")
        return record

    async def get(self, request_id: str) -> ReturnRequest:
        return self._load(request_id)

    async def list(self, flt: Optional[ReturnFilter] = None) -> list[ReturnRequest]:
        flt = flt or ReturnFilter()
        _check_sort(flt)
        result = [r for r in self._records.values() if flt.matches(r, self._tz)]
        result.sort(key=lambda r: r.id)
        result.sort(key=lambda r: getattr(r, flt.sort_by), reverse=flt.descending)
        return result

    async def create(self, record: ReturnRequest) -> ReturnRequest:
        if record.id in self._records:
            raise ConflictError(f"Return already exists: {record.id}")
        record = replace(record, version=1)
        self._records[record.id] = record
        return record

    async def compare_and_update(
        self,
        request_id: str,
        expected_version: int,
        mutation: Mutation,
    ) -> ReturnRequest:
        # No await between the version check and the write.
        current = self._load(request_id)
        if current.version != expected_version:
            raise ConflictError(
                f"Return {request_id} changed (expected version {expected_version}, "
                f"found {current.version})"
            )
        updated = replace(mutation(current), id=current.id, version=current.version + 1)
        self._records[request_id] = updated
        return updated

    async def summarize(self) -> StoreSummary:
        summary = StoreSummary()
        for record in self._records.values():
            key = record.status.value
            summary.by_status[key] = summary.by_status.get(key, 0) + 1
            if record.is_archived:
                summary.archived += 1
            if record.status == ReturnStatus.COMPLETED and record.refund_amount is not None:
                summary.total_refunded += record.refund_amount
        return summary


# ── SQL backend ─────────────────────────────────────────

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def row_to_domain(row: ReturnRequestRow) -> ReturnRequest:
    return ReturnRequest(
        id=row.id,
        order_id=row.order_id,
        order_item_id=row.order_item_id,
        product_id=row.product_id,
        product_title=row.product_title,
        quantity=row.quantity,
        unit_price=_decimal(row.unit_price),
        total_price=_decimal(row.total_price),
        reason=row.reason,
        customer_notes=row.customer_notes,
        requested_by=row.requested_by,
        requested_at=_aware(row.requested_at),
        status=ReturnStatus(row.status),
        admin_notes=row.admin_notes,
        refund_amount=_decimal(row.refund_amount),
        refund_method=row.refund_method,
        pickup=PickupBooking.from_dict(row.pickup) if row.pickup else None,
        history=tuple(AuditEntry.from_dict(e) for e in (row.history or [])),
        processed_at=_aware(row.processed_at),
        archived_at=_aware(row.archived_at),
        updated_at=_aware(row.updated_at),
        version=row.version,
    )


def domain_to_values(record: ReturnRequest) -> dict:
    return {
        "id": record.id,
        "order_id": record.order_id,
        "order_item_id": record.order_item_id,
        "product_id": record.product_id,
        "product_title": record.product_title,
        "quantity": record.quantity,
        "unit_price": record.unit_price,
        "total_price": record.total_price,
        "reason": record.reason,
        "customer_notes": record.customer_notes,
        "requested_by": record.requested_by,
        "requested_at": record.requested_at,
        "status": record.status.value,
        "admin_notes": record.admin_notes,
        "refund_amount": record.refund_amount,
        "refund_method": record.refund_method,
        "pickup": record.pickup.to_dict() if record.pickup else None,
        "history": [e.to_dict() for e in record.history],
        "processed_at": record.processed_at,
        "archived_at": record.archived_at,
        "updated_at": record.updated_at,
        "version": record.version,
    }


class SqlReturnStore(ReturnStore):
    """SQLAlchemy-backed store; compare-and-update is a conditional UPDATE."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], tz=timezone.utc):
        self._session_factory = session_factory
        self._tz = tz

    async def get(self, request_id: str) -> ReturnRequest:
        async with self._session_factory() as session:
            row = await session.get(ReturnRequestRow, request_id)
            if row is None:
                raise NotFoundError(f"Return not found: {request_id}")
            return row_to_domain(row)

    async def list(self, flt: Optional[ReturnFilter] = None) -> list[ReturnRequest]:
        flt = flt or ReturnFilter()
        _check_sort(flt)
        stmt = select(ReturnRequestRow)
        if not flt.include_archived:
            stmt = stmt.where(ReturnRequestRow.archived_at.is_(None))
        if flt.status:
            stmt = stmt.where(ReturnRequestRow.status == flt.status.value)
        if flt.requested_by:
            stmt = stmt.where(ReturnRequestRow.requested_by == flt.requested_by)
        if flt.search:
            pattern = _like_pattern(flt.search)
            stmt = stmt.where(or_(
                ReturnRequestRow.product_title.ilike(pattern, escape="\\"),
                ReturnRequestRow.requested_by.ilike(pattern, escape="\\"),
                ReturnRequestRow.reason.ilike(pattern, escape="\\"),
                ReturnRequestRow.id.ilike(pattern, escape="\\"),
                ReturnRequestRow.order_id.ilike(pattern, escape="\\"),
            ))
        start, end = flt.date_bounds(self._tz)
        if start:
            stmt = stmt.where(ReturnRequestRow.requested_at >= start)
        if end:
            stmt = stmt.where(ReturnRequestRow.requested_at < end)
        column = getattr(ReturnRequestRow, flt.sort_by)
        stmt = stmt.order_by(column.desc() if flt.descending else column.asc(), ReturnRequestRow.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row_to_domain(row) for row in result.scalars().all()]

    async def create(self, record: ReturnRequest) -> ReturnRequest:
        record = replace(record, version=1)
        async with self._session_factory() as session:
            if await session.get(ReturnRequestRow, record.id) is not None:
                raise ConflictError(f"Return already exists: {record.id}")
            session.add(ReturnRequestRow(**domain_to_values(record)))
            await session.commit()
        return record

    async def compare_and_update(
        self,
        request_id: str,
        expected_version: int,
        mutation: Mutation,
    ) -> ReturnRequest:
        async with self._session_factory() as session:
            row = await session.get(ReturnRequestRow, request_id)
            if row is None:
                raise NotFoundError(f"Return not found: {request_id}")
            if row.version != expected_version:
                raise ConflictError(
                    f"Return {request_id} changed (expected version {expected_version}, "
                    f"found {row.version})"
                )
            updated = replace(
                mutation(row_to_domain(row)), id=request_id, version=expected_version + 1,
            )
            values = domain_to_values(updated)
            values.pop("id")
            result = await session.execute(
                update(ReturnRequestRow)
                .where(
                    ReturnRequestRow.id == request_id,
                    ReturnRequestRow.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConflictError(f"Return {request_id} was modified concurrently")
            await session.commit()
        logger.debug(f"Committed return {request_id} at version {updated.version}")
        return updated

    async def summarize(self) -> StoreSummary:
        summary = StoreSummary()
        async with self._session_factory() as session:
            rows = await session.execute(
                select(ReturnRequestRow.status, func.count()).group_by(ReturnRequestRow.status)
            )
            for status, count in rows.all():
                summary.by_status[status] = count
            summary.archived = (await session.execute(
                select(func.count()).select_from(ReturnRequestRow)
                .where(ReturnRequestRow.archived_at.is_not(None))
            )).scalar_one()
            refunded = (await session.execute(
                select(func.coalesce(func.sum(ReturnRequestRow.refund_amount), 0))
                .where(ReturnRequestRow.status == ReturnStatus.COMPLETED.value)
            )).scalar_one()
            summary.total_refunded = Decimal(str(refunded))
        return summary


def build_store(settings) -> ReturnStore:
    tz = ZoneInfo(settings.timezone)
    if settings.store_backend == "memory":
        return InMemoryReturnStore(tz=tz)
    if settings.store_backend == "sql":
        from returndesk.database import async_session
        return SqlReturnStore(async_session, tz=tz)
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
