"""Return workflow engine.

Every operator action runs the same sequence: load the record, validate the
action against the rules, (for pickups) book the courier, then commit with
compare-and-update. A lost race reloads and re-validates; the event is only
published after a successful commit.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo

from returndesk.errors import (
    ConflictError,
    InvalidTransitionError,
    ProviderUnavailableError,
    TerminalStateError,
    ValidationError,
)
from returndesk.services import return_rules as rules
from returndesk.services.notification import NotificationService, build_notification_service
from returndesk.services.pickup import (
    PickupProvider,
    PickupTracking,
    ReturnParcel,
    build_pickup_provider,
)
from returndesk.services.return_store import ReturnStore, build_store
from returndesk.services.returns import (
    AuditEntry,
    OrderSnapshot,
    PickupBooking,
    PickupRequest,
    ReturnAction,
    ReturnEvent,
    ReturnFilter,
    ReturnRequest,
    ReturnSeed,
    ReturnStatus,
    TransitionPayload,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventPublisher = Callable[[ReturnEvent], object]

DEFAULT_REFUND_METHODS = ("Credit Card", "UPI", "Debit Card", "Store Credit")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReturnWorkflow:
    """State machine orchestrator for return requests."""

    def __init__(
        self,
        store: ReturnStore,
        pickup_provider: PickupProvider,
        publisher: Optional[EventPublisher] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        tz=timezone.utc,
        refund_methods=DEFAULT_REFUND_METHODS,
        max_attempts: int = 3,
        courier_timeout: float = 10.0,
        return_window_days: int = 7,
        notifications: Optional[NotificationService] = None,
    ):
        self.store = store
        self.pickup_provider = pickup_provider
        self.notifications = notifications
        if publisher is None and notifications is not None:
            publisher = notifications.publish
        self._publisher = publisher
        self._clock = clock
        self._tz = tz
        self.refund_methods = tuple(refund_methods)
        self.max_attempts = max(1, max_attempts)
        self.courier_timeout = courier_timeout
        self.return_window_days = return_window_days

    def today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    async def aclose(self) -> None:
        """Let in-flight event deliveries finish."""
        if self.notifications is not None:
            await self.notifications.drain()

    # ── Creation ─────────────────────────────────────────

    async def create_return(
        self,
        seed: ReturnSeed,
        order: Optional[OrderSnapshot] = None,
    ) -> ReturnRequest:
        """Open a new return in ``pending``."""
        total = rules.validate_seed(seed)
        now = self._clock()
        if order is not None:
            if order.order_id != seed.order_id:
                raise ValidationError("order_id", "does not match the supplied order")
            rules.check_return_eligibility(order, now, self.return_window_days)
        if seed.order_item_id:
            existing = await self.store.list(ReturnFilter(include_archived=True, search=seed.order_id))
            rules.check_no_open_return(seed.order_item_id, existing)

        record = ReturnRequest(
            id=str(uuid.uuid4()),
            order_id=seed.order_id,
            order_item_id=seed.order_item_id,
            product_id=seed.product_id,
            product_title=seed.product_title,
            quantity=seed.quantity,
            unit_price=Decimal(str(seed.unit_price)),
            total_price=total,
            reason=seed.reason.strip(),
            customer_notes=seed.customer_notes,
            requested_by=seed.requested_by,
            requested_at=now,
            updated_at=now,
            history=(AuditEntry(
                action=ReturnAction.CREATE,
                from_status=None,
                to_status=ReturnStatus.PENDING,
                actor=seed.requested_by,
                at=now,
            ),),
        )
        record = await self.store.create(record)
        logger.info(f"Return {record.id} created for order {record.order_id} by {record.requested_by}")
        self._emit(record.id, ReturnAction.CREATE, None, ReturnStatus.PENDING, seed.requested_by)
        return record

    # ── Transitions ──────────────────────────────────────

    async def approve(
        self,
        request_id: str,
        admin_notes: Optional[str] = None,
        refund_amount: Optional[Decimal] = None,
        refund_method: Optional[str] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        payload = TransitionPayload(
            admin_notes=admin_notes, refund_amount=refund_amount, refund_method=refund_method,
        )
        return await self.execute(request_id, ReturnAction.APPROVE, payload, actor=actor)

    async def reject(
        self,
        request_id: str,
        admin_notes: Optional[str] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        payload = TransitionPayload(admin_notes=admin_notes)
        return await self.execute(request_id, ReturnAction.REJECT, payload, actor=actor)

    async def schedule_pickup(
        self,
        request_id: str,
        pickup: PickupRequest,
        admin_notes: Optional[str] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        payload = TransitionPayload(admin_notes=admin_notes, pickup=pickup)
        return await self.execute(request_id, ReturnAction.SCHEDULE_PICKUP, payload, actor=actor)

    async def start_processing(
        self,
        request_id: str,
        admin_notes: Optional[str] = None,
        refund_amount: Optional[Decimal] = None,
        refund_method: Optional[str] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        payload = TransitionPayload(
            admin_notes=admin_notes, refund_amount=refund_amount, refund_method=refund_method,
        )
        return await self.execute(request_id, ReturnAction.START_PROCESSING, payload, actor=actor)

    async def complete(
        self,
        request_id: str,
        refund_amount: Optional[Decimal] = None,
        refund_method: Optional[str] = None,
        admin_notes: Optional[str] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        payload = TransitionPayload(
            admin_notes=admin_notes, refund_amount=refund_amount, refund_method=refund_method,
        )
        return await self.execute(request_id, ReturnAction.COMPLETE, payload, actor=actor)

    async def execute(
        self,
        request_id: str,
        action: ReturnAction,
        payload: Optional[TransitionPayload] = None,
        *,
        actor: str = "system",
    ) -> ReturnRequest:
        """Validate and commit one lifecycle action, retrying lost races."""
        payload = payload or TransitionPayload()
        contended = False
        booking: Optional[PickupBooking] = None
        try:
            for attempt in range(1, self.max_attempts + 1):
                current = await self.store.get(request_id)
                try:
                    target = rules.check_transition(current, action)
                except (InvalidTransitionError, TerminalStateError) as e:
                    if contended:
                        raise ConflictError(
                            f"Return {request_id} was changed by another operator "
                            f"(now '{current.status.value}'); reload and try again"
                        ) from e
                    raise
                changes = rules.validate_payload(current, action, payload, self.refund_methods)

                if action == ReturnAction.SCHEDULE_PICKUP and booking is None:
                    booking = await self._book_pickup(current, payload.pickup)

                now = self._clock()

                def mutation(record: ReturnRequest) -> ReturnRequest:
                    return rules.apply_transition(
                        record, action, target, changes, actor, now, booking=booking,
                    )

                try:
                    updated = await self.store.compare_and_update(request_id, current.version, mutation)
                except ConflictError:
                    contended = True
                    logger.info(
                        f"Return {request_id}: {action.value} lost a race "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    continue

                superseded = None
                if booking is not None and current.pickup is not None:
                    superseded = current.pickup.tracking_number
                # The stored record now owns the new booking.
                booking = None
                logger.info(
                    f"Return {request_id}: {action.value} {current.status.value} → "
                    f"{updated.status.value} by {actor}"
                )
                self._emit(request_id, action, current.status, updated.status, actor)
                if superseded is not None:
                    await asyncio.shield(self._cancel_quietly(superseded))
                return updated

            raise ConflictError(
                f"Return {request_id} is being changed concurrently; reload and try again"
            )
        except BaseException:
            if booking is not None:
                await self._cancel_quietly(booking.tracking_number)
            raise

    async def archive(self, request_id: str, *, actor: str = "system") -> ReturnRequest:
        """Soft-delete: hide the request from default listings, keep the record."""
        for attempt in range(1, self.max_attempts + 1):
            current = await self.store.get(request_id)
            now = self._clock()
            try:
                updated = await self.store.compare_and_update(
                    request_id,
                    current.version,
                    lambda record: rules.apply_archive(record, actor, now),
                )
            except ConflictError:
                logger.info(f"Return {request_id}: archive lost a race (attempt {attempt})")
                continue
            logger.info(f"Return {request_id} archived by {actor}")
            self._emit(request_id, ReturnAction.ARCHIVE, current.status, updated.status, actor)
            return updated
        raise ConflictError(f"Return {request_id} is being changed concurrently; reload and try again")

    # ── Courier ──────────────────────────────────────────

    async def _courier(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.courier_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Courier call timed out after {self.courier_timeout}s")
            raise ProviderUnavailableError("Courier provider timed out") from e

    async def list_available_slots(self, pincode: str, pickup_date: date) -> list[str]:
        rules.validate_pincode(pincode)
        rules.validate_pickup_date(pickup_date, self.today())
        return await self._courier(self.pickup_provider.available_slots(pincode.strip(), pickup_date))

    async def _book_pickup(self, record: ReturnRequest, pickup: PickupRequest) -> PickupBooking:
        rules.validate_pickup_details(pickup, self.today())
        available = await self._courier(
            self.pickup_provider.available_slots(pickup.pincode, pickup.pickup_date)
        )
        rules.check_slot(pickup.time_slot, available)
        parcel = ReturnParcel(
            return_id=record.id,
            order_id=record.order_id,
            product_title=record.product_title,
            quantity=record.quantity,
            reason=record.reason,
        )
        tracking_number = await self._courier(self.pickup_provider.book_pickup(pickup, parcel))
        logger.info(f"Return {record.id}: pickup booked, tracking {tracking_number}")
        return PickupBooking.from_request(pickup, tracking_number, self._clock())

    async def _cancel_quietly(self, tracking_number: str) -> None:
        try:
            await self._courier(self.pickup_provider.cancel_pickup(tracking_number))
        except Exception as e:
            logger.warning(f"Could not cancel pickup {tracking_number}: {e}")

    async def track_pickup(self, request_id: str) -> PickupTracking:
        record = await self.store.get(request_id)
        if record.pickup is None:
            raise ValidationError("pickup", "no pickup has been scheduled for this return")
        return await self._courier(self.pickup_provider.track_pickup(record.pickup.tracking_number))

    # ── Reads & events ───────────────────────────────────

    async def get(self, request_id: str) -> ReturnRequest:
        return await self.store.get(request_id)

    def _emit(
        self,
        request_id: str,
        action: ReturnAction,
        from_status: Optional[ReturnStatus],
        to_status: ReturnStatus,
        actor: str,
    ) -> None:
        if self._publisher is None:
            return
        event = ReturnEvent(
            event_id=str(uuid.uuid4()),
            request_id=request_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            timestamp=self._clock(),
        )
        try:
            self._publisher(event)
        except Exception:
            logger.exception(f"Failed to publish {action.value} event for return {request_id}")


def build_workflow(settings) -> ReturnWorkflow:
    notifications: NotificationService = build_notification_service(settings)
    return ReturnWorkflow(
        store=build_store(settings),
        pickup_provider=build_pickup_provider(settings),
        notifications=notifications,
        tz=ZoneInfo(settings.timezone),
        refund_methods=settings.refund_methods,
        max_attempts=settings.max_commit_attempts,
        courier_timeout=settings.courier_timeout_seconds,
        return_window_days=settings.return_window_days,
    )
