"""Eligibility and validation rules for the return lifecycle.

Pure functions: no I/O, no clock. Callers pass in ``today``/``now`` and the
courier's slot list so every rule can be evaluated and tested in isolation.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence

from returndesk.errors import (
    InvalidTransitionError,
    MissingRefundAmountError,
    SlotNoLongerAvailableError,
    TerminalStateError,
    ValidationError,
)
from returndesk.services.returns import (
    OPEN_STATUSES,
    AuditEntry,
    OrderSnapshot,
    PickupBooking,
    PickupRequest,
    ReturnAction,
    ReturnRequest,
    ReturnSeed,
    ReturnStatus,
    TransitionPayload,
)

# action -> (required source status, resulting status)
TRANSITIONS: dict[ReturnAction, tuple[ReturnStatus, ReturnStatus]] = {
    ReturnAction.APPROVE: (ReturnStatus.PENDING, ReturnStatus.APPROVED),
    ReturnAction.REJECT: (ReturnStatus.PENDING, ReturnStatus.REJECTED),
    ReturnAction.SCHEDULE_PICKUP: (ReturnStatus.APPROVED, ReturnStatus.APPROVED),
    ReturnAction.START_PROCESSING: (ReturnStatus.APPROVED, ReturnStatus.PROCESSING),
    ReturnAction.COMPLETE: (ReturnStatus.PROCESSING, ReturnStatus.COMPLETED),
}

PINCODE_RE = re.compile(r"^\d{6}$")
MAX_NOTES_LENGTH = 2000
MAX_REASON_LENGTH = 500
MONEY_PLACES = 2
PICKUP_REQUIRED_FIELDS = ("customer_name", "phone", "address", "city", "state", "pincode")


def check_transition(record: ReturnRequest, action: ReturnAction) -> ReturnStatus:
    """Return the target status for ``action`` or raise why it is illegal."""
    if action not in TRANSITIONS:
        raise InvalidTransitionError(f"Unknown lifecycle action: {action}")
    if record.is_terminal:
        raise TerminalStateError(
            f"Return {record.id} is already {record.status.value}; no further changes are allowed"
        )
    if record.is_archived:
        raise ValidationError("archived_at", "return request is archived")
    source, target = TRANSITIONS[action]
    if record.status != source:
        raise InvalidTransitionError(
            f"Cannot {action.value} a return in status '{record.status.value}' "
            f"(requires '{source.value}')"
        )
    return target


def _to_decimal(value, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(field, "must be a number")


def _to_money(value, field: str) -> Decimal:
    """Amounts are stored as NUMERIC(10, 2); refuse anything finer."""
    amount = _to_decimal(value, field)
    if not amount.is_finite():
        raise ValidationError(field, "must be a number")
    if amount.as_tuple().exponent < -MONEY_PLACES:
        raise ValidationError(field, f"must have at most {MONEY_PLACES} decimal places")
    return amount


def validate_refund_amount(amount, total_price: Decimal) -> Decimal:
    amount = _to_money(amount, "refund_amount")
    if amount <= 0:
        raise ValidationError("refund_amount", "must be greater than zero")
    if amount > total_price:
        raise ValidationError(
            "refund_amount", f"must not exceed the return total of {total_price}"
        )
    return amount


def validate_refund_method(method: str, allowed: Iterable[str]) -> str:
    allowed = list(allowed)
    if method not in allowed:
        raise ValidationError("refund_method", f"must be one of: {', '.join(allowed)}")
    return method


def validate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError("admin_notes", f"must be at most {MAX_NOTES_LENGTH} characters")
    return notes


def validate_pincode(pincode: str) -> str:
    pincode = (pincode or "").strip()
    if not PINCODE_RE.match(pincode):
        raise ValidationError("pincode", "must be a 6-digit postal code")
    return pincode


def validate_pickup_date(pickup_date: date, today: date) -> date:
    if pickup_date < today:
        raise ValidationError("pickup_date", "must be today or later")
    return pickup_date


def validate_pickup_details(request: PickupRequest, today: date) -> None:
    """Address, contact and date checks that need no courier round-trip."""
    for name in PICKUP_REQUIRED_FIELDS:
        if not (getattr(request, name) or "").strip():
            raise ValidationError(name, "required")
    validate_pincode(request.pincode)
    validate_pickup_date(request.pickup_date, today)
    if not (request.time_slot or "").strip():
        raise ValidationError("time_slot", "required")


def check_slot(time_slot: str, available: Sequence[str]) -> None:
    """The slot must be in the courier's *current* availability, never a cached one."""
    if time_slot not in available:
        raise SlotNoLongerAvailableError(
            f"Pickup slot '{time_slot}' is no longer available"
        )


def validate_payload(
    record: ReturnRequest,
    action: ReturnAction,
    payload: TransitionPayload,
    refund_methods: Iterable[str],
) -> dict:
    """Validate the action's payload and return the field changes it implies.

    Pickup slot availability is checked separately (``check_slot``) because it
    needs a fresh courier lookup.
    """
    changes: dict = {}
    if payload.admin_notes is not None:
        changes["admin_notes"] = validate_notes(payload.admin_notes)

    if action == ReturnAction.REJECT:
        if payload.refund_amount is not None:
            raise ValidationError("refund_amount", "cannot be set when rejecting a return")
        if payload.refund_method is not None:
            raise ValidationError("refund_method", "cannot be set when rejecting a return")

    elif action in (ReturnAction.APPROVE, ReturnAction.START_PROCESSING):
        if payload.refund_amount is not None:
            changes["refund_amount"] = validate_refund_amount(payload.refund_amount, record.total_price)
        if payload.refund_method is not None:
            changes["refund_method"] = validate_refund_method(payload.refund_method, refund_methods)

    elif action == ReturnAction.COMPLETE:
        amount = payload.refund_amount if payload.refund_amount is not None else record.refund_amount
        if amount is None:
            raise MissingRefundAmountError()
        changes["refund_amount"] = validate_refund_amount(amount, record.total_price)
        method = payload.refund_method or record.refund_method
        if not method:
            raise ValidationError("refund_method", "required")
        changes["refund_method"] = validate_refund_method(method, refund_methods)

    elif action == ReturnAction.SCHEDULE_PICKUP:
        if payload.pickup is None:
            raise ValidationError("pickup", "required")

    return changes


def apply_transition(
    record: ReturnRequest,
    action: ReturnAction,
    target: ReturnStatus,
    changes: dict,
    actor: str,
    now: datetime,
    booking: Optional[PickupBooking] = None,
) -> ReturnRequest:
    """Build the next version of ``record``; the store assigns the version."""
    fields = dict(changes)
    if booking is not None:
        fields["pickup"] = booking
    if target != record.status:
        fields["status"] = target
        fields["processed_at"] = now
    entry = AuditEntry(
        action=action,
        from_status=record.status,
        to_status=target,
        actor=actor,
        at=now,
        admin_notes=changes.get("admin_notes"),
    )
    return replace(record, updated_at=now, history=record.history + (entry,), **fields)


def apply_archive(record: ReturnRequest, actor: str, now: datetime) -> ReturnRequest:
    if record.is_terminal:
        raise TerminalStateError(
            f"Return {record.id} is already {record.status.value}; no further changes are allowed"
        )
    if record.is_archived:
        raise ValidationError("archived_at", "return request is already archived")
    entry = AuditEntry(
        action=ReturnAction.ARCHIVE,
        from_status=record.status,
        to_status=record.status,
        actor=actor,
        at=now,
    )
    return replace(record, archived_at=now, updated_at=now, history=record.history + (entry,))


def validate_seed(seed: ReturnSeed) -> Decimal:
    """Check a creation seed and return its total price."""
    for name in ("order_id", "product_id", "product_title", "reason", "requested_by"):
        if not (getattr(seed, name) or "").strip():
            raise ValidationError(name, "required")
    if len(seed.reason) > MAX_REASON_LENGTH:
        raise ValidationError("reason", f"must be at most {MAX_REASON_LENGTH} characters")
    if isinstance(seed.quantity, bool) or not isinstance(seed.quantity, int) or seed.quantity <= 0:
        raise ValidationError("quantity", "must be a positive integer")
    unit_price = _to_money(seed.unit_price, "unit_price")
    if unit_price < 0:
        raise ValidationError("unit_price", "must not be negative")
    expected = unit_price * seed.quantity
    if seed.total_price is None:
        return expected
    total = _to_money(seed.total_price, "total_price")
    if total != expected:
        raise ValidationError(
            "total_price", f"must equal unit_price * quantity ({expected})"
        )
    return total


def check_return_eligibility(
    order: OrderSnapshot,
    now: datetime,
    window_days: int,
) -> None:
    """Storefront eligibility: completed, physical, inside the return window."""
    if order.status != "completed":
        raise ValidationError("order_id", "order must be completed before return")
    if order.product_type == "digital":
        raise ValidationError("product_id", "digital products are not eligible for return")
    if order.ordered_at < now - timedelta(days=window_days):
        raise ValidationError("order_id", f"return window has expired ({window_days} days)")


def check_no_open_return(order_item_id: Optional[str], existing: Iterable[ReturnRequest]) -> None:
    if not order_item_id:
        return
    for record in existing:
        if record.order_item_id == order_item_id and record.status in OPEN_STATUSES:
            raise ValidationError(
                "order_item_id", f"return request {record.id} is already open for this item"
            )
