"""Return request domain types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({ReturnStatus.REJECTED, ReturnStatus.COMPLETED})
OPEN_STATUSES = frozenset({ReturnStatus.PENDING, ReturnStatus.APPROVED, ReturnStatus.PROCESSING})


class ReturnAction(str, Enum):
    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    SCHEDULE_PICKUP = "schedule_pickup"
    START_PROCESSING = "start_processing"
    COMPLETE = "complete"
    ARCHIVE = "archive"


# Reasons offered by the storefront form; free text is accepted too.
RETURN_REASONS = (
    "Defective or damaged item",
    "Wrong item received",
    "Item not as described",
    "Changed mind",
    "Size not suitable",
    "Quality not satisfactory",
    "Other",
)


@dataclass(frozen=True)
class PickupRequest:
    """Operator-supplied pickup details, before the courier confirms them."""
    customer_name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    pickup_date: date
    time_slot: str
    special_instructions: Optional[str] = None


@dataclass(frozen=True)
class PickupBooking:
    """A confirmed courier pickup, owned by its return request."""
    customer_name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    pickup_date: date
    time_slot: str
    tracking_number: str
    booked_at: datetime
    special_instructions: Optional[str] = None

    @classmethod
    def from_request(cls, req: PickupRequest, tracking_number: str, booked_at: datetime) -> "PickupBooking":
        return cls(
            customer_name=req.customer_name,
            phone=req.phone,
            address=req.address,
            city=req.city,
            state=req.state,
            pincode=req.pincode,
            pickup_date=req.pickup_date,
            time_slot=req.time_slot,
            special_instructions=req.special_instructions,
            tracking_number=tracking_number,
            booked_at=booked_at,
        )

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "pickup_date": self.pickup_date.isoformat(),
            "time_slot": self.time_slot,
            "special_instructions": self.special_instructions,
            "tracking_number": self.tracking_number,
            "booked_at": self.booked_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PickupBooking":
        return cls(
            customer_name=data["customer_name"],
            phone=data["phone"],
            address=data["address"],
            city=data["city"],
            state=data["state"],
            pincode=data["pincode"],
            pickup_date=date.fromisoformat(data["pickup_date"]),
            time_slot=data["time_slot"],
            special_instructions=data.get("special_instructions"),
            tracking_number=data["tracking_number"],
            booked_at=datetime.fromisoformat(data["booked_at"]),
        )


@dataclass(frozen=True)
class AuditEntry:
    action: ReturnAction
    from_status: Optional[ReturnStatus]
    to_status: ReturnStatus
    actor: str
    at: datetime
    admin_notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "at": self.at.isoformat(),
            "admin_notes": self.admin_notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            action=ReturnAction(data["action"]),
            from_status=ReturnStatus(data["from_status"]) if data.get("from_status") else None,
            to_status=ReturnStatus(data["to_status"]),
            actor=data["actor"],
            at=datetime.fromisoformat(data["at"]),
            admin_notes=data.get("admin_notes"),
        )


@dataclass(frozen=True)
class ReturnRequest:
    """Customer return / refund request (aggregate root)."""
    id: str
    order_id: str
    product_id: str
    product_title: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    reason: str
    requested_by: str
    requested_at: datetime
    updated_at: datetime
    status: ReturnStatus = ReturnStatus.PENDING
    order_item_id: Optional[str] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    pickup: Optional[PickupBooking] = None
    processed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    version: int = 1
    history: tuple[AuditEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class ReturnSeed:
    """What the order collaborator supplies when a customer asks for a return."""
    order_id: str
    product_id: str
    product_title: str
    quantity: int
    unit_price: Decimal
    reason: str
    requested_by: str
    total_price: Optional[Decimal] = None
    order_item_id: Optional[str] = None
    customer_notes: Optional[str] = None


@dataclass
class OrderSnapshot:
    """Read-only view of the originating order, used for eligibility checks."""
    order_id: str
    status: str
    ordered_at: datetime
    product_type: str = "physical"


@dataclass
class TransitionPayload:
    admin_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    pickup: Optional[PickupRequest] = None


@dataclass
class ReturnFilter:
    status: Optional[ReturnStatus] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    requested_by: Optional[str] = None
    include_archived: bool = False
    sort_by: str = "requested_at"  # requested_at, updated_at, total_price
    descending: bool = True

    SORT_FIELDS = ("requested_at", "updated_at", "total_price")

    def date_bounds(self, tz) -> tuple[Optional[datetime], Optional[datetime]]:
        """UTC [start, end) bounds covering date_from..date_to inclusive in ``tz``."""
        start = end = None
        if self.date_from:
            start = datetime.combine(self.date_from, time.min, tzinfo=tz).astimezone(timezone.utc)
        if self.date_to:
            end = datetime.combine(self.date_to + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
        return start, end

    def matches(self, record: ReturnRequest, tz) -> bool:
        if not self.include_archived and record.is_archived:
            return False
        if self.status and record.status != self.status:
            return False
        if self.requested_by and record.requested_by != self.requested_by:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = (
                record.product_title, record.requested_by, record.reason,
                record.id, record.order_id,
            )
            if not any(needle in value.lower() for value in haystack):
                return False
        start, end = self.date_bounds(tz)
        if start and record.requested_at < start:
            return False
        if end and record.requested_at >= end:
            return False
        return True


@dataclass
class ReturnEvent:
    """Domain event emitted after every committed change."""
    event_id: str
    request_id: str
    action: ReturnAction
    from_status: Optional[ReturnStatus]
    to_status: ReturnStatus
    actor: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "request_id": self.request_id,
            "action": self.action.value,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
        }
