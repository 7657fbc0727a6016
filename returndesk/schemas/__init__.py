"""Pydantic schemas for the returns API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from returndesk.services.returns import ReturnAction, ReturnStatus


# ── Create ───────────────────────────────────────────────
class OrderSnapshotIn(BaseModel):
    status: str
    ordered_at: datetime
    product_type: str = "physical"


class ReturnCreate(BaseModel):
    order_id: str
    product_id: str
    product_title: str
    quantity: int = 1
    unit_price: Decimal
    total_price: Optional[Decimal] = None
    reason: str
    order_item_id: Optional[str] = None
    customer_notes: Optional[str] = None
    requested_by: Optional[str] = None  # defaults to the caller
    order: Optional[OrderSnapshotIn] = None


# ── Transitions ──────────────────────────────────────────
class ApproveBody(BaseModel):
    admin_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None


class RejectBody(BaseModel):
    admin_notes: Optional[str] = None
    # Accepted only so that a refund sent with a rejection is refused explicitly.
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None


class StartProcessingBody(ApproveBody):
    pass


class CompleteBody(BaseModel):
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    admin_notes: Optional[str] = None


class SchedulePickupBody(BaseModel):
    customer_name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    pickup_date: date
    time_slot: str
    special_instructions: Optional[str] = None
    admin_notes: Optional[str] = None


# ── Output ───────────────────────────────────────────────
class PickupOut(BaseModel):
    customer_name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    pickup_date: date
    time_slot: str
    special_instructions: Optional[str] = None
    tracking_number: str
    booked_at: datetime

    model_config = {"from_attributes": True}


class AuditEntryOut(BaseModel):
    action: ReturnAction
    from_status: Optional[ReturnStatus] = None
    to_status: ReturnStatus
    actor: str
    at: datetime
    admin_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class ReturnOut(BaseModel):
    id: str
    order_id: str
    order_item_id: Optional[str] = None
    product_id: str
    product_title: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    reason: str
    customer_notes: Optional[str] = None
    requested_by: str
    requested_at: datetime
    status: ReturnStatus
    admin_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    pickup: Optional[PickupOut] = None
    processed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    updated_at: datetime
    version: int
    history: list[AuditEntryOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class StatsOut(BaseModel):
    total: int
    by_status: dict[str, int]
    archived: int
    total_refunded: Decimal


class SlotsOut(BaseModel):
    pincode: str
    pickup_date: date
    slots: list[str]


class TrackingOut(BaseModel):
    tracking_number: str
    status: str
    location: str = ""
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}


class ErrorOut(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    retryable: bool = False
