"""Return request table."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, DateTime, Enum, Integer, Numeric, String, Text, JSON,
)

from returndesk.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class ReturnRequestRow(Base):
    """Customer return / refund request. Rows are archived, never deleted."""
    __tablename__ = "return_requests"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(100), nullable=False, index=True)
    order_item_id = Column(String(100), nullable=True, index=True)
    product_id = Column(String(100), nullable=False)
    product_title = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(500), nullable=False)
    customer_notes = Column(Text, nullable=True)
    requested_by = Column(String(320), nullable=False, index=True)
    requested_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    status = Column(
        Enum(
            "pending", "approved", "rejected", "processing", "completed",
            name="return_status",
        ),
        nullable=False,
        default="pending",
        index=True,
    )
    admin_notes = Column(Text, nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_method = Column(String(50), nullable=True)
    pickup = Column(JSON, nullable=True)  # PickupBooking.to_dict()
    history = Column(JSON, default=list)  # [AuditEntry.to_dict()]
    processed_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow)
    version = Column(Integer, nullable=False, default=1)
