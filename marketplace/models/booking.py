# marketplace/models/booking.py
"""
Booking model for the marketplace.

A booking records a student's reservation of a provider's service at an
instant. It is not linked to an availability slot by foreign key: the slot
is resolved by provider, service, date and time range whenever counters need
to move, and a booking without a matching slot is allowed.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Dict, FrozenSet

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Created, awaiting payment/confirmation
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"  # Service delivered; earnings are created from here
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}


class Booking(Base):
    """Reservation of a provider's service by a student."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    student_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    provider_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False)

    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    notes = Column(Text, nullable=True)
    # True while this booking holds a spot in its slot counter
    slot_reserved = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Relationships
    student = relationship("User", foreign_keys=[student_id])
    provider = relationship("User", foreign_keys=[provider_id])
    service = relationship("Service")
    earning = relationship("Earning", back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'REFUNDED')",
            name="ck_bookings_status",
        ),
        Index("idx_bookings_provider_scheduled", "provider_id", "scheduled_for"),
    )

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in BOOKING_TRANSITIONS.get(BookingStatus(self.status), frozenset())

    def confirm(self) -> None:
        self.status = BookingStatus.CONFIRMED.value
        self.confirmed_at = datetime.now(timezone.utc)

    def complete(self) -> None:
        self.status = BookingStatus.COMPLETED.value
        self.completed_at = datetime.now(timezone.utc)

    def cancel(self, reason: str | None = None) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancellation_reason = reason

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.status} at {self.scheduled_for}>"
