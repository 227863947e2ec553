# marketplace/models/availability.py
"""
Provider availability slots.

A slot is a provider's declared window on one calendar date with a booking
capacity. Booking creation and cancellation move current_bookings; the
is_booked / is_available flags always mirror the count:

    is_booked    == (current_bookings >= max_bookings)
    is_available == not is_booked
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class AvailabilitySlot(Base):
    """A provider's bookable window with capacity tracking."""

    __tablename__ = "provider_availability"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(String(26), ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    max_bookings = Column(Integer, nullable=False, default=1)
    current_bookings = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    is_booked = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    service = relationship("Service")

    # Constraints
    __table_args__ = (
        CheckConstraint("max_bookings >= 1", name="ck_provider_availability_max_bookings"),
        CheckConstraint("current_bookings >= 0", name="ck_provider_availability_current_min"),
        CheckConstraint(
            "current_bookings <= max_bookings", name="ck_provider_availability_current_max"
        ),
        CheckConstraint("start_time <= end_time", name="ck_provider_availability_time_range"),
        Index("idx_provider_availability_provider_date", "provider_id", "date"),
    )

    @property
    def available_spots(self) -> int:
        return self.max_bookings - self.current_bookings

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot {self.date} {self.start_time}-{self.end_time} "
            f"{self.current_bookings}/{self.max_bookings}>"
        )
