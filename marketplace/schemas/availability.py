"""Availability reconciliation results."""

from datetime import date, time
from typing import Optional

from pydantic import Field

from .base import StandardizedModel


class AvailabilitySlotSummary(StandardizedModel):
    id: str
    provider_id: str
    service_id: Optional[str] = None
    date: date
    start_time: time
    end_time: time
    max_bookings: int
    current_bookings: int
    is_available: bool
    is_booked: bool


class SlotValidationResult(StandardizedModel):
    """Outcome of a pre-booking check. The message is shown to clients as-is."""

    is_valid: bool
    message: str
    slot: Optional[AvailabilitySlotSummary] = None


class AvailabilityUpdateResult(StandardizedModel):
    success: bool
    message: str
    # Set only when a slot counter actually moved
    slot_id: Optional[str] = None


class SlotServiceInfo(StandardizedModel):
    id: str
    name: str
    duration: int = Field(description="Duration in minutes")


class AvailabilityStats(StandardizedModel):
    id: str
    date: date
    start_time: time
    end_time: time
    current_bookings: int
    max_bookings: int
    available_spots: int
    is_available: bool
    is_booked: bool
    service: Optional[SlotServiceInfo] = None
