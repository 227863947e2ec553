"""Domain events carried through the availability outbox."""

from .booking_events import (
    BOOKING_CANCELLED,
    BOOKING_CREATED,
    SlotCounterEvent,
)

__all__ = ["BOOKING_CANCELLED", "BOOKING_CREATED", "SlotCounterEvent"]
