"""Booking events that move availability slot counters."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.timezone_utils import ensure_utc

BOOKING_CREATED = "availability.booking_created"
BOOKING_CANCELLED = "availability.booking_cancelled"


@dataclass(frozen=True)
class SlotCounterEvent:
    """
    One booking's effect on slot capacity.

    scheduled_for is stored as an aware UTC instant so the worker resolves the
    same slot date and time the booking request did.
    """

    event_type: str
    booking_id: str
    provider_id: str
    service_id: Optional[str]
    scheduled_for: datetime

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.booking_id}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "scheduled_for": ensure_utc(self.scheduled_for).isoformat(),
        }

    @classmethod
    def from_payload(cls, event_type: str, payload: Dict[str, Any]) -> "SlotCounterEvent":
        return cls(
            event_type=event_type,
            booking_id=payload["booking_id"],
            provider_id=payload["provider_id"],
            service_id=payload.get("service_id"),
            scheduled_for=datetime.fromisoformat(payload["scheduled_for"]),
        )
