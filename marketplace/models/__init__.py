# marketplace/models/__init__.py
"""
SQLAlchemy models for the marketplace ledger.

Importing this package registers every table on Base.metadata, which the
Alembic environment and the test fixtures rely on.
"""

from .availability import AvailabilitySlot
from .booking import BOOKING_TRANSITIONS, Booking, BookingStatus
from .earning import EARNING_TRANSITIONS, Earning, EarningStatus, is_valid_earning_transition
from .event_outbox import EventOutbox, EventOutboxStatus
from .payout import OPEN_PAYOUT_STATUSES, PayoutRequest, PayoutStatus
from .service import Service
from .user import User, UserRole
from .webhook_event import WebhookEvent

__all__ = [
    "AvailabilitySlot",
    "Booking",
    "BookingStatus",
    "BOOKING_TRANSITIONS",
    "Earning",
    "EarningStatus",
    "EARNING_TRANSITIONS",
    "is_valid_earning_transition",
    "EventOutbox",
    "EventOutboxStatus",
    "PayoutRequest",
    "PayoutStatus",
    "OPEN_PAYOUT_STATUSES",
    "Service",
    "User",
    "UserRole",
    "WebhookEvent",
]
