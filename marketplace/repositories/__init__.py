# marketplace/repositories/__init__.py
"""
Repository layer for the marketplace ledger.

Key Components:
- BaseRepository: generic CRUD for any model
- AvailabilityRepository: slot lookup and conditional capacity updates
- BookingRepository: booking lookups, including the earnings backfill query
- EarningRepository: earnings ledger queries and bulk payout reserve/release
- PayoutRepository: payout requests
- EventOutboxRepository: transactional outbox for availability events
- WebhookEventRepository: inbound webhook ledger
- RepositoryFactory: central construction point used by services

Usage:
    from marketplace.repositories import RepositoryFactory

    repository = RepositoryFactory.create_earning_repository(db)
    totals = repository.get_status_totals(provider_id)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .earning_repository import EarningRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .payout_repository import PayoutRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "EarningRepository",
    "EventOutboxRepository",
    "IRepository",
    "PayoutRepository",
    "RepositoryFactory",
    "WebhookEventRepository",
]
