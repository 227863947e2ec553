# marketplace/repositories/factory.py
"""
Repository Factory for the marketplace ledger.

Services obtain repositories here instead of instantiating them, which keeps
construction in one place and makes repositories easy to swap in tests.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .earning_repository import EarningRepository
    from .event_outbox_repository import EventOutboxRepository
    from .payout_repository import PayoutRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Generic CRUD repository for models without a dedicated one."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_earning_repository(db: Session) -> "EarningRepository":
        from .earning_repository import EarningRepository

        return EarningRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payout_repository import PayoutRepository

        return PayoutRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)
