# marketplace/repositories/booking_repository.py
"""
BookingRepository - booking lookups used by the booking workflow and the
earnings backfill.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.earning import Earning
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(Booking.service),
            joinedload(Booking.student),
        )

    def get_with_details(self, booking_id: str) -> Optional[Booking]:
        """Load a booking with the service and student used in earning snapshots."""
        return self.get_by_id(booking_id, load_relationships=True)

    def get_completed_without_earnings(self, limit: Optional[int] = None) -> List[Booking]:
        """
        Completed bookings that never produced an earning.

        Ordered by completion time so a backfill processes the oldest first.
        """
        try:
            query = (
                self.db.query(Booking)
                .outerjoin(Earning, Earning.booking_id == Booking.id)
                .filter(
                    and_(
                        Booking.status == BookingStatus.COMPLETED.value,
                        Earning.id.is_(None),
                    )
                )
                .order_by(Booking.completed_at, Booking.id)
            )
            if limit is not None:
                query = query.limit(limit)
            return cast(List[Booking], query.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding completed bookings without earnings: {str(e)}")
            raise RepositoryException(f"Failed to find bookings for backfill: {str(e)}")

    def get_for_slot_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking without relationships, row-locked on PostgreSQL.

        The lock serializes slot-counter delivery against a concurrent
        cancellation of the same booking.
        """
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")
