# marketplace/repositories/availability_repository.py
"""
AvailabilityRepository - provider slot lookup and capacity counters.

Slots are matched to a booking by provider, optional service, exact calendar
date and a time-of-day range that contains the booking start. Counter changes
are single conditional UPDATE statements so concurrent bookings cannot push a
slot past its capacity.
"""

from datetime import date, time
import logging
from typing import Optional, cast

from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilitySlot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilitySlot]):
    """Repository for provider availability slots."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySlot)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(AvailabilitySlot.service))

    def find_matching_slot(
        self,
        provider_id: str,
        slot_date: date,
        at_time: time,
        service_id: Optional[str] = None,
        available_only: bool = False,
    ) -> Optional[AvailabilitySlot]:
        """
        Find the slot containing a booking start.

        Args:
            provider_id: Provider owning the slot
            slot_date: Calendar date, compared for equality
            at_time: Time-of-day, must satisfy start_time <= at_time <= end_time
            service_id: Restrict to slots of this service when given
            available_only: Only consider slots flagged is_available

        Returns:
            Earliest-starting matching slot, or None
        """
        try:
            query = self.db.query(AvailabilitySlot).filter(
                and_(
                    AvailabilitySlot.provider_id == provider_id,
                    AvailabilitySlot.date == slot_date,
                    AvailabilitySlot.start_time <= at_time,
                    AvailabilitySlot.end_time >= at_time,
                )
            )
            if service_id:
                query = query.filter(AvailabilitySlot.service_id == service_id)
            if available_only:
                query = query.filter(AvailabilitySlot.is_available.is_(True))

            return cast(
                Optional[AvailabilitySlot],
                query.order_by(AvailabilitySlot.start_time, AvailabilitySlot.id).first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding slot for provider {provider_id} on {slot_date}: {e}")
            raise RepositoryException(f"Failed to find availability slot: {str(e)}")

    def get_slot_with_service(self, slot_id: str) -> Optional[AvailabilitySlot]:
        return self.get_by_id(slot_id, load_relationships=True)

    def try_increment_bookings(self, slot_id: str) -> bool:
        """
        Take one booking spot if the slot still has capacity.

        Returns:
            True when a spot was taken, False when the slot was already full
            (or no longer exists)
        """
        new_count = AvailabilitySlot.current_bookings + 1
        stmt = (
            update(AvailabilitySlot)
            .where(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.current_bookings < AvailabilitySlot.max_bookings,
            )
            .values(
                current_bookings=new_count,
                is_booked=new_count >= AvailabilitySlot.max_bookings,
                is_available=new_count < AvailabilitySlot.max_bookings,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error incrementing bookings on slot {slot_id}: {e}")
            raise RepositoryException(f"Failed to update availability slot: {str(e)}")
        return bool(result.rowcount)

    def decrement_bookings(self, slot_id: str) -> bool:
        """
        Release one booking spot, clamping the count at zero.

        The flags are rewritten from the resulting count even when the count
        was already zero.

        Returns:
            True if the slot exists
        """
        new_count = case(
            (AvailabilitySlot.current_bookings > 0, AvailabilitySlot.current_bookings - 1),
            else_=0,
        )
        stmt = (
            update(AvailabilitySlot)
            .where(AvailabilitySlot.id == slot_id)
            .values(
                current_bookings=new_count,
                is_booked=new_count >= AvailabilitySlot.max_bookings,
                is_available=new_count < AvailabilitySlot.max_bookings,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error decrementing bookings on slot {slot_id}: {e}")
            raise RepositoryException(f"Failed to update availability slot: {str(e)}")
        return bool(result.rowcount)
