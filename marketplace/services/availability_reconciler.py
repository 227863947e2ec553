# marketplace/services/availability_reconciler.py
"""
Availability Reconciler for the marketplace.

Keeps provider slot counters consistent with bookings:
- Pre-booking validation (read-only)
- Counter increment on booking creation
- Counter decrement on booking cancellation
- Read-only slot statistics

A booking that maps to no slot is tolerated: the counter updates report
success and leave the store untouched. Counter changes do not commit; they
join the caller's transaction.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import split_instant
from ..models.availability import AvailabilitySlot
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.availability import (
    AvailabilitySlotSummary,
    AvailabilityStats,
    AvailabilityUpdateResult,
    SlotServiceInfo,
    SlotValidationResult,
)
from .base import BaseService

logger = logging.getLogger(__name__)

MSG_NO_SLOT_FOR_TIME = "No available time slot found for the selected date and time"
MSG_FULLY_BOOKED = "This time slot is fully booked"
MSG_SLOT_AVAILABLE = "Time slot is available for booking"
MSG_CREATE_WITHOUT_SLOT = "No matching availability slot found - booking allowed without slot update"
MSG_CANCEL_WITHOUT_SLOT = (
    "No matching availability slot found - cancellation allowed without slot update"
)
MSG_AT_CAPACITY = "Availability slot is at maximum capacity"


def _updated_message(slot: AvailabilitySlot) -> str:
    return f"Availability updated: {slot.current_bookings}/{slot.max_bookings} bookings"


class AvailabilityReconciler(BaseService):
    """Reconciles slot capacity against booking creation and cancellation."""

    def __init__(self, db: Session, tz_name: Optional[str] = None):
        super().__init__(db)
        self.tz_name = tz_name
        self.slot_repository = self.repositories.create_availability_repository(db)

    def _find_slot(
        self,
        provider_id: str,
        service_id: Optional[str],
        booking_start: datetime,
        available_only: bool,
    ) -> Optional[AvailabilitySlot]:
        slot_date, at_time = split_instant(booking_start, self.tz_name)
        return self.slot_repository.find_matching_slot(
            provider_id,
            slot_date,
            at_time,
            service_id=service_id,
            available_only=available_only,
        )

    @BaseService.measure_operation("validate_booking_availability")
    def validate_booking_availability(
        self, provider_id: str, service_id: Optional[str], booking_start: datetime
    ) -> SlotValidationResult:
        """
        Check that a booking start falls inside an open slot with capacity.

        Only slots currently flagged is_available are considered. No side effects.
        """
        slot = self._find_slot(provider_id, service_id, booking_start, available_only=True)

        if slot is None:
            return SlotValidationResult(is_valid=False, message=MSG_NO_SLOT_FOR_TIME)

        if slot.current_bookings >= slot.max_bookings:
            return SlotValidationResult(is_valid=False, message=MSG_FULLY_BOOKED)

        return SlotValidationResult(
            is_valid=True,
            message=MSG_SLOT_AVAILABLE,
            slot=AvailabilitySlotSummary.model_validate(slot),
        )

    @BaseService.measure_operation("update_availability_on_booking_create")
    def update_availability_on_booking_create(
        self, provider_id: str, service_id: Optional[str], booking_start: datetime
    ) -> AvailabilityUpdateResult:
        """
        Take one spot in the slot containing a new booking.

        The lookup ignores is_available so a retry finds the same slot. The
        increment is conditional on spare capacity, evaluated by the database.
        """
        slot = self._find_slot(provider_id, service_id, booking_start, available_only=False)

        if slot is None:
            self.logger.info(
                "No slot for booking at %s (provider %s); skipping capacity update",
                booking_start,
                provider_id,
            )
            prometheus_metrics.record_slot_update("create", "no_slot")
            return AvailabilityUpdateResult(success=True, message=MSG_CREATE_WITHOUT_SLOT)

        if not self.slot_repository.try_increment_bookings(slot.id):
            self.logger.warning(
                "Slot %s is at capacity (%s/%s)", slot.id, slot.current_bookings, slot.max_bookings
            )
            prometheus_metrics.record_slot_update("create", "rejected")
            self.slot_repository.refresh(slot)
            return AvailabilityUpdateResult(success=False, message=MSG_AT_CAPACITY)

        self.slot_repository.refresh(slot)
        prometheus_metrics.record_slot_update("create", "applied")
        self.log_operation(
            "slot_booking_added",
            slot_id=slot.id,
            current_bookings=slot.current_bookings,
            max_bookings=slot.max_bookings,
        )
        return AvailabilityUpdateResult(
            success=True, message=_updated_message(slot), slot_id=slot.id
        )

    @BaseService.measure_operation("update_availability_on_booking_cancel")
    def update_availability_on_booking_cancel(
        self, provider_id: str, service_id: Optional[str], booking_start: datetime
    ) -> AvailabilityUpdateResult:
        """
        Free one spot in the slot of a cancelled booking.

        The count never drops below zero; cancelling against an empty slot is
        not an error.
        """
        slot = self._find_slot(provider_id, service_id, booking_start, available_only=False)

        if slot is None:
            prometheus_metrics.record_slot_update("cancel", "no_slot")
            return AvailabilityUpdateResult(success=True, message=MSG_CANCEL_WITHOUT_SLOT)

        if slot.current_bookings <= 0:
            self.logger.warning("Cancel on slot %s with no bookings; count stays at 0", slot.id)

        self.slot_repository.decrement_bookings(slot.id)
        self.slot_repository.refresh(slot)
        prometheus_metrics.record_slot_update("cancel", "applied")
        self.log_operation(
            "slot_booking_released",
            slot_id=slot.id,
            current_bookings=slot.current_bookings,
            max_bookings=slot.max_bookings,
        )
        return AvailabilityUpdateResult(
            success=True, message=_updated_message(slot), slot_id=slot.id
        )

    def get_availability_stats(self, slot_id: str) -> Optional[AvailabilityStats]:
        """
        Read-only projection of a slot with its spare capacity.

        Returns None when the slot does not exist or cannot be read.
        """
        try:
            slot = self.slot_repository.get_slot_with_service(slot_id)
        except RepositoryException as e:
            self.logger.error(f"Error getting availability stats for {slot_id}: {str(e)}")
            return None

        if slot is None:
            return None

        service = None
        if slot.service is not None:
            service = SlotServiceInfo(
                id=slot.service.id,
                name=slot.service.name,
                duration=slot.service.duration_minutes,
            )

        return AvailabilityStats(
            id=slot.id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            current_bookings=slot.current_bookings,
            max_bookings=slot.max_bookings,
            available_spots=slot.available_spots,
            is_available=slot.is_available,
            is_booked=slot.is_booked,
            service=service,
        )
