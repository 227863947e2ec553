# marketplace/services/booking_service.py
"""
Booking Service for the marketplace.

Thin booking workflow around the availability and earnings components:
- Creation validates the slot, writes the booking and queues the slot
  counter update in the same transaction
- Cancellation queues exactly one compensating counter update
- Completion records the provider's earning

Slot counters are updated after the commit by the availability sync worker,
so a booking never fails or waits because of slot accounting.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    InvalidBookingTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import local_to_utc
from ..events.booking_events import BOOKING_CANCELLED, BOOKING_CREATED, SlotCounterEvent
from ..models.booking import Booking, BookingStatus
from ..models.service import Service
from .availability_reconciler import AvailabilityReconciler
from .base import BaseService
from .earnings_ledger import EarningsLedger

logger = logging.getLogger(__name__)

DeliveryScheduler = Callable[[str], None]


def schedule_availability_delivery(event_id: str) -> None:
    """Hand an outbox event to the Celery worker without waiting for it."""
    from ..tasks.availability_tasks import deliver_availability_event

    deliver_availability_event.apply_async((event_id,))


class BookingService(BaseService):
    """Booking lifecycle: create, confirm, complete and cancel."""

    def __init__(
        self,
        db: Session,
        reconciler: Optional[AvailabilityReconciler] = None,
        ledger: Optional[EarningsLedger] = None,
        scheduler: Optional[DeliveryScheduler] = None,
        tz_name: Optional[str] = None,
    ):
        super().__init__(db)
        self.tz_name = tz_name
        self.reconciler = reconciler or AvailabilityReconciler(db, tz_name=tz_name)
        self.ledger = ledger or EarningsLedger(db)
        self.scheduler = scheduler or schedule_availability_delivery
        self.repository = self.repositories.create_booking_repository(db)
        self.service_repository = self.repositories.create_base_repository(db, Service)
        self.event_outbox_repository = self.repositories.create_event_outbox_repository(db)

    def _enqueue_slot_event(self, booking: Booking, event_type: str) -> str:
        """Persist an outbox entry for the booking inside the current transaction."""
        event = SlotCounterEvent(
            event_type=event_type,
            booking_id=booking.id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            scheduled_for=booking.scheduled_for,
        )
        row = self.event_outbox_repository.enqueue(
            event_type=event_type,
            aggregate_id=booking.id,
            idempotency_key=event.idempotency_key,
            payload=event.to_payload(),
        )
        return row.id

    def _schedule(self, event_id: str) -> None:
        # The periodic sweep delivers the event if this hand-off fails
        try:
            self.scheduler(event_id)
        except Exception as e:
            self.logger.error(f"Failed to schedule availability update {event_id}: {str(e)}")

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id, load_relationships=False)
        if not booking:
            raise NotFoundException(f"Booking not found: {booking_id}", code="BOOKING_NOT_FOUND")
        return booking

    def _check_transition(self, booking: Booking, new_status: BookingStatus) -> None:
        if not booking.can_transition_to(new_status):
            raise InvalidBookingTransitionException(booking.id, booking.status, new_status.value)

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        student_id: str,
        service_id: str,
        scheduled_for: datetime,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Create a PENDING booking for a service.

        Args:
            student_id: Student making the booking
            service_id: Service being booked
            scheduled_for: Booking start; naive values are platform wall-clock time
            notes: Optional notes from the student

        Raises:
            NotFoundException: Unknown or inactive service
            ValidationException: No open slot with capacity at that time; the
                message is suitable for showing to the client
        """
        service = self.service_repository.get_by_id(service_id, load_relationships=False)
        if not service or not service.is_active:
            raise NotFoundException(f"Service not found: {service_id}", code="SERVICE_NOT_FOUND")

        validation = self.reconciler.validate_booking_availability(
            service.provider_id, service.id, scheduled_for
        )
        if not validation.is_valid:
            raise ValidationException(
                validation.message,
                code="SLOT_UNAVAILABLE",
                details={"service_id": service_id, "scheduled_for": scheduled_for.isoformat()},
            )

        with self.transaction():
            booking = self.repository.create(
                student_id=student_id,
                provider_id=service.provider_id,
                service_id=service.id,
                scheduled_for=local_to_utc(scheduled_for, self.tz_name),
                status=BookingStatus.PENDING.value,
                notes=notes,
            )
            event_id = self._enqueue_slot_event(booking, BOOKING_CREATED)

        self.log_operation("booking_created", booking_id=booking.id, provider_id=booking.provider_id)
        self._schedule(event_id)
        return booking

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, booking_id: str) -> Booking:
        with self.transaction():
            booking = self._get_booking(booking_id)
            self._check_transition(booking, BookingStatus.CONFIRMED)
            booking.confirm()
            self.repository.flush()
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a PENDING or CONFIRMED booking and queue the slot release.

        Cancelling an already cancelled booking returns it unchanged and
        queues nothing.
        """
        with self.transaction():
            booking = self._get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                self.logger.info(f"Booking {booking_id} is already cancelled")
                return booking

            self._check_transition(booking, BookingStatus.CANCELLED)
            booking.cancel(reason)
            self.repository.flush()
            event_id = self._enqueue_slot_event(booking, BOOKING_CANCELLED)

        self.log_operation("booking_cancelled", booking_id=booking.id, reason=reason)
        self._schedule(event_id)
        return booking

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str) -> Booking:
        """
        Mark a CONFIRMED booking COMPLETED and record the provider's earning.

        The completion stands even if the earning cannot be created; the
        backfill job picks such bookings up later.
        """
        with self.transaction():
            booking = self._get_booking(booking_id)
            self._check_transition(booking, BookingStatus.COMPLETED)
            booking.complete()
            self.repository.flush()

        try:
            self.ledger.create_earnings_from_completed_booking(booking.id)
        except Exception as e:
            self.logger.error(
                f"Failed to create earnings for completed booking {booking.id}: {str(e)}",
                exc_info=True,
            )
        return booking
