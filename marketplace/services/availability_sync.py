# marketplace/services/availability_sync.py
"""
Availability sync dispatcher.

Applies availability outbox events to slot counters. The counter change and
the SENT mark share one commit, so an event that was applied is never applied
again by a retry or by the periodic sweep.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..events.booking_events import BOOKING_CANCELLED, BOOKING_CREATED, SlotCounterEvent
from ..models.booking import BookingStatus
from ..models.event_outbox import EventOutboxStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.availability import AvailabilityUpdateResult
from .availability_reconciler import AvailabilityReconciler
from .base import BaseService

logger = logging.getLogger(__name__)

BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@dataclass(frozen=True)
class DeliveryResult:
    """
    Outcome of one delivery attempt.

    outcome is one of: applied, rejected, superseded, missing, skipped, retry,
    failed. superseded means the booking had no spot to take or release.
    """

    outcome: str
    event_id: str
    attempt: int = 0
    backoff_seconds: int = 0
    message: Optional[str] = None

    @property
    def should_retry(self) -> bool:
        return self.outcome == "retry"


class UnknownOutboxEventError(ValueError):
    """Raised for outbox rows this dispatcher has no handler for."""


class AvailabilitySyncDispatcher(BaseService):
    """Delivers availability outbox events to the reconciler."""

    def __init__(
        self,
        db: Session,
        reconciler: Optional[AvailabilityReconciler] = None,
        max_attempts: Optional[int] = None,
    ):
        super().__init__(db)
        self.reconciler = reconciler or AvailabilityReconciler(db)
        self.booking_repository = self.repositories.create_booking_repository(db)
        self.outbox_repository = self.repositories.create_event_outbox_repository(db)
        self.max_attempts = max_attempts or settings.outbox_max_attempts

    def _apply(self, event: SlotCounterEvent) -> Optional[AvailabilityUpdateResult]:
        """
        Move the slot counter for one booking event.

        Returns None when the booking's reservation flag says there is nothing
        to move: a create for a booking already cancelled, or a cancel for a
        booking that never took a spot.
        """
        if event.event_type not in (BOOKING_CREATED, BOOKING_CANCELLED):
            raise UnknownOutboxEventError(f"No handler for outbox event type {event.event_type}")

        booking = self.booking_repository.get_for_slot_update(event.booking_id)
        if booking is None:
            self.logger.warning("Booking %s not found; slot counter unchanged", event.booking_id)
            return None

        if event.event_type == BOOKING_CREATED:
            if booking.status == BookingStatus.CANCELLED.value or booking.slot_reserved:
                self.logger.info(
                    "Booking %s is cancelled or already holds a spot; no spot to take", booking.id
                )
                prometheus_metrics.record_slot_update("create", "superseded")
                return None
            result = self.reconciler.update_availability_on_booking_create(
                event.provider_id, event.service_id, event.scheduled_for
            )
            if result.success and result.slot_id is not None:
                booking.slot_reserved = True
            return result

        if not booking.slot_reserved:
            self.logger.info("Booking %s holds no spot; nothing to release", booking.id)
            prometheus_metrics.record_slot_update("cancel", "superseded")
            return None
        result = self.reconciler.update_availability_on_booking_cancel(
            event.provider_id, event.service_id, event.scheduled_for
        )
        booking.slot_reserved = False
        return result

    @BaseService.measure_operation("deliver_availability_event")
    def deliver(self, event_id: str) -> DeliveryResult:
        """
        Apply one outbox event.

        A capacity rejection is final: it is logged and the event is marked
        SENT. Any exception schedules a retry with backoff, or marks the event
        FAILED once the attempts are used up.
        """
        row = self.outbox_repository.get_by_id(event_id, for_update=True)
        if row is None:
            self.logger.warning("Outbox event %s missing; skipping", event_id)
            return DeliveryResult(outcome="missing", event_id=event_id)

        if row.status != EventOutboxStatus.PENDING.value:
            self.logger.debug("Outbox event %s already %s", event_id, row.status)
            return DeliveryResult(outcome="skipped", event_id=event_id, attempt=row.attempt_count)

        attempt = row.attempt_count + 1
        event_type = row.event_type
        payload = dict(row.payload or {})

        try:
            with self.transaction():
                result = self._apply(SlotCounterEvent.from_payload(event_type, payload))
                self.outbox_repository.mark_sent(event_id, attempt)
        except Exception as exc:
            return self._record_failure(event_id, event_type, attempt, exc)

        if result is None:
            return DeliveryResult(outcome="superseded", event_id=event_id, attempt=attempt)

        if not result.success:
            self.logger.warning(
                "Availability update rejected for booking %s: %s",
                payload.get("booking_id"),
                result.message,
            )
            return DeliveryResult(
                outcome="rejected", event_id=event_id, attempt=attempt, message=result.message
            )

        self.logger.info(
            "Delivered outbox event %s type=%s attempts=%s", event_id, event_type, attempt
        )
        return DeliveryResult(
            outcome="applied", event_id=event_id, attempt=attempt, message=result.message
        )

    def _record_failure(
        self, event_id: str, event_type: str, attempt: int, exc: Exception
    ) -> DeliveryResult:
        terminal = attempt >= self.max_attempts or isinstance(exc, UnknownOutboxEventError)
        backoff = next_backoff(attempt)
        with self.transaction():
            self.outbox_repository.mark_failed(
                event_id,
                attempt_count=attempt,
                backoff_seconds=backoff,
                error=str(exc),
                terminal=terminal,
            )

        if terminal:
            self.logger.error(
                "Outbox event %s type=%s failed permanently after %s attempts: %s",
                event_id,
                event_type,
                attempt,
                exc,
            )
            return DeliveryResult(outcome="failed", event_id=event_id, attempt=attempt, message=str(exc))

        self.logger.warning(
            "Error delivering outbox event %s; retrying in %ss: %s", event_id, backoff, exc
        )
        return DeliveryResult(
            outcome="retry",
            event_id=event_id,
            attempt=attempt,
            backoff_seconds=backoff,
            message=str(exc),
        )

    def pending_event_ids(self, limit: Optional[int] = None) -> list[str]:
        """Ids of events due for delivery, oldest first."""
        rows = self.outbox_repository.fetch_pending(limit=limit or settings.outbox_batch_size)
        return [row.id for row in rows]
