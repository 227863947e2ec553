from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from marketplace.events.booking_events import BOOKING_CANCELLED, BOOKING_CREATED
from marketplace.models.event_outbox import EventOutboxStatus
from marketplace.repositories.event_outbox_repository import EventOutboxRepository
from marketplace.services.availability_reconciler import MSG_AT_CAPACITY
from marketplace.services.availability_sync import AvailabilitySyncDispatcher
from marketplace.services.booking_service import BookingService
from tests.factories.ledger_builders import BOOKING_AT, create_slot


@pytest.fixture
def booking_service(db):
    return BookingService(db, scheduler=MagicMock(), tz_name="Africa/Lagos")


@pytest.fixture
def dispatcher(db):
    return AvailabilitySyncDispatcher(db, max_attempts=3)


def _event_ids(db):
    return [row.id for row in EventOutboxRepository(db).fetch_pending()]


class TestDeliver:
    def test_applies_booking_created(self, db, booking_service, dispatcher, student, service, slot):
        booking_service.create_booking(student.id, service.id, BOOKING_AT)
        (event_id,) = _event_ids(db)

        result = dispatcher.deliver(event_id)

        assert result.outcome == "applied"
        assert result.attempt == 1
        assert result.message == "Availability updated: 1/1 bookings"
        db.refresh(slot)
        assert slot.is_booked is True
        assert EventOutboxRepository(db).get_by_id(event_id).status == EventOutboxStatus.SENT.value

    def test_redelivery_is_skipped(self, db, booking_service, dispatcher, provider, student, service):
        slot = create_slot(db, provider, service, max_bookings=3)
        booking_service.create_booking(student.id, service.id, BOOKING_AT)
        (event_id,) = _event_ids(db)

        dispatcher.deliver(event_id)
        second = dispatcher.deliver(event_id)

        assert second.outcome == "skipped"
        db.refresh(slot)
        assert slot.current_bookings == 1

    def test_cancel_releases_spot(self, db, booking_service, dispatcher, student, service, slot):
        booking = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        for event_id in _event_ids(db):
            dispatcher.deliver(event_id)

        booking_service.cancel_booking(booking.id)
        results = [dispatcher.deliver(event_id) for event_id in _event_ids(db)]

        assert [r.outcome for r in results] == ["applied"]
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_available) == (0, True)

    def test_racing_bookings_never_overbook(self, db, booking_service, dispatcher, student, service, slot):
        # Both requests pass validation before either counter update runs
        booking_service.create_booking(student.id, service.id, BOOKING_AT)
        booking_service.create_booking(student.id, service.id, datetime(2026, 3, 10, 11, 0))

        results = [dispatcher.deliver(event_id) for event_id in _event_ids(db)]

        assert [r.outcome for r in results] == ["applied", "rejected"]
        assert results[1].message == MSG_AT_CAPACITY
        db.refresh(slot)
        assert slot.current_bookings == 1
        assert _event_ids(db) == []

    def test_rejected_create_then_cancel_keeps_the_live_booking(
        self, db, booking_service, dispatcher, student, service, slot
    ):
        kept = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        bounced = booking_service.create_booking(
            student.id, service.id, datetime(2026, 3, 10, 11, 0)
        )
        outcomes = [dispatcher.deliver(event_id).outcome for event_id in _event_ids(db)]
        assert outcomes == ["applied", "rejected"]

        booking_service.cancel_booking(bounced.id)
        results = [dispatcher.deliver(event_id) for event_id in _event_ids(db)]

        assert [r.outcome for r in results] == ["superseded"]
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (1, True, False)
        db.refresh(kept)
        db.refresh(bounced)
        assert kept.slot_reserved is True
        assert bounced.slot_reserved is False

    def test_cancel_delivered_before_create_takes_no_spot(
        self, db, booking_service, dispatcher, student, service, slot
    ):
        booking = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        booking_service.cancel_booking(booking.id)
        repo = EventOutboxRepository(db)
        create_id = repo.get_by_key(f"{BOOKING_CREATED}:{booking.id}").id
        cancel_id = repo.get_by_key(f"{BOOKING_CANCELLED}:{booking.id}").id

        cancel_result = dispatcher.deliver(cancel_id)
        create_result = dispatcher.deliver(create_id)

        assert (cancel_result.outcome, create_result.outcome) == ("superseded", "superseded")
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_available) == (0, True)
        assert repo.get_by_id(create_id).status == EventOutboxStatus.SENT.value
        assert _event_ids(db) == []

    def test_cancel_after_applied_create_clears_reservation(
        self, db, booking_service, dispatcher, provider, student, service
    ):
        slot = create_slot(db, provider, service, max_bookings=2)
        booking = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        for event_id in _event_ids(db):
            dispatcher.deliver(event_id)
        db.refresh(booking)
        assert booking.slot_reserved is True

        booking_service.cancel_booking(booking.id)
        for event_id in _event_ids(db):
            dispatcher.deliver(event_id)

        db.refresh(booking)
        db.refresh(slot)
        assert booking.slot_reserved is False
        assert slot.current_bookings == 0

    def test_create_without_slot_reserves_nothing(
        self, db, booking_service, dispatcher, student, service, slot
    ):
        booking = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        (event_id,) = _event_ids(db)
        db.delete(slot)
        db.commit()

        assert dispatcher.deliver(event_id).outcome == "applied"

        db.refresh(booking)
        assert booking.slot_reserved is False

    def test_missing_event(self, dispatcher):
        assert dispatcher.deliver("missing").outcome == "missing"

    def test_error_schedules_retry_then_fails(self, db, booking_service, dispatcher, student, service, slot):
        booking_service.create_booking(student.id, service.id, BOOKING_AT)
        (event_id,) = _event_ids(db)
        repo = EventOutboxRepository(db)

        with patch.object(
            dispatcher.reconciler,
            "update_availability_on_booking_create",
            side_effect=RuntimeError("deadlock"),
        ):
            first = dispatcher.deliver(event_id)
            second = dispatcher.deliver(event_id)
            third = dispatcher.deliver(event_id)

        assert (first.outcome, first.backoff_seconds) == ("retry", 30)
        assert (second.outcome, second.backoff_seconds) == ("retry", 120)
        assert third.outcome == "failed"
        row = repo.get_by_id(event_id)
        assert row.status == EventOutboxStatus.FAILED.value
        assert row.attempt_count == 3
        assert row.last_error == "deadlock"
        db.refresh(slot)
        assert slot.current_bookings == 0

    def test_retry_is_not_due_immediately(self, db, booking_service, dispatcher, student, service, slot):
        booking_service.create_booking(student.id, service.id, BOOKING_AT)
        (event_id,) = _event_ids(db)

        with patch.object(
            dispatcher.reconciler,
            "update_availability_on_booking_create",
            side_effect=RuntimeError("deadlock"),
        ):
            dispatcher.deliver(event_id)

        assert dispatcher.pending_event_ids() == []

    def test_unknown_event_type_fails_at_once(self, db, dispatcher):
        repo = EventOutboxRepository(db)
        event = repo.enqueue(
            "availability.unknown",
            "b1",
            "availability.unknown:b1",
            {
                "booking_id": "b1",
                "provider_id": "p1",
                "service_id": None,
                "scheduled_for": "2026-03-10T09:00:00+00:00",
            },
        )
        db.commit()

        assert dispatcher.deliver(event.id).outcome == "failed"


class TestPendingEventIds:
    def test_lists_due_events_oldest_first(self, db, booking_service, dispatcher, student, service, slot):
        first = booking_service.create_booking(student.id, service.id, BOOKING_AT)
        second = booking_service.create_booking(student.id, service.id, BOOKING_AT)

        ids = dispatcher.pending_event_ids()

        repo = EventOutboxRepository(db)
        assert ids == [
            repo.get_by_key(f"{BOOKING_CREATED}:{first.id}").id,
            repo.get_by_key(f"{BOOKING_CREATED}:{second.id}").id,
        ]
        assert dispatcher.pending_event_ids(limit=1) == ids[:1]
