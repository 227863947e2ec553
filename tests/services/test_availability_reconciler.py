from datetime import datetime, time, timezone
from unittest.mock import patch

import pytest

from marketplace.core.exceptions import RepositoryException
from marketplace.services.availability_reconciler import (
    MSG_AT_CAPACITY,
    MSG_CANCEL_WITHOUT_SLOT,
    MSG_CREATE_WITHOUT_SLOT,
    MSG_FULLY_BOOKED,
    MSG_NO_SLOT_FOR_TIME,
    MSG_SLOT_AVAILABLE,
    AvailabilityReconciler,
)
from tests.factories.ledger_builders import BOOKING_AT, create_slot


@pytest.fixture
def reconciler(db):
    return AvailabilityReconciler(db, tz_name="Africa/Lagos")


class TestValidateBookingAvailability:
    def test_open_slot_is_valid(self, reconciler, provider, service, slot):
        result = reconciler.validate_booking_availability(provider.id, service.id, BOOKING_AT)

        assert result.is_valid is True
        assert result.message == MSG_SLOT_AVAILABLE
        assert result.slot.id == slot.id

    def test_no_slot_for_time(self, reconciler, provider, service, slot):
        result = reconciler.validate_booking_availability(
            provider.id, service.id, datetime(2026, 3, 10, 15, 0)
        )

        assert result.is_valid is False
        assert result.message == "No available time slot found for the selected date and time"
        assert result.message == MSG_NO_SLOT_FOR_TIME
        assert result.slot is None

    def test_full_slot_is_not_offered(self, db, reconciler, provider, service):
        create_slot(db, provider, service, max_bookings=1, current_bookings=1)

        result = reconciler.validate_booking_availability(provider.id, service.id, BOOKING_AT)

        # Full slots are no longer flagged available, so the lookup finds nothing
        assert result.message == MSG_NO_SLOT_FOR_TIME

    def test_count_at_capacity_reports_fully_booked(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=2, current_bookings=2)
        slot.is_available = True
        db.commit()

        result = reconciler.validate_booking_availability(provider.id, service.id, BOOKING_AT)

        assert result.is_valid is False
        assert result.message == MSG_FULLY_BOOKED

    def test_aware_instant_is_matched_in_platform_time(self, reconciler, provider, service, slot):
        # 09:30 UTC is 10:30 in Lagos
        instant = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
        assert reconciler.validate_booking_availability(provider.id, service.id, instant).is_valid

    def test_validation_has_no_side_effects(self, db, reconciler, provider, service, slot):
        reconciler.validate_booking_availability(provider.id, service.id, BOOKING_AT)
        db.refresh(slot)
        assert slot.current_bookings == 0

    def test_repository_failure_propagates(self, reconciler, provider, service):
        with patch.object(
            reconciler.slot_repository,
            "find_matching_slot",
            side_effect=RepositoryException("connection lost"),
        ):
            with pytest.raises(RepositoryException):
                reconciler.validate_booking_availability(provider.id, service.id, BOOKING_AT)


class TestUpdateOnBookingCreate:
    def test_takes_one_spot(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=3)

        result = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)

        assert result.success is True
        assert result.message == "Availability updated: 1/3 bookings"
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (1, False, True)

    def test_last_spot_marks_slot_booked(self, reconciler, provider, service, slot):
        result = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)

        assert result.message == "Availability updated: 1/1 bookings"
        assert slot.is_booked is True
        assert slot.is_available is False

    def test_full_slot_is_rejected_and_unchanged(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=1, current_bookings=1)

        result = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)

        assert result.success is False
        assert result.message == MSG_AT_CAPACITY
        db.refresh(slot)
        assert slot.current_bookings == 1

    def test_no_slot_is_allowed(self, reconciler, provider, service):
        result = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)

        assert result.success is True
        assert result.message == MSG_CREATE_WITHOUT_SLOT

    def test_capacity_is_never_exceeded(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=2)

        results = [
            reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)
            for _ in range(5)
        ]

        assert [r.success for r in results] == [True, True, False, False, False]
        db.refresh(slot)
        assert slot.current_bookings == 2

    def test_does_not_commit(self, db, reconciler, provider, service, slot):
        reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)
        db.rollback()
        db.refresh(slot)
        assert slot.current_bookings == 0


class TestUpdateOnBookingCancel:
    def test_releases_one_spot(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=2, current_bookings=2)

        result = reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)

        assert result.success is True
        assert result.message == "Availability updated: 1/2 bookings"
        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (1, False, True)

    def test_cancel_on_empty_slot_stays_at_zero(self, reconciler, provider, service, slot):
        result = reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)

        assert result.success is True
        assert result.message == "Availability updated: 0/1 bookings"
        assert slot.current_bookings == 0

    def test_finds_full_slot(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=1, current_bookings=1)

        reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)

        assert slot.current_bookings == 0
        assert slot.is_available is True

    def test_no_slot_is_allowed(self, reconciler, provider, service):
        result = reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)
        assert result.message == MSG_CANCEL_WITHOUT_SLOT

    def test_create_then_cancel_restores_slot(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=3, current_bookings=1)

        reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)
        reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)

        assert slot.current_bookings == 1


class TestAvailabilityStats:
    def test_stats_projection(self, db, reconciler, provider, service):
        slot = create_slot(db, provider, service, max_bookings=3, current_bookings=1)

        stats = reconciler.get_availability_stats(slot.id)

        assert stats.available_spots == 2
        assert stats.start_time == time(9, 0)
        assert stats.service.name == service.name
        assert stats.service.duration == 60

    def test_slot_without_service(self, db, reconciler, provider):
        slot = create_slot(db, provider)
        assert reconciler.get_availability_stats(slot.id).service is None

    def test_unknown_slot(self, reconciler):
        assert reconciler.get_availability_stats("missing") is None

    def test_repository_failure_returns_none(self, reconciler, slot):
        with patch.object(
            reconciler.slot_repository,
            "get_slot_with_service",
            side_effect=RepositoryException("boom"),
        ):
            assert reconciler.get_availability_stats(slot.id) is None


class TestCounterInvariants:
    @pytest.mark.parametrize(
        "capacity, steps",
        [
            (1, "+-+--++-+"),
            (3, "++++-+--+++--+----++"),
            (4, "-++-+++++--+-+++----"),
        ],
    )
    def test_interleaved_creates_and_cancels_stay_in_bounds(
        self, db, reconciler, provider, service, capacity, steps
    ):
        slot = create_slot(db, provider, service, max_bookings=capacity)
        expected = 0

        for step in steps:
            if step == "+":
                result = reconciler.update_availability_on_booking_create(
                    provider.id, service.id, BOOKING_AT
                )
                assert result.success is (expected < capacity)
                expected = min(capacity, expected + 1)
            else:
                reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)
                expected = max(0, expected - 1)

            db.refresh(slot)
            assert slot.current_bookings == expected
            assert 0 <= slot.current_bookings <= capacity
            assert slot.is_booked is (slot.current_bookings == capacity)
            assert slot.is_available is (not slot.is_booked)

    def test_only_counter_moves_report_the_slot(self, reconciler, provider, service, slot):
        taken = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)
        refused = reconciler.update_availability_on_booking_create(provider.id, service.id, BOOKING_AT)
        released = reconciler.update_availability_on_booking_cancel(provider.id, service.id, BOOKING_AT)

        assert (taken.slot_id, refused.slot_id, released.slot_id) == (slot.id, None, slot.id)
