import pytest

from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.earning import EARNING_TRANSITIONS, EarningStatus, is_valid_earning_transition


class TestEarningTransitions:
    @pytest.mark.parametrize(
        "current,new",
        [
            (EarningStatus.PENDING_CLEARANCE, EarningStatus.AVAILABLE),
            (EarningStatus.AVAILABLE, EarningStatus.PAID_OUT),
            (EarningStatus.PAID_OUT, EarningStatus.AVAILABLE),
            (EarningStatus.PENDING_CLEARANCE, EarningStatus.FROZEN),
            (EarningStatus.PAID_OUT, EarningStatus.FROZEN),
        ],
    )
    def test_allowed(self, current, new):
        assert is_valid_earning_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (EarningStatus.PENDING_CLEARANCE, EarningStatus.PAID_OUT),
            (EarningStatus.AVAILABLE, EarningStatus.PENDING_CLEARANCE),
            (EarningStatus.FROZEN, EarningStatus.AVAILABLE),
        ],
    )
    def test_rejected(self, current, new):
        assert not is_valid_earning_transition(current, new)

    def test_frozen_is_terminal(self):
        assert EARNING_TRANSITIONS[EarningStatus.FROZEN] == frozenset()


class TestBookingTransitions:
    def test_pending_booking_can_be_confirmed_or_cancelled(self):
        booking = Booking(status=BookingStatus.PENDING.value)

        assert booking.can_transition_to(BookingStatus.CONFIRMED)
        assert booking.can_transition_to(BookingStatus.CANCELLED)
        assert not booking.can_transition_to(BookingStatus.COMPLETED)

    def test_cancel_records_reason_and_time(self):
        booking = Booking(status=BookingStatus.CONFIRMED.value)
        booking.cancel("student unwell")

        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancellation_reason == "student unwell"
        assert booking.cancelled_at is not None
