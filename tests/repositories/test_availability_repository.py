from datetime import time

from marketplace.repositories.availability_repository import AvailabilityRepository
from tests.factories.ledger_builders import SLOT_DATE, create_service, create_slot


class TestFindMatchingSlot:
    def test_matches_inclusive_time_range(self, db, provider, slot):
        repo = AvailabilityRepository(db)

        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(9, 0)).id == slot.id
        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(12, 0)).id == slot.id
        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(12, 0, 1)) is None

    def test_earliest_start_wins_for_overlapping_slots(self, db, provider, service):
        later = create_slot(db, provider, service, start=time(10, 0), end=time(11, 0))
        earlier = create_slot(db, provider, service, start=time(8, 0), end=time(12, 0))

        match = AvailabilityRepository(db).find_matching_slot(provider.id, SLOT_DATE, time(10, 30))

        assert match.id == earlier.id
        assert match.id != later.id

    def test_service_filter(self, db, provider, service, slot):
        other = create_service(db, provider, name="Guitar lesson")
        repo = AvailabilityRepository(db)

        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(10, 0), service_id=other.id) is None
        assert (
            repo.find_matching_slot(provider.id, SLOT_DATE, time(10, 0), service_id=service.id).id
            == slot.id
        )

    def test_available_only_skips_full_slots(self, db, provider, service):
        create_slot(db, provider, service, max_bookings=1, current_bookings=1)
        repo = AvailabilityRepository(db)

        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(10, 0), available_only=True) is None
        assert repo.find_matching_slot(provider.id, SLOT_DATE, time(10, 0)) is not None


class TestCapacityCounters:
    def test_increment_until_full(self, db, provider, service):
        slot = create_slot(db, provider, service, max_bookings=2)
        repo = AvailabilityRepository(db)

        assert repo.try_increment_bookings(slot.id) is True
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (1, False, True)

        assert repo.try_increment_bookings(slot.id) is True
        db.refresh(slot)
        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (2, True, False)

        assert repo.try_increment_bookings(slot.id) is False
        db.refresh(slot)
        assert slot.current_bookings == 2

    def test_decrement_reopens_slot(self, db, provider, service):
        slot = create_slot(db, provider, service, max_bookings=1, current_bookings=1)
        repo = AvailabilityRepository(db)

        assert repo.decrement_bookings(slot.id) is True
        db.refresh(slot)

        assert (slot.current_bookings, slot.is_booked, slot.is_available) == (0, False, True)

    def test_decrement_clamps_at_zero(self, db, provider, service):
        slot = create_slot(db, provider, service)

        AvailabilityRepository(db).decrement_bookings(slot.id)
        db.refresh(slot)

        assert slot.current_bookings == 0
        assert slot.is_available is True

    def test_unknown_slot(self, db):
        repo = AvailabilityRepository(db)
        assert repo.try_increment_bookings("missing") is False
        assert repo.decrement_bookings("missing") is False
