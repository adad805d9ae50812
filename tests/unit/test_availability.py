"""Unit tests for the availability calculator."""
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from common.availability import (
    assess,
    compute_availability,
    ensure_available,
    intervals_overlap,
    pending_hold_cutoff,
)
from common.errors import InsufficientInventory
from common.models import BookedResource, Booking, BookingStatus, PackageCategory, Resource, utcnow

JAN_10 = date(2030, 1, 10)
JAN_11 = date(2030, 1, 11)
JAN_12 = date(2030, 1, 12)
JAN_13 = date(2030, 1, 13)


def _book(session, user, catalog, resource_id, check_in, check_out, quantity,
          status=BookingStatus.CONFIRMED, created_at=None):
    booking = Booking(
        reference_code=f"BHV-{uuid.uuid4().hex[:6].upper()}",
        user_id=user.id,
        package_id=catalog.rooms_package_id,
        category=PackageCategory.ROOMS_ONLY,
        check_in_date=check_in,
        check_out_date=check_out,
        number_of_days=(check_out - check_in).days,
        number_of_guests=2,
        guest_name="Test Guest",
        guest_phone="9999999999",
        subtotal=Decimal("0"),
        gst_percentage=Decimal("18"),
        gst_amount=Decimal("0"),
        total_amount=Decimal("0"),
        balance_amount=Decimal("0"),
        payment_order_id=f"order_{uuid.uuid4().hex[:10]}",
        status=status,
        created_at=created_at or utcnow(),
    )
    resource = session.get(Resource, resource_id)
    booking.items = [
        BookedResource(
            resource_id=resource_id,
            facility_type=resource.facility_type,
            name=resource.name,
            quantity=quantity,
            unit_price=resource.base_price,
            number_of_days=booking.number_of_days,
            subtotal=Decimal("0"),
        )
    ]
    session.add(booking)
    session.commit()
    return booking


class TestIntervalOverlap:
    """Half-open interval semantics."""

    def test_overlapping_intervals(self):
        assert intervals_overlap(JAN_10, JAN_12, JAN_11, JAN_13) is True

    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap(JAN_10, JAN_12, JAN_12, JAN_13) is False
        assert intervals_overlap(JAN_12, JAN_13, JAN_10, JAN_12) is False

    def test_contained_interval(self):
        assert intervals_overlap(JAN_10, JAN_13, JAN_11, JAN_12) is True


class TestComputeAvailability:
    """Booked units are summed across overlapping active bookings."""

    def test_partial_overlap_leaves_two_units(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 3)
        room = db_session.get(Resource, catalog.deluxe_id)

        three = compute_availability(db_session, room, JAN_11, JAN_13, 3)
        assert three.booked_units == 3
        assert three.available_units == 2
        assert three.is_available is False

        two = compute_availability(db_session, room, JAN_11, JAN_13, 2)
        assert two.is_available is True

    def test_touching_booking_is_not_counted(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 5)
        room = db_session.get(Resource, catalog.deluxe_id)

        result = compute_availability(db_session, room, JAN_12, JAN_13, 5)
        assert result.booked_units == 0
        assert result.is_available is True

    def test_inactive_statuses_release_inventory(self, db_session, guest_user, catalog):
        for status in (BookingStatus.CANCELLED, BookingStatus.FAILED, BookingStatus.CHECKED_OUT, BookingStatus.NO_SHOW):
            _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 5, status=status)
        room = db_session.get(Resource, catalog.deluxe_id)

        assert compute_availability(db_session, room, JAN_10, JAN_12, 5).is_available is True

    def test_checked_in_booking_consumes_units(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 4, status=BookingStatus.CHECKED_IN)
        room = db_session.get(Resource, catalog.deluxe_id)

        assert compute_availability(db_session, room, JAN_11, JAN_12, 1).available_units == 1

    def test_pending_counts_only_when_asked(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 4, status=BookingStatus.PENDING)
        room = db_session.get(Resource, catalog.deluxe_id)

        assert compute_availability(db_session, room, JAN_10, JAN_12, 4).is_available is True
        held = compute_availability(db_session, room, JAN_10, JAN_12, 4, include_pending=True)
        assert held.is_available is False
        assert held.available_units == 1

    def test_expired_pending_hold_is_ignored(self, db_session, guest_user, catalog):
        stale = utcnow() - timedelta(hours=2)
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 4,
              status=BookingStatus.PENDING, created_at=stale)
        room = db_session.get(Resource, catalog.deluxe_id)

        result = compute_availability(
            db_session, room, JAN_10, JAN_12, 4, include_pending=True, hold_cutoff=pending_hold_cutoff()
        )
        assert result.is_available is True

    def test_overbooked_resource_reports_zero(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_10, JAN_12, 4)
        _book(db_session, guest_user, catalog, catalog.deluxe_id, JAN_11, JAN_13, 3)
        room = db_session.get(Resource, catalog.deluxe_id)

        result = compute_availability(db_session, room, JAN_11, JAN_12, 0)
        assert result.booked_units == 7
        assert result.available_units == 0
        # Raw value is -2, so even a zero-unit request is refused.
        assert result.is_available is False

    def test_exclusive_resource_blocked_by_any_overlap(self, db_session, guest_user, catalog):
        hall = db_session.get(Resource, catalog.hall_id)
        hall.total_units = 3
        db_session.commit()
        _book(db_session, guest_user, catalog, catalog.hall_id, JAN_10, JAN_12, 1)

        result = compute_availability(db_session, hall, JAN_11, JAN_12, 1)
        assert result.available_units == 0
        assert result.is_available is False


class TestAggregateChecks:
    """Multi-resource checks report every shortage."""

    def test_assess_merges_repeated_resources(self, db_session, catalog):
        room = db_session.get(Resource, catalog.deluxe_id)
        report = assess(db_session, [(room, 2), (room, 2)], JAN_10, JAN_12)

        assert len(report) == 1
        assert report[0].requested == 4

    def test_ensure_available_lists_all_shortages(self, db_session, guest_user, catalog):
        _book(db_session, guest_user, catalog, catalog.hall_id, JAN_10, JAN_12, 1)
        _book(db_session, guest_user, catalog, catalog.dining_id, JAN_10, JAN_12, 1)
        hall = db_session.get(Resource, catalog.hall_id)
        dining = db_session.get(Resource, catalog.dining_id)
        room = db_session.get(Resource, catalog.deluxe_id)

        with pytest.raises(InsufficientInventory) as exc_info:
            ensure_available(db_session, [(hall, 1), (dining, 1), (room, 1)], JAN_11, JAN_12)

        names = {entry["name"] for entry in exc_info.value.shortages}
        assert names == {"Main Function Hall", "Dining Hall"}
        assert exc_info.value.status_code == 409
        assert "Main Function Hall" in exc_info.value.detail

    def test_ensure_available_returns_report(self, db_session, catalog):
        room = db_session.get(Resource, catalog.deluxe_id)
        report = ensure_available(db_session, [(room, 5)], JAN_10, JAN_12)

        assert report[0].is_available is True
        assert report[0].available_units == 5
