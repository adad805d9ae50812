"""Unit tests for schema validation."""
from datetime import date
from decimal import Decimal

import pytest
from pydantic import TypeAdapter, ValidationError

from common.dates import parse_display_date
from common.models import FacilityType, RoomTier
from common.schemas import (
    AvailabilityRequest,
    BookingRules,
    CreateOrderRequest,
    FixedPackageCreate,
    PackageCreate,
    PackageUpdate,
    PriceRequest,
    ResourceCreate,
    RoomsOnlyPackageCreate,
)


class TestDisplayDates:
    """DD-MM-YYYY parsing and formatting."""

    def test_parse_and_serialize(self):
        request = PriceRequest(check_in_date="15-12-2030", check_out_date="17-12-2030")

        assert request.check_in_date == date(2030, 12, 15)
        assert request.model_dump(mode="json")["check_out_date"] == "17-12-2030"

    def test_iso_format_rejected(self):
        with pytest.raises(ValidationError, match="DD-MM-YYYY"):
            PriceRequest(check_in_date="2030-12-15", check_out_date="17-12-2030")

    def test_impossible_date_rejected(self):
        with pytest.raises(ValueError):
            parse_display_date("31-02-2030")

    def test_check_out_must_follow_check_in(self):
        with pytest.raises(ValidationError, match="Check-out date must be after check-in date"):
            PriceRequest(check_in_date="15-12-2030", check_out_date="15-12-2030")


class TestResourceSchemas:
    """Resource creation invariants."""

    def test_valid_guest_room(self):
        resource = ResourceCreate(
            name="Standard Room",
            description="Twin beds",
            facility_type=FacilityType.GUEST_ROOM,
            sub_category=RoomTier.STANDARD,
            base_price=Decimal("1500"),
            capacity=2,
            total_units=10,
        )
        assert resource.total_units == 10
        assert resource.is_exclusive is False

    def test_guest_room_without_tier(self):
        with pytest.raises(ValidationError, match="sub_category"):
            ResourceCreate(
                name="Room",
                description="No tier",
                facility_type=FacilityType.GUEST_ROOM,
                base_price=Decimal("1500"),
                capacity=2,
            )

    def test_zero_units_rejected(self):
        with pytest.raises(ValidationError):
            ResourceCreate(
                name="Hall",
                description="Empty",
                facility_type=FacilityType.MINI_HALL,
                base_price=Decimal("1500"),
                capacity=20,
                total_units=0,
            )

    def test_availability_request_needs_resources(self):
        with pytest.raises(ValidationError):
            AvailabilityRequest(check_in_date="10-01-2030", check_out_date="12-01-2030", resources=[])


class TestPackageSchemas:
    """The two package shapes never mix."""

    adapter = TypeAdapter(PackageCreate)

    def test_rooms_only_payload(self):
        payload = self.adapter.validate_python(
            {"name": "Rooms", "category": "rooms_only", "description": "Rooms", "room_resource_id": 1}
        )
        assert isinstance(payload, RoomsOnlyPackageCreate)
        assert payload.min_quantity == 1

    def test_fixed_payload(self):
        payload = self.adapter.validate_python(
            {
                "name": "Venue",
                "category": "full_venue",
                "description": "Everything",
                "base_price": "150000",
                "resources": [{"resource_id": 1, "quantity": 1}],
            }
        )
        assert isinstance(payload, FixedPackageCreate)

    def test_rooms_only_rejects_fixed_fields(self):
        with pytest.raises(ValidationError):
            self.adapter.validate_python(
                {
                    "name": "Rooms",
                    "category": "rooms_only",
                    "description": "Rooms",
                    "room_resource_id": 1,
                    "base_price": "1000",
                }
            )

    def test_fixed_rejects_room_fields(self):
        with pytest.raises(ValidationError):
            self.adapter.validate_python(
                {
                    "name": "Venue",
                    "category": "full_venue",
                    "description": "Everything",
                    "base_price": "150000",
                    "resources": [{"resource_id": 1}],
                    "room_resource_id": 1,
                }
            )

    def test_quantity_range(self):
        with pytest.raises(ValidationError, match="max_quantity"):
            RoomsOnlyPackageCreate(
                name="Rooms", category="rooms_only", description="Rooms",
                room_resource_id=1, min_quantity=3, max_quantity=2,
            )

    def test_booking_rules_range(self):
        with pytest.raises(ValidationError, match="max_days"):
            BookingRules(min_days=5, max_days=2)

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            PackageUpdate(slug="hand-made")


class TestOrderSchemas:
    """Order creation payloads."""

    def test_guest_details_required(self):
        with pytest.raises(ValidationError):
            CreateOrderRequest(package_id=1, check_in_date="10-01-2030", check_out_date="12-01-2030")

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            CreateOrderRequest(
                package_id=1,
                check_in_date="10-01-2030",
                check_out_date="12-01-2030",
                guest_details={"full_name": "Asha", "phone_number": "9876543210", "email": "not-an-email"},
            )
