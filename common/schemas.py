"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .dates import DisplayDate
from .inventory import check_resource_invariants
from .models import (
    BookingStatus,
    FacilityType,
    PackageCategory,
    PaymentStatus,
    RefundStatus,
    RoomTier,
)

FIXED_CATEGORIES = Literal[
    "full_venue",
    "function_hall_dining",
    "rooms_dining_mini_hall",
    "rooms_mini_hall",
    "function_hall_only",
    "mini_hall",
]


class StayDates(BaseModel):
    check_in_date: DisplayDate
    check_out_date: DisplayDate

    @model_validator(mode="after")
    def _check_order(self) -> "StayDates":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("Check-out date must be after check-in date")
        return self


# ---------------------------------------------------------------- resources


class ResourceBase(BaseModel):
    name: str = Field(..., max_length=100)
    description: str
    short_description: str = Field("", max_length=255)
    facility_type: FacilityType
    sub_category: Optional[RoomTier] = None
    base_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    capacity: int = Field(..., ge=1)
    total_units: int = Field(1, ge=1)
    is_exclusive: bool = False
    min_booking_days: int = Field(1, ge=1)
    max_booking_days: int = Field(7, ge=1)
    advance_booking_days: int = Field(7, ge=0)
    amenities: List[str] = Field(default_factory=list)
    policies: List[str] = Field(default_factory=list)
    is_active: bool = True


class ResourceCreate(ResourceBase):
    @model_validator(mode="after")
    def _check_invariants(self) -> "ResourceCreate":
        check_resource_invariants(
            self.facility_type,
            self.sub_category,
            self.total_units,
            self.min_booking_days,
            self.max_booking_days,
        )
        return self


class ResourceRead(ResourceBase):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResourceSummary(BaseModel):
    id: int
    name: str
    facility_type: FacilityType
    sub_category: Optional[RoomTier] = None
    base_price: Decimal
    capacity: int
    total_units: int

    model_config = ConfigDict(from_attributes=True)


class ResourceQuantity(BaseModel):
    resource_id: int
    quantity: int = Field(1, ge=1)


class AvailabilityRequest(StayDates):
    resources: List[ResourceQuantity] = Field(..., min_length=1)


class ResourceAvailability(BaseModel):
    resource_id: int
    name: str
    facility_type: FacilityType
    total_units: int
    requested: int
    booked_units: int
    available_units: int
    is_available: bool


class AvailabilityReport(BaseModel):
    check_in_date: DisplayDate
    check_out_date: DisplayDate
    number_of_days: int
    is_available: bool
    resources: List[ResourceAvailability]
    insufficient: List[ResourceAvailability] = Field(default_factory=list)


# ----------------------------------------------------------------- packages


class BookingRules(BaseModel):
    min_days: int = Field(1, ge=1)
    max_days: int = Field(7, ge=1)
    advance_booking_days: int = Field(30, ge=0)
    cancellation_policy: str = Field("No refund within 7 days of check-in", max_length=255)

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _check_range(self) -> "BookingRules":
        if self.max_days < self.min_days:
            raise ValueError("max_days must be greater than or equal to min_days")
        return self


class MealInclusions(BaseModel):
    dining: bool = False
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False


class PackageItemIn(BaseModel):
    resource_id: int
    quantity: int = Field(1, ge=1)


class PackageBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: str = Field(..., min_length=1)
    short_description: Optional[str] = Field(None, max_length=255)
    gst_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    booking_rules: BookingRules = Field(default_factory=BookingRules)
    includes: MealInclusions = Field(default_factory=MealInclusions)
    terms_and_conditions: List[str] = Field(default_factory=list)
    display_order: int = 0

    model_config = ConfigDict(extra="forbid")


class FixedPackageCreate(PackageBase):
    """A bundle with a fixed resource list and a fixed price per day."""

    category: FIXED_CATEGORIES
    base_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    resources: List[PackageItemIn] = Field(..., min_length=1)


class RoomsOnlyPackageCreate(PackageBase):
    """Individual room booking: the guest picks how many rooms, price follows the room rate."""

    category: Literal["rooms_only"]
    room_resource_id: int
    min_quantity: int = Field(1, ge=1)
    max_quantity: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _check_quantity_range(self) -> "RoomsOnlyPackageCreate":
        if self.max_quantity is not None and self.max_quantity < self.min_quantity:
            raise ValueError("max_quantity must be greater than or equal to min_quantity")
        return self


PackageCreate = Union[FixedPackageCreate, RoomsOnlyPackageCreate]


class PackageUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=255)
    base_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    gst_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    booking_rules: Optional[BookingRules] = None
    includes: Optional[MealInclusions] = None
    terms_and_conditions: Optional[List[str]] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None
    # Changing any of these alters what existing bookings reserved.
    category: Optional[PackageCategory] = None
    resources: Optional[List[PackageItemIn]] = None
    room_resource_id: Optional[int] = None
    min_quantity: Optional[int] = Field(None, ge=1)
    max_quantity: Optional[int] = Field(None, ge=1)

    model_config = ConfigDict(extra="forbid")


SENSITIVE_PACKAGE_FIELDS = ("category", "resources", "room_resource_id", "min_quantity", "max_quantity")


class PackageItemRead(BaseModel):
    resource_id: int
    quantity: int
    is_flexible: bool
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    resource: ResourceSummary

    model_config = ConfigDict(from_attributes=True)


class PackageRead(BaseModel):
    id: int
    name: str
    slug: str
    category: PackageCategory
    description: str
    short_description: str
    base_price: Decimal
    gst_percentage: Decimal
    booking_rules: BookingRules
    includes: MealInclusions
    terms_and_conditions: List[str]
    display_order: int
    booking_count: int
    is_active: bool
    items: List[PackageItemRead]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PackageAdminListing(BaseModel):
    total_packages: int
    active_count: int
    inactive_count: int
    data: List[PackageRead]
    grouped_by_category: Dict[str, List[int]]


class PriceRequest(StayDates):
    room_quantity: Optional[int] = Field(None, ge=1)
    number_of_guests: Optional[int] = Field(None, ge=0)


class QuoteLine(BaseModel):
    resource_id: int
    name: str
    facility_type: FacilityType
    sub_category: Optional[RoomTier] = None
    quantity: int
    unit_price: Decimal
    number_of_days: int
    subtotal: Decimal


class PriceQuote(BaseModel):
    package_id: int
    package_name: str
    category: PackageCategory
    mode: Literal["fixed", "variable"]
    check_in_date: DisplayDate
    check_out_date: DisplayDate
    number_of_days: int
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    gst_percentage: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    total_capacity: int
    line_items: List[QuoteLine]
    number_of_guests: Optional[int] = None


# ----------------------------------------------------------------- bookings


class GuestDetails(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=5, max_length=20)
    email: Optional[EmailStr] = None
    id_proof: Optional[str] = Field(None, max_length=100)


class PackageAvailabilityRequest(PriceRequest):
    package_id: int


class PackageAvailabilityReport(BaseModel):
    package_id: int
    is_available: bool
    resources: List[ResourceAvailability]
    insufficient: List[ResourceAvailability] = Field(default_factory=list)
    quote: PriceQuote


class CreateOrderRequest(PriceRequest):
    package_id: int
    number_of_guests: int = Field(0, ge=0)
    guest_details: GuestDetails
    special_requests: Optional[str] = Field(None, max_length=1000)
    expected_total: Optional[Decimal] = Field(None, ge=0)


class PaymentOrderRead(BaseModel):
    id: str
    amount: int
    currency: str


class CreateOrderResponse(BaseModel):
    booking_id: int
    reference_code: str
    status: BookingStatus
    order: PaymentOrderRead
    key_id: str
    quote: PriceQuote


class VerifyPaymentRequest(BaseModel):
    booking_id: int
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookedResourceRead(BaseModel):
    resource_id: int
    facility_type: FacilityType
    name: str
    sub_category: Optional[RoomTier] = None
    quantity: int
    unit_price: Decimal
    number_of_days: int
    subtotal: Decimal

    model_config = ConfigDict(from_attributes=True)


class GuestDetailsRead(BaseModel):
    full_name: str
    phone_number: str
    email: Optional[str] = None
    id_proof: Optional[str] = None


class PricingRead(BaseModel):
    subtotal: Decimal
    gst_percentage: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal


class PaymentRead(BaseModel):
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    status: PaymentStatus
    attempts: int
    paid_at: Optional[datetime] = None


class CancellationRead(BaseModel):
    cancelled_by: Optional[int] = None
    cancelled_at: datetime
    reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_status: Optional[RefundStatus] = None


class BookingRead(BaseModel):
    id: int
    reference_code: str
    user_id: int
    package_id: int
    category: PackageCategory
    check_in_date: DisplayDate
    check_out_date: DisplayDate
    number_of_days: int
    number_of_guests: int
    guest_details: GuestDetailsRead
    special_requests: Optional[str] = None
    items: List[BookedResourceRead]
    pricing: PricingRead
    payment: PaymentRead
    status: BookingStatus
    confirmed_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    cancellation: Optional[CancellationRead] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingStats(BaseModel):
    total_bookings: int
    by_status: Dict[str, int]
    by_payment_status: Dict[str, int]
    total_revenue: Decimal
    outstanding_balance: Decimal
    upcoming_check_ins: int
