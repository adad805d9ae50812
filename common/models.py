"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

Money = Numeric(12, 2)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleEnum(str, Enum):
    ADMIN = "admin"
    REGULAR = "regular"


class FacilityType(str, Enum):
    GUEST_ROOM = "guest_room"
    FUNCTION_HALL = "function_hall"
    DINING_HALL = "dining_hall"
    MINI_HALL = "mini_hall"
    FULL_VENUE = "full_venue"


class RoomTier(str, Enum):
    DELUXE = "Deluxe"
    STANDARD = "Standard"


class PackageCategory(str, Enum):
    FULL_VENUE = "full_venue"
    FUNCTION_HALL_DINING = "function_hall_dining"
    ROOMS_DINING_MINI_HALL = "rooms_dining_mini_hall"
    ROOMS_MINI_HALL = "rooms_mini_hall"
    FUNCTION_HALL_ONLY = "function_hall_only"
    MINI_HALL = "mini_hall"
    ROOMS_ONLY = "rooms_only"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class RefundStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    INITIATED = "initiated"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.REGULAR)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user", foreign_keys="Booking.user_id")


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        CheckConstraint("total_units >= 1", name="ck_resources_total_units"),
        Index("ix_resources_facility_active", "facility_type", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text)
    short_description: Mapped[str] = mapped_column(String(255), default="")
    facility_type: Mapped[FacilityType] = mapped_column(SqlEnum(FacilityType), index=True)
    sub_category: Mapped[Optional[RoomTier]] = mapped_column(SqlEnum(RoomTier), default=None)
    base_price: Mapped[Decimal] = mapped_column(Money)
    capacity: Mapped[int] = mapped_column(Integer)
    total_units: Mapped[int] = mapped_column(Integer, default=1)
    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=False)
    min_booking_days: Mapped[int] = mapped_column(Integer, default=1)
    max_booking_days: Mapped[int] = mapped_column(Integer, default=7)
    advance_booking_days: Mapped[int] = mapped_column(Integer, default=7)
    amenities: Mapped[list[str]] = mapped_column(JSON, default=list)
    policies: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (Index("ix_packages_category_active", "category", "is_active"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(150), unique=True)
    slug: Mapped[str] = mapped_column(String(160), unique=True, index=True)
    category: Mapped[PackageCategory] = mapped_column(SqlEnum(PackageCategory), index=True)
    description: Mapped[str] = mapped_column(Text)
    short_description: Mapped[str] = mapped_column(String(255), default="")
    base_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    gst_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("18"))
    min_days: Mapped[int] = mapped_column(Integer, default=1)
    max_days: Mapped[int] = mapped_column(Integer, default=7)
    advance_booking_days: Mapped[int] = mapped_column(Integer, default=30)
    cancellation_policy: Mapped[str] = mapped_column(String(255), default="No refund within 7 days of check-in")
    includes_dining: Mapped[bool] = mapped_column(Boolean, default=False)
    includes_breakfast: Mapped[bool] = mapped_column(Boolean, default=False)
    includes_lunch: Mapped[bool] = mapped_column(Boolean, default=False)
    includes_dinner: Mapped[bool] = mapped_column(Boolean, default=False)
    terms_and_conditions: Mapped[list[str]] = mapped_column(JSON, default=list)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    booking_count: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[List["PackageResource"]] = relationship(
        back_populates="package", cascade="all, delete-orphan", order_by="PackageResource.id"
    )
    bookings: Mapped[List["Booking"]] = relationship(back_populates="package")

    @property
    def booking_rules(self) -> dict:
        return {
            "min_days": self.min_days,
            "max_days": self.max_days,
            "advance_booking_days": self.advance_booking_days,
            "cancellation_policy": self.cancellation_policy,
        }

    @property
    def includes(self) -> dict:
        return {
            "dining": self.includes_dining,
            "breakfast": self.includes_breakfast,
            "lunch": self.includes_lunch,
            "dinner": self.includes_dinner,
        }


class PackageResource(Base):
    __tablename__ = "package_resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), index=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    is_flexible: Mapped[bool] = mapped_column(Boolean, default=False)
    min_quantity: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, default=None)

    package: Mapped[Package] = relationship(back_populates="items")
    resource: Mapped[Resource] = relationship()


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_bookings_dates"),
        Index("ix_bookings_status_dates", "status", "check_in_date", "check_out_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    reference_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id"), index=True)
    category: Mapped[PackageCategory] = mapped_column(SqlEnum(PackageCategory))
    check_in_date: Mapped[date] = mapped_column(Date, index=True)
    check_out_date: Mapped[date] = mapped_column(Date, index=True)
    number_of_days: Mapped[int] = mapped_column(Integer)
    number_of_guests: Mapped[int] = mapped_column(Integer, default=0)

    guest_name: Mapped[str] = mapped_column(String(100))
    guest_phone: Mapped[str] = mapped_column(String(20))
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    guest_id_proof: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, default=None)

    subtotal: Mapped[Decimal] = mapped_column(Money)
    gst_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    gst_amount: Mapped[Decimal] = mapped_column(Money)
    total_amount: Mapped[Decimal] = mapped_column(Money)
    paid_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(Money)

    payment_order_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    payment_signature: Mapped[Optional[str]] = mapped_column(String(128), default=None)
    payment_status: Mapped[PaymentStatus] = mapped_column(SqlEnum(PaymentStatus), default=PaymentStatus.PENDING)
    payment_attempts: Mapped[int] = mapped_column(Integer, default=0)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    cancelled_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), default=None)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, default=None)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Money, default=None)
    refund_status: Mapped[Optional[RefundStatus]] = mapped_column(SqlEnum(RefundStatus), default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped[User] = relationship(back_populates="bookings", foreign_keys=[user_id])
    package: Mapped[Package] = relationship(back_populates="bookings")
    items: Mapped[List["BookedResource"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", order_by="BookedResource.id"
    )

    def sync_balance(self) -> None:
        self.balance_amount = self.total_amount - (self.paid_amount or Decimal("0"))

    @property
    def guest_details(self) -> dict:
        return {
            "full_name": self.guest_name,
            "phone_number": self.guest_phone,
            "email": self.guest_email,
            "id_proof": self.guest_id_proof,
        }

    @property
    def pricing(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "gst_percentage": self.gst_percentage,
            "gst_amount": self.gst_amount,
            "total_amount": self.total_amount,
            "paid_amount": self.paid_amount,
            "balance_amount": self.balance_amount,
        }

    @property
    def payment(self) -> dict:
        return {
            "order_id": self.payment_order_id,
            "payment_id": self.payment_id,
            "signature": self.payment_signature,
            "status": self.payment_status,
            "attempts": self.payment_attempts,
            "paid_at": self.paid_at,
        }

    @property
    def cancellation(self) -> Optional[dict]:
        if self.cancelled_at is None:
            return None
        return {
            "cancelled_by": self.cancelled_by_id,
            "cancelled_at": self.cancelled_at,
            "reason": self.cancellation_reason,
            "refund_amount": self.refund_amount,
            "refund_status": self.refund_status,
        }


class BookedResource(Base):
    __tablename__ = "booked_resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"), index=True)
    facility_type: Mapped[FacilityType] = mapped_column(SqlEnum(FacilityType))
    name: Mapped[str] = mapped_column(String(100))
    sub_category: Mapped[Optional[RoomTier]] = mapped_column(SqlEnum(RoomTier), default=None)
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Money)
    number_of_days: Mapped[int] = mapped_column(Integer)
    subtotal: Mapped[Decimal] = mapped_column(Money)

    booking: Mapped[Booking] = relationship(back_populates="items")
