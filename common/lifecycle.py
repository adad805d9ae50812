"""Booking lifecycle: the transition table and the actions that move a booking along it.

    pending --payment verified--> confirmed --check in--> checked_in --check out--> checked_out
    pending --payment failed----> failed
    pending|confirmed --cancel--> cancelled
    confirmed --no show---------> no_show

Every status not listed as a source above is terminal.
"""
from __future__ import annotations

import logging
import secrets
import string
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from .config import get_settings
from .errors import InvalidTransition, PermissionDenied, ValidationFailed
from .inventory import PackageBundle
from .models import (
    BookedResource,
    Booking,
    BookingStatus,
    FacilityType,
    PaymentStatus,
    RefundStatus,
    User,
    utcnow,
)
from .schemas import GuestDetails, PriceQuote

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_LENGTH = 6


class BookingEvent(str, Enum):
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    NO_SHOW = "no_show"


TRANSITIONS: Dict[BookingStatus, Dict[BookingEvent, BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingEvent.PAYMENT_VERIFIED: BookingStatus.CONFIRMED,
        BookingEvent.PAYMENT_FAILED: BookingStatus.FAILED,
        BookingEvent.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingEvent.CANCEL: BookingStatus.CANCELLED,
        BookingEvent.CHECK_IN: BookingStatus.CHECKED_IN,
        BookingEvent.NO_SHOW: BookingStatus.NO_SHOW,
    },
    BookingStatus.CHECKED_IN: {
        BookingEvent.CHECK_OUT: BookingStatus.CHECKED_OUT,
    },
}

_REJECTIONS = {
    BookingEvent.CANCEL: "Cannot cancel booking with status: {status}",
    BookingEvent.CHECK_IN: "Cannot check in booking with status: {status}",
    BookingEvent.CHECK_OUT: "Cannot check out booking with status: {status}",
    BookingEvent.NO_SHOW: "Cannot mark no-show for booking with status: {status}",
    BookingEvent.PAYMENT_VERIFIED: "Cannot confirm booking with status: {status}",
    BookingEvent.PAYMENT_FAILED: "Cannot fail booking with status: {status}",
}


def is_terminal(current: BookingStatus) -> bool:
    return current not in TRANSITIONS


def next_status(current: BookingStatus, event: BookingEvent) -> BookingStatus:
    target = TRANSITIONS.get(current, {}).get(event)
    if target is None:
        raise InvalidTransition(_REJECTIONS[event].format(status=BookingStatus(current).value))
    return target


def generate_reference_code(prefix: Optional[str] = None) -> str:
    prefix = prefix or get_settings().booking_reference_prefix
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{prefix}-{suffix}"


def new_pending_booking(
    *,
    user: User,
    bundle: PackageBundle,
    quote: PriceQuote,
    guest: GuestDetails,
    number_of_guests: int,
    special_requests: Optional[str],
    reference_code: str,
    payment_order_id: Optional[str] = None,
) -> Booking:
    """A pending booking carrying the priced snapshot of what it reserves.

    The payment order id may be attached later, once the gateway has issued it.
    """

    has_rooms = any(line.facility_type == FacilityType.GUEST_ROOM for line in quote.line_items)
    if has_rooms and number_of_guests < 1:
        raise ValidationFailed("number_of_guests is required for bookings that include rooms")

    booking = Booking(
        reference_code=reference_code,
        user_id=user.id,
        package_id=bundle.package_id,
        category=bundle.category,
        check_in_date=quote.check_in_date,
        check_out_date=quote.check_out_date,
        number_of_days=quote.number_of_days,
        number_of_guests=number_of_guests,
        guest_name=guest.full_name,
        guest_phone=guest.phone_number,
        guest_email=guest.email,
        guest_id_proof=guest.id_proof,
        special_requests=special_requests,
        subtotal=quote.subtotal,
        gst_percentage=quote.gst_percentage,
        gst_amount=quote.gst_amount,
        total_amount=quote.total_amount,
        paid_amount=Decimal("0"),
        payment_order_id=payment_order_id,
        payment_status=PaymentStatus.PENDING,
        payment_attempts=0,
        status=BookingStatus.PENDING,
        created_at=utcnow(),
    )
    booking.items = [
        BookedResource(
            resource_id=line.resource_id,
            facility_type=line.facility_type,
            name=line.name,
            sub_category=line.sub_category,
            quantity=line.quantity,
            unit_price=line.unit_price,
            number_of_days=line.number_of_days,
            subtotal=line.subtotal,
        )
        for line in quote.line_items
    ]
    booking.sync_balance()
    return booking


def cancel(
    booking: Booking,
    actor: User,
    *,
    as_admin: bool,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Cancel a pending or confirmed booking.

    Guests may not cancel once check-in is closer than the configured cutoff;
    admins may. A refund equal to what was paid is recorded as initiated, the
    money movement itself happens outside this service.
    """

    now = now or utcnow()
    target = next_status(booking.status, BookingEvent.CANCEL)
    if not as_admin:
        cutoff_hours = get_settings().cancellation_cutoff_hours
        check_in_at = datetime.combine(booking.check_in_date, datetime.min.time())
        if check_in_at - now < timedelta(hours=cutoff_hours):
            raise PermissionDenied(f"Cannot cancel within {cutoff_hours} hours of check-in")

    paid = booking.paid_amount or Decimal("0")
    booking.status = target
    booking.cancelled_at = now
    booking.cancelled_by_id = actor.id
    booking.cancellation_reason = reason or ("Cancelled by admin" if as_admin else "Cancelled by user")
    booking.refund_amount = paid
    booking.refund_status = RefundStatus.INITIATED if paid > 0 else RefundStatus.NOT_APPLICABLE
    logger.info(
        "Booking %s cancelled by user %s (refund %s)", booking.reference_code, actor.id, booking.refund_amount
    )
    return booking


def check_in(booking: Booking, today: date, now: Optional[datetime] = None) -> Booking:
    target = next_status(booking.status, BookingEvent.CHECK_IN)
    if today < booking.check_in_date:
        raise InvalidTransition("Cannot check in before the check-in date")
    booking.status = target
    booking.checked_in_at = now or utcnow()
    logger.info("Booking %s checked in", booking.reference_code)
    return booking


def check_out(booking: Booking, now: Optional[datetime] = None) -> Booking:
    booking.status = next_status(booking.status, BookingEvent.CHECK_OUT)
    booking.checked_out_at = now or utcnow()
    logger.info("Booking %s checked out", booking.reference_code)
    return booking


def mark_no_show(booking: Booking, today: date) -> Booking:
    target = next_status(booking.status, BookingEvent.NO_SHOW)
    if today < booking.check_in_date:
        raise InvalidTransition("Cannot mark no-show before the check-in date")
    booking.status = target
    logger.info("Booking %s marked as no-show", booking.reference_code)
    return booking
