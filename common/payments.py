"""Payment gateway collaborator and the verification gate that settles pending bookings."""
from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional

import requests
from circuitbreaker import circuit
from sqlalchemy import update
from sqlalchemy.orm import Session

from .availability import assess, lock_resources, pending_hold_cutoff, shortages
from .config import get_settings
from .errors import (
    InvalidTransition,
    NotFound,
    PaymentAlreadyVerified,
    PaymentGatewayError,
    ValidationFailed,
)
from .lifecycle import BookingEvent, next_status
from .models import Booking, BookingStatus, Package, PaymentStatus, RefundStatus, User, utcnow
from .schemas import ResourceAvailability

logger = logging.getLogger(__name__)


class PaymentOutcome(str, Enum):
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    # Paid, but the stay was taken by others once the hold lapsed; refunded.
    RELEASED = "released"


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentGateway(ABC):
    """Creates payment orders with the processor and checks the signatures it hands back."""

    def __init__(self, key_id: str, key_secret: str) -> None:
        self.key_id = key_id
        self._key_secret = key_secret

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        """Reserve ``amount`` (smallest currency unit) with the processor and return its order."""

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(order_id, payment_id, self._key_secret)
        return hmac.compare_digest(expected, signature or "")


class RazorpayGateway(PaymentGateway):
    def __init__(self, key_id: str, key_secret: str, timeout: float) -> None:
        super().__init__(key_id, key_secret)
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import razorpay

            self._client = razorpay.Client(auth=(self.key_id, self._key_secret))
        return self._client

    @circuit(failure_threshold=5, recovery_timeout=60, expected_exception=PaymentGatewayError)
    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        from razorpay.errors import BadRequestError, GatewayError, ServerError

        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        try:
            order = self.client.order.create(data=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            logger.error("Payment order for %s timed out after %ss", receipt, self.timeout)
            raise PaymentGatewayError("Payment gateway timed out. Please try again.") from exc
        except (requests.exceptions.RequestException, BadRequestError, GatewayError, ServerError) as exc:
            logger.error("Payment order for %s failed: %s", receipt, exc)
            raise PaymentGatewayError("Could not create payment order") from exc
        return order


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """One gateway (and one HTTP client) per process, injected into the handlers."""

    settings = get_settings()
    return RazorpayGateway(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        timeout=settings.payment_timeout_seconds,
    )


def _ensure_verifiable(booking: Booking, user: User, order_id: str) -> None:
    if booking.user_id != user.id:
        # Someone else's booking looks exactly like a missing one.
        raise NotFound("Booking not found")
    if booking.payment_status == PaymentStatus.PAID or booking.status == BookingStatus.CONFIRMED:
        raise PaymentAlreadyVerified("Payment already verified for this booking")
    if booking.status != BookingStatus.PENDING:
        raise InvalidTransition(f"Cannot verify payment for booking with status: {booking.status.value}")
    if order_id != booking.payment_order_id:
        raise ValidationFailed("Order ID does not match this booking")


def _lapsed_shortages(db: Session, booking: Booking, now: datetime) -> List[ResourceAvailability]:
    """Shortages for a booking whose hold lapsed, counting every other live reservation."""

    cutoff = pending_hold_cutoff(now)
    if booking.created_at >= cutoff:
        return []
    resources = lock_resources(db, [item.resource_id for item in booking.items])
    report = assess(
        db,
        [(resources[item.resource_id], item.quantity) for item in booking.items],
        booking.check_in_date,
        booking.check_out_date,
        include_pending=True,
        hold_cutoff=cutoff,
        exclude_booking_id=booking.id,
    )
    return shortages(report)


def verify_payment(
    db: Session,
    booking: Booking,
    user: User,
    order_id: str,
    payment_id: str,
    signature: str,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> PaymentOutcome:
    """Settle a pending booking from a processor callback.

    A valid signature confirms the booking and marks it fully paid; an invalid
    one fails it. A booking whose hold lapsed is re-checked first: if its
    units went to other bookings meanwhile it is cancelled with the payment
    marked for refund. Every outcome is conditional on the row still being
    pending, so a replayed or concurrent call cannot credit the booking twice.
    The caller commits.
    """

    _ensure_verifiable(booking, user, order_id)
    now = now or utcnow()
    valid = gateway.verify_signature(order_id, payment_id, signature)
    missing = _lapsed_shortages(db, booking, now) if valid else []

    if not valid:
        logger.warning(
            "Payment signature mismatch for booking %s (order %s, payment %s): possible fraud",
            booking.reference_code,
            order_id,
            payment_id,
        )
        outcome = PaymentOutcome.DECLINED
        values: Dict[str, Any] = {
            "status": next_status(booking.status, BookingEvent.PAYMENT_FAILED),
            "payment_status": PaymentStatus.FAILED,
            "payment_id": payment_id,
        }
    else:
        values = {
            "payment_status": PaymentStatus.PAID,
            "payment_id": payment_id,
            "payment_signature": signature,
            "paid_at": now,
            "paid_amount": Booking.total_amount,
            "balance_amount": Decimal("0"),
        }
        if missing:
            logger.warning(
                "Booking %s paid after its hold lapsed and %s sold out; cancelling for refund",
                booking.reference_code,
                ", ".join(entry.name for entry in missing),
            )
            outcome = PaymentOutcome.RELEASED
            values.update(
                status=next_status(booking.status, BookingEvent.CANCEL),
                cancelled_at=now,
                cancellation_reason="Dates sold out after the payment hold expired",
                refund_amount=Booking.total_amount,
                refund_status=RefundStatus.INITIATED,
            )
        else:
            outcome = PaymentOutcome.CONFIRMED
            values.update(
                status=next_status(booking.status, BookingEvent.PAYMENT_VERIFIED),
                confirmed_at=now,
            )
    values["payment_attempts"] = Booking.payment_attempts + 1
    values["updated_at"] = now

    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise PaymentAlreadyVerified("Payment already verified for this booking")

    if outcome is PaymentOutcome.CONFIRMED:
        db.execute(
            update(Package)
            .where(Package.id == booking.package_id)
            .values(booking_count=Package.booking_count + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info("Booking %s confirmed with payment %s", booking.reference_code, payment_id)
    db.expire(booking)
    return outcome
