"""Deterministic package pricing: subtotal, GST and total in Decimal."""
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .dates import number_of_days, validate_stay
from .errors import ValidationFailed
from .inventory import PackageBundle
from .schemas import PriceQuote, QuoteLine

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def gst_amount(subtotal: Decimal, percentage: Decimal) -> Decimal:
    """The single rounding point of the calculation: half-up to the paisa."""

    return (Decimal(subtotal) * Decimal(percentage) / HUNDRED).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Amount in paise, as the payment gateway expects it."""

    return int((Decimal(amount) * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_price(
    bundle: PackageBundle,
    check_in: date,
    check_out: date,
    quantity: Optional[int] = None,
    number_of_guests: Optional[int] = None,
) -> PriceQuote:
    days = number_of_days(check_in, check_out)
    if days < 1:
        raise ValidationFailed("Check-out date must be after check-in date")
    resolved = bundle.resolve_quantity(quantity)

    subtotal = to_money(bundle.subtotal(days, resolved))
    gst = gst_amount(subtotal, bundle.gst_percentage)
    lines = [
        QuoteLine(
            resource_id=item.resource_id,
            name=item.name,
            facility_type=item.facility_type,
            sub_category=item.sub_category,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            number_of_days=days,
            subtotal=to_money(item.unit_price * item.quantity * days),
        )
        for item in bundle.requested_items(resolved)
    ]
    return PriceQuote(
        package_id=bundle.package_id,
        package_name=bundle.name,
        category=bundle.category,
        mode=bundle.mode,
        check_in_date=check_in,
        check_out_date=check_out,
        number_of_days=days,
        unit_price=to_money(bundle.unit_price),
        quantity=resolved,
        subtotal=subtotal,
        gst_percentage=Decimal(bundle.gst_percentage),
        gst_amount=gst,
        total_amount=subtotal + gst,
        total_capacity=bundle.total_capacity(resolved),
        line_items=lines,
        number_of_guests=number_of_guests,
    )


def quote_package(
    bundle: PackageBundle,
    check_in: date,
    check_out: date,
    quantity: Optional[int],
    today: date,
    number_of_guests: Optional[int] = None,
) -> PriceQuote:
    """Apply the package's stay window, then price it. The guest count is echoed for reference."""

    validate_stay(
        bundle.name,
        check_in,
        check_out,
        min_days=bundle.rules.min_days,
        max_days=bundle.rules.max_days,
        advance_booking_days=bundle.rules.advance_booking_days,
        today=today,
    )
    return compute_price(bundle, check_in, check_out, quantity, number_of_guests)
