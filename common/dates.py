"""DD-MM-YYYY date handling and stay-window rules."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer

from .errors import RuleViolation, ValidationFailed

DATE_FORMAT = "%d-%m-%Y"
INVALID_DATE_MESSAGE = "Invalid date format. Use DD-MM-YYYY (e.g., 15-12-2025)"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_display_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(INVALID_DATE_MESSAGE)
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError(INVALID_DATE_MESSAGE) from exc


def format_display_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


DisplayDate = Annotated[
    date,
    BeforeValidator(parse_display_date),
    PlainSerializer(format_display_date, return_type=str),
]


def number_of_days(check_in: date, check_out: date) -> int:
    """Nights between the dates: the check-in night counts, the check-out night does not."""

    return (check_out - check_in).days


def validate_stay(
    label: str,
    check_in: date,
    check_out: date,
    *,
    min_days: int,
    max_days: int,
    advance_booking_days: int,
    today: date,
) -> int:
    """Check ordering, duration and advance window; return the number of days.

    Messages name the limit that was violated and the requested value.
    """

    if check_out <= check_in:
        raise ValidationFailed("Check-out date must be after check-in date")
    if check_in < today:
        raise ValidationFailed("Check-in date cannot be in the past")

    days = number_of_days(check_in, check_out)
    if days < min_days:
        raise RuleViolation(
            f"{label} requires minimum {min_days} day(s) booking. You requested {days} day(s).",
            limit="min_days",
            limit_value=min_days,
        )
    if days > max_days:
        raise RuleViolation(
            f"{label} allows maximum {max_days} day(s) booking. You requested {days} day(s).",
            limit="max_days",
            limit_value=max_days,
        )
    days_ahead = (check_in - today).days
    if days_ahead > advance_booking_days:
        raise RuleViolation(
            f"{label} can only be booked up to {advance_booking_days} days in advance. "
            f"You tried to book {days_ahead} days in advance.",
            limit="advance_booking_days",
            limit_value=advance_booking_days,
        )
    return days
