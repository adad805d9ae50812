"""Inventory availability over half-open date intervals.

Two stays overlap iff ``existing.check_in < new.check_out`` and
``existing.check_out > new.check_in``; a check-out on day D and a check-in on
day D do not collide. Booked units are summed with one aggregate query over
``booked_resources`` joined to ``bookings`` (indexed on resource and on
status/dates) instead of loading bookings into memory.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from .config import get_settings
from .dates import validate_stay
from .errors import InsufficientInventory, NotFound, RuleViolation
from .models import BookedResource, Booking, BookingStatus, Resource, utcnow
from .schemas import ResourceAvailability

logger = logging.getLogger(__name__)

ACTIVE_STATUSES: Tuple[BookingStatus, ...] = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)


def intervals_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a < end_b and end_a > start_b


def pending_hold_cutoff(now: Optional[datetime] = None) -> datetime:
    """Pending bookings created before this instant no longer hold inventory."""

    now = now or utcnow()
    return now - timedelta(minutes=get_settings().pending_hold_minutes)


def _status_filter(include_pending: bool, hold_cutoff: Optional[datetime]):
    active = Booking.status.in_(ACTIVE_STATUSES)
    if not include_pending:
        return active
    held = Booking.status == BookingStatus.PENDING
    if hold_cutoff is not None:
        held = and_(held, Booking.created_at >= hold_cutoff)
    return or_(active, held)


def booked_usage(
    db: Session,
    resource_id: int,
    check_in: date,
    check_out: date,
    *,
    include_pending: bool = False,
    hold_cutoff: Optional[datetime] = None,
    exclude_booking_id: Optional[int] = None,
) -> Tuple[int, int]:
    """Return (units, bookings) consumed on a resource by active bookings overlapping the stay."""

    stmt = (
        select(
            func.coalesce(func.sum(BookedResource.quantity), 0),
            func.count(func.distinct(Booking.id)),
        )
        .join(Booking, BookedResource.booking_id == Booking.id)
        .where(
            BookedResource.resource_id == resource_id,
            Booking.check_in_date < check_out,
            Booking.check_out_date > check_in,
            _status_filter(include_pending, hold_cutoff),
        )
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    units, bookings = db.execute(stmt).one()
    return int(units or 0), int(bookings or 0)


def compute_availability(
    db: Session,
    resource: Resource,
    check_in: date,
    check_out: date,
    requested_quantity: int,
    *,
    include_pending: bool = False,
    hold_cutoff: Optional[datetime] = None,
    exclude_booking_id: Optional[int] = None,
) -> ResourceAvailability:
    units, bookings = booked_usage(
        db,
        resource.id,
        check_in,
        check_out,
        include_pending=include_pending,
        hold_cutoff=hold_cutoff,
        exclude_booking_id=exclude_booking_id,
    )
    if resource.is_exclusive:
        # One concurrent booking at most, whatever the unit count.
        raw_available = 0 if bookings else resource.total_units
    else:
        raw_available = resource.total_units - units
    return ResourceAvailability(
        resource_id=resource.id,
        name=resource.name,
        facility_type=resource.facility_type,
        total_units=resource.total_units,
        requested=requested_quantity,
        booked_units=units,
        available_units=max(0, raw_available),
        is_available=raw_available >= requested_quantity,
    )


def get_bookable_resource(db: Session, resource_id: int) -> Resource:
    resource = db.get(Resource, resource_id)
    if resource is None:
        raise NotFound(f"Resource not found: {resource_id}")
    if not resource.is_active:
        raise RuleViolation(f"Resource is not active: {resource.name}")
    return resource


def check_resource_window(resource: Resource, check_in: date, check_out: date, today: date) -> int:
    return validate_stay(
        resource.name,
        check_in,
        check_out,
        min_days=resource.min_booking_days,
        max_days=resource.max_booking_days,
        advance_booking_days=resource.advance_booking_days,
        today=today,
    )


def lock_resources(db: Session, resource_ids: Iterable[int]) -> Dict[int, Resource]:
    """SELECT ... FOR UPDATE the resources in id order so concurrent reservations serialize."""

    ids = sorted(set(resource_ids))
    stmt = select(Resource).where(Resource.id.in_(ids)).order_by(Resource.id).with_for_update()
    return {resource.id: resource for resource in db.scalars(stmt)}


def assess(
    db: Session,
    requests: Sequence[Tuple[Resource, int]],
    check_in: date,
    check_out: date,
    *,
    include_pending: bool = False,
    hold_cutoff: Optional[datetime] = None,
    exclude_booking_id: Optional[int] = None,
) -> List[ResourceAvailability]:
    """Availability of every requested resource; repeated resources have their quantities added."""

    merged: "OrderedDict[int, Tuple[Resource, int]]" = OrderedDict()
    for resource, quantity in requests:
        previous = merged.get(resource.id)
        merged[resource.id] = (resource, quantity + (previous[1] if previous else 0))
    return [
        compute_availability(
            db,
            resource,
            check_in,
            check_out,
            quantity,
            include_pending=include_pending,
            hold_cutoff=hold_cutoff,
            exclude_booking_id=exclude_booking_id,
        )
        for resource, quantity in merged.values()
    ]


def shortages(report: Sequence[ResourceAvailability]) -> List[ResourceAvailability]:
    return [entry for entry in report if not entry.is_available]


def ensure_available(
    db: Session,
    requests: Sequence[Tuple[Resource, int]],
    check_in: date,
    check_out: date,
    *,
    include_pending: bool = False,
    hold_cutoff: Optional[datetime] = None,
) -> List[ResourceAvailability]:
    """Like ``assess`` but raise listing every insufficient resource, not only the first."""

    report = assess(
        db,
        requests,
        check_in,
        check_out,
        include_pending=include_pending,
        hold_cutoff=hold_cutoff,
    )
    missing = shortages(report)
    if missing:
        logger.info(
            "Insufficient inventory for %s..%s: %s",
            check_in,
            check_out,
            ", ".join(f"{m.name} {m.available_units}/{m.requested}" for m in missing),
        )
        raise InsufficientInventory([entry.model_dump(mode="json") for entry in missing])
    return report
