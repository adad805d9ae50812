import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from common.availability import (
    assess,
    ensure_available,
    get_bookable_resource,
    lock_resources,
    pending_hold_cutoff,
    shortages,
)
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dates import parse_display_date, utc_today
from common.dependencies import allow_roles, get_current_user, is_admin
from common.errors import (
    HoldReleased,
    PaymentSignatureMismatch,
    PriceMismatch,
    RuleViolation,
    ValidationFailed,
    setup_exception_handlers,
)
from common.inventory import PackageBundle, bundle_for, get_active_package
from common.lifecycle import (
    cancel,
    check_in,
    check_out,
    generate_reference_code,
    mark_no_show,
    new_pending_booking,
)
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, PaymentStatus, Resource, RoleEnum, User
from common.payments import PaymentGateway, PaymentOutcome, get_payment_gateway, verify_payment
from common.pricing import quote_package, to_minor_units, to_money
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    BookingRead,
    BookingStats,
    CancelRequest,
    CreateOrderRequest,
    CreateOrderResponse,
    PackageAvailabilityReport,
    PackageAvailabilityRequest,
    PaymentOrderRead,
    PriceQuote,
    PriceRequest,
    VerifyPaymentRequest,
)

settings = get_settings()
logger = logging.getLogger(__name__)

# Bookings that have actually been paid for and not cancelled.
EARNING_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
    BookingStatus.CHECKED_OUT,
    BookingStatus.NO_SHOW,
)
REFERENCE_ATTEMPTS = 5


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    setup_exception_handlers(fastapi_app)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _quote(db: Session, payload: PriceRequest, package_id: int) -> Tuple[PackageBundle, PriceQuote]:
    package = get_active_package(db, package_id)
    bundle = bundle_for(package)
    quote = quote_package(
        bundle,
        payload.check_in_date,
        payload.check_out_date,
        payload.room_quantity,
        today=utc_today(),
        number_of_guests=payload.number_of_guests,
    )
    return bundle, quote


def _requested_resources(
    bundle: PackageBundle, quote: PriceQuote, resources: Dict[int, Resource]
) -> List[Tuple[Resource, int]]:
    requested = []
    for item in bundle.requested_items(quote.quantity):
        resource = resources.get(item.resource_id)
        if resource is None or not resource.is_active:
            raise RuleViolation(f"Resource is not active: {item.name}")
        requested.append((resource, item.quantity))
    return requested


def _unused_reference(db: Session) -> str:
    for _ in range(REFERENCE_ATTEMPTS):
        reference = generate_reference_code()
        taken = db.scalar(select(Booking.id).where(Booking.reference_code == reference))
        if taken is None:
            return reference
    raise RuntimeError("Could not allocate a unique booking reference")


def _get_owned_booking(db: Session, booking_id: int, user: User) -> Booking:
    booking = db.get(Booking, booking_id)
    # Another user's booking is reported exactly like a missing one.
    if not booking or (booking.user_id != user.id and not is_admin(user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _parse_filter_date(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return parse_display_date(value)
    except ValueError as exc:
        raise ValidationFailed(f"{name}: {exc}") from exc


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings/check-availability", response_model=PackageAvailabilityReport)
@limiter.limit("30/minute")
def check_package_availability(
    request: Request,
    payload: PackageAvailabilityRequest,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PackageAvailabilityReport:
    bundle, quote = _quote(db, payload, payload.package_id)
    resources = {
        item.resource_id: get_bookable_resource(db, item.resource_id)
        for item in bundle.requested_items(quote.quantity)
    }
    report = assess(db, _requested_resources(bundle, quote, resources), quote.check_in_date, quote.check_out_date)
    missing = shortages(report)
    return PackageAvailabilityReport(
        package_id=bundle.package_id,
        is_available=not missing,
        resources=report,
        insufficient=missing,
        quote=quote,
    )


@app.post("/bookings/create-order", response_model=CreateOrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_order(
    request: Request,
    payload: CreateOrderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CreateOrderResponse:
    bundle, quote = _quote(db, payload, payload.package_id)
    if payload.expected_total is not None and to_money(payload.expected_total) != quote.total_amount:
        raise PriceMismatch(
            "Price has changed. Please review the updated total before paying.",
            quote=quote.model_dump(mode="json"),
        )

    # Rows stay locked until commit, so competing orders for these resources queue here.
    locked = lock_resources(db, [item.resource_id for item in bundle.requested_items(quote.quantity)])
    ensure_available(
        db,
        _requested_resources(bundle, quote, locked),
        quote.check_in_date,
        quote.check_out_date,
        include_pending=True,
        hold_cutoff=pending_hold_cutoff(),
    )

    booking = new_pending_booking(
        user=current_user,
        bundle=bundle,
        quote=quote,
        guest=payload.guest_details,
        number_of_guests=payload.number_of_guests,
        special_requests=payload.special_requests,
        reference_code=_unused_reference(db),
    )
    dates = quote.model_dump(mode="json")
    amount = to_minor_units(quote.total_amount)
    order = gateway.create_order(
        amount=amount,
        currency=settings.payment_currency,
        receipt=booking.reference_code,
        notes={
            "package_id": str(bundle.package_id),
            "check_in_date": dates["check_in_date"],
            "check_out_date": dates["check_out_date"],
            "number_of_guests": str(payload.number_of_guests),
        },
    )
    booking.payment_order_id = order["id"]
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Order %s created for booking %s (user %s, amount %s)",
        order["id"],
        booking.reference_code,
        current_user.id,
        amount,
    )
    return CreateOrderResponse(
        booking_id=booking.id,
        reference_code=booking.reference_code,
        status=booking.status,
        order=PaymentOrderRead(
            id=order["id"],
            amount=order.get("amount", amount),
            currency=order.get("currency", settings.payment_currency),
        ),
        key_id=gateway.key_id,
        quote=quote,
    )


@app.post("/bookings/verify-payment", response_model=BookingRead)
@limiter.limit("20/minute")
def verify_booking_payment(
    request: Request,
    payload: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> Booking:
    booking = _get_booking(db, payload.booking_id)
    outcome = verify_payment(
        db,
        booking,
        current_user,
        payload.order_id,
        payload.payment_id,
        payload.signature,
        gateway,
    )
    db.commit()
    if outcome is PaymentOutcome.DECLINED:
        raise PaymentSignatureMismatch("Payment verification failed. Please contact support.")
    if outcome is PaymentOutcome.RELEASED:
        raise HoldReleased(
            "The selected dates were booked by someone else after your payment window expired. "
            "Your payment will be refunded.",
            booking_id=booking.id,
            refund_status="initiated",
        )
    db.refresh(booking)
    return booking


@app.get("/bookings/my-bookings", response_model=List[BookingRead])
@limiter.limit("60/minute")
def my_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    query = select(Booking).where(Booking.user_id == current_user.id)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    return list(db.scalars(query.order_by(Booking.created_at.desc(), Booking.id.desc())))


@app.get("/bookings/admin/all", response_model=List[BookingRead])
@limiter.limit("30/minute")
def admin_list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = None,
    start_date: Optional[str] = Query(default=None, description="DD-MM-YYYY, check-in on or after"),
    end_date: Optional[str] = Query(default=None, description="DD-MM-YYYY, check-in on or before"),
    search: Optional[str] = None,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> List[Booking]:
    query = select(Booking)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    if payment_status:
        query = query.where(Booking.payment_status == payment_status)
    start = _parse_filter_date(start_date, "start_date")
    end = _parse_filter_date(end_date, "end_date")
    if start:
        query = query.where(Booking.check_in_date >= start)
    if end:
        query = query.where(Booking.check_in_date <= end)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                Booking.reference_code.ilike(pattern),
                Booking.guest_name.ilike(pattern),
                Booking.guest_email.ilike(pattern),
            )
        )
    return list(db.scalars(query.order_by(Booking.created_at.desc(), Booking.id.desc())))


@app.get("/bookings/admin/upcoming", response_model=List[BookingRead])
@limiter.limit("30/minute")
def admin_upcoming_bookings(
    request: Request,
    days: int = Query(default=7, ge=1, le=365),
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> List[Booking]:
    today = utc_today()
    query = (
        select(Booking)
        .where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.check_in_date >= today,
            Booking.check_in_date <= today + timedelta(days=days),
        )
        .order_by(Booking.check_in_date, Booking.id)
    )
    return list(db.scalars(query))


@app.get("/bookings/admin/stats", response_model=BookingStats)
@limiter.limit("30/minute")
def admin_booking_stats(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> BookingStats:
    by_status = {
        row[0].value: row[1]
        for row in db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status))
    }
    by_payment_status = {
        row[0].value: row[1]
        for row in db.execute(select(Booking.payment_status, func.count(Booking.id)).group_by(Booking.payment_status))
    }
    revenue = db.scalar(
        select(func.coalesce(func.sum(Booking.paid_amount), 0)).where(Booking.status.in_(EARNING_STATUSES))
    )
    outstanding = db.scalar(
        select(func.coalesce(func.sum(Booking.balance_amount), 0)).where(Booking.status == BookingStatus.PENDING)
    )
    upcoming = db.scalar(
        select(func.count(Booking.id)).where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.check_in_date >= utc_today(),
        )
    )
    return BookingStats(
        total_bookings=sum(by_status.values()),
        by_status=by_status,
        by_payment_status=by_payment_status,
        total_revenue=to_money(Decimal(str(revenue or 0))),
        outstanding_balance=to_money(Decimal(str(outstanding or 0))),
        upcoming_check_ins=upcoming or 0,
    )


@app.post("/bookings/admin/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("15/minute")
def admin_cancel_booking(
    request: Request,
    booking_id: int,
    payload: Optional[CancelRequest] = None,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id)
    cancel(booking, current_user, as_admin=True, reason=payload.reason if payload else None)
    db.commit()
    db.refresh(booking)
    return booking


@app.patch("/bookings/admin/{booking_id}/check-in", response_model=BookingRead)
@limiter.limit("30/minute")
def admin_check_in(
    request: Request,
    booking_id: int,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id)
    check_in(booking, today=utc_today())
    db.commit()
    db.refresh(booking)
    return booking


@app.patch("/bookings/admin/{booking_id}/check-out", response_model=BookingRead)
@limiter.limit("30/minute")
def admin_check_out(
    request: Request,
    booking_id: int,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id)
    check_out(booking)
    db.commit()
    db.refresh(booking)
    return booking


@app.patch("/bookings/admin/{booking_id}/no-show", response_model=BookingRead)
@limiter.limit("30/minute")
def admin_mark_no_show(
    request: Request,
    booking_id: int,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id)
    mark_no_show(booking, today=utc_today())
    db.commit()
    db.refresh(booking)
    return booking


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _get_owned_booking(db, booking_id, current_user)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("15/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    payload: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking or booking.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    cancel(booking, current_user, as_admin=False, reason=payload.reason if payload else None)
    db.commit()
    db.refresh(booking)
    return booking
