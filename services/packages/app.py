from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from common.config import get_settings
from common.database import Base, engine, get_db
from common.dates import format_display_date, utc_today
from common.dependencies import allow_roles, get_current_user, is_admin
from common.errors import PackageInUse, ValidationFailed, setup_exception_handlers
from common.inventory import (
    apply_package_update,
    build_package,
    bundle_for,
    get_active_package,
    load_package_resources,
    package_resource_ids,
    slugify,
)
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, Package, PackageCategory, RoleEnum, User
from common.pricing import quote_package
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    SENSITIVE_PACKAGE_FIELDS,
    PackageAdminListing,
    PackageCreate,
    PackageRead,
    PackageUpdate,
    PriceQuote,
    PriceRequest,
)

settings = get_settings()

# Bookings that still depend on the package's resource list.
RESERVING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)
OPEN_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)
POPULAR_LIMIT = 5


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Packages Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "packages")
    setup_exception_handlers(fastapi_app)
    return fastapi_app


app = create_app()


def _ensure_unique_name(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    query = select(Package.id).where((Package.name == name) | (Package.slug == slugify(name)))
    if exclude_id is not None:
        query = query.where(Package.id != exclude_id)
    if db.scalars(query).first() is not None:
        raise ValidationFailed("Package with this name already exists")


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "packages"}


@app.get("/packages", response_model=List[PackageRead])
@limiter.limit("60/minute")
def list_packages(
    request: Request,
    category: Optional[PackageCategory] = None,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Package]:
    query = select(Package).where(Package.is_active.is_(True))
    if category:
        query = query.where(Package.category == category)
    return list(db.scalars(query.order_by(Package.display_order, Package.name)))


@app.get("/packages/popular", response_model=List[PackageRead])
@limiter.limit("60/minute")
def popular_packages(
    request: Request,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Package]:
    query = (
        select(Package)
        .where(Package.is_active.is_(True))
        .order_by(Package.booking_count.desc(), Package.display_order)
        .limit(POPULAR_LIMIT)
    )
    return list(db.scalars(query))


@app.get("/packages/admin/all", response_model=PackageAdminListing)
@limiter.limit("30/minute")
def list_all_packages(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> PackageAdminListing:
    packages = list(
        db.scalars(select(Package).order_by(Package.category, Package.display_order, Package.created_at.desc()))
    )
    grouped: Dict[str, List[int]] = {}
    for package in packages:
        grouped.setdefault(package.category.value, []).append(package.id)
    active = sum(1 for package in packages if package.is_active)
    return PackageAdminListing(
        total_packages=len(packages),
        active_count=active,
        inactive_count=len(packages) - active,
        data=[PackageRead.model_validate(package) for package in packages],
        grouped_by_category=grouped,
    )


@app.get("/packages/{package_id}", response_model=PackageRead)
@limiter.limit("60/minute")
def get_package(
    request: Request,
    package_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Package:
    package = db.get(Package, package_id)
    if not package or (not package.is_active and not is_admin(current_user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
    return package


@app.post("/packages", response_model=PackageRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("15/minute")
def create_package(
    request: Request,
    payload: PackageCreate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Package:
    _ensure_unique_name(db, payload.name)
    resources = load_package_resources(db, package_resource_ids(payload))
    package = build_package(payload, resources, settings.default_gst_percentage)
    db.add(package)
    db.commit()
    db.refresh(package)
    return package


@app.put("/packages/{package_id}", response_model=PackageRead)
@limiter.limit("15/minute")
def update_package(
    request: Request,
    package_id: int,
    payload: PackageUpdate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Package:
    package = db.get(Package, package_id)
    if not package:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")

    requested = payload.model_dump(exclude_unset=True)
    sensitive = [field for field in SENSITIVE_PACKAGE_FIELDS if field in requested]
    if sensitive:
        reserving = db.scalar(
            select(func.count(Booking.id)).where(
                Booking.package_id == package_id,
                Booking.status.in_(RESERVING_STATUSES),
            )
        )
        if reserving:
            raise PackageInUse(
                f"Cannot update {', '.join(sensitive)} as package has {reserving} active booking(s). "
                "This would affect existing bookings."
            )
    if payload.name and payload.name != package.name:
        _ensure_unique_name(db, payload.name, exclude_id=package.id)

    ids = package_resource_ids(payload)
    resources = load_package_resources(db, ids) if ids else {}
    apply_package_update(package, payload, resources)
    db.commit()
    db.refresh(package)
    return package


@app.delete("/packages/{package_id}", response_model=PackageRead)
@limiter.limit("15/minute")
def deactivate_package(
    request: Request,
    package_id: int,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Package:
    package = db.get(Package, package_id)
    if not package:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")

    open_bookings = list(
        db.scalars(
            select(Booking).where(
                Booking.package_id == package_id,
                Booking.status.in_(OPEN_STATUSES),
                Booking.check_out_date >= utc_today(),
            )
        )
    )
    if open_bookings:
        raise PackageInUse(
            "Cannot deactivate package. Please cancel the active bookings first.",
            active_bookings_count=len(open_bookings),
            active_bookings=[
                {
                    "booking_id": booking.id,
                    "reference_code": booking.reference_code,
                    "guest_name": booking.guest_name,
                    "guest_phone": booking.guest_phone,
                    "check_in_date": format_display_date(booking.check_in_date),
                    "check_out_date": format_display_date(booking.check_out_date),
                    "status": booking.status.value,
                    "total_amount": str(booking.total_amount),
                }
                for booking in open_bookings
            ],
        )
    package.is_active = False
    db.commit()
    db.refresh(package)
    return package


@app.post("/packages/{package_id}/calculate-price", response_model=PriceQuote)
@limiter.limit("60/minute")
def calculate_price(
    request: Request,
    package_id: int,
    payload: PriceRequest,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PriceQuote:
    package = get_active_package(db, package_id)
    return quote_package(
        bundle_for(package),
        payload.check_in_date,
        payload.check_out_date,
        payload.room_quantity,
        today=utc_today(),
        number_of_guests=payload.number_of_guests,
    )
