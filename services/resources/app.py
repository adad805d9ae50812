from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.orm import Session

from common.availability import assess, check_resource_window, get_bookable_resource, shortages
from common.cache import SimpleTTLCache, resource_list_key
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dates import utc_today
from common.dependencies import allow_roles, get_current_user, is_admin
from common.errors import setup_exception_handlers
from common.logging_middleware import add_audit_middleware
from common.models import FacilityType, Resource, RoleEnum, RoomTier, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import AvailabilityReport, AvailabilityRequest, ResourceCreate, ResourceRead

settings = get_settings()
resource_cache: SimpleTTLCache[list] = SimpleTTLCache(ttl=settings.resource_cache_ttl)


def _invalidate_resource_cache() -> None:
    resource_cache.pop_prefix("resource-list:")


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Resources Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "resources")
    setup_exception_handlers(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "resources"}


@app.post("/resources", response_model=ResourceRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("15/minute")
def create_resource(
    request: Request,
    resource_in: ResourceCreate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Resource:
    resource = Resource(**resource_in.model_dump())
    db.add(resource)
    db.commit()
    db.refresh(resource)
    _invalidate_resource_cache()
    return resource


@app.get("/resources", response_model=List[ResourceRead])
@limiter.limit("60/minute")
def list_resources(
    request: Request,
    facility_type: Optional[FacilityType] = None,
    category: Optional[RoomTier] = None,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list:
    cache_key = resource_list_key(
        facility_type.value if facility_type else None,
        category.value if category else None,
    )
    cached = resource_cache.get(cache_key)
    if cached is not None:
        return cached

    query = select(Resource).where(Resource.is_active.is_(True))
    if facility_type:
        query = query.where(Resource.facility_type == facility_type)
    if category:
        query = query.where(Resource.sub_category == category)
    query = query.order_by(Resource.facility_type, Resource.name)
    # Cache plain data, never session-bound ORM rows.
    payload = [ResourceRead.model_validate(r).model_dump(mode="json") for r in db.scalars(query)]
    resource_cache.set(cache_key, payload)
    return payload


@app.get("/resources/guest-rooms", response_model=Dict[str, List[ResourceRead]])
@limiter.limit("60/minute")
def guest_rooms_by_tier(
    request: Request,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, List[Resource]]:
    rooms = db.scalars(
        select(Resource)
        .where(Resource.facility_type == FacilityType.GUEST_ROOM, Resource.is_active.is_(True))
        .order_by(Resource.sub_category, Resource.base_price.desc())
    )
    grouped: Dict[str, List[Resource]] = {}
    for room in rooms:
        grouped.setdefault(room.sub_category.value, []).append(room)
    return grouped


@app.get("/resources/{resource_id}", response_model=ResourceRead)
@limiter.limit("60/minute")
def get_resource(
    request: Request,
    resource_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Resource:
    resource = db.get(Resource, resource_id)
    if not resource or (not resource.is_active and not is_admin(current_user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")
    return resource


@app.post("/resources/check-availability", response_model=AvailabilityReport)
@limiter.limit("30/minute")
def check_availability(
    request: Request,
    payload: AvailabilityRequest,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AvailabilityReport:
    today = utc_today()
    requested = []
    days = 0
    for entry in payload.resources:
        resource = get_bookable_resource(db, entry.resource_id)
        days = check_resource_window(resource, payload.check_in_date, payload.check_out_date, today)
        requested.append((resource, entry.quantity))

    report = assess(db, requested, payload.check_in_date, payload.check_out_date)
    missing = shortages(report)
    return AvailabilityReport(
        check_in_date=payload.check_in_date,
        check_out_date=payload.check_out_date,
        number_of_days=days,
        is_available=not missing,
        resources=report,
        insufficient=missing,
    )
