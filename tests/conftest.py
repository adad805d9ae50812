import os
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")

from common.config import get_settings, reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import create_access_token  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.dates import format_display_date, utc_today  # noqa: E402
from common.errors import PaymentGatewayError  # noqa: E402
from common.inventory import build_package  # noqa: E402
from common.models import FacilityType, Resource, RoleEnum, RoomTier, User  # noqa: E402
from common.payments import PaymentGateway, compute_signature, get_payment_gateway  # noqa: E402
from common.schemas import FixedPackageCreate, RoomsOnlyPackageCreate  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.packages.app import app as packages_app  # noqa: E402
from services.resources.app import app as resources_app  # noqa: E402
from services.resources.app import resource_cache  # noqa: E402


class FakeGateway(PaymentGateway):
    """Issues sequential order ids and signs payments with the configured secret."""

    def __init__(self) -> None:
        settings = get_settings()
        super().__init__(settings.razorpay_key_id, settings.razorpay_key_secret)
        self.orders: List[Dict[str, Any]] = []
        self.fail = False

    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        if self.fail:
            raise PaymentGatewayError("Could not create payment order")
        order = {
            "id": f"order_test_{len(self.orders) + 1:04d}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }
        self.orders.append(order)
        return order

    def sign(self, order_id: str, payment_id: str) -> str:
        return compute_signature(order_id, payment_id, get_settings().razorpay_key_secret)


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    resource_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _make_user(session, username: str, role: RoleEnum = RoleEnum.REGULAR) -> User:
    user = User(name=username.title(), username=username, email=f"{username}@example.com", role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _bearer(username: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': username})}"}


@pytest.fixture()
def admin_user(db_session) -> User:
    return _make_user(db_session, "admin", RoleEnum.ADMIN)


@pytest.fixture()
def guest_user(db_session) -> User:
    return _make_user(db_session, "guest")


@pytest.fixture()
def other_user(db_session) -> User:
    return _make_user(db_session, "intruder")


@pytest.fixture()
def admin_headers(admin_user) -> Dict[str, str]:
    return _bearer(admin_user.username)


@pytest.fixture()
def user_headers(guest_user) -> Dict[str, str]:
    return _bearer(guest_user.username)


@pytest.fixture()
def other_headers(other_user) -> Dict[str, str]:
    return _bearer(other_user.username)


@pytest.fixture()
def day():
    """DD-MM-YYYY string for a date relative to today."""

    def _day(offset: int) -> str:
        return format_display_date(utc_today() + timedelta(days=offset))

    return _day


@pytest.fixture()
def catalog(db_session) -> SimpleNamespace:
    """A small venue: deluxe rooms, an exclusive function hall and dining hall, and two packages."""

    deluxe = Resource(
        name="Deluxe Room",
        description="Air-conditioned room with balcony",
        facility_type=FacilityType.GUEST_ROOM,
        sub_category=RoomTier.DELUXE,
        base_price=Decimal("1000.00"),
        capacity=2,
        total_units=5,
        min_booking_days=1,
        max_booking_days=7,
        advance_booking_days=30,
    )
    hall = Resource(
        name="Main Function Hall",
        description="Hall for 300 guests",
        facility_type=FacilityType.FUNCTION_HALL,
        base_price=Decimal("40000.00"),
        capacity=300,
        total_units=1,
        is_exclusive=True,
        advance_booking_days=60,
    )
    dining = Resource(
        name="Dining Hall",
        description="Seats 100",
        facility_type=FacilityType.DINING_HALL,
        base_price=Decimal("15000.00"),
        capacity=100,
        total_units=1,
        is_exclusive=True,
        advance_booking_days=60,
    )
    db_session.add_all([deluxe, hall, dining])
    db_session.commit()

    resources = {r.id: r for r in (deluxe, hall, dining)}
    rooms = build_package(
        RoomsOnlyPackageCreate(
            name="Deluxe Rooms",
            category="rooms_only",
            description="Book deluxe rooms by the night",
            gst_percentage=Decimal("18"),
            room_resource_id=deluxe.id,
            min_quantity=1,
            max_quantity=4,
        ),
        resources,
        Decimal("18"),
    )
    event = build_package(
        FixedPackageCreate(
            name="Function Hall with Dining",
            category="function_hall_dining",
            description="Hall and dining for one event",
            base_price=Decimal("50000.00"),
            resources=[
                {"resource_id": hall.id, "quantity": 1},
                {"resource_id": dining.id, "quantity": 1},
            ],
            includes={"dining": True, "lunch": True},
            booking_rules={"min_days": 1, "max_days": 3, "advance_booking_days": 60},
        ),
        resources,
        Decimal("18"),
    )
    db_session.add_all([rooms, event])
    db_session.commit()
    return SimpleNamespace(
        deluxe_id=deluxe.id,
        hall_id=hall.id,
        dining_id=dining.id,
        rooms_package_id=rooms.id,
        event_package_id=event.id,
    )


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def resources_client() -> Generator[TestClient, None, None]:
    with TestClient(resources_app) as client:
        yield client


@pytest.fixture()
def packages_client() -> Generator[TestClient, None, None]:
    with TestClient(packages_app) as client:
        yield client


@pytest.fixture()
def bookings_client(gateway) -> Generator[TestClient, None, None]:
    bookings_app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(bookings_app) as client:
        yield client
    bookings_app.dependency_overrides.clear()
