"""Inventory invariants and the two package variants (fixed bundle, variable room bundle).

A stored ``Package`` row is never priced or reserved directly: ``bundle_for``
turns it into either a ``FixedBundle`` or a ``RoomBundle`` and refuses rows
whose fields do not fit the variant their category implies. Everything
downstream (pricing, availability, order creation) works on the variant.
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFound, RuleViolation, ValidationFailed
from .models import FacilityType, Package, PackageCategory, PackageResource, Resource, RoomTier

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import PackageCreate, PackageUpdate

VARIABLE_CATEGORY = PackageCategory.ROOMS_ONLY


def check_resource_invariants(
    facility_type: FacilityType,
    sub_category: Optional[RoomTier],
    total_units: int,
    min_booking_days: int,
    max_booking_days: int,
) -> None:
    if total_units < 1:
        raise ValueError("total_units must be at least 1")
    if facility_type == FacilityType.GUEST_ROOM and sub_category is None:
        raise ValueError("sub_category is required for guest rooms")
    if facility_type != FacilityType.GUEST_ROOM and sub_category is not None:
        raise ValueError("sub_category is only allowed for guest rooms")
    if max_booking_days < min_booking_days:
        raise ValueError("max_booking_days must be greater than or equal to min_booking_days")


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class BundleItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: int
    name: str
    facility_type: FacilityType
    sub_category: Optional[RoomTier] = None
    unit_price: Decimal
    capacity: int
    total_units: int
    quantity: int

    @classmethod
    def from_resource(cls, resource: Resource, quantity: int) -> "BundleItem":
        return cls(
            resource_id=resource.id,
            name=resource.name,
            facility_type=resource.facility_type,
            sub_category=resource.sub_category,
            unit_price=Decimal(resource.base_price),
            capacity=resource.capacity,
            total_units=resource.total_units,
            quantity=quantity,
        )


class StayRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_days: int
    max_days: int
    advance_booking_days: int


class FixedBundle(BaseModel):
    """Fixed resource list, fixed price per day; quantities come from the package."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["fixed"] = "fixed"
    package_id: int
    name: str
    category: PackageCategory
    price_per_day: Decimal
    gst_percentage: Decimal
    rules: StayRules
    items: Tuple[BundleItem, ...]

    @property
    def unit_price(self) -> Decimal:
        return self.price_per_day

    def resolve_quantity(self, requested: Optional[int]) -> int:
        # Bundle quantity is fixed; a room count sent by the client is ignored.
        return 1

    def requested_items(self, quantity: int) -> List[BundleItem]:
        return list(self.items)

    def subtotal(self, days: int, quantity: int) -> Decimal:
        return self.price_per_day * days

    def total_capacity(self, quantity: int) -> int:
        return sum(item.capacity * item.quantity for item in self.items)


class RoomBundle(BaseModel):
    """Variable room booking: one selectable room type, priced per room per day."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["variable"] = "variable"
    package_id: int
    name: str
    category: Literal[PackageCategory.ROOMS_ONLY] = PackageCategory.ROOMS_ONLY
    gst_percentage: Decimal
    rules: StayRules
    room: BundleItem
    min_quantity: int = 1
    max_quantity: Optional[int] = None

    @property
    def unit_price(self) -> Decimal:
        return self.room.unit_price

    def resolve_quantity(self, requested: Optional[int]) -> int:
        if not requested or requested < 1:
            raise ValidationFailed("Please provide room_quantity (number of rooms to book)")
        if requested > self.room.total_units:
            raise RuleViolation(
                f"Only {self.room.total_units} rooms available. You requested {requested} rooms."
            )
        if requested < self.min_quantity:
            raise RuleViolation(f"Minimum {self.min_quantity} room(s) required")
        if self.max_quantity is not None and requested > self.max_quantity:
            raise RuleViolation(f"Maximum {self.max_quantity} room(s) allowed")
        return requested

    def requested_items(self, quantity: int) -> List[BundleItem]:
        return [self.room.model_copy(update={"quantity": quantity})]

    def subtotal(self, days: int, quantity: int) -> Decimal:
        return self.room.unit_price * quantity * days

    def total_capacity(self, quantity: int) -> int:
        return self.room.capacity * quantity


PackageBundle = Union[FixedBundle, RoomBundle]


def _rules(package: Package) -> StayRules:
    if package.max_days < package.min_days:
        raise ValidationFailed(
            f"max_days ({package.max_days}) must be greater than or equal to min_days ({package.min_days})"
        )
    return StayRules(
        min_days=package.min_days,
        max_days=package.max_days,
        advance_booking_days=package.advance_booking_days,
    )


def bundle_for(package: Package) -> PackageBundle:
    """Build the variant for a stored package, rejecting rows that mix the two shapes."""

    items = list(package.items)
    if not items:
        raise ValidationFailed("Package must include at least one resource")
    flexible = [item for item in items if item.is_flexible]
    gst = Decimal(package.gst_percentage)

    if package.category == VARIABLE_CATEGORY:
        if len(items) != 1 or len(flexible) != 1:
            raise ValidationFailed("rooms_only package must have exactly one flexible room resource")
        entry = flexible[0]
        if entry.resource.facility_type != FacilityType.GUEST_ROOM:
            raise ValidationFailed("rooms_only package must reference a guest room resource")
        if package.base_price and Decimal(package.base_price) != 0:
            raise ValidationFailed("rooms_only package must not carry a fixed base price")
        min_quantity = entry.min_quantity or 1
        if entry.max_quantity is not None and entry.max_quantity < min_quantity:
            raise ValidationFailed(
                f"max_quantity ({entry.max_quantity}) must be greater than or equal to min_quantity ({min_quantity})"
            )
        return RoomBundle(
            package_id=package.id or 0,
            name=package.name,
            gst_percentage=gst,
            rules=_rules(package),
            room=BundleItem.from_resource(entry.resource, min_quantity),
            min_quantity=min_quantity,
            max_quantity=entry.max_quantity,
        )

    if flexible:
        raise ValidationFailed("Only rooms_only packages may include flexible resources")
    return FixedBundle(
        package_id=package.id or 0,
        name=package.name,
        category=package.category,
        price_per_day=Decimal(package.base_price),
        gst_percentage=gst,
        rules=_rules(package),
        items=tuple(BundleItem.from_resource(item.resource, item.quantity) for item in items),
    )


def load_package_resources(db: Session, resource_ids: Iterable[int]) -> Dict[int, Resource]:
    """Fetch the resources a package will include; all must exist and be active."""

    wanted = set(resource_ids)
    found = {r.id: r for r in db.scalars(select(Resource).where(Resource.id.in_(wanted)))}
    for resource_id in sorted(wanted):
        resource = found.get(resource_id)
        if resource is None:
            raise NotFound(f"Resource not found: {resource_id}")
        if not resource.is_active:
            raise RuleViolation(f"Cannot add inactive resource: {resource.name}")
    return found


def _room_entry(resource: Resource, min_quantity: int, max_quantity: Optional[int]) -> PackageResource:
    return PackageResource(
        resource=resource,
        resource_id=resource.id,
        quantity=1,
        is_flexible=True,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
    )


def build_package(payload: "PackageCreate", resources: Dict[int, Resource], default_gst: Decimal) -> Package:
    """Construct a well-formed Package (slug, items, pricing) from a create request."""

    rules = payload.booking_rules
    package = Package(
        name=payload.name,
        slug=slugify(payload.name),
        category=PackageCategory(payload.category),
        description=payload.description,
        short_description=payload.short_description or payload.description[:100],
        gst_percentage=payload.gst_percentage if payload.gst_percentage is not None else default_gst,
        min_days=rules.min_days,
        max_days=rules.max_days,
        advance_booking_days=rules.advance_booking_days,
        cancellation_policy=rules.cancellation_policy,
        includes_dining=payload.includes.dining,
        includes_breakfast=payload.includes.breakfast,
        includes_lunch=payload.includes.lunch,
        includes_dinner=payload.includes.dinner,
        terms_and_conditions=list(payload.terms_and_conditions),
        display_order=payload.display_order,
        booking_count=0,
        is_active=True,
    )
    if package.category == VARIABLE_CATEGORY:
        package.base_price = Decimal("0")
        package.items = [
            _room_entry(resources[payload.room_resource_id], payload.min_quantity, payload.max_quantity)
        ]
    else:
        package.base_price = payload.base_price
        package.items = [
            PackageResource(resource=resources[item.resource_id], resource_id=item.resource_id, quantity=item.quantity)
            for item in payload.resources
        ]
    bundle_for(package)
    return package


def package_resource_ids(payload: Union["PackageCreate", "PackageUpdate"]) -> List[int]:
    ids: List[int] = []
    if getattr(payload, "room_resource_id", None) is not None:
        ids.append(payload.room_resource_id)
    for item in getattr(payload, "resources", None) or []:
        ids.append(item.resource_id)
    return ids


def apply_package_update(package: Package, payload: "PackageUpdate", resources: Dict[int, Resource]) -> PackageBundle:
    """Apply a partial update in place and return the re-validated variant."""

    data = payload.model_dump(exclude_unset=True)
    rules = data.pop("booking_rules", None)
    includes = data.pop("includes", None)
    items = data.pop("resources", None)
    room_resource_id = data.pop("room_resource_id", None)
    min_quantity = data.pop("min_quantity", None)
    max_quantity = data.pop("max_quantity", None)

    if data.get("name"):
        package.slug = slugify(data["name"])
    for key, value in data.items():
        if value is not None:
            setattr(package, key, value)
    if rules:
        for key, value in rules.items():
            setattr(package, key, value)
    if includes:
        for meal, value in includes.items():
            setattr(package, f"includes_{meal}", value)

    if items is not None:
        package.items = [
            PackageResource(resource=resources[item["resource_id"]], resource_id=item["resource_id"], quantity=item["quantity"])
            for item in items
        ]
    if room_resource_id is not None:
        package.items = [_room_entry(resources[room_resource_id], min_quantity or 1, max_quantity)]
    elif min_quantity is not None or max_quantity is not None:
        for entry in package.items:
            if entry.is_flexible:
                if min_quantity is not None:
                    entry.min_quantity = min_quantity
                if max_quantity is not None:
                    entry.max_quantity = max_quantity
    return bundle_for(package)


def get_active_package(db: Session, package_id: int) -> Package:
    package = db.get(Package, package_id)
    if package is None:
        raise NotFound("Package not found")
    if not package.is_active:
        raise RuleViolation("Package is not active")
    return package
