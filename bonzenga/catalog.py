"""Vendor profiles, their services, and the beautician roster."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app

from .errors import Forbidden, InvalidInput, InvalidState, NotFound
from .extensions import db
from .models import Beautician, BookingItem, Service, User, Vendor, compare_and_set

VENDOR_STATUS_CHANGES = {
    # current status -> statuses a manager/admin may move the vendor to.
    # Pending and rejected vendors only change through application review.
    "approved": ("suspended",),
    "suspended": ("approved",),
}


def list_vendors(city: str | None = None, query: str | None = None) -> list[Vendor]:
    vendor_query = Vendor.query.filter(Vendor.status == "approved")
    if city:
        vendor_query = vendor_query.filter(Vendor.city.ilike(city))
    if query:
        vendor_query = vendor_query.filter(Vendor.shop_name.ilike(f"%{query}%"))
    return vendor_query.order_by(Vendor.shop_name.asc()).all()


def get_vendor(vendor_id: int, *, include_unapproved: bool = False) -> Vendor:
    vendor = db.session.get(Vendor, vendor_id)
    if vendor is None or (vendor.status != "approved" and not include_unapproved):
        raise NotFound("Vendor not found")
    return vendor


def set_vendor_status(vendor_id: int, status: str, actor: User) -> Vendor:
    vendor = get_vendor(vendor_id, include_unapproved=True)
    status = (status or "").strip().lower()
    if status not in ("approved", "suspended"):
        raise InvalidInput("status must be 'approved' or 'suspended'")
    if status == vendor.status:
        raise InvalidState(f"vendor is already {status}")
    if status not in VENDOR_STATUS_CHANGES.get(vendor.status, ()):
        raise InvalidState(f"vendor cannot move from {vendor.status} to {status}")

    compare_and_set(Vendor, vendor.vendor_id, vendor.status, status)
    db.session.commit()
    db.session.refresh(vendor)
    current_app.logger.info("Vendor %s set to %s by %s %s", vendor_id, status, actor.role, actor.user_id)
    return vendor


def parse_cents(value, field: str = "price") -> int:
    """Convert a dollar amount from a request into integer cents, rounding half-up."""
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field} is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number") from None
    if not amount.is_finite():
        raise InvalidInput(f"{field} must be a number")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise InvalidInput(f"{field} must be at least 0.01")
    return cents


def _parse_duration(value) -> int:
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise InvalidInput("duration_minutes must be an integer") from None
    if duration <= 0:
        raise InvalidInput("duration_minutes must be greater than zero")
    return duration


def _owned_vendor(actor: User, vendor_id: int) -> Vendor:
    if actor.role != "vendor" or actor.user_id != vendor_id:
        raise Forbidden("You can only manage services of your own shop")
    vendor = get_vendor(vendor_id, include_unapproved=True)
    if vendor.status != "approved":
        raise InvalidState("only approved vendors can manage services")
    return vendor


def create_service(actor: User, vendor_id: int, payload: dict) -> Service:
    vendor = _owned_vendor(actor, vendor_id)

    name = (payload.get("name") or "").strip()
    if not name:
        raise InvalidInput("name is required")

    service = Service(
        vendor_id=vendor.vendor_id,
        name=name,
        description=(payload.get("description") or "").strip() or None,
        category=(payload.get("category") or "").strip() or None,
        price_cents=parse_cents(payload.get("price")),
        duration_minutes=_parse_duration(payload.get("duration_minutes")),
        is_active=bool(payload.get("is_active", True)),
    )
    db.session.add(service)
    db.session.commit()
    return service


def _load_service(service_id: int) -> Service:
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFound("Service not found")
    return service


def update_service(actor: User, service_id: int, payload: dict) -> Service:
    service = _load_service(service_id)
    _owned_vendor(actor, service.vendor_id)

    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise InvalidInput("name cannot be empty")
        service.name = name
    if "description" in payload:
        service.description = (payload.get("description") or "").strip() or None
    if "category" in payload:
        service.category = (payload.get("category") or "").strip() or None
    if "price" in payload:
        service.price_cents = parse_cents(payload.get("price"))
    if "duration_minutes" in payload:
        service.duration_minutes = _parse_duration(payload.get("duration_minutes"))
    if "is_active" in payload:
        service.is_active = bool(payload.get("is_active"))

    db.session.commit()
    return service


def delete_service(actor: User, service_id: int) -> bool:
    """Remove a service; returns False when it was only deactivated.

    Services referenced by booking line items are kept (inactive) so the
    booking history stays intact.
    """
    service = _load_service(service_id)
    if actor.role != "admin":
        _owned_vendor(actor, service.vendor_id)

    referenced = BookingItem.query.filter_by(service_id=service.service_id).first() is not None
    if referenced:
        service.is_active = False
    else:
        db.session.delete(service)
    db.session.commit()
    return not referenced


def list_beauticians(available_only: bool = True) -> list[Beautician]:
    query = Beautician.query.filter(Beautician.status == "approved")
    if available_only:
        query = query.filter(Beautician.is_available.is_(True))
    return query.order_by(Beautician.beautician_id.asc()).all()


VENDOR_PROFILE_FIELDS = ("shop_name", "description", "address_line1", "city", "state", "postal_code", "phone")


def parse_str_list(value, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidInput(f"{field} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def parse_experience_years(value) -> int:
    try:
        experience_years = int(value or 0)
    except (TypeError, ValueError):
        raise InvalidInput("experience_years must be an integer") from None
    if experience_years < 0:
        raise InvalidInput("experience_years cannot be negative")
    return experience_years


def update_vendor_profile(actor: User, vendor_id: int, payload: dict) -> Vendor:
    """Let a vendor edit its own shop profile. Status is not editable here."""
    if actor.role != "vendor" or actor.user_id != vendor_id:
        raise Forbidden("You can only edit your own shop profile")
    vendor = get_vendor(vendor_id, include_unapproved=True)

    changes = {}
    for field in VENDOR_PROFILE_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if value is not None and not isinstance(value, str):
            raise InvalidInput(f"{field} must be a string")
        changes[field] = (value or "").strip() or None
    if "shop_name" in changes and not changes["shop_name"]:
        raise InvalidInput("shop_name cannot be empty")
    for field, value in changes.items():
        setattr(vendor, field, value)

    db.session.commit()
    current_app.logger.info("Vendor %s updated its profile", vendor_id)
    return vendor


def update_beautician_profile(actor: User, beautician_id: int, payload: dict) -> Beautician:
    """Let a beautician edit skills, experience, bio and availability."""
    if actor.role != "beautician" or actor.user_id != beautician_id:
        raise Forbidden("You can only edit your own profile")
    beautician = db.session.get(Beautician, beautician_id)
    if beautician is None:
        raise NotFound("Beautician not found")

    changes = {}
    if "skills" in payload:
        changes["skills"] = parse_str_list(payload.get("skills"), "skills")
        if not changes["skills"]:
            raise InvalidInput("skills cannot be empty")
    if "certifications" in payload:
        changes["certifications"] = parse_str_list(payload.get("certifications"), "certifications")
    if "experience_years" in payload:
        changes["experience_years"] = parse_experience_years(payload.get("experience_years"))
    if "bio" in payload:
        changes["bio"] = (payload.get("bio") or "").strip() or None
    if "is_available" in payload:
        if not isinstance(payload["is_available"], bool):
            raise InvalidInput("is_available must be true or false")
        changes["is_available"] = payload["is_available"]

    for field, value in changes.items():
        setattr(beautician, field, value)
    db.session.commit()
    current_app.logger.info("Beautician %s updated their profile", beautician_id)
    return beautician
