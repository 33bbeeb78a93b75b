"""Booking lifecycle: checkout, beautician assignment and status changes.

Status moves ``pending -> confirmed -> in_progress -> completed``; a booking
may be cancelled from any status that is not terminal. Payment status is
tracked on its own axis and is settled by the payment gateway.
"""
from __future__ import annotations

from datetime import date, datetime, time, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .catalog import get_vendor
from .errors import ConfigurationError, Forbidden, InvalidInput, InvalidState, NotFound
from .extensions import db
from .ledger import settle_commission
from .models import Beautician, Booking, BookingItem, Payment, Service, User, compare_and_set
from .notifications import collect_warnings, notify

BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "completed", "cancelled")
TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("in_progress", "completed", "cancelled"),
    "in_progress": ("completed", "cancelled"),
}
STAFF_ROLES = ("manager", "admin")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_selection(services) -> list[tuple[int, int]]:
    if not isinstance(services, list) or not services:
        raise InvalidInput("at least one service must be selected")

    selection = []
    for entry in services:
        if not isinstance(entry, dict):
            raise InvalidInput("each service selection must be an object")
        try:
            service_id = int(entry.get("service_id"))
            quantity = int(entry.get("quantity", 1))
        except (TypeError, ValueError):
            raise InvalidInput("service_id and quantity must be integers") from None
        if quantity < 1:
            raise InvalidInput("quantity must be at least 1")
        selection.append((service_id, quantity))
    return selection


def _parse_schedule(scheduled_date, scheduled_time) -> tuple[date, time]:
    try:
        parsed_date = date.fromisoformat(str(scheduled_date))
    except (TypeError, ValueError):
        raise InvalidInput("scheduled_date must be a date in YYYY-MM-DD format") from None
    try:
        parsed_time = time.fromisoformat(str(scheduled_time))
    except (TypeError, ValueError):
        raise InvalidInput("scheduled_time must be a time in HH:MM format") from None

    if parsed_date < _today():
        raise InvalidInput("scheduled_date cannot be in the past")
    return parsed_date, parsed_time


def create_booking(customer: User, payload: dict) -> tuple[Booking, list[str]]:
    """Create a pending booking and its pending payment.

    Line items capture each service's price at this moment; later catalog
    price changes do not touch existing bookings.
    """
    try:
        vendor_id = int(payload.get("vendor_id"))
    except (TypeError, ValueError):
        raise InvalidInput("vendor_id is required") from None
    selection = _parse_selection(payload.get("services"))
    scheduled_date, scheduled_time = _parse_schedule(payload.get("scheduled_date"), payload.get("scheduled_time"))

    vendor = get_vendor(vendor_id)

    items = []
    for position, (service_id, quantity) in enumerate(selection):
        service = db.session.get(Service, service_id)
        if service is None or service.vendor_id != vendor.vendor_id or not service.is_active:
            raise NotFound(f"Service {service_id} is not offered by this vendor")
        items.append(
            BookingItem(
                service_id=service.service_id,
                position=position,
                service_name=service.name,
                quantity=quantity,
                unit_price_cents=service.price_cents,
            )
        )

    total_cents = sum(item.line_total_cents for item in items)
    booking = Booking(
        customer_id=customer.user_id,
        vendor_id=vendor.vendor_id,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        address=(payload.get("address") or "").strip() or None,
        notes=(payload.get("notes") or "").strip() or None,
        total_cents=total_cents,
        items=items,
    )
    booking.payment = Payment(amount_cents=total_cents)
    db.session.add(booking)
    db.session.commit()

    current_app.logger.info(
        "Booking %s created by customer %s with vendor %s for %s cents",
        booking.booking_id,
        customer.user_id,
        vendor.vendor_id,
        total_cents,
    )
    warnings = collect_warnings(
        notify(
            vendor.vendor_id,
            "New booking request",
            f"New booking for {scheduled_date.isoformat()} at {scheduled_time.strftime('%H:%M')}.",
            "booking_created",
        )
    )
    return booking, warnings


def _load_booking(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def assign_beautician(booking_id: int, beautician_id, actor: User) -> tuple[Booking, list[str]]:
    booking = _load_booking(booking_id)
    if actor.role not in STAFF_ROLES and not (actor.role == "vendor" and actor.user_id == booking.vendor_id):
        raise Forbidden("Only managers or the booking's vendor can assign a beautician")

    try:
        beautician_id = int(beautician_id)
    except (TypeError, ValueError):
        raise InvalidInput("beautician_id is required") from None

    if booking.status != "pending":
        raise InvalidState(f"booking is {booking.status}; beauticians are assigned to pending bookings only")

    beautician = db.session.get(Beautician, beautician_id)
    if beautician is None:
        raise NotFound("Beautician not found")
    if beautician.status != "approved":
        raise InvalidState("beautician is not approved for assignments")

    compare_and_set(Booking, booking.booking_id, "pending", "confirmed", beautician_id=beautician.beautician_id)
    db.session.commit()
    db.session.refresh(booking)

    current_app.logger.info("Beautician %s assigned to booking %s", beautician_id, booking.booking_id)
    warnings = collect_warnings(
        notify(booking.customer_id, "Booking confirmed", "A beautician has been assigned to your booking.", "booking_confirmed"),
        notify(beautician.beautician_id, "New assignment", f"You were assigned to booking #{booking.booking_id}.", "booking_assigned"),
    )
    return booking, warnings


def _authorize_transition(booking: Booking, actor: User, new_status: str) -> None:
    if actor.role in STAFF_ROLES:
        return
    if new_status == "cancelled":
        if actor.role == "customer" and actor.user_id == booking.customer_id:
            return
        raise Forbidden("Only the customer or a manager can cancel this booking")
    if actor.role == "vendor" and actor.user_id == booking.vendor_id:
        return
    if (
        actor.role == "beautician"
        and actor.user_id == booking.beautician_id
        and new_status in ("in_progress", "completed")
    ):
        return
    raise Forbidden(f"You cannot mark this booking as {new_status.replace('_', ' ')}")


def transition_booking(booking_id: int, new_status: str, actor: User, reason: str | None = None) -> tuple[Booking, list[str]]:
    new_status = (new_status or "").strip().lower()
    if new_status not in BOOKING_STATUSES or new_status == "pending":
        raise InvalidInput("status must be one of: confirmed, in_progress, completed, cancelled")

    booking = _load_booking(booking_id)
    current = booking.status
    if new_status not in TRANSITIONS.get(current, ()):
        if current == new_status:
            raise InvalidState(f"booking is already {current.replace('_', ' ')}")
        raise InvalidState(f"booking is {current.replace('_', ' ')} and cannot become {new_status.replace('_', ' ')}")

    _authorize_transition(booking, actor, new_status)

    values = {}
    if new_status == "cancelled":
        values["cancellation_reason"] = (reason or "").strip() or None
    compare_and_set(Booking, booking.booking_id, current, new_status, **values)
    db.session.commit()
    db.session.refresh(booking)
    current_app.logger.info("Booking %s moved %s -> %s by %s %s", booking.booking_id, current, new_status, actor.role, actor.user_id)

    warnings = []
    if new_status == "completed":
        warnings.append(_settle_after_completion(booking))
    if new_status in ("confirmed", "completed", "cancelled"):
        warnings.append(
            notify(
                booking.customer_id,
                f"Booking {new_status}",
                f"Your booking #{booking.booking_id} is now {new_status}.",
                f"booking_{new_status}",
            )
        )
    return booking, collect_warnings(*warnings)


def _settle_after_completion(booking: Booking) -> str | None:
    try:
        settle_commission(booking)
    except ConfigurationError as exc:
        current_app.logger.warning("Commission for booking %s not recorded: %s", booking.booking_id, exc.message)
        return f"commission not recorded: {exc.message}"
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Commission for booking %s not recorded: %s", booking.booking_id, exc)
        return "commission not recorded: ledger unavailable"
    return None


def get_booking(actor: User, booking_id: int) -> Booking:
    booking = _load_booking(booking_id)
    visible = (
        actor.role in STAFF_ROLES
        or (actor.role == "customer" and booking.customer_id == actor.user_id)
        or (actor.role == "vendor" and booking.vendor_id == actor.user_id)
        or (actor.role == "beautician" and booking.beautician_id == actor.user_id)
    )
    if not visible:
        raise Forbidden("You are not authorized to view this booking")
    return booking


def list_bookings(actor: User, status: str | None = None) -> list[Booking]:
    query = Booking.query
    if actor.role == "customer":
        query = query.filter(Booking.customer_id == actor.user_id)
    elif actor.role == "vendor":
        query = query.filter(Booking.vendor_id == actor.user_id)
    elif actor.role == "beautician":
        query = query.filter(Booking.beautician_id == actor.user_id)

    if status:
        status = status.strip().lower()
        if status not in BOOKING_STATUSES:
            raise InvalidInput(f"status must be one of: {', '.join(BOOKING_STATUSES)}")
        query = query.filter(Booking.status == status)

    return query.order_by(Booking.scheduled_date.asc(), Booking.scheduled_time.asc(), Booking.booking_id.asc()).all()
