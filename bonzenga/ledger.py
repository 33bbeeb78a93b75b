"""Commission rules and the payout, refund and dispute workflows."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from .catalog import get_vendor, parse_cents
from .errors import ConfigurationError, Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from .extensions import db
from .models import (Booking, Commission, CommissionEntry, Dispute, Payment, Payout, Refund, User, Vendor,
                     compare_and_set)

BPS_SCALE = 10000  # basis points in 100%

PAYOUT_TRANSITIONS = {
    "pending": ("approved", "rejected"),
    "approved": ("paid",),
}
REFUND_TRANSITIONS = {
    "pending": ("approved", "rejected"),
    "approved": ("processed",),
}
DISPUTE_TRANSITIONS = {
    "open": ("investigating",),
    "investigating": ("resolved", "closed"),
}


@dataclass(frozen=True)
class CommissionQuote:
    vendor_id: int
    amount_cents: int
    rate_bps: int
    scope: str
    platform_cents: int
    vendor_cents: int

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["percentage"] = self.rate_bps / 100.0
        data["platform_dollars"] = self.platform_cents / 100.0
        data["vendor_dollars"] = self.vendor_cents / 100.0
        return data


def split_amount(amount_cents: int, rate_bps: int) -> tuple[int, int]:
    """Return ``(platform_cents, vendor_cents)`` for an amount and a rate.

    The platform share is rounded half-up to the cent; the vendor gets the
    remainder so the two shares always add up to the amount.
    """
    platform = (Decimal(amount_cents) * rate_bps / BPS_SCALE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    platform_cents = int(platform)
    return platform_cents, amount_cents - platform_cents


def _active_rule(vendor_id: int | None) -> Commission | None:
    return Commission.query.filter(Commission.active_key == Commission.key_for(vendor_id)).first()


def compute_commission(vendor_id: int, amount_cents: int) -> CommissionQuote:
    """Quote the platform and vendor shares of ``amount_cents``. Reads only."""
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
        raise InvalidInput("amount must be a non-negative number of cents")

    rule = _active_rule(vendor_id) or _active_rule(None)
    if rule is None:
        raise ConfigurationError("no commission rate is defined")

    platform_cents, vendor_cents = split_amount(amount_cents, rule.rate_bps)
    return CommissionQuote(
        vendor_id=vendor_id,
        amount_cents=amount_cents,
        rate_bps=rule.rate_bps,
        scope=rule.scope,
        platform_cents=platform_cents,
        vendor_cents=vendor_cents,
    )


def parse_percentage(value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidInput("percentage is required")
    try:
        percentage = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput("percentage must be a number") from None
    if not percentage.is_finite() or percentage < 0 or percentage > 100:
        raise InvalidInput("percentage must be between 0 and 100")
    return int((percentage * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def set_commission(percentage, vendor_id: int | None = None) -> Commission:
    rate_bps = parse_percentage(percentage)
    if vendor_id is not None:
        get_vendor(vendor_id, include_unapproved=True)

    rule = _active_rule(vendor_id)
    if rule is None:
        try:
            rule = Commission(
                scope="global" if vendor_id is None else "vendor",
                vendor_id=vendor_id,
                rate_bps=rate_bps,
            )
            db.session.add(rule)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning("Concurrent commission insert for %s", Commission.key_for(vendor_id))
            rule = _active_rule(vendor_id)
            if rule is None:
                raise
            rule.rate_bps = rate_bps
            db.session.commit()
    else:
        rule.rate_bps = rate_bps
        db.session.commit()

    current_app.logger.info("Commission for %s set to %s bps", f"vendor {vendor_id}" if vendor_id else "all vendors", rate_bps)
    return rule


def clear_commission_override(vendor_id: int) -> Commission:
    rule = _active_rule(vendor_id)
    if rule is None:
        raise NotFound("No commission override for this vendor")
    rule.is_active = False
    rule.active_key = None
    db.session.commit()
    return rule


def list_commissions() -> list[Commission]:
    return (
        Commission.query.filter(Commission.is_active.is_(True))
        .order_by(Commission.scope.asc(), Commission.vendor_id.asc())
        .all()
    )


def record_commission(booking: Booking) -> CommissionEntry:
    """Add the commission entry for a completed booking to the session.

    Keyed by booking id: an entry that already exists is returned as is.
    """
    existing = CommissionEntry.query.filter_by(booking_id=booking.booking_id).first()
    if existing is not None:
        return existing

    quote = compute_commission(booking.vendor_id, booking.total_cents)
    entry = CommissionEntry(
        booking_id=booking.booking_id,
        vendor_id=booking.vendor_id,
        gross_cents=quote.amount_cents,
        rate_bps=quote.rate_bps,
        platform_cents=quote.platform_cents,
        vendor_cents=quote.vendor_cents,
    )
    db.session.add(entry)
    return entry


def settle_commission(booking: Booking) -> CommissionEntry:
    """Commit the commission entry for ``booking``, tolerating re-delivery."""
    if booking.status != "completed":
        raise InvalidState("commission is only settled for completed bookings")
    try:
        entry = record_commission(booking)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("Duplicate commission entry attempt for booking %s", booking.booking_id)
        entry = CommissionEntry.query.filter_by(booking_id=booking.booking_id).first()
        if entry is None:
            raise
    return entry


def _advance(model, record, transitions: dict, all_statuses: tuple, new_status: str, label: str, **values) -> None:
    new_status = (new_status or "").strip().lower()
    if new_status not in all_statuses:
        raise InvalidInput(f"status must be one of: {', '.join(all_statuses)}")
    if new_status not in transitions.get(record.status, ()):
        raise InvalidState(f"{label} is {record.status} and cannot become {new_status}")
    key = getattr(record, model.__mapper__.primary_key[0].key)
    compare_and_set(model, key, record.status, new_status, **values)


# Payouts ---------------------------------------------------------------------

def available_balance(vendor_id: int) -> int:
    earned = (
        db.session.query(func.coalesce(func.sum(CommissionEntry.vendor_cents), 0))
        .filter(CommissionEntry.vendor_id == vendor_id)
        .scalar()
    )
    committed = (
        db.session.query(func.coalesce(func.sum(Payout.amount_cents), 0))
        .filter(Payout.vendor_id == vendor_id, Payout.status != "rejected")
        .scalar()
    )
    return int(earned) - int(committed)


def _lock_vendor_balance(vendor_id: int) -> None:
    """Write-lock the vendor row until commit so balance checks run one at a time."""
    db.session.execute(
        update(Vendor)
        .where(Vendor.vendor_id == vendor_id)
        .values(payout_serial=Vendor.payout_serial + 1)
        .execution_options(synchronize_session=False)
    )


def request_payout(actor: User, amount, notes: str | None = None) -> Payout:
    vendor = get_vendor(actor.user_id, include_unapproved=True)
    if vendor.status != "approved":
        raise InvalidState("only approved vendors can request payouts")

    amount_cents = parse_cents(amount, "amount")
    _lock_vendor_balance(vendor.vendor_id)
    balance = available_balance(vendor.vendor_id)
    if amount_cents > balance:
        raise InvalidInput(f"amount exceeds the available balance of {balance / 100:.2f}")

    payout = Payout(vendor_id=vendor.vendor_id, amount_cents=amount_cents, notes=(notes or "").strip() or None)
    db.session.add(payout)
    db.session.commit()
    return payout


def decide_payout(actor: User, payout_id: int, status: str, notes: str | None = None) -> Payout:
    payout = db.session.get(Payout, payout_id)
    if payout is None:
        raise NotFound("Payout not found")

    values = {"decided_by": actor.user_id}
    if notes:
        values["notes"] = notes.strip()
    _advance(Payout, payout, PAYOUT_TRANSITIONS, ("approved", "rejected", "paid"), status, "payout", **values)
    db.session.commit()
    db.session.refresh(payout)
    current_app.logger.info("Payout %s set to %s by admin %s", payout_id, payout.status, actor.user_id)
    return payout


def list_payouts(actor: User, status: str | None = None) -> list[Payout]:
    query = Payout.query
    if actor.role == "vendor":
        query = query.filter(Payout.vendor_id == actor.user_id)
    if status:
        query = query.filter(Payout.status == status.strip().lower())
    return query.order_by(Payout.created_at.desc(), Payout.payout_id.desc()).all()


# Refunds ---------------------------------------------------------------------

def request_refund(actor: User, booking_id: int, reason: str | None, amount=None) -> Refund:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.customer_id != actor.user_id:
        raise Forbidden("You can only request refunds for your own bookings")

    reason = (reason or "").strip()
    if not reason:
        raise InvalidInput("reason is required")
    if booking.payment_status != "paid":
        raise InvalidState(f"booking payment is {booking.payment_status}; only paid bookings can be refunded")

    amount_cents = booking.total_cents if amount is None else parse_cents(amount, "amount")
    if amount_cents > booking.total_cents:
        raise InvalidInput("amount cannot exceed the booking total")

    open_refund = Refund.query.filter(
        Refund.booking_id == booking.booking_id,
        Refund.status.in_(("pending", "approved")),
    ).first()
    if open_refund:
        raise Conflict("a refund for this booking is already in progress")

    refund = Refund(
        booking_id=booking.booking_id,
        customer_id=actor.user_id,
        amount_cents=amount_cents,
        reason=reason,
    )
    db.session.add(refund)
    db.session.commit()
    return refund


def decide_refund(actor: User, refund_id: int, status: str, notes: str | None = None) -> Refund:
    """Approve, reject or process a refund request.

    Approval also moves the booking's payment from ``paid`` to ``refunded``;
    both writes are compare-and-set and commit together.
    """
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise NotFound("Refund not found")

    new_status = (status or "").strip().lower()
    values = {"decided_by": actor.user_id}
    if notes:
        values["notes"] = notes.strip()
    _advance(Refund, refund, REFUND_TRANSITIONS, ("approved", "rejected", "processed"), new_status, "refund", **values)

    if new_status == "approved":
        compare_and_set(Booking, refund.booking_id, "paid", "refunded", column="payment_status")
        payment = Payment.query.filter_by(booking_id=refund.booking_id).first()
        if payment is not None:
            compare_and_set(Payment, payment.payment_id, "paid", "refunded")

    db.session.commit()
    db.session.refresh(refund)
    current_app.logger.info("Refund %s set to %s by admin %s", refund_id, refund.status, actor.user_id)
    return refund


def list_refunds(actor: User, status: str | None = None) -> list[Refund]:
    query = Refund.query
    if actor.role == "customer":
        query = query.filter(Refund.customer_id == actor.user_id)
    if status:
        query = query.filter(Refund.status == status.strip().lower())
    return query.order_by(Refund.created_at.desc(), Refund.refund_id.desc()).all()


# Disputes --------------------------------------------------------------------

def open_dispute(actor: User, booking_id: int, description: str | None) -> Dispute:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.customer_id != actor.user_id:
        raise Forbidden("You can only open disputes for your own bookings")

    description = (description or "").strip()
    if not description:
        raise InvalidInput("description is required")

    dispute = Dispute(booking_id=booking.booking_id, customer_id=actor.user_id, description=description)
    db.session.add(dispute)
    db.session.commit()
    return dispute


def advance_dispute(actor: User, dispute_id: int, status: str, resolution: str | None = None) -> Dispute:
    dispute = db.session.get(Dispute, dispute_id)
    if dispute is None:
        raise NotFound("Dispute not found")

    values = {"handled_by": actor.user_id}
    if resolution:
        values["resolution"] = resolution.strip()
    _advance(
        Dispute,
        dispute,
        DISPUTE_TRANSITIONS,
        ("investigating", "resolved", "closed"),
        status,
        "dispute",
        **values,
    )
    db.session.commit()
    db.session.refresh(dispute)
    return dispute


def list_disputes(actor: User, status: str | None = None) -> list[Dispute]:
    query = Dispute.query
    if actor.role == "customer":
        query = query.filter(Dispute.customer_id == actor.user_id)
    if status:
        query = query.filter(Dispute.status == status.strip().lower())
    return query.order_by(Dispute.created_at.desc(), Dispute.dispute_id.desc()).all()


def financial_overview() -> dict[str, object]:
    platform_total = db.session.query(func.coalesce(func.sum(CommissionEntry.platform_cents), 0)).scalar()
    return {
        "commissions": [rule.to_dict() for rule in list_commissions()],
        "platform_earnings_cents": int(platform_total),
        "payouts": [payout.to_dict() for payout in Payout.query.filter_by(status="pending").all()],
        "refunds": [refund.to_dict() for refund in Refund.query.filter_by(status="pending").all()],
        "disputes": [
            dispute.to_dict()
            for dispute in Dispute.query.filter(Dispute.status.in_(("open", "investigating"))).all()
        ],
    }
