"""Database models for the Bonzenga marketplace core."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import update

from .errors import InvalidState
from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _dollars(cents: int | None) -> float | None:
    return cents / 100.0 if cents is not None else None


def compare_and_set(model, key, expected: str, new_value: str, *, column: str = "status", **values) -> None:
    """Conditionally move ``column`` of one row from ``expected`` to ``new_value``.

    Issues ``UPDATE ... WHERE pk = key AND column = expected``. When no row
    matches, another request already moved the row on and ``InvalidState``
    is raised; the caller's transaction is left for the error handler to
    roll back.
    """
    primary_key = model.__mapper__.primary_key[0]
    state_column = getattr(model, column)
    values[column] = new_value
    values["updated_at"] = utc_now()

    result = db.session.execute(
        update(model)
        .where(primary_key == key, state_column == expected)
        .values(**values)
    )
    if result.rowcount != 1:
        raise InvalidState(
            f"{model.__name__.lower()} {key} is no longer {expected.replace('_', ' ')}"
        )


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "customer",
            "vendor",
            "beautician",
            "manager",
            "admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="customer",
    )
    status = db.Column(
        db.Enum(
            "active",
            "suspended",
            name="account_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="active",
        server_default="active",
    )
    phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "phone": self.phone,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Application(db.Model):
    """Vendor or beautician onboarding application under two-step review."""

    __tablename__ = "applications"

    application_id = db.Column(db.Integer, primary_key=True)
    applicant_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    kind = db.Column(
        db.Enum("vendor", "beautician", name="application_kind", native_enum=False, validate_strings=True),
        nullable=False,
    )
    profile = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.Enum(
            "pending_manager_review",
            "pending_admin_review",
            "approved",
            "rejected",
            name="application_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending_manager_review",
    )
    manager_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    manager_notes = db.Column(db.Text)
    manager_approved_at = db.Column(db.DateTime)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    admin_notes = db.Column(db.Text)
    decided_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    applicant = db.relationship("User", foreign_keys=[applicant_id])

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.application_id,
            "applicant_id": self.applicant_id,
            "applicant": self.applicant.to_dict_basic() if self.applicant else None,
            "kind": self.kind,
            "profile": self.profile or {},
            "status": self.status,
            "manager_id": self.manager_id,
            "manager_notes": self.manager_notes,
            "manager_approved_at": _iso(self.manager_approved_at),
            "admin_id": self.admin_id,
            "admin_notes": self.admin_notes,
            "decided_at": _iso(self.decided_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Vendor(db.Model):
    """Salon vendor profile, keyed by the owning account id."""

    __tablename__ = "vendors"

    vendor_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.application_id"), unique=True, nullable=True
    )
    shop_name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    address_line1 = db.Column(db.String(150))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    phone = db.Column(db.String(30))
    status = db.Column(
        db.Enum(
            "pending",
            "approved",
            "rejected",
            "suspended",
            name="vendor_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    # Bumped by every payout request; the row lock it takes serializes balance checks per vendor.
    payout_serial = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    owner = db.relationship("User")
    services = db.relationship("Service", back_populates="vendor", lazy="dynamic")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.vendor_id,
            "shop_name": self.shop_name,
            "description": self.description,
            "address": {
                "line1": self.address_line1,
                "city": self.city,
                "state": self.state,
                "postal_code": self.postal_code,
            },
            "phone": self.phone,
            "status": self.status,
            "application_id": self.application_id,
            "owner": self.owner.to_dict_basic() if self.owner else None,
        }


class Beautician(db.Model):
    """Beautician profile; approved beauticians are eligible for assignment."""

    __tablename__ = "beauticians"

    beautician_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.application_id"), unique=True, nullable=True
    )
    skills = db.Column(db.JSON, nullable=False, default=list)
    experience_years = db.Column(db.Integer, nullable=False, default=0)
    certifications = db.Column(db.JSON, nullable=False, default=list)
    bio = db.Column(db.Text)
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(
        db.Enum(
            "pending",
            "approved",
            "rejected",
            "suspended",
            name="beautician_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    user = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.beautician_id,
            "name": self.user.name if self.user else None,
            "skills": self.skills or [],
            "experience_years": self.experience_years,
            "certifications": self.certifications or [],
            "bio": self.bio,
            "is_available": bool(self.is_available),
            "status": self.status,
            "application_id": self.application_id,
        }


class Service(db.Model):
    """Services offered by a vendor."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    vendor = db.relationship("Vendor", back_populates="services")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "vendor_id": self.vendor_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "price_dollars": _dollars(self.price_cents),
            "duration_minutes": self.duration_minutes,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Booking(db.Model):
    """Customer booking with a vendor, optionally served by a beautician."""

    __tablename__ = "bookings"

    booking_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    beautician_id = db.Column(db.Integer, db.ForeignKey("beauticians.beautician_id"), nullable=True)
    status = db.Column(
        db.Enum(
            "pending",
            "confirmed",
            "in_progress",
            "completed",
            "cancelled",
            name="booking_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    payment_status = db.Column(
        db.Enum(
            "pending",
            "paid",
            "refunded",
            name="booking_payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    scheduled_date = db.Column(db.Date, nullable=False)
    scheduled_time = db.Column(db.Time, nullable=False)
    address = db.Column(db.String(255))
    notes = db.Column(db.Text)
    total_cents = db.Column(db.Integer, nullable=False)
    cancellation_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    customer = db.relationship("User", foreign_keys=[customer_id])
    vendor = db.relationship("Vendor")
    beautician = db.relationship("Beautician")
    items = db.relationship(
        "BookingItem", back_populates="booking", order_by="BookingItem.position"
    )
    payment = db.relationship("Payment", back_populates="booking", uselist=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.booking_id,
            "customer_id": self.customer_id,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor.shop_name if self.vendor else None,
            "beautician_id": self.beautician_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "scheduled_date": _iso(self.scheduled_date),
            "scheduled_time": self.scheduled_time.strftime("%H:%M") if self.scheduled_time else None,
            "address": self.address,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "total_cents": self.total_cents,
            "total_dollars": _dollars(self.total_cents),
            "cancellation_reason": self.cancellation_reason,
            "payment": self.payment.to_dict() if self.payment else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class BookingItem(db.Model):
    """Service line item with the price captured when the booking was made."""

    __tablename__ = "booking_items"

    booking_item_id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.booking_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    service_name = db.Column(db.String(150), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    booking = db.relationship("Booking", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "service_name": self.service_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """Payment record for a booking, settled by the payment gateway."""

    __tablename__ = "payments"

    payment_id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(
        db.Integer, db.ForeignKey("bookings.booking_id"), unique=True, nullable=False
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "paid",
            "failed",
            "refunded",
            name="payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    # Track payment gateway identifier (e.g. Stripe payment intent id)
    gateway_reference = db.Column(db.String(255), nullable=True, unique=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    booking = db.relationship("Booking", back_populates="payment")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.payment_id,
            "booking_id": self.booking_id,
            "amount_cents": self.amount_cents,
            "amount_dollars": _dollars(self.amount_cents),
            "status": self.status,
            "gateway_reference": self.gateway_reference,
            "updated_at": _iso(self.updated_at),
        }


class Commission(db.Model):
    """Commission rule: one global rate with optional per-vendor overrides."""

    __tablename__ = "commissions"

    commission_id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(
        db.Enum("global", "vendor", name="commission_scope", native_enum=False, validate_strings=True),
        nullable=False,
    )
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=True)
    rate_bps = db.Column(db.Integer, nullable=False)  # 1500 = 15%
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # "global" or "vendor:<id>" while the rule is active, NULL once retired;
    # the unique index allows one active rule per scope.
    active_key = db.Column(db.String(40), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def __init__(self, **kwargs) -> None:
        if "active_key" not in kwargs and kwargs.get("is_active", True):
            kwargs["active_key"] = self.key_for(kwargs.get("vendor_id") if kwargs.get("scope") == "vendor" else None)
        super().__init__(**kwargs)

    @staticmethod
    def key_for(vendor_id: int | None) -> str:
        return "global" if vendor_id is None else f"vendor:{vendor_id}"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.commission_id,
            "scope": self.scope,
            "vendor_id": self.vendor_id,
            "rate_bps": self.rate_bps,
            "percentage": self.rate_bps / 100.0,
            "is_active": bool(self.is_active),
            "updated_at": _iso(self.updated_at),
        }


class CommissionEntry(db.Model):
    """Platform/vendor split recorded once per completed booking."""

    __tablename__ = "commission_entries"

    entry_id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(
        db.Integer, db.ForeignKey("bookings.booking_id"), unique=True, nullable=False
    )
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    gross_cents = db.Column(db.Integer, nullable=False)
    rate_bps = db.Column(db.Integer, nullable=False)
    platform_cents = db.Column(db.Integer, nullable=False)
    vendor_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.entry_id,
            "booking_id": self.booking_id,
            "vendor_id": self.vendor_id,
            "gross_cents": self.gross_cents,
            "rate_bps": self.rate_bps,
            "platform_cents": self.platform_cents,
            "vendor_cents": self.vendor_cents,
            "created_at": _iso(self.created_at),
        }


class Payout(db.Model):
    __tablename__ = "payouts"

    payout_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "approved",
            "rejected",
            "paid",
            name="payout_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    notes = db.Column(db.Text)
    decided_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.payout_id,
            "vendor_id": self.vendor_id,
            "amount_cents": self.amount_cents,
            "amount_dollars": _dollars(self.amount_cents),
            "status": self.status,
            "notes": self.notes,
            "decided_by": self.decided_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Refund(db.Model):
    __tablename__ = "refunds"

    refund_id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.booking_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "approved",
            "rejected",
            "processed",
            name="refund_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    notes = db.Column(db.Text)
    decided_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    booking = db.relationship("Booking")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.refund_id,
            "booking_id": self.booking_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "amount_dollars": _dollars(self.amount_cents),
            "reason": self.reason,
            "status": self.status,
            "notes": self.notes,
            "decided_by": self.decided_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Dispute(db.Model):
    __tablename__ = "disputes"

    dispute_id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.booking_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(
        db.Enum(
            "open",
            "investigating",
            "resolved",
            "closed",
            name="dispute_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="open",
    )
    resolution = db.Column(db.Text)
    handled_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.dispute_id,
            "booking_id": self.booking_id,
            "customer_id": self.customer_id,
            "description": self.description,
            "status": self.status,
            "resolution": self.resolution,
            "handled_by": self.handled_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    notification_type = db.Column(db.String(50), nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "notification_type": self.notification_type,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }
