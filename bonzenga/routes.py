"""HTTP routes for accounts, onboarding, catalog and bookings."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from . import bookings, catalog, payments, reviews
from .auth import build_token, current_user, require_roles
from .errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthorized
from .extensions import db
from .models import AuthAccount, Notification, User, utc_now

bp = Blueprint("api", __name__)

SELF_SERVICE_ROLES = ("customer", "vendor", "beautician")


def register_routes(app) -> None:
    from .routes_finance import bp_fin

    app.register_blueprint(bp)
    app.register_blueprint(bp_fin)


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database."""
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Accounts ---------------------------------------------------------------


@bp.post("/auth/register")
def register_user() -> tuple[dict[str, object], int]:
    """Register a new customer, vendor or beautician account.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [customer, vendor, beautician]
            phone:
              type: string
          required:
            - name
            - email
            - password
    responses:
      201:
        description: User registered successfully
      400:
        description: Invalid payload
      409:
        description: Email already in use
    """
    payload = request.get_json(silent=True) or {}

    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = (payload.get("role") or "customer").strip().lower()
    phone = (payload.get("phone") or "").strip() or None

    if not name or not email or not password:
        raise InvalidInput("name, email, and password are required")

    # Managers and admins are seeded accounts, never self-registered.
    if role not in SELF_SERVICE_ROLES:
        raise InvalidInput(f"role must be one of: {', '.join(SELF_SERVICE_ROLES)}")

    if User.query.filter_by(email=email).first():
        raise Conflict("email address is already in use")

    new_user = User(name=name, email=email, role=role, phone=phone)
    db.session.add(new_user)
    db.session.flush()  # Get the new user_id before creating the AuthAccount
    db.session.add(AuthAccount(user_id=new_user.user_id, password_hash=generate_password_hash(password)))
    db.session.commit()

    return jsonify({"token": build_token(new_user), "user": new_user.to_dict_basic()}), 201


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Login successful, returns access token
      401:
        description: Invalid email or password
      403:
        description: Account suspended
    """
    payload = request.get_json(silent=True) or {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        raise InvalidInput("email and password are required")

    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )
    if not record:
        raise Unauthorized("invalid email or password")

    user, auth_account = record
    if not check_password_hash(auth_account.password_hash, password):
        raise Unauthorized("invalid email or password")
    if not user.is_active:
        raise Forbidden("this account has been suspended")

    auth_account.last_login_at = utc_now()
    db.session.commit()

    user_data = user.to_dict_basic()
    if user.role == "vendor":
        user_data["vendor_status"] = user_vendor_status(user)

    return jsonify({"token": build_token(user), "user": user_data}), 200


def user_vendor_status(user: User) -> str | None:
    try:
        return catalog.get_vendor(user.user_id, include_unapproved=True).status
    except NotFound:
        return None


@bp.get("/auth/me")
@require_roles()
def get_me() -> tuple[dict[str, object], int]:
    return jsonify({"user": current_user().to_dict_basic()}), 200


@bp.put("/admin/users/<int:user_id>/status")
@require_roles("admin")
def set_account_status(user_id: int) -> tuple[dict[str, object], int]:
    """Suspend or reactivate an account (admin only)."""
    payload = request.get_json(silent=True) or {}
    status = (payload.get("status") or "").strip().lower()
    if status not in ("active", "suspended"):
        raise InvalidInput("status must be 'active' or 'suspended'")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if user.user_id == current_user().user_id:
        raise Forbidden("admins cannot change their own account status")

    user.status = status
    db.session.commit()
    current_app.logger.info("Account %s set to %s", user_id, status)
    return jsonify({"user": user.to_dict_basic()}), 200


@bp.get("/notifications")
@require_roles()
def list_notifications() -> tuple[dict[str, object], int]:
    notifications = (
        Notification.query.filter_by(user_id=current_user().user_id)
        .order_by(Notification.created_at.desc(), Notification.notification_id.desc())
        .limit(50)
        .all()
    )
    return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200


# --- Applications -----------------------------------------------------------


@bp.post("/applications")
@require_roles("vendor", "beautician")
def submit_application() -> tuple[dict[str, object], int]:
    """Submit a vendor or beautician onboarding application.
    ---
    tags:
      - Applications
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            kind:
              type: string
              enum: [vendor, beautician]
            skills:
              type: array
              items:
                type: string
            experience_years:
              type: integer
            shop_name:
              type: string
    responses:
      201:
        description: Application submitted and waiting for manager review
      400:
        description: Invalid profile fields
      409:
        description: An application is already open or approved
    """
    payload = request.get_json(silent=True) or {}
    user = current_user()
    application = reviews.submit_application(user, payload.get("kind") or user.role, payload)
    return jsonify({"application": application.to_dict()}), 201


@bp.get("/applications")
@require_roles()
def list_applications() -> tuple[dict[str, object], int]:
    """List the caller's review queue, or their own applications."""
    applications = reviews.list_applications(
        current_user(),
        status=request.args.get("status"),
        kind=request.args.get("kind"),
    )
    return jsonify({"applications": [a.to_dict() for a in applications]}), 200


@bp.get("/applications/<int:application_id>")
@require_roles()
def get_application(application_id: int) -> tuple[dict[str, object], int]:
    application = reviews.get_application(current_user(), application_id)
    return jsonify({"application": application.to_dict()}), 200


@bp.put("/applications/<int:application_id>/review")
@require_roles("manager", "admin")
def review_application(application_id: int) -> tuple[dict[str, object], int]:
    """Record a manager (first step) or admin (final step) decision.
    ---
    tags:
      - Applications
    parameters:
      - in: path
        name: application_id
        required: true
        schema:
          type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            decision:
              type: string
              enum: [approve, reject]
            notes:
              type: string
              description: Required when rejecting
    responses:
      200:
        description: Decision recorded
      400:
        description: Invalid decision or missing rejection reason
      403:
        description: Reviewer role does not match the review stage
      404:
        description: Application not found
      409:
        description: Application already decided at this stage
    """
    payload = request.get_json(silent=True) or {}
    application = reviews.review_application(
        application_id,
        current_user(),
        payload.get("decision"),
        payload.get("notes"),
    )
    warnings = [w for w in (reviews.notify_applicant(application),) if w]
    return jsonify({"application": application.to_dict(), "warnings": warnings}), 200


# --- Catalog ----------------------------------------------------------------


@bp.get("/vendors")
def list_vendors() -> tuple[dict[str, object], int]:
    vendors = catalog.list_vendors(
        city=(request.args.get("city") or "").strip() or None,
        query=(request.args.get("query") or "").strip() or None,
    )
    return jsonify({"vendors": [vendor.to_dict() for vendor in vendors]}), 200


@bp.get("/vendors/<int:vendor_id>")
def get_vendor(vendor_id: int) -> tuple[dict[str, object], int]:
    """Vendor details with its active services."""
    vendor = catalog.get_vendor(vendor_id)
    vendor_data = vendor.to_dict()
    vendor_data["services"] = [s.to_dict() for s in vendor.services.filter_by(is_active=True).all()]
    return jsonify({"vendor": vendor_data}), 200


@bp.put("/vendors/<int:vendor_id>/profile")
@require_roles("vendor")
def update_vendor_profile(vendor_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    vendor = catalog.update_vendor_profile(current_user(), vendor_id, payload)
    return jsonify({"vendor": vendor.to_dict()}), 200


@bp.put("/vendors/<int:vendor_id>/status")
@require_roles("manager", "admin")
def set_vendor_status(vendor_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    vendor = catalog.set_vendor_status(vendor_id, payload.get("status"), current_user())
    return jsonify({"vendor": vendor.to_dict()}), 200


@bp.post("/vendors/<int:vendor_id>/services")
@require_roles("vendor")
def create_service(vendor_id: int) -> tuple[dict[str, object], int]:
    """Add a service to the vendor's own catalog.
    ---
    tags:
      - Services
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            name:
              type: string
            price:
              type: number
              description: Price in dollars
            duration_minutes:
              type: integer
    responses:
      201:
        description: Service created
      400:
        description: Invalid input
      403:
        description: Not the owning vendor
    """
    payload = request.get_json(silent=True) or {}
    service = catalog.create_service(current_user(), vendor_id, payload)
    return jsonify({"service": service.to_dict()}), 201


@bp.put("/services/<int:service_id>")
@require_roles("vendor")
def update_service(service_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    service = catalog.update_service(current_user(), service_id, payload)
    return jsonify({"service": service.to_dict()}), 200


@bp.delete("/services/<int:service_id>")
@require_roles("vendor", "admin")
def delete_service(service_id: int) -> tuple[dict[str, object], int]:
    deleted = catalog.delete_service(current_user(), service_id)
    message = "Service deleted" if deleted else "Service is referenced by bookings and was deactivated"
    return jsonify({"message": message, "deleted": deleted}), 200


@bp.get("/beauticians")
@require_roles("vendor", "manager", "admin")
def list_beauticians() -> tuple[dict[str, object], int]:
    available_only = request.args.get("available", "1") not in {"0", "false", "False"}
    beauticians = catalog.list_beauticians(available_only=available_only)
    return jsonify({"beauticians": [b.to_dict() for b in beauticians]}), 200


@bp.put("/beauticians/<int:beautician_id>/profile")
@require_roles("beautician")
def update_beautician_profile(beautician_id: int) -> tuple[dict[str, object], int]:
    """Edit skills, experience, bio or availability of the signed-in beautician."""
    payload = request.get_json(silent=True) or {}
    beautician = catalog.update_beautician_profile(current_user(), beautician_id, payload)
    return jsonify({"beautician": beautician.to_dict()}), 200


# --- Bookings ---------------------------------------------------------------


@bp.post("/bookings")
@require_roles("customer")
def create_booking() -> tuple[dict[str, object], int]:
    """Create a booking for one or more services of a vendor.
    ---
    tags:
      - Bookings
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            vendor_id:
              type: integer
            services:
              type: array
              items:
                type: object
                properties:
                  service_id:
                    type: integer
                  quantity:
                    type: integer
            scheduled_date:
              type: string
              format: date
            scheduled_time:
              type: string
              example: "14:30"
            address:
              type: string
            notes:
              type: string
          required:
            - vendor_id
            - services
            - scheduled_date
            - scheduled_time
    responses:
      201:
        description: Booking created with a pending payment
      400:
        description: Invalid payload
      404:
        description: Vendor or service not found
    """
    payload = request.get_json(silent=True) or {}
    booking, warnings = bookings.create_booking(current_user(), payload)
    return jsonify({"booking": booking.to_dict(), "warnings": warnings}), 201


@bp.get("/bookings")
@require_roles()
def list_bookings() -> tuple[dict[str, object], int]:
    results = bookings.list_bookings(current_user(), status=request.args.get("status"))
    return jsonify({"bookings": [b.to_dict() for b in results]}), 200


@bp.get("/bookings/<int:booking_id>")
@require_roles()
def get_booking(booking_id: int) -> tuple[dict[str, object], int]:
    booking = bookings.get_booking(current_user(), booking_id)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.put("/bookings/<int:booking_id>/assign")
@require_roles("manager", "vendor", "admin")
def assign_beautician(booking_id: int) -> tuple[dict[str, object], int]:
    """Assign an approved beautician to a pending booking, confirming it."""
    payload = request.get_json(silent=True) or {}
    booking, warnings = bookings.assign_beautician(booking_id, payload.get("beautician_id"), current_user())
    return jsonify({"booking": booking.to_dict(), "warnings": warnings}), 200


@bp.put("/bookings/<int:booking_id>/status")
@require_roles()
def update_booking_status(booking_id: int) -> tuple[dict[str, object], int]:
    """Move a booking along its lifecycle.
    ---
    tags:
      - Bookings
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            status:
              type: string
              enum: [confirmed, in_progress, completed, cancelled]
            reason:
              type: string
    responses:
      200:
        description: Booking updated
      403:
        description: Role not allowed to make this transition
      409:
        description: Transition not allowed from the current status
    """
    payload = request.get_json(silent=True) or {}
    booking, warnings = bookings.transition_booking(
        booking_id,
        payload.get("status"),
        current_user(),
        reason=payload.get("reason"),
    )
    return jsonify({"booking": booking.to_dict(), "warnings": warnings}), 200


@bp.post("/bookings/<int:booking_id>/payment-intent")
@require_roles("customer")
def create_payment_intent(booking_id: int) -> tuple[dict[str, object], int]:
    """Create a Stripe PaymentIntent for the booking total."""
    return jsonify(payments.create_payment_intent(current_user(), booking_id)), 200


@bp.post("/bookings/<int:booking_id>/confirm-payment")
@require_roles("customer")
def confirm_payment(booking_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    payment, intent_status = payments.confirm_payment(current_user(), booking_id, payload.get("payment_intent_id"))
    return jsonify({"payment": payment.to_dict(), "intent_status": intent_status}), 200
