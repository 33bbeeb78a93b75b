"""Financial routes: commissions, payouts, refunds, disputes and the Stripe webhook."""
from __future__ import annotations

import stripe
from flask import Blueprint, current_app, jsonify, request

from . import ledger, payments
from .auth import current_user, require_roles
from .bookings import get_booking
from .errors import InvalidInput

bp_fin = Blueprint("api_finance", __name__)


def _optional_int(value, field: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an integer") from None


# --- Commissions ------------------------------------------------------------


@bp_fin.get("/admin/commissions")
@require_roles("admin")
def list_commissions() -> tuple[dict[str, object], int]:
    return jsonify({"commissions": [rule.to_dict() for rule in ledger.list_commissions()]}), 200


@bp_fin.put("/admin/commissions")
@require_roles("admin")
def set_commission() -> tuple[dict[str, object], int]:
    """Set the global commission rate or a vendor-specific override.
    ---
    tags:
      - Commissions
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            percentage:
              type: number
              example: 15
            vendor_id:
              type: integer
              description: Omit to set the global rate
    responses:
      200:
        description: Commission rule saved
      400:
        description: Percentage outside 0-100
      404:
        description: Vendor not found
    """
    payload = request.get_json(silent=True) or {}
    rule = ledger.set_commission(
        payload.get("percentage"),
        vendor_id=_optional_int(payload.get("vendor_id"), "vendor_id"),
    )
    return jsonify({"commission": rule.to_dict()}), 200


@bp_fin.delete("/admin/commissions/vendors/<int:vendor_id>")
@require_roles("admin")
def clear_commission_override(vendor_id: int) -> tuple[dict[str, object], int]:
    rule = ledger.clear_commission_override(vendor_id)
    return jsonify({"commission": rule.to_dict()}), 200


@bp_fin.post("/admin/commissions/quote")
@require_roles("admin")
def quote_commission() -> tuple[dict[str, object], int]:
    """Preview the platform and vendor shares of an amount in cents."""
    payload = request.get_json(silent=True) or {}
    vendor_id = _optional_int(payload.get("vendor_id"), "vendor_id")
    amount_cents = _optional_int(payload.get("amount_cents"), "amount_cents")
    if vendor_id is None or amount_cents is None:
        raise InvalidInput("vendor_id and amount_cents are required")
    quote = ledger.compute_commission(vendor_id, amount_cents)
    return jsonify({"quote": quote.to_dict()}), 200


@bp_fin.post("/admin/bookings/<int:booking_id>/commission")
@require_roles("admin")
def settle_booking_commission(booking_id: int) -> tuple[dict[str, object], int]:
    """Record the commission of a completed booking if it is still missing."""
    booking = get_booking(current_user(), booking_id)
    entry = ledger.settle_commission(booking)
    return jsonify({"commission_entry": entry.to_dict()}), 200


@bp_fin.get("/admin/financials")
@require_roles("admin")
def financial_overview() -> tuple[dict[str, object], int]:
    return jsonify(ledger.financial_overview()), 200


# --- Payouts ----------------------------------------------------------------


@bp_fin.post("/payouts")
@require_roles("vendor")
def request_payout() -> tuple[dict[str, object], int]:
    """Vendor requests a payout of earned revenue.
    ---
    tags:
      - Payouts
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            amount:
              type: number
              description: Amount in dollars
            notes:
              type: string
    responses:
      201:
        description: Payout requested
      400:
        description: Amount missing or above the available balance
    """
    payload = request.get_json(silent=True) or {}
    payout = ledger.request_payout(current_user(), payload.get("amount"), payload.get("notes"))
    return jsonify({"payout": payout.to_dict()}), 201


@bp_fin.get("/payouts")
@require_roles("vendor", "admin")
def list_payouts() -> tuple[dict[str, object], int]:
    user = current_user()
    data = {"payouts": [p.to_dict() for p in ledger.list_payouts(user, request.args.get("status"))]}
    if user.role == "vendor":
        data["available_balance_cents"] = ledger.available_balance(user.user_id)
    return jsonify(data), 200


@bp_fin.put("/payouts/<int:payout_id>/status")
@require_roles("admin")
def update_payout_status(payout_id: int) -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    payout = ledger.decide_payout(current_user(), payout_id, payload.get("status"), payload.get("notes"))
    return jsonify({"payout": payout.to_dict()}), 200


# --- Refunds ----------------------------------------------------------------


@bp_fin.post("/refunds")
@require_roles("customer")
def request_refund() -> tuple[dict[str, object], int]:
    """Customer requests a refund of a paid booking."""
    payload = request.get_json(silent=True) or {}
    booking_id = _optional_int(payload.get("booking_id"), "booking_id")
    if booking_id is None:
        raise InvalidInput("booking_id is required")
    refund = ledger.request_refund(current_user(), booking_id, payload.get("reason"), payload.get("amount"))
    return jsonify({"refund": refund.to_dict()}), 201


@bp_fin.get("/refunds")
@require_roles("customer", "admin")
def list_refunds() -> tuple[dict[str, object], int]:
    refunds = ledger.list_refunds(current_user(), request.args.get("status"))
    return jsonify({"refunds": [r.to_dict() for r in refunds]}), 200


@bp_fin.put("/refunds/<int:refund_id>/status")
@require_roles("admin")
def update_refund_status(refund_id: int) -> tuple[dict[str, object], int]:
    """Approve, reject or mark a refund processed (admin only).
    ---
    tags:
      - Refunds
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            status:
              type: string
              enum: [approved, rejected, processed]
            notes:
              type: string
    responses:
      200:
        description: Refund updated; approval marks the booking payment refunded
      409:
        description: Refund already decided
    """
    payload = request.get_json(silent=True) or {}
    refund = ledger.decide_refund(current_user(), refund_id, payload.get("status"), payload.get("notes"))
    return jsonify({"refund": refund.to_dict()}), 200


# --- Disputes ---------------------------------------------------------------


@bp_fin.post("/disputes")
@require_roles("customer")
def open_dispute() -> tuple[dict[str, object], int]:
    payload = request.get_json(silent=True) or {}
    booking_id = _optional_int(payload.get("booking_id"), "booking_id")
    if booking_id is None:
        raise InvalidInput("booking_id is required")
    dispute = ledger.open_dispute(current_user(), booking_id, payload.get("description"))
    return jsonify({"dispute": dispute.to_dict()}), 201


@bp_fin.get("/disputes")
@require_roles("customer", "manager", "admin")
def list_disputes() -> tuple[dict[str, object], int]:
    disputes = ledger.list_disputes(current_user(), request.args.get("status"))
    return jsonify({"disputes": [d.to_dict() for d in disputes]}), 200


@bp_fin.put("/disputes/<int:dispute_id>/status")
@require_roles("manager", "admin")
def update_dispute_status(dispute_id: int) -> tuple[dict[str, object], int]:
    """Advance a dispute: open -> investigating -> resolved | closed."""
    payload = request.get_json(silent=True) or {}
    dispute = ledger.advance_dispute(current_user(), dispute_id, payload.get("status"), payload.get("resolution"))
    return jsonify({"dispute": dispute.to_dict()}), 200


# --- Stripe -----------------------------------------------------------------


@bp_fin.post("/stripe-webhook")
def stripe_webhook():
    """Stripe webhook endpoint to receive asynchronous payment outcomes.
    ---
    tags:
      - Payments
    parameters:
      - name: Stripe-Signature
        in: header
        required: true
        type: string
    responses:
      200:
        description: Webhook event received and processed
      400:
        description: Invalid payload or signature
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

    if not webhook_secret:
        current_app.logger.error("Stripe webhook secret not configured - webhooks will not be processed")
        # Return 200 to prevent Stripe retries (config issues should be fixed server-side)
        return jsonify({"received": True}), 200

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError:
        current_app.logger.warning("Invalid webhook payload")
        return jsonify({"error": "invalid_payload"}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Invalid signature for webhook")
        return jsonify({"error": "invalid_signature"}), 400

    payments.handle_webhook_event(event)
    return jsonify({"received": True}), 200
