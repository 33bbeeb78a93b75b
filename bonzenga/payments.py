"""Booking payments settled through Stripe."""
from __future__ import annotations

import stripe
from flask import current_app

from .errors import Forbidden, InvalidInput, InvalidState, NotFound, PaymentGatewayError
from .extensions import db
from .models import Booking, Payment, User, compare_and_set


def record_payment_result(
    booking_id: int,
    succeeded: bool,
    reference: str | None = None,
    amount_cents: int | None = None,
) -> tuple[Payment, bool]:
    """Settle a booking's payment as paid or failed.

    Returns ``(payment, changed)``. Re-delivery of the outcome that was
    already recorded is ignored (``changed`` is False); an outcome that
    contradicts a settled payment raises ``InvalidState``. When the gateway
    reports ``amount_cents`` it must equal the amount owed.
    """
    payment = Payment.query.filter_by(booking_id=booking_id).first()
    if payment is None:
        raise NotFound("Payment not found")
    if amount_cents is not None and amount_cents != payment.amount_cents:
        raise InvalidInput(
            f"payment of {amount_cents} cents does not match the {payment.amount_cents} cents owed"
        )

    target = "paid" if succeeded else "failed"
    if payment.status == target:
        return payment, False
    if payment.status != "pending":
        raise InvalidState(f"payment is already {payment.status}")

    values = {"gateway_reference": reference} if reference else {}
    compare_and_set(Payment, payment.payment_id, "pending", target, **values)
    if succeeded:
        compare_and_set(Booking, booking_id, "pending", "paid", column="payment_status")
    db.session.commit()
    db.session.refresh(payment)

    current_app.logger.info("Payment for booking %s recorded as %s", booking_id, target)
    return payment, True


def _configure_stripe() -> None:
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        current_app.logger.warning("Stripe secret key not configured")
        raise PaymentGatewayError("Payments are not currently available. Please contact support.")
    stripe.api_key = stripe_key


def _customer_payment(actor: User, booking_id: int) -> Payment:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.customer_id != actor.user_id:
        raise Forbidden("You are not authorized to pay for this booking")
    if booking.payment is None:
        raise NotFound("Payment not found")
    return booking.payment


def create_payment_intent(actor: User, booking_id: int) -> dict[str, str]:
    payment = _customer_payment(actor, booking_id)
    if payment.status != "pending":
        raise InvalidState(f"payment is already {payment.status}")
    if payment.booking.status == "cancelled":
        raise InvalidState("cancelled bookings cannot be paid")

    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.create(
            amount=int(payment.amount_cents),
            currency=current_app.config.get("PAYMENT_CURRENCY", "usd"),
            metadata={
                "booking_id": str(booking_id),
                "customer_id": str(actor.user_id),
            },
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while creating payment intent", exc_info=exc)
        raise PaymentGatewayError("An error occurred while processing the payment.") from exc

    payment.gateway_reference = intent.id
    db.session.commit()
    return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}


def _intent_booking_id(metadata) -> str | None:
    booking_id = (metadata or {}).get("booking_id")
    return str(booking_id) if booking_id is not None else None


def confirm_payment(actor: User, booking_id: int, payment_intent_id: str | None) -> tuple[Payment, str]:
    """Ask Stripe for the intent's outcome and record it when it is final.

    The intent must have been created for this booking and for the amount
    it owes; anything else is refused before the payment is touched.
    """
    if not payment_intent_id:
        raise InvalidInput("payment_intent_id is required")
    payment = _customer_payment(actor, booking_id)
    if payment.gateway_reference and payment.gateway_reference != payment_intent_id:
        raise InvalidInput("payment_intent_id does not belong to this booking")

    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while retrieving payment intent", exc_info=exc)
        raise PaymentGatewayError("Failed to retrieve payment intent") from exc

    if _intent_booking_id(intent.metadata) != str(booking_id):
        current_app.logger.warning(
            "Payment intent %s presented for booking %s belongs to booking %s",
            payment_intent_id,
            booking_id,
            _intent_booking_id(intent.metadata),
        )
        raise InvalidInput("payment_intent_id does not belong to this booking")
    if intent.amount != payment.amount_cents:
        raise InvalidInput("payment intent amount does not match the booking total")

    if intent.status == "succeeded":
        payment, _ = record_payment_result(booking_id, True, intent.id, intent.amount)
    elif intent.status == "canceled":
        payment, _ = record_payment_result(booking_id, False, intent.id, intent.amount)
    return payment, intent.status


def handle_webhook_event(event) -> None:
    """Apply a verified Stripe event. Unknown, incomplete or mismatched events are skipped."""
    evt_type = event.get("type")
    if evt_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        return

    data = event.get("data", {}).get("object", {})
    booking_id = _intent_booking_id(data.get("metadata"))
    if not booking_id or not booking_id.isdigit():
        current_app.logger.info("Webhook %s without booking metadata; skipping.", evt_type)
        return

    try:
        record_payment_result(
            int(booking_id),
            evt_type == "payment_intent.succeeded",
            data.get("id"),
            data.get("amount"),
        )
    except (InvalidInput, InvalidState, NotFound) as exc:
        db.session.rollback()
        current_app.logger.warning("Webhook %s for booking %s ignored: %s", evt_type, booking_id, exc.message)
