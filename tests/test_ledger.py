"""Tests for commission math and the payout, refund and dispute workflows."""
from __future__ import annotations

from datetime import date, time

import pytest

from bonzenga import ledger
from bonzenga.errors import ConfigurationError, InvalidInput, InvalidState
from bonzenga.extensions import db
from bonzenga.models import Booking, BookingItem, Commission, CommissionEntry, Payment, Payout


@pytest.mark.parametrize(
    ("amount", "rate_bps", "expected"),
    [
        (4500, 1500, (675, 3825)),
        (999, 1500, (150, 849)),
        (1, 5000, (1, 0)),
        (0, 1500, (0, 0)),
        (12345, 0, (0, 12345)),
        (12345, 10000, (12345, 0)),
    ],
)
def test_split_amount(amount, rate_bps, expected) -> None:
    platform, vendor = ledger.split_amount(amount, rate_bps)

    assert (platform, vendor) == expected
    assert platform + vendor == amount


def test_compute_commission_prefers_vendor_override(app, make_vendor, global_commission) -> None:
    vendor = make_vendor()
    other = make_vendor("Nail Studio")
    db.session.add(Commission(scope="vendor", vendor_id=vendor.vendor_id, rate_bps=1000))
    db.session.commit()

    override = ledger.compute_commission(vendor.vendor_id, 4500)
    default = ledger.compute_commission(other.vendor_id, 4500)

    assert (override.scope, override.platform_cents, override.vendor_cents) == ("vendor", 450, 4050)
    assert (default.scope, default.platform_cents, default.vendor_cents) == ("global", 675, 3825)


def test_compute_commission_is_read_only(app, make_vendor, global_commission) -> None:
    vendor = make_vendor()

    first = ledger.compute_commission(vendor.vendor_id, 4500)
    second = ledger.compute_commission(vendor.vendor_id, 4500)

    assert first == second
    assert CommissionEntry.query.count() == 0


def test_compute_commission_without_rule(app, make_vendor) -> None:
    vendor = make_vendor()

    with pytest.raises(ConfigurationError):
        ledger.compute_commission(vendor.vendor_id, 4500)


@pytest.mark.parametrize("amount", [-1, 10.5, "4500", True])
def test_compute_commission_rejects_bad_amounts(app, make_vendor, global_commission, amount) -> None:
    vendor = make_vendor()

    with pytest.raises(InvalidInput):
        ledger.compute_commission(vendor.vendor_id, amount)


def test_admin_sets_global_and_vendor_commission(client, make_user, make_vendor, auth_headers) -> None:
    admin_headers = auth_headers(make_user("admin"))
    vendor = make_vendor()

    response = client.put("/admin/commissions", json={"percentage": 15}, headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["commission"]["rate_bps"] == 1500

    response = client.put("/admin/commissions", json={"percentage": "12.5"}, headers=admin_headers)
    assert response.get_json()["commission"]["rate_bps"] == 1250
    assert Commission.query.filter_by(scope="global").count() == 1

    response = client.put(
        "/admin/commissions",
        json={"percentage": 10, "vendor_id": vendor.vendor_id},
        headers=admin_headers,
    )
    assert response.get_json()["commission"]["scope"] == "vendor"

    quote = client.post(
        "/admin/commissions/quote",
        json={"vendor_id": vendor.vendor_id, "amount_cents": 4500},
        headers=admin_headers,
    ).get_json()["quote"]
    assert quote["platform_cents"] == 450
    assert quote["vendor_cents"] == 4050

    cleared = client.delete(f"/admin/commissions/vendors/{vendor.vendor_id}", headers=admin_headers)
    assert cleared.status_code == 200
    quote = client.post(
        "/admin/commissions/quote",
        json={"vendor_id": vendor.vendor_id, "amount_cents": 4500},
        headers=admin_headers,
    ).get_json()["quote"]
    assert quote["rate_bps"] == 1250


@pytest.mark.parametrize("percentage", [-1, 101, "lots", None])
def test_commission_percentage_bounds(client, make_user, auth_headers, percentage) -> None:
    response = client.put(
        "/admin/commissions",
        json={"percentage": percentage},
        headers=auth_headers(make_user("admin")),
    )

    assert response.status_code == 400
    assert Commission.query.count() == 0


def test_commission_for_unknown_vendor(client, make_user, auth_headers) -> None:
    response = client.put(
        "/admin/commissions",
        json={"percentage": 10, "vendor_id": 4242},
        headers=auth_headers(make_user("admin")),
    )

    assert response.status_code == 404


def test_quote_without_rule_is_configuration_error(client, make_user, make_vendor, auth_headers) -> None:
    vendor = make_vendor()

    response = client.post(
        "/admin/commissions/quote",
        json={"vendor_id": vendor.vendor_id, "amount_cents": 100},
        headers=auth_headers(make_user("admin")),
    )

    assert response.status_code == 422
    assert response.get_json()["error"] == "configuration_error"


def test_only_admins_manage_commissions(client, make_user, auth_headers) -> None:
    response = client.put("/admin/commissions", json={"percentage": 15}, headers=auth_headers(make_user("manager")))

    assert response.status_code == 403


# --- Helpers for booking-backed workflows -----------------------------------


@pytest.fixture
def make_booking(make_user, make_vendor, make_service):
    def _make(vendor=None, *, status: str = "completed", payment_status: str = "paid", total_cents: int = 4500):
        vendor = vendor or make_vendor()
        service = make_service(vendor, price_cents=total_cents)
        customer = make_user("customer")
        booking = Booking(
            customer_id=customer.user_id,
            vendor_id=vendor.vendor_id,
            status=status,
            payment_status=payment_status,
            scheduled_date=date(2030, 1, 15),
            scheduled_time=time(14, 30),
            total_cents=total_cents,
            items=[BookingItem(service_id=service.service_id, service_name=service.name, unit_price_cents=total_cents)],
        )
        booking.payment = Payment(amount_cents=total_cents, status="paid" if payment_status == "paid" else "pending")
        db.session.add(booking)
        db.session.commit()
        return booking, customer

    return _make


def test_settle_commission_is_idempotent(app, make_booking, global_commission) -> None:
    booking, _ = make_booking()

    first = ledger.settle_commission(booking)
    second = ledger.settle_commission(booking)

    assert first.entry_id == second.entry_id
    assert CommissionEntry.query.count() == 1


def test_settle_commission_requires_completed_booking(app, make_booking, global_commission) -> None:
    booking, _ = make_booking(status="confirmed")

    with pytest.raises(InvalidState):
        ledger.settle_commission(booking)


# --- Payouts ------------------------------------------------------------------


def test_payout_workflow(client, make_user, make_vendor, make_booking, auth_headers, global_commission) -> None:
    vendor = make_vendor()
    booking, _ = make_booking(vendor)
    ledger.settle_commission(booking)
    vendor_headers = auth_headers(vendor.owner)
    admin_headers = auth_headers(make_user("admin"))

    listing = client.get("/payouts", headers=vendor_headers).get_json()
    assert listing["available_balance_cents"] == 3825

    too_much = client.post("/payouts", json={"amount": 40}, headers=vendor_headers)
    assert too_much.status_code == 400

    response = client.post("/payouts", json={"amount": "30.00", "notes": "weekly"}, headers=vendor_headers)
    assert response.status_code == 201
    payout = response.get_json()["payout"]
    assert payout["amount_cents"] == 3000
    assert payout["status"] == "pending"
    assert ledger.available_balance(vendor.vendor_id) == 825

    approved = client.put(f"/payouts/{payout['id']}/status", json={"status": "approved"}, headers=admin_headers)
    assert approved.status_code == 200
    assert approved.get_json()["payout"]["status"] == "approved"

    twice = client.put(f"/payouts/{payout['id']}/status", json={"status": "approved"}, headers=admin_headers)
    assert twice.status_code == 409

    paid = client.put(f"/payouts/{payout['id']}/status", json={"status": "paid"}, headers=admin_headers)
    assert paid.get_json()["payout"]["status"] == "paid"


def test_rejected_payout_releases_balance(client, make_user, make_vendor, make_booking, auth_headers, global_commission) -> None:
    vendor = make_vendor()
    booking, _ = make_booking(vendor)
    ledger.settle_commission(booking)

    response = client.post("/payouts", json={"amount": 38.25}, headers=auth_headers(vendor.owner))
    assert ledger.available_balance(vendor.vendor_id) == 0

    client.put(
        f"/payouts/{response.get_json()['payout']['id']}/status",
        json={"status": "rejected", "notes": "bank details missing"},
        headers=auth_headers(make_user("admin")),
    )

    assert ledger.available_balance(vendor.vendor_id) == 3825


def test_sub_cent_payout_is_rejected(client, make_vendor, make_booking, auth_headers, global_commission) -> None:
    vendor = make_vendor()
    booking, _ = make_booking(vendor)
    ledger.settle_commission(booking)

    response = client.post("/payouts", json={"amount": "0.004"}, headers=auth_headers(vendor.owner))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_input"
    assert Payout.query.count() == 0


def test_cleared_override_can_be_set_again(app, make_vendor, global_commission) -> None:
    vendor = make_vendor()
    first = ledger.set_commission(10, vendor.vendor_id)
    ledger.clear_commission_override(vendor.vendor_id)

    second = ledger.set_commission(12, vendor.vendor_id)

    assert second.commission_id != first.commission_id
    assert db.session.get(Commission, first.commission_id).active_key is None
    assert second.active_key == f"vendor:{vendor.vendor_id}"
    assert ledger.compute_commission(vendor.vendor_id, 10000).rate_bps == 1200


# --- Refunds ------------------------------------------------------------------


def test_refund_approval_marks_booking_refunded(client, make_user, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    admin_headers = auth_headers(make_user("admin"))

    response = client.post(
        "/refunds",
        json={"booking_id": booking.booking_id, "reason": "Stylist never arrived"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201
    refund = response.get_json()["refund"]
    assert refund["amount_cents"] == 4500

    approved = client.put(f"/refunds/{refund['id']}/status", json={"status": "approved"}, headers=admin_headers)
    assert approved.status_code == 200
    booking = db.session.get(Booking, booking.booking_id)
    assert booking.payment_status == "refunded"
    assert booking.payment.status == "refunded"

    again = client.put(f"/refunds/{refund['id']}/status", json={"status": "approved"}, headers=admin_headers)
    assert again.status_code == 409
    assert again.get_json()["error"] == "invalid_state"

    processed = client.put(f"/refunds/{refund['id']}/status", json={"status": "processed"}, headers=admin_headers)
    assert processed.get_json()["refund"]["status"] == "processed"


def test_refund_requires_paid_booking(client, make_booking, auth_headers) -> None:
    booking, customer = make_booking(payment_status="pending")

    response = client.post(
        "/refunds",
        json={"booking_id": booking.booking_id, "reason": "Changed my mind"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 409


def test_refund_request_validation(client, make_user, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    headers = auth_headers(customer)

    no_reason = client.post("/refunds", json={"booking_id": booking.booking_id}, headers=headers)
    too_much = client.post("/refunds", json={"booking_id": booking.booking_id, "reason": "x", "amount": 46}, headers=headers)
    stranger = client.post(
        "/refunds",
        json={"booking_id": booking.booking_id, "reason": "x"},
        headers=auth_headers(make_user("customer")),
    )

    assert no_reason.status_code == 400
    assert too_much.status_code == 400
    assert stranger.status_code == 403


def test_only_one_open_refund_per_booking(client, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    headers = auth_headers(customer)

    first = client.post("/refunds", json={"booking_id": booking.booking_id, "reason": "late", "amount": 10}, headers=headers)
    second = client.post("/refunds", json={"booking_id": booking.booking_id, "reason": "late", "amount": 10}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 409


def test_rejected_refund_leaves_payment_paid(client, make_user, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    refund = client.post(
        "/refunds",
        json={"booking_id": booking.booking_id, "reason": "meh"},
        headers=auth_headers(customer),
    ).get_json()["refund"]

    response = client.put(
        f"/refunds/{refund['id']}/status",
        json={"status": "rejected", "notes": "service delivered"},
        headers=auth_headers(make_user("admin")),
    )

    assert response.get_json()["refund"]["status"] == "rejected"
    assert db.session.get(Booking, booking.booking_id).payment_status == "paid"


# --- Disputes -----------------------------------------------------------------


def test_dispute_workflow(client, make_user, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    manager_headers = auth_headers(make_user("manager"))

    response = client.post(
        "/disputes",
        json={"booking_id": booking.booking_id, "description": "Wrong colour"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201
    dispute = response.get_json()["dispute"]
    assert dispute["status"] == "open"

    skip = client.put(f"/disputes/{dispute['id']}/status", json={"status": "resolved"}, headers=manager_headers)
    assert skip.status_code == 409

    investigating = client.put(f"/disputes/{dispute['id']}/status", json={"status": "investigating"}, headers=manager_headers)
    assert investigating.get_json()["dispute"]["status"] == "investigating"

    resolved = client.put(
        f"/disputes/{dispute['id']}/status",
        json={"status": "resolved", "resolution": "Partial refund offered"},
        headers=manager_headers,
    )
    assert resolved.get_json()["dispute"]["resolution"] == "Partial refund offered"

    reopened = client.put(f"/disputes/{dispute['id']}/status", json={"status": "closed"}, headers=manager_headers)
    assert reopened.status_code == 409


def test_dispute_requires_description(client, make_booking, auth_headers) -> None:
    booking, customer = make_booking()

    response = client.post("/disputes", json={"booking_id": booking.booking_id}, headers=auth_headers(customer))

    assert response.status_code == 400


def test_unknown_dispute_status(client, make_user, make_booking, auth_headers) -> None:
    booking, customer = make_booking()
    dispute = client.post(
        "/disputes",
        json={"booking_id": booking.booking_id, "description": "Late"},
        headers=auth_headers(customer),
    ).get_json()["dispute"]

    response = client.put(
        f"/disputes/{dispute['id']}/status",
        json={"status": "escalated"},
        headers=auth_headers(make_user("admin")),
    )

    assert response.status_code == 400


# --- Overview -----------------------------------------------------------------


def test_financial_overview(client, make_user, make_booking, auth_headers, global_commission) -> None:
    booking, customer = make_booking()
    ledger.settle_commission(booking)
    client.post(
        "/disputes",
        json={"booking_id": booking.booking_id, "description": "Late"},
        headers=auth_headers(customer),
    )

    response = client.get("/admin/financials", headers=auth_headers(make_user("admin")))

    assert response.status_code == 200
    data = response.get_json()
    assert data["platform_earnings_cents"] == 675
    assert [rule["rate_bps"] for rule in data["commissions"]] == [1500]
    assert len(data["disputes"]) == 1
    assert data["payouts"] == []
