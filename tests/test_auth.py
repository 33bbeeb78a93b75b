"""Tests for registration, login and role gating."""
from __future__ import annotations

from conftest import PASSWORD


def test_register_customer_returns_token(client) -> None:
    response = client.post(
        "/auth/register",
        json={"name": "Amani", "email": "Amani@Example.com", "password": "pw12345", "role": "customer"},
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["token"]
    assert body["user"]["email"] == "amani@example.com"
    assert body["user"]["role"] == "customer"
    assert body["user"]["status"] == "active"


def test_register_rejects_staff_roles(client) -> None:
    for role in ("admin", "manager"):
        response = client.post(
            "/auth/register",
            json={"name": "Sneaky", "email": f"{role}@example.com", "password": "pw", "role": role},
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_input"


def test_register_duplicate_email_conflict(client, make_user) -> None:
    make_user("customer", email="taken@example.com")

    response = client.post(
        "/auth/register",
        json={"name": "Other", "email": "taken@example.com", "password": "pw"},
    )

    assert response.status_code == 409
    assert response.get_json()["error"] == "conflict"


def test_register_missing_fields(client) -> None:
    response = client.post("/auth/register", json={"email": "x@example.com"})

    assert response.status_code == 400
    assert "required" in response.get_json()["message"]


def test_seeded_admin_logs_in_through_regular_path(client, make_user) -> None:
    make_user("admin", email="admin@bonzenga.com")

    response = client.post("/auth/login", json={"email": "admin@bonzenga.com", "password": PASSWORD})

    assert response.status_code == 200
    body = response.get_json()
    assert body["token"]
    assert body["user"]["role"] == "admin"


def test_login_invalid_password(client, make_user) -> None:
    make_user("vendor", email="vendor@example.com")

    response = client.post("/auth/login", json={"email": "vendor@example.com", "password": "BadPass"})

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_login_unknown_email(client) -> None:
    response = client.post("/auth/login", json={"email": "nobody@example.com", "password": "x"})

    assert response.status_code == 401


def test_suspended_account_cannot_log_in(client, make_user) -> None:
    make_user("customer", email="gone@example.com", status="suspended")

    response = client.post("/auth/login", json={"email": "gone@example.com", "password": PASSWORD})

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"


def test_me_requires_token(client) -> None:
    response = client.get("/auth/me")

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_tampered_token_is_unauthorized(client) -> None:
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-real-token"})

    assert response.status_code == 401


def test_me_returns_current_user(client, make_user, auth_headers) -> None:
    user = make_user("beautician")

    response = client.get("/auth/me", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.get_json()["user"]["id"] == user.user_id


def test_role_mismatch_is_forbidden(client, make_user, auth_headers) -> None:
    customer = make_user("customer")

    response = client.put("/applications/1/review", json={"decision": "approve"}, headers=auth_headers(customer))

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"


def test_suspension_revokes_existing_tokens(client, make_user, auth_headers) -> None:
    admin = make_user("admin")
    customer = make_user("customer")
    headers = auth_headers(customer)

    response = client.put(
        f"/admin/users/{customer.user_id}/status",
        json={"status": "suspended"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.get_json()["user"]["status"] == "suspended"

    response = client.get("/auth/me", headers=headers)
    assert response.status_code == 401


def test_only_admin_changes_account_status(client, make_user, auth_headers) -> None:
    manager = make_user("manager")
    customer = make_user("customer")

    response = client.put(
        f"/admin/users/{customer.user_id}/status",
        json={"status": "suspended"},
        headers=auth_headers(manager),
    )

    assert response.status_code == 403
