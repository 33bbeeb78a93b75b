"""pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
import threading
from datetime import date, timedelta
from pathlib import Path

import pytest
from werkzeug.security import generate_password_hash

# Ensure the project root is available on sys.path so tests can import the bonzenga package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bonzenga import create_app  # noqa: E402
from bonzenga.auth import build_token  # noqa: E402
from bonzenga.config import TestingConfig  # noqa: E402
from bonzenga.extensions import db  # noqa: E402
from bonzenga.models import AuthAccount, Beautician, Commission, Service, User, Vendor  # noqa: E402

PASSWORD = "Secret123!"


@pytest.fixture
def app():
    flask_app = create_app(TestingConfig)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role: str = "customer", *, email: str | None = None, name: str | None = None, status: str = "active") -> User:
        counter["n"] += 1
        user = User(
            name=name or f"{role.title()} {counter['n']}",
            email=email or f"{role}{counter['n']}@example.com",
            role=role,
            status=status,
        )
        db.session.add(user)
        db.session.flush()
        db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(PASSWORD)))
        db.session.commit()
        return user

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {build_token(user)}"}

    return _headers


@pytest.fixture
def make_vendor(make_user):
    def _make(shop_name: str = "Elegant Beauty Salon", status: str = "approved") -> Vendor:
        owner = make_user("vendor")
        vendor = Vendor(vendor_id=owner.user_id, shop_name=shop_name, city="Kinshasa", status=status)
        db.session.add(vendor)
        db.session.commit()
        return vendor

    return _make


@pytest.fixture
def make_service(app):
    def _make(vendor: Vendor, name: str = "Haircut", price_cents: int = 4500, *, is_active: bool = True) -> Service:
        service = Service(
            vendor_id=vendor.vendor_id,
            name=name,
            price_cents=price_cents,
            duration_minutes=45,
            is_active=is_active,
        )
        db.session.add(service)
        db.session.commit()
        return service

    return _make


@pytest.fixture
def make_beautician(make_user):
    def _make(status: str = "approved") -> Beautician:
        user = make_user("beautician")
        beautician = Beautician(beautician_id=user.user_id, skills=["Hair Styling"], status=status)
        db.session.add(beautician)
        db.session.commit()
        return beautician

    return _make


@pytest.fixture
def global_commission(app):
    rule = Commission(scope="global", rate_bps=1500)
    db.session.add(rule)
    db.session.commit()
    return rule


@pytest.fixture
def future_date() -> str:
    return (date.today() + timedelta(days=7)).isoformat()


@pytest.fixture
def race_app(tmp_path):
    """File-backed app so each thread gets its own connection to one database."""

    class RaceConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"

    flask_app = create_app(RaceConfig)
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def run_concurrently(race_app):
    """Run each callable on its own thread and app context.

    Returns ``(results, failures)``; a failing call has its session rolled back.
    """

    def _run(*calls):
        results: list = []
        failures: list[Exception] = []

        def worker(call) -> None:
            with race_app.app_context():
                try:
                    results.append(call())
                except Exception as exc:
                    db.session.rollback()
                    failures.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return results, failures

    return _run
