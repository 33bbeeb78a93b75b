"""Two reviewers racing on one application: exactly one decision lands."""
from __future__ import annotations

import threading

import pytest
from werkzeug.security import generate_password_hash

from bonzenga import reviews
from bonzenga.errors import InvalidState
from bonzenga.extensions import db
from bonzenga.models import Application, AuthAccount, User, compare_and_set


def _seed(race_app) -> tuple[int, list[int]]:
    with race_app.app_context():
        users = []
        for role, email in (("beautician", "ana@example.com"), ("manager", "m1@example.com"), ("manager", "m2@example.com")):
            user = User(name=email.split("@")[0], email=email, role=role)
            db.session.add(user)
            db.session.flush()
            db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash("x")))
            users.append(user)
        db.session.commit()

        application = reviews.submit_application(users[0], "beautician", {"skills": ["Nails"]})
        return application.application_id, [users[1].user_id, users[2].user_id]


def test_concurrent_manager_approvals(race_app, run_concurrently, monkeypatch) -> None:
    application_id, manager_ids = _seed(race_app)
    barrier = threading.Barrier(len(manager_ids), timeout=10)
    original_load = reviews._load_application

    def load_then_wait(app_id):
        application = original_load(app_id)
        # Both reviewers have read the same status before either writes.
        barrier.wait()
        return application

    monkeypatch.setattr(reviews, "_load_application", load_then_wait)

    def approve(manager_id: int):
        def call() -> str:
            manager = db.session.get(User, manager_id)
            return reviews.review_application(application_id, manager, "approve", "ok").status

        return call

    successes, failures = run_concurrently(*(approve(manager_id) for manager_id in manager_ids))

    assert successes == ["pending_admin_review"]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidState)

    with race_app.app_context():
        application = db.session.get(Application, application_id)
        assert application.status == "pending_admin_review"
        assert application.manager_id in manager_ids


def test_stale_compare_and_set_is_rejected(app, make_user) -> None:
    applicant = make_user("beautician")
    application = reviews.submit_application(applicant, "beautician", {"skills": ["Makeup"]})

    compare_and_set(Application, application.application_id, "pending_manager_review", "pending_admin_review")
    db.session.commit()

    with pytest.raises(InvalidState):
        compare_and_set(Application, application.application_id, "pending_manager_review", "rejected")
    db.session.rollback()

    db.session.refresh(application)
    assert application.status == "pending_admin_review"
