"""Two-step onboarding review for vendor and beautician applications.

An application starts in ``pending_manager_review``. A manager either
rejects it or forwards it to ``pending_admin_review``; an admin then makes
the final decision. Final approval activates the matching catalog entry in
the same transaction.

Every decision is committed with a compare-and-set on the status that was
read, so two reviewers racing on one application cannot both win.
"""
from __future__ import annotations

from flask import current_app

from .catalog import VENDOR_PROFILE_FIELDS, parse_experience_years, parse_str_list
from .errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from .extensions import db
from .models import Application, Beautician, User, Vendor, compare_and_set, utc_now
from .notifications import notify

APPLICATION_KINDS = ("vendor", "beautician")
DECISIONS = ("approve", "reject")

# The status each reviewer role is allowed to act on.
REVIEW_STAGES = {
    "manager": "pending_manager_review",
    "admin": "pending_admin_review",
}
STAGE_ORDER = {
    "pending_manager_review": 0,
    "pending_admin_review": 1,
    "approved": 2,
    "rejected": 2,
}


def _beautician_profile(payload: dict) -> dict:
    skills = parse_str_list(payload.get("skills"), "skills")
    if not skills:
        raise InvalidInput("skills are required for a beautician application")

    return {
        "skills": skills,
        "experience_years": parse_experience_years(payload.get("experience_years")),
        "certifications": parse_str_list(payload.get("certifications"), "certifications"),
        "bio": (payload.get("bio") or "").strip() or None,
    }


def _vendor_profile(payload: dict) -> dict:
    profile = {field: (payload.get(field) or "").strip() or None for field in VENDOR_PROFILE_FIELDS}
    if not profile["shop_name"]:
        raise InvalidInput("shop_name is required for a vendor application")
    profile["services"] = parse_str_list(payload.get("services"), "services")
    return profile


def submit_application(applicant: User, kind: str, payload: dict) -> Application:
    kind = (kind or "").strip().lower()
    if kind not in APPLICATION_KINDS:
        raise InvalidInput(f"kind must be one of: {', '.join(APPLICATION_KINDS)}")
    if applicant.role != kind:
        raise Forbidden(f"only {kind} accounts can submit a {kind} application")

    existing = (
        Application.query.filter(
            Application.applicant_id == applicant.user_id,
            Application.kind == kind,
            Application.status != "rejected",
        )
        .order_by(Application.application_id.desc())
        .first()
    )
    if existing:
        state = "approved" if existing.status == "approved" else "under review"
        raise Conflict(f"an application for this account is already {state}")

    profile = _beautician_profile(payload) if kind == "beautician" else _vendor_profile(payload)

    application = Application(applicant_id=applicant.user_id, kind=kind, profile=profile)
    db.session.add(application)
    db.session.commit()

    current_app.logger.info("Application %s submitted by user %s (%s)", application.application_id, applicant.user_id, kind)
    return application


def _load_application(application_id: int) -> Application:
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFound("Application not found")
    return application


def _check_stage(application: Application, actor: User) -> None:
    stage = REVIEW_STAGES[actor.role]
    if application.status == stage:
        return
    if STAGE_ORDER[application.status] > STAGE_ORDER[stage]:
        raise InvalidState(f"application is already {application.status.replace('_', ' ')}")
    raise Forbidden("application must pass manager review before admin review")


def review_application(application_id: int, actor: User, decision: str, notes: str | None = None) -> Application:
    """Apply a manager or admin decision to an application."""
    if actor.role not in REVIEW_STAGES:
        raise Forbidden("only managers and admins can review applications")

    application = _load_application(application_id)

    decision = (decision or "").strip().lower()
    if decision not in DECISIONS:
        raise InvalidInput("decision must be 'approve' or 'reject'")
    notes = (notes or "").strip() or None
    if decision == "reject" and not notes:
        raise InvalidInput("a rejection reason is required")

    _check_stage(application, actor)

    expected = application.status
    now = utc_now()
    if actor.role == "manager":
        values = {"manager_id": actor.user_id, "manager_notes": notes}
        if decision == "approve":
            new_status = "pending_admin_review"
            values["manager_approved_at"] = now
        else:
            new_status = "rejected"
            values["decided_at"] = now
    else:
        new_status = "approved" if decision == "approve" else "rejected"
        values = {"admin_id": actor.user_id, "admin_notes": notes, "decided_at": now}

    compare_and_set(Application, application.application_id, expected, new_status, **values)
    db.session.refresh(application)

    if new_status == "approved":
        activate_catalog_entry(application)

    db.session.commit()
    current_app.logger.info(
        "Application %s moved %s -> %s by %s %s",
        application.application_id,
        expected,
        new_status,
        actor.role,
        actor.user_id,
    )
    return application


def activate_catalog_entry(application: Application) -> Vendor | Beautician:
    """Create or approve the catalog record for an approved application.

    Keyed by ``application_id``: a repeated activation returns the existing
    record untouched.
    """
    if application.status != "approved":
        raise InvalidState("only approved applications can be activated")

    model = Vendor if application.kind == "vendor" else Beautician
    existing = model.query.filter_by(application_id=application.application_id).first()
    if existing is not None:
        current_app.logger.info("Application %s already activated; skipping", application.application_id)
        return existing

    entry = db.session.get(model, application.applicant_id)
    if entry is None:
        if model is Vendor:
            entry = Vendor(vendor_id=application.applicant_id)
        else:
            entry = Beautician(beautician_id=application.applicant_id)
        db.session.add(entry)

    profile = application.profile or {}
    if model is Vendor:
        for field in VENDOR_PROFILE_FIELDS:
            setattr(entry, field, profile.get(field))
    else:
        entry.skills = profile.get("skills", [])
        entry.experience_years = profile.get("experience_years", 0)
        entry.certifications = profile.get("certifications", [])
        entry.bio = profile.get("bio")

    entry.application_id = application.application_id
    entry.status = "approved"
    db.session.flush()
    return entry


def notify_applicant(application: Application) -> str | None:
    messages = {
        "pending_admin_review": ("Application forwarded", "Your application passed manager review and awaits final approval."),
        "approved": ("Application approved", "Your application was approved. Welcome to the marketplace!"),
        "rejected": ("Application rejected", "Your application was rejected."),
    }
    if application.status not in messages:
        return None
    title, message = messages[application.status]
    reason = application.admin_notes or application.manager_notes
    if application.status == "rejected" and reason:
        message = f"{message} Reason: {reason}"
    return notify(application.applicant_id, title, message, f"application_{application.status}")


def list_applications(actor: User, status: str | None = None, kind: str | None = None) -> list[Application]:
    query = Application.query
    if actor.role in REVIEW_STAGES:
        status = (status or REVIEW_STAGES[actor.role]).strip().lower()
    elif actor.role in APPLICATION_KINDS:
        query = query.filter(Application.applicant_id == actor.user_id)
        status = (status or "all").strip().lower()
    else:
        raise Forbidden("customers have no applications")

    if status != "all":
        if status not in STAGE_ORDER:
            raise InvalidInput(f"unknown application status: {status}")
        query = query.filter(Application.status == status)
    if kind:
        kind = kind.strip().lower()
        if kind not in APPLICATION_KINDS:
            raise InvalidInput(f"kind must be one of: {', '.join(APPLICATION_KINDS)}")
        query = query.filter(Application.kind == kind)

    return query.order_by(Application.created_at.asc(), Application.application_id.asc()).all()


def get_application(actor: User, application_id: int) -> Application:
    application = _load_application(application_id)
    if actor.role not in REVIEW_STAGES and application.applicant_id != actor.user_id:
        raise Forbidden("You are not authorized to view this application")
    return application
