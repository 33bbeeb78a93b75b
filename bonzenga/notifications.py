"""In-app notifications sent after a state change has been committed."""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import Notification


def notify(user_id: int, title: str, message: str, notification_type: str) -> str | None:
    """Store a notification for ``user_id``.

    Runs after the owning transition has committed, so a failure here is
    logged and returned as a warning string instead of being raised.
    """
    try:
        db.session.add(
            Notification(
                user_id=user_id,
                title=title,
                message=message,
                notification_type=notification_type,
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Failed to deliver %s notification to user %s: %s", notification_type, user_id, exc)
        return f"notification to user {user_id} was not delivered"
    return None


def collect_warnings(*warnings: str | None) -> list[str]:
    return [warning for warning in warnings if warning]
