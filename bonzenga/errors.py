"""Business error taxonomy and its mapping onto JSON responses."""
from __future__ import annotations

from flask import current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


class MarketplaceError(Exception):
    """Base class for expected business failures.

    Each subclass carries the HTTP status and the machine readable ``error``
    kind returned to the caller alongside the human message.
    """

    status_code = 400
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class NotFound(MarketplaceError):
    status_code = 404
    kind = "not_found"


class Unauthorized(MarketplaceError):
    status_code = 401
    kind = "unauthorized"


class Forbidden(MarketplaceError):
    status_code = 403
    kind = "forbidden"


class InvalidState(MarketplaceError):
    status_code = 409
    kind = "invalid_state"


class InvalidInput(MarketplaceError):
    status_code = 400
    kind = "invalid_input"


class Conflict(MarketplaceError):
    status_code = 409
    kind = "conflict"


class ConfigurationError(MarketplaceError):
    status_code = 422
    kind = "configuration_error"


class PaymentGatewayError(MarketplaceError):
    """The payment provider is unavailable or refused the request."""

    status_code = 502
    kind = "payment_error"


def register_error_handlers(app) -> None:
    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(exc: MarketplaceError):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Database operation failed", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
