"""Bearer-token authentication and role gating."""
from __future__ import annotations

from functools import wraps

from flask import current_app, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import Forbidden, Unauthorized
from .extensions import db
from .models import User


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(user: User) -> str:
    return _serializer().dumps({"user_id": user.user_id, "role": user.role})


def get_token_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns the user_id if the token is valid, None if missing, tampered
    with or expired.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = _serializer().loads(token, max_age=current_app.config.get("TOKEN_MAX_AGE", 86400))
    except (BadSignature, SignatureExpired):
        return None
    return payload.get("user_id")


def current_user() -> User:
    """Resolve the bearer token to an active account or raise ``Unauthorized``."""
    user_id = get_token_identity()
    if user_id is None:
        raise Unauthorized("Authentication required. Please log in to continue.")

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise Unauthorized("User not found or inactive")

    return user


def require_roles(*roles: str):
    """Only let accounts holding one of ``roles`` through; no roles means any account."""

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if roles and user.role not in roles:
                raise Forbidden(f"{user.role} accounts cannot perform this action")
            return view(*args, **kwargs)

        return wrapped

    return decorator
