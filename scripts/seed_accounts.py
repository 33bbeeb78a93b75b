"""Seed or update staff accounts (admin, manager) and the default commission rate.

Managers and admins sign in through the regular login endpoint; this script
is the only way such accounts are created.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``bonzenga`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bonzenga import create_app
from bonzenga.extensions import db
from bonzenga.ledger import set_commission
from bonzenga.models import AuthAccount, Commission, User

STAFF_ROLES = ["admin", "manager"]
DEFAULT_NAMES = {
    "admin": "Platform Admin",
    "manager": "Regional Manager",
}


def seed_account(email: str, password: str, role: str, name: str | None = None) -> None:
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name or DEFAULT_NAMES[role], email=email, role=role)
        db.session.add(user)
        db.session.flush()
        print(f"Created new {role} user: {email}")
    elif user.role != role:
        print(f"Updating user role from '{user.role}' to '{role}'")
        user.role = role

    account = db.session.get(AuthAccount, user.user_id)
    if account is None:
        account = AuthAccount(user_id=user.user_id)
        db.session.add(account)

    account.password_hash = generate_password_hash(password)
    user.status = "active"
    db.session.commit()
    print(f"Password for {role} user '{email}' has been set successfully.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed an admin or manager account.")
    parser.add_argument("email", help="User email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--role", choices=STAFF_ROLES, default="manager", help="Staff role (default: manager)")
    parser.add_argument("--name", help="Display name")
    parser.add_argument(
        "--global-commission",
        type=float,
        help="Also set the global commission percentage when none is configured",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    app = create_app()
    with app.app_context():
        db.create_all()
        seed_account(args.email, args.password, args.role, args.name)
        if args.global_commission is not None:
            existing = Commission.query.filter_by(scope="global", is_active=True).first()
            if existing is None:
                set_commission(args.global_commission)
                print(f"Global commission set to {args.global_commission}%")


if __name__ == "__main__":
    main()
