#!/usr/bin/env python3
"""Create the marketplace tables, optionally dropping existing ones first."""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bonzenga import create_app
from bonzenga.extensions import db
from bonzenga.models import Commission


def init_database(reset: bool = False) -> None:
    app = create_app()
    with app.app_context():
        if reset:
            db.drop_all()
            print("Dropped existing tables")
        db.create_all()
        print(f"✅ Database tables initialized at {app.config['SQLALCHEMY_DATABASE_URI']}")

        if Commission.query.filter_by(scope="global", is_active=True).first() is None:
            print("No global commission rate yet; completed bookings will not be settled until one is set.")
            print("Use scripts/seed_accounts.py --global-commission or PUT /admin/commissions.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the database tables.")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before creating them")
    init_database(reset=parser.parse_args().reset)
