"""Extension handles bound to the app in ``create_app``."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# Models, services and scripts all share this session.
db = SQLAlchemy()
