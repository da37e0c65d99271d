"""
Occurrence Tracker
Flask Application Factory.

Usage:
    from occurrence_tracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate

from occurrence_tracker.config import config
from occurrence_tracker.models import db
from occurrence_tracker.middleware.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from occurrence_tracker.models import auth as _auth_models                # noqa: F401
    from occurrence_tracker.models import taxonomy as _taxonomy_models        # noqa: F401
    from occurrence_tracker.models import occurrence as _occurrence_models    # noqa: F401
    from occurrence_tracker.models import notification as _notification_models  # noqa: F401

    # ── Delivery transports ──────────────────────────────────────────────
    from occurrence_tracker.integrations.sms_gateway import SMSGateway
    app.extensions["sms_gateway"] = SMSGateway()

    # ── Lifecycle events → notification targeting ────────────────────────
    from occurrence_tracker.services.events import occurrence_event
    from occurrence_tracker.services.notification_targeting import handle_event
    occurrence_event.connect(handle_event)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-reference-data")
    def seed_reference_data_cmd():
        """Seed roles, severities, locations and a sample incident taxonomy."""
        from occurrence_tracker.services.seed import seed_reference_data
        counts = seed_reference_data()
        logger.info("Seeded reference data: %s", counts)

    return app
