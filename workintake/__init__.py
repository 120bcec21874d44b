"""
Work Intake Workflow Engine
Flask Application Factory.

Usage:
    from workintake import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

from flask import Flask
from flask_migrate import Migrate

from workintake.config import config
from workintake.middleware.logging_config import configure_logging
from workintake.models import db

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


def create_app(config_name=None, dispatcher=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        dispatcher: Notification dispatcher for the workflow engine; the
                    in-app NotificationService when omitted.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from workintake.models import work_item as _work_item_models        # noqa: F401
    from workintake.models import workflow as _workflow_models          # noqa: F401
    from workintake.models import audit as _audit_models                # noqa: F401
    from workintake.models import notification as _notification_models  # noqa: F401
    from workintake.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in \
            app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Workflow engine ──────────────────────────────────────────────────
    from workintake.services.workflow_engine import init_workflow_engine
    init_workflow_engine(app, dispatcher=dispatcher)

    # ── CLI commands ─────────────────────────────────────────────────────
    from workintake.cli import init_cli
    init_cli(app)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("workintake.services.scheduled_jobs")  # registers @register_job handlers
    from workintake.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    logger.info("Work intake workflow engine ready (%s)", config_name)
    return app
