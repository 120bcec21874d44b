"""
Work Intake Workflow Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import json
import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'workintake_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _json_env(name: str, default):
    raw = os.getenv(name)
    if not raw:
        return default
    return json.loads(raw)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # ── Workflow engine ──────────────────────────────────────────────────
    # Label written to the audit trail for actor-less (automatic) transitions
    WORKFLOW_SYSTEM_ACTOR = os.getenv("WORKFLOW_SYSTEM_ACTOR", "system")

    # Fraction of the SLA window below which a stage counts as "At Risk"
    WORKFLOW_SLA_AT_RISK_RATIO = float(os.getenv("WORKFLOW_SLA_AT_RISK_RATIO", "0.25"))
    # Per-scope overrides: {"<scope_id>": 0.5, ...}
    WORKFLOW_SLA_AT_RISK_RATIO_BY_SCOPE = _json_env("WORKFLOW_SLA_AT_RISK_RATIO_BY_SCOPE", {})

    # Bottleneck detection thresholds
    WORKFLOW_BOTTLENECK_WAIT_HOURS = float(os.getenv("WORKFLOW_BOTTLENECK_WAIT_HOURS", "72"))
    WORKFLOW_BOTTLENECK_PENDING_COUNT = int(os.getenv("WORKFLOW_BOTTLENECK_PENDING_COUNT", "10"))

    # Approver floor for approval stages that list no explicit roles
    WORKFLOW_DEFAULT_APPROVER_ROLE = os.getenv("WORKFLOW_DEFAULT_APPROVER_ROLE", "DepartmentHead")

    # SLA escalations go to the submitter plus every active user at or above this role
    WORKFLOW_ESCALATION_ROLE = os.getenv("WORKFLOW_ESCALATION_ROLE", "DepartmentManager")

    # Scheduler: loop tick and default job intervals
    WORKFLOW_SCHEDULER_TICK_SECONDS = float(os.getenv("WORKFLOW_SCHEDULER_TICK_SECONDS", "30"))
    WORKFLOW_AUTO_TRANSITION_INTERVAL_MINUTES = int(os.getenv("WORKFLOW_AUTO_TRANSITION_INTERVAL_MINUTES", "5"))
    WORKFLOW_SLA_SCAN_INTERVAL_MINUTES = int(os.getenv("WORKFLOW_SLA_SCAN_INTERVAL_MINUTES", "60"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )
    if not _raw_db_url:
        SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a single static connection; pool sizing does not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WORKFLOW_SLA_AT_RISK_RATIO = 0.25
    WORKFLOW_SLA_AT_RISK_RATIO_BY_SCOPE = {}


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
