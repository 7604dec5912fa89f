"""
Systems Tracker
Flask Application Factory.

Usage:
    from tracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import engine as _sa_engine, event as _sa_event

from tracker.config import config
from tracker.core.exceptions import (
    InvalidQueryError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from tracker.middleware.jwt_auth import init_jwt_middleware
from tracker.middleware.logging_config import configure_logging
from tracker.middleware.rate_limiter import init_rate_limits
from tracker.middleware.timing import init_request_timing
from tracker.models import db
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-endpoint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware ──────────────────────────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from tracker.models import audit as _audit_models           # noqa: F401
    from tracker.models import auth as _auth_models             # noqa: F401
    from tracker.models import hierarchy as _hierarchy_models   # noqa: F401
    from tracker.models import task as _task_models             # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from tracker.blueprints import register_blueprints
    register_blueprints(app)

    # ── Rate limits (needs registered endpoints) ─────────────────────────
    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    from tracker.cli import register_cli
    register_cli(app)

    _register_error_handlers(app)
    return app


def _register_error_handlers(app):
    from tracker.services.user_service import UserServiceError

    @app.errorhandler(ValidationError)
    def validation_error(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details, old_input=e.old_input)

    @app.errorhandler(NotFoundError)
    def resource_not_found(e):
        return api_error(E.NOT_FOUND, f"{e.resource} not found.")

    @app.errorhandler(InvalidQueryError)
    def invalid_query(e):
        return api_error(E.INVALID_QUERY, str(e), details={"allowed": e.allowed} if e.allowed else None)

    @app.errorhandler(TransactionError)
    def transaction_failed(e):
        return api_error(E.TRANSACTION, str(e), old_input=e.old_input)

    @app.errorhandler(UserServiceError)
    def user_service_error(e):
        code = {401: E.UNAUTHENTICATED, 403: E.FORBIDDEN, 404: E.NOT_FOUND}.get(
            e.status_code, E.VALIDATION_REQUIRED,
        )
        return api_error(code, e.message, status=e.status_code)

    # ── HTTP errors ──────────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(429)
    def too_many_requests(e):
        return api_error(E.RATE_LIMITED, f"Too many requests: {e.description}")

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
