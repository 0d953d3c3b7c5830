"""
app/__init__.py — Flask application factory.

create_app(config_name) builds a configured app and initialises nothing at
import time, so tests can create isolated instances and Alembic can import
the models without starting a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging for the `biblebus` logger namespace
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app(); on
     SQLite, SQLAlchemy emits BEGIN itself so savepoints stay nested
  4. Register route blueprints under /api/v1 and the CLI command groups
  5. Register global error handlers (AppError → JSON, Exception → 500)

The background scheduler is NOT started here: start_scheduler(app) is
called by the server entry point (biblebus/wsgi.py) only, so CLI commands
and tests never spawn the maintenance thread.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask.logging import default_handler
from marshmallow import ValidationError
from sqlalchemy import event
from werkzeug.exceptions import HTTPException

from biblebus.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    from biblebus.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so SQLAlchemy's MetaData is populated for
    # create_all() and Alembic. Used for the side effect only.
    with app.app_context():
        from biblebus.app.models import group, membership, user  # noqa: F401
        if db.engine.dialect.name == "sqlite":
            _enable_sqlite_transactions(db.engine)

    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def start_scheduler(app: Flask) -> None:
    """
    Schedules the group maintenance job every CRON_INTERVAL_HOURS, with a
    first run immediately. No-op when SCHEDULER_ENABLED is false or the
    scheduler is already running in this process.
    """
    from biblebus.app.extensions import scheduler

    if not app.config.get("SCHEDULER_ENABLED") or scheduler.running:
        return

    scheduler.add_job(
        _run_group_maintenance,
        "interval",
        hours=app.config["CRON_INTERVAL_HOURS"],
        args=[app],
        id="group_maintenance",
        next_run_time=datetime.now(timezone.utc),
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    app.logger.info(
        "Group maintenance scheduled every %s hour(s)",
        app.config["CRON_INTERVAL_HOURS"],
    )


def _run_group_maintenance(app: Flask) -> None:
    """Scheduler job body: one transaction, rolled back and logged on failure."""
    from biblebus.app.extensions import db
    from biblebus.app.services import cron_service

    with app.app_context():
        try:
            cron_service.run_all_cron_jobs(db.session)
            db.session.commit()
        except Exception:
            db.session.rollback()
            app.logger.exception("Scheduled group maintenance failed")


def _enable_sqlite_transactions(engine) -> None:
    """
    Hands BEGIN over to SQLAlchemy on pysqlite. The driver opens no
    transaction before a SELECT on its own, so a SAVEPOINT would start one
    and its RELEASE would commit the membership row.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _configure_logging(app: Flask) -> None:
    """
    Sends every `biblebus.*` module logger through Flask's default handler
    at LOG_LEVEL. Done before app.logger is first touched so Flask does not
    attach a second handler to it.
    """
    level = app.config.get("LOG_LEVEL", "INFO")
    package_logger = logging.getLogger("biblebus")
    package_logger.setLevel(level)
    if default_handler not in package_logger.handlers:
        package_logger.addHandler(default_handler)
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """Registers all route blueprints under the /api/v1 prefix."""
    from biblebus.app.routes.admin import admin_bp
    from biblebus.app.routes.auth import auth_bp
    from biblebus.app.routes.groups import groups_bp

    app.register_blueprint(auth_bp,   url_prefix="/api/v1/auth")
    app.register_blueprint(groups_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(admin_bp,  url_prefix="/api/v1/admin")


def _register_cli(app: Flask) -> None:
    from biblebus.app.cli import groups_cli, users_cli

    app.cli.add_command(groups_cli)
    app.cli.add_command(users_cli)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with its HTTP status
      ValidationError → first marshmallow field error as MISSING_FIELD /
                        INVALID_FIELD (400)
      HTTPException   → werkzeug's status (404 unknown route, 405, ...)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from biblebus.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns only the FIRST field error: one error per response.
        marshmallow's "Missing data for required field." maps to MISSING_FIELD.
        """
        messages = error.messages  # e.g. {"start_date": ["Not a valid date."]}

        field = None
        message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict) and messages:
            field_name, field_errors = next(iter(messages.items()))
            field = field_name if field_name != "_schema" else None
            if isinstance(field_errors, list) and field_errors:
                message = str(field_errors[0])
            else:
                message = str(field_errors)
        elif isinstance(messages, list) and messages:
            message = str(messages[0])

        if message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for local development, when DEBUG or TESTING is set,
    so the frontend dev server on another port can call the API with
    Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if app.config.get("DEBUG") or app.config.get("TESTING"):
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        return response
