"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and `flask db migrate` works without a running server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register the `flask settlements` CLI group
  7. Serialise Decimal as string (money never travels as a JSON number)

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str so jsonify() never emits a float.

    Example: Decimal("10.50") → "10.50" (not 10.5)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            expense,
            expense_extra,
            expense_participant,
            line_item,
            membership,
            settlement,
            transfer,
            trip,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    from backend.app.cli import settlements_cli
    app.cli.add_command(settlements_cli)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the app logger and to the backend.app.* module loggers.

    Services log through logging.getLogger(__name__), so the level is set on
    the package logger and handlers are shared with Flask's default handler.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)

    package_logger = logging.getLogger("backend.app")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")
        )
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from backend.app.routes.expenses import expenses_bp
    from backend.app.routes.settlements import settlements_bp
    from backend.app.routes.trips import trips_bp
    from backend.app.routes.users import users_bp

    app.register_blueprint(users_bp,       url_prefix="/api/v1/users")
    app.register_blueprint(trips_bp,       url_prefix="/api/v1/trips")
    # expenses_bp owns BOTH /trips/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/trips")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors, first error only (400)
      Exception       → generic INTERNAL_ERROR (500); traceback logged, never returned
    """
    from backend.app.errors import AppError, ErrorCode

    known_codes = set(vars(ErrorCode).values())

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Routes never catch AppError — they let it propagate here.

        Server-side failures (5xx) are logged; client errors are not.
        """
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the FIRST field error. If the message is itself a registered
        error code it is used as the code, otherwise INVALID_FIELD/MISSING_FIELD.
        """
        messages = error.messages  # e.g. {"amount": ["INVALID_AMOUNT_PRECISION"]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict) and messages:
            field_name, field_errors = next(iter(messages.items()))
            field = field_name if field_name != "_schema" else None
            # nested schemas produce {index: {field: [..]}} shapes
            while isinstance(field_errors, dict) and field_errors:
                inner_name, field_errors = next(iter(field_errors.items()))
                if not isinstance(inner_name, int) and inner_name != "_schema":
                    field = inner_name
            if isinstance(field_errors, list):
                raw_message = field_errors[0] if field_errors else "Invalid value."
            else:
                raw_message = str(field_errors)
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Stack traces never leave the server: the traceback goes to the log,
        the client gets a generic INTERNAL_ERROR.
        """
        # Let Flask's own HTTP errors (404 for unknown routes, 405) through.
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

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
    Adds CORS headers for browser-based local development.

    Enabled only when DEBUG or TESTING is true.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Human-readable default message for a code raised as a ValidationError
    message inside a schema (e.g. INVALID_AMOUNT_PRECISION).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount has more decimal places than the currency allows.",
        "INVALID_CURRENCY": "Unsupported currency code.",
        "INVALID_SPLIT_KIND": "split_kind must be 'equal', 'weighted' or 'itemized'.",
        "DUPLICATE_PARTICIPANT": "The same user_id appears more than once.",
        "SPLIT_NO_PARTICIPANTS": "An expense needs at least one participant.",
        "SPLIT_INVALID_WEIGHT": "Every weight must be greater than zero.",
        "SPLIT_INVALID_ITEM_SHARES": "Item shares must be in (0, 1] and sum to 1.",
        "SPLIT_INVALID_ITEM": "Line item data is invalid.",
    }
    return _messages.get(code, "Invalid input.")
