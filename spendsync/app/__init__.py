"""
app/__init__.py: Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
Nothing is initialised at import time, so tests can build isolated app
instances and `flask db migrate` works without starting the server.

Responsibilities:
  1. Load configuration from config_by_name[config_name] (+ overrides)
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) and receipt storage
  4. Register all route blueprints under /api/v1
  5. Register global error handlers
  6. Serialise Decimal as string in every JSON response

Note on model imports:
  All model modules are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from spendsync.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str so monetary amounts keep their precision.

    Example: Decimal("10.50") -> "10.50" (not 10.5)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development", overrides: dict | None = None) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
        overrides:   Extra config values applied after the config class,
                     e.g. a per-test RECEIPT_STORAGE_DIR.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    from spendsync.app.extensions import db, ma
    from spendsync.app.storage import build_receipt_storage

    db.init_app(app)
    ma.init_app(app)
    app.extensions["receipt_storage"] = build_receipt_storage(app.config)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from spendsync.app.models import (  # noqa: F401
            expense,
            notification,
            project,
            project_member,
            receipt,
            refresh_token,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.info(
        "SpendSync started (config=%s, receipts=%s)",
        config_name,
        app.config.get("RECEIPT_STORAGE_BACKEND"),
    )
    return app


def _configure_logging(app: Flask) -> None:
    """Applies LOG_LEVEL to the app logger and the spendsync module loggers."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("spendsync")
    package_logger.setLevel(level)
    if not package_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so route files only specify the path relative
    to their resource.
    """
    from spendsync.app.routes.auth import auth_bp
    from spendsync.app.routes.expenses import expenses_bp
    from spendsync.app.routes.notifications import notifications_bp
    from spendsync.app.routes.projects import projects_bp
    from spendsync.app.routes.receipts import receipts_bp
    from spendsync.app.routes.share import share_bp
    from spendsync.app.routes.users import users_bp

    app.register_blueprint(auth_bp,          url_prefix="/api/v1/auth")
    # projects_bp owns /projects/... and /dashboard.
    app.register_blueprint(projects_bp,      url_prefix="/api/v1")
    app.register_blueprint(expenses_bp,      url_prefix="/api/v1/projects")
    app.register_blueprint(notifications_bp, url_prefix="/api/v1/notifications")
    app.register_blueprint(share_bp,         url_prefix="/api/v1/share")
    app.register_blueprint(users_bp,         url_prefix="/api/v1/users")

    if app.config.get("RECEIPT_STORAGE_BACKEND", "local") == "local":
        app.register_blueprint(
            receipts_bp,
            url_prefix=app.config.get("RECEIPT_BASE_URL", "/receipts"),
        )


def _first_validation_message(messages) -> tuple[str | None, str]:
    """
    Walks a marshmallow messages structure down to the first leaf.
    Returns (field path, message); nested list indexes are kept in the path,
    e.g. "members.1.contribution".
    """
    path: list[str] = []
    node = messages
    while True:
        if isinstance(node, dict):
            if not node:
                return None, "Invalid input."
            key, node = next(iter(node.items()))
            if key != "_schema":
                path.append(str(key))
        elif isinstance(node, list):
            if not node:
                return None, "Invalid value."
            node = node[0]
        else:
            return (".".join(path) or None), str(node)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

      AppError          -> structured JSON error envelope with its HTTP status
      ValidationError   -> MISSING_FIELD / INVALID_FIELD / registered code (400)
      SQLAlchemyError   -> rollback, WRITE_FAILURE (503)
      HTTPException     -> JSON envelope (413 becomes PAYLOAD_TOO_LARGE)
      Exception         -> INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from spendsync.app.errors import AppError, ErrorCode
    from spendsync.app.extensions import db
    from spendsync.app.storage import discard_pending_deletes

    known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        # Services only flush; drop whatever the failed request had pending,
        # including receipt files queued for removal.
        db.session.rollback()
        discard_pending_deletes(db.session, app.extensions["receipt_storage"])
        if error.http_status >= 500:
            app.logger.warning("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the FIRST schema error. A message that is itself a registered
        error code (e.g. INVALID_AMOUNT_PRECISION) becomes the response code.
        """
        field, raw_message = _first_validation_message(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error: SQLAlchemyError):
        db.session.rollback()
        discard_pending_deletes(db.session, app.extensions["receipt_storage"])
        app.logger.exception("Database write failed: %s", error)
        return jsonify({
            "error": {
                "code": ErrorCode.WRITE_FAILURE,
                "message": "The change could not be saved. Please try again.",
            }
        }), 503

    @app.errorhandler(RequestEntityTooLarge)
    def handle_payload_too_large(error: RequestEntityTooLarge):
        return jsonify({
            "error": {
                "code": ErrorCode.PAYLOAD_TOO_LARGE,
                "message": "The request body is larger than the upload limit.",
            }
        }), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({
            "error": {
                "code": (error.name or "HTTP_ERROR").upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        db.session.rollback()
        discard_pending_deletes(db.session, app.extensions["receipt_storage"])
        app.logger.exception("Unhandled exception: %s", error)
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development when DEBUG or
    TESTING is true.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """Default message for a ValidationError whose message is an error code."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amounts must have at most 2 decimal places.",
        "INVALID_PROJECT_TYPE": "project_type must be one of the project template names.",
        "DUPLICATE_MEMBER_EMAIL": "The same email appears more than once in members.",
    }
    return _messages.get(code, "Invalid input.")
