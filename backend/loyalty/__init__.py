# backend/loyalty/__init__.py
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import LedgerError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    lock_timeout = float(app.config["LEDGER_LOCK_TIMEOUT_SECONDS"])
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(engine_options.get("connect_args") or {})
        connect_args.setdefault("timeout", lock_timeout)
        engine_options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.concurrency import configure_engine
    with app.app_context():
        configure_engine(db.engine, lock_timeout_seconds=lock_timeout)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.transactions import transactions_bp
    from .routes.users import users_bp
    from .routes.events import events_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(events_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("Ledger failure: %s: %s", type(exc).__name__, exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "code": "InternalError", "retryable": False}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
