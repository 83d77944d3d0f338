# backend/praxis/__init__.py
from flask import Flask, request, jsonify

from .config import Config
from .errors import PraxisError
from .extensions import db, migrate, NOTIFIER_EXTENSION_KEY


def _engine_options(config) -> dict:
    """Bound every wait on the store by STORE_TIMEOUT_SECONDS."""
    timeout = config.get("STORE_TIMEOUT_SECONDS", 10)
    options = dict(config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", timeout)
        options["connect_args"] = connect_args
    else:
        options.setdefault("pool_timeout", timeout)
        options.setdefault("pool_pre_ping", True)
    return options


def create_app(config_object=None, *, notifier=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app.config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import build_notifier
    app.extensions[NOTIFIER_EXTENSION_KEY] = notifier or build_notifier(app.config)

    @app.errorhandler(PraxisError)
    def handle_praxis_error(error: PraxisError):
        return jsonify(error.to_dict()), error.http_status

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.documents import documents_bp
    from .routes.approvals import approvals_bp
    from .routes.client_approval import client_approval_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(client_approval_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
