"""
Precast Kanban backend
Flask Application Factory.

Usage:
    from precast import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from precast.config import config
from precast.core.exceptions import PrecastError
from precast.middleware.logging_config import configure_logging
from precast.middleware.rate_limiter import init_rate_limits
from precast.middleware.security_headers import init_security_headers
from precast.middleware.session_auth import init_session_auth
from precast.middleware.timing import init_request_timing
from precast.models import db
from precast.utils.errors import E, api_error

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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_error_handlers(app):
    @app.errorhandler(PrecastError)
    def _handle_precast_error(error):
        if error.status_code >= 500:
            logger.error("%s on %s %s: %s", type(error).__name__, request.method, request.path, error)
        return api_error(error.code, str(error), status=error.status_code, details=error.details or None)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.TRANSIENT, "Too many requests", status=429,
                         details={"retry_after": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None) or e
        logger.error("500 error on %s %s: %s", request.method, request.path, original,
                     exc_info=original if isinstance(original, BaseException) else None)
        return api_error(E.INTERNAL, "Internal server error")


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
    app.config.from_object(config[config_name]())

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(app.root_path), "migrations"))

    init_request_timing(app)
    # session auth runs before the limiter so limits key on the user
    init_session_auth(app)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_security_headers(app)

    from precast.models import auth as _auth_models                # noqa: F401
    from precast.models import project as _project_models          # noqa: F401
    from precast.models import production as _production_models    # noqa: F401
    from precast.models import qc as _qc_models                    # noqa: F401
    from precast.models import stock as _stock_models              # noqa: F401
    from precast.models import notification as _notification_models  # noqa: F401

    if app.config.get("AUTO_CREATE_SCHEMA"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.debug("db.create_all() completed")

    from precast.blueprints.activity_bp import activity_bp
    from precast.blueprints.health_bp import health_bp
    from precast.blueprints.notification_bp import notification_bp
    from precast.blueprints.project_bp import project_bp
    from precast.blueprints.stock_bp import stock_bp
    from precast.blueprints.task_bp import task_bp

    app.register_blueprint(activity_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
