# backend/sawmill/__init__.py
import logging

from flask import Flask

from .config import CANCELLATION_POLICIES, CASH_POSTING_MODES, Config
from .extensions import db, migrate


def _check_modes(app: Flask) -> None:
    mode = str(app.config.get("CASH_POSTING_MODE", "ATOMIC")).upper()
    if mode not in CASH_POSTING_MODES:
        raise RuntimeError(f"CASH_POSTING_MODE must be one of {CASH_POSTING_MODES}, got {mode!r}")
    policy = str(app.config.get("CANCELLATION_POLICY", "DELETE")).upper()
    if policy not in CANCELLATION_POLICIES:
        raise RuntimeError(f"CANCELLATION_POLICY must be one of {CANCELLATION_POLICIES}, got {policy!r}")
    app.config["CASH_POSTING_MODE"] = mode
    app.config["CANCELLATION_POLICY"] = policy


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app; the engine is built from them
    if config_overrides:
        app.config.update(config_overrides)
    _check_modes(app)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("sawmill").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.cash import cash_bp
    from .routes.sales import sales_bp
    from .routes.expenses import expenses_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(expenses_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
