# backend/salonbook/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.checkout import checkout_bp
    from .routes.invoices import credit_notes_bp, invoices_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(credit_notes_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
