# -*- coding: utf-8 -*-
import os
from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from src.database import db
from src.config import Config

# Observability imports
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import init_logging

from src.middleware.errors import register_error_handlers
from src.services.payments import init_payment_backend
from src.services.token_store import TokenStore
from src.services.idempotency import IdempotencyService
import src.models  # noqa: F401  register tables for create_all


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _migrate_db(app):
    """Run Alembic migrations to head using the app's DB URL."""
    from pathlib import Path
    from alembic import command
    from alembic.config import Config as AlembicConfig

    BASE_DIR = Path(__file__).resolve().parent.parent
    cfg = AlembicConfig()  # in-memory config, avoid alembic.ini dependency
    cfg.set_main_option("script_location", str(BASE_DIR / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])

    command.upgrade(cfg, "head")
    app.logger.info("Database migrations applied successfully")


def _database_url() -> str:
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_path = os.path.join(
            os.path.dirname(__file__),
            "..",
            "instance",
            "storefront.db")
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
        return f"sqlite:///{db_path}"
    return _normalize_db_url(db_url)


def create_app(test_config: dict = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.from_object(Config)
    app.config["JWT_SECRET_KEY"] = (
        os.environ.get("STOREFRONT_JWT_SECRET")
        or app.config["SECRET_KEY"]
    )
    app.config["JWT_ALGORITHM"] = "HS256"
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]

    # --- DB config ---
    app.config["SQLALCHEMY_DATABASE_URI"] = _database_url()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    JWTManager(app)

    # --- CORS ---
    cors_origins = [
        origin.strip()
        for origin in app.config["CORS_ALLOWED_ORIGINS"].split(",")
        if origin.strip()
    ]
    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": [
                "Content-Type", "Authorization", "Idempotency-Key",
                "X-User-ID", "X-User-Email", "X-User-Name",
            ],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    register_error_handlers(app)

    # --- Payments and Redis-backed stores ---
    init_payment_backend(app, backend=app.config.get("PAYMENT_BACKEND"))
    app.extensions["token_store"] = app.config.get("TOKEN_STORE") or TokenStore()
    app.extensions["idempotency"] = (
        app.config.get("IDEMPOTENCY_SERVICE") or IdempotencyService()
    )

    # --- Mount blueprints ---
    from src.routes import (
        cart, checkout, downloads, account, products, admin,
        stripe_webhooks, health,
    )
    app.register_blueprint(cart.cart_bp)
    app.register_blueprint(checkout.checkout_bp)
    app.register_blueprint(downloads.downloads_bp)
    app.register_blueprint(account.account_bp)
    app.register_blueprint(products.products_bp)
    app.register_blueprint(admin.admin_bp)
    app.register_blueprint(stripe_webhooks.stripe_webhooks_bp)
    app.register_blueprint(health.health_bp)

    # --- DB init ---
    with app.app_context():
        # Only auto-create tables in testing or if explicitly enabled
        is_testing = app.config.get("TESTING") or os.getenv("TESTING", "false").lower() == "true"
        if is_testing or os.getenv("STOREFRONT_DB_AUTOCREATE", "false").lower() == "true":
            db.create_all()

        # Skip migrations in test mode since db.create_all() already creates correct schema
        if not is_testing and os.getenv("STOREFRONT_DB_MIGRATE_ON_START", "false").lower() == "true":
            try:
                _migrate_db(app)
            except Exception as e:
                app.logger.error(f"Migration failed: {e}")
                raise

    return app
