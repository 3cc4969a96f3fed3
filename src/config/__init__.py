# -*- coding: utf-8 -*-
"""
Application configuration.

Values are read from the environment when the module is imported; the app
factory copies them into ``app.config`` so tests can override per app.
"""
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payments
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_MOCK_MODE = _env_flag("STRIPE_MOCK_MODE")
    PAYMENT_PROVIDER_TIMEOUT = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT", "10"))
    DEFAULT_CURRENCY = os.getenv("STOREFRONT_CURRENCY", "USD")

    # Downloads
    DOWNLOAD_TOKEN_SECRET = os.getenv("DOWNLOAD_TOKEN_SECRET") or SECRET_KEY
    DOWNLOAD_TOKEN_TTL_SECONDS = int(os.getenv("DOWNLOAD_TOKEN_TTL_SECONDS", "300"))
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")
    STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "https://storage.example.com/files")

    # Cart
    CART_TTL_DAYS = int(os.getenv("CART_TTL_DAYS", "30"))

    # Infrastructure
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    STOREFRONT_ADMIN_TOKEN = os.getenv("STOREFRONT_ADMIN_TOKEN")
    CORS_ALLOWED_ORIGINS = os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000",
    )
