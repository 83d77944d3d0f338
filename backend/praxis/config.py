# backend/praxis/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/praxis.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///praxis.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound (seconds) on waiting for the store: pool checkout and SQLite busy lock
    STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "10"))

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "EUR")

    # Client approval links
    CLIENT_APPROVAL_TOKEN_TTL_DAYS = int(os.environ.get("CLIENT_APPROVAL_TOKEN_TTL_DAYS", "30"))
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")

    # Outbound notifications: "log" (default) or "smtp"
    NOTIFIER_BACKEND = os.environ.get("NOTIFIER_BACKEND", "log")
    NOTIFIER_TIMEOUT_SECONDS = float(os.environ.get("NOTIFIER_TIMEOUT_SECONDS", "10"))
    SMTP_HOST = os.environ.get("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "25"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", False)
    MAIL_FROM = os.environ.get("MAIL_FROM", "no-reply@praxis.local")

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
        "http://127.0.0.1:4173",
    }


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    NOTIFIER_BACKEND = "log"
    STORE_TIMEOUT_SECONDS = 2.0
