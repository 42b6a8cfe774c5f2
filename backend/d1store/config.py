# backend/d1store/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key (signs the session cookie)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/d1store.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///d1store.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie (role claim only)
    SESSION_COOKIE_NAME = "d1_session"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", 60 * 60 * 8))
    PERMANENT_SESSION_LIFETIME = SESSION_TTL_SECONDS

    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@123")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "123")
    ADMIN_DISPLAY_NAME = os.environ.get("ADMIN_DISPLAY_NAME", "Admin")
    DISPATCH_ADMIN_EMAIL = os.environ.get("DISPATCH_ADMIN_EMAIL", "dispatchAdmin@123")
    DISPATCH_ADMIN_PASSWORD = os.environ.get("DISPATCH_ADMIN_PASSWORD", "123")
    DISPATCH_ADMIN_DISPLAY_NAME = os.environ.get("DISPATCH_ADMIN_DISPLAY_NAME", "Dispatch Admin")

    # Uniform request policy
    UNIFORM_REQUEST_COOLDOWN_HOURS = int(os.environ.get("UNIFORM_REQUEST_COOLDOWN_HOURS", 24))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", 5))
    TRACKING_ID_PREFIX = os.environ.get("TRACKING_ID_PREFIX", "D1")
    TRACKING_ID_MAX_ATTEMPTS = 5
    CREATE_DELIVERY_RECORDS = _env_bool("CREATE_DELIVERY_RECORDS", True)

    # Comma-separated browser origins allowed to call the API with credentials
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",") if o.strip()
    )
