# backend/storefront/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Human-facing order numbers: <prefix><YYYYMMDD><NNNN>
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")

    # Abandonment sweep and guest cart expiry windows
    ABANDONED_CART_THRESHOLD_HOURS = int(os.environ.get("ABANDONED_CART_THRESHOLD_HOURS", "24"))
    GUEST_CART_RETENTION_DAYS = int(os.environ.get("GUEST_CART_RETENTION_DAYS", "30"))

    # Shared secrets presented by the admin console and the scheduler
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # Celery (notifications and scheduled cart maintenance)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/1")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
