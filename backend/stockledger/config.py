# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Business defaults used until a business saves its own notification settings
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    LOW_STOCK_CRITICAL_THRESHOLD = int(os.environ.get("LOW_STOCK_CRITICAL_THRESHOLD", "5"))

    # Minimum gap between two alert batches for the same business
    LOW_STOCK_ALERT_INTERVAL_SECONDS = int(os.environ.get("LOW_STOCK_ALERT_INTERVAL_SECONDS", "300"))

    # Manual adjustments may drive stock negative (warning only) unless disabled
    ALLOW_NEGATIVE_ADJUSTMENTS = _env_bool("ALLOW_NEGATIVE_ADJUSTMENTS", True)

    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.1"))

    # Object with send_low_stock_alert(business, result); None logs the batch
    ALERT_DISPATCHER = None
