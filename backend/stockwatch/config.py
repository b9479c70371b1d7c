# backend/stockwatch/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockwatch.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockwatch.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # "main" is the only location used by the current front end
    DEFAULT_LOCATION_ID = os.environ.get("DEFAULT_LOCATION_ID", "main")

    # "sync": evaluate alerts inline after the stock commit
    # "queue": enqueue an ALERT_REQUEST and let the consumer evaluate it
    ALERT_DISPATCH_MODE = os.environ.get("ALERT_DISPATCH_MODE", "sync")

    # "conditional": unique active_key column guards the one-NEW-alert-per-product rule
    # "best_effort": plain check-then-act, repaired by reconciliation
    ALERT_DEDUP_STRATEGY = os.environ.get("ALERT_DEDUP_STRATEGY", "conditional")

    RECONCILE_MISSING_INVENTORY_AS_ZERO = _env_bool("RECONCILE_MISSING_INVENTORY_AS_ZERO")

    QUEUE_VISIBILITY_TIMEOUT_SECONDS = int(os.environ.get("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "60"))
    QUEUE_MAX_RECEIVES = int(os.environ.get("QUEUE_MAX_RECEIVES", "5"))
    QUEUE_DEDUP_WINDOW_SECONDS = int(os.environ.get("QUEUE_DEDUP_WINDOW_SECONDS", "300"))
    QUEUE_BATCH_SIZE = int(os.environ.get("QUEUE_BATCH_SIZE", "10"))
    QUEUE_RETRY_DELAY_SECONDS = int(os.environ.get("QUEUE_RETRY_DELAY_SECONDS", "30"))

    # Injected clock (see time_utils); None means the system clock
    CLOCK = None
