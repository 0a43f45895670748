# backend/stationledger/config.py
from __future__ import annotations
import os


def _csv(value: str) -> frozenset[str]:
    return frozenset(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stationledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stationledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Currency stamped on new documents when the caller does not send one
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "PKR")

    # Tank status thresholds: critical at/below minimum_level, low below this fill %
    LOW_STOCK_FILL_PERCENT = int(os.environ.get("LOW_STOCK_FILL_PERCENT", "30"))

    # Roles that may act on every station (multi-station administrators)
    UNRESTRICTED_ROLES = _csv(os.environ.get("UNRESTRICTED_ROLES", "admin"))

    # Lock-contention retries for a rolled-back unit of work
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "3"))
    LOCK_RETRY_BACKOFF = float(os.environ.get("LOCK_RETRY_BACKOFF", "0.1"))

    # Default page size for stock movement history
    MOVEMENT_PAGE_SIZE = int(os.environ.get("MOVEMENT_PAGE_SIZE", "100"))

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = _csv(os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    ))
