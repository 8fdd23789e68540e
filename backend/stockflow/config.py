# backend/stockflow/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # DATABASE_URL in production (postgres); local SQLite file otherwise
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stock health policy (overview classifier)
    STOCK_LOW_THRESHOLD = _env_int("STOCK_LOW_THRESHOLD", 5)
    STOCK_SLOW_THRESHOLD = _env_int("STOCK_SLOW_THRESHOLD", 20)
    SALES_WINDOW_DAYS = _env_int("SALES_WINDOW_DAYS", 30)

    # ask | always | never
    CONVERSION_LOSS_POLICY = os.environ.get("CONVERSION_LOSS_POLICY", "ask").strip().lower()

    # Optimistic-lock retries for stock writes
    RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
