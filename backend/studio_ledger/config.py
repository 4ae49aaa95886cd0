# backend/studio_ledger/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/studio_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///studio_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "CHF")

    # Optimistic-concurrency retries for ledger writes
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)
    LEDGER_RETRY_BACKOFF_SECONDS = _env_float("LEDGER_RETRY_BACKOFF_SECONDS", 0.05)

    # Cash handling (Swiss francs: smallest coin is 0.05)
    CASH_ROUNDING_INCREMENT_CENTS = _env_int("CASH_ROUNDING_INCREMENT_CENTS", 5)
    CASH_DENOMINATIONS = (
        "1000", "200", "100", "50", "20", "10",
        "5", "2", "1", "0.50", "0.20", "0.10", "0.05",
    )

    GIFT_CARD_CODE_LENGTH = _env_int("GIFT_CARD_CODE_LENGTH", 12)
    GIFT_CARD_CODE_MAX_ATTEMPTS = _env_int("GIFT_CARD_CODE_MAX_ATTEMPTS", 10)

    RECONCILIATION_AMOUNT_TOLERANCE_CENTS = _env_int("RECONCILIATION_AMOUNT_TOLERANCE_CENTS", 1)
    RECONCILIATION_DATE_WINDOW_DAYS = _env_int("RECONCILIATION_DATE_WINDOW_DAYS", 5)
    RECONCILIATION_POSSIBLE_MATCH_CEILING = _env_float("RECONCILIATION_POSSIBLE_MATCH_CEILING", 0.9)

    # Back-office origins allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",") if o.strip()
    )
