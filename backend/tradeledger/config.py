# backend/tradeledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tradeledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tradeledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Two-bucket tax model: percentage rates for tax codes A and B.
    # Tax code "None" is always exempt.
    TAX_RATE_A = os.environ.get("TAX_RATE_A", "0")
    TAX_RATE_B = os.environ.get("TAX_RATE_B", "18")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "FRW")

    # Due date offset applied when a quotation is converted without one
    INVOICE_DEFAULT_DUE_DAYS = int(os.environ.get("INVOICE_DEFAULT_DUE_DAYS", "30"))

    # Bounded retry for optimistic-lock / lock-timeout conflicts
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
    TRANSACTION_RETRY_BACKOFF = float(os.environ.get("TRANSACTION_RETRY_BACKOFF", "0.05"))
