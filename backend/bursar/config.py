# backend/bursar/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB file bursar.sqlite3 relative to the working directory
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///bursar.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Retry policy for units of work that hit lock/optimistic-version failures
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))

    # External fee-collection subsystem (read-only feed of settled payments)
    FEE_SOURCE_URL = os.environ.get("FEE_SOURCE_URL")
    FEE_SOURCE_TIMEOUT = float(os.environ.get("FEE_SOURCE_TIMEOUT", "10"))
    FEE_INCOME_ACCOUNT_CODE = os.environ.get("FEE_INCOME_ACCOUNT_CODE", "INC-001")
