# backend/sawmill/config.py
from __future__ import annotations
import os


CASH_POSTING_MODES = ("ATOMIC", "DEFERRED")
CANCELLATION_POLICIES = ("DELETE", "FLAG")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/sawmill.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///sawmill.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bounds for every mutating unit of work (milliseconds).
    # MAX_WAIT: how long to wait for the write lock before giving up.
    # TIMEOUT: how long the unit may run before it is rolled back.
    UNIT_OF_WORK_MAX_WAIT_MS = int(os.environ.get("UNIT_OF_WORK_MAX_WAIT_MS", "5000"))
    UNIT_OF_WORK_TIMEOUT_MS = int(os.environ.get("UNIT_OF_WORK_TIMEOUT_MS", "20000"))

    # ATOMIC: cash income is written inside the sale's unit of work.
    # DEFERRED: written after commit through the cash posting outbox.
    CASH_POSTING_MODE = os.environ.get("CASH_POSTING_MODE", "ATOMIC").upper()

    # DELETE: cancelled sales/expenses are removed after their effects are reversed.
    # FLAG: they are kept with status CANCELLED.
    CANCELLATION_POLICY = os.environ.get("CANCELLATION_POLICY", "DELETE").upper()

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Callable(request) -> Principal | None. None uses the header resolver.
    PRINCIPAL_RESOLVER = None
