# backend/pos_returns/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos_returns.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos_returns.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Return policy defaults (per-store StoreSetting rows override these).
    # Unset means every return needs a supervisor.
    RETURNS_ALWAYS_REQUIRE_SUPERVISOR = _env_bool("RETURNS_ALWAYS_REQUIRE_SUPERVISOR", True)
    # Refunds at or above this amount need a supervisor even when the flag is off.
    RETURNS_APPROVAL_THRESHOLD_CENTS = _env_int("RETURNS_APPROVAL_THRESHOLD_CENTS")
    RETURNS_ALLOWED_REFUND_METHODS = tuple(
        m.strip()
        for m in os.environ.get(
            "RETURNS_ALLOWED_REFUND_METHODS",
            "cash,card,mobile_wallet,store_credit,original_method",
        ).split(",")
        if m.strip()
    )
