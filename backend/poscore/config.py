# backend/poscore/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/poscore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///poscore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Defaults used when the settings row is first created
    POS_ORDER_PREFIX = os.environ.get("POS_ORDER_PREFIX", "POS-")
    POS_TAX_RATE_BPS = int(os.environ.get("POS_TAX_RATE_BPS", "1500"))  # Jamaica GCT 15%
    POS_DEFAULT_CUSTOMER_NAME = os.environ.get("POS_DEFAULT_CUSTOMER_NAME", "Walk-in")
    POS_CURRENCY = os.environ.get("POS_CURRENCY", "JMD")
    POS_REQUIRE_OPEN_SESSION = _env_bool("POS_REQUIRE_OPEN_SESSION", True)

    # Attempts for run_with_retry on lock/version conflicts
    POS_RETRY_ATTEMPTS = int(os.environ.get("POS_RETRY_ATTEMPTS", "3"))
