# backend/atlaspos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/atlaspos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///atlaspos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Inventory guards. Negative balances are refused unless explicitly allowed;
    # variants with tracking disabled are skipped unless the second flag is set
    # (a warning is logged when that happens).
    INVENTORY_ALLOW_NEGATIVE_STOCK = _env_flag("INVENTORY_ALLOW_NEGATIVE_STOCK", False)
    INVENTORY_ALLOW_ADJUST_WHEN_TRACKING_DISABLED = _env_flag(
        "INVENTORY_ALLOW_ADJUST_WHEN_TRACKING_DISABLED", False
    )

    # Order capture
    ORDER_PAYMENT_METHODS = _env_list("ORDER_PAYMENT_METHODS", "cash,card")
    LOYALTY_POINTS_ENABLED = _env_flag("LOYALTY_POINTS_ENABLED", True)
