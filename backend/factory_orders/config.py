# backend/factory_orders/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///factory_orders.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Comma-separated browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    )

    # Draft orders untouched for this many days are purged by the cleanup sweep
    DRAFT_RETENTION_DAYS = int(os.environ.get("DRAFT_RETENTION_DAYS", "15"))

    # Shared secret for cron callers of /api/cleanup/old-drafts (unset = staff only)
    CLEANUP_API_KEY = os.environ.get("CLEANUP_API_KEY")

    # Shared secret for the payment gateway calling /api/invoices/<id>/paid
    PAYMENT_WEBHOOK_API_KEY = os.environ.get("PAYMENT_WEBHOOK_API_KEY")

    # Audit entries outlive their targets unless explicitly purged with the draft
    CLEANUP_PURGE_AUDIT_ENTRIES = _env_bool("CLEANUP_PURGE_AUDIT_ENTRIES", False)

    DEFAULT_ORDER_PREFIX = os.environ.get("DEFAULT_ORDER_PREFIX", "ORD")

    # Values written by `flask config seed-defaults` when system_config is empty
    DEFAULT_MARGIN_PERCENTAGE = os.environ.get("DEFAULT_MARGIN_PERCENTAGE", "80")
    DEFAULT_SHIPPING_MARGIN_PERCENTAGE = os.environ.get("DEFAULT_SHIPPING_MARGIN_PERCENTAGE", "0")

    RECORD_REJECTED_TRANSITIONS = _env_bool("RECORD_REJECTED_TRANSITIONS", True)
