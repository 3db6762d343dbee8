# backend/factory_orders/routes/system.py
"""
System health and version endpoints.

/health reports database reachability and whether the margin defaults are
seeded; missing defaults make the service "degraded" because pricing
writes will be refused until they are set.
"""

import platform
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Order
from ..services import margin_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_pricing_config() -> dict:
    try:
        missing = margin_service.load_margin_config().missing_keys
    except Exception:
        current_app.logger.exception("Pricing config health check failed")
        return {"status": "unhealthy", "error": "Config read failed"}
    if missing:
        return {"status": "degraded", "missing_config_keys": missing}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    pricing_health = (
        check_pricing_config()
        if database_health["status"] == "healthy"
        else {"status": "unhealthy", "error": "Database unavailable"}
    )

    checks = [database_health, pricing_health]
    if any(c["status"] == "unhealthy" for c in checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "pricing_config": pricing_health,
        },
    }
    return response, http_status


@system_bp.get("/version")
def version():
    return {
        "api_version": API_VERSION,
        "environment": "testing" if current_app.config.get("TESTING") else current_app.config.get("ENV", "production"),
        "python_version": platform.python_version(),
        "server_time": to_utc_z(utcnow()),
    }, 200
