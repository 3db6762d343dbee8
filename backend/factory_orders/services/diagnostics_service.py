# Overview: Service-layer operations for diagnostics; read-only pricing self-check and the repair action.

from __future__ import annotations

from ..extensions import db
from ..models import OrderMargin, SystemConfig
from ..permissions import Actor
from . import audit_service, margin_service


def run_diagnostics(*, sample_size: int = 10) -> dict:
    """
    Snapshot of pricing health: config rows and gaps, a sample of order
    margins, products priced by the manufacturer but missing a client price,
    drift between persisted and resolvable prices, and recent audit entries.
    """
    config = margin_service.load_margin_config()
    config_rows = db.session.query(SystemConfig).order_by(SystemConfig.config_key).all()
    margins = db.session.query(OrderMargin).order_by(OrderMargin.id.desc()).limit(sample_size).all()
    missing = margin_service.find_products_missing_client_price()
    drift = margin_service.find_margin_drift()
    recent, _total = audit_service.list_entries(limit=sample_size)

    healthy = not config.missing_keys and not missing and not drift
    return {
        "healthy": healthy,
        "system_config": [row.to_dict() for row in config_rows],
        "missing_config_keys": config.missing_keys,
        "order_margins_sample": [m.to_dict() for m in margins],
        "products_missing_client_price": [
            {
                "product_id": p.id,
                "order_id": p.order_id,
                "product_order_number": p.product_order_number,
                "manufacturer_price_cents": p.manufacturer_price_cents,
            }
            for p in missing
        ],
        "margin_drift": drift,
        "recent_audit_entries": [e.to_dict() for e in recent],
    }


def run_margin_repair(actor: Actor) -> dict:
    """Seed missing defaults, then repair every order. Safe to repeat."""
    seeded = margin_service.seed_system_defaults(actor)
    report = margin_service.repair_margins(actor=actor)
    return {"seeded_config_keys": seeded, "repair": report.to_dict(), "status": report.status}
