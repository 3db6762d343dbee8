# backend/factory_orders/routes/pricing.py
"""
Pricing API Routes

- PUT /api/products/:id/manufacturer-price   - Manufacturer unit price (lock enforced)
- PUT /api/products/:id/shipping-prices      - Manufacturer shipping prices (lock enforced)
- PUT /api/items/:id/price-override          - Variant-level manufacturer price (lock enforced)
- PUT /api/orders/:id/sample-fee             - Manufacturer sample fee
- PUT /api/products/:id/margin-override      - Per-product margin override
- PUT /api/orders/:id/margin                 - Order-level margins
- PUT /api/system-config/:key                - Process-wide default (triggers margin repair)

Amounts are dollars ("12.50"); margins are percentages ("80"). Sending
null clears an override so the next tier applies.
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import OrderEngineError
from ..services import margin_service, order_service, routing_service
from ..decorators import require_actor, require_capability
from .common import error_response, json_body, report_status


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api")


def _present(data: dict, mapping: dict) -> dict:
    """Keyword arguments for the body keys actually sent (null included)."""
    return {kwarg: data[key] for key, kwarg in mapping.items() if key in data}


@pricing_bp.put("/products/<int:product_id>/manufacturer-price")
@require_actor
@require_capability("EDIT_MANUFACTURER_PRICING")
def set_manufacturer_price_route(product_id: int):
    """
    Request body: {"price": "10.00"}

    Error responses:
        423: product is locked
        503: margin defaults missing; the price is not saved
    """
    try:
        data = json_body()
        product = routing_service.set_manufacturer_price(product_id, data.get("price"), g.actor)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set manufacturer price")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/products/<int:product_id>/shipping-prices")
@require_actor
@require_capability("EDIT_MANUFACTURER_PRICING")
def set_shipping_prices_route(product_id: int):
    try:
        data = json_body()
        kwargs = _present(data, {"air": "air", "boat": "boat", "selected_method": "selected_method"})
        product = routing_service.set_shipping_prices(product_id, g.actor, **kwargs)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set shipping prices")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/items/<int:item_id>/price-override")
@require_actor
@require_capability("EDIT_MANUFACTURER_PRICING")
def set_item_price_override_route(item_id: int):
    try:
        data = json_body()
        item = order_service.set_item_price_override(item_id, data.get("price"), g.actor)
        return jsonify({"item": item.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set item price override")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/orders/<int:order_id>/sample-fee")
@require_actor
@require_capability("EDIT_MANUFACTURER_PRICING")
def set_sample_fee_route(order_id: int):
    try:
        data = json_body()
        order = order_service.set_sample_fee(order_id, data.get("fee"), g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set sample fee")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/products/<int:product_id>/margin-override")
@require_actor
@require_capability("MANAGE_MARGINS")
def set_product_margin_route(product_id: int):
    """Request body: {"margin_percentage": "50", "shipping_margin_percentage": null}"""
    try:
        data = json_body()
        kwargs = _present(data, {"margin_percentage": "margin", "shipping_margin_percentage": "shipping_margin"})
        product = margin_service.set_product_margin_override(product_id, g.actor, **kwargs)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set product margin override")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/orders/<int:order_id>/margin")
@require_actor
@require_capability("MANAGE_MARGINS")
def set_order_margin_route(order_id: int):
    try:
        data = json_body()
        kwargs = _present(data, {"margin_percentage": "margin", "shipping_margin_percentage": "shipping_margin"})
        margin = margin_service.set_order_margin(order_id, g.actor, **kwargs)
        return jsonify({"order_margin": margin.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set order margin")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/system-config/<string:key>")
@require_actor
@require_capability("MANAGE_SYSTEM_CONFIG")
def set_system_config_route(key: str):
    """
    Request body: {"value": "75"}

    Margin defaults apply retroactively, so the response carries the repair
    report (207 when some orders could not be repaired).
    """
    try:
        data = json_body()
        row, report = margin_service.set_system_config(key, data.get("value"), g.actor)
        payload = {"config": row.to_dict()}
        if report is None:
            return jsonify(payload), 200
        payload["repair"] = report.to_dict()
        return jsonify(payload), report_status(report.status)
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set system config")
        return jsonify({"error": "Internal server error"}), 500
