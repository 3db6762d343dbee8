# backend/factory_orders/routes/routing.py
"""
Product routing API Routes

- POST   /api/products/:id/route   - Route to admin / manufacturer / client (or null)
- POST   /api/products/:id/lock    - Freeze manufacturer-facing prices
- POST   /api/products/:id/unlock  - Release the lock
- DELETE /api/products/:id         - Soft delete (invoice protected)
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import OrderEngineError
from ..services import cleanup_service, routing_service
from ..decorators import require_actor, require_capability
from .common import error_response, json_body


routing_bp = Blueprint("routing", __name__, url_prefix="/api/products")


@routing_bp.post("/<int:product_id>/route")
@require_actor
@require_capability("ROUTE_PRODUCTS")
def route_product_route(product_id: int):
    """
    Request body: {"routed_to": "client"}

    Error responses:
        409: unresolved_pricing when routing to client without a client price
    """
    try:
        data = json_body()
        product = routing_service.route_product(product_id, data.get("routed_to"), g.actor)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to route product")
        return jsonify({"error": "Internal server error"}), 500


@routing_bp.post("/<int:product_id>/lock")
@require_actor
@require_capability("LOCK_PRODUCTS")
def lock_product_route(product_id: int):
    try:
        product = routing_service.lock_product(product_id, g.actor)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to lock product")
        return jsonify({"error": "Internal server error"}), 500


@routing_bp.post("/<int:product_id>/unlock")
@require_actor
@require_capability("LOCK_PRODUCTS")
def unlock_product_route(product_id: int):
    try:
        product = routing_service.unlock_product(product_id, g.actor)
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to unlock product")
        return jsonify({"error": "Internal server error"}), 500


@routing_bp.delete("/<int:product_id>")
@require_actor
@require_capability("DELETE_PRODUCTS")
def delete_product_route(product_id: int):
    """
    Soft-delete a product. Request body (optional): {"reason": "..."}

    Error responses:
        409: invoice_protected when the product is invoiced and the role
             lacks DELETE_INVOICED_PRODUCTS
    """
    try:
        data = json_body()
        product = cleanup_service.soft_delete_product(product_id, g.actor, data.get("reason"))
        return jsonify({"product": product.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
