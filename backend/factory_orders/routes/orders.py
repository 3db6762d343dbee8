# backend/factory_orders/routes/orders.py
"""
Order API Routes

- POST /api/orders                          - Create a draft order
- GET  /api/orders/:id                      - Order with active products and items
- POST /api/orders/:id/products             - Add a product line
- POST /api/products/:id/items              - Add a variant line
- PUT  /api/items/:id/quantity              - Change a variant quantity
- PUT  /api/items/:id/approval              - Admin/manufacturer approval on a variant
- POST /api/orders/:id/transition           - Move the order to another status
- GET  /api/orders/:id/totals               - Totals for ?audience=client|manufacturer
- POST /api/orders/:id/sample/route         - Route the sample request
- PUT  /api/orders/:id/sample/approval      - Admin/client sample approval

SECURITY:
- All routes require a forwarded identity (see decorators.require_actor)
- The acting user is always g.actor, never a field of the request body
"""

from flask import Blueprint, jsonify, g, current_app, request

from ..errors import OrderEngineError, PermissionDeniedError
from ..models.orders import AUDIENCE_MANUFACTURER
from ..permissions import Role, has_capability
from ..services import order_service, status_service
from ..decorators import require_actor, require_capability
from .common import error_response, json_body


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


@orders_bp.post("/orders")
@require_actor
@require_capability("CREATE_ORDERS")
def create_order_route():
    """
    Create a draft order.

    Request body:
        {"client_id": 1, "manufacturer_id": 2, "sample_required": false, "sample_fee": "25.00"}
    """
    try:
        data = json_body()
        order = order_service.create_order(
            data.get("client_id"),
            data.get("manufacturer_id"),
            g.actor,
            sample_required=bool(data.get("sample_required", False)),
            sample_fee=data.get("sample_fee"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        data = order.to_dict(include_products=True)
        data["product_counts"] = order_service.product_counts(order)
        # Clients never see manufacturer-facing prices
        if g.actor.role == Role.CLIENT:
            for product in data["products"]:
                for key in ("manufacturer_price_cents", "shipping_air_price_cents", "shipping_boat_price_cents"):
                    product.pop(key, None)
            data.pop("sample_fee_cents", None)
        return jsonify({"order": data}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/orders/<int:order_id>/products")
@require_actor
@require_capability("EDIT_ORDERS")
def add_product_route(order_id: int):
    try:
        data = json_body()
        product = order_service.add_product(order_id, g.actor, description=data.get("description"))
        return jsonify({"product": product.to_dict()}), 201
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add product")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/products/<int:product_id>/items")
@require_actor
@require_capability("EDIT_ORDERS")
def add_item_route(product_id: int):
    try:
        data = json_body()
        item = order_service.add_item(
            product_id,
            g.actor,
            variant_combo=data.get("variant_combo"),
            quantity=data.get("quantity", 0),
            notes=data.get("notes"),
        )
        return jsonify({"item": item.to_dict()}), 201
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/items/<int:item_id>/quantity")
@require_actor
@require_capability("EDIT_ORDERS")
def update_item_quantity_route(item_id: int):
    try:
        data = json_body()
        item = order_service.update_item_quantity(item_id, data.get("quantity"), g.actor)
        return jsonify({"item": item.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update item quantity")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/items/<int:item_id>/approval")
@require_actor
def set_item_approval_route(item_id: int):
    """Request body: {"side": "admin"|"manufacturer", "status": "approved"|"rejected"|"pending"}"""
    try:
        data = json_body()
        item = order_service.set_item_approval(item_id, data.get("side"), data.get("status"), g.actor)
        return jsonify({"item": item.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set item approval")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/orders/<int:order_id>/transition")
@require_actor
def transition_order_route(order_id: int):
    """
    Move an order to another status.

    Request body:
        {"status": "submitted_to_manufacturer", "expected_status": "draft"}

    Error responses:
        400: unknown status
        404: order not found
        409: refused; `reason` is invalid_transition, permission_denied,
             unresolved_pricing or stale_state
        503: margin defaults missing while entering a pricing state
    """
    try:
        data = json_body()
        order = status_service.transition_order(
            order_id,
            data.get("status"),
            g.actor,
            expected_status=data.get("expected_status"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/<int:order_id>/totals")
@require_actor
def order_totals_route(order_id: int):
    try:
        audience = request.args.get("audience", "client")
        if audience == AUDIENCE_MANUFACTURER and not has_capability(g.actor.role, "VIEW_COSTS"):
            raise PermissionDeniedError("Manufacturer totals require VIEW_COSTS", {"required_capability": "VIEW_COSTS"})
        order = order_service.get_order(order_id)
        return jsonify({"totals": order_service.calculate_order_totals(order, audience)}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to calculate order totals")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/orders/<int:order_id>/sample/route")
@require_actor
@require_capability("ROUTE_PRODUCTS")
def route_sample_route(order_id: int):
    try:
        data = json_body()
        order = order_service.route_sample(order_id, data.get("routed_to"), g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to route sample")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/orders/<int:order_id>/sample/approval")
@require_actor
def set_sample_approval_route(order_id: int):
    try:
        data = json_body()
        order = order_service.set_sample_approval(order_id, data.get("side"), bool(data.get("approved")), g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set sample approval")
        return jsonify({"error": "Internal server error"}), 500
