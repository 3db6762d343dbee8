# backend/factory_orders/routes/payments.py
"""
Payment API Routes

- POST /api/invoices/:id/paid - Settle an invoice from a gateway event

The gateway collaborator matches its event to an invoice before calling;
this endpoint never looks payments up by amount or customer.
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import OrderEngineError
from ..services import payment_service
from ..decorators import require_actor_or_api_key, require_capability
from .common import error_response, json_body


payments_bp = Blueprint("payments", __name__, url_prefix="/api/invoices")


@payments_bp.post("/<int:invoice_id>/paid")
@require_actor_or_api_key("PAYMENT_WEBHOOK_API_KEY", "payment_gateway")
@require_capability("RECORD_PAYMENTS")
def mark_invoice_paid_route(invoice_id: int):
    """
    Request body:
        {"amount": "150.00", "external_payment_id": "pay_123"}

    Redelivery of the same payment id returns 200 with the unchanged invoice.

    Error responses:
        409: already_paid under a different payment id
    """
    try:
        data = json_body()
        invoice = payment_service.mark_invoice_paid(
            invoice_id,
            data.get("amount"),
            data.get("external_payment_id"),
            actor=g.actor,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice paid")
        return jsonify({"error": "Internal server error"}), 500
