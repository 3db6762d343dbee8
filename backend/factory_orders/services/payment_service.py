# Overview: Service-layer operations for payments; settles invoices reported by the payment gateway.

"""
Invoice settlement.

The gateway collaborator resolves which invoice a payment belongs to and
then calls mark_invoice_paid(). Gateways redeliver events, so the call is
idempotent on the external payment id: the same (invoice, payment id)
pair succeeds again without changes, a different payment id for an already
paid invoice is refused.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, PreconditionFailed, ValidationError, REASON_ALREADY_PAID
from ..models import Invoice, Order, OrderProduct
from ..models.billing import INVOICE_PAID, INVOICE_VOID
from ..permissions import Actor
from ..time_utils import utcnow
from ..validation import parse_price_cents
from . import audit_service
from .concurrency import compare_and_set


def mark_sample_fee_paid(order_id: int, *, actor: Actor | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if order.sample_fee_paid:
        return order

    order.sample_fee_paid = True
    order.sample_fee_paid_at = utcnow()
    audit_service.record(actor or Actor.system("payment_gateway"), audit_service.ACTION_INVOICE_PAID, "order",
                         order.id, old_value={"sample_fee_paid": False}, new_value={"sample_fee_paid": True})
    db.session.commit()
    return order


def mark_invoice_paid(invoice_id: int, amount, external_ref: str, *, actor: Actor | None = None) -> Invoice:
    """
    Record a gateway payment against an invoice.

    Args:
        invoice_id: invoice already matched by the gateway collaborator
        amount: paid amount in dollars (string or number)
        external_ref: gateway payment id; the idempotency key

    Raises:
        NotFoundError: unknown invoice
        ValidationError: bad amount or empty reference, or a void invoice
        PreconditionFailed(already_paid): paid before under another reference
    """
    actor = actor or Actor.system("payment_gateway")
    ref = (external_ref or "").strip()
    if not ref:
        raise ValidationError("external_ref is required")
    paid_cents = parse_price_cents(amount, "amount", allow_null=False)

    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")

    if invoice.status == INVOICE_PAID:
        if invoice.external_payment_id == ref:
            return invoice
        raise PreconditionFailed(
            REASON_ALREADY_PAID,
            f"Invoice {invoice.invoice_number} is already paid",
            {"invoice_id": invoice.id, "external_payment_id": invoice.external_payment_id},
        )
    if invoice.status == INVOICE_VOID:
        raise ValidationError(f"Invoice {invoice.invoice_number} is void")

    if paid_cents != invoice.amount_cents:
        current_app.logger.warning(
            "Invoice %s paid %s cents, expected %s", invoice.invoice_number, paid_cents, invoice.amount_cents
        )

    previous = invoice.status
    if not compare_and_set(Invoice, invoice.id, "status", previous,
                           {"status": INVOICE_PAID, "paid_amount_cents": paid_cents,
                            "paid_at": utcnow(), "external_payment_id": ref}):
        # Another delivery of a payment settled it first; re-evaluate against that one
        db.session.rollback()
        return mark_invoice_paid(invoice_id, amount, ref, actor=actor)
    db.session.refresh(invoice)

    db.session.query(OrderProduct).filter(
        OrderProduct.invoice_id == invoice.id, OrderProduct.invoiced.is_(False)
    ).update({"invoiced": True}, synchronize_session=False)

    audit_service.record(actor, audit_service.ACTION_INVOICE_PAID, "invoice", invoice.id,
                         old_value={"status": previous},
                         new_value={"status": INVOICE_PAID, "paid_amount_cents": paid_cents,
                                    "external_payment_id": ref})
    db.session.commit()

    order = db.session.get(Order, invoice.order_id)
    if order is not None and order.sample_fee_invoice_id == invoice.id:
        mark_sample_fee_paid(order.id, actor=actor)
    return invoice
