from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


INVOICE_DRAFT = "draft"
INVOICE_SENT = "sent"
INVOICE_PAID = "paid"
INVOICE_VOID = "void"


class Invoice(db.Model):
    """
    Client invoice for an order.

    Payment-gateway matching happens outside the engine; payment_service only
    receives an already-resolved invoice id plus the gateway's payment id.
    """
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)

    paid_amount_cents = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    external_payment_id = db.Column(db.String(128), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("invoices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "invoice_number": self.invoice_number,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "paid_amount_cents": self.paid_amount_cents,
            "paid_at": to_utc_z(self.paid_at),
            "external_payment_id": self.external_payment_id,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    order_product_id = db.Column(db.Integer, db.ForeignKey("order_products.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    invoice = db.relationship("Invoice", backref=db.backref("items", lazy=True, cascade="all"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "order_product_id": self.order_product_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
        }
