from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# Order workflow states, in successor order. rejected sits outside the chain.
STATUS_DRAFT = "draft"
STATUS_SUBMITTED_TO_MANUFACTURER = "submitted_to_manufacturer"
STATUS_PRICED_BY_MANUFACTURER = "priced_by_manufacturer"
STATUS_SUBMITTED_TO_CLIENT = "submitted_to_client"
STATUS_CLIENT_APPROVED = "client_approved"
STATUS_READY_FOR_PRODUCTION = "ready_for_production"
STATUS_IN_PRODUCTION = "in_production"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"

STATUS_SEQUENCE = (
    STATUS_DRAFT,
    STATUS_SUBMITTED_TO_MANUFACTURER,
    STATUS_PRICED_BY_MANUFACTURER,
    STATUS_SUBMITTED_TO_CLIENT,
    STATUS_CLIENT_APPROVED,
    STATUS_READY_FOR_PRODUCTION,
    STATUS_IN_PRODUCTION,
    STATUS_COMPLETED,
)
VALID_STATUSES = set(STATUS_SEQUENCE) | {STATUS_REJECTED}
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_REJECTED}

# Product audiences
AUDIENCE_ADMIN = "admin"
AUDIENCE_MANUFACTURER = "manufacturer"
AUDIENCE_CLIENT = "client"
VALID_AUDIENCES = {AUDIENCE_ADMIN, AUDIENCE_MANUFACTURER, AUDIENCE_CLIENT}

SHIPPING_AIR = "air"
SHIPPING_BOAT = "boat"
SHIPPING_METHODS = (SHIPPING_AIR, SHIPPING_BOAT)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_STATUSES = {APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED}


class Order(db.Model):
    """
    Purchase order shared by staff, manufacturer and client.

    status changes only through status_service.transition_order (compare-and-set
    on the current value). Derived money fields (client_sample_fee_cents)
    change only through margin_service.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    status = db.Column(db.String(32), nullable=False, default=STATUS_DRAFT, index=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    manufacturer_id = db.Column(db.Integer, db.ForeignKey("manufacturers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    # Sample request (order-level)
    sample_required = db.Column(db.Boolean, nullable=False, default=False)
    sample_routed_to = db.Column(db.String(16), nullable=True)
    sample_fee_cents = db.Column(db.Integer, nullable=True)
    client_sample_fee_cents = db.Column(db.Integer, nullable=True)
    sample_admin_approved = db.Column(db.Boolean, nullable=False, default=False)
    sample_client_approved = db.Column(db.Boolean, nullable=False, default=False)
    # Plain pointer (no FK): invoices already reference orders
    sample_fee_invoice_id = db.Column(db.Integer, nullable=True)
    sample_fee_paid = db.Column(db.Boolean, nullable=False, default=False)
    sample_fee_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    manufacturer = db.relationship("Manufacturer", backref=db.backref("orders", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    @property
    def active_products(self) -> list["OrderProduct"]:
        """Products that take part in pricing, routing and transitions."""
        return [p for p in self.products if p.deleted_at is None]

    def to_dict(self, *, include_products: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "client_id": self.client_id,
            "manufacturer_id": self.manufacturer_id,
            "created_by_user_id": self.created_by_user_id,
            "sample_required": self.sample_required,
            "sample_routed_to": self.sample_routed_to,
            "sample_fee_cents": self.sample_fee_cents,
            "client_sample_fee_cents": self.client_sample_fee_cents,
            "sample_admin_approved": self.sample_admin_approved,
            "sample_client_approved": self.sample_client_approved,
            "sample_fee_invoice_id": self.sample_fee_invoice_id,
            "sample_fee_paid": self.sample_fee_paid,
            "sample_fee_paid_at": to_utc_z(self.sample_fee_paid_at),
            "deleted_at": to_utc_z(self.deleted_at),
            "status_changed_at": to_utc_z(self.status_changed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_products:
            data["products"] = [p.to_dict(include_items=True) for p in self.active_products]
        return data


class OrderProduct(db.Model):
    """
    A product line inside an order.

    Manufacturer-facing prices are written by the manufacturer (guarded by
    is_locked); client-facing prices and *_applied_bps are derived by
    margin_service and always written together in one row update.
    Soft-deleted rows stay for the deleted-items report.
    """
    __tablename__ = "order_products"
    __table_args__ = (
        db.Index("ix_order_products_order_deleted", "order_id", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_order_number = db.Column(db.String(48), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Pricing (cents / basis points)
    manufacturer_price_cents = db.Column(db.Integer, nullable=True)
    client_price_cents = db.Column(db.Integer, nullable=True)
    margin_override_bps = db.Column(db.Integer, nullable=True)
    margin_applied_bps = db.Column(db.Integer, nullable=True)

    shipping_air_price_cents = db.Column(db.Integer, nullable=True)
    shipping_boat_price_cents = db.Column(db.Integer, nullable=True)
    client_shipping_air_price_cents = db.Column(db.Integer, nullable=True)
    client_shipping_boat_price_cents = db.Column(db.Integer, nullable=True)
    shipping_margin_override_bps = db.Column(db.Integer, nullable=True)
    shipping_margin_applied_bps = db.Column(db.Integer, nullable=True)
    selected_shipping_method = db.Column(db.String(8), nullable=True)

    # Routing
    routed_to = db.Column(db.String(16), nullable=True, index=True)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    routed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Billing
    invoiced = db.Column(db.Boolean, nullable=False, default=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    # Soft delete
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by_user_id = db.Column(db.Integer, nullable=True)
    deleted_by_name = db.Column(db.String(160), nullable=True)
    deletion_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship(
        "Order",
        backref=db.backref("products", lazy=True, cascade="all", order_by="OrderProduct.id"),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<OrderProduct id={self.id} number={self.product_order_number!r}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity or 0 for item in self.items)

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "product_order_number": self.product_order_number,
            "description": self.description,
            "manufacturer_price_cents": self.manufacturer_price_cents,
            "client_price_cents": self.client_price_cents,
            "margin_override_bps": self.margin_override_bps,
            "margin_applied_bps": self.margin_applied_bps,
            "shipping_air_price_cents": self.shipping_air_price_cents,
            "shipping_boat_price_cents": self.shipping_boat_price_cents,
            "client_shipping_air_price_cents": self.client_shipping_air_price_cents,
            "client_shipping_boat_price_cents": self.client_shipping_boat_price_cents,
            "shipping_margin_override_bps": self.shipping_margin_override_bps,
            "shipping_margin_applied_bps": self.shipping_margin_applied_bps,
            "selected_shipping_method": self.selected_shipping_method,
            "routed_to": self.routed_to,
            "is_locked": self.is_locked,
            "routed_at": to_utc_z(self.routed_at),
            "invoiced": self.invoiced,
            "invoice_id": self.invoice_id,
            "deleted_at": to_utc_z(self.deleted_at),
            "deleted_by_user_id": self.deleted_by_user_id,
            "deleted_by_name": self.deleted_by_name,
            "deletion_reason": self.deletion_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class OrderItem(db.Model):
    """Variant line (size/color combo) with its quantity and approvals."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_product_id = db.Column(db.Integer, db.ForeignKey("order_products.id"), nullable=False, index=True)
    variant_combo = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    # Manufacturer-facing unit price for this variant only
    price_override_cents = db.Column(db.Integer, nullable=True)
    admin_status = db.Column(db.String(16), nullable=False, default=APPROVAL_PENDING)
    manufacturer_status = db.Column(db.String(16), nullable=False, default=APPROVAL_PENDING)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "OrderProduct",
        backref=db.backref("items", lazy=True, cascade="all", order_by="OrderItem.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_product_id": self.order_product_id,
            "variant_combo": self.variant_combo,
            "quantity": self.quantity,
            "price_override_cents": self.price_override_cents,
            "admin_status": self.admin_status,
            "manufacturer_status": self.manufacturer_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class OrderMargin(db.Model):
    """
    Order-level margin settings, created lazily.

    NULL means "inherit the system default" so that global changes still
    reach orders that never customized their margin.
    """
    __tablename__ = "order_margins"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    margin_bps = db.Column(db.Integer, nullable=True)
    shipping_margin_bps = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship(
        "Order",
        backref=db.backref("margin", uselist=False, cascade="all"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "margin_bps": self.margin_bps,
            "shipping_margin_bps": self.shipping_margin_bps,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderMedia(db.Model):
    """
    Reference to an uploaded file. Storage itself is external.

    order_product_id is NULL for order-level attachments.
    """
    __tablename__ = "order_media"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_product_id = db.Column(db.Integer, db.ForeignKey("order_products.id"), nullable=True, index=True)
    file_url = db.Column(db.String(1024), nullable=False)
    original_filename = db.Column(db.String(255), nullable=True)
    uploaded_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "OrderProduct",
        backref=db.backref("media", lazy=True, cascade="all"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_product_id": self.order_product_id,
            "file_url": self.file_url,
            "original_filename": self.original_filename,
            "created_at": to_utc_z(self.created_at),
        }


class ClientNote(db.Model):
    """Client-facing note left by staff on an order (optionally on one product)."""
    __tablename__ = "client_notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_product_id = db.Column(db.Integer, db.ForeignKey("order_products.id"), nullable=True, index=True)
    body = db.Column(db.Text, nullable=False)
    author_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("client_notes", lazy=True, cascade="all"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_product_id": self.order_product_id,
            "body": self.body,
            "author_user_id": self.author_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderSequence(db.Model):
    """Per-prefix order number counter (allocated atomically)."""
    __tablename__ = "order_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(8), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
