# Overview: Service-layer operations for orders; creation, line edits, approvals, samples and totals.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConfigurationMissing,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailed,
    ValidationError,
    REASON_TERMINAL_ORDER,
    REASON_UNRESOLVED_PRICING,
)
from ..models import Client, Manufacturer, Order, OrderItem, OrderProduct, OrderSequence
from ..models.orders import (
    APPROVAL_STATUSES,
    APPROVAL_REJECTED,
    AUDIENCE_ADMIN,
    AUDIENCE_CLIENT,
    AUDIENCE_MANUFACTURER,
    SHIPPING_AIR,
    SHIPPING_BOAT,
    STATUS_DRAFT,
    TERMINAL_STATUSES,
    VALID_AUDIENCES,
)
from ..permissions import Actor, Role, require_capability
from ..validation import parse_choice, parse_price_cents, parse_quantity, require_id, require_text
from . import audit_service, margin_service, routing_service
from .concurrency import run_with_retry


ORDER_NUMBER_DIGITS = 6
_PREFIX_RE = re.compile(r"^[A-Z]{2,8}$")

ITEM_SIDE_ADMIN = "admin"
ITEM_SIDE_MANUFACTURER = "manufacturer"

SAMPLE_SIDE_ADMIN = "admin"
SAMPLE_SIDE_CLIENT = "client"


class OrderSequenceError(ValueError):
    """Raised when order number allocation fails."""


# ---------------------------------------------------------------------------
# Order numbers
# ---------------------------------------------------------------------------

def normalize_prefix(raw: str | None) -> str:
    """Client prefix when usable (2-8 letters), otherwise the configured default."""
    candidate = (raw or "").strip().upper()
    if _PREFIX_RE.match(candidate):
        return candidate
    fallback = str(current_app.config.get("DEFAULT_ORDER_PREFIX", "ORD")).strip().upper()
    if not _PREFIX_RE.match(fallback):
        raise OrderSequenceError(f"DEFAULT_ORDER_PREFIX '{fallback}' must be 2-8 letters")
    return fallback


def next_order_number(prefix: str) -> str:
    """
    Atomically allocate the next order number for a prefix.

    The counter row is bumped with a single UPDATE; the first number for a
    new prefix inserts the row inside a SAVEPOINT so a concurrent insert
    only costs a retry of the UPDATE.
    """
    def _op() -> str:
        stmt = (
            update(OrderSequence)
            .where(OrderSequence.prefix == prefix)
            .values(next_number=OrderSequence.next_number + 1)
        )
        result = db.session.execute(stmt)
        if result.rowcount:
            current = (
                db.session.query(OrderSequence.next_number)
                .filter_by(prefix=prefix)
                .scalar()
            )
            number = current - 1
        else:
            nested = db.session.begin_nested()
            try:
                db.session.add(OrderSequence(prefix=prefix, next_number=2))
                nested.commit()
                number = 1
            except IntegrityError:
                nested.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise OrderSequenceError(f"Could not allocate order number for {prefix}")
                current = db.session.query(OrderSequence.next_number).filter_by(prefix=prefix).scalar()
                number = current - 1
        return f"{prefix}-{number:0{ORDER_NUMBER_DIGITS}d}"

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        raise NotFoundError("Order not found")
    return order


def _get_active_product(product_id: int) -> OrderProduct:
    product = db.session.get(OrderProduct, product_id)
    if product is None or product.deleted_at is not None:
        raise NotFoundError("Product not found")
    return product


def _get_item(item_id: int) -> OrderItem:
    item = db.session.get(OrderItem, item_id)
    if item is None or item.product.deleted_at is not None:
        raise NotFoundError("Item not found")
    return item


def _ensure_open(order: Order) -> None:
    if order.status in TERMINAL_STATUSES:
        raise PreconditionFailed(REASON_TERMINAL_ORDER, f"Order is {order.status} and can no longer be edited")


# ---------------------------------------------------------------------------
# Creation and edits
# ---------------------------------------------------------------------------

def create_order(client_id, manufacturer_id, actor: Actor, *, sample_required: bool = False, sample_fee=None) -> Order:
    require_capability(actor, "CREATE_ORDERS")
    client_id = require_id(client_id, "client_id")
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")

    manufacturer = None
    if manufacturer_id is not None:
        manufacturer = db.session.get(Manufacturer, require_id(manufacturer_id, "manufacturer_id"))
        if manufacturer is None:
            raise NotFoundError("Manufacturer not found")

    fee_cents = parse_price_cents(sample_fee, "sample_fee")

    order = Order(
        order_number=next_order_number(normalize_prefix(client.order_prefix)),
        status=STATUS_DRAFT,
        client_id=client.id,
        manufacturer_id=manufacturer.id if manufacturer else None,
        created_by_user_id=actor.user_id,
        sample_required=bool(sample_required),
        sample_fee_cents=fee_cents,
    )
    db.session.add(order)
    db.session.flush()

    if fee_cents is not None:
        try:
            margin_service.recompute_order(order, margin_service.load_margin_config())
        except ConfigurationMissing:
            db.session.rollback()
            raise

    audit_service.record(actor, audit_service.ACTION_ORDER_CREATED, "order", order.id,
                         new_value={"order_number": order.order_number, "client_id": order.client_id,
                                    "manufacturer_id": order.manufacturer_id})
    db.session.commit()
    return order


def add_product(order_id: int, actor: Actor, *, description: str | None = None) -> OrderProduct:
    require_capability(actor, "EDIT_ORDERS")
    order = get_order(order_id)
    _ensure_open(order)

    # Numbering counts soft-deleted lines too so numbers are never reused
    sequence = len(order.products) + 1
    product = OrderProduct(
        order_id=order.id,
        product_order_number=f"{order.order_number}-P{sequence:02d}",
        description=(description or "").strip() or None,
        routed_to=AUDIENCE_ADMIN,
    )
    db.session.add(product)
    db.session.flush()

    audit_service.record(actor, audit_service.ACTION_PRODUCT_ADDED, "order_product", product.id,
                         new_value={"order_id": order.id, "product_order_number": product.product_order_number})
    db.session.commit()
    return product


def add_item(product_id: int, actor: Actor, *, variant_combo, quantity=0, notes: str | None = None) -> OrderItem:
    require_capability(actor, "EDIT_ORDERS")
    product = _get_active_product(product_id)
    _ensure_open(product.order)

    item = OrderItem(
        order_product_id=product.id,
        variant_combo=require_text(variant_combo, "variant_combo"),
        quantity=parse_quantity(quantity),
        notes=notes,
    )
    db.session.add(item)
    db.session.commit()
    return item


def update_item_quantity(item_id: int, quantity, actor: Actor) -> OrderItem:
    require_capability(actor, "EDIT_ORDERS")
    qty = parse_quantity(quantity)
    item = _get_item(item_id)
    _ensure_open(item.product.order)
    item.quantity = qty
    db.session.commit()
    return item


def set_item_price_override(item_id: int, price, actor: Actor) -> OrderItem:
    """Variant-level manufacturer price. Blocked while the product is locked."""
    require_capability(actor, "EDIT_MANUFACTURER_PRICING")
    cents = parse_price_cents(price, "price_override")
    item = _get_item(item_id)
    routing_service.ensure_unlocked(item.product, actor, {"item_id": item.id, "price_override_cents": cents})

    old = item.price_override_cents
    item.price_override_cents = cents
    audit_service.record(actor, audit_service.ACTION_PRICE_UPDATED, "order_item", item.id,
                         old_value={"price_override_cents": old}, new_value={"price_override_cents": cents})
    db.session.commit()
    return item


def set_item_approval(item_id: int, side, status, actor: Actor) -> OrderItem:
    """
    Record an approval decision on one variant line.

    side "admin": staff holding APPROVE_ITEMS (or REJECT_ITEMS for a rejection).
    side "manufacturer": the manufacturer login, or a super admin acting for it.
    """
    side = parse_choice(side, "side", {ITEM_SIDE_ADMIN, ITEM_SIDE_MANUFACTURER})
    status = parse_choice(status, "status", APPROVAL_STATUSES)
    item = _get_item(item_id)
    _ensure_open(item.product.order)

    if side == ITEM_SIDE_ADMIN:
        if not actor.is_staff:
            raise PermissionDeniedError("Only staff may set the admin approval")
        require_capability(actor, "REJECT_ITEMS" if status == APPROVAL_REJECTED else "APPROVE_ITEMS")
        field = "admin_status"
    else:
        if actor.role not in (Role.MANUFACTURER, Role.SUPER_ADMIN):
            raise PermissionDeniedError("Only the manufacturer may set the manufacturer approval")
        field = "manufacturer_status"

    old = getattr(item, field)
    setattr(item, field, status)
    audit_service.record(actor, audit_service.ACTION_ITEM_APPROVAL, "order_item", item.id,
                         old_value={field: old}, new_value={field: status})
    db.session.commit()
    return item


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

def set_sample_fee(order_id: int, fee, actor: Actor) -> Order:
    require_capability(actor, "EDIT_MANUFACTURER_PRICING")
    cents = parse_price_cents(fee, "sample_fee")
    order = get_order(order_id)
    _ensure_open(order)
    if order.sample_fee_paid:
        raise ValidationError("Sample fee has already been paid")

    old = {"sample_fee_cents": order.sample_fee_cents, "client_sample_fee_cents": order.client_sample_fee_cents}
    order.sample_fee_cents = cents
    try:
        margin_service.recompute_order(order, margin_service.load_margin_config())
    except ConfigurationMissing:
        db.session.rollback()
        raise

    audit_service.record(actor, audit_service.ACTION_SAMPLE_UPDATED, "order", order.id,
                         old_value=old,
                         new_value={"sample_fee_cents": order.sample_fee_cents,
                                    "client_sample_fee_cents": order.client_sample_fee_cents})
    db.session.commit()
    return order


def route_sample(order_id: int, audience, actor: Actor) -> Order:
    require_capability(actor, "ROUTE_PRODUCTS")
    audience = parse_choice(audience, "sample_routed_to", VALID_AUDIENCES | {None})
    order = get_order(order_id)
    _ensure_open(order)
    if not order.sample_required:
        raise ValidationError("Order has no sample request")

    if audience == AUDIENCE_CLIENT and order.client_sample_fee_cents is None:
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            "Sample fee has no client price; set the manufacturer sample fee first",
            {"order_id": order.id},
        )

    old = order.sample_routed_to
    order.sample_routed_to = audience
    audit_service.record(actor, audit_service.ACTION_SAMPLE_UPDATED, "order", order.id,
                         old_value={"sample_routed_to": old}, new_value={"sample_routed_to": audience})
    db.session.commit()
    return order


def set_sample_approval(order_id: int, side, approved: bool, actor: Actor) -> Order:
    side = parse_choice(side, "side", {SAMPLE_SIDE_ADMIN, SAMPLE_SIDE_CLIENT})
    order = get_order(order_id)
    _ensure_open(order)
    if not order.sample_required:
        raise ValidationError("Order has no sample request")

    if side == SAMPLE_SIDE_ADMIN:
        if not actor.is_staff:
            raise PermissionDeniedError("Only staff may set the admin sample approval")
        require_capability(actor, "APPROVE_ITEMS")
        field = "sample_admin_approved"
    else:
        if actor.role != Role.CLIENT:
            raise PermissionDeniedError("Only the client may set the client sample approval")
        field = "sample_client_approved"

    old = getattr(order, field)
    setattr(order, field, bool(approved))
    audit_service.record(actor, audit_service.ACTION_SAMPLE_UPDATED, "order", order.id,
                         old_value={field: old}, new_value={field: bool(approved)})
    db.session.commit()
    return order


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def _selected_shipping(product: OrderProduct, client_view: bool) -> int | None:
    if product.selected_shipping_method == SHIPPING_AIR:
        return product.client_shipping_air_price_cents if client_view else product.shipping_air_price_cents
    if product.selected_shipping_method == SHIPPING_BOAT:
        return product.client_shipping_boat_price_cents if client_view else product.shipping_boat_price_cents
    return 0


def calculate_order_totals(order: Order, audience) -> dict:
    """
    Order total as seen by `audience` ("client" or "manufacturer").

    Manufacturer view sums manufacturer prices; client view sums derived
    client prices. A product with no price for the view is listed in
    unpriced_product_ids and left out of the sum, never counted as zero.
    """
    audience = parse_choice(audience, "audience", {AUDIENCE_CLIENT, AUDIENCE_MANUFACTURER})
    client_view = audience == AUDIENCE_CLIENT

    products_total = 0
    shipping_total = 0
    unpriced = []
    for product in order.active_products:
        unit = product.client_price_cents if client_view else product.manufacturer_price_cents
        line_total = 0
        priced = unit is not None
        for item in product.items:
            item_unit = unit
            if item.price_override_cents is not None:
                if not client_view:
                    item_unit = item.price_override_cents
                elif product.margin_applied_bps is not None:
                    item_unit = margin_service.apply_margin(item.price_override_cents, product.margin_applied_bps)
            if item_unit is None:
                priced = False
                continue
            line_total += item_unit * (item.quantity or 0)

        shipping = _selected_shipping(product, client_view)
        if shipping is None:
            priced = False
            shipping = 0
        if not priced:
            unpriced.append(product.id)
        products_total += line_total
        shipping_total += shipping

    sample_fee = 0
    if order.sample_required:
        fee = order.client_sample_fee_cents if client_view else order.sample_fee_cents
        sample_fee = fee or 0

    return {
        "order_id": order.id,
        "audience": audience,
        "products_cents": products_total,
        "shipping_cents": shipping_total,
        "sample_fee_cents": sample_fee,
        "total_cents": products_total + shipping_total + sample_fee,
        "unpriced_product_ids": unpriced,
        "complete": not unpriced,
    }


def product_counts(order: Order) -> dict:
    products = order.active_products
    return {
        "total": len(products),
        "with_admin": sum(1 for p in products if p.routed_to in (None, AUDIENCE_ADMIN)),
        "with_manufacturer": sum(1 for p in products if p.routed_to == AUDIENCE_MANUFACTURER),
        "with_client": sum(1 for p in products if p.routed_to == AUDIENCE_CLIENT),
        "locked": sum(1 for p in products if p.is_locked),
    }
