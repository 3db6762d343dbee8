# Overview: Service-layer operations for product routing and locking.

"""
Routing decides which audience (admin, manufacturer, client) currently
owns a product; locking freezes its manufacturer-facing prices.

Rules kept here:
- A product reaches the client only with a resolved client price, and is
  locked on the way.
- Once an order reaches priced_by_manufacturer, no unpriced product may be
  handed back to the manufacturer, and no manufacturer price may be cleared.
- The lock is enforced in the price write path (set_manufacturer_price,
  set_shipping_prices), not only in the UI.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import (
    ConfigurationMissing,
    Locked,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailed,
    REASON_TERMINAL_ORDER,
    REASON_UNRESOLVED_PRICING,
)
from ..models import Order, OrderProduct
from ..models.orders import (
    AUDIENCE_ADMIN,
    AUDIENCE_CLIENT,
    AUDIENCE_MANUFACTURER,
    SHIPPING_METHODS,
    STATUS_PRICED_BY_MANUFACTURER,
    STATUS_SEQUENCE,
    STATUS_SUBMITTED_TO_CLIENT,
    STATUS_SUBMITTED_TO_MANUFACTURER,
    TERMINAL_STATUSES,
    VALID_AUDIENCES,
)
from ..permissions import Actor, Role, require_capability
from ..time_utils import utcnow
from ..validation import parse_choice, parse_price_cents
from . import audit_service, margin_service


_UNSET = object()


def _get_active_product(product_id: int) -> OrderProduct:
    product = db.session.get(OrderProduct, product_id)
    if product is None or product.deleted_at is not None:
        raise NotFoundError("Product not found")
    return product


def reached_manufacturer_pricing(status: str) -> bool:
    """True for priced_by_manufacturer and every forward state after it."""
    if status not in STATUS_SEQUENCE:
        return False
    return STATUS_SEQUENCE.index(status) >= STATUS_SEQUENCE.index(STATUS_PRICED_BY_MANUFACTURER)


def _ensure_manufacturer_owns(order: Order, actor: Actor) -> None:
    """Manufacturer logins may only price orders assigned to their factory."""
    if actor.role != Role.MANUFACTURER:
        return
    manufacturer = order.manufacturer
    if manufacturer is None or manufacturer.user_id != actor.user_id:
        raise PermissionDeniedError("Order is not assigned to this manufacturer")


def route_product(product_id: int, audience, actor: Actor) -> OrderProduct:
    require_capability(actor, "ROUTE_PRODUCTS")
    audience = parse_choice(audience, "routed_to", VALID_AUDIENCES | {None})
    product = _get_active_product(product_id)
    order = product.order

    if order.status in TERMINAL_STATUSES:
        raise PreconditionFailed(REASON_TERMINAL_ORDER, f"Order is {order.status}; routing is closed")

    if audience == AUDIENCE_CLIENT and product.client_price_cents is None:
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            "Product has no client price; resolve pricing before routing to client",
            {"product_ids": [product.id]},
        )

    if (
        audience == AUDIENCE_MANUFACTURER
        and product.manufacturer_price_cents is None
        and reached_manufacturer_pricing(order.status)
    ):
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            "Order has been priced by the manufacturer; an unpriced product cannot go back to the manufacturer",
            {"product_ids": [product.id]},
        )

    old = {"routed_to": product.routed_to, "is_locked": product.is_locked}
    product.routed_to = audience
    product.routed_at = utcnow()
    if audience == AUDIENCE_CLIENT:
        product.is_locked = True

    audit_service.record(actor, audit_service.ACTION_PRODUCT_ROUTED, "order_product", product.id,
                         old_value=old,
                         new_value={"routed_to": product.routed_to, "is_locked": product.is_locked})
    db.session.commit()
    return product


def _set_lock(product_id: int, actor: Actor, locked: bool) -> OrderProduct:
    require_capability(actor, "LOCK_PRODUCTS")
    product = _get_active_product(product_id)
    if product.is_locked == locked:
        return product

    product.is_locked = locked
    action = audit_service.ACTION_PRODUCT_LOCKED if locked else audit_service.ACTION_PRODUCT_UNLOCKED
    audit_service.record(actor, action, "order_product", product.id,
                         old_value={"is_locked": not locked}, new_value={"is_locked": locked})
    db.session.commit()
    return product


def lock_product(product_id: int, actor: Actor) -> OrderProduct:
    return _set_lock(product_id, actor, True)


def unlock_product(product_id: int, actor: Actor) -> OrderProduct:
    return _set_lock(product_id, actor, False)


def ensure_unlocked(product: OrderProduct, actor: Actor, attempted: dict) -> None:
    """Refuse a manufacturer-facing price edit on a locked product. The attempt is audited."""
    if not product.is_locked:
        return
    audit_service.record(actor, audit_service.ACTION_PRICE_BLOCKED, "order_product", product.id,
                         new_value=attempted)
    db.session.commit()
    raise Locked(f"Product {product.product_order_number} is locked; unlock it before editing prices",
                 {"product_id": product.id})


def _recompute_or_rollback(product: OrderProduct) -> None:
    try:
        margin_service.recompute_product(product, margin_service.load_margin_config())
    except ConfigurationMissing:
        db.session.rollback()
        raise


def set_manufacturer_price(product_id: int, price, actor: Actor) -> OrderProduct:
    """
    Write the manufacturer unit price and re-derive the client price in the
    same row update.
    """
    require_capability(actor, "EDIT_MANUFACTURER_PRICING")
    cents = parse_price_cents(price, "manufacturer_price")
    product = _get_active_product(product_id)
    _ensure_manufacturer_owns(product.order, actor)
    ensure_unlocked(product, actor, {"manufacturer_price_cents": cents})

    if cents is None and product.routed_to == AUDIENCE_CLIENT:
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            "Cannot clear the price of a product the client is reviewing",
            {"product_ids": [product.id]},
        )
    if cents is None and reached_manufacturer_pricing(product.order.status):
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            f"Order is {product.order.status}; manufacturer prices can no longer be cleared",
            {"product_ids": [product.id]},
        )

    old = {"manufacturer_price_cents": product.manufacturer_price_cents,
           "client_price_cents": product.client_price_cents}
    product.manufacturer_price_cents = cents
    _recompute_or_rollback(product)

    audit_service.record(actor, audit_service.ACTION_PRICE_UPDATED, "order_product", product.id,
                         old_value=old,
                         new_value={"manufacturer_price_cents": product.manufacturer_price_cents,
                                    "client_price_cents": product.client_price_cents,
                                    "margin_applied_bps": product.margin_applied_bps})
    db.session.commit()
    return product


def set_shipping_prices(product_id: int, actor: Actor, *, air=_UNSET, boat=_UNSET, selected_method=_UNSET) -> OrderProduct:
    require_capability(actor, "EDIT_MANUFACTURER_PRICING")
    product = _get_active_product(product_id)
    _ensure_manufacturer_owns(product.order, actor)

    changes = {}
    if air is not _UNSET:
        changes["shipping_air_price_cents"] = parse_price_cents(air, "shipping_air_price")
    if boat is not _UNSET:
        changes["shipping_boat_price_cents"] = parse_price_cents(boat, "shipping_boat_price")
    if changes:
        ensure_unlocked(product, actor, changes)

    if selected_method is not _UNSET:
        changes["selected_shipping_method"] = parse_choice(
            selected_method, "selected_shipping_method", set(SHIPPING_METHODS) | {None}
        )

    old = {attr: getattr(product, attr) for attr in changes}
    for attr, value in changes.items():
        setattr(product, attr, value)
    _recompute_or_rollback(product)

    audit_service.record(actor, audit_service.ACTION_PRICE_UPDATED, "order_product", product.id,
                         old_value=old, new_value=changes)
    db.session.commit()
    return product


def reconcile_order_routing(order: Order, status: str) -> list[int]:
    """
    Hand products to the audience responsible for `status`. Does not commit.
    Returns the ids of products that moved.
    """
    moved = []
    now = utcnow()
    for product in order.active_products:
        target = None
        if status == STATUS_SUBMITTED_TO_MANUFACTURER:
            if product.routed_to in (None, AUDIENCE_ADMIN) and not product.is_locked:
                target = AUDIENCE_MANUFACTURER
        elif status == STATUS_PRICED_BY_MANUFACTURER:
            if product.routed_to == AUDIENCE_MANUFACTURER and product.manufacturer_price_cents is not None:
                target = AUDIENCE_ADMIN
        elif status == STATUS_SUBMITTED_TO_CLIENT:
            if product.routed_to != AUDIENCE_CLIENT and product.client_price_cents is not None:
                target = AUDIENCE_CLIENT

        if target is None:
            continue
        product.routed_to = target
        product.routed_at = now
        if target == AUDIENCE_CLIENT:
            product.is_locked = True
        moved.append(product.id)
    return moved
