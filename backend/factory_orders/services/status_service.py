# Overview: Service-layer operations for order status; the only writer of Order.status.

"""
Order Status Machine

================================================================================
PURPOSE: Move orders through the factory workflow, and only forward
================================================================================

STATE MACHINE:
    draft -> submitted_to_manufacturer -> priced_by_manufacturer
          -> submitted_to_client -> client_approved
          -> ready_for_production -> in_production -> completed

    rejected is reachable from every non-terminal state.
    completed and rejected are terminal.

GUARDS (checked in this order, first failure wins):
1. expected_status, when given, must equal the current status (stale_state)
2. the move must be the direct successor or a rejection (invalid_transition)
3. the actor's role must hold the move's capability and, for scoped roles
   (manufacturer, client), the move must be inside the role's scope
   (permission_denied)
4. manufacturer and client logins must own the order (permission_denied)
5. pricing completeness (unresolved_pricing):
   - -> priced_by_manufacturer and every forward state after it: every
     active manufacturer-routed product has a manufacturer price
   - -> client_approved: every active client-routed product has a client
     price

WRITE:
    UPDATE orders SET status = :new WHERE id = :id AND status = :current
    Zero rows means a concurrent writer moved the order first (stale_state).

SIDE EFFECTS (same transaction as the status write):
- margin recompute when entering priced_by_manufacturer / submitted_to_client
- routing reconciliation for the new status
- audit entry (order_status_changed)
- notifications to the manufacturer / client when the ball is in their court

Refused attempts are audited too (order_status_rejected) and committed on
their own, so the trail shows who tried what.
================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import (
    ConfigurationMissing,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
    REASON_INVALID_TRANSITION,
    REASON_PERMISSION_DENIED,
    REASON_STALE_STATE,
    REASON_UNRESOLVED_PRICING,
)
from ..models import Order
from ..models.orders import (
    AUDIENCE_CLIENT,
    AUDIENCE_MANUFACTURER,
    STATUS_CLIENT_APPROVED,
    STATUS_PRICED_BY_MANUFACTURER,
    STATUS_SUBMITTED_TO_CLIENT,
    STATUS_SUBMITTED_TO_MANUFACTURER,
    VALID_STATUSES,
)
from ..permissions import Actor, Role, can_transition, is_reachable, required_capability
from ..time_utils import utcnow
from . import audit_service, margin_service, notification_service, routing_service
from .concurrency import compare_and_set


# Entering these states re-derives client prices first
RECOMPUTE_ON_ENTRY = {STATUS_PRICED_BY_MANUFACTURER, STATUS_SUBMITTED_TO_CLIENT}


def validate_status(status) -> str:
    if not isinstance(status, str) or status.strip().lower() not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )
    return status.strip().lower()


def unresolved_products(order: Order, to_status: str) -> list[int]:
    """Ids of active products that block entering `to_status` for lack of a price."""
    blocking = []
    if routing_service.reached_manufacturer_pricing(to_status):
        blocking = [
            p.id for p in order.active_products
            if p.routed_to == AUDIENCE_MANUFACTURER and p.manufacturer_price_cents is None
        ]
    if to_status == STATUS_CLIENT_APPROVED:
        blocking += [
            p.id for p in order.active_products
            if p.routed_to == AUDIENCE_CLIENT and p.client_price_cents is None
        ]
    return blocking


def _owns_order(order: Order, actor: Actor) -> bool:
    """Manufacturer and client logins act only on orders assigned to them."""
    if actor.role == Role.MANUFACTURER:
        party = order.manufacturer
    elif actor.role == Role.CLIENT:
        party = order.client
    else:
        return True
    return party is not None and party.user_id == actor.user_id


def check_transition(order: Order, to_status: str, actor: Actor, *, expected_status: str | None = None) -> None:
    """Run every guard without writing. Raises PreconditionFailed on the first failure."""
    current = order.status

    if expected_status is not None and expected_status != current:
        raise PreconditionFailed(
            REASON_STALE_STATE,
            f"Order is {current}, not {expected_status}",
            {"current_status": current, "expected_status": expected_status},
        )

    if not is_reachable(current, to_status):
        raise PreconditionFailed(
            REASON_INVALID_TRANSITION,
            f"Cannot move order from {current} to {to_status}",
            {"from": current, "to": to_status},
        )

    if not can_transition(actor.role, current, to_status):
        raise PreconditionFailed(
            REASON_PERMISSION_DENIED,
            f"Role '{actor.role.value}' may not move order from {current} to {to_status}",
            {"from": current, "to": to_status, "required_capability": required_capability(current, to_status)},
        )

    if not _owns_order(order, actor):
        raise PreconditionFailed(
            REASON_PERMISSION_DENIED,
            f"Order {order.order_number} is not assigned to this {actor.role.value}",
            {"from": current, "to": to_status},
        )

    blocking = unresolved_products(order, to_status)
    if blocking:
        raise PreconditionFailed(
            REASON_UNRESOLVED_PRICING,
            f"{len(blocking)} product(s) are missing prices required for {to_status}",
            {"product_ids": blocking},
        )


def _notify_for(order: Order, to_status: str) -> None:
    if to_status == STATUS_SUBMITTED_TO_MANUFACTURER and order.manufacturer is not None:
        notification_service.notify(
            order.manufacturer.user_id,
            notification_service.TYPE_ACTION_REQUIRED,
            f"Order {order.order_number} is ready for pricing",
            order.id,
        )
    elif to_status == STATUS_SUBMITTED_TO_CLIENT and order.client is not None:
        notification_service.notify(
            order.client.user_id,
            notification_service.TYPE_ACTION_REQUIRED,
            f"Order {order.order_number} is ready for your approval",
            order.id,
        )


def _record_refusal(order: Order, to_status: str, actor: Actor, exc) -> None:
    audit_service.record(
        actor,
        audit_service.ACTION_STATUS_REJECTED,
        "order",
        order.id,
        old_value={"status": order.status},
        new_value={"requested_status": to_status, "reason": getattr(exc, "reason", exc.code), "error": str(exc)},
    )
    db.session.commit()


def transition_order(
    order_id: int,
    requested_status,
    actor: Actor,
    *,
    expected_status: str | None = None,
    record_rejections: bool | None = None,
) -> Order:
    """
    Move an order to `requested_status` or raise.

    Raises:
        NotFoundError: order missing or soft-deleted
        ValidationError: requested_status is not a known status
        PreconditionFailed: a guard refused the move (see `reason`)
        ConfigurationMissing: entering a pricing state needs absent defaults
    """
    if record_rejections is None:
        record_rejections = current_app.config.get("RECORD_REJECTED_TRANSITIONS", True)

    to_status = validate_status(requested_status)
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        raise NotFoundError("Order not found")

    from_status = order.status
    try:
        check_transition(order, to_status, actor, expected_status=expected_status)
    except PreconditionFailed as exc:
        db.session.rollback()
        if record_rejections:
            _record_refusal(order, to_status, actor, exc)
        raise

    now = utcnow()
    if not compare_and_set(Order, order.id, "status", from_status,
                           {"status": to_status, "status_changed_at": now, "updated_at": now}):
        db.session.rollback()
        exc = PreconditionFailed(
            REASON_STALE_STATE,
            "Order status changed concurrently; reload and retry",
            {"expected_status": from_status},
        )
        if record_rejections:
            _record_refusal(order, to_status, actor, exc)
        raise exc
    db.session.refresh(order)

    try:
        if to_status in RECOMPUTE_ON_ENTRY:
            margin_service.recompute_order(order, margin_service.load_margin_config())
        moved = routing_service.reconcile_order_routing(order, to_status)
    except ConfigurationMissing as exc:
        db.session.rollback()
        if record_rejections:
            _record_refusal(order, to_status, actor, exc)
        raise

    audit_service.record(
        actor,
        audit_service.ACTION_STATUS_CHANGED,
        "order",
        order.id,
        old_value={"status": from_status},
        new_value={"status": to_status, "rerouted_product_ids": moved},
    )
    _notify_for(order, to_status)
    db.session.commit()
    return order
