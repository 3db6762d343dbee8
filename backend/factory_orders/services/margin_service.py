# Overview: Service-layer operations for margins; derives client prices from manufacturer prices.

"""
Margin resolution and repair.

Client-facing prices are never entered by hand. They are derived from the
manufacturer price by the first margin found in this order:

    product override -> order margin (OrderMargin) -> system default (SystemConfig)

Shipping uses the same ladder with the shipping-margin fields. The order's
client sample fee uses order -> system (there is no product tier).

Formula: client = manufacturer * (1 + margin / 100), rounded half-up to the
cent. Money is integer cents; margins are integer basis points (8000 = 80%).

Resolution is a pure function of (product, order margin, MarginConfig). The
config is a snapshot loaded once per operation; nothing here reads
SystemConfig mid-computation.

A missing system default is an error (ConfigurationMissing), never an
implicit zero margin. A missing manufacturer price is not an error: the
client price simply stays unset.

repair_margins() is idempotent and safe to run at any time. Because each
product's price and margin_applied_bps are written in one row update,
losing a race to a concurrent price edit only costs a retry on the next run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConfigurationMissing, NotFoundError, ValidationError
from ..models import Order, OrderMargin, OrderProduct, SystemConfig
from ..models.orders import SHIPPING_AIR, SHIPPING_BOAT
from ..models.settings import DEFAULT_MARGIN_KEY, DEFAULT_SHIPPING_MARGIN_KEY, MARGIN_CONFIG_KEYS
from ..permissions import Actor, require_capability
from ..validation import parse_percentage_bps, bps_to_percentage
from . import audit_service


SOURCE_PRODUCT = "product"
SOURCE_ORDER = "order"
SOURCE_SYSTEM = "system"

_UNSET = object()


@dataclass(frozen=True)
class MarginConfig:
    """Typed snapshot of the margin defaults. None means the key is absent."""
    default_margin_bps: int | None = None
    default_shipping_margin_bps: int | None = None

    @property
    def missing_keys(self) -> list[str]:
        missing = []
        if self.default_margin_bps is None:
            missing.append(DEFAULT_MARGIN_KEY)
        if self.default_shipping_margin_bps is None:
            missing.append(DEFAULT_SHIPPING_MARGIN_KEY)
        return missing


@dataclass(frozen=True)
class PriceResolution:
    client_price_cents: int
    margin_bps: int
    source: str


@dataclass
class OrderRecompute:
    products_updated: int = 0
    products_unchanged: int = 0
    products_unpriced: int = 0
    sample_fee_changed: bool = False


@dataclass
class MarginRepairReport:
    orders_scanned: int = 0
    orders_repaired: int = 0
    products_updated: int = 0
    products_unchanged: int = 0
    products_unpriced: int = 0
    margin_records_created: int = 0
    failures: list[dict] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.failures:
            return "ok"
        if self.orders_scanned > len(self.failures):
            return "partial_failure"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "orders_scanned": self.orders_scanned,
            "orders_repaired": self.orders_repaired,
            "products_updated": self.products_updated,
            "products_unchanged": self.products_unchanged,
            "products_unpriced": self.products_unpriced,
            "margin_records_created": self.margin_records_created,
            "failures": list(self.failures),
        }


# ---------------------------------------------------------------------------
# Config snapshot
# ---------------------------------------------------------------------------

def _parse_config_value(key: str, raw: str | None) -> int | None:
    if raw is None or not str(raw).strip():
        return None
    try:
        return parse_percentage_bps(raw, key, allow_null=False)
    except ValidationError:
        current_app.logger.warning("Ignoring unparseable system config %s=%r", key, raw)
        return None


def load_margin_config() -> MarginConfig:
    rows = db.session.query(SystemConfig).filter(SystemConfig.config_key.in_(MARGIN_CONFIG_KEYS)).all()
    values = {row.config_key: row.config_value for row in rows}
    return MarginConfig(
        default_margin_bps=_parse_config_value(DEFAULT_MARGIN_KEY, values.get(DEFAULT_MARGIN_KEY)),
        default_shipping_margin_bps=_parse_config_value(
            DEFAULT_SHIPPING_MARGIN_KEY, values.get(DEFAULT_SHIPPING_MARGIN_KEY)
        ),
    )


# ---------------------------------------------------------------------------
# Pure resolution
# ---------------------------------------------------------------------------

def apply_margin(manufacturer_cents: int, margin_bps: int) -> int:
    """Round-half-up cents of manufacturer * (1 + margin)."""
    scaled = Decimal(manufacturer_cents) * Decimal(10_000 + margin_bps) / Decimal(10_000)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _first_margin(product_bps, order_bps, default_bps, key) -> tuple[int, str]:
    if product_bps is not None:
        return product_bps, SOURCE_PRODUCT
    if order_bps is not None:
        return order_bps, SOURCE_ORDER
    if default_bps is None:
        raise ConfigurationMissing(key)
    return default_bps, SOURCE_SYSTEM


def resolve_margin(product: OrderProduct, order_margin: OrderMargin | None, config: MarginConfig) -> tuple[int, str]:
    return _first_margin(
        product.margin_override_bps,
        order_margin.margin_bps if order_margin is not None else None,
        config.default_margin_bps,
        DEFAULT_MARGIN_KEY,
    )


def resolve_shipping_margin(product: OrderProduct, order_margin: OrderMargin | None, config: MarginConfig) -> tuple[int, str]:
    return _first_margin(
        product.shipping_margin_override_bps,
        order_margin.shipping_margin_bps if order_margin is not None else None,
        config.default_shipping_margin_bps,
        DEFAULT_SHIPPING_MARGIN_KEY,
    )


def resolve_product_price(product: OrderProduct, order_margin: OrderMargin | None, config: MarginConfig) -> PriceResolution | None:
    if product.manufacturer_price_cents is None:
        return None
    bps, source = resolve_margin(product, order_margin, config)
    return PriceResolution(apply_margin(product.manufacturer_price_cents, bps), bps, source)


def _shipping_cost(product: OrderProduct, method: str) -> int | None:
    if method == SHIPPING_AIR:
        return product.shipping_air_price_cents
    if method == SHIPPING_BOAT:
        return product.shipping_boat_price_cents
    raise ValidationError(f"Unknown shipping method '{method}'")


def resolve_shipping_price(order: Order, product: OrderProduct, method: str, config: MarginConfig) -> PriceResolution | None:
    cost = _shipping_cost(product, method)
    if cost is None:
        return None
    bps, source = resolve_shipping_margin(product, order.margin, config)
    return PriceResolution(apply_margin(cost, bps), bps, source)


def resolve_sample_fee(order: Order, config: MarginConfig) -> PriceResolution | None:
    if order.sample_fee_cents is None:
        return None
    order_bps = order.margin.margin_bps if order.margin is not None else None
    bps, source = _first_margin(None, order_bps, config.default_margin_bps, DEFAULT_MARGIN_KEY)
    return PriceResolution(apply_margin(order.sample_fee_cents, bps), bps, source)


# ---------------------------------------------------------------------------
# Recompute (writes derived fields, does not commit)
# ---------------------------------------------------------------------------

def _apply_changes(obj, changes: dict) -> bool:
    changed = False
    for attr, value in changes.items():
        if getattr(obj, attr) != value:
            setattr(obj, attr, value)
            changed = True
    return changed


def recompute_product(product: OrderProduct, config: MarginConfig, order_margin: OrderMargin | None = _UNSET) -> bool:
    """
    Re-derive a product's client prices. Returns True if any field changed.

    Every resolution happens before any assignment, so a ConfigurationMissing
    leaves the row untouched. Soft-deleted products are skipped.
    """
    if product.deleted_at is not None:
        return False
    if order_margin is _UNSET:
        order_margin = product.order.margin

    unit = resolve_product_price(product, order_margin, config)

    changes = {
        "client_price_cents": unit.client_price_cents if unit else None,
        "margin_applied_bps": unit.margin_bps if unit else None,
    }

    air = boat = None
    if product.shipping_air_price_cents is not None or product.shipping_boat_price_cents is not None:
        bps, _source = resolve_shipping_margin(product, order_margin, config)
        if product.shipping_air_price_cents is not None:
            air = apply_margin(product.shipping_air_price_cents, bps)
        if product.shipping_boat_price_cents is not None:
            boat = apply_margin(product.shipping_boat_price_cents, bps)
        changes["shipping_margin_applied_bps"] = bps
    else:
        changes["shipping_margin_applied_bps"] = None
    changes["client_shipping_air_price_cents"] = air
    changes["client_shipping_boat_price_cents"] = boat

    return _apply_changes(product, changes)


def recompute_order(order: Order, config: MarginConfig) -> OrderRecompute:
    result = OrderRecompute()
    for product in order.active_products:
        if recompute_product(product, config, order.margin):
            result.products_updated += 1
        else:
            result.products_unchanged += 1
        if product.manufacturer_price_cents is None:
            result.products_unpriced += 1

    fee = resolve_sample_fee(order, config)
    new_fee = fee.client_price_cents if fee else None
    if order.client_sample_fee_cents != new_fee:
        order.client_sample_fee_cents = new_fee
        result.sample_fee_changed = True
    return result


# ---------------------------------------------------------------------------
# Administrative writes
# ---------------------------------------------------------------------------

def _get_active_product(product_id: int) -> OrderProduct:
    product = db.session.get(OrderProduct, product_id)
    if product is None or product.deleted_at is not None:
        raise NotFoundError("Product not found")
    return product


def _get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        raise NotFoundError("Order not found")
    return order


def set_product_margin_override(product_id: int, actor: Actor, *, margin=_UNSET, shipping_margin=_UNSET) -> OrderProduct:
    """Set or clear (None) the per-product margin overrides, then re-derive prices."""
    require_capability(actor, "MANAGE_MARGINS")
    product = _get_active_product(product_id)

    before = {
        "margin_override": bps_to_percentage(product.margin_override_bps),
        "shipping_margin_override": bps_to_percentage(product.shipping_margin_override_bps),
        "client_price_cents": product.client_price_cents,
    }
    if margin is not _UNSET:
        product.margin_override_bps = parse_percentage_bps(margin, "margin_percentage")
    if shipping_margin is not _UNSET:
        product.shipping_margin_override_bps = parse_percentage_bps(shipping_margin, "shipping_margin_percentage")

    try:
        recompute_product(product, load_margin_config())
    except ConfigurationMissing:
        db.session.rollback()
        raise

    audit_service.record(actor, audit_service.ACTION_MARGIN_OVERRIDE, "order_product", product.id,
                         old_value=before,
                         new_value={
                             "margin_override": bps_to_percentage(product.margin_override_bps),
                             "shipping_margin_override": bps_to_percentage(product.shipping_margin_override_bps),
                             "client_price_cents": product.client_price_cents,
                         })
    db.session.commit()
    return product


def get_or_create_order_margin(order: Order) -> tuple[OrderMargin, bool]:
    if order.margin is not None:
        return order.margin, False
    margin = OrderMargin(order_id=order.id)
    db.session.add(margin)
    order.margin = margin
    return margin, True


def set_order_margin(order_id: int, actor: Actor, *, margin=_UNSET, shipping_margin=_UNSET) -> OrderMargin:
    """Set or clear the order-level margins, then re-derive every product on the order."""
    require_capability(actor, "MANAGE_MARGINS")
    order = _get_order(order_id)
    record, _created = get_or_create_order_margin(order)

    before = {
        "margin": bps_to_percentage(record.margin_bps),
        "shipping_margin": bps_to_percentage(record.shipping_margin_bps),
    }
    if margin is not _UNSET:
        record.margin_bps = parse_percentage_bps(margin, "margin_percentage")
    if shipping_margin is not _UNSET:
        record.shipping_margin_bps = parse_percentage_bps(shipping_margin, "shipping_margin_percentage")
    record.updated_by_user_id = actor.user_id

    try:
        recompute_order(order, load_margin_config())
    except ConfigurationMissing:
        db.session.rollback()
        raise

    audit_service.record(actor, audit_service.ACTION_ORDER_MARGIN, "order", order.id,
                         old_value=before,
                         new_value={
                             "margin": bps_to_percentage(record.margin_bps),
                             "shipping_margin": bps_to_percentage(record.shipping_margin_bps),
                         })
    db.session.commit()
    return record


def _upsert_config(key: str, value: str | None, user_id: int | None) -> tuple[SystemConfig, str | None]:
    row = db.session.query(SystemConfig).filter_by(config_key=key).one_or_none()
    old = row.config_value if row else None
    if row is None:
        row = SystemConfig(config_key=key)
        db.session.add(row)
    row.config_value = value
    row.updated_by_user_id = user_id
    return row, old


def set_system_config(key: str, value, actor: Actor) -> tuple[SystemConfig, MarginRepairReport | None]:
    """
    Write one SystemConfig key. Margin keys are validated as percentages and
    trigger a repair pass over every order, since defaults apply retroactively.
    """
    require_capability(actor, "MANAGE_SYSTEM_CONFIG")
    if not key or len(key) > 128:
        raise ValidationError("config_key is required")

    if key in MARGIN_CONFIG_KEYS:
        stored = bps_to_percentage(parse_percentage_bps(value, key, allow_null=False))
    else:
        stored = None if value is None else str(value)

    row, old = _upsert_config(key, stored, actor.user_id)
    audit_service.record(actor, audit_service.ACTION_SYSTEM_CONFIG, "system_config", None,
                         old_value={key: old}, new_value={key: stored})
    db.session.commit()

    report = None
    if key in MARGIN_CONFIG_KEYS:
        report = repair_margins(ensure_margin_records=False, actor=actor)
    return row, report


def seed_system_defaults(actor: Actor | None = None) -> list[str]:
    """
    Insert the margin defaults that are absent. Existing values are left
    alone, so this is safe to run repeatedly. Returns the keys written.
    """
    seeds = {
        DEFAULT_MARGIN_KEY: current_app.config.get("DEFAULT_MARGIN_PERCENTAGE", "80"),
        DEFAULT_SHIPPING_MARGIN_KEY: current_app.config.get("DEFAULT_SHIPPING_MARGIN_PERCENTAGE", "0"),
    }
    existing = {
        row.config_key: row
        for row in db.session.query(SystemConfig).filter(SystemConfig.config_key.in_(MARGIN_CONFIG_KEYS))
    }
    written = []
    for key, raw in seeds.items():
        row = existing.get(key)
        if row is not None and row.config_value not in (None, ""):
            continue
        value = bps_to_percentage(parse_percentage_bps(raw, key, allow_null=False))
        _upsert_config(key, value, actor.user_id if actor else None)
        written.append(key)

    if written:
        audit_service.record(actor or Actor.system(), audit_service.ACTION_SYSTEM_CONFIG, "system_config", None,
                             new_value={"seeded": written})
        current_app.logger.info("Seeded system config defaults: %s", ", ".join(written))
    db.session.commit()
    return written


# ---------------------------------------------------------------------------
# Batch repair and drift detection
# ---------------------------------------------------------------------------

def repair_margins(order_ids=None, *, ensure_margin_records: bool = True, actor: Actor | None = None) -> MarginRepairReport:
    """
    Recompute derived prices for the given orders (all live orders when
    None). Each order commits on its own; a failing order is rolled back,
    recorded in the report and the pass continues.
    """
    config = load_margin_config()
    report = MarginRepairReport()

    query = db.session.query(Order.id).filter(Order.deleted_at.is_(None))
    if order_ids is not None:
        query = query.filter(Order.id.in_(list(order_ids)))
    ids = [row[0] for row in query.order_by(Order.id).all()]

    for order_id in ids:
        report.orders_scanned += 1
        try:
            order = db.session.get(Order, order_id)
            if order is None:
                continue
            created = False
            if ensure_margin_records:
                _record, created = get_or_create_order_margin(order)
            result = recompute_order(order, config)
            db.session.commit()
        except ConfigurationMissing as exc:
            db.session.rollback()
            report.failures.append({"order_id": order_id, "code": exc.code, "error": str(exc)})
            continue
        except (StaleDataError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.warning("Margin repair failed for order %s", order_id, exc_info=True)
            report.failures.append({"order_id": order_id, "code": "database_error", "error": str(exc)})
            continue

        if created:
            report.margin_records_created += 1
        report.products_updated += result.products_updated
        report.products_unchanged += result.products_unchanged
        report.products_unpriced += result.products_unpriced
        if result.products_updated or result.sample_fee_changed:
            report.orders_repaired += 1

    audit_service.record(actor or Actor.system(), audit_service.ACTION_MARGIN_REPAIR, "system", None,
                         new_value=report.to_dict())
    db.session.commit()
    return report


def find_products_missing_client_price(limit: int = 100) -> list[OrderProduct]:
    return (
        db.session.query(OrderProduct)
        .join(Order, Order.id == OrderProduct.order_id)
        .filter(
            OrderProduct.deleted_at.is_(None),
            Order.deleted_at.is_(None),
            OrderProduct.manufacturer_price_cents.isnot(None),
            OrderProduct.client_price_cents.is_(None),
        )
        .order_by(OrderProduct.id)
        .limit(limit)
        .all()
    )


def find_margin_drift(limit: int = 500) -> list[dict]:
    """
    Products whose persisted client price or applied margin no longer
    matches what resolution would produce now. Read-only.
    """
    config = load_margin_config()
    products = (
        db.session.query(OrderProduct)
        .join(Order, Order.id == OrderProduct.order_id)
        .filter(OrderProduct.deleted_at.is_(None), Order.deleted_at.is_(None))
        .order_by(OrderProduct.id)
        .all()
    )

    drift = []
    for product in products:
        entry = {
            "product_id": product.id,
            "order_id": product.order_id,
            "product_order_number": product.product_order_number,
            "persisted_margin_bps": product.margin_applied_bps,
            "persisted_client_price_cents": product.client_price_cents,
        }
        try:
            expected = resolve_product_price(product, product.order.margin, config)
        except ConfigurationMissing as exc:
            entry.update(expected_margin_bps=None, expected_client_price_cents=None, error=exc.code)
            drift.append(entry)
            continue

        expected_bps = expected.margin_bps if expected else None
        expected_price = expected.client_price_cents if expected else None
        if expected_bps != product.margin_applied_bps or expected_price != product.client_price_cents:
            entry.update(expected_margin_bps=expected_bps, expected_client_price_cents=expected_price)
            drift.append(entry)
        if len(drift) >= limit:
            break
    return drift
