# Overview: Service-layer operations for order and product removal; draft expiry sweep and soft deletes.

"""
Draft expiry and product removal.

Hard deletion happens only to abandoned drafts: orders still in `draft`
that were created before the retention cutoff. Each order is purged in its
own transaction by walking DRAFT_EXPIRY_STEPS children-first, then the
remaining references are counted. Any leftover row means the step list no
longer matches the schema; the purge is rolled back and reported, never
committed half-done.

Steps marked optional cover tables that only some deployments have. They
are skipped when the table is absent from the connected database.

Products are never hard-deleted outside the sweep. soft_delete_product
stamps deleted_at/by/reason so the row drops out of pricing, routing and
transitions but remains available to the deleted-items report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import (
    IntegrityFault,
    NotFoundError,
    OrderEngineError,
    PreconditionFailed,
    ValidationError,
    REASON_INVOICE_PROTECTED,
)
from ..models import Client, Invoice, InvoiceItem, Order, OrderProduct
from ..models.orders import STATUS_DRAFT
from ..permissions import Actor, has_capability, require_capability
from ..time_utils import days_ago, parse_iso_date_bound, to_utc_z, utcnow
from . import audit_service, notification_service


SCOPE_ORDER = "order"
SCOPE_PRODUCTS = "products"
SCOPE_INVOICES = "invoices"
SCOPE_AUDIT = "audit"

OUTCOME_DELETED = "deleted"
OUTCOME_ABSENT = "absent"
OUTCOME_NOT_ELIGIBLE = "not_eligible"


@dataclass(frozen=True)
class DeletionStep:
    """Delete rows of `table` whose `column` matches the order's `scope` ids."""
    table: str
    column: str
    scope: str
    optional: bool = False


# Children before parents. Optional tables exist only in some deployments.
DRAFT_EXPIRY_STEPS = [
    DeletionStep("invoice_items", "order_product_id", SCOPE_PRODUCTS),
    DeletionStep("invoice_items", "invoice_id", SCOPE_INVOICES),
    DeletionStep("email_history", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("order_media", "order_product_id", SCOPE_PRODUCTS),
    DeletionStep("order_media", "order_id", SCOPE_ORDER),
    DeletionStep("order_items", "order_product_id", SCOPE_PRODUCTS),
    DeletionStep("client_notes", "order_id", SCOPE_ORDER),
    DeletionStep("order_products", "order_id", SCOPE_ORDER),
    DeletionStep("invoices", "order_id", SCOPE_ORDER),
    DeletionStep("notifications", "order_id", SCOPE_ORDER),
    DeletionStep("manufacturer_notifications", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("manufacturer_views", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("workflow_log", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("order_margins", "order_id", SCOPE_ORDER),
    DeletionStep("orders_backup_numbers", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("order_accessories", "order_id", SCOPE_ORDER, optional=True),
    DeletionStep("orders", "id", SCOPE_ORDER),
]

# Every reference a purged order may leave behind. Checked after the steps
# run, independently of the step list.
DEPENDENT_REFERENCES = tuple(DRAFT_EXPIRY_STEPS)

AUDIT_PURGE_STEP = DeletionStep("audit_log", "target_id", SCOPE_AUDIT)


@dataclass
class PurgeResult:
    order_id: int
    outcome: str
    order_number: str | None = None
    rows_deleted: dict = field(default_factory=dict)


@dataclass
class SweepReport:
    cutoff: datetime
    retention_days: int
    deleted: list[dict] = field(default_factory=list)
    already_absent: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.failures:
            return "ok"
        if self.deleted or self.already_absent or self.skipped:
            return "partial_failure"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "cutoff": to_utc_z(self.cutoff),
            "retention_days": self.retention_days,
            "deleted_count": len(self.deleted),
            "deleted_orders": [d["order_number"] for d in self.deleted],
            "deleted": list(self.deleted),
            "already_absent": list(self.already_absent),
            "skipped": list(self.skipped),
            "failures": list(self.failures),
        }


# ---------------------------------------------------------------------------
# Draft expiry
# ---------------------------------------------------------------------------

def _active_steps() -> list[DeletionStep]:
    steps = list(DRAFT_EXPIRY_STEPS)
    if current_app.config.get("CLEANUP_PURGE_AUDIT_ENTRIES"):
        # Just before the order row itself
        steps.insert(len(steps) - 1, AUDIT_PURGE_STEP)
    return steps


def _scope_clause(tbl, step: DeletionStep, order_id: int, scope_ids: dict):
    col = tbl.c[step.column]
    if step.scope == SCOPE_ORDER:
        return col == order_id
    return col.in_(scope_ids[step.scope])


def _audit_clause(tbl, order_id: int, product_ids: list[int]):
    clause = sa.and_(tbl.c.target_type == "order", tbl.c.target_id == order_id)
    if product_ids:
        clause = sa.or_(clause, sa.and_(tbl.c.target_type == "order_product", tbl.c.target_id.in_(product_ids)))
    return clause


def _run_step(step: DeletionStep, order_id: int, scope_ids: dict) -> int:
    if step.scope == SCOPE_AUDIT:
        tbl = sa.table("audit_log", sa.column("target_type"), sa.column("target_id"))
        result = db.session.execute(sa.delete(tbl).where(_audit_clause(tbl, order_id, scope_ids[SCOPE_PRODUCTS])))
        return result.rowcount

    if step.scope != SCOPE_ORDER and not scope_ids[step.scope]:
        return 0
    tbl = sa.table(step.table, sa.column(step.column))
    result = db.session.execute(sa.delete(tbl).where(_scope_clause(tbl, step, order_id, scope_ids)))
    return result.rowcount


def _find_leftovers(order_id: int, scope_ids: dict, inspector) -> dict:
    leftovers = {}
    for ref in DEPENDENT_REFERENCES:
        if ref.optional and not inspector.has_table(ref.table):
            continue
        if ref.scope != SCOPE_ORDER and not scope_ids[ref.scope]:
            continue
        tbl = sa.table(ref.table, sa.column(ref.column))
        count = db.session.execute(
            sa.select(sa.func.count()).select_from(tbl).where(_scope_clause(tbl, ref, order_id, scope_ids))
        ).scalar()
        if count:
            key = f"{ref.table}.{ref.column}"
            leftovers[key] = leftovers.get(key, 0) + count
    return leftovers


def purge_order(order_id: int, *, cutoff: datetime | None = None) -> PurgeResult:
    """
    Hard-delete one draft order and every row that depends on it, in a
    single transaction.

    Eligibility is re-checked here (still draft, still older than `cutoff`)
    so a draft submitted after the sweep listed it is left alone. An order
    that is already gone counts as success.

    Raises:
        IntegrityFault: rows still reference the order after all steps ran
    """
    row = db.session.execute(
        sa.select(Order.status, Order.created_at, Order.order_number).where(Order.id == order_id)
    ).first()
    if row is None:
        return PurgeResult(order_id, OUTCOME_ABSENT)
    if row.status != STATUS_DRAFT or (cutoff is not None and row.created_at >= cutoff):
        return PurgeResult(order_id, OUTCOME_NOT_ELIGIBLE, row.order_number)

    scope_ids = {
        SCOPE_PRODUCTS: list(db.session.execute(
            sa.select(OrderProduct.id).where(OrderProduct.order_id == order_id)
        ).scalars()),
        SCOPE_INVOICES: list(db.session.execute(
            sa.select(Invoice.id).where(Invoice.order_id == order_id)
        ).scalars()),
    }

    result = PurgeResult(order_id, OUTCOME_DELETED, row.order_number)
    try:
        inspector = sa.inspect(db.session.connection())
        for step in _active_steps():
            if step.optional and not inspector.has_table(step.table):
                continue
            count = _run_step(step, order_id, scope_ids)
            if count:
                result.rows_deleted[step.table] = result.rows_deleted.get(step.table, 0) + count

        leftovers = _find_leftovers(order_id, scope_ids, inspector)
        if leftovers:
            raise IntegrityFault(
                f"Purge of order {row.order_number} left dependent rows behind",
                {"order_id": order_id, "leftovers": leftovers},
            )

        audit_service.record(Actor.system(), audit_service.ACTION_DRAFT_PURGED, "order", order_id,
                             old_value={"order_number": row.order_number,
                                        "created_at": row.created_at,
                                        "product_ids": scope_ids[SCOPE_PRODUCTS]},
                             new_value={"rows_deleted": result.rows_deleted})
        db.session.commit()
    except IntegrityFault as exc:
        db.session.rollback()
        current_app.logger.critical("Draft purge rolled back for order %s: %s", order_id, exc.details)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return result


def _cutoff_for(retention_days: int | None, now: datetime | None) -> tuple[int, datetime]:
    days = current_app.config.get("DRAFT_RETENTION_DAYS", 15) if retention_days is None else retention_days
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise ValidationError("retention_days must be a non-negative integer")
    return days, days_ago(days, now=now)


def find_expired_drafts(retention_days: int | None = None, *, now: datetime | None = None) -> list[tuple[int, str]]:
    _days, cutoff = _cutoff_for(retention_days, now)
    rows = db.session.execute(
        sa.select(Order.id, Order.order_number)
        .where(Order.status == STATUS_DRAFT, Order.created_at < cutoff)
        .order_by(Order.id)
    ).all()
    return [(r.id, r.order_number) for r in rows]


def count_expired_drafts(retention_days: int | None = None, *, now: datetime | None = None) -> dict:
    days, cutoff = _cutoff_for(retention_days, now)
    count = db.session.execute(
        sa.select(sa.func.count()).select_from(Order)
        .where(Order.status == STATUS_DRAFT, Order.created_at < cutoff)
    ).scalar()
    return {"count": count, "cutoff": to_utc_z(cutoff), "retention_days": days}


def sweep_expired_drafts(retention_days: int | None = None, *, now: datetime | None = None) -> SweepReport:
    """
    Purge every draft older than the retention window. One order's failure
    is recorded and the sweep moves on; the report lists every outcome.
    """
    days, cutoff = _cutoff_for(retention_days, now)
    report = SweepReport(cutoff=cutoff, retention_days=days)

    for order_id, order_number in find_expired_drafts(days, now=now):
        try:
            result = purge_order(order_id, cutoff=cutoff)
        except (OrderEngineError, SQLAlchemyError) as exc:
            if not isinstance(exc, IntegrityFault):
                current_app.logger.warning("Draft purge failed for order %s", order_id, exc_info=True)
            report.failures.append({
                "order_id": order_id,
                "order_number": order_number,
                "code": exc.code if isinstance(exc, OrderEngineError) else "database_error",
                "error": str(exc),
            })
            continue

        if result.outcome == OUTCOME_DELETED:
            report.deleted.append({"order_id": order_id, "order_number": result.order_number,
                                   "rows_deleted": result.rows_deleted})
        elif result.outcome == OUTCOME_ABSENT:
            report.already_absent.append(order_id)
        else:
            report.skipped.append(order_id)

    current_app.logger.info(
        "Draft sweep (cutoff %s): %d deleted, %d absent, %d skipped, %d failed",
        to_utc_z(cutoff), len(report.deleted), len(report.already_absent),
        len(report.skipped), len(report.failures),
    )
    return report


# ---------------------------------------------------------------------------
# Soft delete
# ---------------------------------------------------------------------------

def _is_invoiced(product: OrderProduct) -> bool:
    if product.invoiced or product.invoice_id is not None:
        return True
    return db.session.query(InvoiceItem.id).filter_by(order_product_id=product.id).first() is not None


def _deletion_snapshot(product: OrderProduct) -> dict:
    return {
        "order_id": product.order_id,
        "product_order_number": product.product_order_number,
        "description": product.description,
        "total_quantity": product.total_quantity,
        "items_count": len(product.items),
        "media_count": len(product.media),
        "invoiced": product.invoiced,
        "invoice_id": product.invoice_id,
        "manufacturer_price_cents": product.manufacturer_price_cents,
        "client_price_cents": product.client_price_cents,
        "routed_to": product.routed_to,
        "variants": [{"variant": i.variant_combo, "quantity": i.quantity} for i in product.items],
    }


def soft_delete_product(product_id: int, actor: Actor, reason: str | None = None) -> OrderProduct:
    """
    Mark a product deleted. Deleting an already deleted product is a no-op.

    Invoiced products need DELETE_INVOICED_PRODUCTS; the deletion then
    raises a warning notification so the invoice gets reviewed.
    """
    require_capability(actor, "DELETE_PRODUCTS")
    product = db.session.get(OrderProduct, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.deleted_at is not None:
        return product

    invoiced = _is_invoiced(product)
    if invoiced and not has_capability(actor.role, "DELETE_INVOICED_PRODUCTS"):
        raise PreconditionFailed(
            REASON_INVOICE_PROTECTED,
            "Cannot delete an invoiced product. Void the invoice first or ask a super admin.",
            {"product_id": product.id, "invoice_id": product.invoice_id},
        )

    snapshot = _deletion_snapshot(product)
    product.deleted_at = utcnow()
    product.deleted_by_user_id = actor.user_id
    product.deleted_by_name = actor.name
    product.deletion_reason = (reason or "").strip() or None

    audit_service.record(actor, audit_service.ACTION_PRODUCT_DELETED, "order_product", product.id,
                         old_value=snapshot, new_value={"reason": product.deletion_reason})
    if invoiced:
        current_app.logger.warning(
            "Deleted invoiced product %s (invoice %s)", product.product_order_number, product.invoice_id
        )
        notification_service.notify(
            actor.user_id,
            notification_service.TYPE_WARNING,
            f"Product {product.product_order_number} was deleted but had an existing invoice. "
            f"Review invoice {product.invoice_id}.",
            product.order_id,
        )
    db.session.commit()
    return product


def deleted_products_report(
    *,
    date_from: str | None = None,
    date_to: str | None = None,
    deleted_by: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 25,
) -> dict:
    """Soft-deleted products with their order, client and deleter, newest first."""
    try:
        start = parse_iso_date_bound(date_from)
        end = parse_iso_date_bound(date_to, end_of_day=True)
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO dates (YYYY-MM-DD)")
    page = max(1, int(page or 1))
    per_page = max(1, min(int(per_page or 25), 200))

    query = (
        db.session.query(OrderProduct, Order.order_number, Client.name)
        .join(Order, Order.id == OrderProduct.order_id)
        .join(Client, Client.id == Order.client_id)
        .filter(OrderProduct.deleted_at.isnot(None))
    )
    if start is not None:
        query = query.filter(OrderProduct.deleted_at >= start)
    if end is not None:
        query = query.filter(OrderProduct.deleted_at <= end)
    if deleted_by:
        query = query.filter(OrderProduct.deleted_by_name.ilike(f"%{deleted_by.strip()}%"))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(sa.or_(
            OrderProduct.product_order_number.ilike(term),
            OrderProduct.description.ilike(term),
            Order.order_number.ilike(term),
            Client.name.ilike(term),
            OrderProduct.deletion_reason.ilike(term),
        ))

    total = query.count()
    rows = (
        query.order_by(OrderProduct.deleted_at.desc(), OrderProduct.id.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
        .all()
    )
    items = []
    for product, order_number, client_name in rows:
        items.append({
            "product_id": product.id,
            "product_order_number": product.product_order_number,
            "description": product.description,
            "order_id": product.order_id,
            "order_number": order_number,
            "client_name": client_name,
            "total_quantity": product.total_quantity,
            "invoiced": product.invoiced,
            "deleted_at": to_utc_z(product.deleted_at),
            "deleted_by_user_id": product.deleted_by_user_id,
            "deleted_by_name": product.deleted_by_name,
            "deletion_reason": product.deletion_reason,
        })
    return {"items": items, "total": total, "page": page, "per_page": per_page}
