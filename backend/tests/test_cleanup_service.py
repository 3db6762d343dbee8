"""
Draft expiry and soft delete tests.

Verifies:
- Expired drafts are removed with every dependent row, children first
- Optional tables are cleaned when present and skipped when absent
- A purge that would orphan rows is rolled back and reported
- Re-running the sweep treats already deleted orders as success
- Soft-deleted products leave pricing but stay in the report
"""

from datetime import timedelta

import pytest
import sqlalchemy as sa

from factory_orders.errors import PermissionDeniedError, PreconditionFailed
from factory_orders.extensions import db
from factory_orders.models import (
    AuditLogEntry,
    ClientNote,
    Invoice,
    InvoiceItem,
    Notification,
    Order,
    OrderItem,
    OrderMargin,
    OrderMedia,
    OrderProduct,
)
from factory_orders.services import cleanup_service, margin_service, order_service, routing_service
from factory_orders.services.cleanup_service import DeletionStep
from factory_orders.time_utils import utcnow

from conftest import advance


def _age(session, order_id, days):
    session.execute(
        sa.update(Order).where(Order.id == order_id).values(created_at=utcnow() - timedelta(days=days))
    )
    session.commit()


def _count(session, model, **filters):
    return session.query(model).filter_by(**filters).count()


@pytest.fixture
def stale_draft(db_session, order, product, admin):
    """20-day-old draft with a product, an item, media, notes, a margin record and an invoice."""
    item = product.items[0]
    invoice = Invoice(order_id=order.id, invoice_number="INV-0001", amount_cents=18000)
    db_session.add(invoice)
    db_session.flush()
    db_session.add_all([
        InvoiceItem(invoice_id=invoice.id, order_product_id=product.id, description="Crew neck", amount_cents=18000),
        OrderMedia(order_id=order.id, order_product_id=product.id, file_url="https://cdn.test/p1.jpg"),
        OrderMedia(order_id=order.id, file_url="https://cdn.test/order.pdf"),
        ClientNote(order_id=order.id, body="Please confirm pantone"),
        OrderMargin(order_id=order.id),
        Notification(user_id=2, type="info", message="Draft created", order_id=order.id),
    ])
    db_session.commit()
    _age(db_session, order.id, 20)
    return {"order_id": order.id, "product_id": product.id, "item_id": item.id, "invoice_id": invoice.id}


def _assert_gone(session, ids):
    session.expire_all()
    order_id = ids["order_id"]
    assert _count(session, Order, id=order_id) == 0
    assert _count(session, OrderProduct, order_id=order_id) == 0
    assert _count(session, OrderItem, id=ids["item_id"]) == 0
    assert _count(session, Invoice, order_id=order_id) == 0
    assert _count(session, InvoiceItem, invoice_id=ids["invoice_id"]) == 0
    assert _count(session, OrderMedia, order_id=order_id) == 0
    assert _count(session, ClientNote, order_id=order_id) == 0
    assert _count(session, OrderMargin, order_id=order_id) == 0
    assert _count(session, Notification, order_id=order_id) == 0


# =============================================================================
# DRAFT EXPIRY SWEEP
# =============================================================================


class TestDraftSweep:

    def test_removes_order_and_dependents(self, db_session, stale_draft):
        report = cleanup_service.sweep_expired_drafts()

        assert report.status == "ok"
        assert [d["order_id"] for d in report.deleted] == [stale_draft["order_id"]]
        rows = report.deleted[0]["rows_deleted"]
        assert rows["invoice_items"] == 1
        assert rows["order_media"] == 2
        assert rows["orders"] == 1
        _assert_gone(db_session, stale_draft)

    def test_rerun_is_idempotent(self, db_session, stale_draft):
        cleanup_service.sweep_expired_drafts()
        report = cleanup_service.sweep_expired_drafts()
        assert report.status == "ok"
        assert report.deleted == []
        assert report.failures == []

    def test_purging_absent_order_is_success(self, db_session, stale_draft):
        cleanup_service.purge_order(stale_draft["order_id"])
        result = cleanup_service.purge_order(stale_draft["order_id"])
        assert result.outcome == cleanup_service.OUTCOME_ABSENT

    def test_recent_drafts_are_kept(self, db_session, order, product):
        report = cleanup_service.sweep_expired_drafts()
        assert report.deleted == []
        assert _count(db_session, Order, id=order.id) == 1

    def test_submitted_orders_are_kept(self, db_session, order, product, admin):
        advance(order.id, admin, "submitted_to_manufacturer")
        _age(db_session, order.id, 40)
        assert cleanup_service.find_expired_drafts() == []
        assert _count(db_session, Order, id=order.id) == 1

    def test_purge_rechecks_eligibility(self, db_session, stale_draft, admin):
        advance(stale_draft["order_id"], admin, "submitted_to_manufacturer")
        result = cleanup_service.purge_order(stale_draft["order_id"], cutoff=utcnow())
        assert result.outcome == cleanup_service.OUTCOME_NOT_ELIGIBLE

    def test_retention_override(self, db_session, order, product):
        _age(db_session, order.id, 5)
        assert cleanup_service.count_expired_drafts()["count"] == 0
        assert cleanup_service.count_expired_drafts(3)["count"] == 1
        report = cleanup_service.sweep_expired_drafts(3)
        assert report.retention_days == 3
        assert len(report.deleted) == 1

    def test_audit_entries_survive_by_default(self, db_session, stale_draft):
        cleanup_service.sweep_expired_drafts()
        remaining = _count(db_session, AuditLogEntry, target_type="order", target_id=stale_draft["order_id"])
        # order_created plus the purge record itself
        assert remaining == 2

    def test_audit_entries_purged_when_configured(self, app, db_session, stale_draft, monkeypatch):
        monkeypatch.setitem(app.config, "CLEANUP_PURGE_AUDIT_ENTRIES", True)
        cleanup_service.sweep_expired_drafts()

        product_entries = _count(db_session, AuditLogEntry, target_type="order_product",
                                 target_id=stale_draft["product_id"])
        order_entries = db_session.query(AuditLogEntry).filter_by(
            target_type="order", target_id=stale_draft["order_id"]
        ).all()
        assert product_entries == 0
        assert [e.action_type for e in order_entries] == ["draft_order_purged"]

    def test_one_failure_does_not_stop_the_sweep(self, db_session, stale_draft, client_org, manufacturer, admin,
                                                 monkeypatch):
        second = order_service.create_order(client_org.id, manufacturer.id, admin)
        _age(db_session, second.id, 30)
        second_id = second.id

        real_purge = cleanup_service.purge_order

        def flaky_purge(order_id, **kwargs):
            if order_id == stale_draft["order_id"]:
                raise sa.exc.OperationalError("DELETE", {}, Exception("database is locked"))
            return real_purge(order_id, **kwargs)

        monkeypatch.setattr(cleanup_service, "purge_order", flaky_purge)
        report = cleanup_service.sweep_expired_drafts()

        assert report.status == "partial_failure"
        assert [d["order_id"] for d in report.deleted] == [second_id]
        assert report.failures[0]["order_id"] == stale_draft["order_id"]
        assert report.failures[0]["code"] == "database_error"


class TestOptionalTables:

    def test_missing_optional_tables_are_skipped(self, db_session, stale_draft):
        inspector = sa.inspect(db.session.connection())
        assert not inspector.has_table("email_history")
        report = cleanup_service.sweep_expired_drafts()
        assert report.status == "ok"

    def test_present_optional_table_is_cleaned(self, db_session, stale_draft):
        db_session.execute(sa.text(
            "CREATE TABLE email_history (id INTEGER PRIMARY KEY, order_id INTEGER, subject TEXT)"
        ))
        db_session.execute(
            sa.text("INSERT INTO email_history (order_id, subject) VALUES (:oid, 'Draft saved')"),
            {"oid": stale_draft["order_id"]},
        )
        db_session.commit()
        try:
            report = cleanup_service.sweep_expired_drafts()
            assert report.status == "ok"
            assert report.deleted[0]["rows_deleted"]["email_history"] == 1
            remaining = db_session.execute(sa.text("SELECT COUNT(*) FROM email_history")).scalar()
            assert remaining == 0
        finally:
            db_session.rollback()
            db_session.execute(sa.text("DROP TABLE email_history"))
            db_session.commit()


class TestOrphanGuard:

    def test_leftover_rows_roll_back_the_order(self, db_session, stale_draft, monkeypatch):
        broken = [s for s in cleanup_service.DRAFT_EXPIRY_STEPS if s.table != "order_items"]
        monkeypatch.setattr(cleanup_service, "DRAFT_EXPIRY_STEPS", broken)

        report = cleanup_service.sweep_expired_drafts()

        assert report.status == "failed"
        failure = report.failures[0]
        assert failure["code"] == "integrity_fault"
        db_session.expire_all()
        assert _count(db_session, Order, id=stale_draft["order_id"]) == 1
        assert _count(db_session, InvoiceItem, invoice_id=stale_draft["invoice_id"]) == 1

    def test_steps_delete_children_before_parents(self):
        tables = [s.table for s in cleanup_service.DRAFT_EXPIRY_STEPS]
        assert tables[-1] == "orders"
        assert tables.index("order_items") < tables.index("order_products")
        assert tables.index("invoice_items") < tables.index("invoices")
        assert tables.index("order_media") < tables.index("order_products")

    def test_reference_list_is_independent_of_steps(self):
        assert isinstance(cleanup_service.DEPENDENT_REFERENCES, tuple)
        assert DeletionStep("order_items", "order_product_id", "products") in cleanup_service.DEPENDENT_REFERENCES


# =============================================================================
# SOFT DELETE
# =============================================================================


class TestSoftDelete:

    def test_marks_row_without_removing_it(self, db_session, product, admin):
        deleted = cleanup_service.soft_delete_product(product.id, admin, reason="Client changed their mind")
        assert deleted.deleted_at is not None
        assert deleted.deleted_by_user_id == admin.user_id
        assert deleted.deleted_by_name == "Ada Admin"
        assert deleted.deletion_reason == "Client changed their mind"
        assert _count(db_session, OrderProduct, id=product.id) == 1

    def test_is_idempotent(self, db_session, product, admin):
        first = cleanup_service.soft_delete_product(product.id, admin, reason="Dup")
        stamp = first.deleted_at
        again = cleanup_service.soft_delete_product(product.id, admin, reason="Other")
        assert again.deleted_at == stamp
        assert again.deletion_reason == "Dup"
        assert _count(db_session, AuditLogEntry, action_type="product_deleted") == 1

    def test_excluded_from_pricing_and_totals(self, db_session, order, product, admin, super_admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        cleanup_service.soft_delete_product(product.id, admin)

        totals = order_service.calculate_order_totals(order, "client")
        assert totals["products_cents"] == 0
        assert order_service.product_counts(order)["total"] == 0
        assert margin_service.find_products_missing_client_price() == []

    def test_snapshot_is_audited(self, db_session, product, admin):
        cleanup_service.soft_delete_product(product.id, admin, reason="Dup")
        entry = db_session.query(AuditLogEntry).filter_by(action_type="product_deleted").one()
        assert '"variant": "M / Navy"' in entry.old_value
        assert '"total_quantity": 10' in entry.old_value

    def test_requires_capability(self, db_session, product, approver):
        with pytest.raises(PermissionDeniedError):
            cleanup_service.soft_delete_product(product.id, approver)


class TestInvoiceProtection:

    @pytest.fixture
    def invoiced_product(self, db_session, order, product):
        invoice = Invoice(order_id=order.id, invoice_number="INV-0100", amount_cents=18000)
        db_session.add(invoice)
        db_session.flush()
        db_session.add(InvoiceItem(invoice_id=invoice.id, order_product_id=product.id,
                                   description="Crew neck", amount_cents=18000))
        db_session.commit()
        return product

    def test_admin_is_refused(self, db_session, invoiced_product, admin):
        with pytest.raises(PreconditionFailed) as exc_info:
            cleanup_service.soft_delete_product(invoiced_product.id, admin)
        assert exc_info.value.reason == "invoice_protected"
        assert db_session.get(OrderProduct, invoiced_product.id).deleted_at is None

    def test_super_admin_deletes_and_is_warned(self, db_session, invoiced_product, super_admin):
        cleanup_service.soft_delete_product(invoiced_product.id, super_admin, reason="Billing error")
        warning = db_session.query(Notification).filter_by(user_id=super_admin.user_id).one()
        assert warning.type == "warning"
        assert invoiced_product.product_order_number in warning.message


class TestDeletedProductsReport:

    def test_lists_deleted_products_with_context(self, db_session, order, product, admin):
        kept = order_service.add_product(order.id, admin, description="Scarf")
        cleanup_service.soft_delete_product(product.id, admin, reason="Out of stock yarn")

        report = cleanup_service.deleted_products_report()
        assert report["total"] == 1
        row = report["items"][0]
        assert row["product_id"] == product.id
        assert row["order_number"] == order.order_number
        assert row["client_name"] == "Acme Apparel"
        assert row["deleted_by_name"] == "Ada Admin"
        assert row["deletion_reason"] == "Out of stock yarn"
        assert row["total_quantity"] == 10
        assert kept.id not in [r["product_id"] for r in report["items"]]

    def test_search_and_filters(self, db_session, order, product, admin):
        cleanup_service.soft_delete_product(product.id, admin, reason="Out of stock yarn")

        assert cleanup_service.deleted_products_report(search="yarn")["total"] == 1
        assert cleanup_service.deleted_products_report(search="Acme")["total"] == 1
        assert cleanup_service.deleted_products_report(search="nothing-like-this")["total"] == 0
        assert cleanup_service.deleted_products_report(deleted_by="ada")["total"] == 1
        assert cleanup_service.deleted_products_report(date_from="2000-01-01", date_to="2000-01-31")["total"] == 0

    def test_bad_dates_rejected(self, db_session):
        from factory_orders.errors import ValidationError

        with pytest.raises(ValidationError):
            cleanup_service.deleted_products_report(date_from="yesterday")
