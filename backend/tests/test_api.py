"""
HTTP API tests.

Verifies:
- Missing or malformed identity returns 401
- Roles without the route's capability get 403 with required_capability
- Domain errors map to distinct status codes (409 / 423 / 503)
- Batch endpoints answer 207 when their report lists failures
- Machine callers authenticate with their shared key
"""

from datetime import timedelta

import pytest

from factory_orders.models import Order, OrderProduct, Invoice, SystemConfig
from factory_orders.services import cleanup_service, routing_service
from factory_orders.time_utils import utcnow

from conftest import CLEANUP_KEY, GATEWAY_KEY, actor_headers, advance


def bearer(key: str) -> dict:
    return {'Authorization': f'Bearer {key}'}


# =============================================================================
# AUTHENTICATION (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("POST", "/api/orders/1/transition"),
            ("PUT", "/api/products/1/manufacturer-price"),
            ("POST", "/api/products/1/route"),
            ("DELETE", "/api/products/1"),
            ("GET", "/api/audit"),
            ("GET", "/api/reports/deleted-products"),
            ("POST", "/api/cleanup/old-drafts"),
            ("POST", "/api/invoices/1/paid"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["code"] == "unauthenticated"

    def test_system_role_cannot_be_claimed_by_header(self, client, db_session):
        resp = client.post("/api/cleanup/old-drafts", headers={"X-User-Id": "1", "X-User-Role": "system"})
        assert resp.status_code == 401

    def test_non_numeric_user_id(self, client, db_session):
        resp = client.get("/api/audit", headers={"X-User-Id": "abc", "X-User-Role": "admin"})
        assert resp.status_code == 401

    def test_wrong_api_key(self, client, db_session):
        resp = client.post("/api/cleanup/old-drafts", headers=bearer("nope"))
        assert resp.status_code == 401


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystemEndpoints:

    def test_health_healthy(self, client, seeded_config):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_health_degraded_without_defaults(self, client, db_session):
        resp = client.get("/health")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "degraded"
        assert "default_margin_percentage" in body["checks"]["pricing_config"]["missing_config_keys"]

    def test_version(self, client):
        resp = client.get("/version")
        assert resp.status_code == 200
        assert resp.get_json()["environment"] == "testing"


# =============================================================================
# ORDERS
# =============================================================================


class TestOrderRoutes:

    def test_create_order(self, client, seeded_config, client_org, manufacturer, creator):
        resp = client.post(
            "/api/orders",
            json={"client_id": client_org.id, "manufacturer_id": manufacturer.id},
            headers=actor_headers(creator),
        )
        assert resp.status_code == 201
        assert resp.get_json()["order"]["order_number"] == "ACM-000001"

    def test_create_order_forbidden_for_client(self, client, seeded_config, client_org, client_user):
        resp = client.post("/api/orders", json={"client_id": client_org.id}, headers=actor_headers(client_user))
        assert resp.status_code == 403
        assert resp.get_json()["required_capability"] == "CREATE_ORDERS"

    def test_create_order_bad_body(self, client, seeded_config, creator):
        resp = client.post("/api/orders", json=["not", "an", "object"], headers=actor_headers(creator))
        assert resp.status_code == 400

    def test_client_view_hides_costs(self, client, order, product, super_admin, client_user):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        resp = client.get(f"/api/orders/{order.id}", headers=actor_headers(client_user))
        body = resp.get_json()["order"]
        assert resp.status_code == 200
        assert "manufacturer_price_cents" not in body["products"][0]
        assert body["products"][0]["client_price_cents"] == 1800
        assert body["product_counts"]["total"] == 1

    def test_staff_view_shows_costs(self, client, order, product, super_admin, admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        body = client.get(f"/api/orders/{order.id}", headers=actor_headers(admin)).get_json()["order"]
        assert body["products"][0]["manufacturer_price_cents"] == 1000

    def test_missing_order_is_404(self, client, db_session, admin):
        resp = client.get("/api/orders/999", headers=actor_headers(admin))
        assert resp.status_code == 404

    def test_add_product_and_item(self, client, order, admin):
        resp = client.post(f"/api/orders/{order.id}/products", json={"description": "Hoodie"},
                           headers=actor_headers(admin))
        assert resp.status_code == 201
        product_id = resp.get_json()["product"]["id"]

        resp = client.post(f"/api/products/{product_id}/items", json={"variant_combo": "S / Grey", "quantity": -2},
                           headers=actor_headers(admin))
        assert resp.status_code == 400

        resp = client.post(f"/api/products/{product_id}/items", json={"variant_combo": "S / Grey", "quantity": 12},
                           headers=actor_headers(admin))
        assert resp.status_code == 201
        assert resp.get_json()["item"]["quantity"] == 12

    def test_totals_manufacturer_view_needs_costs(self, client, order, product, client_user, factory_user):
        resp = client.get(f"/api/orders/{order.id}/totals?audience=manufacturer", headers=actor_headers(client_user))
        assert resp.status_code == 403
        resp = client.get(f"/api/orders/{order.id}/totals?audience=manufacturer", headers=actor_headers(factory_user))
        assert resp.status_code == 200


class TestTransitionRoute:

    def test_success(self, client, order, product, admin):
        resp = client.post(f"/api/orders/{order.id}/transition",
                           json={"status": "submitted_to_manufacturer", "expected_status": "draft"},
                           headers=actor_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "submitted_to_manufacturer"

    @pytest.mark.parametrize(
        "actor_fixture,payload,reason",
        [
            ("admin", {"status": "completed"}, "invalid_transition"),
            ("creator", {"status": "submitted_to_manufacturer"}, "permission_denied"),
            ("admin", {"status": "submitted_to_manufacturer", "expected_status": "rejected"}, "stale_state"),
        ],
    )
    def test_refusals_are_409_with_reason(self, request, client, order, product, actor_fixture, payload, reason):
        actor = request.getfixturevalue(actor_fixture)
        resp = client.post(f"/api/orders/{order.id}/transition", json=payload, headers=actor_headers(actor))
        body = resp.get_json()
        assert resp.status_code == 409
        assert body["code"] == "precondition_failed"
        assert body["reason"] == reason

    def test_unresolved_pricing_lists_products(self, client, order, product, admin, factory_user):
        advance(order.id, admin, "submitted_to_manufacturer")
        resp = client.post(f"/api/orders/{order.id}/transition", json={"status": "priced_by_manufacturer"},
                           headers=actor_headers(factory_user))
        body = resp.get_json()
        assert resp.status_code == 409
        assert body["reason"] == "unresolved_pricing"
        assert body["details"]["product_ids"] == [product.id]

    def test_unknown_status_is_400(self, client, order, admin):
        resp = client.post(f"/api/orders/{order.id}/transition", json={"status": "teleported"},
                           headers=actor_headers(admin))
        assert resp.status_code == 400


# =============================================================================
# PRICING AND ROUTING
# =============================================================================


class TestPricingRoutes:

    def test_set_manufacturer_price(self, client, order, product, factory_user):
        resp = client.put(f"/api/products/{product.id}/manufacturer-price", json={"price": "10.00"},
                          headers=actor_headers(factory_user))
        assert resp.status_code == 200
        assert resp.get_json()["product"]["client_price_cents"] == 1800

    def test_locked_is_423(self, client, order, product, admin, factory_user):
        routing_service.lock_product(product.id, admin)
        resp = client.put(f"/api/products/{product.id}/manufacturer-price", json={"price": "10.00"},
                          headers=actor_headers(factory_user))
        assert resp.status_code == 423
        assert resp.get_json()["code"] == "locked"

    def test_missing_config_is_503(self, client, db_session, order, product, factory_user):
        db_session.query(SystemConfig).delete()
        db_session.commit()
        resp = client.put(f"/api/products/{product.id}/manufacturer-price", json={"price": "10.00"},
                          headers=actor_headers(factory_user))
        assert resp.status_code == 503
        assert resp.get_json()["details"]["config_key"] == "default_margin_percentage"

    def test_margin_override_and_clear(self, client, order, product, super_admin, approver):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        resp = client.put(f"/api/products/{product.id}/margin-override", json={"margin_percentage": "50"},
                          headers=actor_headers(approver))
        assert resp.get_json()["product"]["client_price_cents"] == 1500

        resp = client.put(f"/api/products/{product.id}/margin-override", json={"margin_percentage": None},
                          headers=actor_headers(approver))
        assert resp.get_json()["product"]["client_price_cents"] == 1800

    def test_system_config_requires_super_admin(self, client, seeded_config, admin):
        resp = client.put("/api/system-config/default_margin_percentage", json={"value": "50"},
                          headers=actor_headers(admin))
        assert resp.status_code == 403
        assert resp.get_json()["required_capability"] == "MANAGE_SYSTEM_CONFIG"

    def test_system_config_returns_repair_report(self, client, order, product, super_admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        resp = client.put("/api/system-config/default_margin_percentage", json={"value": "50"},
                          headers=actor_headers(super_admin))
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["config"]["config_value"] == "50"
        assert body["repair"]["products_updated"] == 1

    def test_route_to_client_without_price_is_409(self, client, order, product, admin):
        resp = client.post(f"/api/products/{product.id}/route", json={"routed_to": "client"},
                           headers=actor_headers(admin))
        assert resp.status_code == 409
        assert resp.get_json()["reason"] == "unresolved_pricing"

    def test_soft_delete(self, client, db_session, order, product, admin):
        resp = client.delete(f"/api/products/{product.id}", json={"reason": "Duplicate"},
                             headers=actor_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["product"]["deletion_reason"] == "Duplicate"

        resp = client.get("/api/reports/deleted-products?search=Duplicate", headers=actor_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1


# =============================================================================
# MAINTENANCE
# =============================================================================


class TestCleanupRoutes:

    def _age_order(self, session, order_id, days=20):
        session.query(Order).filter_by(id=order_id).update(
            {"created_at": utcnow() - timedelta(days=days)}, synchronize_session=False
        )
        session.commit()

    def test_scheduler_key(self, client, db_session, order, product):
        self._age_order(db_session, order.id)

        resp = client.get("/api/cleanup/old-drafts", headers=bearer(CLEANUP_KEY))
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

        resp = client.post("/api/cleanup/old-drafts", headers=bearer(CLEANUP_KEY))
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["deleted_count"] == 1
        assert body["deleted_orders"] == ["ACM-000001"]

        db_session.expire_all()
        assert db_session.query(OrderProduct).filter_by(order_id=order.id).count() == 0

    def test_admin_lacks_maintenance(self, client, db_session, admin):
        resp = client.post("/api/cleanup/old-drafts", headers=actor_headers(admin))
        assert resp.status_code == 403

    def test_failures_answer_207(self, client, db_session, order, product, monkeypatch):
        self._age_order(db_session, order.id)
        broken = [s for s in cleanup_service.DRAFT_EXPIRY_STEPS if s.table != "order_items"]
        monkeypatch.setattr(cleanup_service, "DRAFT_EXPIRY_STEPS", broken)

        resp = client.post("/api/cleanup/old-drafts", headers=bearer(CLEANUP_KEY))
        body = resp.get_json()
        assert resp.status_code == 207
        assert body["failures"][0]["code"] == "integrity_fault"

    def test_bad_retention(self, client, db_session):
        resp = client.post("/api/cleanup/old-drafts?retention_days=soon", headers=bearer(CLEANUP_KEY))
        assert resp.status_code == 400


class TestDiagnosticsRoutes:

    def test_diagnostics_flags_missing_config(self, client, db_session, admin):
        resp = client.get("/api/diagnostics/margins", headers=actor_headers(admin))
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["healthy"] is False
        assert "default_margin_percentage" in body["missing_config_keys"]

    def test_repair_seeds_and_repairs(self, client, db_session, super_admin):
        resp = client.post("/api/diagnostics/margins/repair", headers=actor_headers(super_admin))
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "ok"
        assert set(body["seeded_config_keys"]) == {"default_margin_percentage", "default_shipping_margin_percentage"}

    def test_audit_listing(self, client, order, creator):
        resp = client.get(f"/api/audit?target_type=order&target_id={order.id}", headers=actor_headers(creator))
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["total"] == 1
        assert body["entries"][0]["action_type"] == "order_created"

    def test_audit_forbidden_for_client(self, client, db_session, client_user):
        resp = client.get("/api/audit", headers=actor_headers(client_user))
        assert resp.status_code == 403


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPaymentRoutes:

    @pytest.fixture
    def invoice(self, db_session, order):
        inv = Invoice(order_id=order.id, invoice_number="INV-3001", amount_cents=5000, status="sent")
        db_session.add(inv)
        db_session.commit()
        return inv

    def test_gateway_key_settles(self, client, invoice):
        payload = {"amount": "50.00", "external_payment_id": "pay_abc"}
        resp = client.post(f"/api/invoices/{invoice.id}/paid", json=payload, headers=bearer(GATEWAY_KEY))
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["status"] == "paid"

        # Redelivery
        resp = client.post(f"/api/invoices/{invoice.id}/paid", json=payload, headers=bearer(GATEWAY_KEY))
        assert resp.status_code == 200

        resp = client.post(f"/api/invoices/{invoice.id}/paid",
                           json={"amount": "50.00", "external_payment_id": "pay_other"},
                           headers=bearer(GATEWAY_KEY))
        assert resp.status_code == 409
        assert resp.get_json()["reason"] == "already_paid"

    def test_cleanup_key_is_not_a_payment_key(self, client, invoice):
        resp = client.post(f"/api/invoices/{invoice.id}/paid",
                           json={"amount": "50.00", "external_payment_id": "pay_abc"},
                           headers=bearer(CLEANUP_KEY))
        assert resp.status_code == 401

    def test_manufacturer_cannot_record_payments(self, client, invoice, factory_user):
        resp = client.post(f"/api/invoices/{invoice.id}/paid",
                           json={"amount": "50.00", "external_payment_id": "pay_abc"},
                           headers=actor_headers(factory_user))
        assert resp.status_code == 403


class TestCors:

    def test_allowed_origin_is_echoed(self, client):
        resp = client.get("/version", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "X-User-Role" in resp.headers["Access-Control-Allow-Headers"]

    def test_unknown_origin_gets_no_header(self, client):
        resp = client.get("/version", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
