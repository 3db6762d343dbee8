"""
Flask CLI command tests.
"""

import json
from datetime import timedelta

import pytest

from factory_orders.models import Order, SystemConfig
from factory_orders.services import routing_service
from factory_orders.time_utils import utcnow


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestConfigCommands:

    def test_seed_defaults_is_idempotent(self, runner, db_session):
        result = runner.invoke(args=["config", "seed-defaults"])
        assert result.exit_code == 0
        assert "default_margin_percentage" in result.output

        result = runner.invoke(args=["config", "seed-defaults"])
        assert "already present" in result.output
        assert db_session.query(SystemConfig).count() == 2

    def test_set_margin_repairs_orders(self, runner, db_session, order, product, super_admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)

        result = runner.invoke(args=["config", "set", "default_margin_percentage", "75.50"])

        assert result.exit_code == 0, result.output
        assert "default_margin_percentage = 75.5" in result.output
        assert "1 products updated" in result.output

    def test_set_rejects_bad_percentage(self, runner, seeded_config):
        result = runner.invoke(args=["config", "set", "default_margin_percentage", "lots"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_show(self, runner, seeded_config):
        result = runner.invoke(args=["config", "show"])
        assert "default_shipping_margin_percentage" in result.output


class TestMaintenanceCommands:

    def _age(self, session, order_id):
        session.query(Order).filter_by(id=order_id).update(
            {"created_at": utcnow() - timedelta(days=30)}, synchronize_session=False
        )
        session.commit()

    def test_dry_run_lists_without_deleting(self, runner, db_session, order):
        self._age(db_session, order.id)

        result = runner.invoke(args=["maintenance", "cleanup-drafts", "--dry-run"])

        assert result.exit_code == 0
        assert "1 draft order(s) eligible" in result.output
        assert "ACM-000001" in result.output
        db_session.expire_all()
        assert db_session.get(Order, order.id) is not None

    def test_cleanup_deletes(self, runner, db_session, order, product):
        self._age(db_session, order.id)

        result = runner.invoke(args=["maintenance", "cleanup-drafts"])

        assert result.exit_code == 0
        assert "Deleted 1 draft order(s)" in result.output
        db_session.expire_all()
        assert db_session.get(Order, order.id) is None

    def test_retention_option(self, runner, db_session, order):
        self._age(db_session, order.id)
        result = runner.invoke(args=["maintenance", "cleanup-drafts", "--retention-days", "60", "--dry-run"])
        assert "0 draft order(s) eligible" in result.output

    def test_repair_margins_prints_report(self, runner, db_session, order, product, super_admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)

        result = runner.invoke(args=["maintenance", "repair-margins", "--order-id", str(order.id)])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["status"] == "ok"
        assert report["orders_scanned"] == 1

    def test_repair_margins_fails_without_config(self, runner, db_session, order, product, super_admin):
        routing_service.set_manufacturer_price(product.id, "10.00", super_admin)
        db_session.query(SystemConfig).delete()
        db_session.commit()

        result = runner.invoke(args=["maintenance", "repair-margins"])

        assert result.exit_code == 1
        assert json.loads(result.stdout)["failures"][0]["code"] == "configuration_missing"

    def test_diagnose(self, runner, seeded_config):
        result = runner.invoke(args=["maintenance", "diagnose"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["healthy"] is True


class TestSystemCommands:

    def test_reset_requires_confirmation(self, runner, db_session):
        result = runner.invoke(args=["system", "reset-db"])
        assert result.exit_code == 1
        assert "--yes" in result.output
