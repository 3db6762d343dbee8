"""
Pytest fixtures for factory order backend tests.

Provides the test database, one actor per role, seeded margin defaults and
a draft order with a product ready to be priced.
"""

import pytest

from factory_orders import create_app
from factory_orders.extensions import db
from factory_orders.models import Client, Manufacturer
from factory_orders.permissions import Actor, Role
from factory_orders.services import margin_service, order_service


MANUFACTURER_USER_ID = 50
CLIENT_USER_ID = 60

CLEANUP_KEY = "test-cleanup-key"
GATEWAY_KEY = "test-gateway-key"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CLEANUP_API_KEY': CLEANUP_KEY,
        'PAYMENT_WEBHOOK_API_KEY': GATEWAY_KEY,
        'DRAFT_RETENTION_DAYS': 15,
        'CLEANUP_PURGE_AUDIT_ENTRIES': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    # Cleanup after test
    db.session.rollback()


# =============================================================================
# ACTORS
# =============================================================================


@pytest.fixture
def super_admin():
    return Actor(user_id=1, role=Role.SUPER_ADMIN, name="Sam Super")


@pytest.fixture
def admin():
    return Actor(user_id=2, role=Role.ADMIN, name="Ada Admin")


@pytest.fixture
def approver():
    return Actor(user_id=3, role=Role.ORDER_APPROVER, name="Avery Approver")


@pytest.fixture
def creator():
    return Actor(user_id=4, role=Role.ORDER_CREATOR, name="Casey Creator")


@pytest.fixture
def factory_user():
    return Actor(user_id=MANUFACTURER_USER_ID, role=Role.MANUFACTURER, name="Factory Desk")


@pytest.fixture
def client_user():
    return Actor(user_id=CLIENT_USER_ID, role=Role.CLIENT, name="Client Buyer")


# =============================================================================
# DATA
# =============================================================================


@pytest.fixture
def seeded_config(db_session):
    """System defaults: 80% product margin, 0% shipping margin."""
    margin_service.seed_system_defaults()
    return margin_service.load_margin_config()


@pytest.fixture
def client_org(db_session):
    org = Client(name="Acme Apparel", email="buyer@acme.test", order_prefix="ACM", user_id=CLIENT_USER_ID)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def manufacturer(db_session):
    factory = Manufacturer(name="Harbor Knit Works", email="desk@harbor.test", user_id=MANUFACTURER_USER_ID)
    db_session.add(factory)
    db_session.commit()
    return factory


@pytest.fixture
def order(db_session, seeded_config, client_org, manufacturer, admin):
    """Draft order for Acme made by Harbor."""
    return order_service.create_order(client_org.id, manufacturer.id, admin)


@pytest.fixture
def product(order, admin):
    """One product line with a single variant of 10 units."""
    line = order_service.add_product(order.id, admin, description="Crew neck sweater")
    order_service.add_item(line.id, admin, variant_combo="M / Navy", quantity=10)
    return line


def advance(order_id, actor, *statuses):
    """Walk an order through `statuses` in order; returns the order."""
    from factory_orders.services import status_service

    current = None
    for status in statuses:
        current = status_service.transition_order(order_id, status, actor)
    return current


def actor_headers(actor) -> dict:
    """Forwarded identity headers for an actor."""
    headers = {
        'X-User-Id': str(actor.user_id),
        'X-User-Role': actor.role.value,
    }
    if actor.name:
        headers['X-User-Name'] = actor.name
    return headers
