"""
Pytest fixtures for tile stock backend tests.

Provides an app on in-memory SQLite, a recording notifier, two shops with
their users, and helpers to create tiles and authenticate the test client.
"""

import pytest

from tilestock import create_app
from tilestock.extensions import db
from tilestock.models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, ROLE_STAFF, Shop
from tilestock.services import auth_service, tile_service
from tilestock.services.notifier import Notifier
from tilestock.services.tenant_service import CallerIdentity, SYSTEM_CALLER


TEST_PASSWORD = "Passw0rd!"


class RecordingNotifier(Notifier):
    """Keeps every (room, event) pair so tests can assert on published events."""

    def __init__(self):
        self.sent = []

    def send(self, room, event):
        self.sent.append((room, event))

    def events(self, event_type=None):
        return [
            event for room, event in self.sent
            if room.startswith("shop_") and (event_type is None or event["type"] == event_type)
        ]

    def clear(self):
        self.sent.clear()


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
}


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def app(notifier):
    """Fresh application and schema for every test."""
    app = create_app(TEST_CONFIG, notifier=notifier)

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
def shop_a(app):
    """Shop A (first tenant)."""
    shop = Shop(name="Shop A - Main Showroom", address_city="Lahore", low_stock_threshold=50)
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture(scope='function')
def shop_b(app):
    """Shop B (second tenant)."""
    shop = Shop(name="Shop B - Warehouse", address_city="Karachi", low_stock_threshold=50)
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture(scope='function')
def grand_admin(app):
    return auth_service.create_user(
        email="root@tilestock.test", name="Root", password=TEST_PASSWORD, role=ROLE_GRAND_ADMIN,
    )


@pytest.fixture(scope='function')
def admin_a(shop_a):
    return auth_service.create_user(
        email="admin.a@tilestock.test", name="Admin A", password=TEST_PASSWORD,
        role=ROLE_SHOP_ADMIN, shop_id=shop_a.id,
    )


@pytest.fixture(scope='function')
def staff_a(shop_a):
    return auth_service.create_user(
        email="staff.a@tilestock.test", name="Staff A", password=TEST_PASSWORD,
        role=ROLE_STAFF, shop_id=shop_a.id,
    )


@pytest.fixture(scope='function')
def staff_b(shop_b):
    return auth_service.create_user(
        email="staff.b@tilestock.test", name="Staff B", password=TEST_PASSWORD,
        role=ROLE_STAFF, shop_id=shop_b.id,
    )


def caller_for(user) -> CallerIdentity:
    return CallerIdentity(user_id=user.id, role=user.role, shop_id=user.shop_id)


@pytest.fixture(scope='function')
def admin_a_caller(admin_a):
    return caller_for(admin_a)


@pytest.fixture(scope='function')
def staff_a_caller(staff_a):
    return caller_for(staff_a)


@pytest.fixture(scope='function')
def staff_b_caller(staff_b):
    return caller_for(staff_b)


@pytest.fixture(scope='function')
def grand_admin_caller(grand_admin):
    return caller_for(grand_admin)


@pytest.fixture(scope='function')
def make_tile(app, notifier):
    """
    Factory: make_tile(shop, name=..., quantity=..., items_per_packet=...).

    Goes through tile_service so initial stock is audited; the creation
    events are cleared from the notifier.
    """
    def _make(shop, name="Glazed Ceramic 30x30", quantity=0, items_per_packet=1, **fields):
        patch = {"name": name, "quantity": quantity, "items_per_packet": items_per_packet, **fields}
        tile = tile_service.create_tile(SYSTEM_CALLER, patch, shop_id=shop.id)
        notifier.clear()
        return tile

    return _make


def login(client, email, password=TEST_PASSWORD) -> dict:
    """Log in through the API and return an Authorization header dict."""
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture(scope='function')
def login_as(client):
    """login_as(user) -> Authorization header for that user."""
    def _login(user):
        return login(client, user.email)

    return _login
