"""
Pytest fixtures for storefront backend tests.

Provides test database setup, catalog/promo factories, a recording
notifier and the test client.
"""

from datetime import timedelta

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.services import catalog_service, promotions_service
from storefront.services.cart_service import CartIdentity
from storefront.services.notification_service import Notifier, set_notifier
from storefront.time_utils import utcnow


ADMIN_TOKEN = "test-admin-token"


class RecordingNotifier(Notifier):
    """Collects messages instead of delivering them."""

    def __init__(self):
        self.sent = []

    def send_order_confirmation(self, message: dict) -> None:
        self.sent.append(("order_confirmation", message))

    def send_shipping_update(self, message: dict) -> None:
        self.sent.append(("shipping_update", message))


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing (file-backed SQLite so worker threads share it)."""
    db_path = tmp_path_factory.mktemp("db") / "storefront-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CELERY_TASK_ALWAYS_EAGER': True,
        'CELERY_BROKER_URL': 'memory://',
        'ADMIN_API_TOKEN': ADMIN_TOKEN,
        'CRON_SECRET': None,
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
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    recorder = RecordingNotifier()
    set_notifier(app, recorder)
    return recorder


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with one default variant, or explicit variants."""
    def _make(name="Linen Shirt", price_cents=2500, sale_price_cents=0, stock=10,
              category="shirts", variants=None, **extra):
        data = {"name": name, "category": category, **extra}
        if variants is not None:
            data["variants"] = variants
        else:
            data.update({
                "regular_price_cents": price_cents,
                "sale_price_cents": sale_price_cents,
                "stock": stock,
            })
        return catalog_service.create_product(data)
    return _make


@pytest.fixture(scope='function')
def make_promo(db_session):
    """Factory: promo code valid from an hour ago for thirty days."""
    def _make(code="SAVE10", **overrides):
        now = utcnow()
        data = {
            "code": code,
            "discount_type": "PERCENTAGE",
            "discount_value": 1000,
            "valid_from": now - timedelta(hours=1),
            "valid_until": now + timedelta(days=30),
        }
        data.update(overrides)
        return promotions_service.create_promo(data)
    return _make


@pytest.fixture(scope='function')
def guest():
    return CartIdentity(session_id="guest-session-1")


@pytest.fixture(scope='function')
def account():
    return CartIdentity(user_id=42)


def line(product, quantity=1, variant=None):
    """Cart item payload for a product's (first) variant."""
    variant = variant or product.variants[0]
    return {"product_id": product.id, "variant_id": variant.id, "quantity": quantity}


def admin_headers() -> dict:
    return {'Authorization': f'Bearer {ADMIN_TOKEN}'}


def guest_headers(session_id: str = "guest-session-1") -> dict:
    return {'X-Session-Id': session_id}
