# Overview: Pytest coverage for checkout funnel tracking and the abandonment sweep.

from datetime import timedelta

import pytest

from storefront.extensions import db
from storefront.models import AbandonedCart, Cart
from storefront.services import abandonment_service, cart_service
from storefront.services.cart_service import CartIdentity
from storefront.time_utils import utcnow
from storefront.validation import NotFoundError, ValidationError

from conftest import line


@pytest.fixture
def guest_cart(make_product, guest):
    shirt = make_product(price_cents=1500)
    cart_service.replace_cart(guest, [line(shirt, 2)])
    return shirt


class TestCheckoutStarted:
    def test_first_visit_creates_started_record(self, guest_cart, guest):
        record = abandonment_service.mark_checkout_started(guest)

        assert record.stage == AbandonedCart.STAGE_CHECKOUT_STARTED
        assert record.session_id == guest.session_id
        assert record.checkout_started_at is not None

    def test_checkout_info_advances_stage_and_captures_contact(self, guest_cart, guest):
        abandonment_service.mark_checkout_started(guest)
        record = abandonment_service.mark_checkout_started(guest, {
            "name": "Ada",
            "email": "ADA@example.com",
            "contact": "01712345678",
        })

        assert record.stage == AbandonedCart.STAGE_CHECKOUT_INFO_FILLED
        assert record.email == "ada@example.com"
        assert record.phone == "01712345678"
        assert record.checkout_info["name"] == "Ada"

    def test_one_record_per_cart(self, guest_cart, guest, db_session):
        abandonment_service.mark_checkout_started(guest)
        abandonment_service.mark_checkout_started(guest)
        assert db_session.query(AbandonedCart).count() == 1

    def test_requires_existing_cart(self, db_session, guest):
        with pytest.raises(NotFoundError, match="Cart session not found"):
            abandonment_service.mark_checkout_started(guest)

    def test_invalid_email_is_rejected(self, guest_cart, guest):
        with pytest.raises(ValidationError):
            abandonment_service.mark_checkout_started(guest, {"email": "nope"})


class TestSweep:
    def test_stale_record_is_abandoned(self, guest_cart, guest, db_session):
        # Activity two hours ago, one hour threshold
        now = utcnow()
        abandonment_service.mark_checkout_started(guest, now=now - timedelta(hours=2))

        count = abandonment_service.sweep_abandoned(threshold_hours=1, now=now)

        record = db_session.query(AbandonedCart).one()
        assert count == 1
        assert record.stage == AbandonedCart.STAGE_ABANDONED
        assert record.abandoned_at is not None

    def test_recent_record_is_left_alone(self, guest_cart, guest, db_session):
        abandonment_service.mark_checkout_started(guest)

        assert abandonment_service.sweep_abandoned(threshold_hours=1) == 0
        assert db_session.query(AbandonedCart).one().stage == AbandonedCart.STAGE_CHECKOUT_STARTED

    def test_sweep_is_idempotent(self, guest_cart, guest, db_session):
        now = utcnow()
        abandonment_service.mark_checkout_started(guest, now=now - timedelta(hours=3))

        assert abandonment_service.sweep_abandoned(threshold_hours=1, now=now) == 1
        first = db_session.query(AbandonedCart).one().abandoned_at

        assert abandonment_service.sweep_abandoned(threshold_hours=1, now=now + timedelta(minutes=5)) == 0
        record = db_session.query(AbandonedCart).one()
        db_session.refresh(record)
        assert record.abandoned_at == first

    def test_cart_activity_reopens_abandoned_record(self, guest_cart, guest, db_session):
        now = utcnow()
        abandonment_service.mark_checkout_started(guest, {"email": "a@example.com"}, now=now - timedelta(hours=5))
        abandonment_service.sweep_abandoned(threshold_hours=1, now=now)

        cart_service.replace_cart(guest, [line(guest_cart, 4)])

        record = db_session.query(AbandonedCart).one()
        db_session.refresh(record)
        assert record.stage == AbandonedCart.STAGE_CHECKOUT_INFO_FILLED
        assert record.abandoned_at is None


class TestConversion:
    def test_retire_removes_cart_and_record(self, guest_cart, guest, db_session):
        abandonment_service.mark_checkout_started(guest)
        cart_id = cart_service.find_cart(guest).id

        assert abandonment_service.retire_for_conversion(cart_id) is True
        assert db_session.get(Cart, cart_id) is None
        assert db_session.query(AbandonedCart).count() == 0

    def test_retire_missing_cart(self, db_session):
        assert abandonment_service.retire_for_conversion(12345) is False


class TestDashboard:
    def test_abandoned_carts_are_repriced(self, guest_cart, guest, db_session):
        now = utcnow()
        abandonment_service.mark_checkout_started(guest, now=now - timedelta(hours=30))
        abandonment_service.sweep_abandoned(threshold_hours=24, now=now)

        variant = guest_cart.variants[0]
        variant.sale_price_cents = 1000
        db.session.commit()

        dashboard = abandonment_service.abandoned_dashboard()

        assert dashboard["count"] == 1
        row = dashboard["carts"][0]
        assert row["cart_available"] is True
        assert row["cart_total_cents"] == 2000
        assert dashboard["total_value_cents"] == 2000
        assert dashboard["stats"][AbandonedCart.STAGE_ABANDONED] == 1

    def test_missing_cart_is_flagged(self, db_session):
        db_session.add(AbandonedCart(
            cart_id=None,
            session_id="orphan",
            stage=AbandonedCart.STAGE_ABANDONED,
            last_activity_at=utcnow(),
            abandoned_at=utcnow(),
        ))
        db_session.commit()

        row = abandonment_service.abandoned_dashboard()["carts"][0]

        assert row["cart_available"] is False
        assert row["note"] == "Cart data no longer available"

    def test_aggregates_cover_carts_beyond_the_page(self, make_product, db_session):
        shirt = make_product(price_cents=1500)
        now = utcnow()
        for session_id, quantity in (("s-a", 1), ("s-b", 2), ("s-c", 3)):
            identity = CartIdentity(session_id=session_id)
            cart_service.replace_cart(identity, [line(shirt, quantity)])
            abandonment_service.mark_checkout_started(identity, now=now - timedelta(hours=30))
        abandonment_service.sweep_abandoned(threshold_hours=24, now=now)

        dashboard = abandonment_service.abandoned_dashboard(limit=1)

        assert len(dashboard["carts"]) == 1
        assert dashboard["count"] == 3
        assert dashboard["total_value_cents"] == 1500 * 6
