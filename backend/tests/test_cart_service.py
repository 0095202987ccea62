# Overview: Pytest coverage for the cart store (upsert, clear, merge, guest expiry).

import threading
from datetime import timedelta

import pytest

from storefront.models import AbandonedCart, Cart, CartItem
from storefront.services import abandonment_service, cart_service
from storefront.services.cart_service import CartIdentity
from storefront.time_utils import utcnow
from storefront.validation import NotFoundError, ValidationError

from conftest import line


def _quantities(cart):
    return {(i.product_id, i.variant_id): i.quantity for i in cart.items}


class TestCartIdentity:
    def test_identity_requires_account_or_session(self):
        with pytest.raises(ValidationError):
            CartIdentity()

    def test_account_wins_when_both_presented(self):
        identity = CartIdentity(user_id=7, session_id="abc")
        assert identity.owner_filter() == {"user_id": 7}


class TestReplaceCart:
    def test_first_write_creates_cart(self, make_product, guest):
        shirt = make_product()
        cart = cart_service.replace_cart(guest, [line(shirt, 2)])

        assert cart.session_id == guest.session_id
        assert cart.user_id is None
        assert _quantities(cart) == {(shirt.id, shirt.variants[0].id): 2}

    def test_replace_overwrites_item_list(self, make_product, guest):
        shirt = make_product(name="Shirt")
        hat = make_product(name="Hat")
        cart_service.replace_cart(guest, [line(shirt, 1), line(hat, 1)])

        cart = cart_service.replace_cart(guest, [line(hat, 5)])

        assert _quantities(cart) == {(hat.id, hat.variants[0].id): 5}

    def test_view_reprices_from_catalog(self, make_product, guest):
        shirt = make_product(price_cents=2500, sale_price_cents=2000)
        cart_service.replace_cart(guest, [line(shirt, 3)])

        view = cart_service.get_cart(guest)

        assert view["exists"] is True
        assert view["item_count"] == 3
        assert view["subtotal_cents"] == 6000
        assert view["items"][0]["unit_price_cents"] == 2000

    def test_unknown_variant_is_rejected(self, make_product, guest):
        shirt = make_product()
        with pytest.raises(NotFoundError):
            cart_service.replace_cart(guest, [{"product_id": shirt.id, "variant_id": 9999, "quantity": 1}])
        assert cart_service.find_cart(guest) is None

    def test_empty_list_deletes_cart_and_tracking(self, make_product, guest, db_session):
        shirt = make_product()
        cart_service.replace_cart(guest, [line(shirt)])
        abandonment_service.mark_checkout_started(guest)

        assert cart_service.replace_cart(guest, []) is None

        assert cart_service.find_cart(guest) is None
        assert db_session.query(AbandonedCart).count() == 0
        assert db_session.query(CartItem).count() == 0
        assert cart_service.get_cart(guest)["exists"] is False

    def test_clear_cart(self, make_product, guest, db_session):
        shirt = make_product()
        cart_service.replace_cart(guest, [line(shirt)])

        assert cart_service.clear_cart(guest) is True
        assert cart_service.clear_cart(guest) is False
        assert db_session.query(Cart).count() == 0


class TestMergeGuestCart:
    def test_merge_is_additive(self, make_product, db_session):
        a = make_product(name="A")
        b = make_product(name="B")
        c = make_product(name="C")
        guest = CartIdentity(session_id="s-1")
        account = CartIdentity(user_id=1)
        cart_service.replace_cart(account, [line(a, 1), line(b, 2)])
        cart_service.replace_cart(guest, [line(b, 3), line(c, 1)])

        merged = cart_service.merge_guest_cart(1, "s-1")

        assert _quantities(merged) == {
            (a.id, a.variants[0].id): 1,
            (b.id, b.variants[0].id): 5,
            (c.id, c.variants[0].id): 1,
        }
        assert cart_service.find_cart(guest) is None
        assert db_session.query(Cart).count() == 1

    def test_merge_without_account_cart_adopts_guest_cart(self, make_product):
        shirt = make_product()
        guest = CartIdentity(session_id="s-2")
        guest_cart = cart_service.replace_cart(guest, [line(shirt, 2)])
        guest_cart_id = guest_cart.id

        merged = cart_service.merge_guest_cart(5, "s-2")

        assert merged.id == guest_cart_id
        assert merged.user_id == 5
        assert merged.session_id is None

    def test_merge_without_guest_cart_returns_account_cart(self, make_product):
        shirt = make_product()
        account = CartIdentity(user_id=9)
        cart_service.replace_cart(account, [line(shirt, 1)])

        merged = cart_service.merge_guest_cart(9, "missing-session")

        assert _quantities(merged) == {(shirt.id, shirt.variants[0].id): 1}

    def test_merge_moves_guest_tracking_record(self, make_product, db_session):
        shirt = make_product()
        guest = CartIdentity(session_id="s-3")
        account = CartIdentity(user_id=3)
        cart_service.replace_cart(account, [line(shirt, 1)])
        cart_service.replace_cart(guest, [line(shirt, 1)])
        abandonment_service.mark_checkout_started(guest, {"email": "a@example.com"})

        merged = cart_service.merge_guest_cart(3, "s-3")

        records = db_session.query(AbandonedCart).all()
        assert len(records) == 1
        assert records[0].cart_id == merged.id
        assert records[0].user_id == 3

    def test_merge_requires_both_identities(self):
        with pytest.raises(ValidationError):
            cart_service.merge_guest_cart(None, "s")

    def test_merge_reactivates_abandoned_account_record(self, make_product, db_session):
        shirt = make_product()
        guest = CartIdentity(session_id="s-4")
        account = CartIdentity(user_id=4)
        now = utcnow()
        cart_service.replace_cart(account, [line(shirt, 1)])
        abandonment_service.mark_checkout_started(account, now=now - timedelta(hours=2))
        abandonment_service.sweep_abandoned(threshold_hours=1, now=now)
        cart_service.replace_cart(guest, [line(shirt, 1)])

        merged = cart_service.merge_guest_cart(4, "s-4")

        record = db_session.query(AbandonedCart).filter_by(cart_id=merged.id).one()
        assert record.stage == AbandonedCart.STAGE_CHECKOUT_STARTED
        assert record.abandoned_at is None

    def test_moved_guest_record_is_not_swept_right_after_merge(self, make_product, db_session):
        shirt = make_product()
        guest = CartIdentity(session_id="s-5")
        cart_service.replace_cart(CartIdentity(user_id=6), [line(shirt, 1)])
        cart_service.replace_cart(guest, [line(shirt, 1)])
        abandonment_service.mark_checkout_started(guest, now=utcnow() - timedelta(hours=2))

        cart_service.merge_guest_cart(6, "s-5")

        assert abandonment_service.sweep_abandoned(threshold_hours=1) == 0

    def test_concurrent_merges_fold_guest_cart_once(self, app, make_product, db_session):
        a = make_product(name="A")
        b = make_product(name="B")
        cart_service.replace_cart(CartIdentity(user_id=7), [line(a, 1)])
        cart_service.replace_cart(CartIdentity(session_id="g"), [line(a, 2), line(b, 1)])

        errors = []
        barrier = threading.Barrier(2)

        def attempt():
            with app.app_context():
                barrier.wait()
                try:
                    cart_service.merge_guest_cart(7, "g")
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        db_session.expire_all()
        merged = cart_service.find_cart(CartIdentity(user_id=7))
        assert errors == []
        assert _quantities(merged) == {
            (a.id, a.variants[0].id): 3,
            (b.id, b.variants[0].id): 1,
        }
        assert cart_service.find_cart(CartIdentity(session_id="g")) is None

class TestGuestCartExpiry:
    def test_stale_guest_carts_are_purged(self, make_product, db_session):
        shirt = make_product()
        stale = CartIdentity(session_id="stale")
        fresh = CartIdentity(session_id="fresh")
        owned = CartIdentity(user_id=11)
        for identity in (stale, fresh, owned):
            cart_service.replace_cart(identity, [line(shirt)])

        old = utcnow() - timedelta(days=31)
        for identity in (stale, owned):
            cart_service.find_cart(identity).last_activity_at = old
        db_session.commit()

        assert cart_service.purge_stale_guest_carts(retention_days=30) == 1
        assert cart_service.find_cart(stale) is None
        assert cart_service.find_cart(fresh) is not None
        assert cart_service.find_cart(owned) is not None

    def test_abandoned_record_survives_purge(self, make_product, db_session):
        shirt = make_product()
        identity = CartIdentity(session_id="gone")
        cart_service.replace_cart(identity, [line(shirt)])
        abandonment_service.mark_checkout_started(identity)

        later = utcnow() + timedelta(days=40)
        abandonment_service.sweep_abandoned(threshold_hours=1, now=later)
        cart_service.purge_stale_guest_carts(retention_days=30, now=later)

        record = db_session.query(AbandonedCart).one()
        assert record.cart_id is None
        assert record.stage == AbandonedCart.STAGE_ABANDONED
