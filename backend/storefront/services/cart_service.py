"""
Cart store - guest and account carts

WHY: A cart is owned by exactly one identity. Guests shop under an opaque
session token; after login the guest cart is folded into the account
cart. A cart row exists only while it holds items, so "cleared" and
"never created" read the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AbandonedCart, Cart, CartItem
from ..validation import NotFoundError, ValidationError, parse_cart_items
from storefront.time_utils import to_utc_z, utcnow
from .abandonment_service import record_activity
from .catalog_service import find_variant, price_line
from .concurrency import begin_write, run_with_retry


@dataclass(frozen=True)
class CartIdentity:
    """Identity presented by the caller: an account id, a guest session token, or both."""
    user_id: int | None = None
    session_id: str | None = None

    def __post_init__(self):
        if self.user_id is None and not self.session_id:
            raise ValidationError("Session ID or account required")

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def owner_filter(self) -> dict:
        # Outside of merge the account identity wins when both are presented
        if self.user_id is not None:
            return {"user_id": self.user_id}
        return {"session_id": self.session_id}

    def new_cart(self) -> Cart:
        if self.user_id is not None:
            return Cart(user_id=self.user_id)
        return Cart(session_id=self.session_id)


def find_cart(identity: CartIdentity) -> Cart | None:
    return db.session.query(Cart).filter_by(**identity.owner_filter()).first()


def touch(cart: Cart, now: datetime | None = None) -> None:
    cart.last_activity_at = now or utcnow()


def delete_cart(cart: Cart) -> None:
    """Delete a cart together with its tracking record. Caller commits."""
    db.session.query(AbandonedCart).filter(AbandonedCart.cart_id == cart.id).delete(
        synchronize_session="evaluate"
    )
    db.session.expire(cart, ["tracking"])
    db.session.delete(cart)
    db.session.flush()


def cart_view(cart: Cart | None) -> dict:
    """Cart as the storefront renders it, priced from the live catalog."""
    if cart is None:
        return {
            "exists": False,
            "cart_id": None,
            "items": [],
            "item_count": 0,
            "subtotal_cents": 0,
            "last_activity_at": None,
        }

    lines = [price_line(i.product_id, i.variant_id, i.quantity) for i in cart.items]
    return {
        "exists": True,
        "cart_id": cart.id,
        "user_id": cart.user_id,
        "session_id": cart.session_id,
        "items": lines,
        "item_count": sum(line["quantity"] for line in lines),
        "subtotal_cents": sum(line["line_total_cents"] for line in lines if line["available"]),
        "last_activity_at": to_utc_z(cart.last_activity_at),
    }


def get_cart(identity: CartIdentity) -> dict:
    return cart_view(find_cart(identity))


def replace_cart(identity: CartIdentity, raw_items) -> Cart | None:
    """
    Overwrite the full item list of the identity's cart (upsert-on-write).

    An empty list deletes the cart and its tracking record and returns None.
    """
    items = parse_cart_items(raw_items)
    for item in items:
        find_variant(item["product_id"], item["variant_id"])

    wanted = {(i["product_id"], i["variant_id"]): i["quantity"] for i in items}

    def _op():
        begin_write()
        cart = find_cart(identity)

        if not wanted:
            if cart is not None:
                delete_cart(cart)
            db.session.commit()
            return None

        if cart is None:
            cart = identity.new_cart()
            db.session.add(cart)

        existing = {(i.product_id, i.variant_id): i for i in cart.items}
        for key, line in existing.items():
            if key not in wanted:
                cart.items.remove(line)
        for (product_id, variant_id), quantity in wanted.items():
            line = existing.get((product_id, variant_id))
            if line is None:
                cart.items.append(CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity))
            else:
                line.quantity = quantity

        now = utcnow()
        touch(cart, now)
        db.session.flush()
        record_activity(cart, now)
        db.session.commit()
        return cart

    return run_with_retry(_op, retry_on=(IntegrityError,))


def clear_cart(identity: CartIdentity) -> bool:
    """Delete the cart and its tracking record. Returns False when there was none."""
    def _op():
        begin_write()
        cart = find_cart(identity)
        if cart is None:
            db.session.rollback()
            return False
        delete_cart(cart)
        db.session.commit()
        return True

    return run_with_retry(_op)


def merge_guest_cart(user_id: int, session_id: str) -> Cart | None:
    """
    Fold the guest cart for session_id into the account cart.

    Additive: matching product+variant lines are summed, everything else
    is kept from both sides. The guest cart is deleted in the same
    transaction, after the merged lines are flushed. Safe to call when the
    guest cart is already gone (returns the account cart unchanged).
    """
    if user_id is None or not session_id:
        raise ValidationError("Both account and session are required to merge carts")

    def _op():
        begin_write()
        guest = (
            db.session.query(Cart)
            .filter(Cart.session_id == session_id, Cart.user_id.is_(None))
            .first()
        )
        account = db.session.query(Cart).filter_by(user_id=user_id).first()

        if guest is None:
            db.session.rollback()
            return account

        now = utcnow()

        if account is None:
            # Nothing to merge into: the guest cart becomes the account cart
            guest.session_id = None
            guest.user_id = user_id
            touch(guest, now)
            if guest.tracking is not None:
                guest.tracking.user_id = user_id
            record_activity(guest, now)
            db.session.commit()
            return guest

        for line in list(guest.items):
            stmt = (
                update(CartItem)
                .where(
                    CartItem.cart_id == account.id,
                    CartItem.product_id == line.product_id,
                    CartItem.variant_id == line.variant_id,
                )
                .values(quantity=CartItem.quantity + line.quantity)
                .execution_options(synchronize_session=False)
            )
            if db.session.execute(stmt).rowcount == 0:
                db.session.add(CartItem(
                    cart_id=account.id,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                ))
        db.session.flush()

        guest_tracking = guest.tracking
        if guest_tracking is not None:
            if account.tracking is None:
                guest_tracking.cart = account
                guest_tracking.user_id = user_id
            else:
                db.session.delete(guest_tracking)
            db.session.flush()

        delete_cart(guest)
        touch(account, now)
        record_activity(account, now)
        db.session.commit()

        current_app.logger.info("Merged guest cart %s into account cart %s", session_id, account.id)
        return account

    return run_with_retry(_op, retry_on=(IntegrityError,))


def purge_stale_guest_carts(*, retention_days: int | None = None, now: datetime | None = None) -> int:
    """
    Delete guest carts idle longer than the retention window.

    ABANDONED tracking records are detached and kept for the dashboard;
    any other tracking record goes with its cart.
    """
    if retention_days is None:
        retention_days = current_app.config.get("GUEST_CART_RETENTION_DAYS", 30)
    cutoff = (now or utcnow()) - timedelta(days=retention_days)

    def _op():
        begin_write()
        stale = (
            db.session.query(Cart)
            .filter(Cart.user_id.is_(None), Cart.last_activity_at < cutoff)
            .all()
        )
        for cart in stale:
            tracking = cart.tracking
            if tracking is not None and tracking.stage == AbandonedCart.STAGE_ABANDONED:
                tracking.cart = None
                db.session.flush()
            delete_cart(cart)
        db.session.commit()
        return len(stale)

    return run_with_retry(_op)


def require_cart(identity: CartIdentity) -> Cart:
    cart = find_cart(identity)
    if cart is None:
        raise NotFoundError("Cart session not found")
    return cart
