# Overview: Checkout funnel tracking for abandoned-cart recovery.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import case, func, update

from ..extensions import db
from ..models import AbandonedCart, Cart, CartItem, Product, ProductVariant
from ..validation import clean_email, clean_text, parse_checkout_info
from storefront.time_utils import utcnow
from .catalog_service import price_line
from .concurrency import begin_write, run_with_retry


"""
Funnel invariants

- One tracking record per cart while the cart exists.
- CHECKOUT_STARTED -> CHECKOUT_INFO_FILLED -> {converted (record deleted) | ABANDONED}.
- Conversion deletes the record (and the cart) after the order is durable.
- ABANDONED is re-opened by new cart activity; abandoned_at is cleared.
- Tracking never gates checkout.
"""


def _active_stage(record: AbandonedCart) -> str:
    if record.checkout_info:
        return AbandonedCart.STAGE_CHECKOUT_INFO_FILLED
    return AbandonedCart.STAGE_CHECKOUT_STARTED


def reactivate(record: AbandonedCart, now: datetime | None = None) -> None:
    record.stage = _active_stage(record)
    record.abandoned_at = None
    record.last_activity_at = now or utcnow()


def record_activity(cart: Cart, now: datetime | None = None) -> AbandonedCart | None:
    """Cart mutation hook: refresh the tracking clock, re-opening ABANDONED records. Caller commits."""
    record = cart.tracking
    if record is None:
        return None
    now = now or utcnow()
    if record.stage == AbandonedCart.STAGE_ABANDONED:
        reactivate(record, now)
    else:
        record.last_activity_at = now
    return record


def mark_checkout_started(identity, checkout_info=None, *, email=None, phone=None,
                          now: datetime | None = None) -> AbandonedCart:
    """
    Create or update the tracking record when the shopper reaches checkout.

    With checkout info the stage becomes CHECKOUT_INFO_FILLED and the
    contact details are captured for recovery.
    """
    from .cart_service import require_cart, touch

    info = parse_checkout_info(checkout_info)
    email = clean_email(email)
    phone = clean_text(phone, "phone", max_length=32)

    def _op():
        begin_write()
        cart = require_cart(identity)
        ts = now or utcnow()

        record = cart.tracking
        if record is None:
            record = AbandonedCart(
                cart=cart,
                user_id=cart.user_id,
                session_id=cart.session_id,
                stage=AbandonedCart.STAGE_CHECKOUT_STARTED,
                checkout_started_at=ts,
            )
            db.session.add(record)
        elif record.stage == AbandonedCart.STAGE_ABANDONED:
            reactivate(record, ts)

        record.checkout_started_at = record.checkout_started_at or ts
        record.last_activity_at = ts

        if info:
            record.checkout_info = {**(record.checkout_info or {}), **info}
            record.stage = AbandonedCart.STAGE_CHECKOUT_INFO_FILLED
            if info.get("email"):
                record.email = info["email"]
            if info.get("contact"):
                record.phone = info["contact"]
        if email:
            record.email = email
        if phone:
            record.phone = phone

        touch(cart, ts)
        db.session.commit()
        return record

    return run_with_retry(_op)


def retire_for_conversion(cart_id: int) -> bool:
    """
    Drop the tracking record and the cart once their order is committed.

    Returns False when the cart was already gone.
    """
    from .cart_service import delete_cart

    def _op():
        begin_write()
        cart = db.session.get(Cart, cart_id)
        if cart is None:
            db.session.query(AbandonedCart).filter_by(cart_id=cart_id).delete()
            db.session.commit()
            return False
        delete_cart(cart)
        db.session.commit()
        return True

    return run_with_retry(_op)


def sweep_abandoned(*, threshold_hours: float | None = None, now: datetime | None = None) -> int:
    """
    Move stale active records to ABANDONED.

    Idempotent: only records still active and still stale are touched, so
    a second run with no intervening activity changes nothing.
    """
    if threshold_hours is None:
        threshold_hours = current_app.config.get("ABANDONED_CART_THRESHOLD_HOURS", 24)
    now = now or utcnow()
    cutoff = now - timedelta(hours=threshold_hours)

    def _op():
        stmt = (
            update(AbandonedCart)
            .where(
                AbandonedCart.stage.in_(AbandonedCart.ACTIVE_STAGES),
                AbandonedCart.last_activity_at < cutoff,
            )
            .values(stage=AbandonedCart.STAGE_ABANDONED, abandoned_at=now)
            .execution_options(synchronize_session=False)
        )
        count = db.session.execute(stmt).rowcount
        db.session.commit()
        return count

    count = run_with_retry(_op)
    if count:
        current_app.logger.info("Marked %s carts as abandoned", count)
    return count


def _dashboard_row(record: AbandonedCart) -> dict:
    row = record.to_dict()
    cart = record.cart
    if cart is None:
        row.update({
            "cart_available": False,
            "note": "Cart data no longer available",
            "items": [],
            "cart_total_cents": 0,
        })
        return row

    lines = [price_line(i.product_id, i.variant_id, i.quantity) for i in cart.items]
    row.update({
        "cart_available": True,
        "items": lines,
        "cart_total_cents": sum(line["line_total_cents"] for line in lines if line["available"]),
    })
    return row


def _abandoned_value_cents() -> int:
    """Current value of every abandoned cart, same pricing rules as the rows."""
    unit_price = case(
        (ProductVariant.sale_price_cents > 0, ProductVariant.sale_price_cents),
        else_=ProductVariant.regular_price_cents,
    )
    total = (
        db.session.query(func.coalesce(func.sum(CartItem.quantity * unit_price), 0))
        .select_from(AbandonedCart)
        .join(CartItem, CartItem.cart_id == AbandonedCart.cart_id)
        .join(ProductVariant, (ProductVariant.id == CartItem.variant_id)
              & (ProductVariant.product_id == CartItem.product_id))
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(AbandonedCart.stage == AbandonedCart.STAGE_ABANDONED, Product.is_active.is_(True))
        .scalar()
    )
    return int(total or 0)


def abandoned_dashboard(*, limit: int = 100) -> dict:
    """
    Abandoned carts re-priced at current catalog prices.

    A record whose cart has been deleted is still listed, flagged
    cart_available=False.
    """
    limit = max(1, min(limit, 500))
    records = (
        db.session.query(AbandonedCart)
        .filter(AbandonedCart.stage == AbandonedCart.STAGE_ABANDONED)
        .order_by(AbandonedCart.abandoned_at.desc(), AbandonedCart.id.desc())
        .limit(limit)
        .all()
    )
    rows = [_dashboard_row(record) for record in records]

    stage_counts = dict(
        db.session.query(AbandonedCart.stage, func.count(AbandonedCart.id))
        .group_by(AbandonedCart.stage)
        .all()
    )

    return {
        "carts": rows,
        "count": stage_counts.get(AbandonedCart.STAGE_ABANDONED, 0),
        "total_value_cents": _abandoned_value_cents(),
        "stats": {
            stage: stage_counts.get(stage, 0)
            for stage in AbandonedCart.ACTIVE_STAGES + (AbandonedCart.STAGE_ABANDONED,)
        },
    }
