"""
Checkout - cart to order

WHY: The client's cart is only a request. Prices and availability are
re-derived from the catalog, and the order, its number, the stock
decrements and the promo redemption are written in one transaction, so a
persisted order always has its stock taken and a failed checkout leaves
nothing behind.

Steps:
1. Resolve every product/variant (NotFoundError)
2. Optimistic stock pre-check (InsufficientStockError)
3. Unit price = variant effective price; client prices are ignored
4. Subtotal + shipping - promo discount = total
5. Allocate order number (daily counter)
6. Insert order (PENDING) with a snapshot of its items and first history entry
7. Conditional stock decrement per line; any shortfall aborts the transaction
8. After commit: retire cart + tracking record, dispatch confirmation
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory, ProductVariant
from ..validation import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    parse_checkout_payload,
)
from storefront.time_utils import utcnow
from . import notification_service
from .abandonment_service import retire_for_conversion
from .catalog_service import decrement_stock_atomic, find_variant
from .concurrency import begin_write, run_with_retry
from .ledger_service import append_ledger_event, record_failure_event
from .promotions_service import calculate_discount, increment_usage, validate_promo
from .sequence_service import next_order_number


def _shortfall_message(short: list[dict]) -> str:
    names = ", ".join(
        f"{s['name']} ({s['sku']})" if s.get("sku") else s["name"]
        for s in short
    )
    return f"Insufficient stock for {names}"


def price_items(items: list[dict]) -> list[dict]:
    """
    Price validated cart items from the catalog.

    Returns plain snapshot dicts (safe to reuse across a rolled-back
    transaction). Every short line is reported, not just the first.
    """
    lines = []
    short = []

    for item in items:
        product, variant = find_variant(item["product_id"], item["variant_id"])
        if not product.is_active:
            raise NotFoundError(f"Product not found: {product.name}")

        quantity = item["quantity"]
        if variant.stock < quantity:
            short.append({
                "product_id": product.id,
                "variant_id": variant.id,
                "name": product.name,
                "sku": variant.sku,
                "requested_quantity": quantity,
                "available": variant.stock,
            })
            continue

        unit_price = variant.effective_price_cents
        images = list(variant.images or []) or list(product.images or [])
        lines.append({
            "product_id": product.id,
            "variant_id": variant.id,
            "name": product.name,
            "sku": variant.sku,
            "attributes": dict(variant.attributes or {}),
            "image": images[0] if images else None,
            "category": product.category,
            "unit_price_cents": unit_price,
            "quantity": quantity,
            "line_total_cents": unit_price * quantity,
        })

    if short:
        raise InsufficientStockError(_shortfall_message(short), details={"items": short})

    return lines


def quote(payload: dict) -> dict:
    """Totals a checkout would produce, without writing anything."""
    request = parse_checkout_payload(payload)
    lines = price_items(request.items)
    subtotal = sum(line["line_total_cents"] for line in lines)
    discount = 0
    if request.promo_code:
        result = validate_promo(request.promo_code, subtotal, request.category)
        if not result.valid:
            raise ValidationError(result.errors[0], errors=result.errors)
        discount = calculate_discount(result.promo, subtotal)
    return {
        "items": lines,
        "subtotal_cents": subtotal,
        "shipping_cents": request.shipping_cents,
        "discount_cents": discount,
        "total_cents": subtotal + request.shipping_cents - discount,
    }


def _current_stock(line: dict) -> int:
    stock = (
        db.session.query(ProductVariant.stock)
        .filter_by(id=line["variant_id"], product_id=line["product_id"])
        .scalar()
    )
    return stock or 0


def create_order(identity, payload: dict) -> Order:
    """
    Turn a checkout request into a persisted, stock-decremented order.

    identity may be None for a checkout that is not backed by a stored cart.
    Either returns the committed order or raises; nothing is reported as
    created unless the order transaction committed.
    """
    from .cart_service import find_cart

    request = parse_checkout_payload(payload)
    lines = price_items(request.items)

    subtotal = sum(line["line_total_cents"] for line in lines)
    discount = 0
    promo_id = None
    promo_code = None
    if request.promo_code:
        category = request.category or _single_category(lines)
        result = validate_promo(request.promo_code, subtotal, category)
        if not result.valid:
            raise ValidationError(result.errors[0], errors=result.errors)
        discount = calculate_discount(result.promo, subtotal)
        promo_id = result.promo.id
        promo_code = result.promo.code

    shipping = request.shipping_cents
    total = subtotal + shipping - discount

    user_id = identity.user_id if identity is not None else None
    session_id = identity.session_id if identity is not None and user_id is None else None

    def _op():
        begin_write()
        now = utcnow()
        order_number = next_order_number(day=now.date())

        order = Order(
            order_number=order_number,
            user_id=user_id,
            session_id=session_id,
            is_guest=user_id is None,
            customer_name=request.customer_name,
            email=request.email,
            phone=request.phone,
            address=request.address,
            city=request.city,
            note=request.note,
            transaction_id=request.transaction_id,
            subtotal_cents=subtotal,
            shipping_cents=shipping,
            discount_cents=discount,
            total_cents=total,
            promo_code=promo_code,
            status="PENDING",
            created_at=now,
        )
        for line in lines:
            order.items.append(OrderItem(
                product_id=line["product_id"],
                variant_id=line["variant_id"],
                name=line["name"],
                sku=line["sku"],
                attributes=line["attributes"],
                image=line["image"],
                unit_price_cents=line["unit_price_cents"],
                quantity=line["quantity"],
                line_total_cents=line["line_total_cents"],
            ))
        order.status_history.append(OrderStatusHistory(status="PENDING", note="Order placed", occurred_at=now))
        db.session.add(order)
        db.session.flush()

        failed = [
            line for line in lines
            if not decrement_stock_atomic(line["product_id"], line["variant_id"], line["quantity"])
        ]
        if failed:
            db.session.rollback()
            short = [{
                "product_id": line["product_id"],
                "variant_id": line["variant_id"],
                "name": line["name"],
                "sku": line["sku"],
                "requested_quantity": line["quantity"],
                "available": _current_stock(line),
            } for line in failed]
            db.session.rollback()
            raise InsufficientStockError(_shortfall_message(short), details={"items": short})

        if promo_id is not None and not increment_usage(promo_id):
            db.session.rollback()
            raise ValidationError("This promo code has reached its usage limit")

        append_ledger_event(
            event_type="order.created",
            entity_type="order",
            entity_id=order.id,
            occurred_at=now,
            note=f"Order {order_number} placed",
            payload={"order_number": order_number, "total_cents": total, "items": len(lines)},
        )
        db.session.commit()
        return order

    order = run_with_retry(_op, retry_on=(IntegrityError,))

    cart = find_cart(identity) if identity is not None else None
    if cart is not None:
        _retire_cart(order, cart.id)

    notification_service.send_order_confirmation(order)
    return order


def _single_category(lines: list[dict]) -> str | None:
    categories = {line["category"] for line in lines if line.get("category")}
    if len(categories) == 1:
        return categories.pop()
    return None


def _retire_cart(order: Order, cart_id: int) -> None:
    """
    Post-commit cleanup. The order is already durable, so a failure here is
    logged and written to the ledger for reconciliation, never raised.
    """
    order_id = order.id
    order_number = order.order_number
    try:
        retire_for_conversion(cart_id)
    except Exception:
        current_app.logger.exception(
            "Failed to retire cart %s after order %s", cart_id, order_number
        )
        record_failure_event(
            event_type="checkout.cleanup_failed",
            entity_type="order",
            entity_id=order_id,
            note=f"Cart {cart_id} not retired after order {order_number}",
            payload={"cart_id": cart_id, "order_number": order_number},
        )
