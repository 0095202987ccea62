# Overview: Order lookup, status transitions and courier metadata.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import ORDER_STATUSES, Order, OrderStatusHistory
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_email,
    clean_text,
    coerce_int,
)
from storefront.time_utils import utcnow
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event


ALLOWED_TRANSITIONS = {
    "PENDING": {"PROCESSING", "CANCELLED"},
    "PROCESSING": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED", "RETURNED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
    "RETURNED": set(),
}

COURIER_FIELDS = ("courier", "consignment_id", "invoice", "tracking_code", "status", "note")

MIN_TRACKING_PHONE_LENGTH = 10


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def _parse_order_ids(raw) -> list[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("orderIds must be a non-empty list")
    errors = []
    ids = []
    for index, value in enumerate(raw):
        try:
            ids.append(coerce_int(value, f"orderIds[{index}]", minimum=1))
        except ValidationError as exc:
            errors.extend(exc.errors)
    if errors:
        raise ValidationError("Invalid order ids", errors=errors)
    return list(dict.fromkeys(ids))


def _parse_status(raw) -> str:
    status = str(raw or "").strip().upper()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    return status


def update_status(order_ids, status, note: str | None = None) -> list[Order]:
    """
    Move a batch of orders to a new status.

    All-or-nothing: if any order is missing or may not make the
    transition, nothing is changed. Customers with contact details get a
    shipping update for each changed order.
    """
    ids = _parse_order_ids(order_ids)
    status = _parse_status(status)
    note = clean_text(note, "note")

    def _op():
        begin_write()
        orders = lock_for_update(db.session.query(Order).filter(Order.id.in_(ids))).all()

        found = {o.id for o in orders}
        missing = [i for i in ids if i not in found]
        if missing:
            db.session.rollback()
            raise NotFoundError(f"Orders not found: {', '.join(str(i) for i in missing)}")

        blocked = [o for o in orders if not can_transition(o.status, status)]
        if blocked:
            details = {
                "orders": [
                    {"id": o.id, "order_number": o.order_number, "status": o.status}
                    for o in blocked
                ]
            }
            db.session.rollback()
            raise ConflictError(f"Cannot change status to {status}", details=details)

        now = utcnow()
        for order in orders:
            previous = order.status
            order.status = status
            order.status_history.append(OrderStatusHistory(
                status=status,
                note=note or f"Status changed to {status}",
                occurred_at=now,
            ))
            append_ledger_event(
                event_type="order.status_changed",
                entity_type="order",
                entity_id=order.id,
                occurred_at=now,
                payload={"from": previous, "to": status},
            )
        db.session.commit()
        return orders

    orders = run_with_retry(_op)

    for order in orders:
        notification_service.send_shipping_update(order, status)
    return orders


def cancel_orders(order_ids, note: str | None = None) -> list[Order]:
    return update_status(order_ids, "CANCELLED", note or "Order cancelled")


def update_courier_info(order_id, data) -> Order:
    """Merge courier/shipment fields into the order's courier_info."""
    order_id = coerce_int(order_id, "order_id", minimum=1)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    updates = {}
    for key in COURIER_FIELDS:
        if key in data:
            updates[key] = clean_text(data[key], key, max_length=255)
    if not updates:
        raise ValidationError(f"At least one of {', '.join(COURIER_FIELDS)} is required")

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        # JSON columns are not mutation-tracked; assign a new dict
        order.courier_info = {**(order.courier_info or {}), **updates}
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_order(ref) -> Order:
    """Find an order by numeric id or by order number."""
    order = None
    text = str(ref or "").strip()
    if text.isdigit():
        order = db.session.get(Order, int(text))
    if order is None and text:
        order = db.session.query(Order).filter_by(order_number=text.upper()).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def search_orders(
    *,
    query: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
) -> list[Order]:
    """
    Admin order search.

    query matches the order number when it looks like one ("#..."/"ORD..."),
    the phone when it is numeric, and the customer name otherwise.
    """
    q = db.session.query(Order)

    text = (query or "").strip()
    if text:
        if text.startswith("#") or text.upper().startswith("ORD"):
            q = q.filter(Order.order_number.ilike(f"%{text.lstrip('#')}%"))
        elif text.lstrip("+").isdigit():
            q = q.filter(Order.phone.like(f"%{text}%"))
        else:
            q = q.filter(or_(Order.customer_name.ilike(f"%{text}%"), Order.email.ilike(f"%{text}%")))

    if status:
        q = q.filter(Order.status == _parse_status(status))
    if date_from:
        q = q.filter(Order.created_at >= date_from)
    if date_to:
        q = q.filter(Order.created_at <= date_to)

    limit = max(1, min(limit, 500))
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def orders_by_email(email) -> list[Order]:
    email = clean_email(email)
    if not email:
        raise ValidationError("Email is required")
    return (
        db.session.query(Order)
        .filter(Order.email == email)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def track_orders_by_phone(phone) -> list[Order]:
    """Public order tracking. Requires a plausibly complete phone number."""
    phone = clean_text(phone, "phone", max_length=32) or ""
    if len(phone) < MIN_TRACKING_PHONE_LENGTH:
        raise ValidationError("Please enter a valid phone number")
    return (
        db.session.query(Order)
        .filter(Order.phone == phone)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
