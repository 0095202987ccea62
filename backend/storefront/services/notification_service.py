# Overview: Customer notifications (order confirmation, shipping updates) delivered by Celery tasks.

from __future__ import annotations

import logging

from flask import current_app

from ..celery_worker import celery_app


"""
Notification dispatch invariants

- Notifications run as Celery tasks; enqueueing never raises into the caller.
- Tasks receive plain dict snapshots, never ORM instances.
- Every delivery failure is logged with the order number it concerns.
"""


class Notifier:
    """Delivery transport. Email/SMS/push providers subclass this."""

    def send_order_confirmation(self, message: dict) -> None:
        raise NotImplementedError

    def send_shipping_update(self, message: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default transport: writes the message to the application log."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def send_order_confirmation(self, message: dict) -> None:
        self.logger.info(
            "Order confirmation for %s to %s (total %s cents)",
            message["order_number"],
            message.get("email") or message.get("phone"),
            message["total_cents"],
        )

    def send_shipping_update(self, message: dict) -> None:
        self.logger.info(
            "Shipping update for %s to %s: %s",
            message["order_number"],
            message.get("email") or message.get("phone"),
            message["status"],
        )


def init_notifications(app, notifier: Notifier | None = None) -> None:
    """Attach the delivery transport to the app."""
    app.extensions["notifier"] = notifier or LoggingNotifier(app.logger)


def set_notifier(app, notifier: Notifier) -> None:
    app.extensions["notifier"] = notifier


def _deliver(kind: str, message: dict) -> dict:
    notifier = current_app.extensions.get("notifier")
    if notifier is None:
        return {"order_number": message.get("order_number"), "status": "skipped"}
    try:
        getattr(notifier, kind)(message)
    except Exception:
        current_app.logger.exception("Notification %s failed for order %s", kind, message.get("order_number"))
        return {"order_number": message.get("order_number"), "status": "failed"}
    return {"order_number": message.get("order_number"), "status": "sent"}


@celery_app.task(name="storefront.services.notification_service.send_order_confirmation_task")
def send_order_confirmation_task(message: dict) -> dict:
    return _deliver("send_order_confirmation", message)


@celery_app.task(name="storefront.services.notification_service.send_shipping_update_task")
def send_shipping_update_task(message: dict) -> dict:
    return _deliver("send_shipping_update", message)


def _enqueue(task, message: dict):
    """Queue a notification task. A broker outage is logged, never raised."""
    try:
        return task.delay(message)
    except Exception:
        current_app.logger.exception("Notification dropped for order %s", message.get("order_number"))
        return None


def _order_message(order) -> dict:
    return {
        "order_number": order.order_number,
        "name": order.customer_name or "Customer",
        "email": order.email,
        "phone": order.phone,
        "address": order.address,
        "city": order.city,
        "items": [item.to_dict() for item in order.items],
        "subtotal_cents": order.subtotal_cents,
        "shipping_cents": order.shipping_cents,
        "discount_cents": order.discount_cents,
        "promo_code": order.promo_code,
        "total_cents": order.total_cents,
    }


def send_order_confirmation(order):
    if not (order.email or order.phone):
        return None
    return _enqueue(send_order_confirmation_task, _order_message(order))


def send_shipping_update(order, status: str):
    if not (order.email or order.phone):
        return None
    message = {
        "order_number": order.order_number,
        "name": order.customer_name or "Customer",
        "email": order.email,
        "phone": order.phone,
        "status": status,
        "tracking_code": (order.courier_info or {}).get("tracking_code"),
    }
    return _enqueue(send_shipping_update_task, message)
