# backend/storefront/tasks.py
from flask import current_app

from .celery_worker import celery_app
from .services import abandonment_service, cart_service


@celery_app.task(name="storefront.tasks.sweep_abandoned_carts_task")
def sweep_abandoned_carts_task():
    current_app.logger.info("Abandoned cart sweep task started")
    count = abandonment_service.sweep_abandoned()
    return {"marked_abandoned": count}


@celery_app.task(name="storefront.tasks.purge_guest_carts_task")
def purge_guest_carts_task():
    current_app.logger.info("Guest cart purge task started")
    count = cart_service.purge_stale_guest_carts()
    return {"purged": count}
