# Overview: Scheduler-triggered maintenance jobs (abandonment sweep, guest cart expiry).

from flask import Blueprint, current_app, jsonify

from ..decorators import require_cron
from ..services import abandonment_service, cart_service

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@cron_bp.post("/process-abandoned")
@require_cron
def process_abandoned_route():
    """Mark stale checkout-funnel records as ABANDONED. Safe to run repeatedly."""
    try:
        count = abandonment_service.sweep_abandoned()
        return jsonify({"success": True, "marked_abandoned": count})
    except Exception:
        current_app.logger.exception("Abandoned cart sweep failed")
        return jsonify({"error": "Internal server error"}), 500


@cron_bp.post("/purge-guest-carts")
@require_cron
def purge_guest_carts_route():
    try:
        count = cart_service.purge_stale_guest_carts()
        return jsonify({"success": True, "purged": count})
    except Exception:
        current_app.logger.exception("Guest cart purge failed")
        return jsonify({"error": "Internal server error"}), 500
