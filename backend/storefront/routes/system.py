# backend/storefront/routes/system.py
"""
System health and operational endpoints.

/health reports database reachability so load balancers can take an
unhealthy instance out of rotation.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..decorators import require_admin
from ..models import Order, Product
from ..services import ledger_service
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
        }
    }
    return response, 200 if healthy else 503


@system_bp.get("/api/ledger")
@require_admin
def list_ledger_events():
    """Recent operational events (e.g. checkout.cleanup_failed) for reconciliation."""
    event_type = request.args.get("event_type")
    limit = request.args.get("limit", 100, type=int)
    return jsonify({"events": ledger_service.list_events(event_type=event_type, limit=limit)})
