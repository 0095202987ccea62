# Overview: Flask API routes for checkout and order management; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, with_identity
from ..services import checkout_service, order_service
from ..validation import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    error_payload,
)
from storefront.time_utils import parse_iso_datetime

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@with_identity
def create_order_route():
    """
    Checkout: turn the submitted items into an order.

    Prices, totals and discounts are computed server-side; client-sent
    amounts are ignored.

    Returns:
    - 201: order created
    - 400: invalid payload or promo
    - 404: product/variant/promo not found
    - 409: insufficient stock
    """
    try:
        data = request.get_json(silent=True)
        order = checkout_service.create_order(g.identity, data)
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except InsufficientStockError as e:
        return jsonify(error_payload(e)), 409
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/quote")
def quote_route():
    """Totals for a prospective order, without placing it."""
    try:
        return jsonify({"quote": checkout_service.quote(request.get_json(silent=True))})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except InsufficientStockError as e:
        return jsonify(error_payload(e)), 409
    except Exception:
        current_app.logger.exception("Failed to quote order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_admin
def search_orders_route():
    try:
        date_from = request.args.get("date_from")
        date_to = request.args.get("date_to")
        orders = order_service.search_orders(
            query=request.args.get("q"),
            status=request.args.get("status"),
            date_from=parse_iso_datetime(date_from) if date_from else None,
            date_to=parse_iso_datetime(date_to) if date_to else None,
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except ValueError:
        return jsonify({"error": "date_from/date_to must be ISO-8601 datetimes"}), 400


@orders_bp.get("/<ref>")
def get_order_route(ref: str):
    """Order by internal id or order number."""
    try:
        order = order_service.get_order(ref)
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    return jsonify({"order": order.to_dict()})


@orders_bp.get("/by-email/<email>")
@require_admin
def orders_by_email_route(email: str):
    try:
        orders = order_service.orders_by_email(email)
    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    return jsonify({"orders": [o.to_dict() for o in orders]})


@orders_bp.get("/track/<phone>")
def track_orders_route(phone: str):
    """Public tracking view; returns the reduced tracking representation only."""
    try:
        orders = order_service.track_orders_by_phone(phone)
    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    return jsonify({"orders": [o.to_tracking_dict() for o in orders]})


@orders_bp.patch("/status")
@require_admin
def update_status_route():
    """
    Bulk status change.

    Body: {"orderIds": [...], "status": "SHIPPED", "note": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        orders = order_service.update_status(data.get("orderIds"), data.get("status"), data.get("note"))
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except ConflictError as e:
        return jsonify(error_payload(e)), 409
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/cancel")
@require_admin
def cancel_orders_route():
    try:
        data = request.get_json(silent=True) or {}
        orders = order_service.cancel_orders(data.get("orderIds"), data.get("note"))
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except ConflictError as e:
        return jsonify(error_payload(e)), 409
    except Exception:
        current_app.logger.exception("Failed to cancel orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/courier")
@require_admin
def update_courier_route(order_id: int):
    try:
        order = order_service.update_courier_info(order_id, request.get_json(silent=True))
        return jsonify({"order": order.to_dict(include_items=False)})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except Exception:
        current_app.logger.exception("Failed to update courier info")
        return jsonify({"error": "Internal server error"}), 500
