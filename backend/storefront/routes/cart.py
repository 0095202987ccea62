# Overview: Flask API routes for the shopper cart and checkout funnel tracking.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_account, require_admin, with_identity
from ..services import abandonment_service, cart_service
from ..validation import NotFoundError, ValidationError, error_payload

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@with_identity
def get_cart_route():
    """Current cart priced at live catalog prices; exists=False when there is none."""
    return jsonify({"cart": cart_service.get_cart(g.identity)})


@cart_bp.put("")
@with_identity
def replace_cart_route():
    """
    Overwrite the cart's item list.

    Body: {"items": [{"product_id", "variant_id", "quantity"}, ...]}
    An empty list deletes the cart.
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.replace_cart(g.identity, data.get("items"))
        return jsonify({"cart": cart_service.cart_view(cart)})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except Exception:
        current_app.logger.exception("Failed to update cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@with_identity
def clear_cart_route():
    try:
        deleted = cart_service.clear_cart(g.identity)
        return jsonify({"cleared": deleted})
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/merge")
@require_account
def merge_cart_route():
    """Fold the guest cart (X-Session-Id) into the account cart (X-User-Id) after login."""
    if not g.session_id:
        return jsonify({"error": "X-Session-Id required"}), 400
    try:
        cart = cart_service.merge_guest_cart(g.user_id, g.session_id)
        return jsonify({"cart": cart_service.cart_view(cart)})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except Exception:
        current_app.logger.exception("Failed to merge carts")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/checkout-started")
@with_identity
def checkout_started_route():
    """
    Record that the shopper reached checkout.

    Body (optional): {"checkoutInfo": {...}, "email": ..., "phone": ...}
    """
    try:
        data = request.get_json(silent=True) or {}
        record = abandonment_service.mark_checkout_started(
            g.identity,
            data.get("checkoutInfo"),
            email=data.get("email"),
            phone=data.get("phone"),
        )
        return jsonify({"tracking": record.to_dict()})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except Exception:
        current_app.logger.exception("Failed to record checkout start")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.get("/abandoned")
@require_admin
def abandoned_dashboard_route():
    limit = request.args.get("limit", 100, type=int)
    return jsonify(abandonment_service.abandoned_dashboard(limit=limit))
