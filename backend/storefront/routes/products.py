# Overview: Flask API routes for catalog reads and admin product maintenance.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..services import catalog_service
from ..validation import NotFoundError, ValidationError, error_payload

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    category = request.args.get("category")
    products = catalog_service.list_products(category=category)
    return jsonify({"products": [p.to_dict() for p in products]})


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    """Product with its variants at live prices and stock."""
    try:
        product = catalog_service.get_product(product_id)
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    return jsonify({"product": product.to_dict()})


@products_bp.post("")
@require_admin
def create_product_route():
    try:
        data = request.get_json(silent=True) or {}
        product = catalog_service.create_product(data)
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/variants/<int:variant_id>/stock")
@require_admin
def set_stock_route(product_id: int, variant_id: int):
    """Operational stock correction."""
    try:
        data = request.get_json(silent=True) or {}
        variant = catalog_service.set_stock(product_id, variant_id, data.get("stock"))
        current_app.logger.info(
            "Stock for product %s variant %s set to %s", product_id, variant_id, variant.stock
        )
        return jsonify({"variant": variant.to_dict()})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    except Exception:
        current_app.logger.exception("Failed to set stock")
        return jsonify({"error": "Internal server error"}), 500
