from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..services import promotions_service
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_int,
    error_payload,
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promo")


def _order_total(data: dict) -> int:
    return coerce_int(data.get("orderTotal"), "orderTotal", minimum=0)


@promotions_bp.route("/validate", methods=["POST"])
def validate_promo_route():
    """
    Check a code against an order total without redeeming it.

    Body: {"code", "orderTotal" (cents), "category"}
    Response lists every violated rule when the code does not apply.
    """
    data = request.get_json(silent=True) or {}
    try:
        total = _order_total(data)
        category = clean_text(data.get("category"), "category", max_length=120)
        result = promotions_service.validate_promo(data.get("code"), total, category)
    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404

    if not result.valid:
        return jsonify({"valid": False, "error": result.errors[0], "errors": result.errors}), 400

    discount = promotions_service.calculate_discount(result.promo, total)
    return jsonify({
        "valid": True,
        "promo": result.promo.to_public_dict(),
        "discount_cents": discount,
        "new_total_cents": total - discount,
    })


@promotions_bp.route("/apply", methods=["POST"])
def apply_promo_route():
    data = request.get_json(silent=True) or {}
    try:
        total = _order_total(data)
        category = clean_text(data.get("category"), "category", max_length=120)
        result = promotions_service.apply_promo(data.get("code"), total, category)
        return jsonify(result)

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404


@promotions_bp.route("", methods=["GET"])
@require_admin
def list_promos_route():
    return jsonify({"promos": promotions_service.list_promos()})


@promotions_bp.route("/active", methods=["GET"])
def active_promos_route():
    return jsonify({"promos": promotions_service.list_active_promos()})


@promotions_bp.route("", methods=["POST"])
@require_admin
def create_promo_route():
    data = request.get_json(silent=True) or {}
    try:
        promo = promotions_service.create_promo(data, created_by=data.get("createdBy"))
        current_app.logger.info("Promo code %s created", promo.code)
        return jsonify({"promo": promo.to_dict()}), 201

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except ConflictError as e:
        return jsonify(error_payload(e)), 409


@promotions_bp.route("/<int:promo_id>", methods=["PATCH"])
@require_admin
def update_promo_route(promo_id: int):
    data = request.get_json(silent=True) or {}
    try:
        promo = promotions_service.update_promo(promo_id, data)
        return jsonify({"promo": promo.to_dict()})

    except ValidationError as e:
        return jsonify(error_payload(e)), 400
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_admin
def delete_promo_route(promo_id: int):
    try:
        promotions_service.delete_promo(promo_id)
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    return jsonify({"deleted": True})


@promotions_bp.route("/<int:promo_id>/toggle", methods=["POST"])
@require_admin
def toggle_promo_route(promo_id: int):
    try:
        promo = promotions_service.toggle_promo(promo_id)
    except NotFoundError as e:
        return jsonify(error_payload(e)), 404
    return jsonify({"promo": promo.to_dict()})
