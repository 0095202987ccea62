from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import or_, update

from ..extensions import db
from ..models import PromoCode
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_int,
)
from storefront.time_utils import parse_iso_datetime, utcnow


@dataclass
class PromoValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    promo: PromoCode | None = None


def normalize_code(code) -> str:
    text = clean_text(code, "code", max_length=64)
    if not text:
        raise ValidationError("Promo code is required")
    return text.upper()


def get_promo_by_code(code) -> PromoCode:
    promo = db.session.query(PromoCode).filter_by(code=normalize_code(code)).first()
    if not promo:
        raise NotFoundError("Invalid promo code")
    return promo


def check_promo(promo: PromoCode, order_total_cents: int, category: str | None = None,
                now: datetime | None = None) -> list[str]:
    """Every rule the promo violates for this order; empty when it applies."""
    now = now or utcnow()
    errors = []

    if not promo.is_active:
        errors.append("This promo code is no longer active")
    if promo.valid_from and now < promo.valid_from:
        errors.append("This promo code is not yet valid")
    if promo.valid_until and now > promo.valid_until:
        errors.append("This promo code has expired")
    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        errors.append("This promo code has reached its usage limit")
    if order_total_cents < (promo.min_order_amount_cents or 0):
        errors.append(f"Minimum order amount is {promo.min_order_amount_cents / 100:.2f}")
    categories = promo.applicable_categories or []
    if categories and category and category not in categories:
        errors.append("This promo code is not valid for these items")

    return errors


def validate_promo(code, order_total_cents: int, category: str | None = None,
                   now: datetime | None = None) -> PromoValidation:
    """
    Look up a code and collect every violated rule.

    Raises NotFoundError when the code does not exist; otherwise returns
    valid=False with the full error list, or valid=True.
    """
    promo = get_promo_by_code(code)
    errors = check_promo(promo, order_total_cents, category, now)
    return PromoValidation(valid=not errors, errors=errors, promo=promo)


def calculate_discount(promo: PromoCode, order_total_cents: int) -> int:
    """
    Discount in cents for an order total. Pure: no usage is recorded.

    PERCENTAGE values are basis points. The result is capped by
    max_discount_cents, then by the order total, and rounded half-up.
    """
    total = Decimal(max(order_total_cents, 0))
    if promo.discount_type == PromoCode.TYPE_PERCENTAGE:
        discount = total * Decimal(promo.discount_value) / Decimal(10000)
    else:
        discount = Decimal(promo.discount_value)

    if promo.max_discount_cents is not None and discount > promo.max_discount_cents:
        discount = Decimal(promo.max_discount_cents)
    if discount > total:
        discount = total
    if discount < 0:
        discount = Decimal(0)

    return int(discount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def increment_usage(promo_id: int) -> bool:
    """
    Record one redemption if the usage limit still allows it.

    Single conditional UPDATE; the caller owns the transaction.
    """
    stmt = (
        update(PromoCode)
        .where(
            PromoCode.id == promo_id,
            or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
        )
        .values(used_count=PromoCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def apply_promo(code, order_total_cents: int, category: str | None = None) -> dict:
    """
    Validate a code for a checkout and return the discount it will get.

    Nothing is counted here. The redemption is recorded exactly once, in
    the order transaction that carries the code, so a code applied and
    then used on the order consumes one use.
    """
    result = validate_promo(code, order_total_cents, category)
    if not result.valid:
        raise ValidationError(result.errors[0], errors=result.errors)

    promo = result.promo
    discount = calculate_discount(promo, order_total_cents)
    return {
        "code": promo.code,
        "discount_cents": discount,
        "new_total_cents": order_total_cents - discount,
    }


# =============================================================================
# Admin
# =============================================================================

_WRITABLE = (
    "description", "discount_type", "discount_value", "min_order_amount_cents",
    "max_discount_cents", "usage_limit", "valid_from", "valid_until", "is_active",
    "applicable_categories",
)


def _parse_fields(data: dict, *, partial: bool) -> dict:
    errors: list[str] = []
    fields: dict = {}

    def _collect(key, fn):
        if key not in data:
            return
        try:
            fields[key] = fn(data[key])
        except ValidationError as exc:
            errors.extend(exc.errors)

    def _optional_int(name):
        return lambda v: None if v is None else coerce_int(v, name, minimum=0)

    def _datetime(name):
        def _parse(v):
            if isinstance(v, datetime):
                return v
            try:
                dt = parse_iso_datetime(v) if isinstance(v, str) else None
            except ValueError:
                dt = None
            if dt is None:
                raise ValidationError(f"{name} must be an ISO-8601 datetime")
            return dt
        return _parse

    def _discount_type(v):
        kind = str(v or "").strip().upper()
        if kind not in PromoCode.TYPES:
            raise ValidationError(f"discount_type must be one of {', '.join(PromoCode.TYPES)}")
        return kind

    def _categories(v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValidationError("applicable_categories must be a list")
        return [str(c).strip() for c in v if str(c).strip()]

    _collect("description", lambda v: clean_text(v, "description", max_length=2000))
    _collect("discount_type", _discount_type)
    _collect("discount_value", lambda v: coerce_int(v, "discount_value", minimum=0))
    _collect("min_order_amount_cents", lambda v: 0 if v is None else coerce_int(v, "min_order_amount_cents", minimum=0))
    _collect("max_discount_cents", _optional_int("max_discount_cents"))
    _collect("usage_limit", _optional_int("usage_limit"))
    _collect("valid_from", _datetime("valid_from"))
    _collect("valid_until", _datetime("valid_until"))
    _collect("is_active", lambda v: bool(v))
    _collect("applicable_categories", _categories)

    if not partial:
        for required in ("discount_value", "valid_until"):
            if required not in data:
                errors.append(f"{required} is required")

    if errors:
        raise ValidationError("Invalid promo code", errors=errors)
    return fields


def _check_consistency(promo: PromoCode) -> None:
    if promo.discount_type == PromoCode.TYPE_PERCENTAGE and promo.discount_value > 10000:
        raise ValidationError("Percentage discount cannot exceed 100%")
    if promo.valid_from and promo.valid_until and promo.valid_until < promo.valid_from:
        raise ValidationError("valid_until must be after valid_from")


def list_promos() -> list[dict]:
    q = db.session.query(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.id.desc())
    return [p.to_dict() for p in q.all()]


def list_active_promos(now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    q = db.session.query(PromoCode).filter(
        PromoCode.is_active.is_(True),
        PromoCode.valid_from <= now,
        PromoCode.valid_until >= now,
        or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
    )
    return [p.to_public_dict() for p in q.order_by(PromoCode.valid_until).all()]


def create_promo(data: dict, created_by: str | None = None) -> PromoCode:
    code = normalize_code(data.get("code"))
    if db.session.query(PromoCode.id).filter_by(code=code).first():
        raise ConflictError("Promo code already exists")

    fields = _parse_fields(data, partial=False)
    fields.setdefault("discount_type", PromoCode.TYPE_PERCENTAGE)
    fields.setdefault("valid_from", utcnow())

    promo = PromoCode(code=code, created_by=created_by, **fields)
    _check_consistency(promo)
    db.session.add(promo)
    db.session.commit()
    return promo


def get_promo(promo_id: int) -> PromoCode:
    promo = db.session.get(PromoCode, promo_id)
    if not promo:
        raise NotFoundError("Promo code not found")
    return promo


def update_promo(promo_id: int, data: dict) -> PromoCode:
    promo = get_promo(promo_id)
    fields = _parse_fields({k: v for k, v in data.items() if k in _WRITABLE}, partial=True)
    for key, value in fields.items():
        setattr(promo, key, value)
    try:
        _check_consistency(promo)
    except ValidationError:
        db.session.rollback()
        raise
    db.session.commit()
    return promo


def delete_promo(promo_id: int) -> None:
    promo = get_promo(promo_id)
    db.session.delete(promo)
    db.session.commit()


def toggle_promo(promo_id: int) -> PromoCode:
    promo = get_promo(promo_id)
    promo.is_active = not promo.is_active
    db.session.commit()
    return promo
