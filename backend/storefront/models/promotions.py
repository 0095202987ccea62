from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class PromoCode(db.Model):
    """
    Promo codes redeemable at checkout.

    Supports PERCENTAGE (discount_value in basis points) and FIXED
    (discount_value in cents). used_count only moves through the
    conditional increment in promotions_service.
    """
    __tablename__ = "promo_codes"
    __table_args__ = (
        db.Index("ix_promo_codes_code_active", "code", "is_active"),
        {"sqlite_autoincrement": True},
    )

    TYPE_PERCENTAGE = "PERCENTAGE"
    TYPE_FIXED = "FIXED"
    TYPES = (TYPE_PERCENTAGE, TYPE_FIXED)

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False, default=TYPE_PERCENTAGE)
    discount_value = db.Column(db.Integer, nullable=False)  # basis points for PERCENTAGE, cents for FIXED

    min_order_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)  # NULL = uncapped

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    used_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Empty list means every category
    applicable_categories = db.Column(db.JSON, nullable=False, default=list)

    created_by = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_amount_cents": self.min_order_amount_cents,
            "max_discount_cents": self.max_discount_cents,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
            "applicable_categories": list(self.applicable_categories or []),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_public_dict(self) -> dict:
        return {
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_amount_cents": self.min_order_amount_cents,
            "max_discount_cents": self.max_discount_cents,
            "valid_until": to_utc_z(self.valid_until),
        }
