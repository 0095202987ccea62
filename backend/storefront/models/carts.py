from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Cart(db.Model):
    """
    Shopping cart owned by exactly one identity: an account or a guest session.

    A cart row only exists while it has items. Emptying, converting or
    expiring a cart deletes the row.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_carts_single_owner",
        ),
        db.Index("ix_carts_session_activity", "session_id", "last_activity_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, unique=True)
    session_id = db.Column(db.String(128), nullable=True, unique=True)

    # Idle-expiry clock for guest carts; reset by every mutation
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def __repr__(self) -> str:
        owner = f"user_id={self.user_id}" if self.user_id is not None else f"session_id={self.session_id!r}"
        return f"<Cart id={self.id} {owner}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "last_activity_at": to_utc_z(self.last_activity_at),
            "created_at": to_utc_z(self.created_at),
        }


class CartItem(db.Model):
    """One product+variant line in a cart. Duplicates are merged, never stored twice."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", "variant_id", name="uq_cart_items_cart_product_variant"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
        }


class AbandonedCart(db.Model):
    """
    Checkout funnel tracking record, one per cart.

    Stages:
    - CHECKOUT_STARTED: shopper reached the checkout page
    - CHECKOUT_INFO_FILLED: contact/shipping details captured
    - converted: order placed; the record is deleted, not kept
    - ABANDONED: stale past the sweep threshold with no order

    cart_id is cleared when a guest cart expires under an ABANDONED record,
    so the dashboard can still list it.
    """
    __tablename__ = "abandoned_carts"
    __table_args__ = (
        db.Index("ix_abandoned_carts_stage_activity", "stage", "last_activity_at"),
        {"sqlite_autoincrement": True},
    )

    STAGE_CHECKOUT_STARTED = "CHECKOUT_STARTED"
    STAGE_CHECKOUT_INFO_FILLED = "CHECKOUT_INFO_FILLED"
    STAGE_ABANDONED = "ABANDONED"

    ACTIVE_STAGES = (STAGE_CHECKOUT_STARTED, STAGE_CHECKOUT_INFO_FILLED)

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="SET NULL"), nullable=True, unique=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(128), nullable=True, index=True)

    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    checkout_info = db.Column(db.JSON, nullable=True)

    stage = db.Column(db.String(32), nullable=False, default=STAGE_CHECKOUT_STARTED, index=True)

    checkout_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    abandoned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    cart = db.relationship("Cart", backref=db.backref("tracking", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "email": self.email,
            "phone": self.phone,
            "checkout_info": self.checkout_info,
            "stage": self.stage,
            "checkout_started_at": to_utc_z(self.checkout_started_at),
            "last_activity_at": to_utc_z(self.last_activity_at),
            "abandoned_at": to_utc_z(self.abandoned_at),
            "created_at": to_utc_z(self.created_at),
        }
