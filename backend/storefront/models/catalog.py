from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product.

    A product is never purchasable by itself: price and stock live on its
    variants, and every product carries at least one (an implicit "default"
    variant when it has no real attribute dimensions).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    brand = db.Column(db.String(120), nullable=True)

    # Category reference (category documents themselves are managed elsewhere)
    category = db.Column(db.String(120), nullable=True, index=True)
    images = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        order_by="ProductVariant.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} slug={self.slug!r}>"

    def to_dict(self, include_variants: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "brand": self.brand,
            "category": self.category,
            "images": list(self.images or []),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """
    Purchasable configuration of a product.

    stock is the sole source of truth for availability; it is only ever
    decremented through a conditional UPDATE (see catalog_service).
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_nonnegative"),
        db.CheckConstraint("regular_price_cents >= 0", name="ck_product_variants_regular_price"),
        db.CheckConstraint("sale_price_cents >= 0", name="ck_product_variants_sale_price"),
        db.UniqueConstraint("product_id", "sku", name="uq_product_variants_product_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    # e.g. {"color": "Red", "size": "XL"}; {} for the implicit default variant
    attributes = db.Column(db.JSON, nullable=False, default=dict)
    sku = db.Column(db.String(64), nullable=True)
    images = db.Column(db.JSON, nullable=False, default=list)

    regular_price_cents = db.Column(db.Integer, nullable=False)
    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def effective_price_cents(self) -> int:
        """Sale price if positive, otherwise regular price."""
        if self.sale_price_cents and self.sale_price_cents > 0:
            return self.sale_price_cents
        return self.regular_price_cents

    def label(self) -> str:
        if not self.attributes:
            return "default"
        return " / ".join(str(v) for v in self.attributes.values())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "attributes": dict(self.attributes or {}),
            "sku": self.sku,
            "images": list(self.images or []),
            "regular_price_cents": self.regular_price_cents,
            "sale_price_cents": self.sale_price_cents,
            "effective_price_cents": self.effective_price_cents,
            "stock": self.stock,
            "sold": self.sold,
        }
