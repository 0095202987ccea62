# Overview: Catalog store reads and the atomic stock decrement used by checkout.

from __future__ import annotations

import re

from sqlalchemy import update

from ..extensions import db
from ..models import Product, ProductVariant
from ..validation import MAX_PRICE_CENTS, NotFoundError, ValidationError, clean_text, coerce_int


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "product"


def _unique_slug(base: str) -> str:
    slug = base
    suffix = 2
    while db.session.query(Product.id).filter_by(slug=slug).first():
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


def _parse_variant(raw: dict, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"variants[{index}] must be an object")

    regular = coerce_int(raw.get("regular_price_cents"), f"variants[{index}].regular_price_cents", minimum=0)
    sale_raw = raw.get("sale_price_cents")
    sale = 0 if sale_raw is None else coerce_int(sale_raw, f"variants[{index}].sale_price_cents", minimum=0)
    if regular > MAX_PRICE_CENTS or sale > MAX_PRICE_CENTS:
        raise ValidationError(f"variants[{index}] price cannot exceed {MAX_PRICE_CENTS}")

    stock_raw = raw.get("stock")
    stock = 0 if stock_raw is None else coerce_int(stock_raw, f"variants[{index}].stock", minimum=0)

    attributes = raw.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise ValidationError(f"variants[{index}].attributes must be an object")

    return {
        "attributes": {str(k): str(v) for k, v in attributes.items()},
        "sku": clean_text(raw.get("sku"), f"variants[{index}].sku", max_length=64),
        "images": list(raw.get("images") or []),
        "regular_price_cents": regular,
        "sale_price_cents": sale,
        "stock": stock,
    }


def create_product(data: dict) -> Product:
    """
    Create a product with its variants.

    A payload without "variants" gets a single implicit default variant
    built from the top-level price/stock fields.
    """
    name = clean_text(data.get("name"), "name")
    if not name:
        raise ValidationError("name is required")

    raw_variants = data.get("variants")
    if raw_variants is None:
        raw_variants = [{
            "attributes": {},
            "sku": data.get("sku"),
            "regular_price_cents": data.get("regular_price_cents"),
            "sale_price_cents": data.get("sale_price_cents"),
            "stock": data.get("stock"),
        }]
    if not isinstance(raw_variants, list) or not raw_variants:
        raise ValidationError("A product needs at least one variant")

    variants = [_parse_variant(raw, i) for i, raw in enumerate(raw_variants)]

    slug = clean_text(data.get("slug"), "slug") or _slugify(name)
    product = Product(
        name=name,
        slug=_unique_slug(slug),
        description=data.get("description"),
        brand=clean_text(data.get("brand"), "brand", max_length=120),
        category=clean_text(data.get("category"), "category", max_length=120),
        images=list(data.get("images") or []),
        is_active=bool(data.get("is_active", True)),
    )
    for position, fields in enumerate(variants):
        product.variants.append(ProductVariant(position=position, **fields))

    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product not found: {product_id}")
    return product


def list_products(*, category: str | None = None, active_only: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if category:
        query = query.filter(Product.category == category)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.id).all()


def find_variant(product_id: int, variant_id: int) -> tuple[Product, ProductVariant]:
    """
    Resolve the exact variant of a product.

    Raises NotFoundError when either no longer exists (the catalog may have
    changed since the cart was filled).
    """
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product not found: {product_id}")

    variant = (
        db.session.query(ProductVariant)
        .filter_by(id=variant_id, product_id=product_id)
        .first()
    )
    if not variant:
        raise NotFoundError(f"Variant not found for product {product.name}")
    return product, variant


def decrement_stock_atomic(product_id: int, variant_id: int, quantity: int) -> bool:
    """
    Decrement-if-sufficient in a single statement.

    Scoped to (product_id, variant_id) so purchases of sibling variants do
    not contend. Returns False when stock would go negative; the caller
    owns the transaction.
    """
    stmt = (
        update(ProductVariant)
        .where(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id,
            ProductVariant.stock >= quantity,
        )
        .values(
            stock=ProductVariant.stock - quantity,
            sold=ProductVariant.sold + quantity,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def set_stock(product_id: int, variant_id: int, stock: int) -> ProductVariant:
    """Operational stock correction (reconciliation tooling)."""
    stock = coerce_int(stock, "stock", minimum=0)
    _, variant = find_variant(product_id, variant_id)
    variant.stock = stock
    db.session.commit()
    return variant


def price_line(product_id: int, variant_id: int, quantity: int) -> dict:
    """
    Describe a cart line at current catalog prices.

    Never raises: a line whose product or variant is gone is returned with
    available=False so listings can still render it.
    """
    line = {
        "product_id": product_id,
        "variant_id": variant_id,
        "quantity": quantity,
        "available": False,
        "name": None,
        "sku": None,
        "attributes": None,
        "image": None,
        "unit_price_cents": None,
        "line_total_cents": 0,
        "stock": 0,
    }
    try:
        product, variant = find_variant(product_id, variant_id)
    except NotFoundError:
        return line

    images = list(variant.images or []) or list(product.images or [])
    line.update({
        "available": product.is_active,
        "name": product.name,
        "sku": variant.sku,
        "attributes": dict(variant.attributes or {}),
        "image": images[0] if images else None,
        "unit_price_cents": variant.effective_price_cents,
        "line_total_cents": variant.effective_price_cents * quantity,
        "stock": variant.stock,
    })
    return line
