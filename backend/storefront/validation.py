from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


class ValidationError(ValueError):
    """400-level input problem. Carries every violated rule, not just the first."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate promo code)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level: product, variant, promo, cart or order absent."""


class InsufficientStockError(Exception):
    """Requested quantity exceeds the variant's available stock."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def error_payload(exc: Exception) -> dict:
    """JSON body for a typed service error."""
    body: dict = {"error": str(exc)}
    errors = getattr(exc, "errors", None)
    if errors:
        body["errors"] = errors
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body


# =============================================================================
# Scalar coercion
# =============================================================================

def coerce_int(value: Any, name: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for request payloads.

    Rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return result


def clean_text(value: Any, name: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, int)):
        raise ValidationError(f"{name} must be a string")
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text


def clean_email(value: Any, name: str = "email") -> str | None:
    email = clean_text(value, name)
    if email is None:
        return None
    email = email.lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email")
    return email


# =============================================================================
# Cart items
# =============================================================================

def parse_cart_items(raw: Any, *, allow_empty: bool = True) -> list[dict]:
    """
    Validate a client item list and merge duplicate product+variant pairs.

    Every malformed entry is reported. Client-side prices are dropped.
    """
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ValidationError("items must be a list")
    if not raw and not allow_empty:
        raise ValidationError("Order items are required")

    errors: list[str] = []
    merged: dict[tuple[int, int], int] = {}

    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            errors.append(f"items[{index}] must be an object")
            continue

        entry_errors = []
        values = {}
        for key, minimum in (("product_id", 1), ("variant_id", 1), ("quantity", 1)):
            if key not in entry or entry[key] is None:
                entry_errors.append(f"items[{index}].{key} is required")
                continue
            try:
                values[key] = coerce_int(entry[key], f"items[{index}].{key}", minimum=minimum)
            except ValidationError as exc:
                entry_errors.append(str(exc))

        if entry_errors:
            errors.extend(entry_errors)
            continue

        key = (values["product_id"], values["variant_id"])
        merged[key] = merged.get(key, 0) + values["quantity"]

    if errors:
        raise ValidationError("Invalid cart items", errors=errors)

    return [
        {"product_id": product_id, "variant_id": variant_id, "quantity": quantity}
        for (product_id, variant_id), quantity in merged.items()
    ]


# =============================================================================
# Checkout payloads
# =============================================================================

CHECKOUT_INFO_FIELDS = ("name", "address", "city", "contact", "email")


def parse_checkout_info(raw: Any) -> dict | None:
    """Shipping/contact snapshot captured on the checkout page."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("checkoutInfo must be an object")

    errors: list[str] = []
    info: dict = {}
    for key in CHECKOUT_INFO_FIELDS:
        try:
            value = clean_email(raw.get(key)) if key == "email" else clean_text(raw.get(key), key)
        except ValidationError as exc:
            errors.append(str(exc))
            continue
        if value is not None:
            info[key] = value

    if errors:
        raise ValidationError("Invalid checkout info", errors=errors)
    return info or None


@dataclass(frozen=True)
class CheckoutRequest:
    items: list[dict]
    customer_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    note: str | None = None
    transaction_id: str | None = None
    shipping_cents: int = 0
    promo_code: str | None = None
    category: str | None = None
    extra: dict = field(default_factory=dict)


def parse_checkout_payload(payload: Any) -> CheckoutRequest:
    """
    Boundary schema for order creation.

    Client totals (amount, total, price) are accepted in the payload but never read.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = parse_cart_items(payload.get("items"), allow_empty=False)

    errors: list[str] = []
    values: dict = {}

    def _collect(key, fn):
        try:
            values[key] = fn()
        except ValidationError as exc:
            errors.extend(exc.errors)

    _collect("customer_name", lambda: clean_text(payload.get("name"), "name"))
    _collect("email", lambda: clean_email(payload.get("email")))
    _collect("phone", lambda: clean_text(payload.get("contact"), "contact", max_length=32))
    _collect("address", lambda: clean_text(payload.get("address"), "address", max_length=500))
    _collect("city", lambda: clean_text(payload.get("city"), "city", max_length=120))
    _collect("note", lambda: clean_text(payload.get("note"), "note", max_length=500))
    _collect("transaction_id", lambda: clean_text(payload.get("transactionId"), "transactionId", max_length=128))
    _collect("promo_code", lambda: clean_text(payload.get("promoCode"), "promoCode", max_length=64))
    _collect("category", lambda: clean_text(payload.get("category"), "category", max_length=120))

    raw_shipping = payload.get("shippingCost", 0)
    _collect(
        "shipping_cents",
        lambda: 0 if raw_shipping is None else coerce_int(raw_shipping, "shippingCost", minimum=0),
    )

    if errors:
        raise ValidationError("Invalid checkout payload", errors=errors)

    if values["promo_code"]:
        values["promo_code"] = values["promo_code"].upper()

    return CheckoutRequest(items=items, **values)
