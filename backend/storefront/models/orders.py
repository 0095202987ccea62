from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


ORDER_STATUSES = ("PENDING", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED", "RETURNED")


class Order(db.Model):
    """
    Customer order (immutable after creation except status, history and courier info).

    WHY: Items and amounts are a snapshot taken at checkout. Catalog price
    changes after the fact never touch a placed order; corrections go
    through a new order or manual adjustment.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD202410050001")
    order_number = db.Column(db.String(32), nullable=False, index=True)

    # Owner identity at checkout time
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(128), nullable=True)
    is_guest = db.Column(db.Boolean, nullable=False, default=False)

    # Customer contact / shipping
    customer_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    address = db.Column(db.String(500), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    note = db.Column(db.String(500), nullable=True)
    transaction_id = db.Column(db.String(128), nullable=True)

    # Amounts (all in cents, computed server-side)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    promo_code = db.Column(db.String(64), nullable=True)

    # Lifecycle status
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    # Courier / shipment metadata
    courier_info = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "is_guest": self.is_guest,
            "customer_name": self.customer_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "note": self.note,
            "transaction_id": self.transaction_id,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "promo_code": self.promo_code,
            "status": self.status,
            "courier_info": self.courier_info,
            "status_history": [h.to_dict() for h in self.status_history],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def to_tracking_dict(self) -> dict:
        """Reduced view for public order tracking."""
        return {
            "order_number": self.order_number,
            "status": self.status,
            "status_history": [h.to_dict() for h in self.status_history],
            "items": [item.to_dict() for item in self.items],
            "total_cents": self.total_cents,
            "courier_info": self.courier_info,
            "created_at": to_utc_z(self.created_at),
        }


class OrderItem(db.Model):
    """Snapshot of a purchased line. Never updated after insert."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Plain references (not FKs): the catalog may drop the product later
    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=False)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    attributes = db.Column(db.JSON, nullable=True)
    image = db.Column(db.String(500), nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "sku": self.sku,
            "attributes": self.attributes,
            "image": self.image,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class OrderStatusHistory(db.Model):
    """Append-only order status timeline."""
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderSequence(db.Model):
    """
    Atomic per-day order number counter.

    WHY: "max existing number for today + 1" races under concurrent
    checkouts. A single counter row per date, bumped with one UPDATE,
    serializes allocation.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_date", name="uq_order_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_date": self.sequence_date.isoformat(),
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
