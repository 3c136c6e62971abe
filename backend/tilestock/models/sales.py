from __future__ import annotations

from ..extensions import db
from tilestock.time_utils import to_utc_z, utcnow


SALE_STATUSES = ("pending", "confirmed", "delivered", "cancelled")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "credit")
PAYMENT_STATUSES = ("pending", "partial", "paid")


class Sale(db.Model):
    """
    Customer sale aggregate.

    LIFECYCLE:
        pending -> confirmed -> delivered
        pending | confirmed -> cancelled
    delivered and cancelled are terminal.

    Sales are created directly in 'confirmed' with stock reserved per item.
    Delivery releases the reservation and removes the pieces from on-hand;
    cancellation releases the reservation and returns them to availability.

    TOTALS (integer cents):
        subtotal = sum(items.total_price_cents)
        total_amount = subtotal - discount + tax
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_shop_created", "shop_id", "created_at"),
        db.Index("ix_sales_status", "status"),
        db.Index("ix_sales_customer_name", "customer_name"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(32), nullable=False)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    status = db.Column(db.String(16), nullable=False, default="pending")

    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("sales", lazy=True))
    sold_by = db.relationship("User")
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "shop_id": self.shop_id,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "email": self.customer_email,
                "address": self.customer_address,
            },
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "sold_by_user_id": self.sold_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """Individual line on a sale."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    tile_id = db.Column(db.Integer, db.ForeignKey("tiles.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    tile = db.relationship("Tile")

    def to_dict(self) -> dict:
        tile = self.tile
        return {
            "id": self.id,
            "tile_id": self.tile_id,
            "tile": {"name": tile.name, "sku": tile.sku} if tile is not None else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }
