from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from tilestock.time_utils import to_utc_z, utcnow


TRANSACTION_TYPES = ("stock_in", "stock_out", "adjustment", "sale", "return")


class Tile(db.Model):
    """
    Stock-keeping unit tracked in pieces.

    MULTI-TENANT: Tiles are scoped to shops via shop_id.

    STOCK MODEL:
    - quantity: pieces physically on hand
    - reserved_quantity: pieces held by confirmed, undelivered sales
    - available_quantity: quantity - reserved_quantity (derived, never stored)

    Keeping a single on-hand figure plus an explicit reservation means the
    stock ledger and the sale workflow mutate the same numbers and cannot
    drift apart.

    PACKETS:
    items_per_packet converts packet counts to pieces. It is configuration,
    not stock: changing it never rewrites quantity.

    Stock columns are only ever written through conditional UPDATE statements
    in stock_service / sales_service (see concurrency.py).
    """
    __tablename__ = "tiles"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_tiles_sku"),
        db.Index("ix_tiles_shop_name", "shop_id", "name"),
        db.Index("ix_tiles_shop_active", "shop_id", "is_active"),
        db.Index("ix_tiles_quantity", "quantity"),
        db.CheckConstraint("quantity >= 0", name="ck_tiles_quantity_non_negative"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_tiles_reserved_non_negative"),
        db.CheckConstraint("reserved_quantity <= quantity", name="ck_tiles_reserved_within_on_hand"),
        db.CheckConstraint("items_per_packet >= 1", name="ck_tiles_items_per_packet_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Vestigial: pricing is not computed from it anywhere
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    items_per_packet = db.Column(db.Integer, nullable=False, default=1)
    minimum_threshold = db.Column(db.Integer, nullable=False, default=5)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    shop = db.relationship("Shop", backref=db.backref("tiles", lazy=True))
    images = db.relationship(
        "TileImage",
        order_by="TileImage.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def available_quantity(self):
        return self.quantity - self.reserved_quantity

    def __repr__(self) -> str:
        return f"<Tile id={self.id} sku={self.sku!r} quantity={self.quantity} shop_id={self.shop_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "items_per_packet": self.items_per_packet,
            "stock": {
                "available_quantity": self.available_quantity,
                "reserved_quantity": self.reserved_quantity,
                "minimum_threshold": self.minimum_threshold,
            },
            "images": [image.to_dict() for image in self.images],
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TileImage(db.Model):
    """Opaque image URL attached to a tile; storage/transformation live elsewhere."""
    __tablename__ = "tile_images"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tile_id = db.Column(db.Integer, db.ForeignKey("tiles.id"), nullable=False, index=True)
    url = db.Column(db.String(1024), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "uploaded_at": to_utc_z(self.uploaded_at),
        }


class StockTransaction(db.Model):
    """
    Append-only audit record of one stock movement.

    SIGN CONVENTION (quantity, in pieces):
    - stock_in:   +total   (unsigned)
    - stock_out:  +total   (unsigned; the type carries the direction)
    - adjustment: new - old (signed)
    - sale:       -quantity
    - return:     +quantity

    IMMUTABLE: never updated. Rows are only deleted by the report purge
    operations, which deliberately leave tile stock untouched.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.Index("ix_stocktx_tile_created", "tile_id", "created_at"),
        db.Index("ix_stocktx_shop_created", "shop_id", "created_at"),
        db.Index("ix_stocktx_type", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tile_id = db.Column(db.Integer, db.ForeignKey("tiles.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    packets = db.Column(db.Integer, nullable=False, default=0)
    pieces = db.Column(db.Integer, nullable=False, default=0)

    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    reference_number = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    tile = db.relationship("Tile", backref=db.backref("transactions", lazy="dynamic"))
    performed_by = db.relationship("User")

    @property
    def signed_quantity(self) -> int:
        """Effect of this record on available stock."""
        if self.transaction_type == "stock_out":
            return -abs(self.quantity)
        return self.quantity

    def to_dict(self) -> dict:
        tile = self.tile
        return {
            "id": self.id,
            "tile_id": self.tile_id,
            "tile": {"name": tile.name, "sku": tile.sku} if tile is not None else None,
            "shop_id": self.shop_id,
            "transaction_type": self.transaction_type,
            "quantity": self.quantity,
            "packets": self.packets,
            "pieces": self.pieces,
            "unit_price_cents": self.unit_price_cents,
            "total_amount_cents": self.total_amount_cents,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
