from __future__ import annotations

from ..extensions import db
from tilestock.time_utils import to_utc_z, utcnow


class Shop(db.Model):
    """
    Multi-tenant root: every tile, sale and stock transaction belongs to a shop.

    DESIGN:
    - Shops are the tenant boundary
    - grand_admin users see every shop; shop_admin and staff are pinned to one
    - low_stock_threshold feeds the low-stock evaluator (total pieces)
    - Deletion is soft (is_active=False) and refused while users/tiles are active
    """
    __tablename__ = "shops"
    __table_args__ = (
        db.Index("ix_shops_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    address_street = db.Column(db.String(255), nullable=True)
    address_city = db.Column(db.String(120), nullable=True)
    address_state = db.Column(db.String(120), nullable=True)
    address_zip_code = db.Column(db.String(32), nullable=True)
    address_country = db.Column(db.String(120), nullable=True)

    contact_phone = db.Column(db.String(64), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=50)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Shop id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": {
                "street": self.address_street,
                "city": self.address_city,
                "state": self.address_state,
                "zip_code": self.address_zip_code,
                "country": self.address_country,
            },
            "contact": {
                "phone": self.contact_phone,
                "email": self.contact_email,
            },
            "settings": {
                "low_stock_threshold": self.low_stock_threshold,
            },
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Sequence(db.Model):
    """
    Atomic named counters for human-readable identifiers.

    WHY: Deriving TILE-###### / SALE-YYYYMM-###### from a live row count races
    under concurrent creation. Each (name, period) row is incremented with a
    single UPDATE instead.

    period is "" for global sequences (tile SKUs) and "YYYYMM" for sale numbers.
    """
    __tablename__ = "sequences"
    __table_args__ = (
        db.UniqueConstraint("name", "period", name="uq_sequences_name_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, index=True)
    period = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
