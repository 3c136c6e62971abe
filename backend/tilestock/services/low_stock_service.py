# Overview: Low-stock evaluation and the per-session low-stock alert.

"""
Low-Stock Evaluator

A tile is:
- out_of_stock when its available quantity is <= 0
- critical     when 0 < available < threshold

`threshold` is the shop's low_stock_threshold (total pieces). Results are
sorted by available quantity ascending so the emptiest tiles come first.

evaluate() and build_notifications() are pure; the rest load tiles and
track whether the current session has already seen the alert dialog.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, Tile
from tilestock.time_utils import to_utc_z, utcnow
from .tenant_service import CallerIdentity, require_shop, resolve_shop_id


LEVEL_OUT_OF_STOCK = "out_of_stock"
LEVEL_CRITICAL = "critical"

DEFAULT_LOW_STOCK_THRESHOLD = 50


@dataclass(frozen=True)
class LowStockEntry:
    tile_id: int
    name: str | None
    sku: str | None
    available_quantity: int
    level: str

    @property
    def label(self) -> str:
        return self.name or self.sku or f"Tile {self.tile_id}"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["label"] = self.label
        return payload


def evaluate(tiles, threshold: int) -> list[LowStockEntry]:
    entries = []
    for tile in tiles:
        available = tile.available_quantity or 0
        if available <= 0:
            level = LEVEL_OUT_OF_STOCK
        elif available < threshold:
            level = LEVEL_CRITICAL
        else:
            continue
        entries.append(LowStockEntry(
            tile_id=tile.id,
            name=tile.name,
            sku=tile.sku,
            available_quantity=available,
            level=level,
        ))
    entries.sort(key=lambda e: (e.available_quantity, e.tile_id))
    return entries


def build_notifications(entries: list[LowStockEntry], now=None) -> list[dict]:
    created_at = to_utc_z(now or utcnow())
    notifications = []
    for entry in entries:
        if entry.level == LEVEL_OUT_OF_STOCK:
            title = "Out of Stock"
            message = f"{entry.label} is out of stock"
        else:
            title = "Low Stock Alert"
            message = f"{entry.label} is running low ({entry.available_quantity} remaining)"
        notifications.append({
            "id": f"low-stock-{entry.tile_id}",
            "type": "low_stock",
            "title": title,
            "message": message,
            "tile_id": entry.tile_id,
            "tile_name": entry.name,
            "read": False,
            "created_at": created_at,
        })
    return notifications


def _resolve_threshold(shop) -> int:
    if shop.low_stock_threshold is not None:
        return shop.low_stock_threshold
    if has_app_context():
        return current_app.config.get("LOW_STOCK_THRESHOLD_DEFAULT", DEFAULT_LOW_STOCK_THRESHOLD)
    return DEFAULT_LOW_STOCK_THRESHOLD


def low_stock_for_shop(caller: CallerIdentity, shop_id: int | None = None) -> dict:
    """Evaluate the active tiles of one shop against its threshold."""
    shop = require_shop(resolve_shop_id(caller, shop_id))
    threshold = _resolve_threshold(shop)

    tiles = (
        db.session.query(Tile)
        .filter(
            Tile.shop_id == shop.id,
            Tile.is_active.is_(True),
            Tile.is_deleted.is_(False),
        )
        .all()
    )
    entries = evaluate(tiles, threshold)
    return {
        "shop_id": shop.id,
        "threshold": threshold,
        "entries": entries,
        "notifications": build_notifications(entries),
    }


def session_alert(session: SessionToken, caller: CallerIdentity, shop_id: int | None = None) -> dict:
    """
    Low-stock result plus whether the one-shot dialog should be shown.

    The dialog shows while there is something to report and the current
    session has not acknowledged it yet.
    """
    result = low_stock_for_shop(caller, shop_id)
    result["show_dialog"] = bool(result["entries"]) and session.low_stock_alert_seen_at is None
    return result


def acknowledge_alert(session: SessionToken) -> SessionToken:
    if session.low_stock_alert_seen_at is None:
        session.low_stock_alert_seen_at = utcnow()
        db.session.commit()
    return session
