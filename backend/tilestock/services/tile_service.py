# Overview: Service-layer operations for tiles; encapsulates business logic and database work.

"""
Tile catalogue management.

MULTI-TENANT: Tiles belong to one shop. Shop admins manage their own shop's
tiles; grand admins manage any shop's tiles and must say which shop.

Stock columns (quantity, reserved_quantity) are never written here except for
the initial quantity at creation, which is audited as a stock_in. All later
changes go through stock_service / sales_service.
"""

from __future__ import annotations

import math

from sqlalchemy import or_

from ..errors import InvalidState
from ..extensions import db
from ..models import StockTransaction, Tile, TileImage
from ..validation import ConflictError, ValidationError
from tilestock.time_utils import utcnow
from .concurrency import run_with_retry
from .notifier import EVENT_TILE_CREATED, EVENT_TILE_DELETED, EVENT_TILE_UPDATED, publish
from .sequence_service import next_tile_sku
from .stock_service import get_tile_for_caller
from .tenant_service import CallerIdentity, apply_shop_scope, require_admin, resolve_shop_id


def normalize_image_urls(images) -> list[str]:
    """Accept a list of URL strings or {"url": ...} dicts."""
    if images is None:
        return []
    if not isinstance(images, list):
        raise ValidationError("images must be a list")
    urls = []
    for item in images:
        url = item.get("url") if isinstance(item, dict) else item
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("each image must have a non-empty url")
        urls.append(url.strip())
    return urls


def _replace_images(tile: Tile, urls: list[str]) -> None:
    tile.images = [TileImage(url=url, position=i) for i, url in enumerate(urls)]


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(Tile.id).filter(Tile.sku == sku)
    if exclude_id is not None:
        query = query.filter(Tile.id != exclude_id)
    return query.first() is not None


def create_tile(
    caller: CallerIdentity,
    patch: dict,
    *,
    shop_id: int | None = None,
    images=None,
    notifier=None,
) -> Tile:
    """
    Create a tile in the caller's shop (or `shop_id` for grand admins).

    SKU is upper-cased; when absent it is allocated as TILE-###### from the
    tile SKU sequence in the same transaction as the insert.
    """
    require_admin(caller)
    target_shop_id = resolve_shop_id(caller, shop_id)
    urls = normalize_image_urls(images)

    def _op() -> Tile:
        data = dict(patch)
        initial_quantity = data.pop("quantity", None) or 0

        sku = (data.pop("sku", None) or "").strip().upper()
        if sku:
            if _sku_taken(sku):
                raise ConflictError(f"SKU already exists: {sku}")
        else:
            sku = next_tile_sku()

        tile = Tile(shop_id=target_shop_id, sku=sku, quantity=initial_quantity, reserved_quantity=0, **data)
        _replace_images(tile, urls)
        db.session.add(tile)
        db.session.flush()

        if initial_quantity > 0:
            db.session.add(StockTransaction(
                tile_id=tile.id,
                shop_id=tile.shop_id,
                transaction_type="stock_in",
                quantity=initial_quantity,
                pieces=initial_quantity,
                notes="Initial stock",
                performed_by_user_id=caller.user_id,
            ))

        db.session.commit()
        return tile

    tile = run_with_retry(_op)
    publish(EVENT_TILE_CREATED, shop_id=tile.shop_id, data=tile.to_dict(), user_id=caller.user_id, notifier=notifier)
    return tile


def get_tile(caller: CallerIdentity, tile_id: int) -> Tile:
    return get_tile_for_caller(caller, tile_id)


def list_tiles(
    caller: CallerIdentity,
    *,
    search: str | None = None,
    shop_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Non-deleted tiles, newest first."""
    query = db.session.query(Tile).filter(Tile.is_deleted.is_(False))
    query = apply_shop_scope(query, Tile.shop_id, caller, shop_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Tile.name.ilike(pattern), Tile.sku.ilike(pattern)))

    total = query.count()
    tiles = (
        query.order_by(Tile.created_at.desc(), Tile.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"tiles": tiles, "total": total, "page": page, "pages": math.ceil(total / limit) if limit else 0}


def update_tile(
    caller: CallerIdentity,
    tile_id: int,
    patch: dict,
    *,
    images=None,
    notifier=None,
) -> Tile:
    """
    Update catalogue fields.

    quantity is not writable here; changing items_per_packet only changes how
    future packet counts convert, never the pieces already on hand.
    """
    require_admin(caller)
    if "quantity" in patch:
        raise ValidationError("quantity cannot be changed here; use the stock endpoints")
    urls = normalize_image_urls(images) if images is not None else None

    def _op() -> Tile:
        tile = get_tile_for_caller(caller, tile_id)
        data = dict(patch)
        if "sku" in data:
            sku = (data.pop("sku") or "").strip().upper()
            if not sku:
                raise ValidationError("sku cannot be blank")
            if _sku_taken(sku, exclude_id=tile.id):
                raise ConflictError(f"SKU already exists: {sku}")
            tile.sku = sku
        for key, value in data.items():
            setattr(tile, key, value)
        if urls is not None:
            _replace_images(tile, urls)
        tile.updated_at = utcnow()
        db.session.commit()
        return tile

    tile = run_with_retry(_op)
    publish(EVENT_TILE_UPDATED, shop_id=tile.shop_id, data=tile.to_dict(), user_id=caller.user_id, notifier=notifier)
    return tile


def delete_tile(caller: CallerIdentity, tile_id: int, *, notifier=None) -> Tile:
    """
    Soft delete: the tile disappears from listings and sales, image records are
    dropped, and its transactions remain for the audit trail.

    Refused while open sales hold a reservation on it.
    """
    require_admin(caller)

    def _op() -> Tile:
        tile = get_tile_for_caller(caller, tile_id)
        if tile.reserved_quantity > 0:
            raise InvalidState(
                f"Cannot delete a tile with reserved stock. Reserved: {tile.reserved_quantity} pieces",
                {"tile_id": tile.id, "reserved": tile.reserved_quantity},
            )
        tile.is_deleted = True
        tile.is_active = False
        tile.images = []
        tile.updated_at = utcnow()
        db.session.commit()
        return tile

    tile = run_with_retry(_op)
    publish(EVENT_TILE_DELETED, shop_id=tile.shop_id, data={"tile_id": tile.id}, user_id=caller.user_id, notifier=notifier)
    return tile
