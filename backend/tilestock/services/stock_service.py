# Overview: Service-layer operations for stock; encapsulates business logic and database work.

"""
Stock Ledger

Stock invariants (authoritative):
- Tile.quantity is the number of pieces on hand and never goes below 0.
- Tile.reserved_quantity is held by undelivered sales; 0 <= reserved <= quantity.
- available = quantity - reserved is what can be removed or sold.

Every mutation is ONE database transaction that:
1. re-reads the tile in the caller's shop scope (row-locked where supported)
2. validates the request against what it read
3. applies the change with a conditional UPDATE that re-checks, in SQL,
   the values the validation relied on (packet size, availability)
4. appends exactly one StockTransaction

If the conditional UPDATE matches no row another request got there first.
A changed packet size is retried from step 1 (StaleDataError); a drop in
availability fails with InsufficientStock. Nothing is written in either case.

Events are published only after commit.
"""

from __future__ import annotations

import math

from sqlalchemy import case, func, or_, update
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InsufficientStock, InvalidQuantity, TileNotFound
from ..extensions import db
from ..models import StockTransaction, Tile
from ..validation import MAX_QUANTITY, coerce_int
from tilestock.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .notifier import EVENT_STOCK_UPDATED, publish, stock_updated_payload
from .tenant_service import CallerIdentity, apply_shop_scope, require_admin
from .units import effective_items_per_packet, parse_packets_and_pieces, to_pieces


def get_tile_for_caller(
    caller: CallerIdentity,
    tile_id: int,
    *,
    lock: bool = False,
    require_active: bool = False,
) -> Tile:
    """Load a non-deleted tile visible to the caller, else TileNotFound."""
    query = db.session.query(Tile).filter(Tile.id == tile_id, Tile.is_deleted.is_(False))
    query = apply_shop_scope(query, Tile.shop_id, caller)
    if require_active:
        query = query.filter(Tile.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    tile = query.first()
    if tile is None:
        raise TileNotFound("Tile not found", {"tile_id": tile_id})
    return tile


def conditional_tile_update(tile: Tile, values: dict, *conditions, include_deleted: bool = False) -> bool:
    """
    UPDATE tiles SET <values>, version_id = version_id + 1
    WHERE id = :id AND NOT is_deleted AND <conditions>

    Returns False when no row matched. On success the ORM instance is
    refreshed so callers see the committed-to-be values.
    """
    criteria = [Tile.id == tile.id, *conditions]
    if not include_deleted:
        criteria.append(Tile.is_deleted.is_(False))
    stmt = (
        update(Tile)
        .where(*criteria)
        .values(version_id=Tile.version_id + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        return False
    db.session.refresh(tile)
    return True


def _insufficient(tile: Tile, requested: int) -> InsufficientStock:
    available = tile.available_quantity
    return InsufficientStock(
        f"Insufficient stock. Available: {available} pieces, Requested: {requested} pieces",
        {"tile_id": tile.id, "available": available, "requested": requested},
    )


def _join_notes(*parts) -> str | None:
    text = "; ".join(p.strip() for p in parts if p and p.strip())
    return text or None


def _record(tile: Tile, caller: CallerIdentity, transaction_type: str, quantity: int, **fields) -> StockTransaction:
    txn = StockTransaction(
        tile_id=tile.id,
        shop_id=tile.shop_id,
        transaction_type=transaction_type,
        quantity=quantity,
        performed_by_user_id=caller.user_id,
        **fields,
    )
    db.session.add(txn)
    return txn


def _publish_stock(tile: Tile, caller: CallerIdentity, notifier) -> None:
    publish(
        EVENT_STOCK_UPDATED,
        shop_id=tile.shop_id,
        data=stock_updated_payload(tile),
        user_id=caller.user_id,
        notifier=notifier,
    )


def add_stock(
    caller: CallerIdentity,
    tile_id: int,
    packets=0,
    pieces=0,
    new_items_per_packet=None,
    notes: str | None = None,
    *,
    notifier=None,
) -> tuple[Tile, StockTransaction]:
    """
    Add packets/pieces to a tile.

    If new_items_per_packet is supplied it becomes the tile's permanent packet
    size and is used for this addition.
    """
    packets, pieces = parse_packets_and_pieces(packets, pieces)
    new_ipp = None
    if new_items_per_packet is not None:
        new_ipp = coerce_int(
            new_items_per_packet, "new_items_per_packet",
            minimum=1, maximum=MAX_QUANTITY, error_cls=InvalidQuantity,
        )

    def _op():
        tile = get_tile_for_caller(caller, tile_id, lock=True)
        observed_ipp = tile.items_per_packet
        ipp = new_ipp if new_ipp is not None else effective_items_per_packet(observed_ipp)
        total = to_pieces(packets, pieces, ipp)
        if tile.quantity + total > MAX_QUANTITY:
            raise InvalidQuantity(
                f"Stock cannot exceed {MAX_QUANTITY} pieces. Current: {tile.quantity} pieces, "
                f"Adding: {total} pieces",
                {"tile_id": tile.id, "current": tile.quantity, "adding": total, "maximum": MAX_QUANTITY},
            )

        values = {"quantity": Tile.quantity + total}
        if new_ipp is not None:
            values["items_per_packet"] = new_ipp

        if not conditional_tile_update(tile, values, Tile.items_per_packet == observed_ipp):
            raise StaleDataError(f"tile {tile_id} changed during add_stock")

        txn = _record(
            tile,
            caller,
            "stock_in",
            total,
            packets=packets,
            pieces=pieces,
            notes=_join_notes(
                f"Updated config to {new_ipp} pcs/pkt" if new_ipp is not None else None,
                notes,
            ),
        )
        db.session.commit()
        return tile, txn

    tile, txn = run_with_retry(_op)
    _publish_stock(tile, caller, notifier)
    return tile, txn


def remove_stock(
    caller: CallerIdentity,
    tile_id: int,
    packets=0,
    pieces=0,
    notes: str | None = None,
    *,
    notifier=None,
) -> tuple[Tile, StockTransaction]:
    """
    Remove packets/pieces using the tile's CURRENT packet size.

    Only available stock can be removed; pieces reserved by open sales are
    not touched.
    """
    packets, pieces = parse_packets_and_pieces(packets, pieces)

    def _op():
        tile = get_tile_for_caller(caller, tile_id, lock=True)
        observed_ipp = tile.items_per_packet
        total = to_pieces(packets, pieces, observed_ipp)

        if tile.available_quantity < total:
            raise _insufficient(tile, total)

        ok = conditional_tile_update(
            tile,
            {"quantity": Tile.quantity - total},
            Tile.items_per_packet == observed_ipp,
            Tile.quantity - Tile.reserved_quantity >= total,
        )
        if not ok:
            db.session.refresh(tile)
            if tile.items_per_packet != observed_ipp:
                raise StaleDataError(f"tile {tile_id} changed during remove_stock")
            raise _insufficient(tile, total)

        txn = _record(tile, caller, "stock_out", total, packets=packets, pieces=pieces, notes=_join_notes(notes))
        db.session.commit()
        return tile, txn

    tile, txn = run_with_retry(_op)
    _publish_stock(tile, caller, notifier)
    return tile, txn


def set_quantity(
    caller: CallerIdentity,
    tile_id: int,
    quantity,
    notes: str | None = None,
    *,
    notifier=None,
) -> tuple[Tile, StockTransaction]:
    """
    Overwrite a tile's on-hand quantity.

    Always audited as an `adjustment` whose quantity is (new - old). The new
    value cannot be below what open sales have reserved.
    """
    require_admin(caller)
    new_quantity = coerce_int(quantity, "quantity", minimum=0, maximum=MAX_QUANTITY, error_cls=InvalidQuantity)

    def _op():
        tile = get_tile_for_caller(caller, tile_id, lock=True)
        old_quantity = tile.quantity
        if new_quantity < tile.reserved_quantity:
            raise InvalidQuantity(
                f"quantity cannot be below reserved stock. Reserved: {tile.reserved_quantity} pieces, "
                f"Requested: {new_quantity} pieces",
                {"tile_id": tile.id, "reserved": tile.reserved_quantity, "requested": new_quantity},
            )

        ok = conditional_tile_update(
            tile,
            {"quantity": new_quantity},
            Tile.quantity == old_quantity,
            Tile.reserved_quantity <= new_quantity,
        )
        if not ok:
            raise StaleDataError(f"tile {tile_id} changed during set_quantity")

        txn = _record(
            tile,
            caller,
            "adjustment",
            new_quantity - old_quantity,
            notes=_join_notes(notes or f"Quantity set from {old_quantity} to {new_quantity}"),
        )
        db.session.commit()
        return tile, txn

    tile, txn = run_with_retry(_op)
    _publish_stock(tile, caller, notifier)
    return tile, txn


def list_stock(
    caller: CallerIdentity,
    *,
    search: str | None = None,
    shop_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Tiles sorted by on-hand quantity ascending (emptiest first)."""
    query = db.session.query(Tile).filter(Tile.is_deleted.is_(False))
    query = apply_shop_scope(query, Tile.shop_id, caller, shop_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Tile.name.ilike(pattern), Tile.sku.ilike(pattern)))

    total = query.count()
    tiles = (
        query.order_by(Tile.quantity.asc(), Tile.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "tiles": tiles,
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def list_tile_transactions(caller: CallerIdentity, tile_id: int, *, limit: int = 50) -> list[StockTransaction]:
    tile = get_tile_for_caller(caller, tile_id)
    return (
        db.session.query(StockTransaction)
        .filter(StockTransaction.tile_id == tile.id)
        .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        .limit(limit)
        .all()
    )


def signed_quantity_expr():
    """SQL counterpart of StockTransaction.signed_quantity."""
    return case(
        (StockTransaction.transaction_type == "stock_out", -StockTransaction.quantity),
        else_=StockTransaction.quantity,
    )


def ledger_quantity(tile_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(signed_quantity_expr()), 0))
        .filter(StockTransaction.tile_id == tile_id)
        .scalar()
    )
    return int(total or 0)


def reconcile_tile(tile_id: int, *, caller: CallerIdentity | None = None) -> dict:
    """
    Compare a tile's available stock with the signed sum of its ledger.

    Deliveries move reserved pieces out of on-hand without a ledger row, so
    the ledger tracks *available* stock. Drift is 0 unless transactions were
    purged through the reports screen.
    """
    if caller is not None:
        tile = get_tile_for_caller(caller, tile_id)
    else:
        tile = db.session.get(Tile, tile_id)
        if tile is None:
            raise TileNotFound("Tile not found", {"tile_id": tile_id})

    ledger = ledger_quantity(tile.id)
    available = tile.available_quantity
    return {
        "tile_id": tile.id,
        "sku": tile.sku,
        "available_quantity": available,
        "ledger_quantity": ledger,
        "drift": available - ledger,
    }


def reconcile_shop(shop_id: int | None = None) -> list[dict]:
    """Reconcile every non-deleted tile, optionally limited to one shop."""
    query = db.session.query(Tile.id).filter(Tile.is_deleted.is_(False))
    if shop_id is not None:
        query = query.filter(Tile.shop_id == shop_id)
    return [reconcile_tile(tile_id) for (tile_id,) in query.order_by(Tile.id).all()]
