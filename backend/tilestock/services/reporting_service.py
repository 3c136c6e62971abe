# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

"""
Report Aggregator

Reports are a log, not a source of truth for current stock: purging
transactions here never changes tile quantities. stock_service.reconcile_tile
reports the resulting drift.

Filter semantics shared by query_transactions and clear_filtered:
- start_date: created_at >= start_date
- end_date:   created_at <= end_date at 23:59:59.999 (whole day inclusive)
- transaction_type: None or "all" means every type
- shop: forced to the caller's shop unless the caller is a grand admin
"""

from __future__ import annotations

import math
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import ROLE_GRAND_ADMIN, Sale, Shop, StockTransaction, Tile, TRANSACTION_TYPES
from ..validation import ValidationError
from tilestock.time_utils import end_of_day, to_utc_z
from .tenant_service import CallerIdentity, apply_shop_scope, require_admin, require_role, require_shop_access


def _normalize_type(transaction_type: str | None) -> str | None:
    if transaction_type in (None, "", "all"):
        return None
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be 'all' or one of: {', '.join(TRANSACTION_TYPES)}")
    return transaction_type


def _filtered_query(
    query,
    caller: CallerIdentity,
    *,
    shop_id: int | None,
    start_date: datetime | None,
    end_date: datetime | None,
    transaction_type: str | None,
):
    query = apply_shop_scope(query, StockTransaction.shop_id, caller, shop_id)
    if start_date is not None:
        query = query.filter(StockTransaction.created_at >= start_date)
    if end_date is not None:
        query = query.filter(StockTransaction.created_at <= end_of_day(end_date))
    ttype = _normalize_type(transaction_type)
    if ttype is not None:
        query = query.filter(StockTransaction.transaction_type == ttype)
    return query


def query_transactions(
    caller: CallerIdentity,
    *,
    shop_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    transaction_type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """
    Paginated transactions (newest first) plus stock_in / stock_out totals
    over the full filtered set, not just the current page.
    """
    filters = dict(shop_id=shop_id, start_date=start_date, end_date=end_date, transaction_type=transaction_type)

    query = _filtered_query(db.session.query(StockTransaction), caller, **filters)
    total = query.count()
    transactions = (
        query.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    grouped = _filtered_query(
        db.session.query(
            StockTransaction.transaction_type,
            func.coalesce(func.sum(StockTransaction.quantity), 0),
        ),
        caller,
        **filters,
    ).group_by(StockTransaction.transaction_type).all()

    stats = {"stock_in": 0, "stock_out": 0}
    for ttype, quantity in grouped:
        if ttype in stats:
            stats[ttype] = int(quantity or 0)

    return {
        "transactions": transactions,
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if limit else 0,
        "stats": stats,
    }


def delete_transaction(caller: CallerIdentity, transaction_id: int) -> bool:
    """Purge one transaction record. Tile stock is left untouched."""
    require_admin(caller)
    query = db.session.query(StockTransaction).filter(StockTransaction.id == transaction_id)
    query = apply_shop_scope(query, StockTransaction.shop_id, caller)
    txn = query.first()
    if txn is None:
        return False
    db.session.delete(txn)
    db.session.commit()
    return True


def clear_filtered(
    caller: CallerIdentity,
    *,
    shop_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    transaction_type: str | None = None,
) -> int:
    """Bulk purge with the same predicate as query_transactions. Returns count."""
    require_admin(caller)
    query = _filtered_query(
        db.session.query(StockTransaction),
        caller,
        shop_id=shop_id,
        start_date=start_date,
        end_date=end_date,
        transaction_type=transaction_type,
    )
    count = query.delete(synchronize_session=False)
    db.session.commit()
    return int(count or 0)


def _sales_totals(shop_id: int) -> tuple[int, int]:
    count, revenue = (
        db.session.query(func.count(Sale.id), func.coalesce(func.sum(Sale.total_amount_cents), 0))
        .filter(Sale.shop_id == shop_id, Sale.status != "cancelled")
        .one()
    )
    return int(count or 0), int(revenue or 0)


def shop_statistics(caller: CallerIdentity, shop_id: int) -> dict:
    """Dashboard figures for one shop."""
    shop = require_shop_access(caller, shop_id)

    active_tiles = db.session.query(Tile).filter(
        Tile.shop_id == shop.id,
        Tile.is_active.is_(True),
        Tile.is_deleted.is_(False),
    )
    total_tiles = active_tiles.count()
    total_stock = (
        db.session.query(func.coalesce(func.sum(Tile.quantity - Tile.reserved_quantity), 0))
        .filter(Tile.shop_id == shop.id, Tile.is_active.is_(True), Tile.is_deleted.is_(False))
        .scalar()
    )
    low_stock_count = active_tiles.filter(
        Tile.quantity - Tile.reserved_quantity <= Tile.minimum_threshold
    ).count()
    total_sales, total_revenue = _sales_totals(shop.id)

    recent = (
        db.session.query(Sale)
        .filter(Sale.shop_id == shop.id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(5)
        .all()
    )

    return {
        "shop_id": shop.id,
        "total_tiles": total_tiles,
        "total_stock": int(total_stock or 0),
        "total_sales": total_sales,
        "total_revenue_cents": total_revenue,
        "low_stock_count": low_stock_count,
        "recent_sales": [
            {
                "id": sale.id,
                "sale_number": sale.sale_number,
                "customer_name": sale.customer_name,
                "total_amount_cents": sale.total_amount_cents,
                "status": sale.status,
                "created_at": to_utc_z(sale.created_at),
            }
            for sale in recent
        ],
    }


def shops_overview(caller: CallerIdentity) -> list[dict]:
    """Per-shop tiles / sales / revenue across every active shop."""
    require_role(caller, ROLE_GRAND_ADMIN)
    overview = []
    for shop in db.session.query(Shop).filter(Shop.is_active.is_(True)).order_by(Shop.name).all():
        tiles = (
            db.session.query(func.count(Tile.id))
            .filter(Tile.shop_id == shop.id, Tile.is_active.is_(True), Tile.is_deleted.is_(False))
            .scalar()
        )
        sales, revenue = _sales_totals(shop.id)
        overview.append({
            "shop": {"id": shop.id, "name": shop.name, "address": shop.to_dict()["address"]},
            "statistics": {"tiles": int(tiles or 0), "sales": sales, "revenue_cents": revenue},
        })
    return overview
