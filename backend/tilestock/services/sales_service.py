"""
Sales Service - reservation-based sale workflow

WHY: A sale holds stock from the moment it is confirmed until it is either
delivered (pieces leave the shop) or cancelled (pieces become available
again). Reservations keep that stock out of reach of stock removals and other
sales without touching on-hand quantity until delivery.

LIFECYCLE:
    pending -> confirmed -> delivered
    pending | confirmed -> cancelled
delivered and cancelled are terminal.

STOCK EFFECTS (per item, quantity q):
- create:  reserved += q               -> `sale` transaction, quantity -q
- cancel:  reserved = max(0, reserved - q)  -> `return` transaction, quantity +q
- deliver: reserved = max(0, reserved - q), quantity = max(0, quantity - q)
           available is unchanged, no transaction

Every lifecycle operation is a single database transaction: a sale whose
third item loses a race leaves no trace of the first two.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from sqlalchemy import case
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InsufficientStock, InvalidQuantity, InvalidState, SaleNotFound, TileNotFound
from ..extensions import db
from ..models import PAYMENT_METHODS, PAYMENT_STATUSES, SALE_STATUSES, Sale, SaleItem, StockTransaction, Tile
from ..validation import MAX_AMOUNT_CENTS, MAX_PRICE_CENTS, MAX_QUANTITY, ValidationError, coerce_int, require_choice
from tilestock.time_utils import end_of_day, utcnow
from .concurrency import lock_for_update, run_with_retry
from .notifier import (
    EVENT_SALE_CANCELLED,
    EVENT_SALE_CREATED,
    EVENT_SALE_DELIVERED,
    EVENT_SALE_UPDATED,
    EVENT_STOCK_UPDATED,
    publish,
    stock_updated_payload,
)
from .sequence_service import next_sale_number
from .stock_service import conditional_tile_update
from .tenant_service import CallerIdentity, apply_shop_scope, resolve_shop_id


ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}

UPDATABLE_FIELDS = {"payment_status", "status", "customer", "discount_cents", "tax_cents", "payment_method"}

# Fields that may still change once a sale is delivered or cancelled
TERMINAL_UPDATABLE_FIELDS = {"payment_status", "payment_method"}

CUSTOMER_FIELDS = ("name", "phone", "email", "address")


@dataclass(frozen=True)
class SaleLineInput:
    tile_id: int
    quantity: int
    unit_price_cents: int

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.unit_price_cents


# =============================================================================
# Input parsing
# =============================================================================

def parse_customer(customer, *, partial: bool = False) -> dict:
    """Normalize a customer payload to Sale column values."""
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object")
    unknown = set(customer) - set(CUSTOMER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown customer fields: {', '.join(sorted(unknown))}")

    values = {}
    for key in CUSTOMER_FIELDS:
        if key not in customer:
            continue
        raw = customer[key]
        value = str(raw).strip() if raw is not None else None
        values[f"customer_{key}"] = value or None

    if not partial or "customer_name" in values:
        if not values.get("customer_name"):
            raise ValidationError("Customer name is required")
    if values.get("customer_email"):
        values["customer_email"] = values["customer_email"].lower()
    return values


def parse_items(items) -> list[SaleLineInput]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if item.get("tile_id") is None:
            raise ValidationError(f"items[{index}].tile_id is required")
        tile_id = coerce_int(item["tile_id"], f"items[{index}].tile_id", minimum=1)
        quantity = coerce_int(
            item.get("quantity"), f"items[{index}].quantity",
            minimum=1, maximum=MAX_QUANTITY, error_cls=InvalidQuantity,
        )
        unit_price = coerce_int(item.get("unit_price_cents", 0), f"items[{index}].unit_price_cents", minimum=0)
        if unit_price > MAX_PRICE_CENTS:
            raise ValidationError(f"items[{index}].unit_price_cents cannot exceed {MAX_PRICE_CENTS}")
        lines.append(SaleLineInput(tile_id=tile_id, quantity=quantity, unit_price_cents=unit_price))
    return lines


def compute_total(subtotal_cents: int, discount_cents: int, tax_cents: int) -> int:
    if subtotal_cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"Subtotal cannot exceed {MAX_AMOUNT_CENTS} cents (got {subtotal_cents})")
    total = subtotal_cents - discount_cents + tax_cents
    if total < 0:
        raise ValidationError(
            f"Total amount cannot be negative (subtotal {subtotal_cents}, discount {discount_cents}, tax {tax_cents})"
        )
    if total > MAX_AMOUNT_CENTS:
        raise ValidationError(f"Total amount cannot exceed {MAX_AMOUNT_CENTS} cents (got {total})")
    return total


# =============================================================================
# Lookups
# =============================================================================

def _get_sale_for_caller(caller: CallerIdentity, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter(Sale.id == sale_id)
    query = apply_shop_scope(query, Sale.shop_id, caller)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise SaleNotFound("Sale not found", {"sale_id": sale_id})
    return sale


def _load_sellable_tile(shop_id: int, tile_id: int) -> Tile:
    query = db.session.query(Tile).filter(
        Tile.id == tile_id,
        Tile.shop_id == shop_id,
        Tile.is_active.is_(True),
        Tile.is_deleted.is_(False),
    )
    tile = lock_for_update(query).first()
    if tile is None:
        raise TileNotFound(f"Tile with ID {tile_id} not found", {"tile_id": tile_id})
    return tile


def _insufficient_for_sale(tile: Tile, requested: int) -> InsufficientStock:
    available = tile.available_quantity
    return InsufficientStock(
        f"Insufficient stock for {tile.name or tile.sku}. Available: {available}, Requested: {requested}",
        {"tile_id": tile.id, "sku": tile.sku, "available": available, "requested": requested},
    )


# =============================================================================
# Create
# =============================================================================

def create_sale(
    caller: CallerIdentity,
    *,
    customer,
    items,
    shop_id: int | None = None,
    discount_cents=0,
    tax_cents=0,
    payment_method: str = "cash",
    payment_status: str = "pending",
    notifier=None,
) -> Sale:
    """
    Create a confirmed sale and reserve its stock.

    Pass 1 validates every item (summing repeated tiles) before anything is
    written. Pass 2 reserves each item with a conditional UPDATE; a reservation
    that loses a race to a concurrent sale aborts the whole transaction.
    """
    target_shop_id = resolve_shop_id(caller, shop_id)
    customer_values = parse_customer(customer)
    lines = parse_items(items)
    discount = coerce_int(discount_cents or 0, "discount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
    tax = coerce_int(tax_cents or 0, "tax_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)
    require_choice(payment_status, "payment_status", PAYMENT_STATUSES)

    def _op() -> tuple[Sale, list[Tile]]:
        # Pass 1: validate
        tiles: dict[int, Tile] = {}
        requested: dict[int, int] = {}
        subtotal = 0
        for line in lines:
            tile = tiles.get(line.tile_id)
            if tile is None:
                tile = _load_sellable_tile(target_shop_id, line.tile_id)
                tiles[tile.id] = tile
            requested[tile.id] = requested.get(tile.id, 0) + line.quantity
            if tile.available_quantity < requested[tile.id]:
                raise _insufficient_for_sale(tile, requested[tile.id])
            subtotal += line.total_price_cents

        total = compute_total(subtotal, discount, tax)

        sale = Sale(
            sale_number=next_sale_number(),
            shop_id=target_shop_id,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=tax,
            total_amount_cents=total,
            payment_method=payment_method,
            payment_status=payment_status,
            status="confirmed",
            sold_by_user_id=caller.user_id,
            **customer_values,
        )
        for line in lines:
            sale.items.append(SaleItem(
                tile_id=line.tile_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_price_cents=line.total_price_cents,
            ))
        db.session.add(sale)
        db.session.flush()

        # Pass 2: reserve
        for line in lines:
            tile = tiles[line.tile_id]
            ok = conditional_tile_update(
                tile,
                {"reserved_quantity": Tile.reserved_quantity + line.quantity},
                Tile.shop_id == target_shop_id,
                Tile.is_active.is_(True),
                Tile.quantity - Tile.reserved_quantity >= line.quantity,
            )
            if not ok:
                db.session.refresh(tile)
                raise _insufficient_for_sale(tile, line.quantity)

            db.session.add(StockTransaction(
                tile_id=tile.id,
                shop_id=target_shop_id,
                transaction_type="sale",
                quantity=-line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_amount_cents=line.total_price_cents,
                reference_number=sale.sale_number,
                notes=f"Sale: {sale.sale_number}",
                performed_by_user_id=caller.user_id,
            ))

        db.session.commit()
        return sale, list(tiles.values())

    sale, touched = run_with_retry(_op)
    _publish_stock_changes(touched, caller, notifier)
    publish(EVENT_SALE_CREATED, shop_id=sale.shop_id, data=sale.to_dict(), user_id=caller.user_id, notifier=notifier)
    return sale


# =============================================================================
# Lifecycle
# =============================================================================

def _require_transition(sale: Sale, target: str) -> None:
    if target not in SALE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SALE_STATUSES)}")
    if target in ALLOWED_TRANSITIONS.get(sale.status, set()):
        return
    if sale.status == "delivered" and target == "cancelled":
        message = "Cannot cancel a delivered sale"
    elif sale.status == target:
        message = f"Sale is already {target}"
    else:
        message = f"Cannot change sale status from {sale.status} to {target}"
    raise InvalidState(message, {"sale_id": sale.id, "status": sale.status, "requested": target})


def _clamped_decrement(column, amount: int):
    return case((column >= amount, column - amount), else_=0)


def _require_sale_tile(sale: Sale, item: SaleItem) -> Tile:
    """Tile behind a sale line, including soft-deleted ones."""
    tile = db.session.get(Tile, item.tile_id)
    if tile is None:
        raise TileNotFound(
            f"Tile with ID {item.tile_id} on sale {sale.sale_number} no longer exists",
            {"tile_id": item.tile_id, "sale_id": sale.id},
        )
    return tile


def _apply_cancellation(sale: Sale, caller: CallerIdentity) -> list[Tile]:
    """Release every reservation of `sale` and write one `return` per item."""
    _require_transition(sale, "cancelled")
    now = utcnow()
    sale.status = "cancelled"
    sale.cancelled_at = now
    sale.updated_at = now

    touched = []
    for item in sale.items:
        tile = _require_sale_tile(sale, item)
        if not conditional_tile_update(
            tile,
            {"reserved_quantity": _clamped_decrement(Tile.reserved_quantity, item.quantity)},
            include_deleted=True,
        ):
            raise StaleDataError(f"tile {tile.id} changed during cancellation of {sale.sale_number}")
        db.session.add(StockTransaction(
            tile_id=tile.id,
            shop_id=sale.shop_id,
            transaction_type="return",
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            total_amount_cents=item.total_price_cents,
            reference_number=sale.sale_number,
            notes=f"Sale cancelled: {sale.sale_number}",
            performed_by_user_id=caller.user_id,
        ))
        touched.append(tile)
    return touched


def _apply_delivery(sale: Sale) -> list[Tile]:
    """Release every reservation of `sale` and take the pieces off on-hand."""
    _require_transition(sale, "delivered")
    now = utcnow()
    sale.status = "delivered"
    sale.delivered_at = now
    sale.updated_at = now

    touched = []
    for item in sale.items:
        tile = _require_sale_tile(sale, item)
        if not conditional_tile_update(
            tile,
            {
                "reserved_quantity": _clamped_decrement(Tile.reserved_quantity, item.quantity),
                "quantity": _clamped_decrement(Tile.quantity, item.quantity),
            },
            include_deleted=True,
        ):
            raise StaleDataError(f"tile {tile.id} changed during delivery of {sale.sale_number}")
        touched.append(tile)
    return touched


def _publish_stock_changes(tiles: list[Tile], caller: CallerIdentity, notifier) -> None:
    for tile in tiles:
        publish(
            EVENT_STOCK_UPDATED,
            shop_id=tile.shop_id,
            data=stock_updated_payload(tile),
            user_id=caller.user_id,
            notifier=notifier,
        )


def cancel_sale(caller: CallerIdentity, sale_id: int, *, notifier=None) -> Sale:
    """Cancel a pending/confirmed sale, returning its stock to availability."""

    def _op():
        sale = _get_sale_for_caller(caller, sale_id, lock=True)
        touched = _apply_cancellation(sale, caller)
        db.session.commit()
        return sale, touched

    sale, touched = run_with_retry(_op)
    _publish_stock_changes(touched, caller, notifier)
    publish(EVENT_SALE_CANCELLED, shop_id=sale.shop_id, data=sale.to_dict(), user_id=caller.user_id, notifier=notifier)
    return sale


def deliver_sale(caller: CallerIdentity, sale_id: int, *, notifier=None) -> Sale:
    """Mark a sale delivered; reserved pieces leave on-hand stock."""

    def _op():
        sale = _get_sale_for_caller(caller, sale_id, lock=True)
        touched = _apply_delivery(sale)
        db.session.commit()
        return sale, touched

    sale, touched = run_with_retry(_op)
    _publish_stock_changes(touched, caller, notifier)
    publish(EVENT_SALE_DELIVERED, shop_id=sale.shop_id, data=sale.to_dict(), user_id=caller.user_id, notifier=notifier)
    return sale


def update_sale(caller: CallerIdentity, sale_id: int, changes: dict, *, notifier=None) -> Sale:
    """
    Update payment/customer/discount/tax fields and optionally the status.

    status=delivered and status=cancelled take the same path as deliver_sale
    and cancel_sale, inside this update's transaction. Totals are recomputed
    when discount or tax change.
    """
    if not isinstance(changes, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    values = {}
    if "customer" in changes:
        values.update(parse_customer(changes["customer"], partial=True))
    if "discount_cents" in changes:
        values["discount_cents"] = coerce_int(
            changes["discount_cents"], "discount_cents", minimum=0, maximum=MAX_AMOUNT_CENTS,
        )
    if "tax_cents" in changes:
        values["tax_cents"] = coerce_int(changes["tax_cents"], "tax_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
    if "payment_method" in changes:
        values["payment_method"] = require_choice(changes["payment_method"], "payment_method", PAYMENT_METHODS)
    if "payment_status" in changes:
        values["payment_status"] = require_choice(changes["payment_status"], "payment_status", PAYMENT_STATUSES)
    target_status = changes.get("status")
    if target_status is not None:
        require_choice(target_status, "status", SALE_STATUSES)

    def _op():
        sale = _get_sale_for_caller(caller, sale_id, lock=True)

        if sale.status in ("delivered", "cancelled"):
            frozen = {k for k in changes if k not in TERMINAL_UPDATABLE_FIELDS and k != "status"}
            if frozen:
                raise InvalidState(
                    f"Cannot change {', '.join(sorted(frozen))} on a {sale.status} sale",
                    {"sale_id": sale.id, "status": sale.status},
                )

        for key, value in values.items():
            setattr(sale, key, value)
        if "discount_cents" in values or "tax_cents" in values:
            sale.total_amount_cents = compute_total(sale.subtotal_cents, sale.discount_cents, sale.tax_cents)
        sale.updated_at = utcnow()

        touched: list[Tile] = []
        routed = None
        if target_status is not None and target_status != sale.status:
            if target_status == "delivered":
                touched = _apply_delivery(sale)
                routed = EVENT_SALE_DELIVERED
            elif target_status == "cancelled":
                touched = _apply_cancellation(sale, caller)
                routed = EVENT_SALE_CANCELLED
            else:
                _require_transition(sale, target_status)
                sale.status = target_status

        db.session.commit()
        return sale, touched, routed

    sale, touched, routed = run_with_retry(_op)
    _publish_stock_changes(touched, caller, notifier)
    if routed is not None:
        publish(routed, shop_id=sale.shop_id, data=sale.to_dict(), user_id=caller.user_id, notifier=notifier)
    publish(EVENT_SALE_UPDATED, shop_id=sale.shop_id, data=sale.to_dict(), user_id=caller.user_id, notifier=notifier)
    return sale


# =============================================================================
# Queries
# =============================================================================

def get_sale(caller: CallerIdentity, sale_id: int) -> Sale:
    return _get_sale_for_caller(caller, sale_id)


def list_sales(
    caller: CallerIdentity,
    *,
    shop_id: int | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    customer_name: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Sales in the caller's scope, newest first."""
    query = db.session.query(Sale)
    query = apply_shop_scope(query, Sale.shop_id, caller, shop_id)
    if status:
        query = query.filter(Sale.status == require_choice(status, "status", SALE_STATUSES))
    if payment_status:
        query = query.filter(Sale.payment_status == require_choice(payment_status, "payment_status", PAYMENT_STATUSES))
    if customer_name:
        query = query.filter(Sale.customer_name.ilike(f"%{customer_name.strip()}%"))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end_of_day(end))

    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"sales": sales, "total": total, "page": page, "pages": math.ceil(total / limit) if limit else 0}
