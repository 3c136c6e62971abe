# Overview: Pytest coverage for the reservation-based sale workflow.

"""
Sale Workflow Tests

- creation reserves stock and writes one `sale` transaction per item
- cancellation releases reservations and writes `return` transactions
- delivery releases reservations and removes pieces from on-hand stock
- update_sale routes status changes through the same delivery/cancel paths
- delivered and cancelled sales only accept payment edits
- a failing sale leaves no partial reservations, transactions or numbers
"""

import re
from datetime import datetime

import pytest
from sqlalchemy import delete

from tilestock.errors import InsufficientStock, InvalidQuantity, InvalidState, SaleNotFound, TileNotFound
from tilestock.extensions import db
from tilestock.models import Sale, Sequence, StockTransaction, Tile
from tilestock.services import sales_service
from tilestock.services.sequence_service import next_sale_number
from tilestock.validation import MAX_AMOUNT_CENTS, MAX_QUANTITY, ValidationError


def _sell(caller, tile, quantity, unit_price_cents=100, **kwargs):
    return sales_service.create_sale(
        caller,
        customer=kwargs.pop("customer", {"name": "Walk-in Customer"}),
        items=[{"tile_id": tile.id, "quantity": quantity, "unit_price_cents": unit_price_cents}],
        **kwargs,
    )


def _tile(tile_id):
    tile = db.session.get(Tile, tile_id)
    db.session.refresh(tile)
    return tile


class TestCreateSale:

    def test_reserves_available_stock(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        sale = _sell(staff_a_caller, tile, 10, unit_price_cents=100)

        assert sale.status == "confirmed"
        assert sale.subtotal_cents == 1000
        assert sale.total_amount_cents == 1000
        tile = _tile(tile.id)
        assert tile.available_quantity == 0
        assert tile.reserved_quantity == 10
        assert tile.quantity == 10

    def test_writes_sale_transaction_per_item(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        sale = _sell(staff_a_caller, tile, 4, unit_price_cents=250)

        txn = db.session.query(StockTransaction).filter_by(transaction_type="sale").one()
        assert txn.tile_id == tile.id
        assert txn.quantity == -4
        assert txn.unit_price_cents == 250
        assert txn.total_amount_cents == 1000
        assert txn.reference_number == sale.sale_number
        assert txn.notes == f"Sale: {sale.sale_number}"

    def test_totals_with_discount_and_tax(self, staff_a_caller, shop_a, make_tile):
        first = make_tile(shop_a, name="Porcelain", quantity=10)
        second = make_tile(shop_a, name="Mosaic", quantity=10)

        sale = sales_service.create_sale(
            staff_a_caller,
            customer={"name": "Hina", "email": "HINA@Example.com"},
            items=[
                {"tile_id": first.id, "quantity": 2, "unit_price_cents": 300},
                {"tile_id": second.id, "quantity": 1, "unit_price_cents": 150},
            ],
            discount_cents=200,
            tax_cents=50,
            payment_method="card",
        )

        assert sale.subtotal_cents == 750
        assert sale.total_amount_cents == 600
        assert sale.customer_email == "hina@example.com"
        assert [item.total_price_cents for item in sale.items] == [600, 150]

    def test_negative_total_rejected(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        with pytest.raises(ValidationError, match="Total amount cannot be negative"):
            _sell(staff_a_caller, tile, 1, unit_price_cents=100, discount_cents=500)

        assert _tile(tile.id).reserved_quantity == 0
        assert db.session.query(Sale).count() == 0

    def test_sale_number_format(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        first = _sell(staff_a_caller, tile, 1)
        second = _sell(staff_a_caller, tile, 1)

        assert re.fullmatch(r"SALE-\d{6}-000001", first.sale_number)
        assert re.fullmatch(r"SALE-\d{6}-000002", second.sale_number)

    def test_insufficient_stock_message(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, name="Terracotta", quantity=3)

        with pytest.raises(InsufficientStock, match="Insufficient stock for Terracotta. Available: 3, Requested: 5"):
            _sell(staff_a_caller, tile, 5)

    def test_repeated_tile_lines_are_summed(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        with pytest.raises(InsufficientStock, match="Requested: 12"):
            sales_service.create_sale(
                staff_a_caller,
                customer={"name": "Usman"},
                items=[
                    {"tile_id": tile.id, "quantity": 6, "unit_price_cents": 10},
                    {"tile_id": tile.id, "quantity": 6, "unit_price_cents": 10},
                ],
            )

        assert _tile(tile.id).reserved_quantity == 0

    def test_failure_leaves_no_partial_effects(self, staff_a_caller, shop_a, make_tile):
        plenty = make_tile(shop_a, name="Plenty", quantity=100)
        scarce = make_tile(shop_a, name="Scarce", quantity=1)

        with pytest.raises(InsufficientStock):
            sales_service.create_sale(
                staff_a_caller,
                customer={"name": "Zara"},
                items=[
                    {"tile_id": plenty.id, "quantity": 10, "unit_price_cents": 10},
                    {"tile_id": scarce.id, "quantity": 2, "unit_price_cents": 10},
                ],
            )

        assert _tile(plenty.id).reserved_quantity == 0
        assert db.session.query(Sale).count() == 0
        assert db.session.query(StockTransaction).filter_by(transaction_type="sale").count() == 0
        assert db.session.query(Sequence).filter_by(name="sale_number").count() == 0

    def test_unknown_tile_rejected(self, staff_a_caller, shop_a):
        with pytest.raises(TileNotFound, match="Tile with ID 424242 not found"):
            sales_service.create_sale(
                staff_a_caller,
                customer={"name": "Zara"},
                items=[{"tile_id": 424242, "quantity": 1, "unit_price_cents": 10}],
            )

    def test_tile_from_other_shop_is_not_sellable(self, staff_a_caller, shop_b, make_tile):
        foreign = make_tile(shop_b, quantity=10)

        with pytest.raises(TileNotFound):
            _sell(staff_a_caller, foreign, 1)

    @pytest.mark.parametrize("customer,items,exc,message", [
        ({"name": ""}, [{"tile_id": 1, "quantity": 1}], ValidationError, "Customer name is required"),
        ({"name": "A"}, [], ValidationError, "At least one item is required"),
        ({"name": "A"}, [{"tile_id": 1, "quantity": 0}], InvalidQuantity, "quantity"),
        ({"name": "A"}, [{"tile_id": 1, "quantity": 10**19}], InvalidQuantity, f"quantity must be <= {MAX_QUANTITY}"),
        ({"name": "A"}, [{"tile_id": 1, "quantity": 1, "unit_price_cents": -5}], ValidationError, "unit_price_cents"),
    ])
    def test_input_validation(self, staff_a_caller, shop_a, customer, items, exc, message):
        with pytest.raises(exc, match=message):
            sales_service.create_sale(staff_a_caller, customer=customer, items=items)

    def test_amounts_above_column_limit_rejected(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=5)

        with pytest.raises(ValidationError, match=f"Subtotal cannot exceed {MAX_AMOUNT_CENTS} cents"):
            _sell(staff_a_caller, tile, 3, unit_price_cents=999_999_999)
        with pytest.raises(ValidationError, match="discount_cents must be <="):
            _sell(staff_a_caller, tile, 1, discount_cents=MAX_AMOUNT_CENTS + 1)

        assert _tile(tile.id).reserved_quantity == 0
        assert db.session.query(Sale).count() == 0

    def test_publishes_stock_and_sale_events(self, staff_a_caller, shop_a, make_tile, notifier):
        tile = make_tile(shop_a, quantity=10)

        sale = _sell(staff_a_caller, tile, 3)

        types = [event["type"] for event in notifier.events()]
        assert types == ["stock_updated", "sale_created"]
        assert notifier.events("sale_created")[0]["data"]["sale_number"] == sale.sale_number
        assert notifier.events("stock_updated")[0]["data"]["reserved_quantity"] == 3


class TestCancelSale:

    def test_cancel_releases_reservation(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 10)

        sale = sales_service.cancel_sale(staff_a_caller, sale.id)

        assert sale.status == "cancelled"
        assert sale.cancelled_at is not None
        tile = _tile(tile.id)
        assert (tile.available_quantity, tile.reserved_quantity) == (10, 0)

    def test_cancel_writes_return_transaction(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 6)

        sales_service.cancel_sale(staff_a_caller, sale.id)

        txn = db.session.query(StockTransaction).filter_by(transaction_type="return").one()
        assert txn.quantity == 6
        assert txn.notes == f"Sale cancelled: {sale.sale_number}"

    def test_missing_tile_aborts_cancellation(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 4)
        sale_id, sale_number = sale.id, sale.sale_number
        db.session.execute(delete(Tile).where(Tile.id == tile.id))
        db.session.commit()
        db.session.expunge_all()

        with pytest.raises(TileNotFound, match=f"on sale {sale_number} no longer exists"):
            sales_service.cancel_sale(staff_a_caller, sale_id)

        assert db.session.get(Sale, sale_id).status == "confirmed"
        assert db.session.query(StockTransaction).filter_by(transaction_type="return").count() == 0

    def test_cannot_cancel_twice(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)
        sales_service.cancel_sale(staff_a_caller, sale.id)

        with pytest.raises(InvalidState, match="Sale is already cancelled"):
            sales_service.cancel_sale(staff_a_caller, sale.id)

        assert _tile(tile.id).reserved_quantity == 0

    def test_cannot_cancel_delivered(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)
        sales_service.deliver_sale(staff_a_caller, sale.id)

        with pytest.raises(InvalidState, match="Cannot cancel a delivered sale"):
            sales_service.cancel_sale(staff_a_caller, sale.id)

        tile = _tile(tile.id)
        assert (tile.quantity, tile.reserved_quantity) == (8, 0)


class TestDeliverSale:

    def test_deliver_consumes_reservation(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 10)

        sale = sales_service.deliver_sale(staff_a_caller, sale.id)

        assert sale.status == "delivered"
        assert sale.delivered_at is not None
        tile = _tile(tile.id)
        assert (tile.quantity, tile.reserved_quantity, tile.available_quantity) == (0, 0, 0)

    def test_deliver_writes_no_transaction(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 4)

        sales_service.deliver_sale(staff_a_caller, sale.id)

        types = [t.transaction_type for t in db.session.query(StockTransaction).order_by(StockTransaction.id)]
        assert types == ["stock_in", "sale"]

    def test_cannot_deliver_cancelled(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)
        sales_service.cancel_sale(staff_a_caller, sale.id)

        with pytest.raises(InvalidState, match="Cannot change sale status from cancelled to delivered"):
            sales_service.deliver_sale(staff_a_caller, sale.id)

        assert _tile(tile.id).quantity == 10


class TestUpdateSale:

    def test_status_delivered_takes_delivery_path(self, staff_a_caller, shop_a, make_tile, notifier):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 4)
        notifier.clear()

        sale = sales_service.update_sale(staff_a_caller, sale.id, {"status": "delivered"})

        assert sale.status == "delivered"
        assert sale.delivered_at is not None
        tile = _tile(tile.id)
        assert (tile.quantity, tile.reserved_quantity) == (6, 0)
        assert [e["type"] for e in notifier.events()] == ["stock_updated", "sale_delivered", "sale_updated"]

    def test_status_cancelled_takes_cancel_path(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 4)

        sale = sales_service.update_sale(staff_a_caller, sale.id, {"status": "cancelled", "payment_status": "pending"})

        assert sale.status == "cancelled"
        assert _tile(tile.id).reserved_quantity == 0
        assert db.session.query(StockTransaction).filter_by(transaction_type="return").count() == 1

    def test_same_status_is_a_no_op(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 4)

        sale = sales_service.update_sale(staff_a_caller, sale.id, {"status": "confirmed"})

        assert sale.status == "confirmed"
        assert _tile(tile.id).reserved_quantity == 4

    def test_discount_recomputes_total(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 5, unit_price_cents=200)

        sale = sales_service.update_sale(staff_a_caller, sale.id, {"discount_cents": 100, "tax_cents": 30})

        assert sale.total_amount_cents == 930

    def test_delivered_sale_accepts_payment_edits_only(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)
        sales_service.deliver_sale(staff_a_caller, sale.id)

        sale = sales_service.update_sale(staff_a_caller, sale.id, {"payment_status": "paid", "payment_method": "bank_transfer"})
        assert (sale.payment_status, sale.payment_method) == ("paid", "bank_transfer")

        with pytest.raises(InvalidState, match="delivered sale"):
            sales_service.update_sale(staff_a_caller, sale.id, {"discount_cents": 10})
        with pytest.raises(InvalidState, match="Cannot cancel a delivered sale"):
            sales_service.update_sale(staff_a_caller, sale.id, {"status": "cancelled"})

        refreshed = db.session.get(Sale, sale.id)
        assert refreshed.status == "delivered"
        assert refreshed.discount_cents == 0

    def test_unknown_field_rejected(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)

        with pytest.raises(ValidationError, match="Field not allowed: items"):
            sales_service.update_sale(staff_a_caller, sale.id, {"items": []})


class TestQueries:

    def test_other_shop_sale_not_found(self, staff_a_caller, staff_b_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 2)

        with pytest.raises(SaleNotFound):
            sales_service.get_sale(staff_b_caller, sale.id)
        with pytest.raises(SaleNotFound):
            sales_service.cancel_sale(staff_b_caller, sale.id)

    def test_list_filters(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=50)
        _sell(staff_a_caller, tile, 1, customer={"name": "Ahmed Khan"})
        second = _sell(staff_a_caller, tile, 1, customer={"name": "Sara Ali"})
        sales_service.cancel_sale(staff_a_caller, second.id)

        assert sales_service.list_sales(staff_a_caller)["total"] == 2
        cancelled = sales_service.list_sales(staff_a_caller, status="cancelled")
        assert [s.id for s in cancelled["sales"]] == [second.id]
        by_name = sales_service.list_sales(staff_a_caller, customer_name="khan")
        assert [s.customer_name for s in by_name["sales"]] == ["Ahmed Khan"]

    def test_list_date_range_is_inclusive_of_end_day(self, staff_a_caller, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        sale = _sell(staff_a_caller, tile, 1)
        day = datetime(sale.created_at.year, sale.created_at.month, sale.created_at.day)

        result = sales_service.list_sales(staff_a_caller, start=day, end=day)

        assert result["total"] == 1


class TestSequences:

    def test_sale_numbers_restart_per_month(self, app):
        assert next_sale_number(datetime(2026, 3, 15)) == "SALE-202603-000001"
        assert next_sale_number(datetime(2026, 3, 20)) == "SALE-202603-000002"
        assert next_sale_number(datetime(2026, 4, 1)) == "SALE-202604-000001"
        db.session.commit()
