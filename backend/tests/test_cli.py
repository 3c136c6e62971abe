# Overview: Pytest coverage for the Flask CLI commands.

from tilestock.extensions import db
from tilestock.models import Shop, User
from tilestock.services import reporting_service, stock_service

from conftest import TEST_PASSWORD


def test_shops_create_uses_default_threshold(app):
    result = app.test_cli_runner().invoke(args=["shops", "create", "--name", "Shop C", "--city", "Multan"])

    assert "PASS Created shop: Shop C" in result.output
    shop = db.session.query(Shop).filter_by(name="Shop C").one()
    assert shop.low_stock_threshold == 50


def test_users_create_in_shop(app, shop_a):
    result = app.test_cli_runner().invoke(args=[
        "users", "create", "--shop-id", str(shop_a.id), "--email", "cli@tilestock.test",
        "--name", "Cli User", "--password", TEST_PASSWORD,
    ])

    assert "PASS Created user" in result.output
    assert db.session.query(User).filter_by(email="cli@tilestock.test").one().shop_id == shop_a.id


def test_users_create_reports_weak_password(app, shop_a):
    result = app.test_cli_runner().invoke(args=[
        "users", "create", "--shop-id", str(shop_a.id), "--email", "weak@tilestock.test",
        "--name", "Weak", "--password", "weak",
    ])

    assert "FAIL Password validation failed" in result.output


def test_stock_reconcile_reports_drift(app, admin_a_caller, staff_a_caller, shop_a, make_tile):
    tile = make_tile(shop_a, quantity=10)
    _, txn = stock_service.add_stock(staff_a_caller, tile.id, pieces=4)
    reporting_service.delete_transaction(admin_a_caller, txn.id)

    result = app.test_cli_runner().invoke(args=["stock", "reconcile", "--shop-id", str(shop_a.id)])

    assert f"WARN {tile.sku}" in result.output
    assert "drift=4" in result.output
    assert "PASS Checked 1 tile(s), 1 with drift" in result.output
