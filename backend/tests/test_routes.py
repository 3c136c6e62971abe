# Overview: Pytest coverage for the HTTP API surface.

"""
API Route Tests

Exercises authentication, role gating, JSON error translation and the main
stock / sale / report flows through the Flask test client.
"""

import pytest

from tilestock.extensions import db
from tilestock.models import Tile


@pytest.fixture
def staff_headers(staff_a, login_as):
    return login_as(staff_a)


@pytest.fixture
def admin_headers(admin_a, login_as):
    return login_as(admin_a)


@pytest.fixture
def boxed_tile(shop_a, make_tile):
    return make_tile(shop_a, name="Boxed Porcelain", quantity=0, items_per_packet=12)


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/tiles")

        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"

    def test_bad_token(self, client):
        response = client.get("/api/tiles", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid or expired token"

    def test_login_requires_both_fields(self, client):
        response = client.post("/api/auth/login", json={"email": "staff.a@tilestock.test"})

        assert response.status_code == 400

    def test_login_with_wrong_password(self, client, staff_a):
        response = client.post("/api/auth/login", json={"email": staff_a.email, "password": "Wrong-pass1"})

        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid credentials"

    def test_me_and_logout(self, client, staff_a, shop_a, staff_headers):
        me = client.get("/api/auth/me", headers=staff_headers).get_json()
        assert (me["role"], me["shop_id"]) == ("staff", shop_a.id)
        assert me["user"]["email"] == staff_a.email

        assert client.post("/api/auth/logout", headers=staff_headers).status_code == 200
        assert client.get("/api/auth/me", headers=staff_headers).status_code == 401


class TestRoleGating:

    def test_staff_cannot_create_tiles(self, client, staff_headers):
        response = client.post("/api/tiles", json={"name": "Nope"}, headers=staff_headers)

        assert response.status_code == 403
        assert response.get_json()["kind"] == "permission_denied"

    def test_staff_cannot_set_quantity(self, client, staff_headers, boxed_tile):
        response = client.put(f"/api/stock/{boxed_tile.id}", json={"quantity": 5}, headers=staff_headers)

        assert response.status_code == 403

    def test_shop_admin_cannot_create_shops(self, client, admin_headers):
        response = client.post("/api/shops", json={"name": "Rogue"}, headers=admin_headers)

        assert response.status_code == 403

    def test_shop_admin_creates_staff(self, client, admin_headers, shop_a):
        response = client.post(
            "/api/auth/users",
            json={"email": "new.staff@tilestock.test", "name": "New Staff", "password": "Passw0rd!"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.get_json()["user"]["shop_id"] == shop_a.id


class TestTileRoutes:

    def test_create_and_fetch(self, client, admin_headers, shop_a):
        created = client.post(
            "/api/tiles",
            json={"name": "Hexagon", "items_per_packet": 8, "images": ["https://img.example/hex.jpg"]},
            headers=admin_headers,
        )
        assert created.status_code == 201
        tile = created.get_json()["tile"]
        assert tile["sku"] == "TILE-000001"
        assert tile["shop_id"] == shop_a.id

        fetched = client.get(f"/api/tiles/{tile['id']}", headers=admin_headers)
        assert fetched.get_json()["tile"]["images"][0]["url"] == "https://img.example/hex.jpg"

    def test_unknown_field_rejected(self, client, admin_headers):
        response = client.post("/api/tiles", json={"name": "X", "reserved_quantity": 5}, headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation_error"

    def test_other_shops_tile_is_404(self, client, staff_headers, shop_b, make_tile):
        foreign = make_tile(shop_b, quantity=3)

        response = client.get(f"/api/tiles/{foreign.id}", headers=staff_headers)

        assert response.status_code == 404
        assert response.get_json()["kind"] == "tile_not_found"


class TestStockRoutes:

    def test_add_reports_conversion(self, client, staff_headers, boxed_tile):
        response = client.post(
            "/api/stock/add",
            json={"tile_id": boxed_tile.id, "packets": 3, "pieces": 5},
            headers=staff_headers,
        )

        body = response.get_json()
        assert response.status_code == 200
        assert body["message"] == "Stock added successfully: 3 packet(s) + 5 piece(s) = 41 total pieces"
        assert body["tile"]["quantity"] == 41
        assert (body["tile"]["available_packets"], body["tile"]["available_loose_pieces"]) == (3, 5)
        assert body["transaction"]["transaction_type"] == "stock_in"

    def test_remove_more_than_available_is_409(self, client, staff_headers, boxed_tile):
        client.post("/api/stock/add", json={"tile_id": boxed_tile.id, "pieces": 41}, headers=staff_headers)

        response = client.post(
            "/api/stock/remove",
            json={"tile_id": boxed_tile.id, "packets": 4},
            headers=staff_headers,
        )

        body = response.get_json()
        assert response.status_code == 409
        assert body["kind"] == "insufficient_stock"
        assert "Available: 41 pieces, Requested: 48 pieces" in body["error"]
        assert db.session.get(Tile, boxed_tile.id).quantity == 41

    def test_zero_movement_is_400(self, client, staff_headers, boxed_tile):
        response = client.post(
            "/api/stock/add",
            json={"tile_id": boxed_tile.id, "packets": 0, "pieces": 0},
            headers=staff_headers,
        )

        assert response.status_code == 400
        assert response.get_json()["kind"] == "invalid_quantity"

    def test_oversized_quantity_is_400(self, client, staff_headers, boxed_tile):
        response = client.post(
            "/api/stock/add",
            json={"tile_id": boxed_tile.id, "packets": 10**19},
            headers=staff_headers,
        )

        body = response.get_json()
        assert response.status_code == 400
        assert body["kind"] == "invalid_quantity"
        assert "packets must be <=" in body["error"]
        assert db.session.get(Tile, boxed_tile.id).quantity == 0

    def test_set_quantity_and_history(self, client, admin_headers, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=20)

        response = client.put(f"/api/stock/{tile.id}", json={"quantity": 14}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["transaction"]["quantity"] == -6

        history = client.get(f"/api/stock/{tile.id}/transactions", headers=admin_headers).get_json()
        assert [t["transaction_type"] for t in history["transactions"]] == ["adjustment", "stock_in"]

        reconcile = client.get(f"/api/stock/{tile.id}/reconcile", headers=admin_headers).get_json()
        assert reconcile["drift"] == 0


class TestSaleRoutes:

    def test_sale_lifecycle(self, client, staff_headers, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)

        created = client.post(
            "/api/sales",
            json={
                "customer": {"name": "Walk-in"},
                "items": [{"tile_id": tile.id, "quantity": 10, "unit_price_cents": 120}],
            },
            headers=staff_headers,
        )
        assert created.status_code == 201
        sale = created.get_json()["sale"]
        assert sale["status"] == "confirmed"

        second = client.post(
            "/api/sales",
            json={"customer": {"name": "Late"}, "items": [{"tile_id": tile.id, "quantity": 1}]},
            headers=staff_headers,
        )
        assert second.status_code == 409

        delivered = client.post(f"/api/sales/{sale['id']}/deliver", headers=staff_headers)
        assert delivered.status_code == 200

        cancel = client.delete(f"/api/sales/{sale['id']}", headers=staff_headers)
        assert cancel.status_code == 409
        assert cancel.get_json()["error"] == "Cannot cancel a delivered sale"

        tile = db.session.get(Tile, tile.id)
        db.session.refresh(tile)
        assert (tile.quantity, tile.reserved_quantity) == (0, 0)

    def test_malformed_shop_id_is_400(self, client, grand_admin, login_as):
        response = client.post(
            "/api/sales",
            json={"shop_id": "abc", "customer": {"name": "HQ"}, "items": [{"tile_id": 1, "quantity": 1}]},
            headers=login_as(grand_admin),
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "shop_id must be an integer"

    def test_bad_date_filter_is_400(self, client, staff_headers):
        response = client.get("/api/sales?start_date=yesterday", headers=staff_headers)

        assert response.status_code == 400


class TestReportRoutes:

    def test_list_and_purge(self, client, staff_headers, admin_headers, shop_a, make_tile):
        tile = make_tile(shop_a, quantity=10)
        client.post("/api/stock/remove", json={"tile_id": tile.id, "pieces": 3}, headers=staff_headers)

        report = client.get("/api/reports?type=stock_out", headers=staff_headers).get_json()
        assert report["total"] == 1
        assert report["stats"] == {"stock_in": 0, "stock_out": 3}

        assert client.delete("/api/reports", headers=staff_headers).status_code == 403

        purged = client.delete("/api/reports?type=all", headers=admin_headers).get_json()
        assert purged == {"message": "Deleted 2 transaction(s)", "deleted": 2}

        missing = client.delete("/api/reports/9999", headers=admin_headers)
        assert missing.status_code == 404


class TestNotificationRoutes:

    def test_low_stock_dialog_until_acknowledged(self, client, staff_headers, shop_a, make_tile):
        make_tile(shop_a, name="Empty", quantity=0)

        first = client.get("/api/notifications/low-stock", headers=staff_headers).get_json()
        assert first["show_dialog"] is True
        assert first["entries"][0]["level"] == "out_of_stock"

        assert client.post("/api/notifications/low-stock/ack", headers=staff_headers).status_code == 200

        second = client.get("/api/notifications/low-stock", headers=staff_headers).get_json()
        assert second["show_dialog"] is False
        assert len(second["notifications"]) == 1


class TestShopRoutes:

    def test_grand_admin_manages_shops(self, client, grand_admin, login_as):
        headers = login_as(grand_admin)

        created = client.post(
            "/api/shops",
            json={"name": "Shop C", "address": {"city": "Multan"}, "settings": {"low_stock_threshold": 10}},
            headers=headers,
        )
        assert created.status_code == 201
        shop = created.get_json()["shop"]
        assert shop["address"]["city"] == "Multan"
        assert shop["settings"]["low_stock_threshold"] == 10

        overview = client.get("/api/shops/overview", headers=headers).get_json()["overview"]
        assert [row["shop"]["name"] for row in overview] == ["Shop C"]

        assert client.delete(f"/api/shops/{shop['id']}", headers=headers).status_code == 200
        assert client.get("/api/shops", headers=headers).get_json()["count"] == 0

    def test_statistics_for_own_shop(self, client, staff_headers, shop_a, shop_b):
        assert client.get(f"/api/shops/{shop_a.id}/statistics", headers=staff_headers).status_code == 200
        assert client.get(f"/api/shops/{shop_b.id}/statistics", headers=staff_headers).status_code == 404


class TestHealth:

    def test_health_is_public(self, client):
        response = client.get("/api/health")

        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "session_service"}
