"""
Host API: catalog, variant drafts, cart persistence, checkout and orders.
"""

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from cart import ShippingPolicy
from database import InMemoryCartStore, InMemoryOrderStore, InMemoryProductRepository
from inventory import InventoryIndex, decrement_stock
from main import app, get_carts, get_orders, get_products, get_shipping

S_RED = {"Size": "S", "Color": "Red"}
M_RED = {"Size": "M", "Color": "Red"}
ADDRESS = {"street": "Av. Providencia 1234", "city": "Providencia", "zip_code": "7500000"}


class FlakyOrderStore(InMemoryOrderStore):
    def replace(self, order_id, order):
        raise PyMongoError("not primary")


@pytest.fixture
def stores(tee, mouse):
    return {
        "products": InMemoryProductRepository([tee, mouse]),
        "carts": InMemoryCartStore(),
        "orders": InMemoryOrderStore(),
    }


@pytest.fixture
def client(stores):
    app.dependency_overrides[get_products] = lambda: stores["products"]
    app.dependency_overrides[get_carts] = lambda: stores["carts"]
    app.dependency_overrides[get_orders] = lambda: stores["orders"]
    app.dependency_overrides[get_shipping] = lambda: ShippingPolicy(free_threshold=50000, flat_rate=3500)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def place_order(client, cart_id="c1"):
    client.post(f"/cart/{cart_id}/add", json={"product_id": "mouse", "quantity": 1})
    return client.post("/checkout", json={"cart_id": cart_id, "shipping_address": ADDRESS})


# ══════════════════════════════════════════════════════════════
# Products
# ══════════════════════════════════════════════════════════════

class TestProducts:
    def test_list_with_total_stock(self, client):
        res = client.get("/products")
        assert res.status_code == 200
        by_id = {p["id"]: p for p in res.json()}
        assert by_id["tee"]["total_stock"] == 8
        assert by_id["mouse"]["total_stock"] == 5

    def test_filter_by_category_and_search(self, client):
        assert [p["id"] for p in client.get("/products", params={"category": "technology"}).json()] == ["mouse"]
        assert [p["id"] for p in client.get("/products", params={"q": "COTTON"}).json()] == ["tee"]

    def test_create_simple_product(self, client, stores):
        res = client.post("/products", json={"name": "Keyboard", "category": "technology", "base_price": 30000, "base_stock": 3})
        assert res.status_code == 201
        assert stores["products"].get(res.json()["id"]).base_stock == 3

    def test_create_with_attributes_but_no_variants(self, client):
        payload = {
            "name": "Hoodie", "category": "clothing", "base_price": 19990,
            "attributes": [{"name": "Size", "options": ["S", "M"]}],
        }
        res = client.post("/products", json=payload)
        assert res.status_code == 422
        assert "incomplete variant configuration" in res.json()["detail"]

    def test_create_rejects_negative_price(self, client):
        res = client.post("/products", json={"name": "x", "category": "c", "base_price": -1})
        assert res.status_code == 422

    def test_replace_and_delete(self, client, stores, mouse):
        body = mouse.model_copy(update={"base_stock": 9}).model_dump()
        assert client.put("/products/mouse", json=body).status_code == 200
        assert stores["products"].get("mouse").base_stock == 9
        assert client.put("/products/nope", json=body).status_code == 404
        assert client.delete("/products/mouse").status_code == 204
        assert client.delete("/products/mouse").status_code == 404

    def test_regenerate_is_a_draft(self, client, stores):
        attributes = [{"name": "Size", "options": ["S", "M"]}, {"name": "Color", "options": ["Red", "Blue", "Green"]}]
        res = client.post("/products/tee/variants/regenerate", json={"attributes": attributes})
        assert res.status_code == 200
        draft = res.json()
        assert len(draft["variants"]) == 6
        m_red = next(v for v in draft["variants"] if v["values"] == M_RED)
        assert (m_red["id"], m_red["stock"]) == ("M-Red", 5)
        assert draft["total_stock"] == 8
        assert len(stores["products"].get("tee").variants) == 4

        assert client.put("/products/tee", json=draft).status_code == 200
        assert len(stores["products"].get("tee").variants) == 6

    def test_regenerate_with_repeated_options(self, client):
        attributes = [{"name": "Size", "options": ["S", "S", "M"]}, {"name": "Color", "options": ["Red"]}]
        res = client.post("/products/tee/variants/regenerate", json={"attributes": attributes})
        assert res.status_code == 200
        values = [v["values"] for v in res.json()["variants"]]
        assert values == [S_RED, M_RED]
        assert next(v for v in res.json()["variants"] if v["values"] == S_RED)["stock"] == 2

    def test_regenerate_rejects_duplicate_attribute_names(self, client):
        attributes = [{"name": "Size", "options": ["S"]}, {"name": "Size", "options": ["M"]}]
        res = client.post("/products/tee/variants/regenerate", json={"attributes": attributes})
        assert res.status_code == 422
        assert "unique" in res.json()["detail"]

    def test_selection_defaults_to_first_options(self, client):
        res = client.post("/products/tee/selection", json={})
        body = res.json()
        assert body["values"] == S_RED
        assert body["complete"] is True
        assert body["stock"] == 2
        assert body["price"] == 9990
        assert body["options"]["Color"] == {"Red": True, "Blue": False}

    def test_selection_partial(self, client):
        body = client.post("/products/tee/selection", json={"values": {"Size": "M"}}).json()
        assert body["complete"] is False
        assert body["stock"] == 0

    def test_unknown_product(self, client):
        assert client.post("/products/nope/selection", json={}).status_code == 404


# ══════════════════════════════════════════════════════════════
# Cart
# ══════════════════════════════════════════════════════════════

class TestCart:
    def test_add_persists_and_enforces_stock(self, client, stores):
        res = client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 2, "values": S_RED})
        assert res.status_code == 200
        assert res.json()["item_count"] == 2
        assert stores["carts"].load("c1")[0].quantity == 2

        res = client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 1, "values": S_RED})
        assert res.status_code == 409
        assert res.json()["detail"]["reason"] == "stock_exceeded"
        assert stores["carts"].load("c1")[0].quantity == 2

    def test_add_zero_quantity(self, client):
        res = client.post("/cart/c1/add", json={"product_id": "mouse", "quantity": 0})
        assert res.status_code == 422

    def test_update_and_remove(self, client, stores):
        client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 2, "values": S_RED})
        res = client.post("/cart/c1/update", json={"product_id": "tee", "delta": 1, "values": S_RED})
        assert res.json()["changed"] is False
        assert res.json()["item_count"] == 2

        res = client.post("/cart/c1/update", json={"product_id": "tee", "delta": -2, "values": S_RED})
        assert res.json()["changed"] is True
        assert res.json()["items"] == []
        assert stores["carts"].load("c1") == []

        res = client.post("/cart/c1/remove", json={"product_id": "tee", "values": S_RED})
        assert res.status_code == 200
        assert res.json()["items"] == []

    def test_same_selection_reaches_line_on_every_route(self, client, stores):
        values = {"Size": "M", "Color": "Red", "Fit": "slim"}
        client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 1, "values": values})
        assert stores["carts"].load("c1")[0].values == M_RED

        res = client.post("/cart/c1/update", json={"product_id": "tee", "delta": 1, "values": values})
        assert res.json()["changed"] is True
        assert res.json()["item_count"] == 2

        res = client.post("/cart/c1/remove", json={"product_id": "tee", "values": values})
        assert res.json()["items"] == []
        assert stores["carts"].load("c1") == []

    def test_get_cart_totals(self, client):
        client.post("/cart/c1/add", json={"product_id": "mouse", "quantity": 2})
        body = client.get("/cart/c1").json()
        assert body["subtotal"] == 50000
        assert body["shipping_cost"] == 0
        assert body["total"] == 50000
        assert client.get("/cart/empty").json()["shipping_cost"] == 0


# ══════════════════════════════════════════════════════════════
# Checkout & orders
# ══════════════════════════════════════════════════════════════

class TestCheckout:
    def test_checkout_creates_order_decrements_stock_and_clears_cart(self, client, stores):
        client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 2, "values": M_RED})
        client.post("/cart/c1/add", json={"product_id": "mouse", "quantity": 1})

        res = client.post("/checkout", json={"cart_id": "c1", "shipping_address": ADDRESS})
        assert res.status_code == 201
        assert res.json()["total"] == 2 * 9990 + 25000 + 3500
        assert res.json()["status"] == "pending"

        order = stores["orders"].get(res.json()["order_id"])
        assert order.items_price == 2 * 9990 + 25000
        assert order.shipping_price == 3500
        assert order.items[0].values == M_RED

        assert InventoryIndex(stores["products"].get("tee")).stock_for(M_RED) == 3
        assert stores["products"].get("mouse").base_stock == 4
        assert stores["carts"].load("c1") == []

    def test_empty_cart(self, client):
        res = client.post("/checkout", json={"cart_id": "c1", "shipping_address": ADDRESS})
        assert res.status_code == 400

    def test_address_required(self, client):
        client.post("/cart/c1/add", json={"product_id": "mouse", "quantity": 1})
        res = client.post("/checkout", json={"cart_id": "c1", "shipping_address": {"street": " ", "city": "Santiago"}})
        assert res.status_code == 422

    def test_stock_sold_elsewhere_blocks_checkout(self, client, stores, tee):
        client.post("/cart/c1/add", json={"product_id": "tee", "quantity": 2, "values": M_RED})
        stores["products"].replace("tee", decrement_stock(tee, 4, M_RED))
        res = client.post("/checkout", json={"cart_id": "c1", "shipping_address": ADDRESS})
        assert res.status_code == 409
        assert res.json()["detail"]["available"] == 1
        assert len(stores["carts"].load("c1")) == 1
        assert stores["orders"].list() == []


class TestOrders:
    def test_status_change_and_filters(self, client):
        order_id = place_order(client).json()["order_id"]
        assert [o["id"] for o in client.get("/orders", params={"status": "action_required"}).json()] == [order_id]

        res = client.patch(f"/orders/{order_id}/status", json={"status": "shipped"})
        assert res.status_code == 200
        assert res.json()["status"] == "shipped"
        assert client.get("/orders", params={"status": "action_required"}).json() == []
        assert len(client.get("/orders", params={"status": "shipped"}).json()) == 1
        assert len(client.get("/orders").json()) == 1

    def test_unknown_status(self, client):
        order_id = place_order(client).json()["order_id"]
        assert client.patch(f"/orders/{order_id}/status", json={"status": "lost"}).status_code == 422
        assert client.patch("/orders/nope/status", json={"status": "shipped"}).status_code == 404

    def test_failed_status_write_rolls_back(self, client, stores):
        flaky = FlakyOrderStore()
        stores["orders"] = flaky
        order_id = place_order(client).json()["order_id"]

        res = client.patch(f"/orders/{order_id}/status", json={"status": "delivered"})
        assert res.status_code == 503
        assert res.json()["detail"]["status"] == "pending"
        assert flaky.get(order_id).status == "pending"

    def test_dashboard(self, client):
        place_order(client)
        assert client.get("/dashboard").json() == {"total_sales": 28500, "total_orders": 1, "total_products": 2}
