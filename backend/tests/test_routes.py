"""
HTTP surface tests.

Verifies:
- Missing actor headers return 401, wrong roles return 403
- Cart -> checkout flow returns the computed totals
- Domain errors serialize as {"error", "code", "details"}
- Admin status changes, stale versions and inventory batches over HTTP
"""

import pytest

from conftest import actor_headers
from shopcore.extensions import db
from shopcore.models import InventoryTransaction, Product


def _stock(product_id):
    return db.session.query(Product.stock_qty).filter_by(id=product_id).scalar()


def _checkout(client, headers, address, payment_method="credit_card"):
    return client.post(
        "/api/orders",
        json={"shipping_address": address, "payment_method": payment_method},
        headers=headers,
    )


# =============================================================================
# SYSTEM
# =============================================================================


def test_health(client, db_session):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# ACCESS CONTROL - 401 / 403
# =============================================================================


class TestAccessControl:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/cart"),
            ("POST", "/api/cart/items"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("GET", "/api/orders/admin"),
            ("GET", "/api/inventory/report"),
            ("POST", "/api/inventory/transactions"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_role_is_unauthenticated(self, client, db_session):
        resp = client.get("/api/cart", headers={"X-Actor-Id": "5", "X-Actor-Role": "root"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders/admin"),
            ("GET", "/api/orders/admin/stats"),
            ("PUT", "/api/orders/1/status"),
            ("PUT", "/api/orders/1/payment"),
            ("GET", "/api/inventory/report"),
            ("POST", "/api/inventory/transactions/bulk"),
        ],
    )
    def test_customer_denied_staff_routes(self, client, db_session, customer, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=actor_headers(customer))
        assert resp.status_code == 403
        assert "required_roles" in resp.get_json()

    def test_moderator_cannot_reverse_entries(self, client, make_product, moderator):
        make_product(stock=2)

        resp = client.post("/api/inventory/transactions/1/reverse", json={"reason": "x"},
                           headers=actor_headers(moderator))
        assert resp.status_code == 403

    def test_customer_cannot_view_another_customers_order(
        self, client, make_product, customer, other_customer, address
    ):
        product = make_product(stock=5)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1},
                    headers=actor_headers(customer))
        order_id = _checkout(client, actor_headers(customer), address).get_json()["order"]["id"]

        resp = client.get(f"/api/orders/{order_id}", headers=actor_headers(other_customer))

        assert resp.status_code == 403
        assert resp.get_json()["code"] == "ACCESS_DENIED"


# =============================================================================
# CART AND CHECKOUT
# =============================================================================


class TestCheckoutFlow:
    def test_cart_to_order(self, client, make_product, customer, address):
        product = make_product(price_cents=30000, stock=5)
        headers = actor_headers(customer)

        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=headers)
        assert resp.status_code == 201
        assert resp.get_json()["cart"]["total_amount_cents"] == 60000
        assert _stock(product.id) == 5

        resp = _checkout(client, headers, address)
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["order_number"].startswith("ORD-")
        assert (
            order["total_amount_cents"],
            order["tax_amount_cents"],
            order["shipping_amount_cents"],
            order["final_amount_cents"],
        ) == (60000, 9600, 0, 69600)
        assert order["items"][0]["product_sku"] == product.sku
        assert [h["status"] for h in order["status_history"]] == ["pending"]
        assert _stock(product.id) == 3

        cart = client.get("/api/cart", headers=headers).get_json()["cart"]
        assert cart["items"] == []

        listing = client.get("/api/orders", headers=headers).get_json()
        assert listing["pagination"]["total"] == 1

        detail = client.get(f"/api/orders/{order['id']}", headers=headers).get_json()
        assert detail["estimated_delivery"].endswith("Z")

    def test_insufficient_stock_error_body(self, client, make_product, customer, other_customer, address):
        product = make_product(stock=3)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2},
                    headers=actor_headers(customer))
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2},
                    headers=actor_headers(other_customer))

        assert _checkout(client, actor_headers(customer), address).status_code == 201
        resp = _checkout(client, actor_headers(other_customer), address)

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 1
        assert body["details"]["requested"] == 2
        assert _stock(product.id) == 1

    def test_empty_cart_checkout(self, client, db_session, customer, address):
        resp = _checkout(client, actor_headers(customer), address)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "CART_EMPTY"

    def test_missing_address_fields(self, client, make_product, customer):
        product = make_product(stock=3)
        headers = actor_headers(customer)
        client.post("/api/cart/items", json={"product_id": product.id}, headers=headers)

        resp = _checkout(client, headers, {"street": "x", "city": "y"})

        assert resp.status_code == 400
        assert set(resp.get_json()["details"]["missing_fields"]) == {"state", "zip_code"}
        assert _stock(product.id) == 3

    def test_cart_validate_and_summary(self, client, make_product, customer):
        product = make_product(stock=3)
        headers = actor_headers(customer)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=headers)

        assert client.get("/api/cart/validate", headers=headers).get_json()["is_valid"] is True
        assert client.get("/api/cart/summary", headers=headers).get_json()["items_count"] == 1
        assert client.post("/api/cart/items", json={}, headers=headers).status_code == 400


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================


class TestOrderLifecycle:
    def _place(self, client, make_product, customer, address, stock=5, quantity=2):
        product = make_product(stock=stock)
        resp = client.post(
            "/api/orders/direct",
            json={
                "items": [{"product_id": product.id, "quantity": quantity}],
                "shipping_address": address,
                "payment_method": "paypal",
            },
            headers=actor_headers(customer),
        )
        assert resp.status_code == 201
        return product, resp.get_json()["order"]

    def test_owner_cancel_releases_stock(self, client, make_product, customer, address):
        product, order = self._place(client, make_product, customer, address)

        resp = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "changed mind"},
                           headers=actor_headers(customer))

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "cancelled"
        assert _stock(product.id) == 5

        again = client.post(f"/api/orders/{order['id']}/cancel", headers=actor_headers(customer))
        assert again.get_json()["code"] == "INVALID_STATUS_TRANSITION"
        assert _stock(product.id) == 5

    def test_admin_status_change(self, client, make_product, customer, admin, address):
        _, order = self._place(client, make_product, customer, address)
        headers = actor_headers(admin)

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "confirmed"}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["status_change"] == {"from": "pending", "to": "confirmed"}

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"] == {"from": "confirmed", "to": "delivered"}

        assert client.put(f"/api/orders/{order['id']}/status", json={}, headers=headers).status_code == 400

    def test_stale_expected_version_is_409(self, client, make_product, customer, admin, address):
        _, order = self._place(client, make_product, customer, address)
        headers = actor_headers(admin)
        seen_version = order["version_id"]

        first = client.put(
            f"/api/orders/{order['id']}/status",
            json={"status": "confirmed", "expected_version": seen_version},
            headers=headers,
        )
        assert first.status_code == 200

        second = client.put(
            f"/api/orders/{order['id']}/status",
            json={"status": "processing", "expected_version": seen_version},
            headers=headers,
        )
        assert second.status_code == 409
        assert second.get_json()["code"] == "STALE_ORDER_VERSION"

    def test_paid_confirms_pending_order(self, client, make_product, customer, admin, address):
        _, order = self._place(client, make_product, customer, address)

        resp = client.put(
            f"/api/orders/{order['id']}/payment",
            json={"payment_status": "paid", "transaction_id": "txn_123"},
            headers=actor_headers(admin),
        )

        body = resp.get_json()["order"]
        assert body["payment_status"] == "paid"
        assert body["status"] == "confirmed"
        assert body["transaction_id"] == "txn_123"

    def test_unknown_order_is_404(self, client, db_session, admin):
        resp = client.get("/api/orders/424242", headers=actor_headers(admin))
        assert resp.status_code == 404


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryRoutes:
    def test_record_transaction(self, client, make_product, moderator):
        product = make_product(stock=2)

        resp = client.post(
            "/api/inventory/transactions",
            json={"product_id": product.id, "type": "purchase", "quantity": 8, "reason": "Restock"},
            headers=actor_headers(moderator),
        )

        assert resp.status_code == 201
        tx = resp.get_json()["transaction"]
        assert (tx["previous_qty"], tx["new_qty"]) == (2, 10)
        assert tx["created_by_user_id"] == moderator.user_id

    def test_bulk_is_all_or_nothing(self, client, make_product, admin):
        a = make_product(stock=5)
        b = make_product(stock=5)
        before = db.session.query(InventoryTransaction).count()

        resp = client.post(
            "/api/inventory/transactions/bulk",
            json={
                "type": "purchase",
                "reason": "Delivery",
                "transactions": [
                    {"product_id": a.id, "quantity": 3},
                    {"product_id": b.id, "quantity": -1},
                ],
            },
            headers=actor_headers(admin),
        )

        assert resp.status_code == 400
        assert resp.get_json()["details"]["errors"][0]["index"] == 1
        assert db.session.query(InventoryTransaction).count() == before
        assert (_stock(a.id), _stock(b.id)) == (5, 5)

    def test_report_and_reconcile(self, client, make_product, admin):
        make_product(stock=0)
        make_product(stock=3)
        headers = actor_headers(admin)

        report = client.get("/api/inventory/report?low_stock_threshold=5", headers=headers).get_json()
        assert report["summary"]["out_of_stock_count"] == 1
        assert report["summary"]["low_stock_count"] == 1

        reconcile = client.get("/api/inventory/reconcile", headers=headers).get_json()
        assert reconcile["is_consistent"] is True


# =============================================================================
# INPUT HANDLING
# =============================================================================


class TestInputHandling:
    def _order(self, client, make_product, customer, address):
        product = make_product(stock=5)
        resp = client.post(
            "/api/orders/direct",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "shipping_address": address,
                "payment_method": "paypal",
            },
            headers=actor_headers(customer),
        )
        return resp.get_json()["order"]

    def test_expected_version_as_numeric_string(self, client, make_product, customer, admin, address):
        order = self._order(client, make_product, customer, address)

        resp = client.put(
            f"/api/orders/{order['id']}/status",
            json={"status": "confirmed", "expected_version": str(order["version_id"])},
            headers=actor_headers(admin),
        )

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "confirmed"

    def test_malformed_expected_version_is_400(self, client, make_product, customer, address):
        order = self._order(client, make_product, customer, address)

        resp = client.post(
            f"/api/orders/{order['id']}/cancel",
            json={"expected_version": "latest"},
            headers=actor_headers(customer),
        )

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_malformed_bulk_quantity_is_400(self, client, make_product, admin):
        product = make_product(stock=5)

        resp = client.post(
            "/api/inventory/transactions/bulk",
            json={
                "type": "adjustment",
                "reason": "Count",
                "transactions": [{"product_id": product.id, "quantity": "--5"}],
            },
            headers=actor_headers(admin),
        )

        assert resp.status_code == 400
        assert resp.get_json()["details"]["errors"][0]["index"] == 0
        assert _stock(product.id) == 5

    def test_malformed_single_quantity_is_400(self, client, make_product, admin):
        product = make_product(stock=5)

        resp = client.post(
            "/api/inventory/transactions",
            json={"product_id": product.id, "type": "adjustment", "quantity": "--5", "reason": "Count"},
            headers=actor_headers(admin),
        )

        assert resp.status_code == 400
        assert _stock(product.id) == 5

    @pytest.mark.parametrize("per_page,expected", [(-1, 1), (0, 20), (500, 100)])
    def test_per_page_is_clamped(self, client, make_product, customer, address, per_page, expected):
        self._order(client, make_product, customer, address)

        resp = client.get(f"/api/orders?per_page={per_page}", headers=actor_headers(customer))

        pagination = resp.get_json()["pagination"]
        assert pagination["per_page"] == expected
        assert pagination["total_pages"] >= 1

    @pytest.mark.parametrize("clear_cart", ["false", 0, None])
    def test_clear_cart_must_be_boolean(self, client, make_product, customer, address, clear_cart):
        product = make_product(stock=5)
        headers = actor_headers(customer)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=headers)

        resp = client.post(
            "/api/orders",
            json={"shipping_address": address, "payment_method": "paypal", "clear_cart": clear_cart},
            headers=headers,
        )

        assert resp.status_code == 400
        assert _stock(product.id) == 5
        assert len(client.get("/api/cart", headers=headers).get_json()["cart"]["items"]) == 1

    def test_clear_cart_false_keeps_the_cart(self, client, make_product, customer, address):
        product = make_product(stock=5)
        headers = actor_headers(customer)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=headers)

        resp = client.post(
            "/api/orders",
            json={"shipping_address": address, "payment_method": "paypal", "clear_cart": False},
            headers=headers,
        )

        assert resp.status_code == 201
        assert len(client.get("/api/cart", headers=headers).get_json()["cart"]["items"]) == 1


# =============================================================================
# CART HELPERS AND ANALYTICS
# =============================================================================


def test_cart_count_and_product_check(client, make_product, customer):
    a = make_product(stock=5)
    b = make_product(stock=5)
    headers = actor_headers(customer)
    client.post("/api/cart/items", json={"product_id": a.id, "quantity": 3}, headers=headers)

    assert client.get("/api/cart/items/count", headers=headers).get_json() == {
        "items_count": 1,
        "total_quantity": 3,
    }

    in_cart = client.get(f"/api/cart/items/{a.id}/check", headers=headers).get_json()
    assert in_cart["in_cart"] is True
    assert in_cart["quantity"] == 3

    missing = client.get(f"/api/cart/items/{b.id}/check", headers=headers).get_json()
    assert missing == {"product_id": b.id, "in_cart": False, "item_id": None, "quantity": 0}


def test_inventory_analytics_route(client, make_product, customer, moderator):
    product = make_product(stock=8)
    client.post(
        "/api/inventory/transactions",
        json={"product_id": product.id, "type": "sale", "quantity": -2, "reason": "Counter sale"},
        headers=actor_headers(moderator),
    )

    resp = client.get(f"/api/inventory/analytics?product_id={product.id}&days=7",
                      headers=actor_headers(moderator))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["general"]["transactions"]["sale"] == {"count": 1, "quantity": -2}
    assert body["product"]["stats"]["by_type"]["sale"]["quantity"] == -2
    assert body["product"]["restock_prediction"]["current_stock"] == 6

    assert client.get("/api/inventory/analytics?days=0", headers=actor_headers(moderator)).status_code == 200
    assert client.get(f"/api/inventory/analytics?product_id={product.id}&days=0",
                      headers=actor_headers(moderator)).status_code == 400
    assert client.get("/api/inventory/analytics", headers=actor_headers(customer)).status_code == 403
