"""HTTP-level tests: envelope, access rules and error mapping."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api import create_app


CUSTOMER = {"X-User-Id": "user-1"}
STRANGER = {"X-User-Id": "user-2"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}


@pytest.fixture
def client(engine) -> TestClient:
    return TestClient(create_app(engine))


@pytest.fixture
def product_id(catalog) -> str:
    return catalog.add_product(name="Mug", price="12.00", stock=5)


def place(client: TestClient, product_id: str, quantity: int = 1, headers=CUSTOMER):
    return client.post(
        "/api/orders",
        json={"items": [{"productId": product_id, "quantity": quantity}]},
        headers=headers,
    )


class TestCreate:
    def test_created_envelope(self, client, product_id, catalog) -> None:
        response = place(client, product_id, 2)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order created successfully"
        assert body["data"]["status"] == "PENDING"
        assert body["data"]["subtotal"] == 24.0
        assert body["data"]["total"] == 36.4
        assert catalog.stock(product_id) == 3

    def test_snake_case_body_accepted(self, client, product_id, catalog) -> None:
        address_id = catalog.add_address("user-1")

        response = client.post(
            "/api/orders",
            json={
                "items": [{"product_id": product_id, "quantity": 1}],
                "shipping_address_id": address_id,
                "payment_method": "card",
            },
            headers=CUSTOMER,
        )

        assert response.status_code == 201
        assert response.json()["data"]["shipping_address"]["id"] == address_id
        assert response.json()["data"]["payment_method"] == "card"

    def test_requires_identity(self, client, product_id) -> None:
        response = place(client, product_id, headers={})

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_empty_order(self, client) -> None:
        response = client.post("/api/orders", json={"items": []}, headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EMPTY_ORDER"

    def test_insufficient_stock_payload(self, client, product_id, catalog) -> None:
        response = place(client, product_id, 9)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_STOCK"
        assert error["available"] == 5
        assert error["requested"] == 9
        assert catalog.stock(product_id) == 5

    def test_oversized_quantity_is_client_error(self, client, product_id, catalog) -> None:
        response = place(client, product_id, 2**63)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_LINE_ITEM"
        assert catalog.stock(product_id) == 5

    def test_unknown_product(self, client) -> None:
        response = place(client, "missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"

    def test_malformed_body(self, client, product_id) -> None:
        response = client.post(
            "/api/orders",
            json={"items": [{"productId": product_id, "quantity": "lots"}]},
            headers=CUSTOMER,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestCancel:
    def test_owner_cancels(self, client, product_id, catalog) -> None:
        order_id = place(client, product_id, 2).json()["data"]["id"]

        response = client.post(f"/api/orders/{order_id}/cancel", headers=CUSTOMER)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "CANCELLED"
        assert catalog.stock(product_id) == 5

    def test_second_cancel_is_rejected(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]
        client.post(f"/api/orders/{order_id}/cancel", headers=CUSTOMER)

        response = client.post(f"/api/orders/{order_id}/cancel", headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ORDER_STATE"
        assert "already cancelled" in response.json()["message"]

    def test_stranger_forbidden(self, client, product_id, catalog) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        response = client.post(f"/api/orders/{order_id}/cancel", headers=STRANGER)

        assert response.status_code == 403
        assert catalog.stock(product_id) == 4

    def test_admin_may_cancel_any(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        response = client.post(f"/api/orders/{order_id}/cancel", headers=ADMIN)

        assert response.status_code == 200

    def test_unknown_order(self, client) -> None:
        response = client.post("/api/orders/nope/cancel", headers=CUSTOMER)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ORDER_NOT_FOUND"


class TestAdminUpdate:
    def test_customer_forbidden(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        response = client.put(
            f"/api/orders/{order_id}", json={"status": "PROCESSING"}, headers=CUSTOMER
        )

        assert response.status_code == 403

    def test_transition(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        response = client.put(
            f"/api/orders/{order_id}",
            json={"status": "PROCESSING", "paymentStatus": "PAID"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "PROCESSING"
        assert response.json()["data"]["payment_status"] == "PAID"

    def test_illegal_transition_needs_force(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        rejected = client.put(
            f"/api/orders/{order_id}", json={"status": "DELIVERED"}, headers=ADMIN
        )
        forced = client.put(
            f"/api/orders/{order_id}?force=true", json={"status": "DELIVERED"}, headers=ADMIN
        )

        assert rejected.status_code == 400
        assert rejected.json()["error"]["requested_status"] == "DELIVERED"
        assert forced.status_code == 200
        assert forced.json()["data"]["status"] == "DELIVERED"

    def test_unknown_status_value(self, client, product_id) -> None:
        order_id = place(client, product_id).json()["data"]["id"]

        response = client.put(
            f"/api/orders/{order_id}", json={"status": "LOST"}, headers=ADMIN
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_null_clears_payment_method(self, client, catalog, product_id) -> None:
        created = client.post(
            "/api/orders",
            json={"items": [{"productId": product_id, "quantity": 1}], "paymentMethod": "card"},
            headers=CUSTOMER,
        ).json()["data"]

        response = client.put(
            f"/api/orders/{created['id']}", json={"paymentMethod": None}, headers=ADMIN
        )

        assert response.json()["data"]["payment_method"] is None


class TestReads:
    def test_my_orders_only_lists_own(self, client, product_id) -> None:
        place(client, product_id)
        place(client, product_id)
        place(client, product_id, headers=STRANGER)

        response = client.get("/api/orders/my-orders?limit=1", headers=CUSTOMER)

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["total"] == 2
        assert data["total_pages"] == 2
        assert len(data["items"]) == 1

    def test_admin_lists_all(self, client, product_id) -> None:
        place(client, product_id)
        place(client, product_id, headers=STRANGER)

        assert client.get("/api/orders", headers=ADMIN).json()["data"]["total"] == 2
        assert client.get("/api/orders", headers=CUSTOMER).status_code == 403

    def test_bad_pagination(self, client) -> None:
        response = client.get("/api/orders/my-orders?limit=500", headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PAGINATION"

    def test_get_by_id_and_number(self, client, product_id) -> None:
        created = place(client, product_id).json()["data"]

        by_id = client.get(f"/api/orders/{created['id']}", headers=CUSTOMER)
        by_number = client.get(
            f"/api/orders/number/{created['order_number']}", headers=CUSTOMER
        )

        assert by_id.json()["data"]["order_number"] == created["order_number"]
        assert by_number.json()["data"]["id"] == created["id"]

    def test_other_users_order_forbidden(self, client, product_id) -> None:
        created = place(client, product_id).json()["data"]

        assert client.get(f"/api/orders/{created['id']}", headers=STRANGER).status_code == 403
        assert client.get(f"/api/orders/{created['id']}", headers=ADMIN).status_code == 200

    def test_unknown_route_uses_envelope(self, client) -> None:
        response = client.get("/api/nowhere", headers=CUSTOMER)

        assert response.status_code == 404
        assert response.json()["success"] is False


class TestOperational:
    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database_stats"]["dialect"] == "sqlite"

    def test_metrics(self, client, product_id) -> None:
        place(client, product_id)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "orders_created_total" in response.text
