"""Tests for the FastAPI API."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from marketplace.api.dependencies import get_event_publisher, get_gateway_client
from marketplace.database import get_db
from marketplace.main import app

from conftest import ADMIN, BUYER, OTHER_BUYER, VENDOR, order_payload, sign

PHONE = "+22890123456"


def as_user(actor):
    return {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role.value}


@pytest.fixture
def api_client(session_factory, publisher, gateway_client):
    """Test client wired to the in-memory database, recording publisher and mock gateway."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(api_client):
    """A store with product A (15000, 10 in stock) and product B (25000, 5 in stock)."""
    store = api_client.post("/stores", json={"name": "Boutique Lome"}, headers=as_user(VENDOR))
    assert store.status_code == 201
    store_id = store.json()["id"]

    ids = []
    for name, price, quantity in (("Pagne Wax", "15000", 10), ("Sac en raphia", "25000", 5)):
        response = api_client.post("/products", json={
            "store_id": store_id, "name": name, "price": price, "stock_quantity": quantity,
        }, headers=as_user(VENDOR))
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return store_id, ids[0], ids[1]


@pytest.fixture
def order(api_client, catalog):
    _, product_a, product_b = catalog
    response = api_client.post(
        "/orders", json=order_payload([(product_a, 2), (product_b, 1)]), headers=as_user(BUYER)
    )
    assert response.status_code == 201
    return response.json()


class TestHealth:
    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    def test_root(self, api_client):
        assert api_client.get("/").json()["service"] == "marketplace-service"


class TestAuthHeaders:
    def test_missing_user_header(self, api_client):
        response = api_client.get("/orders")
        assert response.status_code == 401

    def test_customer_cannot_open_store(self, api_client):
        response = api_client.post("/stores", json={"name": "Nope"}, headers=as_user(BUYER))
        assert response.status_code == 403
        assert response.json()["error"] == "PermissionDeniedError"


class TestOrdersApi:
    def test_create_order(self, api_client, catalog, order):
        _, product_a, _ = catalog
        assert order["total_amount"] == "55000.00"
        assert order["status"] == "pending"
        assert len(order["items"]) == 2

        inventory = api_client.get(f"/products/{product_a}/inventory").json()
        assert inventory["available"] == 8
        assert inventory["reserved"] == 2

    def test_insufficient_stock(self, api_client, catalog):
        _, _, product_b = catalog
        response = api_client.post(
            "/orders", json=order_payload([(product_b, 6)]), headers=as_user(BUYER)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "InsufficientStockError"

    def test_empty_items_rejected(self, api_client, catalog):
        response = api_client.post("/orders", json=order_payload([]), headers=as_user(BUYER))
        assert response.status_code == 422

    def test_get_and_list(self, api_client, order):
        by_id = api_client.get(f"/orders/{order['id']}", headers=as_user(BUYER))
        assert by_id.status_code == 200
        by_number = api_client.get(f"/orders/number/{order['order_number']}", headers=as_user(BUYER))
        assert by_number.json()["id"] == order["id"]

        assert api_client.get("/orders", headers=as_user(BUYER)).json()["total"] == 1
        assert api_client.get("/orders", headers=as_user(OTHER_BUYER)).json()["total"] == 0

    def test_not_found(self, api_client):
        response = api_client.get("/orders/999", headers=as_user(BUYER))
        assert response.status_code == 404
        assert response.json()["error"] == "OrderNotFoundError"

    def test_invalid_transition(self, api_client, order):
        response = api_client.patch(
            f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=as_user(VENDOR)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"

    def test_cancel_restores_stock(self, api_client, catalog, order):
        _, product_a, _ = catalog
        response = api_client.post(
            f"/orders/{order['id']}/cancel", json={"reason": "Changed my mind"}, headers=as_user(BUYER)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert api_client.get(f"/products/{product_a}/inventory").json()["available"] == 10

    def test_stats(self, api_client, catalog, order):
        store_id, _, _ = catalog
        response = api_client.get(f"/orders/stats?store_id={store_id}", headers=as_user(VENDOR))
        assert response.json() == {"total_orders": 1, "by_status": {"pending": 1}}


class TestProductsApi:
    def test_restock_and_low_stock(self, api_client, catalog):
        store_id, _, product_b = catalog
        api_client.post("/orders", json=order_payload([(product_b, 4)]), headers=as_user(BUYER))

        low = api_client.get(f"/products/low-stock?store_id={store_id}").json()
        assert [item["product_id"] for item in low] == [product_b]

        response = api_client.patch(f"/products/{product_b}/stock", json={"quantity": 10}, headers=as_user(VENDOR))
        assert response.status_code == 200
        assert response.json()["available"] == 11

    def test_duplicate_sku_is_a_conflict(self, api_client, catalog):
        store_id, _, _ = catalog
        payload = {"store_id": store_id, "name": "Panier", "sku": "DUP", "price": "5000", "stock_quantity": 2}
        assert api_client.post("/products", json=payload, headers=as_user(VENDOR)).status_code == 201

        response = api_client.post("/products", json=payload, headers=as_user(VENDOR))
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateProductError"


class TestPaymentsApi:
    def test_fee_quote(self, api_client):
        response = api_client.get("/payments/fees?amount=25000&method=tmoney")
        assert response.status_code == 200
        assert response.json()["fee_amount"] == "500.00"
        assert response.json()["net_amount"] == "24500.00"

    def test_mobile_money_flow(self, api_client, order, publisher):
        response = api_client.post(
            "/payments",
            json={"order_id": order["id"], "method": "tmoney", "phone_number": PHONE},
            headers=as_user(BUYER),
        )
        assert response.status_code == 201
        payment = response.json()
        assert payment["status"] == "processing"
        assert payment["fee_amount"] == "1100.00"

        body = json.dumps({
            "reference": payment["transaction_reference"],
            "status": "SUCCESS",
            "transaction_id": "TM-555",
        }).encode()
        headers = {"X-Signature": sign("tmoney-test-secret", body)}

        first = api_client.post("/payments/webhooks/tmoney", content=body, headers=headers)
        assert first.status_code == 200
        assert first.json()["applied"] is True

        again = api_client.post("/payments/webhooks/tmoney", content=body, headers=headers)
        assert again.status_code == 200
        assert again.json()["applied"] is False

        refreshed = api_client.get(f"/orders/{order['id']}", headers=as_user(BUYER)).json()
        assert refreshed["status"] == "confirmed"
        assert refreshed["payment_status"] == "paid"
        assert publisher.types().count("PaymentCompleted") == 1

        by_order = api_client.get(f"/payments/order/{order['id']}", headers=as_user(BUYER)).json()
        assert [p["status"] for p in by_order] == ["completed"]

    def test_history_and_stats(self, api_client, catalog, order):
        store_id, _, _ = catalog
        api_client.post(
            "/payments", json={"order_id": order["id"], "method": "cash_on_delivery"}, headers=as_user(BUYER)
        )

        history = api_client.get("/payments?status=pending", headers=as_user(BUYER)).json()
        assert history["total"] == 1
        assert history["payments"][0]["method"] == "cash_on_delivery"
        assert api_client.get("/payments", headers=as_user(OTHER_BUYER)).json()["total"] == 0

        stats = api_client.get(f"/payments/stats?store_id={store_id}", headers=as_user(VENDOR))
        assert stats.status_code == 200
        assert stats.json()["by_status"] == {"pending": 1}
        assert stats.json()["total_collected"] == "0.00"
        assert api_client.get("/payments/stats", headers=as_user(BUYER)).status_code == 403

    def test_webhook_bad_signature(self, api_client, order):
        payment = api_client.post(
            "/payments", json={"order_id": order["id"], "method": "cash_on_delivery"}, headers=as_user(BUYER)
        ).json()
        body = json.dumps({"reference": payment["transaction_reference"], "status": "SUCCESS"}).encode()
        response = api_client.post("/payments/webhooks/tmoney", content=body, headers={"X-Signature": "00"})
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidSignatureError"

    def test_gateway_unavailable(self, api_client, order, gateway, no_retry_wait):
        gateway.error = httpx.ConnectError("connection refused")
        response = api_client.post(
            "/payments",
            json={"order_id": order["id"], "method": "tmoney", "phone_number": PHONE},
            headers=as_user(BUYER),
        )
        assert response.status_code == 503
        assert response.json()["error"] == "PaymentGatewayUnavailableError"

    def test_admin_status_update_and_refund(self, api_client, order):
        payment = api_client.post(
            "/payments", json={"order_id": order["id"], "method": "cash_on_delivery"}, headers=as_user(BUYER)
        ).json()

        denied = api_client.patch(
            f"/payments/{payment['id']}/status", json={"status": "completed"}, headers=as_user(VENDOR)
        )
        assert denied.status_code == 403

        completed = api_client.patch(
            f"/payments/{payment['id']}/status",
            json={"status": "completed", "external_transaction_id": "COD-9"},
            headers=as_user(ADMIN),
        )
        assert completed.json()["status"] == "completed"

        for step in ("shipped", "delivered"):
            api_client.patch(f"/orders/{order['id']}/status", json={"status": step}, headers=as_user(VENDOR))

        refund = api_client.post(
            f"/payments/{payment['id']}/refund", json={"amount": "55000", "reason": "Returned"},
            headers=as_user(VENDOR),
        )
        assert refund.status_code == 200
        assert refund.json()["status"] == "refunded"

        too_much = api_client.post(
            f"/payments/{payment['id']}/refund", json={"amount": "1"}, headers=as_user(VENDOR)
        )
        assert too_much.status_code == 422
        assert too_much.json()["error"] == "InvalidRefundAmountError"
