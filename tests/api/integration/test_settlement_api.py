"""Integration tests for the settlement HTTP endpoints."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean import current_domain
from settlement.api import (
    dispute_router,
    inventory_router,
    maintenance_router,
    order_router,
    payment_router,
    refund_router,
)
from settlement.order.order import Order
from settlement.payments.refund import Refund

CUSTOMER = {"X-Actor-Id": "cust-001", "X-Actor-Role": "customer"}
VENDOR = {"X-Actor-Id": "vendor-001", "X-Actor-Role": "vendor"}
ADMIN = {"X-Actor-Id": "admin-001", "X-Actor-Role": "admin"}


@pytest.fixture()
def client():
    app = FastAPI()
    for router in (order_router, payment_router, refund_router, inventory_router, dispute_router, maintenance_router):
        app.include_router(router)
    return TestClient(app)


def _create_order(client, **overrides):
    payload = {
        "customer_id": "cust-001",
        "items": [{"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 2, "unit_price": 50.0}],
    }
    payload.update(overrides)
    response = client.post("/orders", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["order_id"]


def _paid_order(client, **overrides):
    order_id = _create_order(client, **overrides)
    response = client.post(f"/payments/{order_id}/capture", json={}, headers=ADMIN)
    assert response.status_code == 200, response.text
    return order_id


class TestOrderEndpoints:
    def test_create_order_with_discount(self, client):
        order_id = _create_order(
            client,
            discounts=[{"kind": "percentage", "value": 10}],
            shipping_amount=5.0,
        )

        data = client.get(f"/orders/{order_id}").json()
        assert data["status"] == "pending"
        assert data["subtotal"] == 100.0
        assert data["discount_amount"] == 10.0
        assert data["total"] == 95.0

    def test_unknown_discount_kind(self, client):
        response = client.post(
            "/orders",
            json={
                "customer_id": "cust-001",
                "items": [{"product_id": "prod-001", "quantity": 1, "unit_price": 10.0}],
                "discounts": [{"kind": "bogo", "value": 1}],
            },
        )
        assert response.status_code == 400

    def test_empty_order_rejected(self, client):
        response = client.post("/orders", json={"customer_id": "cust-001", "items": []})
        assert response.status_code == 422

    def test_unknown_order(self, client):
        response = client.get("/orders/missing")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotFound"

    def test_valid_transition(self, client):
        order_id = _paid_order(client)
        response = client.put(f"/orders/{order_id}/status", json={"new_status": "confirmed"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"previous_status": "paid", "new_status": "confirmed"}

    def test_invalid_transition_is_conflict(self, client):
        order_id = _create_order(client)
        response = client.put(f"/orders/{order_id}/status", json={"new_status": "shipped"}, headers=ADMIN)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "InvalidTransition"
        assert current_domain.repository_for(Order).get(order_id).status == "pending"

    def test_status_change_requires_actor(self, client):
        order_id = _create_order(client)
        response = client.put(f"/orders/{order_id}/status", json={"new_status": "cancelled"})
        assert response.status_code == 422

    def test_unknown_actor_role(self, client):
        order_id = _create_order(client)
        response = client.put(
            f"/orders/{order_id}/status",
            json={"new_status": "cancelled"},
            headers={"X-Actor-Id": "x", "X-Actor-Role": "wizard"},
        )
        assert response.status_code == 400

    def test_system_role_cannot_be_asserted(self, client):
        order_id = _create_order(client)
        response = client.put(
            f"/orders/{order_id}/status",
            json={"new_status": "cancelled"},
            headers={"X-Actor-Id": "ops-1", "X-Actor-Role": "System"},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "InvalidInput"
        assert current_domain.repository_for(Order).get(order_id).status == "pending"

    def test_payment_failed(self, client):
        order_id = _create_order(client)
        response = client.post(f"/orders/{order_id}/payment-failed", json={"reason": "Declined"}, headers=ADMIN)
        assert response.status_code == 200
        assert client.get(f"/orders/{order_id}").json()["payment_status"] == "failed"

    def test_buyer_protection(self, client):
        order_id = _create_order(client, buyer_protection=True)
        assert client.get(f"/orders/{order_id}/protection").json() == {"order_id": order_id, "protected": True}


class TestPaymentEndpoints:
    def test_partial_then_final_capture(self, client):
        order_id = _create_order(client)

        first = client.post(
            f"/payments/{order_id}/capture",
            json={"amount": 40.0, "final_capture": False},
            headers=ADMIN,
        )
        assert first.status_code == 200
        assert first.json()["payment_status"] == "pending"

        second = client.post(f"/payments/{order_id}/capture", json={"amount": 60.0}, headers=ADMIN)
        body = second.json()
        assert body["total_captured"] == 100.0
        assert body["payment_status"] == "completed"
        assert body["order_status"] == "paid"

    def test_capture_above_total(self, client):
        order_id = _create_order(client)
        response = client.post(f"/payments/{order_id}/capture", json={"amount": 500.0}, headers=ADMIN)
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "AmountExceedsOrderTotal"

    def test_double_capture(self, client):
        order_id = _paid_order(client)
        response = client.post(f"/payments/{order_id}/capture", json={}, headers=ADMIN)
        assert response.status_code == 409

    def test_configure_fake_gateway(self, client):
        response = client.post("/payments/gateway/configure", json={"should_succeed": False})
        assert response.status_code == 200

    def test_configure_gateway_blocked_in_production(self, client, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        response = client.post("/payments/gateway/configure", json={"should_succeed": False})
        assert response.status_code == 403


class TestRefundEndpoints:
    def test_refund_flow(self, client):
        order_id = _paid_order(client)

        response = client.post("/refunds", json={"order_id": order_id, "amount": 30.0, "reason": "Scratched"})
        assert response.status_code == 201
        refund_id = response.json()["refund_id"]

        processed = client.post(f"/refunds/{refund_id}/process", headers=ADMIN)
        assert processed.status_code == 200
        assert current_domain.repository_for(Refund).get(refund_id).status == "completed"

        assert client.get(f"/orders/{order_id}/refundable").json()["refundable_amount"] == 70.0
        assert len(client.get(f"/orders/{order_id}/refunds").json()) == 1

    def test_read_single_refund(self, client):
        order_id = _paid_order(client)
        refund_id = client.post("/refunds", json={"order_id": order_id, "amount": 30.0}).json()["refund_id"]

        body = client.get(f"/refunds/{refund_id}").json()
        assert body["status"] == "pending"
        assert body["amount"] == 30.0
        assert body["order"]["order_id"] == order_id
        assert body["order"]["total"] == 100.0

        assert client.get("/refunds/missing").status_code == 404

    def test_refund_above_refundable(self, client):
        order_id = _paid_order(client)
        response = client.post("/refunds", json={"order_id": order_id, "amount": 150.0})
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "AmountExceedsRefundable"

    def test_refund_before_payment(self, client):
        order_id = _create_order(client)
        response = client.post("/refunds", json={"order_id": order_id, "amount": 10.0})
        assert response.status_code == 409


class TestInventoryEndpoints:
    def test_reserve_and_release(self, client):
        assert client.post("/inventory", json={"product_id": "prod-001", "quantity": 10}).status_code == 201

        response = client.post(
            "/inventory/reservations",
            json={"product_id": "prod-001", "quantity": 4, "requester_id": "cart-1"},
        )
        assert response.status_code == 201
        reservation_id = response.json()["reservation_id"]
        assert client.get("/inventory/prod-001/availability").json()["available"] == 6

        assert client.delete(f"/inventory/reservations/{reservation_id}").status_code == 200
        assert client.get("/inventory/prod-001/availability").json()["available"] == 10

    def test_insufficient_stock(self, client):
        client.post("/inventory", json={"product_id": "prod-001", "quantity": 2})
        response = client.post(
            "/inventory/reservations",
            json={"product_id": "prod-001", "quantity": 3, "requester_id": "cart-1"},
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "InsufficientStock"

    def test_restock_variant(self, client):
        client.post("/inventory", json={"product_id": "prod-001", "variant_id": "red", "quantity": 1})
        response = client.post("/inventory/prod-001/restock?variant_id=red", json={"quantity": 4})
        assert response.status_code == 200
        assert client.get("/inventory/prod-001/availability?variant_id=red").json()["available"] == 5


class TestDisputeEndpoints:
    def _file(self, client, order_id):
        response = client.post(
            "/disputes",
            json={"order_id": order_id, "type": "damaged", "description": "Cracked screen"},
            headers=CUSTOMER,
        )
        assert response.status_code == 201, response.text
        return response.json()["dispute_id"]

    def test_dispute_conversation(self, client):
        dispute_id = self._file(client, _create_order(client))

        reply = client.post(f"/disputes/{dispute_id}/messages", json={"message": "Sorry!"}, headers=VENDOR)
        assert reply.status_code == 201
        assert reply.json() == {"status": "open"}

        data = client.get(f"/disputes/{dispute_id}", headers=CUSTOMER).json()
        assert data["status"] == "open"
        assert data["messages"][0]["message"] == "Sorry!"

    def test_vendor_cannot_file(self, client):
        order_id = _create_order(client)
        response = client.post(
            "/disputes",
            json={"order_id": order_id, "type": "damaged", "description": "x"},
            headers=VENDOR,
        )
        assert response.status_code == 403

    def test_duplicate_dispute(self, client):
        order_id = _create_order(client)
        self._file(client, order_id)
        response = client.post(
            "/disputes",
            json={"order_id": order_id, "type": "other", "description": "Again"},
            headers=CUSTOMER,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "DisputeAlreadyOpen"

    def test_stranger_cannot_read(self, client):
        dispute_id = self._file(client, _create_order(client))
        response = client.get(f"/disputes/{dispute_id}", headers={"X-Actor-Id": "cust-2", "X-Actor-Role": "customer"})
        assert response.status_code == 403

    def test_escalate_then_resolve_with_refund(self, client):
        order_id = _paid_order(client)
        dispute_id = self._file(client, order_id)

        escalated = client.post(f"/disputes/{dispute_id}/escalate", headers=CUSTOMER)
        assert escalated.json() == {"status": "pending_admin_review"}

        resolved = client.post(
            f"/disputes/{dispute_id}/resolve",
            json={"status": "resolved", "resolution": "Partial refund", "refund_amount": 25.0},
            headers=ADMIN,
        )
        assert resolved.status_code == 200
        body = resolved.json()
        assert body["status"] == "resolved"
        assert current_domain.repository_for(Refund).get(body["refund_id"]).amount == 25.0

    def test_close_then_message_rejected(self, client):
        dispute_id = self._file(client, _create_order(client))
        closed = client.post(f"/disputes/{dispute_id}/close", json={}, headers=CUSTOMER)
        assert closed.json() == {"status": "closed"}

        response = client.post(f"/disputes/{dispute_id}/messages", json={"message": "Hello?"}, headers=VENDOR)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "DisputeClosed"


class TestMaintenanceEndpoints:
    def test_unconfigured_secret(self, client, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        assert client.post("/maintenance/expire-reservations").status_code == 503

    def test_wrong_secret(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        response = client.post("/maintenance/expire-reservations", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_secret_without_scheme_rejected(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        response = client.post("/maintenance/expire-reservations", headers={"Authorization": "s3cret"})
        assert response.status_code == 401

    def test_sweeps_with_secret(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        auth = {"Authorization": "Bearer s3cret"}

        assert client.post("/maintenance/expire-reservations", headers=auth).json() == {"processed": 0}
        assert client.post("/maintenance/escalate-disputes", headers=auth).json() == {"processed": 0}
        assert client.post("/maintenance/retry-refunds", headers=auth).json() == {
            "retried": 0,
            "completed": 0,
            "failed": 0,
        }
