"""Application tests for capturing payment on orders."""

from protean import current_domain
from settlement.inventory.availability import get_available_stock
from settlement.inventory.management import register_stock
from settlement.inventory.reservation import release_reservation, reserve_stock
from settlement.inventory.stock import InventoryItem, InventoryReservation, ReservationStatus
from settlement.order.order import Order, OrderStatus, PaymentStatus
from settlement.order.placement import place_order
from settlement.order.transitions import mark_payment_failed, transition_order
from settlement.payments.capture import MANUAL_CAPTURE_ID, capture_payment, get_capture_status
from settlement.shared.errors import ErrorKind


def _place(total=100.0, payment_method="card", payment_reference="pi_123", reservation_ids=()):
    result = place_order(
        "cust-001",
        [{"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 2, "unit_price": total / 2}],
        payment_method=payment_method,
        payment_reference=payment_reference,
        reservation_ids=reservation_ids,
    )
    assert result.success
    return result.value


class TestCaptureViaGateway:
    def test_full_capture(self, gateway, notifier):
        order_id = _place()
        result = capture_payment(order_id)
        assert result.success
        assert result.value["payment_status"] == PaymentStatus.COMPLETED.value
        assert result.value["order_status"] == OrderStatus.PAID.value
        assert result.value["captured_amount"] == 100.0
        assert result.value["capture_id"].startswith("fake_cap_")
        assert gateway.calls == [{"method": "capture", "amount": 100.0, "reference": "pi_123", "final_capture": True}]
        assert "Payment received" in notifier.subjects_for("cust-001")

    def test_second_capture_rejected(self, gateway):
        order_id = _place()
        capture_payment(order_id)
        result = capture_payment(order_id)
        assert result.error == ErrorKind.PAYMENT_ALREADY_CAPTURED

    def test_partial_captures_accumulate(self, gateway):
        order_id = _place()
        first = capture_payment(order_id, amount=40.0, final_capture=False)
        assert first.value["payment_status"] == PaymentStatus.PENDING.value
        assert first.value["order_status"] == OrderStatus.PENDING.value

        second = capture_payment(order_id, amount=60.0, final_capture=False)
        assert second.value["total_captured"] == 100.0
        assert second.value["payment_status"] == PaymentStatus.COMPLETED.value

    def test_capture_above_remaining_rejected(self, gateway):
        order_id = _place()
        capture_payment(order_id, amount=40.0, final_capture=False)
        result = capture_payment(order_id, amount=70.0)
        assert result.error == ErrorKind.AMOUNT_EXCEEDS_ORDER_TOTAL
        assert result.status_code == 422
        assert len(gateway.calls) == 1

    def test_provider_failure_changes_nothing(self, gateway):
        gateway.configure(should_succeed=False, failure_reason="Card declined")
        order_id = _place()

        result = capture_payment(order_id)
        assert result.error == ErrorKind.PROVIDER_FAILURE
        assert result.message == "Card declined"
        assert result.status_code == 502

        order = current_domain.repository_for(Order).get(order_id)
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.captured_amount == 0.0

    def test_missing_payment_reference(self, gateway):
        order_id = _place(payment_reference=None)
        result = capture_payment(order_id)
        assert result.error == ErrorKind.INVALID_INPUT
        assert gateway.calls == []

    def test_failed_payment_cannot_be_captured(self, gateway):
        order_id = _place()
        mark_payment_failed(order_id, "Declined upstream")
        assert capture_payment(order_id).error == ErrorKind.PAYMENT_FAILED

    def test_cancelled_order_cannot_be_captured(self, gateway):
        order_id = _place()
        transition_order(order_id, "cancelled", "cust-001")
        assert capture_payment(order_id).error == ErrorKind.INVALID_TRANSITION

    def test_unknown_order(self):
        assert capture_payment("missing").error == ErrorKind.NOT_FOUND


class TestManualCapture:
    def test_manual_method_skips_gateway(self, gateway):
        order_id = _place(payment_method="cod", payment_reference=None)
        result = capture_payment(order_id)
        assert result.success
        assert result.value["capture_id"] == MANUAL_CAPTURE_ID
        assert gateway.calls == []


class TestCaptureConsumesStock:
    def test_completed_payment_consumes_reservations(self, gateway):
        register_stock("prod-001", 10)
        reservation_id = reserve_stock("prod-001", 2, "cust-001").value
        order_id = _place(reservation_ids=[reservation_id])

        assert capture_payment(order_id).success

        reservation = current_domain.repository_for(InventoryReservation).get(reservation_id)
        assert reservation.status == ReservationStatus.CONSUMED.value
        item = current_domain.repository_for(InventoryItem).get("prod-001")
        assert item.on_hand == 8
        assert get_available_stock("prod-001") == 8

    def test_partial_capture_keeps_hold(self, gateway):
        register_stock("prod-001", 10)
        reservation_id = reserve_stock("prod-001", 2, "cust-001").value
        order_id = _place(reservation_ids=[reservation_id])

        capture_payment(order_id, amount=10.0, final_capture=False)

        reservation = current_domain.repository_for(InventoryReservation).get(reservation_id)
        assert reservation.status == ReservationStatus.ACTIVE.value
        assert current_domain.repository_for(InventoryItem).get("prod-001").on_hand == 10

    def test_unreserved_lines_commit_stock(self, gateway):
        register_stock("prod-001", 10)
        order_id = _place()

        assert capture_payment(order_id).success

        assert current_domain.repository_for(InventoryItem).get("prod-001").on_hand == 8
        line = current_domain.repository_for(Order).get(order_id).items[0]
        assert line.committed_quantity == 2

    def test_reserved_and_unreserved_lines_on_one_record(self, gateway):
        register_stock("prod-001", 10)
        reservation_id = reserve_stock("prod-001", 2, "cust-001").value
        result = place_order(
            "cust-001",
            [
                {"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 2, "unit_price": 10.0},
                {"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 1, "unit_price": 10.0},
            ],
            payment_method="card",
            payment_reference="pi_123",
            reservation_ids=[reservation_id],
        )

        assert capture_payment(result.value).success
        item = current_domain.repository_for(InventoryItem).get("prod-001")
        assert item.on_hand == 7
        assert item.sold == 3

    def test_short_stock_fails_before_charging(self, gateway):
        register_stock("prod-001", 1)
        order_id = _place()

        result = capture_payment(order_id)
        assert result.error == ErrorKind.INSUFFICIENT_STOCK
        assert gateway.calls == []
        assert current_domain.repository_for(Order).get(order_id).payment_status == PaymentStatus.PENDING.value
        assert current_domain.repository_for(InventoryItem).get("prod-001").on_hand == 1

    def test_unreserved_lines_leave_other_holds_covered(self, gateway):
        register_stock("prod-001", 3)
        reserve_stock("prod-001", 2, "cart-2")
        order_id = _place()

        assert capture_payment(order_id).error == ErrorKind.INSUFFICIENT_STOCK
        assert get_available_stock("prod-001") == 1

    def test_released_reservation_draws_on_free_stock(self, gateway):
        register_stock("prod-001", 10)
        reservation_id = reserve_stock("prod-001", 2, "cust-001").value
        order_id = _place(reservation_ids=[reservation_id])
        assert release_reservation(reservation_id).success

        assert capture_payment(order_id).success
        assert current_domain.repository_for(InventoryItem).get("prod-001").on_hand == 8
        reservation = current_domain.repository_for(InventoryReservation).get(reservation_id)
        assert reservation.status == ReservationStatus.RELEASED.value


class TestCaptureStatus:
    def test_reports_capture(self, gateway):
        order_id = _place()
        capture_payment(order_id)
        status = get_capture_status(order_id).value
        assert status["payment_status"] == "completed"
        assert status["captured_amount"] == 100.0
        assert status["paid_at"] is not None

    def test_unknown_order(self):
        assert get_capture_status("missing").error == ErrorKind.NOT_FOUND
