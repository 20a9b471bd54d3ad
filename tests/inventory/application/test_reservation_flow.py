"""Application tests for reserving, releasing and consuming stock."""

import threading
from datetime import timedelta

from protean import current_domain
from settlement.inventory.availability import get_available_stock
from settlement.inventory.management import register_stock, restock
from settlement.inventory.reservation import (
    consume_reservation,
    extend_reservation,
    release_reservation,
    reserve_stock,
)
from settlement.inventory.stock import InventoryItem, InventoryReservation, ReservationStatus
from settlement.shared.clock import utc_now
from settlement.shared.errors import ErrorKind


def _register(quantity=10, product_id="prod-001", variant_id=None):
    result = register_stock(product_id, quantity, variant_id=variant_id)
    assert result.success
    return result.value


class TestRegisterStock:
    def test_register_persists(self):
        key = _register(12)
        item = current_domain.repository_for(InventoryItem).get(key)
        assert item.on_hand == 12

    def test_duplicate_registration_rejected(self):
        _register()
        result = register_stock("prod-001", 3)
        assert not result.success
        assert result.error == ErrorKind.INVALID_INPUT

    def test_restock_unknown_product(self):
        result = restock("missing", 5)
        assert result.error == ErrorKind.NOT_FOUND

    def test_restock_adds_units(self):
        _register(2)
        assert restock("prod-001", 3).value == 5


class TestReserveStock:
    def test_reservation_reduces_availability(self):
        _register(10)
        result = reserve_stock("prod-001", 4, "cust-001")
        assert result.success
        assert get_available_stock("prod-001") == 6

    def test_variant_stock_is_separate(self):
        _register(10)
        _register(1, variant_id="red")
        assert not reserve_stock("prod-001", 2, "cust-001", variant_id="red").success
        assert reserve_stock("prod-001", 2, "cust-001").success

    def test_insufficient_stock(self):
        _register(5)
        reserve_stock("prod-001", 3, "cust-001")
        result = reserve_stock("prod-001", 3, "cust-002")
        assert not result.success
        assert result.error == ErrorKind.INSUFFICIENT_STOCK
        assert result.message == "Insufficient stock: 2 available, 3 requested"
        assert result.status_code == 409

    def test_unknown_product(self):
        result = reserve_stock("nothing-here", 1, "cust-001")
        assert result.error == ErrorKind.NOT_FOUND

    def test_unknown_product_has_no_availability(self):
        assert get_available_stock("nothing-here") == 0

    def test_expired_reservation_stops_counting(self):
        _register(10)
        earlier = utc_now() - timedelta(minutes=30)
        reserve_stock("prod-001", 8, "cust-001", ttl_minutes=15, now=earlier)
        assert get_available_stock("prod-001") == 10
        assert reserve_stock("prod-001", 9, "cust-002").success

    def test_concurrent_reservations_never_oversell(self, settlement_domain):
        _register(10)
        outcomes = []
        barrier = threading.Barrier(2)

        def attempt(customer_id):
            with settlement_domain.domain_context():
                barrier.wait()
                outcomes.append(reserve_stock("prod-001", 6, customer_id))

        threads = [threading.Thread(target=attempt, args=(f"cust-{i}",)) for i in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(r.success for r in outcomes) == [False, True]
        failure = next(r for r in outcomes if not r.success)
        assert failure.error == ErrorKind.INSUFFICIENT_STOCK
        assert get_available_stock("prod-001") == 4

    def test_many_concurrent_reservations_fail_only_the_overflow(self, settlement_domain):
        _register(15)
        outcomes = []
        barrier = threading.Barrier(20)

        def attempt(customer_id):
            with settlement_domain.domain_context():
                barrier.wait()
                outcomes.append(reserve_stock("prod-001", 1, customer_id))

        threads = [threading.Thread(target=attempt, args=(f"cust-{i}",)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(outcomes) == 20
        assert sum(r.success for r in outcomes) == 15
        assert {r.error for r in outcomes if not r.success} == {ErrorKind.INSUFFICIENT_STOCK}
        assert get_available_stock("prod-001") == 0


class TestReleaseReservation:
    def test_release_returns_stock(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 4, "cust-001").value
        result = release_reservation(reservation_id)
        assert result.success and result.value is True
        assert get_available_stock("prod-001") == 10

    def test_release_twice_is_successful_noop(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 4, "cust-001").value
        release_reservation(reservation_id)
        result = release_reservation(reservation_id)
        assert result.success
        assert result.value is False

    def test_release_unknown(self):
        assert release_reservation("missing").error == ErrorKind.NOT_FOUND


class TestConsumeReservation:
    def test_consume_decrements_on_hand_once(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 4, "cust-001").value

        assert consume_reservation(reservation_id, order_id="ord-001").value is True
        assert consume_reservation(reservation_id, order_id="ord-001").value is False

        item = current_domain.repository_for(InventoryItem).get("prod-001")
        assert item.on_hand == 6
        assert item.sold == 4
        assert get_available_stock("prod-001") == 6

    def test_consume_released_reservation_fails(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 4, "cust-001").value
        release_reservation(reservation_id)
        result = consume_reservation(reservation_id)
        assert result.error == ErrorKind.INVALID_TRANSITION
        assert current_domain.repository_for(InventoryItem).get("prod-001").on_hand == 10


class TestExtendReservation:
    def test_extend_pushes_expiry(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 1, "cust-001", ttl_minutes=5).value
        before = current_domain.repository_for(InventoryReservation).get(reservation_id).expires_at

        assert extend_reservation(reservation_id, 10).success

        after = current_domain.repository_for(InventoryReservation).get(reservation_id).expires_at
        assert after - before == timedelta(minutes=10)

    def test_extend_released_fails(self):
        _register(10)
        reservation_id = reserve_stock("prod-001", 1, "cust-001").value
        release_reservation(reservation_id)
        result = extend_reservation(reservation_id, 10)
        assert result.error == ErrorKind.INVALID_TRANSITION
        reservation = current_domain.repository_for(InventoryReservation).get(reservation_id)
        assert reservation.status == ReservationStatus.RELEASED.value
