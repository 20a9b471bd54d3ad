"""Application tests for the reservation expiry sweep."""

from datetime import timedelta

from protean import current_domain
from settlement.inventory.availability import get_available_stock
from settlement.inventory.expiry import expire_stale_reservations
from settlement.inventory.management import register_stock
from settlement.inventory.reservation import reserve_stock
from settlement.inventory.stock import InventoryReservation, ReservationStatus
from settlement.shared.clock import utc_now


class TestExpireStaleReservations:
    def test_expires_only_overdue(self):
        register_stock("prod-001", 10)
        stale_id = reserve_stock("prod-001", 2, "cust-001", ttl_minutes=5, now=utc_now() - timedelta(minutes=10)).value
        fresh_id = reserve_stock("prod-001", 3, "cust-002", ttl_minutes=15).value

        assert expire_stale_reservations() == 1

        repo = current_domain.repository_for(InventoryReservation)
        assert repo.get(stale_id).status == ReservationStatus.EXPIRED.value
        assert repo.get(fresh_id).status == ReservationStatus.ACTIVE.value
        assert get_available_stock("prod-001") == 7

    def test_sweep_is_idempotent(self):
        register_stock("prod-001", 10)
        reserve_stock("prod-001", 2, "cust-001", ttl_minutes=5, now=utc_now() - timedelta(minutes=10))

        assert expire_stale_reservations() == 1
        assert expire_stale_reservations() == 0

    def test_sweep_with_future_clock(self):
        register_stock("prod-001", 10)
        reserve_stock("prod-001", 2, "cust-001", ttl_minutes=15)
        assert expire_stale_reservations(now=utc_now() + timedelta(hours=1)) == 1

    def test_nothing_to_expire(self):
        assert expire_stale_reservations() == 0
