"""Reservation expiry: sweep that marks overdue holds as Expired.

Triggered periodically by an external scheduler (cron, K8s CronJob) via
the maintenance API endpoint or ``manage.py expire-reservations``.
Availability never waits for this sweep: overdue reservations already stop
counting the moment ``expires_at`` passes. The sweep only tidies status,
so running it twice, or concurrently, is harmless.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.inventory.stock import InventoryReservation, ReservationStatus
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import execute
from settlement.shared.locks import stock_locks
from settlement.shared.queries import fetch_all

logger = structlog.get_logger(__name__)


@settlement.command(part_of="InventoryReservation")
class ExpireReservation:
    reservation_id = Identifier(required=True)
    as_of = DateTime()


@settlement.command_handler(part_of=InventoryReservation)
class ExpireReservationHandler:
    @handle(ExpireReservation)
    def expire_reservation(self, command):
        repo = current_domain.repository_for(InventoryReservation)
        reservation = repo.get(command.reservation_id)
        if not reservation.expire(command.as_of):
            return False
        repo.add(reservation)
        return True


def expire_stale_reservations(now: datetime | None = None) -> int:
    """Expire every Active reservation whose ``expires_at`` is at or before ``now``."""
    now = as_utc(now) or utc_now()
    overdue = [
        r for r in fetch_all(InventoryReservation, status=ReservationStatus.ACTIVE.value) if r.is_overdue(now)
    ]
    if not overdue:
        logger.info("No stale reservations found", as_of=now.isoformat())
        return 0

    expired_count = 0
    for reservation in overdue:
        with stock_locks.hold(str(reservation.inventory_item_id)):
            result = execute(ExpireReservation, reservation_id=str(reservation.id), as_of=now)
        if result.success and result.value:
            expired_count += 1
            logger.info(
                "Expired stale reservation",
                reservation_id=str(reservation.id),
                inventory_item_id=str(reservation.inventory_item_id),
                expired_at=str(reservation.expires_at),
            )
        elif not result.success:
            logger.warning(
                "Failed to expire stale reservation",
                reservation_id=str(reservation.id),
                error=result.message,
            )

    logger.info("Stale reservation cleanup complete", expired_count=expired_count)
    return expired_count
