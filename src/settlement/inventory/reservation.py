"""Stock reservation: commands, handler and entry points.

Every entry point here takes the stock key's lock before processing so the
read of live reservations and the write that depends on it happen as one
critical section, Unit of Work commit included.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from settlement import config
from settlement.domain import settlement
from settlement.inventory.availability import consume_reservation_stock, reserved_quantity
from settlement.inventory.stock import InventoryItem, InventoryReservation, stock_key
from settlement.shared.errors import Result, execute
from settlement.shared.locks import stock_locks

logger = structlog.get_logger(__name__)


@settlement.command(part_of="InventoryReservation")
class ReserveStock:
    """Hold stock for a checkout attempt."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)
    requester_id = String(required=True, max_length=255)
    order_id = Identifier()
    ttl_minutes = Integer()
    as_of = DateTime()


@settlement.command(part_of="InventoryReservation")
class ReleaseReservation:
    reservation_id = Identifier(required=True)
    reason = String(default="released", max_length=50)


@settlement.command(part_of="InventoryReservation")
class ConsumeReservation:
    """Convert a hold into a sale once the order it backs is paid."""

    reservation_id = Identifier(required=True)
    order_id = Identifier()


@settlement.command(part_of="InventoryReservation")
class ExtendReservation:
    reservation_id = Identifier(required=True)
    minutes = Integer(default=15)


@settlement.command_handler(part_of=InventoryReservation)
class ReservationHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        item = current_domain.repository_for(InventoryItem).get(stock_key(command.product_id, command.variant_id))
        reserved = reserved_quantity(item.id, now=command.as_of)

        reservation = item.reserve(
            quantity=command.quantity,
            requester_id=command.requester_id,
            reserved=reserved,
            ttl_minutes=command.ttl_minutes or config.reservation_ttl_minutes(),
            order_id=command.order_id,
            now=command.as_of,
        )
        current_domain.repository_for(InventoryReservation).add(reservation)
        logger.info(
            "Stock reserved",
            reservation_id=str(reservation.id),
            inventory_item_id=str(item.id),
            quantity=command.quantity,
            available_after=item.available(reserved + command.quantity),
        )
        return str(reservation.id)

    @handle(ReleaseReservation)
    def release_reservation(self, command):
        repo = current_domain.repository_for(InventoryReservation)
        reservation = repo.get(command.reservation_id)
        if reservation.release(command.reason):
            repo.add(reservation)
            logger.info("Reservation released", reservation_id=str(reservation.id), reason=command.reason)
            return True
        return False

    @handle(ConsumeReservation)
    def consume_reservation(self, command):
        reservation = current_domain.repository_for(InventoryReservation).get(command.reservation_id)
        return consume_reservation_stock(reservation, command.order_id)

    @handle(ExtendReservation)
    def extend_reservation(self, command):
        repo = current_domain.repository_for(InventoryReservation)
        reservation = repo.get(command.reservation_id)
        reservation.extend(command.minutes)
        repo.add(reservation)
        return reservation.expires_at


def _key_for_reservation(reservation_id) -> str | None:
    try:
        return str(current_domain.repository_for(InventoryReservation).get(reservation_id).inventory_item_id)
    except ObjectNotFoundError:
        return None


def reserve_stock(
    product_id,
    quantity: int,
    requester_id: str,
    variant_id=None,
    ttl_minutes: int | None = None,
    order_id=None,
    now: datetime | None = None,
) -> Result:
    """Reserve ``quantity`` units. The result value is the reservation id."""
    with stock_locks.hold(stock_key(product_id, variant_id)):
        return execute(
            ReserveStock,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            requester_id=requester_id,
            order_id=order_id,
            ttl_minutes=ttl_minutes,
            as_of=now,
        )


def release_reservation(reservation_id, reason: str = "released") -> Result:
    """Release a hold. Releasing one that is no longer active is a successful no-op."""
    with stock_locks.hold(_key_for_reservation(reservation_id)):
        return execute(ReleaseReservation, reservation_id=reservation_id, reason=reason)


def consume_reservation(reservation_id, order_id=None) -> Result:
    with stock_locks.hold(_key_for_reservation(reservation_id)):
        return execute(ConsumeReservation, reservation_id=reservation_id, order_id=order_id)


def extend_reservation(reservation_id, minutes: int = 15) -> Result:
    with stock_locks.hold(_key_for_reservation(reservation_id)):
        return execute(ExtendReservation, reservation_id=reservation_id, minutes=minutes)
