"""Availability arithmetic shared by every stock-affecting handler.

Reserved quantity is always re-derived from the reservation records and the
current time; nothing caches it. Callers that act on the number must hold
the stock key's lock (``stock_locks``) for the whole command.
"""

from collections.abc import Collection, Sequence
from datetime import datetime

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from settlement.inventory.stock import (
    InventoryItem,
    InventoryReservation,
    ReservationStatus,
    stock_key,
)
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.queries import fetch_all


def live_reservations(inventory_item_id: str, now: datetime | None = None) -> list[InventoryReservation]:
    now = as_utc(now) or utc_now()
    active = fetch_all(
        InventoryReservation,
        inventory_item_id=str(inventory_item_id),
        status=ReservationStatus.ACTIVE.value,
    )
    return [r for r in active if r.is_live(now)]


def reserved_quantity(
    inventory_item_id: str,
    now: datetime | None = None,
    exclude: Collection[str] = (),
) -> int:
    """Units held by live reservations, ignoring the reservation ids in ``exclude``."""
    excluded = {str(r) for r in exclude}
    return sum(r.quantity for r in live_reservations(inventory_item_id, now) if str(r.id) not in excluded)


def get_available_stock(product_id, variant_id=None, now: datetime | None = None) -> int:
    """Units that can still be reserved right now. Zero for unknown products."""
    key = stock_key(product_id, variant_id)
    try:
        item = current_domain.repository_for(InventoryItem).get(key)
    except ObjectNotFoundError:
        return 0
    return item.available(reserved_quantity(key, now))


def commit_stock(
    item: InventoryItem,
    reservations: Sequence[InventoryReservation] = (),
    extra_quantity: int = 0,
    order_id=None,
    reference: str | None = None,
) -> int:
    """Take units off ``item``'s shelf in the current Unit of Work.

    Each reservation is consumed and its units committed, together with
    ``extra_quantity`` units that no reservation held. The item is read once
    and saved once, so a single stock record never sees two stale writes.
    Every other live hold must stay covered afterwards. Returns the number of
    units committed.
    """
    consumed = [r for r in reservations if r.consume(order_id)]
    quantity = sum(r.quantity for r in consumed) + extra_quantity
    if quantity <= 0:
        return 0

    others = reserved_quantity(item.id, exclude=[r.id for r in reservations])
    item.commit_sale(quantity, others, reference=reference or (str(consumed[0].id) if consumed else None))

    current_domain.repository_for(InventoryItem).add(item)
    reservation_repo = current_domain.repository_for(InventoryReservation)
    for reservation in consumed:
        reservation_repo.add(reservation)
    return quantity


def consume_reservation_stock(reservation: InventoryReservation, order_id=None) -> bool:
    """Consume ``reservation`` and take its units off the shelf in the current Unit of Work.

    Returns False when the reservation had already been consumed, in which
    case stock is left alone.
    """
    item = current_domain.repository_for(InventoryItem).get(reservation.inventory_item_id)
    return commit_stock(item, [reservation], order_id=order_id, reference=str(reservation.id)) > 0
