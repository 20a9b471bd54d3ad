"""Domain events for stock and reservations."""

from protean.fields import DateTime, Identifier, Integer, String

from settlement.domain import settlement


@settlement.event(part_of="InventoryItem")
class StockRegistered:
    """A stock record was created for a product or variant."""

    __version__ = "v1"

    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)
    registered_at = DateTime(required=True)


@settlement.event(part_of="InventoryItem")
class StockAdjusted:
    """On-hand stock changed: a restock, a refund restore or a committed sale."""

    __version__ = "v1"

    inventory_item_id = Identifier(required=True)
    quantity_change = Integer(required=True)
    previous_on_hand = Integer(required=True)
    new_on_hand = Integer(required=True)
    reason = String(required=True, max_length=50)
    reference = String(max_length=255)
    adjusted_at = DateTime(required=True)


@settlement.event(part_of="InventoryItem")
class LowStockDetected:
    __version__ = "v1"

    inventory_item_id = Identifier(required=True)
    on_hand = Integer(required=True)
    threshold = Integer(required=True)
    detected_at = DateTime(required=True)


@settlement.event(part_of="InventoryReservation")
class StockReserved:
    __version__ = "v1"

    reservation_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    requester_id = String(required=True, max_length=255)
    order_id = Identifier()
    quantity = Integer(required=True)
    available_before = Integer(required=True)
    reserved_at = DateTime(required=True)
    expires_at = DateTime(required=True)


@settlement.event(part_of="InventoryReservation")
class ReservationReleased:
    __version__ = "v1"

    reservation_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String(required=True, max_length=50)
    released_at = DateTime(required=True)


@settlement.event(part_of="InventoryReservation")
class ReservationConsumed:
    __version__ = "v1"

    reservation_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    order_id = Identifier()
    quantity = Integer(required=True)
    consumed_at = DateTime(required=True)


@settlement.event(part_of="InventoryReservation")
class ReservationExpired:
    __version__ = "v1"

    reservation_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    quantity = Integer(required=True)
    expired_at = DateTime(required=True)


@settlement.event(part_of="InventoryReservation")
class ReservationExtended:
    __version__ = "v1"

    reservation_id = Identifier(required=True)
    previous_expires_at = DateTime(required=True)
    expires_at = DateTime(required=True)
