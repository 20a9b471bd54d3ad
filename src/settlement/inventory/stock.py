"""Inventory aggregates (CQRS): stock records and the reservations held against them.

Stock Model:
    on_hand:   units physically available to sell
    sold:      units committed by consumed reservations
    reserved:  sum of live reservations (Active and not yet past expires_at)
    available: on_hand - reserved, never negative

A reservation is its own aggregate so it can be released or consumed by
id alone. Anything that reads ``reserved`` to make a decision runs inside
the stock key's critical section (see ``settlement.shared.locks``).

Reservation lifecycle:
    ACTIVE → CONSUMED  (order paid, stock decremented once)
    ACTIVE → RELEASED  (cancelled checkout, refund, manual release)
    ACTIVE → EXPIRED   (sweep, once expires_at has passed)
"""

from datetime import datetime, timedelta
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String

from settlement.domain import settlement
from settlement.inventory.events import (
    LowStockDetected,
    ReservationConsumed,
    ReservationExpired,
    ReservationExtended,
    ReservationReleased,
    StockAdjusted,
    StockRegistered,
    StockReserved,
)
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import ErrorKind, LifecycleError


class ReservationStatus(Enum):
    ACTIVE = "Active"
    RELEASED = "Released"
    CONSUMED = "Consumed"
    EXPIRED = "Expired"


class AdjustmentReason(Enum):
    RESTOCK = "Restock"
    REFUND_RESTORE = "Refund_Restore"
    SALE = "Sale"


def stock_key(product_id, variant_id=None) -> str:
    """Identity of the stock record for a product, or for one of its variants."""
    if variant_id:
        return f"{product_id}:{variant_id}"
    return str(product_id)


def _positive_quantity(quantity) -> None:
    if quantity is None or quantity <= 0:
        raise LifecycleError(ErrorKind.INVALID_INPUT, "Quantity must be positive", "quantity")


# ---------------------------------------------------------------------------
# Stock record
# ---------------------------------------------------------------------------
@settlement.aggregate
class InventoryItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    on_hand = Integer(default=0, min_value=0)
    sold = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(default=5, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(cls, product_id, quantity: int, variant_id=None, low_stock_threshold: int = 5):
        if quantity is None or quantity < 0:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Initial quantity cannot be negative", "quantity")

        now = utc_now()
        item = cls(
            id=stock_key(product_id, variant_id),
            product_id=str(product_id),
            variant_id=str(variant_id) if variant_id else None,
            on_hand=quantity,
            sold=0,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )
        item.raise_(
            StockRegistered(
                inventory_item_id=str(item.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                quantity=quantity,
                registered_at=now,
            )
        )
        return item

    def available(self, reserved: int) -> int:
        return max(0, self.on_hand - reserved)

    def _adjust(self, change: int, reason: AdjustmentReason, reference: str | None = None) -> None:
        now = utc_now()
        previous = self.on_hand
        self.on_hand = previous + change
        self.updated_at = now
        self.raise_(
            StockAdjusted(
                inventory_item_id=str(self.id),
                quantity_change=change,
                previous_on_hand=previous,
                new_on_hand=self.on_hand,
                reason=reason.value,
                reference=reference,
                adjusted_at=now,
            )
        )

    def restock(self, quantity: int, reference: str | None = None) -> None:
        _positive_quantity(quantity)
        self._adjust(quantity, AdjustmentReason.RESTOCK, reference)

    def restore(self, quantity: int, reference: str | None = None) -> None:
        """Put refunded units back on the shelf."""
        _positive_quantity(quantity)
        self._adjust(quantity, AdjustmentReason.REFUND_RESTORE, reference)

    def commit_sale(self, quantity: int, reserved_by_others: int, reference: str | None = None) -> None:
        """Decrement on-hand for a consumed reservation.

        ``reserved_by_others`` is the live reservation total excluding the one
        being consumed; those units must stay covered after the decrement.
        """
        _positive_quantity(quantity)
        if self.on_hand - reserved_by_others < quantity:
            raise LifecycleError(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Insufficient stock to commit reservation: {self.available(reserved_by_others)} available, "
                f"{quantity} requested",
                "quantity",
                available=self.available(reserved_by_others),
                requested=quantity,
            )
        self._adjust(-quantity, AdjustmentReason.SALE, reference)
        self.sold = (self.sold or 0) + quantity

        if self.on_hand <= self.low_stock_threshold:
            self.raise_(
                LowStockDetected(
                    inventory_item_id=str(self.id),
                    on_hand=self.on_hand,
                    threshold=self.low_stock_threshold,
                    detected_at=utc_now(),
                )
            )

    def reserve(
        self,
        quantity: int,
        requester_id: str,
        reserved: int,
        ttl_minutes: int,
        order_id=None,
        now: datetime | None = None,
    ) -> "InventoryReservation":
        """Create a reservation if ``quantity`` fits in what is not already held."""
        _positive_quantity(quantity)
        if not requester_id:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "A requester is required", "requester_id")
        if ttl_minutes is None or ttl_minutes <= 0:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Reservation TTL must be positive", "ttl_minutes")

        available = self.available(reserved)
        if available < quantity:
            raise LifecycleError(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Insufficient stock: {available} available, {quantity} requested",
                "quantity",
                available=available,
                requested=quantity,
            )

        now = as_utc(now) or utc_now()
        reservation = InventoryReservation(
            inventory_item_id=str(self.id),
            product_id=str(self.product_id),
            variant_id=self.variant_id,
            quantity=quantity,
            requester_id=str(requester_id),
            order_id=str(order_id) if order_id else None,
            status=ReservationStatus.ACTIVE.value,
            reserved_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
        )
        reservation.raise_(
            StockReserved(
                reservation_id=str(reservation.id),
                inventory_item_id=str(self.id),
                requester_id=str(requester_id),
                order_id=reservation.order_id,
                quantity=quantity,
                available_before=available,
                reserved_at=now,
                expires_at=reservation.expires_at,
            )
        )
        return reservation


# ---------------------------------------------------------------------------
# Reservation
# ---------------------------------------------------------------------------
@settlement.aggregate
class InventoryReservation:
    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    requester_id = String(required=True, max_length=255)
    order_id = Identifier()
    status = String(choices=ReservationStatus, default=ReservationStatus.ACTIVE.value)
    reserved_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    released_at = DateTime()
    consumed_at = DateTime()
    release_reason = String(max_length=50)

    def is_live(self, now: datetime | None = None) -> bool:
        """Counts against availability: Active and not yet expired, whatever the sweep has done."""
        now = as_utc(now) or utc_now()
        return ReservationStatus(self.status) == ReservationStatus.ACTIVE and as_utc(self.expires_at) > now

    def is_overdue(self, now: datetime | None = None) -> bool:
        now = as_utc(now) or utc_now()
        return ReservationStatus(self.status) == ReservationStatus.ACTIVE and as_utc(self.expires_at) <= now

    def _assert_not_claimed_elsewhere(self, order_id) -> None:
        if self.order_id and order_id and str(self.order_id) != str(order_id):
            raise LifecycleError(
                ErrorKind.INVALID_INPUT,
                f"Reservation {self.id} already backs order {self.order_id}",
                "reservation_ids",
                reservation_id=str(self.id),
                order_id=str(self.order_id),
            )

    def attach_to_order(self, order_id) -> None:
        self._assert_not_claimed_elsewhere(order_id)
        self.order_id = str(order_id)

    def release(self, reason: str = "released") -> bool:
        """Release the hold. Returns False when there was nothing to release."""
        if ReservationStatus(self.status) != ReservationStatus.ACTIVE:
            return False

        now = utc_now()
        self.status = ReservationStatus.RELEASED.value
        self.released_at = now
        self.release_reason = reason
        self.raise_(
            ReservationReleased(
                reservation_id=str(self.id),
                inventory_item_id=str(self.inventory_item_id),
                quantity=self.quantity,
                reason=reason,
                released_at=now,
            )
        )
        return True

    def consume(self, order_id=None) -> bool:
        """Mark the hold as sold. Returns False if it was already consumed."""
        self._assert_not_claimed_elsewhere(order_id)
        status = ReservationStatus(self.status)
        if status == ReservationStatus.CONSUMED:
            return False
        if status != ReservationStatus.ACTIVE:
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot consume reservation in {status.value} state",
                "status",
                current=status.value,
                requested=ReservationStatus.CONSUMED.value,
            )

        now = utc_now()
        self.status = ReservationStatus.CONSUMED.value
        self.consumed_at = now
        if order_id:
            self.order_id = str(order_id)
        self.raise_(
            ReservationConsumed(
                reservation_id=str(self.id),
                inventory_item_id=str(self.inventory_item_id),
                order_id=self.order_id,
                quantity=self.quantity,
                consumed_at=now,
            )
        )
        return True

    def expire(self, now: datetime | None = None) -> bool:
        if not self.is_overdue(now):
            return False

        expired_at = as_utc(now) or utc_now()
        self.status = ReservationStatus.EXPIRED.value
        self.released_at = expired_at
        self.release_reason = "timeout"
        self.raise_(
            ReservationExpired(
                reservation_id=str(self.id),
                inventory_item_id=str(self.inventory_item_id),
                quantity=self.quantity,
                expired_at=expired_at,
            )
        )
        return True

    def extend(self, minutes: int, now: datetime | None = None) -> None:
        if minutes is None or minutes <= 0:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Extension must be positive", "minutes")
        if not self.is_live(now):
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                f"Only live reservations can be extended (status {self.status})",
                "status",
            )

        previous = as_utc(self.expires_at)
        self.expires_at = previous + timedelta(minutes=minutes)
        self.raise_(
            ReservationExtended(
                reservation_id=str(self.id),
                previous_expires_at=previous,
                expires_at=self.expires_at,
            )
        )
