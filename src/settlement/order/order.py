"""Order aggregate (CQRS): the settled record everything else hangs off.

An order is created in PENDING at checkout and then only ever moves
through the transition table below. It is never deleted.

State Machine:
    PENDING → PAID → CONFIRMED → PROCESSING → FULFILLED → SHIPPED → DELIVERED
    every non-terminal state except DELIVERED → CANCELLED
    PAID, DELIVERED → REFUNDED
    CANCELLED and REFUNDED are terminal.

Every successful transition stamps a status-specific timestamp and appends
an ``OrderHistoryEntry``; the history is append-only and also records
captures and refunds for audit.
"""

import json
from datetime import datetime, timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from settlement.domain import settlement
from settlement.order.events import (
    OrderFullyRefunded,
    OrderPlaced,
    OrderStatusChanged,
    PaymentCaptured,
    PaymentMarkedFailed,
)
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import ErrorKind, LifecycleError
from settlement.shared.money import MONEY_TOLERANCE, round_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    FULFILLED = "fulfilled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class HistoryEventType(Enum):
    CREATED = "created"
    STATUS_CHANGE = "status_change"
    PAYMENT_CAPTURE = "payment_capture"
    PAYMENT_FAILED = "payment_failed"
    REFUND = "refund"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.FULFILLED, OrderStatus.CANCELLED},
    OrderStatus.FULFILLED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

_STATUS_TIMESTAMP_FIELD = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PROCESSING: "processing_at",
    OrderStatus.FULFILLED: "fulfilled_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}

# The forward path, used to show tracking progress.
_PROGRESSION = [
    OrderStatus.PENDING,
    OrderStatus.PAID,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.FULFILLED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def get_valid_next_statuses(status: OrderStatus | str) -> set[OrderStatus]:
    return set(_VALID_TRANSITIONS[OrderStatus(status)])


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in _VALID_TRANSITIONS[OrderStatus(current)]


def is_terminal_status(status: OrderStatus | str) -> bool:
    return not _VALID_TRANSITIONS[OrderStatus(status)]


def get_completed_statuses(status: OrderStatus | str) -> list[OrderStatus]:
    """Steps of the forward path already reached. Empty for cancelled or refunded orders."""
    status = OrderStatus(status)
    if status not in _PROGRESSION:
        return []
    return _PROGRESSION[: _PROGRESSION.index(status) + 1]


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@settlement.value_object(part_of="Order")
class OrderPricing:
    """Amounts locked at checkout: total = subtotal - discount + shipping + tax."""

    subtotal = Float(default=0.0, min_value=0.0)
    discount_amount = Float(default=0.0, min_value=0.0)
    shipping_amount = Float(default=0.0, min_value=0.0)
    tax_amount = Float(default=0.0, min_value=0.0)
    total = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="USD")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@settlement.entity(part_of="Order")
class OrderItem:
    """A line item, priced at the moment of ordering.

    ``committed_quantity`` counts units taken off the shelf when payment
    completed; ``restored_quantity`` counts units put back by refunds and
    never exceeds it.
    """

    product_id = Identifier(required=True)
    variant_id = Identifier()
    vendor_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    reservation_id = Identifier()
    committed_quantity = Integer(default=0, min_value=0)
    restored_quantity = Integer(default=0, min_value=0)

    @property
    def unrestored_quantity(self) -> int:
        return max(0, (self.committed_quantity or 0) - (self.restored_quantity or 0))


@settlement.entity(part_of="Order")
class OrderHistoryEntry:
    """One audit record. Entries are only ever appended."""

    event_type = String(required=True, choices=HistoryEventType)
    previous_status = String(max_length=50)
    new_status = String(max_length=50)
    actor_id = String(required=True, max_length=255)
    description = String(max_length=1000)
    details = Text()  # JSON object
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@settlement.aggregate
class Order:
    customer_id = Identifier(required=True)
    items = HasMany(OrderItem)
    pricing = ValueObject(OrderPricing, required=True)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_method = String(max_length=50, default="manual")
    payment_reference = String(max_length=255)
    capture_id = String(max_length=255)
    captured_amount = Float(default=0.0)
    reservation_ids = Text()  # JSON list of InventoryReservation ids
    buyer_protection_enabled = Boolean(default=False)
    protection_expires_at = DateTime()
    history = HasMany(OrderHistoryEntry)
    created_at = DateTime()
    updated_at = DateTime()
    paid_at = DateTime()
    confirmed_at = DateTime()
    processing_at = DateTime()
    fulfilled_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def totals_must_balance(self):
        if self.pricing is None:
            return
        p = self.pricing
        expected = p.subtotal - p.discount_amount + p.shipping_amount + p.tax_amount
        if abs(expected - p.total) > MONEY_TOLERANCE:
            raise ValidationError(
                {"pricing": [f"Total {p.total} does not equal subtotal - discount + shipping + tax ({expected:.2f})"]}
            )
        if p.total < 0:
            raise ValidationError({"pricing": ["Order total cannot be negative"]})

    @invariant.post
    def captured_amount_within_total(self):
        if self.pricing is not None and (self.captured_amount or 0.0) - self.pricing.total > MONEY_TOLERANCE:
            raise ValidationError({"captured_amount": ["Captured amount cannot exceed the order total"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        customer_id: str,
        items_data: list[dict],
        pricing: OrderPricing,
        payment_method: str = "manual",
        payment_reference: str | None = None,
        reservation_ids: list[str] | None = None,
        buyer_protection: bool = False,
    ):
        if not items_data:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "An order needs at least one item", "items")

        now = utc_now()
        order = cls(
            customer_id=customer_id,
            pricing=pricing,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=(payment_method or "manual").lower(),
            payment_reference=payment_reference,
            captured_amount=0.0,
            reservation_ids=json.dumps(list(reservation_ids or [])),
            buyer_protection_enabled=buyer_protection,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))
        order._record(HistoryEventType.CREATED, actor_id=str(customer_id), new_status=OrderStatus.PENDING, now=now)
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                customer_id=str(customer_id),
                item_count=len(items_data),
                subtotal=pricing.subtotal,
                discount_amount=pricing.discount_amount,
                total=pricing.total,
                payment_method=order.payment_method,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def total(self) -> float:
        return self.pricing.total

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def reservation_id_list(self) -> list[str]:
        return json.loads(self.reservation_ids) if self.reservation_ids else []

    def _record(
        self,
        event_type: HistoryEventType,
        actor_id: str,
        previous_status: OrderStatus | None = None,
        new_status: OrderStatus | None = None,
        description: str | None = None,
        details: dict | None = None,
        now: datetime | None = None,
    ) -> None:
        self.add_history(
            OrderHistoryEntry(
                event_type=event_type.value,
                previous_status=previous_status.value if previous_status else None,
                new_status=new_status.value if new_status else None,
                actor_id=str(actor_id),
                description=description,
                details=json.dumps(details) if details else None,
                occurred_at=now or utc_now(),
            )
        )

    def _assert_can_transition(self, target: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target not in _VALID_TRANSITIONS[current]:
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot transition from {current.value} to {target.value}",
                "status",
                current=current.value,
                requested=target.value,
            )

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    def transition_to(
        self,
        target: OrderStatus | str,
        actor_id: str,
        note: str | None = None,
        protection_days: int = 30,
    ) -> OrderStatus:
        """Move to ``target`` if the table allows it. Returns the previous status."""
        try:
            target = OrderStatus(target)
        except ValueError as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Unknown order status: {target}", "status") from exc
        self._assert_can_transition(target)

        now = utc_now()
        previous = OrderStatus(self.status)
        with atomic_change(self):
            self.status = target.value
            setattr(self, _STATUS_TIMESTAMP_FIELD[target], now)
            self.updated_at = now
            if target == OrderStatus.DELIVERED and self.buyer_protection_enabled:
                self.protection_expires_at = now + timedelta(days=protection_days)

        self._record(
            HistoryEventType.STATUS_CHANGE,
            actor_id=actor_id,
            previous_status=previous,
            new_status=target,
            description=note,
            now=now,
        )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                previous_status=previous.value,
                new_status=target.value,
                actor_id=str(actor_id),
                note=note,
                changed_at=now,
            )
        )
        return previous

    # -------------------------------------------------------------------
    # Payment capture
    # -------------------------------------------------------------------
    def validate_capture(self, amount: float | None) -> float:
        """Check a capture request and return the amount to capture.

        ``None`` means the rest of the order total.
        """
        payment_status = PaymentStatus(self.payment_status)
        if payment_status == PaymentStatus.COMPLETED:
            raise LifecycleError(ErrorKind.PAYMENT_ALREADY_CAPTURED, "Payment already captured")
        if payment_status == PaymentStatus.FAILED:
            raise LifecycleError(ErrorKind.PAYMENT_FAILED, "Payment failed, cannot capture")
        if is_terminal_status(self.status):
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot capture payment for a {self.status} order",
                "status",
                current=self.status,
            )

        remaining = round_money(self.total - (self.captured_amount or 0.0))
        if amount is None:
            amount = remaining
        if amount <= 0:
            raise LifecycleError(ErrorKind.AMOUNT_MUST_BE_POSITIVE, "Capture amount must be greater than zero", "amount")
        if amount - remaining > MONEY_TOLERANCE:
            raise LifecycleError(
                ErrorKind.AMOUNT_EXCEEDS_ORDER_TOTAL,
                f"Capture amount ({amount}) exceeds order total ({self.total})",
                "amount",
                amount=amount,
                order_total=self.total,
                already_captured=self.captured_amount or 0.0,
            )
        return amount

    def record_capture(
        self,
        amount: float,
        capture_id: str,
        provider: str,
        final_capture: bool,
        actor_id: str,
    ) -> bool:
        """Book a successful capture. Returns True when payment is now complete.

        Payment completes on a final capture or once the captured total
        reaches the order total; a pending order then moves to paid.
        """
        now = utc_now()
        captured = round_money((self.captured_amount or 0.0) + amount)
        completes = final_capture or self.total - captured <= MONEY_TOLERANCE

        with atomic_change(self):
            self.captured_amount = captured
            self.capture_id = capture_id
            self.updated_at = now
            if completes:
                self.payment_status = PaymentStatus.COMPLETED.value

        self._record(
            HistoryEventType.PAYMENT_CAPTURE,
            actor_id=actor_id,
            description=f"Captured {amount:.2f} via {provider}",
            details={
                "capture_id": capture_id,
                "captured_amount": amount,
                "final_capture": final_capture,
                "provider": provider,
            },
            now=now,
        )
        self.raise_(
            PaymentCaptured(
                order_id=str(self.id),
                capture_id=capture_id,
                amount=amount,
                captured_total=captured,
                final_capture=final_capture,
                provider=provider,
                captured_at=now,
            )
        )

        if completes and OrderStatus(self.status) == OrderStatus.PENDING:
            self.transition_to(OrderStatus.PAID, actor_id=actor_id, note="Payment captured")
        return completes

    def mark_payment_failed(self, reason: str, actor_id: str) -> None:
        if PaymentStatus(self.payment_status) == PaymentStatus.COMPLETED:
            raise LifecycleError(ErrorKind.PAYMENT_ALREADY_CAPTURED, "Payment already captured")

        now = utc_now()
        self.payment_status = PaymentStatus.FAILED.value
        self.updated_at = now
        self._record(HistoryEventType.PAYMENT_FAILED, actor_id=actor_id, description=reason, now=now)
        self.raise_(PaymentMarkedFailed(order_id=str(self.id), reason=reason, failed_at=now))

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def refundable_amount(self, completed_refunds: float) -> float:
        return max(0.0, round_money(self.total - completed_refunds))

    def record_refund(self, refund_id: str, amount: float, completed_total: float, actor_id: str) -> bool:
        """Note a completed refund. Returns True when the order is now fully refunded.

        A fully refunded order moves to REFUNDED when the transition table
        allows it from the current status; otherwise only ``refunded_at``
        is stamped.
        """
        now = utc_now()
        self._record(
            HistoryEventType.REFUND,
            actor_id=actor_id,
            description=f"Refunded {amount:.2f}",
            details={"refund_id": str(refund_id), "amount": amount, "refunded_total": completed_total},
            now=now,
        )
        self.updated_at = now

        if self.total - completed_total > MONEY_TOLERANCE:
            return False

        if can_transition(self.status, OrderStatus.REFUNDED):
            self.transition_to(OrderStatus.REFUNDED, actor_id=actor_id, note="Order fully refunded")
        else:
            self.refunded_at = now
        self.raise_(OrderFullyRefunded(order_id=str(self.id), refunded_total=completed_total, refunded_at=now))
        return True

    # -------------------------------------------------------------------
    # Buyer protection
    # -------------------------------------------------------------------
    def is_buyer_protected(self, now: datetime | None = None) -> bool:
        """Protection covers an opted-in order from placement until the window
        that opens on delivery closes. Cancelled and refunded orders are never
        protected."""
        if not self.buyer_protection_enabled:
            return False
        if self.status in (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value):
            return False
        if self.protection_expires_at is None:
            return True
        now = as_utc(now) or utc_now()
        return as_utc(self.protection_expires_at) > now
