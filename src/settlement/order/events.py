"""Order domain events: immutable facts about order state changes."""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from settlement.domain import settlement


@settlement.event(part_of="Order")
class OrderPlaced:
    """An order was created at checkout in the pending state."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    item_count = Integer(required=True)
    subtotal = Float(required=True)
    discount_amount = Float(required=True)
    total = Float(required=True)
    payment_method = String(max_length=50)
    placed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderStatusChanged:
    __version__ = "v1"

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    previous_status = String(required=True, max_length=50)
    new_status = String(required=True, max_length=50)
    actor_id = String(required=True, max_length=255)
    note = String(max_length=1000)
    changed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentCaptured:
    __version__ = "v1"

    order_id = Identifier(required=True)
    capture_id = String(required=True, max_length=255)
    amount = Float(required=True)
    captured_total = Float(required=True)
    final_capture = Boolean(default=True)
    provider = String(max_length=50)
    captured_at = DateTime(required=True)


@settlement.event(part_of="Order")
class PaymentMarkedFailed:
    __version__ = "v1"

    order_id = Identifier(required=True)
    reason = String(max_length=500)
    failed_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderFullyRefunded:
    __version__ = "v1"

    order_id = Identifier(required=True)
    refunded_total = Float(required=True)
    refunded_at = DateTime(required=True)
