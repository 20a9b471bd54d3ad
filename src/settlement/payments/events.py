"""Refund domain events."""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from settlement.domain import settlement


@settlement.event(part_of="Refund")
class RefundRequested:
    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=500)
    provider = String(max_length=50)
    restore_stock = Boolean(default=True)
    requested_at = DateTime(required=True)


@settlement.event(part_of="Refund")
class RefundCompleted:
    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    provider_refund_id = String(max_length=255)
    processed_at = DateTime(required=True)


@settlement.event(part_of="Refund")
class RefundFailed:
    __version__ = "v1"

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=500)
    failed_at = DateTime(required=True)
