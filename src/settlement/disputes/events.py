"""Dispute domain events."""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from settlement.domain import settlement


@settlement.event(part_of="Dispute")
class DisputeFiled:
    __version__ = "v1"

    dispute_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    dispute_type = String(required=True, max_length=50)
    filed_at = DateTime(required=True)


@settlement.event(part_of="Dispute")
class DisputeMessagePosted:
    __version__ = "v1"

    dispute_id = Identifier(required=True)
    sender_id = String(required=True, max_length=255)
    is_admin = Boolean(default=False)
    posted_at = DateTime(required=True)


@settlement.event(part_of="Dispute")
class DisputeStatusChanged:
    __version__ = "v1"

    dispute_id = Identifier(required=True)
    order_id = Identifier(required=True)
    previous_status = String(required=True, max_length=50)
    new_status = String(required=True, max_length=50)
    actor_id = String(required=True, max_length=255)
    automatic = Boolean(default=False)
    changed_at = DateTime(required=True)


@settlement.event(part_of="Dispute")
class DisputeResolved:
    __version__ = "v1"

    dispute_id = Identifier(required=True)
    order_id = Identifier(required=True)
    status = String(required=True, max_length=50)
    resolution = String(max_length=2000)
    resolved_by = String(required=True, max_length=255)
    refund_amount = Float()
    resolved_at = DateTime(required=True)
