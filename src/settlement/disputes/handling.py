"""Dispute commands, their handler, and the entry points the API calls.

Every mutation re-reads the dispute inside its critical section and checks
the actor's access before touching it. Resolving with a refund creates the
pending refund in the same Unit of Work as the status change, so either both
land or neither does.
"""

import json
from datetime import datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from settlement import config
from settlement.disputes.dispute import Actor, ActorRole, Dispute
from settlement.domain import settlement
from settlement.notifications.dispatch import ADMIN_RECIPIENT, notify
from settlement.order.order import Order
from settlement.payments.refunding import open_refund
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import ErrorKind, LifecycleError, Result, execute
from settlement.shared.locks import dispute_locks, order_locks
from settlement.shared.queries import fetch_all

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@settlement.command(part_of="Dispute")
class FileDispute:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    dispute_type = String(required=True, max_length=50)
    description = Text(required=True)
    order_item_ids = Text()  # JSON list
    as_of = DateTime()


@settlement.command(part_of="Dispute")
class PostDisputeMessage:
    dispute_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=20)
    message = Text()


@settlement.command(part_of="Dispute")
class EscalateDispute:
    dispute_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=20)


@settlement.command(part_of="Dispute")
class CloseDispute:
    dispute_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=20)
    resolution = String(max_length=2000)


@settlement.command(part_of="Dispute")
class ResolveDispute:
    dispute_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=20)
    status = String(required=True, max_length=50)
    resolution = String(max_length=2000)
    refund_amount = Float()


def active_dispute_for(order_id) -> Dispute | None:
    for dispute in fetch_all(Dispute, order_id=str(order_id)):
        if dispute.is_active:
            return dispute
    return None


@settlement.command_handler(part_of=Dispute)
class DisputeHandler:
    @handle(FileDispute)
    def file_dispute(self, command):
        try:
            order = current_domain.repository_for(Order).get(command.order_id)
        except ObjectNotFoundError:
            order = None
        if order is None or str(order.customer_id) != str(command.customer_id):
            raise LifecycleError(ErrorKind.NOT_FOUND, f"Order {command.order_id} not found")

        now = as_utc(command.as_of) or utc_now()
        if order.delivered_at is not None:
            window_ends = as_utc(order.delivered_at) + timedelta(days=config.dispute_window_days())
            if now > window_ends:
                raise LifecycleError(
                    ErrorKind.DISPUTE_WINDOW_EXPIRED,
                    f"Disputes must be filed within {config.dispute_window_days()} days of delivery",
                )

        existing = active_dispute_for(order.id)
        if existing is not None:
            raise LifecycleError(
                ErrorKind.DISPUTE_ALREADY_OPEN,
                "An active dispute already exists for this order",
                dispute_id=str(existing.id),
            )

        vendor_id = next((item.vendor_id for item in order.items or [] if item.vendor_id), None)
        if vendor_id is None:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Order has no vendor to dispute with", "order_id")

        dispute = Dispute.file(
            order_id=str(order.id),
            customer_id=str(order.customer_id),
            vendor_id=str(vendor_id),
            dispute_type=command.dispute_type,
            description=command.description,
            order_item_ids=json.loads(command.order_item_ids) if command.order_item_ids else [],
            now=now,
        )
        current_domain.repository_for(Dispute).add(dispute)
        logger.info("Dispute filed", dispute_id=str(dispute.id), order_id=str(order.id), type=dispute.dispute_type)
        return str(dispute.id)

    @handle(PostDisputeMessage)
    def post_message(self, command):
        repo = current_domain.repository_for(Dispute)
        dispute = repo.get(command.dispute_id)
        previous = dispute.status
        dispute.post_message(Actor.of(command.actor_id, command.actor_role), command.message)
        repo.add(dispute)
        return {"previous_status": previous, "status": dispute.status}

    @handle(EscalateDispute)
    def escalate(self, command):
        repo = current_domain.repository_for(Dispute)
        dispute = repo.get(command.dispute_id)
        actor = Actor.of(command.actor_id, command.actor_role)
        if actor.role not in (ActorRole.CUSTOMER, ActorRole.VENDOR):
            raise LifecycleError(ErrorKind.FORBIDDEN, "Only the customer or vendor can escalate a dispute")
        dispute.escalate(actor)
        repo.add(dispute)
        logger.info("Dispute escalated", dispute_id=str(dispute.id), actor_id=actor.actor_id)
        return {"status": dispute.status}

    @handle(CloseDispute)
    def close(self, command):
        repo = current_domain.repository_for(Dispute)
        dispute = repo.get(command.dispute_id)
        dispute.close(Actor.of(command.actor_id, command.actor_role), command.resolution)
        repo.add(dispute)
        logger.info("Dispute closed", dispute_id=str(dispute.id), actor_id=command.actor_id)
        return {"status": dispute.status, "resolution": dispute.resolution}

    @handle(ResolveDispute)
    def resolve(self, command):
        repo = current_domain.repository_for(Dispute)
        dispute = repo.get(command.dispute_id)
        actor = Actor.of(command.actor_id, command.actor_role)
        dispute.resolve(actor, command.status, command.resolution, command.refund_amount)

        refund_id = None
        if command.refund_amount is not None:
            order = current_domain.repository_for(Order).get(dispute.order_id)
            refund = open_refund(
                order,
                command.refund_amount,
                f"Dispute resolution: {dispute.resolution}",
                restore_stock=False,
            )
            refund_id = str(refund.id)

        repo.add(dispute)
        logger.info(
            "Dispute resolved",
            dispute_id=str(dispute.id),
            status=dispute.status,
            refund_id=refund_id,
        )
        return {"status": dispute.status, "resolution": dispute.resolution, "refund_id": refund_id}


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def dispute_summary(dispute: Dispute) -> dict:
    return {
        "dispute_id": str(dispute.id),
        "order_id": str(dispute.order_id),
        "customer_id": str(dispute.customer_id),
        "vendor_id": str(dispute.vendor_id),
        "type": dispute.dispute_type,
        "status": dispute.status,
        "description": dispute.description,
        "order_item_ids": json.loads(dispute.order_item_ids) if dispute.order_item_ids else [],
        "resolution": dispute.resolution,
        "resolved_by": dispute.resolved_by,
        "resolved_at": _iso(dispute.resolved_at),
        "escalated_at": _iso(dispute.escalated_at),
        "created_at": _iso(dispute.created_at),
        "messages": [
            {
                "sender_id": m.sender_id,
                "message": m.message,
                "is_admin": m.is_admin,
                "created_at": _iso(m.created_at),
            }
            for m in dispute.ordered_messages()
        ],
    }


def get_dispute(dispute_id, actor: Actor) -> Result:
    try:
        dispute = current_domain.repository_for(Dispute).get(dispute_id)
    except ObjectNotFoundError:
        return Result.fail(ErrorKind.NOT_FOUND, f"Dispute {dispute_id} not found")
    try:
        dispute.assert_access(actor)
    except LifecycleError as exc:
        return Result.from_error(exc)
    return Result.ok(dispute_summary(dispute))


def list_order_disputes(order_id) -> list[dict]:
    disputes = fetch_all(Dispute, order_id=str(order_id))
    return [dispute_summary(d) for d in sorted(disputes, key=lambda d: as_utc(d.created_at))]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def _find(dispute_id) -> Dispute | None:
    try:
        return current_domain.repository_for(Dispute).get(dispute_id)
    except ObjectNotFoundError:
        return None


def file_dispute(
    order_id,
    customer_id,
    dispute_type: str,
    description: str,
    order_item_ids=(),
    now: datetime | None = None,
) -> Result:
    """Open a dispute on a customer's order. The result value is the dispute id."""
    with order_locks.hold(str(order_id)):
        result = execute(
            FileDispute,
            order_id=order_id,
            customer_id=customer_id,
            dispute_type=dispute_type,
            description=description,
            order_item_ids=json.dumps([str(i) for i in order_item_ids]),
            as_of=now,
        )

    if result.success:
        dispute = _find(result.value)
        notify(
            dispute.vendor_id,
            "Dispute filed",
            f"A customer opened a dispute on order {order_id}. Please respond.",
            dispute_id=result.value,
            order_id=str(order_id),
        )
    return result


def send_dispute_message(dispute_id, actor: Actor, message: str) -> Result:
    with dispute_locks.hold(str(dispute_id)):
        result = execute(
            PostDisputeMessage,
            dispute_id=dispute_id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            message=message,
        )

    if result.success:
        dispute = _find(dispute_id)
        # Whoever did not write the message hears about it.
        if actor.role == ActorRole.CUSTOMER:
            recipient = dispute.vendor_id
        elif actor.role == ActorRole.VENDOR:
            recipient = dispute.customer_id
        else:
            recipient = None
        recipients = [recipient] if recipient else [dispute.customer_id, dispute.vendor_id]
        for recipient_id in recipients:
            notify(
                recipient_id,
                "New dispute message",
                f"There is a new message on dispute {dispute_id}.",
                dispute_id=str(dispute_id),
            )
    return result


def escalate_dispute(dispute_id, actor: Actor) -> Result:
    with dispute_locks.hold(str(dispute_id)):
        result = execute(EscalateDispute, dispute_id=dispute_id, actor_id=actor.actor_id, actor_role=actor.role.value)

    if result.success:
        notify(
            ADMIN_RECIPIENT,
            "Dispute escalated",
            f"Dispute {dispute_id} needs admin review.",
            dispute_id=str(dispute_id),
        )
    return result


def close_dispute(dispute_id, actor: Actor, resolution: str | None = None) -> Result:
    with dispute_locks.hold(str(dispute_id)):
        result = execute(
            CloseDispute,
            dispute_id=dispute_id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            resolution=resolution,
        )

    if result.success:
        dispute = _find(dispute_id)
        for recipient_id in (dispute.customer_id, dispute.vendor_id):
            notify(recipient_id, "Dispute closed", f"Dispute {dispute_id} has been closed.", dispute_id=str(dispute_id))
    return result


def resolve_dispute(
    dispute_id,
    actor: Actor,
    status: str,
    resolution: str,
    refund_amount: float | None = None,
) -> Result:
    """Admin decision on a dispute, optionally opening a refund on the order.

    The result value is ``{"status", "resolution", "refund_id"}``.
    """
    dispute = _find(dispute_id)
    if dispute is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"Dispute {dispute_id} not found")

    with dispute_locks.hold(str(dispute_id)), order_locks.hold(str(dispute.order_id)):
        result = execute(
            ResolveDispute,
            dispute_id=dispute_id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            status=status,
            resolution=resolution,
            refund_amount=refund_amount,
        )

    if result.success:
        body = f"Dispute {dispute_id} was {result.value['status']}: {result.value['resolution']}"
        for recipient_id in (dispute.customer_id, dispute.vendor_id):
            notify(
                recipient_id,
                "Dispute resolved",
                body,
                dispute_id=str(dispute_id),
                refund_id=result.value["refund_id"],
            )
    return result
