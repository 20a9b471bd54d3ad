"""Order status changes: command, handler and entry point.

The handler re-reads the order inside the order's critical section, so two
concurrent requests cannot both pass the transition check on stale state.
Cancelling an order releases any stock it still holds in the same Unit of
Work.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from settlement import config
from settlement.domain import settlement
from settlement.inventory.stock import InventoryReservation, stock_key
from settlement.notifications.dispatch import notify
from settlement.order.order import Order, OrderStatus
from settlement.shared.errors import Result, execute
from settlement.shared.locks import order_locks, stock_locks

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class TransitionOrderStatus:
    order_id = Identifier(required=True)
    new_status = String(required=True, max_length=50)
    actor_id = String(required=True, max_length=255)
    note = String(max_length=1000)


@settlement.command(part_of="Order")
class MarkPaymentFailed:
    """Record that the provider declined the payment backing an order."""

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor_id = String(default="system", max_length=255)


def _release_order_reservations(order: Order) -> int:
    repo = current_domain.repository_for(InventoryReservation)
    released = 0
    for reservation_id in order.reservation_id_list():
        try:
            reservation = repo.get(reservation_id)
        except ObjectNotFoundError:
            logger.warning("Order references missing reservation", order_id=str(order.id), reservation_id=reservation_id)
            continue
        if reservation.release("order_cancelled"):
            repo.add(reservation)
            released += 1
    return released


@settlement.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(TransitionOrderStatus)
    def transition_order_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        previous = order.transition_to(
            command.new_status,
            actor_id=command.actor_id,
            note=command.note,
            protection_days=config.buyer_protection_days(),
        )

        released = 0
        if order.order_status == OrderStatus.CANCELLED:
            released = _release_order_reservations(order)

        repo.add(order)
        logger.info(
            "Order status changed",
            order_id=str(order.id),
            previous_status=previous.value,
            new_status=order.status,
            actor_id=command.actor_id,
            released_reservations=released,
        )
        return {"previous_status": previous.value, "new_status": order.status}

    @handle(MarkPaymentFailed)
    def mark_payment_failed(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_payment_failed(command.reason, actor_id=command.actor_id)
        repo.add(order)
        return order.payment_status


def order_stock_keys(order_id) -> list[str]:
    """Stock keys an order's lines and reservations touch, for lock acquisition."""
    try:
        order = current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return []
    keys = [stock_key(item.product_id, item.variant_id) for item in order.items or []]
    repo = current_domain.repository_for(InventoryReservation)
    for reservation_id in order.reservation_id_list():
        found = repo._dao.query.filter(id=str(reservation_id)).all().items
        keys.extend(str(r.inventory_item_id) for r in found)
    return keys


def transition_order(order_id, new_status: OrderStatus | str, actor_id: str, note: str | None = None) -> Result:
    """Move an order along the transition table.

    The result value is ``{"previous_status", "new_status"}``.
    """
    if isinstance(new_status, OrderStatus):
        new_status = new_status.value

    with order_locks.hold(str(order_id)), stock_locks.hold(*order_stock_keys(order_id)):
        result = execute(
            TransitionOrderStatus,
            order_id=order_id,
            new_status=new_status,
            actor_id=actor_id,
            note=note,
        )

    if result.success:
        order = current_domain.repository_for(Order).get(order_id)
        notify(
            order.customer_id,
            f"Order {new_status}",
            f"Your order {order_id} is now {new_status}.",
            order_id=str(order_id),
            previous_status=result.value["previous_status"],
        )
    return result


def mark_payment_failed(order_id, reason: str, actor_id: str = "system") -> Result:
    with order_locks.hold(str(order_id)):
        return execute(MarkPaymentFailed, order_id=order_id, reason=reason, actor_id=actor_id)
