"""Read-side helpers for orders."""

from datetime import datetime

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from settlement.order.order import Order, get_completed_statuses, get_valid_next_statuses
from settlement.shared.errors import ErrorKind, Result


def find_order(order_id) -> Order | None:
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return None


def order_summary(order: Order) -> dict:
    return {
        "order_id": str(order.id),
        "customer_id": str(order.customer_id),
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "subtotal": order.pricing.subtotal,
        "discount_amount": order.pricing.discount_amount,
        "shipping_amount": order.pricing.shipping_amount,
        "tax_amount": order.pricing.tax_amount,
        "total": order.pricing.total,
        "captured_amount": order.captured_amount or 0.0,
        "valid_next_statuses": sorted(s.value for s in get_valid_next_statuses(order.status)),
        "completed_statuses": [s.value for s in get_completed_statuses(order.status)],
        "buyer_protected": order.is_buyer_protected(),
        "history": [
            {
                "event_type": entry.event_type,
                "previous_status": entry.previous_status,
                "new_status": entry.new_status,
                "actor_id": entry.actor_id,
                "description": entry.description,
                "occurred_at": entry.occurred_at.isoformat() if entry.occurred_at else None,
            }
            for entry in sorted(order.history or [], key=lambda e: e.occurred_at)
        ],
    }


def get_order(order_id) -> Result:
    order = find_order(order_id)
    if order is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"Order {order_id} not found")
    return Result.ok(order_summary(order))


def is_buyer_protected(order_id, now: datetime | None = None) -> bool:
    order = find_order(order_id)
    return order is not None and order.is_buyer_protected(now)
