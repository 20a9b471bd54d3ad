"""Checkout: turns priced lines and held stock into a pending order."""

import json
from collections.abc import Sequence

import structlog
from protean import handle
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.inventory.stock import InventoryReservation, ReservationStatus, stock_key
from settlement.notifications.dispatch import notify
from settlement.order.order import Order, OrderPricing
from settlement.pricing.calculator import Discount, DiscountType, PricedLine, price_order
from settlement.shared.errors import ErrorKind, LifecycleError, Result, execute
from settlement.shared.locks import stock_locks

logger = structlog.get_logger(__name__)

_ITEM_FIELDS = ("product_id", "variant_id", "vendor_id", "quantity", "unit_price")


@settlement.command(part_of="Order")
class PlaceOrder:
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of line dicts
    discounts = Text()  # JSON list of discount dicts, applied in order
    shipping_amount = Float(default=0.0)
    tax_amount = Float(default=0.0)
    currency = String(max_length=3, default="USD")
    payment_method = String(max_length=50, default="manual")
    payment_reference = String(max_length=255)
    reservation_ids = Text()  # JSON list
    buyer_protection = Boolean(default=False)


def _parse_discounts(raw: str | None) -> list[Discount]:
    discounts = []
    for entry in json.loads(raw) if raw else []:
        try:
            kind = DiscountType(entry["kind"])
        except (KeyError, ValueError) as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Unknown discount: {entry}", "discounts") from exc
        discounts.append(
            Discount(
                kind=kind,
                value=float(entry["value"]),
                max_discount=entry.get("max_discount"),
                label=entry.get("label"),
            )
        )
    return discounts


def _match_reservations(lines: list[dict], reservation_ids: list[str]) -> list[InventoryReservation]:
    """Pair each reservation with the order line it holds stock for.

    A reservation must still be live, must not back another order, and must
    hold exactly one line's quantity of that line's product and variant.
    The matched reservation id is written onto the line.
    """
    if len({str(r) for r in reservation_ids}) != len(reservation_ids):
        raise LifecycleError(ErrorKind.INVALID_INPUT, "A reservation can only be listed once", "reservation_ids")

    repo = current_domain.repository_for(InventoryReservation)
    matched = []
    for reservation_id in reservation_ids:
        reservation = repo.get(reservation_id)
        if not reservation.is_live():
            status = ReservationStatus(reservation.status)
            reason = "expired" if status == ReservationStatus.ACTIVE else status.value.lower()
            raise LifecycleError(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Reservation {reservation_id} is {reason}; stock is no longer held",
                "reservation_ids",
                reservation_id=str(reservation_id),
            )
        if reservation.order_id:
            raise LifecycleError(
                ErrorKind.INVALID_INPUT,
                f"Reservation {reservation_id} already backs order {reservation.order_id}",
                "reservation_ids",
                reservation_id=str(reservation_id),
                order_id=str(reservation.order_id),
            )

        line = next(
            (
                line
                for line in lines
                if line.get("reservation_id") is None
                and stock_key(line["product_id"], line.get("variant_id")) == str(reservation.inventory_item_id)
                and int(line["quantity"]) == reservation.quantity
            ),
            None,
        )
        if line is None:
            raise LifecycleError(
                ErrorKind.INVALID_INPUT,
                f"Reservation {reservation_id} ({reservation.quantity} of {reservation.inventory_item_id}) "
                "does not match any order line",
                "reservation_ids",
                reservation_id=str(reservation_id),
            )
        line["reservation_id"] = str(reservation.id)
        matched.append(reservation)
    return matched


def _claim_reservations(reservations: list[InventoryReservation], order_id: str) -> None:
    repo = current_domain.repository_for(InventoryReservation)
    for reservation in reservations:
        reservation.attach_to_order(order_id)
        repo.add(reservation)


@settlement.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        items = json.loads(command.items)
        if not items:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "An order needs at least one item", "items")

        lines = [{k: item.get(k) for k in _ITEM_FIELDS} for item in items]
        try:
            priced = [PricedLine(unit_price=float(line["unit_price"]), quantity=int(line["quantity"])) for line in lines]
        except (TypeError, ValueError) as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Each item needs a quantity and unit price", "items") from exc
        if any(line.quantity <= 0 or line.unit_price < 0 for line in priced):
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Quantities must be positive and prices non-negative", "items")

        totals = price_order(
            priced,
            _parse_discounts(command.discounts),
            shipping_amount=command.shipping_amount or 0.0,
            tax_amount=command.tax_amount or 0.0,
        )
        reservation_ids = json.loads(command.reservation_ids) if command.reservation_ids else []
        reservations = _match_reservations(lines, reservation_ids)

        order = Order.create(
            customer_id=command.customer_id,
            items_data=lines,
            pricing=OrderPricing(
                subtotal=totals.subtotal,
                discount_amount=totals.discount_amount,
                shipping_amount=totals.shipping_amount,
                tax_amount=totals.tax_amount,
                total=totals.total,
                currency=command.currency,
            ),
            payment_method=command.payment_method,
            payment_reference=command.payment_reference,
            reservation_ids=reservation_ids,
            buyer_protection=command.buyer_protection,
        )
        _claim_reservations(reservations, str(order.id))
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order placed",
            order_id=str(order.id),
            customer_id=str(command.customer_id),
            total=totals.total,
            reservations=len(reservation_ids),
        )
        return str(order.id)


def _reservation_keys(reservation_ids: Sequence[str]) -> list[str]:
    repo = current_domain.repository_for(InventoryReservation)
    keys = []
    for reservation_id in reservation_ids:
        found = repo._dao.query.filter(id=str(reservation_id)).all().items
        keys.extend(str(r.inventory_item_id) for r in found)
    return keys


def place_order(
    customer_id: str,
    items: Sequence[dict],
    discounts: Sequence[Discount] = (),
    shipping_amount: float = 0.0,
    tax_amount: float = 0.0,
    payment_method: str = "manual",
    payment_reference: str | None = None,
    reservation_ids: Sequence[str] = (),
    buyer_protection: bool = False,
    currency: str = "USD",
) -> Result:
    """Create a pending order. ``items`` carry product_id, variant_id, vendor_id, quantity and unit_price."""
    try:
        shipping_amount = float(shipping_amount or 0.0)
        tax_amount = float(tax_amount or 0.0)
    except (TypeError, ValueError):
        return Result.fail(ErrorKind.INVALID_INPUT, "Shipping and tax must be numbers")
    if shipping_amount < 0 or tax_amount < 0:
        return Result.fail(ErrorKind.INVALID_INPUT, "Shipping and tax amounts cannot be negative")

    payload = json.dumps(
        [
            {
                "kind": d.kind.value,
                "value": d.value,
                "max_discount": d.max_discount,
                "label": d.label,
            }
            for d in discounts
        ]
    )
    with stock_locks.hold(*_reservation_keys(reservation_ids)):
        result = execute(
            PlaceOrder,
            customer_id=customer_id,
            items=json.dumps(list(items)),
            discounts=payload,
            shipping_amount=shipping_amount,
            tax_amount=tax_amount,
            currency=currency,
            payment_method=payment_method,
            payment_reference=payment_reference,
            reservation_ids=json.dumps([str(r) for r in reservation_ids]),
            buyer_protection=buyer_protection,
        )

    if result.success:
        notify(customer_id, "Order received", f"Your order {result.value} has been placed.", order_id=result.value)
    return result
