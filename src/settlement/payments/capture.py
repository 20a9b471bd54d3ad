"""Payment capture: command, handler and entry points.

Manual methods (cash on delivery, bank transfer booked by hand) capture
immediately with a sentinel capture id. Gateway-backed orders call the
provider first; a provider failure leaves the order untouched.

Once payment completes, every stock-tracked line is committed in the same
Unit of Work: reserved lines consume their reservation, the rest draw on
unreserved units. Each line records what it committed, so a paid order's
units leave on-hand exactly once. The draws are checked before the provider
is called, so a capture is never taken for stock that cannot be committed.
"""

from dataclasses import dataclass, field

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway, is_manual_method
from settlement.inventory.availability import commit_stock, reserved_quantity
from settlement.inventory.stock import InventoryItem, InventoryReservation, ReservationStatus, stock_key
from settlement.notifications.dispatch import notify
from settlement.order.order import Order, OrderItem, PaymentStatus
from settlement.order.transitions import order_stock_keys
from settlement.shared.errors import ErrorKind, LifecycleError, Result, execute
from settlement.shared.locks import order_locks, stock_locks

logger = structlog.get_logger(__name__)

MANUAL_CAPTURE_ID = "MANUAL-CAPTURE"


@settlement.command(part_of="Order")
class CapturePayment:
    order_id = Identifier(required=True)
    amount = Float()  # Defaults to the uncaptured remainder
    final_capture = Boolean(default=True)
    actor_id = String(default="system", max_length=255)


@dataclass
class _StockDraw:
    """What one stock record gives up when an order's payment completes."""

    item: InventoryItem
    lines: list[OrderItem] = field(default_factory=list)
    reservations: list[InventoryReservation] = field(default_factory=list)
    loose: int = 0

    @property
    def quantity(self) -> int:
        return sum(r.quantity for r in self.reservations) + self.loose


def _stock_draws(order: Order) -> dict[str, _StockDraw]:
    """Group the order's uncommitted lines by stock record.

    A line backed by an active reservation consumes it. A line whose
    reservation was released or expired, or that never had one, is loose:
    its units are taken straight from unreserved stock. Products without a
    stock record are not inventory-tracked and are skipped.
    """
    item_repo = current_domain.repository_for(InventoryItem)
    reservation_repo = current_domain.repository_for(InventoryReservation)
    draws: dict[str, _StockDraw] = {}
    for line in order.items or []:
        if (line.committed_quantity or 0) >= line.quantity:
            continue
        key = stock_key(line.product_id, line.variant_id)
        draw = draws.get(key)
        if draw is None:
            try:
                draw = draws[key] = _StockDraw(item=item_repo.get(key))
            except ObjectNotFoundError:
                logger.info("Line product is not stock-tracked", order_id=str(order.id), stock_key=key)
                continue
        draw.lines.append(line)

        reservation = None
        if line.reservation_id:
            try:
                reservation = reservation_repo.get(line.reservation_id)
            except ObjectNotFoundError:
                logger.warning(
                    "Order references missing reservation",
                    order_id=str(order.id),
                    reservation_id=str(line.reservation_id),
                )
        status = ReservationStatus(reservation.status) if reservation is not None else None
        if status == ReservationStatus.ACTIVE:
            draw.reservations.append(reservation)
        elif status == ReservationStatus.CONSUMED:
            # Already taken off the shelf through the reservation itself.
            line.committed_quantity = line.quantity
        else:
            if reservation is not None:
                logger.info(
                    "Reservation no longer holds stock; committing from unreserved units",
                    order_id=str(order.id),
                    reservation_id=str(reservation.id),
                    status=reservation.status,
                )
            draw.loose += line.quantity - (line.committed_quantity or 0)
    return {key: draw for key, draw in draws.items() if draw.quantity > 0}


def _assert_committable(draws: dict[str, _StockDraw]) -> None:
    """Every draw must fit before the provider is charged."""
    for key, draw in draws.items():
        others = reserved_quantity(key, exclude=[r.id for r in draw.reservations])
        if draw.item.on_hand - others < draw.quantity:
            available = draw.item.available(others)
            raise LifecycleError(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Insufficient stock for {key}: {available} available, {draw.quantity} needed",
                "items",
                stock_key=key,
                available=available,
                requested=draw.quantity,
            )


def _commit_draws(order: Order, draws: dict[str, _StockDraw]) -> int:
    committed = 0
    for draw in draws.values():
        committed += commit_stock(
            draw.item,
            draw.reservations,
            extra_quantity=draw.loose,
            order_id=order.id,
            reference=str(order.id),
        )
        for line in draw.lines:
            line.committed_quantity = line.quantity
    return committed


@settlement.command_handler(part_of=Order)
class CapturePaymentHandler:
    @handle(CapturePayment)
    def capture_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        amount = order.validate_capture(command.amount)
        final_capture = command.final_capture if command.final_capture is not None else True

        draws = _stock_draws(order)
        _assert_committable(draws)

        provider = order.payment_method or "manual"
        if is_manual_method(provider):
            capture_id = MANUAL_CAPTURE_ID
        else:
            if not order.payment_reference:
                raise LifecycleError(
                    ErrorKind.INVALID_INPUT,
                    "No provider payment reference found for this order",
                    "payment_reference",
                )
            try:
                result = get_gateway().capture(amount, order.payment_reference, final_capture)
            except Exception as exc:
                logger.error("Gateway capture raised", order_id=str(order.id), error=str(exc))
                raise LifecycleError(ErrorKind.PROVIDER_FAILURE, f"Gateway error: {exc}") from exc
            if not result.success:
                raise LifecycleError(ErrorKind.PROVIDER_FAILURE, result.failure_reason or "Payment capture failed")
            capture_id = result.capture_id

        completed = order.record_capture(
            amount=amount,
            capture_id=capture_id,
            provider=provider,
            final_capture=final_capture,
            actor_id=command.actor_id,
        )
        committed = _commit_draws(order, draws) if completed else 0
        repo.add(order)

        logger.info(
            "Payment captured",
            order_id=str(order.id),
            capture_id=capture_id,
            amount=amount,
            payment_completed=completed,
            committed_units=committed,
        )
        return {
            "capture_id": capture_id,
            "captured_amount": amount,
            "total_captured": order.captured_amount,
            "payment_status": order.payment_status,
            "order_status": order.status,
        }


def capture_payment(order_id, amount: float | None = None, final_capture: bool = True, actor_id="system") -> Result:
    with order_locks.hold(str(order_id)), stock_locks.hold(*order_stock_keys(order_id)):
        result = execute(
            CapturePayment,
            order_id=order_id,
            amount=amount,
            final_capture=final_capture,
            actor_id=actor_id,
        )

    if result.success and result.value["payment_status"] == PaymentStatus.COMPLETED.value:
        order = current_domain.repository_for(Order).get(order_id)
        notify(
            order.customer_id,
            "Payment received",
            f"We received {order.captured_amount:.2f} for order {order_id}.",
            order_id=str(order_id),
        )
    return result


def get_capture_status(order_id) -> Result:
    try:
        order = current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return Result.fail(ErrorKind.NOT_FOUND, f"Order {order_id} not found")
    return Result.ok(
        {
            "order_id": str(order.id),
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "capture_id": order.capture_id,
            "captured_amount": order.captured_amount or 0.0,
            "total": order.total,
            "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        }
    )
