"""Refund workflow: initiation, processing and the retry sweep.

Initiation validates the amount against what is still refundable and
optionally puts the order's committed units back on the shelf, all in one
Unit of Work. Each line remembers how many units it has restored, so
repeated partial refunds never put back more than the sale took out.
Processing talks to the payment provider.

A provider failure is recorded on the refund (status failed) and reported;
it is never retried here. The ``retry_failed_refunds`` sweep exists for an
external scheduler to call.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.gateway import get_gateway, is_manual_method
from settlement.inventory.stock import InventoryItem, stock_key
from settlement.notifications.dispatch import notify
from settlement.order.order import Order, PaymentStatus
from settlement.payments.refund import MANUAL_REFUND_ID, Refund, RefundStatus
from settlement.shared.errors import ErrorKind, LifecycleError, Result, execute
from settlement.shared.locks import order_locks, stock_locks
from settlement.shared.money import MONEY_TOLERANCE, round_money
from settlement.shared.queries import fetch_all

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Refund")
class InitiateRefund:
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=500)
    restore_stock = Boolean(default=True)


@settlement.command(part_of="Refund")
class ProcessRefund:
    refund_id = Identifier(required=True)
    actor_id = String(default="system", max_length=255)


def completed_refund_total(order_id) -> float:
    refunds = fetch_all(Refund, order_id=str(order_id), status=RefundStatus.COMPLETED.value)
    return round_money(sum(r.amount for r in refunds))


def _restore_order_stock(order: Order, refund_id: str) -> int:
    """Put back every committed unit not already restored by an earlier refund."""
    repo = current_domain.repository_for(InventoryItem)
    stocks: dict[str, InventoryItem] = {}
    restored = 0
    for line in order.items or []:
        quantity = line.unrestored_quantity
        if quantity <= 0:
            continue
        key = stock_key(line.product_id, line.variant_id)
        stock = stocks.get(key)
        if stock is None:
            try:
                stock = stocks[key] = repo.get(key)
            except ObjectNotFoundError:
                logger.warning("No stock record to restore into", order_id=str(order.id), stock_key=key)
                continue
        stock.restore(quantity, reference=refund_id)
        line.restored_quantity = (line.restored_quantity or 0) + quantity
        restored += quantity

    for stock in stocks.values():
        repo.add(stock)
    return restored


def open_refund(order: Order, amount: float | None, reason: str | None, restore_stock: bool) -> Refund:
    """Validate and create a pending refund in the current Unit of Work."""
    if PaymentStatus(order.payment_status) != PaymentStatus.COMPLETED:
        raise LifecycleError(ErrorKind.PAYMENT_NOT_COMPLETED, "Order payment not completed")
    if amount is None or amount <= 0:
        raise LifecycleError(ErrorKind.AMOUNT_MUST_BE_POSITIVE, "Refund amount must be greater than zero", "amount")

    refundable = order.refundable_amount(completed_refund_total(order.id))
    if amount - refundable > MONEY_TOLERANCE:
        raise LifecycleError(
            ErrorKind.AMOUNT_EXCEEDS_REFUNDABLE,
            f"Refund amount ({amount}) exceeds refundable amount ({refundable})",
            "amount",
            amount=amount,
            refundable=refundable,
        )

    refund = Refund.request(
        order_id=str(order.id),
        amount=amount,
        provider=order.payment_method,
        reason=reason,
        restore_stock=restore_stock,
    )
    restored = _restore_order_stock(order, str(refund.id)) if restore_stock else 0
    current_domain.repository_for(Refund).add(refund)
    if restored:
        current_domain.repository_for(Order).add(order)

    logger.info(
        "Refund initiated",
        refund_id=str(refund.id),
        order_id=str(order.id),
        amount=refund.amount,
        restored_units=restored,
    )
    return refund


@settlement.command_handler(part_of=Refund)
class RefundHandler:
    @handle(InitiateRefund)
    def initiate_refund(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        refund = open_refund(order, command.amount, command.reason, command.restore_stock)
        return str(refund.id)

    @handle(ProcessRefund)
    def process_refund(self, command):
        refund_repo = current_domain.repository_for(Refund)
        refund = refund_repo.get(command.refund_id)
        if refund.is_completed:
            return True

        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(refund.order_id)
        refund.begin_attempt()

        completed = completed_refund_total(order.id)
        if completed + refund.amount - order.total > MONEY_TOLERANCE:
            message = f"Refund of {refund.amount} would exceed the order total ({order.total}); {completed} already refunded"
            refund.fail(message)
            refund_repo.add(refund)
            return Result.fail(ErrorKind.AMOUNT_EXCEEDS_REFUNDABLE, message, refund_id=str(refund.id))

        if is_manual_method(refund.provider):
            provider_refund_id = MANUAL_REFUND_ID
        else:
            provider_refund_id, failure = _refund_via_gateway(refund, order)
            if failure is not None:
                refund.fail(failure)
                refund_repo.add(refund)
                logger.warning(
                    "Refund failed at provider",
                    refund_id=str(refund.id),
                    order_id=str(order.id),
                    reason=failure,
                )
                return Result.fail(ErrorKind.PROVIDER_FAILURE, failure, refund_id=str(refund.id))

        refund.complete(provider_refund_id)
        fully_refunded = order.record_refund(
            refund_id=str(refund.id),
            amount=refund.amount,
            completed_total=round_money(completed + refund.amount),
            actor_id=command.actor_id,
        )
        refund_repo.add(refund)
        order_repo.add(order)

        logger.info(
            "Refund completed",
            refund_id=str(refund.id),
            order_id=str(order.id),
            amount=refund.amount,
            fully_refunded=fully_refunded,
        )
        return True


def _refund_via_gateway(refund: Refund, order: Order) -> tuple[str | None, str | None]:
    """Returns ``(provider_refund_id, failure_reason)``; exactly one is set."""
    if not order.payment_reference:
        return None, "No provider payment reference recorded for this order"

    try:
        result = get_gateway().refund(refund.amount, order.payment_reference, refund.reason)
    except Exception as exc:
        logger.error("Gateway refund raised", refund_id=str(refund.id), error=str(exc))
        return None, f"Gateway error: {exc}"

    if not result.success:
        return None, result.failure_reason or "Refund failed"
    return result.gateway_refund_id, None


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def get_refundable_amount(order_id) -> float:
    """Order total minus completed refunds; 0 for unknown orders, never negative."""
    try:
        order = current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return 0.0
    return order.refundable_amount(completed_refund_total(order.id))


def _item_stock_keys(order_id) -> list[str]:
    try:
        order = current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        return []
    return [stock_key(item.product_id, item.variant_id) for item in order.items or []]


def initiate_refund(order_id, amount: float, reason: str | None = None, restore_stock: bool = True) -> Result:
    """Create a pending refund. The result value is the refund id."""
    keys = _item_stock_keys(order_id) if restore_stock else []
    with order_locks.hold(str(order_id)), stock_locks.hold(*keys):
        return execute(InitiateRefund, order_id=order_id, amount=amount, reason=reason, restore_stock=restore_stock)


def process_refund(refund_id, actor_id: str = "system") -> Result:
    """Settle a pending (or previously failed) refund with the provider.

    The result value is ``True`` on success. Provider failures come back as
    ``ProviderFailure`` with the refund already marked failed.
    """
    try:
        refund = current_domain.repository_for(Refund).get(refund_id)
    except ObjectNotFoundError:
        return Result.fail(ErrorKind.NOT_FOUND, f"Refund {refund_id} not found")

    with order_locks.hold(str(refund.order_id)):
        result = execute(ProcessRefund, refund_id=refund_id, actor_id=actor_id)

    order = current_domain.repository_for(Order).get(refund.order_id)
    if result.success:
        notify(
            order.customer_id,
            "Refund processed",
            f"A refund of {refund.amount:.2f} for order {order.id} has been processed.",
            refund_id=str(refund_id),
            order_id=str(order.id),
        )
    elif result.error in (ErrorKind.PROVIDER_FAILURE, ErrorKind.AMOUNT_EXCEEDS_REFUNDABLE):
        notify(
            "admin",
            "Refund failed",
            f"Refund {refund_id} for order {order.id} failed: {result.message}",
            refund_id=str(refund_id),
            order_id=str(order.id),
        )
    return result


def retry_failed_refunds(max_attempts: int = 5) -> dict:
    """Re-process failed refunds that have not used up their attempts."""
    candidates = [
        r for r in fetch_all(Refund, status=RefundStatus.FAILED.value) if (r.attempts or 0) < max_attempts
    ]
    summary = {"retried": 0, "completed": 0, "failed": 0}
    for refund in candidates:
        summary["retried"] += 1
        result = process_refund(str(refund.id))
        if result.success:
            summary["completed"] += 1
        else:
            summary["failed"] += 1

    logger.info("Failed refund retry sweep complete", **summary)
    return summary


def refund_summary(refund: Refund) -> dict:
    return {
        "refund_id": str(refund.id),
        "order_id": str(refund.order_id),
        "amount": refund.amount,
        "reason": refund.reason,
        "status": refund.status,
        "provider": refund.provider,
        "provider_refund_id": refund.provider_refund_id,
        "failure_reason": refund.failure_reason,
        "attempts": refund.attempts or 0,
    }


def get_order_refunds(order_id) -> list[dict]:
    refunds = fetch_all(Refund, order_id=str(order_id))
    return [refund_summary(r) for r in sorted(refunds, key=lambda r: r.requested_at)]


def get_refund_status(refund_id) -> Result:
    """One refund with the order it belongs to."""
    try:
        refund = current_domain.repository_for(Refund).get(refund_id)
    except ObjectNotFoundError:
        return Result.fail(ErrorKind.NOT_FOUND, f"Refund {refund_id} not found")

    summary = refund_summary(refund)
    summary["requested_at"] = refund.requested_at.isoformat() if refund.requested_at else None
    summary["processed_at"] = refund.processed_at.isoformat() if refund.processed_at else None
    try:
        order = current_domain.repository_for(Order).get(refund.order_id)
    except ObjectNotFoundError:
        summary["order"] = None
    else:
        summary["order"] = {
            "order_id": str(order.id),
            "total": order.total,
            "payment_method": order.payment_method,
            "status": order.status,
            "refundable_amount": order.refundable_amount(completed_refund_total(order.id)),
        }
    return Result.ok(summary)
