"""Refund aggregate (CQRS).

State Machine:
    PENDING → COMPLETED   (provider confirmed, or manual payment)
    PENDING → FAILED      (provider error or over-refund detected at processing)
    FAILED  → COMPLETED / FAILED   (a retry)
    COMPLETED is immutable.

Only COMPLETED refunds count against an order's refundable amount.
"""

from enum import Enum

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from settlement.domain import settlement
from settlement.payments.events import RefundCompleted, RefundFailed, RefundRequested
from settlement.shared.clock import utc_now
from settlement.shared.errors import ErrorKind, LifecycleError
from settlement.shared.money import round_money


class RefundStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


MANUAL_REFUND_ID = "MANUAL"


@settlement.aggregate
class Refund:
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    reason = String(max_length=500)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    provider = String(max_length=50, default="manual")
    provider_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)
    restore_stock = Boolean(default=True)
    attempts = Integer(default=0)
    requested_at = DateTime()
    processed_at = DateTime()
    failed_at = DateTime()

    @classmethod
    def request(cls, order_id: str, amount: float, provider: str, reason: str | None = None, restore_stock=True):
        now = utc_now()
        refund = cls(
            order_id=str(order_id),
            amount=round_money(amount),
            reason=reason,
            status=RefundStatus.PENDING.value,
            provider=provider or "manual",
            restore_stock=restore_stock,
            attempts=0,
            requested_at=now,
        )
        refund.raise_(
            RefundRequested(
                refund_id=str(refund.id),
                order_id=str(order_id),
                amount=refund.amount,
                reason=reason,
                provider=refund.provider,
                restore_stock=restore_stock,
                requested_at=now,
            )
        )
        return refund

    @property
    def is_completed(self) -> bool:
        return RefundStatus(self.status) == RefundStatus.COMPLETED

    def _assert_open(self) -> None:
        if self.is_completed:
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                "Refund is already completed",
                "status",
                current=self.status,
            )

    def begin_attempt(self) -> None:
        self._assert_open()
        self.attempts = (self.attempts or 0) + 1

    def complete(self, provider_refund_id: str) -> None:
        self._assert_open()
        now = utc_now()
        self.status = RefundStatus.COMPLETED.value
        self.provider_refund_id = provider_refund_id
        self.failure_reason = None
        self.processed_at = now
        self.raise_(
            RefundCompleted(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                provider_refund_id=provider_refund_id,
                processed_at=now,
            )
        )

    def fail(self, reason: str) -> None:
        self._assert_open()
        now = utc_now()
        self.status = RefundStatus.FAILED.value
        self.failure_reason = (reason or "Refund failed")[:500]
        self.failed_at = now
        self.raise_(
            RefundFailed(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                reason=self.failure_reason,
                failed_at=now,
            )
        )
