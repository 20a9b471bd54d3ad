"""Contract between the settlement workflow and a payment provider.

Adapters report provider-side declines through ``CaptureResult`` and
``RefundResult`` rather than raising. Transport errors may still raise;
callers translate those into a provider failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    capture_id: str | None = None
    captured_amount: float | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    name: str = "gateway"

    @abstractmethod
    def capture(self, amount: float, reference: str, final_capture: bool = True) -> CaptureResult:
        """Capture ``amount`` against the authorisation ``reference``.

        ``final_capture=False`` leaves the remainder of the authorisation open
        for later partial captures.
        """

    @abstractmethod
    def refund(self, amount: float, reference: str, reason: str | None = None) -> RefundResult:
        """Return ``amount`` of the payment identified by ``reference``."""
