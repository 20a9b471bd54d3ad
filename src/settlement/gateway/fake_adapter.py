"""In-memory payment gateway for development and tests.

No network calls. Flip it between approving and declining with
``configure``; every request it receives is kept in ``calls``.
"""

from uuid import uuid4

from settlement.gateway.port import CaptureResult, PaymentGateway, RefundResult


def _provider_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def calls_for(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def capture(self, amount: float, reference: str, final_capture: bool = True) -> CaptureResult:
        self.calls.append(dict(method="capture", amount=amount, reference=reference, final_capture=final_capture))
        if not self.should_succeed:
            return CaptureResult(success=False, gateway_status="failed", failure_reason=self.failure_reason)
        return CaptureResult(
            success=True,
            capture_id=_provider_id("fake_cap"),
            captured_amount=amount,
            gateway_status="succeeded",
        )

    def refund(self, amount: float, reference: str, reason: str | None = None) -> RefundResult:
        self.calls.append(dict(method="refund", amount=amount, reference=reference, reason=reason))
        if not self.should_succeed:
            return RefundResult(success=False, gateway_status="failed", failure_reason=self.failure_reason)
        return RefundResult(success=True, gateway_refund_id=_provider_id("fake_ref"), gateway_status="succeeded")
