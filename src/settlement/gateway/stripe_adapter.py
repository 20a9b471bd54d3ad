"""Stripe payment gateway adapter.

Talks to the Stripe REST API directly with httpx rather than the SDK.
The order's payment reference is the PaymentIntent id. Amounts are sent
in the currency's minor unit (cents).
"""

from uuid import uuid4

import httpx
import structlog

from settlement.gateway.port import CaptureResult, PaymentGateway, RefundResult
from settlement.shared.money import to_minor_units


logger = structlog.get_logger(__name__)

class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    name = "stripe"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Stripe API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self._transport,
        )

    def _post(self, path: str, data: dict) -> tuple[dict | None, str | None]:
        """POST form data; returns ``(body, error)`` with exactly one set."""
        try:
            with self._client() as client:
                resp = client.post(path, data=data, headers={"Idempotency-Key": uuid4().hex})
        except httpx.RequestError as exc:
            logger.error("Stripe request failed", path=path, error=str(exc))
            return None, f"Stripe request failed: {exc}"

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or f"Stripe returned HTTP {resp.status_code}"
            logger.warning("Stripe rejected request", path=path, status_code=resp.status_code, error=message)
            return None, message
        return body, None

    def capture(self, amount: float, reference: str, final_capture: bool = True) -> CaptureResult:
        body, error = self._post(
            f"/v1/payment_intents/{reference}/capture",
            {
                "amount_to_capture": to_minor_units(amount),
                "final_capture": "true" if final_capture else "false",
            },
        )
        if error is not None:
            return CaptureResult(success=False, gateway_status="failed", failure_reason=error)

        status = body.get("status")
        if status != "succeeded":
            return CaptureResult(
                success=False,
                gateway_status=status,
                failure_reason=f"Payment intent is {status}",
            )

        received = body.get("amount_received")
        return CaptureResult(
            success=True,
            capture_id=body.get("latest_charge") or body.get("id"),
            captured_amount=received / 100 if received is not None else amount,
            gateway_status=status,
        )

    def refund(self, amount: float, reference: str, reason: str | None = None) -> RefundResult:
        data = {
            "payment_intent": reference,
            "amount": to_minor_units(amount),
            "reason": "requested_by_customer",
        }
        if reason:
            data["metadata[reason]"] = reason[:500]

        body, error = self._post("/v1/refunds", data)
        if error is not None:
            return RefundResult(success=False, gateway_status="failed", failure_reason=error)

        status = body.get("status")
        if status in ("failed", "canceled"):
            return RefundResult(
                success=False,
                gateway_refund_id=body.get("id"),
                gateway_status=status,
                failure_reason=body.get("failure_reason") or f"Refund {status}",
            )
        return RefundResult(success=True, gateway_refund_id=body.get("id"), gateway_status=status)
