"""Tests for the Stripe adapter against a mocked HTTP transport."""

from urllib.parse import parse_qs

import httpx
import pytest
from settlement.gateway.stripe_adapter import StripeGateway


def _gateway(handler):
    return StripeGateway(api_key="sk_test_123", transport=httpx.MockTransport(handler))


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestStripeCapture:
    def test_successful_capture(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["form"] = _form(request)
            seen["auth"] = request.headers["Authorization"]
            seen["idempotency"] = request.headers.get("Idempotency-Key")
            return httpx.Response(
                200,
                json={"id": "pi_123", "status": "succeeded", "amount_received": 4999, "latest_charge": "ch_1"},
            )

        result = _gateway(handler).capture(49.99, "pi_123", final_capture=True)

        assert result.success
        assert result.capture_id == "ch_1"
        assert result.captured_amount == 49.99
        assert seen["path"] == "/v1/payment_intents/pi_123/capture"
        assert seen["form"] == {"amount_to_capture": "4999", "final_capture": "true"}
        assert seen["auth"] == "Bearer sk_test_123"
        assert seen["idempotency"]

    def test_non_final_capture_flag(self):
        seen = {}

        def handler(request):
            seen["form"] = _form(request)
            return httpx.Response(200, json={"id": "pi_123", "status": "succeeded"})

        result = _gateway(handler).capture(10.0, "pi_123", final_capture=False)
        assert result.success
        assert result.capture_id == "pi_123"
        assert seen["form"]["final_capture"] == "false"

    def test_unexpected_intent_status(self):
        result = _gateway(lambda r: httpx.Response(200, json={"status": "requires_action"})).capture(10.0, "pi_1")
        assert not result.success
        assert result.failure_reason == "Payment intent is requires_action"

    def test_card_error(self):
        def handler(request):
            return httpx.Response(402, json={"error": {"message": "Your card was declined."}})

        result = _gateway(handler).capture(10.0, "pi_1")
        assert not result.success
        assert result.failure_reason == "Your card was declined."

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = _gateway(handler).capture(10.0, "pi_1")
        assert not result.success
        assert "connection refused" in result.failure_reason


class TestStripeRefund:
    def test_successful_refund(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["form"] = _form(request)
            return httpx.Response(200, json={"id": "re_1", "status": "succeeded"})

        result = _gateway(handler).refund(12.5, "pi_123", reason="Damaged")

        assert result.success
        assert result.gateway_refund_id == "re_1"
        assert seen["path"] == "/v1/refunds"
        assert seen["form"]["payment_intent"] == "pi_123"
        assert seen["form"]["amount"] == "1250"
        assert seen["form"]["metadata[reason]"] == "Damaged"

    def test_pending_refund_counts_as_accepted(self):
        result = _gateway(lambda r: httpx.Response(200, json={"id": "re_2", "status": "pending"})).refund(1.0, "pi")
        assert result.success

    def test_failed_refund(self):
        def handler(request):
            return httpx.Response(200, json={"id": "re_3", "status": "failed", "failure_reason": "expired_or_canceled_card"})

        result = _gateway(handler).refund(1.0, "pi")
        assert not result.success
        assert result.failure_reason == "expired_or_canceled_card"

    def test_server_error_without_body(self):
        result = _gateway(lambda r: httpx.Response(500, text="oops")).refund(1.0, "pi")
        assert not result.success
        assert result.failure_reason == "Stripe returned HTTP 500"


class TestConstruction:
    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            StripeGateway(api_key="")
