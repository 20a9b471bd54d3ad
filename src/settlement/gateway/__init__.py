"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (default)
- StripeGateway when PAYMENT_GATEWAY=stripe
"""

from settlement import config
from settlement.gateway.fake_adapter import FakeGateway
from settlement.gateway.port import PaymentGateway

# Payment methods settled offline; they never reach a gateway.
MANUAL_PAYMENT_METHODS = frozenset({"cod", "manual", "cash"})

_current_gateway: PaymentGateway | None = None


def is_manual_method(payment_method: str | None) -> bool:
    return (payment_method or "manual").lower() in MANUAL_PAYMENT_METHODS


def _build_from_config() -> PaymentGateway:
    if config.payment_gateway() == "stripe":
        from settlement.gateway.stripe_adapter import StripeGateway

        return StripeGateway(
            api_key=config.stripe_secret_key() or "",
            base_url=config.stripe_api_base(),
            timeout=config.gateway_timeout_seconds(),
        )
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_from_config()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
