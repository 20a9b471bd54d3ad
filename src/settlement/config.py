"""Runtime settings read from the environment.

Values are read on every call so tests and long-running workers pick up
changes without a restart.
"""

import os


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def reservation_ttl_minutes() -> int:
    return _int("RESERVATION_TTL_MINUTES", 15)


def dispute_sla_hours() -> int:
    return _int("DISPUTE_SLA_HOURS", 72)


def dispute_window_days() -> int:
    return _int("DISPUTE_WINDOW_DAYS", 30)


def buyer_protection_days() -> int:
    return _int("BUYER_PROTECTION_DAYS", 30)


def payment_gateway() -> str:
    """Which gateway adapter to use: ``fake`` or ``stripe``."""
    return os.getenv("PAYMENT_GATEWAY", "fake").lower()


def stripe_secret_key() -> str | None:
    return os.getenv("STRIPE_SECRET_KEY")


def stripe_api_base() -> str:
    return os.getenv("STRIPE_API_BASE", "https://api.stripe.com")


def gateway_timeout_seconds() -> float:
    return _float("GATEWAY_TIMEOUT_SECONDS", 10.0)


def cron_secret() -> str | None:
    """Shared secret the external scheduler sends to the maintenance endpoints."""
    return os.getenv("CRON_SECRET")
