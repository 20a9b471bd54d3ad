"""Error kinds and the result type returned by every public operation.

Aggregates raise ``LifecycleError`` for business-rule violations; the
Unit of Work rolls back and ``execute`` turns the error into a failed
``Result`` so callers never have to catch exceptions for expected
failures. A write that loses a race with another process (a stale
aggregate version, or a serialization failure under the production
database's ``SERIALIZABLE`` isolation) comes back as ``ConcurrentUpdate``
for the caller to retry. Anything else that is not a business rule
propagates.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, TransactionError, ValidationError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


class ErrorKind(Enum):
    NOT_FOUND = "NotFound"
    INVALID_TRANSITION = "InvalidTransition"
    INSUFFICIENT_STOCK = "InsufficientStock"
    AMOUNT_EXCEEDS_REFUNDABLE = "AmountExceedsRefundable"
    AMOUNT_EXCEEDS_ORDER_TOTAL = "AmountExceedsOrderTotal"
    AMOUNT_MUST_BE_POSITIVE = "AmountMustBePositive"
    PAYMENT_NOT_COMPLETED = "PaymentNotCompleted"
    PAYMENT_ALREADY_CAPTURED = "PaymentAlreadyCaptured"
    PAYMENT_FAILED = "PaymentFailed"
    FORBIDDEN = "Forbidden"
    DISPUTE_CLOSED = "DisputeClosed"
    DISPUTE_ALREADY_OPEN = "DisputeAlreadyOpen"
    DISPUTE_WINDOW_EXPIRED = "DisputeWindowExpired"
    PROVIDER_FAILURE = "ProviderFailure"
    INVALID_INPUT = "InvalidInput"
    CONCURRENT_UPDATE = "ConcurrentUpdate"


HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.AMOUNT_EXCEEDS_REFUNDABLE: 422,
    ErrorKind.AMOUNT_EXCEEDS_ORDER_TOTAL: 422,
    ErrorKind.AMOUNT_MUST_BE_POSITIVE: 422,
    ErrorKind.PAYMENT_NOT_COMPLETED: 409,
    ErrorKind.PAYMENT_ALREADY_CAPTURED: 409,
    ErrorKind.PAYMENT_FAILED: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.DISPUTE_CLOSED: 409,
    ErrorKind.DISPUTE_ALREADY_OPEN: 409,
    ErrorKind.DISPUTE_WINDOW_EXPIRED: 422,
    ErrorKind.PROVIDER_FAILURE: 502,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONCURRENT_UPDATE: 409,
}


class LifecycleError(ValidationError):
    """A business rule rejected the operation.

    Subclasses Protean's ``ValidationError`` so the Unit of Work treats it
    like any other domain validation failure and rolls back.
    """

    def __init__(self, kind: ErrorKind, message: str, field_name: str = "_entity", **details: Any) -> None:
        super().__init__({field_name: [message]})
        self.kind = kind
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class Result:
    """Outcome of a settlement operation."""

    success: bool
    value: Any = None
    error: ErrorKind | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **details: Any) -> "Result":
        return cls(success=False, error=kind, message=message, details=details)

    @classmethod
    def from_error(cls, exc: LifecycleError) -> "Result":
        return cls.fail(exc.kind, exc.message, **exc.details)

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return HTTP_STATUS.get(self.error, 400)

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "value": self.value}
        return {
            "success": False,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "details": self.details,
        }


_SERIALIZATION_FAILURE = "could not serialize access"


def _flatten(messages: dict) -> str:
    parts = []
    for key, errors in (messages or {}).items():
        for error in errors if isinstance(errors, list) else [errors]:
            parts.append(str(error) if key == "_entity" else f"{key}: {error}")
    return "; ".join(parts) or "Invalid input"


def execute(command_cls, **fields: Any) -> Result:
    """Build ``command_cls`` from ``fields``, process it synchronously and wrap
    the outcome in a ``Result``.

    Handlers may return a ``Result`` themselves when a failure has to be
    committed (for example a refund marked failed by the provider).
    """
    name = command_cls.__name__
    try:
        command = command_cls(**fields)
        outcome = current_domain.process(command, asynchronous=False)
    except LifecycleError as exc:
        logger.info(
            "Operation rejected",
            command=name,
            error=exc.kind.value,
            reason=exc.message,
        )
        return Result.from_error(exc)
    except ObjectNotFoundError as exc:
        logger.info("Operation target not found", command=name, error=str(exc))
        return Result.fail(ErrorKind.NOT_FOUND, str(exc) or "Not found")
    except ValidationError as exc:
        message = _flatten(exc.messages)
        logger.info("Operation input invalid", command=name, error=message)
        return Result.fail(ErrorKind.INVALID_INPUT, message, fields=exc.messages)
    except ExpectedVersionError as exc:
        logger.warning("Concurrent update rejected", command=name, error=str(exc))
        return Result.fail(ErrorKind.CONCURRENT_UPDATE, "The record changed while the operation ran; retry it")
    except TransactionError as exc:
        # Serializable isolation aborts the later of two conflicting writers.
        if _SERIALIZATION_FAILURE not in str(exc):
            raise
        logger.warning("Concurrent update rejected", command=name, error=str(exc))
        return Result.fail(ErrorKind.CONCURRENT_UPDATE, "The record changed while the operation ran; retry it")

    if isinstance(outcome, Result):
        return outcome
    return Result.ok(outcome)
