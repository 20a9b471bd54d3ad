"""Pydantic request/response schemas for the Settlement API.

These are external contracts, kept separate from the internal Protean
commands. Money travels as plain floats in the order currency.
"""

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------
class ErrorResponse(BaseModel):
    error: str
    message: str
    details: dict[str, Any] = {}


class StatusResponse(BaseModel):
    status: str


class CountResponse(BaseModel):
    processed: int


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderLineSchema(BaseModel):
    product_id: str
    variant_id: str | None = None
    vendor_id: str | None = None
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)


class DiscountSchema(BaseModel):
    kind: str  # percentage, fixed_amount
    value: float = Field(ge=0)
    max_discount: float | None = Field(default=None, ge=0)
    label: str | None = None


class PlaceOrderRequest(BaseModel):
    customer_id: str
    items: list[OrderLineSchema] = Field(min_length=1)
    discounts: list[DiscountSchema] = []
    shipping_amount: float = Field(default=0.0, ge=0)
    tax_amount: float = Field(default=0.0, ge=0)
    payment_method: str = "manual"
    payment_reference: str | None = None
    reservation_ids: list[str] = []
    buyer_protection: bool = False
    currency: str = "USD"

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "items": [{"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 2, "unit_price": 50.0}],
                    "discounts": [{"kind": "percentage", "value": 10}],
                    "shipping_amount": 5.0,
                    "payment_method": "card",
                    "payment_reference": "pi_123",
                }
            ]
        }
    }


class OrderIdResponse(BaseModel):
    order_id: str


class TransitionOrderRequest(BaseModel):
    new_status: str
    note: str | None = None


class TransitionResponse(BaseModel):
    previous_status: str
    new_status: str


class MarkPaymentFailedRequest(BaseModel):
    reason: str


class BuyerProtectionResponse(BaseModel):
    order_id: str
    protected: bool


# ---------------------------------------------------------------------------
# Payments and refunds
# ---------------------------------------------------------------------------
class CapturePaymentRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    final_capture: bool = True


class CaptureResponse(BaseModel):
    capture_id: str
    captured_amount: float
    total_captured: float
    payment_status: str
    order_status: str


class InitiateRefundRequest(BaseModel):
    order_id: str
    amount: float
    reason: str | None = None
    restore_stock: bool = True


class RefundIdResponse(BaseModel):
    refund_id: str


class RefundableAmountResponse(BaseModel):
    order_id: str
    refundable_amount: float


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class RegisterStockRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=0)
    low_stock_threshold: int = Field(default=5, ge=0)


class RestockRequest(BaseModel):
    quantity: int = Field(gt=0)
    reference: str | None = None


class ReserveStockRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(gt=0)
    requester_id: str
    ttl_minutes: int | None = Field(default=None, gt=0)


class ReservationIdResponse(BaseModel):
    reservation_id: str


class ExtendReservationRequest(BaseModel):
    minutes: int = Field(default=15, gt=0)


class AvailabilityResponse(BaseModel):
    product_id: str
    variant_id: str | None = None
    available: int


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------
class FileDisputeRequest(BaseModel):
    order_id: str
    type: str
    description: str
    order_item_ids: list[str] = []


class DisputeIdResponse(BaseModel):
    dispute_id: str


class DisputeMessageRequest(BaseModel):
    message: str


class CloseDisputeRequest(BaseModel):
    resolution: str | None = None


class ResolveDisputeRequest(BaseModel):
    status: str  # resolved, closed
    resolution: str
    refund_amount: float | None = None


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
class RetryRefundsResponse(BaseModel):
    retried: int
    completed: int
    failed: int
