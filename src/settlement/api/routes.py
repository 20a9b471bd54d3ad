"""FastAPI routes for the Settlement context.

Handlers call the public entry points, which already return ``Result``
objects; a failed result becomes an ``HTTPException`` carrying the error
kind, message and details, with the status code its kind maps to.
"""

import hmac
import os

from fastapi import APIRouter, Depends, Header, HTTPException

from settlement import config
from settlement.api.schemas import (
    AvailabilityResponse,
    BuyerProtectionResponse,
    CaptureResponse,
    CapturePaymentRequest,
    CloseDisputeRequest,
    ConfigureGatewayRequest,
    CountResponse,
    DisputeIdResponse,
    DisputeMessageRequest,
    ExtendReservationRequest,
    FileDisputeRequest,
    InitiateRefundRequest,
    MarkPaymentFailedRequest,
    OrderIdResponse,
    PlaceOrderRequest,
    RefundableAmountResponse,
    RefundIdResponse,
    RegisterStockRequest,
    ReservationIdResponse,
    ReserveStockRequest,
    ResolveDisputeRequest,
    RestockRequest,
    RetryRefundsResponse,
    StatusResponse,
    TransitionOrderRequest,
    TransitionResponse,
)
from settlement.disputes.dispute import Actor, ActorRole
from settlement.disputes.escalation import escalate_overdue_disputes
from settlement.disputes.handling import (
    close_dispute,
    escalate_dispute,
    file_dispute,
    get_dispute,
    resolve_dispute,
    send_dispute_message,
)
from settlement.gateway import get_gateway
from settlement.gateway.fake_adapter import FakeGateway
from settlement.inventory.availability import get_available_stock
from settlement.inventory.expiry import expire_stale_reservations
from settlement.inventory.management import register_stock, restock
from settlement.inventory.reservation import extend_reservation, release_reservation, reserve_stock
from settlement.order.placement import place_order
from settlement.order.queries import get_order, is_buyer_protected
from settlement.order.transitions import mark_payment_failed, transition_order
from settlement.payments.capture import capture_payment, get_capture_status
from settlement.payments.refunding import (
    get_order_refunds,
    get_refund_status,
    get_refundable_amount,
    initiate_refund,
    process_refund,
    retry_failed_refunds,
)
from settlement.pricing.calculator import Discount, DiscountType
from settlement.shared.errors import ErrorKind, LifecycleError, Result


def _unwrap(result: Result):
    if not result.success:
        raise HTTPException(status_code=result.status_code, detail=result.to_dict())
    return result.value


# Roles a caller may assert through headers. SYSTEM is reserved for jobs
# running inside the process.
_HEADER_ROLES = {ActorRole.CUSTOMER.value, ActorRole.VENDOR.value, ActorRole.ADMIN.value}


def current_actor(
    x_actor_id: str = Header(...),
    x_actor_role: str = Header(...),
) -> Actor:
    """The caller's identity, as asserted by the upstream gateway."""
    role = x_actor_role.lower()
    if role not in _HEADER_ROLES:
        error = Result.fail(ErrorKind.INVALID_INPUT, f"Role {x_actor_role!r} cannot be asserted by a caller")
        raise HTTPException(status_code=400, detail=error.to_dict())
    try:
        return Actor.of(x_actor_id, role)
    except LifecycleError as exc:
        raise HTTPException(status_code=400, detail=Result.from_error(exc).to_dict()) from exc


def require_cron_secret(authorization: str = Header(default="")) -> None:
    secret = config.cron_secret()
    if not secret:
        raise HTTPException(status_code=503, detail="Maintenance endpoints are not configured")
    if not hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode()):
        raise HTTPException(status_code=401, detail="Invalid maintenance credentials")


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def create_order(body: PlaceOrderRequest) -> OrderIdResponse:
    """Place a pending order from priced lines and a discount stack."""
    try:
        discounts = [
            Discount(DiscountType(d.kind), d.value, d.max_discount, d.label) for d in body.discounts
        ]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown discount kind: {exc}") from exc

    order_id = _unwrap(
        place_order(
            customer_id=body.customer_id,
            items=[item.model_dump() for item in body.items],
            discounts=discounts,
            shipping_amount=body.shipping_amount,
            tax_amount=body.tax_amount,
            payment_method=body.payment_method,
            payment_reference=body.payment_reference,
            reservation_ids=body.reservation_ids,
            buyer_protection=body.buyer_protection,
            currency=body.currency,
        )
    )
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}")
async def read_order(order_id: str) -> dict:
    return _unwrap(get_order(order_id))


@order_router.put("/{order_id}/status", response_model=TransitionResponse)
async def change_order_status(
    order_id: str,
    body: TransitionOrderRequest,
    actor: Actor = Depends(current_actor),
) -> TransitionResponse:
    """Move an order along its status table."""
    value = _unwrap(transition_order(order_id, body.new_status, actor.actor_id, body.note))
    return TransitionResponse(**value)


@order_router.post("/{order_id}/payment-failed", response_model=StatusResponse)
async def record_payment_failure(
    order_id: str,
    body: MarkPaymentFailedRequest,
    actor: Actor = Depends(current_actor),
) -> StatusResponse:
    _unwrap(mark_payment_failed(order_id, body.reason, actor.actor_id))
    return StatusResponse(status="payment_failed")


@order_router.get("/{order_id}/protection", response_model=BuyerProtectionResponse)
async def read_buyer_protection(order_id: str) -> BuyerProtectionResponse:
    return BuyerProtectionResponse(order_id=order_id, protected=is_buyer_protected(order_id))


@order_router.get("/{order_id}/refunds")
async def list_order_refunds(order_id: str) -> list[dict]:
    return get_order_refunds(order_id)


@order_router.get("/{order_id}/refundable", response_model=RefundableAmountResponse)
async def read_refundable_amount(order_id: str) -> RefundableAmountResponse:
    return RefundableAmountResponse(order_id=order_id, refundable_amount=get_refundable_amount(order_id))


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/{order_id}/capture", response_model=CaptureResponse)
async def capture(
    order_id: str,
    body: CapturePaymentRequest,
    actor: Actor = Depends(current_actor),
) -> CaptureResponse:
    """Capture authorised funds for an order (full or partial)."""
    value = _unwrap(capture_payment(order_id, body.amount, body.final_capture, actor.actor_id))
    return CaptureResponse(**value)


@payment_router.get("/{order_id}")
async def read_capture_status(order_id: str) -> dict:
    return _unwrap(get_capture_status(order_id))


@payment_router.post("/gateway/configure", response_model=StatusResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> StatusResponse:
    """Toggle FakeGateway success/failure (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return StatusResponse(status="configured")


# ---------------------------------------------------------------------------
# Refund Router
# ---------------------------------------------------------------------------
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])


@refund_router.post("", status_code=201, response_model=RefundIdResponse)
async def request_refund(body: InitiateRefundRequest) -> RefundIdResponse:
    refund_id = _unwrap(initiate_refund(body.order_id, body.amount, body.reason, body.restore_stock))
    return RefundIdResponse(refund_id=refund_id)


@refund_router.post("/{refund_id}/process", response_model=StatusResponse)
async def settle_refund(refund_id: str, actor: Actor = Depends(current_actor)) -> StatusResponse:
    _unwrap(process_refund(refund_id, actor.actor_id))
    return StatusResponse(status="completed")


@refund_router.get("/{refund_id}")
async def read_refund(refund_id: str) -> dict:
    return _unwrap(get_refund_status(refund_id))


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("", status_code=201, response_model=StatusResponse)
async def create_stock_record(body: RegisterStockRequest) -> StatusResponse:
    _unwrap(register_stock(body.product_id, body.quantity, body.variant_id, body.low_stock_threshold))
    return StatusResponse(status="registered")


@inventory_router.post("/{product_id}/restock", response_model=StatusResponse)
async def add_stock(product_id: str, body: RestockRequest, variant_id: str | None = None) -> StatusResponse:
    _unwrap(restock(product_id, body.quantity, variant_id, body.reference))
    return StatusResponse(status="restocked")


@inventory_router.get("/{product_id}/availability", response_model=AvailabilityResponse)
async def read_availability(product_id: str, variant_id: str | None = None) -> AvailabilityResponse:
    return AvailabilityResponse(
        product_id=product_id,
        variant_id=variant_id,
        available=get_available_stock(product_id, variant_id),
    )


@inventory_router.post("/reservations", status_code=201, response_model=ReservationIdResponse)
async def hold_stock(body: ReserveStockRequest) -> ReservationIdResponse:
    reservation_id = _unwrap(
        reserve_stock(
            body.product_id,
            body.quantity,
            body.requester_id,
            variant_id=body.variant_id,
            ttl_minutes=body.ttl_minutes,
        )
    )
    return ReservationIdResponse(reservation_id=reservation_id)


@inventory_router.delete("/reservations/{reservation_id}", response_model=StatusResponse)
async def drop_hold(reservation_id: str) -> StatusResponse:
    _unwrap(release_reservation(reservation_id))
    return StatusResponse(status="released")


@inventory_router.post("/reservations/{reservation_id}/extend", response_model=StatusResponse)
async def extend_hold(reservation_id: str, body: ExtendReservationRequest) -> StatusResponse:
    _unwrap(extend_reservation(reservation_id, body.minutes))
    return StatusResponse(status="extended")


# ---------------------------------------------------------------------------
# Dispute Router
# ---------------------------------------------------------------------------
dispute_router = APIRouter(prefix="/disputes", tags=["disputes"])


@dispute_router.post("", status_code=201, response_model=DisputeIdResponse)
async def open_dispute(body: FileDisputeRequest, actor: Actor = Depends(current_actor)) -> DisputeIdResponse:
    """Customers open disputes against their own orders."""
    if actor.role != ActorRole.CUSTOMER:
        raise HTTPException(status_code=403, detail="Only customers can file disputes")
    dispute_id = _unwrap(
        file_dispute(body.order_id, actor.actor_id, body.type, body.description, body.order_item_ids)
    )
    return DisputeIdResponse(dispute_id=dispute_id)


@dispute_router.get("/{dispute_id}")
async def read_dispute(dispute_id: str, actor: Actor = Depends(current_actor)) -> dict:
    return _unwrap(get_dispute(dispute_id, actor))


@dispute_router.post("/{dispute_id}/messages", status_code=201, response_model=StatusResponse)
async def post_dispute_message(
    dispute_id: str,
    body: DisputeMessageRequest,
    actor: Actor = Depends(current_actor),
) -> StatusResponse:
    value = _unwrap(send_dispute_message(dispute_id, actor, body.message))
    return StatusResponse(status=value["status"])


@dispute_router.post("/{dispute_id}/escalate", response_model=StatusResponse)
async def escalate(dispute_id: str, actor: Actor = Depends(current_actor)) -> StatusResponse:
    value = _unwrap(escalate_dispute(dispute_id, actor))
    return StatusResponse(status=value["status"])


@dispute_router.post("/{dispute_id}/close", response_model=StatusResponse)
async def close(dispute_id: str, body: CloseDisputeRequest, actor: Actor = Depends(current_actor)) -> StatusResponse:
    value = _unwrap(close_dispute(dispute_id, actor, body.resolution))
    return StatusResponse(status=value["status"])


@dispute_router.post("/{dispute_id}/resolve")
async def resolve(dispute_id: str, body: ResolveDisputeRequest, actor: Actor = Depends(current_actor)) -> dict:
    return _unwrap(resolve_dispute(dispute_id, actor, body.status, body.resolution, body.refund_amount))


# ---------------------------------------------------------------------------
# Maintenance Router (scheduler-driven sweeps)
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_cron_secret)],
)


@maintenance_router.post("/expire-reservations", response_model=CountResponse)
async def run_reservation_expiry() -> CountResponse:
    return CountResponse(processed=expire_stale_reservations())


@maintenance_router.post("/escalate-disputes", response_model=CountResponse)
async def run_dispute_escalation() -> CountResponse:
    return CountResponse(processed=escalate_overdue_disputes())


@maintenance_router.post("/retry-refunds", response_model=RetryRefundsResponse)
async def run_refund_retries() -> RetryRefundsResponse:
    return RetryRefundsResponse(**retry_failed_refunds())
