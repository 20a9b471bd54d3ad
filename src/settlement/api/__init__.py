"""Settlement API package."""

from settlement.api.routes import (
    dispute_router,
    inventory_router,
    maintenance_router,
    order_router,
    payment_router,
    refund_router,
)

__all__ = [
    "dispute_router",
    "inventory_router",
    "maintenance_router",
    "order_router",
    "payment_router",
    "refund_router",
]
