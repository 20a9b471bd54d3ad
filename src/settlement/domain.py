"""Settlement bounded context: order lifecycle, payments and disputes.

Owns the order status state machine, the inventory reservation ledger,
payment capture and refunds, and the dispute workflow layered on top of
settled orders. Pricing is a set of pure functions used at checkout.
"""

import structlog
from protean.domain import Domain

settlement = Domain(name="settlement")

logger = structlog.get_logger(__name__)
