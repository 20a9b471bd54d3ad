"""Pricing and discount arithmetic.

Pure functions with no domain context: checkout prices an order with
them before the Order aggregate is created, and promotions are checked
for activity here as well.

Discount stacking is a fold over an ordered list of ``Discount``
descriptors. Each step computes its amount against the running price,
not the original one, and the running price never drops below zero.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import reduce

from settlement.shared.clock import as_utc, utc_now
from settlement.shared.money import round_money, to_decimal


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


@dataclass(frozen=True)
class Discount:
    """One entry in a discount stack.

    ``value`` is a percentage (0-100) for ``PERCENTAGE`` or a currency
    amount for ``FIXED_AMOUNT``. ``max_discount`` caps the amount taken
    by this entry, whatever its kind.
    """

    kind: DiscountType
    value: float
    max_discount: float | None = None
    label: str | None = None

    @classmethod
    def percentage(cls, value: float, max_discount: float | None = None, label: str | None = None) -> "Discount":
        return cls(DiscountType.PERCENTAGE, value, max_discount, label)

    @classmethod
    def fixed(cls, value: float, max_discount: float | None = None, label: str | None = None) -> "Discount":
        return cls(DiscountType.FIXED_AMOUNT, value, max_discount, label)

    def amount_for(self, price: float) -> float:
        if self.kind is DiscountType.PERCENTAGE:
            return apply_percentage_discount(price, self.value, self.max_discount)
        amount = apply_fixed_discount(price, self.value)
        if self.max_discount is not None:
            amount = min(amount, self.max_discount)
        return amount


@dataclass(frozen=True)
class DiscountTier:
    """A quantity band. ``max_quantity`` of ``None`` means unbounded."""

    min_quantity: int
    max_quantity: int | None
    discount_type: DiscountType
    discount_value: float

    def contains(self, quantity: int) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity


@dataclass(frozen=True)
class AppliedDiscount:
    label: str | None
    kind: DiscountType
    amount: float


@dataclass(frozen=True)
class PricingResult:
    original_price: float
    discounted_price: float
    total_discount: float
    applied_discounts: tuple[AppliedDiscount, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PricedLine:
    unit_price: float
    quantity: int


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    discount_amount: float
    shipping_amount: float
    tax_amount: float
    total: float


# ---------------------------------------------------------------------------
# Single discounts
# ---------------------------------------------------------------------------
def apply_percentage_discount(price: float, percent: float, max_discount: float | None = None) -> float:
    """Amount taken off ``price`` by ``percent`` percent, capped at ``max_discount``."""
    amount = price * percent / 100
    if max_discount is not None and amount > max_discount:
        return max_discount
    return amount


def apply_fixed_discount(price: float, amount: float) -> float:
    """A fixed discount never exceeds the price it applies to."""
    return min(amount, price)


def calculate_tiered_discount(unit_price: float, quantity: int, tiers: Iterable[DiscountTier]) -> float:
    """Discount for ``quantity`` units from the first tier whose band contains it.

    Percentage tiers apply to the line total; fixed tiers are per unit.
    """
    tier = next((t for t in tiers if t.contains(quantity)), None)
    if tier is None:
        return 0.0

    if tier.discount_type is DiscountType.PERCENTAGE:
        return apply_percentage_discount(unit_price * quantity, tier.discount_value)
    return tier.discount_value * quantity


# ---------------------------------------------------------------------------
# Stacking
# ---------------------------------------------------------------------------
def _step(running: float, discount: Discount) -> float:
    return max(0.0, running - discount.amount_for(running))


def apply_discounts(price: float, discounts: Sequence[Discount]) -> float:
    """Final price after applying ``discounts`` in order, never below zero."""
    return max(0.0, reduce(_step, discounts, price))


def calculate_total_price(base_price: float, quantity: int, discounts: Sequence[Discount] = ()) -> PricingResult:
    """Line price for ``quantity`` units with a stack of discounts, itemised."""
    original = base_price * quantity
    running = original
    applied = []
    for discount in discounts:
        amount = min(discount.amount_for(running), running)
        running = max(0.0, running - amount)
        applied.append(AppliedDiscount(label=discount.label, kind=discount.kind, amount=amount))

    return PricingResult(
        original_price=original,
        discounted_price=running,
        total_discount=original - running,
        applied_discounts=tuple(applied),
    )


def calculate_cart_subtotal(lines: Iterable[PricedLine]) -> float:
    return sum(line.unit_price * line.quantity for line in lines)


def price_order(
    lines: Iterable[PricedLine],
    discounts: Sequence[Discount] = (),
    shipping_amount: float = 0.0,
    tax_amount: float = 0.0,
) -> OrderTotals:
    """Order-level totals where ``total = subtotal - discount + shipping + tax``.

    Discounts apply to the subtotal only, so the total can never go
    negative as long as shipping and tax are non-negative.
    """
    if shipping_amount < 0 or tax_amount < 0:
        raise ValueError("Shipping and tax amounts cannot be negative")

    subtotal = round_money(calculate_cart_subtotal(lines))
    discounted = apply_discounts(subtotal, discounts)
    discount_amount = round_money(subtotal - discounted)
    shipping_amount = round_money(shipping_amount)
    tax_amount = round_money(tax_amount)
    total = float(
        to_decimal(subtotal)
        - to_decimal(discount_amount)
        + to_decimal(shipping_amount)
        + to_decimal(tax_amount)
    )

    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        shipping_amount=shipping_amount,
        tax_amount=tax_amount,
        total=total,
    )


# ---------------------------------------------------------------------------
# Promotion windows
# ---------------------------------------------------------------------------
def is_flash_sale_active(
    starts_at: datetime,
    ends_at: datetime,
    stock_limit: int | None = None,
    stock_sold: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Active inside ``[starts_at, ends_at]`` (both inclusive) while stock remains."""
    now = as_utc(now) or utc_now()
    if not (as_utc(starts_at) <= now <= as_utc(ends_at)):
        return False
    if stock_limit is not None:
        return (stock_sold or 0) < stock_limit
    return True


def is_promotion_active(
    starts_at: datetime,
    ends_at: datetime | None,
    is_active: bool,
    now: datetime | None = None,
) -> bool:
    if not is_active:
        return False
    now = as_utc(now) or utc_now()
    if now < as_utc(starts_at):
        return False
    return ends_at is None or now <= as_utc(ends_at)
