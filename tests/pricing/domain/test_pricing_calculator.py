"""Tests for discount, stacking and order total calculations."""

from datetime import datetime, timedelta, timezone

import pytest
from settlement.pricing.calculator import (
    Discount,
    DiscountTier,
    DiscountType,
    PricedLine,
    apply_discounts,
    apply_fixed_discount,
    apply_percentage_discount,
    calculate_cart_subtotal,
    calculate_tiered_discount,
    calculate_total_price,
    is_flash_sale_active,
    is_promotion_active,
    price_order,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestPercentageDiscount:
    def test_plain_percentage(self):
        assert apply_percentage_discount(200.0, 10) == pytest.approx(20.0)

    def test_capped_at_max_discount(self):
        assert apply_percentage_discount(100.0, 50, max_discount=20.0) == 20.0

    def test_cap_above_amount_has_no_effect(self):
        assert apply_percentage_discount(100.0, 10, max_discount=50.0) == pytest.approx(10.0)

    def test_zero_percent(self):
        assert apply_percentage_discount(100.0, 0) == 0


class TestFixedDiscount:
    def test_fixed_amount(self):
        assert apply_fixed_discount(100.0, 15.0) == 15.0

    def test_never_exceeds_price(self):
        assert apply_fixed_discount(10.0, 25.0) == 10.0


class TestTieredDiscount:
    TIERS = [
        DiscountTier(1, 9, DiscountType.PERCENTAGE, 0),
        DiscountTier(10, 49, DiscountType.PERCENTAGE, 10),
        DiscountTier(50, None, DiscountType.FIXED_AMOUNT, 2),
    ]

    def test_first_matching_band(self):
        assert calculate_tiered_discount(10.0, 20, self.TIERS) == pytest.approx(20.0)

    def test_unbounded_band_is_per_unit(self):
        assert calculate_tiered_discount(10.0, 60, self.TIERS) == pytest.approx(120.0)

    def test_no_matching_band(self):
        assert calculate_tiered_discount(10.0, 0, self.TIERS) == 0.0

    def test_band_bounds_are_inclusive(self):
        tier = DiscountTier(10, 49, DiscountType.PERCENTAGE, 10)
        assert tier.contains(10)
        assert tier.contains(49)
        assert not tier.contains(50)


class TestStacking:
    def test_discounts_apply_in_order(self):
        discounts = [Discount.percentage(10), Discount.fixed(5)]
        assert apply_discounts(100.0, discounts) == pytest.approx(85.0)

    def test_order_matters(self):
        discounts = [Discount.fixed(5), Discount.percentage(10)]
        assert apply_discounts(100.0, discounts) == pytest.approx(85.5)

    def test_never_below_zero(self):
        assert apply_discounts(10.0, [Discount.fixed(8), Discount.fixed(8)]) == 0.0

    def test_no_discounts(self):
        assert apply_discounts(42.0, []) == 42.0

    def test_fixed_with_cap(self):
        assert Discount.fixed(30, max_discount=10).amount_for(100.0) == 10


class TestTotalPrice:
    def test_itemises_each_discount(self):
        result = calculate_total_price(
            25.0, 4, [Discount.percentage(10, label="spring"), Discount.fixed(10, label="coupon")]
        )
        assert result.original_price == 100.0
        assert result.discounted_price == pytest.approx(80.0)
        assert result.total_discount == pytest.approx(20.0)
        assert [d.label for d in result.applied_discounts] == ["spring", "coupon"]
        assert result.applied_discounts[0].amount == pytest.approx(10.0)

    def test_cart_subtotal(self):
        lines = [PricedLine(10.0, 2), PricedLine(5.5, 4)]
        assert calculate_cart_subtotal(lines) == pytest.approx(42.0)


class TestPriceOrder:
    def test_total_balances(self):
        totals = price_order(
            [PricedLine(50.0, 2)],
            [Discount.percentage(10)],
            shipping_amount=5.0,
            tax_amount=8.0,
        )
        assert totals.subtotal == 100.0
        assert totals.discount_amount == 10.0
        assert totals.total == pytest.approx(103.0)
        assert totals.total == pytest.approx(
            totals.subtotal - totals.discount_amount + totals.shipping_amount + totals.tax_amount
        )

    def test_rounds_to_cents(self):
        totals = price_order([PricedLine(0.333, 3)], [Discount.percentage(33.3)])
        assert totals.subtotal == 1.0
        assert totals.discount_amount == 0.33
        assert totals.total == 0.67

    def test_discount_cannot_push_total_negative(self):
        totals = price_order([PricedLine(10.0, 1)], [Discount.fixed(50)], shipping_amount=3.0)
        assert totals.discount_amount == 10.0
        assert totals.total == 3.0

    def test_negative_shipping_rejected(self):
        with pytest.raises(ValueError):
            price_order([PricedLine(10.0, 1)], shipping_amount=-1.0)


class TestPromotionWindows:
    def test_flash_sale_inside_window(self):
        assert is_flash_sale_active(NOW - timedelta(hours=1), NOW + timedelta(hours=1), now=NOW)

    def test_flash_sale_bounds_inclusive(self):
        assert is_flash_sale_active(NOW, NOW, now=NOW)

    def test_flash_sale_sold_out(self):
        assert not is_flash_sale_active(
            NOW - timedelta(hours=1), NOW + timedelta(hours=1), stock_limit=10, stock_sold=10, now=NOW
        )

    def test_flash_sale_outside_window(self):
        assert not is_flash_sale_active(NOW + timedelta(minutes=1), NOW + timedelta(hours=1), now=NOW)

    def test_promotion_without_end(self):
        assert is_promotion_active(NOW - timedelta(days=1), None, True, now=NOW)

    def test_inactive_promotion(self):
        assert not is_promotion_active(NOW - timedelta(days=1), None, False, now=NOW)

    def test_promotion_not_started(self):
        assert not is_promotion_active(NOW + timedelta(days=1), None, True, now=NOW)

    def test_naive_datetimes_are_treated_as_utc(self):
        naive_now = NOW.replace(tzinfo=None)
        assert is_promotion_active(naive_now - timedelta(days=1), naive_now + timedelta(days=1), True, now=NOW)
