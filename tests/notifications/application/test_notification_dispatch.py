"""Tests for post-commit notification dispatch."""

from settlement.disputes.handling import file_dispute
from settlement.notifications.dispatch import notify
from settlement.order.placement import place_order


class TestNotify:
    def test_sends_with_metadata(self, notifier):
        assert notify("cust-001", "Hello", "Body", order_id="ord-1") is True
        message = notifier.sent[0]
        assert message["recipient_id"] == "cust-001"
        assert message["metadata"] == {"order_id": "ord-1"}

    def test_missing_recipient_is_skipped(self, notifier):
        assert notify(None, "Hello", "Body") is False
        assert notifier.sent == []

    def test_failed_delivery_reported(self, notifier):
        notifier.configure(should_succeed=False)
        assert notify("cust-001", "Hello", "Body") is False

    def test_notifier_exception_is_swallowed(self, notifier):
        notifier.configure(raise_on_send=True)
        assert notify("cust-001", "Hello", "Body") is False


class TestNotifierFailureKeepsCommittedState:
    def test_dispute_is_filed_even_if_notifier_raises(self, notifier):
        notifier.configure(raise_on_send=True)
        order_id = place_order(
            "cust-001",
            [{"product_id": "prod-001", "vendor_id": "vendor-001", "quantity": 1, "unit_price": 10.0}],
        ).value

        result = file_dispute(order_id, "cust-001", "other", "Wrong colour")

        assert result.success
        assert notifier.sent == []
