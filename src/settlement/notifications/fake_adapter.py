"""Fake notifier: records messages in memory for test assertions."""

from uuid import uuid4

from settlement.notifications.port import NotifierPort


class FakeNotifier(NotifierPort):
    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Delivery failed"
        self.raise_on_send = False

    def configure(self, should_succeed: bool = True, failure_reason: str = "Delivery failed", raise_on_send=False):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.raise_on_send = raise_on_send

    def send(self, recipient_id: str, subject: str, body: str, metadata: dict | None = None) -> dict:
        if self.raise_on_send:
            raise ConnectionError(self.failure_reason)
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"msg-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "recipient_id": recipient_id,
                "subject": subject,
                "body": body,
                "metadata": metadata or {},
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def subjects_for(self, recipient_id: str) -> list[str]:
        return [m["subject"] for m in self.sent if m["recipient_id"] == recipient_id]
