"""Notifier port: abstract interface for outbound messages."""

from abc import ABC, abstractmethod


class NotifierPort(ABC):
    """Abstract interface for notification adapters."""

    @abstractmethod
    def send(self, recipient_id: str, subject: str, body: str, metadata: dict | None = None) -> dict:
        """Send a message to a customer, vendor or the admin team.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...
