"""Notifier registry.

The fake adapter is the default; an email or chat adapter can be set at
startup with ``set_notifier``.
"""

from settlement.notifications.fake_adapter import FakeNotifier
from settlement.notifications.port import NotifierPort

_current_notifier: NotifierPort | None = None


def get_notifier() -> NotifierPort:
    global _current_notifier
    if _current_notifier is None:
        _current_notifier = FakeNotifier()
    return _current_notifier


def set_notifier(notifier: NotifierPort) -> None:
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None
