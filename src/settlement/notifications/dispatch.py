"""Fire-and-forget notification dispatch.

Called only after a command has committed. A failing notifier is logged
and swallowed here so it can never undo the state change that triggered it.
"""

import structlog

from settlement.notifications import get_notifier

logger = structlog.get_logger(__name__)

ADMIN_RECIPIENT = "admin"


def notify(recipient_id: str | None, subject: str, body: str, **metadata) -> bool:
    """Send one message. Returns True when the notifier reported it sent."""
    if not recipient_id:
        return False

    try:
        result = get_notifier().send(str(recipient_id), subject, body, metadata=metadata)
    except Exception as exc:
        logger.error(
            "Notification dispatch failed",
            recipient_id=str(recipient_id),
            subject=subject,
            error=str(exc),
        )
        return False

    if result.get("status") != "sent":
        logger.warning(
            "Notification not delivered",
            recipient_id=str(recipient_id),
            subject=subject,
            error=result.get("error"),
        )
        return False

    logger.debug("Notification sent", recipient_id=str(recipient_id), subject=subject)
    return True
