"""SLA sweep: escalate disputes the vendor has left unanswered.

Run by an external scheduler (``manage.py escalate-disputes`` or the
maintenance endpoint). Each dispute is escalated in its own Unit of Work, so
one bad record cannot block the rest of the sweep.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from settlement import config
from settlement.disputes.dispute import Dispute, DisputeStatus
from settlement.domain import settlement
from settlement.notifications.dispatch import ADMIN_RECIPIENT, notify
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import execute
from settlement.shared.locks import dispute_locks
from settlement.shared.queries import fetch_all

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Dispute")
class AutoEscalateDispute:
    dispute_id = Identifier(required=True)
    as_of = DateTime(required=True)
    sla_hours = Integer(required=True, min_value=0)


@settlement.command_handler(part_of=Dispute)
class DisputeEscalationHandler:
    @handle(AutoEscalateDispute)
    def auto_escalate(self, command):
        repo = current_domain.repository_for(Dispute)
        dispute = repo.get(command.dispute_id)
        escalated = dispute.auto_escalate(command.as_of, command.sla_hours)
        if escalated:
            repo.add(dispute)
        return escalated


def escalate_overdue_disputes(now: datetime | None = None, sla_hours: int | None = None) -> int:
    """Escalate every overdue dispute. Returns how many were escalated."""
    now = as_utc(now) or utc_now()
    sla_hours = config.dispute_sla_hours() if sla_hours is None else sla_hours

    waiting = fetch_all(Dispute, status=DisputeStatus.PENDING_VENDOR_RESPONSE.value)
    escalated = 0
    for dispute in waiting:
        if not dispute.is_overdue(now, sla_hours):
            continue
        with dispute_locks.hold(str(dispute.id)):
            result = execute(AutoEscalateDispute, dispute_id=str(dispute.id), as_of=now, sla_hours=sla_hours)
        if not result.success:
            logger.warning(
                "Dispute auto-escalation failed",
                dispute_id=str(dispute.id),
                error=result.error.value,
                reason=result.message,
            )
            continue
        if result.value:
            escalated += 1
            notify(
                ADMIN_RECIPIENT,
                "Dispute auto-escalated",
                f"Dispute {dispute.id} was escalated after {sla_hours} hours without a vendor response.",
                dispute_id=str(dispute.id),
            )

    logger.info("Dispute escalation sweep complete", escalated=escalated, checked=len(waiting))
    return escalated
