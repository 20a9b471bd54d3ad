"""Dispute aggregate (CQRS) and the actors allowed to act on it.

State Machine:
    PENDING_VENDOR_RESPONSE → OPEN                  (vendor replies)
    PENDING_VENDOR_RESPONSE, OPEN → PENDING_ADMIN_REVIEW  (escalation, manual or SLA sweep)
    any non-closed state → RESOLVED | CLOSED        (admin decision, or customer closes)
    RESOLVED → CLOSED
    CLOSED is terminal; no messages can be appended once closed.

Only the filing customer, the vendor named on the dispute, or an admin may
read or touch a dispute. The SLA sweep acts as the ``system`` actor.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from protean.fields import Boolean, DateTime, HasMany, Identifier, String, Text

from settlement.disputes.events import (
    DisputeFiled,
    DisputeMessagePosted,
    DisputeResolved,
    DisputeStatusChanged,
)
from settlement.domain import settlement
from settlement.shared.clock import as_utc, utc_now
from settlement.shared.errors import ErrorKind, LifecycleError

SYSTEM_ACTOR_ID = "system"


class DisputeStatus(Enum):
    OPEN = "open"
    PENDING_VENDOR_RESPONSE = "pending_vendor_response"
    PENDING_ADMIN_REVIEW = "pending_admin_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeType(Enum):
    NOT_RECEIVED = "not_received"
    NOT_AS_DESCRIBED = "not_as_described"
    DAMAGED = "damaged"
    WRONG_ITEM = "wrong_item"
    REFUND_ISSUE = "refund_issue"
    OTHER = "other"


class ActorRole(Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: ActorRole

    @classmethod
    def of(cls, actor_id: str, role: "ActorRole | str") -> "Actor":
        try:
            return cls(str(actor_id), ActorRole(role))
        except ValueError as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Unknown actor role: {role}", "actor_role") from exc

    @classmethod
    def system(cls) -> "Actor":
        return cls(SYSTEM_ACTOR_ID, ActorRole.SYSTEM)

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


_VALID_TRANSITIONS = {
    DisputeStatus.PENDING_VENDOR_RESPONSE: {
        DisputeStatus.OPEN,
        DisputeStatus.PENDING_ADMIN_REVIEW,
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    },
    DisputeStatus.OPEN: {
        DisputeStatus.PENDING_ADMIN_REVIEW,
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    },
    DisputeStatus.PENDING_ADMIN_REVIEW: {DisputeStatus.RESOLVED, DisputeStatus.CLOSED},
    DisputeStatus.RESOLVED: {DisputeStatus.CLOSED},
    DisputeStatus.CLOSED: set(),  # Terminal
}

ACTIVE_STATUSES = frozenset(
    {
        DisputeStatus.OPEN,
        DisputeStatus.PENDING_VENDOR_RESPONSE,
        DisputeStatus.PENDING_ADMIN_REVIEW,
    }
)


@settlement.entity(part_of="Dispute")
class DisputeMessage:
    sender_id = String(required=True, max_length=255)
    message = Text(required=True)
    is_admin = Boolean(default=False)
    created_at = DateTime(required=True)


@settlement.aggregate
class Dispute:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    dispute_type = String(required=True, choices=DisputeType)
    status = String(choices=DisputeStatus, default=DisputeStatus.PENDING_VENDOR_RESPONSE.value)
    description = Text(required=True)
    order_item_ids = Text()  # JSON list
    resolution = String(max_length=2000)
    resolved_by = String(max_length=255)
    resolved_at = DateTime()
    escalated_at = DateTime()
    messages = HasMany(DisputeMessage)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def file(
        cls,
        order_id: str,
        customer_id: str,
        vendor_id: str,
        dispute_type: str,
        description: str,
        order_item_ids: list[str] | None = None,
        now: datetime | None = None,
    ):
        try:
            dispute_type = DisputeType(dispute_type)
        except ValueError as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Unknown dispute type: {dispute_type}", "type") from exc
        if not description or not description.strip():
            raise LifecycleError(ErrorKind.INVALID_INPUT, "A description is required", "description")

        now = as_utc(now) or utc_now()
        dispute = cls(
            order_id=str(order_id),
            customer_id=str(customer_id),
            vendor_id=str(vendor_id),
            dispute_type=dispute_type.value,
            status=DisputeStatus.PENDING_VENDOR_RESPONSE.value,
            description=description.strip(),
            order_item_ids=json.dumps(list(order_item_ids or [])),
            created_at=now,
            updated_at=now,
        )
        dispute.raise_(
            DisputeFiled(
                dispute_id=str(dispute.id),
                order_id=str(order_id),
                customer_id=str(customer_id),
                vendor_id=str(vendor_id),
                dispute_type=dispute_type.value,
                filed_at=now,
            )
        )
        return dispute

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def dispute_status(self) -> DisputeStatus:
        return DisputeStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.dispute_status in ACTIVE_STATUSES

    def ordered_messages(self) -> list[DisputeMessage]:
        return sorted(self.messages or [], key=lambda m: as_utc(m.created_at))

    def assert_access(self, actor: Actor) -> None:
        if actor.is_staff:
            return
        if actor.role == ActorRole.CUSTOMER and actor.actor_id == str(self.customer_id):
            return
        if actor.role == ActorRole.VENDOR and actor.actor_id == str(self.vendor_id):
            return
        raise LifecycleError(ErrorKind.FORBIDDEN, "You do not have access to this dispute")

    def _assert_can_transition(self, target: DisputeStatus) -> None:
        current = self.dispute_status
        if target not in _VALID_TRANSITIONS[current]:
            raise LifecycleError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot transition dispute from {current.value} to {target.value}",
                "status",
                current=current.value,
                requested=target.value,
            )

    def _move_to(self, target: DisputeStatus, actor: Actor, now: datetime, automatic: bool = False) -> None:
        self._assert_can_transition(target)
        previous = self.dispute_status
        self.status = target.value
        self.updated_at = now
        if target == DisputeStatus.PENDING_ADMIN_REVIEW:
            self.escalated_at = now
        self.raise_(
            DisputeStatusChanged(
                dispute_id=str(self.id),
                order_id=str(self.order_id),
                previous_status=previous.value,
                new_status=target.value,
                actor_id=actor.actor_id,
                automatic=automatic,
                changed_at=now,
            )
        )

    def _append(self, sender_id: str, text: str, is_admin: bool, now: datetime) -> None:
        self.add_messages(DisputeMessage(sender_id=sender_id, message=text, is_admin=is_admin, created_at=now))
        self.updated_at = now
        self.raise_(
            DisputeMessagePosted(dispute_id=str(self.id), sender_id=sender_id, is_admin=is_admin, posted_at=now)
        )

    # -------------------------------------------------------------------
    # Conversation
    # -------------------------------------------------------------------
    def post_message(self, actor: Actor, text: str) -> None:
        """Append a message. A vendor reply to a waiting dispute reopens the conversation."""
        self.assert_access(actor)
        if self.dispute_status == DisputeStatus.CLOSED:
            raise LifecycleError(ErrorKind.DISPUTE_CLOSED, "Cannot send messages to a closed dispute")
        if not text or not text.strip():
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Message is required", "message")

        now = utc_now()
        self._append(actor.actor_id, text.strip(), actor.is_staff, now)
        if actor.role == ActorRole.VENDOR and self.dispute_status == DisputeStatus.PENDING_VENDOR_RESPONSE:
            self._move_to(DisputeStatus.OPEN, actor, now)

    # -------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------
    def escalate(self, actor: Actor) -> None:
        self.assert_access(actor)
        self._move_to(DisputeStatus.PENDING_ADMIN_REVIEW, actor, utc_now())

    def close(self, actor: Actor, resolution: str | None = None) -> None:
        """Customers may close their own dispute at any time; admins may close any."""
        self.assert_access(actor)
        if actor.role not in (ActorRole.CUSTOMER, ActorRole.ADMIN):
            raise LifecycleError(ErrorKind.FORBIDDEN, "Only the customer or an admin can close a dispute")

        now = utc_now()
        self._move_to(DisputeStatus.CLOSED, actor, now)
        if actor.role == ActorRole.CUSTOMER:
            self.resolution = resolution or "Closed by customer"
        else:
            self.resolution = resolution or self.resolution
            self.resolved_by = actor.actor_id
            self.resolved_at = now

    def resolve(self, actor: Actor, status: str, resolution: str, refund_amount: float | None = None) -> None:
        if actor.role != ActorRole.ADMIN:
            raise LifecycleError(ErrorKind.FORBIDDEN, "Only an admin can resolve a dispute")
        try:
            target = DisputeStatus(status)
        except ValueError as exc:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Unknown dispute status: {status}", "status") from exc
        if target not in (DisputeStatus.RESOLVED, DisputeStatus.CLOSED):
            raise LifecycleError(ErrorKind.INVALID_INPUT, "Resolution status must be resolved or closed", "status")
        if not resolution or not resolution.strip():
            raise LifecycleError(ErrorKind.INVALID_INPUT, "A resolution is required", "resolution")

        now = utc_now()
        self._move_to(target, actor, now)
        self.resolution = resolution.strip()
        self.resolved_by = actor.actor_id
        self.resolved_at = now
        self.raise_(
            DisputeResolved(
                dispute_id=str(self.id),
                order_id=str(self.order_id),
                status=target.value,
                resolution=self.resolution,
                resolved_by=actor.actor_id,
                refund_amount=refund_amount,
                resolved_at=now,
            )
        )

    def is_overdue(self, now: datetime, sla_hours: int) -> bool:
        if self.dispute_status != DisputeStatus.PENDING_VENDOR_RESPONSE:
            return False
        return as_utc(self.created_at) + timedelta(hours=sla_hours) <= as_utc(now)

    def auto_escalate(self, now: datetime, sla_hours: int) -> bool:
        """Escalate a dispute the vendor has not answered within the SLA.

        Returns False (and changes nothing) when the dispute is not overdue,
        which makes repeated sweeps harmless.
        """
        now = as_utc(now)
        if not self.is_overdue(now, sla_hours):
            return False

        self._move_to(DisputeStatus.PENDING_ADMIN_REVIEW, Actor.system(), now, automatic=True)
        self._append(
            SYSTEM_ACTOR_ID,
            f"This dispute was automatically escalated to admin review because the vendor "
            f"did not respond within {sla_hours} hours.",
            True,
            now,
        )
        return True
