"""
Notification seam (``stock_kernel.domain.notifications``).

Responsibility:
    Hands fire-and-forget events (over-delivery approval requested,
    approved or rejected; purchase order auto-closed) to an external
    notifier.  Delivery of email or messages is the collaborator's job.

Invariants enforced:
    - Dispatch happens after the posting transaction commits.
    - A notifier failure is logged as ``notification_failed`` and never
      propagates, so it can never roll back or fail a posting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from stock_kernel.logging_config import get_logger

logger = get_logger("domain.notifications")


class NotificationType(str, Enum):
    OVER_DELIVERY_APPROVAL_REQUESTED = "over_delivery_approval_requested"
    OVER_DELIVERY_APPROVED = "over_delivery_approved"
    OVER_DELIVERY_REJECTED = "over_delivery_rejected"
    PO_AUTO_CLOSED = "po_auto_closed"


@dataclass(frozen=True)
class NotificationEvent:
    """Payload handed to the notifier."""

    type: NotificationType
    entity_id: UUID
    location_id: UUID | None = None
    actor_id: UUID | None = None
    data: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    """External notification collaborator."""

    def notify(self, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the structured log."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "notification_type": event.type.value,
                "entity_id": str(event.entity_id),
                "location_id": str(event.location_id) if event.location_id else None,
            },
        )


def dispatch_notifications(notifier: Notifier, events: list[NotificationEvent]) -> int:
    """Deliver events one by one; return how many were delivered.

    Each failure is logged with its traceback and the remaining events are
    still attempted.
    """
    delivered = 0
    for event in events:
        try:
            notifier.notify(event)
            delivered += 1
        except Exception:
            logger.warning(
                "notification_failed",
                extra={
                    "notification_type": event.type.value,
                    "entity_id": str(event.entity_id),
                },
                exc_info=True,
            )
    return delivered
