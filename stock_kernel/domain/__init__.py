"""
Pure domain layer.

Value objects and policies with no dependency on the ORM or the database:
the injectable clock, the access policy and the notification seam.
"""

from stock_kernel.domain.access import (
    ROLE_CAPABILITIES,
    AccessControl,
    AccessDecision,
    AccessLevel,
    AccessPolicy,
    Actor,
    Capability,
    Role,
)
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.notifications import (
    LoggingNotifier,
    NotificationEvent,
    NotificationType,
    Notifier,
    dispatch_notifications,
)

__all__ = [
    "AccessControl",
    "AccessDecision",
    "AccessLevel",
    "AccessPolicy",
    "Actor",
    "Capability",
    "Clock",
    "DeterministicClock",
    "LoggingNotifier",
    "NotificationEvent",
    "NotificationType",
    "Notifier",
    "ROLE_CAPABILITIES",
    "Role",
    "SystemClock",
    "dispatch_notifications",
]
