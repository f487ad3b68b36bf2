"""
Access control domain types (``stock_kernel.domain.access``).

Responsibility
--------------
Explicit authorization decisions for the posting services.  Who may post
at a location, approve an over-delivery, approve a transfer, or edit
someone else's draft is answered by an ``AccessPolicy`` returning an
``AccessDecision``.  Services never compare role strings inline.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and policy.  ZERO I/O.
The identity of the actor, their role and location assignments are
supplied by the caller (authentication is an external collaborator).

Invariants enforced
-------------------
* Capabilities are granted by role through ``ROLE_CAPABILITIES``; the
  table is the single source of truth for privileged actions.
* Location-scoped actions require a location assignment unless the role
  holds ``Capability.ALL_LOCATIONS``.
* ``VIEW`` assignments never allow posting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from uuid import UUID

from stock_kernel.exceptions import (
    InsufficientPermissionsError,
    LocationAccessDeniedError,
)


class Role(str, Enum):
    """Actor roles."""

    OPERATOR = "OPERATOR"
    SUPERVISOR = "SUPERVISOR"
    ADMIN = "ADMIN"


class AccessLevel(str, Enum):
    """Per-location assignment level."""

    VIEW = "VIEW"
    POST = "POST"
    MANAGE = "MANAGE"


class Capability(str, Enum):
    """Privileged actions granted by role."""

    ALL_LOCATIONS = "all_locations"
    APPROVE_OVER_DELIVERY = "approve_over_delivery"
    APPROVE_TRANSFER = "approve_transfer"
    APPROVE_PROCUREMENT = "approve_procurement"
    EDIT_ANY_DRAFT = "edit_any_draft"
    MANAGE_PERIODS = "manage_periods"
    CONFIRM_RECONCILIATION = "confirm_reconciliation"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.OPERATOR: frozenset(),
    Role.SUPERVISOR: frozenset({
        Capability.ALL_LOCATIONS,
        Capability.APPROVE_OVER_DELIVERY,
        Capability.APPROVE_TRANSFER,
        Capability.APPROVE_PROCUREMENT,
        Capability.EDIT_ANY_DRAFT,
        Capability.CONFIRM_RECONCILIATION,
    }),
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    """The authenticated user acting on the ledger."""

    user_id: UUID
    role: Role = Role.OPERATOR
    locations: dict[UUID, AccessLevel] = field(default_factory=dict)

    def has(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES[self.role]


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> AccessDecision:
        return cls(False, reason)


class AccessControl(Protocol):
    """Collaborator answering location access questions."""

    def has_location_access(
        self, actor: Actor, location_id: UUID, *, for_posting: bool = True,
    ) -> bool: ...


class AccessPolicy:
    """
    Role and assignment based authorization.

    Contract:
        Every method is a pure function of the actor and its arguments.
        ``check_*`` methods return an ``AccessDecision``; ``require_*``
        methods raise the matching typed error when denied.
    """

    def has_location_access(
        self, actor: Actor, location_id: UUID, *, for_posting: bool = True,
    ) -> bool:
        return self.check_location(actor, location_id, for_posting=for_posting).allowed

    def check_location(
        self, actor: Actor, location_id: UUID, *, for_posting: bool = True,
    ) -> AccessDecision:
        if actor.has(Capability.ALL_LOCATIONS):
            return AccessDecision.allow()
        level = actor.locations.get(location_id)
        if level is None:
            return AccessDecision.deny("no assignment to location")
        if for_posting and level == AccessLevel.VIEW:
            return AccessDecision.deny("view-only assignment")
        return AccessDecision.allow()

    def check_capability(self, actor: Actor, capability: Capability) -> AccessDecision:
        if actor.has(capability):
            return AccessDecision.allow()
        return AccessDecision.deny(f"role {actor.role.value} lacks {capability.value}")

    def check_draft_edit(self, actor: Actor, creator_id: UUID) -> AccessDecision:
        if actor.user_id == creator_id:
            return AccessDecision.allow()
        return self.check_capability(actor, Capability.EDIT_ANY_DRAFT)

    def can_approve_over_delivery(self, actor: Actor) -> bool:
        return actor.has(Capability.APPROVE_OVER_DELIVERY)

    def require_location(
        self, actor: Actor, location_id: UUID, *, for_posting: bool = True,
    ) -> None:
        decision = self.check_location(actor, location_id, for_posting=for_posting)
        if not decision.allowed:
            raise LocationAccessDeniedError(actor.user_id, location_id)

    def require_capability(self, actor: Actor, capability: Capability) -> None:
        decision = self.check_capability(actor, capability)
        if not decision.allowed:
            raise InsufficientPermissionsError(
                actor.user_id, capability.value, decision.reason,
            )
