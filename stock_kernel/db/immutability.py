"""
ORM-level immutability enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted stock documents are the evidence the reconciliation is built from.
A posted delivery, an issue, a completed or rejected transfer and a
confirmed reconciliation must never change afterwards.  The services never
offer an update path for them; this module makes sure no other Python code
path can either.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database:

    session.flush()
         |
         v
    [before_update] --> _guard_update() --> ImmutabilityViolationError
    [before_delete] --> _guard_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Frozen when
--------------------|-------------------------------------------------
Delivery            | status was POSTED before this flush
DeliveryLine        | parent delivery was POSTED before this flush
Issue / IssueLine   | always (issues are created posted)
Transfer            | status was COMPLETED or REJECTED before this flush
TransferLine        | parent transfer frozen
Reconciliation      | status was CONFIRMED before this flush

"Before this flush" matters: the flush that moves a delivery from DRAFT to
POSTED also writes its lines' period prices and variances, and must pass.

Usage:
    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _status_value(status) -> str:
    return getattr(status, "value", status)


def was_frozen(target, frozen_statuses: frozenset[str]) -> bool:
    """True when ``target`` already carried a frozen status before the flush.

    A status changing TO a frozen value is the posting itself and is allowed.
    """
    history = get_history(target, "status")
    if history.deleted:
        return _status_value(history.deleted[0]) in frozen_statuses
    if not history.added:
        return _status_value(target.status) in frozen_statuses
    return False


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _frozen_header_guards(entity_type: str, frozen_statuses: frozenset[str]):
    """Build (before_update, before_delete) listeners for a document header."""

    def _check_update(mapper, connection, target):
        if not was_frozen(target, frozen_statuses):
            return
        for field in _changed_fields(target):
            _block(
                entity_type, target, "UPDATE",
                f"Cannot modify field '{field}' on {entity_type.lower()} "
                f"with status {_status_value(target.status)}",
                field,
            )

    def _check_delete(mapper, connection, target):
        if was_frozen(target, frozen_statuses) or _status_value(target.status) in frozen_statuses:
            _block(
                entity_type, target, "DELETE",
                f"{entity_type} with status {_status_value(target.status)} cannot be deleted",
            )

    return _check_update, _check_delete


def _frozen_line_guards(entity_type: str, parent_attr: str, frozen_statuses: frozenset[str]):
    """Build listeners for lines whose mutability follows their parent."""

    def _parent_frozen(target) -> bool:
        parent = getattr(target, parent_attr)
        return parent is not None and was_frozen(parent, frozen_statuses)

    def _check_update(mapper, connection, target):
        if _parent_frozen(target):
            _block(entity_type, target, "UPDATE",
                   f"{entity_type} cannot be modified once its document is final")

    def _check_delete(mapper, connection, target):
        if _parent_frozen(target):
            _block(entity_type, target, "DELETE",
                   f"{entity_type} cannot be deleted once its document is final")

    return _check_update, _check_delete


def _always_frozen_guards(entity_type: str):
    def _check_update(mapper, connection, target):
        fields = _changed_fields(target)
        if fields:
            _block(entity_type, target, "UPDATE",
                   f"{entity_type} records are immutable", fields[0])

    def _check_delete(mapper, connection, target):
        _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    return _check_update, _check_delete


_registered: list[tuple[type, str, object]] = []


def _listen(target: type, event_name: str, fn) -> None:
    event.listen(target, event_name, fn)
    _registered.append((target, event_name, fn))


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners.

    Idempotent: a second call while registered does nothing.
    """
    if _registered:
        return

    from stock_modules.deliveries.orm import DeliveryLineModel, DeliveryModel
    from stock_modules.issues.orm import IssueLineModel, IssueModel
    from stock_modules.reconciliation.orm import ReconciliationModel
    from stock_modules.transfers.orm import TransferLineModel, TransferModel

    posted = frozenset({"POSTED"})
    final_transfer = frozenset({"COMPLETED", "REJECTED"})
    confirmed = frozenset({"CONFIRMED"})

    rules = [
        (DeliveryModel, _frozen_header_guards("Delivery", posted)),
        (DeliveryLineModel, _frozen_line_guards("DeliveryLine", "delivery", posted)),
        (IssueModel, _always_frozen_guards("Issue")),
        (IssueLineModel, _always_frozen_guards("IssueLine")),
        (TransferModel, _frozen_header_guards("Transfer", final_transfer)),
        (TransferLineModel, _frozen_line_guards("TransferLine", "transfer", final_transfer)),
        (ReconciliationModel, _frozen_header_guards("Reconciliation", confirmed)),
    ]
    for model, (on_update, on_delete) in rules:
        _listen(model, "before_update", on_update)
        _listen(model, "before_delete", on_delete)

    logger.debug("immutability_listeners_registered", extra={"count": len(_registered)})


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove a listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove all immutability listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    while _registered:
        target, event_name, fn = _registered.pop()
        _safe_remove_listener(target, event_name, fn)
