"""
Typed Exception Hierarchy for the Stock Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure a posting can hit has a stable machine-readable code, a
typed class to catch, and structured attributes that survive logging and
serialization.  Callers branch on the type or the code, never on message
wording.

    try:
        poster.save_delivery(request, actor)
    except InsufficientStockError as e:
        show_shortfalls(e.shortfalls)
    except PeriodError as e:
        api_response(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- PreconditionError            detected before any mutation
    |   +-- ValidationError
    |   +-- NotFoundError
    |   |   +-- LocationNotFoundError, SupplierNotFoundError,
    |   |       PurchaseOrderNotFoundError, PurchaseRequisitionNotFoundError,
    |   |       DeliveryNotFoundError,
    |   |       DeliveryLineNotFoundError, IssueNotFoundError, TransferNotFoundError,
    |   |       NCRNotFoundError, PeriodNotFoundError, ReconciliationNotFoundError,
    |   |       PeriodLocationNotFoundError
    |   +-- AccessDeniedError
    |   |   +-- LocationAccessDeniedError
    |   |   +-- InsufficientPermissionsError
    |   |   +-- NotDraftOwnerError
    |   +-- PeriodError
    |   |   +-- NoOpenPeriodError, PeriodClosedError,
    |   |       LocationPeriodClosedError, InvalidPeriodStatusError,
    |   |       PeriodAlreadyOpenError, NoLocationsError,
    |   |       LocationsNotReadyError, PeriodOverlapError,
    |   |       InvalidDateRangeError, PricesLockedError,
    |   |       LocationAlreadyClosedError
    |   +-- DocumentStateError
    |       +-- DeliveryAlreadyPostedError, CannotDeletePostedDeliveryError,
    |           OverDeliveryRejectedError, PurchaseOrderNotOpenError,
    |           PurchaseOrderLineMismatchError, SupplierMismatchError,
    |           DuplicateInvoiceError,
    |           InvoiceRequiredError, InvalidRequisitionStatusError,
    |           InvalidTransferStatusError,
    |           SameLocationTransferError, InvalidNCRTransitionError,
    |           NCRAlreadyClosedError, DeliveryLocationMismatchError,
    |           ReconciliationConfirmedError,
    |           ReconciliationNotCompletedError
    |
    +-- BusinessRuleError            blocks the whole operation
    |   +-- InsufficientStockError
    |   +-- OverDeliveryNotApprovedError
    |   +-- InvalidItemsError
    |   +-- NegativeStockError
    |
    +-- ConcurrencyError             retry or surface distinctly
    |   +-- DuplicateDocumentNumberError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Precondition and business-rule errors are raised before or during
   validation.  The posting transaction is rolled back, so stock, NCRs and
   totals are exactly as they were before the call.

2. ConcurrencyError subclasses mean "try again": nothing about the input
   was wrong.

3. Anything that is not a StockLedgerError is an internal failure.
   ``error_payload()`` turns it into a generic INTERNAL_ERROR payload so
   internal state never leaks to callers.

===============================================================================
"""

from typing import Any


class StockLedgerError(Exception):
    """
    Base exception for all stock ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_LEDGER_ERROR"

    @property
    def details(self) -> dict[str, Any]:
        """Structured attributes of this error (everything set in __init__)."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render an exception as a transport-neutral error payload.

    Known errors keep their code, message and structured details.  Any other
    exception is reported as INTERNAL_ERROR without its message.
    """
    if isinstance(exc, StockLedgerError):
        return {"code": exc.code, "message": str(exc), "details": exc.details}
    return {
        "code": "INTERNAL_ERROR",
        "message": "An unexpected error occurred",
        "details": {},
    }


# =============================================================================
# Precondition violations
# =============================================================================


class PreconditionError(StockLedgerError):
    """A precondition failed; nothing was mutated."""

    code: str = "PRECONDITION_FAILED"


class ValidationError(PreconditionError):
    """Request shape or field value is invalid."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Not found


class NotFoundError(PreconditionError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} {entity_id} not found")


class LocationNotFoundError(NotFoundError):
    code: str = "LOCATION_NOT_FOUND"
    entity_type = "Location"


class SupplierNotFoundError(NotFoundError):
    code: str = "SUPPLIER_NOT_FOUND"
    entity_type = "Supplier"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PO_NOT_FOUND"
    entity_type = "Purchase order"


class PurchaseRequisitionNotFoundError(NotFoundError):
    code: str = "PRF_NOT_FOUND"
    entity_type = "Purchase requisition"


class DeliveryNotFoundError(NotFoundError):
    code: str = "DELIVERY_NOT_FOUND"
    entity_type = "Delivery"


class DeliveryLineNotFoundError(NotFoundError):
    code: str = "DELIVERY_LINE_NOT_FOUND"
    entity_type = "Delivery line"


class IssueNotFoundError(NotFoundError):
    code: str = "ISSUE_NOT_FOUND"
    entity_type = "Issue"


class TransferNotFoundError(NotFoundError):
    code: str = "TRANSFER_NOT_FOUND"
    entity_type = "Transfer"


class NCRNotFoundError(NotFoundError):
    code: str = "NCR_NOT_FOUND"
    entity_type = "NCR"


class PeriodNotFoundError(NotFoundError):
    code: str = "PERIOD_NOT_FOUND"
    entity_type = "Period"


class ReconciliationNotFoundError(NotFoundError):
    code: str = "RECONCILIATION_NOT_FOUND"
    entity_type = "Reconciliation"


class PeriodLocationNotFoundError(PreconditionError):
    """Location is not part of the period."""

    code: str = "PERIOD_LOCATION_NOT_FOUND"

    def __init__(self, period_id: Any, location_id: Any):
        self.period_id = str(period_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Location {location_id} is not part of period {period_id}"
        )


# Access


class AccessDeniedError(PreconditionError):
    """Actor is not allowed to perform the action."""

    code: str = "ACCESS_DENIED"


class LocationAccessDeniedError(AccessDeniedError):
    code: str = "LOCATION_ACCESS_DENIED"

    def __init__(self, actor_id: Any, location_id: Any):
        self.actor_id = str(actor_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Actor {actor_id} does not have access to location {location_id}"
        )


class InsufficientPermissionsError(AccessDeniedError):
    code: str = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, actor_id: Any, action: str, reason: str = ""):
        self.actor_id = str(actor_id)
        self.action = action
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} may not {action}" + (f": {reason}" if reason else "")
        )


class NotDraftOwnerError(AccessDeniedError):
    code: str = "NOT_DRAFT_OWNER"

    def __init__(self, actor_id: Any, delivery_id: Any):
        self.actor_id = str(actor_id)
        self.delivery_id = str(delivery_id)
        super().__init__(
            f"Only the creator or a supervisor may change draft {delivery_id}"
        )


# Periods


class PeriodError(PreconditionError):
    """Base exception for period gating and lifecycle errors."""

    code: str = "PERIOD_ERROR"


class NoOpenPeriodError(PeriodError):
    code: str = "NO_OPEN_PERIOD"

    def __init__(self):
        super().__init__("No open period exists for posting")


class PeriodClosedError(PeriodError):
    code: str = "PERIOD_CLOSED"

    def __init__(self, period_id: Any, status: str):
        self.period_id = str(period_id)
        self.status = status
        super().__init__(f"Period {period_id} is not open (status: {status})")


class LocationPeriodClosedError(PeriodError):
    code: str = "PERIOD_LOCATION_CLOSED"

    def __init__(self, period_id: Any, location_id: Any, status: str):
        self.period_id = str(period_id)
        self.location_id = str(location_id)
        self.status = status
        super().__init__(
            f"Location {location_id} is not open in period {period_id} "
            f"(status: {status})"
        )


class InvalidPeriodStatusError(PeriodError):
    code: str = "INVALID_PERIOD_STATUS"

    def __init__(self, period_id: Any, current_status: str, expected_status: str):
        self.period_id = str(period_id)
        self.current_status = current_status
        self.expected_status = expected_status
        super().__init__(
            f"Period {period_id} is {current_status}, expected {expected_status}"
        )


class PeriodAlreadyOpenError(PeriodError):
    code: str = "PERIOD_ALREADY_OPEN"

    def __init__(self, open_period_id: Any):
        self.open_period_id = str(open_period_id)
        super().__init__(f"Period {open_period_id} is already open")


class NoLocationsError(PeriodError):
    code: str = "NO_LOCATIONS"

    def __init__(self, period_id: Any):
        self.period_id = str(period_id)
        super().__init__(f"Period {period_id} has no locations")


class LocationsNotReadyError(PeriodError):
    code: str = "LOCATIONS_NOT_READY"

    def __init__(self, period_id: Any, not_ready: dict[str, str]):
        self.period_id = str(period_id)
        self.not_ready = not_ready
        super().__init__(
            f"All locations must be ready before closing period {period_id} "
            f"({len(not_ready)} not ready)"
        )


class PeriodOverlapError(PeriodError):
    code: str = "OVERLAPPING_PERIOD"

    def __init__(self, start_date: str, end_date: str, existing_period_id: Any):
        self.start_date = start_date
        self.end_date = end_date
        self.existing_period_id = str(existing_period_id)
        super().__init__(
            f"Date range {start_date} to {end_date} overlaps period {existing_period_id}"
        )


class InvalidDateRangeError(PeriodError):
    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"Start date {start_date} is after end date {end_date}")


class PricesLockedError(PeriodError):
    code: str = "PRICES_LOCKED"

    def __init__(self, period_id: Any, status: str):
        self.period_id = str(period_id)
        self.status = status
        super().__init__(
            f"Prices for period {period_id} are locked (status: {status})"
        )


class LocationAlreadyClosedError(PeriodError):
    code: str = "LOCATION_ALREADY_CLOSED"

    def __init__(self, period_id: Any, location_id: Any):
        self.period_id = str(period_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Location {location_id} is already closed for period {period_id}"
        )


class PeriodNotClosedError(PeriodError):
    code: str = "PERIOD_NOT_CLOSED"

    def __init__(self, period_id: Any, status: str):
        self.period_id = str(period_id)
        self.status = status
        super().__init__(
            f"Period {period_id} must be CLOSED to roll forward (status: {status})"
        )


# Document state


class DocumentStateError(PreconditionError):
    """Document is in a state that does not allow the operation."""

    code: str = "DOCUMENT_STATE_ERROR"


class DeliveryAlreadyPostedError(DocumentStateError):
    code: str = "DELIVERY_ALREADY_POSTED"

    def __init__(self, delivery_id: Any, delivery_no: str):
        self.delivery_id = str(delivery_id)
        self.delivery_no = delivery_no
        super().__init__(f"Delivery {delivery_no} is already posted")


class CannotDeletePostedDeliveryError(DocumentStateError):
    code: str = "CANNOT_DELETE_POSTED_DELIVERY"

    def __init__(self, delivery_id: Any, delivery_no: str):
        self.delivery_id = str(delivery_id)
        self.delivery_no = delivery_no
        super().__init__(f"Posted delivery {delivery_no} cannot be deleted")


class OverDeliveryRejectedError(DocumentStateError):
    code: str = "OVER_DELIVERY_REJECTED"

    def __init__(self, delivery_id: Any, reason: str | None):
        self.delivery_id = str(delivery_id)
        self.reason = reason
        super().__init__(
            f"Over-delivery on draft {delivery_id} was rejected; the draft is locked"
        )


class PurchaseOrderNotOpenError(DocumentStateError):
    code: str = "PO_NOT_OPEN"

    def __init__(self, po_id: Any, status: str):
        self.po_id = str(po_id)
        self.status = status
        super().__init__(f"Purchase order {po_id} is not open (status: {status})")


class PurchaseOrderLineMismatchError(DocumentStateError):
    """A delivery line names an order line that is not on the order or is for another item."""

    code: str = "PO_LINE_MISMATCH"

    def __init__(self, po_id: Any, po_line_id: Any, item_id: Any, po_item_id: Any = None):
        self.po_id = str(po_id)
        self.po_line_id = str(po_line_id)
        self.item_id = str(item_id)
        self.po_item_id = None if po_item_id is None else str(po_item_id)
        if po_item_id is None:
            message = f"Purchase order line {po_line_id} is not on purchase order {po_id}"
        else:
            message = (
                f"Purchase order line {po_line_id} is for item {po_item_id}, "
                f"not {item_id}"
            )
        super().__init__(message)


class SupplierMismatchError(DocumentStateError):
    code: str = "SUPPLIER_MISMATCH"

    def __init__(self, po_id: Any, po_supplier_id: Any, supplier_id: Any):
        self.po_id = str(po_id)
        self.po_supplier_id = str(po_supplier_id)
        self.supplier_id = str(supplier_id)
        super().__init__(
            f"Delivery supplier {supplier_id} does not match purchase order "
            f"supplier {po_supplier_id}"
        )


class DuplicateInvoiceError(DocumentStateError):
    code: str = "DUPLICATE_INVOICE_NO"

    def __init__(self, invoice_no: str, existing_delivery_no: str | None = None):
        self.invoice_no = invoice_no
        self.existing_delivery_no = existing_delivery_no
        super().__init__(
            f"Invoice number {invoice_no} is already used"
            + (f" by delivery {existing_delivery_no}" if existing_delivery_no else "")
        )


class InvoiceRequiredError(DocumentStateError):
    code: str = "INVOICE_REQUIRED"

    def __init__(self):
        super().__init__("Invoice number is required to post a delivery")


class InvalidRequisitionStatusError(DocumentStateError):
    code: str = "INVALID_PRF_STATUS"

    def __init__(self, prf_id: Any, current_status: str, action: str):
        self.prf_id = str(prf_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Purchase requisition cannot be {action} from status {current_status}"
        )


class InvalidTransferStatusError(DocumentStateError):
    code: str = "INVALID_STATUS"

    def __init__(self, transfer_id: Any, current_status: str, action: str):
        self.transfer_id = str(transfer_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Transfer cannot be {action} from status {current_status}"
        )


class SameLocationTransferError(DocumentStateError):
    code: str = "SAME_LOCATION_TRANSFER"

    def __init__(self, location_id: Any):
        self.location_id = str(location_id)
        super().__init__("Source and destination locations must differ")


class InvalidNCRTransitionError(DocumentStateError):
    code: str = "INVALID_NCR_TRANSITION"

    def __init__(self, ncr_id: Any, from_status: str, to_status: str):
        self.ncr_id = str(ncr_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"NCR cannot move from {from_status} to {to_status}")


class NCRAlreadyClosedError(InvalidNCRTransitionError):
    code: str = "NCR_ALREADY_CLOSED"


class DeliveryLocationMismatchError(DocumentStateError):
    code: str = "DELIVERY_LOCATION_MISMATCH"

    def __init__(self, delivery_id: Any, location_id: Any):
        self.delivery_id = str(delivery_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Delivery {delivery_id} does not belong to location {location_id}"
        )


class ReconciliationConfirmedError(DocumentStateError):
    code: str = "RECONCILIATION_CONFIRMED"

    def __init__(self, period_id: Any, location_id: Any):
        self.period_id = str(period_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Reconciliation for location {location_id} in period {period_id} "
            "is confirmed and frozen"
        )


class ReconciliationNotCompletedError(DocumentStateError):
    code: str = "RECONCILIATION_NOT_COMPLETED"

    def __init__(self, period_id: Any, location_id: Any):
        self.period_id = str(period_id)
        self.location_id = str(location_id)
        super().__init__(
            f"Reconciliation for location {location_id} in period {period_id} "
            "has not been confirmed"
        )


# =============================================================================
# Business-rule violations
# =============================================================================


class BusinessRuleError(StockLedgerError):
    """A business rule blocks the whole operation."""

    code: str = "BUSINESS_RULE_VIOLATION"


class InsufficientStockError(BusinessRuleError):
    """
    One or more lines request more than is on hand.

    ``shortfalls`` holds one dict per failing line with item_id, code, name,
    requested, available and shortfall.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, location_id: Any, shortfalls: list[dict[str, Any]]):
        self.location_id = str(location_id)
        self.shortfalls = shortfalls
        names = ", ".join(s.get("item_name") or s["item_id"] for s in shortfalls)
        super().__init__(f"Insufficient stock at location {location_id}: {names}")


class OverDeliveryNotApprovedError(BusinessRuleError):
    """
    Over-delivery lines lack approval.

    ``lines`` holds one dict per line with item_id, requested, remaining and
    excess.
    """

    code: str = "OVER_DELIVERY_NOT_APPROVED"

    def __init__(self, lines: list[dict[str, Any]]):
        self.lines = lines
        super().__init__(
            f"{len(lines)} line(s) exceed the remaining purchase order quantity "
            "and require supervisor approval"
        )


class InvalidItemsError(BusinessRuleError):
    code: str = "INVALID_ITEMS"

    def __init__(self, missing_item_ids: list[str], inactive_item_ids: list[str]):
        self.missing_item_ids = missing_item_ids
        self.inactive_item_ids = inactive_item_ids
        super().__init__(
            f"Invalid items: {len(missing_item_ids)} not found, "
            f"{len(inactive_item_ids)} inactive"
        )


class NegativeStockError(BusinessRuleError):
    """A stock decrement would drive on_hand below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(self, location_id: Any, item_id: Any, on_hand: Any, requested: Any):
        self.location_id = str(location_id)
        self.item_id = str(item_id)
        self.on_hand = str(on_hand)
        self.requested = str(requested)
        super().__init__(
            f"Cannot remove {requested} of item {item_id} at location "
            f"{location_id}: only {on_hand} on hand"
        )


# =============================================================================
# Concurrency / integrity
# =============================================================================


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class DuplicateDocumentNumberError(ConcurrencyError):
    """A document number collided with an existing one."""

    code: str = "DUPLICATE_DOCUMENT_NUMBER"

    def __init__(self, document_type: str, document_no: str | None = None):
        self.document_type = document_type
        self.document_no = document_no
        number = f" {document_no}" if document_no else ""
        super().__init__(f"{document_type} number{number} already exists")


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityError(StockLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete a finalized record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
