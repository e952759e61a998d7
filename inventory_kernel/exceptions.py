"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A wrong sign on a stock movement is a silent financial loss, so callers must
be able to react to each failure precisely. Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. A KIND attribute naming its category in the caller-facing enumeration
     (validation, conflict, transition, store, critical_integrity,
     authorization, immutability, cancelled)
  4. Structured DATA (product, line, shortfall, target status ...)

Example - RIGHT way:
    try:
        manager.create_movement(...)
    except NegativeStockError as e:
        offer_alternatives(e.product_id, available=e.stock_before)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError                     kind=validation
    |   +-- UnknownCauseError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostInputError
    |   +-- InsufficientStockError
    |   +-- NegativeStockError
    |   +-- OverReceiptNotConfirmedError
    |   +-- SaleValidationError
    |   +-- ReceiptValidationError
    |   +-- ProductNotFoundError
    |   +-- ProductRetiredError
    |   +-- DuplicateSkuError
    |   +-- PurchaseOrderNotFoundError
    |   +-- DuplicateOrderLineError
    |   +-- EmptyOperationError
    |   +-- DuplicateLineError
    |   +-- MovementNotFoundError
    |   +-- IrreversibleMovementError
    |   +-- AdjustmentCauseError
    |
    +-- ConflictError                       kind=conflict (retryable)
    |   +-- ConcurrentModificationError
    |   +-- StockVerificationError
    |
    +-- TransitionError                     kind=transition
    |   +-- InvalidTransitionError
    |   +-- UnauthorizedTransitionError
    |   +-- TransitionPreconditionError
    |   +-- ReceivingNotAllowedError
    |
    +-- AuthorizationError                  kind=authorization
    |   +-- PermissionDeniedError
    |
    +-- StoreError                          kind=store (retryable)
    |   +-- StoreTimeoutError
    |
    +-- LedgerIntegrityError                kind=critical_integrity
    |   +-- CriticalIntegrityError
    |   +-- ProductOnHoldError
    |   +-- ReconciliationMismatchError
    |
    +-- ImmutabilityViolationError          kind=immutability
    |
    +-- OperationCancelledError             kind=cancelled

===============================================================================
HANDLING POLICY
===============================================================================

Pure components (direction resolver, cost calculator) raise immediately and
never catch. The orchestration layer (InventoryUpdateEngine, ReceivingService,
SaleProcessor) is the only place that catches and compensates.

CriticalIntegrityError means a compensating rollback could not complete. The
affected products are placed on an integrity hold and every later movement on
them raises ProductOnHoldError until a reconciliation releases the hold.

===============================================================================
"""

from __future__ import annotations

from typing import Any, Sequence


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification and a ``kind`` naming the error category.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    kind: str = "error"
    retryable: bool = False


# Validation exceptions (rejected before any mutation)


class ValidationError(InventoryKernelError):
    """Base exception for input and business-rule validation failures."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"


class UnknownCauseError(ValidationError):
    """Movement cause is outside the fixed enumeration."""

    code: str = "UNKNOWN_CAUSE"

    def __init__(self, cause: Any):
        self.cause = cause
        super().__init__(f"Unknown movement cause: {cause!r}")


class InvalidQuantityError(ValidationError):
    """Quantity is not a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self,
        quantity: Any,
        reason: str,
        product_id: Any = None,
        line_index: int | None = None,
    ):
        self.quantity = quantity
        self.reason = reason
        self.product_id = product_id
        self.line_index = line_index
        super().__init__(f"Invalid quantity {quantity!r}: {reason}")


class InvalidCostInputError(ValidationError):
    """Weighted-average cost inputs are out of range."""

    code: str = "INVALID_COST_INPUT"

    def __init__(self, reason: str, **values: Any):
        self.reason = reason
        self.values = values
        super().__init__(f"Invalid cost input: {reason}")


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds the quantity available."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: Any, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available} "
            f"(short by {self.shortfall})"
        )


class NegativeStockError(ValidationError):
    """Applying the movement would drive stock below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(
        self,
        product_id: Any,
        cause: str,
        stock_before: int,
        quantity: int,
    ):
        self.product_id = product_id
        self.cause = cause
        self.stock_before = stock_before
        self.quantity = quantity
        self.shortfall = quantity - stock_before
        super().__init__(
            f"Movement '{cause}' of {quantity} on product {product_id} would "
            f"leave stock at {stock_before - quantity} (available {stock_before})"
        )


class OverReceiptNotConfirmedError(ValidationError):
    """Receipt exceeds pending quantity and was not confirmed by the caller."""

    code: str = "OVER_RECEIPT_UNCONFIRMED"

    def __init__(self, purchase_order_id: Any, over_receipts: Sequence[dict]):
        self.purchase_order_id = purchase_order_id
        self.over_receipts = list(over_receipts)
        super().__init__(
            f"Over-receipt on purchase order {purchase_order_id} requires "
            f"confirmation for {len(self.over_receipts)} product(s)"
        )


class SaleValidationError(ValidationError):
    """A sale failed pre-mutation validation."""

    code: str = "SALE_VALIDATION_FAILED"

    def __init__(self, sale_id: Any, issues: Sequence[Any]):
        self.sale_id = sale_id
        self.issues = list(issues)
        super().__init__(
            f"Sale {sale_id} failed validation: {len(self.issues)} issue(s)"
        )


class ReceiptValidationError(ValidationError):
    """A receiving event failed pre-mutation validation."""

    code: str = "RECEIPT_VALIDATION_FAILED"

    def __init__(self, purchase_order_id: Any, issues: Sequence[Any]):
        self.purchase_order_id = purchase_order_id
        self.issues = list(issues)
        super().__init__(
            f"Receipt against purchase order {purchase_order_id} failed "
            f"validation: {len(self.issues)} issue(s)"
        )


class ProductNotFoundError(ValidationError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductRetiredError(ValidationError):
    """Product has been retired and accepts no new movements."""

    code: str = "PRODUCT_RETIRED"

    def __init__(self, product_id: Any):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is retired")


class DuplicateSkuError(ValidationError):
    """A product with the same SKU already exists."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"A product with SKU '{sku}' already exists")


class PurchaseOrderNotFoundError(ValidationError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, purchase_order_id: Any):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order not found: {purchase_order_id}")


class DuplicateOrderLineError(ValidationError):
    """The same product appears on more than one purchase-order line."""

    code: str = "DUPLICATE_ORDER_LINE"

    def __init__(self, product_id: Any):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} appears on more than one order line"
        )


class EmptyOperationError(ValidationError):
    """An operation was submitted with no lines."""

    code: str = "EMPTY_OPERATION"

    def __init__(self, operation_id: Any):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} has no lines")


class DuplicateLineError(ValidationError):
    """The same product appears on more than one line of an operation."""

    code: str = "DUPLICATE_OPERATION_LINE"

    def __init__(self, operation_id: Any, product_id: Any):
        self.operation_id = operation_id
        self.product_id = product_id
        super().__init__(
            f"Operation {operation_id} lists product {product_id} more than once"
        )


class MovementNotFoundError(ValidationError):
    """Movement with given ID was not found."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: Any):
        self.movement_id = movement_id
        super().__init__(f"Movement not found: {movement_id}")


class IrreversibleMovementError(ValidationError):
    """The movement cannot be reversed (it is itself a reversal)."""

    code: str = "IRREVERSIBLE_MOVEMENT"

    def __init__(self, movement_id: Any, reason: str):
        self.movement_id = movement_id
        self.reason = reason
        super().__init__(f"Movement {movement_id} cannot be reversed: {reason}")


class AdjustmentCauseError(ValidationError):
    """The cause is reserved for sales or receipts and cannot adjust stock."""

    code: str = "INVALID_ADJUSTMENT_CAUSE"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Cause '{cause}' cannot be used for a stock adjustment")


# Conflict exceptions (concurrent writers)


class ConflictError(InventoryKernelError):
    """Base exception for concurrent-write conflicts."""

    code: str = "CONFLICT"
    kind: str = "conflict"
    retryable: bool = True


class ConcurrentModificationError(ConflictError):
    """Version mismatch persisted beyond the retry budget."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: Any, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            f"gave up after {attempts} attempt(s)"
        )


class StockVerificationError(ConflictError):
    """Post-commit stock read does not match the committed movement."""

    code: str = "STOCK_VERIFICATION_FAILED"

    def __init__(
        self,
        product_id: Any,
        movement_id: Any,
        expected: int,
        actual: int,
    ):
        self.product_id = product_id
        self.movement_id = movement_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stock verification failed for product {product_id} after "
            f"movement {movement_id}: expected {expected}, found {actual}"
        )


# State-machine exceptions


class TransitionError(InventoryKernelError):
    """Base exception for purchase-order status transition failures."""

    code: str = "TRANSITION_ERROR"
    kind: str = "transition"


class InvalidTransitionError(TransitionError):
    """The transition is not in the purchase-order transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, purchase_order_id: Any, from_status: str, to_status: str):
        self.purchase_order_id = purchase_order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for purchase order {purchase_order_id}: "
            f"{from_status} -> {to_status}"
        )


class UnauthorizedTransitionError(TransitionError):
    """The acting principal lacks the permission the transition requires."""

    code: str = "UNAUTHORIZED_TRANSITION"

    def __init__(
        self,
        purchase_order_id: Any,
        to_status: str,
        actor_id: Any,
        required_permission: str,
    ):
        self.purchase_order_id = purchase_order_id
        self.to_status = to_status
        self.actor_id = actor_id
        self.required_permission = required_permission
        super().__init__(
            f"Principal {actor_id} may not move purchase order "
            f"{purchase_order_id} to {to_status}: requires "
            f"'{required_permission}'"
        )


class TransitionPreconditionError(TransitionError):
    """A business precondition for the target status is not met."""

    code: str = "TRANSITION_PRECONDITION_FAILED"

    def __init__(self, purchase_order_id: Any, to_status: str, reasons: Sequence[str]):
        self.purchase_order_id = purchase_order_id
        self.to_status = to_status
        self.reasons = list(reasons)
        super().__init__(
            f"Purchase order {purchase_order_id} cannot move to {to_status}: "
            + "; ".join(self.reasons)
        )


class ReceivingNotAllowedError(TransitionError):
    """The purchase order is not in a status that permits receiving."""

    code: str = "RECEIVING_NOT_ALLOWED"

    def __init__(self, purchase_order_id: Any, status: str):
        self.purchase_order_id = purchase_order_id
        self.status = status
        super().__init__(
            f"Purchase order {purchase_order_id} in status '{status}' "
            "cannot receive goods"
        )


# Authorization exceptions


class AuthorizationError(InventoryKernelError):
    """Base exception for permission failures outside the state machine."""

    code: str = "AUTHORIZATION_ERROR"
    kind: str = "authorization"


class PermissionDeniedError(AuthorizationError):
    """The acting principal lacks a required permission."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: Any, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(
            f"Principal {actor_id} lacks permission '{permission}'"
        )


# Store exceptions (infrastructure)


class StoreError(InventoryKernelError):
    """The backing store failed to complete an operation."""

    code: str = "STORE_ERROR"
    kind: str = "store"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store operation '{operation}' failed: {reason}")


class StoreTimeoutError(StoreError):
    """A store call timed out; treated identically to a write failure."""

    code: str = "STORE_TIMEOUT"


# Ledger integrity exceptions


class LedgerIntegrityError(InventoryKernelError):
    """Base exception for states that require manual reconciliation."""

    code: str = "LEDGER_INTEGRITY_ERROR"
    kind: str = "critical_integrity"


class CriticalIntegrityError(LedgerIntegrityError):
    """A compensating rollback could not complete."""

    code: str = "CRITICAL_INTEGRITY"

    def __init__(
        self,
        operation_id: Any,
        product_ids: Sequence[Any],
        unreversed_movement_ids: Sequence[Any],
        reason: str,
    ):
        self.operation_id = operation_id
        self.product_ids = list(product_ids)
        self.unreversed_movement_ids = list(unreversed_movement_ids)
        self.reason = reason
        super().__init__(
            f"Rollback of operation {operation_id} could not complete; "
            f"{len(self.unreversed_movement_ids)} movement(s) left applied: "
            f"{reason}"
        )


class ProductOnHoldError(LedgerIntegrityError):
    """Product is halted pending manual reconciliation."""

    code: str = "PRODUCT_ON_HOLD"

    def __init__(self, product_id: Any, hold_reason: str):
        self.product_id = product_id
        self.hold_reason = hold_reason
        super().__init__(
            f"Product {product_id} is on integrity hold: {hold_reason}"
        )


class ReconciliationMismatchError(LedgerIntegrityError):
    """Ledger replay disagrees with the stored quantity; the hold stays."""

    code: str = "RECONCILIATION_MISMATCH"

    def __init__(self, product_id: Any, projected: int, replayed: int, broken_links: int = 0):
        self.product_id = product_id
        self.projected = projected
        self.replayed = replayed
        self.broken_links = broken_links
        super().__init__(
            f"Product {product_id} does not reconcile: stored {projected}, "
            f"ledger replay {replayed}, {broken_links} broken link(s)"
        )


# Immutability exceptions


class ImmutabilityViolationError(InventoryKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"
    kind: str = "immutability"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Cancellation


class OperationCancelledError(InventoryKernelError):
    """The caller cancelled the operation before its first line committed."""

    code: str = "OPERATION_CANCELLED"
    kind: str = "cancelled"

    def __init__(self, operation_id: Any):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} was cancelled")

