"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the movement
    pipeline: line requests (input), MovementRecord / ProductState /
    PurchaseOrder (persistence boundary), validation results, and the result
    objects returned to callers (UpdateResult, SaleResult, ReceiveResult).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  ORM rows convert to these via ``to_dto()``;
    domain logic never sees ORM entities.

Invariants enforced:
    - ``MovementRecord.direction`` is computed from cause and reversal flag;
      there is no stored direction to disagree with.
    - ``PurchaseOrderLine.pending_quantity`` never goes below zero.
    - Every rejected line reports its product and a concrete error.

Data flow:
    LineRequest -> MovementRecordManager -> MovementRecord -> UpdateResult
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from inventory_kernel.domain.direction import (
    Direction,
    MovementCause,
    resolve_for_movement,
)
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.exceptions import InventoryKernelError, OperationCancelledError


def _freeze(values: Mapping[str, Any] | None) -> MappingProxyType:
    return MappingProxyType(dict(values or {}))


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class LineRequest:
    """One product line of a multi-line operation, as handed to the engine.

    ``unit_cost`` is only meaningful for receipts; ``allow_negative`` only
    for causes that permit a negative override.
    """
    product_id: UUID
    quantity: int
    unit_cost: Decimal | None = None
    allow_negative: bool = False


@dataclass(frozen=True)
class SaleLine:
    """A cart line: product and requested quantity."""
    product_id: UUID
    quantity: int


class ItemCondition(str, Enum):
    """Physical condition of received goods."""
    GOOD = "good"
    DAMAGED = "damaged"
    EXPIRED = "expired"
    RETURNED = "returned"


@dataclass(frozen=True)
class ReceivingLine:
    """One line of a physical receipt event."""
    product_id: UUID
    quantity: int
    condition: ItemCondition = ItemCondition.GOOD
    unit_cost: Decimal | None = None
    batch_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class ReceivingRequest:
    """A receiving event as submitted by the caller.

    ``receiving_id`` doubles as the operation id, so resubmitting the same
    request is idempotent.
    """
    receiving_id: UUID
    lines: tuple[ReceivingLine, ...]
    notes: str = ""


class CancellationToken:
    """Caller-held cancellation flag.

    Honoured only before an operation's first line commits.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation_id: Any) -> None:
        if self._event.is_set():
            raise OperationCancelledError(operation_id)


# -----------------------------------------------------------------------------
# Persistence boundary
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductState:
    """Materialized projection of a product's ledger."""
    id: UUID
    sku: str
    name: str
    quantity_on_hand: int
    unit_cost: Decimal
    minimum_stock: int
    version: int
    is_retired: bool = False
    integrity_hold_reason: str | None = None

    @property
    def on_hold(self) -> bool:
        return self.integrity_hold_reason is not None

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= self.minimum_stock


@dataclass(frozen=True)
class MovementRecord:
    """Immutable ledger entry.

    A reversal carries the cause of the movement it reverses and moves stock
    the opposite way.
    """
    id: UUID
    product_id: UUID
    cause: MovementCause
    quantity: int
    stock_before: int
    stock_after: int
    reference_id: str
    actor_id: UUID
    reason: str
    created_at: datetime
    sequence: int
    is_reversed: bool = False
    reversal_of_id: UUID | None = None
    unit_cost_before: Decimal | None = None
    unit_cost_after: Decimal | None = None

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def direction(self) -> Direction:
        return resolve_for_movement(self.cause, self.is_reversal)

    @property
    def signed_quantity(self) -> int:
        return self.direction.sign * self.quantity


@dataclass(frozen=True)
class NewMovement:
    """Movement fields the store persists; the store assigns the sequence."""
    id: UUID
    product_id: UUID
    cause: MovementCause
    quantity: int
    stock_before: int
    stock_after: int
    reference_id: str
    actor_id: UUID
    reason: str
    created_at: datetime
    reversal_of_id: UUID | None = None
    unit_cost_before: Decimal | None = None
    unit_cost_after: Decimal | None = None

    @property
    def direction(self) -> Direction:
        return resolve_for_movement(self.cause, self.reversal_of_id is not None)


@dataclass(frozen=True)
class PurchaseOrderLine:
    """An ordered product with its cumulative received quantity."""
    id: UUID
    product_id: UUID
    ordered_quantity: int
    unit_cost: Decimal
    received_quantity: int = 0

    @property
    def pending_quantity(self) -> int:
        return max(0, self.ordered_quantity - self.received_quantity)


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order and its lines."""
    id: UUID
    order_number: str
    supplier_id: UUID | None
    status: PurchaseOrderStatus
    lines: tuple[PurchaseOrderLine, ...]
    created_by_id: UUID
    created_at: datetime

    def line_for(self, product_id: UUID) -> PurchaseOrderLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    @property
    def total_ordered(self) -> int:
        return sum(line.ordered_quantity for line in self.lines)

    @property
    def total_received(self) -> int:
        return sum(line.received_quantity for line in self.lines)

    @property
    def fully_received(self) -> bool:
        return bool(self.lines) and all(
            line.pending_quantity == 0 for line in self.lines
        )


@dataclass(frozen=True)
class NewPurchaseOrderLine:
    """Line input for purchase-order creation."""
    product_id: UUID
    ordered_quantity: int
    unit_cost: Decimal


@dataclass(frozen=True)
class StatusTransitionRecord:
    """One append-only row of a purchase order's status history."""
    id: UUID
    purchase_order_id: UUID
    from_status: PurchaseOrderStatus
    to_status: PurchaseOrderStatus
    actor_id: UUID
    reason: str
    occurred_at: datetime
    automatic: bool = False


@dataclass(frozen=True)
class ReceivingRecordLine:
    """One received line and the movement it produced."""
    product_id: UUID
    quantity: int
    condition: ItemCondition
    movement_id: UUID
    unit_cost: Decimal | None = None
    batch_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class ReceivingRecord:
    """A persisted physical receipt event."""
    id: UUID
    purchase_order_id: UUID
    actor_id: UUID
    received_at: datetime
    lines: tuple[ReceivingRecordLine, ...]
    notes: str = ""

    @property
    def movement_ids(self) -> tuple[UUID, ...]:
        return tuple(line.movement_id for line in self.lines)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation finding.

    Stock findings carry ``requested`` / ``available`` / ``shortfall`` so the
    caller can offer alternatives; receipt findings carry ``pending``.
    """
    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    product_id: UUID | None = None
    line_index: int | None = None
    requested: int | None = None
    available: int | None = None
    shortfall: int | None = None
    pending: int | None = None

    @property
    def is_warning(self) -> bool:
        return self.severity is IssueSeverity.WARNING


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass.  Warnings never make it invalid."""
    issues: tuple[ValidationIssue, ...] = ()

    @classmethod
    def success(cls) -> ValidationResult:
        return cls()

    @property
    def errors(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if not i.is_warning)

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if i.is_warning)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def merge(self, other: ValidationResult) -> ValidationResult:
        return ValidationResult(self.issues + other.issues)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationError:
    """Caller-facing error description.

    ``kind`` is one of the error categories (validation, conflict, transition,
    store, critical_integrity, authorization, immutability, cancelled).
    """
    kind: str
    code: str
    message: str
    product_id: UUID | None = None
    line_index: int | None = None
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_exception(
        cls,
        exc: InventoryKernelError,
        product_id: UUID | None = None,
        line_index: int | None = None,
    ) -> OperationError:
        details = {
            key: value
            for key, value in vars(exc).items()
            if not key.startswith("_") and key not in ("product_id", "line_index")
        }
        return cls(
            kind=exc.kind,
            code=exc.code,
            message=str(exc),
            product_id=product_id if product_id is not None else getattr(exc, "product_id", None),
            line_index=line_index if line_index is not None else getattr(exc, "line_index", None),
            details=_freeze(details),
        )

    @property
    def retryable(self) -> bool:
        return self.kind in ("conflict", "store")


@dataclass(frozen=True)
class LowStockAlert:
    """A product at or below its minimum-stock threshold."""
    product_id: UUID
    quantity_on_hand: int
    minimum_stock: int


@dataclass(frozen=True)
class LineOutcome:
    """Per-line result of an engine apply."""
    line_index: int
    product_id: UUID
    success: bool
    movement_id: UUID | None = None
    stock_after: int | None = None
    error: OperationError | None = None


@dataclass(frozen=True)
class UpdateResult:
    """Result of ``InventoryUpdateEngine.apply``.

    On failure ``failed_line`` is the index of the first failing line and
    ``processed_before_failure`` the number of lines that had committed
    before it.  ``rolled_back`` is True once every committed line has been
    reversed (or the native transaction aborted).
    """
    operation_id: str
    success: bool
    lines: tuple[LineOutcome, ...] = ()
    movements: tuple[MovementRecord, ...] = ()
    failed_line: int | None = None
    processed_before_failure: int = 0
    error: OperationError | None = None
    rolled_back: bool = False
    low_stock_alerts: tuple[LowStockAlert, ...] = ()

    @property
    def movement_ids(self) -> tuple[UUID, ...]:
        return tuple(m.id for m in self.movements)


@dataclass(frozen=True)
class SaleResult:
    """Result of ``process_sale`` / ``void_sale``."""
    sale_id: str
    success: bool
    movement_ids: tuple[UUID, ...] = ()
    error: OperationError | None = None
    issues: tuple[ValidationIssue, ...] = ()
    low_stock_alerts: tuple[LowStockAlert, ...] = ()


@dataclass(frozen=True)
class CostUpdate:
    """Weighted-average cost change caused by one receipt line."""
    product_id: UUID
    previous_cost: Decimal
    new_cost: Decimal
    variance: Decimal
    variance_percent: Decimal
    significant: bool


@dataclass(frozen=True)
class PriceVariance:
    """Receipt cost against the purchase-order price for one product."""
    product_id: UUID
    expected_cost: Decimal
    actual_cost: Decimal
    quantity: int
    variance: Decimal
    variance_percent: Decimal
    total_variance: Decimal


@dataclass(frozen=True)
class ReceiveResult:
    """Result of ``receive_goods``.

    ``requires_confirmation`` is set when the receipt was held back because
    it exceeds a pending quantity; the warnings name the lines involved.
    """
    purchase_order_id: UUID
    receiving_id: UUID
    success: bool
    status: PurchaseOrderStatus | None = None
    movement_ids: tuple[UUID, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    issues: tuple[ValidationIssue, ...] = ()
    error: OperationError | None = None
    cost_updates: tuple[CostUpdate, ...] = ()
    price_variances: tuple[PriceVariance, ...] = ()
    requires_confirmation: bool = False
    duplicate: bool = False


@dataclass(frozen=True)
class MovementPage:
    """One page of reverse-chronological movement history."""
    items: tuple[MovementRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class ReconciliationReport:
    """Ledger replay compared against the stored projection."""
    product_id: UUID
    projected_quantity: int
    replayed_quantity: int
    movement_count: int
    on_hold: bool = False
    hold_reason: str | None = None
    broken_links: tuple[UUID, ...] = ()

    @property
    def discrepancy(self) -> int:
        return self.projected_quantity - self.replayed_quantity

    @property
    def matches(self) -> bool:
        return self.discrepancy == 0 and not self.broken_links
