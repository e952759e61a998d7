"""
StockValidationService -- read-only availability and receipt checks.

Responsibility:
    Answers "would this sale / receipt be accepted right now?" from a
    snapshot read, and reports every problem at once so the caller can
    offer alternatives.  It never writes.

Architecture position:
    Kernel > Services -- read-only.  Called by SaleProcessor and
    ReceivingService before they hand lines to the update engine.

Invariants enforced:
    - Duplicate product lines in one request are summed before comparing
      against available stock.
    - Over-receipt (received > pending) is a WARNING, never an error; the
      caller decides through an explicit confirmation flag.
    - Results are advisory.  The authoritative negative-stock check runs
      again inside the write (MovementRecordManager).

Failure modes:
    - Never raises for business problems; every finding is a
      ValidationIssue.  Store failures propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    IssueSeverity,
    ItemCondition,
    LineRequest,
    ProductState,
    PurchaseOrder,
    ReceivingLine,
    SaleLine,
    ValidationIssue,
    ValidationResult,
)
from inventory_kernel.exceptions import InvalidQuantityError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.movement_record_manager import validate_quantity
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.stock_validation")


@dataclass(frozen=True)
class ReceiptRules:
    """Line-level receiving requirements."""
    require_batch_number: bool = False
    require_expiry_date: bool = False


def _quantity_issue(exc: InvalidQuantityError, line_index: int) -> ValidationIssue:
    return ValidationIssue(
        code=exc.code,
        message=str(exc),
        product_id=exc.product_id,
        line_index=line_index,
    )


class StockValidationService:
    """Snapshot validation of sale and receipt lines.

    Contract:
        Every method returns a ValidationResult; ``is_valid`` is False when
        at least one ERROR issue was found.
    Non-goals:
        Does NOT lock rows; a passing result can be invalidated by a
        concurrent writer before the caller applies it.
    """

    def __init__(
        self,
        store: InventoryStore,
        clock: Clock | None = None,
        receipt_rules: ReceiptRules | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._rules = receipt_rules or ReceiptRules()

    # -------------------------------------------------------------------------
    # Sales
    # -------------------------------------------------------------------------

    def validate_sale(self, lines: Sequence[SaleLine | LineRequest]) -> ValidationResult:
        """Check that every product can cover the summed requested quantity.

        Each failing product is reported once, at the index of its first
        line, with ``requested``, ``available`` and ``shortfall``.
        """
        issues: list[ValidationIssue] = []
        if not lines:
            return ValidationResult((
                ValidationIssue(code="EMPTY_OPERATION", message="Sale has no lines"),
            ))

        requested: dict[UUID, int] = {}
        first_index: dict[UUID, int] = {}
        for index, line in enumerate(lines):
            try:
                quantity = validate_quantity(line.quantity, line.product_id, index)
            except InvalidQuantityError as exc:
                issues.append(_quantity_issue(exc, index))
                continue
            first_index.setdefault(line.product_id, index)
            requested[line.product_id] = requested.get(line.product_id, 0) + quantity

        for product_id, total in requested.items():
            index = first_index[product_id]
            product = self._store.get_product(product_id)
            problem = self._product_issue(product_id, product, index)
            if problem is not None:
                issues.append(problem)
                continue
            available = product.quantity_on_hand
            if total > available:
                issues.append(ValidationIssue(
                    code="INSUFFICIENT_STOCK",
                    message=(
                        f"Requested {total} of {product.sku}, "
                        f"only {max(available, 0)} available"
                    ),
                    product_id=product_id,
                    line_index=index,
                    requested=total,
                    available=available,
                    shortfall=total - available,
                ))

        result = ValidationResult(tuple(issues))
        if not result.is_valid:
            logger.info(
                "sale_validation_failed",
                extra={
                    "line_count": len(lines),
                    "error_count": len(result.errors),
                    "codes": sorted({i.code for i in result.errors}),
                },
            )
        return result

    def _product_issue(
        self,
        product_id: UUID,
        product: ProductState | None,
        index: int,
    ) -> ValidationIssue | None:
        if product is None:
            return ValidationIssue(
                code="PRODUCT_NOT_FOUND",
                message=f"Product not found: {product_id}",
                product_id=product_id,
                line_index=index,
            )
        if product.is_retired:
            return ValidationIssue(
                code="PRODUCT_RETIRED",
                message=f"Product {product.sku} is retired",
                product_id=product_id,
                line_index=index,
            )
        if product.on_hold:
            return ValidationIssue(
                code="PRODUCT_ON_HOLD",
                message=(
                    f"Product {product.sku} is on integrity hold: "
                    f"{product.integrity_hold_reason}"
                ),
                product_id=product_id,
                line_index=index,
            )
        return None

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    def validate_receipt(
        self,
        order: PurchaseOrder,
        lines: Sequence[ReceivingLine],
    ) -> ValidationResult:
        """Check receiving lines against the order and the catalog.

        Errors: bad quantity, product not on the order, unknown / retired /
        held product, bad condition code, negative unit cost, missing batch
        or expiry where required.

        Warnings: received quantity above pending (``OVER_RECEIPT``, with
        ``requested`` and ``pending``), and goods received in good condition
        past their expiry date.
        """
        if not lines:
            return ValidationResult((
                ValidationIssue(code="EMPTY_OPERATION", message="Receipt has no lines"),
            ))

        issues: list[ValidationIssue] = []
        received: dict[UUID, int] = {}
        first_index: dict[UUID, int] = {}
        today = self._clock.now().date()

        for index, line in enumerate(lines):
            line_issues = self._receipt_line_issues(order, line, index, today)
            issues.extend(line_issues)
            if any(not i.is_warning for i in line_issues):
                continue
            first_index.setdefault(line.product_id, index)
            received[line.product_id] = received.get(line.product_id, 0) + line.quantity

        for product_id, total in received.items():
            order_line = order.line_for(product_id)
            pending = order_line.pending_quantity
            if total > pending:
                issues.append(ValidationIssue(
                    code="OVER_RECEIPT",
                    message=(
                        f"Receiving {total} exceeds pending quantity {pending} "
                        f"(ordered {order_line.ordered_quantity}, "
                        f"received {order_line.received_quantity})"
                    ),
                    severity=IssueSeverity.WARNING,
                    product_id=product_id,
                    line_index=first_index[product_id],
                    requested=total,
                    pending=pending,
                ))

        result = ValidationResult(tuple(issues))
        if result.issues:
            logger.info(
                "receipt_validation_findings",
                extra={
                    "purchase_order_id": str(order.id),
                    "error_count": len(result.errors),
                    "warning_count": len(result.warnings),
                },
            )
        return result

    def _receipt_line_issues(
        self,
        order: PurchaseOrder,
        line: ReceivingLine,
        index: int,
        today: date,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        def error(code: str, message: str) -> None:
            issues.append(ValidationIssue(
                code=code, message=message, product_id=line.product_id, line_index=index,
            ))

        try:
            validate_quantity(line.quantity, line.product_id, index)
        except InvalidQuantityError as exc:
            issues.append(_quantity_issue(exc, index))

        if order.line_for(line.product_id) is None:
            error(
                "PRODUCT_NOT_ON_ORDER",
                f"Product {line.product_id} is not on purchase order {order.order_number}",
            )
        else:
            problem = self._product_issue(
                line.product_id, self._store.get_product(line.product_id), index
            )
            if problem is not None:
                issues.append(problem)

        try:
            condition = ItemCondition(line.condition)
        except ValueError:
            condition = None
            error("INVALID_CONDITION", f"Unknown item condition: {line.condition!r}")

        if line.unit_cost is not None:
            if not isinstance(line.unit_cost, (Decimal, int)) or isinstance(line.unit_cost, bool):
                error("INVALID_UNIT_COST", f"Unit cost must be a Decimal: {line.unit_cost!r}")
            elif Decimal(line.unit_cost) < 0:
                error("INVALID_UNIT_COST", f"Unit cost cannot be negative: {line.unit_cost}")

        if self._rules.require_batch_number and not line.batch_number:
            error("MISSING_BATCH_NUMBER", "Batch number is required")
        if self._rules.require_expiry_date and line.expiry_date is None:
            error("MISSING_EXPIRY_DATE", "Expiry date is required")

        if (
            condition is ItemCondition.GOOD
            and line.expiry_date is not None
            and line.expiry_date < today
        ):
            issues.append(ValidationIssue(
                code="EXPIRED_ON_RECEIPT",
                message=f"Goods marked good expired on {line.expiry_date.isoformat()}",
                severity=IssueSeverity.WARNING,
                product_id=line.product_id,
                line_index=index,
            ))
        return issues
