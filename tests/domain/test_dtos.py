"""
Tests for domain DTOs: computed properties and error conversion.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.direction import Direction, MovementCause
from inventory_kernel.domain.dtos import (
    CancellationToken,
    IssueSeverity,
    MovementPage,
    MovementRecord,
    OperationError,
    ProductState,
    PurchaseOrder,
    PurchaseOrderLine,
    ReconciliationReport,
    ValidationIssue,
    ValidationResult,
)
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.exceptions import (
    InsufficientStockError,
    NegativeStockError,
    OperationCancelledError,
    StoreTimeoutError,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _movement(cause=MovementCause.SALE, reversal_of=None, quantity=3):
    return MovementRecord(
        id=uuid4(),
        product_id=uuid4(),
        cause=cause,
        quantity=quantity,
        stock_before=10,
        stock_after=7,
        reference_id="S-1",
        actor_id=uuid4(),
        reason="",
        created_at=NOW,
        sequence=1,
        reversal_of_id=reversal_of,
    )


class TestMovementRecord:

    def test_direction_from_cause(self):
        movement = _movement()
        assert movement.direction is Direction.OUT
        assert movement.signed_quantity == -3
        assert not movement.is_reversal

    def test_reversal_flips_direction(self):
        reversal = _movement(reversal_of=uuid4())
        assert reversal.is_reversal
        assert reversal.direction is Direction.IN
        assert reversal.signed_quantity == 3

    def test_is_frozen(self):
        with pytest.raises(AttributeError):
            _movement().quantity = 5


class TestPurchaseOrder:

    def _order(self, *lines):
        return PurchaseOrder(
            id=uuid4(),
            order_number="PO-1",
            supplier_id=uuid4(),
            status=PurchaseOrderStatus.SENT_TO_SUPPLIER,
            lines=tuple(lines),
            created_by_id=uuid4(),
            created_at=NOW,
        )

    def test_pending_never_negative(self):
        line = PurchaseOrderLine(uuid4(), uuid4(), 100, Decimal("1"), received_quantity=150)
        assert line.pending_quantity == 0

    def test_fully_received(self):
        order = self._order(
            PurchaseOrderLine(uuid4(), uuid4(), 10, Decimal("1"), received_quantity=10),
            PurchaseOrderLine(uuid4(), uuid4(), 5, Decimal("1"), received_quantity=7),
        )
        assert order.fully_received
        assert order.total_ordered == 15
        assert order.total_received == 17

    def test_partially_received(self):
        order = self._order(
            PurchaseOrderLine(uuid4(), uuid4(), 10, Decimal("1"), received_quantity=3),
        )
        assert not order.fully_received

    def test_order_without_lines_is_not_fully_received(self):
        assert not self._order().fully_received

    def test_line_for(self):
        line = PurchaseOrderLine(uuid4(), uuid4(), 10, Decimal("1"))
        order = self._order(line)
        assert order.line_for(line.product_id) is line
        assert order.line_for(uuid4()) is None


class TestProductState:

    def test_low_stock_at_threshold(self):
        product = ProductState(uuid4(), "A", "A", 5, Decimal("1"), 5, 0)
        assert product.is_low_stock

    def test_on_hold(self):
        product = ProductState(uuid4(), "A", "A", 5, Decimal("1"), 0, 0, integrity_hold_reason="x")
        assert product.on_hold


class TestValidationResult:

    def test_warnings_do_not_invalidate(self):
        result = ValidationResult((
            ValidationIssue(code="OVER_RECEIPT", message="", severity=IssueSeverity.WARNING),
        ))
        assert result.is_valid
        assert result.has_warnings

    def test_merge(self):
        a = ValidationResult((ValidationIssue(code="A", message=""),))
        b = ValidationResult.success()
        merged = a.merge(b)
        assert not merged.is_valid
        assert [i.code for i in merged.errors] == ["A"]


class TestOperationError:

    def test_from_exception_carries_structured_fields(self):
        product_id = uuid4()
        error = OperationError.from_exception(InsufficientStockError(product_id, 10, 3))
        assert error.kind == "validation"
        assert error.code == "INSUFFICIENT_STOCK"
        assert error.product_id == product_id
        assert error.details["shortfall"] == 7
        assert "product_id" not in error.details
        assert not error.retryable

    def test_explicit_line_index_wins(self):
        error = OperationError.from_exception(
            NegativeStockError(uuid4(), "sale", 2, 5), line_index=4
        )
        assert error.line_index == 4

    def test_store_errors_are_retryable(self):
        error = OperationError.from_exception(StoreTimeoutError("commit", "slow"))
        assert error.kind == "store"
        assert error.retryable


class TestCancellationToken:

    def test_raises_once_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled("op")
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled("op")


class TestPagesAndReports:

    def test_has_more(self):
        page = MovementPage(items=(_movement(),), total=3, limit=1, offset=1)
        assert page.has_more
        assert not MovementPage(items=(_movement(),), total=2, limit=1, offset=1).has_more

    def test_report_matches_only_without_discrepancy_or_broken_links(self):
        assert ReconciliationReport(uuid4(), 5, 5, 2).matches
        assert not ReconciliationReport(uuid4(), 5, 4, 2).matches
        assert not ReconciliationReport(uuid4(), 5, 5, 2, broken_links=(uuid4(),)).matches
        assert ReconciliationReport(uuid4(), 5, 4, 2).discrepancy == 1
