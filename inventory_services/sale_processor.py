"""
inventory_services.sale_processor -- point-of-sale stock deduction.

Responsibility:
    Turns a completed sale into stock movements: checks the cashier's
    permission, validates availability against a snapshot, and hands the
    consolidated lines to the update engine with cause ``sale``.  Voids a
    sale by rolling its movements back.

Architecture position:
    Services -- application façade over the kernel.  Holds no state of its
    own; every collaborator is injected.

Invariants enforced:
    - The sale id is the operation id and the reference id of every
      movement, so a resubmitted sale is applied at most once.
    - Duplicate product lines are summed into one line before applying.
    - Validation errors stop the sale before any write.

Failure modes:
    Every failure is returned in ``SaleResult.error``; nothing raises for
    business problems.  A CriticalIntegrityError from the engine is also
    returned (kind ``critical_integrity``) after the engine has logged it
    and placed the products on hold.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    CancellationToken,
    LineRequest,
    OperationError,
    SaleLine,
    SaleResult,
    UpdateResult,
)
from inventory_kernel.domain.principal import Permission, PermissionChecker, Principal
from inventory_kernel.exceptions import (
    LedgerIntegrityError,
    PermissionDeniedError,
    SaleValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.inventory_update_engine import InventoryUpdateEngine
from inventory_kernel.services.stock_validation import StockValidationService

logger = get_logger("services.sale_processor")


def consolidate(lines: Sequence[SaleLine]) -> list[LineRequest]:
    """One LineRequest per product, in order of first appearance."""
    totals: dict[UUID, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return [LineRequest(product_id=p, quantity=q) for p, q in totals.items()]


def _sale_result(sale_id: str, result: UpdateResult) -> SaleResult:
    return SaleResult(
        sale_id=sale_id,
        success=result.success,
        movement_ids=result.movement_ids,
        error=result.error,
        low_stock_alerts=result.low_stock_alerts,
    )


class SaleProcessor:
    """Applies and voids sales."""

    def __init__(
        self,
        validator: StockValidationService,
        engine: InventoryUpdateEngine,
        permissions: PermissionChecker,
    ):
        self._validator = validator
        self._engine = engine
        self._permissions = permissions

    def _denied(self, sale_id: str, principal: Principal, permission: Permission) -> SaleResult:
        exc = PermissionDeniedError(principal.id, permission.value)
        logger.warning(
            "sale_permission_denied",
            extra={"actor_id": str(principal.id), "permission": permission.value},
        )
        return SaleResult(sale_id=sale_id, success=False, error=OperationError.from_exception(exc))

    def process_sale(
        self,
        sale_id: str | UUID,
        lines: Sequence[SaleLine],
        principal: Principal,
        cancellation_token: CancellationToken | None = None,
    ) -> SaleResult:
        """
        Deduct stock for every line of a sale, or for none of them.

        Resubmitting a sale that already committed returns its movements
        without deducting again.  Once every movement of a sale has been
        reversed (voided or rolled back) the sale id can be processed anew.
        """
        sale_id = str(sale_id)
        with LogContext.bind(operation_id=sale_id, actor_id=str(principal.id)):
            if not self._permissions.has_permission(
                principal, Permission.PROCESS_SALE, {"sale_id": sale_id}
            ):
                return self._denied(sale_id, principal, Permission.PROCESS_SALE)

            active = tuple(
                m.id for m in self._engine.store.movements_for_reference(sale_id)
                if m.cause is MovementCause.SALE and not m.is_reversal and not m.is_reversed
            )
            if active:
                logger.info("sale_deduplicated", extra={"movement_count": len(active)})
                return SaleResult(sale_id=sale_id, success=True, movement_ids=active)

            validation = self._validator.validate_sale(lines)
            if not validation.is_valid:
                exc = SaleValidationError(sale_id, validation.errors)
                first = validation.errors[0]
                return SaleResult(
                    sale_id=sale_id,
                    success=False,
                    error=OperationError.from_exception(
                        exc, product_id=first.product_id, line_index=first.line_index
                    ),
                    issues=validation.issues,
                )

            try:
                result = self._engine.apply(
                    operation_id=sale_id,
                    lines=consolidate(lines),
                    cause=MovementCause.SALE,
                    actor_id=principal.id,
                    reason=f"sale {sale_id}",
                    cancellation_token=cancellation_token,
                )
            except LedgerIntegrityError as exc:
                return SaleResult(
                    sale_id=sale_id,
                    success=False,
                    error=OperationError.from_exception(exc),
                )

            if result.success:
                logger.info(
                    "sale_processed",
                    extra={"line_count": len(result.movements)},
                )
            else:
                logger.warning(
                    "sale_failed",
                    extra={
                        "failed_line": result.failed_line,
                        "code": result.error.code if result.error else None,
                    },
                )
            return _sale_result(sale_id, result)

    def void_sale(
        self,
        sale_id: str | UUID,
        principal: Principal,
        reason: str = "",
    ) -> SaleResult:
        """
        Return a sale's stock by reversing each of its movements.

        Voiding twice returns the reversals of the first void.
        """
        sale_id = str(sale_id)
        with LogContext.bind(operation_id=sale_id, actor_id=str(principal.id)):
            if not self._permissions.has_permission(
                principal, Permission.VOID_SALE, {"sale_id": sale_id}
            ):
                return self._denied(sale_id, principal, Permission.VOID_SALE)
            try:
                result = self._engine.rollback(
                    operation_id=sale_id,
                    actor_id=principal.id,
                    reason=reason or f"void of sale {sale_id}",
                    cause=MovementCause.SALE,
                )
            except LedgerIntegrityError as exc:
                return SaleResult(
                    sale_id=sale_id,
                    success=False,
                    error=OperationError.from_exception(exc),
                )
            if result.success:
                logger.info("sale_voided", extra={"reversal_count": len(result.movements)})
            return _sale_result(sale_id, result)
