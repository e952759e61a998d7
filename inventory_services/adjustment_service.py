"""
inventory_services.adjustment_service -- manual stock adjustments.

Responsibility:
    Records stock changes that are neither sales nor purchase receipts:
    counted corrections, transfers, customer returns, damage and shrinkage.
    Each adjustment is a one-line engine operation keyed by its adjustment
    id, so a resubmitted adjustment is applied at most once.

Architecture position:
    Services -- application façade over the update engine.

Invariants enforced:
    - ``sale`` and ``purchase_receipt`` are refused; they have their own
      entry points with their own validation.
    - Driving stock negative needs both ``allow_negative`` and the
      ``stock.override_negative`` permission, and only ``adjustment_out``
      honours it.

Failure modes:
    Returned in ``UpdateResult.error``: PermissionDeniedError,
    UnknownCauseError, AdjustmentCauseError and every engine failure.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from inventory_kernel.domain.direction import MovementCause, parse_cause
from inventory_kernel.domain.dtos import LineRequest, OperationError, UpdateResult
from inventory_kernel.domain.principal import Permission, PermissionChecker, Principal
from inventory_kernel.exceptions import (
    AdjustmentCauseError,
    InventoryKernelError,
    LedgerIntegrityError,
    PermissionDeniedError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.inventory_update_engine import InventoryUpdateEngine

logger = get_logger("services.adjustment")

RESERVED_CAUSES: frozenset[MovementCause] = frozenset({
    MovementCause.SALE,
    MovementCause.PURCHASE_RECEIPT,
})


class StockAdjustmentService:
    """Applies single-product adjustments through the update engine."""

    def __init__(self, engine: InventoryUpdateEngine, permissions: PermissionChecker):
        self._engine = engine
        self._permissions = permissions

    def _check(
        self,
        cause: MovementCause | str,
        principal: Principal,
        allow_negative: bool,
        context: dict,
    ) -> MovementCause:
        cause = parse_cause(cause)
        if cause in RESERVED_CAUSES:
            raise AdjustmentCauseError(cause.value)
        for permission in (
            (Permission.ADJUST_STOCK, Permission.OVERRIDE_NEGATIVE_STOCK)
            if allow_negative else (Permission.ADJUST_STOCK,)
        ):
            if not self._permissions.has_permission(principal, permission, context):
                raise PermissionDeniedError(principal.id, permission.value)
        return cause

    def adjust_stock(
        self,
        product_id: UUID,
        cause: MovementCause | str,
        quantity: int,
        principal: Principal,
        reason: str,
        allow_negative: bool = False,
        adjustment_id: str | UUID | None = None,
    ) -> UpdateResult:
        """
        Move ``quantity`` units of one product for ``cause``.

        Args:
            adjustment_id: Idempotency key; a fresh one is generated when
                omitted, so only callers that pass one get deduplication.
        """
        operation_id = str(adjustment_id or uuid4())
        with LogContext.bind(
            operation_id=operation_id,
            actor_id=str(principal.id),
            product_id=str(product_id),
        ):
            context = {"product_id": product_id, "cause": str(getattr(cause, "value", cause))}
            try:
                cause = self._check(cause, principal, allow_negative, context)
            except InventoryKernelError as exc:
                logger.warning("adjustment_rejected", extra={"code": exc.code})
                return UpdateResult(
                    operation_id=operation_id,
                    success=False,
                    error=OperationError.from_exception(exc, product_id=product_id),
                )

            try:
                result = self._engine.apply(
                    operation_id=operation_id,
                    lines=[LineRequest(
                        product_id=product_id,
                        quantity=quantity,
                        allow_negative=allow_negative,
                    )],
                    cause=cause,
                    actor_id=principal.id,
                    reason=reason,
                )
            except LedgerIntegrityError as exc:
                return UpdateResult(
                    operation_id=operation_id,
                    success=False,
                    error=OperationError.from_exception(exc, product_id=product_id),
                )

            if result.success:
                movement = result.movements[0]
                logger.info(
                    "stock_adjusted",
                    extra={
                        "cause": cause.value,
                        "quantity": quantity,
                        "stock_after": movement.stock_after,
                        "allow_negative": allow_negative,
                    },
                )
            return result
