"""
inventory_services.receiving_service -- goods receipt against purchase orders.

Responsibility:
    Runs one physical receipt end to end: permission, duplicate detection,
    order status check, line validation with over-receipt confirmation,
    stock movements with weighted-average cost, received-quantity update,
    the ``*_received`` status transition, and the persisted ReceivingRecord.

Architecture position:
    Services -- application façade.  Composes StockValidationService,
    PurchaseOrderStateMachine and InventoryUpdateEngine; talks to the store
    only for the purchase-order side of the receipt.

Invariants enforced:
    - The receiving id is the operation id; a receiving id that was already
      recorded returns the earlier outcome and writes nothing.
    - Errors block; an over-receipt warning blocks unless the caller passed
      ``confirm_over_receipt=True``.
    - Status transitions are validated before any stock moves.
    - On engine failure no transition happens and nothing is recorded.
    - If recording the receipt fails after stock moved, the movements are
      rolled back through the engine.

Failure modes:
    Business failures are returned in ``ReceiveResult.error``.
    CriticalIntegrityError from a failed rollback is returned with kind
    ``critical_integrity``.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import WeightedAverageCostCalculator
from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    CancellationToken,
    CostUpdate,
    ItemCondition,
    LineRequest,
    MovementRecord,
    OperationError,
    PurchaseOrder,
    PriceVariance,
    ReceiveResult,
    ReceivingLine,
    ReceivingRecord,
    ReceivingRecordLine,
    ReceivingRequest,
    StatusTransitionRecord,
    ValidationIssue,
)
from inventory_kernel.domain.principal import Permission, PermissionChecker, Principal
from inventory_kernel.exceptions import (
    InventoryKernelError,
    LedgerIntegrityError,
    OverReceiptNotConfirmedError,
    PermissionDeniedError,
    PurchaseOrderNotFoundError,
    ReceiptValidationError,
    ReceivingNotAllowedError,
    TransitionError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.inventory_update_engine import InventoryUpdateEngine
from inventory_kernel.services.purchase_order_state_machine import (
    RECEIVABLE_STATUSES,
    PurchaseOrderStateMachine,
)
from inventory_kernel.services.stock_validation import StockValidationService
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.receiving")


def project_receipt(order: PurchaseOrder, quantities: dict[UUID, int]) -> PurchaseOrder:
    """The order as it would look with ``quantities`` received."""
    return replace(
        order,
        lines=tuple(
            replace(line, received_quantity=line.received_quantity + quantities.get(line.product_id, 0))
            for line in order.lines
        ),
    )


class ReceivingService:
    """Receives goods against purchase orders."""

    def __init__(
        self,
        store: InventoryStore,
        validator: StockValidationService,
        state_machine: PurchaseOrderStateMachine,
        engine: InventoryUpdateEngine,
        permissions: PermissionChecker,
        clock: Clock,
        cost_calculator: WeightedAverageCostCalculator | None = None,
    ):
        self._store = store
        self._validator = validator
        self._state_machine = state_machine
        self._engine = engine
        self._permissions = permissions
        self._clock = clock
        self._calculator = cost_calculator or engine.manager.cost_calculator

    def receive_goods(
        self,
        purchase_order_id: UUID,
        request: ReceivingRequest,
        principal: Principal,
        confirm_over_receipt: bool = False,
        cancellation_token: CancellationToken | None = None,
    ) -> ReceiveResult:
        """
        Record a physical receipt against a purchase order.

        Returns:
            ReceiveResult.  ``requires_confirmation`` is True when the
            receipt was held back for an unconfirmed over-receipt.
        """
        receiving_id = request.receiving_id
        with LogContext.bind(
            purchase_order_id=str(purchase_order_id),
            operation_id=str(receiving_id),
            actor_id=str(principal.id),
        ):
            def failed(exc: InventoryKernelError | None, **fields) -> ReceiveResult:
                return ReceiveResult(
                    purchase_order_id=purchase_order_id,
                    receiving_id=receiving_id,
                    success=False,
                    error=fields.pop("error", None) or OperationError.from_exception(exc),
                    **fields,
                )

            if not self._permissions.has_permission(
                principal, Permission.RECEIVE_GOODS, {"purchase_order_id": purchase_order_id}
            ):
                logger.warning("receiving_permission_denied")
                return failed(PermissionDeniedError(principal.id, Permission.RECEIVE_GOODS.value))

            existing = self._store.get_receiving_record(receiving_id)
            if existing is not None:
                return self._duplicate(purchase_order_id, existing, failed)

            order = self._store.get_purchase_order(purchase_order_id)
            if order is None:
                return failed(PurchaseOrderNotFoundError(purchase_order_id))
            if order.status not in RECEIVABLE_STATUSES:
                logger.info("receiving_not_allowed", extra={"status": order.status.value})
                return failed(ReceivingNotAllowedError(purchase_order_id, order.status.value))

            validation = self._validator.validate_receipt(order, request.lines)
            if not validation.is_valid:
                first = validation.errors[0]
                return failed(
                    None,
                    error=OperationError.from_exception(
                        ReceiptValidationError(purchase_order_id, validation.errors),
                        product_id=first.product_id,
                        line_index=first.line_index,
                    ),
                    issues=validation.issues,
                    warnings=validation.warnings,
                )

            over = [w for w in validation.warnings if w.code == "OVER_RECEIPT"]
            if over and not confirm_over_receipt:
                logger.info(
                    "over_receipt_confirmation_required",
                    extra={"product_ids": [str(w.product_id) for w in over]},
                )
                return failed(
                    OverReceiptNotConfirmedError(
                        purchase_order_id,
                        [
                            {"product_id": w.product_id, "requested": w.requested, "pending": w.pending}
                            for w in over
                        ],
                    ),
                    warnings=validation.warnings,
                    issues=validation.issues,
                    requires_confirmation=True,
                )
            if over:
                logger.warning(
                    "over_receipt_confirmed",
                    extra={"product_ids": [str(w.product_id) for w in over]},
                )

            quantities = self._quantities(request.lines)
            try:
                self._check_transitions(order, quantities, principal)
            except TransitionError as exc:
                return failed(exc, warnings=validation.warnings)

            line_requests = self._line_requests(order, request.lines)
            try:
                result = self._engine.apply(
                    operation_id=str(receiving_id),
                    lines=line_requests,
                    cause=MovementCause.PURCHASE_RECEIPT,
                    actor_id=principal.id,
                    reason=f"receipt {receiving_id} on PO {order.order_number}",
                    cancellation_token=cancellation_token,
                )
            except LedgerIntegrityError as exc:
                return failed(exc, warnings=validation.warnings)
            if not result.success:
                logger.warning(
                    "receiving_failed",
                    extra={
                        "failed_line": result.failed_line,
                        "code": result.error.code if result.error else None,
                    },
                )
                return failed(None, error=result.error, warnings=validation.warnings)

            movements = {m.product_id: m for m in result.movements}
            try:
                record, transitions, updated = self._record(
                    order.id, request, movements, quantities, principal, confirm_over_receipt
                )
            except InventoryKernelError as exc:
                return self._undo(purchase_order_id, request, principal, exc, failed, validation)

            self._state_machine.publish(transitions)
            cost_updates = self._cost_updates(movements)
            price_variances = self._price_variances(order, line_requests)
            logger.info(
                "goods_received",
                extra={
                    "line_count": len(request.lines),
                    "status": updated.status.value,
                    "total_received": updated.total_received,
                    "total_ordered": updated.total_ordered,
                },
            )
            return ReceiveResult(
                purchase_order_id=purchase_order_id,
                receiving_id=receiving_id,
                success=True,
                status=updated.status,
                movement_ids=record.movement_ids,
                warnings=validation.warnings,
                issues=validation.issues,
                cost_updates=cost_updates,
                price_variances=price_variances,
            )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _duplicate(self, purchase_order_id: UUID, existing: ReceivingRecord, failed) -> ReceiveResult:
        if existing.purchase_order_id != purchase_order_id:
            issue = ValidationIssue(
                code="RECEIVING_ID_REUSED",
                message=(
                    f"Receiving id {existing.id} was already used for purchase order "
                    f"{existing.purchase_order_id}"
                ),
            )
            return failed(ReceiptValidationError(purchase_order_id, [issue]), issues=(issue,))
        order = self._store.get_purchase_order(purchase_order_id)
        logger.info("receiving_deduplicated", extra={"receiving_id": str(existing.id)})
        return ReceiveResult(
            purchase_order_id=purchase_order_id,
            receiving_id=existing.id,
            success=True,
            status=order.status if order else None,
            movement_ids=existing.movement_ids,
            duplicate=True,
        )

    @staticmethod
    def _quantities(lines: Sequence[ReceivingLine]) -> dict[UUID, int]:
        totals: dict[UUID, int] = {}
        for line in lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals

    def _line_requests(
        self,
        order: PurchaseOrder,
        lines: Sequence[ReceivingLine],
    ) -> list[LineRequest]:
        """One request per product, its lines blended by quantity.

        A line without a unit cost is received at the order line's price.
        """
        costs: dict[UUID, tuple[int, Decimal]] = {}
        for line in lines:
            unit_cost = line.unit_cost
            if unit_cost is None:
                unit_cost = order.line_for(line.product_id).unit_cost
            if line.product_id in costs:
                qty, cost = costs[line.product_id]
                costs[line.product_id] = (
                    qty + line.quantity,
                    self._calculator.recompute(qty, cost, line.quantity, unit_cost),
                )
            else:
                costs[line.product_id] = (line.quantity, Decimal(unit_cost))
        return [
            LineRequest(product_id=product_id, quantity=quantity, unit_cost=cost)
            for product_id, (quantity, cost) in costs.items()
        ]

    def _check_transitions(
        self,
        order: PurchaseOrder,
        quantities: dict[UUID, int],
        principal: Principal,
    ) -> None:
        projected = project_receipt(order, quantities)
        status = order.status
        for target in self._state_machine.receipt_path(status, projected.fully_received):
            self._state_machine.validate(replace(projected, status=status), target, principal)
            status = target

    def _record(
        self,
        order_id: UUID,
        request: ReceivingRequest,
        movements: dict[UUID, MovementRecord],
        quantities: dict[UUID, int],
        principal: Principal,
        confirm_over_receipt: bool,
    ) -> tuple[ReceivingRecord, list[StatusTransitionRecord], PurchaseOrder]:
        """Quantities, transitions and the receiving record in one unit of work."""
        transitions: list[StatusTransitionRecord] = []
        with self._store.transaction():
            updated = self._store.add_received_quantities(order_id, quantities)
            if not confirm_over_receipt:
                self._check_pending(updated, quantities)
            for target in self._state_machine.receipt_path(updated.status, updated.fully_received):
                transitions.append(
                    self._state_machine.apply_transition(
                        updated, target, principal,
                        reason=f"receipt {request.receiving_id}",
                        automatic=True,
                    )
                )
                updated = replace(updated, status=target)
            record = self._store.insert_receiving_record(
                ReceivingRecord(
                    id=request.receiving_id,
                    purchase_order_id=order_id,
                    actor_id=principal.id,
                    received_at=self._clock.now(),
                    lines=tuple(
                        ReceivingRecordLine(
                            product_id=line.product_id,
                            quantity=line.quantity,
                            condition=ItemCondition(line.condition),
                            movement_id=movements[line.product_id].id,
                            unit_cost=line.unit_cost,
                            batch_number=line.batch_number,
                            expiry_date=line.expiry_date,
                        )
                        for line in request.lines
                    ),
                    notes=request.notes,
                )
            )
        return record, transitions, updated

    @staticmethod
    def _check_pending(updated: PurchaseOrder, quantities: dict[UUID, int]) -> None:
        """Received quantities re-checked under the write; a concurrent receipt may have landed."""
        over = []
        for product_id, quantity in quantities.items():
            line = updated.line_for(product_id)
            if line.received_quantity > line.ordered_quantity:
                over.append({
                    "product_id": product_id,
                    "requested": quantity,
                    "pending": max(0, line.ordered_quantity - (line.received_quantity - quantity)),
                })
        if over:
            logger.warning(
                "concurrent_over_receipt",
                extra={"product_ids": [str(o["product_id"]) for o in over]},
            )
            raise OverReceiptNotConfirmedError(updated.id, over)

    def _undo(self, purchase_order_id, request, principal, exc, failed, validation) -> ReceiveResult:
        existing = self._store.get_receiving_record(request.receiving_id)
        if existing is not None:
            # A concurrent submission of the same receipt recorded it first.
            return self._duplicate(purchase_order_id, existing, failed)
        logger.warning("receiving_record_failed", extra={"code": exc.code})
        try:
            self._engine.rollback(
                operation_id=str(request.receiving_id),
                actor_id=principal.id,
                reason=f"receipt {request.receiving_id} could not be recorded: {exc.code}",
                cause=MovementCause.PURCHASE_RECEIPT,
            )
        except LedgerIntegrityError as critical:
            return failed(critical, warnings=validation.warnings)
        return failed(
            exc,
            warnings=validation.warnings,
            requires_confirmation=isinstance(exc, OverReceiptNotConfirmedError),
        )

    def _cost_updates(self, movements: dict[UUID, MovementRecord]) -> tuple[CostUpdate, ...]:
        updates = []
        for product_id, movement in movements.items():
            if movement.unit_cost_before is None or movement.unit_cost_after is None:
                continue
            variance, percent, significant = self._calculator.variance(
                movement.unit_cost_before, movement.unit_cost_after
            )
            update = CostUpdate(
                product_id=product_id,
                previous_cost=movement.unit_cost_before,
                new_cost=movement.unit_cost_after,
                variance=variance,
                variance_percent=percent,
                significant=significant,
            )
            updates.append(update)
            if significant:
                logger.warning(
                    "significant_cost_variance",
                    extra={
                        "product_id": str(product_id),
                        "previous_cost": update.previous_cost,
                        "new_cost": update.new_cost,
                        "variance_percent": update.variance_percent,
                    },
                )
        return tuple(sorted(updates, key=lambda u: str(u.product_id)))

    def _price_variances(
        self,
        order: PurchaseOrder,
        requests: Sequence[LineRequest],
    ) -> tuple[PriceVariance, ...]:
        variances = []
        for request in requests:
            expected = order.line_for(request.product_id).unit_cost
            variance, percent, recordable = self._calculator.price_variance(
                expected, request.unit_cost
            )
            if not recordable:
                continue
            record = PriceVariance(
                product_id=request.product_id,
                expected_cost=expected,
                actual_cost=request.unit_cost,
                quantity=request.quantity,
                variance=variance,
                variance_percent=percent,
                total_variance=(variance * request.quantity).quantize(Decimal("0.01")),
            )
            variances.append(record)
            logger.info(
                "purchase_price_variance",
                extra={
                    "product_id": str(record.product_id),
                    "expected_cost": record.expected_cost,
                    "actual_cost": record.actual_cost,
                    "variance_percent": record.variance_percent,
                    "total_variance": record.total_variance,
                },
            )
        return tuple(sorted(variances, key=lambda v: str(v.product_id)))
