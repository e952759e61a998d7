"""
InventoryUpdateEngine -- all-or-nothing application of multi-line operations.

Responsibility:
    Applies the lines of one business operation (a sale, a receipt, an
    adjustment) in caller order, one ledger movement per line, so that
    either every line takes effect or none does.  Undoes a whole operation
    on request (``rollback``).

Architecture position:
    Kernel > Services -- orchestration.  This is the layer that catches and
    compensates; the pure domain and the record manager only raise.

Invariants enforced:
    - Lines apply in input order; the first failure stops the batch.
    - Native path (``store.supports_atomic_batch``): the batch runs inside
      one store transaction and a failure aborts it; no reversal rows are
      written.
    - Compensating path: lines already committed are reversed in exact
      reverse creation order.
    - After every line the product is re-read and its quantity compared to
      the movement's ``stock_after``.  A mismatch is re-checked once,
      crediting movements committed after ours by concurrent writers; an
      unexplained difference fails the line and rolls the batch back.
    - Cancellation is honoured only before the first line.
    - The audit sink only ever receives committed records.

Failure modes:
    - Every InventoryKernelError raised by a line is reported in the
      returned UpdateResult (``failed_line``, ``processed_before_failure``,
      ``error``) after the rollback has completed.
    - CriticalIntegrityError is RAISED when a compensating reversal cannot
      be written.  Every product left with an unreversed movement is put on
      an integrity hold first.

Audit relevance:
    ``operation_applied``, ``operation_rolled_back`` and, at CRITICAL,
    ``compensation_failed`` are the operation-level log events.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from inventory_kernel.domain.direction import Direction, MovementCause, parse_cause, resolve
from inventory_kernel.domain.dtos import (
    CancellationToken,
    LineOutcome,
    LineRequest,
    LowStockAlert,
    MovementRecord,
    OperationError,
    UpdateResult,
)
from inventory_kernel.exceptions import (
    CriticalIntegrityError,
    DuplicateLineError,
    EmptyOperationError,
    InventoryKernelError,
    StockVerificationError,
    StoreError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.audit_sink import AuditSink, LoggingAuditSink, publish_movements
from inventory_kernel.services.movement_record_manager import MovementRecordManager
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.inventory_update_engine")


class _LineFailed(Exception):
    """Internal: carries the failing line out of the native transaction."""

    def __init__(self, index: int, product_id: UUID, error: InventoryKernelError):
        super().__init__(str(error))
        self.index = index
        self.product_id = product_id
        self.error = error


class InventoryUpdateEngine:
    """Applies and rolls back multi-line operations.

    Contract:
        ``apply`` never leaves a partially applied operation behind unless
        it raises CriticalIntegrityError.
    Non-goals:
        - Does NOT validate availability up front (StockValidationService).
        - Does NOT check permissions (the application façades do).
    """

    def __init__(
        self,
        store: InventoryStore,
        manager: MovementRecordManager,
        audit_sink: AuditSink | None = None,
        verify_after_write: bool = True,
    ):
        self._store = store
        self._manager = manager
        self._audit = audit_sink or LoggingAuditSink()
        self._verify_after_write = verify_after_write

    @property
    def store(self) -> InventoryStore:
        return self._store

    @property
    def manager(self) -> MovementRecordManager:
        return self._manager

    @property
    def audit_sink(self) -> AuditSink:
        return self._audit

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def apply(
        self,
        operation_id: str | UUID,
        lines: Sequence[LineRequest],
        cause: MovementCause | str,
        actor_id: UUID,
        reason: str = "",
        cancellation_token: CancellationToken | None = None,
    ) -> UpdateResult:
        """
        Apply every line of an operation or none of them.

        ``operation_id`` becomes the reference id of every movement, so a
        repeated call with the same id re-uses the movements of the first
        call instead of applying the change twice.
        Each product may appear on one line only.

        Returns:
            UpdateResult with one LineOutcome per attempted line.

        Raises:
            CriticalIntegrityError: A compensating reversal failed.
        """
        operation_id = str(operation_id)
        with LogContext.bind(operation_id=operation_id, actor_id=str(actor_id)):
            try:
                cause = parse_cause(cause)
                if not lines:
                    raise EmptyOperationError(operation_id)
                seen: set[UUID] = set()
                for line in lines:
                    if line.product_id in seen:
                        raise DuplicateLineError(operation_id, line.product_id)
                    seen.add(line.product_id)
                if cancellation_token is not None:
                    cancellation_token.raise_if_cancelled(operation_id)
            except InventoryKernelError as exc:
                logger.info(
                    "operation_rejected",
                    extra={"code": exc.code, "line_count": len(lines)},
                )
                return UpdateResult(
                    operation_id=operation_id,
                    success=False,
                    error=OperationError.from_exception(exc),
                )

            if self._store.supports_atomic_batch:
                result = self._apply_native(operation_id, lines, cause, actor_id, reason)
            else:
                result = self._apply_compensating(operation_id, lines, cause, actor_id, reason)

            if result.success:
                logger.info(
                    "operation_applied",
                    extra={
                        "cause": cause.value,
                        "line_count": len(lines),
                        "movement_ids": [str(m) for m in result.movement_ids],
                    },
                )
            return result

    def _apply_line(
        self,
        operation_id: str,
        line: LineRequest,
        cause: MovementCause,
        actor_id: UUID,
        reason: str,
    ) -> MovementRecord:
        return self._manager.create_movement(
            product_id=line.product_id,
            cause=cause,
            quantity=line.quantity,
            reference_id=operation_id,
            actor_id=actor_id,
            reason=reason,
            allow_negative=line.allow_negative,
            unit_cost=line.unit_cost,
        )

    def _apply_native(
        self,
        operation_id: str,
        lines: Sequence[LineRequest],
        cause: MovementCause,
        actor_id: UUID,
        reason: str,
    ) -> UpdateResult:
        movements: list[MovementRecord] = []
        try:
            with self._store.transaction():
                for index, line in enumerate(lines):
                    try:
                        movement = self._apply_line(operation_id, line, cause, actor_id, reason)
                        self._verify(movement)
                    except InventoryKernelError as exc:
                        raise _LineFailed(index, line.product_id, exc) from exc
                    movements.append(movement)
        except _LineFailed as failure:
            return self._native_failure(
                operation_id, lines, movements, failure.index, failure.product_id, failure.error
            )
        except InventoryKernelError as exc:
            # The commit itself failed; the backend discarded the batch.
            return self._native_failure(operation_id, lines, movements, None, None, exc)

        publish_movements(self._audit, movements)
        return self._success(operation_id, movements, cause)

    def _native_failure(
        self,
        operation_id: str,
        lines: Sequence[LineRequest],
        movements: list[MovementRecord],
        index: int | None,
        product_id: UUID | None,
        error: InventoryKernelError,
    ) -> UpdateResult:
        op_error = OperationError.from_exception(error, product_id=product_id, line_index=index)
        outcomes = [
            LineOutcome(line_index=i, product_id=lines[i].product_id, success=False)
            for i in range(len(movements))
        ]
        if index is not None:
            outcomes.append(LineOutcome(
                line_index=index, product_id=product_id, success=False, error=op_error,
            ))
        logger.warning(
            "operation_rolled_back",
            extra={
                "mode": "native",
                "failed_line": index,
                "processed_before_failure": len(movements),
                "code": error.code,
                "product_id": str(product_id) if product_id else None,
            },
        )
        return UpdateResult(
            operation_id=operation_id,
            success=False,
            lines=tuple(outcomes),
            failed_line=index,
            processed_before_failure=len(movements),
            error=op_error,
            rolled_back=True,
        )

    def _apply_compensating(
        self,
        operation_id: str,
        lines: Sequence[LineRequest],
        cause: MovementCause,
        actor_id: UUID,
        reason: str,
    ) -> UpdateResult:
        committed: list[MovementRecord] = []
        outcomes: list[LineOutcome] = []
        for index, line in enumerate(lines):
            try:
                movement = self._apply_line(operation_id, line, cause, actor_id, reason)
                committed.append(movement)
                self._verify(movement)
            except InventoryKernelError as exc:
                to_reverse = list(committed)
                if isinstance(exc, StoreError):
                    to_reverse = self._with_unacknowledged_write(
                        operation_id, line, cause, committed, exc
                    )
                publish_movements(self._audit, to_reverse)
                reversals = self._compensate(operation_id, to_reverse, actor_id, exc)
                publish_movements(self._audit, reversals)
                op_error = OperationError.from_exception(
                    exc, product_id=line.product_id, line_index=index
                )
                outcomes = [
                    LineOutcome(
                        line_index=o.line_index,
                        product_id=o.product_id,
                        success=False,
                        movement_id=o.movement_id,
                    )
                    for o in outcomes
                ]
                outcomes.append(LineOutcome(
                    line_index=index, product_id=line.product_id, success=False, error=op_error,
                ))
                logger.warning(
                    "operation_rolled_back",
                    extra={
                        "mode": "compensating",
                        "failed_line": index,
                        "processed_before_failure": index,
                        "reversal_count": len(reversals),
                        "code": exc.code,
                        "product_id": str(line.product_id),
                    },
                )
                return UpdateResult(
                    operation_id=operation_id,
                    success=False,
                    lines=tuple(outcomes),
                    movements=tuple(reversals),
                    failed_line=index,
                    processed_before_failure=index,
                    error=op_error,
                    rolled_back=True,
                )
            outcomes.append(LineOutcome(
                line_index=index,
                product_id=line.product_id,
                success=True,
                movement_id=movement.id,
                stock_after=movement.stock_after,
            ))

        publish_movements(self._audit, committed)
        return self._success(operation_id, committed, cause)

    def _with_unacknowledged_write(
        self,
        operation_id: str,
        line: LineRequest,
        cause: MovementCause,
        committed: list[MovementRecord],
        error: StoreError,
    ) -> list[MovementRecord]:
        """A store failure may hide a write that did commit; look for it."""
        to_reverse = list(committed)
        try:
            ghost = self._store.find_active_movement(operation_id, line.product_id, cause)
        except StoreError as probe_error:
            self._hold_and_raise(
                operation_id,
                [line.product_id] + [m.product_id for m in committed],
                [m.id for m in committed],
                f"outcome of line for product {line.product_id} unknown after "
                f"'{error.code}'; probe failed: {probe_error}",
            )
        if ghost is not None and all(m.id != ghost.id for m in committed):
            logger.warning(
                "unacknowledged_write_found",
                extra={"movement_id": str(ghost.id), "product_id": str(line.product_id)},
            )
            return to_reverse + [ghost]
        return to_reverse

    def _success(
        self,
        operation_id: str,
        movements: list[MovementRecord],
        cause: MovementCause,
    ) -> UpdateResult:
        outcomes = tuple(
            LineOutcome(
                line_index=index,
                product_id=m.product_id,
                success=True,
                movement_id=m.id,
                stock_after=m.stock_after,
            )
            for index, m in enumerate(movements)
        )
        alerts: tuple[LowStockAlert, ...] = ()
        if resolve(cause) is Direction.OUT:
            alerts = self._low_stock_alerts(movements)
        return UpdateResult(
            operation_id=operation_id,
            success=True,
            lines=outcomes,
            movements=tuple(movements),
            low_stock_alerts=alerts,
        )

    def _low_stock_alerts(self, movements: list[MovementRecord]) -> tuple[LowStockAlert, ...]:
        alerts = []
        seen: set[UUID] = set()
        for movement in movements:
            if movement.product_id in seen:
                continue
            seen.add(movement.product_id)
            product = self._store.get_product(movement.product_id)
            if product is not None and product.is_low_stock:
                alerts.append(LowStockAlert(
                    product_id=product.id,
                    quantity_on_hand=product.quantity_on_hand,
                    minimum_stock=product.minimum_stock,
                ))
                logger.warning(
                    "low_stock_alert",
                    extra={
                        "product_id": str(product.id),
                        "sku": product.sku,
                        "quantity_on_hand": product.quantity_on_hand,
                        "minimum_stock": product.minimum_stock,
                    },
                )
        return tuple(alerts)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _verify(self, movement: MovementRecord) -> None:
        """Re-read the product and check it reflects ``movement``.

        Raises:
            StockVerificationError: The stored quantity cannot be explained
                by this movement plus later ledger entries.
        """
        if not self._verify_after_write:
            return
        product = self._store.get_product(movement.product_id)
        actual = product.quantity_on_hand if product is not None else None
        if actual == movement.stock_after:
            return

        logger.warning(
            "stock_verification_mismatch",
            extra={
                "product_id": str(movement.product_id),
                "movement_id": str(movement.id),
                "expected": movement.stock_after,
                "actual": actual,
            },
        )
        with self._store.transaction():
            product = self._store.get_product(movement.product_id)
            later = self._store.movements_after(movement.product_id, movement.sequence)
        expected = movement.stock_after + sum(m.signed_quantity for m in later)
        actual = product.quantity_on_hand if product is not None else None
        if actual != expected:
            raise StockVerificationError(movement.product_id, movement.id, expected, actual)

    # -------------------------------------------------------------------------
    # Compensation
    # -------------------------------------------------------------------------

    def _compensate(
        self,
        operation_id: str,
        movements: list[MovementRecord],
        actor_id: UUID,
        cause_of_failure: InventoryKernelError,
    ) -> list[MovementRecord]:
        """Reverse ``movements`` newest first; hold and raise on any failure."""
        reversals: list[MovementRecord] = []
        unreversed: list[MovementRecord] = []
        errors: list[str] = []
        reason = f"rollback of operation {operation_id}: {cause_of_failure.code}"
        for movement in reversed(movements):
            try:
                reversals.append(
                    self._manager.reverse_movement(movement.id, actor_id, reason)
                )
            except InventoryKernelError as exc:
                unreversed.append(movement)
                errors.append(f"{movement.id}: {exc.code}")
                logger.error(
                    "compensating_reversal_failed",
                    extra={
                        "movement_id": str(movement.id),
                        "product_id": str(movement.product_id),
                        "code": exc.code,
                    },
                )

        if unreversed:
            publish_movements(self._audit, reversals)
            self._hold_and_raise(
                operation_id,
                [m.product_id for m in unreversed],
                [m.id for m in unreversed],
                "; ".join(errors),
            )
        return reversals

    def _hold_and_raise(
        self,
        operation_id: str,
        product_ids: list[UUID],
        movement_ids: list[UUID],
        reason: str,
    ) -> None:
        product_ids = list(dict.fromkeys(product_ids))
        hold_reason = f"rollback of operation {operation_id} incomplete"
        for product_id in product_ids:
            try:
                self._store.set_integrity_hold(product_id, hold_reason)
            except InventoryKernelError as exc:
                logger.critical(
                    "integrity_hold_failed",
                    extra={"product_id": str(product_id), "code": exc.code},
                )
        logger.critical(
            "compensation_failed",
            extra={
                "product_ids": [str(p) for p in product_ids],
                "unreversed_movement_ids": [str(m) for m in movement_ids],
                "reason": reason,
            },
        )
        raise CriticalIntegrityError(operation_id, product_ids, movement_ids, reason)

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def rollback(
        self,
        operation_id: str | UUID,
        actor_id: UUID,
        reason: str = "",
        cause: MovementCause | str | None = None,
    ) -> UpdateResult:
        """
        Reverse every active movement of a committed operation.

        Movements are reversed newest first.  Calling it again after a
        successful rollback returns the existing reversals.

        Returns:
            UpdateResult whose ``movements`` are the reversal entries.

        Raises:
            CriticalIntegrityError: A reversal failed part way (compensating
                mode only; natively the whole rollback aborts instead).
        """
        operation_id = str(operation_id)
        reason = reason or f"rollback of operation {operation_id}"
        with LogContext.bind(operation_id=operation_id, actor_id=str(actor_id)):
            try:
                wanted = parse_cause(cause) if cause is not None else None
                ledger = [
                    m for m in self._store.movements_for_reference(operation_id)
                    if wanted is None or m.cause is wanted
                ]
                if not ledger:
                    raise EmptyOperationError(operation_id)
            except InventoryKernelError as exc:
                return UpdateResult(
                    operation_id=operation_id,
                    success=False,
                    error=OperationError.from_exception(exc),
                )

            active = [m for m in ledger if not m.is_reversal and not m.is_reversed]
            if not active:
                existing = tuple(m for m in ledger if m.is_reversal)
                logger.info("rollback_already_applied", extra={"reversal_count": len(existing)})
                return UpdateResult(
                    operation_id=operation_id,
                    success=True,
                    movements=existing,
                    rolled_back=True,
                )

            if self._store.supports_atomic_batch:
                try:
                    with self._store.transaction():
                        reversals = [
                            self._manager.reverse_movement(m.id, actor_id, reason)
                            for m in reversed(active)
                        ]
                except InventoryKernelError as exc:
                    logger.warning("rollback_aborted", extra={"code": exc.code})
                    return UpdateResult(
                        operation_id=operation_id,
                        success=False,
                        error=OperationError.from_exception(exc),
                    )
            else:
                reversals = []
                for movement in reversed(active):
                    try:
                        reversals.append(
                            self._manager.reverse_movement(movement.id, actor_id, reason)
                        )
                    except InventoryKernelError as exc:
                        if not reversals:
                            logger.warning("rollback_aborted", extra={"code": exc.code})
                            return UpdateResult(
                                operation_id=operation_id,
                                success=False,
                                error=OperationError.from_exception(
                                    exc, product_id=movement.product_id
                                ),
                            )
                        publish_movements(self._audit, reversals)
                        remaining = active[: active.index(movement) + 1]
                        self._hold_and_raise(
                            operation_id,
                            [m.product_id for m in remaining],
                            [m.id for m in remaining],
                            f"{movement.id}: {exc.code}",
                        )

            publish_movements(self._audit, reversals)
            logger.info(
                "operation_reversed",
                extra={"reversal_count": len(reversals)},
            )
            return UpdateResult(
                operation_id=operation_id,
                success=True,
                lines=tuple(
                    LineOutcome(
                        line_index=index,
                        product_id=r.product_id,
                        success=True,
                        movement_id=r.id,
                        stock_after=r.stock_after,
                    )
                    for index, r in enumerate(reversals)
                ),
                movements=tuple(reversals),
                rolled_back=True,
            )
