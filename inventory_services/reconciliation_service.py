"""
inventory_services.reconciliation_service -- ledger replay and integrity holds.

Responsibility:
    Rebuilds each product's quantity by replaying its movements and compares
    it with the stored projection.  Releases an integrity hold once the two
    agree, and lets an operator reverse a stray movement on a held product.

Architecture position:
    Services -- operator tooling over the kernel.  Used by
    ``scripts/reconcile_stock.py``.

Invariants enforced:
    - Replay starts from zero and walks the ledger in sequence order.
    - Each movement's ``stock_before`` must equal the running total and its
      ``stock_after`` must equal ``stock_before`` plus its signed quantity;
      entries that break the chain are reported as broken links.
    - A hold is released only when the replay matches.

Failure modes:
    ProductNotFoundError, PermissionDeniedError,
    ReconciliationMismatchError (hold kept).
"""

from __future__ import annotations

from uuid import UUID

from inventory_kernel.domain.dtos import MovementRecord, ReconciliationReport
from inventory_kernel.domain.principal import Permission, PermissionChecker, Principal
from inventory_kernel.exceptions import (
    PermissionDeniedError,
    ProductNotFoundError,
    ReconciliationMismatchError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.audit_sink import AuditSink, publish_movements
from inventory_kernel.services.movement_record_manager import MovementRecordManager
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.reconciliation")


def replay(movements: list[MovementRecord]) -> tuple[int, tuple[UUID, ...]]:
    """Replay movements in ledger order; return (quantity, broken link ids)."""
    running = 0
    broken = []
    for movement in sorted(movements, key=lambda m: m.sequence):
        if (
            movement.stock_before != running
            or movement.stock_after != movement.stock_before + movement.signed_quantity
        ):
            broken.append(movement.id)
        running += movement.signed_quantity
    return running, tuple(broken)


class ReconciliationService:
    """Compares ledgers with projections and manages integrity holds."""

    def __init__(
        self,
        store: InventoryStore,
        manager: MovementRecordManager,
        permissions: PermissionChecker,
        audit_sink: AuditSink,
    ):
        self._store = store
        self._manager = manager
        self._permissions = permissions
        self._audit = audit_sink

    def _require(self, principal: Principal) -> None:
        if not self._permissions.has_permission(principal, Permission.RECONCILE):
            raise PermissionDeniedError(principal.id, Permission.RECONCILE.value)

    def reconcile_product(self, product_id: UUID) -> ReconciliationReport:
        product = self._store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        movements = self._store.list_movements(product_id)
        replayed, broken = replay(movements)
        report = ReconciliationReport(
            product_id=product_id,
            projected_quantity=product.quantity_on_hand,
            replayed_quantity=replayed,
            movement_count=len(movements),
            on_hold=product.on_hold,
            hold_reason=product.integrity_hold_reason,
            broken_links=broken,
        )
        if not report.matches:
            logger.warning(
                "reconciliation_mismatch",
                extra={
                    "product_id": str(product_id),
                    "projected": report.projected_quantity,
                    "replayed": report.replayed_quantity,
                    "broken_links": [str(m) for m in broken],
                },
            )
        return report

    def reconcile_all(self, include_retired: bool = True) -> list[ReconciliationReport]:
        reports = [
            self.reconcile_product(p.id)
            for p in self._store.list_products(include_retired=include_retired)
        ]
        logger.info(
            "reconciliation_completed",
            extra={
                "product_count": len(reports),
                "mismatch_count": sum(1 for r in reports if not r.matches),
                "on_hold_count": sum(1 for r in reports if r.on_hold),
            },
        )
        return reports

    def release_integrity_hold(self, product_id: UUID, principal: Principal) -> ReconciliationReport:
        """Lift a product's hold after verifying its ledger.

        Raises:
            ReconciliationMismatchError: The replay disagrees; the hold stays.
        """
        self._require(principal)
        with LogContext.bind(product_id=str(product_id), actor_id=str(principal.id)):
            report = self.reconcile_product(product_id)
            if not report.matches:
                raise ReconciliationMismatchError(
                    product_id,
                    report.projected_quantity,
                    report.replayed_quantity,
                    len(report.broken_links),
                )
            if report.on_hold:
                self._store.set_integrity_hold(product_id, None)
                logger.info(
                    "integrity_hold_released",
                    extra={"previous_reason": report.hold_reason},
                )
            return self.reconcile_product(product_id)

    def reverse_movement(
        self,
        movement_id: UUID,
        principal: Principal,
        reason: str,
    ) -> MovementRecord:
        """Manually reverse one movement, e.g. one a failed rollback left behind."""
        self._require(principal)
        reversal = self._manager.reverse_movement(movement_id, principal.id, reason)
        publish_movements(self._audit, [reversal])
        logger.info(
            "manual_reversal_recorded",
            extra={"movement_id": str(movement_id), "reversal_id": str(reversal.id)},
        )
        return reversal
