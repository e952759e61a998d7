"""
AuditSink -- outbound feed of every created movement and status transition.

Responsibility:
    External reporting consumes the ledger through this capability.  The
    kernel publishes each MovementRecord and StatusTransitionRecord after the
    unit of work that created it has committed, so the sink never sees a
    record that was later rolled back by the native transaction.

Architecture position:
    Kernel > Services -- outbound port.  ``LoggingAuditSink`` is the default
    implementation and writes one structured log record per event.

Failure modes:
    A sink failure is logged and does not undo the committed ledger write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from inventory_kernel.domain.dtos import MovementRecord, StatusTransitionRecord
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.audit")


class AuditSink(ABC):
    """Receives committed ledger and workflow records."""

    @abstractmethod
    def movement_recorded(self, movement: MovementRecord) -> None:
        ...

    @abstractmethod
    def status_transition_recorded(self, transition: StatusTransitionRecord) -> None:
        ...


class LoggingAuditSink(AuditSink):
    """Writes audit records to the ``inventory_kernel.services.audit`` logger."""

    def movement_recorded(self, movement: MovementRecord) -> None:
        logger.info(
            "audit_movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "product_id": str(movement.product_id),
                "cause": movement.cause.value,
                "direction": movement.direction.value,
                "quantity": movement.quantity,
                "stock_before": movement.stock_before,
                "stock_after": movement.stock_after,
                "reference_id": movement.reference_id,
                "actor_id": str(movement.actor_id),
                "reversal_of_id": str(movement.reversal_of_id) if movement.reversal_of_id else None,
                "sequence": movement.sequence,
            },
        )

    def status_transition_recorded(self, transition: StatusTransitionRecord) -> None:
        logger.info(
            "audit_status_transition_recorded",
            extra={
                "transition_id": str(transition.id),
                "purchase_order_id": str(transition.purchase_order_id),
                "from_status": transition.from_status.value,
                "to_status": transition.to_status.value,
                "actor_id": str(transition.actor_id),
                "automatic": transition.automatic,
            },
        )


def publish_movements(sink: AuditSink, movements) -> None:
    """Hand committed movements to the sink; sink errors are logged only."""
    for movement in movements:
        try:
            sink.movement_recorded(movement)
        except Exception:
            logger.exception(
                "audit_sink_failed",
                extra={"movement_id": str(movement.id)},
            )


def publish_transitions(sink: AuditSink, transitions) -> None:
    for transition in transitions:
        try:
            sink.status_transition_recorded(transition)
        except Exception:
            logger.exception(
                "audit_sink_failed",
                extra={"transition_id": str(transition.id)},
            )
