"""
PurchaseOrderStateMachine -- legal purchase-order status transitions.

Responsibility:
    Interprets ``PURCHASE_ORDER_WORKFLOW``: answers which transitions are
    legal, checks the acting principal's permission and the business guard
    of a transition, and records executed transitions in the append-only
    history.

Architecture position:
    Kernel > Services.  The transition table itself is pure data in
    ``domain/workflow.py``; this class adds permission checks, guard
    evaluation and persistence.  ReceivingService drives the ``*_received``
    transitions through ``apply_transition`` inside its own unit of work.

Invariants enforced:
    - Only transitions declared in the table are executed.
    - Terminal states (``cancelled``, ``closed``) have no exits.
    - A status write is conditional on the status read
      (compare-and-swap); a concurrent transition surfaces as
      ConcurrentModificationError rather than a lost update.
    - Every executed transition appends exactly one StatusTransitionRecord.
    - Validation happens before any mutation.

Failure modes:
    - InvalidTransitionError: not in the table.
    - UnauthorizedTransitionError: principal lacks the transition permission.
    - TransitionPreconditionError: guard not satisfied.
    - PurchaseOrderNotFoundError, ConcurrentModificationError.
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID, uuid4

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import PurchaseOrder, StatusTransitionRecord
from inventory_kernel.domain.principal import PermissionChecker, Principal
from inventory_kernel.domain.workflow import (
    ALL_LINES_RECEIVED,
    HAS_LINES_AND_SUPPLIER,
    PURCHASE_ORDER_WORKFLOW,
    SOME_QUANTITY_RECEIVED,
    Guard,
    PurchaseOrderStatus,
    Transition,
    Workflow,
)
from inventory_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    PurchaseOrderNotFoundError,
    TransitionPreconditionError,
    UnauthorizedTransitionError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.audit_sink import AuditSink, LoggingAuditSink, publish_transitions
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.purchase_order_state_machine")

RECEIVABLE_STATUSES: frozenset[PurchaseOrderStatus] = frozenset({
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.SENT_TO_SUPPLIER,
    PurchaseOrderStatus.PARTIALLY_RECEIVED,
})


def _has_lines_and_supplier(order: PurchaseOrder) -> str | None:
    if not order.lines:
        return "order has no lines"
    if order.supplier_id is None:
        return "order has no supplier"
    return None


def _some_quantity_received(order: PurchaseOrder) -> str | None:
    if order.total_received <= 0:
        return "no quantity has been received"
    return None


def _all_lines_received(order: PurchaseOrder) -> str | None:
    pending = [line for line in order.lines if line.pending_quantity > 0]
    if not order.lines:
        return "order has no lines"
    if pending:
        return f"{len(pending)} line(s) still have pending quantity"
    return None


_GUARD_CHECKS: dict[str, Callable[[PurchaseOrder], str | None]] = {
    HAS_LINES_AND_SUPPLIER.name: _has_lines_and_supplier,
    SOME_QUANTITY_RECEIVED.name: _some_quantity_received,
    ALL_LINES_RECEIVED.name: _all_lines_received,
}


def _status(value: PurchaseOrderStatus | str) -> PurchaseOrderStatus:
    return value if isinstance(value, PurchaseOrderStatus) else PurchaseOrderStatus(value)


class PurchaseOrderStateMachine:
    """Validates and executes purchase-order status transitions."""

    def __init__(
        self,
        store: InventoryStore,
        permissions: PermissionChecker,
        clock: Clock,
        audit_sink: AuditSink | None = None,
        workflow: Workflow = PURCHASE_ORDER_WORKFLOW,
    ):
        self._store = store
        self._permissions = permissions
        self._clock = clock
        self._audit = audit_sink or LoggingAuditSink()
        self._workflow = workflow

    # -------------------------------------------------------------------------
    # Pure queries
    # -------------------------------------------------------------------------

    def can_transition(
        self,
        from_status: PurchaseOrderStatus | str,
        to_status: PurchaseOrderStatus | str,
    ) -> bool:
        """True if the table declares ``from_status -> to_status``."""
        try:
            from_status, to_status = _status(from_status), _status(to_status)
        except ValueError:
            return False
        return self._workflow.find(from_status.value, to_status.value) is not None

    def valid_transitions(
        self,
        status: PurchaseOrderStatus | str,
    ) -> tuple[PurchaseOrderStatus, ...]:
        return tuple(
            PurchaseOrderStatus(s) for s in self._workflow.targets(_status(status).value)
        )

    def is_terminal(self, status: PurchaseOrderStatus | str) -> bool:
        return _status(status).value in self._workflow.terminal_states

    def action_for(
        self,
        from_status: PurchaseOrderStatus | str,
        to_status: PurchaseOrderStatus | str,
    ) -> str | None:
        transition = self._find(from_status, to_status)
        return transition.action if transition else None

    def _find(self, from_status, to_status) -> Transition | None:
        try:
            return self._workflow.find(_status(from_status).value, _status(to_status).value)
        except ValueError:
            return None

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        order: PurchaseOrder,
        to_status: PurchaseOrderStatus | str,
        principal: Principal,
    ) -> Transition:
        """
        Check a transition against the table, permissions and its guard.

        ``order`` may be a projected copy (e.g. with a receipt's quantities
        already added) so callers can validate before they mutate.

        Returns:
            The matching Transition.

        Raises:
            InvalidTransitionError, UnauthorizedTransitionError,
            TransitionPreconditionError.
        """
        transition = self._find(order.status, to_status)
        if transition is None:
            logger.info(
                "transition_rejected",
                extra={
                    "purchase_order_id": str(order.id),
                    "from_status": order.status.value,
                    "to_status": str(getattr(to_status, "value", to_status)),
                    "reason": "not_in_table",
                },
            )
            raise InvalidTransitionError(
                order.id, order.status.value, str(getattr(to_status, "value", to_status))
            )

        context = {"purchase_order_id": order.id, "from_status": order.status.value}
        if not self._permissions.has_permission(principal, transition.permission, context):
            logger.warning(
                "transition_unauthorized",
                extra={
                    "purchase_order_id": str(order.id),
                    "to_status": transition.to_state,
                    "actor_id": str(principal.id),
                    "required_permission": transition.permission,
                },
            )
            raise UnauthorizedTransitionError(
                order.id, transition.to_state, principal.id, transition.permission
            )

        failure = self._evaluate_guard(transition.guard, order)
        if failure is not None:
            logger.info(
                "transition_rejected",
                extra={
                    "purchase_order_id": str(order.id),
                    "to_status": transition.to_state,
                    "reason": transition.guard.name,
                },
            )
            raise TransitionPreconditionError(order.id, transition.to_state, [failure])
        return transition

    @staticmethod
    def _evaluate_guard(guard: Guard | None, order: PurchaseOrder) -> str | None:
        if guard is None:
            return None
        return _GUARD_CHECKS[guard.name](order)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def apply_transition(
        self,
        order: PurchaseOrder,
        to_status: PurchaseOrderStatus | str,
        principal: Principal,
        reason: str = "",
        automatic: bool = False,
    ) -> StatusTransitionRecord:
        """
        Validate and record one transition inside the caller's unit of work.

        Does not publish to the audit sink; the caller does so after commit.
        """
        transition = self.validate(order, to_status, principal)
        target = PurchaseOrderStatus(transition.to_state)
        if not self._store.compare_and_set_order_status(order.id, order.status, target):
            raise ConcurrentModificationError("PurchaseOrder", order.id, 1)
        record = self._store.insert_status_transition(
            StatusTransitionRecord(
                id=uuid4(),
                purchase_order_id=order.id,
                from_status=order.status,
                to_status=target,
                actor_id=principal.id,
                reason=reason,
                occurred_at=self._clock.now(),
                automatic=automatic,
            )
        )
        logger.info(
            "purchase_order_transitioned",
            extra={
                "purchase_order_id": str(order.id),
                "from_status": order.status.value,
                "to_status": target.value,
                "action": transition.action,
                "automatic": automatic,
            },
        )
        return record

    def execute(
        self,
        order_id: UUID,
        to_status: PurchaseOrderStatus | str,
        principal: Principal,
        reason: str = "",
        automatic: bool = False,
    ) -> PurchaseOrder:
        """
        Validate, persist and publish one transition.

        Returns:
            The purchase order as stored after the transition.

        Raises:
            PurchaseOrderNotFoundError, TransitionError subclasses,
            ConcurrentModificationError.  Nothing is written on failure.
        """
        with LogContext.bind(purchase_order_id=str(order_id), actor_id=str(principal.id)):
            with self._store.transaction():
                order = self._store.get_purchase_order(order_id)
                if order is None:
                    raise PurchaseOrderNotFoundError(order_id)
                record = self.apply_transition(order, to_status, principal, reason, automatic)
            publish_transitions(self._audit, [record])
            return self._store.get_purchase_order(order_id)

    def publish(self, records: list[StatusTransitionRecord]) -> None:
        publish_transitions(self._audit, records)

    def transition_history(self, order_id: UUID) -> list[StatusTransitionRecord]:
        """Status history of an order, oldest first."""
        if self._store.get_purchase_order(order_id) is None:
            raise PurchaseOrderNotFoundError(order_id)
        return self._store.list_status_transitions(order_id)

    # -------------------------------------------------------------------------
    # Receiving support
    # -------------------------------------------------------------------------

    def receipt_path(
        self,
        current: PurchaseOrderStatus,
        fully_received: bool,
    ) -> tuple[PurchaseOrderStatus, ...]:
        """Statuses a receipt moves an order through, in order.

        An approved order that is received in full passes through
        ``partially_received`` because the table has no direct edge.
        """
        target = (
            PurchaseOrderStatus.FULLY_RECEIVED if fully_received
            else PurchaseOrderStatus.PARTIALLY_RECEIVED
        )
        if current is target:
            return ()
        if self.can_transition(current, target):
            return (target,)
        if fully_received and self.can_transition(current, PurchaseOrderStatus.PARTIALLY_RECEIVED):
            return (PurchaseOrderStatus.PARTIALLY_RECEIVED, target)
        raise InvalidTransitionError(None, current.value, target.value)

