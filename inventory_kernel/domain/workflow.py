"""
Canonical workflow types (``inventory_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines, plus the purchase-order
lifecycle definition built from them.  The transition table lives here,
once; ``PurchaseOrderStateMachine`` only interprets it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions.
* No self-transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from inventory_kernel.domain.principal import Permission


@dataclass(frozen=True)
class Guard:
    """A business precondition that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the state machine does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``permission`` names the action the acting principal must hold.
    """
    from_state: str
    to_state: str
    action: str
    permission: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(
                f"initial_state '{self.initial_state}' not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"transition {t.from_state}->{t.to_state} references "
                    "an unknown state"
                )
            if t.from_state == t.to_state:
                raise ValueError(f"self-transition on '{t.from_state}'")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"terminal state '{t.from_state}' has an outgoing transition"
                )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition for a (from, to) pair, if declared."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def targets(self, from_state: str) -> tuple[str, ...]:
        """Return the states reachable in one step, in declaration order."""
        return tuple(t.to_state for t in self.transitions if t.from_state == from_state)


# -----------------------------------------------------------------------------
# Purchase order lifecycle
# -----------------------------------------------------------------------------


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT_TO_SUPPLIER = "sent_to_supplier"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CANCELLED = "cancelled"
    CLOSED = "closed"


HAS_LINES_AND_SUPPLIER = Guard(
    name="has_lines_and_supplier",
    description="Order has at least one line and a supplier",
)

SOME_QUANTITY_RECEIVED = Guard(
    name="some_quantity_received",
    description="At least one unit has been received",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every line's pending quantity is zero",
)

_S = PurchaseOrderStatus
_P = Permission

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state=_S.DRAFT.value,
    states=tuple(s.value for s in _S),
    transitions=(
        Transition(_S.DRAFT.value, _S.PENDING_APPROVAL.value, action="submit",
                   permission=_P.SUBMIT_PURCHASE_ORDER.value, guard=HAS_LINES_AND_SUPPLIER),
        Transition(_S.DRAFT.value, _S.CANCELLED.value, action="cancel",
                   permission=_P.CANCEL_PURCHASE_ORDER.value),
        Transition(_S.PENDING_APPROVAL.value, _S.APPROVED.value, action="approve",
                   permission=_P.APPROVE_PURCHASE_ORDER.value),
        Transition(_S.PENDING_APPROVAL.value, _S.DRAFT.value, action="reject",
                   permission=_P.APPROVE_PURCHASE_ORDER.value),
        Transition(_S.PENDING_APPROVAL.value, _S.CANCELLED.value, action="cancel",
                   permission=_P.CANCEL_PURCHASE_ORDER.value),
        Transition(_S.APPROVED.value, _S.SENT_TO_SUPPLIER.value, action="send",
                   permission=_P.SEND_PURCHASE_ORDER.value),
        Transition(_S.APPROVED.value, _S.PARTIALLY_RECEIVED.value, action="receive",
                   permission=_P.RECEIVE_GOODS.value, guard=SOME_QUANTITY_RECEIVED),
        Transition(_S.APPROVED.value, _S.CANCELLED.value, action="cancel",
                   permission=_P.CANCEL_PURCHASE_ORDER.value),
        Transition(_S.SENT_TO_SUPPLIER.value, _S.PARTIALLY_RECEIVED.value, action="receive",
                   permission=_P.RECEIVE_GOODS.value, guard=SOME_QUANTITY_RECEIVED),
        Transition(_S.SENT_TO_SUPPLIER.value, _S.FULLY_RECEIVED.value, action="receive",
                   permission=_P.RECEIVE_GOODS.value, guard=ALL_LINES_RECEIVED),
        Transition(_S.SENT_TO_SUPPLIER.value, _S.CANCELLED.value, action="cancel",
                   permission=_P.CANCEL_PURCHASE_ORDER.value),
        Transition(_S.PARTIALLY_RECEIVED.value, _S.FULLY_RECEIVED.value, action="receive",
                   permission=_P.RECEIVE_GOODS.value, guard=ALL_LINES_RECEIVED),
        Transition(_S.PARTIALLY_RECEIVED.value, _S.CANCELLED.value, action="cancel",
                   permission=_P.CANCEL_PURCHASE_ORDER.value),
        Transition(_S.FULLY_RECEIVED.value, _S.CLOSED.value, action="close",
                   permission=_P.CLOSE_PURCHASE_ORDER.value),
    ),
    terminal_states=(_S.CANCELLED.value, _S.CLOSED.value),
)
