"""
MovementDirectionResolver -- the single source of truth for stock sign.

Responsibility:
    Maps every movement cause to the direction (IN or OUT) it moves stock.
    No other module computes a direction; ledger records, ORM rows, and the
    update engine all call ``resolve()``.

Architecture position:
    Kernel > Domain -- pure function, zero I/O.

Invariants enforced:
    - Total over ``MovementCause``; any other value raises
      ``UnknownCauseError``.  There is NO default direction.
    - A reversal moves stock in the opposite direction of the cause it
      reverses (``resolve_for_movement``).

Failure modes:
    - UnknownCauseError for strings / objects outside the enumeration.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from inventory_kernel.exceptions import UnknownCauseError


class Direction(str, Enum):
    """Whether a movement increases (IN) or decreases (OUT) stock."""

    IN = "IN"
    OUT = "OUT"

    @property
    def opposite(self) -> "Direction":
        return Direction.OUT if self is Direction.IN else Direction.IN

    @property
    def sign(self) -> int:
        return 1 if self is Direction.IN else -1


class MovementCause(str, Enum):
    """Business reasons a stock quantity can change."""

    SALE = "sale"
    PURCHASE_RECEIPT = "purchase_receipt"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    RETURN_IN = "return_in"
    RETURN_OUT = "return_out"
    DAMAGE = "damage"
    SHRINKAGE = "shrinkage"


_DIRECTIONS = MappingProxyType({
    MovementCause.SALE: Direction.OUT,
    MovementCause.ADJUSTMENT_OUT: Direction.OUT,
    MovementCause.TRANSFER_OUT: Direction.OUT,
    MovementCause.RETURN_OUT: Direction.OUT,
    MovementCause.DAMAGE: Direction.OUT,
    MovementCause.SHRINKAGE: Direction.OUT,
    MovementCause.PURCHASE_RECEIPT: Direction.IN,
    MovementCause.ADJUSTMENT_IN: Direction.IN,
    MovementCause.TRANSFER_IN: Direction.IN,
    MovementCause.RETURN_IN: Direction.IN,
})

# Only these causes may drive stock below zero, and only with an explicit
# override flag from the caller.
NEGATIVE_STOCK_CAUSES: frozenset[MovementCause] = frozenset({
    MovementCause.ADJUSTMENT_OUT,
})


def parse_cause(cause: MovementCause | str) -> MovementCause:
    """Coerce a cause value into the enumeration.

    Raises:
        UnknownCauseError: If ``cause`` is not a member or member value.
    """
    if isinstance(cause, MovementCause):
        return cause
    if isinstance(cause, str):
        try:
            return MovementCause(cause)
        except ValueError:
            raise UnknownCauseError(cause) from None
    raise UnknownCauseError(cause)


def resolve(cause: MovementCause | str) -> Direction:
    """Return the direction a cause moves stock.

    Preconditions: none -- every input is either resolved or rejected.
    Postconditions: deterministic; the same cause always yields the same
        direction.

    Raises:
        UnknownCauseError: If ``cause`` is outside the enumeration.
    """
    return _DIRECTIONS[parse_cause(cause)]


def resolve_for_movement(
    cause: MovementCause | str,
    is_reversal: bool,
) -> Direction:
    """Direction of a ledger entry: its cause's, flipped for reversals."""
    direction = resolve(cause)
    return direction.opposite if is_reversal else direction


def allows_negative_stock(cause: MovementCause | str) -> bool:
    """True if the cause may drive stock negative under an explicit override."""
    return parse_cause(cause) in NEGATIVE_STOCK_CAUSES
