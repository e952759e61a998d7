"""
WeightedAverageCostCalculator -- pure weighted-average unit cost.

Responsibility:
    Computes the new per-unit cost after a receipt as the quantity-weighted
    blend of the on-hand cost and the received cost, and reports how far the
    cost moved.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O, stateless.

Invariants enforced:
    - ``new_cost = (cQ*cC + rQ*rC) / (cQ + rQ)``.
    - Rounded to a fixed currency precision with ROUND_HALF_EVEN so that
      repeated receipts do not accumulate a directional bias.
    - All arithmetic is Decimal; float inputs are rejected.

Failure modes:
    - InvalidCostInputError when a quantity or cost is negative, when
      ``cQ + rQ == 0``, or when a value is not an int / Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal

from inventory_kernel.exceptions import InvalidCostInputError

DEFAULT_COST_PLACES = 4
DEFAULT_SIGNIFICANT_VARIANCE_PERCENT = Decimal("10")
DEFAULT_PRICE_VARIANCE_PERCENT = Decimal("5")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CostRecomputation:
    """Outcome of a single weighted-average recomputation."""

    current_quantity: int
    current_cost: Decimal
    received_quantity: int
    received_unit_cost: Decimal
    new_quantity: int
    new_cost: Decimal
    variance: Decimal
    variance_percent: Decimal
    significant: bool


def _require_quantity(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCostInputError(f"{name} must be an integer", **{name: value})
    if value < 0:
        raise InvalidCostInputError(f"{name} cannot be negative", **{name: value})
    return value


def _require_cost(name: str, value: Decimal | int) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise InvalidCostInputError(f"{name} must be a Decimal", **{name: value})
    value = Decimal(value)
    if not value.is_finite():
        raise InvalidCostInputError(f"{name} must be finite", **{name: value})
    if value < 0:
        raise InvalidCostInputError(f"{name} cannot be negative", **{name: value})
    return value


class WeightedAverageCostCalculator:
    """Stateless weighted-average cost engine.

    Contract:
        Instances only hold rounding configuration; ``recompute`` is safe to
        call concurrently without synchronization.
    """

    def __init__(
        self,
        places: int = DEFAULT_COST_PLACES,
        significant_variance_percent: Decimal = DEFAULT_SIGNIFICANT_VARIANCE_PERCENT,
        price_variance_percent: Decimal = DEFAULT_PRICE_VARIANCE_PERCENT,
    ):
        if places < 0:
            raise ValueError("places cannot be negative")
        self._quantum = Decimal(1).scaleb(-places)
        self._significant = Decimal(significant_variance_percent)
        self._price_threshold = Decimal(price_variance_percent)

    def recompute(
        self,
        current_qty: int,
        current_cost: Decimal | int,
        received_qty: int,
        received_unit_cost: Decimal | int,
    ) -> Decimal:
        """Return the rounded weighted-average unit cost after a receipt.

        Raises:
            InvalidCostInputError: On negative inputs or a zero total quantity.
        """
        current_qty = _require_quantity("current_qty", current_qty)
        received_qty = _require_quantity("received_qty", received_qty)
        current_cost = _require_cost("current_cost", current_cost)
        received_unit_cost = _require_cost("received_unit_cost", received_unit_cost)

        total_qty = current_qty + received_qty
        if total_qty == 0:
            raise InvalidCostInputError(
                "total quantity after receipt is zero",
                current_qty=current_qty,
                received_qty=received_qty,
            )

        total_value = current_qty * current_cost + received_qty * received_unit_cost
        return (total_value / total_qty).quantize(self._quantum, rounding=ROUND_HALF_EVEN)

    def evaluate(
        self,
        current_qty: int,
        current_cost: Decimal | int,
        received_qty: int,
        received_unit_cost: Decimal | int,
    ) -> CostRecomputation:
        """Recompute and report the variance against the current cost.

        A variance percentage is only meaningful against a positive current
        cost; from a zero cost it is reported as 0 and never significant.
        """
        new_cost = self.recompute(current_qty, current_cost, received_qty, received_unit_cost)
        current_cost = Decimal(current_cost)
        variance, variance_percent, significant = self.variance(current_cost, new_cost)
        return CostRecomputation(
            current_quantity=current_qty,
            current_cost=current_cost,
            received_quantity=received_qty,
            received_unit_cost=Decimal(received_unit_cost),
            new_quantity=current_qty + received_qty,
            new_cost=new_cost,
            variance=variance,
            variance_percent=variance_percent,
            significant=significant,
        )

    def variance(
        self,
        previous_cost: Decimal,
        new_cost: Decimal,
    ) -> tuple[Decimal, Decimal, bool]:
        """Return (variance, variance percent, significant) for a cost change."""
        return self._compare(previous_cost, new_cost, self._significant)

    def price_variance(
        self,
        expected_cost: Decimal,
        actual_cost: Decimal,
    ) -> tuple[Decimal, Decimal, bool]:
        """Return (variance, variance percent, recordable) of a receipt cost
        against the purchase-order price.

        A variance is recordable when its magnitude exceeds the price
        variance threshold (5 % by default).
        """
        return self._compare(expected_cost, actual_cost, self._price_threshold)

    def _compare(
        self,
        previous_cost: Decimal,
        new_cost: Decimal,
        threshold: Decimal,
    ) -> tuple[Decimal, Decimal, bool]:
        previous_cost = Decimal(previous_cost)
        variance = (Decimal(new_cost) - previous_cost).quantize(
            self._quantum, rounding=ROUND_HALF_EVEN
        )
        if previous_cost > 0:
            variance_percent = (variance / previous_cost * _HUNDRED).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_EVEN
            )
        else:
            variance_percent = Decimal("0.00")
        return variance, variance_percent, abs(variance_percent) > threshold
