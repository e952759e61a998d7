"""
MovementRecordManager -- creates and reverses ledger entries.

Responsibility:
    Turns one (product, cause, quantity, reference) request into exactly one
    persisted InventoryMovement plus the matching compare-and-swap write of
    the product's stock projection.  Reverses a movement by appending its
    mirror image.

Architecture position:
    Kernel > Services -- imperative shell.  Called by InventoryUpdateEngine
    for every line of a multi-line operation and for every compensating
    reversal.  Depends on the direction resolver, the cost calculator, the
    store and the clock.

Invariants enforced:
    - Direction comes from ``resolve()`` only.
    - ``stock_after = stock_before + sign * quantity`` for every movement.
    - An OUT movement never drives stock below zero unless the cause allows
      it (``adjustment_out``) AND the caller passed ``allow_negative``.
    - Deduplication: an active movement with the same
      ``(reference_id, product_id, cause)`` is returned instead of applying
      the change twice.
    - Reversal is append-only: the original is only flagged ``is_reversed``;
      a movement is reversed at most once, and a reversal is never reversed.
    - Stock writes are conditional on the product version; a lost race is
      re-read and retried up to ``max_attempts`` times with jittered
      exponential backoff.

Failure modes:
    - InvalidQuantityError, UnknownCauseError, ProductNotFoundError,
      ProductRetiredError, ProductOnHoldError, NegativeStockError:
      rejected before any write.
    - ConcurrentModificationError: version mismatch on every attempt.
    - StoreError / StoreTimeoutError: propagated from the store.

Audit relevance:
    Every created movement is logged as ``movement_created`` /
    ``movement_reversed`` with product, cause, direction and stock before /
    after.  Publication to the audit sink happens in the update engine once
    the unit of work has committed.
"""

from __future__ import annotations

import random
import time
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import WeightedAverageCostCalculator
from inventory_kernel.domain.direction import (
    Direction,
    MovementCause,
    allows_negative_stock,
    parse_cause,
    resolve,
)
from inventory_kernel.domain.dtos import MovementRecord, NewMovement, ProductState
from inventory_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidQuantityError,
    IrreversibleMovementError,
    MovementNotFoundError,
    NegativeStockError,
    ProductNotFoundError,
    ProductOnHoldError,
    ProductRetiredError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.movement_record_manager")


class _StaleProductVersion(Exception):
    """Internal: the compare-and-swap lost a race; re-read and retry."""


def validate_quantity(
    quantity,
    product_id: UUID | None = None,
    line_index: int | None = None,
) -> int:
    """Return ``quantity`` if it is a positive int, else raise."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(
            quantity, "must be an integer", product_id=product_id, line_index=line_index
        )
    if quantity <= 0:
        raise InvalidQuantityError(
            quantity, "must be positive", product_id=product_id, line_index=line_index
        )
    return quantity


class MovementRecordManager:
    """
    Ledger entry factory with idempotent create and append-only reverse.

    Contract:
        ``create_movement`` and ``reverse_movement`` each run as one unit of
        work (``store.transaction()``), nested inside the caller's unit
        of work when one is open.

    Non-goals:
        - Does NOT publish to the audit sink (the engine does, post-commit).
        - Does NOT decide whether a multi-line operation rolls back.
    """

    DEFAULT_MAX_ATTEMPTS = 3

    def __init__(
        self,
        store: InventoryStore,
        clock: Clock,
        cost_calculator: WeightedAverageCostCalculator | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_seconds: float = 0.01,
        backoff_max_seconds: float = 0.25,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._clock = clock
        self._calculator = cost_calculator or WeightedAverageCostCalculator()
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._sleep = sleep
        self._rng = rng

    @property
    def cost_calculator(self) -> WeightedAverageCostCalculator:
        return self._calculator

    def _backoff(self, attempt: int) -> None:
        delay = min(self._backoff_max, self._backoff_base * (1.8 ** attempt))
        self._sleep(delay * (0.6 + 0.4 * self._rng()))

    def _require_product(self, product_id: UUID, reversal: bool = False) -> ProductState:
        product = self._store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if reversal:
            return product
        if product.is_retired:
            raise ProductRetiredError(product_id)
        if product.on_hold:
            raise ProductOnHoldError(product_id, product.integrity_hold_reason)
        return product

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_movement(
        self,
        product_id: UUID,
        cause: MovementCause | str,
        quantity: int,
        reference_id: str,
        actor_id: UUID,
        reason: str = "",
        allow_negative: bool = False,
        unit_cost: Decimal | None = None,
    ) -> MovementRecord:
        """
        Apply one stock change and append its ledger entry.

        Preconditions:
            - ``quantity`` is a positive int.
            - ``unit_cost`` is only used for ``purchase_receipt``.
        Postconditions:
            - Exactly one active movement exists for
              ``(reference_id, product_id, cause)``.
            - The product's quantity equals the movement's ``stock_after``
              at commit time, and its version has advanced by one.

        Returns:
            The created movement, or the existing one on a duplicate request.
        """
        cause = parse_cause(cause)
        direction = resolve(cause)
        quantity = validate_quantity(quantity, product_id=product_id)
        reference_id = str(reference_id)
        negative_allowed = allow_negative and allows_negative_stock(cause)

        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._store.transaction():
                    existing = self._store.find_active_movement(reference_id, product_id, cause)
                    if existing is not None:
                        logger.info(
                            "movement_deduplicated",
                            extra={
                                "movement_id": str(existing.id),
                                "product_id": str(product_id),
                                "reference_id": reference_id,
                                "cause": cause.value,
                            },
                        )
                        return existing

                    product = self._require_product(product_id)
                    movement = self._build(
                        product, cause, direction, quantity, reference_id,
                        actor_id, reason, negative_allowed, unit_cost,
                    )
                    if not self._store.compare_and_set_stock(
                        product_id,
                        product.version,
                        movement.stock_after,
                        movement.unit_cost_after,
                    ):
                        raise _StaleProductVersion()
                    record = self._store.insert_movement(movement)
            except (_StaleProductVersion, ConcurrentModificationError):
                logger.info(
                    "movement_write_conflict",
                    extra={
                        "product_id": str(product_id),
                        "reference_id": reference_id,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                    },
                )
                if attempt < self._max_attempts:
                    self._backoff(attempt)
                continue

            logger.info(
                "movement_created",
                extra={
                    "movement_id": str(record.id),
                    "product_id": str(product_id),
                    "cause": cause.value,
                    "direction": direction.value,
                    "quantity": quantity,
                    "stock_before": record.stock_before,
                    "stock_after": record.stock_after,
                    "reference_id": reference_id,
                    "attempt": attempt,
                },
            )
            return record

        logger.warning(
            "movement_retry_budget_exhausted",
            extra={"product_id": str(product_id), "reference_id": reference_id},
        )
        raise ConcurrentModificationError("Product", product_id, self._max_attempts)

    def _build(
        self,
        product: ProductState,
        cause: MovementCause,
        direction: Direction,
        quantity: int,
        reference_id: str,
        actor_id: UUID,
        reason: str,
        negative_allowed: bool,
        unit_cost: Decimal | None,
    ) -> NewMovement:
        stock_before = product.quantity_on_hand
        stock_after = stock_before + direction.sign * quantity
        if direction is Direction.OUT and stock_after < 0 and not negative_allowed:
            raise NegativeStockError(product.id, cause.value, stock_before, quantity)

        cost_after = product.unit_cost
        if cause is MovementCause.PURCHASE_RECEIPT and unit_cost is not None:
            # Negative on-hand carries no cost basis.
            cost_after = self._calculator.recompute(
                max(stock_before, 0), product.unit_cost, quantity, unit_cost
            )

        return NewMovement(
            id=uuid4(),
            product_id=product.id,
            cause=cause,
            quantity=quantity,
            stock_before=stock_before,
            stock_after=stock_after,
            reference_id=reference_id,
            actor_id=actor_id,
            reason=reason,
            created_at=self._clock.now(),
            unit_cost_before=product.unit_cost,
            unit_cost_after=cost_after,
        )

    # -------------------------------------------------------------------------
    # Reverse
    # -------------------------------------------------------------------------

    def reverse_movement(
        self,
        movement_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> MovementRecord:
        """
        Append the mirror image of a movement and flag the original.

        Idempotent: reversing an already-reversed movement returns its
        existing reversal.  Retired and held products still accept
        reversals, so a compensation or a manual correction can always run.

        Raises:
            MovementNotFoundError: Unknown movement id.
            IrreversibleMovementError: The movement is itself a reversal.
            NegativeStockError: Undoing an IN would leave negative stock.
            ConcurrentModificationError: Retry budget exhausted.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._store.transaction():
                    original = self._store.get_movement(movement_id)
                    if original is None:
                        raise MovementNotFoundError(movement_id)
                    if original.is_reversal:
                        raise IrreversibleMovementError(
                            movement_id, "a reversal cannot itself be reversed"
                        )
                    if original.is_reversed:
                        existing = self._store.find_reversal_of(movement_id)
                        if existing is not None:
                            logger.info(
                                "reversal_deduplicated",
                                extra={
                                    "movement_id": str(movement_id),
                                    "reversal_id": str(existing.id),
                                },
                            )
                            return existing
                        raise IrreversibleMovementError(
                            movement_id, "flagged reversed but no reversal entry exists"
                        )

                    product = self._require_product(original.product_id, reversal=True)
                    direction = original.direction.opposite
                    stock_before = product.quantity_on_hand
                    stock_after = stock_before + direction.sign * original.quantity
                    if (
                        direction is Direction.OUT
                        and stock_after < 0
                        and not allows_negative_stock(original.cause)
                    ):
                        raise NegativeStockError(
                            product.id, original.cause.value, stock_before, original.quantity
                        )

                    cost_after = product.unit_cost
                    if (
                        original.cause is MovementCause.PURCHASE_RECEIPT
                        and original.unit_cost_before is not None
                        and product.unit_cost == original.unit_cost_after
                    ):
                        # No later receipt has re-averaged the cost.
                        cost_after = original.unit_cost_before

                    # Flag before the stock write; a joined SQLite unit cannot undo a partial attempt.
                    if not self._store.mark_movement_reversed(movement_id):
                        raise _StaleProductVersion()
                    if not self._store.compare_and_set_stock(
                        product.id, product.version, stock_after, cost_after
                    ):
                        raise _StaleProductVersion()
                    record = self._store.insert_movement(
                        NewMovement(
                            id=uuid4(),
                            product_id=product.id,
                            cause=original.cause,
                            quantity=original.quantity,
                            stock_before=stock_before,
                            stock_after=stock_after,
                            reference_id=original.reference_id,
                            actor_id=actor_id,
                            reason=reason,
                            created_at=self._clock.now(),
                            reversal_of_id=original.id,
                            unit_cost_before=product.unit_cost,
                            unit_cost_after=cost_after,
                        )
                    )
            except (_StaleProductVersion, ConcurrentModificationError):
                logger.info(
                    "reversal_write_conflict",
                    extra={"movement_id": str(movement_id), "attempt": attempt},
                )
                if attempt < self._max_attempts:
                    self._backoff(attempt)
                continue

            logger.info(
                "movement_reversed",
                extra={
                    "movement_id": str(movement_id),
                    "reversal_id": str(record.id),
                    "product_id": str(record.product_id),
                    "direction": record.direction.value,
                    "quantity": record.quantity,
                    "stock_before": record.stock_before,
                    "stock_after": record.stock_after,
                },
            )
            return record

        raise ConcurrentModificationError("InventoryMovement", movement_id, self._max_attempts)
