"""
InventoryStore -- the single data-access interface of the kernel.

Responsibility:
    Declares every read and write the kernel performs against persistent
    state.  Services depend on this interface only; they never touch ORM
    sessions.

Architecture position:
    Kernel > Store -- the I/O boundary.  There is exactly one production
    implementation (``SqlAlchemyInventoryStore``).  The test suite ships its
    own in-memory implementation; nothing in the runtime chooses between
    them by configuration.

Contract:
    - ``transaction()`` opens a unit of work.  A nested call is a savepoint
      inside the enclosing unit where the backend supports one, and joins
      the enclosing unit otherwise.  Leaving the block normally commits;
      leaving it with an exception rolls back and re-raises.
    - ``supports_atomic_batch`` is True when one ``transaction()`` can span
      every line of a multi-line operation and roll all of it back.  The
      update engine uses a single native transaction when it is True and a
      compensating rollback when it is False.
    - ``compare_and_set_stock`` and ``compare_and_set_order_status`` are
      conditional writes: they apply only when the stored version / status
      still equals the expected value and return False otherwise.
    - Infrastructure failures surface as ``StoreError`` /
      ``StoreTimeoutError``; lost uniqueness races as
      ``ConcurrentModificationError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    MovementRecord,
    NewMovement,
    ProductState,
    PurchaseOrder,
    ReceivingRecord,
    StatusTransitionRecord,
)
from inventory_kernel.domain.workflow import PurchaseOrderStatus


class InventoryStore(ABC):
    """Transactional row store with compare-and-swap on stock rows."""

    supports_atomic_batch: bool = False

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        ...

    # -- products -------------------------------------------------------------

    @abstractmethod
    def get_product(self, product_id: UUID) -> ProductState | None:
        ...

    @abstractmethod
    def get_product_by_sku(self, sku: str) -> ProductState | None:
        ...

    @abstractmethod
    def list_products(self, include_retired: bool = False) -> list[ProductState]:
        ...

    @abstractmethod
    def create_product(
        self,
        product: ProductState,
        actor_id: UUID,
        created_at: datetime,
    ) -> ProductState:
        ...

    @abstractmethod
    def compare_and_set_stock(
        self,
        product_id: UUID,
        expected_version: int,
        new_quantity: int,
        new_unit_cost: Decimal | None = None,
    ) -> bool:
        """Write quantity (and cost) iff the stored version matches.

        A successful write increments the version by one.
        """

    @abstractmethod
    def retire_product(self, product_id: UUID, actor_id: UUID) -> ProductState:
        """Flag the product retired and advance its version."""

    @abstractmethod
    def set_integrity_hold(self, product_id: UUID, reason: str | None) -> None:
        """Place (reason given) or release (None) a product's integrity hold.

        Advances the version so an in-flight compare-and-swap re-reads it.
        """

    # -- movements ------------------------------------------------------------

    @abstractmethod
    def insert_movement(self, movement: NewMovement) -> MovementRecord:
        """Append a movement, assigning the next ledger sequence."""

    @abstractmethod
    def get_movement(self, movement_id: UUID) -> MovementRecord | None:
        ...

    @abstractmethod
    def find_active_movement(
        self,
        reference_id: str,
        product_id: UUID,
        cause: MovementCause,
    ) -> MovementRecord | None:
        """The non-reversed, non-reversal movement for a dedup key, if any."""

    @abstractmethod
    def find_reversal_of(self, movement_id: UUID) -> MovementRecord | None:
        ...

    @abstractmethod
    def mark_movement_reversed(self, movement_id: UUID) -> bool:
        """Flip ``is_reversed``; False if it was already set."""

    @abstractmethod
    def movements_for_reference(self, reference_id: str) -> list[MovementRecord]:
        """All movements carrying a reference id, in ledger order."""

    @abstractmethod
    def list_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MovementRecord]:
        """A product's movements, newest first."""

    @abstractmethod
    def count_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        ...

    @abstractmethod
    def movements_after(self, product_id: UUID, sequence: int) -> list[MovementRecord]:
        """A product's movements with a later sequence, in ledger order."""

    # -- purchase orders ------------------------------------------------------

    @abstractmethod
    def create_purchase_order(self, order: PurchaseOrder) -> PurchaseOrder:
        ...

    @abstractmethod
    def get_purchase_order(self, order_id: UUID) -> PurchaseOrder | None:
        ...

    @abstractmethod
    def compare_and_set_order_status(
        self,
        order_id: UUID,
        expected_status: PurchaseOrderStatus,
        new_status: PurchaseOrderStatus,
    ) -> bool:
        ...

    @abstractmethod
    def add_received_quantities(
        self,
        order_id: UUID,
        quantities: Mapping[UUID, int],
    ) -> PurchaseOrder:
        """Add to each line's cumulative received quantity."""

    @abstractmethod
    def insert_status_transition(
        self,
        record: StatusTransitionRecord,
    ) -> StatusTransitionRecord:
        ...

    @abstractmethod
    def list_status_transitions(self, order_id: UUID) -> list[StatusTransitionRecord]:
        """Transition history, oldest first."""

    # -- receiving ------------------------------------------------------------

    @abstractmethod
    def insert_receiving_record(self, record: ReceivingRecord) -> ReceivingRecord:
        ...

    @abstractmethod
    def get_receiving_record(self, receiving_id: UUID) -> ReceivingRecord | None:
        ...
