"""
Module: inventory_kernel.selectors.movement_selector
Responsibility: Read-only, paginated access to a product's movement history.
Architecture position: Kernel > Selectors.  Reads through the store
    interface only and never writes.

Invariants enforced:
    - History is reverse-chronological (newest ledger sequence first).
    - ``since`` is inclusive and ``until`` exclusive, both on ``created_at``.
    - Page size is bounded by ``MAX_PAGE_SIZE``.

Failure modes:
    - ProductNotFoundError for an unknown product id.
    - ValueError for a negative offset, a non-positive limit, or an
      inverted range.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from inventory_kernel.domain.dtos import MovementPage
from inventory_kernel.exceptions import ProductNotFoundError
from inventory_kernel.store.base import InventoryStore


class MovementSelector:
    """Query side of the movement ledger."""

    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 500

    def __init__(self, store: InventoryStore):
        self.store = store

    def history(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> MovementPage:
        """One page of a product's movements, newest first."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        if since is not None and until is not None and since > until:
            raise ValueError("since must not be after until")
        limit = min(limit, self.MAX_PAGE_SIZE)

        if self.store.get_product(product_id) is None:
            raise ProductNotFoundError(product_id)

        total = self.store.count_movements(product_id, since, until)
        items = self.store.list_movements(product_id, since, until, limit, offset)
        return MovementPage(items=tuple(items), total=total, limit=limit, offset=offset)

    def for_reference(self, reference_id: str):
        """Every movement of one operation (sale id, receiving id), ledger order."""
        return self.store.movements_for_reference(str(reference_id))
