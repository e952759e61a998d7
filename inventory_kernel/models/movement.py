"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for the append-only inventory movement ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain only.

Invariants enforced:
    - ``direction`` is written once, from ``resolve_for_movement(cause,
      is_reversal)``, inside ``from_dto``.  No caller supplies it.
    - CHECK: ``stock_after = stock_before +/- quantity`` according to
      direction, and ``quantity > 0``.
    - At most one active (non-reversed, non-reversal) movement per
      ``(reference_id, product_id, cause)`` -- partial unique index.
    - At most one reversal per movement -- unique ``reversal_of_id``.
    - Rows are immutable except the ``is_reversed`` False -> True flip
      (db/immutability.py).

Audit relevance:
    ``sequence`` is allocated from a locked counter row and gives the
    ledger a total order that replay depends on.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class InventoryMovementModel(Base):
    """
    One immutable stock ledger entry.

    Maps to ``MovementRecord`` in ``inventory_kernel.domain.dtos``.
    """

    __tablename__ = "inventory_movements"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        CheckConstraint("direction IN ('IN', 'OUT')", name="ck_movement_direction"),
        CheckConstraint(
            "stock_after = stock_before + "
            "(CASE WHEN direction = 'IN' THEN quantity ELSE -quantity END)",
            name="ck_movement_stock_arithmetic",
        ),
        Index("idx_movement_product_sequence", "product_id", "sequence"),
        Index("idx_movement_reference", "reference_id"),
        Index("idx_movement_sequence", "sequence", unique=True),
        Index("idx_movement_reversal_of", "reversal_of_id", unique=True),
        Index(
            "uq_movement_active_key",
            "reference_id",
            "product_id",
            "cause",
            unique=True,
            postgresql_where=text("NOT is_reversed AND reversal_of_id IS NULL"),
            sqlite_where=text("NOT is_reversed AND reversal_of_id IS NULL"),
        ),
    )

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    cause: Mapped[str] = mapped_column(String(50), nullable=False)
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    stock_before: Mapped[int] = mapped_column(nullable=False)
    stock_after: Mapped[int] = mapped_column(nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    is_reversed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("inventory_movements.id"), nullable=True
    )
    unit_cost_before: Mapped[Decimal | None] = mapped_column(nullable=True)
    unit_cost_after: Mapped[Decimal | None] = mapped_column(nullable=True)

    def to_dto(self):
        from inventory_kernel.domain.direction import MovementCause
        from inventory_kernel.domain.dtos import MovementRecord

        return MovementRecord(
            id=self.id,
            product_id=self.product_id,
            cause=MovementCause(self.cause),
            quantity=self.quantity,
            stock_before=self.stock_before,
            stock_after=self.stock_after,
            reference_id=self.reference_id,
            actor_id=self.actor_id,
            reason=self.reason,
            created_at=self.created_at,
            sequence=self.sequence,
            is_reversed=self.is_reversed,
            reversal_of_id=self.reversal_of_id,
            unit_cost_before=self.unit_cost_before,
            unit_cost_after=self.unit_cost_after,
        )

    @classmethod
    def from_dto(cls, dto, sequence: int) -> "InventoryMovementModel":
        """Build a row from a ``NewMovement``; direction is derived here."""
        return cls(
            id=dto.id,
            product_id=dto.product_id,
            cause=dto.cause.value,
            direction=dto.direction.value,
            quantity=dto.quantity,
            stock_before=dto.stock_before,
            stock_after=dto.stock_after,
            reference_id=dto.reference_id,
            actor_id=dto.actor_id,
            reason=dto.reason,
            created_at=dto.created_at,
            sequence=sequence,
            is_reversed=False,
            reversal_of_id=dto.reversal_of_id,
            unit_cost_before=dto.unit_cost_before,
            unit_cost_after=dto.unit_cost_after,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryMovementModel #{self.sequence} {self.cause} "
            f"{self.direction} {self.quantity}>"
        )
