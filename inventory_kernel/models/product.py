"""
Module: inventory_kernel.models.product
Responsibility: ORM persistence for the product catalog and its stock
    projection (on-hand quantity and weighted-average unit cost).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - ``version`` increases by exactly one on every stock write; writes are
      compare-and-swap on it (see store/sqlalchemy_store.py).
    - Products are retired, never deleted (db/immutability.py).
    - ``quantity_on_hand`` is a projection of the movement ledger and is
      written only by the store's compare-and-swap.
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class ProductModel(TrackedBase):
    """
    A stock-keeping unit.

    Maps to ``ProductState`` in ``inventory_kernel.domain.dtos``.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_sku", "sku", unique=True),
        CheckConstraint("unit_cost >= 0", name="ck_product_unit_cost_non_negative"),
        CheckConstraint("minimum_stock >= 0", name="ck_product_minimum_stock_non_negative"),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(nullable=False, default=0)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    minimum_stock: Mapped[int] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(nullable=False, default=0)
    is_retired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    integrity_hold_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def to_dto(self):
        from inventory_kernel.domain.dtos import ProductState

        return ProductState(
            id=self.id,
            sku=self.sku,
            name=self.name,
            quantity_on_hand=self.quantity_on_hand,
            unit_cost=Decimal(self.unit_cost),
            minimum_stock=self.minimum_stock,
            version=self.version,
            is_retired=self.is_retired,
            integrity_hold_reason=self.integrity_hold_reason,
        )

    def __repr__(self) -> str:
        return f"<ProductModel {self.sku} qty={self.quantity_on_hand} v{self.version}>"
