"""
Module: inventory_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders, their lines, and the
    append-only status transition history.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain only.

Invariants enforced:
    - A product appears at most once per order (uq_po_line_product).
    - ``status`` is written only through the state machine's
      compare-and-swap on the previous status.
    - ``received_quantity`` never decreases and never goes negative.
    - Status transitions are immutable once written (db/immutability.py)
      and numbered per order (uq_po_transition_position).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order header.

    Maps to the ``PurchaseOrder`` DTO in ``inventory_kernel.domain.dtos``.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_purchase_order_number"),
        Index("idx_purchase_order_status", "status"),
        Index("idx_purchase_order_supplier", "supplier_id"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self):
        from inventory_kernel.domain.dtos import PurchaseOrder
        from inventory_kernel.domain.workflow import PurchaseOrderStatus

        return PurchaseOrder(
            id=self.id,
            order_number=self.order_number,
            supplier_id=self.supplier_id,
            status=PurchaseOrderStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.order_number} [{self.status}]>"


class PurchaseOrderLineModel(Base):
    """
    One ordered product with its running received total.

    Maps to the ``PurchaseOrderLine`` DTO.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "product_id", name="uq_po_line_product"),
        CheckConstraint("ordered_quantity > 0", name="ck_po_line_ordered_positive"),
        CheckConstraint("received_quantity >= 0", name="ck_po_line_received_non_negative"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    ordered_quantity: Mapped[int] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    received_quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from inventory_kernel.domain.dtos import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            product_id=self.product_id,
            ordered_quantity=self.ordered_quantity,
            unit_cost=Decimal(self.unit_cost),
            received_quantity=self.received_quantity,
        )

    def __repr__(self) -> str:
        return (
            f"<PurchaseOrderLineModel {self.product_id} "
            f"{self.received_quantity}/{self.ordered_quantity}>"
        )


class StatusTransitionModel(Base):
    """
    Append-only purchase-order status history row.

    Maps to the ``StatusTransitionRecord`` DTO.
    """

    __tablename__ = "purchase_order_status_transitions"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "position", name="uq_po_transition_position"),
        Index("idx_po_transition_order", "purchase_order_id", "occurred_at"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False
    )
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 0-based order within the purchase order's history.
    position: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self):
        from inventory_kernel.domain.dtos import StatusTransitionRecord
        from inventory_kernel.domain.workflow import PurchaseOrderStatus

        return StatusTransitionRecord(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            from_status=PurchaseOrderStatus(self.from_status),
            to_status=PurchaseOrderStatus(self.to_status),
            actor_id=self.actor_id,
            reason=self.reason,
            occurred_at=self.occurred_at,
            automatic=self.automatic,
        )

    @classmethod
    def from_dto(cls, dto, position: int) -> "StatusTransitionModel":
        return cls(
            id=dto.id,
            purchase_order_id=dto.purchase_order_id,
            from_status=dto.from_status.value,
            to_status=dto.to_status.value,
            actor_id=dto.actor_id,
            reason=dto.reason,
            occurred_at=dto.occurred_at,
            automatic=dto.automatic,
            position=position,
        )

    def __repr__(self) -> str:
        return (
            f"<StatusTransitionModel {self.purchase_order_id} "
            f"{self.from_status}->{self.to_status}>"
        )
