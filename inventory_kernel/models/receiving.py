"""
Module: inventory_kernel.models.receiving
Responsibility: ORM persistence for receiving records -- one row per physical
    receipt event, with one line per received product.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - The record id is the caller's receiving id, so a resubmitted receipt
      collides on the primary key instead of applying twice.
    - Every line references the movement it produced.
    - Rows are immutable once written (db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base


class ReceivingRecordModel(Base):
    """
    A physical receipt event against a purchase order.

    Maps to the ``ReceivingRecord`` DTO.
    """

    __tablename__ = "receiving_records"

    __table_args__ = (
        Index("idx_receiving_purchase_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False
    )
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    received_at: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    lines: Mapped[list["ReceivingRecordLineModel"]] = relationship(
        "ReceivingRecordLineModel",
        back_populates="receiving_record",
        cascade="all",
        lazy="selectin",
        order_by="ReceivingRecordLineModel.line_number",
    )

    def to_dto(self):
        from inventory_kernel.domain.dtos import ReceivingRecord

        return ReceivingRecord(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            actor_id=self.actor_id,
            received_at=self.received_at,
            lines=tuple(line.to_dto() for line in self.lines),
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto) -> "ReceivingRecordModel":
        record = cls(
            id=dto.id,
            purchase_order_id=dto.purchase_order_id,
            actor_id=dto.actor_id,
            received_at=dto.received_at,
            notes=dto.notes,
        )
        record.lines = [
            ReceivingRecordLineModel(
                line_number=index,
                product_id=line.product_id,
                quantity=line.quantity,
                condition=line.condition.value,
                unit_cost=line.unit_cost,
                batch_number=line.batch_number,
                expiry_date=line.expiry_date,
                movement_id=line.movement_id,
            )
            for index, line in enumerate(dto.lines)
        ]
        return record

    def __repr__(self) -> str:
        return f"<ReceivingRecordModel {self.id} po={self.purchase_order_id}>"


class ReceivingRecordLineModel(Base):
    """One received product line."""

    __tablename__ = "receiving_record_lines"

    receiving_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("receiving_records.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    condition: Mapped[str] = mapped_column(String(20), nullable=False, default="good")
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    movement_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_movements.id"), nullable=False
    )

    receiving_record: Mapped["ReceivingRecordModel"] = relationship(
        "ReceivingRecordModel",
        back_populates="lines",
    )

    def to_dto(self):
        from inventory_kernel.domain.dtos import ItemCondition, ReceivingRecordLine

        return ReceivingRecordLine(
            product_id=self.product_id,
            quantity=self.quantity,
            condition=ItemCondition(self.condition),
            movement_id=self.movement_id,
            unit_cost=self.unit_cost,
            batch_number=self.batch_number,
            expiry_date=self.expiry_date,
        )
