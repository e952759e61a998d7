"""ORM models for the inventory kernel."""

from inventory_kernel.models.movement import InventoryMovementModel
from inventory_kernel.models.product import ProductModel
from inventory_kernel.models.purchase_order import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    StatusTransitionModel,
)
from inventory_kernel.models.receiving import ReceivingRecordLineModel, ReceivingRecordModel
from inventory_kernel.models.sequence import SequenceCounter

__all__ = [
    "InventoryMovementModel",
    "ProductModel",
    "PurchaseOrderLineModel",
    "PurchaseOrderModel",
    "ReceivingRecordLineModel",
    "ReceivingRecordModel",
    "SequenceCounter",
    "StatusTransitionModel",
]
