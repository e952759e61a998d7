"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.audit_sink import AuditSink, LoggingAuditSink
from inventory_kernel.services.inventory_update_engine import InventoryUpdateEngine
from inventory_kernel.services.movement_record_manager import (
    MovementRecordManager,
    validate_quantity,
)
from inventory_kernel.services.purchase_order_state_machine import (
    RECEIVABLE_STATUSES,
    PurchaseOrderStateMachine,
)
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.stock_validation import ReceiptRules, StockValidationService

__all__ = [
    "AuditSink",
    "InventoryUpdateEngine",
    "LoggingAuditSink",
    "MovementRecordManager",
    "PurchaseOrderStateMachine",
    "RECEIVABLE_STATUSES",
    "ReceiptRules",
    "SequenceService",
    "StockValidationService",
    "validate_quantity",
]
