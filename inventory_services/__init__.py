"""
inventory_services -- Package init and public API.

Responsibility:
    Application façades that compose the kernel services into the
    operations callers use: sales, receiving, adjustments, catalog,
    reconciliation, and the InventoryOperations container that wires them.

Architecture position:
    Services -- orchestration over the kernel.

    Dependency direction:
        inventory_services/ -> inventory_kernel/  (allowed)
        inventory_services/ -> inventory_config/  (allowed, wiring only)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: all wiring is centralised in
      ``InventoryOperations.from_store``; no façade self-constructs its
      dependencies.
"""

from inventory_services.adjustment_service import StockAdjustmentService
from inventory_services.catalog_service import CatalogService
from inventory_services.operations import InventoryOperations
from inventory_services.receiving_service import ReceivingService
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sale_processor import SaleProcessor
from inventory_services.wiring import build_operations

__all__ = [
    "CatalogService",
    "InventoryOperations",
    "ReceivingService",
    "ReconciliationService",
    "SaleProcessor",
    "StockAdjustmentService",
    "build_operations",
]
