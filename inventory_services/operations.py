"""
InventoryOperations -- the exposed surface and DI container.

Contract:
    Wires every kernel service and application façade around one store, one
    permission checker, one clock and one audit sink, and exposes the
    operations callers use.  ``from_store()`` is the single place where the
    dependencies are composed; ``inventory_services.wiring`` builds the store
    from configuration and then calls it.

Architecture: inventory_services (top-level).  The kernel never imports
    from here.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Audit trail: every service that records movements or transitions
      publishes to the same sink.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.costing import WeightedAverageCostCalculator
from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    CancellationToken,
    MovementPage,
    MovementRecord,
    NewPurchaseOrderLine,
    ProductState,
    PurchaseOrder,
    ReceiveResult,
    ReceivingRequest,
    ReconciliationReport,
    SaleLine,
    SaleResult,
    StatusTransitionRecord,
    UpdateResult,
)
from inventory_kernel.domain.principal import PermissionChecker, Principal
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.services.audit_sink import AuditSink, LoggingAuditSink
from inventory_kernel.services.inventory_update_engine import InventoryUpdateEngine
from inventory_kernel.services.movement_record_manager import MovementRecordManager
from inventory_kernel.services.purchase_order_state_machine import PurchaseOrderStateMachine
from inventory_kernel.services.stock_validation import ReceiptRules, StockValidationService
from inventory_kernel.store.base import InventoryStore
from inventory_services.adjustment_service import StockAdjustmentService
from inventory_services.catalog_service import CatalogService
from inventory_services.receiving_service import ReceivingService
from inventory_services.reconciliation_service import ReconciliationService
from inventory_services.sale_processor import SaleProcessor

logger = get_logger("services.operations")


class InventoryOperations:
    """Entry point for sales, receiving, purchase orders and stock queries.

    Non-goals:
        - Does NOT authenticate; callers pass an already resolved Principal.
        - Does NOT own the database engine; see ``inventory_services.wiring``.
    """

    def __init__(
        self,
        store: InventoryStore,
        clock: Clock,
        audit_sink: AuditSink,
        state_machine: PurchaseOrderStateMachine,
        sales: SaleProcessor,
        receiving: ReceivingService,
        adjustments: StockAdjustmentService,
        catalog: CatalogService,
        reconciliation: ReconciliationService,
        selector: MovementSelector,
        engine: InventoryUpdateEngine,
    ) -> None:
        self._store = store
        self._clock = clock
        self._audit = audit_sink
        self._state_machine = state_machine
        self._sales = sales
        self._receiving = receiving
        self._adjustments = adjustments
        self._catalog = catalog
        self._reconciliation = reconciliation
        self._selector = selector
        self._engine = engine

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_store(
        cls,
        store: InventoryStore,
        permissions: PermissionChecker,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        cost_calculator: WeightedAverageCostCalculator | None = None,
        receipt_rules: ReceiptRules | None = None,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.01,
        backoff_max_seconds: float = 0.25,
        verify_after_write: bool = True,
    ) -> InventoryOperations:
        """Create a fully wired InventoryOperations around ``store``.

        Args:
            store: Production or test store.
            permissions: The permission capability.
            clock: Optional clock for deterministic testing.
            audit_sink: Receives every committed movement and transition.
                Defaults to a sink that logs them.
        """
        effective_clock = clock or SystemClock()
        sink = audit_sink or LoggingAuditSink()
        calculator = cost_calculator or WeightedAverageCostCalculator()

        manager = MovementRecordManager(
            store,
            effective_clock,
            cost_calculator=calculator,
            max_attempts=max_attempts,
            backoff_base_seconds=backoff_base_seconds,
            backoff_max_seconds=backoff_max_seconds,
        )
        engine = InventoryUpdateEngine(
            store, manager, audit_sink=sink, verify_after_write=verify_after_write,
        )
        validator = StockValidationService(store, effective_clock, receipt_rules)
        state_machine = PurchaseOrderStateMachine(
            store, permissions, effective_clock, audit_sink=sink,
        )

        return cls(
            store=store,
            clock=effective_clock,
            audit_sink=sink,
            state_machine=state_machine,
            sales=SaleProcessor(validator, engine, permissions),
            receiving=ReceivingService(
                store, validator, state_machine, engine, permissions,
                effective_clock, cost_calculator=calculator,
            ),
            adjustments=StockAdjustmentService(engine, permissions),
            catalog=CatalogService(store, permissions, effective_clock),
            reconciliation=ReconciliationService(store, manager, permissions, sink),
            selector=MovementSelector(store),
            engine=engine,
        )

    # -------------------------------------------------------------------------
    # Sales
    # -------------------------------------------------------------------------

    def process_sale(
        self,
        sale_id: str | UUID,
        lines: Sequence[SaleLine],
        principal: Principal,
        cancellation_token: CancellationToken | None = None,
    ) -> SaleResult:
        return self._sales.process_sale(sale_id, lines, principal, cancellation_token)

    def void_sale(self, sale_id: str | UUID, principal: Principal, reason: str = "") -> SaleResult:
        return self._sales.void_sale(sale_id, principal, reason)

    # -------------------------------------------------------------------------
    # Purchasing
    # -------------------------------------------------------------------------

    def create_purchase_order(
        self,
        order_number: str,
        supplier_id: UUID | None,
        lines: Sequence[NewPurchaseOrderLine],
        principal: Principal,
    ) -> PurchaseOrder:
        return self._catalog.create_purchase_order(order_number, supplier_id, lines, principal)

    def transition_order_status(
        self,
        purchase_order_id: UUID,
        to_status: PurchaseOrderStatus | str,
        principal: Principal,
        reason: str = "",
    ) -> PurchaseOrder:
        """Move an order to ``to_status``.

        Raises:
            TransitionError: Illegal, unauthorized or precondition failure;
                nothing is written.
        """
        return self._state_machine.execute(purchase_order_id, to_status, principal, reason)

    def transition_history(self, purchase_order_id: UUID) -> list[StatusTransitionRecord]:
        return self._state_machine.transition_history(purchase_order_id)

    def valid_transitions(self, status: PurchaseOrderStatus | str) -> tuple[PurchaseOrderStatus, ...]:
        return self._state_machine.valid_transitions(status)

    def receive_goods(
        self,
        purchase_order_id: UUID,
        request: ReceivingRequest,
        principal: Principal,
        confirm_over_receipt: bool = False,
        cancellation_token: CancellationToken | None = None,
    ) -> ReceiveResult:
        return self._receiving.receive_goods(
            purchase_order_id,
            request,
            principal,
            confirm_over_receipt=confirm_over_receipt,
            cancellation_token=cancellation_token,
        )

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def adjust_stock(
        self,
        product_id: UUID,
        cause: MovementCause | str,
        quantity: int,
        principal: Principal,
        reason: str,
        allow_negative: bool = False,
        adjustment_id: str | UUID | None = None,
    ) -> UpdateResult:
        return self._adjustments.adjust_stock(
            product_id, cause, quantity, principal, reason,
            allow_negative=allow_negative, adjustment_id=adjustment_id,
        )

    def get_movement_history(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = MovementSelector.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> MovementPage:
        """A page of a product's movements, newest first."""
        return self._selector.history(product_id, since, until, limit, offset)

    def get_product(self, product_id: UUID) -> ProductState | None:
        return self._store.get_product(product_id)

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def create_product(self, sku: str, name: str, principal: Principal, **kwargs) -> ProductState:
        return self._catalog.create_product(sku, name, principal, **kwargs)

    def retire_product(self, product_id: UUID, principal: Principal) -> ProductState:
        return self._catalog.retire_product(product_id, principal)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_product(self, product_id: UUID) -> ReconciliationReport:
        return self._reconciliation.reconcile_product(product_id)

    def reconcile_all(self, include_retired: bool = True) -> list[ReconciliationReport]:
        return self._reconciliation.reconcile_all(include_retired)

    def release_integrity_hold(self, product_id: UUID, principal: Principal) -> ReconciliationReport:
        return self._reconciliation.release_integrity_hold(product_id, principal)

    def reverse_movement(self, movement_id: UUID, principal: Principal, reason: str) -> MovementRecord:
        return self._reconciliation.reverse_movement(movement_id, principal, reason)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store(self) -> InventoryStore:
        return self._store

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def engine(self) -> InventoryUpdateEngine:
        return self._engine

    @property
    def audit_sink(self) -> AuditSink:
        return self._audit
