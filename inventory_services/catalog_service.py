"""
inventory_services.catalog_service -- products and purchase orders.

Responsibility:
    Creates and retires products, and creates purchase orders in ``draft``.
    Stock quantities are never set here: a new product starts at zero and
    changes only through movements.

Architecture position:
    Services -- application façade over the store.

Invariants enforced:
    - SKUs are unique.
    - Products are retired, never deleted.
    - A purchase order lists each product at most once, with a positive
      ordered quantity and a non-negative unit cost.

Failure modes:
    PermissionDeniedError, DuplicateSkuError, DuplicateOrderLineError,
    ProductNotFoundError, ProductRetiredError, InvalidQuantityError,
    InvalidCostInputError, ValidationError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import (
    NewPurchaseOrderLine,
    ProductState,
    PurchaseOrder,
    PurchaseOrderLine,
)
from inventory_kernel.domain.principal import Permission, PermissionChecker, Principal
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.exceptions import (
    DuplicateOrderLineError,
    DuplicateSkuError,
    InvalidCostInputError,
    InvalidQuantityError,
    PermissionDeniedError,
    ProductNotFoundError,
    ProductRetiredError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.movement_record_manager import validate_quantity
from inventory_kernel.store.base import InventoryStore

logger = get_logger("services.catalog")


def _require_cost(value) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise InvalidCostInputError("unit cost must be a Decimal", unit_cost=value)
    value = Decimal(value)
    if not value.is_finite() or value < 0:
        raise InvalidCostInputError("unit cost cannot be negative", unit_cost=value)
    return value


class CatalogService:
    """Product and purchase-order master data."""

    def __init__(self, store: InventoryStore, permissions: PermissionChecker, clock: Clock):
        self._store = store
        self._permissions = permissions
        self._clock = clock

    def _require(self, principal: Principal, permission: Permission) -> None:
        if not self._permissions.has_permission(principal, permission):
            logger.warning(
                "catalog_permission_denied",
                extra={"actor_id": str(principal.id), "permission": permission.value},
            )
            raise PermissionDeniedError(principal.id, permission.value)

    def create_product(
        self,
        sku: str,
        name: str,
        principal: Principal,
        unit_cost: Decimal = Decimal("0"),
        minimum_stock: int = 0,
        product_id: UUID | None = None,
    ) -> ProductState:
        """Register a product with zero stock on hand."""
        self._require(principal, Permission.MANAGE_CATALOG)
        sku = (sku or "").strip()
        if not sku:
            raise ValidationError("SKU cannot be empty")
        if isinstance(minimum_stock, bool) or not isinstance(minimum_stock, int) or minimum_stock < 0:
            raise InvalidQuantityError(minimum_stock, "minimum stock must be a non-negative integer")
        unit_cost = _require_cost(unit_cost)
        if self._store.get_product_by_sku(sku) is not None:
            raise DuplicateSkuError(sku)

        product = self._store.create_product(
            ProductState(
                id=product_id or uuid4(),
                sku=sku,
                name=name,
                quantity_on_hand=0,
                unit_cost=unit_cost,
                minimum_stock=minimum_stock,
                version=0,
            ),
            actor_id=principal.id,
            created_at=self._clock.now(),
        )
        logger.info("product_created", extra={"product_id": str(product.id), "sku": sku})
        return product

    def retire_product(self, product_id: UUID, principal: Principal) -> ProductState:
        """Stop a product from accepting new movements.  Its ledger is kept."""
        self._require(principal, Permission.MANAGE_CATALOG)
        product = self._store.retire_product(product_id, principal.id)
        logger.info(
            "product_retired",
            extra={"product_id": str(product_id), "quantity_on_hand": product.quantity_on_hand},
        )
        return product

    def create_purchase_order(
        self,
        order_number: str,
        supplier_id: UUID | None,
        lines: Sequence[NewPurchaseOrderLine],
        principal: Principal,
    ) -> PurchaseOrder:
        """Create a purchase order in ``draft``."""
        self._require(principal, Permission.CREATE_PURCHASE_ORDER)
        if not order_number or not order_number.strip():
            raise ValidationError("order number cannot be empty")

        seen: set[UUID] = set()
        order_lines = []
        for index, line in enumerate(lines):
            if line.product_id in seen:
                raise DuplicateOrderLineError(line.product_id)
            seen.add(line.product_id)
            validate_quantity(line.ordered_quantity, line.product_id, index)
            product = self._store.get_product(line.product_id)
            if product is None:
                raise ProductNotFoundError(line.product_id)
            if product.is_retired:
                raise ProductRetiredError(line.product_id)
            order_lines.append(
                PurchaseOrderLine(
                    id=uuid4(),
                    product_id=line.product_id,
                    ordered_quantity=line.ordered_quantity,
                    unit_cost=_require_cost(line.unit_cost),
                )
            )

        order = self._store.create_purchase_order(
            PurchaseOrder(
                id=uuid4(),
                order_number=order_number.strip(),
                supplier_id=supplier_id,
                status=PurchaseOrderStatus.DRAFT,
                lines=tuple(order_lines),
                created_by_id=principal.id,
                created_at=self._clock.now(),
            )
        )
        logger.info(
            "purchase_order_created",
            extra={
                "purchase_order_id": str(order.id),
                "order_number": order.order_number,
                "line_count": len(order.lines),
            },
        )
        return order
