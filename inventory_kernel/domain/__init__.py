"""
Pure domain layer.

Value objects and pure calculators with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (the system clock is the one sanctioned exception)

All domain objects are immutable and deterministic.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.costing import CostRecomputation, WeightedAverageCostCalculator
from inventory_kernel.domain.direction import (
    Direction,
    MovementCause,
    allows_negative_stock,
    parse_cause,
    resolve,
)
from inventory_kernel.domain.principal import (
    Permission,
    PermissionChecker,
    Principal,
    RoleBasedPermissionChecker,
)
from inventory_kernel.domain.workflow import PURCHASE_ORDER_WORKFLOW, PurchaseOrderStatus

__all__ = [
    "Clock",
    "CostRecomputation",
    "DeterministicClock",
    "Direction",
    "MovementCause",
    "PURCHASE_ORDER_WORKFLOW",
    "Permission",
    "PermissionChecker",
    "Principal",
    "PurchaseOrderStatus",
    "RoleBasedPermissionChecker",
    "SystemClock",
    "WeightedAverageCostCalculator",
    "allows_negative_stock",
    "parse_cause",
    "resolve",
]
