"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.movement_selector import MovementSelector

__all__ = [
    "MovementSelector",
]
