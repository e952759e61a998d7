"""
Principals and the permission-check capability.

Responsibility:
    Authentication and role resolution live outside the kernel.  The kernel
    receives an opaque acting ``Principal`` and asks a ``PermissionChecker``
    whether it may perform an action.  ``RoleBasedPermissionChecker`` is the
    production implementation, fed by the ``permissions`` section of the
    configuration.

Architecture position:
    Kernel > Domain -- pure value objects and a pure lookup, zero I/O.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


class Permission(str, Enum):
    """Actions checked against the permission capability."""
    PROCESS_SALE = "sale.process"
    VOID_SALE = "sale.void"
    ADJUST_STOCK = "stock.adjust"
    OVERRIDE_NEGATIVE_STOCK = "stock.override_negative"
    MANAGE_CATALOG = "catalog.manage"
    RECONCILE = "stock.reconcile"
    CREATE_PURCHASE_ORDER = "purchase_order.create"
    SUBMIT_PURCHASE_ORDER = "purchase_order.submit"
    APPROVE_PURCHASE_ORDER = "purchase_order.approve"
    SEND_PURCHASE_ORDER = "purchase_order.send"
    RECEIVE_GOODS = "purchase_order.receive"
    CANCEL_PURCHASE_ORDER = "purchase_order.cancel"
    CLOSE_PURCHASE_ORDER = "purchase_order.close"


@dataclass(frozen=True)
class Principal:
    """The acting user or system identity.

    ``roles`` come from the external identity layer; the kernel never
    derives them.
    """
    id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    display_name: str = ""


class PermissionChecker(ABC):
    """Capability: ``has_permission(principal, action, context) -> bool``."""

    @abstractmethod
    def has_permission(
        self,
        principal: Principal,
        action: Permission | str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        ...


class RoleBasedPermissionChecker(PermissionChecker):
    """Grants an action when any of the principal's roles lists it.

    A role granted ``"*"`` holds every action.
    """

    WILDCARD = "*"

    def __init__(self, role_grants: Mapping[str, frozenset[str] | set[str] | tuple[str, ...]]):
        self._grants = {
            role: frozenset(actions) for role, actions in role_grants.items()
        }

    def has_permission(
        self,
        principal: Principal,
        action: Permission | str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        action_name = action.value if isinstance(action, Permission) else action
        for role in principal.roles:
            granted = self._grants.get(role, frozenset())
            if self.WILDCARD in granted or action_name in granted:
                return True
        return False
