"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the source of truth for every product's stock.  A
correction is always a NEW movement that reverses the original; editing or
deleting a ledger row would make the stock projection impossible to
reconstruct by replay.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

Bulk ``UPDATE`` statements (the store's compare-and-swap on products) do
not pass through these listeners; they only touch product projection
columns, which are not protected here.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | Rule
------------------------|----------------------------------------------------
InventoryMovement       | Immutable, except is_reversed may flip False -> True
                        | exactly once.  Never deleted.
StatusTransition        | Immutable from creation.  Never deleted.
ReceivingRecord (+line) | Immutable from creation.  Never deleted.
Product                 | Never deleted (retire instead).

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; idempotent

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """
    Allow only the one-way ``is_reversed`` flag flip on a movement.

    Any other changed field, or an attempt to clear the flag, is blocked.
    """
    from sqlalchemy.orm.attributes import get_history

    changed = _changed_fields(target)
    for field_name in changed:
        if field_name != "is_reversed":
            _block(
                "InventoryMovement",
                target,
                "UPDATE",
                f"Cannot modify field '{field_name}' on a ledger movement",
                field=field_name,
            )

    if "is_reversed" in changed:
        history = get_history(target, "is_reversed")
        was_reversed = bool(history.deleted and history.deleted[0])
        if was_reversed or not target.is_reversed:
            _block(
                "InventoryMovement",
                target,
                "UPDATE",
                "is_reversed may only change from False to True",
                field="is_reversed",
            )


def _check_movement_delete(mapper, connection, target):
    _block("InventoryMovement", target, "DELETE", "Ledger movements cannot be deleted")


def _check_status_transition_immutability(mapper, connection, target):
    if _changed_fields(target):
        _block(
            "StatusTransition",
            target,
            "UPDATE",
            "Status transition history is append-only",
        )


def _check_status_transition_delete(mapper, connection, target):
    _block("StatusTransition", target, "DELETE", "Status transitions cannot be deleted")


def _check_receiving_record_immutability(mapper, connection, target):
    if _changed_fields(target):
        _block(
            type(target).__name__,
            target,
            "UPDATE",
            "Receiving records are immutable once written",
        )


def _check_receiving_record_delete(mapper, connection, target):
    _block(type(target).__name__, target, "DELETE", "Receiving records cannot be deleted")


def _check_product_delete(mapper, connection, target):
    _block("Product", target, "DELETE", "Products are retired, never deleted")


def _listeners():
    from inventory_kernel.models.movement import InventoryMovementModel
    from inventory_kernel.models.product import ProductModel
    from inventory_kernel.models.purchase_order import StatusTransitionModel
    from inventory_kernel.models.receiving import (
        ReceivingRecordLineModel,
        ReceivingRecordModel,
    )

    return (
        (InventoryMovementModel, "before_update", _check_movement_immutability),
        (InventoryMovementModel, "before_delete", _check_movement_delete),
        (StatusTransitionModel, "before_update", _check_status_transition_immutability),
        (StatusTransitionModel, "before_delete", _check_status_transition_delete),
        (ReceivingRecordModel, "before_update", _check_receiving_record_immutability),
        (ReceivingRecordModel, "before_delete", _check_receiving_record_delete),
        (ReceivingRecordLineModel, "before_update", _check_receiving_record_immutability),
        (ReceivingRecordLineModel, "before_delete", _check_receiving_record_delete),
        (ProductModel, "before_delete", _check_product_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
