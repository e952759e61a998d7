"""
Test doubles for the inventory kernel.

InMemoryInventoryStore
    A complete ``InventoryStore`` held in dicts of frozen DTOs.  Each
    ``transaction()`` level snapshots the state and restores it on error,
    so nested units behave like savepoints.  Outermost transactions hold a
    re-entrant lock, which serializes writers across threads.

    ``atomic_batches`` selects the engine path: True exercises the native
    single-transaction path, False the compensating path.

    Fault injection:
        store.fail("insert_movement")                       # next call raises StoreError
        store.fail("get_product", error=StoreTimeoutError(...), skip=2)
        store.fail("commit", after=True)                    # commit lands, caller sees an error
        store.on("compare_and_set_stock", callback)         # run code before a call

RecordingAuditSink
    Keeps every published record in order.
"""

from __future__ import annotations

import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Mapping
from uuid import UUID

from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    MovementRecord,
    NewMovement,
    ProductState,
    PurchaseOrder,
    ReceivingRecord,
    StatusTransitionRecord,
)
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.exceptions import (
    ConcurrentModificationError,
    InventoryKernelError,
    ProductNotFoundError,
    PurchaseOrderNotFoundError,
    StoreError,
)
from inventory_kernel.services.audit_sink import AuditSink
from inventory_kernel.store.base import InventoryStore


@dataclass
class Fault:
    method: str
    error: InventoryKernelError
    times: int = 1
    skip: int = 0
    after: bool = False
    when: Callable[..., bool] | None = None


@dataclass
class _State:
    products: dict
    movements: dict
    orders: dict
    transitions: list
    receipts: dict
    sequence: int

    def copy(self) -> "_State":
        return _State(
            dict(self.products),
            dict(self.movements),
            dict(self.orders),
            list(self.transitions),
            dict(self.receipts),
            self.sequence,
        )


class InMemoryInventoryStore(InventoryStore):
    """Dict-backed store for service and engine tests."""

    def __init__(self, atomic_batches: bool = False):
        self.supports_atomic_batch = atomic_batches
        self._state = _State({}, {}, {}, [], {}, 0)
        self._lock = threading.RLock()
        self._local = threading.local()
        self._faults: list[Fault] = []
        self._hooks: dict[str, list[Callable[..., None]]] = {}
        self.calls: Counter = Counter()

    # -------------------------------------------------------------------------
    # Fault injection
    # -------------------------------------------------------------------------

    def fail(
        self,
        method: str,
        error: InventoryKernelError | None = None,
        times: int = 1,
        skip: int = 0,
        after: bool = False,
        when: Callable[..., bool] | None = None,
    ) -> Fault:
        """Make ``method`` raise ``error`` (default StoreError)."""
        fault = Fault(
            method=method,
            error=error or StoreError(method, "injected failure"),
            times=times,
            skip=skip,
            after=after,
            when=when,
        )
        self._faults.append(fault)
        return fault

    def on(self, method: str, callback: Callable[..., None]) -> None:
        """Run ``callback(**arguments)`` before each call of ``method``."""
        self._hooks.setdefault(method, []).append(callback)

    def clear_faults(self) -> None:
        self._faults.clear()
        self._hooks.clear()

    def _trigger(self, method: str, after: bool, **arguments: Any) -> None:
        for fault in self._faults:
            if fault.method != method or fault.after != after or fault.times <= 0:
                continue
            if fault.when is not None and not fault.when(**arguments):
                continue
            if fault.skip > 0:
                fault.skip -= 1
                continue
            fault.times -= 1
            raise fault.error

    @contextmanager
    def _call(self, method: str, **arguments: Any) -> Iterator[None]:
        with self._lock:
            self.calls[method] += 1
            for callback in list(self._hooks.get(method, ())):
                callback(**arguments)
            self._trigger(method, after=False, **arguments)
            yield
            self._trigger(method, after=True, **arguments)

    # -------------------------------------------------------------------------
    # Direct state access for tests
    # -------------------------------------------------------------------------

    def tamper_product(self, product_id: UUID, **changes: Any) -> ProductState:
        """Overwrite product fields without a movement (simulates drift)."""
        with self._lock:
            product = replace(self._state.products[product_id], **changes)
            self._state.products[product_id] = product
            return product

    def tamper_order(self, order_id: UUID, **changes: Any) -> PurchaseOrder:
        """Overwrite purchase-order fields (simulates a concurrent writer)."""
        with self._lock:
            order = replace(self._state.orders[order_id], **changes)
            self._state.orders[order_id] = order
            return order

    def all_movements(self) -> list[MovementRecord]:
        with self._lock:
            return sorted(self._state.movements.values(), key=lambda m: m.sequence)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        outermost = not stack
        self._lock.acquire()
        stack.append(self._state.copy())
        try:
            yield
            if outermost:
                self._trigger("commit", after=False)
        except BaseException:
            self._state = stack[-1]
            raise
        finally:
            stack.pop()
            self._lock.release()
        if outermost:
            self._trigger("commit", after=True)

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def get_product(self, product_id: UUID) -> ProductState | None:
        with self._call("get_product", product_id=product_id):
            return self._state.products.get(product_id)

    def get_product_by_sku(self, sku: str) -> ProductState | None:
        with self._call("get_product_by_sku", sku=sku):
            for product in self._state.products.values():
                if product.sku == sku:
                    return product
            return None

    def list_products(self, include_retired: bool = False) -> list[ProductState]:
        with self._call("list_products"):
            return sorted(
                (p for p in self._state.products.values() if include_retired or not p.is_retired),
                key=lambda p: p.sku,
            )

    def create_product(
        self,
        product: ProductState,
        actor_id: UUID,
        created_at: datetime,
    ) -> ProductState:
        with self._call("create_product", product=product):
            if product.id in self._state.products or any(
                p.sku == product.sku for p in self._state.products.values()
            ):
                raise ConcurrentModificationError("create_product", product.sku, 1)
            self._state.products[product.id] = product
            return product

    def compare_and_set_stock(
        self,
        product_id: UUID,
        expected_version: int,
        new_quantity: int,
        new_unit_cost: Decimal | None = None,
    ) -> bool:
        with self._call(
            "compare_and_set_stock",
            product_id=product_id,
            expected_version=expected_version,
            new_quantity=new_quantity,
        ):
            product = self._state.products.get(product_id)
            if product is None or product.version != expected_version:
                return False
            changes: dict[str, Any] = {
                "quantity_on_hand": new_quantity,
                "version": product.version + 1,
            }
            if new_unit_cost is not None:
                changes["unit_cost"] = new_unit_cost
            self._state.products[product_id] = replace(product, **changes)
            return True

    def retire_product(self, product_id: UUID, actor_id: UUID) -> ProductState:
        with self._call("retire_product", product_id=product_id):
            product = self._state.products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            product = replace(product, is_retired=True, version=product.version + 1)
            self._state.products[product_id] = product
            return product

    def set_integrity_hold(self, product_id: UUID, reason: str | None) -> None:
        with self._call("set_integrity_hold", product_id=product_id, reason=reason):
            product = self._state.products.get(product_id)
            if product is not None:
                self._state.products[product_id] = replace(
                    product, integrity_hold_reason=reason, version=product.version + 1
                )

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def _active(self, reference_id: str, product_id: UUID, cause: MovementCause):
        for movement in self._state.movements.values():
            if (
                movement.reference_id == reference_id
                and movement.product_id == product_id
                and movement.cause is cause
                and not movement.is_reversed
                and not movement.is_reversal
            ):
                return movement
        return None

    def insert_movement(self, movement: NewMovement) -> MovementRecord:
        with self._call("insert_movement", movement=movement):
            if movement.reversal_of_id is None:
                if self._active(movement.reference_id, movement.product_id, movement.cause):
                    raise ConcurrentModificationError(
                        "insert_movement", movement.reference_id, 1
                    )
            elif any(
                m.reversal_of_id == movement.reversal_of_id
                for m in self._state.movements.values()
            ):
                raise ConcurrentModificationError("insert_movement", movement.reversal_of_id, 1)

            self._state.sequence += 1
            record = MovementRecord(
                sequence=self._state.sequence,
                **{f.name: getattr(movement, f.name) for f in fields(NewMovement)},
            )
            self._state.movements[record.id] = record
            return record

    def get_movement(self, movement_id: UUID) -> MovementRecord | None:
        with self._call("get_movement", movement_id=movement_id):
            return self._state.movements.get(movement_id)

    def find_active_movement(
        self,
        reference_id: str,
        product_id: UUID,
        cause: MovementCause,
    ) -> MovementRecord | None:
        with self._call(
            "find_active_movement",
            reference_id=reference_id,
            product_id=product_id,
            cause=cause,
        ):
            return self._active(reference_id, product_id, cause)

    def find_reversal_of(self, movement_id: UUID) -> MovementRecord | None:
        with self._call("find_reversal_of", movement_id=movement_id):
            for movement in self._state.movements.values():
                if movement.reversal_of_id == movement_id:
                    return movement
            return None

    def mark_movement_reversed(self, movement_id: UUID) -> bool:
        with self._call("mark_movement_reversed", movement_id=movement_id):
            movement = self._state.movements.get(movement_id)
            if movement is None or movement.is_reversed:
                return False
            self._state.movements[movement_id] = replace(movement, is_reversed=True)
            return True

    def movements_for_reference(self, reference_id: str) -> list[MovementRecord]:
        with self._call("movements_for_reference", reference_id=reference_id):
            return sorted(
                (m for m in self._state.movements.values() if m.reference_id == reference_id),
                key=lambda m: m.sequence,
            )

    def _history(self, product_id, since, until) -> list[MovementRecord]:
        return [
            m for m in self._state.movements.values()
            if m.product_id == product_id
            and (since is None or m.created_at >= since)
            and (until is None or m.created_at < until)
        ]

    def list_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MovementRecord]:
        with self._call("list_movements", product_id=product_id):
            items = sorted(
                self._history(product_id, since, until),
                key=lambda m: (m.created_at, m.sequence),
                reverse=True,
            )
            end = None if limit is None else offset + limit
            return items[offset:end]

    def count_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        with self._call("count_movements", product_id=product_id):
            return len(self._history(product_id, since, until))

    def movements_after(self, product_id: UUID, sequence: int) -> list[MovementRecord]:
        with self._call("movements_after", product_id=product_id, sequence=sequence):
            return sorted(
                (
                    m for m in self._state.movements.values()
                    if m.product_id == product_id and m.sequence > sequence
                ),
                key=lambda m: m.sequence,
            )

    # -------------------------------------------------------------------------
    # Purchase orders
    # -------------------------------------------------------------------------

    def create_purchase_order(self, order: PurchaseOrder) -> PurchaseOrder:
        with self._call("create_purchase_order", order=order):
            if any(o.order_number == order.order_number for o in self._state.orders.values()):
                raise ConcurrentModificationError("create_purchase_order", order.order_number, 1)
            self._state.orders[order.id] = order
            return order

    def get_purchase_order(self, order_id: UUID) -> PurchaseOrder | None:
        with self._call("get_purchase_order", order_id=order_id):
            return self._state.orders.get(order_id)

    def compare_and_set_order_status(
        self,
        order_id: UUID,
        expected_status: PurchaseOrderStatus,
        new_status: PurchaseOrderStatus,
    ) -> bool:
        with self._call(
            "compare_and_set_order_status",
            order_id=order_id,
            expected_status=expected_status,
            new_status=new_status,
        ):
            order = self._state.orders.get(order_id)
            if order is None or order.status is not expected_status:
                return False
            self._state.orders[order_id] = replace(order, status=new_status)
            return True

    def add_received_quantities(
        self,
        order_id: UUID,
        quantities: Mapping[UUID, int],
    ) -> PurchaseOrder:
        with self._call("add_received_quantities", order_id=order_id):
            order = self._state.orders.get(order_id)
            if order is None:
                raise PurchaseOrderNotFoundError(order_id)
            order = replace(
                order,
                lines=tuple(
                    replace(
                        line,
                        received_quantity=line.received_quantity + quantities.get(line.product_id, 0),
                    )
                    for line in order.lines
                ),
            )
            self._state.orders[order_id] = order
            return order

    def insert_status_transition(
        self,
        record: StatusTransitionRecord,
    ) -> StatusTransitionRecord:
        with self._call("insert_status_transition", record=record):
            self._state.transitions.append(record)
            return record

    def list_status_transitions(self, order_id: UUID) -> list[StatusTransitionRecord]:
        with self._call("list_status_transitions", order_id=order_id):
            return [t for t in self._state.transitions if t.purchase_order_id == order_id]

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    def insert_receiving_record(self, record: ReceivingRecord) -> ReceivingRecord:
        with self._call("insert_receiving_record", record=record):
            if record.id in self._state.receipts:
                raise ConcurrentModificationError("insert_receiving_record", record.id, 1)
            self._state.receipts[record.id] = record
            return record

    def get_receiving_record(self, receiving_id: UUID) -> ReceivingRecord | None:
        with self._call("get_receiving_record", receiving_id=receiving_id):
            return self._state.receipts.get(receiving_id)


class RecordingAuditSink(AuditSink):
    """Collects published records; optionally raises to test sink isolation."""

    def __init__(self, fail: bool = False):
        self.movements: list[MovementRecord] = []
        self.transitions: list[StatusTransitionRecord] = []
        self.fail = fail

    def movement_recorded(self, movement: MovementRecord) -> None:
        if self.fail:
            raise RuntimeError("audit sink unavailable")
        self.movements.append(movement)

    def status_transition_recorded(self, transition: StatusTransitionRecord) -> None:
        if self.fail:
            raise RuntimeError("audit sink unavailable")
        self.transitions.append(transition)
