"""
Persistence tests for SqlAlchemyInventoryStore on SQLite.

Verifies:
- A full sale / purchase / receive / reconcile flow over the ORM store
- The partial unique index refuses a second active movement for a key
- A reversal retried inside a joined SQLite unit applies its stock change once
- ORM immutability listeners protect the ledger and transition history
- Timestamps round-trip as UTC-aware datetimes
"""

from datetime import timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import (
    NewMovement,
    NewPurchaseOrderLine,
    ReceivingLine,
    ReceivingRequest,
    SaleLine,
)
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.exceptions import (
    ConcurrentModificationError,
    ImmutabilityViolationError,
)
from inventory_kernel.models.movement import InventoryMovementModel
from inventory_kernel.models.product import ProductModel
from inventory_kernel.models.purchase_order import StatusTransitionModel

S = PurchaseOrderStatus


@pytest.fixture
def db_ops(make_ops, sqlite_store):
    return make_ops(sqlite_store)


@pytest.fixture
def db_product(db_ops, admin):
    product = db_ops.create_product("SKU-DB-1", "Widget", admin, unit_cost=Decimal("10.0000"))
    result = db_ops.adjust_stock(
        product.id, MovementCause.ADJUSTMENT_IN, 10, admin, reason="opening stock"
    )
    assert result.success, result.error
    return db_ops.get_product(product.id)


def _walk_to_sent(db_ops, admin, product_id, quantity, cost):
    order = db_ops.create_purchase_order(
        "PO-DB-1", uuid4(), [NewPurchaseOrderLine(product_id, quantity, Decimal(cost))], admin
    )
    for target in (S.PENDING_APPROVAL, S.APPROVED, S.SENT_TO_SUPPLIER):
        order = db_ops.transition_order_status(order.id, target, admin)
    return order


class TestEndToEnd:

    def test_sale_void_and_receipt(self, db_ops, admin, cashier, supervisor, receiver, db_product):
        sale = db_ops.process_sale("S-1", [SaleLine(db_product.id, 4)], cashier)
        assert sale.success
        assert db_ops.get_product(db_product.id).quantity_on_hand == 6

        void = db_ops.void_sale("S-1", supervisor, reason="customer changed mind")
        assert void.success
        assert db_ops.get_product(db_product.id).quantity_on_hand == 10

        order = _walk_to_sent(db_ops, admin, db_product.id, 10, "12.00")
        receiving_id = uuid4()
        received = db_ops.receive_goods(
            order.id,
            ReceivingRequest(receiving_id, (ReceivingLine(db_product.id, 10),)),
            receiver,
        )
        assert received.success
        assert received.status is S.FULLY_RECEIVED

        product = db_ops.get_product(db_product.id)
        assert product.quantity_on_hand == 20
        assert product.unit_cost == Decimal("11.0000")
        assert db_ops.store.get_receiving_record(receiving_id).purchase_order_id == order.id
        assert db_ops.store.get_purchase_order(order.id).lines[0].received_quantity == 10

        report = db_ops.reconcile_product(db_product.id)
        assert report.matches
        assert report.movement_count == 4

    def test_failed_sale_leaves_no_rows(self, db_ops, admin, cashier, db_product):
        other = db_ops.create_product("SKU-DB-2", "Gadget", admin)
        result = db_ops.process_sale(
            "S-1", [SaleLine(db_product.id, 2), SaleLine(other.id, 1)], cashier
        )
        assert not result.success
        assert db_ops.get_product(db_product.id).quantity_on_hand == 10
        assert db_ops.store.movements_for_reference("S-1") == []

    def test_transitions_keep_insertion_order(self, db_ops, admin, db_product):
        # The clock never advances here, so every transition shares a timestamp.
        order = _walk_to_sent(db_ops, admin, db_product.id, 5, "1.00")
        history = db_ops.transition_history(order.id)
        assert [t.to_status for t in history] == [
            S.PENDING_APPROVAL, S.APPROVED, S.SENT_TO_SUPPLIER,
        ]

    def test_timestamps_are_utc_aware(self, db_ops, db_product):
        movement = db_ops.get_movement_history(db_product.id).items[0]
        assert movement.created_at.tzinfo is not None
        assert movement.created_at.utcoffset() == timezone.utc.utcoffset(None)


class TestActiveMovementKey:

    def test_duplicate_active_movement_refused(self, sqlite_store, clock, admin, db_product):
        def _movement():
            return NewMovement(
                id=uuid4(),
                product_id=db_product.id,
                cause=MovementCause.SALE,
                quantity=1,
                stock_before=10,
                stock_after=9,
                reference_id="S-DUP",
                actor_id=admin.id,
                reason="",
                created_at=clock.now(),
            )

        sqlite_store.insert_movement(_movement())
        with pytest.raises(ConcurrentModificationError):
            sqlite_store.insert_movement(_movement())
        assert len(sqlite_store.movements_for_reference("S-DUP")) == 1


class TestNestedReversal:

    def test_lost_flag_race_does_not_double_apply_stock(
        self, db_ops, sqlite_store, cashier, admin, db_product, monkeypatch
    ):
        sale = db_ops.process_sale("S-1", [SaleLine(db_product.id, 4)], cashier)
        real_mark = sqlite_store.mark_movement_reversed
        calls = []

        def lose_first_race(movement_id):
            calls.append(movement_id)
            if len(calls) == 1:
                return False
            return real_mark(movement_id)

        monkeypatch.setattr(sqlite_store, "mark_movement_reversed", lose_first_race)
        # Inside an outer unit the reversal joins it instead of opening its own.
        with sqlite_store.transaction():
            reversal = db_ops.engine.manager.reverse_movement(
                sale.movement_ids[0], admin.id, "void"
            )

        assert len(calls) == 2
        assert reversal.stock_before == 6
        assert reversal.stock_after == 10
        assert db_ops.get_product(db_product.id).quantity_on_hand == 10
        assert db_ops.reconcile_product(db_product.id).matches


class TestImmutability:

    @staticmethod
    def _first_movement(session, product_id):
        return session.execute(
            select(InventoryMovementModel).where(InventoryMovementModel.product_id == product_id)
        ).scalars().first()

    def test_movement_fields_cannot_change(self, db_product):
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with session_scope() as session:
                row = self._first_movement(session, db_product.id)
                row.quantity = 99
                session.flush()
        assert exc_info.value.entity_type == "InventoryMovement"

    def test_reversed_flag_only_moves_forward(self, db_product):
        with session_scope() as session:
            row = self._first_movement(session, db_product.id)
            row.is_reversed = True

        with pytest.raises(ImmutabilityViolationError):
            with session_scope() as session:
                row = self._first_movement(session, db_product.id)
                row.is_reversed = False
                session.flush()

    def test_movement_cannot_be_deleted(self, db_product):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope() as session:
                session.delete(self._first_movement(session, db_product.id))
                session.flush()

    def test_product_cannot_be_deleted(self, db_product):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope() as session:
                session.delete(session.get(ProductModel, db_product.id))
                session.flush()

    def test_status_transition_cannot_be_deleted(self, db_ops, admin, db_product):
        order = _walk_to_sent(db_ops, admin, db_product.id, 5, "1.00")
        with pytest.raises(ImmutabilityViolationError):
            with session_scope() as session:
                row = session.execute(
                    select(StatusTransitionModel).where(
                        StatusTransitionModel.purchase_order_id == order.id
                    )
                ).scalars().first()
                session.delete(row)
                session.flush()


@pytest.mark.postgres
class TestPostgres:

    def test_sale_round_trip(self, make_ops, pg_store, admin, cashier):
        pg_ops = make_ops(pg_store)
        product = pg_ops.create_product("SKU-PG-1", "Widget", admin)
        pg_ops.adjust_stock(product.id, MovementCause.ADJUSTMENT_IN, 3, admin, reason="opening")

        assert pg_ops.process_sale("S-1", [SaleLine(product.id, 3)], cashier).success
        assert pg_ops.get_product(product.id).quantity_on_hand == 0
        assert pg_ops.reconcile_product(product.id).matches
