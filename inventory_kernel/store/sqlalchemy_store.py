"""
SqlAlchemyInventoryStore -- production implementation of ``InventoryStore``.

Responsibility:
    Maps every store operation onto SQLAlchemy 2.0 sessions against
    PostgreSQL (psycopg) or SQLite, and translates driver failures into the
    kernel's store exceptions.

Architecture position:
    Kernel > Store -- the only module that issues SQL on behalf of services.

Invariants enforced:
    - Stock writes are ``UPDATE products SET ... WHERE id = :id AND
      version = :v``; the row count decides the compare-and-swap.
    - Order status writes are ``UPDATE ... WHERE status = :expected``.
    - Movement sequences come from a locked counter row (SequenceService).
    - A ``transaction()`` binds one session to the current context; every
      call made inside it shares that session.  Calls made outside any
      transaction each run in their own short session.  A nested
      ``transaction()`` is a SAVEPOINT on PostgreSQL.
    - Reads of product and order rows always refresh the identity map
      (``populate_existing``) so a compare-and-swap issued as a bulk UPDATE
      is never shadowed by a stale ORM copy.

Failure modes:
    - StoreTimeoutError for pool timeouts and statement / lock timeouts.
    - StoreError for every other driver failure.
    - ConcurrentModificationError for a lost uniqueness race on the
      movement dedup key, the reversal link, or a receiving id.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Mapping
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

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
    ProductNotFoundError,
    PurchaseOrderNotFoundError,
    StoreError,
    StoreTimeoutError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.movement import InventoryMovementModel
from inventory_kernel.models.product import ProductModel
from inventory_kernel.models.purchase_order import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    StatusTransitionModel,
)
from inventory_kernel.models.receiving import ReceivingRecordModel
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.store.base import InventoryStore

logger = get_logger("store.sqlalchemy")

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "canceling statement",
    "lock not available",
    "database is locked",
)


def _is_timeout(exc: BaseException) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


class SqlAlchemyInventoryStore(InventoryStore):
    """
    ``InventoryStore`` over a SQLAlchemy session factory.

    Contract:
        Constructed with a ``sessionmaker``; owns no engine.  Safe to share
        across threads: the active session lives in a ``ContextVar``.
    """

    supports_atomic_batch = True

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._current: ContextVar[Session | None] = ContextVar(
            f"inventory_store_session_{id(self)}", default=None
        )

    # -------------------------------------------------------------------------
    # Session plumbing
    # -------------------------------------------------------------------------

    @contextmanager
    def _translate(self, operation: str, entity_id=None) -> Iterator[None]:
        try:
            yield
        except PoolTimeoutError as exc:
            logger.warning("store_timeout", extra={"operation": operation})
            raise StoreTimeoutError(operation, str(exc)) from exc
        except OperationalError as exc:
            if _is_timeout(exc):
                logger.warning("store_timeout", extra={"operation": operation})
                raise StoreTimeoutError(operation, str(exc.orig)) from exc
            logger.error("store_operational_error", extra={"operation": operation})
            raise StoreError(operation, str(exc.orig)) from exc
        except IntegrityError as exc:
            logger.warning(
                "store_uniqueness_conflict",
                extra={"operation": operation, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(operation, entity_id, attempts=1) from exc
        except DBAPIError as exc:
            logger.error("store_driver_error", extra={"operation": operation})
            raise StoreError(operation, str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            logger.error("store_error", extra={"operation": operation})
            raise StoreError(operation, str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        active = self._current.get()
        if active is not None:
            # Nested units become savepoints.  pysqlite cannot emit SAVEPOINT
            # reliably, so on SQLite they simply join the outer unit.
            if active.get_bind().dialect.name == "sqlite":
                yield
                return
            with self._translate("savepoint"):
                savepoint = active.begin_nested()
            try:
                yield
            except BaseException:
                savepoint.rollback()
                raise
            with self._translate("release_savepoint"):
                savepoint.commit()
            return

        session = self._session_factory()
        token = self._current.set(session)
        try:
            yield
            with self._translate("commit"):
                session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._current.reset(token)
            session.close()

    @contextmanager
    def _session(self, operation: str, entity_id=None) -> Iterator[Session]:
        """The active transaction's session, or a short-lived one."""
        active = self._current.get()
        with self._translate(operation, entity_id):
            if active is not None:
                yield active
                active.flush()
                return
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    @staticmethod
    def _load_product(session: Session, product_id: UUID) -> ProductModel | None:
        return session.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _load_order(session: Session, order_id: UUID) -> PurchaseOrderModel | None:
        return session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def get_product(self, product_id: UUID) -> ProductState | None:
        with self._session("get_product") as session:
            row = self._load_product(session, product_id)
            return row.to_dto() if row is not None else None

    def get_product_by_sku(self, sku: str) -> ProductState | None:
        with self._session("get_product_by_sku") as session:
            row = session.execute(
                select(ProductModel)
                .where(ProductModel.sku == sku)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def list_products(self, include_retired: bool = False) -> list[ProductState]:
        with self._session("list_products") as session:
            stmt = select(ProductModel).order_by(ProductModel.sku)
            if not include_retired:
                stmt = stmt.where(ProductModel.is_retired.is_(False))
            rows = session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    def create_product(
        self,
        product: ProductState,
        actor_id: UUID,
        created_at: datetime,
    ) -> ProductState:
        with self._session("create_product", product.sku) as session:
            row = ProductModel(
                id=product.id,
                sku=product.sku,
                name=product.name,
                quantity_on_hand=product.quantity_on_hand,
                unit_cost=product.unit_cost,
                minimum_stock=product.minimum_stock,
                version=product.version,
                is_retired=False,
                created_at=created_at,
                updated_at=created_at,
                created_by_id=actor_id,
            )
            session.add(row)
            session.flush()
            return row.to_dto()

    def compare_and_set_stock(
        self,
        product_id: UUID,
        expected_version: int,
        new_quantity: int,
        new_unit_cost: Decimal | None = None,
    ) -> bool:
        values: dict = {
            "quantity_on_hand": new_quantity,
            "version": ProductModel.version + 1,
        }
        if new_unit_cost is not None:
            values["unit_cost"] = new_unit_cost

        with self._session("compare_and_set_stock") as session:
            result = session.execute(
                update(ProductModel)
                .where(
                    ProductModel.id == product_id,
                    ProductModel.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            swapped = result.rowcount == 1

        if not swapped:
            logger.debug(
                "stock_version_mismatch",
                extra={"product_id": str(product_id), "expected_version": expected_version},
            )
        return swapped

    def retire_product(self, product_id: UUID, actor_id: UUID) -> ProductState:
        with self._session("retire_product") as session:
            row = self._load_product(session, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            row.is_retired = True
            row.version = row.version + 1
            row.updated_by_id = actor_id
            session.flush()
            return row.to_dto()

    def set_integrity_hold(self, product_id: UUID, reason: str | None) -> None:
        with self._session("set_integrity_hold") as session:
            session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(integrity_hold_reason=reason, version=ProductModel.version + 1)
                .execution_options(synchronize_session=False)
            )

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def insert_movement(self, movement: NewMovement) -> MovementRecord:
        with self._session("insert_movement", movement.reference_id) as session:
            sequence = SequenceService(session).next_value(SequenceService.MOVEMENT)
            row = InventoryMovementModel.from_dto(movement, sequence=sequence)
            session.add(row)
            session.flush()
            return row.to_dto()

    def get_movement(self, movement_id: UUID) -> MovementRecord | None:
        with self._session("get_movement") as session:
            row = session.execute(
                select(InventoryMovementModel)
                .where(InventoryMovementModel.id == movement_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def find_active_movement(
        self,
        reference_id: str,
        product_id: UUID,
        cause: MovementCause,
    ) -> MovementRecord | None:
        with self._session("find_active_movement") as session:
            row = session.execute(
                select(InventoryMovementModel)
                .where(
                    InventoryMovementModel.reference_id == reference_id,
                    InventoryMovementModel.product_id == product_id,
                    InventoryMovementModel.cause == cause.value,
                    InventoryMovementModel.is_reversed.is_(False),
                    InventoryMovementModel.reversal_of_id.is_(None),
                )
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def find_reversal_of(self, movement_id: UUID) -> MovementRecord | None:
        with self._session("find_reversal_of") as session:
            row = session.execute(
                select(InventoryMovementModel).where(
                    InventoryMovementModel.reversal_of_id == movement_id
                )
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def mark_movement_reversed(self, movement_id: UUID) -> bool:
        with self._session("mark_movement_reversed") as session:
            row = session.execute(
                select(InventoryMovementModel)
                .where(InventoryMovementModel.id == movement_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if row is None or row.is_reversed:
                return False
            row.is_reversed = True
            session.flush()
            return True

    def movements_for_reference(self, reference_id: str) -> list[MovementRecord]:
        with self._session("movements_for_reference") as session:
            rows = session.execute(
                select(InventoryMovementModel)
                .where(InventoryMovementModel.reference_id == reference_id)
                .order_by(InventoryMovementModel.sequence)
                .execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    @staticmethod
    def _history_filter(stmt, product_id, since, until):
        stmt = stmt.where(InventoryMovementModel.product_id == product_id)
        if since is not None:
            stmt = stmt.where(InventoryMovementModel.created_at >= since)
        if until is not None:
            stmt = stmt.where(InventoryMovementModel.created_at < until)
        return stmt

    def list_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MovementRecord]:
        with self._session("list_movements") as session:
            stmt = self._history_filter(
                select(InventoryMovementModel), product_id, since, until
            ).order_by(
                InventoryMovementModel.created_at.desc(),
                InventoryMovementModel.sequence.desc(),
            )
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars()
            return [row.to_dto() for row in rows]

    def count_movements(
        self,
        product_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        with self._session("count_movements") as session:
            stmt = self._history_filter(
                select(func.count(InventoryMovementModel.id)), product_id, since, until
            )
            return session.execute(stmt).scalar_one()

    def movements_after(self, product_id: UUID, sequence: int) -> list[MovementRecord]:
        with self._session("movements_after") as session:
            rows = session.execute(
                select(InventoryMovementModel)
                .where(
                    InventoryMovementModel.product_id == product_id,
                    InventoryMovementModel.sequence > sequence,
                )
                .order_by(InventoryMovementModel.sequence)
            ).scalars()
            return [row.to_dto() for row in rows]

    # -------------------------------------------------------------------------
    # Purchase orders
    # -------------------------------------------------------------------------

    def create_purchase_order(self, order: PurchaseOrder) -> PurchaseOrder:
        with self._session("create_purchase_order", order.order_number) as session:
            row = PurchaseOrderModel(
                id=order.id,
                order_number=order.order_number,
                supplier_id=order.supplier_id,
                status=order.status.value,
                created_at=order.created_at,
                updated_at=order.created_at,
                created_by_id=order.created_by_id,
            )
            row.lines = [
                PurchaseOrderLineModel(
                    id=line.id,
                    line_number=index,
                    product_id=line.product_id,
                    ordered_quantity=line.ordered_quantity,
                    unit_cost=line.unit_cost,
                    received_quantity=line.received_quantity,
                )
                for index, line in enumerate(order.lines)
            ]
            session.add(row)
            session.flush()
            return row.to_dto()

    def get_purchase_order(self, order_id: UUID) -> PurchaseOrder | None:
        with self._session("get_purchase_order") as session:
            row = self._load_order(session, order_id)
            return row.to_dto() if row is not None else None

    def compare_and_set_order_status(
        self,
        order_id: UUID,
        expected_status: PurchaseOrderStatus,
        new_status: PurchaseOrderStatus,
    ) -> bool:
        with self._session("compare_and_set_order_status") as session:
            result = session.execute(
                update(PurchaseOrderModel)
                .where(
                    PurchaseOrderModel.id == order_id,
                    PurchaseOrderModel.status == expected_status.value,
                )
                .values(status=new_status.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def add_received_quantities(
        self,
        order_id: UUID,
        quantities: Mapping[UUID, int],
    ) -> PurchaseOrder:
        with self._session("add_received_quantities") as session:
            for product_id, quantity in quantities.items():
                session.execute(
                    update(PurchaseOrderLineModel)
                    .where(
                        PurchaseOrderLineModel.purchase_order_id == order_id,
                        PurchaseOrderLineModel.product_id == product_id,
                    )
                    .values(
                        received_quantity=PurchaseOrderLineModel.received_quantity + quantity
                    )
                    .execution_options(synchronize_session=False)
                )
            row = self._load_order(session, order_id)
            if row is None:
                raise PurchaseOrderNotFoundError(order_id)
            for line in row.lines:
                session.refresh(line)
            return row.to_dto()

    def insert_status_transition(
        self,
        record: StatusTransitionRecord,
    ) -> StatusTransitionRecord:
        with self._session("insert_status_transition", record.purchase_order_id) as session:
            position = session.execute(
                select(func.count(StatusTransitionModel.id)).where(
                    StatusTransitionModel.purchase_order_id == record.purchase_order_id
                )
            ).scalar_one()
            row = StatusTransitionModel.from_dto(record, position=position)
            session.add(row)
            session.flush()
            return row.to_dto()

    def list_status_transitions(self, order_id: UUID) -> list[StatusTransitionRecord]:
        with self._session("list_status_transitions") as session:
            rows = session.execute(
                select(StatusTransitionModel)
                .where(StatusTransitionModel.purchase_order_id == order_id)
                .order_by(StatusTransitionModel.position)
            ).scalars()
            return [row.to_dto() for row in rows]

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    def insert_receiving_record(self, record: ReceivingRecord) -> ReceivingRecord:
        with self._session("insert_receiving_record", record.id) as session:
            row = ReceivingRecordModel.from_dto(record)
            session.add(row)
            session.flush()
            return row.to_dto()

    def get_receiving_record(self, receiving_id: UUID) -> ReceivingRecord | None:
        with self._session("get_receiving_record") as session:
            row = session.get(ReceivingRecordModel, receiving_id)
            return row.to_dto() if row is not None else None
