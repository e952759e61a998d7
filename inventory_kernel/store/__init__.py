"""Data-access interface and its SQLAlchemy implementation."""

from inventory_kernel.store.base import InventoryStore
from inventory_kernel.store.sqlalchemy_store import SqlAlchemyInventoryStore

__all__ = [
    "InventoryStore",
    "SqlAlchemyInventoryStore",
]
