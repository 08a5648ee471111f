"""Key-path stores: the contract and its in-memory and relational backends."""

from supply_kernel.store.base import KeyPathStore, join_path, split_path
from supply_kernel.store.memory import InMemoryStore
from supply_kernel.store.sql import SqlAlchemyStore

__all__ = [
    "InMemoryStore",
    "KeyPathStore",
    "SqlAlchemyStore",
    "join_path",
    "split_path",
]
