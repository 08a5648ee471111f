"""
StoreDocument -- one ``/collection/key`` record of the relational key-path store.

Each top-level record (a transaction log, an inventory batch, an audit
record) is one row holding its JSON document.  Deeper paths such as
``/inventoryItems/B1/quantity`` are addressed inside that document.

The ``version`` column is wired as SQLAlchemy's ``version_id_col``: every
UPDATE carries ``WHERE version = <loaded>`` and a lost race surfaces as
``StaleDataError``, which the store's per-key transaction retries.
"""

from typing import Any

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TimestampedBase


class StoreDocument(TimestampedBase):
    """A JSON document stored under ``/collection/key``."""

    __tablename__ = "store_documents"

    collection: Mapped[str] = mapped_column(String(128), primary_key=True)
    key: Mapped[str] = mapped_column(String(256), primary_key=True)
    document: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("idx_store_documents_collection", "collection"),)

    def __repr__(self) -> str:
        return f"<StoreDocument /{self.collection}/{self.key} v{self.version}>"
