"""
Relational key-path store on SQLAlchemy.

Each ``/collection/key`` record is one StoreDocument row; deeper path
segments address fields inside the row's JSON document.

``update`` runs as a single database transaction and takes row locks
(``SELECT ... FOR UPDATE`` where the dialect has it) on every touched
document, so deletes and increments land together or not at all.
Required paths are checked on their locked rows inside the same
transaction; where the dialect cannot lock, the version column makes a
concurrent delete of the same row fail the later transaction instead.
``transact`` is optimistic: it reads without a lock and relies on the
document's version column; a lost race surfaces as ``StaleDataError`` (or
``IntegrityError`` when two writers create the same key) and is retried.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from supply_kernel.db.engine import session_scope
from supply_kernel.exceptions import InvalidPathError, MissingPathError, OptimisticLockError
from supply_kernel.logging_config import get_logger
from supply_kernel.models.store_document import StoreDocument
from supply_kernel.store.base import (
    DEFAULT_MAX_RETRIES,
    KeyPathStore,
    get_in,
    increment_value,
    records_from_node,
    set_in,
    split_path,
    validate_update,
)

logger = get_logger("store.sql")

# Write operations grouped under one document: (sub-path, kind, value).
_Op = tuple[tuple[str, ...], str, Any]


def _apply_ops(document: Any, ops: list[_Op]) -> Any:
    """Apply writes and increments to one document; ``None`` means delete."""
    for sub, kind, value in ops:
        if not sub:
            # Whole-document write or increment.
            document = increment_value(document, value) if kind == "inc" else copy.deepcopy(value)
            continue
        if not isinstance(document, dict):
            document = {}
        if kind == "inc":
            set_in(document, sub, increment_value(get_in(document, sub), value))
        else:
            set_in(document, sub, value)
    if isinstance(document, dict) and not document:
        return None
    return document


class SqlAlchemyStore(KeyPathStore):
    """Key-path store persisted as JSON documents in a relational table."""

    supports_atomic_increments = True

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._session_factory = session_factory
        self._max_retries = max_retries

    @staticmethod
    def _locked_row(session: Session, collection: str, key: str) -> StoreDocument | None:
        stmt = select(StoreDocument).where(
            StoreDocument.collection == collection,
            StoreDocument.key == key,
        )
        if session.get_bind().dialect.name != "sqlite":
            stmt = stmt.with_for_update()
        return session.scalars(stmt).one_or_none()

    def read(self, path: str) -> Any:
        segments = split_path(path)
        collection = segments[0]
        with session_scope(self._session_factory) as session:
            if len(segments) == 1:
                rows = session.scalars(
                    select(StoreDocument)
                    .where(StoreDocument.collection == collection)
                    .order_by(StoreDocument.key)
                ).all()
                node = {row.key: copy.deepcopy(row.document) for row in rows}
                return node or None
            row = session.get(StoreDocument, (collection, segments[1]))
            if row is None:
                return None
            return copy.deepcopy(get_in(row.document, segments[2:]))

    def read_collection(self, name: str) -> list[dict[str, Any]]:
        return records_from_node(self.read(name))

    def update(
        self,
        updates: Mapping[str, Any],
        increments: Mapping[str, int] | None = None,
        require_present: Iterable[str] = (),
    ) -> None:
        writes, deltas = validate_update(updates, increments)
        required = [(path, split_path(path)) for path in require_present]
        for path, segments in required:
            if len(segments) < 2:
                raise InvalidPathError(path, "required path must name a /collection/key")

        collection_writes: dict[str, Any] = {}
        document_ops: dict[tuple[str, str], list[_Op]] = defaultdict(list)
        for segments, value in writes:
            if len(segments) == 1:
                collection_writes[segments[0]] = value
            else:
                document_ops[segments[:2]].append((segments[2:], "set", value))
        for segments, delta in deltas:
            if len(segments) == 1:
                raise InvalidPathError("/" + segments[0], "cannot increment a collection")
            document_ops[segments[:2]].append((segments[2:], "inc", delta))

        try:
            with session_scope(self._session_factory) as session:
                self._apply_update(session, required, collection_writes, document_ops)
        except StaleDataError:
            # A concurrent writer removed or changed a locked document first.
            for path, _ in required:
                if self.read(path) is None:
                    raise MissingPathError(path) from None
            raise OptimisticLockError(
                path=required[0][0] if required else "update", attempts=1
            ) from None

        logger.debug(
            "store_update_applied",
            extra={"write_count": len(writes), "increment_count": len(deltas)},
        )

    def _apply_update(
        self,
        session: Session,
        required: list[tuple[str, tuple[str, ...]]],
        collection_writes: dict[str, Any],
        document_ops: dict[tuple[str, str], list[_Op]],
    ) -> None:
        for path, segments in required:
            row = self._locked_row(session, segments[0], segments[1])
            if row is None or get_in(row.document, segments[2:]) is None:
                raise MissingPathError(path)

        for collection, value in collection_writes.items():
            session.execute(
                delete(StoreDocument).where(StoreDocument.collection == collection)
            )
            for key, document in (value or {}).items():
                if document is not None:
                    session.add(
                        StoreDocument(
                            collection=collection,
                            key=str(key),
                            document=copy.deepcopy(document),
                        )
                    )

        for (collection, key), ops in sorted(document_ops.items()):
            row = self._locked_row(session, collection, key)
            current = copy.deepcopy(row.document) if row is not None else None
            new_document = _apply_ops(current, ops)
            self._write_row(session, row, collection, key, new_document)

    def transact(self, path: str, fn: Callable[[Any], Any]) -> Any:
        segments = split_path(path)
        if len(segments) < 2:
            raise InvalidPathError(path, "transact needs a /collection/key path")
        collection, key, sub = segments[0], segments[1], segments[2:]

        for attempt in range(1, self._max_retries + 1):
            try:
                with session_scope(self._session_factory) as session:
                    row = session.get(StoreDocument, (collection, key))
                    document = copy.deepcopy(row.document) if row is not None else None
                    new_value = fn(copy.deepcopy(get_in(document, sub) if sub else document))
                    new_document = _apply_ops(document, [(sub, "set", new_value)])
                    self._write_row(session, row, collection, key, new_document)
                return copy.deepcopy(new_value)
            except (StaleDataError, IntegrityError):
                logger.debug(
                    "store_transaction_conflict",
                    extra={"path": path, "attempt": attempt},
                )
        raise OptimisticLockError(path=path, attempts=self._max_retries)

    @staticmethod
    def _write_row(
        session: Session,
        row: StoreDocument | None,
        collection: str,
        key: str,
        document: Any,
    ) -> None:
        if document is None:
            if row is not None:
                session.delete(row)
        elif row is None:
            session.add(StoreDocument(collection=collection, key=key, document=document))
        else:
            row.document = document
        session.flush()
