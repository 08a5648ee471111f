"""
In-memory key-path store.

A nested dict tree behind a lock.  ``update`` builds the new tree on a
copy and swaps it in, so a failing unit leaves the store untouched.
``transact`` is a compare-and-swap loop: ``fn`` runs outside the lock and
the result is only written if the value has not moved in the meantime.
"""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from supply_kernel.exceptions import MissingPathError, OptimisticLockError
from supply_kernel.logging_config import get_logger
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

logger = get_logger("store.memory")


class InMemoryStore(KeyPathStore):
    """Key-path store over a nested dict tree."""

    supports_atomic_increments = True

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._root: dict[str, Any] = copy.deepcopy(dict(data or {}))
        self._lock = threading.RLock()
        self._max_retries = max_retries

    @classmethod
    def from_json_file(cls, path: Path | str, **kwargs: Any) -> InMemoryStore:
        with open(path) as f:
            return cls(json.load(f), **kwargs)

    def to_json_file(self, path: Path | str) -> None:
        with open(path, "w") as f:
            json.dump(self.dump(), f, indent=2, sort_keys=True)

    def dump(self) -> dict[str, Any]:
        """Deep copy of the whole tree."""
        with self._lock:
            return copy.deepcopy(self._root)

    def read(self, path: str) -> Any:
        segments = split_path(path)
        with self._lock:
            return copy.deepcopy(get_in(self._root, segments))

    def read_collection(self, name: str) -> list[dict[str, Any]]:
        segments = split_path(name)
        with self._lock:
            return records_from_node(get_in(self._root, segments))

    def update(
        self,
        updates: Mapping[str, Any],
        increments: Mapping[str, int] | None = None,
        require_present: Iterable[str] = (),
    ) -> None:
        self._require_increments_supported(increments)
        writes, deltas = validate_update(updates, increments)
        required = [(path, split_path(path)) for path in require_present]
        with self._lock:
            for path, segments in required:
                if get_in(self._root, segments) is None:
                    raise MissingPathError(path)
            staged = copy.deepcopy(self._root)
            for segments, value in writes:
                set_in(staged, segments, value)
            for segments, delta in deltas:
                set_in(staged, segments, increment_value(get_in(staged, segments), delta))
            self._root = staged
        logger.debug(
            "store_update_applied",
            extra={"write_count": len(writes), "increment_count": len(deltas)},
        )

    def transact(self, path: str, fn: Callable[[Any], Any]) -> Any:
        segments = split_path(path)
        for attempt in range(1, self._max_retries + 1):
            with self._lock:
                snapshot = copy.deepcopy(get_in(self._root, segments))
            new_value = fn(copy.deepcopy(snapshot))
            with self._lock:
                if get_in(self._root, segments) == snapshot:
                    set_in(self._root, segments, new_value)
                    return copy.deepcopy(new_value)
            logger.debug(
                "store_transaction_conflict",
                extra={"path": path, "attempt": attempt},
            )
        raise OptimisticLockError(path=path, attempts=self._max_retries)
