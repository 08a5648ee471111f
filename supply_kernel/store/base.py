"""
Module: supply_kernel.store.base
Responsibility: The persistence collaborator's contract.  An opaque
    key-path store addressed by absolute paths (``/collection/key/field``)
    that supports bulk collection reads, an all-or-nothing multi-path
    update, and a per-key read-modify-write transaction.
Architecture position: Kernel > Store.  May import from exceptions and
    logging_config only.  Selectors and services depend on this contract,
    never on a concrete store.

Invariants enforced:
    - Paths are absolute, non-empty, and free of the reserved characters
      ``. # $ [ ]`` in any segment.
    - A single update may not write a path and also a descendant of it;
      deletes and increments in the same unit touch disjoint paths.
    - Writing ``None`` deletes; empty parents disappear with their last
      child.

Failure modes:
    - InvalidPathError for malformed or overlapping paths (raised before
      anything is written).
    - MissingPathError when a required path is absent as the update
      applies (nothing is written).
    - OptimisticLockError when ``transact`` keeps losing the race.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from supply_kernel.exceptions import InvalidPathError

_RESERVED_CHARS = frozenset(".#$[]")

DEFAULT_MAX_RETRIES = 25


def split_path(path: str) -> tuple[str, ...]:
    """Split an absolute key path into segments.

    Raises:
        InvalidPathError: if the path is empty or a segment is reserved.
    """
    if not isinstance(path, str):
        raise InvalidPathError(str(path), "path must be a string")
    segments = tuple(s for s in path.strip().split("/") if s)
    if not segments:
        raise InvalidPathError(path, "path is empty")
    for segment in segments:
        if _RESERVED_CHARS & set(segment):
            raise InvalidPathError(path, f"segment '{segment}' has a reserved character")
    return segments


def join_path(*segments: str) -> str:
    """Build an absolute key path from segments."""
    return "/" + "/".join(str(s).strip("/") for s in segments)


def get_in(node: Any, segments: tuple[str, ...]) -> Any:
    """Walk ``segments`` down a nested dict; ``None`` when absent."""
    for segment in segments:
        if not isinstance(node, dict):
            return None
        node = node.get(segment)
        if node is None:
            return None
    return node


def set_in(node: dict[str, Any], segments: tuple[str, ...], value: Any) -> None:
    """Set (or, for ``None``, delete) a nested value and prune empty parents."""
    if value is None:
        _delete_in(node, segments)
        return
    parent = node
    for segment in segments[:-1]:
        child = parent.get(segment)
        if not isinstance(child, dict):
            child = {}
            parent[segment] = child
        parent = child
    parent[segments[-1]] = copy.deepcopy(value)


def _delete_in(node: dict[str, Any], segments: tuple[str, ...]) -> None:
    trail: list[tuple[dict[str, Any], str]] = []
    parent = node
    for segment in segments[:-1]:
        child = parent.get(segment)
        if not isinstance(child, dict):
            return
        trail.append((parent, segment))
        parent = child
    parent.pop(segments[-1], None)
    for ancestor, segment in reversed(trail):
        if ancestor[segment]:
            break
        del ancestor[segment]


def increment_value(current: Any, delta: int) -> int:
    """Numeric increment that treats a missing value as zero."""
    return (current or 0) + delta


def validate_update(
    updates: Mapping[str, Any],
    increments: Mapping[str, int] | None = None,
) -> tuple[list[tuple[tuple[str, ...], Any]], list[tuple[tuple[str, ...], int]]]:
    """
    Parse and cross-check the paths of one atomic update.

    Returns:
        (writes, increments) as lists of (segments, value).

    Raises:
        InvalidPathError: on malformed paths, a path overlapping another
            path of the same unit, or a non-integer increment.
    """
    writes = [(split_path(p), v) for p, v in updates.items()]
    deltas: list[tuple[tuple[str, ...], int]] = []
    for p, delta in (increments or {}).items():
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidPathError(p, f"increment must be an integer, got {delta!r}")
        deltas.append((split_path(p), delta))

    all_paths = [s for s, _ in writes] + [s for s, _ in deltas]
    seen: set[tuple[str, ...]] = set()
    for segments in all_paths:
        if segments in seen:
            raise InvalidPathError(join_path(*segments), "path appears twice in one update")
        seen.add(segments)
    for segments in all_paths:
        for depth in range(1, len(segments)):
            if segments[:depth] in seen:
                raise InvalidPathError(
                    join_path(*segments),
                    f"overlaps ancestor {join_path(*segments[:depth])} in the same update",
                )
    return writes, deltas


class KeyPathStore(ABC):
    """
    Abstract key-path store.

    Contract:
        - ``read_collection`` returns every record of a collection with the
          record's key injected as ``id``.
        - ``update`` applies every write (and every increment) as one
          indivisible unit, or none of them.  Its ``require_present``
          paths are checked inside that unit.
        - ``transact`` is a per-key read-modify-write that retries on
          conflict and never loses a concurrent update.

    Non-goals:
        - No queries, indexes or ordering guarantees beyond a stable
          per-store record order.
    """

    supports_atomic_increments: bool = False

    @abstractmethod
    def read(self, path: str) -> Any:
        """Return a deep copy of the value at ``path`` (``None`` if absent)."""

    @abstractmethod
    def read_collection(self, name: str) -> list[dict[str, Any]]:
        """Return every record under ``/name`` with its key as ``id``."""

    @abstractmethod
    def update(
        self,
        updates: Mapping[str, Any],
        increments: Mapping[str, int] | None = None,
        require_present: Iterable[str] = (),
    ) -> None:
        """Atomically apply path writes (``None`` deletes) and increments.

        Every path in ``require_present`` must hold a value at the moment
        the unit applies; otherwise MissingPathError is raised and nothing
        is written.
        """

    @abstractmethod
    def transact(self, path: str, fn: Callable[[Any], Any]) -> Any:
        """Replace the value at ``path`` with ``fn(current)``; return it."""

    def exists(self, path: str) -> bool:
        return self.read(path) is not None

    def increment(self, path: str, delta: int) -> int:
        """Add ``delta`` to the number at ``path`` through ``transact``."""
        return self.transact(path, lambda current: increment_value(current, delta))

    def _require_increments_supported(self, increments: Mapping[str, int] | None) -> None:
        if increments and not self.supports_atomic_increments:
            raise NotImplementedError(
                f"{type(self).__name__} cannot apply increments inside an atomic update"
            )


def records_from_node(node: Any) -> list[dict[str, Any]]:
    """Turn a collection node (dict keyed by id, or sparse list) into records."""
    if isinstance(node, dict):
        items = node.items()
    elif isinstance(node, list):
        items = ((str(i), v) for i, v in enumerate(node))
    else:
        return []
    records: list[dict[str, Any]] = []
    for key, value in items:
        if isinstance(value, dict):
            record = copy.deepcopy(value)
            record["id"] = key
            records.append(record)
    return records
