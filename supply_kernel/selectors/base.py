"""
Module: supply_kernel.selectors.base
Responsibility: Abstract base class for read-only selectors.  Selectors form
    the query side of the kernel and answer questions from a StoreSnapshot
    without any mutation capability.
Architecture position: Kernel > Selectors.  May import from domain/ and the
    snapshot type.  MUST NOT import from store/ writers or services that
    mutate.

Invariants enforced:
    - Read-only access: selectors never write to the store.
    - DTO return convention: selectors return frozen dataclasses, never raw
      store dicts.
    - Snapshot ownership: the caller loads the snapshot and decides how long
      it stays current; a selector never reloads it.
"""

from abc import ABC

from supply_kernel.domain.snapshot import StoreSnapshot


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a StoreSnapshot from the caller, answer read-only
        questions, and return DTOs or computed results.
    """

    def __init__(self, snapshot: StoreSnapshot):
        self.snapshot = snapshot
