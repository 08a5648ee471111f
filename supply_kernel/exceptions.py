"""
Typed Exception Hierarchy for the Supply Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Purging a stock transaction touches several collections at once.  When
something goes wrong the operator needs to know *which* step failed, and
callers need to tell "nothing happened" apart from "half of it happened".
String matching on messages cannot do that reliably, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        purge_service.purge(entry, authorization)
    except Exception as e:
        if "acknowledged" in str(e):  # FRAGILE - message might change
            show_blocked_dialog()

Example - RIGHT way (what this module enables):
    try:
        purge_service.purge(entry, authorization)
    except PurgeBlockedError as e:
        show_dialog(e.reason, blocking=e.blocking_log_ids)
    except PartialPurgeFailure as e:
        escalate(e.pending_reversals)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SupplyKernelError:

    SupplyKernelError (base)
    |
    +-- ResolutionError
    |
    +-- RecordError
    |   +-- MalformedRecordError
    |   +-- UnsupportedLogTypeError
    |
    +-- StoreError
    |   +-- InvalidPathError
    |   +-- MissingPathError
    |   +-- OptimisticLockError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedPurgeError
    |
    +-- PurgeError
        +-- EntryNotPurgeableError
        +-- LogNotFoundError
        +-- PurgeBlockedError
        +-- PartialPurgeFailure

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Resolution      | RESOLUTION_FAILED           | Item master/facility/batch id unknown
                |                             | (degrades to "N/A", never escapes)
----------------|-----------------------------|-----------------------------------------
Record          | MALFORMED_RECORD            | Raw store record cannot be parsed
                | UNSUPPORTED_LOG_TYPE        | No normalizer for a record variant
----------------|-----------------------------|-----------------------------------------
Store           | INVALID_PATH                | Key path is empty or malformed
                | MISSING_PATH                | Update precondition path is absent
                | OPTIMISTIC_LOCK_CONFLICT    | Per-key transaction retries exhausted
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED_PURGE          | Actor lacks the privileged role
----------------|-----------------------------|-----------------------------------------
Purge           | ENTRY_NOT_PURGEABLE         | Ledger entry type is not purgeable
                | LOG_NOT_FOUND               | Source log already gone (re-purge)
                | PURGE_BLOCKED               | Acknowledged transfer depends on batch
                | PARTIAL_PURGE_FAILURE       | Deletes committed, reversal failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. LOG_NOT_FOUND is the idempotency signal.  A second purge of the same
   log finds nothing and changes nothing, including when both purges
   raced and the second lost inside the store write:

    try:
        purge_service.purge(entry, authorization)
    except LogNotFoundError:
        refresh_ledger()

2. PARTIAL_PURGE_FAILURE needs an operator.  The exception lists exactly
   which paths were deleted and which quantity reversals are still owed:

    except PartialPurgeFailure as e:
        for path, delta in e.pending_reversals:
            reconcile(path, delta)

3. PURGE_BLOCKED is raised before any write happens.
"""

from __future__ import annotations

from typing import Any


class SupplyKernelError(Exception):
    """
    Base exception for all supply kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SUPPLY_KERNEL_ERROR"


# Resolution


class ResolutionError(SupplyKernelError):
    """A referenced item master, facility, supplier or batch id is unknown.

    The ledger builder records these and substitutes "N/A"; they are never
    raised out of a ledger build.
    """

    code: str = "RESOLUTION_FAILED"

    def __init__(self, kind: str, ref_id: str | None):
        self.kind = kind
        self.ref_id = ref_id
        super().__init__(f"Cannot resolve {kind} reference: {ref_id}")


# Record-related exceptions


class RecordError(SupplyKernelError):
    """Base exception for raw record errors."""

    code: str = "RECORD_ERROR"


class MalformedRecordError(RecordError):
    """A raw store record could not be parsed into its typed variant."""

    code: str = "MALFORMED_RECORD"

    def __init__(self, log_table: str, record_id: str | None, reason: str):
        self.log_table = log_table
        self.record_id = record_id
        self.reason = reason
        super().__init__(
            f"Malformed record {log_table}/{record_id}: {reason}"
        )


class UnsupportedLogTypeError(RecordError):
    """No normalizer is registered for a record variant."""

    code: str = "UNSUPPORTED_LOG_TYPE"

    def __init__(self, record_type: str):
        self.record_type = record_type
        super().__init__(f"No ledger normalizer for record type {record_type}")


# Store-related exceptions


class StoreError(SupplyKernelError):
    """Base exception for persistence errors raised by the kernel itself."""

    code: str = "STORE_ERROR"


class InvalidPathError(StoreError):
    """Key path is empty or malformed."""

    code: str = "INVALID_PATH"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid store path '{path}': {reason}")


class MissingPathError(StoreError):
    """A path an atomic update requires to be present was absent.

    Raised before anything is written; the whole unit is abandoned.
    """

    code: str = "MISSING_PATH"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Required store path is absent: {path}")


class OptimisticLockError(StoreError):
    """Per-key transaction kept losing the race and gave up."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, path: str, attempts: int):
        self.path = path
        self.attempts = attempts
        super().__init__(
            f"Optimistic lock conflict on {path}: "
            f"value kept changing after {attempts} attempts"
        )


# Authorization


class AuthorizationError(SupplyKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedPurgeError(AuthorizationError):
    """Actor does not hold the privileged role required to purge."""

    code: str = "UNAUTHORIZED_PURGE"

    def __init__(self, actor_id: str, role: str | None, required_role: str):
        self.actor_id = actor_id
        self.role = role
        self.required_role = required_role
        super().__init__(
            f"Actor {actor_id} with role '{role}' may not purge "
            f"(requires '{required_role}')"
        )


# Purge-related exceptions


class PurgeError(SupplyKernelError):
    """Base exception for purge errors."""

    code: str = "PURGE_ERROR"


class EntryNotPurgeableError(PurgeError):
    """Ledger entry's source type is not on the purge allow-list."""

    code: str = "ENTRY_NOT_PURGEABLE"

    def __init__(self, log_table: str, log_id: str):
        self.log_table = log_table
        self.log_id = log_id
        super().__init__(f"Entry {log_table}/{log_id} is not purgeable")


class LogNotFoundError(PurgeError):
    """The source log no longer exists (already purged)."""

    code: str = "LOG_NOT_FOUND"

    def __init__(self, log_table: str, log_id: str):
        self.log_table = log_table
        self.log_id = log_id
        super().__init__(f"Log not found: {log_table}/{log_id}")


class PurgeBlockedError(PurgeError):
    """
    Receipt cannot be purged: a batch it created already left the facility
    through an acknowledged transfer.

    Raised before any write; no state has changed.
    """

    code: str = "PURGE_BLOCKED"

    def __init__(self, log_id: str, reason: str, blocking_log_ids: tuple[str, ...]):
        self.log_id = log_id
        self.reason = reason
        self.blocking_log_ids = blocking_log_ids
        super().__init__(f"Purge of {log_id} blocked: {reason}")


class PartialPurgeFailure(PurgeError):
    """
    Deletes were committed but at least one quantity reversal failed.

    The ledger is now out of step with batch quantities.  The attributes
    list what was applied and what is still owed so an operator can
    reconcile by hand.
    """

    code: str = "PARTIAL_PURGE_FAILURE"

    def __init__(
        self,
        log_table: str,
        log_id: str,
        failed_step: str,
        deleted_paths: tuple[str, ...],
        applied_reversals: tuple[tuple[str, int], ...],
        pending_reversals: tuple[tuple[str, int], ...],
        cause: Any = None,
        reconciliation_path: str | None = None,
    ):
        self.log_table = log_table
        self.log_id = log_id
        self.failed_step = failed_step
        self.deleted_paths = deleted_paths
        self.applied_reversals = applied_reversals
        self.pending_reversals = pending_reversals
        self.cause = str(cause) if cause is not None else None
        self.reconciliation_path = reconciliation_path
        super().__init__(
            f"Purge of {log_table}/{log_id} failed at {failed_step}: "
            f"{len(deleted_paths)} path(s) deleted, "
            f"{len(pending_reversals)} reversal(s) pending"
        )
