"""
Authorization -- explicit purge capability.

Responsibility:
    Replaces ambient "is the current user an administrator" checks with a
    ``PurgeAuthorization`` token.  The purge engine only accepts a token,
    and a token can only be minted for an actor holding the privileged
    role, so the engine can be exercised in tests without any session or
    login machinery.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - UnauthorizedPurgeError from ``authorize_purge`` when the actor's role
      differs from the privileged role.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from supply_kernel.exceptions import UnauthorizedPurgeError


class Role(str, Enum):
    SYSTEM_ADMINISTRATOR = "System Administrator"
    ADMIN = "Admin"
    ENCODER = "Encoder"
    AUDITOR = "Auditor"
    USER = "User"


@dataclass(frozen=True)
class Actor:
    """The person performing an operation."""

    uid: str
    email: str
    role: str
    facility_id: str | None = None


@dataclass(frozen=True)
class PurgeAuthorization:
    """Capability proving ``actor`` was cleared to purge."""

    actor: Actor
    granted_role: str

    def __post_init__(self) -> None:
        if self.actor.role != self.granted_role:
            raise UnauthorizedPurgeError(
                actor_id=self.actor.uid,
                role=self.actor.role,
                required_role=self.granted_role,
            )


def authorize_purge(
    actor: Actor,
    privileged_role: str = Role.SYSTEM_ADMINISTRATOR.value,
) -> PurgeAuthorization:
    """
    Mint a purge capability for ``actor``.

    Raises:
        UnauthorizedPurgeError: if the actor does not hold ``privileged_role``.
    """
    return PurgeAuthorization(actor=actor, granted_role=privileged_role)
