"""Lease lock contract.

A LeaseLock gives atomic access to one named lease record held by an
external store. The election coordinator is its only caller:

- get() returns the current record or None
- create() claims an absent record, raising AlreadyExistsError otherwise
- update() is a compare-and-swap on the record version, raising
  ConflictError when another writer got there first

Any call may raise StoreUnavailableError for transient store failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LeaseRecord:
    """Externally stored mutual-exclusion token.

    An empty holder_identity means the lease was released and may be
    claimed immediately. version is assigned by the store on every write.
    """

    name: str
    scope: str
    holder_identity: str
    acquire_time: datetime
    renew_time: datetime
    duration: float
    version: str = ""
    leader_transitions: int = 0

    @property
    def is_held(self) -> bool:
        return bool(self.holder_identity)

    def with_version(self, version: str) -> LeaseRecord:
        return replace(self, version=version)

    def same_write(self, other: LeaseRecord | None) -> bool:
        """True if both values describe the same stored write."""
        if other is None:
            return False
        return (
            self.version == other.version
            and self.holder_identity == other.holder_identity
            and self.renew_time == other.renew_time
        )


class LeaseLock(ABC):
    """Atomic operations on a single named lease."""

    def __init__(self, name: str, scope: str = "default"):
        self.name = name
        self.scope = scope

    def describe(self) -> str:
        """Human-readable lease reference for logs."""
        return f"{self.scope}/{self.name}"

    @abstractmethod
    async def get(self) -> LeaseRecord | None:
        """Return the stored record, or None if it does not exist."""

    @abstractmethod
    async def create(self, record: LeaseRecord) -> LeaseRecord:
        """Store a new record; raises AlreadyExistsError if one exists."""

    @abstractmethod
    async def update(self, record: LeaseRecord, expected_version: str) -> LeaseRecord:
        """Replace the record if its stored version equals expected_version.

        Raises ConflictError otherwise.
        """

    async def close(self) -> None:
        """Release any client resources held by the lock."""
        return None
