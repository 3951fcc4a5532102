"""In-memory lease lock.

Keeps records in process memory behind an asyncio.Lock. Several
coordinators sharing one store simulate a fleet of replicas; it is also
the backend used for local development (``--backend memory``).
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field

from leasekeeper.distributed.lock import LeaseLock, LeaseRecord
from leasekeeper.errors import AlreadyExistsError, ConflictError


@dataclass
class InMemoryLeaseStore:
    """Shared backing store for InMemoryLeaseLock instances."""

    records: dict[tuple[str, str], LeaseRecord] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _versions: itertools.count[int] = field(default_factory=lambda: itertools.count(1))

    def next_version(self) -> str:
        return str(next(self._versions))


class InMemoryLeaseLock(LeaseLock):
    """LeaseLock over an InMemoryLeaseStore."""

    def __init__(
        self,
        name: str,
        scope: str = "default",
        store: InMemoryLeaseStore | None = None,
    ):
        super().__init__(name, scope)
        self.store = store or InMemoryLeaseStore()

    @property
    def _key(self) -> tuple[str, str]:
        return (self.scope, self.name)

    async def get(self) -> LeaseRecord | None:
        async with self.store.lock:
            return self.store.records.get(self._key)

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        async with self.store.lock:
            if self._key in self.store.records:
                raise AlreadyExistsError(self.describe())
            stored = record.with_version(self.store.next_version())
            self.store.records[self._key] = stored
            return stored

    async def update(self, record: LeaseRecord, expected_version: str) -> LeaseRecord:
        async with self.store.lock:
            current = self.store.records.get(self._key)
            if current is None or current.version != expected_version:
                raise ConflictError(self.describe(), expected_version)
            stored = record.with_version(self.store.next_version())
            self.store.records[self._key] = stored
            return stored
