"""Keep-latest notification channel for leadership changes.

The coordinator publishes without ever blocking; an unread event is
overwritten by a newer one. The single consumer always ends up with the
most recent event, and events it does see arrive in publication order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from leasekeeper.distributed.lock import utcnow


@dataclass(frozen=True)
class LeadershipEvent:
    """A change of observed leader. leader_identity is None when unknown."""

    leader_identity: str | None
    observed_at: datetime = field(default_factory=utcnow)


class LeadershipChannel:
    """Single-producer, single-consumer conduit with capacity one."""

    def __init__(self) -> None:
        self._pending: LeadershipEvent | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        """Number of events overwritten before the consumer read them."""
        return self._dropped

    def publish(self, event: LeadershipEvent) -> None:
        """Offer an event, replacing any unread one. Never blocks."""
        if self._closed:
            return
        if self._pending is not None:
            self._dropped += 1
        self._pending = event
        self._ready.set()

    async def receive(self) -> LeadershipEvent | None:
        """Wait for the next event; None once closed and drained."""
        while self._pending is None:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()

        event, self._pending = self._pending, None
        return event

    def close(self) -> None:
        """Stop accepting events and wake the consumer. Idempotent."""
        self._closed = True
        self._ready.set()
