"""Shared state between the leadership consumer and HTTP handlers.

LeaderState holds the current leader identity and the server phase behind
a lock. The phase follows a fixed transition table:

    SERVING -> DRAINING -> STOPPED
    SERVING -> STOPPED
"""

from __future__ import annotations

import logging
import threading
from enum import Enum

from leasekeeper.distributed.channel import LeadershipChannel
from leasekeeper.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class ServerPhase(str, Enum):
    """Lifecycle phase of the status server."""

    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


_TRANSITIONS: dict[ServerPhase, frozenset[ServerPhase]] = {
    ServerPhase.SERVING: frozenset({ServerPhase.DRAINING, ServerPhase.STOPPED}),
    ServerPhase.DRAINING: frozenset({ServerPhase.STOPPED}),
    ServerPhase.STOPPED: frozenset(),
}


class LeaderState:
    """Thread-safe holder of the current leader and server phase."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._leader = ""
        self._phase = ServerPhase.SERVING

    @property
    def leader(self) -> str:
        """Current leader identity, empty string if none known yet."""
        with self._lock:
            return self._leader

    @property
    def phase(self) -> ServerPhase:
        with self._lock:
            return self._phase

    @property
    def accepting(self) -> bool:
        """True until shutdown has begun."""
        return self.phase is ServerPhase.SERVING

    def set_leader(self, identity: str | None) -> None:
        with self._lock:
            self._leader = identity or ""

    def transition(self, target: ServerPhase) -> None:
        """Move to ``target``; raises InvalidTransitionError if not allowed."""
        with self._lock:
            if target not in _TRANSITIONS[self._phase]:
                raise InvalidTransitionError("ServerPhase", self._phase.value, target.value)
            logger.debug("Server phase %s -> %s", self._phase.value, target.value)
            self._phase = target


async def consume_leadership(channel: LeadershipChannel, state: LeaderState) -> None:
    """Apply leadership events to ``state`` until the channel is closed."""
    while True:
        event = await channel.receive()
        if event is None:
            return
        state.set_leader(event.leader_identity)
        logger.info("Leader is now %s", event.leader_identity or "<unknown>")
