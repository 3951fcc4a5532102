"""Lease-based leader election coordinator.

Drives a LeaseLock through an acquire -> renew -> release cycle:

1. Acquiring: read the lease; claim it when absent, released or expired
2. Observing: another holder's lease is valid; poll every retry_period
3. Leading: renew every retry_period; if no renewal succeeds within
   renew_deadline of the last successful write, step down
4. Releasing: on stop, optionally clear the holder with one best-effort write

Expiry of another holder's lease is judged on the local monotonic clock,
counted from the moment this process first saw the current version of the
record, so wall-clock skew between replicas does not matter.

Example:
    channel = LeadershipChannel()
    coordinator = ElectionCoordinator(lock, ElectionConfig(), "replica-a", channel)

    stop = asyncio.Event()
    task = asyncio.create_task(coordinator.run(stop))
    ...
    stop.set()
    await task
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from leasekeeper.config import ElectionConfig
from leasekeeper.distributed.channel import LeadershipChannel, LeadershipEvent
from leasekeeper.distributed.lock import LeaseLock, LeaseRecord, utcnow
from leasekeeper.errors import (
    AlreadyExistsError,
    ConfigError,
    ConflictError,
    LeaseLockError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LeadershipCallback = Callable[[], None]

# Duration written on release so observers treat the lease as gone at once
RELEASED_LEASE_DURATION = 1.0


class ElectionState(str, Enum):
    """Coordinator state."""

    IDLE = "idle"
    ACQUIRING = "acquiring"
    OBSERVING = "observing"
    LEADING = "leading"
    RELEASING = "releasing"


async def _wait_stopped(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True if stop was signalled."""
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=max(seconds, 0))
        return True
    except asyncio.TimeoutError:
        return False


class ElectionCoordinator:
    """Leader election over a LeaseLock.

    Args:
        lock: The shared lease
        config: Lease timing and release policy
        identity: This process's holder identity
        channel: Receives a LeadershipEvent for every observed leader change
        on_started_leading: Called after this process acquires the lease
        on_stopped_leading: Called after this process loses or releases it
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        lock: LeaseLock,
        config: ElectionConfig,
        identity: str,
        channel: LeadershipChannel | None = None,
        on_started_leading: LeadershipCallback | None = None,
        on_stopped_leading: LeadershipCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not identity:
            raise ConfigError("holder identity must not be empty")

        self.lock = lock
        self.config = config
        self._identity = identity
        self.channel = channel
        self.on_started_leading = on_started_leading
        self.on_stopped_leading = on_stopped_leading
        self._clock = clock

        self._state = ElectionState.IDLE
        self._started = False
        self._stop: asyncio.Event | None = None
        self._observed: LeaseRecord | None = None
        self._observed_at = 0.0
        self._renewed_at = 0.0
        self._reported: str | None = None
        self._on_elected: list[asyncio.Future[None]] = []

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def state(self) -> ElectionState:
        return self._state

    @property
    def is_leader(self) -> bool:
        """True while leading and the last successful write is fresh."""
        return (
            self._state is ElectionState.LEADING
            and self._clock() - self._renewed_at < self.config.renew_deadline
        )

    @property
    def leader(self) -> str | None:
        """The last reported leader identity, None if unknown."""
        return self._reported

    @property
    def observed_record(self) -> LeaseRecord | None:
        return self._observed

    async def run(self, stop: asyncio.Event) -> None:
        """Participate in the election until ``stop`` is set.

        Transient store failures are retried indefinitely; this only
        returns once stop is set (after releasing the lease if configured).
        """
        if self._started:
            raise RuntimeError("ElectionCoordinator.run() may only be called once")
        self._started = True
        self._stop = stop

        logger.info(
            "Starting leader election for %s as %s", self.lock.describe(), self._identity
        )
        try:
            while not stop.is_set():
                if not await self._acquire(stop):
                    break
                await self._renew(stop)
        finally:
            await self._shutdown()

    async def try_acquire_or_renew(self, timeout: float | None = None) -> bool:
        """Make one attempt to acquire or renew the lease.

        Returns True if this process holds the lease after the attempt,
        False if another holder's lease is still valid or a concurrent
        writer won. Raises StoreUnavailableError if the store did not answer
        within ``timeout`` seconds (default: renew_deadline).
        """
        started = self._clock()
        deadline = started + (timeout if timeout is not None else self.config.renew_deadline)
        now = utcnow()

        record = await self._call(deadline, self.lock.get, stop=self._stop)
        if record is None:
            claim = LeaseRecord(
                name=self.lock.name,
                scope=self.lock.scope,
                holder_identity=self._identity,
                acquire_time=now,
                renew_time=now,
                duration=self.config.lease_duration,
            )
            try:
                stored = await self._call(deadline, self.lock.create, claim, stop=self._stop)
            except AlreadyExistsError:
                logger.debug("Lease %s was created concurrently", self.lock.describe())
                return False
            self._claimed(stored, started)
            return True

        if self._state is ElectionState.LEADING and record.holder_identity != self._identity:
            # Losing the lease is reported as unknown before the new holder
            self._report(None)
        self._observe(record)
        if (
            record.is_held
            and record.holder_identity != self._identity
            and not self._observed_expired()
        ):
            if self._state is not ElectionState.LEADING:
                self._state = ElectionState.OBSERVING
            return False

        if record.holder_identity == self._identity:
            claim = replace(record, renew_time=now, duration=self.config.lease_duration)
        else:
            claim = replace(
                record,
                holder_identity=self._identity,
                acquire_time=now,
                renew_time=now,
                duration=self.config.lease_duration,
                leader_transitions=record.leader_transitions + 1,
            )

        try:
            stored = await self._call(
                deadline, self.lock.update, claim, record.version, stop=self._stop
            )
        except ConflictError:
            logger.debug("Lease %s was updated concurrently", self.lock.describe())
            return False
        self._claimed(stored, started)
        return True

    async def wait_for_leadership(self, timeout: float | None = None) -> bool:
        """Wait until this instance becomes the leader.

        Args:
            timeout: Maximum time to wait in seconds (None = wait forever)

        Returns:
            True if leadership was acquired, False if timeout
        """
        if self.is_leader:
            return True

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._on_elected.append(future)

        try:
            await asyncio.wait_for(future, timeout=timeout)
            return True
        except asyncio.TimeoutError:
            if future in self._on_elected:
                self._on_elected.remove(future)
            return False

    async def _acquire(self, stop: asyncio.Event) -> bool:
        """Loop until the lease is acquired; False if stopped first."""
        self._state = ElectionState.ACQUIRING
        logger.info("Attempting to acquire lease %s", self.lock.describe())

        while True:
            try:
                acquired = await self.try_acquire_or_renew()
            except StoreUnavailableError as e:
                if not stop.is_set():
                    logger.warning("Failed to acquire lease %s: %s", self.lock.describe(), e)
                acquired = False

            if acquired:
                self._handle_election()
                return True

            if await _wait_stopped(stop, self.config.retry_period):
                return False

    async def _renew(self, stop: asyncio.Event) -> None:
        """Keep renewing until the lease is lost or stop is set."""
        while not await _wait_stopped(stop, self.config.retry_period):
            renewed = await self._renew_before_deadline(stop)
            if renewed is None:
                return
            if not renewed:
                self._handle_demotion()
                return

    async def _renew_before_deadline(self, stop: asyncio.Event) -> bool | None:
        """Retry renewal until it succeeds or renew_deadline passes.

        Returns True on renewal, False if leadership is lost, None if
        stopped while still leading.
        """
        deadline = self._renewed_at + self.config.renew_deadline

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(
                    "Failed to renew lease %s within %.1fs",
                    self.lock.describe(),
                    self.config.renew_deadline,
                )
                return False

            try:
                if await self.try_acquire_or_renew(timeout=remaining):
                    logger.debug("Renewed lease %s", self.lock.describe())
                    return True
                holder = self._observed.holder_identity if self._observed else ""
                logger.warning("Lease %s was taken over by %s", self.lock.describe(), holder)
                return False
            except StoreUnavailableError as e:
                if not stop.is_set():
                    logger.warning("Failed to renew lease %s: %s", self.lock.describe(), e)

            wait = min(self.config.retry_period, deadline - self._clock())
            if await _wait_stopped(stop, wait):
                return None

    async def _shutdown(self) -> None:
        was_leading = self._state is ElectionState.LEADING

        if was_leading and self.config.release_on_cancel:
            self._state = ElectionState.RELEASING
            await self._release()

        self._state = ElectionState.IDLE
        if was_leading:
            logger.info("Stopped leading %s", self.lock.describe())
            if self._reported == self._identity:
                self._report(None)
            self._fire(self.on_stopped_leading)

        logger.info("Leader election for %s stopped", self.lock.describe())

    async def _release(self) -> bool:
        """Clear the holder with a single best-effort write."""
        record = self._observed
        if record is None or record.holder_identity != self._identity:
            return False

        now = utcnow()
        released = replace(
            record,
            holder_identity="",
            acquire_time=now,
            renew_time=now,
            duration=RELEASED_LEASE_DURATION,
        )
        deadline = self._clock() + self.config.renew_deadline
        try:
            stored = await self._call(deadline, self.lock.update, released, record.version)
        except LeaseLockError as e:
            logger.warning("Failed to release lease %s: %s", self.lock.describe(), e)
            return False

        self._observe(stored)
        logger.info("Released lease %s", self.lock.describe())
        return True

    async def _call(
        self,
        deadline: float,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        stop: asyncio.Event | None = None,
    ) -> T:
        """Run a lock operation bounded by ``deadline``, abandoning it once ``stop`` is set."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise StoreUnavailableError(f"no time left to reach lease {self.lock.describe()}")
        if stop is not None and stop.is_set():
            raise StoreUnavailableError(f"stopped before reaching lease {self.lock.describe()}")

        call = asyncio.ensure_future(operation(*args))
        waiters: set[asyncio.Future[Any]] = {call}
        stopped: asyncio.Future[Any] | None = None
        if stop is not None:
            stopped = asyncio.ensure_future(stop.wait())
            waiters.add(stopped)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if stopped is not None:
                stopped.cancel()
            if not call.done():
                call.cancel()

        if call in done:
            return call.result()
        if stopped is not None and stopped in done:
            raise StoreUnavailableError(
                f"stopped while waiting for lease {self.lock.describe()}"
            )
        raise StoreUnavailableError(
            f"lease {self.lock.describe()} did not answer within {remaining:.2f}s"
        )

    def _claimed(self, record: LeaseRecord, started: float) -> None:
        # The write landed no earlier than the attempt started
        self._renewed_at = started
        self._observe(record)

    def _observe(self, record: LeaseRecord) -> None:
        if not record.same_write(self._observed):
            self._observed = record
            self._observed_at = self._clock()
        self._report(record.holder_identity or None)

    def _observed_expired(self) -> bool:
        if self._observed is None:
            return True
        return self._observed_at + self._observed.duration <= self._clock()

    def _report(self, leader: str | None) -> None:
        if leader == self._reported:
            return
        self._reported = leader
        logger.info("New leader for %s: %s", self.lock.describe(), leader or "<unknown>")
        if self.channel is not None:
            self.channel.publish(LeadershipEvent(leader_identity=leader))

    def _handle_election(self) -> None:
        self._state = ElectionState.LEADING
        logger.info("Started leading %s", self.lock.describe())
        self._fire(self.on_started_leading)

        for future in self._on_elected:
            if not future.done():
                future.set_result(None)
        self._on_elected.clear()

    def _handle_demotion(self) -> None:
        self._state = ElectionState.ACQUIRING
        logger.warning("Stopped leading %s", self.lock.describe())
        if self._reported == self._identity:
            self._report(None)
        self._fire(self.on_stopped_leading)

    def _fire(self, callback: LeadershipCallback | None) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Leadership callback %r failed", callback)
