"""Runtime wiring and coordinated shutdown.

ShutdownOrchestrator runs three units on one event loop:
- the election coordinator
- the leadership consumer that feeds the HTTP read path
- the uvicorn status server

On SIGTERM/SIGINT it runs a fixed sequence:
1. Set the shared stop token (the coordinator releases its lease)
2. Move the server phase to DRAINING (probes answer 503)
3. Tell uvicorn to stop accepting; in-flight requests get grace_period
   seconds before remaining connections are closed
4. Close the leadership channel once the coordinator has exited
5. Move the server phase to STOPPED

A second signal while shutting down is ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator
from dataclasses import dataclass

import uvicorn

from leasekeeper.api import LeaderState, ServerPhase, consume_leadership, create_app
from leasekeeper.config import Settings
from leasekeeper.distributed.channel import LeadershipChannel
from leasekeeper.distributed.coordinator import ElectionCoordinator
from leasekeeper.distributed.lock import LeaseLock
from leasekeeper.distributed.memory_lock import InMemoryLeaseLock
from leasekeeper.errors import ServeError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class StatusServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the orchestrator."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def build_server(
    state: LeaderState, host: str, port: int, grace_period: float
) -> StatusServer:
    """Create the status server bound to ``host:port``."""
    config = uvicorn.Config(
        create_app(state),
        host=host,
        port=port,
        lifespan="off",
        log_config=None,
        access_log=False,
        timeout_graceful_shutdown=grace_period,
    )
    return StatusServer(config)


def build_lock(settings: Settings) -> LeaseLock:
    """Create the lease lock for the configured backend.

    Raises:
        ClientBuildError: If the store client cannot be built
    """
    if settings.backend == "memory":
        return InMemoryLeaseLock(settings.lease_name, settings.namespace)

    if settings.backend == "redis":
        from leasekeeper.distributed.redis_lock import RedisLeaseLock, build_redis_client

        return RedisLeaseLock(
            settings.lease_name, settings.namespace, build_redis_client(settings.redis_url)
        )

    from leasekeeper.distributed.kube_lock import KubernetesLeaseLock, build_kubernetes_client

    return KubernetesLeaseLock(
        settings.lease_name,
        settings.namespace,
        build_kubernetes_client(settings.kubeconfig),
        request_timeout=settings.lease_renew_duration,
    )


class ShutdownOrchestrator:
    """Runs the election and the status server, and shuts both down together.

    Args:
        coordinator: Election coordinator to run
        channel: Channel the coordinator publishes leadership events on
        state: Leader state shared with the status server
        server: uvicorn server serving the status app
        install_signals: Subscribe to SIGTERM/SIGINT while running
    """

    def __init__(
        self,
        coordinator: ElectionCoordinator,
        channel: LeadershipChannel,
        state: LeaderState,
        server: uvicorn.Server,
        install_signals: bool = True,
    ):
        self.coordinator = coordinator
        self.channel = channel
        self.state = state
        self.server = server
        self.install_signals = install_signals
        self.stop = asyncio.Event()
        self._signals: list[signal.Signals] = []

    @property
    def shutting_down(self) -> bool:
        return self.stop.is_set()

    def request_shutdown(self, reason: str = "requested") -> None:
        """Begin shutdown. Calls after the first are no-ops."""
        if self.stop.is_set():
            logger.warning("Shutdown already in progress, ignoring %s", reason)
            return

        logger.warning(
            "Shutting down server (%s), grace period %.1fs",
            reason,
            self.server.config.timeout_graceful_shutdown or 0,
        )
        self.stop.set()
        if self.state.phase is ServerPhase.SERVING:
            self.state.transition(ServerPhase.DRAINING)
        self.server.should_exit = True

    async def run(self) -> None:
        """Run until shutdown completes.

        Returns once the coordinator, the consumer and the server have all
        exited.

        Raises:
            ServeError: If the server failed rather than closing cleanly
        """
        loop = asyncio.get_running_loop()
        if self.install_signals:
            self._install_signal_handlers(loop)

        coordinator_task = asyncio.create_task(self.coordinator.run(self.stop), name="election")
        consumer_task = asyncio.create_task(
            consume_leadership(self.channel, self.state), name="leadership-consumer"
        )
        server_task = asyncio.create_task(self._serve(), name="status-server")
        stop_task = asyncio.create_task(self.stop.wait(), name="stop-wait")

        try:
            done, _ = await asyncio.wait(
                {coordinator_task, server_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not self.stop.is_set():
                unit = "status server" if server_task in done else "election"
                self.request_shutdown(f"{unit} exited")
        finally:
            stop_task.cancel()
            errors = await self._drain(coordinator_task, consumer_task, server_task)
            self._remove_signal_handlers(loop)

        if errors:
            raise errors[0]
        logger.info("Shutdown complete")

    async def _drain(
        self,
        coordinator_task: asyncio.Task[None],
        consumer_task: asyncio.Task[None],
        server_task: asyncio.Task[None],
    ) -> list[BaseException]:
        errors: list[BaseException] = []

        # Coordinator first so the release is published before the channel closes
        await _collect("election", coordinator_task, errors)
        self.channel.close()
        await _collect("leadership consumer", consumer_task, errors)
        await _collect("status server", server_task, errors)

        if self.state.phase is not ServerPhase.STOPPED:
            self.state.transition(ServerPhase.STOPPED)
        return errors

    async def _serve(self) -> None:
        try:
            await self.server.serve()
        except SystemExit as e:
            # uvicorn exits the process on startup failures such as a busy port
            raise ServeError(f"status server failed to start (exit code {e.code})") from e

        if not self.stop.is_set():
            raise ServeError("status server stopped unexpectedly")

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.warning("Cannot install handler for %s on this platform", sig.name)
                continue
            self._signals.append(sig)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()


async def _collect(name: str, task: asyncio.Task[None], errors: list[BaseException]) -> None:
    """Await ``task`` and record its exception, if any."""
    try:
        await task
    except asyncio.CancelledError:
        if not task.cancelled():
            raise
        return
    except Exception as e:
        logger.error("%s exited with error: %s", name, e)
        errors.append(e)


@dataclass
class Runtime:
    """Fully wired process, built before the event loop starts."""

    settings: Settings
    lock: LeaseLock
    orchestrator: ShutdownOrchestrator

    async def run(self) -> None:
        try:
            await self.orchestrator.run()
        finally:
            try:
                await self.lock.close()
            except Exception as e:
                logger.warning("Failed to close lease store client: %s", e)


def build_runtime(settings: Settings, install_signals: bool = True) -> Runtime:
    """Validate settings and wire every component.

    Raises:
        ConfigError: If configuration is missing or inconsistent
        ClientBuildError: If the lease store client cannot be built
    """
    settings.check_required()
    election_config = settings.election_config()
    host, port = settings.bind_address()

    lock = build_lock(settings)
    channel = LeadershipChannel()
    coordinator = ElectionCoordinator(lock, election_config, settings.identity, channel)
    state = LeaderState()
    server = build_server(state, host, port, settings.grace_period)

    orchestrator = ShutdownOrchestrator(
        coordinator, channel, state, server, install_signals=install_signals
    )
    return Runtime(settings=settings, lock=lock, orchestrator=orchestrator)
