"""Tests for runtime wiring and coordinated shutdown."""

from __future__ import annotations

import asyncio
import os
import signal
import socket
import sys

import httpx
import pytest

from leasekeeper.api import LeaderState, ServerPhase
from leasekeeper.config import ElectionConfig, Settings
from leasekeeper.distributed import (
    ElectionCoordinator,
    InMemoryLeaseLock,
    InMemoryLeaseStore,
    LeadershipChannel,
    LeaseRecord,
)
from leasekeeper.distributed.redis_lock import RedisLeaseLock
from leasekeeper.errors import ClientBuildError, ConfigError, ServeError
from leasekeeper.runtime import ShutdownOrchestrator, build_runtime, build_server


class CountingLeaseLock(InMemoryLeaseLock):
    """In-memory lock that counts release writes and close calls."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.releases = 0
        self.closed = False

    async def update(self, record: LeaseRecord, expected_version: str) -> LeaseRecord:
        if not record.holder_identity:
            self.releases += 1
        return await super().update(record, expected_version)

    async def close(self) -> None:
        self.closed = True


def make_orchestrator(
    lock: InMemoryLeaseLock,
    config: ElectionConfig,
    identity: str,
    port: int = 0,
    install_signals: bool = False,
) -> ShutdownOrchestrator:
    channel = LeadershipChannel()
    coordinator = ElectionCoordinator(lock, config, identity, channel)
    state = LeaderState()
    server = build_server(state, "127.0.0.1", port, grace_period=0.5)
    return ShutdownOrchestrator(coordinator, channel, state, server, install_signals=install_signals)


def bound_port(orchestrator: ShutdownOrchestrator) -> int:
    return orchestrator.server.servers[0].sockets[0].getsockname()[1]


async def start(orchestrator: ShutdownOrchestrator, wait_until) -> asyncio.Task[None]:
    task = asyncio.create_task(orchestrator.run())
    await wait_until(lambda: orchestrator.server.started or task.done())
    return task


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("LEASEKEEPER_"):
            monkeypatch.delenv(name)


class TestShutdownOrchestrator:
    """Tests for ShutdownOrchestrator against a real status server."""

    @pytest.mark.asyncio
    async def test_serves_leader_then_releases_on_shutdown(
        self, store: InMemoryLeaseStore, fast_config: ElectionConfig, wait_until
    ) -> None:
        lock = CountingLeaseLock("svc", "default", store)
        orchestrator = make_orchestrator(lock, fast_config, "replica-a")
        task = await start(orchestrator, wait_until)

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{bound_port(orchestrator)}") as http:
            await wait_until(lambda: orchestrator.state.leader == "replica-a")

            response = await http.get("/api/leader")
            assert response.json() == {"leader": "replica-a"}

            response = await http.get("/healthz")
            assert response.status_code == 200
            assert response.text == "ok\n"

        orchestrator.request_shutdown("test")
        assert orchestrator.state.phase is ServerPhase.DRAINING
        await asyncio.wait_for(task, timeout=5.0)

        assert orchestrator.state.phase is ServerPhase.STOPPED
        assert orchestrator.state.leader == ""
        assert lock.releases == 1
        record = await InMemoryLeaseLock("svc", "default", store).get()
        assert record is not None
        assert record.holder_identity == ""

    @pytest.mark.asyncio
    async def test_repeated_shutdown_requests_release_once(
        self, store: InMemoryLeaseStore, fast_config: ElectionConfig, wait_until
    ) -> None:
        lock = CountingLeaseLock("svc", "default", store)
        orchestrator = make_orchestrator(lock, fast_config, "replica-a")
        task = await start(orchestrator, wait_until)
        await wait_until(lambda: orchestrator.coordinator.is_leader)

        orchestrator.request_shutdown("first")
        orchestrator.request_shutdown("second")
        await asyncio.wait_for(task, timeout=5.0)
        orchestrator.request_shutdown("after exit")

        assert lock.releases == 1
        assert orchestrator.state.phase is ServerPhase.STOPPED

    @pytest.mark.asyncio
    async def test_standby_takes_over_after_leader_shuts_down(
        self, store: InMemoryLeaseStore, fast_config: ElectionConfig, wait_until
    ) -> None:
        first = make_orchestrator(InMemoryLeaseLock("svc", "default", store), fast_config, "replica-a")
        first_task = await start(first, wait_until)
        await wait_until(lambda: first.state.leader == "replica-a")

        second = make_orchestrator(
            InMemoryLeaseLock("svc", "default", store), fast_config, "replica-b"
        )
        second_task = await start(second, wait_until)
        await wait_until(lambda: second.state.leader == "replica-a")

        first.request_shutdown("rollout")
        await asyncio.wait_for(first_task, timeout=5.0)

        # Released leases are claimed without waiting out the lease duration
        await wait_until(lambda: second.state.leader == "replica-b", timeout=fast_config.lease_duration)
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{bound_port(second)}") as http:
            response = await http.get("/api/leader")
        assert response.json() == {"leader": "replica-b"}

        second.request_shutdown("test")
        await asyncio.wait_for(second_task, timeout=5.0)

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
    @pytest.mark.asyncio
    async def test_sigterm_triggers_single_shutdown(
        self, store: InMemoryLeaseStore, fast_config: ElectionConfig, wait_until
    ) -> None:
        lock = CountingLeaseLock("svc", "default", store)
        orchestrator = make_orchestrator(lock, fast_config, "replica-a", install_signals=True)
        task = await start(orchestrator, wait_until)
        await wait_until(lambda: orchestrator.coordinator.is_leader)

        os.kill(os.getpid(), signal.SIGTERM)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=5.0)

        assert orchestrator.shutting_down
        assert lock.releases == 1
        assert orchestrator.state.phase is ServerPhase.STOPPED

    @pytest.mark.asyncio
    async def test_busy_port_raises_serve_error(
        self, store: InMemoryLeaseStore, fast_config: ElectionConfig
    ) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            orchestrator = make_orchestrator(
                InMemoryLeaseLock("svc", "default", store), fast_config, "replica-a", port=port
            )
            with pytest.raises(ServeError):
                await asyncio.wait_for(orchestrator.run(), timeout=5.0)

        assert orchestrator.state.phase is ServerPhase.STOPPED


class TestBuildRuntime:
    """Tests for build_runtime."""

    def test_missing_lease_name_builds_nothing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        built: list[object] = []
        monkeypatch.setattr("leasekeeper.runtime.build_server", lambda *args: built.append(args))

        with pytest.raises(ConfigError, match="missing flag --lease-name"):
            build_runtime(Settings(backend="memory"), install_signals=False)

        assert built == []

    def test_inconsistent_timings(self) -> None:
        settings = Settings(
            lease_name="svc", backend="memory", lease_duration="5s", lease_renew_duration="6s"
        )

        with pytest.raises(ConfigError):
            build_runtime(settings, install_signals=False)

    def test_memory_backend(self) -> None:
        settings = Settings(
            lease_name="svc",
            namespace="prod",
            backend="memory",
            addr="127.0.0.1:0",
            grace_period="2s",
            identity="replica-a",
        )

        runtime = build_runtime(settings, install_signals=False)

        assert isinstance(runtime.lock, InMemoryLeaseLock)
        assert runtime.lock.describe() == "prod/svc"
        assert runtime.orchestrator.coordinator.identity == "replica-a"
        assert runtime.orchestrator.server.config.host == "127.0.0.1"
        assert runtime.orchestrator.server.config.timeout_graceful_shutdown == 2.0
        assert runtime.orchestrator.install_signals is False

    def test_redis_backend(self) -> None:
        settings = Settings(
            lease_name="svc", backend="redis", redis_url="redis://localhost:6379/3"
        )

        runtime = build_runtime(settings, install_signals=False)

        assert isinstance(runtime.lock, RedisLeaseLock)
        assert runtime.lock.key == "leasekeeper:lease:default:svc"

    def test_unloadable_kubeconfig(self, tmp_path) -> None:
        settings = Settings(lease_name="svc", kubeconfig=str(tmp_path / "missing"))

        with pytest.raises(ClientBuildError):
            build_runtime(settings, install_signals=False)

    @pytest.mark.asyncio
    async def test_run_closes_lock(
        self, monkeypatch: pytest.MonkeyPatch, store: InMemoryLeaseStore, wait_until
    ) -> None:
        lock = CountingLeaseLock("svc", "default", store)
        monkeypatch.setattr("leasekeeper.runtime.build_lock", lambda settings: lock)
        settings = Settings(
            lease_name="svc",
            backend="memory",
            addr="127.0.0.1:0",
            lease_duration="600ms",
            lease_renew_duration="300ms",
            retry_period="50ms",
        )
        runtime = build_runtime(settings, install_signals=False)

        task = asyncio.create_task(runtime.run())
        await wait_until(lambda: runtime.orchestrator.coordinator.is_leader)
        runtime.orchestrator.request_shutdown("test")
        await asyncio.wait_for(task, timeout=5.0)

        assert lock.closed
        assert lock.releases == 1
