"""Leader election primitives for leasekeeper.

Provides:
- LeaseLock contract and backends (in-memory, Kubernetes Lease, Redis)
- ElectionCoordinator, the acquire/renew/release state machine
- LeadershipChannel, the keep-latest leader-change conduit

Example:
    from leasekeeper.config import ElectionConfig
    from leasekeeper.distributed import (
        ElectionCoordinator,
        InMemoryLeaseLock,
        LeadershipChannel,
    )

    coordinator = ElectionCoordinator(
        InMemoryLeaseLock("my-lease"), ElectionConfig(), "replica-a", LeadershipChannel()
    )
    await coordinator.run(stop)
"""

from leasekeeper.distributed.channel import LeadershipChannel, LeadershipEvent
from leasekeeper.distributed.coordinator import ElectionCoordinator, ElectionState
from leasekeeper.distributed.lock import LeaseLock, LeaseRecord
from leasekeeper.distributed.memory_lock import InMemoryLeaseLock, InMemoryLeaseStore

__all__ = [
    "ElectionCoordinator",
    "ElectionState",
    "InMemoryLeaseLock",
    "InMemoryLeaseStore",
    "LeadershipChannel",
    "LeadershipEvent",
    "LeaseLock",
    "LeaseRecord",
]
