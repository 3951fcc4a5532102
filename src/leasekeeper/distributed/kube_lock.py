"""Kubernetes Lease lock.

Stores the lease as a ``coordination.k8s.io/v1`` Lease object. The API
server provides the compare-and-swap: replace calls carry the observed
``resourceVersion`` and fail with 409 Conflict if it changed.

The official client is synchronous, so every call runs in a worker
thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any

import urllib3
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from leasekeeper.distributed.lock import LeaseLock, LeaseRecord, utcnow
from leasekeeper.errors import (
    AlreadyExistsError,
    ClientBuildError,
    ConflictError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0


def build_kubernetes_client(kubeconfig: str = "") -> client.ApiClient:
    """Build an API client from a kubeconfig file or the in-cluster environment.

    Args:
        kubeconfig: Path to a kubeconfig file. Empty means resolve
            credentials from the pod's service account.

    Raises:
        ClientBuildError: If no usable configuration could be loaded
    """
    configuration = client.Configuration()
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        else:
            config.load_incluster_config(client_configuration=configuration)
    except Exception as e:
        source = kubeconfig or "in-cluster environment"
        raise ClientBuildError(f"failed to build kubernetes config from {source}: {e}") from e

    return client.ApiClient(configuration)


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class KubernetesLeaseLock(LeaseLock):
    """LeaseLock backed by a Kubernetes Lease object.

    Args:
        name: Lease object name
        scope: Namespace of the Lease
        api_client: Configured kubernetes ApiClient
        request_timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        name: str,
        scope: str,
        api_client: client.ApiClient,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        super().__init__(name, scope)
        self.api_client = api_client
        self.api = client.CoordinationV1Api(api_client)
        self.request_timeout = request_timeout

    async def get(self) -> LeaseRecord | None:
        try:
            lease = await self._call(self.api.read_namespaced_lease, self.name, self.scope)
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._unavailable("read", e) from e
        return self._to_record(lease)

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        body = self._to_lease(record)
        try:
            lease = await self._call(self.api.create_namespaced_lease, self.scope, body)
        except ApiException as e:
            if e.status == 409:
                raise AlreadyExistsError(self.describe()) from e
            raise self._unavailable("create", e) from e
        return self._to_record(lease)

    async def update(self, record: LeaseRecord, expected_version: str) -> LeaseRecord:
        body = self._to_lease(record, resource_version=expected_version)
        try:
            lease = await self._call(
                self.api.replace_namespaced_lease, self.name, self.scope, body
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(self.describe(), expected_version) from e
            if e.status == 404:
                # Deleted under us; the expected version no longer exists
                raise ConflictError(self.describe(), expected_version) from e
            raise self._unavailable("update", e) from e
        return self._to_record(lease)

    async def close(self) -> None:
        await asyncio.to_thread(self.api_client.close)

    async def _call(self, method: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(
                method, *args, _request_timeout=self.request_timeout
            )
        except urllib3.exceptions.HTTPError as e:
            raise StoreUnavailableError(
                f"kubernetes API unreachable for lease {self.describe()}: {e}"
            ) from e

    def _unavailable(self, operation: str, e: ApiException) -> StoreUnavailableError:
        return StoreUnavailableError(
            f"failed to {operation} lease {self.describe()}: {e.status} {e.reason}"
        )

    def _to_lease(self, record: LeaseRecord, resource_version: str | None = None) -> client.V1Lease:
        return client.V1Lease(
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.scope,
                resource_version=resource_version,
            ),
            spec=client.V1LeaseSpec(
                holder_identity=record.holder_identity,
                lease_duration_seconds=max(1, math.ceil(record.duration)),
                acquire_time=record.acquire_time,
                renew_time=record.renew_time,
                lease_transitions=record.leader_transitions,
            ),
        )

    def _to_record(self, lease: client.V1Lease) -> LeaseRecord:
        spec = lease.spec or client.V1LeaseSpec()
        return LeaseRecord(
            name=lease.metadata.name,
            scope=lease.metadata.namespace,
            holder_identity=spec.holder_identity or "",
            acquire_time=_aware(spec.acquire_time),
            renew_time=_aware(spec.renew_time),
            duration=float(spec.lease_duration_seconds or 0),
            version=lease.metadata.resource_version or "",
            leader_transitions=spec.lease_transitions or 0,
        )
