"""Redis lease lock.

The lease lives in a Redis hash with two fields:
- record: JSON-encoded lease body
- version: integer bumped on every write

Create and update run as Lua scripts so the existence/version check and
the write are atomic on the server.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from datetime import datetime
from typing import TYPE_CHECKING, Any, cast

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from leasekeeper.distributed.lock import LeaseLock, LeaseRecord
from leasekeeper.errors import (
    AlreadyExistsError,
    ClientBuildError,
    ConflictError,
    StoreUnavailableError,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "leasekeeper:lease:"

_CREATE_SCRIPT = """
if redis.call("EXISTS", KEYS[1]) == 1 then
    return nil
end
redis.call("HSET", KEYS[1], "record", ARGV[1], "version", 1)
return 1
"""

_UPDATE_SCRIPT = """
if redis.call("HGET", KEYS[1], "version") ~= ARGV[1] then
    return nil
end
local version = redis.call("HINCRBY", KEYS[1], "version", 1)
redis.call("HSET", KEYS[1], "record", ARGV[2])
return version
"""


def build_redis_client(url: str) -> Redis:
    """Create a Redis client from a URL.

    Raises:
        ClientBuildError: If the URL cannot be parsed
    """
    try:
        return redis.from_url(url, encoding="utf-8")  # type: ignore[no-untyped-call]
    except ValueError as e:
        raise ClientBuildError(f"invalid redis url {url!r}: {e}") from e


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisLeaseLock(LeaseLock):
    """LeaseLock backed by a Redis hash."""

    def __init__(self, name: str, scope: str, client: Redis):
        super().__init__(name, scope)
        self.client = client
        self._key = f"{KEY_PREFIX}{scope}:{name}"

    @property
    def key(self) -> str:
        """The Redis key holding the lease."""
        return self._key

    async def get(self) -> LeaseRecord | None:
        try:
            body, version = await self.client.hmget(self._key, ["record", "version"])
        except RedisError as e:
            raise StoreUnavailableError(f"failed to read lease {self.describe()}: {e}") from e
        if body is None or version is None:
            return None
        return self._decode(body, _text(version))

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        result = await self._eval(_CREATE_SCRIPT, self._encode(record))
        if result is None:
            raise AlreadyExistsError(self.describe())
        return record.with_version(str(result))

    async def update(self, record: LeaseRecord, expected_version: str) -> LeaseRecord:
        result = await self._eval(_UPDATE_SCRIPT, expected_version, self._encode(record))
        if result is None:
            raise ConflictError(self.describe(), expected_version)
        return record.with_version(str(result))

    async def close(self) -> None:
        await self.client.aclose()

    async def _eval(self, script: str, *args: str) -> Any:
        try:
            return await cast(
                Awaitable[Any],
                self.client.eval(script, 1, self._key, *args),
            )
        except RedisError as e:
            raise StoreUnavailableError(f"failed to write lease {self.describe()}: {e}") from e

    @staticmethod
    def _encode(record: LeaseRecord) -> str:
        return orjson.dumps(
            {
                "holder": record.holder_identity,
                "acquire_time": record.acquire_time.isoformat(),
                "renew_time": record.renew_time.isoformat(),
                "duration": record.duration,
                "transitions": record.leader_transitions,
            }
        ).decode()

    def _decode(self, body: bytes | str, version: str) -> LeaseRecord:
        data = orjson.loads(body)
        return LeaseRecord(
            name=self.name,
            scope=self.scope,
            holder_identity=data.get("holder", ""),
            acquire_time=datetime.fromisoformat(data["acquire_time"]),
            renew_time=datetime.fromisoformat(data["renew_time"]),
            duration=float(data["duration"]),
            version=version,
            leader_transitions=int(data.get("transitions", 0)),
        )
