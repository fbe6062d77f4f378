"""Shared test fixtures: in-memory Redis double, store, broker, and runner."""

import asyncio
import fnmatch
import itertools
import time
from collections import defaultdict
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, WatchError

from locallens.core.background import BestEffortRunner
from locallens.core.config import Settings
from locallens.lib.broker import RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.lib.redis_client import LazyRedisClient


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the app uses.

    Strings with expiry, SCAN, WATCH/MULTI transactions, and Redis Streams
    with consumer groups. Every command name is recorded in ``calls``.
    ``before_exec`` runs once just before the next EXEC, standing in for a
    concurrent client writing between a WATCH and its transaction.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expires: dict[str, float] = {}
        self.versions: dict[str, int] = defaultdict(int)
        self.before_exec: Callable[[], None] | None = None
        self.calls: list[str] = []
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = defaultdict(list)
        # stream -> group -> {"last": index, "consumers": set, "pending": {id: consumer}}
        self.groups: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._ids = itertools.count(1)
        self.closed = False

    def _alive(self, key: str) -> bool:
        expiry = self.expires.get(key)
        if expiry is not None and expiry <= time.time():
            self.data.pop(key, None)
            self.expires.pop(key, None)
            return False
        return key in self.data

    def ttl_of(self, key: str) -> int | None:
        expiry = self.expires.get(key)
        return None if expiry is None else round(expiry - time.time())

    async def ping(self) -> bool:
        self.calls.append("ping")
        return True

    async def get(self, key: str) -> str | None:
        self.calls.append("get")
        return self.data[key] if self._alive(key) else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.calls.append("setex")
        self.versions[key] += 1
        self.data[key] = value
        self.expires[key] = time.time() + ttl
        return True

    async def delete(self, *keys: str) -> int:
        self.calls.append("delete")
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            if key in self.data:
                self.versions[key] += 1
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return removed

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    def write_now(self, key: str, value: str, ttl: int = 900) -> None:
        """Write a key synchronously, as another client would."""
        self.data[key] = value
        self.expires[key] = time.time() + ttl
        self.versions[key] += 1

    async def scan_iter(self, match: str = "*", count: int | None = None) -> AsyncIterator[str]:
        self.calls.append("scan")
        for key in list(self.data):
            if self._alive(key) and fnmatch.fnmatchcase(key, match):
                yield key

    async def xadd(
        self, stream: str, fields: dict[str, str], maxlen: int | None = None, approximate: bool = True
    ) -> str:
        self.calls.append("xadd")
        message_id = f"{int(time.time() * 1000)}-{next(self._ids)}"
        self.streams[stream].append((message_id, dict(fields)))
        return message_id

    async def xgroup_create(self, stream: str, group: str, id: str = "$", mkstream: bool = False) -> bool:
        self.calls.append("xgroup_create")
        if stream not in self.streams and not mkstream:
            raise ResponseError("The XGROUP subcommand requires the key to exist")
        if group in self.groups[stream]:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        self.streams.setdefault(stream, [])
        start = 0 if id == "0" else len(self.streams[stream])
        self.groups[stream][group] = {"last": start, "consumers": set(), "pending": {}}
        return True

    async def xinfo_groups(self, stream: str) -> list[dict[str, Any]]:
        self.calls.append("xinfo_groups")
        if stream not in self.streams:
            raise ResponseError("no such key")
        return [
            {"name": name, "consumers": len(g["consumers"]), "pending": len(g["pending"])}
            for name, g in self.groups[stream].items()
        ]

    async def xreadgroup(
        self,
        groupname: str,
        consumername: str,
        streams: dict[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> list[Any]:
        self.calls.append("xreadgroup")
        response = []
        for stream, cursor in streams.items():
            group = self.groups[stream].get(groupname)
            if group is None:
                raise ResponseError("NOGROUP No such key or consumer group")
            group["consumers"].add(consumername)
            entries = self.streams[stream]
            if cursor == ">":
                batch = entries[group["last"] : group["last"] + (count or len(entries))]
                group["last"] += len(batch)
                for message_id, _ in batch:
                    group["pending"][message_id] = consumername
            else:
                mine = [mid for mid, owner in group["pending"].items() if owner == consumername]
                batch = [(mid, f) for mid, f in entries if mid in mine][: count or None]
            if batch:
                response.append([stream, batch])
        if not response and block:
            await asyncio.sleep(block / 1000)
        return response

    async def xack(self, stream: str, group: str, *ids: str) -> int:
        self.calls.append("xack")
        pending = self.groups[stream][group]["pending"]
        return sum(1 for mid in ids if pending.pop(mid, None) is not None)

    async def xgroup_delconsumer(self, stream: str, group: str, consumer: str) -> int:
        self.calls.append("xgroup_delconsumer")
        g = self.groups[stream].get(group)
        if g is None:
            return 0
        g["consumers"].discard(consumer)
        return 0

    def add_consumer(self, stream: str, group: str, consumer: str = "worker-1") -> None:
        """Register a live consumer the way a worker's first XREADGROUP would."""
        self.streams.setdefault(stream, [])
        self.groups[stream].setdefault(group, {"last": 0, "consumers": set(), "pending": {}})
        self.groups[stream][group]["consumers"].add(consumer)

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    """Optimistic transaction over a FakeRedis: EXEC aborts if a watched key changed."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._watched: dict[str, int] = {}
        self._queued: list[tuple[str, int, str]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.reset()

    async def reset(self) -> None:
        self._watched.clear()
        self._queued.clear()

    async def watch(self, *keys: str) -> bool:
        self._redis.calls.append("watch")
        for key in keys:
            self._watched[key] = self._redis.versions[key]
        return True

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    def multi(self) -> None:
        self._redis.calls.append("multi")

    def setex(self, key: str, ttl: int, value: str) -> "FakePipeline":
        self._queued.append((key, ttl, value))
        return self

    async def execute(self) -> list[Any]:
        self._redis.calls.append("exec")
        hook, self._redis.before_exec = self._redis.before_exec, None
        if hook is not None:
            hook()
        if any(self._redis.versions[key] != seen for key, seen in self._watched.items()):
            await self.reset()
            raise WatchError("Watched variable changed.")
        results = [await self._redis.setex(*command) for command in self._queued]
        await self.reset()
        return results


class DownRedis:
    """A Redis client whose every command fails with a connection error."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def __getattr__(self, name: str) -> Any:
        async def _fail(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

        return _fail

    def pipeline(self, *args: Any, **kwargs: Any) -> Any:
        self.calls.append("pipeline")
        raise RedisConnectionError("Connection refused")

    def scan_iter(self, *args: Any, **kwargs: Any) -> AsyncIterator[str]:
        async def _gen() -> AsyncIterator[str]:
            self.calls.append("scan")
            raise RedisConnectionError("Connection refused")
            yield ""  # pragma: no cover

        return _gen()


@pytest.fixture
def settings() -> Settings:
    """Test application settings with short timings."""
    return Settings(
        redis_url="redis://test:6379/0",
        short_poll_window=0.3,
        short_poll_interval=0.02,
        broker_probe_timeout=0.2,
        provider_call_timeout=1.0,
        worker_retry_base_delay=0.0,
        geocoder_google_api_key=None,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def broker_redis() -> FakeRedis:
    """Separate fake for the broker so store and broker traffic can be told apart."""
    return FakeRedis()


@pytest.fixture
def down_redis() -> DownRedis:
    return DownRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> ResultStore:
    return ResultStore(LazyRedisClient("redis://test:6379/0", client=fake_redis), op_timeout=0.5)


@pytest.fixture
def down_store(down_redis: DownRedis) -> ResultStore:
    return ResultStore(LazyRedisClient("redis://test:6379/0", client=down_redis), op_timeout=0.5)


@pytest.fixture
def broker(broker_redis: FakeRedis) -> RedisStreamBroker:
    return RedisStreamBroker(
        LazyRedisClient("redis://test:6379/0", client=broker_redis),
        stream="geocoding:requests",
        group="geocoding-workers",
        probe_timeout=0.2,
    )


@pytest.fixture
def live_broker(broker: RedisStreamBroker, broker_redis: FakeRedis) -> RedisStreamBroker:
    """Broker whose consumer group has a registered worker."""
    broker_redis.add_consumer(broker.stream, broker.group)
    return broker


@pytest.fixture
async def runner() -> AsyncGenerator[BestEffortRunner]:
    runner = BestEffortRunner()
    yield runner
    await runner.drain(timeout=1.0)
