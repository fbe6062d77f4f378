"""Result Store adapter: JSON payloads in Redis with per-key TTL.

Every operation is best-effort. A store outage reads as a cache miss and
writes are dropped without retry; nothing here raises to the caller.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from locallens.lib.redis_client import LazyRedisClient

T = TypeVar("T")

DEFAULT_OP_TIMEOUT = 1.0
MAX_UPDATE_ATTEMPTS = 5

Transform = Callable[[dict[str, Any] | None], dict[str, Any] | None]


class CacheUnavailableError(Exception):
    """A Result Store command failed. Internal only; public methods absorb it."""


class ResultStore:
    """Key/value store with expiration, backed by Redis.

    Args:
        client: Lazily-connected Redis handle.
        op_timeout: Upper bound in seconds for any single store command.
    """

    def __init__(self, client: LazyRedisClient, *, op_timeout: float = DEFAULT_OP_TIMEOUT) -> None:
        self._client = client
        self._op_timeout = op_timeout

    async def _execute(self, op: str, call: Callable[[Any], Awaitable[T]]) -> T:
        """Run one Redis command with a time box, mapping any failure to CacheUnavailableError."""
        try:
            async with asyncio.timeout(self._op_timeout):
                return await call(self._client.get())
        except RedisConnectionError as e:
            await self._client.reset()
            raise CacheUnavailableError(f"{op}: {e}") from e
        except TimeoutError as e:
            raise CacheUnavailableError(f"{op}: timed out after {self._op_timeout}s") from e
        except Exception as e:
            raise CacheUnavailableError(f"{op}: {e}") from e

    async def get(self, key: str) -> dict[str, Any] | None:
        """Read a JSON payload.

        Returns:
            The decoded payload, or None on miss, store outage or a corrupt value.
        """
        try:
            raw = await self._execute("GET", lambda r: r.get(key))
        except CacheUnavailableError as e:
            logger.warning(f"Result store unavailable, treating as miss: {e}")
            return None

        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable cache value | key={key}")
            return None
        return payload if isinstance(payload, dict) else None

    async def set(self, key: str, payload: dict[str, Any], ttl_seconds: int) -> bool:
        """Write a JSON payload with expiration.

        Returns:
            True if the write was accepted, False if it was dropped.
        """
        try:
            value = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning(f"Payload for key={key} is not JSON-serializable: {e}")
            return False

        try:
            await self._execute("SETEX", lambda r: r.setex(key, int(ttl_seconds), value))
        except CacheUnavailableError as e:
            logger.warning(f"Result store write dropped | key={key}: {e}")
            return False
        logger.debug(f"Cache SET | key={key} | ttl={ttl_seconds}s")
        return True

    async def update(self, key: str, transform: Transform, ttl_seconds: int) -> bool:
        """Replace a JSON payload based on its current value, atomically.

        ``transform`` receives the stored payload (None when missing or
        undecodable) and returns the payload to write, or None to leave the
        key untouched. The read and the write run under WATCH/MULTI, so a
        concurrent writer makes the update start over on the fresh value.

        Returns:
            True if a payload was written, False if ``transform`` declined,
            the store was unavailable, or the key kept changing underneath.
        """

        async def _compare_and_set(r: Any) -> bool:
            for _ in range(MAX_UPDATE_ATTEMPTS):
                async with r.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    try:
                        current = json.loads(raw) if raw is not None else None
                    except (TypeError, ValueError):
                        current = None
                    payload = transform(current if isinstance(current, dict) else None)
                    if payload is None:
                        return False
                    pipe.multi()
                    pipe.setex(key, int(ttl_seconds), json.dumps(payload, ensure_ascii=False))
                    try:
                        await pipe.execute()
                    except WatchError:
                        logger.debug(f"Concurrent write on {key}, retrying update")
                        continue
                    return True
            logger.warning(f"Giving up update of {key} after {MAX_UPDATE_ATTEMPTS} conflicting writes")
            return False

        try:
            written = await self._execute("WATCH+SETEX", _compare_and_set)
        except CacheUnavailableError as e:
            logger.warning(f"Result store update dropped | key={key}: {e}")
            return False
        if written:
            logger.debug(f"Cache UPDATE | key={key} | ttl={ttl_seconds}s")
        return written

    async def delete(self, *keys: str) -> int | None:
        """Delete keys. Missing keys are not an error.

        Returns:
            Number of keys that existed and were removed, or None on store outage.
        """
        if not keys:
            return 0
        try:
            deleted = await self._execute("DEL", lambda r: r.delete(*keys))
        except CacheUnavailableError as e:
            logger.warning(f"Result store delete dropped | keys={list(keys)}: {e}")
            return None
        return int(deleted)

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN, not KEYS).

        Returns:
            Number of keys deleted (0 on store outage).
        """

        async def _scan_and_delete(r: Any) -> int:
            keys = [key async for key in r.scan_iter(match=pattern, count=500)]
            if not keys:
                return 0
            return int(await r.delete(*keys))

        try:
            deleted = await self._execute("SCAN+DEL", _scan_and_delete)
        except CacheUnavailableError as e:
            logger.warning(f"Result store pattern delete dropped | pattern={pattern}: {e}")
            return 0
        logger.info(f"Cache invalidated {deleted} key(s) matching '{pattern}'")
        return deleted

    async def ping(self) -> bool:
        """Whether the store answers a PING."""
        try:
            return bool(await self._execute("PING", lambda r: r.ping()))
        except CacheUnavailableError:
            return False

    async def close(self) -> None:
        await self._client.close()
