"""Lazily-connected Redis client handle shared by the result store and broker."""

import redis.asyncio as redis
from loguru import logger


class LazyRedisClient:
    """Owns one ``redis.asyncio.Redis`` client, created on first use.

    The connection pool connects on the first command and reconnects on
    later commands after a dropped connection. ``reset()`` discards the
    client entirely so the next ``get()`` builds a fresh pool.

    Args:
        url: Redis connection string.
        socket_timeout: Per-command socket timeout in seconds.
        socket_connect_timeout: Connect timeout in seconds (defaults to socket_timeout).
        client: Pre-built client to use instead of creating one (tests, shared pools).
    """

    def __init__(
        self,
        url: str,
        *,
        socket_timeout: float = 1.0,
        socket_connect_timeout: float | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        self._url = url
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout or socket_timeout
        self._client = client
        self._owned = client is None

    @property
    def url(self) -> str:
        return self._url

    def get(self) -> redis.Redis:
        """Return the client, creating it on first call."""
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                health_check_interval=30,
            )
            self._owned = True
            logger.debug(f"Redis client created for {self._redacted_url()}")
        return self._client

    async def reset(self) -> None:
        """Drop an owned client so the next call reconnects from scratch.

        Injected clients are left in place.
        """
        if self._client is None or not self._owned:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except Exception as e:
            logger.debug(f"Ignoring error while closing Redis client: {e}")

    async def close(self) -> None:
        """Close the client if this handle created it."""
        await self.reset()

    def _redacted_url(self) -> str:
        scheme, sep, rest = self._url.partition("://")
        if "@" in rest:
            rest = "***@" + rest.split("@", 1)[1]
        return f"{scheme}{sep}{rest}"
