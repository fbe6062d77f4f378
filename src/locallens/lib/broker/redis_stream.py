"""Geocoding job broker on Redis Streams with a worker consumer group.

Publishers XADD a JSON job to the stream; workers read it through a
consumer group (XREADGROUP) and XACK after writing the result, which gives
at-least-once delivery.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from loguru import logger
from redis.exceptions import ResponseError

from locallens.lib.geocoder.jobs import GeocodeJob
from locallens.lib.redis_client import LazyRedisClient

PAYLOAD_FIELD = "payload"


class BrokerUnavailableError(Exception):
    """The asynchronous path cannot be used (probe failed or publish failed)."""


@dataclass
class BrokerMessage:
    """One delivered stream entry. ``job`` is None when the entry is unreadable."""

    message_id: str
    job: GeocodeJob | None


class RedisStreamBroker:
    """Publish/consume geocode jobs over a Redis Stream.

    Args:
        client: Lazily-connected Redis handle. Consumers need a socket
            timeout longer than their blocking read.
        stream: Stream name.
        group: Consumer group shared by workers.
        maxlen: Approximate stream length cap.
        probe_timeout: Seconds allowed for the availability probe and publish.
        require_consumers: Report unavailable unless the group has a consumer.
    """

    def __init__(
        self,
        client: LazyRedisClient,
        *,
        stream: str = "geocoding:requests",
        group: str = "geocoding-workers",
        maxlen: int = 10000,
        probe_timeout: float = 0.5,
        require_consumers: bool = True,
    ) -> None:
        self._client = client
        self.stream = stream
        self.group = group
        self._maxlen = maxlen
        self._probe_timeout = probe_timeout
        self._require_consumers = require_consumers

    async def is_available(self) -> bool:
        """Cheap health probe. Never raises; any error means unavailable."""
        try:
            async with asyncio.timeout(self._probe_timeout):
                client = self._client.get()
                await client.ping()
                if not self._require_consumers:
                    return True
                groups = await client.xinfo_groups(self.stream)
        except Exception as e:
            logger.debug(f"Broker probe failed: {e}")
            return False

        for group in groups:
            if group.get("name") == self.group and int(group.get("consumers", 0)) > 0:
                return True
        logger.debug(f"Broker reachable but group '{self.group}' has no consumers")
        return False

    async def publish(self, job: GeocodeJob) -> str:
        """Publish a job.

        Returns:
            The stream entry id.

        Raises:
            BrokerUnavailableError: If the broker rejects or does not answer in time.
        """
        fields = {PAYLOAD_FIELD: json.dumps(job.to_dict(), ensure_ascii=False)}
        try:
            async with asyncio.timeout(self._probe_timeout):
                message_id = await self._client.get().xadd(
                    self.stream, fields, maxlen=self._maxlen, approximate=True
                )
        except Exception as e:
            raise BrokerUnavailableError(f"Publish failed: {e}") from e
        logger.debug(f"Published job {job.job_id} as {message_id}")
        return str(message_id)

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if missing.

        Raises:
            BrokerUnavailableError: If the broker cannot be reached.
        """
        try:
            await self._client.get().xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info(f"Created consumer group: {self.group} on {self.stream}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise BrokerUnavailableError(str(e)) from e
        except Exception as e:
            raise BrokerUnavailableError(str(e)) from e

    async def consume(
        self,
        consumer: str,
        *,
        count: int = 10,
        block_ms: int | None = None,
        pending: bool = False,
    ) -> list[BrokerMessage]:
        """Read jobs for ``consumer``.

        Args:
            consumer: Consumer name, unique per worker.
            count: Maximum entries to read.
            block_ms: Milliseconds to block for new entries (None = don't block).
            pending: Re-read this consumer's unacknowledged entries instead of new ones.

        Raises:
            BrokerUnavailableError: If the read fails.
        """
        try:
            response = await self._client.get().xreadgroup(
                self.group,
                consumer,
                {self.stream: "0" if pending else ">"},
                count=count,
                block=None if pending else block_ms,
            )
        except Exception as e:
            raise BrokerUnavailableError(f"Read failed: {e}") from e

        messages: list[BrokerMessage] = []
        for _stream, entries in response or []:
            for message_id, fields in entries:
                messages.append(BrokerMessage(message_id=str(message_id), job=self._decode(message_id, fields)))
        return messages

    async def ack(self, message_id: str) -> None:
        """Acknowledge a processed entry. Failures are logged; the entry is redelivered later."""
        try:
            await self._client.get().xack(self.stream, self.group, message_id)
        except Exception as e:
            logger.warning(f"Failed to ack {message_id}: {e}")

    async def remove_consumer(self, consumer: str) -> None:
        """Deregister a consumer so probes stop counting it."""
        try:
            await self._client.get().xgroup_delconsumer(self.stream, self.group, consumer)
        except Exception as e:
            logger.warning(f"Failed to remove consumer {consumer}: {e}")

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    def _decode(message_id: Any, fields: dict[str, Any] | None) -> GeocodeJob | None:
        if not fields or PAYLOAD_FIELD not in fields:
            logger.warning(f"Stream entry {message_id} has no payload")
            return None
        try:
            return GeocodeJob.from_dict(json.loads(fields[PAYLOAD_FIELD]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed stream entry {message_id}: {e}")
            return None
