"""Geocoding worker: consumes jobs from the broker and writes results back.

The worker reports through the Result Store only: it updates the job
status record, populates the lookup cache on success and clears the
in-flight marker. Entries are acknowledged after the result is written.
"""

import asyncio
import socket
import time
import uuid
from typing import Any

from loguru import logger

from locallens.core.config import Settings
from locallens.lib.broker import BrokerMessage, BrokerUnavailableError, RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.lib.geocoder import GeocodeJob, JobStatus
from locallens.lib.geocoder.base import GeocodeNotFoundError, ProvidersExhaustedError
from locallens.lib.geocoder.chain import DirectGeocodeFn
from locallens.lib.geocoder.keys import inflight_key
from locallens.services.geocoding_service import read_job, save_job, write_cached_result

RECONNECT_DELAY = 1.0  # seconds


def default_consumer_name() -> str:
    """Unique consumer name for this process."""
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class GeocodeWorker:
    """Process geocode jobs from a Redis Stream consumer group.

    Args:
        broker: Job broker (its client needs a socket timeout above ``block_ms``).
        store: Result Store adapter.
        geocode: Provider chain used to compute results.
        consumer: Consumer name, unique per worker process.
        max_attempts: Attempts per job on provider service errors.
        retry_base_delay: Backoff base in seconds (doubles each attempt).
        max_age: Jobs older than this many seconds are failed without processing.
        block_ms: Blocking read timeout in milliseconds.
        cache_ttl: TTL for lookup cache entries.
        job_ttl: TTL for job status records.
    """

    def __init__(
        self,
        broker: RedisStreamBroker,
        store: ResultStore,
        geocode: DirectGeocodeFn,
        *,
        consumer: str | None = None,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        max_age: int = 300,
        block_ms: int = 5000,
        batch_size: int = 10,
        cache_ttl: int = 86400,
        job_ttl: int = 900,
    ) -> None:
        self._broker = broker
        self._store = store
        self._geocode = geocode
        self.consumer = consumer or default_consumer_name()
        self._max_attempts = max(1, max_attempts)
        self._retry_base_delay = retry_base_delay
        self._max_age = max_age
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._cache_ttl = cache_ttl
        self._job_ttl = job_ttl
        self.processed = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        broker: RedisStreamBroker,
        store: ResultStore,
        geocode: DirectGeocodeFn,
        consumer: str | None = None,
    ) -> "GeocodeWorker":
        return cls(
            broker,
            store,
            geocode,
            consumer=consumer,
            max_attempts=settings.worker_max_attempts,
            retry_base_delay=settings.worker_retry_base_delay,
            max_age=settings.geocode_job_max_age,
            block_ms=settings.worker_block_ms,
            cache_ttl=settings.geocode_cache_ttl,
            job_ttl=settings.geocode_job_ttl,
        )

    async def run(self, stop: asyncio.Event) -> None:
        """Consume until ``stop`` is set.

        Unacknowledged entries left by a previous run of this consumer are
        processed before new ones.
        """
        await self._broker.ensure_group()
        logger.info(f"Geocoding worker {self.consumer} started on {self._broker.stream}")

        backlog = True
        try:
            while not stop.is_set():
                try:
                    messages = await self._broker.consume(
                        self.consumer,
                        count=self._batch_size,
                        block_ms=self._block_ms,
                        pending=backlog,
                    )
                except BrokerUnavailableError as e:
                    logger.warning(f"Broker read failed, retrying in {RECONNECT_DELAY}s: {e}")
                    await _sleep_until(stop, RECONNECT_DELAY)
                    continue

                if backlog and not messages:
                    backlog = False
                    continue

                for message in messages:
                    await self.handle(message)
        finally:
            await self._broker.remove_consumer(self.consumer)
            logger.info(f"Geocoding worker {self.consumer} stopped after {self.processed} job(s)")

    async def handle(self, message: BrokerMessage) -> None:
        """Process one delivered entry and acknowledge it."""
        if message.job is not None:
            await self.process(message.job)
        await self._broker.ack(message.message_id)

    async def process(self, job: GeocodeJob) -> GeocodeJob:
        """Compute one job and write its outcome to the Result Store.

        Returns:
            The job in its terminal state.
        """
        current = await read_job(self._store, job.job_id)
        if current is not None and current.status.is_terminal:
            logger.debug(f"Job {job.job_id} already {current.status}, skipping")
            return current
        if current is not None:
            job = current

        age = int(time.time()) - job.created_at
        if age > self._max_age:
            logger.warning(f"Job {job.job_id} expired ({age}s old), not processing")
            return await self._finish(job, JobStatus.FAILED, error="Job expired before processing")

        # A redelivered job may already be marked processing
        if job.status == JobStatus.QUEUED:
            job.advance(JobStatus.PROCESSING)
            if not await save_job(self._store, job, self._job_ttl):
                # Refused (or store down); a record finished meanwhile wins
                latest = await read_job(self._store, job.job_id)
                if latest is not None and latest.status.is_terminal:
                    logger.info(f"Job {job.job_id} became {latest.status} before processing, skipping")
                    return latest

        try:
            result = await self._geocode_with_retry(job)
        except GeocodeNotFoundError as e:
            return await self._finish(job, JobStatus.FAILED, error=str(e))
        except ProvidersExhaustedError as e:
            return await self._finish(job, JobStatus.FAILED, error=e.message)
        except Exception as e:
            logger.exception(f"Unexpected error processing job {job.job_id}")
            return await self._finish(job, JobStatus.FAILED, error=f"Internal error: {type(e).__name__}")

        await write_cached_result(self._store, job.kind, job.input, result, self._cache_ttl)
        return await self._finish(job, JobStatus.COMPLETED, result=result)

    async def _geocode_with_retry(self, job: GeocodeJob) -> dict[str, Any]:
        """Run the provider chain with exponential backoff on service errors.

        Raises:
            GeocodeNotFoundError: Immediately, without retrying.
            ProvidersExhaustedError: After the last attempt.
        """
        for attempt in range(self._max_attempts):
            try:
                return await self._geocode(job.kind, job.input)
            except ProvidersExhaustedError as e:
                if attempt == self._max_attempts - 1:
                    raise
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    f"Job {job.job_id} provider error (attempt {attempt + 1}/{self._max_attempts}), "
                    f"retrying in {delay}s: {e.message}"
                )
                await asyncio.sleep(delay)
        msg = "max_attempts must be at least 1"
        raise RuntimeError(msg)

    async def _finish(
        self,
        job: GeocodeJob,
        status: JobStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> GeocodeJob:
        job.advance(status, result=result, error=error)
        await save_job(self._store, job, self._job_ttl)
        await self._store.delete(inflight_key(job.kind, job.input))
        self.processed += 1
        if status == JobStatus.COMPLETED:
            logger.info(f"Job {job.job_id} completed ({job.kind})")
        else:
            logger.warning(f"Job {job.job_id} failed: {job.error}")
        return job


async def _sleep_until(stop: asyncio.Event, seconds: float) -> None:
    """Sleep for ``seconds`` or until ``stop`` is set, whichever comes first."""
    try:
        async with asyncio.timeout(seconds):
            await stop.wait()
    except TimeoutError:
        pass
