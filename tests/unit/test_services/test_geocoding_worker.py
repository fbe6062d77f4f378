"""Unit tests for the geocoding worker."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, patch

import pytest

from locallens.core.config import Settings
from locallens.lib.broker import BrokerMessage, RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.lib.geocoder import GeocodeJob, GeocodeKind, JobStatus
from locallens.lib.geocoder.base import GeocodeNotFoundError, GeocodingProviderError, ProvidersExhaustedError
from locallens.lib.geocoder.keys import inflight_key, job_key
from locallens.services.geocoding_service import read_cached_result, read_job, save_job
from locallens.services.geocoding_worker import GeocodeWorker, default_consumer_name

CITY = GeocodeKind.CITY
QUERY = {"pincode": "07307"}
RESULT = {"city": "Jersey City", "provider": "google"}


def _exhausted() -> ProvidersExhaustedError:
    return ProvidersExhaustedError(CITY, [GeocodingProviderError("google", "HTTP 503", status_code=503)])


def _worker(broker: RedisStreamBroker, store: ResultStore, geocode: AsyncMock, **kwargs) -> GeocodeWorker:
    kwargs.setdefault("retry_base_delay", 0.0)
    return GeocodeWorker(broker, store, geocode, consumer="worker-1", block_ms=10, **kwargs)


class TestProcess:
    """Tests for processing a single job."""

    async def test_success_writes_result_and_cache(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        await save_job(store, job, 900)
        await store.set(inflight_key(CITY, QUERY), {"jobId": job.job_id}, 300)
        worker = _worker(broker, store, AsyncMock(return_value=RESULT))

        done = await worker.process(job)

        assert done.status == JobStatus.COMPLETED
        stored = await read_job(store, job.job_id)
        assert stored is not None
        assert stored.status == JobStatus.COMPLETED
        assert stored.result == RESULT
        assert stored.completed_at is not None
        assert await read_cached_result(store, CITY, QUERY) == RESULT
        assert await store.get(inflight_key(CITY, QUERY)) is None
        assert worker.processed == 1

    async def test_not_found_fails_without_retry(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        geocode = AsyncMock(side_effect=GeocodeNotFoundError(CITY, QUERY))
        worker = _worker(broker, store, geocode, max_attempts=3)

        done = await worker.process(GeocodeJob(kind=CITY, input=dict(QUERY)))

        assert done.status == JobStatus.FAILED
        assert "No city result" in (done.error or "")
        geocode.assert_awaited_once()
        assert await read_cached_result(store, CITY, QUERY) is None

    async def test_service_error_retried_with_backoff(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        geocode = AsyncMock(side_effect=[_exhausted(), _exhausted(), RESULT])
        worker = _worker(broker, store, geocode, max_attempts=3, retry_base_delay=0.5)

        with patch("locallens.services.geocoding_worker.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            done = await worker.process(GeocodeJob(kind=CITY, input=dict(QUERY)))

        assert done.status == JobStatus.COMPLETED
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]

    async def test_retries_exhausted(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        geocode = AsyncMock(side_effect=_exhausted())
        worker = _worker(broker, store, geocode, max_attempts=2)

        done = await worker.process(GeocodeJob(kind=CITY, input=dict(QUERY)))

        assert done.status == JobStatus.FAILED
        assert "HTTP 503" in (done.error or "")
        assert geocode.await_count == 2

    async def test_unexpected_error_fails_job(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        worker = _worker(broker, store, AsyncMock(side_effect=KeyError("lat")))

        done = await worker.process(GeocodeJob(kind=CITY, input=dict(QUERY)))

        assert done.status == JobStatus.FAILED
        assert done.error == "Internal error: KeyError"

    async def test_terminal_job_is_skipped(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        job.advance(JobStatus.COMPLETED, result=RESULT)
        await save_job(store, job, 900)
        geocode = AsyncMock()
        worker = _worker(broker, store, geocode)

        queued_copy = GeocodeJob(kind=CITY, input=dict(QUERY), job_id=job.job_id)
        done = await worker.process(queued_copy)

        assert done.status == JobStatus.COMPLETED
        geocode.assert_not_awaited()
        assert worker.processed == 0

    async def test_failed_record_is_not_revived(
        self, broker: RedisStreamBroker, store: ResultStore, fake_redis
    ) -> None:
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        await save_job(store, job, 900)
        failed = GeocodeJob.from_dict(job.to_dict()).advance(JobStatus.FAILED, error="Broker publish failed")
        # The failed record lands after the worker's read but before its processing write
        fake_redis.before_exec = lambda: fake_redis.write_now(job_key(job.job_id), json.dumps(failed.to_dict()))
        geocode = AsyncMock(return_value=RESULT)
        worker = _worker(broker, store, geocode)

        done = await worker.process(job)

        assert done.status == JobStatus.FAILED
        geocode.assert_not_awaited()
        assert worker.processed == 0
        stored = await read_job(store, job.job_id)
        assert stored is not None
        assert stored.status == JobStatus.FAILED
        assert stored.error == "Broker publish failed"

    async def test_redelivered_processing_job(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        job.advance(JobStatus.PROCESSING)
        await save_job(store, job, 900)
        worker = _worker(broker, store, AsyncMock(return_value=RESULT))

        done = await worker.process(GeocodeJob(kind=CITY, input=dict(QUERY), job_id=job.job_id))

        assert done.status == JobStatus.COMPLETED

    async def test_expired_job_not_processed(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        geocode = AsyncMock(return_value=RESULT)
        worker = _worker(broker, store, geocode, max_age=60)
        job = GeocodeJob(kind=CITY, input=dict(QUERY), created_at=int(time.time()) - 120)

        done = await worker.process(job)

        assert done.status == JobStatus.FAILED
        assert done.error == "Job expired before processing"
        geocode.assert_not_awaited()

    async def test_processing_state_visible(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        seen: list[JobStatus] = []
        job = GeocodeJob(kind=CITY, input=dict(QUERY))

        async def geocode(kind: GeocodeKind, query: dict) -> dict:
            record = await read_job(store, job.job_id)
            assert record is not None
            seen.append(record.status)
            return RESULT

        await _worker(broker, store, geocode).process(job)
        assert seen == [JobStatus.PROCESSING]


class TestRun:
    """Tests for the consume loop."""

    async def test_consumes_and_acks(self, live_broker: RedisStreamBroker, store: ResultStore, broker_redis) -> None:
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        await save_job(store, job, 900)
        await live_broker.publish(job)
        worker = _worker(live_broker, store, AsyncMock(return_value=RESULT))

        stop = asyncio.Event()
        task = asyncio.create_task(worker.run(stop))
        for _ in range(100):
            if worker.processed:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert worker.processed == 1
        assert "xack" in broker_redis.calls
        assert broker_redis.groups["geocoding:requests"]["geocoding-workers"]["pending"] == {}
        # Consumer is deregistered on shutdown
        assert await live_broker.is_available() is False

    async def test_backlog_processed_first(self, broker: RedisStreamBroker, store: ResultStore) -> None:
        await broker.ensure_group()
        job = GeocodeJob(kind=CITY, input=dict(QUERY))
        await broker.publish(job)
        # A previous run read the entry but never acknowledged it
        stale = await broker.consume("worker-1")
        assert len(stale) == 1

        worker = _worker(broker, store, AsyncMock(return_value=RESULT))
        stop = asyncio.Event()
        task = asyncio.create_task(worker.run(stop))
        for _ in range(100):
            if worker.processed:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        stored = await read_job(store, job.job_id)
        assert stored is not None
        assert stored.status == JobStatus.COMPLETED

    async def test_malformed_entry_acked(self, broker: RedisStreamBroker, store: ResultStore, broker_redis) -> None:
        await broker.ensure_group()
        geocode = AsyncMock()
        worker = _worker(broker, store, geocode)

        await worker.handle(BrokerMessage(message_id="1-1", job=None))

        geocode.assert_not_awaited()
        assert broker_redis.calls[-1] == "xack"

    async def test_unreachable_broker_at_startup(self, down_redis, store: ResultStore) -> None:
        from locallens.lib.broker import BrokerUnavailableError
        from locallens.lib.redis_client import LazyRedisClient

        broker = RedisStreamBroker(LazyRedisClient("redis://test", client=down_redis))
        worker = _worker(broker, store, AsyncMock())
        with pytest.raises(BrokerUnavailableError):
            await worker.run(asyncio.Event())

    async def test_read_failures_retried_until_stop(
        self, live_broker: RedisStreamBroker, store: ResultStore, broker_redis
    ) -> None:
        from redis.exceptions import ConnectionError as RedisConnectionError

        broker_redis.xreadgroup = AsyncMock(side_effect=RedisConnectionError("Connection reset"))
        worker = _worker(live_broker, store, AsyncMock())
        stop = asyncio.Event()

        with patch("locallens.services.geocoding_worker.RECONNECT_DELAY", 0.01):
            task = asyncio.create_task(worker.run(stop))
            await asyncio.sleep(0.1)
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

        assert broker_redis.xreadgroup.await_count >= 2
        assert "xgroup_delconsumer" in broker_redis.calls


class TestConstruction:
    """Tests for worker wiring."""

    def test_from_settings(self, settings: Settings, broker: RedisStreamBroker, store: ResultStore) -> None:
        worker = GeocodeWorker.from_settings(settings, broker, store, AsyncMock(), consumer="w-9")
        assert worker.consumer == "w-9"
        assert worker._max_attempts == settings.worker_max_attempts
        assert worker._job_ttl == settings.geocode_job_ttl

    def test_default_consumer_names_are_unique(self) -> None:
        assert default_consumer_name() != default_consumer_name()
