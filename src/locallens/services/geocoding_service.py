"""Geocoding service: cache-first job dispatch, short poll, and direct fallback.

A lookup is answered from the Result Store when possible, otherwise handed
to the worker pool through the broker and polled for a short window, and
finally computed directly against the provider chain. Every path ends in a
result or a surfaced provider error within one fallback call.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from locallens.core.background import SideEffectRunner
from locallens.core.config import Settings
from locallens.lib.broker import BrokerUnavailableError, RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.lib.geocoder import GeocodeJob, GeocodeKind, JobStatus, build_direct_geocoder, build_key
from locallens.lib.geocoder.base import GeocodingProviderError, ProvidersExhaustedError
from locallens.lib.geocoder.chain import DirectGeocodeFn
from locallens.lib.geocoder.keys import geocode_cache_key, inflight_key, job_key


class JobTimedOutError(Exception):
    """The job did not complete within the short-poll window."""

    def __init__(self, job_id: str, status: JobStatus | None) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} not completed in time (status={status or 'missing'})")


class ResolutionSource(StrEnum):
    """Where a resolved lookup came from."""

    CACHE = "cache"
    WORKER = "worker"
    DIRECT = "direct"


@dataclass
class JobDescriptor:
    """What a dispatch produced: a job id, its status and, when known, the result."""

    job_id: str
    status: JobStatus
    cached: bool = False
    result: dict[str, Any] | None = None
    source: ResolutionSource | None = None


@dataclass
class GeocodeResolution:
    """A resolved lookup."""

    kind: GeocodeKind
    result: dict[str, Any]
    source: ResolutionSource
    job_id: str | None = None
    cached: bool = False


# --- Result Store records ---------------------------------------------------


async def read_cached_result(store: ResultStore, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any] | None:
    """Read a completed lookup from the cache, or None on miss."""
    payload = await store.get(geocode_cache_key(kind, query))
    if payload is None:
        return None
    result = payload.get("result")
    return result if isinstance(result, dict) else None


async def write_cached_result(
    store: ResultStore,
    kind: GeocodeKind,
    query: dict[str, Any],
    result: dict[str, Any],
    ttl_seconds: int,
) -> bool:
    """Write a completed lookup to the cache. Idempotent per key."""
    payload = {"result": result, "cachedAt": int(time.time())}
    return await store.set(geocode_cache_key(kind, query), payload, ttl_seconds)


async def read_job(store: ResultStore, job_id: str) -> GeocodeJob | None:
    """Read a job status record, or None if missing, expired or unreadable."""
    payload = await store.get(job_key(job_id))
    if payload is None:
        return None
    try:
        return GeocodeJob.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed job record {job_id}: {e}")
        return None


async def save_job(
    store: ResultStore,
    job: GeocodeJob,
    ttl_seconds: int,
    *,
    only_from: frozenset[JobStatus] | None = None,
) -> bool:
    """Write a job status record unless that would move the stored record backwards.

    A missing or unreadable record is always replaced. A stored record is
    replaced only when ``job.status`` is a legal step forward from it (or the
    same non-terminal status), so a finished record never changes.

    Args:
        store: Result Store adapter.
        job: The record to write.
        ttl_seconds: Record TTL.
        only_from: If given, additionally require the stored status to be one of these.

    Returns:
        True if the record was written.
    """

    def _forward_only(current: dict[str, Any] | None) -> dict[str, Any] | None:
        if current is not None:
            try:
                stored = GeocodeJob.from_dict(current)
            except (KeyError, TypeError, ValueError):
                return job.to_dict()
            if only_from is not None and stored.status not in only_from:
                return None
            same = stored.status == job.status and not stored.status.is_terminal
            if not same and not stored.can_advance(job.status):
                return None
        return job.to_dict()

    written = await store.update(job_key(job.job_id), _forward_only, ttl_seconds)
    if not written:
        logger.debug(f"Job record {job.job_id} not written as {job.status}")
    return written


# --- Dispatcher ---------------------------------------------------------------


class JobDispatcher:
    """Decide whether a lookup is already answered or must be handed to a worker.

    Duplicate suppression is cache-hit based. Two callers racing on the same
    uncached key may both publish jobs; both converge on the same answer.

    Args:
        store: Result Store adapter.
        broker: Job broker.
        runner: Runner for best-effort writes.
        cache_ttl: TTL in seconds for completed lookups.
        job_ttl: TTL in seconds for job status records.
        inflight_ttl: TTL in seconds for in-flight markers.
    """

    def __init__(
        self,
        store: ResultStore,
        broker: RedisStreamBroker,
        runner: SideEffectRunner,
        *,
        cache_ttl: int = 86400,
        job_ttl: int = 900,
        inflight_ttl: int = 300,
    ) -> None:
        self.store = store
        self.broker = broker
        self._runner = runner
        self._cache_ttl = cache_ttl
        self._job_ttl = job_ttl
        self._inflight_ttl = inflight_ttl

    async def dispatch(self, kind: GeocodeKind, query: dict[str, Any]) -> JobDescriptor:
        """Answer from cache or publish a job.

        Args:
            kind: Lookup kind.
            query: Normalized lookup parameters.

        Returns:
            A completed descriptor on a cache hit, otherwise the queued
            (or reused in-flight) job.

        Raises:
            BrokerUnavailableError: If there is no asynchronous path right now.
        """
        key = build_key(kind, query)

        cached = await read_cached_result(self.store, kind, query)
        if cached is not None:
            logger.debug(f"Cache HIT | {key}")
            return self.record_completed(kind, query, cached, source=ResolutionSource.CACHE)
        logger.debug(f"Cache MISS | {key}")

        reused = await self._find_inflight(kind, query)
        if reused is not None and reused.status == JobStatus.COMPLETED:
            return reused

        if not await self.broker.is_available():
            raise BrokerUnavailableError("Broker probe failed")

        if reused is not None:
            logger.debug(f"Reusing in-flight job {reused.job_id} | {key}")
            return reused

        job = GeocodeJob(kind=kind, input=dict(query))
        # Queued record goes first so a fast worker's completed record is never overwritten
        await save_job(self.store, job, self._job_ttl)
        try:
            await self.broker.publish(job)
        except BrokerUnavailableError:
            # The entry may still have reached the stream; only a record no worker has touched is failed
            job.advance(JobStatus.FAILED, error="Broker publish failed")
            self._runner.submit(
                save_job(self.store, job, self._job_ttl, only_from=frozenset({JobStatus.QUEUED})),
                label=f"job-record {job.job_id}",
            )
            raise

        marker = {"jobId": job.job_id, "createdAt": job.created_at}
        self._runner.submit(
            self.store.set(inflight_key(kind, query), marker, self._inflight_ttl),
            label=f"inflight-marker {key}",
        )
        logger.info(f"Queued {kind} job {job.job_id} | {key}")
        return JobDescriptor(job_id=job.job_id, status=JobStatus.QUEUED)

    async def lookup(self, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any] | None:
        """Read the cached result for a lookup without dispatching anything."""
        return await read_cached_result(self.store, kind, query)

    def remember(self, kind: GeocodeKind, query: dict[str, Any], result: dict[str, Any]) -> None:
        """Schedule a best-effort cache write for a computed result."""
        self._runner.submit(
            write_cached_result(self.store, kind, query, result, self._cache_ttl),
            label=f"cache-write {build_key(kind, query)}",
        )

    def record_completed(
        self,
        kind: GeocodeKind,
        query: dict[str, Any],
        result: dict[str, Any],
        *,
        source: ResolutionSource = ResolutionSource.DIRECT,
    ) -> JobDescriptor:
        """Mint a completed job record so the status endpoint can serve ``result``."""
        cached = source == ResolutionSource.CACHE
        job = GeocodeJob(kind=kind, input=dict(query), cached=cached)
        job.advance(JobStatus.COMPLETED, result=result)
        self._runner.submit(save_job(self.store, job, self._job_ttl), label=f"job-record {job.job_id}")
        return JobDescriptor(job_id=job.job_id, status=job.status, cached=cached, result=result, source=source)

    async def get_job(self, job_id: str) -> GeocodeJob | None:
        """Current status record for ``job_id``, or None if unknown or expired."""
        return await read_job(self.store, job_id)

    async def invalidate(self, kind: GeocodeKind, query: dict[str, Any]) -> int | None:
        """Remove the cached result and in-flight marker for a lookup.

        Returns:
            Number of store keys removed, or None if the store could not be reached.
        """
        deleted = await self.store.delete(geocode_cache_key(kind, query), inflight_key(kind, query))
        if deleted is not None:
            logger.info(f"Cache INVALIDATE | {build_key(kind, query)} | removed={deleted}")
        return deleted

    async def _find_inflight(self, kind: GeocodeKind, query: dict[str, Any]) -> JobDescriptor | None:
        marker = await self.store.get(inflight_key(kind, query))
        if not marker or not marker.get("jobId"):
            return None
        job = await read_job(self.store, str(marker["jobId"]))
        if job is None or job.status == JobStatus.FAILED:
            return None
        source = ResolutionSource.WORKER if job.status == JobStatus.COMPLETED else None
        return JobDescriptor(
            job_id=job.job_id, status=job.status, cached=job.cached, result=job.result, source=source
        )


# --- Orchestrator -------------------------------------------------------------


class GeocodeOrchestrator:
    """Resolve lookups for synchronous callers.

    Start with a dispatch. A cached answer returns immediately; a queued job
    is polled for ``short_poll_window`` seconds (plus ``processing_grace``
    when a worker has already picked it up); anything else goes to the
    direct provider chain.

    Args:
        dispatcher: Job dispatcher.
        direct: Default direct geocode function (the provider chain).
        short_poll_window: Seconds to wait for a queued job.
        short_poll_interval: Seconds between job record reads while waiting.
        processing_grace: Extra seconds granted to a job already processing.
        provider_call_timeout: Upper bound in seconds for one direct call.
    """

    def __init__(
        self,
        dispatcher: JobDispatcher,
        direct: DirectGeocodeFn,
        *,
        short_poll_window: float = 1.0,
        short_poll_interval: float = 0.1,
        processing_grace: float = 0.0,
        provider_call_timeout: float | None = 10.0,
    ) -> None:
        self.dispatcher = dispatcher
        self._direct = direct
        self._short_poll_window = short_poll_window
        self._short_poll_interval = short_poll_interval
        self._processing_grace = processing_grace
        self._provider_call_timeout = provider_call_timeout

    async def resolve(
        self,
        kind: GeocodeKind,
        query: dict[str, Any],
        direct: DirectGeocodeFn | None = None,
        *,
        use_async: bool = True,
    ) -> GeocodeResolution:
        """Resolve one lookup.

        Args:
            kind: Lookup kind.
            query: Normalized lookup parameters.
            direct: Override for the direct geocode function.
            use_async: When False, skip the broker and go cache then direct.

        Returns:
            The resolved lookup.

        Raises:
            GeocodeNotFoundError: If providers definitively have no answer.
            ProvidersExhaustedError: If every provider failed.
        """
        direct_fn = direct or self._direct

        if not use_async:
            cached = await self.dispatcher.lookup(kind, query)
            if cached is not None:
                return GeocodeResolution(kind=kind, result=cached, source=ResolutionSource.CACHE, cached=True)
            return await self._fallback(kind, query, direct_fn)

        try:
            descriptor = await self.dispatcher.dispatch(kind, query)
        except BrokerUnavailableError as e:
            logger.warning(f"No async path for {kind} ({e}), going direct")
            return await self._fallback(kind, query, direct_fn)

        if descriptor.cached and descriptor.result is not None:
            return GeocodeResolution(
                kind=kind,
                result=descriptor.result,
                source=ResolutionSource.CACHE,
                job_id=descriptor.job_id,
                cached=True,
            )
        if descriptor.status == JobStatus.COMPLETED and descriptor.result is not None:
            return GeocodeResolution(
                kind=kind, result=descriptor.result, source=ResolutionSource.WORKER, job_id=descriptor.job_id
            )

        try:
            job = await self._short_poll(descriptor.job_id)
        except JobTimedOutError as e:
            logger.warning(f"{e}, going direct")
            return await self._fallback(kind, query, direct_fn)

        if job.status == JobStatus.FAILED or job.result is None:
            logger.warning(f"Job {job.job_id} failed ({job.error}), going direct")
            return await self._fallback(kind, query, direct_fn)
        return GeocodeResolution(kind=kind, result=job.result, source=ResolutionSource.WORKER, job_id=job.job_id)

    async def start(self, kind: GeocodeKind, query: dict[str, Any]) -> JobDescriptor:
        """Dispatch without waiting, for callers that poll the status endpoint.

        Falls back to a direct lookup when there is no async path; the
        returned descriptor is then already completed.
        """
        try:
            return await self.dispatcher.dispatch(kind, query)
        except BrokerUnavailableError as e:
            logger.warning(f"No async path for deferred {kind} ({e}), going direct")
        resolution = await self._fallback(kind, query, self._direct)
        return self.dispatcher.record_completed(kind, query, resolution.result)

    async def get_job(self, job_id: str) -> GeocodeJob | None:
        return await self.dispatcher.get_job(job_id)

    async def invalidate(self, kind: GeocodeKind, query: dict[str, Any]) -> int | None:
        return await self.dispatcher.invalidate(kind, query)

    async def _short_poll(self, job_id: str) -> GeocodeJob:
        """Wait briefly for a job to reach a terminal state.

        Raises:
            JobTimedOutError: If the job is missing or still pending afterwards.
        """
        job = await self._wait_for_job(job_id, self._short_poll_window)
        if job is not None and job.status == JobStatus.PROCESSING and self._processing_grace > 0:
            logger.debug(f"Job {job_id} is processing, granting {self._processing_grace}s grace")
            job = await self._wait_for_job(job_id, self._processing_grace) or job

        if job is None or not job.status.is_terminal:
            raise JobTimedOutError(job_id, job.status if job else None)
        return job

    async def _wait_for_job(self, job_id: str, window: float) -> GeocodeJob | None:
        """Re-read the job record until terminal or until ``window`` elapses.

        Returns:
            The last record seen (None if it was never found).
        """
        job: GeocodeJob | None = None
        try:
            async with asyncio.timeout(window):
                while True:
                    job = await self.dispatcher.get_job(job_id)
                    if job is not None and job.status.is_terminal:
                        return job
                    await asyncio.sleep(self._short_poll_interval)
        except TimeoutError:
            pass
        return job

    async def _fallback(
        self, kind: GeocodeKind, query: dict[str, Any], direct_fn: DirectGeocodeFn
    ) -> GeocodeResolution:
        if self._provider_call_timeout is None:
            result = await direct_fn(kind, query)
        else:
            try:
                async with asyncio.timeout(self._provider_call_timeout):
                    result = await direct_fn(kind, query)
            except TimeoutError as e:
                error = GeocodingProviderError("direct", f"Timed out after {self._provider_call_timeout}s")
                raise ProvidersExhaustedError(kind, [error]) from e

        self.dispatcher.remember(kind, query, result)
        return GeocodeResolution(kind=kind, result=result, source=ResolutionSource.DIRECT)


def build_orchestrator(
    settings: Settings,
    store: ResultStore,
    broker: RedisStreamBroker,
    runner: SideEffectRunner,
    direct: DirectGeocodeFn | None = None,
) -> GeocodeOrchestrator:
    """Wire a dispatcher and orchestrator from settings."""
    dispatcher = JobDispatcher(
        store,
        broker,
        runner,
        cache_ttl=settings.geocode_cache_ttl,
        job_ttl=settings.geocode_job_ttl,
        inflight_ttl=settings.geocode_inflight_ttl,
    )
    return GeocodeOrchestrator(
        dispatcher,
        direct or build_direct_geocoder(settings),
        short_poll_window=settings.short_poll_window,
        short_poll_interval=settings.short_poll_interval,
        processing_grace=settings.processing_grace,
        provider_call_timeout=settings.provider_call_timeout,
    )
