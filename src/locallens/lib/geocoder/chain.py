"""Direct (synchronous-path) geocoding across an ordered list of providers."""

import asyncio
from typing import Any, Protocol

from loguru import logger

from locallens.lib.geocoder.base import (
    BaseGeocoder,
    GeocodeKind,
    GeocodeNotFoundError,
    GeocodingProviderError,
    ProvidersExhaustedError,
)


class DirectGeocodeFn(Protocol):
    """A callable that computes one lookup synchronously (from the caller's view)."""

    async def __call__(self, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any]: ...


class DirectGeocoder:
    """Try providers in fallback order until one returns a match.

    A provider answering "no match" or failing with a service error hands
    over to the next provider. When the chain runs out, a definitive "no
    match" from any provider wins over service errors.

    Args:
        providers: Providers in fallback order.
        timeout: Optional upper bound in seconds for the whole chain.
    """

    def __init__(self, providers: list[BaseGeocoder], timeout: float | None = None) -> None:
        self._providers = providers
        self._timeout = timeout

    @property
    def provider_names(self) -> list[str]:
        return [p.provider_name for p in self._providers]

    async def __call__(self, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any]:
        """Resolve ``kind`` for ``query``.

        Raises:
            GeocodeNotFoundError: If a provider definitively found no match.
            ProvidersExhaustedError: If every provider failed (or timed out).
        """
        if self._timeout is None:
            return await self._run_chain(kind, query)
        try:
            async with asyncio.timeout(self._timeout):
                return await self._run_chain(kind, query)
        except TimeoutError as e:
            logger.warning(f"Direct {kind} lookup exceeded {self._timeout}s")
            error = GeocodingProviderError("chain", f"Timed out after {self._timeout}s")
            raise ProvidersExhaustedError(kind, [error]) from e

    async def _run_chain(self, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any]:
        errors: list[GeocodingProviderError] = []
        not_found = False

        for provider in self._providers:
            try:
                result = await provider.lookup(kind, query)
            except GeocodingProviderError as e:
                logger.warning(f"Provider {provider.provider_name} failed for {kind}: {e.message}")
                errors.append(e)
                continue

            if result is not None:
                logger.debug(f"Provider {provider.provider_name} resolved {kind}")
                return result

            logger.debug(f"Provider {provider.provider_name} has no {kind} match")
            not_found = True

        if not_found:
            raise GeocodeNotFoundError(kind, query)
        raise ProvidersExhaustedError(kind, errors)
