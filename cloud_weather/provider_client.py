"""
Provider clients for Cloud Weather

A provider is one redundant deployment (aws, azure, gcp, ...). Each one
queries every source itself and returns its own LocationAggregate.
One parameterised client per transport replaces per-deployment copies:

- LocalProviderClient:  runs the configured SourceFetchers in-process
- RemoteProviderClient: calls another deployment's /weather endpoint

Concurrency: sources for a location, and locations in a batch, are all
issued together and joined with a wait-for-all barrier. One failing
branch never cancels or short-circuits its siblings.
"""

import asyncio
from abc import ABC, abstractmethod
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from cloud_weather.credentials import Credentials
from cloud_weather.ensemble import LocationAggregator
from cloud_weather.errors import CloudWeatherError, FetchFailure, NoDataAvailable
from cloud_weather.models import (
    BatchResult,
    Location,
    LocationAggregate,
    LocationFailure,
    ProviderResult,
    ProviderStatus,
    utcnow,
)
from cloud_weather.resilience import categorize_error
from cloud_weather.sources.base import SourceFetcher
from cloud_weather.storage import StoreAndForget, StoredRecord

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 30.0


class ProviderClient(ABC):
    """Common batch / health logic shared by every provider transport."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def fetch_location(self, location: Location, credentials: Credentials) -> LocationAggregate:
        ...

    async def fetch_many(self, locations: Sequence[Location], credentials: Credentials) -> BatchResult:
        """
        Fetch every location concurrently.

        A failed location is reported next to the successes and never
        aborts its siblings.
        """
        results = await asyncio.gather(
            *(self.fetch_location(location, credentials) for location in locations),
            return_exceptions=True,
        )

        successes: List[LocationAggregate] = []
        failures: List[LocationFailure] = []
        for location, result in zip(locations, results):
            if isinstance(result, LocationAggregate):
                successes.append(result)
            elif isinstance(result, CloudWeatherError):
                logger.warning(f"[{self.__class__.__name__}:{self.name}] {location.id} failed: {result}")
                failures.append(LocationFailure(location, str(result)))
            elif isinstance(result, Exception):
                logger.error(
                    f"[{self.__class__.__name__}:{self.name}] {location.id} crashed: {result!r}",
                    exc_info=result,
                )
                failures.append(LocationFailure(location, f"{type(result).__name__}: {result}"))
            else:
                raise result

        logger.info(
            f"[{self.__class__.__name__}:{self.name}] Batch complete: "
            f"{len(successes)} ok, {len(failures)} failed"
        )
        return BatchResult(tuple(successes), tuple(failures))

    async def invoke(self, locations: Sequence[Location], credentials: Credentials) -> ProviderResult:
        """
        Run a batch and wrap it with latency and health metadata.

        Never raises for provider-side problems: an unreachable provider
        comes back as an OFFLINE result.
        """
        start = time.perf_counter()
        try:
            batch = await self.fetch_many(locations, credentials)
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.error(f"[{self.__class__.__name__}:{self.name}] Provider failed: {e}")
            return ProviderResult(
                provider=self.name,
                latency_ms=latency_ms,
                status=ProviderStatus.OFFLINE,
                error=str(e),
            )
        latency_ms = (time.perf_counter() - start) * 1000

        if batch.successes and not batch.failures:
            status = ProviderStatus.HEALTHY
        elif batch.successes:
            status = ProviderStatus.DEGRADED
        else:
            status = ProviderStatus.OFFLINE

        timestamp = max((a.timestamp for a in batch.successes), default=None)
        return ProviderResult(
            provider=self.name,
            aggregates=batch.successes,
            failures=batch.failures,
            timestamp=timestamp,
            latency_ms=latency_ms,
            status=status,
        )


class LocalProviderClient(ProviderClient):
    """
    Runs this deployment's sources in-process.

    Args:
        name: Deployment name ("aws", "azure", "gcp", ...)
        sources: SourceFetchers in attempt order (primary first)
        aggregator: LocationAggregator to merge the readings
        dispatcher: Optional store-and-forget writer for each aggregate
        clock: Source of "now"; injectable for deterministic tests
    """

    def __init__(
        self,
        name: str,
        sources: Sequence[SourceFetcher],
        aggregator: Optional[LocationAggregator] = None,
        dispatcher: Optional[StoreAndForget] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(name)
        self.sources = list(sources)
        self.aggregator = aggregator or LocationAggregator()
        self.dispatcher = dispatcher
        self.clock = clock
        logger.info(f"[LocalProviderClient:{name}] Sources: {[s.name for s in self.sources]}")

    async def fetch_location(self, location: Location, credentials: Credentials) -> LocationAggregate:
        """
        Query all sources concurrently, then aggregate.

        Raises:
            NoDataAvailable: if every source failed
        """
        results = await asyncio.gather(
            *(s.fetch_or_failure(location.latitude, location.longitude, credentials)
              for s in self.sources)
        )
        aggregate = self.aggregator.aggregate(location, results, provider=self.name, now=self.clock())

        if self.dispatcher is not None:
            self.dispatcher.submit(StoredRecord.for_location(aggregate))

        return aggregate


def parse_provider_response(body, provider: str) -> Tuple[LocationAggregate, ...]:
    """
    Parse a provider response body into LocationAggregates.

    Accepts both the batch shape ({"data": [...]}) and a bare single
    aggregate. Raises ValueError/KeyError/TypeError when malformed.
    """
    if not isinstance(body, dict):
        raise TypeError("provider response must be a JSON object")
    if body.get("success") is False:
        raise ValueError(f"provider reported failure: {body.get('error', 'unknown error')}")

    data = body.get("data", body)
    items = data if isinstance(data, list) else [data]
    return tuple(LocationAggregate.from_dict(item, provider) for item in items)


class RemoteProviderClient(ProviderClient):
    """
    Calls another deployment's weather endpoint over HTTP.

    GET {base_url}/weather?location=<id>&lat=<lat>&lon=<lon>&name=<name>
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
    ):
        super().__init__(name)
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout
        logger.info(f"[RemoteProviderClient:{name}] Endpoint: {self.base_url}/weather")

    async def fetch_location(self, location: Location, credentials: Credentials) -> LocationAggregate:
        params = {
            "location": location.id,
            "lat": location.latitude,
            "lon": location.longitude,
            "name": location.name,
        }
        try:
            resp = await self.client.get(
                f"{self.base_url}/weather",
                params=params,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            aggregates = parse_provider_response(resp.json(), self.name)
        except Exception as e:
            kind, cause = categorize_error(e)
            raise FetchFailure(self.name, kind, cause) from e

        for aggregate in aggregates:
            if aggregate.location.id == location.id:
                return aggregate
        if len(aggregates) == 1:
            # Remote deployments may use their own id scheme
            return replace(aggregates[0], location=location)
        raise NoDataAvailable(location.id)
