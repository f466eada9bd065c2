"""
Request orchestration for Cloud Weather

Wires the core together and produces the response shapes callers
depend on. Collaborators (HTTP client, sources, sink, credentials,
geocoder) are built once by ``build_service`` and passed in explicitly.

Flow for one request:
1. Retrieve credentials (fatal on failure, before any fetch)
2. Resolve ByName refs through the geocoder, once
3. Invoke every selected provider concurrently, wait for all
4. Cross-cloud aggregation (fatal if no provider contributed)
5. Store-and-forget the aggregate for single-location requests
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from cloud_weather.config import Settings
from cloud_weather.credentials import (
    Credentials,
    EnvCredentialsProvider,
    SecretFileCredentialsProvider,
)
from cloud_weather.cross_cloud import CrossCloudAggregate, CrossCloudAggregator
from cloud_weather.ensemble import LocationAggregator
from cloud_weather.errors import FetchFailure
from cloud_weather.models import (
    AggregationRequest,
    ByCoordinates,
    ByName,
    Location,
    LocationRef,
    ProviderResult,
    isoformat,
    utcnow,
)
from cloud_weather.provider_client import (
    LocalProviderClient,
    ProviderClient,
    RemoteProviderClient,
)
from cloud_weather.resilience import RetryConfig
from cloud_weather.sources import DEFAULT_SOURCES, OpenWeatherGeocoder
from cloud_weather.storage import MemorySink, SqliteSink, StoreAndForget, StoredRecord

logger = logging.getLogger(__name__)


@dataclass
class AggregationResponse:
    """Successful response: the aggregate plus execution metadata."""
    aggregate: CrossCloudAggregate
    execution_time_ms: float
    location: str
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": True,
            "timestamp": isoformat(self.aggregate.timestamp),
            "executionTimeMs": round(self.execution_time_ms, 1),
            "cloudProviders": list(self.aggregate.providers),
            "failedProviders": list(self.aggregate.failed_providers),
            "location": self.location,
            "aggregatedData": self.aggregate.to_dict(),
        }
        if self.errors:
            data["errors"] = dict(self.errors)
        return data


def error_response(error: Exception, timestamp: datetime, execution_time_ms: float) -> Dict[str, Any]:
    """Explicit failure body. Never carries a placeholder reading."""
    return {
        "success": False,
        "error": str(error),
        "timestamp": isoformat(timestamp),
        "executionTimeMs": round(execution_time_ms, 1),
    }


def provider_response(result: ProviderResult, include_raw: bool = False) -> Dict[str, Any]:
    """Body a deployment's own /weather endpoint returns."""
    total = len(result.aggregates) + len(result.failures)
    data: Dict[str, Any] = {
        "success": result.succeeded,
        "timestamp": isoformat(result.timestamp or utcnow()),
        "cloudProvider": result.provider,
        "executionTimeMs": round(result.latency_ms, 1),
        "summary": {
            "total": total,
            "successful": len(result.aggregates),
            "failed": len(result.failures),
        },
        "data": [a.to_dict(include_raw=include_raw) for a in result.aggregates],
    }
    if result.failures:
        data["errors"] = [f.to_dict() for f in result.failures]
    if result.error:
        data["error"] = result.error
    return data


class WeatherAggregationService:
    """
    Entry point of the aggregation core.

    Args:
        providers: Provider clients in request order
        credentials_provider: Object with ``async get_credentials()``
        geocoder: Object with ``async resolve(name, credentials)``
        dispatcher: Optional store-and-forget writer for aggregates
        aggregator: CrossCloudAggregator (injectable for tests)
        clock: Source of "now"
    """

    def __init__(
        self,
        providers: Sequence[ProviderClient],
        credentials_provider,
        geocoder=None,
        dispatcher: Optional[StoreAndForget] = None,
        aggregator: Optional[CrossCloudAggregator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.providers = list(providers)
        self.credentials_provider = credentials_provider
        self.geocoder = geocoder
        self.dispatcher = dispatcher
        self.aggregator = aggregator or CrossCloudAggregator()
        self.clock = clock

    def provider(self, name: str) -> ProviderClient:
        for client in self.providers:
            if client.name == name:
                return client
        raise KeyError(f"Unknown provider: {name}")

    def select_providers(self, names: Optional[Sequence[str]]) -> List[ProviderClient]:
        if not names:
            return list(self.providers)
        wanted = {n.strip().lower() for n in names}
        selected = [p for p in self.providers if p.name in wanted]
        unknown = wanted - {p.name for p in selected}
        if unknown:
            logger.warning(f"[WeatherAggregationService] Ignoring unknown providers: {sorted(unknown)}")
        return selected

    async def resolve(self, ref: LocationRef, credentials: Credentials) -> Location:
        if isinstance(ref, ByCoordinates):
            return ref.to_location()
        if isinstance(ref, ByName):
            if self.geocoder is None:
                raise ValueError(f"Cannot resolve '{ref.name}': no geocoder configured")
            return await self.geocoder.resolve(ref.name, credentials)
        raise TypeError(f"Unsupported location reference: {ref!r}")

    async def resolve_all(
        self, refs: Sequence[LocationRef], credentials: Credentials
    ) -> Tuple[List[Location], Dict[str, str]]:
        """
        Resolve every ref concurrently.

        Returns the resolved locations and a {ref label: cause} map of
        the ones that failed. Raises the first failure when none resolve.
        """
        results = await asyncio.gather(
            *(self.resolve(ref, credentials) for ref in refs), return_exceptions=True
        )
        locations: List[Location] = []
        errors: Dict[str, str] = {}
        first_error: Optional[BaseException] = None
        for ref, result in zip(refs, results):
            if isinstance(result, Location):
                locations.append(result)
                continue
            if not isinstance(result, (FetchFailure, ValueError)):
                raise result
            first_error = first_error or result
            errors[f"location:{_ref_label(ref)}"] = str(result)

        if not locations and first_error is not None:
            raise first_error
        return locations, errors

    async def aggregate(self, request: AggregationRequest) -> AggregationResponse:
        """
        Run one aggregation request.

        Raises:
            CredentialsUnavailable: keys could not be loaded
            FetchFailure: the only requested location could not be geocoded
            NoProviderDataAvailable: every provider failed
        """
        start = time.perf_counter()

        credentials = await self.credentials_provider.get_credentials()
        locations, errors = await self.resolve_all(request.locations, credentials)

        clients = self.select_providers(request.providers)
        logger.info(
            f"[WeatherAggregationService] Fetching {len(locations)} location(s) "
            f"from {len(clients)} provider(s): {[c.name for c in clients]}"
        )

        results: List[ProviderResult] = list(
            await asyncio.gather(*(c.invoke(locations, credentials) for c in clients))
        )
        for result in results:
            if not result.succeeded:
                errors[result.provider] = result.failure_cause()

        # Taken after the join so provider timestamps are never in the future
        now = self.clock()
        aggregate = self.aggregator.aggregate(results, now=now, include_raw=request.include_raw)

        location_label = locations[0].id if len(locations) == 1 else "multiple"
        if self.dispatcher is not None and len(locations) == 1:
            self.dispatcher.submit(
                StoredRecord.for_aggregate(aggregate.to_dict(), location_label, now)
            )

        execution_time_ms = (time.perf_counter() - start) * 1000
        logger.info(f"[WeatherAggregationService] Aggregation completed in {execution_time_ms:.0f}ms")

        return AggregationResponse(
            aggregate=aggregate,
            execution_time_ms=execution_time_ms,
            location=location_label,
            errors=errors,
        )

    async def run_provider(
        self, name: str, refs: Sequence[LocationRef], include_raw: bool = False
    ) -> Dict[str, Any]:
        """Serve one deployment's own endpoint: provider response body."""
        credentials = await self.credentials_provider.get_credentials()
        locations, _ = await self.resolve_all(refs, credentials)
        result = await self.provider(name).invoke(locations, credentials)
        return provider_response(result, include_raw=include_raw)


def _ref_label(ref: LocationRef) -> str:
    if isinstance(ref, ByName):
        return ref.name
    return ref.to_location().id


def build_service(settings: Settings, client: httpx.AsyncClient) -> WeatherAggregationService:
    """Construct every collaborator once, at process start."""
    if settings.persistence == "sqlite":
        sink = SqliteSink(settings.db_path)
    else:
        sink = MemorySink()
    dispatcher = StoreAndForget(sink)

    if settings.credentials_file:
        credentials_provider = SecretFileCredentialsProvider(settings.credentials_file)
    else:
        credentials_provider = EnvCredentialsProvider()

    retry_config = RetryConfig(max_retries=settings.source_retries)
    aggregator = LocationAggregator()

    providers: List[ProviderClient] = []
    for endpoint in settings.providers:
        if endpoint.is_remote:
            providers.append(RemoteProviderClient(
                endpoint.name, endpoint.url, client, timeout=settings.provider_timeout,
            ))
        else:
            sources = [
                source_cls(client, timeout=settings.source_timeout, retry_config=retry_config)
                for source_cls in DEFAULT_SOURCES
            ]
            providers.append(LocalProviderClient(
                endpoint.name, sources, aggregator=aggregator, dispatcher=dispatcher,
            ))

    geocoder = OpenWeatherGeocoder(client, timeout=settings.source_timeout)

    return WeatherAggregationService(
        providers=providers,
        credentials_provider=credentials_provider,
        geocoder=geocoder,
        dispatcher=dispatcher,
    )
