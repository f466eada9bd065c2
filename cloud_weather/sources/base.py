"""
Base class for external weather sources.

A SourceFetcher calls one API for a coordinate pair and normalizes the
reply into a Reading in canonical units (Celsius, percent, hPa, m/s,
degrees, metres). Every failure is surfaced as a FetchFailure carrying
a human readable cause.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional, Union

import httpx

from cloud_weather.credentials import Credentials
from cloud_weather.errors import FailureKind, FetchFailure
from cloud_weather.models import Reading, SourceId
from cloud_weather.resilience import RetryConfig, categorize_error, with_retry

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TIMEOUT = 10.0

KMH_PER_MS = 3.6


def dig(data: Any, *keys) -> Any:
    """Walk nested dicts/lists, returning None on any missing step."""
    for key in keys:
        if isinstance(data, dict):
            data = data.get(key)
        elif isinstance(data, list) and isinstance(key, int) and -len(data) <= key < len(data):
            data = data[key]
        else:
            return None
        if data is None:
            return None
    return data


def scaled(value: Any, factor: float) -> Optional[float]:
    """Multiply a possibly-absent value by a unit factor."""
    if value is None:
        return None
    return float(value) * factor


class SourceFetcher(ABC):
    """
    One external weather API.

    Subclasses set ``source_id`` and implement ``_fetch``. The shared
    httpx client is injected so all sources reuse one connection pool.
    """

    source_id: SourceId

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = DEFAULT_SOURCE_TIMEOUT,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.client = client
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()

    @property
    def name(self) -> str:
        return self.source_id.value

    async def fetch(self, lat: float, lon: float, credentials: Credentials) -> Reading:
        """
        Fetch and normalize one reading.

        Raises:
            FetchFailure: network, timeout, auth, not_found or malformed
        """
        api_key = credentials.key_for(self.source_id)
        if not api_key:
            raise FetchFailure(self.name, FailureKind.AUTH, "No API key configured")

        call = self._fetch
        if self.retry_config.max_retries > 0:
            call = with_retry(self.retry_config, self.name)(call)

        try:
            return await call(lat, lon, api_key)
        except FetchFailure:
            raise
        except Exception as e:
            kind, cause = categorize_error(e)
            raise FetchFailure(self.name, kind, cause) from e

    async def fetch_or_failure(
        self, lat: float, lon: float, credentials: Credentials
    ) -> Union[Reading, FetchFailure]:
        """Like fetch(), but hands the failure back as a value."""
        try:
            reading = await self.fetch(lat, lon, credentials)
        except FetchFailure as failure:
            logger.warning(f"[{self.__class__.__name__}] {failure}")
            return failure
        logger.debug(
            f"[{self.__class__.__name__}] ({lat}, {lon}): "
            f"temp={reading.temperature} humidity={reading.humidity}"
        )
        return reading

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        resp = await self.client.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    @abstractmethod
    async def _fetch(self, lat: float, lon: float, api_key: str) -> Reading:
        ...
