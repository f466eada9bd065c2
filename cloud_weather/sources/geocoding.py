"""
OpenWeather direct geocoding.

Resolves a free-text place name to a Location once, at the request
boundary, before anything enters the aggregation core.
"""

import logging
import re

import httpx

from cloud_weather.credentials import Credentials
from cloud_weather.errors import FailureKind, FetchFailure
from cloud_weather.models import Location, SourceId
from cloud_weather.resilience import categorize_error
from cloud_weather.sources.base import DEFAULT_SOURCE_TIMEOUT

logger = logging.getLogger(__name__)


def location_id(name: str, country: str) -> str:
    """'New York', 'US' -> 'new-york-us'"""
    return re.sub(r"\s+", "-", f"{name} {country}".strip().lower())


class OpenWeatherGeocoder:
    """Geocoder backed by api.openweathermap.org/geo/1.0/direct."""

    BASE_URL = "https://api.openweathermap.org/geo/1.0/direct"
    NAME = "geocoder"

    def __init__(self, client: httpx.AsyncClient, timeout: float = DEFAULT_SOURCE_TIMEOUT):
        self.client = client
        self.timeout = timeout

    async def resolve(self, name: str, credentials: Credentials) -> Location:
        """
        Resolve a place name.

        Raises:
            FetchFailure: kind NOT_FOUND when nothing matches, or the
            transport/parse kind on any other failure
        """
        api_key = credentials.key_for(SourceId.OPENWEATHER)
        params = {"q": name, "limit": 1, "appid": api_key}

        try:
            resp = await self.client.get(self.BASE_URL, params=params, timeout=self.timeout)
            resp.raise_for_status()
            matches = resp.json()
            if not matches:
                raise FetchFailure(self.NAME, FailureKind.NOT_FOUND, f"Location not found: {name}")
            match = matches[0]
            location = Location(
                id=location_id(match["name"], match.get("country", "")),
                name=f"{match['name']}, {match['country']}" if match.get("country") else match["name"],
                latitude=float(match["lat"]),
                longitude=float(match["lon"]),
            )
        except FetchFailure:
            raise
        except Exception as e:
            kind, cause = categorize_error(e)
            raise FetchFailure(self.NAME, kind, cause) from e

        logger.info(f"[OpenWeatherGeocoder] '{name}' -> {location.id} "
                    f"({location.latitude}, {location.longitude})")
        return location
