"""
AccuWeather current conditions (tertiary source).

Two calls: a geoposition search resolves the coordinate pair to a
location key, then current conditions are read for that key. Metric
wind speed is km/h and visibility km; both are converted.
"""

import logging
from typing import Any

from cloud_weather.errors import FailureKind, FetchFailure
from cloud_weather.models import Reading, SourceId, parse_timestamp
from cloud_weather.sources.base import KMH_PER_MS, SourceFetcher, dig, scaled

logger = logging.getLogger(__name__)


class AccuWeatherSource(SourceFetcher):
    """Provider for dataservice.accuweather.com current conditions."""

    source_id = SourceId.ACCUWEATHER
    BASE_URL = "https://dataservice.accuweather.com"

    async def _fetch(self, lat: float, lon: float, api_key: str) -> Reading:
        location = await self._get_json(
            f"{self.BASE_URL}/locations/v1/cities/geoposition/search",
            {"apikey": api_key, "q": f"{lat},{lon}"},
        )
        if not location or not location.get("Key"):
            raise FetchFailure(self.name, FailureKind.NOT_FOUND,
                               f"No AccuWeather location for ({lat}, {lon})")

        location_key = location["Key"]
        logger.debug(f"[AccuWeatherSource] ({lat}, {lon}) -> location key {location_key}")

        conditions = await self._get_json(
            f"{self.BASE_URL}/currentconditions/v1/{location_key}",
            {"apikey": api_key, "details": "true"},
        )
        if not conditions:
            raise FetchFailure(self.name, FailureKind.NOT_FOUND,
                               f"No current conditions for location key {location_key}")
        return self.normalize(conditions[0])

    def normalize(self, data: Any) -> Reading:
        if not isinstance(data, dict):
            raise TypeError("current conditions entry must be an object")

        observed = data.get("EpochTime")
        if observed is None:
            observed = data.get("LocalObservationDateTime")

        return Reading(
            source=self.source_id,
            temperature=dig(data, "Temperature", "Metric", "Value"),
            humidity=data.get("RelativeHumidity"),
            pressure=dig(data, "Pressure", "Metric", "Value"),
            wind_speed=scaled(dig(data, "Wind", "Speed", "Metric", "Value"), 1 / KMH_PER_MS),
            wind_direction=dig(data, "Wind", "Direction", "Degrees"),
            visibility=scaled(dig(data, "Visibility", "Metric", "Value"), 1000.0),
            cloudiness=data.get("CloudCover"),
            uv_index=data.get("UVIndex"),
            description=data.get("WeatherText"),
            observed_at=parse_timestamp(observed),
            raw=data,
        )
