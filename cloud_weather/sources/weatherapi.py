"""
WeatherAPI.com current conditions (secondary source).

Wind comes in km/h and visibility in km; both are converted.
``pressure_mb`` is numerically identical to hPa.
"""

import logging
from typing import Any

from cloud_weather.models import Reading, SourceId, parse_timestamp
from cloud_weather.sources.base import KMH_PER_MS, SourceFetcher, dig, scaled

logger = logging.getLogger(__name__)


class WeatherApiSource(SourceFetcher):
    """Provider for api.weatherapi.com current.json."""

    source_id = SourceId.WEATHERAPI
    BASE_URL = "https://api.weatherapi.com/v1/current.json"

    async def _fetch(self, lat: float, lon: float, api_key: str) -> Reading:
        params = {"key": api_key, "q": f"{lat},{lon}", "aqi": "yes"}
        data = await self._get_json(self.BASE_URL, params)
        return self.normalize(data)

    def normalize(self, data: Any) -> Reading:
        current = data["current"]
        if not isinstance(current, dict):
            raise TypeError("'current' must be an object")

        observed = current.get("last_updated_epoch")
        if observed is None:
            observed = current.get("last_updated")

        return Reading(
            source=self.source_id,
            temperature=current.get("temp_c"),
            humidity=current.get("humidity"),
            pressure=current.get("pressure_mb"),
            wind_speed=scaled(current.get("wind_kph"), 1 / KMH_PER_MS),
            wind_direction=current.get("wind_degree"),
            visibility=scaled(current.get("vis_km"), 1000.0),
            cloudiness=current.get("cloud"),
            uv_index=current.get("uv"),
            description=dig(current, "condition", "text"),
            observed_at=parse_timestamp(observed),
            raw=data,
        )
