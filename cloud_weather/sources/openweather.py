"""
OpenWeather current conditions (primary source).

Requested with units=metric, so temperature is already Celsius, wind
speed m/s, pressure hPa and visibility metres.
"""

import logging
from typing import Any

from cloud_weather.models import Reading, SourceId, parse_timestamp
from cloud_weather.sources.base import SourceFetcher, dig

logger = logging.getLogger(__name__)


class OpenWeatherSource(SourceFetcher):
    """Provider for api.openweathermap.org current weather."""

    source_id = SourceId.OPENWEATHER
    BASE_URL = "https://api.openweathermap.org/data/2.5/weather"

    async def _fetch(self, lat: float, lon: float, api_key: str) -> Reading:
        params = {"lat": lat, "lon": lon, "appid": api_key, "units": "metric"}
        data = await self._get_json(self.BASE_URL, params)
        return self.normalize(data)

    def normalize(self, data: Any) -> Reading:
        main = data["main"]
        if not isinstance(main, dict):
            raise TypeError("'main' must be an object")

        return Reading(
            source=self.source_id,
            temperature=main.get("temp"),
            humidity=main.get("humidity"),
            pressure=main.get("pressure"),
            wind_speed=dig(data, "wind", "speed"),
            wind_direction=dig(data, "wind", "deg"),
            visibility=data.get("visibility"),
            cloudiness=dig(data, "clouds", "all"),
            description=dig(data, "weather", 0, "description"),
            observed_at=parse_timestamp(data.get("dt")),
            raw=data,
        )
