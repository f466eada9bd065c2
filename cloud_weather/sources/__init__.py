"""
External weather sources for Cloud Weather.

Each provider deployment queries all three, in this attempt order:

1. OpenWeather  - primary
2. WeatherAPI   - secondary
3. AccuWeather  - tertiary

Plus the OpenWeather geocoder used to resolve free-text locations.
"""

from cloud_weather.sources.base import (
    DEFAULT_SOURCE_TIMEOUT,
    SourceFetcher,
)

from cloud_weather.sources.openweather import (
    OpenWeatherSource,
)

from cloud_weather.sources.weatherapi import (
    WeatherApiSource,
)

from cloud_weather.sources.accuweather import (
    AccuWeatherSource,
)

from cloud_weather.sources.geocoding import (
    OpenWeatherGeocoder,
)

# Attempt order: primary, secondary, tertiary
DEFAULT_SOURCES = (OpenWeatherSource, WeatherApiSource, AccuWeatherSource)

__all__ = [
    "DEFAULT_SOURCE_TIMEOUT",
    "SourceFetcher",
    "OpenWeatherSource",
    "WeatherApiSource",
    "AccuWeatherSource",
    "OpenWeatherGeocoder",
    "DEFAULT_SOURCES",
]
