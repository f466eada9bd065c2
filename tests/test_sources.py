"""
Tests for the external weather sources and the geocoder

These tests verify that:
1. Each source normalizes its reply into canonical units
2. Timeouts, auth errors, missing data and bad payloads become
   FetchFailure values with a preserved cause, never crashes
3. Retries only happen for transient failures
4. The geocoder resolves names and reports unknown places as not_found

HTTP is mocked with httpx.MockTransport; no network access is needed.

Run with: python -m pytest tests/test_sources.py -v
"""

import asyncio
import logging
import sys
from pathlib import Path

import httpx
import pytest

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_weather.credentials import Credentials
from cloud_weather.errors import FailureKind, FetchFailure
from cloud_weather.models import Reading, SourceId
from cloud_weather.resilience import RetryConfig
from cloud_weather.sources import (
    AccuWeatherSource,
    OpenWeatherGeocoder,
    OpenWeatherSource,
    WeatherApiSource,
)

CREDS = Credentials("ow-key", "wa-key", "aw-key")
EPOCH = 1792411200

OPENWEATHER_BODY = {
    "main": {"temp": 21.5, "humidity": 60, "pressure": 1015},
    "wind": {"speed": 3.2, "deg": 270},
    "visibility": 10000,
    "clouds": {"all": 20},
    "weather": [{"description": "few clouds"}],
    "dt": EPOCH,
}

WEATHERAPI_BODY = {
    "current": {
        "temp_c": 22.0,
        "humidity": 58,
        "pressure_mb": 1014.0,
        "wind_kph": 18.0,
        "wind_degree": 260,
        "vis_km": 10.0,
        "cloud": 25,
        "uv": 5.0,
        "condition": {"text": "Partly cloudy"},
        "last_updated_epoch": EPOCH,
    }
}

ACCUWEATHER_CONDITIONS = [{
    "Temperature": {"Metric": {"Value": 21.0}},
    "RelativeHumidity": 62,
    "Pressure": {"Metric": {"Value": 1013.0}},
    "Wind": {"Speed": {"Metric": {"Value": 36.0}}, "Direction": {"Degrees": 250}},
    "Visibility": {"Metric": {"Value": 16.0}},
    "CloudCover": 30,
    "UVIndex": 4,
    "WeatherText": "Mostly sunny",
    "EpochTime": EPOCH,
}]


def run_source(source_cls, handler, credentials=CREDS, **kwargs):
    """Run fetch_or_failure against a mocked transport."""
    async def _go():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            source = source_cls(client, **kwargs)
            return await source.fetch_or_failure(48.8566, 2.3522, credentials)
    return asyncio.run(_go())


def json_handler(body, status=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body)
    return handler


class TestNormalization:
    """Each source maps its payload onto the canonical Reading."""

    def test_openweather(self):
        seen = []
        reading = run_source(OpenWeatherSource, json_handler(OPENWEATHER_BODY, seen=seen))
        logger.info(f"[TEST] OpenWeather reading: {reading}")

        assert isinstance(reading, Reading)
        assert reading.source == SourceId.OPENWEATHER
        assert reading.temperature == 21.5
        assert reading.humidity == 60
        assert reading.pressure == 1015
        assert reading.wind_speed == 3.2, "Already m/s with units=metric"
        assert reading.wind_direction == 270
        assert reading.visibility == 10000
        assert reading.cloudiness == 20
        assert reading.uv_index is None
        assert reading.description == "few clouds"
        assert reading.observed_at.timestamp() == EPOCH

        params = seen[0].url.params
        assert params["units"] == "metric"
        assert params["appid"] == "ow-key"

    def test_weatherapi_converts_kph_and_km(self):
        seen = []
        reading = run_source(WeatherApiSource, json_handler(WEATHERAPI_BODY, seen=seen))

        assert reading.temperature == 22.0
        assert reading.pressure == 1014.0
        assert reading.wind_speed == pytest.approx(5.0), "18 km/h / 3.6 = 5 m/s"
        assert reading.visibility == pytest.approx(10000.0)
        assert reading.uv_index == 5.0
        assert reading.description == "Partly cloudy"
        assert seen[0].url.params["q"] == "48.8566,2.3522"
        assert seen[0].url.params["key"] == "wa-key"

    def test_accuweather_two_step_lookup(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "geoposition" in request.url.path:
                return httpx.Response(200, json={"Key": "623"})
            assert request.url.path.endswith("/currentconditions/v1/623")
            return httpx.Response(200, json=ACCUWEATHER_CONDITIONS)

        reading = run_source(AccuWeatherSource, handler)

        assert len(seen) == 2
        assert reading.temperature == 21.0
        assert reading.wind_speed == pytest.approx(10.0), "36 km/h / 3.6 = 10 m/s"
        assert reading.visibility == pytest.approx(16000.0)
        assert reading.cloudiness == 30
        assert reading.description == "Mostly sunny"

    def test_missing_optional_fields_stay_absent(self):
        body = {"main": {"temp": 19.0}, "weather": []}
        reading = run_source(OpenWeatherSource, json_handler(body))

        assert reading.temperature == 19.0
        assert reading.humidity is None
        assert reading.wind_speed is None
        assert reading.description is None


class TestFailures:
    """All source failures come back as FetchFailure values."""

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = run_source(OpenWeatherSource, handler)
        logger.info(f"[TEST] Timeout result: {result}")
        assert isinstance(result, FetchFailure)
        assert result.kind == FailureKind.TIMEOUT
        assert result.source == "openweather"
        assert "Timeout" in result.cause

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = run_source(WeatherApiSource, handler)
        assert result.kind == FailureKind.NETWORK
        assert "connection refused" in result.cause

    def test_auth_error(self):
        result = run_source(OpenWeatherSource, json_handler({"message": "Invalid API key"}, status=401))
        assert result.kind == FailureKind.AUTH

    def test_missing_key_fails_without_request(self):
        seen = []
        creds = Credentials("", "wa-key", "aw-key")
        result = run_source(OpenWeatherSource, json_handler(OPENWEATHER_BODY, seen=seen), credentials=creds)
        assert result.kind == FailureKind.AUTH
        assert seen == [], "No call should be made without a key"

    def test_not_found(self):
        result = run_source(WeatherApiSource, json_handler({"error": "No matching location"}, status=404))
        assert result.kind == FailureKind.NOT_FOUND

    def test_server_error_is_network_failure(self):
        result = run_source(WeatherApiSource, json_handler({}, status=502))
        assert result.kind == FailureKind.NETWORK
        assert "502" in result.cause

    def test_malformed_shape(self):
        result = run_source(OpenWeatherSource, json_handler({"unexpected": True}))
        assert result.kind == FailureKind.MALFORMED
        assert "main" in result.cause

    def test_malformed_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway error</html>")

        result = run_source(WeatherApiSource, handler)
        assert result.kind == FailureKind.MALFORMED

    def test_non_numeric_value(self):
        body = {"main": {"temp": "warm"}}
        result = run_source(OpenWeatherSource, json_handler(body))
        assert result.kind == FailureKind.MALFORMED

    def test_accuweather_without_conditions_is_not_found(self):
        def handler(request):
            if "geoposition" in request.url.path:
                return httpx.Response(200, json={"Key": "623"})
            return httpx.Response(200, json=[])

        result = run_source(AccuWeatherSource, handler)
        assert result.kind == FailureKind.NOT_FOUND


class TestRetry:
    """Retries are opt-in and limited to transient failures."""

    FAST = RetryConfig(max_retries=2, base_delay_seconds=0.0, jitter=False)

    def test_transient_failure_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, json={})
            return httpx.Response(200, json=OPENWEATHER_BODY)

        result = run_source(OpenWeatherSource, handler, retry_config=self.FAST)
        assert isinstance(result, Reading)
        assert len(calls) == 2

    def test_auth_failure_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, json={})

        result = run_source(OpenWeatherSource, handler, retry_config=self.FAST)
        assert result.kind == FailureKind.AUTH
        assert len(calls) == 1

    def test_no_retry_by_default(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        result = run_source(OpenWeatherSource, handler)
        assert result.kind == FailureKind.TIMEOUT
        assert len(calls) == 1


class TestGeocoder:
    """OpenWeather direct geocoding."""

    def resolve(self, handler, name):
        async def _go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await OpenWeatherGeocoder(client).resolve(name, CREDS)
        return asyncio.run(_go())

    def test_resolves_name(self):
        body = [{"name": "New York", "country": "US", "lat": 40.7128, "lon": -74.006}]
        location = self.resolve(json_handler(body), "new york")

        assert location.id == "new-york-us"
        assert location.name == "New York, US"
        assert location.latitude == 40.7128
        assert location.longitude == -74.006

    def test_unknown_place(self):
        with pytest.raises(FetchFailure) as excinfo:
            self.resolve(json_handler([]), "Atlantis")
        assert excinfo.value.kind == FailureKind.NOT_FOUND
        assert "Atlantis" in excinfo.value.cause

    def test_geocoder_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(FetchFailure) as excinfo:
            self.resolve(handler, "Paris")
        assert excinfo.value.kind == FailureKind.TIMEOUT
