"""
Credentials providers for the external weather sources.

Keys are retrieved once per request and then shared read-only by every
concurrent fetch. Failing to retrieve them is fatal for the request:
no partial fetch is attempted without keys.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from cloud_weather.errors import CredentialsUnavailable
from cloud_weather.models import SourceId

logger = logging.getLogger(__name__)

# Environment variable / secret bundle field per source
KEY_NAMES = {
    SourceId.OPENWEATHER: "openweather_api_key",
    SourceId.WEATHERAPI: "weather_api_key",
    SourceId.ACCUWEATHER: "accuweather_api_key",
}


@dataclass(frozen=True)
class Credentials:
    """API keys for the three sources."""
    openweather_api_key: str
    weather_api_key: str
    accuweather_api_key: str

    def key_for(self, source: SourceId) -> str:
        return getattr(self, KEY_NAMES[source])

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]], origin: str) -> "Credentials":
        missing = [name for name in KEY_NAMES.values() if not values.get(name)]
        if missing:
            raise CredentialsUnavailable(f"Missing {', '.join(missing)} in {origin}")
        return cls(**{name: str(values[name]) for name in KEY_NAMES.values()})


class StaticCredentialsProvider:
    """Hands out a fixed Credentials bundle (tests, embedded use)."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    async def get_credentials(self) -> Credentials:
        return self.credentials


class EnvCredentialsProvider:
    """
    Reads OPENWEATHER_API_KEY, WEATHER_API_KEY and ACCUWEATHER_API_KEY.

    Call load_dotenv() before constructing this to pick up a .env file.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    async def get_credentials(self) -> Credentials:
        values = {name: self.environ.get(name.upper()) for name in KEY_NAMES.values()}
        credentials = Credentials.from_mapping(values, "environment")
        logger.debug("[EnvCredentialsProvider] API keys loaded from environment")
        return credentials


class SecretFileCredentialsProvider:
    """
    Reads a JSON secret bundle, the same shape a cloud secret store
    returns as its secret string:

        {"openweather_api_key": "...", "weather_api_key": "...",
         "accuweather_api_key": "..."}
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def get_credentials(self) -> Credentials:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                values = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[SecretFileCredentialsProvider] Cannot read {self.path}: {e}")
            raise CredentialsUnavailable(f"Unable to retrieve API keys from {self.path}") from e

        if not isinstance(values, dict):
            raise CredentialsUnavailable(f"Secret bundle {self.path} is not a JSON object")

        return Credentials.from_mapping(values, str(self.path))
