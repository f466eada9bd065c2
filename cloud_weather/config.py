"""
Cloud Weather - Configuration

Settings are read from the environment (populate it from a .env file
with python-dotenv's load_dotenv() first):

    PROVIDERS                 comma separated deployment names (aws,azure,gcp)
    <NAME>_PROVIDER_URL       base URL of a remote deployment; unset = local
    SOURCE_TIMEOUT_SECONDS    per source call timeout (10)
    PROVIDER_TIMEOUT_SECONDS  per remote provider call timeout (30)
    SOURCE_RETRIES            extra attempts per source call (0)
    DB_PATH                   SQLite file for persisted aggregates
    PERSISTENCE               "sqlite" (default) or "none"
    CREDENTIALS_FILE          JSON secret bundle; unset = environment keys
    LOG_LEVEL                 logging level (INFO)
    LOG_DIR                   directory for the log file (logs)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from cloud_weather.models import ByCoordinates

# Default batch, the cities tracked by the dashboard
DEFAULT_LOCATIONS = (
    ByCoordinates(40.7128, -74.0060, id="new-york", name="New York"),
    ByCoordinates(51.5074, -0.1278, id="london", name="London"),
    ByCoordinates(35.6762, 139.6503, id="tokyo", name="Tokyo"),
    ByCoordinates(-33.8688, 151.2093, id="sydney", name="Sydney"),
    ByCoordinates(48.8566, 2.3522, id="paris", name="Paris"),
    ByCoordinates(55.7558, 37.6176, id="moscow", name="Moscow"),
    ByCoordinates(39.9042, 116.4074, id="beijing", name="Beijing"),
    ByCoordinates(19.0760, 72.8777, id="mumbai", name="Mumbai"),
)

DEFAULT_PROVIDERS = ("aws", "azure", "gcp")


@dataclass(frozen=True)
class ProviderEndpoint:
    """One deployment. ``url`` is None for an in-process provider."""
    name: str
    url: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at start-up."""
    providers: Tuple[ProviderEndpoint, ...] = tuple(ProviderEndpoint(p) for p in DEFAULT_PROVIDERS)
    source_timeout: float = 10.0
    provider_timeout: float = 30.0
    source_retries: int = 0
    persistence: str = "sqlite"
    db_path: Path = Path("outputs/cloud_weather.db")
    credentials_file: Optional[Path] = None
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    default_locations: Tuple[ByCoordinates, ...] = field(default=DEFAULT_LOCATIONS)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = environ if environ is not None else os.environ

        names = [n.strip().lower() for n in env.get("PROVIDERS", ",".join(DEFAULT_PROVIDERS)).split(",")]
        providers = tuple(
            ProviderEndpoint(name, env.get(f"{name.upper()}_PROVIDER_URL") or None)
            for name in names if name
        )
        if not providers:
            raise ValueError("PROVIDERS must name at least one deployment")

        credentials_file = env.get("CREDENTIALS_FILE")

        return cls(
            providers=providers,
            source_timeout=float(env.get("SOURCE_TIMEOUT_SECONDS", 10.0)),
            provider_timeout=float(env.get("PROVIDER_TIMEOUT_SECONDS", 30.0)),
            source_retries=int(env.get("SOURCE_RETRIES", 0)),
            persistence=env.get("PERSISTENCE", "sqlite").lower(),
            db_path=Path(env.get("DB_PATH", "outputs/cloud_weather.db")),
            credentials_file=Path(credentials_file) if credentials_file else None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_dir=Path(env.get("LOG_DIR", "logs")),
        )
