"""
Core data model for Cloud Weather.

Reading           - one source's observation for one location
Location          - a resolved place (id, display name, coordinates)
LocationRef       - ByName | ByCoordinates, resolved once at the boundary
LocationAggregate - provider-level merge of Readings for one location
ProviderResult    - one provider deployment's answer for a request

All records are immutable. Dict output uses the camelCase keys that the
dashboard and external API consume.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from cloud_weather.errors import FailureKind, FetchFailure
from cloud_weather.statistics import finite_or_none

# Numeric metrics carried by Readings and aggregates, in output order
METRICS = (
    "temperature",
    "humidity",
    "pressure",
    "wind_speed",
    "wind_direction",
    "visibility",
    "cloudiness",
    "uv_index",
)

# Metrics rounded to one decimal at provider level; the rest are integers
ONE_DECIMAL_METRICS = ("temperature", "wind_speed")

CAMEL_CASE = {
    "temperature": "temperature",
    "humidity": "humidity",
    "pressure": "pressure",
    "wind_speed": "windSpeed",
    "wind_direction": "windDirection",
    "visibility": "visibility",
    "cloudiness": "cloudiness",
    "uv_index": "uvIndex",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z for UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse epoch seconds or an ISO-ish string into an aware UTC datetime.

    Naive timestamps are assumed to be UTC. Unparsable input gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def metrics_to_camel(values: Dict[str, Any]) -> Dict[str, Any]:
    return {CAMEL_CASE[name]: values[name] for name in METRICS if values.get(name) is not None}


def metrics_from_camel(data: Dict[str, Any]) -> Dict[str, float]:
    values = {}
    for name in METRICS:
        number = finite_or_none(data.get(CAMEL_CASE[name]))
        if number is not None:
            values[name] = number
    return values


class SourceId(str, Enum):
    """Known external weather sources, in attempt order."""
    OPENWEATHER = "openweather"
    WEATHERAPI = "weatherapi"
    ACCUWEATHER = "accuweather"


@dataclass(frozen=True)
class Reading:
    """One source's observation. Numeric fields are finite or None."""
    source: SourceId
    temperature: Optional[float] = None      # Celsius
    humidity: Optional[float] = None         # percent
    pressure: Optional[float] = None         # hPa
    wind_speed: Optional[float] = None       # m/s
    wind_direction: Optional[float] = None   # degrees
    visibility: Optional[float] = None       # metres
    cloudiness: Optional[float] = None       # percent
    uv_index: Optional[float] = None
    description: Optional[str] = None
    observed_at: Optional[datetime] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        for name in METRICS:
            object.__setattr__(self, name, finite_or_none(getattr(self, name)))
        if self.description is not None:
            text = str(self.description).strip()
            object.__setattr__(self, "description", text or None)

    def metric(self, name: str) -> Optional[float]:
        return getattr(self, name)

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"source": self.source.value}
        data.update(metrics_to_camel({name: self.metric(name) for name in METRICS}))
        data["description"] = self.description
        data["timestamp"] = isoformat(self.observed_at)
        if include_raw and self.raw is not None:
            data["raw"] = self.raw
        return data


@dataclass(frozen=True)
class Location:
    """A resolved location."""
    id: str
    name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ByName:
    """Free-text location that still needs geocoding."""
    name: str


@dataclass(frozen=True)
class ByCoordinates:
    """Location given directly as coordinates."""
    latitude: float
    longitude: float
    id: Optional[str] = None
    name: Optional[str] = None

    def to_location(self) -> Location:
        coords = f"{self.latitude:.4f},{self.longitude:.4f}"
        return Location(
            id=self.id or coords,
            name=self.name or coords,
            latitude=float(self.latitude),
            longitude=float(self.longitude),
        )


LocationRef = Union[ByName, ByCoordinates]


@dataclass(frozen=True)
class LocationAggregate:
    """
    Merged view of one provider's source readings for one location.

    ``consensus`` holds the averaged metrics that were present in at
    least one reading; absent metrics are missing from the dict.
    """
    location: Location
    provider: str
    timestamp: datetime
    consensus: Dict[str, float]
    descriptions: Tuple[str, ...]
    confidence: int
    source_count: int
    successful_sources: int
    failures: Tuple[FetchFailure, ...] = ()
    readings: Tuple[Reading, ...] = ()

    @property
    def temperature(self) -> Optional[float]:
        return self.consensus.get("temperature")

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        aggregated = metrics_to_camel(self.consensus)
        aggregated["descriptions"] = list(self.descriptions)
        aggregated["confidence"] = self.confidence
        data: Dict[str, Any] = {
            "locationId": self.location.id,
            "locationName": self.location.name,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "timestamp": isoformat(self.timestamp),
            "cloudProvider": self.provider,
            "aggregated": aggregated,
            "diagnostics": {
                "sourceCount": self.source_count,
                "successfulSources": self.successful_sources,
                "failures": [f.to_dict() for f in self.failures],
            },
        }
        if include_raw:
            data["sources"] = {
                r.source.value: r.to_dict(include_raw=True) for r in self.readings
            }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], provider: str) -> "LocationAggregate":
        """
        Rebuild an aggregate from a provider response item.

        Raises KeyError/ValueError/TypeError on a malformed payload.
        """
        aggregated = data["aggregated"]
        if not isinstance(aggregated, dict):
            raise TypeError("'aggregated' must be an object")
        location = Location(
            id=str(data["locationId"]),
            name=str(data.get("locationName") or data["locationId"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
        )
        diagnostics = data.get("diagnostics") or {}
        failures = tuple(
            FetchFailure(
                str(item.get("source", "unknown")),
                FailureKind(item.get("kind", FailureKind.NETWORK.value)),
                str(item.get("cause", "")),
            )
            for item in diagnostics.get("failures", [])
        )
        source_count = int(diagnostics.get("sourceCount", 0))
        return cls(
            location=location,
            provider=str(data.get("cloudProvider") or provider),
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            consensus=metrics_from_camel(aggregated),
            descriptions=tuple(str(d) for d in aggregated.get("descriptions", [])),
            confidence=int(aggregated.get("confidence", 0)),
            source_count=source_count,
            successful_sources=int(diagnostics.get("successfulSources", source_count)),
            failures=failures,
        )


@dataclass(frozen=True)
class LocationFailure:
    """A location that produced no aggregate in a batch."""
    location: Location
    cause: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": {
                "id": self.location.id,
                "name": self.location.name,
                "lat": self.location.latitude,
                "lon": self.location.longitude,
            },
            "error": self.cause,
        }


@dataclass(frozen=True)
class BatchResult:
    """Per-location successes and failures from one provider batch."""
    successes: Tuple[LocationAggregate, ...]
    failures: Tuple[LocationFailure, ...]


class ProviderStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"


@dataclass(frozen=True)
class ProviderResult:
    """One provider deployment's answer, with latency and health metadata."""
    provider: str
    aggregates: Tuple[LocationAggregate, ...] = ()
    failures: Tuple[LocationFailure, ...] = ()
    timestamp: Optional[datetime] = None
    latency_ms: float = 0.0
    status: ProviderStatus = ProviderStatus.OFFLINE
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.aggregates)

    def failure_cause(self) -> str:
        if self.error:
            return self.error
        if self.failures:
            return "; ".join(f"{f.location.id}: {f.cause}" for f in self.failures)
        return "no data returned"

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "provider": self.provider,
            "status": self.status.value,
            "responseTimeMs": round(self.latency_ms, 1),
            "timestamp": isoformat(self.timestamp),
            "data": [a.to_dict(include_raw=include_raw) for a in self.aggregates],
        }
        if self.failures:
            data["errors"] = [f.to_dict() for f in self.failures]
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class AggregationRequest:
    """A user-facing aggregation request."""
    locations: Tuple[LocationRef, ...]
    include_raw: bool = False
    providers: Optional[Tuple[str, ...]] = None

    @classmethod
    def single(cls, ref: LocationRef, include_raw: bool = False,
               providers: Optional[List[str]] = None) -> "AggregationRequest":
        return cls(
            locations=(ref,),
            include_raw=include_raw,
            providers=tuple(providers) if providers else None,
        )
