"""
Error taxonomy for Cloud Weather.

Failures below the "all sources for a location" threshold are absorbed
into reduced confidence. Failures at or above "all providers" surface
to the caller as explicit errors.

    FetchFailure             - one source call failed (recovered locally)
    NoDataAvailable          - every source failed for one location
    NoProviderDataAvailable  - every provider failed for one request (fatal)
    CredentialsUnavailable   - API keys could not be loaded (fatal)
    PersistenceError         - a sink write failed (always swallowed)
"""

from enum import Enum
from typing import Dict, Optional, Sequence


class FailureKind(Enum):
    """Categories of source fetch failures."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


class CloudWeatherError(Exception):
    """Base class for all Cloud Weather errors."""


class FetchFailure(CloudWeatherError):
    """
    A single source (or remote provider) call failed.

    Raised inside a fetcher and returned as a value from
    ``fetch_or_failure`` so concurrent joins never blow up.
    """

    def __init__(self, source: str, kind: FailureKind, cause: str):
        super().__init__(f"{source}: {kind.value} - {cause}")
        self.source = source
        self.kind = kind
        self.cause = cause

    def to_dict(self) -> dict:
        return {"source": self.source, "kind": self.kind.value, "cause": self.cause}

    def __eq__(self, other):
        if not isinstance(other, FetchFailure):
            return NotImplemented
        return (self.source, self.kind, self.cause) == (other.source, other.kind, other.cause)

    def __hash__(self):
        return hash((self.source, self.kind, self.cause))


class NoDataAvailable(CloudWeatherError):
    """Every source failed for a location."""

    def __init__(self, location_id: str, failures: Optional[Sequence[FetchFailure]] = None):
        self.location_id = location_id
        self.failures = list(failures or [])
        causes = "; ".join(str(f) for f in self.failures) or "no sources attempted"
        super().__init__(f"No weather data available for {location_id} ({causes})")


class NoProviderDataAvailable(CloudWeatherError):
    """Every provider failed for a request."""

    def __init__(self, failed_providers: Optional[Dict[str, str]] = None):
        self.failed_providers = dict(failed_providers or {})
        names = ", ".join(self.failed_providers) or "none attempted"
        super().__init__(f"No cloud provider data available (failed: {names})")


class CredentialsUnavailable(CloudWeatherError):
    """API keys could not be retrieved."""


class PersistenceError(CloudWeatherError):
    """A persistence sink rejected a record."""
