"""
Cross-Cloud Consensus Engine for Cloud Weather

Merges the provider-level LocationAggregates returned by every
deployment into one CrossCloudAggregate. Everything is derived from
already-aggregated provider values, never from raw source readings, so
sources inside one provider are not double counted.

Key Features:
1. Consensus: mean per metric across provider values (2 decimals)
2. Variation: population standard deviation, omitted below 2 values
3. Agreement: max(0, round(100 - 25 * temperature spread))
4. Reliability: data availability blended with temperature agreement
5. Freshness: very-fresh / fresh / moderate / stale / unknown

HEURISTICS (kept as-is for compatibility, not probabilities):
- A 4C spread between providers collapses agreement to 0.
- When agreement cannot be computed it counts as 100 in the overall
  reliability average (optimistic default).
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cloud_weather.errors import NoProviderDataAvailable
from cloud_weather.models import (
    METRICS,
    Location,
    LocationAggregate,
    ProviderResult,
    isoformat,
    metrics_to_camel,
)
from cloud_weather.statistics import (
    agreement_score,
    mean,
    population_stdev,
    present,
    round_half_up,
    spread,
)

logger = logging.getLogger(__name__)

# Freshness buckets: (upper bound in minutes, label)
FRESHNESS_BUCKETS = (
    (5, "very-fresh"),
    (15, "fresh"),
    (60, "moderate"),
)
STALE = "stale"
UNKNOWN = "unknown"

CONSENSUS_DIGITS = 2


def compute_consensus(points: Sequence[Dict[str, float]]) -> Dict[str, float]:
    """Mean per metric over the points that carry it."""
    consensus = {}
    for name in METRICS:
        value = mean(p.get(name) for p in points)
        if value is not None:
            consensus[name] = round_half_up(value, CONSENSUS_DIGITS)
    return consensus


def compute_variations(points: Sequence[Dict[str, float]]) -> Dict[str, float]:
    """Population stdev per metric; metrics with fewer than 2 values are omitted."""
    variations = {}
    for name in METRICS:
        value = population_stdev(p.get(name) for p in points)
        if value is not None:
            variations[name] = round_half_up(value, CONSENSUS_DIGITS)
    return variations


def classify_freshness(timestamps: Sequence[Optional[datetime]], now: datetime) -> str:
    """Bucket the average age of the given timestamps. Future timestamps count as age 0."""
    ages = [max(0.0, (now - ts).total_seconds() / 60) for ts in timestamps if ts is not None]
    if not ages:
        return UNKNOWN
    minutes = round_half_up(mean(ages))
    for limit, label in FRESHNESS_BUCKETS:
        if minutes < limit:
            return label
    return STALE


@dataclass(frozen=True)
class ProviderReading:
    """One provider's aggregated values for one location."""
    provider: str
    consensus: Dict[str, float]
    timestamp: Optional[datetime]
    confidence: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "data": metrics_to_camel(self.consensus),
            "confidence": self.confidence,
            "timestamp": isoformat(self.timestamp),
        }


@dataclass(frozen=True)
class LocationBreakdown:
    """Per-location consensus across the providers that reported it."""
    location: Location
    providers: Tuple[ProviderReading, ...]
    consensus: Dict[str, float]
    variations: Dict[str, float]
    agreement: int

    @property
    def temperature_samples(self) -> int:
        return len(present(p.consensus.get("temperature") for p in self.providers))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locationId": self.location.id,
            "locationName": self.location.name,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "providers": [p.to_dict() for p in self.providers],
            "consensus": metrics_to_camel(self.consensus),
            "variations": metrics_to_camel(self.variations),
            "agreement": self.agreement,
        }


@dataclass(frozen=True)
class Reliability:
    data_availability: float
    temperature_agreement: Optional[int]
    overall: int

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"dataAvailability": self.data_availability}
        if self.temperature_agreement is not None:
            data["temperatureAgreement"] = self.temperature_agreement
        data["overall"] = self.overall
        return data


@dataclass(frozen=True)
class Summary:
    total_locations: int
    average_temperature: Optional[float]
    temperature_variation: Optional[float]
    temperature_range: Optional[float]
    overall_reliability: int
    data_freshness: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalLocations": self.total_locations,
            "averageTemperature": self.average_temperature,
            "temperatureVariation": self.temperature_variation,
            "temperatureRange": self.temperature_range,
            "overallReliability": self.overall_reliability,
            "dataFreshness": self.data_freshness,
        }


@dataclass(frozen=True)
class CrossCloudAggregate:
    """The final, immutable cross-provider view of one request."""
    timestamp: datetime
    providers: Tuple[str, ...]
    failed_providers: Dict[str, str]
    data_points: int
    consensus: Dict[str, float]
    variations: Dict[str, float]
    reliability: Reliability
    locations: Tuple[LocationBreakdown, ...]
    summary: Summary
    raw_data: Optional[Dict[str, Any]] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": isoformat(self.timestamp),
            "cloudProviders": list(self.providers),
            "failedProviders": dict(self.failed_providers),
            "dataPoints": self.data_points,
            "consensus": metrics_to_camel(self.consensus),
            "variations": metrics_to_camel(self.variations),
            "reliability": self.reliability.to_dict(),
            "locations": [loc.to_dict() for loc in self.locations],
            "summary": self.summary.to_dict(),
        }
        if self.raw_data is not None:
            data["rawData"] = self.raw_data
        return data


class CrossCloudAggregator:
    """
    Aggregation-level consensus across provider deployments.

    Stateless: each call is a pure function of the provider results and
    the explicit ``now``, so identical inputs give identical numbers.
    """

    def aggregate(
        self,
        provider_results: Sequence[ProviderResult],
        now: datetime,
        include_raw: bool = False,
    ) -> CrossCloudAggregate:
        """
        Args:
            provider_results: One result per attempted provider, in request order
            now: Reference time for freshness
            include_raw: Attach each provider's full payload (with source readings)

        Returns:
            CrossCloudAggregate

        Raises:
            NoProviderDataAvailable: if no provider contributed any location
        """
        contributing = [r for r in provider_results if r.succeeded]
        failed = {r.provider: r.failure_cause() for r in provider_results if not r.succeeded}

        if not contributing:
            logger.error(f"[CrossCloudAggregator] All {len(provider_results)} providers failed: {failed}")
            raise NoProviderDataAvailable(failed)

        points = [a.consensus for r in contributing for a in r.aggregates]
        consensus = compute_consensus(points)
        variations = compute_variations(points)

        breakdowns = [self._breakdown(entries) for entries in self._group_by_location(contributing)]

        reliability = self._reliability(breakdowns, len(contributing), len(provider_results))

        temperatures = [p.get("temperature") for p in points]
        temp_spread = spread(temperatures)
        summary = Summary(
            total_locations=len(breakdowns),
            average_temperature=consensus.get("temperature"),
            temperature_variation=variations.get("temperature"),
            temperature_range=round_half_up(temp_spread, CONSENSUS_DIGITS) if temp_spread is not None else None,
            overall_reliability=reliability.overall,
            data_freshness=classify_freshness([r.timestamp for r in contributing], now),
        )

        raw_data = None
        if include_raw:
            raw_data = {r.provider: r.to_dict(include_raw=True) for r in provider_results}

        self._log_summary(consensus, variations, reliability, summary, failed)

        return CrossCloudAggregate(
            timestamp=now,
            providers=tuple(r.provider for r in contributing),
            failed_providers=failed,
            data_points=len(points),
            consensus=consensus,
            variations=variations,
            reliability=reliability,
            locations=tuple(breakdowns),
            summary=summary,
            raw_data=raw_data,
        )

    def _group_by_location(
        self, contributing: Sequence[ProviderResult]
    ) -> List[List[Tuple[str, LocationAggregate]]]:
        """Group aggregates by location id, in first-seen order."""
        groups: "OrderedDict[str, List[Tuple[str, LocationAggregate]]]" = OrderedDict()
        for result in contributing:
            for aggregate in result.aggregates:
                groups.setdefault(aggregate.location.id, []).append((result.provider, aggregate))
        return list(groups.values())

    def _breakdown(self, entries: Sequence[Tuple[str, LocationAggregate]]) -> LocationBreakdown:
        location = entries[0][1].location
        readings = tuple(
            ProviderReading(provider, dict(a.consensus), a.timestamp, a.confidence)
            for provider, a in entries
        )

        if len(readings) == 1:
            # Single provider: values verbatim, no spread possible
            return LocationBreakdown(
                location=location,
                providers=readings,
                consensus=dict(readings[0].consensus),
                variations={},
                agreement=100,
            )

        points = [r.consensus for r in readings]
        return LocationBreakdown(
            location=location,
            providers=readings,
            consensus=compute_consensus(points),
            variations=compute_variations(points),
            agreement=agreement_score(p.get("temperature") for p in points),
        )

    def _reliability(
        self, breakdowns: Sequence[LocationBreakdown], contributing: int, attempted: int
    ) -> Reliability:
        data_availability = round_half_up(100.0 * contributing / attempted, CONSENSUS_DIGITS)

        # Agreement is the mean of per-location scores, not one spread over
        # every data point: that would score different cities in a batch
        # against each other.
        scored = [b.agreement for b in breakdowns if b.temperature_samples >= 2]
        temperature_agreement = int(round_half_up(mean(scored))) if scored else None

        effective_agreement = temperature_agreement if temperature_agreement is not None else 100
        overall = int(round_half_up((data_availability + effective_agreement) / 2))

        return Reliability(
            data_availability=data_availability,
            temperature_agreement=temperature_agreement,
            overall=overall,
        )

    def _log_summary(self, consensus, variations, reliability, summary, failed):
        logger.info(
            f"[CrossCloudAggregator] {summary.total_locations} location(s): "
            f"temp={consensus.get('temperature')} stdev={variations.get('temperature')} "
            f"reliability={reliability.overall} freshness={summary.data_freshness}"
        )
        if failed:
            logger.warning(f"[CrossCloudAggregator] Failed providers: {', '.join(failed)}")
        if reliability.temperature_agreement is not None and reliability.temperature_agreement < 50:
            logger.warning(
                f"[CrossCloudAggregator] LOW AGREEMENT: providers disagree on temperature "
                f"(agreement={reliability.temperature_agreement})"
            )
