"""
Provider-level Ensemble for Cloud Weather

Merges the readings one provider deployment collected from its sources
for a single location into a LocationAggregate.

Rules:
1. Each metric is the arithmetic mean over the readings that carry it.
   Absent values are skipped, never counted as zero.
2. Temperature and wind speed are rounded to one decimal, every other
   metric to the nearest integer.
3. Confidence = round(100 * sources_with_temperature / sources_attempted).
   Temperature is present in effectively every source reply, so it is
   used as the "did this source respond usefully" signal.
4. Descriptions keep source attempt order (primary, secondary, tertiary),
   duplicates included.
5. Zero readings -> NoDataAvailable. Nothing is fabricated.

No retries here: retry policy belongs to the source fetchers.
"""

import logging
from datetime import datetime
from typing import Dict, List, Sequence, Union

from cloud_weather.errors import FetchFailure, NoDataAvailable
from cloud_weather.models import (
    METRICS,
    ONE_DECIMAL_METRICS,
    Location,
    LocationAggregate,
    Reading,
)
from cloud_weather.statistics import mean, round_half_up, spread

logger = logging.getLogger(__name__)


def consensus_metric(name: str, values: Sequence[float]):
    """Mean of present values with the per-metric rounding rule."""
    average = mean(values)
    if average is None:
        return None
    if name in ONE_DECIMAL_METRICS:
        return round_half_up(average, 1)
    return int(round_half_up(average))


class LocationAggregator:
    """
    Computes a per-field consensus and a confidence score from 1..N
    source results for the same location.

    Stateless: every call is a pure function of its inputs and ``now``.
    """

    def aggregate(
        self,
        location: Location,
        results: Sequence[Union[Reading, FetchFailure]],
        provider: str,
        now: datetime,
    ) -> LocationAggregate:
        """
        Args:
            location: The resolved location all results refer to
            results: One entry per attempted source, in attempt order
            provider: Name of the deployment running this aggregation
            now: Aggregation timestamp

        Returns:
            LocationAggregate

        Raises:
            NoDataAvailable: if no source produced a reading
        """
        readings: List[Reading] = [r for r in results if isinstance(r, Reading)]
        failures: List[FetchFailure] = [r for r in results if isinstance(r, FetchFailure)]
        attempted = len(results)

        if not readings:
            logger.warning(f"[LocationAggregator] {location.id}: all {attempted} sources failed")
            raise NoDataAvailable(location.id, failures)

        consensus: Dict[str, float] = {}
        for name in METRICS:
            value = consensus_metric(name, [r.metric(name) for r in readings])
            if value is not None:
                consensus[name] = value

        with_temperature = sum(1 for r in readings if r.temperature is not None)
        confidence = int(round_half_up(100.0 * with_temperature / attempted))

        descriptions = tuple(r.description for r in readings if r.description)

        temp_spread = spread(r.temperature for r in readings)
        logger.info(
            f"[LocationAggregator] {location.id} via {provider}: "
            f"{len(readings)}/{attempted} sources, temp={consensus.get('temperature')}, "
            f"confidence={confidence}"
        )
        if temp_spread is not None and temp_spread > 0:
            logger.debug(f"[LocationAggregator] {location.id}: source temperature spread {temp_spread:.1f}C")

        return LocationAggregate(
            location=location,
            provider=provider,
            timestamp=now,
            consensus=consensus,
            descriptions=descriptions,
            confidence=confidence,
            source_count=attempted,
            successful_sources=len(readings),
            failures=tuple(failures),
            readings=tuple(readings),
        )
