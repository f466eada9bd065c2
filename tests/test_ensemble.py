"""
Tests for the statistics helpers and the provider-level LocationAggregator

These tests verify that:
1. Consensus values are means of present values with per-metric rounding
2. Absent fields are excluded, never averaged in as zero
3. Confidence tracks the share of sources that returned a temperature
4. Descriptions keep source attempt order
5. Zero readings raise NoDataAvailable instead of producing a reading

Run with: python -m pytest tests/test_ensemble.py -v
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_weather.ensemble import LocationAggregator
from cloud_weather.errors import FailureKind, FetchFailure, NoDataAvailable
from cloud_weather.models import Location, Reading, SourceId
from cloud_weather.statistics import (
    agreement_score,
    finite_or_none,
    mean,
    population_stdev,
    round_half_up,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
PARIS = Location("paris", "Paris", 48.8566, 2.3522)


def failure(source: SourceId, kind: FailureKind = FailureKind.TIMEOUT) -> FetchFailure:
    return FetchFailure(source.value, kind, "simulated")


class TestStatistics:
    """Test suite for the shared statistics helpers."""

    def test_round_half_up(self):
        assert round_half_up(23.25, 1) == 23.3
        assert round_half_up(66.5) == 67.0
        assert round_half_up(2.5) == 3.0, "Halves round up, not to even"
        assert round_half_up(23.1666666, 1) == 23.2

    def test_negative_halves_round_towards_positive(self):
        assert round_half_up(-23.25, 1) == -23.2
        assert round_half_up(-0.5) == 0.0
        assert round_half_up(-2.5) == -2.0
        assert round_half_up(-23.26, 1) == -23.3, "Only exact halves move towards +inf"

    def test_mean_skips_absent_values(self):
        assert mean([10.0, None, 20.0]) == pytest.approx(15.0)
        assert mean([None, None]) is None
        assert mean([]) is None

    def test_population_stdev_divides_by_n(self):
        # values 2 and 4: mean 3, squared deviations 1 + 1, / 2 -> 1
        assert population_stdev([2.0, 4.0]) == pytest.approx(1.0)
        assert population_stdev([18.0, 20.0, 22.0]) == pytest.approx(1.63299, rel=1e-4)

    def test_population_stdev_omitted_below_two_values(self):
        assert population_stdev([21.0]) is None
        assert population_stdev([21.0, None]) is None
        assert population_stdev([]) is None

    @pytest.mark.parametrize("temps,expected", [
        ([20, 20, 20], 100),
        ([18, 20, 22], 0),
        ([19, 20, 21], 50),
        ([15, 25], 0),
        ([20.0, 20.5], 88),
        ([20.0], 100),
    ])
    def test_agreement_score(self, temps, expected):
        assert agreement_score(temps) == expected

    def test_finite_or_none(self):
        assert finite_or_none(float("nan")) is None
        assert finite_or_none(float("inf")) is None
        assert finite_or_none(None) is None
        assert finite_or_none("12.5") == 12.5
        assert finite_or_none(0) == 0.0, "Zero is a real value, not absent"


class TestReading:
    """Readings keep every numeric field finite or absent."""

    def test_non_finite_values_become_absent(self):
        reading = Reading(SourceId.OPENWEATHER, temperature=float("nan"), humidity=55)
        assert reading.temperature is None
        assert reading.humidity == 55.0

    def test_blank_description_becomes_absent(self):
        reading = Reading(SourceId.OPENWEATHER, temperature=20, description="  ")
        assert reading.description is None


class TestLocationAggregator:
    """Test suite for the provider-level merge."""

    @pytest.fixture
    def aggregator(self):
        return LocationAggregator()

    def test_consensus_temperature_mean_rounded_to_one_decimal(self, aggregator):
        logger.info("[TEST] Consensus temperature rounding...")
        readings = [
            Reading(SourceId.OPENWEATHER, temperature=22.0),
            Reading(SourceId.WEATHERAPI, temperature=24.0),
            Reading(SourceId.ACCUWEATHER, temperature=23.5),
        ]
        result = aggregator.aggregate(PARIS, readings, provider="aws", now=NOW)
        logger.info(f"[TEST] Consensus: {result.consensus}")
        assert result.consensus["temperature"] == 23.2
        assert result.confidence == 100

    def test_negative_temperature_halves_round_towards_positive(self, aggregator):
        readings = [
            Reading(SourceId.OPENWEATHER, temperature=-23.0, wind_direction=-0.5),
            Reading(SourceId.WEATHERAPI, temperature=-23.5, wind_direction=-0.5),
        ]
        result = aggregator.aggregate(PARIS, readings, provider="aws", now=NOW)
        logger.info(f"[TEST] Negative consensus: {result.consensus}")
        assert result.consensus["temperature"] == -23.2
        assert result.consensus["wind_direction"] == 0

    def test_other_metrics_rounded_to_integers(self, aggregator):
        readings = [
            Reading(SourceId.OPENWEATHER, temperature=20, humidity=60, pressure=1012.4,
                    wind_speed=3.0, visibility=10000, cloudiness=40),
            Reading(SourceId.WEATHERAPI, temperature=21, humidity=65, pressure=1013.0,
                    wind_speed=4.0, visibility=9000, cloudiness=45),
        ]
        result = aggregator.aggregate(PARIS, readings, provider="aws", now=NOW)
        assert result.consensus["humidity"] == 63  # 62.5 rounds up
        assert isinstance(result.consensus["humidity"], int)
        assert result.consensus["pressure"] == 1013
        assert result.consensus["wind_speed"] == 3.5
        assert result.consensus["visibility"] == 9500
        assert result.consensus["cloudiness"] == 43

    def test_absent_fields_excluded_not_zero(self, aggregator):
        logger.info("[TEST] Absent fields must not drag the mean toward zero...")
        readings = [
            Reading(SourceId.OPENWEATHER, temperature=20, uv_index=None, visibility=10000),
            Reading(SourceId.WEATHERAPI, temperature=22, uv_index=6),
            Reading(SourceId.ACCUWEATHER, temperature=21, uv_index=None),
        ]
        result = aggregator.aggregate(PARIS, readings, provider="aws", now=NOW)
        assert result.consensus["uv_index"] == 6
        assert result.consensus["visibility"] == 10000
        assert "wind_direction" not in result.consensus, "Metric absent everywhere stays absent"

    @pytest.mark.parametrize("successes,expected", [(1, 33), (2, 67), (3, 100)])
    def test_confidence_by_successful_sources(self, aggregator, successes, expected):
        sources = [SourceId.OPENWEATHER, SourceId.WEATHERAPI, SourceId.ACCUWEATHER]
        results = []
        for index, source in enumerate(sources):
            if index < successes:
                results.append(Reading(source, temperature=20.0 + index))
            else:
                results.append(failure(source))
        result = aggregator.aggregate(PARIS, results, provider="aws", now=NOW)
        logger.info(f"[TEST] {successes}/3 sources -> confidence {result.confidence}")
        assert result.confidence == expected
        assert result.successful_sources == successes
        assert result.source_count == 3
        assert len(result.failures) == 3 - successes

    def test_confidence_counts_only_sources_with_temperature(self, aggregator):
        results = [
            Reading(SourceId.OPENWEATHER, temperature=20.0, humidity=50),
            Reading(SourceId.WEATHERAPI, humidity=55),
            failure(SourceId.ACCUWEATHER),
        ]
        result = aggregator.aggregate(PARIS, results, provider="aws", now=NOW)
        assert result.confidence == 33
        assert result.consensus["humidity"] == 53  # 52.5 -> 53

    def test_descriptions_keep_attempt_order_with_duplicates(self, aggregator):
        results = [
            Reading(SourceId.OPENWEATHER, temperature=20, description="light rain"),
            failure(SourceId.WEATHERAPI),
            Reading(SourceId.ACCUWEATHER, temperature=21, description="light rain"),
        ]
        result = aggregator.aggregate(PARIS, results, provider="aws", now=NOW)
        assert result.descriptions == ("light rain", "light rain")

    def test_all_sources_failed_raises_no_data(self, aggregator):
        logger.info("[TEST] Total source failure must not fabricate a reading...")
        results = [failure(SourceId.OPENWEATHER), failure(SourceId.WEATHERAPI, FailureKind.AUTH),
                   failure(SourceId.ACCUWEATHER, FailureKind.MALFORMED)]
        with pytest.raises(NoDataAvailable) as excinfo:
            aggregator.aggregate(PARIS, results, provider="aws", now=NOW)
        assert excinfo.value.location_id == "paris"
        assert len(excinfo.value.failures) == 3

    def test_identical_inputs_identical_output(self, aggregator):
        readings = [
            Reading(SourceId.OPENWEATHER, temperature=22.1, humidity=61),
            Reading(SourceId.WEATHERAPI, temperature=22.7, humidity=64),
        ]
        first = aggregator.aggregate(PARIS, readings, provider="aws", now=NOW)
        second = aggregator.aggregate(PARIS, list(reversed(readings)), provider="aws", now=NOW)
        assert first.consensus == second.consensus
        assert first.confidence == second.confidence

    def test_to_dict_shape(self, aggregator):
        readings = [Reading(SourceId.OPENWEATHER, temperature=18.0, wind_speed=2.0,
                            description="clear sky", raw={"main": {"temp": 18.0}})]
        result = aggregator.aggregate(PARIS, readings, provider="gcp", now=NOW)

        data = result.to_dict()
        assert data["locationId"] == "paris"
        assert data["cloudProvider"] == "gcp"
        assert data["timestamp"] == "2026-10-19T12:00:00Z"
        assert data["aggregated"]["windSpeed"] == 2.0
        assert data["aggregated"]["descriptions"] == ["clear sky"]
        assert "sources" not in data, "Raw payloads are excluded by default"

        raw = result.to_dict(include_raw=True)
        assert raw["sources"]["openweather"]["raw"] == {"main": {"temp": 18.0}}
