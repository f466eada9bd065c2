"""
Statistics helpers shared by both aggregation layers.

All reductions are commutative so results do not depend on the order
in which concurrent fetches finish. Absent values (None) are filtered
out before any math, never treated as zero.
"""

import math
from decimal import Decimal, ROUND_HALF_DOWN, ROUND_HALF_UP
from typing import Iterable, List, Optional

import numpy as np

# Agreement loses 25 points per degree Celsius of spread (4C spread -> 0).
# Linear heuristic kept for compatibility, not a statistical confidence.
AGREEMENT_PENALTY_PER_DEGREE = 25.0


def finite_or_none(value) -> Optional[float]:
    """Coerce to float, mapping None/NaN/inf to None."""
    if value is None or isinstance(value, bool):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round with halves going towards +inf (23.25 -> 23.3, -23.25 -> -23.2).

    Python's built-in round() uses banker's rounding, which would give
    different confidence numbers for exact halves.
    """
    quantum = Decimal(1).scaleb(-digits)
    number = Decimal(repr(value))
    rounding = ROUND_HALF_UP if number >= 0 else ROUND_HALF_DOWN
    return float(number.quantize(quantum, rounding=rounding))


def present(values: Iterable[Optional[float]]) -> List[float]:
    """Drop absent values."""
    return [v for v in values if v is not None]


def mean(values: Iterable[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the present values, None if there are none."""
    numbers = present(values)
    if not numbers:
        return None
    return float(np.mean(np.array(numbers, dtype=float)))


def population_stdev(values: Iterable[Optional[float]]) -> Optional[float]:
    """
    Population standard deviation (divide by N, not N-1).

    Returns None when fewer than two values are present: a single value
    has no spread to measure.
    """
    numbers = present(values)
    if len(numbers) < 2:
        return None
    return float(np.std(np.array(numbers, dtype=float)))


def spread(values: Iterable[Optional[float]]) -> Optional[float]:
    """Max minus min of the present values."""
    numbers = present(values)
    if not numbers:
        return None
    return max(numbers) - min(numbers)


def agreement_score(temperatures: Iterable[Optional[float]]) -> int:
    """
    Heuristic 0-100 agreement between provider temperatures.

    max(0, round(100 - 25 * (max - min))). Fewer than two values means
    there is no spread to penalise, so the score is 100.
    """
    numbers = present(temperatures)
    if len(numbers) < 2:
        return 100
    penalty = AGREEMENT_PENALTY_PER_DEGREE * (max(numbers) - min(numbers))
    return max(0, int(round_half_up(100.0 - penalty)))
