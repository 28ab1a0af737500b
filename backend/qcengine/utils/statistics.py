"""Statistics over weight observations.

A value of exactly 0 means "not entered" on the inspection sheets and is
dropped together with anything non-finite or non-numeric before aggregating.

Two standard deviations live side by side and are both used:

- ``population_std_dev`` (``sqrt(E[x^2] - mean^2)``) for the per-column
  footer of a table,
- ``sample_std_dev`` (``n - 1`` denominator) for the per-row figures.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class Aggregate:
    count: int = 0
    mean: float = 0.0
    stddev: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def clean_observations(values: Iterable[Any]) -> np.ndarray:
    """Finite, non-zero numeric observations as a float array."""
    kept = []
    if values is None:
        return np.asarray(kept, dtype=float)
    for value in values:
        number = _to_float(value)
        if number is not None and number != 0:
            kept.append(number)
    return np.asarray(kept, dtype=float)


def population_std_dev(values: Iterable[Any]) -> float:
    arr = clean_observations(values)
    if arr.size == 0:
        return 0.0
    mean = float(arr.mean())
    variance = float(np.mean(arr ** 2)) - mean ** 2
    # rounding can push E[x^2] - mean^2 slightly below zero
    return math.sqrt(max(variance, 0.0))


def sample_std_dev(values: Iterable[Any]) -> float:
    arr = clean_observations(values)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def _mean(arr: np.ndarray) -> float:
    return float(arr.mean()) if arr.size else 0.0


def aggregate_population(values: Iterable[Any]) -> Aggregate:
    """Count, mean and population standard deviation."""
    arr = clean_observations(values)
    return Aggregate(count=int(arr.size), mean=_mean(arr), stddev=population_std_dev(arr))


def aggregate_sample(values: Iterable[Any]) -> Aggregate:
    """Count, mean and sample standard deviation."""
    arr = clean_observations(values)
    return Aggregate(count=int(arr.size), mean=_mean(arr), stddev=sample_std_dev(arr))


def column_statistics(rows: Sequence[Mapping[str, Any]], key: str) -> Aggregate:
    """Footer statistics of one column across all rows (population)."""
    return aggregate_population(row.get(key) for row in rows)


def row_statistics(row: Mapping[str, Any], keys: Sequence[str]) -> Aggregate:
    """Statistics across the sample columns of a single row (sample)."""
    return aggregate_sample(row.get(key) for key in keys)


# ---------------------------------------------------------------------------
# Per-observation tags
# ---------------------------------------------------------------------------

class ObservationTag(str, Enum):
    CONFORMING = "conforming"
    DEFECT = "defect"
    CRITICAL = "critical"
    NOT_ENTERED = "not_entered"

    @property
    def passed(self) -> bool:
        return self is ObservationTag.CONFORMING


def tag_observation(value: Any, tare1: float, tare2: float) -> ObservationTag:
    """Classify one unit: below tare2 is critical, below tare1 a defect."""
    number = _to_float(value)
    if number is None or number == 0:
        return ObservationTag.NOT_ENTERED
    if number < tare2:
        return ObservationTag.CRITICAL
    if number < tare1:
        return ObservationTag.DEFECT
    return ObservationTag.CONFORMING


def tag_observations(values: Iterable[Any], tare1: float, tare2: float) -> List[Dict[str, Any]]:
    tagged = []
    for value in values if values is not None else ():
        tag = tag_observation(value, tare1, tare2)
        tagged.append({"value": value, "tag": tag.value, "passed": tag.passed})
    return tagged
