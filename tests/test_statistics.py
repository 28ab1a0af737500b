import math

import pytest

from qcengine.utils.statistics import (
    ObservationTag,
    aggregate_population,
    aggregate_sample,
    column_statistics,
    population_std_dev,
    row_statistics,
    sample_std_dev,
    tag_observation,
    tag_observations,
)

VALUES = [2, 4, 4, 4, 5, 5, 7, 9]


def test_population_and_sample_std_dev_differ():
    assert population_std_dev(VALUES) == pytest.approx(2.0)
    assert sample_std_dev(VALUES) == pytest.approx(2.138, abs=1e-3)


def test_aggregates():
    pop = aggregate_population(VALUES)
    sam = aggregate_sample(VALUES)

    assert pop.count == sam.count == 8
    assert pop.mean == sam.mean == pytest.approx(5.0)
    assert pop.stddev == pytest.approx(2.0)
    assert sam.stddev == pytest.approx(math.sqrt(32 / 7))


def test_zero_and_non_finite_are_not_entered():
    values = [0, 2, 4, 4, 4, 5, 5, 7, 9, float("nan"), float("inf"), None, "", "x", 0.0]
    assert aggregate_population(values) == aggregate_population(VALUES)


def test_numeric_strings_count():
    assert aggregate_sample(["2", "4", " 6 "]).mean == pytest.approx(4.0)


def test_empty_input():
    for agg in (aggregate_population([]), aggregate_sample([]), aggregate_population(None)):
        assert (agg.count, agg.mean, agg.stddev) == (0, 0.0, 0.0)


def test_single_value_sample_std_dev_is_zero():
    assert sample_std_dev([5]) == 0.0
    assert population_std_dev([5]) == 0.0


def test_column_statistics_use_population_formula():
    rows = [{"w": v} for v in VALUES] + [{"w": 0}, {}]
    stats = column_statistics(rows, "w")
    assert stats.count == 8
    assert stats.stddev == pytest.approx(2.0)


def test_row_statistics_use_sample_formula():
    row = {f"s{i}": v for i, v in enumerate(VALUES)}
    stats = row_statistics(row, list(row))
    assert stats.stddev == pytest.approx(2.138, abs=1e-3)


def test_observation_tags():
    tare1, tare2 = 176.675, 168.35
    assert tag_observation(180, tare1, tare2) is ObservationTag.CONFORMING
    assert tag_observation(176.675, tare1, tare2) is ObservationTag.CONFORMING
    assert tag_observation(170, tare1, tare2) is ObservationTag.DEFECT
    assert tag_observation(168.35, tare1, tare2) is ObservationTag.DEFECT
    assert tag_observation(160, tare1, tare2) is ObservationTag.CRITICAL
    assert tag_observation(0, tare1, tare2) is ObservationTag.NOT_ENTERED


def test_tag_observations_reports_pass_flag():
    tagged = tag_observations([180, 170, 0], 176.675, 168.35)
    assert [t["tag"] for t in tagged] == ["conforming", "defect", "not_entered"]
    assert [t["passed"] for t in tagged] == [True, False, False]


def test_ints_too_large_for_a_float_are_dropped():
    assert aggregate_population([10 ** 400, 2, 4]).count == 2
    assert tag_observation(10 ** 400, 1, 0) is ObservationTag.NOT_ENTERED
