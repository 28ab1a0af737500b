import json

import pytest
from marshmallow import ValidationError

from qcengine.models.sampling_plan import (
    DEFAULT_SAMPLING_PLAN,
    FALLBACK_LEVEL,
    SAMPLE_SIZE_BUCKETS,
    AcRe,
    PlanEntry,
    SamplingPlan,
    SamplingPlanError,
)


def test_default_plan_buckets():
    assert DEFAULT_SAMPLING_PLAN.buckets == SAMPLE_SIZE_BUCKETS


def test_every_default_bucket_stocks_the_fallback_level():
    for bucket in DEFAULT_SAMPLING_PLAN.buckets:
        assert FALLBACK_LEVEL in DEFAULT_SAMPLING_PLAN.levels(bucket)


def test_bucket_20_at_1_5_percent():
    assert DEFAULT_SAMPLING_PLAN.lookup(20, "1.5%") == PlanEntry(bucket=20, quality_level="1.5%", ac=1, re=2)


def test_bucket_3_at_1_percent():
    entry = DEFAULT_SAMPLING_PLAN.lookup(3, "1.0%")
    assert (entry.ac, entry.re) == (0, 1)


@pytest.mark.parametrize(
    "sample_size,bucket",
    [(1, 2), (2, 2), (4, 3), (6, 5), (7, 8), (10, 8), (11, 13), (16, 13), (17, 20), (26, 20), (45, 50), (500, 50), (0, 2)],
)
def test_nearest_bucket(sample_size, bucket):
    assert DEFAULT_SAMPLING_PLAN.nearest_bucket(sample_size) == bucket


def test_unstocked_level_falls_back():
    entry = DEFAULT_SAMPLING_PLAN.lookup(3, "0.65%")
    assert entry.quality_level == FALLBACK_LEVEL
    assert (entry.ac, entry.re) == (0, 1)


def test_missing_fallback_raises():
    plan = SamplingPlan({5: {"2.5%": "0/1"}})
    with pytest.raises(SamplingPlanError):
        plan.lookup(5, "0.65%")
    # the stocked level still resolves
    assert plan.lookup(5, "2.5%").re == 1


def test_empty_plan_raises():
    with pytest.raises(SamplingPlanError):
        SamplingPlan({}).nearest_bucket(5)


@pytest.mark.parametrize("raw", ["1/2", " 1 / 2 ", [1, 2], (1, 2), {"ac": 1, "re": 2}])
def test_ac_re_parse(raw):
    assert AcRe.parse(raw) == AcRe(1, 2)


@pytest.mark.parametrize("raw", ["2/1", "1/1", "a/b", [1], 3, "-1/2"])
def test_ac_re_parse_rejects(raw):
    with pytest.raises(ValueError):
        AcRe.parse(raw)


def test_from_dict_round_trips():
    plan = SamplingPlan.from_dict(DEFAULT_SAMPLING_PLAN.to_dict())
    assert plan.to_dict() == DEFAULT_SAMPLING_PLAN.to_dict()


def test_from_dict_rejects_bucket_without_fallback():
    with pytest.raises(ValidationError) as excinfo:
        SamplingPlan.from_dict({"5": {"2.5%": "0/1"}})
    assert "buckets" in excinfo.value.messages


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"x": {"1.0%": "0/1"}},
        {"-3": {"1.0%": "0/1"}},
        {"5": {"1.0%": "2/1"}},
    ],
)
def test_from_dict_rejects_malformed_plans(data):
    with pytest.raises(ValidationError):
        SamplingPlan.from_dict(data)


def test_from_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"10": {"1.0%": "1/2", "4.0%": "2/3"}}), encoding="utf-8")

    plan = SamplingPlan.from_file(path)

    assert plan.buckets == (10,)
    assert plan.lookup(3, "4.0%") == PlanEntry(bucket=10, quality_level="4.0%", ac=2, re=3)
