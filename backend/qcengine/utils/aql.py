"""AQL utilities.

This module turns weighed samples into lot verdicts:

- classify_sample: split the observations into defects (below tare1) and
  criticals (below tare2) and decide two tiers.  The tare2 tier rejects on any
  critical unit.  The tare1 tier looks up Ac/Re in the sampling plan for the
  nearest sample-size bucket and rejects when defects reach Re, or when the
  critical tier already failed.

- AQLResultProcessor: the weight-inspection report that threads one nominal
  weight through tolerance, statistics and classification.

An empty sample (or one holding only 0 "not entered" sentinels) is ACCEPTED
on both tiers; telling "no data" apart from "passed" is left to the caller,
which gets the counts alongside the verdicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

from ..models.sampling_plan import DEFAULT_SAMPLING_PLAN, FALLBACK_LEVEL, SamplingPlan
from .statistics import ObservationTag, aggregate_population, aggregate_sample, tag_observation, tag_observations
from .tolerance import compute_tolerance_limits


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        iv = int(value)
        return iv if iv >= 0 else default
    except (TypeError, ValueError):
        return default


class Verdict(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class SampleClassification:
    tare1_verdict: Verdict
    tare2_verdict: Verdict
    ac: int
    re: int
    bucket: int
    quality_level: str
    defects: List[float] = field(default_factory=list)
    criticals: List[float] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.tare1_verdict is Verdict.ACCEPTED and self.tare2_verdict is Verdict.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tare1_verdict": self.tare1_verdict.value,
            "tare2_verdict": self.tare2_verdict.value,
            "ac": self.ac,
            "re": self.re,
            "bucket": self.bucket,
            "quality_level": self.quality_level,
            "defect_count": len(self.defects),
            "critical_count": len(self.criticals),
            "defects": list(self.defects),
            "criticals": list(self.criticals),
        }


def partition_sample(values: Sequence[Any], tare1: float, tare2: float):
    """Return (defects, criticals); conforming and not-entered values are dropped."""
    defects: List[float] = []
    criticals: List[float] = []
    for value in values if values is not None else ():
        tag = tag_observation(value, tare1, tare2)
        if tag is ObservationTag.CRITICAL:
            criticals.append(float(value))
        elif tag is ObservationTag.DEFECT:
            defects.append(float(value))
    return defects, criticals


def classify_sample(
    values: Sequence[Any],
    tare1: float,
    tare2: float,
    sample_size_nominal: int,
    quality_level: str = FALLBACK_LEVEL,
    plan: SamplingPlan | None = None,
) -> SampleClassification:
    """Accept/reject a weighed sample on the tare2 and tare1 tiers.

    Raises SamplingPlanError when the plan cannot resolve ``quality_level``
    nor its fallback in the nearest bucket.
    """
    plan = plan or DEFAULT_SAMPLING_PLAN
    defects, criticals = partition_sample(values, tare1, tare2)

    tare2_verdict = Verdict.REJECTED if criticals else Verdict.ACCEPTED

    entry = plan.lookup(_safe_int(sample_size_nominal), quality_level)
    if criticals or len(defects) >= entry.re:
        tare1_verdict = Verdict.REJECTED
    else:
        tare1_verdict = Verdict.ACCEPTED

    return SampleClassification(
        tare1_verdict=tare1_verdict,
        tare2_verdict=tare2_verdict,
        ac=entry.ac,
        re=entry.re,
        bucket=entry.bucket,
        quality_level=entry.quality_level,
        defects=defects,
        criticals=criticals,
    )


class AQLResultProcessor:
    """Builds the weight-inspection report shown under a sample table."""

    @staticmethod
    def process_weight_sample(
        values: Sequence[Any],
        nominal_weight: float,
        sample_size_nominal: int,
        quality_level: str = FALLBACK_LEVEL,
        plan: SamplingPlan | None = None,
    ) -> Dict[str, Any]:
        tolerance = compute_tolerance_limits(nominal_weight)
        classification = classify_sample(
            values,
            tolerance.tare1,
            tolerance.tare2,
            sample_size_nominal,
            quality_level,
            plan=plan,
        )

        rejection_reasons = []
        if classification.tare2_verdict is Verdict.REJECTED:
            rejection_reasons.append("CRITICAL_BELOW_TARE2")
        if classification.tare1_verdict is Verdict.REJECTED and len(classification.defects) >= classification.re:
            rejection_reasons.append("DEFECTS_REACHED_RE")

        return {
            "nominal_weight": nominal_weight,
            "configured": tolerance.configured,
            "tolerance": tolerance.to_dict(),
            "population": aggregate_population(values).to_dict(),
            "sample": aggregate_sample(values).to_dict(),
            "observations": tag_observations(values, tolerance.tare1, tolerance.tare2),
            "classification": classification.to_dict(),
            "passed": classification.accepted,
            "rejection_reasons": rejection_reasons,
        }


def inspect_weights(values, nominal_weight, sample_size_nominal, quality_level=FALLBACK_LEVEL, plan=None):
    return AQLResultProcessor.process_weight_sample(
        values, nominal_weight, sample_size_nominal, quality_level, plan=plan
    )
