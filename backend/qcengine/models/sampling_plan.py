"""AQL sampling plan: sample-size bucket -> quality level -> Ac/Re.

The built-in table is the single-sampling, normal-inspection plan with the
arrows already resolved, restricted to the sample sizes used for weight
checks.  Small buckets do not stock the lowest quality levels; lookups for a
level a bucket lacks fall back to ``FALLBACK_LEVEL``.

A plan may also be supplied as JSON at configuration time::

    {"2": {"1.0%": "0/1", ...}, "3": {...}, ...}
"""

import json
import logging
import re
from dataclasses import dataclass

from marshmallow import Schema, ValidationError, fields, validates_schema

logger = logging.getLogger(__name__)

FALLBACK_LEVEL = "1.0%"
SAMPLE_SIZE_BUCKETS = (2, 3, 5, 8, 13, 20, 32, 50)

DEFAULT_PLAN_TABLE = {
    2: {"1.0%": "0/1", "1.5%": "0/1", "2.5%": "0/1", "4.0%": "0/1", "6.5%": "0/1"},
    3: {"1.0%": "0/1", "1.5%": "0/1", "2.5%": "0/1", "4.0%": "0/1", "6.5%": "0/1"},
    5: {"1.0%": "0/1", "1.5%": "0/1", "2.5%": "0/1", "4.0%": "0/1", "6.5%": "1/2"},
    8: {"1.0%": "0/1", "1.5%": "0/1", "2.5%": "0/1", "4.0%": "1/2", "6.5%": "1/2"},
    13: {"0.65%": "0/1", "1.0%": "0/1", "1.5%": "0/1", "2.5%": "1/2", "4.0%": "1/2", "6.5%": "2/3"},
    20: {"0.65%": "0/1", "1.0%": "0/1", "1.5%": "1/2", "2.5%": "1/2", "4.0%": "2/3", "6.5%": "3/4"},
    32: {"0.65%": "0/1", "1.0%": "1/2", "1.5%": "1/2", "2.5%": "2/3", "4.0%": "3/4", "6.5%": "5/6"},
    50: {"0.65%": "1/2", "1.0%": "1/2", "1.5%": "2/3", "2.5%": "3/4", "4.0%": "5/6", "6.5%": "7/8"},
}

_AC_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


class SamplingPlanError(ValueError):
    """The plan cannot answer a lookup; a configuration problem, not bad input."""


@dataclass(frozen=True)
class AcRe:
    ac: int
    re: int

    @classmethod
    def parse(cls, raw):
        """Accept "1/2", [1, 2] or {"ac": 1, "re": 2}."""
        if isinstance(raw, AcRe):
            return raw
        if isinstance(raw, str):
            match = _AC_RE.match(raw)
            if not match:
                raise ValueError(f"'{raw}' is not an Ac/Re pair")
            ac, re_ = int(match.group(1)), int(match.group(2))
        elif isinstance(raw, dict):
            ac, re_ = int(raw["ac"]), int(raw["re"])
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            ac, re_ = int(raw[0]), int(raw[1])
        else:
            raise ValueError(f"'{raw}' is not an Ac/Re pair")
        if ac < 0 or re_ < 0:
            raise ValueError(f"Ac/Re must be non-negative, got {ac}/{re_}")
        if ac >= re_:
            raise ValueError(f"Ac must be lower than Re, got {ac}/{re_}")
        return cls(ac, re_)

    def __str__(self):
        return f"{self.ac}/{self.re}"


class SamplingPlanSchema(Schema):
    """Validates a JSON plan: {bucket: {level: "Ac/Re"}}"""

    buckets = fields.Dict(
        keys=fields.Str(),
        values=fields.Dict(keys=fields.Str(), values=fields.Raw()),
        required=True,
    )

    @validates_schema
    def check_plan(self, data, **kwargs):
        errors = {}
        buckets = data.get("buckets") or {}
        if not buckets:
            raise ValidationError("sampling plan has no buckets", field_name="buckets")
        for bucket, levels in buckets.items():
            try:
                size = int(bucket)
            except ValueError:
                errors[bucket] = ["bucket must be a positive integer sample size"]
                continue
            if size <= 0:
                errors[bucket] = ["bucket must be a positive integer sample size"]
                continue
            if FALLBACK_LEVEL not in levels:
                errors[bucket] = [f"missing the {FALLBACK_LEVEL} fallback level"]
                continue
            for level, pair in levels.items():
                try:
                    AcRe.parse(pair)
                except (ValueError, KeyError, TypeError) as exc:
                    errors.setdefault(bucket, []).append(f"{level}: {exc}")
        if errors:
            raise ValidationError(errors, field_name="buckets")


class SamplingPlan:
    """Read-only Ac/Re lookup table"""

    def __init__(self, table):
        # buckets kept in ascending order; ties in nearest_bucket go to the smaller one
        self._table = {
            int(bucket): {str(level): AcRe.parse(pair) for level, pair in levels.items()}
            for bucket, levels in sorted(table.items(), key=lambda item: int(item[0]))
        }

    @property
    def buckets(self):
        return tuple(self._table)

    def levels(self, bucket):
        return tuple(self._table[bucket])

    def nearest_bucket(self, sample_size):
        """Bucket closest to ``sample_size``; the first (smallest) wins a tie."""
        best, best_distance = None, None
        for bucket in self._table:
            distance = abs(bucket - sample_size)
            if best_distance is None or distance < best_distance:
                best, best_distance = bucket, distance
        if best is None:
            raise SamplingPlanError("sampling plan has no buckets")
        return best

    def resolve(self, bucket, quality_level):
        """Return (level actually used, AcRe) inside ``bucket``."""
        levels = self._table.get(bucket)
        if levels is None:
            raise SamplingPlanError(f"sample size bucket {bucket} is not in the plan")
        if quality_level in levels:
            return quality_level, levels[quality_level]
        if FALLBACK_LEVEL in levels:
            logger.debug(f"Level {quality_level} not stocked for bucket {bucket}, using {FALLBACK_LEVEL}")
            return FALLBACK_LEVEL, levels[FALLBACK_LEVEL]
        raise SamplingPlanError(
            f"bucket {bucket} has neither {quality_level} nor the {FALLBACK_LEVEL} fallback"
        )

    def lookup(self, sample_size, quality_level):
        bucket = self.nearest_bucket(sample_size)
        level, pair = self.resolve(bucket, quality_level)
        return PlanEntry(bucket=bucket, quality_level=level, ac=pair.ac, re=pair.re)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_dict(self):
        return {
            str(bucket): {level: str(pair) for level, pair in levels.items()}
            for bucket, levels in self._table.items()
        }

    @classmethod
    def from_dict(cls, data):
        """Validate a JSON plan. Raises ValidationError on any defect."""
        try:
            validated = SamplingPlanSchema().load({"buckets": data})
        except ValidationError as exc:
            logger.error(f"Rejected sampling plan: {exc.messages}")
            raise
        return cls(validated["buckets"])

    @classmethod
    def from_file(cls, path):
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        return cls.from_dict(data)


@dataclass(frozen=True)
class PlanEntry:
    bucket: int
    quality_level: str
    ac: int
    re: int


DEFAULT_SAMPLING_PLAN = SamplingPlan(DEFAULT_PLAN_TABLE)
