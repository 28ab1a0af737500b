"""Tare and pack limits derived from a nominal (standard) weight."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)

# (upper bound of nominal weight, kind, amount); first bracket with
# nominal <= bound wins.  "percent" amounts are fractions of the nominal.
TOLERABLE_DEFICIENCY_BRACKETS: Tuple[Tuple[float, str, float], ...] = (
    (50, "percent", 0.09),
    (100, "flat", 4.5),
    (200, "percent", 0.045),
    (300, "flat", 9.0),
    (500, "percent", 0.03),
    (1000, "flat", 15.0),
    (10000, "percent", 0.015),
    (15000, "flat", 150.0),
    (50000, "percent", 0.01),
    (math.inf, "percent", 0.01),
)


@dataclass(frozen=True)
class ToleranceResult:
    tare1: float = 0.0
    tare2: float = 0.0
    pack_limit1: float = 0.0
    pack_limit2: float = 0.0
    tolerable_deficiency: float = 0.0

    @property
    def configured(self) -> bool:
        return self.tolerable_deficiency > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def tolerable_deficiency(nominal_weight: float) -> float:
    """TD for a positive nominal weight."""
    for bound, kind, amount in TOLERABLE_DEFICIENCY_BRACKETS:
        if nominal_weight <= bound:
            return amount if kind == "flat" else amount * nominal_weight
    # unreachable, the last bracket is unbounded
    return 0.0


def compute_tolerance_limits(nominal_weight: Any) -> ToleranceResult:
    """Derive tare1/tare2 and the pack limits from ``nominal_weight``.

    Values are not rounded.  A non-finite, non-numeric or non-positive nominal
    weight gives an all-zero result, which the caller shows as "not configured".

    ``pack_limit1`` equals ``tare2``.
    """
    try:
        nominal = float(nominal_weight)
    except (TypeError, ValueError):
        logger.debug(f"Tolerance requested for non-numeric nominal weight {nominal_weight!r}")
        return ToleranceResult()
    if not math.isfinite(nominal) or nominal <= 0:
        logger.debug(f"Tolerance requested for nominal weight {nominal_weight!r}, returning zeros")
        return ToleranceResult()

    td = tolerable_deficiency(nominal)
    tare2 = nominal - 2 * td
    return ToleranceResult(
        tare1=nominal - td,
        tare2=tare2,
        pack_limit1=tare2,
        pack_limit2=nominal + 2 * td,
        tolerable_deficiency=td,
    )
