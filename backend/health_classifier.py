"""
KPI Health Classifier

Maps current/target ratios to on_track / at_risk / off_track.
Pure functions, no database access.
"""

import math
from typing import Iterable, Optional, Tuple, Dict, Any

from models import HealthStatus


ON_TRACK_RATIO = 0.90
AT_RISK_RATIO = 0.70


def classify(current: Optional[float], target: Optional[float]) -> HealthStatus:
    """
    Classify a KPI's health.

    No target (None or 0) never alarms, and neither does a KPI with no
    observation yet (current None). An explicit 0 is still measured.
    Ratios that are not finite (NaN inputs, or overflow to infinity) are
    OFF_TRACK.
    """
    if target is None or target == 0 or current is None:
        return HealthStatus.ON_TRACK

    ratio = current / target
    if not math.isfinite(ratio):
        return HealthStatus.OFF_TRACK

    if ratio >= ON_TRACK_RATIO:
        return HealthStatus.ON_TRACK
    if ratio >= AT_RISK_RATIO:
        return HealthStatus.AT_RISK
    return HealthStatus.OFF_TRACK


def classify_rollup(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> HealthStatus:
    """
    Plan-level health from many (current, target) pairs.

    KPIs without a target or without an observation are ignored. Each ratio
    is capped at 1.0 so one over-achiever cannot hide a lagging KPI.
    """
    ratios = []
    for current, target in pairs:
        if target is None or target == 0 or current is None:
            continue
        ratio = current / target
        if not math.isfinite(ratio):
            ratio = 0.0
        ratios.append(min(ratio, 1.0))

    if not ratios:
        return HealthStatus.ON_TRACK

    return classify(sum(ratios) / len(ratios), 1.0)


def summarize_health(kpis) -> Dict[str, Any]:
    """Counts by status plus the rollup label for a collection of KPI rows."""
    counts = {status.value: 0 for status in HealthStatus}
    pairs = []
    for kpi in kpis:
        counts[classify(kpi.current_value, kpi.target_value).value] += 1
        pairs.append((kpi.current_value, kpi.target_value))

    counts["overall"] = classify_rollup(pairs).value
    return counts
