"""
KPI Forecast Service

Linear-trend forecast over a KPI's observation history.

Method:
- Observations are indexed by period ordinal at the KPI's frequency
- Least-squares line through (period index, value)
- Prediction intervals widen with the square root of periods ahead
- Confidence from the residual spread relative to the observed range

Forecasts are computed on read and never persisted.
"""

import math
import logging
import numpy as np
import pandas as pd
from datetime import date
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from models import KPI, KPIHistoryEntry, KPIFrequency
from planning_errors import RecordNotFoundError, PlanningValidationError, InsufficientDataError

logger = logging.getLogger(__name__)

MIN_DATA_POINTS = 2
MAX_PERIODS = 24
Z_95 = 1.96
TREND_THRESHOLD = 0.05
SIGMA_FLOOR_RATIO = 0.02
HIGH_CONFIDENCE_SPREAD = 0.10
MEDIUM_CONFIDENCE_SPREAD = 0.25
HIGH_CONFIDENCE_MIN_POINTS = 6

PERIOD_FREQ = {
    KPIFrequency.DAILY: "D",
    KPIFrequency.WEEKLY: "W",
    KPIFrequency.MONTHLY: "M",
    KPIFrequency.QUARTERLY: "Q",
    KPIFrequency.ANNUAL: "Y",
}

PERIOD_STEP = {
    KPIFrequency.DAILY: relativedelta(days=1),
    KPIFrequency.WEEKLY: relativedelta(weeks=1),
    KPIFrequency.MONTHLY: relativedelta(months=1),
    KPIFrequency.QUARTERLY: relativedelta(months=3),
    KPIFrequency.ANNUAL: relativedelta(years=1),
}


@dataclass
class ForecastPoint:
    periods_ahead: int
    date: date
    predicted_value: float
    lower_bound: float
    upper_bound: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periods_ahead": self.periods_ahead,
            "date": self.date.isoformat(),
            "predicted_value": self.predicted_value,
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
        }


@dataclass
class KPIForecast:
    kpi_id: int
    trend: str = "stable"
    confidence: str = "low"
    projections: List[ForecastPoint] = field(default_factory=list)
    on_track: Optional[bool] = None
    insufficient_data: bool = False
    message: Optional[str] = None
    data_points: int = 0
    slope: Optional[float] = None
    residual_std: Optional[float] = None
    target_value: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kpi_id": self.kpi_id,
            "trend": self.trend,
            "confidence": self.confidence,
            "projections": [p.to_dict() for p in self.projections],
            "on_track": self.on_track,
            "insufficient_data": self.insufficient_data,
            "message": self.message,
            "data_points": self.data_points,
            "slope": self.slope,
            "residual_std": self.residual_std,
            "target_value": self.target_value,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# PURE HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def period_index(dates: List[date], frequency: KPIFrequency) -> np.ndarray:
    """
    Period ordinal of each date relative to the first one.

    Falls back to the positional index when every date is in the same period.
    """
    periods = pd.to_datetime(pd.Series(dates)).dt.to_period(PERIOD_FREQ[frequency])
    ordinals = np.array([p.ordinal for p in periods], dtype=float)
    x = ordinals - ordinals[0]
    if np.all(x == 0):
        return np.arange(len(dates), dtype=float)
    return x


def classify_trend(x: np.ndarray, y: np.ndarray, slope: float) -> str:
    steps = np.diff(y)
    if np.all(steps > 0):
        return "increasing"
    if np.all(steps < 0):
        return "decreasing"

    value_range = float(y.max() - y.min())
    if value_range == 0:
        return "stable"

    relative_change = slope * float(x[-1] - x[0]) / value_range
    if relative_change > TREND_THRESHOLD:
        return "increasing"
    if relative_change < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def classify_confidence(residual_std: float, y: np.ndarray) -> str:
    value_range = float(y.max() - y.min())
    spread = residual_std / value_range if value_range > 0 else 0.0

    if spread <= HIGH_CONFIDENCE_SPREAD and len(y) >= HIGH_CONFIDENCE_MIN_POINTS:
        return "high"
    if spread <= MEDIUM_CONFIDENCE_SPREAD:
        return "medium"
    return "low"


def assess_on_track(y: np.ndarray, target: Optional[float], final_prediction: float) -> Optional[bool]:
    """
    Whether the last projection meets the target.

    The target's position relative to the earliest observation says whether
    higher or lower is better; the latest observation breaks a tie.
    """
    if target is None:
        return None

    first, last = float(y[0]), float(y[-1])
    if target > first:
        higher_is_better = True
    elif target < first:
        higher_is_better = False
    elif target != last:
        higher_is_better = target > last
    elif np.all(y == target):
        return None
    else:
        higher_is_better = target > float(np.mean(y))

    if higher_is_better:
        return bool(final_prediction >= target)
    return bool(final_prediction <= target)


class KPIForecastService:
    """Forecasts KPI values from their history."""

    def __init__(self, db: Session):
        self.db = db

    def forecast(self, kpi_id: int, periods: int = 6) -> KPIForecast:
        """
        Project `periods` future values.

        Fewer than two observations yields an empty forecast flagged
        insufficient_data rather than an error.
        """
        if isinstance(periods, bool) or not isinstance(periods, int) or not 1 <= periods <= MAX_PERIODS:
            raise PlanningValidationError(f"periods must be an integer between 1 and {MAX_PERIODS}")

        kpi = self.db.query(KPI).filter(KPI.id == kpi_id).first()
        if not kpi:
            raise RecordNotFoundError("KPI", kpi_id)

        entries = self.db.query(KPIHistoryEntry).filter(
            KPIHistoryEntry.kpi_id == kpi_id
        ).order_by(KPIHistoryEntry.recorded_date.asc(), KPIHistoryEntry.id.asc()).all()

        try:
            return self._fit(kpi, entries, periods)
        except InsufficientDataError as e:
            return KPIForecast(
                kpi_id=kpi.id,
                insufficient_data=True,
                message=e.message,
                data_points=e.data_points,
                target_value=kpi.target_value,
            )

    def _fit(self, kpi: KPI, entries: List[KPIHistoryEntry], periods: int) -> KPIForecast:
        if len(entries) < MIN_DATA_POINTS:
            raise InsufficientDataError(
                f"At least {MIN_DATA_POINTS} data points are required to forecast "
                f"(KPI {kpi.id} has {len(entries)})",
                data_points=len(entries),
                required=MIN_DATA_POINTS,
            )

        frequency = kpi.frequency or KPIFrequency.MONTHLY
        y = np.array([e.value for e in entries], dtype=float)
        x = period_index([e.recorded_date for e in entries], frequency)

        slope, intercept = np.polyfit(x, y, 1)
        residuals = y - (intercept + slope * x)
        n = len(y)
        residual_std = float(np.sqrt(np.sum(residuals ** 2) / (n - 2))) if n > 2 else 0.0

        sigma = max(residual_std, SIGMA_FLOOR_RATIO * abs(float(np.mean(y))))
        last_x = float(x[-1])
        last_date = entries[-1].recorded_date
        step = PERIOD_STEP[frequency]

        projections = []
        for k in range(1, periods + 1):
            predicted = float(intercept + slope * (last_x + k))
            half_width = Z_95 * sigma * math.sqrt(k)
            projections.append(ForecastPoint(
                periods_ahead=k,
                date=last_date + step * k,
                predicted_value=predicted,
                lower_bound=predicted - half_width,
                upper_bound=predicted + half_width,
            ))

        result = KPIForecast(
            kpi_id=kpi.id,
            trend=classify_trend(x, y, float(slope)),
            confidence=classify_confidence(residual_std, y),
            projections=projections,
            on_track=assess_on_track(y, kpi.target_value, projections[-1].predicted_value),
            data_points=n,
            slope=float(slope),
            residual_std=residual_std,
            target_value=kpi.target_value,
        )
        logger.info(
            f"Forecast KPI {kpi.id}: {n} points, trend={result.trend}, "
            f"confidence={result.confidence}, on_track={result.on_track}"
        )
        return result
