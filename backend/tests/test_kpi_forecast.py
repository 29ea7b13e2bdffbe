"""
KPI Forecast Tests
Trend, intervals, confidence and on-track assessment.
"""

import pytest
import numpy as np
from datetime import date
from hypothesis import given, strategies as st, settings, HealthCheck

from models import KPIFrequency
from kpi_history_service import KPIHistoryService
from kpi_forecast_service import (
    KPIForecastService, period_index, classify_trend, classify_confidence, assess_on_track
)
from planning_errors import PlanningValidationError, RecordNotFoundError


def _record(db_session, kpi_id, values, start_month=1, year=2026):
    service = KPIHistoryService(db_session)
    for offset, value in enumerate(values):
        month = start_month + offset
        service.append_history(kpi_id, value, date(year + (month - 1) // 12, (month - 1) % 12 + 1, 15))


@pytest.mark.unit
class TestForecastService:

    def test_insufficient_data_is_not_an_error(self, db_session, sample_kpi):
        _record(db_session, sample_kpi.id, [50])

        forecast = KPIForecastService(db_session).forecast(sample_kpi.id, periods=3)

        assert forecast.insufficient_data is True
        assert forecast.projections == []
        assert forecast.on_track is None
        assert forecast.trend == "stable"
        assert forecast.confidence == "low"
        assert "At least 2 data points" in forecast.message

    def test_no_history(self, db_session, sample_kpi):
        forecast = KPIForecastService(db_session).forecast(sample_kpi.id)
        assert forecast.insufficient_data is True
        assert forecast.data_points == 0

    def test_linear_series(self, db_session, sample_kpi):
        _record(db_session, sample_kpi.id, [10, 20, 30, 40, 50, 60])

        forecast = KPIForecastService(db_session).forecast(sample_kpi.id, periods=2)

        assert forecast.trend == "increasing"
        assert forecast.confidence == "high"
        assert forecast.slope == pytest.approx(10)
        assert forecast.residual_std == pytest.approx(0, abs=1e-9)
        assert [p.predicted_value for p in forecast.projections] == pytest.approx([70, 80])
        assert [p.date for p in forecast.projections] == [date(2026, 7, 15), date(2026, 8, 15)]
        # target 100 is above the start, projection 80 falls short
        assert forecast.on_track is False

    def test_on_track_when_projection_reaches_target(self, db_session, sample_kpi):
        _record(db_session, sample_kpi.id, [70, 80, 90])
        forecast = KPIForecastService(db_session).forecast(sample_kpi.id, periods=2)
        assert forecast.on_track is True

    def test_intervals_widen_with_horizon(self, db_session, sample_kpi):
        _record(db_session, sample_kpi.id, [10, 14, 11, 19, 16, 22, 18])

        forecast = KPIForecastService(db_session).forecast(sample_kpi.id, periods=6)
        widths = [p.upper_bound - p.lower_bound for p in forecast.projections]

        assert len(widths) == 6
        assert all(b >= a for a, b in zip(widths, widths[1:]))
        assert all(p.lower_bound <= p.predicted_value <= p.upper_bound for p in forecast.projections)

    @pytest.mark.parametrize("periods", [0, 25, -1])
    def test_periods_out_of_range(self, db_session, sample_kpi, periods):
        with pytest.raises(PlanningValidationError):
            KPIForecastService(db_session).forecast(sample_kpi.id, periods=periods)

    def test_unknown_kpi(self, db_session):
        with pytest.raises(RecordNotFoundError):
            KPIForecastService(db_session).forecast(404)


@pytest.mark.unit
class TestForecastHelpers:

    def test_period_index_uses_month_ordinals(self):
        x = period_index([date(2026, 1, 31), date(2026, 2, 1), date(2026, 5, 10)], KPIFrequency.MONTHLY)
        assert list(x) == [0, 1, 4]

    def test_period_index_falls_back_to_position(self):
        x = period_index([date(2026, 1, 1), date(2026, 1, 9), date(2026, 1, 20)], KPIFrequency.MONTHLY)
        assert list(x) == [0, 1, 2]

    def test_flat_series_is_stable(self):
        y = np.array([5.0, 5.0, 5.0])
        assert classify_trend(np.arange(3.0), y, 0.0) == "stable"

    def test_noisy_flat_series_is_stable(self):
        y = np.array([10.0, 12.0, 11.0, 12.0, 10.0])
        x = np.arange(5.0)
        slope = np.polyfit(x, y, 1)[0]
        assert classify_trend(x, y, slope) == "stable"

    def test_confidence_levels(self):
        assert classify_confidence(0.5, np.array([0, 10, 20, 30, 40, 50.0])) == "high"
        assert classify_confidence(0.5, np.array([0, 10, 20.0])) == "medium"
        assert classify_confidence(20, np.array([0, 10, 20.0])) == "low"

    def test_on_track_direction(self):
        assert assess_on_track(np.array([100.0, 80.0]), None, 50) is None
        # Lower is better when the target sits below the start
        assert assess_on_track(np.array([100.0, 80.0]), 60, 55) is True
        assert assess_on_track(np.array([100.0, 80.0]), 60, 65) is False
        # Target equals the start: the latest value decides
        assert assess_on_track(np.array([100.0, 90.0]), 100, 101) is True
        # Target equals every observation
        assert assess_on_track(np.array([100.0, 100.0]), 100, 100) is None


@pytest.mark.property
class TestForecastProperties:

    @given(
        start=st.floats(min_value=-1000, max_value=1000),
        steps=st.lists(st.floats(min_value=0.01, max_value=100), min_size=1, max_size=10),
    )
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_strictly_increasing_history_is_increasing(self, start, steps):
        y = np.cumsum([start] + steps)
        x = np.arange(len(y), dtype=float)
        slope = np.polyfit(x, y, 1)[0]
        assert classify_trend(x, y, slope) == "increasing"

    @given(values=st.lists(st.floats(min_value=-1e4, max_value=1e4), min_size=2, max_size=12))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_interval_half_widths_non_decreasing(self, db_engine, values):
        from sqlalchemy.orm import sessionmaker
        import models

        Session = sessionmaker(bind=db_engine, autoflush=False)
        session = Session()
        try:
            kpi = models.KPI(name="prop", frequency=KPIFrequency.MONTHLY, status=models.HealthStatus.ON_TRACK)
            session.add(kpi)
            session.commit()
            _record(session, kpi.id, values)

            forecast = KPIForecastService(session).forecast(kpi.id, periods=12)
            halves = [(p.upper_bound - p.lower_bound) / 2 for p in forecast.projections]
            assert all(b >= a - 1e-9 for a, b in zip(halves, halves[1:]))
        finally:
            session.close()
