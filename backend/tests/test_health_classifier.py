"""
Health Classifier Tests
Threshold boundaries, missing values and plan-level rollup.
"""

import pytest
from types import SimpleNamespace
from hypothesis import given, strategies as st, settings

from models import HealthStatus
from health_classifier import classify, classify_rollup, summarize_health


@pytest.mark.unit
class TestClassify:

    @pytest.mark.parametrize("current,target,expected", [
        (90, 100, HealthStatus.ON_TRACK),
        (89.99, 100, HealthStatus.AT_RISK),
        (70, 100, HealthStatus.AT_RISK),
        (69.99, 100, HealthStatus.OFF_TRACK),
        (65, 100, HealthStatus.OFF_TRACK),
        (150, 100, HealthStatus.ON_TRACK),
        (0, 100, HealthStatus.OFF_TRACK),
    ])
    def test_thresholds(self, current, target, expected):
        assert classify(current, target) == expected

    def test_missing_target_never_alarms(self):
        assert classify(5, None) == HealthStatus.ON_TRACK
        assert classify(5, 0) == HealthStatus.ON_TRACK
        assert classify(None, None) == HealthStatus.ON_TRACK

    def test_no_observation_does_not_alarm(self):
        assert classify(None, 100) == HealthStatus.ON_TRACK
        assert classify(0, 100) == HealthStatus.OFF_TRACK

    def test_nan_current_is_off_track(self):
        assert classify(float("nan"), 100) == HealthStatus.OFF_TRACK

    def test_overflowing_ratio_is_off_track(self):
        assert classify(1e308, 1e-10) == HealthStatus.OFF_TRACK
        assert classify(float("inf"), 100) == HealthStatus.OFF_TRACK


@pytest.mark.unit
class TestRollup:

    def test_no_targets_is_on_track(self):
        assert classify_rollup([(10, None), (None, 0)]) == HealthStatus.ON_TRACK
        assert classify_rollup([]) == HealthStatus.ON_TRACK

    def test_over_achiever_cannot_hide_laggard(self):
        # 300% capped at 1.0, averaged with 0.5 -> 0.75
        assert classify_rollup([(300, 100), (50, 100)]) == HealthStatus.AT_RISK

    def test_summarize_counts_and_overall(self):
        kpis = [
            SimpleNamespace(current_value=95, target_value=100),
            SimpleNamespace(current_value=75, target_value=100),
            SimpleNamespace(current_value=10, target_value=100),
            SimpleNamespace(current_value=None, target_value=None),
        ]
        summary = summarize_health(kpis)
        assert summary["on_track"] == 2
        assert summary["at_risk"] == 1
        assert summary["off_track"] == 1
        assert summary["overall"] == HealthStatus.OFF_TRACK.value


@pytest.mark.property
class TestClassifierProperties:

    finite = st.floats(min_value=-1e9, max_value=1e9, allow_nan=False, allow_infinity=False)

    @given(current=st.one_of(st.none(), finite), target=st.one_of(st.none(), finite))
    @settings(max_examples=200, deadline=None)
    def test_total_and_idempotent(self, current, target):
        first = classify(current, target)
        assert first in set(HealthStatus)
        assert classify(current, target) == first

    @given(current=st.one_of(st.none(), finite))
    @settings(max_examples=50, deadline=None)
    def test_zero_or_null_target_is_on_track(self, current):
        assert classify(current, 0) == HealthStatus.ON_TRACK
        assert classify(current, None) == HealthStatus.ON_TRACK

    @given(target=st.floats(min_value=0.01, max_value=1e6), ratio=st.floats(min_value=0, max_value=2))
    @settings(max_examples=100, deadline=None)
    def test_monotone_in_current_for_positive_target(self, target, ratio):
        order = [HealthStatus.OFF_TRACK, HealthStatus.AT_RISK, HealthStatus.ON_TRACK]
        lower = classify(target * ratio, target)
        higher = classify(target * ratio * 1.1, target)
        assert order.index(higher) >= order.index(lower)
