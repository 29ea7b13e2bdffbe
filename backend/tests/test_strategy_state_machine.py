"""
Draft Strategy State Machine Tests
"""

import pytest

import models
from models import StrategyStatus
from strategy_state_machine import StrategyStateMachine
from planning_errors import InvalidStatusError, RecordNotFoundError, StrategyLockedError


@pytest.mark.unit
class TestSetStatus:

    def test_approve_straight_from_draft(self, db_session, sample_strategies):
        machine = StrategyStateMachine(db_session)
        strategy = machine.set_status(sample_strategies[0].id, "approved", review_notes="Go", reviewed_by="ceo")

        assert strategy.status == StrategyStatus.APPROVED
        assert strategy.reviewed_by == "ceo"
        assert strategy.review_notes == "Go"
        assert strategy.reviewed_at is not None

    def test_under_review_does_not_stamp_reviewer(self, db_session, sample_strategies):
        machine = StrategyStateMachine(db_session)
        strategy = machine.set_status(sample_strategies[0].id, StrategyStatus.UNDER_REVIEW, reviewed_by="ceo")

        assert strategy.status == StrategyStatus.UNDER_REVIEW
        assert strategy.reviewed_at is None
        assert strategy.reviewed_by is None

    def test_approved_and_rejected_are_reenterable(self, db_session, sample_strategies):
        machine = StrategyStateMachine(db_session)
        sid = sample_strategies[0].id

        machine.set_status(sid, "approved")
        machine.set_status(sid, "rejected", review_notes="Too costly")
        strategy = machine.set_status(sid, "approved")

        assert strategy.status == StrategyStatus.APPROVED

    def test_invalid_status_rejected(self, db_session, sample_strategies):
        with pytest.raises(InvalidStatusError):
            StrategyStateMachine(db_session).set_status(sample_strategies[0].id, "shipped")

    def test_unknown_strategy(self, db_session):
        with pytest.raises(RecordNotFoundError):
            StrategyStateMachine(db_session).set_status(9999, "approved")

    def test_converted_strategy_is_locked(self, db_session, converted_strategy):
        machine = StrategyStateMachine(db_session)

        with pytest.raises(StrategyLockedError):
            machine.set_status(converted_strategy.id, "rejected")

        db_session.refresh(converted_strategy)
        assert converted_strategy.status == StrategyStatus.APPROVED

    def test_setting_status_does_not_touch_kpis(self, db_session, sample_strategies):
        before = db_session.query(models.KPI).count()
        StrategyStateMachine(db_session).set_status(sample_strategies[0].id, "approved")
        assert db_session.query(models.KPI).count() == before


@pytest.mark.unit
class TestGetStatus:

    def test_unlocked_lists_other_statuses(self, db_session, sample_strategies):
        status = StrategyStateMachine(db_session).get_status(sample_strategies[0].id)

        assert status["status"] == "draft"
        assert status["is_locked"] is False
        assert set(status["allowed_transitions"]) == {"under_review", "approved", "rejected"}

    def test_locked_has_no_transitions(self, db_session, converted_strategy):
        status = StrategyStateMachine(db_session).get_status(converted_strategy.id)

        assert status["is_locked"] is True
        assert status["allowed_transitions"] == []
        assert status["converted_to_ogsm_id"] == converted_strategy.converted_to_ogsm_id
