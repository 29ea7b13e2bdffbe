"""
Draft Strategy State Machine

States: DRAFT -> UNDER_REVIEW -> APPROVED | REJECTED

Reviewers may approve straight from DRAFT and may flip between APPROVED and
REJECTED. Once the conversion engine has linked a strategy to an OGSM node
the strategy is locked and its status can no longer change.
"""

import logging
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from models import DraftStrategy, StrategyStatus, utcnow
from planning_errors import InvalidStatusError, RecordNotFoundError, StrategyLockedError

logger = logging.getLogger(__name__)

REVIEW_OUTCOMES = {StrategyStatus.APPROVED, StrategyStatus.REJECTED}


def parse_status(value) -> StrategyStatus:
    if isinstance(value, StrategyStatus):
        return value
    try:
        return StrategyStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in StrategyStatus)
        raise InvalidStatusError(f"Invalid strategy status '{value}'. Expected one of: {allowed}")


class StrategyStateMachine:
    """Review transitions for draft strategies."""

    def __init__(self, db: Session):
        self.db = db

    def _load(self, strategy_id: int) -> DraftStrategy:
        strategy = self.db.query(DraftStrategy).filter(DraftStrategy.id == strategy_id).first()
        if not strategy:
            raise RecordNotFoundError("Draft strategy", strategy_id)
        return strategy

    def set_status(
        self,
        strategy_id: int,
        new_status,
        review_notes: Optional[str] = None,
        reviewed_by: Optional[str] = None
    ) -> DraftStrategy:
        """
        Move a strategy to new_status.

        Approving or rejecting stamps the reviewer, the review time and the
        notes. No cascade to KPIs or hierarchy nodes.

        Raises:
            InvalidStatusError: new_status is not a strategy status
            RecordNotFoundError: unknown strategy
            StrategyLockedError: the strategy has already been converted
        """
        status = parse_status(new_status)
        strategy = self._load(strategy_id)

        if strategy.is_converted:
            raise StrategyLockedError(
                f"Strategy {strategy_id} was converted to OGSM component "
                f"{strategy.converted_to_ogsm_id} and can no longer change status"
            )

        previous = strategy.status
        try:
            strategy.status = status
            if status in REVIEW_OUTCOMES:
                strategy.reviewed_at = utcnow()
                strategy.reviewed_by = reviewed_by
                strategy.review_notes = review_notes
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(strategy)
        logger.info(f"Strategy {strategy_id} status {previous.value} -> {status.value} (by {reviewed_by})")
        return strategy

    def get_status(self, strategy_id: int) -> Dict[str, Any]:
        """Current status, lock flag and the statuses that can be set next."""
        strategy = self._load(strategy_id)
        locked = strategy.is_converted

        return {
            "strategy_id": strategy.id,
            "status": strategy.status.value,
            "is_locked": locked,
            "converted_to_ogsm_id": strategy.converted_to_ogsm_id,
            "allowed_transitions": [] if locked else [
                s.value for s in StrategyStatus if s != strategy.status
            ],
            "reviewed_by": strategy.reviewed_by,
            "reviewed_at": strategy.reviewed_at.isoformat() if strategy.reviewed_at else None,
        }
