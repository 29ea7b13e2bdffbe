"""
Conversion Engine

One-way promotion of approved draft strategies into permanent OGSM
strategy nodes.

Per strategy:
1. Resolve the parent node for its priority (existing goal, imported node,
   or a new goal under the plan's objective)
2. Create the strategy node
3. Link the draft with a conditional write that only succeeds while the
   draft is still approved and unlinked

Per-item failures are reported, never raised. The batch commits once.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Iterable

from sqlalchemy.orm import Session

from models import (
    FiscalYearPlan, CorePriority, DraftStrategy,
    ComponentType, StrategyStatus, utcnow
)
from planning_errors import (
    PlanningValidationError, RecordNotFoundError, AlreadyConvertedError,
    NotApprovedError, failure_entry
)
from ogsm_hierarchy import OGSMHierarchy

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    converted_count: int = 0
    created_component_ids: List[int] = field(default_factory=list)
    converted: Dict[int, int] = field(default_factory=dict)
    created_parent_ids: List[int] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converted_count": self.converted_count,
            "created_component_ids": list(self.created_component_ids),
            "converted": [
                {"strategy_id": sid, "ogsm_component_id": cid}
                for sid, cid in self.converted.items()
            ],
            "created_parent_ids": list(self.created_parent_ids),
            "failures": list(self.failures),
        }


class ConversionEngine:
    """Turns approved drafts into OGSM strategy nodes."""

    def __init__(self, db: Session):
        self.db = db
        self.hierarchy = OGSMHierarchy(db)

    def convert_strategies(self, plan_id: int, strategy_ids: Iterable[int]) -> ConversionResult:
        """
        Convert the given drafts of a plan.

        Raises:
            PlanningValidationError: no strategy ids given
            RecordNotFoundError: unknown plan

        Everything else is reported in ConversionResult.failures.
        """
        requested = list(dict.fromkeys(strategy_ids or []))
        if not requested:
            raise PlanningValidationError("strategy_ids must not be empty")

        plan = self.db.query(FiscalYearPlan).filter(FiscalYearPlan.id == plan_id).first()
        if not plan:
            raise RecordNotFoundError("Fiscal plan", plan_id)

        strategies = {
            s.id: s for s in self.db.query(DraftStrategy).filter(DraftStrategy.id.in_(requested)).all()
        }

        result = ConversionResult()
        parents: Dict[int, int] = {}

        try:
            for strategy_id in requested:
                strategy = strategies.get(strategy_id)

                if strategy is None or strategy.fiscal_plan_id != plan_id:
                    self._fail(result, strategy_id, RecordNotFoundError(
                        "Draft strategy", strategy_id,
                        f"Draft strategy {strategy_id} not found in plan {plan_id}"
                    ))
                    continue
                if strategy.is_converted:
                    self._fail(result, strategy_id, AlreadyConvertedError(
                        f"Strategy {strategy_id} already converted to OGSM component {strategy.converted_to_ogsm_id}"
                    ))
                    continue
                if strategy.status != StrategyStatus.APPROVED:
                    self._fail(result, strategy_id, NotApprovedError(
                        f"Strategy {strategy_id} is {strategy.status.value}; only approved strategies can be converted"
                    ))
                    continue

                if strategy.priority_id not in parents:
                    parents[strategy.priority_id] = self._resolve_parent(plan, strategy.priority, result)
                parent_id = parents[strategy.priority_id]

                node = self.hierarchy.create_component(
                    ComponentType.STRATEGY,
                    strategy.title,
                    description=strategy.description or strategy.rationale,
                    parent_id=parent_id,
                )

                linked = self.db.query(DraftStrategy).filter(
                    DraftStrategy.id == strategy_id,
                    DraftStrategy.converted_to_ogsm_id.is_(None),
                    DraftStrategy.status == StrategyStatus.APPROVED
                ).update(
                    {"converted_to_ogsm_id": node.id, "converted_at": utcnow()},
                    synchronize_session=False
                )

                if linked != 1:
                    # Another request linked it between our read and write
                    self.db.delete(node)
                    self.db.flush()
                    self._fail(result, strategy_id, AlreadyConvertedError(
                        f"Strategy {strategy_id} was converted by a concurrent request"
                    ))
                    continue

                result.converted[strategy_id] = node.id
                result.created_component_ids.append(node.id)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        result.converted_count = len(result.converted)
        logger.info(
            f"Converted {result.converted_count} of {len(requested)} strategies for plan {plan_id} "
            f"({len(result.failures)} failures)"
        )
        return result

    def _fail(self, result: ConversionResult, strategy_id: int, error):
        logger.warning(f"Conversion skipped strategy {strategy_id}: {error.message}")
        result.failures.append(failure_entry(error, strategy_id=strategy_id))

    def _resolve_parent(self, plan: FiscalYearPlan, priority: CorePriority, result: ConversionResult) -> int:
        """Node that strategies of this priority hang under."""
        if priority.ogsm_component_id is not None:
            return priority.ogsm_component_id

        if priority.imported_from_ogsm_id is not None:
            priority.ogsm_component_id = priority.imported_from_ogsm_id
            return priority.ogsm_component_id

        objective_id = self._ensure_objective(plan, result)
        goal = self.hierarchy.create_component(
            ComponentType.GOAL,
            priority.title,
            description=priority.description,
            parent_id=objective_id,
        )
        priority.ogsm_component_id = goal.id
        result.created_parent_ids.append(goal.id)
        return goal.id

    def _ensure_objective(self, plan: FiscalYearPlan, result: ConversionResult) -> int:
        if plan.ogsm_objective_id is not None:
            return plan.ogsm_objective_id

        objective = self.hierarchy.create_component(
            ComponentType.OBJECTIVE,
            f"{plan.fiscal_year} Strategic Plan",
        )
        plan.ogsm_objective_id = objective.id
        result.created_parent_ids.append(objective.id)
        return objective.id
