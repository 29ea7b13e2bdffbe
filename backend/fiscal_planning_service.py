"""
Fiscal-Year Planning Service

The plan store: fiscal-year plans, their core priorities and draft
strategies, plus the read-only plan summary used by dashboards.
"""

import math
import logging
from datetime import date
from typing import List, Dict, Any, Optional, Iterable

from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import (
    FiscalYearPlan, CorePriority, DraftStrategy, OGSMComponent, KPI,
    StrategyGeneration, PlanStatus, StrategyStatus, EstimatedCost, utcnow
)
from planning_errors import (
    RecordNotFoundError, InvalidPlanError, InvalidPriorityError, InvalidStrategyError,
    DuplicateFiscalYearError, PlanNotDraftError, UnconvertedStrategiesError, PriorityInUseError
)
from health_classifier import summarize_health

logger = logging.getLogger(__name__)

MAX_PRIORITIES = 3
STRATEGY_LIST_FIELDS = (
    "implementation_steps", "risks", "required_resources",
    "success_metrics", "supporting_evidence"
)
DEFAULT_SUCCESS_PROBABILITY = 0.5
DEFAULT_TIMEFRAME = "6-12 months"
UNTITLED_STRATEGY = "Untitled Strategy"


# ═══════════════════════════════════════════════════════════════════════════════
# DRAFT STRATEGY NORMALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_list(value) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _clean_probability(value, fill_defaults: bool) -> Optional[float]:
    default = DEFAULT_SUCCESS_PROBABILITY if fill_defaults else None
    if value is None or isinstance(value, bool):
        return default
    try:
        probability = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(probability):
        return default
    return min(max(probability, 0.0), 1.0)


def _clean_cost(value, fill_defaults: bool) -> Optional[EstimatedCost]:
    if isinstance(value, EstimatedCost):
        return value
    if isinstance(value, str) and value.strip().lower() in {c.value for c in EstimatedCost}:
        return EstimatedCost(value.strip().lower())
    return EstimatedCost.MEDIUM if fill_defaults else None


def normalize_strategy(raw: Dict[str, Any], fill_defaults: bool = True, require_title: bool = False) -> Dict[str, Any]:
    """
    Coerce a strategy payload into the DraftStrategy shape.

    Generated payloads get defaults for anything missing; manual payloads
    keep missing scalars empty and must carry a title.
    """
    if not isinstance(raw, dict):
        raise InvalidStrategyError("Strategy payload must be an object")

    title = _clean_text(raw.get("title"))
    if not title:
        if require_title:
            raise InvalidStrategyError("Strategy title is required")
        title = UNTITLED_STRATEGY

    normalized = {
        "title": title[:255],
        "description": _clean_text(raw.get("description")),
        "rationale": _clean_text(raw.get("rationale")),
        "success_probability": _clean_probability(raw.get("success_probability"), fill_defaults),
        "estimated_cost": _clean_cost(raw.get("estimated_cost"), fill_defaults),
        "timeframe": _clean_text(raw.get("timeframe")) or (DEFAULT_TIMEFRAME if fill_defaults else None),
    }
    for field in STRATEGY_LIST_FIELDS:
        normalized[field] = _clean_list(raw.get(field))

    return normalized


class FiscalPlanningService:
    """
    Plan store operations.

    Every mutating method is all-or-nothing: the session is rolled back
    before any error propagates.
    """

    def __init__(self, db: Session):
        self.db = db

    # ═══════════════════════════════════════════════════════════════════════════
    # PLANS
    # ═══════════════════════════════════════════════════════════════════════════

    def create_plan(
        self,
        fiscal_year: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        created_by: Optional[str] = None
    ) -> FiscalYearPlan:
        """Create a plan in DRAFT status."""
        label = (fiscal_year or "").strip()
        if not label:
            raise InvalidPlanError("fiscal_year is required")
        if start_date and end_date and end_date <= start_date:
            raise InvalidPlanError("end_date must be after start_date")

        existing = self.db.query(FiscalYearPlan.id).filter(FiscalYearPlan.fiscal_year == label).first()
        if existing:
            raise DuplicateFiscalYearError(f"Fiscal year plan {label} already exists")

        plan = FiscalYearPlan(
            fiscal_year=label,
            start_date=start_date,
            end_date=end_date,
            created_by=created_by,
            status=PlanStatus.DRAFT
        )
        self.db.add(plan)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent create with the same label
            self.db.rollback()
            raise DuplicateFiscalYearError(f"Fiscal year plan {label} already exists")

        self.db.refresh(plan)
        logger.info(f"Created fiscal plan {plan.id} ({label})")
        return plan

    def get_plan(self, plan_id: int) -> FiscalYearPlan:
        plan = self.db.query(FiscalYearPlan).filter(FiscalYearPlan.id == plan_id).first()
        if not plan:
            raise RecordNotFoundError("Fiscal plan", plan_id)
        return plan

    def list_plans(self) -> List[FiscalYearPlan]:
        return self.db.query(FiscalYearPlan).order_by(FiscalYearPlan.created_at.desc(), FiscalYearPlan.id.desc()).all()

    def get_active_plan(self) -> Optional[FiscalYearPlan]:
        return self.db.query(FiscalYearPlan).filter(FiscalYearPlan.status == PlanStatus.ACTIVE).first()

    def get_plan_detail(self, plan_id: int) -> Dict[str, Any]:
        """Plan with its priorities and each priority's draft strategies."""
        plan = self.get_plan(plan_id)
        detail = plan.to_dict()
        detail["priorities"] = []
        for priority in plan.priorities:
            entry = priority.to_dict()
            entry["strategies"] = [s.to_dict() for s in priority.strategies]
            detail["priorities"].append(entry)
        return detail

    def activate_plan(self, plan_id: int) -> FiscalYearPlan:
        """
        Make a DRAFT plan the active one.

        The previously active plan (if any) is marked COMPLETED first.
        Every approved strategy must already be converted.
        """
        plan = self.get_plan(plan_id)

        if plan.status != PlanStatus.DRAFT:
            raise PlanNotDraftError(
                f"Cannot activate plan {plan_id}: plan is {plan.status.value}, expected draft"
            )

        unconverted = self.db.query(func.count(DraftStrategy.id)).filter(
            DraftStrategy.fiscal_plan_id == plan_id,
            DraftStrategy.status == StrategyStatus.APPROVED,
            DraftStrategy.converted_to_ogsm_id.is_(None)
        ).scalar() or 0
        if unconverted:
            raise UnconvertedStrategiesError(
                f"Cannot activate plan {plan_id}: {unconverted} approved strategies have not been converted to OGSM"
            )

        try:
            now = utcnow()
            previous = self.db.query(FiscalYearPlan).filter(
                FiscalYearPlan.status == PlanStatus.ACTIVE,
                FiscalYearPlan.id != plan_id
            ).all()
            for other in previous:
                other.status = PlanStatus.COMPLETED
                other.completed_at = now
            # Flush the deactivation before activating; the single-active index is checked per row
            self.db.flush()

            plan.status = PlanStatus.ACTIVE
            plan.activated_at = now
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(plan)
        logger.info(
            f"Activated fiscal plan {plan.id} ({plan.fiscal_year}); "
            f"completed {[p.id for p in previous]}"
        )
        return plan

    # ═══════════════════════════════════════════════════════════════════════════
    # PRIORITIES
    # ═══════════════════════════════════════════════════════════════════════════

    def _validate_priority_numbers(self, numbers: List[int]):
        if any(isinstance(n, bool) or not isinstance(n, int) for n in numbers):
            raise InvalidPriorityError("priority_number must be an integer")
        if any(n < 1 or n > MAX_PRIORITIES for n in numbers):
            raise InvalidPriorityError(f"priority_number must be between 1 and {MAX_PRIORITIES}")
        if len(set(numbers)) != len(numbers):
            raise InvalidPriorityError("priority_number values must be unique")
        if sorted(numbers) != list(range(1, len(numbers) + 1)):
            raise InvalidPriorityError("priority numbers must start at 1 without gaps")

    def set_priorities(self, plan_id: int, priorities: List[Dict[str, Any]]) -> List[CorePriority]:
        """
        Replace the plan's priorities wholesale.

        Priorities whose number is kept are updated in place so their draft
        strategies survive; the rest are deleted with their drafts.
        """
        plan = self.get_plan(plan_id)

        numbers = [p.get("priority_number") for p in priorities]
        self._validate_priority_numbers(numbers)
        for p in priorities:
            if not _clean_text(p.get("title")):
                raise InvalidPriorityError(f"Priority {p.get('priority_number')} requires a title")

        existing = {p.priority_number: p for p in plan.priorities}
        removed = [p for n, p in existing.items() if n not in numbers]

        for priority in removed:
            locked = [s.id for s in priority.strategies if s.is_converted]
            if locked:
                raise PriorityInUseError(
                    f"Cannot remove priority {priority.priority_number}: strategies {locked} are already converted"
                )

        try:
            for priority in removed:
                plan.priorities.remove(priority)
            self.db.flush()

            result = []
            for data in sorted(priorities, key=lambda p: p["priority_number"]):
                priority = existing.get(data["priority_number"])
                if priority is None:
                    priority = CorePriority(priority_number=data["priority_number"])
                    plan.priorities.append(priority)
                priority.title = _clean_text(data.get("title"))
                priority.description = _clean_text(data.get("description"))
                result.append(priority)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Set {len(result)} priorities on plan {plan_id} (removed {len(removed)})")
        return result

    def import_priority_from_ogsm(self, plan_id: int, ogsm_component_id: int, priority_number: int) -> CorePriority:
        """Fill a priority slot from an existing OGSM node."""
        plan = self.get_plan(plan_id)
        component = self.db.query(OGSMComponent).filter(OGSMComponent.id == ogsm_component_id).first()
        if not component:
            raise RecordNotFoundError("OGSM component", ogsm_component_id)

        numbers = sorted({p.priority_number for p in plan.priorities} | {priority_number})
        self._validate_priority_numbers(numbers)

        priority = next((p for p in plan.priorities if p.priority_number == priority_number), None)
        try:
            if priority is None:
                priority = CorePriority(priority_number=priority_number)
                plan.priorities.append(priority)
            priority.title = component.title
            priority.description = component.description
            priority.imported_from_ogsm_id = component.id
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(priority)
        logger.info(f"Imported OGSM component {component.id} as priority {priority_number} of plan {plan_id}")
        return priority

    def get_priority(self, priority_id: int) -> CorePriority:
        priority = self.db.query(CorePriority).filter(CorePriority.id == priority_id).first()
        if not priority:
            raise RecordNotFoundError("Priority", priority_id)
        return priority

    # ═══════════════════════════════════════════════════════════════════════════
    # DRAFT STRATEGIES
    # ═══════════════════════════════════════════════════════════════════════════

    def get_strategy(self, strategy_id: int) -> DraftStrategy:
        strategy = self.db.query(DraftStrategy).filter(DraftStrategy.id == strategy_id).first()
        if not strategy:
            raise RecordNotFoundError("Draft strategy", strategy_id)
        return strategy

    def _build_draft(
        self,
        priority: CorePriority,
        payload: Dict[str, Any],
        generation: Optional[StrategyGeneration] = None
    ) -> DraftStrategy:
        return DraftStrategy(
            fiscal_plan_id=priority.fiscal_plan_id,
            priority_id=priority.id,
            status=StrategyStatus.DRAFT,
            generation=generation,
            generated_from_ai=generation is not None,
            **payload
        )

    def _priority_in_plan(self, plan_id: int, priority_id: int) -> CorePriority:
        priority = self.get_priority(priority_id)
        if priority.fiscal_plan_id != plan_id:
            raise RecordNotFoundError("Priority", priority_id, f"Priority {priority_id} is not part of plan {plan_id}")
        return priority

    def add_draft_strategy(self, plan_id: int, priority_id: int, strategy: Dict[str, Any]) -> DraftStrategy:
        """Add a manually written draft strategy."""
        self.get_plan(plan_id)
        priority = self._priority_in_plan(plan_id, priority_id)
        payload = normalize_strategy(strategy, fill_defaults=False, require_title=True)

        draft = self._build_draft(priority, payload)
        self.db.add(draft)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(draft)
        logger.info(f"Added draft strategy {draft.id} to priority {priority_id}")
        return draft

    def bulk_add_draft_strategies(self, plan_id: int, items: Iterable[Dict[str, Any]]) -> List[DraftStrategy]:
        """Add several manual drafts; either all are stored or none."""
        self.get_plan(plan_id)
        drafts = []
        for item in items:
            priority = self._priority_in_plan(plan_id, item.get("priority_id"))
            payload = normalize_strategy(item.get("strategy"), fill_defaults=False, require_title=True)
            drafts.append(self._build_draft(priority, payload))

        try:
            self.db.add_all(drafts)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Bulk added {len(drafts)} draft strategies to plan {plan_id}")
        return drafts

    def persist_generated_drafts(
        self,
        priority: CorePriority,
        context: Dict[str, Any],
        requested_count: int,
        generator_name: str,
        model_version: Optional[str],
        payloads: List[Dict[str, Any]]
    ) -> List[DraftStrategy]:
        """Store a generation record and its drafts in one transaction."""
        generation = StrategyGeneration(
            priority_id=priority.id,
            context=context,
            requested_count=requested_count,
            generator_name=generator_name,
            model_version=model_version,
            generated_strategies=[
                {**p, "estimated_cost": p["estimated_cost"].value if p["estimated_cost"] else None}
                for p in payloads
            ],
        )
        drafts = [self._build_draft(priority, payload, generation) for payload in payloads]

        try:
            self.db.add(generation)
            self.db.add_all(drafts)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return drafts

    # ═══════════════════════════════════════════════════════════════════════════
    # SUMMARY
    # ═══════════════════════════════════════════════════════════════════════════

    def get_plan_summary(self, plan_id: int) -> Dict[str, Any]:
        """Read-only aggregate for the planning dashboard."""
        plan = self.get_plan(plan_id)

        strategy_counts = dict(
            self.db.query(DraftStrategy.priority_id, func.count(DraftStrategy.id))
            .filter(DraftStrategy.fiscal_plan_id == plan_id)
            .group_by(DraftStrategy.priority_id)
            .all()
        )
        priorities = []
        for priority in plan.priorities:
            entry = priority.to_dict()
            entry["strategy_count"] = strategy_counts.get(priority.id, 0)
            priorities.append(entry)

        status_counts = {status.value: 0 for status in StrategyStatus}
        rows = (
            self.db.query(DraftStrategy.status, func.count(DraftStrategy.id))
            .filter(DraftStrategy.fiscal_plan_id == plan_id)
            .group_by(DraftStrategy.status)
            .all()
        )
        for status, count in rows:
            status_counts[StrategyStatus(status).value] = count

        converted_ids = [
            row[0] for row in self.db.query(DraftStrategy.converted_to_ogsm_id).filter(
                DraftStrategy.fiscal_plan_id == plan_id,
                DraftStrategy.converted_to_ogsm_id.isnot(None)
            ).all()
        ]

        kpis = []
        if converted_ids:
            kpis = self.db.query(KPI).filter(KPI.ogsm_component_id.in_(converted_ids)).all()

        return {
            "plan": plan.to_dict(),
            "priorities": priorities,
            "draft_strategies_count": status_counts,
            "converted_count": len(converted_ids),
            "kpis_created_count": len(kpis),
            "kpi_health": summarize_health(kpis),
        }
