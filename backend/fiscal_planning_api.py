"""
Fiscal-Year Planning API

Plans, priorities, AI-drafted strategies, review, conversion to OGSM and
KPI derivation. Service errors are rendered by the PlanningError handler
registered in main.py.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any
from datetime import date
from pydantic import BaseModel, Field

from database import get_db
from fiscal_planning_service import FiscalPlanningService
from strategy_drafting_service import StrategyDraftingService, StrategyGenerator, get_strategy_generator
from strategy_state_machine import StrategyStateMachine
from conversion_engine import ConversionEngine
from kpi_derivation_service import KPIDerivationService
from planning_errors import RecordNotFoundError


router = APIRouter(prefix="/fiscal-planning", tags=["Fiscal Planning"])


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

class PlanCreate(BaseModel):
    fiscal_year: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_by: Optional[str] = None


class PriorityInput(BaseModel):
    priority_number: int
    title: str
    description: Optional[str] = None


class PrioritiesUpdate(BaseModel):
    priorities: List[PriorityInput]


class PriorityImport(BaseModel):
    ogsm_component_id: int
    priority_number: int


class StrategyPayload(BaseModel):
    """A manually written draft strategy."""
    title: str
    description: Optional[str] = None
    rationale: Optional[str] = None
    implementation_steps: List[str] = Field(default_factory=list)
    success_probability: Optional[float] = None
    estimated_cost: Optional[str] = None
    timeframe: Optional[str] = None
    risks: List[str] = Field(default_factory=list)
    required_resources: List[str] = Field(default_factory=list)
    success_metrics: List[str] = Field(default_factory=list)
    supporting_evidence: List[str] = Field(default_factory=list)


class DraftStrategyCreate(BaseModel):
    priority_id: int
    strategy: StrategyPayload


class BulkDraftCreate(BaseModel):
    strategies: List[DraftStrategyCreate]


class GenerateRequest(BaseModel):
    context: Dict[str, str] = Field(default_factory=dict)
    count: int = 3
    timeout_seconds: Optional[float] = None


class StatusUpdate(BaseModel):
    status: str
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None


class ConvertRequest(BaseModel):
    strategy_ids: List[int]


class KPICreateRequest(BaseModel):
    # Specs stay loosely typed; each one is validated and reported individually
    kpis: List[Dict[str, Any]]


# ═══════════════════════════════════════════════════════════════════════════════
# PLAN ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/plans")
def create_plan(data: PlanCreate, db: Session = Depends(get_db)):
    """Create a fiscal-year plan in draft status."""
    plan = FiscalPlanningService(db).create_plan(
        fiscal_year=data.fiscal_year,
        start_date=data.start_date,
        end_date=data.end_date,
        created_by=data.created_by
    )
    return plan.to_dict()


@router.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    return [p.to_dict() for p in FiscalPlanningService(db).list_plans()]


@router.get("/plans/active")
def get_active_plan(db: Session = Depends(get_db)):
    """The currently active plan with its priorities and strategies."""
    service = FiscalPlanningService(db)
    plan = service.get_active_plan()
    if not plan:
        raise RecordNotFoundError("Fiscal plan", "active", "No active fiscal plan")
    return service.get_plan_detail(plan.id)


@router.get("/plans/{plan_id}")
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return FiscalPlanningService(db).get_plan_detail(plan_id)


@router.post("/plans/{plan_id}/activate")
def activate_plan(plan_id: int, db: Session = Depends(get_db)):
    """Activate a draft plan; the previously active plan is completed."""
    return FiscalPlanningService(db).activate_plan(plan_id).to_dict()


@router.get("/plans/{plan_id}/summary")
def get_plan_summary(plan_id: int, db: Session = Depends(get_db)):
    return FiscalPlanningService(db).get_plan_summary(plan_id)


# ═══════════════════════════════════════════════════════════════════════════════
# PRIORITY ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.put("/plans/{plan_id}/priorities")
def set_priorities(plan_id: int, data: PrioritiesUpdate, db: Session = Depends(get_db)):
    """Replace the plan's priorities (up to three, numbered from 1)."""
    priorities = FiscalPlanningService(db).set_priorities(
        plan_id, [p.model_dump() for p in data.priorities]
    )
    return [p.to_dict() for p in priorities]


@router.post("/plans/{plan_id}/priorities/import")
def import_priority(plan_id: int, data: PriorityImport, db: Session = Depends(get_db)):
    """Fill a priority slot from an existing OGSM component."""
    priority = FiscalPlanningService(db).import_priority_from_ogsm(
        plan_id, data.ogsm_component_id, data.priority_number
    )
    return priority.to_dict()


@router.post("/priorities/{priority_id}/generate")
def generate_strategies(
    priority_id: int,
    data: GenerateRequest,
    db: Session = Depends(get_db),
    generator: StrategyGenerator = Depends(get_strategy_generator)
):
    """Draft strategies for a priority with the configured generator."""
    service = StrategyDraftingService(db, generator=generator)
    drafts = service.generate_strategies(
        priority_id,
        context=data.context,
        count=data.count,
        timeout=data.timeout_seconds
    )
    return {
        "priority_id": priority_id,
        "generator": generator.name,
        "strategies": [d.to_dict() for d in drafts],
    }


# ═══════════════════════════════════════════════════════════════════════════════
# DRAFT STRATEGY ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/plans/{plan_id}/strategies")
def add_draft_strategy(plan_id: int, data: DraftStrategyCreate, db: Session = Depends(get_db)):
    strategy = FiscalPlanningService(db).add_draft_strategy(
        plan_id, data.priority_id, data.strategy.model_dump()
    )
    return strategy.to_dict()


@router.post("/plans/{plan_id}/strategies/bulk")
def bulk_add_draft_strategies(plan_id: int, data: BulkDraftCreate, db: Session = Depends(get_db)):
    drafts = FiscalPlanningService(db).bulk_add_draft_strategies(
        plan_id,
        [{"priority_id": item.priority_id, "strategy": item.strategy.model_dump()} for item in data.strategies]
    )
    return {"created_count": len(drafts), "strategies": [d.to_dict() for d in drafts]}


@router.patch("/strategies/{strategy_id}/status")
def update_strategy_status(strategy_id: int, data: StatusUpdate, db: Session = Depends(get_db)):
    """Approve, reject or move a draft strategy back to review."""
    strategy = StrategyStateMachine(db).set_status(
        strategy_id,
        data.status,
        review_notes=data.review_notes,
        reviewed_by=data.reviewed_by
    )
    return strategy.to_dict()


@router.get("/strategies/{strategy_id}/status")
def get_strategy_status(strategy_id: int, db: Session = Depends(get_db)):
    return StrategyStateMachine(db).get_status(strategy_id)


@router.post("/plans/{plan_id}/convert-to-ogsm")
def convert_to_ogsm(plan_id: int, data: ConvertRequest, db: Session = Depends(get_db)):
    """Convert approved strategies into OGSM strategy components."""
    return ConversionEngine(db).convert_strategies(plan_id, data.strategy_ids).to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# KPI DERIVATION ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/strategies/{strategy_id}/kpi-specs")
def get_kpi_specs(
    strategy_id: int,
    frequency: str = Query("monthly"),
    db: Session = Depends(get_db)
):
    """Editable KPI specs seeded from the strategy's success metrics."""
    service = KPIDerivationService(db)
    return {
        "strategy_id": strategy_id,
        "existing_kpi_count": service.count_kpis_for_strategy(strategy_id),
        "specs": service.seed_specs_from_strategy(strategy_id, frequency=frequency),
    }


@router.post("/strategies/{strategy_id}/kpis")
def create_kpis(strategy_id: int, data: KPICreateRequest, db: Session = Depends(get_db)):
    return KPIDerivationService(db).create_kpis_from_strategy(strategy_id, data.kpis).to_dict()
