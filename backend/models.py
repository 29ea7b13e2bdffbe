"""
Fiscal-Year Planning Models

Plans, priorities and draft strategies (the plan store), the permanent OGSM
hierarchy, and KPIs with their append-only observation history.
"""

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Date, ForeignKey, JSON, Text,
    Boolean, UniqueConstraint, CheckConstraint, Index, Enum as SQLEnum, text
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str):
    # Persist the lowercase value, not the member name, so raw SQL guards can compare against it
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class PlanStatus(str, enum.Enum):
    """Lifecycle of a fiscal-year plan."""
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class StrategyStatus(str, enum.Enum):
    """Review status of a draft strategy."""
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class EstimatedCost(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ComponentType(str, enum.Enum):
    """OGSM levels."""
    OBJECTIVE = "objective"
    GOAL = "goal"
    STRATEGY = "strategy"
    MEASURE = "measure"


class KPIFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class HealthStatus(str, enum.Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    OFF_TRACK = "off_track"


# ═══════════════════════════════════════════════════════════════════════════════
# PLAN STORE
# ═══════════════════════════════════════════════════════════════════════════════

class FiscalYearPlan(Base):
    """
    One strategic cycle.

    Created in DRAFT; becomes ACTIVE only through explicit activation.
    At most one plan may be ACTIVE (partial unique index below).
    """
    __tablename__ = "fiscal_year_plans"

    id = Column(Integer, primary_key=True, index=True)
    fiscal_year = Column(String(50), nullable=False, unique=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(_enum(PlanStatus, "plan_status"), default=PlanStatus.DRAFT, nullable=False)

    created_by = Column(String(100), nullable=True)
    activated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Top-level objective node, created on the first conversion that needs one
    ogsm_objective_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    priorities = relationship(
        "CorePriority", back_populates="plan", cascade="all, delete-orphan",
        order_by="CorePriority.priority_number"
    )
    strategies = relationship("DraftStrategy", back_populates="plan")
    objective = relationship("OGSMComponent", foreign_keys=[ogsm_objective_id])

    __table_args__ = (
        CheckConstraint(
            "start_date IS NULL OR end_date IS NULL OR end_date > start_date",
            name="check_fiscal_plan_dates"
        ),
        Index(
            "uq_fiscal_plans_single_active", "status", unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "fiscal_year": self.fiscal_year,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value if self.status else None,
            "created_by": self.created_by,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "ogsm_objective_id": self.ogsm_objective_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CorePriority(Base):
    """A leadership priority (1-3) within a plan."""
    __tablename__ = "fiscal_year_priorities"

    id = Column(Integer, primary_key=True, index=True)
    fiscal_plan_id = Column(Integer, ForeignKey("fiscal_year_plans.id"), nullable=False, index=True)
    priority_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    imported_from_ogsm_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True)
    # Goal node representing this priority in the hierarchy
    ogsm_component_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    plan = relationship("FiscalYearPlan", back_populates="priorities")
    strategies = relationship(
        "DraftStrategy", back_populates="priority", cascade="all, delete-orphan",
        order_by="DraftStrategy.id"
    )

    __table_args__ = (
        UniqueConstraint("fiscal_plan_id", "priority_number", name="uq_priority_plan_number"),
        CheckConstraint("priority_number >= 1 AND priority_number <= 3", name="check_priority_number"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "fiscal_plan_id": self.fiscal_plan_id,
            "priority_number": self.priority_number,
            "title": self.title,
            "description": self.description,
            "imported_from_ogsm_id": self.imported_from_ogsm_id,
            "ogsm_component_id": self.ogsm_component_id,
        }


class StrategyGeneration(Base):
    """Record of one drafting call: the context sent and what came back."""
    __tablename__ = "ai_strategy_generations"

    id = Column(Integer, primary_key=True, index=True)
    priority_id = Column(Integer, ForeignKey("fiscal_year_priorities.id", ondelete="SET NULL"), nullable=True, index=True)
    context = Column(JSON, default=dict)
    requested_count = Column(Integer, nullable=False)
    generator_name = Column(String(100), nullable=True)
    model_version = Column(String(100), nullable=True)
    generated_strategies = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)


class DraftStrategy(Base):
    """
    A candidate strategy attached to a priority.

    converted_to_ogsm_id is written once, by the conversion engine, and only
    while the strategy is approved. After that the row is locked.
    """
    __tablename__ = "fiscal_year_draft_strategies"

    id = Column(Integer, primary_key=True, index=True)
    fiscal_plan_id = Column(Integer, ForeignKey("fiscal_year_plans.id"), nullable=False, index=True)
    priority_id = Column(Integer, ForeignKey("fiscal_year_priorities.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    rationale = Column(Text, nullable=True)
    implementation_steps = Column(JSON, default=list)
    success_probability = Column(Float, nullable=True)
    estimated_cost = Column(_enum(EstimatedCost, "estimated_cost"), nullable=True)
    timeframe = Column(String(100), nullable=True)
    risks = Column(JSON, default=list)
    required_resources = Column(JSON, default=list)
    success_metrics = Column(JSON, default=list)
    supporting_evidence = Column(JSON, default=list)

    status = Column(_enum(StrategyStatus, "strategy_status"), default=StrategyStatus.DRAFT, nullable=False, index=True)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    ai_generation_id = Column(Integer, ForeignKey("ai_strategy_generations.id"), nullable=True)
    generated_from_ai = Column(Boolean, default=False)

    converted_to_ogsm_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True)
    converted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    plan = relationship("FiscalYearPlan", back_populates="strategies")
    priority = relationship("CorePriority", back_populates="strategies")
    generation = relationship("StrategyGeneration")

    __table_args__ = (
        CheckConstraint(
            "success_probability IS NULL OR (success_probability >= 0 AND success_probability <= 1)",
            name="check_success_probability"
        ),
        CheckConstraint(
            "converted_to_ogsm_id IS NULL OR status = 'approved'",
            name="check_converted_requires_approved"
        ),
    )

    @property
    def is_converted(self) -> bool:
        return self.converted_to_ogsm_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "fiscal_plan_id": self.fiscal_plan_id,
            "priority_id": self.priority_id,
            "title": self.title,
            "description": self.description,
            "rationale": self.rationale,
            "implementation_steps": self.implementation_steps or [],
            "success_probability": self.success_probability,
            "estimated_cost": self.estimated_cost.value if self.estimated_cost else None,
            "timeframe": self.timeframe,
            "risks": self.risks or [],
            "required_resources": self.required_resources or [],
            "success_metrics": self.success_metrics or [],
            "supporting_evidence": self.supporting_evidence or [],
            "status": self.status.value if self.status else None,
            "review_notes": self.review_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "ai_generation_id": self.ai_generation_id,
            "generated_from_ai": bool(self.generated_from_ai),
            "converted_to_ogsm_id": self.converted_to_ogsm_id,
            "converted_at": self.converted_at.isoformat() if self.converted_at else None,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# OGSM HIERARCHY
# ═══════════════════════════════════════════════════════════════════════════════

class OGSMComponent(Base):
    """Permanent node of the objective/goal/strategy/measure tree."""
    __tablename__ = "ogsm_components"

    id = Column(Integer, primary_key=True, index=True)
    component_type = Column(_enum(ComponentType, "component_type"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True, index=True)
    order_index = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    parent = relationship("OGSMComponent", remote_side=[id], back_populates="children")
    children = relationship("OGSMComponent", back_populates="parent", order_by="OGSMComponent.order_index")
    kpis = relationship("KPI", back_populates="ogsm_component")

    __table_args__ = (
        UniqueConstraint("parent_id", "order_index", name="uq_ogsm_sibling_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "component_type": self.component_type.value if self.component_type else None,
            "title": self.title,
            "description": self.description,
            "parent_id": self.parent_id,
            "order_index": self.order_index,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# KPIs
# ═══════════════════════════════════════════════════════════════════════════════

class KPICategory(Base):
    __tablename__ = "kpi_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    kpis = relationship("KPI", back_populates="category")


class KPI(Base):
    """
    A tracked metric.

    status is a cached projection of health_classifier.classify over
    (current_value, target_value); it is only ever written alongside them.
    """
    __tablename__ = "kpis"

    id = Column(Integer, primary_key=True, index=True)
    ogsm_component_id = Column(Integer, ForeignKey("ogsm_components.id"), nullable=True, index=True)
    category_id = Column(Integer, ForeignKey("kpi_categories.id"), nullable=True)
    source_strategy_id = Column(Integer, ForeignKey("fiscal_year_draft_strategies.id"), nullable=True, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_value = Column(Float, nullable=True)
    current_value = Column(Float, nullable=True)
    unit = Column(String(50), nullable=True)
    frequency = Column(_enum(KPIFrequency, "kpi_frequency"), default=KPIFrequency.MONTHLY, nullable=False)
    status = Column(_enum(HealthStatus, "kpi_status"), default=HealthStatus.ON_TRACK, nullable=False)

    owner = Column(String(100), nullable=True)
    secondary_owners = Column(JSON, default=list)

    last_calculated = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    ogsm_component = relationship("OGSMComponent", back_populates="kpis")
    category = relationship("KPICategory", back_populates="kpis")
    history = relationship(
        "KPIHistoryEntry", back_populates="kpi", cascade="all, delete-orphan",
        order_by="KPIHistoryEntry.recorded_date"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "ogsm_component_id": self.ogsm_component_id,
            "category_id": self.category_id,
            "source_strategy_id": self.source_strategy_id,
            "name": self.name,
            "description": self.description,
            "target_value": self.target_value,
            "current_value": self.current_value,
            "unit": self.unit,
            "frequency": self.frequency.value if self.frequency else None,
            "status": self.status.value if self.status else None,
            "owner": self.owner,
            "secondary_owners": self.secondary_owners or [],
            "last_calculated": self.last_calculated.isoformat() if self.last_calculated else None,
        }


class KPIHistoryEntry(Base):
    """Immutable observation of a KPI value."""
    __tablename__ = "kpi_history"

    id = Column(Integer, primary_key=True, index=True)
    kpi_id = Column(Integer, ForeignKey("kpis.id"), nullable=False)
    value = Column(Float, nullable=False)
    recorded_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    kpi = relationship("KPI", back_populates="history")

    __table_args__ = (
        Index("ix_kpi_history_kpi_date", "kpi_id", "recorded_date"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "kpi_id": self.kpi_id,
            "value": self.value,
            "recorded_date": self.recorded_date.isoformat() if self.recorded_date else None,
            "notes": self.notes,
        }


class KPIAlert(Base):
    """Raised when a recompute moves a KPI to a different health status."""
    __tablename__ = "kpi_alerts"

    id = Column(Integer, primary_key=True, index=True)
    kpi_id = Column(Integer, ForeignKey("kpis.id"), nullable=False, index=True)
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False, default="medium")
    message = Column(Text, nullable=False)
    alert_metadata = Column("metadata", JSON, default=dict)

    acknowledged = Column(Boolean, default=False)
    acknowledged_by = Column(String(100), nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    triggered_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "kpi_id": self.kpi_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "message": self.message,
            "metadata": self.alert_metadata or {},
            "acknowledged": bool(self.acknowledged),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
        }
