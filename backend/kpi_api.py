"""
KPI API

Observation history, statistics, forecasts, targets and status-change alerts.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
from pydantic import BaseModel

from database import get_db
from kpi_history_service import KPIHistoryService
from kpi_forecast_service import KPIForecastService


router = APIRouter(prefix="/kpis", tags=["KPIs"])


class HistoryCreate(BaseModel):
    value: float
    recorded_date: date
    notes: Optional[str] = None


class TargetUpdate(BaseModel):
    target_value: Optional[float] = None


class AlertAcknowledge(BaseModel):
    acknowledged_by: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# ALERTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/alerts")
def list_alerts(
    kpi_id: Optional[int] = None,
    acknowledged: Optional[bool] = None,
    db: Session = Depends(get_db)
):
    alerts = KPIHistoryService(db).list_alerts(kpi_id=kpi_id, acknowledged=acknowledged)
    return [a.to_dict() for a in alerts]


@router.post("/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: int, data: AlertAcknowledge, db: Session = Depends(get_db)):
    return KPIHistoryService(db).acknowledge_alert(alert_id, data.acknowledged_by).to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# KPI ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/{kpi_id}")
def get_kpi(kpi_id: int, db: Session = Depends(get_db)):
    return KPIHistoryService(db).get_kpi(kpi_id).to_dict()


@router.post("/{kpi_id}/history")
def append_history(kpi_id: int, data: HistoryCreate, db: Session = Depends(get_db)):
    """Record an observation; the KPI's current value and status follow."""
    service = KPIHistoryService(db)
    entry = service.append_history(kpi_id, data.value, data.recorded_date, notes=data.notes)
    return {"entry": entry.to_dict(), "kpi": service.get_kpi(kpi_id).to_dict()}


@router.get("/{kpi_id}/history")
def list_history(kpi_id: int, db: Session = Depends(get_db)):
    return [e.to_dict() for e in KPIHistoryService(db).list_history(kpi_id)]


@router.get("/{kpi_id}/stats")
def get_statistics(kpi_id: int, db: Session = Depends(get_db)):
    return KPIHistoryService(db).get_statistics(kpi_id)


@router.get("/{kpi_id}/forecast")
def get_forecast(kpi_id: int, periods: int = Query(6), db: Session = Depends(get_db)):
    """Linear-trend forecast with widening prediction intervals."""
    return KPIForecastService(db).forecast(kpi_id, periods=periods).to_dict()


@router.put("/{kpi_id}/target")
def update_target(kpi_id: int, data: TargetUpdate, db: Session = Depends(get_db)):
    return KPIHistoryService(db).update_target(kpi_id, data.target_value).to_dict()
