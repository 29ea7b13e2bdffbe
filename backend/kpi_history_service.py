"""
KPI History Service

Append-only KPI observations. Every append recomputes the KPI's current
value and health status in the same transaction and raises an alert when
the status changes.
"""

import math
import logging
from datetime import date, datetime
from typing import List, Dict, Any, Optional

from sqlalchemy.orm import Session
from sqlalchemy import func

from models import KPI, KPIHistoryEntry, KPIAlert, HealthStatus, utcnow
from planning_errors import RecordNotFoundError, InvalidObservationError
from health_classifier import classify

logger = logging.getLogger(__name__)


def _finite(value, field_name: str) -> float:
    if isinstance(value, bool):
        raise InvalidObservationError(f"{field_name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidObservationError(f"{field_name} must be a number")
    if not math.isfinite(number):
        raise InvalidObservationError(f"{field_name} must be finite")
    return number


class KPIHistoryService:
    """Owns writes to kpi_history and the recompute that follows them."""

    def __init__(self, db: Session):
        self.db = db

    def get_kpi(self, kpi_id: int) -> KPI:
        kpi = self.db.query(KPI).filter(KPI.id == kpi_id).first()
        if not kpi:
            raise RecordNotFoundError("KPI", kpi_id)
        return kpi

    def list_history(self, kpi_id: int) -> List[KPIHistoryEntry]:
        """Observations in ascending date order, ties by insertion."""
        self.get_kpi(kpi_id)
        return self.db.query(KPIHistoryEntry).filter(
            KPIHistoryEntry.kpi_id == kpi_id
        ).order_by(KPIHistoryEntry.recorded_date.asc(), KPIHistoryEntry.id.asc()).all()

    # ═══════════════════════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════════════════════

    def append_history(
        self,
        kpi_id: int,
        value: float,
        recorded_date: date,
        notes: Optional[str] = None
    ) -> KPIHistoryEntry:
        """
        Record an observation and refresh the KPI.

        current_value becomes the value of the chronologically latest entry,
        which is not necessarily the one just appended.
        """
        number = _finite(value, "value")
        if isinstance(recorded_date, datetime):
            recorded_date = recorded_date.date()
        if not isinstance(recorded_date, date):
            raise InvalidObservationError("recorded_date must be a date")

        kpi = self.get_kpi(kpi_id)

        try:
            entry = KPIHistoryEntry(kpi_id=kpi.id, value=number, recorded_date=recorded_date, notes=notes)
            self.db.add(entry)
            self.db.flush()

            latest = self.db.query(KPIHistoryEntry.value).filter(
                KPIHistoryEntry.kpi_id == kpi.id
            ).order_by(KPIHistoryEntry.recorded_date.desc(), KPIHistoryEntry.id.desc()).first()

            self._recompute(kpi, current_value=latest[0], reason="history_appended")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(entry)
        logger.info(
            f"KPI {kpi_id}: recorded {number} on {recorded_date.isoformat()} "
            f"(current={kpi.current_value}, status={kpi.status.value})"
        )
        return entry

    def update_target(self, kpi_id: int, target_value: Optional[float]) -> KPI:
        """Change the target and recompute status in the same write."""
        target = None if target_value is None else _finite(target_value, "target_value")
        kpi = self.get_kpi(kpi_id)

        try:
            kpi.target_value = target
            self._recompute(kpi, current_value=kpi.current_value, reason="target_updated")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(kpi)
        logger.info(f"KPI {kpi_id}: target set to {target} (status={kpi.status.value})")
        return kpi

    def _recompute(self, kpi: KPI, current_value: Optional[float], reason: str):
        previous = kpi.status
        kpi.current_value = current_value
        kpi.status = classify(current_value, kpi.target_value)
        kpi.last_calculated = utcnow()

        if previous is not None and previous != kpi.status:
            self.db.add(KPIAlert(
                kpi_id=kpi.id,
                alert_type="status_change",
                severity="high" if kpi.status == HealthStatus.OFF_TRACK else "medium",
                message=f"KPI '{kpi.name}' changed from {previous.value} to {kpi.status.value}",
                alert_metadata={
                    "old_status": previous.value,
                    "new_status": kpi.status.value,
                    "current_value": current_value,
                    "target_value": kpi.target_value,
                    "reason": reason,
                },
            ))
            logger.info(f"KPI {kpi.id} status {previous.value} -> {kpi.status.value}")

    # ═══════════════════════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════════════════════

    def get_statistics(self, kpi_id: int) -> Dict[str, Any]:
        """Summary statistics over the full history."""
        kpi = self.get_kpi(kpi_id)
        count, average, minimum, maximum, first_date, last_date = self.db.query(
            func.count(KPIHistoryEntry.id),
            func.avg(KPIHistoryEntry.value),
            func.min(KPIHistoryEntry.value),
            func.max(KPIHistoryEntry.value),
            func.min(KPIHistoryEntry.recorded_date),
            func.max(KPIHistoryEntry.recorded_date),
        ).filter(KPIHistoryEntry.kpi_id == kpi_id).one()

        return {
            "kpi_id": kpi.id,
            "data_points": count or 0,
            "average": float(average) if average is not None else None,
            "min": minimum,
            "max": maximum,
            "first_date": first_date.isoformat() if first_date else None,
            "last_date": last_date.isoformat() if last_date else None,
            "current_value": kpi.current_value,
            "target_value": kpi.target_value,
            "status": kpi.status.value,
        }

    def list_alerts(self, kpi_id: Optional[int] = None, acknowledged: Optional[bool] = None) -> List[KPIAlert]:
        query = self.db.query(KPIAlert)
        if kpi_id is not None:
            query = query.filter(KPIAlert.kpi_id == kpi_id)
        if acknowledged is not None:
            query = query.filter(KPIAlert.acknowledged == acknowledged)
        return query.order_by(KPIAlert.triggered_at.desc(), KPIAlert.id.desc()).all()

    def acknowledge_alert(self, alert_id: int, acknowledged_by: Optional[str] = None) -> KPIAlert:
        alert = self.db.query(KPIAlert).filter(KPIAlert.id == alert_id).first()
        if not alert:
            raise RecordNotFoundError("KPI alert", alert_id)

        try:
            alert.acknowledged = True
            alert.acknowledged_by = acknowledged_by
            alert.acknowledged_at = utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(alert)
        return alert
