"""
KPI Derivation Service

Creates KPIs for a converted strategy, linked to the strategy's OGSM node.
Specs are validated one by one; a bad spec is reported and the rest are
still created.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from sqlalchemy.orm import Session
from sqlalchemy import func

from models import DraftStrategy, KPI, KPICategory, KPIFrequency, utcnow
from planning_errors import (
    RecordNotFoundError, StrategyNotConvertedError, InvalidKPISpecError, failure_entry
)
from health_classifier import classify

logger = logging.getLogger(__name__)


@dataclass
class KPIDerivationResult:
    created_count: int = 0
    kpi_ids: List[int] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_count": self.created_count,
            "kpi_ids": list(self.kpi_ids),
            "failures": list(self.failures),
        }


class KPIDerivationService:
    """Derives KPIs from converted strategies."""

    def __init__(self, db: Session):
        self.db = db

    def _converted_strategy(self, strategy_id: int) -> DraftStrategy:
        strategy = self.db.query(DraftStrategy).filter(DraftStrategy.id == strategy_id).first()
        if not strategy:
            raise RecordNotFoundError("Draft strategy", strategy_id)
        if not strategy.is_converted:
            raise StrategyNotConvertedError(
                f"Strategy {strategy_id} has not been converted to OGSM; convert it before creating KPIs"
            )
        return strategy

    @staticmethod
    def _optional_text(index: int, spec: Dict[str, Any], key: str, max_length: Optional[int] = None) -> Optional[str]:
        value = spec.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise InvalidKPISpecError(f"KPI spec {index}: {key} must be a string", index=index)
        value = value.strip()
        if max_length is not None and len(value) > max_length:
            raise InvalidKPISpecError(f"KPI spec {index}: {key} is longer than {max_length} characters", index=index)
        return value or None

    def _validate_spec(self, index: int, spec: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(spec, dict):
            raise InvalidKPISpecError(f"KPI spec {index} must be an object", index=index)

        name = self._optional_text(index, spec, "name") or ""
        if not name:
            raise InvalidKPISpecError(f"KPI spec {index}: name is required", index=index)

        raw_frequency = spec.get("frequency")
        try:
            frequency = KPIFrequency(str(raw_frequency).strip().lower())
        except ValueError:
            allowed = ", ".join(f.value for f in KPIFrequency)
            raise InvalidKPISpecError(
                f"KPI spec {index}: invalid frequency '{raw_frequency}' (expected one of: {allowed})",
                index=index
            )

        target = spec.get("target_value")
        if target is not None:
            if isinstance(target, bool):
                raise InvalidKPISpecError(f"KPI spec {index}: target_value must be a number", index=index)
            try:
                target = float(target)
            except (TypeError, ValueError):
                raise InvalidKPISpecError(f"KPI spec {index}: target_value must be a number", index=index)
            if not math.isfinite(target):
                raise InvalidKPISpecError(f"KPI spec {index}: target_value must be finite", index=index)

        category_id = spec.get("category_id")
        if category_id is not None:
            if isinstance(category_id, bool) or not isinstance(category_id, int):
                raise InvalidKPISpecError(f"KPI spec {index}: category_id must be an integer", index=index)
            exists = self.db.query(KPICategory.id).filter(KPICategory.id == category_id).first()
            if not exists:
                raise InvalidKPISpecError(f"KPI spec {index}: category {category_id} not found", index=index)

        secondary = spec.get("secondary_owners") or []
        if not isinstance(secondary, list):
            raise InvalidKPISpecError(f"KPI spec {index}: secondary_owners must be a list", index=index)
        if any(not isinstance(o, str) for o in secondary):
            raise InvalidKPISpecError(f"KPI spec {index}: secondary_owners must be strings", index=index)

        return {
            "name": name[:255],
            "frequency": frequency,
            "target_value": target,
            "unit": self._optional_text(index, spec, "unit", max_length=50),
            "description": self._optional_text(index, spec, "description"),
            "owner": self._optional_text(index, spec, "owner", max_length=100),
            "secondary_owners": [o.strip() for o in secondary if o.strip()],
            "category_id": category_id,
        }

    def create_kpis_from_strategy(self, strategy_id: int, kpi_specs: List[Dict[str, Any]]) -> KPIDerivationResult:
        """
        Create one KPI per valid spec, linked to the strategy's OGSM node.

        New KPIs have no current value, so their status is
        classify(None, target).

        Raises:
            RecordNotFoundError: unknown strategy
            StrategyNotConvertedError: strategy has no OGSM node yet
        """
        strategy = self._converted_strategy(strategy_id)
        result = KPIDerivationResult()
        created: List[KPI] = []

        for index, spec in enumerate(kpi_specs or []):
            try:
                values = self._validate_spec(index, spec)
            except InvalidKPISpecError as e:
                logger.warning(f"Skipping KPI spec for strategy {strategy_id}: {e.message}")
                result.failures.append(failure_entry(e, index=index))
                continue

            kpi = KPI(
                ogsm_component_id=strategy.converted_to_ogsm_id,
                source_strategy_id=strategy.id,
                current_value=None,
                status=classify(None, values["target_value"]),
                last_calculated=utcnow(),
                **values
            )
            created.append(kpi)

        try:
            self.db.add_all(created)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        result.kpi_ids = [kpi.id for kpi in created]
        result.created_count = len(created)
        logger.info(
            f"Created {result.created_count} KPIs for strategy {strategy_id} "
            f"(OGSM component {strategy.converted_to_ogsm_id}), {len(result.failures)} rejected"
        )
        return result

    def seed_specs_from_strategy(self, strategy_id: int, frequency: str = KPIFrequency.MONTHLY.value) -> List[Dict[str, Any]]:
        """One editable KPI spec per success metric of the strategy."""
        strategy = self.db.query(DraftStrategy).filter(DraftStrategy.id == strategy_id).first()
        if not strategy:
            raise RecordNotFoundError("Draft strategy", strategy_id)

        return [
            {"name": metric, "frequency": frequency, "target_value": None, "unit": None}
            for metric in (strategy.success_metrics or [])
            if isinstance(metric, str) and metric.strip()
        ]

    def count_kpis_for_strategy(self, strategy_id: int) -> int:
        return self.db.query(func.count(KPI.id)).filter(KPI.source_strategy_id == strategy_id).scalar() or 0
