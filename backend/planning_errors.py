"""
Planning Pipeline Errors

Typed failures for the fiscal-year planning pipeline.

Categories:
- Validation: bad input, rejected before anything is written
- Not found: the referenced record does not exist
- State conflict: the requested transition is illegal in the current state
- Data sufficiency: not enough history to compute a result
- Collaborator: the strategy generator failed, timed out or returned garbage
"""

from typing import Any, Dict, Optional


class PlanningError(Exception):
    """Base class for every pipeline failure."""
    code = "planning_error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

class PlanningValidationError(PlanningError):
    code = "validation_error"
    http_status = 400


class InvalidPlanError(PlanningValidationError):
    code = "invalid_plan"


class InvalidPriorityError(PlanningValidationError):
    code = "invalid_priority"


class InvalidStatusError(PlanningValidationError):
    code = "invalid_status"


class InvalidStrategyError(PlanningValidationError):
    code = "invalid_strategy"


class InvalidKPISpecError(PlanningValidationError):
    code = "invalid_kpi_spec"

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class InvalidObservationError(PlanningValidationError):
    code = "invalid_observation"


# ═══════════════════════════════════════════════════════════════════════════════
# NOT FOUND
# ═══════════════════════════════════════════════════════════════════════════════

class RecordNotFoundError(PlanningError):
    code = "not_found"
    http_status = 404

    def __init__(self, record_type: str, record_id: Any, message: Optional[str] = None):
        super().__init__(message or f"{record_type} {record_id} not found")
        self.record_type = record_type
        self.record_id = record_id


# ═══════════════════════════════════════════════════════════════════════════════
# STATE CONFLICTS
# ═══════════════════════════════════════════════════════════════════════════════

class StateConflictError(PlanningError):
    code = "state_conflict"
    http_status = 409


class StrategyLockedError(StateConflictError):
    """Raised when changing the status of a strategy that was already converted."""
    code = "strategy_locked"


class AlreadyConvertedError(StateConflictError):
    code = "already_converted"


class NotApprovedError(StateConflictError):
    code = "not_approved"


class PlanNotDraftError(StateConflictError):
    code = "plan_not_draft"


class DuplicateFiscalYearError(StateConflictError):
    code = "duplicate_fiscal_year"


class StrategyNotConvertedError(StateConflictError):
    code = "strategy_not_converted"


class UnconvertedStrategiesError(StateConflictError):
    code = "unconverted_strategies"


class PriorityInUseError(StateConflictError):
    code = "priority_in_use"


class HierarchyCycleError(StateConflictError):
    code = "hierarchy_cycle"


# ═══════════════════════════════════════════════════════════════════════════════
# DATA SUFFICIENCY
# ═══════════════════════════════════════════════════════════════════════════════

class InsufficientDataError(PlanningError):
    """
    Not enough history to forecast.

    The forecast service turns this into an empty result; callers render a
    "need more data" state instead of an error.
    """
    code = "insufficient_data"
    http_status = 200

    def __init__(self, message: str, data_points: int = 0, required: int = 2):
        super().__init__(message)
        self.data_points = data_points
        self.required = required


# ═══════════════════════════════════════════════════════════════════════════════
# COLLABORATOR FAILURES
# ═══════════════════════════════════════════════════════════════════════════════

class GenerationFailedError(PlanningError):
    code = "generation_failed"
    http_status = 502


class GenerationTimeoutError(GenerationFailedError):
    code = "generation_timeout"
    http_status = 504

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class GeneratorUnavailableError(GenerationFailedError):
    code = "generator_unavailable"


class MalformedGenerationError(GenerationFailedError):
    code = "malformed_generation"


def failure_entry(error: PlanningError, **identifiers) -> Dict[str, Any]:
    """Per-item failure record used by batch operations."""
    entry = dict(identifiers)
    entry.update(error.to_dict())
    return entry
