"""
Pytest configuration and fixtures for the planning pipeline test suite

Markers:
    - unit: Fast unit tests
    - property: Property-based tests (Hypothesis)
    - integration: End-to-end tests across services or through the HTTP API
"""

import pytest
import sys
import os
from datetime import date
from sqlalchemy.orm import sessionmaker

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import models
from database import build_engine, init_db
from fiscal_planning_service import FiscalPlanningService
from strategy_drafting_service import StrategyDraftingService, TemplateStrategyGenerator
from strategy_state_machine import StrategyStateMachine
from conversion_engine import ConversionEngine
from kpi_derivation_service import KPIDerivationService


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "property: Property-based tests (Hypothesis)")
    config.addinivalue_line("markers", "integration: End-to-end tests across services or the HTTP API")


@pytest.fixture(scope="function")
def db_engine():
    """Fresh in-memory database with tables and guards installed"""
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a fresh database session for each test"""
    Session = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    session = Session()

    yield session

    session.close()


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def sample_plan(db_session):
    return FiscalPlanningService(db_session).create_plan(
        "FY27", start_date=date(2026, 7, 1), end_date=date(2027, 6, 30), created_by="cfo"
    )


@pytest.fixture
def sample_priority(db_session, sample_plan):
    priorities = FiscalPlanningService(db_session).set_priorities(sample_plan.id, [
        {"priority_number": 1, "title": "Revenue Growth", "description": "Grow recurring revenue"},
    ])
    return priorities[0]


@pytest.fixture
def template_generator():
    return TemplateStrategyGenerator()


@pytest.fixture
def sample_strategies(db_session, sample_priority, template_generator):
    """Three generated drafts for the sample priority"""
    service = StrategyDraftingService(db_session, generator=template_generator)
    return service.generate_strategies(sample_priority.id, {"industry": "SaaS"}, count=3)


@pytest.fixture
def approved_strategy(db_session, sample_strategies):
    return StrategyStateMachine(db_session).set_status(
        sample_strategies[1].id, "approved", review_notes="Strong fit", reviewed_by="ceo"
    )


@pytest.fixture
def converted_strategy(db_session, sample_plan, approved_strategy):
    ConversionEngine(db_session).convert_strategies(sample_plan.id, [approved_strategy.id])
    db_session.refresh(approved_strategy)
    return approved_strategy


@pytest.fixture
def sample_kpi(db_session, converted_strategy):
    """KPI with target 100 and no observations yet"""
    result = KPIDerivationService(db_session).create_kpis_from_strategy(converted_strategy.id, [
        {"name": "Net revenue retention", "frequency": "monthly", "target_value": 100, "unit": "%"},
    ])
    return db_session.get(models.KPI, result.kpi_ids[0])


# ═══════════════════════════════════════════════════════════════════════════════
# API FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(db_session, template_generator):
    """TestClient bound to the test session and the template generator"""
    from fastapi.testclient import TestClient
    from main import app
    from database import get_db
    from strategy_drafting_service import get_strategy_generator

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_strategy_generator] = lambda: template_generator

    yield TestClient(app)

    app.dependency_overrides.clear()
