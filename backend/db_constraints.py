"""
Database Guards for the Planning Pipeline

Enforces the one-way conversion link and the append-only KPI history at the
database level, so direct SQL cannot bypass the services.

- A converted draft strategy keeps its converted_to_ogsm_id and status forever
- A converted draft strategy cannot be deleted
- KPI history rows cannot be updated
"""

import logging
from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


SQLITE_GUARDS = {
    "prevent_converted_link_change": """
        CREATE TRIGGER IF NOT EXISTS prevent_converted_link_change
        BEFORE UPDATE OF converted_to_ogsm_id ON fiscal_year_draft_strategies
        FOR EACH ROW
        WHEN OLD.converted_to_ogsm_id IS NOT NULL
         AND (NEW.converted_to_ogsm_id IS NULL OR NEW.converted_to_ogsm_id != OLD.converted_to_ogsm_id)
        BEGIN
            SELECT RAISE(ABORT, 'Conversion link is immutable once set');
        END;
    """,
    "prevent_converted_status_change": """
        CREATE TRIGGER IF NOT EXISTS prevent_converted_status_change
        BEFORE UPDATE OF status ON fiscal_year_draft_strategies
        FOR EACH ROW
        WHEN OLD.converted_to_ogsm_id IS NOT NULL AND NEW.status != OLD.status
        BEGIN
            SELECT RAISE(ABORT, 'Cannot change status of a converted strategy');
        END;
    """,
    "prevent_converted_strategy_delete": """
        CREATE TRIGGER IF NOT EXISTS prevent_converted_strategy_delete
        BEFORE DELETE ON fiscal_year_draft_strategies
        FOR EACH ROW
        WHEN OLD.converted_to_ogsm_id IS NOT NULL
        BEGIN
            SELECT RAISE(ABORT, 'Cannot delete a converted strategy');
        END;
    """,
    "prevent_kpi_history_update": """
        CREATE TRIGGER IF NOT EXISTS prevent_kpi_history_update
        BEFORE UPDATE ON kpi_history
        FOR EACH ROW
        BEGIN
            SELECT RAISE(ABORT, 'KPI history is append-only');
        END;
    """,
}


POSTGRES_GUARDS = [
    """
    CREATE OR REPLACE FUNCTION guard_converted_strategy() RETURNS trigger AS $$
    BEGIN
        IF TG_OP = 'DELETE' THEN
            IF OLD.converted_to_ogsm_id IS NOT NULL THEN
                RAISE EXCEPTION 'Cannot delete a converted strategy';
            END IF;
            RETURN OLD;
        END IF;
        IF OLD.converted_to_ogsm_id IS NOT NULL AND (
            NEW.converted_to_ogsm_id IS DISTINCT FROM OLD.converted_to_ogsm_id
            OR NEW.status IS DISTINCT FROM OLD.status
        ) THEN
            RAISE EXCEPTION 'Converted strategy is locked';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
    """,
    "DROP TRIGGER IF EXISTS guard_converted_strategy ON fiscal_year_draft_strategies",
    """
    CREATE TRIGGER guard_converted_strategy
    BEFORE UPDATE OR DELETE ON fiscal_year_draft_strategies
    FOR EACH ROW EXECUTE FUNCTION guard_converted_strategy()
    """,
    """
    CREATE OR REPLACE FUNCTION guard_kpi_history() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'KPI history is append-only';
    END;
    $$ LANGUAGE plpgsql;
    """,
    "DROP TRIGGER IF EXISTS guard_kpi_history ON kpi_history",
    """
    CREATE TRIGGER guard_kpi_history
    BEFORE UPDATE ON kpi_history
    FOR EACH ROW EXECUTE FUNCTION guard_kpi_history()
    """,
]


def create_planning_guards(engine: Engine):
    """
    Install the planning guards on the given engine.

    Idempotent; safe to call on every startup.
    """
    dialect = engine.dialect.name

    if dialect == "sqlite":
        statements = list(SQLITE_GUARDS.values())
    elif dialect == "postgresql":
        statements = POSTGRES_GUARDS
    else:
        logger.warning(f"No database guards available for dialect '{dialect}'; relying on application checks")
        return

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))

    logger.info(f"Installed {len(statements)} planning guard statements ({dialect})")


def verify_planning_guards(engine: Engine) -> dict:
    """
    Report which SQLite guards are present.

    Returns a dict of trigger name -> installed.
    """
    status = {name: False for name in SQLITE_GUARDS}

    if engine.dialect.name != "sqlite":
        return status

    with engine.connect() as conn:
        rows = conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'trigger'")).fetchall()

    installed = {row[0] for row in rows}
    for name in status:
        status[name] = name in installed

    return status
