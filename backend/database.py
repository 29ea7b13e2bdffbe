"""
Database engine, session factory and request-scoped sessions.

The URL comes from SQLALCHEMY_DATABASE_URL; a local SQLite file is used
when it is unset.
"""

import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Generator

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./sql_app.db"


def normalize_url(url: str) -> str:
    # Heroku-style URLs use the scheme SQLAlchemy dropped
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def build_engine(url: str) -> Engine:
    """SQLite shares one connection across threads; other backends get a sized pool."""
    url = normalize_url(url)
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
        pool_pre_ping=True,
        pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
    )


SQLALCHEMY_DATABASE_URL = normalize_url(os.getenv("SQLALCHEMY_DATABASE_URL", DEFAULT_DATABASE_URL))
engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, rolled back on error."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Create tables and install the planning guards."""
    import models
    from db_constraints import create_planning_guards

    bind = bind or engine
    models.Base.metadata.create_all(bind=bind)
    create_planning_guards(bind)
    logger.info(f"Database initialized ({bind.dialect.name})")
