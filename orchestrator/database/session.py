# orchestrator/database/session.py
"""
Run-history database: engine and sessions

SQLite keeps a single shared connection so an in-memory URL survives
across requests; any other URL gets a regular connection pool.
"""

import logging
from typing import Generator

from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from orchestrator.config import settings
from .models import Base, ReconciliationRun

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DEBUG,
        )
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False)


def init_db() -> None:
    """Create the run-history tables if they do not exist"""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Run history database ready ({engine.url.get_backend_name()})")


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session, closed when the response is sent"""
    with SessionLocal() as db:
        yield db


class DatabaseManager:
    """Connectivity check and maintenance for the run-history store"""

    @staticmethod
    def check_connection() -> bool:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Run history database unreachable: {e}")
            return False
        return True

    @staticmethod
    def run_count() -> int:
        with SessionLocal() as db:
            return db.execute(select(func.count()).select_from(ReconciliationRun)).scalar_one()

    @staticmethod
    def drop_all_tables() -> None:
        """Drop the run-history tables; used to reset state between test runs"""
        logger.warning("Dropping run history tables")
        Base.metadata.drop_all(bind=engine)


db_manager = DatabaseManager()
