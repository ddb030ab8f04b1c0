# orchestrator/database/__init__.py
"""
Database package - run history persistence
"""

from .models import Base, ReconciliationRun, RunOperation
from .session import engine, SessionLocal, init_db, get_db, db_manager

__all__ = [
    "Base",
    "ReconciliationRun",
    "RunOperation",
    "engine",
    "SessionLocal",
    "init_db",
    "get_db",
    "db_manager",
]
