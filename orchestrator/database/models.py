# orchestrator/database/models.py
"""
SQLAlchemy Database Models for the Headscale Orchestrator
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Float, Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunOperation(str, enum.Enum):
    """Recorded operation kinds"""
    APPLY = "apply"
    DRIFT = "drift"


class ReconciliationRun(Base):
    """
    One apply or drift run
    Written after the run completes, successfully or not
    """
    __tablename__ = "reconciliation_runs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    operation = Column(String(20), nullable=False, index=True,
                       comment="apply or drift")
    dry_run = Column(Boolean, default=False, nullable=False)
    success = Column(Boolean, default=False, nullable=False,
                     comment="apply: no errors; drift: no drift")
    message = Column(Text, nullable=True)

    changes_count = Column(Integer, default=0, nullable=False,
                           comment="changes for apply, drifts for drift")
    errors_count = Column(Integer, default=0, nullable=False)
    details = Column(Text, nullable=True,
                     comment="JSON-encoded changes/errors/drifts and stats")

    started_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    duration_ms = Column(Float, nullable=True)

    __table_args__ = (
        Index('ix_runs_operation_started', 'operation', 'started_at'),
    )

    def __repr__(self):
        return (
            f"<ReconciliationRun(id={self.id}, operation={self.operation}, "
            f"dry_run={self.dry_run}, success={self.success})>"
        )
