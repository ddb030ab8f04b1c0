# orchestrator/core/audit.py
"""
Run history
Persists a record of every apply and drift run
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from orchestrator.database.models import ReconciliationRun, RunOperation
from orchestrator.schemas.results import ApplyResult, DriftReport

logger = logging.getLogger(__name__)


class RunHistory:
    """Stores and queries ReconciliationRun rows"""

    def record_apply(
        self,
        db: Session,
        result: ApplyResult,
        started_at: datetime,
        duration_ms: Optional[float] = None
    ) -> ReconciliationRun:
        run = ReconciliationRun(
            operation=RunOperation.APPLY.value,
            dry_run=result.dry_run,
            success=result.success,
            message=result.message,
            changes_count=len(result.changes),
            errors_count=len(result.errors),
            details=json.dumps({
                "changes": result.changes,
                "errors": result.errors,
                "stats": result.stats,
            }),
            started_at=started_at,
            duration_ms=duration_ms,
        )
        return self._save(db, run)

    def record_drift(
        self,
        db: Session,
        report: DriftReport,
        started_at: datetime,
        duration_ms: Optional[float] = None
    ) -> ReconciliationRun:
        run = ReconciliationRun(
            operation=RunOperation.DRIFT.value,
            dry_run=False,
            success=not report.has_drift,
            message=f"{len(report.drifts)} drift(s) detected",
            changes_count=len(report.drifts),
            errors_count=0,
            details=json.dumps({"drifts": report.drifts, "summary": report.summary}),
            started_at=started_at,
            duration_ms=duration_ms,
        )
        return self._save(db, run)

    def _save(self, db: Session, run: ReconciliationRun) -> ReconciliationRun:
        db.add(run)
        db.commit()
        db.refresh(run)
        logger.debug(f"Recorded {run.operation} run {run.id}")
        return run

    def list_runs(
        self,
        db: Session,
        operation: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[ReconciliationRun]:
        """Most recent runs first"""
        query = db.query(ReconciliationRun)
        if operation:
            query = query.filter(ReconciliationRun.operation == operation)
        return (
            query.order_by(ReconciliationRun.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def last_run(self, db: Session, operation: str) -> Optional[ReconciliationRun]:
        runs = self.list_runs(db, operation=operation, limit=1)
        return runs[0] if runs else None

    @staticmethod
    def details_of(run: ReconciliationRun) -> Optional[dict]:
        if not run.details:
            return None
        try:
            return json.loads(run.details)
        except ValueError:
            logger.warning(f"Run {run.id} has malformed details")
            return None


run_history = RunHistory()
