"""
Execution log persistence.

One ``workflow_executions`` row per firing, never updated afterwards, plus a
bump of the workflow's ``execution_count`` and ``last_executed``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List

from sqlalchemy.orm import Session, sessionmaker

from volunteer_automation.core.logger import get_logger
from volunteer_automation.models import Workflow, WorkflowExecution
from volunteer_automation.schemas.execution import ActionOutcome, ExecutionRecord

logger = get_logger(__name__)


class ExecutionLogger:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session] | None = None):
        if session_factory is None:
            from volunteer_automation.database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    def record(self, context, executed_at: datetime, outcomes: List[ActionOutcome]) -> ExecutionRecord:
        """Persist a firing and increment the workflow's counter by one.

        The counter is read then written, not incremented atomically; two
        simultaneous firings of one workflow can under-count.
        """
        success = all(outcome.success for outcome in outcomes)
        errors = [f"{o.action}: {o.error}" for o in outcomes if not o.success]

        db = self.session_factory()
        try:
            row = WorkflowExecution(
                workflow_id=context.workflow_id,
                trigger_type=context.trigger_type,
                executed_at=executed_at,
                success=success,
                results=[outcome.as_log_entry() for outcome in outcomes],
                errors=errors,
                actor_id=context.owner_id,
            )
            db.add(row)

            workflow = db.query(Workflow).filter(Workflow.id == context.workflow_id).first()
            if workflow is not None:
                current = workflow.execution_count or 0
                workflow.execution_count = current + 1
                workflow.last_executed = executed_at
            else:
                logger.warning("Execution logged for unknown workflow %s", context.workflow_id)

            db.commit()
            db.refresh(row)
            record = ExecutionRecord.model_validate(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Workflow %s execution %s (%s action(s), %s error(s))",
            context.workflow_id,
            "completed" if success else "failed",
            len(outcomes),
            len(errors),
        )
        return record
