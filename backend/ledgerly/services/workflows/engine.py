"""Start, resume and cancel workflow executions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core import dispatch
from ledgerly.core.errors import WorkflowError
from ledgerly.models.enums import ExecutionStatus, StepLogStatus, WorkflowStatus
from ledgerly.models.tables import Workflow, WorkflowExecution, WorkflowStepLog
from ledgerly.services.workflows.executor import WorkflowExecutor
from ledgerly.utils.helpers import utcnow, utcnow_iso

logger = logging.getLogger(__name__)


class WorkflowEngine:
    def __init__(self, db: AsyncSession, workflow: Workflow):
        self.db = db
        self.workflow = workflow

    async def execute(
        self, trigger_source: str = "manual", trigger_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Create an execution and hand it to the worker."""
        execution = await self._create_execution(trigger_source, trigger_data or {})
        dispatch.enqueue("run_workflow_execution", execution.id)
        logger.info("Queued execution %s for workflow %s (%s)", execution.id, self.workflow.id, trigger_source)
        return execution

    async def execute_sync(
        self, trigger_source: str = "manual", trigger_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        execution = await self._create_execution(trigger_source, trigger_data or {})
        await WorkflowExecutor(self.db, execution).run()
        await self.db.refresh(execution)
        return execution

    async def resume(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Retry a failed execution from its failed step(s)."""
        if not execution.can_resume:
            raise WorkflowError("Execution cannot be resumed", details={"status": execution.status})
        await self.db.execute(
            update(WorkflowStepLog)
            .where(
                WorkflowStepLog.workflow_execution_id == execution.id,
                WorkflowStepLog.status == StepLogStatus.FAILED.value,
            )
            .values(
                status=StepLogStatus.PENDING.value,
                error_message=None,
                error_backtrace=None,
                started_at=None,
                completed_at=None,
                duration_ms=None,
            )
        )
        execution.status = ExecutionStatus.RUNNING.value
        execution.error_message = None
        await self.db.commit()
        await self.db.refresh(execution)
        dispatch.enqueue("run_workflow_execution", execution.id)
        return execution

    async def cancel(self, execution: WorkflowExecution) -> WorkflowExecution:
        if not execution.can_cancel:
            raise WorkflowError("Execution cannot be cancelled", details={"status": execution.status})
        execution.status = ExecutionStatus.CANCELLED.value
        execution.completed_at = utcnow()
        await self.db.commit()
        return execution

    def _validate(self) -> None:
        if self.workflow.status != WorkflowStatus.ACTIVE.value:
            raise WorkflowError("Workflow is not active", details={"status": self.workflow.status})
        if not any(step.enabled for step in self.workflow.steps):
            raise WorkflowError("Workflow has no enabled steps")

    async def _create_execution(self, trigger_source: str, trigger_data: Dict[str, Any]) -> WorkflowExecution:
        self._validate()
        execution = WorkflowExecution(
            workflow_id=self.workflow.id,
            workspace_id=self.workflow.workspace_id,
            status=ExecutionStatus.PENDING.value,
            trigger_source=trigger_source,
            trigger_data=trigger_data,
            context={
                "workspace_id": self.workflow.workspace_id,
                "workflow_id": self.workflow.id,
                "workflow_name": self.workflow.name,
                "started_at": utcnow_iso(),
                "trigger_data": trigger_data,
            },
        )
        self.db.add(execution)
        await self.db.commit()
        await self.db.refresh(execution)
        return execution
