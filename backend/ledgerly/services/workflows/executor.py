"""Run one workflow execution step by step.

Steps run in position order against a copy of the execution context.
Each step gets a ``WorkflowStepLog`` row; a step whose log is already
``completed`` is skipped, which is what makes :meth:`WorkflowEngine.resume`
pick up at the failed step. Progress is committed after every step so a
crashed worker leaves an accurate trail.
"""

from __future__ import annotations

import copy
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import StepError, StopWorkflow
from ledgerly.core.observability import sentry_breadcrumb, sentry_metric_inc
from ledgerly.models.enums import ExecutionStatus, StepLogStatus
from ledgerly.models.tables import Workflow, WorkflowExecution, WorkflowStep, WorkflowStepLog
from ledgerly.services.workflows import registry
from ledgerly.services.workflows.conditions import ConditionEvaluator
from ledgerly.utils.helpers import elapsed_ms, truncate, utcnow

logger = logging.getLogger(__name__)

MAX_OUTPUT_STRING = 10_000
MAX_OUTPUT_ITEMS = 100
BACKTRACE_LINES = 10


@dataclass
class StepOutcome:
    success: bool
    skipped: bool = False
    stopped: bool = False
    error: Optional[str] = None
    context_updates: Dict[str, Any] = field(default_factory=dict)


def sanitize_output(result: Any) -> Dict[str, Any]:
    if not isinstance(result, dict):
        return {}
    cleaned: Dict[str, Any] = {}
    for key, value in result.items():
        if isinstance(value, str):
            cleaned[key] = truncate(value, MAX_OUTPUT_STRING)
        elif isinstance(value, (list, tuple)):
            cleaned[key] = list(value)[:MAX_OUTPUT_ITEMS]
        else:
            cleaned[key] = value
    return cleaned


class WorkflowExecutor:
    def __init__(self, db: AsyncSession, execution: WorkflowExecution):
        self.db = db
        self.execution = execution
        self._loaded: list = []

    async def run(self) -> WorkflowExecution:
        execution = self.execution
        if execution.status == ExecutionStatus.CANCELLED.value:
            return execution
        workflow = await self.db.get(Workflow, execution.workflow_id)

        execution.status = ExecutionStatus.RUNNING.value
        execution.started_at = execution.started_at or utcnow()
        execution.completed_at = None
        execution.error_message = None
        await self.db.commit()
        sentry_breadcrumb("workflow", "execution started", data={"execution_id": execution.id})

        context = copy.deepcopy(execution.context or {})
        steps = sorted((s for s in workflow.steps if s.enabled), key=lambda s: s.position)
        self._loaded = [workflow, *steps]
        try:
            for step in steps:
                if await self._cancelled():
                    logger.info("Execution %s cancelled before step %s", execution.id, step.position)
                    return execution
                if await self._already_completed(step):
                    continue

                outcome = await self._run_step(workflow, step, context)
                if outcome.skipped:
                    continue
                if outcome.success:
                    context.update(outcome.context_updates)
                    execution.context = copy.deepcopy(context)
                    execution.current_step_position = step.position
                    execution.completed_steps_count = (execution.completed_steps_count or 0) + 1
                    await self.db.commit()
                    if outcome.stopped:
                        break
                    continue

                execution.failed_steps_count = (execution.failed_steps_count or 0) + 1
                if not step.continue_on_failure:
                    await self._fail(f"Step '{step.name or step.step_type}' failed: {outcome.error}")
                    return execution
                await self.db.commit()

            await self._complete(workflow)
        except Exception as exc:
            await self._rollback()
            await self._fail(str(exc))
            raise
        return execution

    async def _rollback(self, *extra) -> None:
        """Roll back a failed step and reload the rows the loop still uses."""
        await self.db.rollback()
        for row in (self.execution, *self._loaded, *extra):
            await self.db.refresh(row)

    async def _cancelled(self) -> bool:
        status = (
            await self.db.execute(
                select(WorkflowExecution.status).where(WorkflowExecution.id == self.execution.id)
            )
        ).scalar_one()
        return status == ExecutionStatus.CANCELLED.value

    async def _already_completed(self, step: WorkflowStep) -> bool:
        found = (
            await self.db.execute(
                select(WorkflowStepLog.id).where(
                    WorkflowStepLog.workflow_execution_id == self.execution.id,
                    WorkflowStepLog.workflow_step_id == step.id,
                    WorkflowStepLog.status == StepLogStatus.COMPLETED.value,
                )
            )
        ).first()
        return found is not None

    async def _log_for(self, step: WorkflowStep) -> WorkflowStepLog:
        log = (
            await self.db.execute(
                select(WorkflowStepLog).where(
                    WorkflowStepLog.workflow_execution_id == self.execution.id,
                    WorkflowStepLog.workflow_step_id == step.id,
                    WorkflowStepLog.status == StepLogStatus.PENDING.value,
                )
            )
        ).scalars().first()
        if log is None:
            log = WorkflowStepLog(
                workflow_execution_id=self.execution.id,
                workflow_step_id=step.id,
                position=step.position,
                status=StepLogStatus.PENDING.value,
                input_data={"config": dict(step.config or {}), "context_keys": sorted(self.execution.context or {})},
                output_data={},
                retry_count=0,
            )
            self.db.add(log)
        return log

    async def _run_step(self, workflow: Workflow, step: WorkflowStep, context: Dict[str, Any]) -> StepOutcome:
        log = await self._log_for(step)
        log.status = StepLogStatus.RUNNING.value
        log.started_at = utcnow()
        await self.db.commit()

        if step.conditions and not self._conditions_met(step, context):
            log.status = StepLogStatus.SKIPPED.value
            log.completed_at = utcnow()
            log.duration_ms = elapsed_ms(log.started_at)
            await self.db.commit()
            return StepOutcome(success=True, skipped=True)

        runner = None
        try:
            klass = registry.step_class(step.step_type)
            if klass is None:
                raise StepError(f"Unknown step type: {step.step_type}")
            runner = klass(self.db, self.execution, workflow, step, context)
            result = await runner.execute()
            stopped = False
        except StopWorkflow as stop:
            result = {"stopped": True, "reason": str(stop)}
            stopped = True
            logger.info("Execution %s stopped at step %s: %s", self.execution.id, step.position, stop)
        except Exception as exc:
            await self._rollback(log)
            log.status = StepLogStatus.FAILED.value
            log.error_message = str(exc)
            log.error_backtrace = "".join(traceback.format_exception(exc)[-BACKTRACE_LINES:])
            log.completed_at = utcnow()
            log.duration_ms = elapsed_ms(log.started_at)
            log.retry_count = (log.retry_count or 0) + 1
            await self.db.commit()
            logger.warning("Step %s (%s) failed: %s", step.position, step.step_type, exc)
            sentry_metric_inc("workflow.step_failed", tags={"step_type": step.step_type})
            return StepOutcome(success=False, error=str(exc))

        log.status = StepLogStatus.COMPLETED.value
        log.output_data = sanitize_output(result)
        log.completed_at = utcnow()
        log.duration_ms = elapsed_ms(log.started_at)
        return StepOutcome(
            success=True,
            stopped=stopped,
            context_updates=dict(runner.context_updates) if runner is not None else {},
        )

    @staticmethod
    def _conditions_met(step: WorkflowStep, context: Dict[str, Any]) -> bool:
        return ConditionEvaluator(step.conditions, context).evaluate()

    async def _complete(self, workflow: Workflow) -> None:
        now = utcnow()
        self.execution.status = ExecutionStatus.COMPLETED.value
        self.execution.completed_at = now
        self.execution.duration_ms = elapsed_ms(self.execution.started_at, now)
        workflow.executions_count = (workflow.executions_count or 0) + 1
        workflow.last_executed_at = now
        await self.db.commit()
        sentry_metric_inc("workflow.execution", tags={"status": "completed"})
        logger.info("Execution %s completed in %sms", self.execution.id, self.execution.duration_ms)

    async def _fail(self, message: str) -> None:
        now = utcnow()
        self.execution.status = ExecutionStatus.FAILED.value
        self.execution.error_message = message
        self.execution.completed_at = now
        self.execution.duration_ms = elapsed_ms(self.execution.started_at, now)
        await self.db.commit()
        sentry_metric_inc("workflow.execution", tags={"status": "failed"})
        logger.warning("Execution %s failed: %s", self.execution.id, message)

