"""Workflow definitions: CRUD and status lifecycle."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import NotFoundError, ValidationError, WorkflowError
from ledgerly.models.enums import WorkflowStatus
from ledgerly.models.tables import Notification, Workflow, WorkflowExecution, WorkflowStep, WorkflowStepLog
from ledgerly.services.workflows import registry

logger = logging.getLogger(__name__)

ACTIVATABLE = {WorkflowStatus.DRAFT.value, WorkflowStatus.PAUSED.value}


class WorkflowService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, user_id: int, data: Dict[str, Any], workspace_id: Optional[int] = None) -> Workflow:
        workflow = Workflow(
            user_id=user_id,
            workspace_id=workspace_id,
            name=data["name"],
            description=data.get("description"),
            status=WorkflowStatus.DRAFT.value,
            trigger_type=data.get("trigger_type") or "manual",
            trigger_config=dict(data.get("trigger_config") or {}),
            meta={},
        )
        self.db.add(workflow)
        await self.db.flush()
        for step in data.get("steps") or []:
            self.db.add(self._build_step(workflow.id, step))
        await self.db.commit()
        return await self.get(workflow.id, user_id)

    async def get(self, workflow_id: int, user_id: int) -> Workflow:
        workflow = (
            await self.db.execute(
                select(Workflow)
                .where(Workflow.id == workflow_id, Workflow.user_id == user_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def list(self, user_id: int, status: Optional[str] = None) -> List[Workflow]:
        query = select(Workflow).where(Workflow.user_id == user_id)
        if status:
            query = query.where(Workflow.status == status)
        return list((await self.db.execute(query.order_by(Workflow.updated_at.desc()))).scalars().all())

    async def update(self, workflow: Workflow, changes: Dict[str, Any]) -> Workflow:
        for key in ("name", "description"):
            if changes.get(key) is not None:
                setattr(workflow, key, changes[key])
        if changes.get("trigger_config") is not None:
            workflow.trigger_config = dict(changes["trigger_config"])
        await self.db.commit()
        return await self.get(workflow.id, workflow.user_id)

    async def delete(self, workflow: Workflow) -> None:
        execution_ids = select(WorkflowExecution.id).where(WorkflowExecution.workflow_id == workflow.id)
        await self.db.execute(delete(WorkflowStepLog).where(WorkflowStepLog.workflow_execution_id.in_(execution_ids)))
        await self.db.execute(delete(WorkflowExecution).where(WorkflowExecution.workflow_id == workflow.id))
        await self.db.delete(workflow)
        await self.db.commit()

    async def add_step(self, workflow: Workflow, data: Dict[str, Any]) -> WorkflowStep:
        if any(s.position == data.get("position") for s in workflow.steps):
            raise ValidationError("Step position must be unique within workflow")
        step = self._build_step(workflow.id, data)
        self.db.add(step)
        await self.db.commit()
        await self.db.refresh(step)
        return step

    async def remove_step(self, workflow: Workflow, step_id: int) -> None:
        step = next((s for s in workflow.steps if s.id == step_id), None)
        if step is None:
            raise NotFoundError(f"Step {step_id} not found")
        await self.db.delete(step)
        await self.db.commit()

    async def activate(self, workflow: Workflow) -> Workflow:
        if workflow.status not in ACTIVATABLE:
            raise WorkflowError(f"Workflow in status {workflow.status} cannot be activated")
        return await self._set_status(workflow, WorkflowStatus.ACTIVE)

    async def pause(self, workflow: Workflow) -> Workflow:
        if workflow.status != WorkflowStatus.ACTIVE.value:
            raise WorkflowError("Only active workflows can be paused")
        return await self._set_status(workflow, WorkflowStatus.PAUSED)

    async def archive(self, workflow: Workflow) -> Workflow:
        return await self._set_status(workflow, WorkflowStatus.ARCHIVED)

    async def executions(self, workflow: Workflow) -> List[WorkflowExecution]:
        query = (
            select(WorkflowExecution)
            .where(WorkflowExecution.workflow_id == workflow.id)
            .order_by(WorkflowExecution.created_at.desc(), WorkflowExecution.id.desc())
        )
        return list((await self.db.execute(query)).scalars().all())

    async def get_execution(self, workflow: Workflow, execution_id: int) -> WorkflowExecution:
        execution = (
            await self.db.execute(
                select(WorkflowExecution)
                .where(WorkflowExecution.id == execution_id, WorkflowExecution.workflow_id == workflow.id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution

    async def notifications(self, user_id: int) -> List[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list((await self.db.execute(query)).scalars().all())

    async def _set_status(self, workflow: Workflow, status: WorkflowStatus) -> Workflow:
        workflow.status = status.value
        await self.db.commit()
        logger.info("Workflow %s is now %s", workflow.id, status.value)
        return workflow

    @staticmethod
    def _build_step(workflow_id: int, data: Dict[str, Any]) -> WorkflowStep:
        step_type = data["step_type"]
        if not registry.is_valid_step_type(step_type):
            raise ValidationError(f"Unknown step type: {step_type}")
        return WorkflowStep(
            workflow_id=workflow_id,
            step_type=step_type,
            name=data.get("name") or registry.default_step_name(step_type),
            position=data["position"],
            config=dict(data.get("config") or {}),
            conditions=dict(data.get("conditions") or {}),
            enabled=data.get("enabled", True),
            continue_on_failure=data.get("continue_on_failure", False),
        )
