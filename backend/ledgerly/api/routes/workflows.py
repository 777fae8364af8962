"""API routes for workflow automation.

Workflows are created as drafts, activated, then executed manually, by
schedule (worker scheduler) or by events. Executions run on the worker
unless ``run_sync`` is requested.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session, get_workspace_id
from ledgerly.models.schemas import (
    NotificationRead,
    StepTypeInfo,
    WorkflowCreate,
    WorkflowExecuteRequest,
    WorkflowExecutionRead,
    WorkflowRead,
    WorkflowStepCreate,
    WorkflowStepRead,
    WorkflowUpdate,
)
from ledgerly.models.tables import User
from ledgerly.services.workflows import registry
from ledgerly.services.workflows.engine import WorkflowEngine
from ledgerly.services.workflows.service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _read(workflow) -> WorkflowRead:
    return WorkflowRead.model_validate(workflow, from_attributes=True)


def _execution(execution) -> WorkflowExecutionRead:
    return WorkflowExecutionRead.model_validate(execution, from_attributes=True)


@router.get("", response_model=List[WorkflowRead])
async def list_workflows(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[WorkflowRead]:
    return [_read(w) for w in await WorkflowService(db).list(user.id, status_filter)]


@router.post("", response_model=WorkflowRead, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    payload: WorkflowCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    workspace_id: Optional[int] = Depends(get_workspace_id),
) -> WorkflowRead:
    """Create a draft workflow, optionally with its steps."""
    workflow = await WorkflowService(db).create(user.id, payload.model_dump(mode="json"), workspace_id)
    return _read(workflow)


@router.get("/step-types", response_model=List[StepTypeInfo])
async def list_step_types(user: User = Depends(get_current_user)) -> List[StepTypeInfo]:
    return [StepTypeInfo(**info) for info in registry.available_steps()]


@router.get("/step-types/by-category", response_model=Dict[str, List[StepTypeInfo]])
async def step_types_by_category(user: User = Depends(get_current_user)) -> Dict[str, List[StepTypeInfo]]:
    return {
        category: [StepTypeInfo(**info) for info in infos]
        for category, infos in registry.steps_by_category().items()
    }


@router.get("/notifications", response_model=List[NotificationRead])
async def list_notifications(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[NotificationRead]:
    """In-app notifications created by ``send_notification`` steps."""
    notifications = await WorkflowService(db).notifications(user.id)
    return [NotificationRead.model_validate(n, from_attributes=True) for n in notifications]


@router.get("/{workflow_id}", response_model=WorkflowRead)
async def get_workflow(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowRead:
    return _read(await WorkflowService(db).get(workflow_id, user.id))


@router.patch("/{workflow_id}", response_model=WorkflowRead)
async def update_workflow(
    workflow_id: int,
    payload: WorkflowUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowRead:
    service = WorkflowService(db)
    workflow = await service.get(workflow_id, user.id)
    return _read(await service.update(workflow, payload.model_dump(exclude_unset=True)))


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    service = WorkflowService(db)
    await service.delete(await service.get(workflow_id, user.id))


@router.post("/{workflow_id}/steps", response_model=WorkflowStepRead, status_code=status.HTTP_201_CREATED)
async def add_step(
    workflow_id: int,
    payload: WorkflowStepCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowStepRead:
    service = WorkflowService(db)
    step = await service.add_step(await service.get(workflow_id, user.id), payload.model_dump())
    return WorkflowStepRead.model_validate(step, from_attributes=True)


@router.delete("/{workflow_id}/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_step(
    workflow_id: int,
    step_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    service = WorkflowService(db)
    await service.remove_step(await service.get(workflow_id, user.id), step_id)


@router.post("/{workflow_id}/activate", response_model=WorkflowRead)
async def activate_workflow(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowRead:
    service = WorkflowService(db)
    await service.activate(await service.get(workflow_id, user.id))
    return _read(await service.get(workflow_id, user.id))


@router.post("/{workflow_id}/pause", response_model=WorkflowRead)
async def pause_workflow(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowRead:
    service = WorkflowService(db)
    await service.pause(await service.get(workflow_id, user.id))
    return _read(await service.get(workflow_id, user.id))


@router.post("/{workflow_id}/archive", response_model=WorkflowRead)
async def archive_workflow(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowRead:
    service = WorkflowService(db)
    await service.archive(await service.get(workflow_id, user.id))
    return _read(await service.get(workflow_id, user.id))


@router.post("/{workflow_id}/execute", response_model=WorkflowExecutionRead, status_code=status.HTTP_202_ACCEPTED)
async def execute_workflow(
    workflow_id: int,
    payload: Optional[WorkflowExecuteRequest] = None,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowExecutionRead:
    """Start a manual execution; queued unless ``run_sync`` is set."""
    payload = payload or WorkflowExecuteRequest()
    service = WorkflowService(db)
    workflow = await service.get(workflow_id, user.id)
    engine = WorkflowEngine(db, workflow)
    if payload.run_sync:
        execution = await engine.execute_sync("manual", payload.trigger_data)
    else:
        execution = await engine.execute("manual", payload.trigger_data)
    return _execution(await service.get_execution(workflow, execution.id))


@router.get("/{workflow_id}/executions", response_model=List[WorkflowExecutionRead])
async def list_executions(
    workflow_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[WorkflowExecutionRead]:
    service = WorkflowService(db)
    return [_execution(e) for e in await service.executions(await service.get(workflow_id, user.id))]


@router.get("/{workflow_id}/executions/{execution_id}", response_model=WorkflowExecutionRead)
async def get_execution(
    workflow_id: int,
    execution_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowExecutionRead:
    service = WorkflowService(db)
    workflow = await service.get(workflow_id, user.id)
    return _execution(await service.get_execution(workflow, execution_id))


@router.post("/{workflow_id}/executions/{execution_id}/resume", response_model=WorkflowExecutionRead)
async def resume_execution(
    workflow_id: int,
    execution_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowExecutionRead:
    """Retry a failed execution from the step that failed."""
    service = WorkflowService(db)
    workflow = await service.get(workflow_id, user.id)
    execution = await WorkflowEngine(db, workflow).resume(await service.get_execution(workflow, execution_id))
    return _execution(await service.get_execution(workflow, execution.id))


@router.post("/{workflow_id}/executions/{execution_id}/cancel", response_model=WorkflowExecutionRead)
async def cancel_execution(
    workflow_id: int,
    execution_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> WorkflowExecutionRead:
    service = WorkflowService(db)
    workflow = await service.get(workflow_id, user.id)
    execution = await WorkflowEngine(db, workflow).cancel(await service.get_execution(workflow, execution_id))
    return _execution(await service.get_execution(workflow, execution.id))
