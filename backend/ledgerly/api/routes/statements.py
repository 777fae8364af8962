"""API routes for bank statements.

A statement is registered with its file inlined as base64 and parsed by
the worker (or inline with ``parse_async=false``). Parsing progress can be
followed over Server-Sent Events at ``/statements/{id}/progress``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import StreamingResponse

from ledgerly.api.dependencies import get_current_user, get_db_session, get_session_factory, get_workspace_id
from ledgerly.models.schemas import JobQueued, StatementCreate, StatementRead, StatementSummary
from ledgerly.models.tables import User
from ledgerly.services.sse import ProgressStreamer
from ledgerly.services.statement_parser import StatementParser
from ledgerly.services.statements import StatementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/statements", tags=["statements"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("", response_model=List[StatementRead])
async def list_statements(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[StatementRead]:
    statements = await StatementService(db).list(user.id, status_filter)
    return [StatementRead.model_validate(s, from_attributes=True) for s in statements]


@router.post("", response_model=StatementRead, status_code=status.HTTP_201_CREATED)
async def create_statement(
    payload: StatementCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    workspace_id: Optional[int] = Depends(get_workspace_id),
) -> StatementRead:
    """Register a statement and parse it (queued unless ``parse_async`` is false)."""
    try:
        content = payload.decoded_content()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    service = StatementService(db)
    statement = await service.create(
        user.id,
        payload.file_name,
        payload.file_type.value,
        content,
        bank_template_id=payload.bank_template_id,
        account_id=payload.account_id,
        workspace_id=workspace_id,
    )
    job_id = None
    if payload.parse_async:
        job_id = await service.queue_parse(statement)
    else:
        await StatementParser(db, statement).parse()
        await db.refresh(statement)

    read = StatementRead.model_validate(statement, from_attributes=True)
    read.job_id = job_id
    return read


@router.get("/{statement_id}", response_model=StatementRead)
async def get_statement(
    statement_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> StatementRead:
    statement = await StatementService(db).get(statement_id, user.id)
    return StatementRead.model_validate(statement, from_attributes=True)


@router.delete("/{statement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_statement(
    statement_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    """Delete a statement and the transactions imported from it."""
    await StatementService(db).delete(statement_id, user.id)


@router.get("/{statement_id}/summary", response_model=StatementSummary)
async def statement_summary(
    statement_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> StatementSummary:
    service = StatementService(db)
    statement = await service.get(statement_id, user.id)
    return StatementSummary(**await service.summary(statement))


@router.post("/{statement_id}/reparse", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def reparse_statement(
    statement_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> JobQueued:
    """Drop imported rows and parse the stored file again."""
    service = StatementService(db)
    statement = await service.get(statement_id, user.id)
    if statement.status == "processing":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Statement is already being parsed")
    await service.reset_for_reparse(statement)
    job_id = await service.queue_parse(statement)
    logger.info("Statement %s queued for re-parse (job %s)", statement.id, job_id)
    return JobQueued(job_id=job_id, resource_id=statement.id)


@router.get("/{statement_id}/progress")
async def statement_progress(
    statement_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    """SSE stream of parsing progress until the statement is parsed or failed."""
    await StatementService(db).get(statement_id, user.id)
    streamer = ProgressStreamer(statement_id, user.id, session_factory=session_factory)
    return StreamingResponse(streamer.stream(), media_type="text/event-stream", headers=SSE_HEADERS)
